from datetime import date
from decimal import Decimal

import pytest

from pantry.costing import CostEngine, unit_price
from pantry.errors import NotFoundError, ValidationError
from pantry.inventory_models import IngredientStock, UsageCreate


@pytest.fixture
def costs(ledger, stock):
    return CostEngine(ledger, stock)


def test_unit_price_is_total_over_quantity():
    lot = IngredientStock(
        tenant_id=1, ingredient_id=1, storage_location_id=1, supplier_id=1,
        quantity=Decimal("4"), purchase_price=Decimal("20"), purchase_date=date(2024, 1, 1),
    )
    assert unit_price(lot) == Decimal("5")
    assert unit_price(lot) * 2 == Decimal("10")


def test_unit_price_without_quantity_has_no_price_data():
    lot = IngredientStock(
        tenant_id=1, ingredient_id=1, storage_location_id=1, supplier_id=1,
        quantity=Decimal("0"), purchase_price=Decimal("20"), purchase_date=date(2024, 1, 1),
    )
    assert unit_price(lot) is None
    assert unit_price(None) is None


def test_recipe_cost_scales_with_servings(costs, tenant, make_ingredient, buy, make_recipe):
    beef = make_ingredient("Beef")
    buy(beef, "4", "20")
    stew = make_recipe("Stew", serves="4", lines=[(beef, "4")])

    base = costs.calculate_recipe_cost(tenant.id, stew.id)
    doubled = costs.calculate_recipe_cost(tenant.id, stew.id, Decimal("8"))

    assert base.total_cost == Decimal("20")
    assert doubled.total_cost == Decimal("40")
    assert doubled.cost_per_serving == Decimal("5")
    assert doubled.serves == Decimal("8")
    assert doubled.breakdown[0].quantity == Decimal("8")


def test_recipe_cost_uses_latest_lot_price(costs, tenant, make_ingredient, buy, make_recipe):
    beef = make_ingredient("Beef")
    buy(beef, "10", "50", on=date(2024, 1, 1))
    buy(beef, "10", "80", on=date(2024, 2, 1))
    buy(beef, "10", "60", on=date(2024, 1, 15))
    burger = make_recipe("Burger", serves="1", lines=[(beef, "0.5")])

    cost = costs.calculate_recipe_cost(tenant.id, burger.id)

    assert cost.breakdown[0].unit_price == Decimal("8")
    assert cost.total_cost == Decimal("4")


def test_recipe_cost_degrades_without_price_history(costs, tenant, make_ingredient, buy, make_recipe):
    beef = make_ingredient("Beef")
    truffle = make_ingredient("Truffle")
    buy(beef, "2", "10")
    dish = make_recipe("Special", serves="2", lines=[(beef, "1"), (truffle, "0.1")])

    cost = costs.calculate_recipe_cost(tenant.id, dish.id)

    lines = {line.ingredient: line for line in cost.breakdown}
    assert lines["Truffle"].has_price_data is False
    assert lines["Truffle"].subtotal == 0
    assert lines["Beef"].has_price_data is True
    assert lines["Beef"].unit == "kg"
    assert cost.total_cost == Decimal("5")


def test_recipe_cost_rejects_bad_servings(costs, tenant, make_recipe):
    dish = make_recipe("Empty", serves="2")
    with pytest.raises(ValidationError):
        costs.calculate_recipe_cost(tenant.id, dish.id, Decimal("0"))
    with pytest.raises(NotFoundError):
        costs.calculate_recipe_cost(tenant.id, 12345)


def test_menu_cost_prices_each_item_with_its_servings(costs, tenant, make_ingredient, buy, make_recipe, make_menu):
    beef = make_ingredient("Beef")
    rice = make_ingredient("Rice")
    buy(beef, "4", "20")
    buy(rice, "10", "10")
    stew = make_recipe("Stew", serves="4", lines=[(beef, "4")])
    pilaf = make_recipe("Pilaf", serves="2", lines=[(rice, "1")])
    menu = make_menu("Week 1", [(stew, "8"), (pilaf, "2")])

    cost = costs.calculate_menu_cost(tenant.id, menu.id)

    assert [(line.recipe_name, line.cost) for line in cost.breakdown] == [
        ("Stew", Decimal("40")), ("Pilaf", Decimal("1"))
    ]
    assert cost.total_cost == Decimal("41")
    assert cost.total_servings == Decimal("10")
    assert cost.cost_per_serving == Decimal("4.1")


def test_menu_cost_zeroes_a_failing_recipe(costs, tenant, make_ingredient, buy, make_recipe, make_menu, caplog):
    beef = make_ingredient("Beef")
    buy(beef, "4", "20")
    stew = make_recipe("Stew", serves="4", lines=[(beef, "4")])
    broken = make_recipe("Broken", serves="0", lines=[(beef, "1")])
    menu = make_menu("Week 2", [(broken, "3"), (stew, "4")])

    cost = costs.calculate_menu_cost(tenant.id, menu.id)

    assert [line.cost for line in cost.breakdown] == [Decimal("0"), Decimal("20")]
    assert cost.total_cost == Decimal("20")
    assert "Error calculating cost for recipe" in caplog.text


def test_list_recipes_with_cost(costs, tenant, make_ingredient, buy, make_recipe):
    beef = make_ingredient("Beef")
    truffle = make_ingredient("Truffle")
    buy(beef, "4", "20")
    make_recipe("Stew", serves="4", lines=[(beef, "1.5")])
    make_recipe("Truffle shavings", serves="1", lines=[(truffle, "0.01")])

    listed = {item.name: item for item in costs.list_recipes_with_cost(tenant.id)}

    assert listed["Stew"].estimated_cost == Decimal("7.50")
    assert listed["Truffle shavings"].estimated_cost is None


def test_shopping_list_subtracts_remaining_stock(costs, service, tenant, make_ingredient, buy, make_recipe, make_menu):
    beef = make_ingredient("Beef")
    onion = make_ingredient("Onion")
    lot = buy(beef, "4", "20")
    service.record_usage(tenant.id, UsageCreate(
        ingredient_stock_id=lot.id, quantity_used=Decimal("1"), usage_date=date(2024, 1, 2)
    ))
    stew = make_recipe("Stew", serves="4", lines=[(beef, "2"), (onion, "1")])
    menu = make_menu("Week 3", [(stew, "8"), (stew, "4")])

    items = {item.ingredient_name: item for item in costs.generate_shopping_list(tenant.id, menu.id)}

    assert list(items) == ["Beef", "Onion"]
    assert items["Beef"].total_quantity == Decimal("6")
    assert items["Beef"].current_stock == Decimal("3.00")
    assert items["Beef"].needed == Decimal("3")
    assert items["Beef"].subtotal == Decimal("15")
    assert items["Beef"].is_low_stock is True
    assert items["Onion"].needed == Decimal("3")
    assert items["Onion"].unit_price == 0


def test_list_recipes_with_cost_reads_a_fixed_number_of_rows(costs, session, tenant, make_ingredient, buy, make_recipe, count_queries):
    def add_recipes(count, name):
        for n in range(count):
            ingredient = make_ingredient(f"{name} ingredient {n}")
            buy(ingredient, "2", "6")
            make_recipe(f"{name} {n}", lines=[(ingredient, "1")])

    def selects():
        session.expire_all()
        count_queries.clear()
        listed = costs.list_recipes_with_cost(tenant.id)
        return len(count_queries), len(listed)

    add_recipes(1, "Soup")
    few = selects()
    add_recipes(6, "Stew")
    many = selects()

    assert (few[1], many[1]) == (1, 7)
    assert few[0] == many[0]


def test_cost_engine_requires_a_stock_calculator(ledger):
    with pytest.raises(TypeError):
        CostEngine(ledger)
