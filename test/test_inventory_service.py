from datetime import date
from decimal import Decimal

import pytest
from sqlmodel import select

from pantry.errors import InsufficientStockError, NotFoundError, ValidationError
from pantry.inventory_models import (
    ActualQuantity,
    CompleteRecipeInput,
    DailyInventorySnapshot,
    IngredientAnalytics,
    PurchaseCreate,
    SpoilageCreate,
    UsageCreate,
    UsageHistory,
)
from pantry.inventory_service import InventoryService
from pantry.models import Supplier
from pantry.tasks import AnalyticsDispatcher


def usage(lot, quantity, day=2):
    return UsageCreate(ingredient_stock_id=lot.id, quantity_used=Decimal(quantity), usage_date=date(2024, 1, day))


def usages(session):
    return session.exec(select(UsageHistory).order_by(UsageHistory.id)).all()


# ---------- purchases ----------

def test_purchase_rejects_non_positive_quantity(service, tenant, directory, make_ingredient):
    flour = make_ingredient("Flour")
    with pytest.raises(ValidationError):
        service.record_purchase(tenant.id, PurchaseCreate(
            ingredient_id=flour.id,
            storage_location_id=directory.walk_in.id,
            supplier_id=directory.supplier.id,
            quantity=Decimal("0"),
            purchase_price=Decimal("5"),
            purchase_date=date(2024, 1, 1),
        ))


def test_purchase_requires_directory_entries_of_the_tenant(service, ledger, other_tenant, tenant, directory, make_ingredient):
    flour = make_ingredient("Flour")
    foreign_supplier = ledger.create_named(Supplier, other_tenant.id, name="Elsewhere Ltd")

    with pytest.raises(NotFoundError) as excinfo:
        service.record_purchase(tenant.id, PurchaseCreate(
            ingredient_id=flour.id,
            storage_location_id=directory.walk_in.id,
            supplier_id=foreign_supplier.id,
            quantity=Decimal("1"),
            purchase_price=Decimal("5"),
            purchase_date=date(2024, 1, 1),
        ))
    assert excinfo.value.entity == "Supplier"


def test_purchase_queues_analytics_refresh(service, dispatcher, session, tenant, make_ingredient, buy):
    flour = make_ingredient("Flour")
    buy(flour, "10", "20")

    assert dispatcher.pending == 2
    assert dispatcher.drain() == 2

    session.expire_all()
    assert session.exec(select(DailyInventorySnapshot)).one().total_value == Decimal("20.00")
    assert session.exec(select(IngredientAnalytics)).one().ingredient_id == flour.id


# ---------- usage / spoilage ----------

def test_usage_cannot_exceed_remaining(service, session, stock, tenant, make_ingredient, buy):
    lot = buy(make_ingredient("Cheese"), "5", "50")
    service.record_usage(tenant.id, usage(lot, "3"))

    with pytest.raises(InsufficientStockError) as excinfo:
        service.record_usage(tenant.id, usage(lot, "2.5"))

    assert excinfo.value.available == Decimal("2.00")
    assert len(usages(session)) == 1
    assert stock.remaining_quantity(tenant.id, lot.id) == Decimal("2.00")


def test_usage_may_take_exactly_what_remains(service, stock, tenant, make_ingredient, buy):
    lot = buy(make_ingredient("Cheese"), "5", "50")

    service.record_usage(tenant.id, usage(lot, "5"))

    assert stock.remaining_quantity(tenant.id, lot.id) == Decimal("0.00")


def test_usage_on_unknown_lot_is_not_found(service, tenant):
    with pytest.raises(NotFoundError):
        service.record_usage(tenant.id, UsageCreate(
            ingredient_stock_id=404, quantity_used=Decimal("1"), usage_date=date(2024, 1, 2)
        ))


def test_spoilage_counts_against_remaining(service, stock, tenant, make_ingredient, buy):
    lot = buy(make_ingredient("Fish"), "4", "40")
    service.record_spoilage(tenant.id, SpoilageCreate(
        ingredient_stock_id=lot.id, quantity=Decimal("1.5"), reason="spoiled", spoilage_date=date(2024, 1, 3)
    ))

    assert stock.remaining_quantity(tenant.id, lot.id) == Decimal("2.50")
    with pytest.raises(InsufficientStockError):
        service.record_usage(tenant.id, usage(lot, "3"))


def test_spoilage_requires_a_reason(service, tenant, make_ingredient, buy):
    lot = buy(make_ingredient("Fish"), "4", "40")
    with pytest.raises(ValidationError):
        service.record_spoilage(tenant.id, SpoilageCreate(
            ingredient_stock_id=lot.id, quantity=Decimal("1"), reason="  ", spoilage_date=date(2024, 1, 3)
        ))


def test_usage_batch_is_all_or_nothing(service, session, tenant, make_ingredient, buy):
    rice = buy(make_ingredient("Rice"), "5", "10")
    beans = buy(make_ingredient("Beans"), "5", "10")

    # Two lines on the same lot together exceed it
    with pytest.raises(InsufficientStockError) as excinfo:
        service.record_usage_batch(tenant.id, [usage(beans, "1"), usage(rice, "3"), usage(rice, "3")])

    assert excinfo.value.lot_id == rice.id
    assert usages(session) == []

    written = service.record_usage_batch(tenant.id, [usage(beans, "1"), usage(rice, "3")])
    assert [u.ingredient_stock_id for u in written] == [beans.id, rice.id]


# ---------- recipe completion ----------

def test_completion_deducts_fifo_across_lots(service, session, tenant, make_ingredient, buy, make_recipe):
    onion = make_ingredient("Onion")
    first = buy(onion, "5", "5", on=date(2024, 1, 1))
    second = buy(onion, "5", "10", on=date(2024, 1, 3))
    soup = make_recipe("Onion soup", serves="4", lines=[(onion, "7")])

    result = service.complete_recipe(tenant.id, soup.id, CompleteRecipeInput(completed_on=date(2024, 1, 5)))

    assert result.success and result.shortages == []
    written = usages(session)
    assert [(u.ingredient_stock_id, u.quantity_used) for u in written] == [
        (first.id, Decimal("5")), (second.id, Decimal("2"))
    ]
    assert {u.reason for u in written} == {"recipe"}
    assert {u.recipe_id for u in written} == {soup.id}
    assert result.usage_ids == [u.id for u in written]


def test_strict_completion_writes_nothing_on_shortage(service, session, dispatcher, tenant, make_ingredient, buy, make_recipe):
    a = make_ingredient("Carrot")
    b = make_ingredient("Celery")
    buy(a, "10", "10")
    buy(b, "2", "4")
    dispatcher.drain()
    stew = make_recipe("Stew", lines=[(a, "3"), (b, "5")])

    result = service.complete_recipe(tenant.id, stew.id, CompleteRecipeInput())

    assert result.success is False
    assert [(s.ingredient_name, s.required, s.available, s.shortage) for s in result.shortages] == [
        ("Celery", Decimal("5"), Decimal("2"), Decimal("3"))
    ]
    assert usages(session) == []
    assert dispatcher.pending == 0


def test_partial_completion_uses_what_is_available(service, session, stock, tenant, make_ingredient, buy, make_recipe):
    a = make_ingredient("Carrot")
    b = make_ingredient("Celery")
    lot_a = buy(a, "10", "10")
    lot_b = buy(b, "2", "4")
    stew = make_recipe("Stew", lines=[(a, "3"), (b, "5")])

    result = service.complete_recipe(tenant.id, stew.id, CompleteRecipeInput(allow_partial_stock=True))

    assert result.success is True
    assert [s.ingredient_id for s in result.shortages] == [b.id]
    assert stock.remaining_quantity(tenant.id, lot_a.id) == Decimal("7.00")
    assert stock.remaining_quantity(tenant.id, lot_b.id) == Decimal("0.00")
    assert len(usages(session)) == 2


def test_completion_scales_with_servings_and_sums_duplicate_lines(service, session, tenant, make_ingredient, buy, make_recipe):
    flour = make_ingredient("Flour")
    buy(flour, "100", "50")
    bread = make_recipe("Bread", serves="4", lines=[(flour, "2"), (flour, "1")])

    service.complete_recipe(tenant.id, bread.id, CompleteRecipeInput(servings=Decimal("8")))

    assert [u.quantity_used for u in usages(session)] == [Decimal("6")]


def test_actual_quantities_override_the_recipe(service, session, tenant, make_ingredient, buy, make_recipe):
    flour = make_ingredient("Flour")
    buy(flour, "100", "50")
    bread = make_recipe("Bread", lines=[(flour, "2")])

    service.complete_recipe(tenant.id, bread.id, CompleteRecipeInput(
        actual_quantities=[ActualQuantity(ingredient_id=flour.id, quantity=Decimal("2.75"))]
    ))

    assert [u.quantity_used for u in usages(session)] == [Decimal("2.75")]


def test_override_for_foreign_ingredient_is_rejected(service, tenant, make_ingredient, make_recipe):
    flour = make_ingredient("Flour")
    sugar = make_ingredient("Sugar")
    bread = make_recipe("Bread", lines=[(flour, "2")])

    with pytest.raises(ValidationError):
        service.complete_recipe(tenant.id, bread.id, CompleteRecipeInput(
            actual_quantities=[ActualQuantity(ingredient_id=sugar.id, quantity=Decimal("1"))]
        ))


def test_completing_unknown_recipe_is_not_found(service, tenant):
    with pytest.raises(NotFoundError):
        service.complete_recipe(tenant.id, 777, CompleteRecipeInput())


# ---------- query counts ----------

def test_completion_reads_a_fixed_number_of_rows(service, session, tenant, make_ingredient, buy, make_recipe, count_queries):
    def recipe_over(size, name):
        lines = []
        for n in range(size):
            ingredient = make_ingredient(f"{name} {n}")
            buy(ingredient, "2", "4", on=date(2024, 1, 1))
            buy(ingredient, "2", "4", on=date(2024, 1, 2))
            lines.append((ingredient, "3"))
        return make_recipe(name, lines=lines)

    def selects_for(recipe):
        session.expire_all()
        count_queries.clear()
        result = service.complete_recipe(tenant.id, recipe.id, CompleteRecipeInput())
        assert result.success
        return len(count_queries), len(result.usage_ids)

    small = selects_for(recipe_over(2, "Small"))
    large = selects_for(recipe_over(8, "Large"))

    assert (small[1], large[1]) == (4, 16)
    assert small[0] == large[0]


def test_usage_batch_reads_a_fixed_number_of_rows(service, session, tenant, make_ingredient, buy, count_queries):
    def selects_for(size):
        lots = [buy(make_ingredient(f"Spice {size}-{n}"), "5", "5") for n in range(size)]
        items = [usage(lot, "1") for lot in lots]
        session.expire_all()
        count_queries.clear()
        written = service.record_usage_batch(tenant.id, items)
        assert [u.quantity_used for u in written] == [Decimal("1")] * size
        return len(count_queries)

    assert selects_for(2) == selects_for(9)


# ---------- analytics dispatch ----------

def test_inline_dispatcher_refreshes_without_queueing(engine, ledger, stock, session, tenant, directory, make_ingredient):
    inline = AnalyticsDispatcher(engine, inline=True)
    inline_service = InventoryService(ledger, stock, inline)
    flour = make_ingredient("Flour")

    for _ in range(5):
        inline_service.record_purchase(tenant.id, PurchaseCreate(
            ingredient_id=flour.id,
            storage_location_id=directory.walk_in.id,
            supplier_id=directory.supplier.id,
            quantity=Decimal("2"),
            purchase_price=Decimal("4"),
            purchase_date=date(2024, 1, 1),
        ))

    assert inline.pending == 0
    session.expire_all()
    assert session.exec(select(DailyInventorySnapshot)).one().total_purchases == 5
    assert session.exec(select(IngredientAnalytics)).one().total_value == Decimal("20.00")
