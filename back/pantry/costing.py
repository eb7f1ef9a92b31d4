"""
Cost Engine

Recipe and menu costing from purchase lots. The current price signal of an
ingredient is the unit price of its most recent lot (not an average):

    unit_price = purchase_price / quantity

Ingredients without purchase history cost zero instead of failing the
calculation.
"""

import logging
from collections import defaultdict
from decimal import Decimal

from sqlmodel import select

from .errors import ValidationError
from .inventory_models import (
    IngredientStock,
    MenuCost,
    MenuCostLine,
    RecipeCost,
    RecipeCostLine,
    RecipeListItem,
    ShoppingListItem,
)
from .ledger import LedgerStore, round2
from .models import Ingredient, MenuItem, MenuPlan, Recipe, RecipeIngredient, Unit

logger = logging.getLogger(__name__)


def unit_price(lot: IngredientStock | None) -> Decimal | None:
    """Price per unit of a lot; None means no price data"""
    if lot is None or lot.quantity is None or lot.quantity <= 0:
        return None
    return lot.purchase_price / lot.quantity


class CostEngine:
    def __init__(self, ledger: LedgerStore, stock):
        self.ledger = ledger
        # StockCalculator; stock.py imports unit_price from here
        self.stock = stock

    def _recipe(self, tenant_id: int, recipe_id: int) -> Recipe:
        return self.ledger.get_owned(Recipe, recipe_id, tenant_id, "Recipe")

    def _recipe_lines(self, recipe_ids: list[int]) -> dict[int, list[RecipeIngredient]]:
        lines: dict[int, list[RecipeIngredient]] = defaultdict(list)
        if not recipe_ids:
            return lines
        for line in self.ledger.session.exec(
            select(RecipeIngredient)
            .where(RecipeIngredient.recipe_id.in_(recipe_ids))
            .order_by(RecipeIngredient.id)
        ).all():
            lines[line.recipe_id].append(line)
        return lines

    def _ingredients_with_units(self, tenant_id: int, ingredient_ids) -> dict[int, tuple[Ingredient, Unit | None]]:
        ids = list(set(ingredient_ids))
        if not ids:
            return {}
        rows = self.ledger.session.exec(
            select(Ingredient, Unit)
            .join(Unit, Ingredient.unit_id == Unit.id, isouter=True)
            .where(Ingredient.tenant_id == tenant_id)
            .where(Ingredient.id.in_(ids))
        ).all()
        return {ingredient.id: (ingredient, unit) for ingredient, unit in rows}

    def calculate_recipe_cost(
        self,
        tenant_id: int,
        recipe_id: int,
        desired_servings: Decimal | None = None,
    ) -> RecipeCost:
        recipe = self._recipe(tenant_id, recipe_id)
        base_serves = recipe.serves
        if base_serves is None or base_serves <= 0:
            raise ValidationError(f"Recipe {recipe_id} has no valid base serving size")
        servings = base_serves if desired_servings is None else Decimal(desired_servings)
        if servings <= 0:
            raise ValidationError("Servings must be greater than zero")
        multiplier = servings / base_serves

        lines = self._recipe_lines([recipe.id])[recipe.id]
        ingredient_ids = [line.ingredient_id for line in lines]
        latest = self.ledger.latest_lots(tenant_id, ingredient_ids)
        details = self._ingredients_with_units(tenant_id, ingredient_ids)

        breakdown = []
        total_cost = Decimal("0")
        for line in lines:
            ingredient, unit = details.get(line.ingredient_id, (None, None))
            price = unit_price(latest.get(line.ingredient_id))
            quantity = line.quantity * multiplier
            subtotal = quantity * price if price is not None else Decimal("0")
            total_cost += subtotal
            breakdown.append(RecipeCostLine(
                ingredient_id=line.ingredient_id,
                ingredient=ingredient.name if ingredient else "Unknown",
                quantity=quantity,
                unit=unit.name if unit else "",
                unit_price=price if price is not None else Decimal("0"),
                subtotal=subtotal,
                has_price_data=price is not None,
            ))

        return RecipeCost(
            recipe_id=recipe.id,
            total_cost=total_cost,
            breakdown=breakdown,
            serves=servings,
            cost_per_serving=total_cost / servings,
        )

    def list_recipes_with_cost(self, tenant_id: int) -> list[RecipeListItem]:
        """
        All recipes with an estimated cost at base serves.
        Lines and latest lots for every recipe are loaded up front and costed
        in memory; estimated_cost is None when no ingredient has price data.
        """
        recipes = self.ledger.session.exec(
            select(Recipe).where(Recipe.tenant_id == tenant_id).order_by(Recipe.name)
        ).all()
        if not recipes:
            return []

        lines_by_recipe = self._recipe_lines([recipe.id for recipe in recipes])
        latest = self.ledger.latest_lots(
            tenant_id,
            [line.ingredient_id for lines in lines_by_recipe.values() for line in lines],
        )

        items = []
        for recipe in recipes:
            total = Decimal("0")
            has_price = False
            for line in lines_by_recipe.get(recipe.id, []):
                price = unit_price(latest.get(line.ingredient_id))
                if price is not None:
                    has_price = True
                    total += line.quantity * price
            items.append(RecipeListItem(
                id=recipe.id,
                name=recipe.name,
                category_id=recipe.category_id,
                serves=recipe.serves,
                estimated_cost=round2(total) if has_price else None,
            ))
        return items

    def _menu_items(self, tenant_id: int, menu_plan_id: int) -> list[tuple[MenuItem, Recipe]]:
        self.ledger.get_owned(MenuPlan, menu_plan_id, tenant_id, "Menu plan")
        return list(self.ledger.session.exec(
            select(MenuItem, Recipe)
            .join(Recipe, MenuItem.recipe_id == Recipe.id)
            .where(MenuItem.menu_plan_id == menu_plan_id)
            .order_by(MenuItem.order, MenuItem.id)
        ).all())

    def calculate_menu_cost(self, tenant_id: int, menu_plan_id: int) -> MenuCost:
        items = self._menu_items(tenant_id, menu_plan_id)

        breakdown = []
        total_cost = Decimal("0")
        total_servings = Decimal("0")
        for item, recipe in items:
            servings = item.servings
            total_servings += servings
            try:
                recipe_cost = self.calculate_recipe_cost(tenant_id, recipe.id, servings)
                cost = recipe_cost.total_cost
                per_serving = recipe_cost.cost_per_serving
            except Exception:
                # One broken recipe must not take the whole menu down
                logger.warning(
                    f"Error calculating cost for recipe {recipe.id} in menu {menu_plan_id}",
                    exc_info=True,
                )
                cost = Decimal("0")
                per_serving = Decimal("0")

            breakdown.append(MenuCostLine(
                recipe_id=recipe.id,
                recipe_name=recipe.name,
                servings=servings,
                cost=cost,
                cost_per_serving=per_serving,
            ))
            total_cost += cost

        return MenuCost(
            menu_plan_id=menu_plan_id,
            total_cost=total_cost,
            cost_per_serving=total_cost / total_servings if total_servings > 0 else Decimal("0"),
            total_servings=total_servings,
            breakdown=breakdown,
        )

    def generate_shopping_list(self, tenant_id: int, menu_plan_id: int) -> list[ShoppingListItem]:
        """What to buy for a menu: scaled requirements minus remaining stock"""
        items = self._menu_items(tenant_id, menu_plan_id)
        if not items:
            return []

        lines_by_recipe = self._recipe_lines(list({recipe.id for _, recipe in items}))
        required: dict[int, Decimal] = defaultdict(Decimal)
        for item, recipe in items:
            if not recipe.serves or recipe.serves <= 0:
                logger.warning(f"Skipping recipe {recipe.id} with invalid serves in shopping list")
                continue
            multiplier = item.servings / recipe.serves
            for line in lines_by_recipe.get(recipe.id, []):
                required[line.ingredient_id] += line.quantity * multiplier

        ingredient_ids = list(required)
        details = self._ingredients_with_units(tenant_id, ingredient_ids)
        latest = self.ledger.latest_lots(tenant_id, ingredient_ids)
        on_hand = self.stock.remaining_by_ingredient(tenant_id, ingredient_ids)

        shopping_list = []
        for ingredient_id, total in required.items():
            ingredient, unit = details.get(ingredient_id, (None, None))
            current = on_hand.get(ingredient_id, Decimal("0"))
            needed = max(Decimal("0"), total - current)
            price = unit_price(latest.get(ingredient_id)) or Decimal("0")
            shopping_list.append(ShoppingListItem(
                ingredient_id=ingredient_id,
                ingredient_name=ingredient.name if ingredient else "Unknown",
                unit=unit.name if unit else "",
                total_quantity=total,
                current_stock=round2(current),
                needed=needed,
                unit_price=price,
                subtotal=needed * price,
                is_low_stock=current < total,
            ))

        return sorted(shopping_list, key=lambda entry: entry.ingredient_name.lower())
