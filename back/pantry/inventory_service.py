"""
Inventory Service

Write orchestration for the ledger:
- Purchases (new lots)
- Usage and spoilage against a lot, single and batch
- Recipe completion (FIFO deduction across lots)

Every write checks stock inside the same transaction that inserts, reading
the affected lots FOR UPDATE. Analytics are refreshed after the commit.
"""

import logging
from collections import defaultdict
from datetime import date
from decimal import Decimal

from sqlmodel import select

from .errors import InsufficientStockError, NotFoundError, ValidationError
from .fifo import allocate
from .inventory_models import (
    CompleteRecipeInput,
    IngredientShortage,
    IngredientStock,
    PurchaseCreate,
    RecipeCompletionResult,
    SpoilageCreate,
    SpoilageRecord,
    UsageCreate,
    UsageHistory,
)
from .ledger import LedgerStore, round2
from .models import Ingredient, Recipe, RecipeIngredient, StorageLocation, Supplier
from .stock import StockCalculator

logger = logging.getLogger(__name__)


class InventoryService:
    def __init__(self, ledger: LedgerStore, stock: StockCalculator, dispatcher=None):
        self.ledger = ledger
        self.stock = stock
        self.dispatcher = dispatcher

    def _after_write(self, tenant_id: int, ingredient_ids) -> None:
        if self.dispatcher and ingredient_ids:
            self.dispatcher.refresh_after_write(tenant_id, ingredient_ids)

    # ---------- purchases ----------

    def record_purchase(self, tenant_id: int, data: PurchaseCreate) -> IngredientStock:
        if data.quantity <= 0:
            raise ValidationError("Quantity must be greater than zero")
        if data.purchase_price < 0:
            raise ValidationError("Purchase price cannot be negative")

        self.ledger.get_owned(Ingredient, data.ingredient_id, tenant_id, "Ingredient")
        self.ledger.get_owned(StorageLocation, data.storage_location_id, tenant_id, "Storage location")
        self.ledger.get_owned(Supplier, data.supplier_id, tenant_id, "Supplier")

        lot = IngredientStock(tenant_id=tenant_id, **data.model_dump())
        try:
            self.ledger.add_purchase(lot)
            self.ledger.commit()
        except Exception:
            self.ledger.rollback()
            raise
        self.ledger.session.refresh(lot)

        logger.info(
            f"Recorded purchase lot {lot.id}: ingredient {lot.ingredient_id}, "
            f"quantity {lot.quantity}, tenant {tenant_id}"
        )
        self._after_write(tenant_id, [lot.ingredient_id])
        return lot

    # ---------- usage / spoilage ----------

    def record_usage(self, tenant_id: int, data: UsageCreate) -> UsageHistory:
        return self.record_usage_batch(tenant_id, [data])[0]

    def record_usage_batch(self, tenant_id: int, items: list[UsageCreate]) -> list[UsageHistory]:
        """
        Strict batch: either every item fits in its lot or nothing is written.
        Items hitting the same lot are checked against their combined total.
        """
        if not items:
            raise ValidationError("At least one usage item is required")
        for item in items:
            if item.quantity_used <= 0:
                raise ValidationError(
                    "Quantity used must be greater than zero",
                    {"ingredient_stock_id": item.ingredient_stock_id},
                )

        try:
            lot_ids = {item.ingredient_stock_id for item in items}
            lots = {lot.id: lot for lot in self.ledger.lots_by_ids(tenant_id, lot_ids, for_update=True)}
            missing = lot_ids - set(lots)
            if missing:
                raise NotFoundError("Ingredient stock", min(missing))

            available = self.stock.remaining_exact(list(lots.values()))
            requested: dict[int, Decimal] = defaultdict(Decimal)
            for item in items:
                requested[item.ingredient_stock_id] += item.quantity_used
            for lot_id, quantity in requested.items():
                if quantity > available[lot_id]:
                    raise InsufficientStockError(lot_id, quantity, round2(available[lot_id]))

            usages = self.ledger.add_usages([
                UsageHistory(
                    tenant_id=tenant_id,
                    ingredient_stock_id=item.ingredient_stock_id,
                    quantity_used=item.quantity_used,
                    usage_date=item.usage_date,
                    reason=item.reason,
                    notes=item.notes,
                )
                for item in items
            ])
            usage_ids = [usage.id for usage in usages]
            affected = {lot.ingredient_id for lot in lots.values()}
            self.ledger.commit()
        except Exception:
            self.ledger.rollback()
            raise

        logger.info(f"Recorded {len(usage_ids)} usage event(s) for tenant {tenant_id}")
        self._after_write(tenant_id, affected)
        return self.ledger.usages_by_ids(tenant_id, usage_ids)

    def record_spoilage(self, tenant_id: int, data: SpoilageCreate) -> SpoilageRecord:
        if data.quantity <= 0:
            raise ValidationError("Quantity must be greater than zero")
        if not data.reason or not data.reason.strip():
            raise ValidationError("Spoilage reason is required")

        try:
            lot = self.ledger.get_lot(tenant_id, data.ingredient_stock_id, for_update=True)
            available = self.stock.remaining_exact([lot])[lot.id]
            if data.quantity > available:
                raise InsufficientStockError(lot.id, data.quantity, round2(available))

            record = self.ledger.add_spoilage(SpoilageRecord(tenant_id=tenant_id, **data.model_dump()))
            self.ledger.commit()
        except Exception:
            self.ledger.rollback()
            raise

        self.ledger.session.refresh(record)
        logger.info(
            f"Recorded spoilage {record.id} on lot {lot.id}: {record.quantity} ({record.reason})"
        )
        self._after_write(tenant_id, [lot.ingredient_id])
        return record

    # ---------- recipe completion ----------

    def _required_quantities(
        self, recipe: Recipe, data: CompleteRecipeInput
    ) -> dict[int, Decimal]:
        if recipe.serves is None or recipe.serves <= 0:
            raise ValidationError(f"Recipe {recipe.id} has no valid base serving size")
        servings = recipe.serves if data.servings is None else data.servings
        if servings <= 0:
            raise ValidationError("Servings must be greater than zero")
        multiplier = servings / recipe.serves

        lines = self.ledger.session.exec(
            select(RecipeIngredient).where(RecipeIngredient.recipe_id == recipe.id)
        ).all()
        required: dict[int, Decimal] = defaultdict(Decimal)
        for line in lines:
            required[line.ingredient_id] += line.quantity * multiplier

        for override in data.actual_quantities or []:
            if override.ingredient_id not in required:
                raise ValidationError(
                    "Ingredient is not part of this recipe",
                    {"ingredient_id": override.ingredient_id, "recipe_id": recipe.id},
                )
            if override.quantity < 0:
                raise ValidationError(
                    "Actual quantity cannot be negative",
                    {"ingredient_id": override.ingredient_id},
                )
            required[override.ingredient_id] = override.quantity
        return dict(required)

    def complete_recipe(
        self, tenant_id: int, recipe_id: int, data: CompleteRecipeInput
    ) -> RecipeCompletionResult:
        """
        Deduct a recipe's ingredients from stock, oldest lots first.

        Without allow_partial_stock any shortage aborts the whole completion
        and nothing is written. With it, whatever stock exists is consumed and
        the shortages are reported alongside success.
        """
        recipe = self.ledger.get_owned(Recipe, recipe_id, tenant_id, "Recipe")
        required = self._required_quantities(recipe, data)
        ingredient_ids = list(required)
        names = {i.id: i.name for i in self.ledger.ingredients(tenant_id, ingredient_ids)}

        try:
            balances = self.stock.lot_balances(tenant_id, ingredient_ids, for_update=True)
            results = [
                allocate(ingredient_id, quantity, balances[ingredient_id])
                for ingredient_id, quantity in required.items()
            ]
            shortages = [
                IngredientShortage(
                    ingredient_id=result.ingredient_id,
                    ingredient_name=names.get(result.ingredient_id, "Unknown"),
                    required=result.required,
                    available=result.allocated,
                    shortage=result.shortage,
                )
                for result in results
                if result.shortage > 0
            ]

            if shortages and not data.allow_partial_stock:
                self.ledger.rollback()
                logger.info(
                    f"Recipe {recipe_id} not completed: {len(shortages)} ingredient(s) short"
                )
                return RecipeCompletionResult(success=False, shortages=shortages)

            used_on = data.completed_on or date.today()
            usages = [
                UsageHistory(
                    tenant_id=tenant_id,
                    ingredient_stock_id=allocation.lot_id,
                    quantity_used=allocation.quantity_taken,
                    usage_date=used_on,
                    reason="recipe",
                    notes=f"Recipe: {recipe.name}",
                    recipe_id=recipe.id,
                )
                for result in results
                for allocation in result.allocations
            ]
            if usages:
                self.ledger.add_usages(usages)
            usage_ids = [usage.id for usage in usages]
            self.ledger.commit()
        except Exception:
            self.ledger.rollback()
            raise

        logger.info(
            f"Completed recipe {recipe_id} for tenant {tenant_id}: "
            f"{len(usage_ids)} usage event(s), {len(shortages)} shortage(s)"
        )
        self._after_write(tenant_id, [result.ingredient_id for result in results if result.allocations])
        return RecipeCompletionResult(
            success=True,
            shortages=shortages,
            usage_ids=usage_ids,
        )
