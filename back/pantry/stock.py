"""
Stock Calculator

Derives remaining quantities from the ledger:

    remaining = max(0, lot.quantity - sum(usage) - sum(spoilage))

Computed in full precision and rounded to cents only for reporting. Batch
variants read lots, usage sums and spoilage sums in one query each.
"""

from collections import defaultdict
from datetime import date, timedelta
from decimal import Decimal

from sqlmodel import select

from .costing import unit_price
from .fifo import LotBalance
from .inventory_models import (
    ExpiringItem,
    IngredientStock,
    LocationStock,
    LotDetail,
    LowStockItem,
    StockSummary,
    UsageHistory,
    UsageHistoryEntry,
)
from .ledger import LedgerStore, round2
from .models import Ingredient, StorageLocation, Supplier, Unit


def remaining_of(lot: IngredientStock, used: Decimal, spoiled: Decimal) -> Decimal:
    """Remaining quantity of a lot, floored at zero (full precision)"""
    return max(Decimal("0"), lot.quantity - used - spoiled)


class StockCalculator:
    def __init__(self, ledger: LedgerStore):
        self.ledger = ledger

    # ---------- per lot ----------

    def remaining_exact(self, lots: list[IngredientStock]) -> dict[int, Decimal]:
        """Unrounded remaining for already-loaded lots (two grouped queries)"""
        if not lots:
            return {}
        tenant_id = lots[0].tenant_id
        lot_ids = [lot.id for lot in lots]
        used = self.ledger.usage_sums(tenant_id, lot_ids)
        spoiled = self.ledger.spoilage_sums(tenant_id, lot_ids)
        return {
            lot.id: remaining_of(lot, used.get(lot.id, Decimal("0")), spoiled.get(lot.id, Decimal("0")))
            for lot in lots
        }

    def remaining_quantity(self, tenant_id: int, lot_id: int) -> Decimal:
        lot = self.ledger.get_lot(tenant_id, lot_id)
        return round2(self.remaining_exact([lot])[lot.id])

    def remaining_quantities_batch(self, tenant_id: int, lot_ids: list[int]) -> dict[int, Decimal]:
        """Remaining for many lots; unknown or foreign ids are left out"""
        lots = self.ledger.lots_by_ids(tenant_id, lot_ids)
        return {lot_id: round2(qty) for lot_id, qty in self.remaining_exact(lots).items()}

    def lot_balances(
        self, tenant_id: int, ingredient_ids: list[int], for_update: bool = False
    ) -> dict[int, list[LotBalance]]:
        """Lots with stock left for each ingredient, oldest first"""
        lots = self.ledger.lots(tenant_id, ingredient_ids, for_update=for_update)
        remaining = self.remaining_exact(lots)
        balances: dict[int, list[LotBalance]] = {ingredient_id: [] for ingredient_id in ingredient_ids}
        for lot in lots:
            if remaining[lot.id] > 0:
                balances[lot.ingredient_id].append(LotBalance(
                    lot_id=lot.id,
                    ingredient_id=lot.ingredient_id,
                    purchase_date=lot.purchase_date,
                    remaining=remaining[lot.id],
                ))
        return balances

    def remaining_by_ingredient(self, tenant_id: int, ingredient_ids: list[int] | None = None) -> dict[int, Decimal]:
        """Total unrounded remaining per ingredient"""
        lots = self.ledger.lots(tenant_id, ingredient_ids)
        remaining = self.remaining_exact(lots)
        totals: dict[int, Decimal] = defaultdict(Decimal)
        for lot in lots:
            totals[lot.ingredient_id] += remaining[lot.id]
        return dict(totals)

    # ---------- aggregates ----------

    def stock_by_ingredient(self, tenant_id: int) -> list[StockSummary]:
        ingredients = self.ledger.ingredients(tenant_id)
        if not ingredients:
            return []

        lots = self.ledger.lots(tenant_id)
        remaining = self.remaining_exact(lots)
        locations = {
            loc.id: loc.name
            for loc in self.ledger.session.exec(
                select(StorageLocation).where(StorageLocation.tenant_id == tenant_id)
            ).all()
        }

        by_ingredient: dict[int, dict[int, Decimal]] = defaultdict(lambda: defaultdict(Decimal))
        for lot in lots:
            by_ingredient[lot.ingredient_id][lot.storage_location_id] += remaining[lot.id]

        summaries = []
        for ingredient in ingredients:
            per_location = by_ingredient.get(ingredient.id, {})
            total = Decimal("0")
            breakdown = []
            for location_id, quantity in per_location.items():
                if quantity > 0:
                    total += quantity
                    breakdown.append(LocationStock(
                        location_id=location_id,
                        location_name=locations.get(location_id, "Unknown"),
                        quantity=round2(quantity),
                    ))
            summaries.append(StockSummary(
                ingredient_id=ingredient.id,
                ingredient_name=ingredient.name,
                total_stock=round2(total),
                locations=breakdown,
            ))
        return summaries

    def ingredient_stock(self, tenant_id: int, ingredient_id: int) -> list[LotDetail]:
        """Every lot of an ingredient, newest first, with remaining quantity"""
        ingredient = self.ledger.get_owned(Ingredient, ingredient_id, tenant_id, "Ingredient")
        unit = self.ledger.session.get(Unit, ingredient.unit_id)
        rows = self.ledger.session.exec(
            select(IngredientStock, StorageLocation, Supplier)
            .join(StorageLocation, IngredientStock.storage_location_id == StorageLocation.id)
            .join(Supplier, IngredientStock.supplier_id == Supplier.id)
            .where(IngredientStock.tenant_id == tenant_id)
            .where(IngredientStock.ingredient_id == ingredient_id)
            .order_by(IngredientStock.purchase_date.desc(), IngredientStock.id.desc())
        ).all()
        remaining = self.remaining_exact([lot for lot, _, _ in rows])

        return [
            LotDetail(
                id=lot.id,
                ingredient_id=ingredient.id,
                ingredient_name=ingredient.name,
                unit_name=unit.name if unit else "",
                storage_location_id=location.id,
                storage_location_name=location.name,
                supplier_id=supplier.id,
                supplier_name=supplier.name,
                quantity=lot.quantity,
                remaining_quantity=round2(remaining[lot.id]),
                purchase_price=lot.purchase_price,
                unit_price=unit_price(lot),
                purchase_date=lot.purchase_date,
                batch_number=lot.batch_number,
                expiration_date=lot.expiration_date,
            )
            for lot, location, supplier in rows
        ]

    def expiring_items(self, tenant_id: int, days: int = 7, today: date | None = None) -> list[ExpiringItem]:
        """Lots expiring within `days` (already expired included) that still hold stock"""
        horizon = (today or date.today()) + timedelta(days=days)
        rows = self.ledger.session.exec(
            select(IngredientStock, Ingredient, StorageLocation)
            .join(Ingredient, IngredientStock.ingredient_id == Ingredient.id)
            .join(StorageLocation, IngredientStock.storage_location_id == StorageLocation.id)
            .where(IngredientStock.tenant_id == tenant_id)
            .where(IngredientStock.expiration_date.is_not(None))
            .where(IngredientStock.expiration_date <= horizon)
            .order_by(IngredientStock.expiration_date, IngredientStock.id)
        ).all()
        remaining = self.remaining_exact([lot for lot, _, _ in rows])

        items = []
        for lot, ingredient, location in rows:
            if remaining[lot.id] > 0:
                items.append(ExpiringItem(
                    id=lot.id,
                    ingredient_id=ingredient.id,
                    ingredient_name=ingredient.name,
                    storage_location_id=location.id,
                    storage_location_name=location.name,
                    expiration_date=lot.expiration_date,
                    quantity=lot.quantity,
                    remaining_quantity=round2(remaining[lot.id]),
                ))
        return items

    def low_stock_items(self, tenant_id: int) -> list[LowStockItem]:
        """Ingredients whose summed remaining is below their restock threshold"""
        ingredients = self.ledger.ingredients(tenant_id)
        totals = self.remaining_by_ingredient(tenant_id)
        items = []
        for ingredient in ingredients:
            remaining = totals.get(ingredient.id, Decimal("0"))
            if ingredient.restock_threshold and remaining < ingredient.restock_threshold:
                items.append(LowStockItem(
                    ingredient_id=ingredient.id,
                    ingredient_name=ingredient.name,
                    remaining_quantity=round2(remaining),
                    restock_threshold=ingredient.restock_threshold,
                ))
        return items

    def usage_history(
        self,
        tenant_id: int,
        start_date: date | None = None,
        end_date: date | None = None,
        ingredient_id: int | None = None,
    ) -> list[UsageHistoryEntry]:
        statement = (
            select(UsageHistory, IngredientStock, Ingredient)
            .join(IngredientStock, UsageHistory.ingredient_stock_id == IngredientStock.id)
            .join(Ingredient, IngredientStock.ingredient_id == Ingredient.id)
            .where(UsageHistory.tenant_id == tenant_id)
        )
        if start_date:
            statement = statement.where(UsageHistory.usage_date >= start_date)
        if end_date:
            statement = statement.where(UsageHistory.usage_date <= end_date)
        if ingredient_id:
            statement = statement.where(Ingredient.id == ingredient_id)
        statement = statement.order_by(UsageHistory.usage_date.desc(), UsageHistory.id.desc())

        return [
            UsageHistoryEntry(
                id=usage.id,
                usage_date=usage.usage_date,
                quantity_used=usage.quantity_used,
                reason=usage.reason,
                notes=usage.notes,
                ingredient_stock_id=lot.id,
                ingredient_id=ingredient.id,
                ingredient_name=ingredient.name,
            )
            for usage, lot, ingredient in self.ledger.session.exec(statement).all()
        ]
