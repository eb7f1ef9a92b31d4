"""
Ledger Store

Data access for the append-only inventory ledger. A LedgerStore wraps one
SQLModel session (one unit of work); every query is scoped to a tenant.
Sums of usage/spoilage are always fetched grouped by lot so callers never
issue one query per lot.
"""

import logging
from collections.abc import Iterable
from datetime import date, datetime, timezone
from decimal import ROUND_HALF_UP, Decimal

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, select

from .errors import ConflictError, NotFoundError
from .inventory_models import (
    DailyInventorySnapshot,
    IngredientAnalytics,
    IngredientStock,
    SpoilageRecord,
    UsageHistory,
)
from .models import Ingredient, TenantMixin

logger = logging.getLogger(__name__)

CENT = Decimal("0.01")


def as_decimal(value) -> Decimal:
    """Normalize driver output (Decimal, float, int, str, None) to Decimal"""
    if value is None:
        return Decimal("0")
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


def round2(value: Decimal) -> Decimal:
    return as_decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)


class LedgerStore:
    def __init__(self, session: Session):
        self.session = session

    # ---------- reference directories ----------

    def get_owned(self, model: type[TenantMixin], entity_id: int, tenant_id: int, label: str):
        """Load a tenant-owned row or raise NotFoundError"""
        row = self.session.get(model, entity_id)
        if row is None or row.tenant_id != tenant_id:
            raise NotFoundError(label, entity_id)
        return row

    def create_named(self, model: type[TenantMixin], tenant_id: int, **fields):
        """Create a directory entry whose name must be unique for the tenant"""
        existing = self.session.exec(
            select(model)
            .where(model.tenant_id == tenant_id)
            .where(model.name == fields["name"])
        ).first()
        if existing:
            raise ConflictError(f"{model.__name__} '{fields['name']}' already exists")

        row = model(tenant_id=tenant_id, **fields)
        self.session.add(row)
        self.session.commit()
        self.session.refresh(row)
        return row

    def ingredients(self, tenant_id: int, ingredient_ids: Iterable[int] | None = None) -> list[Ingredient]:
        statement = select(Ingredient).where(Ingredient.tenant_id == tenant_id)
        if ingredient_ids is not None:
            ids = list(ingredient_ids)
            if not ids:
                return []
            statement = statement.where(Ingredient.id.in_(ids))
        return list(self.session.exec(statement.order_by(Ingredient.name)).all())

    def count_ingredients(self, tenant_id: int) -> int:
        return self.session.exec(
            select(func.count(Ingredient.id)).where(Ingredient.tenant_id == tenant_id)
        ).one()

    # ---------- lots ----------

    def get_lot(self, tenant_id: int, lot_id: int, for_update: bool = False) -> IngredientStock:
        statement = (
            select(IngredientStock)
            .where(IngredientStock.id == lot_id)
            .where(IngredientStock.tenant_id == tenant_id)
        )
        if for_update:
            statement = statement.with_for_update()
        lot = self.session.exec(statement).first()
        if lot is None:
            raise NotFoundError("Ingredient stock", lot_id)
        return lot

    def lots_by_ids(
        self, tenant_id: int, lot_ids: Iterable[int], for_update: bool = False
    ) -> list[IngredientStock]:
        ids = list(lot_ids)
        if not ids:
            return []
        statement = (
            select(IngredientStock)
            .where(IngredientStock.tenant_id == tenant_id)
            .where(IngredientStock.id.in_(ids))
            .order_by(IngredientStock.id)
        )
        if for_update:
            statement = statement.with_for_update()
        return list(self.session.exec(statement).all())

    def lots(
        self,
        tenant_id: int,
        ingredient_ids: Iterable[int] | None = None,
        for_update: bool = False,
    ) -> list[IngredientStock]:
        """Lots oldest first (purchase date, then insertion order)"""
        statement = select(IngredientStock).where(IngredientStock.tenant_id == tenant_id)
        if ingredient_ids is not None:
            ids = list(ingredient_ids)
            if not ids:
                return []
            statement = statement.where(IngredientStock.ingredient_id.in_(ids))
        statement = statement.order_by(IngredientStock.purchase_date, IngredientStock.id)
        if for_update:
            statement = statement.with_for_update()
        return list(self.session.exec(statement).all())

    def lots_purchased_between(self, tenant_id: int, start: date, end: date) -> list[IngredientStock]:
        return list(self.session.exec(
            select(IngredientStock)
            .where(IngredientStock.tenant_id == tenant_id)
            .where(IngredientStock.purchase_date >= start)
            .where(IngredientStock.purchase_date <= end)
            .order_by(IngredientStock.purchase_date, IngredientStock.id)
        ).all())

    def latest_lots(self, tenant_id: int, ingredient_ids: Iterable[int]) -> dict[int, IngredientStock]:
        """Most recent lot per ingredient, fetched in one query"""
        ids = list(set(ingredient_ids))
        if not ids:
            return {}
        rows = self.session.exec(
            select(IngredientStock)
            .where(IngredientStock.tenant_id == tenant_id)
            .where(IngredientStock.ingredient_id.in_(ids))
            .order_by(IngredientStock.purchase_date.desc(), IngredientStock.id.desc())
        ).all()
        latest: dict[int, IngredientStock] = {}
        for lot in rows:
            latest.setdefault(lot.ingredient_id, lot)
        return latest

    def add_purchase(self, lot: IngredientStock) -> IngredientStock:
        self.session.add(lot)
        self.session.flush()
        return lot

    # ---------- usage / spoilage ----------

    def usage_sums(self, tenant_id: int, lot_ids: Iterable[int] | None = None) -> dict[int, Decimal]:
        return self._grouped_sums(UsageHistory, UsageHistory.quantity_used, tenant_id, lot_ids)

    def spoilage_sums(self, tenant_id: int, lot_ids: Iterable[int] | None = None) -> dict[int, Decimal]:
        return self._grouped_sums(SpoilageRecord, SpoilageRecord.quantity, tenant_id, lot_ids)

    def _grouped_sums(self, model, column, tenant_id: int, lot_ids) -> dict[int, Decimal]:
        statement = (
            select(model.ingredient_stock_id, func.coalesce(func.sum(column), 0))
            .where(model.tenant_id == tenant_id)
            .group_by(model.ingredient_stock_id)
        )
        if lot_ids is not None:
            ids = list(lot_ids)
            if not ids:
                return {}
            statement = statement.where(model.ingredient_stock_id.in_(ids))
        return {lot_id: as_decimal(total) for lot_id, total in self.session.exec(statement).all()}

    def usage_between(self, tenant_id: int, start: date, end: date) -> list[tuple[UsageHistory, IngredientStock]]:
        return list(self.session.exec(
            select(UsageHistory, IngredientStock)
            .join(IngredientStock, UsageHistory.ingredient_stock_id == IngredientStock.id)
            .where(UsageHistory.tenant_id == tenant_id)
            .where(UsageHistory.usage_date >= start)
            .where(UsageHistory.usage_date <= end)
        ).all())

    def spoilage_between(self, tenant_id: int, start: date, end: date) -> list[tuple[SpoilageRecord, IngredientStock]]:
        return list(self.session.exec(
            select(SpoilageRecord, IngredientStock)
            .join(IngredientStock, SpoilageRecord.ingredient_stock_id == IngredientStock.id)
            .where(SpoilageRecord.tenant_id == tenant_id)
            .where(SpoilageRecord.spoilage_date >= start)
            .where(SpoilageRecord.spoilage_date <= end)
        ).all())

    def add_usages(self, usages: list[UsageHistory]) -> list[UsageHistory]:
        self.session.add_all(usages)
        self.session.flush()
        return usages

    def usages_by_ids(self, tenant_id: int, usage_ids: Iterable[int]) -> list[UsageHistory]:
        """Reload written usage events in one query, in id order"""
        ids = list(usage_ids)
        if not ids:
            return []
        return list(self.session.exec(
            select(UsageHistory)
            .where(UsageHistory.tenant_id == tenant_id)
            .where(UsageHistory.id.in_(ids))
            .order_by(UsageHistory.id)
        ).all())

    def add_spoilage(self, record: SpoilageRecord) -> SpoilageRecord:
        self.session.add(record)
        self.session.flush()
        return record

    # ---------- transaction ----------

    def commit(self) -> None:
        self.session.commit()

    def rollback(self) -> None:
        self.session.rollback()

    # ---------- cached analytics ----------

    def latest_snapshot(self, tenant_id: int) -> DailyInventorySnapshot | None:
        return self.session.exec(
            select(DailyInventorySnapshot)
            .where(DailyInventorySnapshot.tenant_id == tenant_id)
            .order_by(DailyInventorySnapshot.snapshot_date.desc())
        ).first()

    def snapshots(self, tenant_id: int) -> list[DailyInventorySnapshot]:
        return list(self.session.exec(
            select(DailyInventorySnapshot)
            .where(DailyInventorySnapshot.tenant_id == tenant_id)
            .order_by(DailyInventorySnapshot.snapshot_date)
        ).all())

    def ingredient_analytics_row(self, tenant_id: int, ingredient_id: int) -> IngredientAnalytics | None:
        return self.session.exec(
            select(IngredientAnalytics)
            .where(IngredientAnalytics.tenant_id == tenant_id)
            .where(IngredientAnalytics.ingredient_id == ingredient_id)
        ).first()

    def upsert_daily_snapshot(self, tenant_id: int, snapshot_date: date, values: dict) -> DailyInventorySnapshot:
        def find():
            return self.session.exec(
                select(DailyInventorySnapshot)
                .where(DailyInventorySnapshot.tenant_id == tenant_id)
                .where(DailyInventorySnapshot.snapshot_date == snapshot_date)
            ).first()

        return self._upsert(
            find,
            lambda: DailyInventorySnapshot(tenant_id=tenant_id, snapshot_date=snapshot_date),
            values,
        )

    def upsert_ingredient_analytics(self, tenant_id: int, ingredient_id: int, values: dict) -> IngredientAnalytics:
        return self._upsert(
            lambda: self.ingredient_analytics_row(tenant_id, ingredient_id),
            lambda: IngredientAnalytics(tenant_id=tenant_id, ingredient_id=ingredient_id),
            values,
        )

    def _upsert(self, find, build, values: dict):
        """Update-or-insert keyed by a unique constraint; last write wins"""
        for attempt in range(2):
            row = find()
            if row is None:
                row = build()
            for key, value in values.items():
                setattr(row, key, value)
            row.updated_at = datetime.now(timezone.utc)
            self.session.add(row)
            try:
                self.session.commit()
            except IntegrityError:
                # A concurrent writer inserted the same key first; update theirs
                self.session.rollback()
                if attempt:
                    raise
                logger.info("Upsert raced with a concurrent insert, retrying as update")
                continue
            self.session.refresh(row)
            return row
