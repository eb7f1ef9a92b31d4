"""
Analytics Aggregator

Folds the ledger into reporting figures:
- Overall statistics (values, purchase counts, low stock, breakdowns)
- Per-ingredient analytics with price and stock-value trends
- Daily purchased/consumed value trends
- Materialized snapshots (daily_inventory_snapshots, ingredient_analytics)

Snapshots are pure materializations: recomputed wholesale and upserted, so
they can be dropped at any time.
"""

import logging
from collections import defaultdict
from datetime import date, datetime, timedelta, timezone
from decimal import Decimal

from sqlmodel import select

from .costing import unit_price
from .errors import ValidationError
from .inventory_models import (
    CategoryStock,
    DailyInventorySnapshot,
    IngredientAnalytics,
    IngredientAnalyticsResult,
    IngredientStat,
    IngredientValue,
    MostBoughtIngredient,
    OverallStatistics,
    PricePoint,
    PurchaseTrendPoint,
    StockValuePoint,
    SupplierStat,
    ValueTrendPoint,
)
from .ledger import LedgerStore, round2
from .models import Category, Ingredient, Supplier
from .settings import settings
from .stock import StockCalculator

logger = logging.getLogger(__name__)

DEFAULT_CATEGORY_COLOR = "#5B5FEF"

TIME_RANGES = {"7d": 7, "30d": 30, "90d": 90}


def time_range_days(time_range: str) -> int:
    try:
        return TIME_RANGES[time_range]
    except KeyError:
        raise ValidationError(
            "Time range must be 7d, 30d, or 90d", {"time_range": time_range}
        ) from None


def _aware(moment: datetime) -> datetime:
    # SQLite hands back naive datetimes; stored values are UTC
    if moment.tzinfo is None:
        return moment.replace(tzinfo=timezone.utc)
    return moment


class AnalyticsAggregator:
    def __init__(self, ledger: LedgerStore, stock: StockCalculator, dispatcher=None):
        self.ledger = ledger
        self.stock = stock
        # AnalyticsDispatcher used for stale-while-revalidate refreshes
        self.dispatcher = dispatcher

    # ---------- computations ----------

    def calculate_overall_statistics(self, tenant_id: int) -> OverallStatistics:
        """
        Tenant-wide statistics in a fixed number of queries: ingredients,
        lots, usage sums, spoilage sums, suppliers and categories.
        """
        ingredients = {i.id: i for i in self.ledger.ingredients(tenant_id)}
        lots = self.ledger.lots(tenant_id)
        if not lots:
            return OverallStatistics(
                total_value=Decimal("0"),
                remaining_value=Decimal("0"),
                total_purchases=0,
                total_ingredients=len(ingredients),
                low_stock_count=sum(1 for i in ingredients.values() if i.restock_threshold > 0),
            )

        remaining = self.stock.remaining_exact(lots)
        suppliers = {
            s.id: s.name
            for s in self.ledger.session.exec(
                select(Supplier).where(Supplier.tenant_id == tenant_id)
            ).all()
        }
        categories = {
            c.id: c
            for c in self.ledger.session.exec(
                select(Category).where(Category.tenant_id == tenant_id)
            ).all()
        }

        total_value = Decimal("0")
        remaining_value = Decimal("0")
        per_ingredient: dict[int, dict] = {}
        per_supplier: dict[int, dict] = {}
        per_category: dict[str, dict] = {}

        for lot in lots:
            price = unit_price(lot) or Decimal("0")
            left = remaining[lot.id]
            lot_value = lot.quantity * price
            left_value = left * price
            total_value += lot_value
            remaining_value += left_value

            ingredient = ingredients.get(lot.ingredient_id)
            stat = per_ingredient.setdefault(lot.ingredient_id, {
                "ingredient_id": lot.ingredient_id,
                "name": ingredient.name if ingredient else "Unknown",
                "total_value": Decimal("0"),
                "remaining_value": Decimal("0"),
                "total_quantity": Decimal("0"),
                "remaining_quantity": Decimal("0"),
                "purchase_count": 0,
            })
            stat["total_value"] += lot_value
            stat["remaining_value"] += left_value
            stat["total_quantity"] += lot.quantity
            stat["remaining_quantity"] += left
            stat["purchase_count"] += 1

            supplier = per_supplier.setdefault(lot.supplier_id, {
                "supplier_id": lot.supplier_id,
                "name": suppliers.get(lot.supplier_id, "Unknown"),
                "total_spent": Decimal("0"),
                "total_quantity": Decimal("0"),
                "total_purchases": 0,
            })
            supplier["total_spent"] += lot.purchase_price
            supplier["total_quantity"] += lot.quantity
            supplier["total_purchases"] += 1

            category = categories.get(ingredient.category_id) if ingredient else None
            if category:
                bucket = per_category.setdefault(category.name, {
                    "category_name": category.name,
                    "category_color": category.color or DEFAULT_CATEGORY_COLOR,
                    "total_stock": Decimal("0"),
                })
                bucket["total_stock"] += left

        low_stock_count = 0
        for ingredient in ingredients.values():
            stat = per_ingredient.get(ingredient.id)
            on_hand = stat["remaining_quantity"] if stat else Decimal("0")
            if ingredient.restock_threshold > 0 and on_hand < ingredient.restock_threshold:
                low_stock_count += 1

        supplier_stats = [
            SupplierStat(
                supplier_id=s["supplier_id"],
                name=s["name"],
                average_price_per_unit=(
                    s["total_spent"] / s["total_quantity"] if s["total_quantity"] > 0 else Decimal("0")
                ),
                total_purchases=s["total_purchases"],
                total_spent=s["total_spent"],
            )
            for s in per_supplier.values()
        ]

        return OverallStatistics(
            total_value=total_value,
            remaining_value=remaining_value,
            total_purchases=len(lots),
            total_ingredients=len(ingredients),
            low_stock_count=low_stock_count,
            ingredient_stats=[IngredientStat(**s) for s in per_ingredient.values()],
            supplier_stats=supplier_stats,
            category_distribution=[CategoryStock(**c) for c in per_category.values()],
        )

    def calculate_ingredient_analytics(
        self, tenant_id: int, ingredient_id: int, today: date | None = None
    ) -> IngredientAnalyticsResult:
        """
        Totals over every lot of the ingredient; trends cover the trailing
        window of `analytics_trend_days` only.

        price_trend: average unit price of the lots bought each day.
        stock_value_trend: cumulative total/remaining value at each purchase
        date inside the window. A lone point gets a zero point 30 days
        earlier (when still inside the window) so charts draw a line.
        """
        self.ledger.get_owned(Ingredient, ingredient_id, tenant_id, "Ingredient")
        lots = self.ledger.lots(tenant_id, [ingredient_id])
        if not lots:
            return IngredientAnalyticsResult(
                total_value=Decimal("0"),
                remaining_value=Decimal("0"),
                average_price_per_unit=Decimal("0"),
                total_purchases=0,
            )

        remaining = self.stock.remaining_exact(lots)
        window_start = (today or date.today()) - timedelta(days=settings.analytics_trend_days)

        total_value = Decimal("0")
        remaining_value = Decimal("0")
        prices = []
        prices_by_day: dict[date, list[Decimal]] = defaultdict(list)
        value_by_day: dict[date, tuple[Decimal, Decimal]] = {}
        running_total = Decimal("0")
        running_remaining = Decimal("0")

        # lots come oldest first, which the cumulative trend relies on
        for lot in lots:
            price = unit_price(lot)
            if price is None:
                continue
            lot_value = lot.quantity * price
            left_value = remaining[lot.id] * price
            total_value += lot_value
            remaining_value += left_value
            prices.append(price)

            if lot.purchase_date >= window_start:
                prices_by_day[lot.purchase_date].append(price)
                running_total += lot_value
                running_remaining += left_value
                value_by_day[lot.purchase_date] = (running_total, running_remaining)

        price_trend = [
            PricePoint(day=day, average_price=sum(day_prices) / len(day_prices))
            for day, day_prices in sorted(prices_by_day.items())
        ]
        stock_value_trend = [
            StockValuePoint(day=day, total_value=values[0], remaining_value=values[1])
            for day, values in sorted(value_by_day.items())
        ]
        if len(stock_value_trend) == 1:
            lead_in = stock_value_trend[0].day - timedelta(days=30)
            if lead_in >= window_start:
                stock_value_trend.insert(0, StockValuePoint(
                    day=lead_in, total_value=Decimal("0"), remaining_value=Decimal("0")
                ))

        return IngredientAnalyticsResult(
            total_value=total_value,
            remaining_value=remaining_value,
            average_price_per_unit=sum(prices, Decimal("0")) / len(prices) if prices else Decimal("0"),
            total_purchases=len(lots),
            price_trend=price_trend,
            stock_value_trend=stock_value_trend,
        )

    def calculate_value_trend(self, tenant_id: int, start_date: date, end_date: date) -> list[ValueTrendPoint]:
        """Purchased vs consumed (usage + spoilage) value per day, always fresh"""
        purchased: dict[date, Decimal] = defaultdict(Decimal)
        consumed: dict[date, Decimal] = defaultdict(Decimal)

        for lot in self.ledger.lots_purchased_between(tenant_id, start_date, end_date):
            purchased[lot.purchase_date] += lot.purchase_price
        for usage, lot in self.ledger.usage_between(tenant_id, start_date, end_date):
            consumed[usage.usage_date] += usage.quantity_used * (unit_price(lot) or Decimal("0"))
        for record, lot in self.ledger.spoilage_between(tenant_id, start_date, end_date):
            consumed[record.spoilage_date] += record.quantity * (unit_price(lot) or Decimal("0"))

        return [
            ValueTrendPoint(
                day=day,
                purchased=round2(purchased.get(day, Decimal("0"))),
                consumed=round2(consumed.get(day, Decimal("0"))),
            )
            for day in sorted(set(purchased) | set(consumed))
        ]

    def calculate_purchase_value_trend(
        self, tenant_id: int, start_date: date, end_date: date
    ) -> list[PurchaseTrendPoint]:
        purchases: dict[date, Decimal] = defaultdict(Decimal)
        for lot in self.ledger.lots_purchased_between(tenant_id, start_date, end_date):
            purchases[lot.purchase_date] += lot.purchase_price
        return [
            PurchaseTrendPoint(day=day, purchases=round2(total))
            for day, total in sorted(purchases.items())
        ]

    # ---------- materialized snapshots ----------

    def save_daily_snapshot(self, tenant_id: int, snapshot_date: date | None = None) -> DailyInventorySnapshot:
        """Upsert the overall statistics for (tenant, day); rerunning overwrites"""
        stats = self.calculate_overall_statistics(tenant_id)
        dumped = stats.model_dump(mode="json")
        snapshot = self.ledger.upsert_daily_snapshot(
            tenant_id,
            snapshot_date or date.today(),
            {
                "total_value": round2(stats.total_value),
                "remaining_value": round2(stats.remaining_value),
                "total_purchases": stats.total_purchases,
                "total_ingredients": stats.total_ingredients,
                "low_stock_count": stats.low_stock_count,
                "ingredient_stats": dumped["ingredient_stats"],
                "supplier_stats": dumped["supplier_stats"],
                "category_distribution": dumped["category_distribution"],
            },
        )
        logger.info(f"Saved inventory snapshot for tenant {tenant_id} on {snapshot.snapshot_date}")
        return snapshot

    def update_ingredient_analytics(self, tenant_id: int, ingredient_id: int) -> IngredientAnalytics:
        result = self.calculate_ingredient_analytics(tenant_id, ingredient_id)
        dumped = result.model_dump(mode="json")
        return self.ledger.upsert_ingredient_analytics(
            tenant_id,
            ingredient_id,
            {
                "total_value": round2(result.total_value),
                "remaining_value": round2(result.remaining_value),
                "average_price_per_unit": result.average_price_per_unit.quantize(Decimal("0.0001")),
                "total_purchases": result.total_purchases,
                "price_trend": dumped["price_trend"],
                "stock_value_trend": dumped["stock_value_trend"],
            },
        )

    def refresh_all(self, tenant_id: int) -> int:
        """Recompute today's snapshot and every ingredient's analytics"""
        self.save_daily_snapshot(tenant_id)
        ingredients = self.ledger.ingredients(tenant_id)
        for ingredient in ingredients:
            self.update_ingredient_analytics(tenant_id, ingredient.id)
        logger.info(f"Refreshed analytics for tenant {tenant_id} ({len(ingredients)} ingredients)")
        return len(ingredients)

    # ---------- readers ----------

    def get_ingredient_analytics(
        self, tenant_id: int, ingredient_id: int, now: datetime | None = None
    ) -> IngredientAnalytics:
        """
        Stale-while-revalidate read. A missing row is computed synchronously;
        a stale row is returned as is while a background refresh is queued.
        """
        self.ledger.get_owned(Ingredient, ingredient_id, tenant_id, "Ingredient")
        row = self.ledger.ingredient_analytics_row(tenant_id, ingredient_id)
        if row is None:
            return self.update_ingredient_analytics(tenant_id, ingredient_id)

        age = (now or datetime.now(timezone.utc)) - _aware(row.updated_at)
        if age > timedelta(seconds=settings.analytics_stale_after_seconds) and self.dispatcher:
            logger.info(f"Analytics for ingredient {ingredient_id} are stale, refreshing in background")
            self.dispatcher.refresh_ingredient(tenant_id, ingredient_id)
        return row

    def price_trend(self, tenant_id: int, ingredient_id: int, time_range: str = "30d") -> list[PricePoint]:
        days = time_range_days(time_range)
        row = self.get_ingredient_analytics(tenant_id, ingredient_id)
        return [PricePoint.model_validate(point) for point in (row.price_trend or [])[-days:]]

    def stock_value_trend(self, tenant_id: int, ingredient_id: int, time_range: str = "30d") -> list[StockValuePoint]:
        days = time_range_days(time_range)
        row = self.get_ingredient_analytics(tenant_id, ingredient_id)
        return [StockValuePoint.model_validate(point) for point in (row.stock_value_trend or [])[-days:]]

    def get_overview(self, tenant_id: int) -> DailyInventorySnapshot:
        """Latest snapshot; the first call for a tenant computes one"""
        return self.ledger.latest_snapshot(tenant_id) or self.save_daily_snapshot(tenant_id)

    def best_suppliers(self, tenant_id: int, limit: int = 5) -> list[SupplierStat]:
        """Cheapest suppliers first by average price per unit"""
        stats = [SupplierStat.model_validate(s) for s in self.get_overview(tenant_id).supplier_stats or []]
        stats = [s for s in stats if s.average_price_per_unit > 0]
        return sorted(stats, key=lambda s: s.average_price_per_unit)[:limit]

    def most_bought_ingredients(self, tenant_id: int, limit: int = 5) -> list[MostBoughtIngredient]:
        stats = [IngredientStat.model_validate(s) for s in self.get_overview(tenant_id).ingredient_stats or []]
        ranked = sorted(stats, key=lambda s: s.purchase_count, reverse=True)[:limit]
        return [
            MostBoughtIngredient(
                ingredient_id=s.ingredient_id,
                name=s.name,
                purchase_count=s.purchase_count,
                total_quantity=s.total_quantity,
                total_value=s.total_value,
            )
            for s in ranked
        ]

    def top_ingredients_by_value(self, tenant_id: int, limit: int = 10) -> list[IngredientValue]:
        """Ranked by remaining (on-hand) value"""
        stats = [IngredientStat.model_validate(s) for s in self.get_overview(tenant_id).ingredient_stats or []]
        ranked = sorted(stats, key=lambda s: s.remaining_value, reverse=True)[:limit]
        return [
            IngredientValue(ingredient_id=s.ingredient_id, name=s.name, value=round2(s.remaining_value))
            for s in ranked
        ]

    def category_distribution(self, tenant_id: int) -> list[CategoryStock]:
        return [
            CategoryStock.model_validate(c)
            for c in self.get_overview(tenant_id).category_distribution or []
        ]
