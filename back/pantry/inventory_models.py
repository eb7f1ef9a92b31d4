"""
Inventory Ledger Models

Append-only ledger of ingredient stock:
- Purchase lots (one row per purchase, never mutated)
- Usage history and spoilage records consuming a lot
- Cached analytics (daily snapshots, per-ingredient analytics)
- Request/response schemas for the inventory API
"""

from datetime import date, datetime, timezone
from decimal import Decimal

from sqlalchemy import JSON, Numeric, UniqueConstraint
from sqlmodel import Field, SQLModel

from .models import TenantMixin


# ============ LEDGER ============

class IngredientStock(TenantMixin, table=True):
    """
    A purchase lot. Depletion is recorded as usage/spoilage rows against it,
    never by changing quantity. purchase_price is the total paid for the lot.
    """
    __tablename__ = "ingredient_stock"

    id: int | None = Field(default=None, primary_key=True)

    ingredient_id: int = Field(foreign_key="ingredients.id", index=True)
    storage_location_id: int = Field(foreign_key="storage_locations.id", index=True)
    supplier_id: int = Field(foreign_key="suppliers.id", index=True)

    quantity: Decimal = Field(sa_type=Numeric(12, 4))
    purchase_price: Decimal = Field(sa_type=Numeric(12, 4))
    purchase_date: date = Field(index=True)

    batch_number: str | None = None  # Optional external batch/lot number
    expiration_date: date | None = Field(default=None, index=True)

    created_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc)
    )
    updated_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc)
    )


class UsageHistory(TenantMixin, table=True):
    """Ingredient consumed from a lot (manual, production or recipe completion)"""
    __tablename__ = "usage_history"

    id: int | None = Field(default=None, primary_key=True)
    ingredient_stock_id: int = Field(foreign_key="ingredient_stock.id", index=True)
    quantity_used: Decimal = Field(sa_type=Numeric(12, 4))
    usage_date: date = Field(index=True)
    reason: str | None = None  # e.g. "manual", "production", "recipe"
    notes: str | None = None
    recipe_id: int | None = Field(default=None, foreign_key="recipes.id")
    created_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc)
    )


class SpoilageRecord(TenantMixin, table=True):
    """Waste written off a lot"""
    __tablename__ = "spoilage_records"

    id: int | None = Field(default=None, primary_key=True)
    ingredient_stock_id: int = Field(foreign_key="ingredient_stock.id", index=True)
    quantity: Decimal = Field(sa_type=Numeric(12, 4))
    reason: str  # e.g. "expired", "damaged", "spoiled"
    spoilage_date: date = Field(index=True)
    notes: str | None = None
    created_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc)
    )


# ============ CACHED ANALYTICS ============

class DailyInventorySnapshot(TenantMixin, table=True):
    """Overall statistics materialized once per tenant and day"""
    __tablename__ = "daily_inventory_snapshots"
    __table_args__ = (UniqueConstraint("tenant_id", "snapshot_date"),)

    id: int | None = Field(default=None, primary_key=True)
    snapshot_date: date = Field(index=True)

    total_value: Decimal = Field(default=Decimal("0"), sa_type=Numeric(12, 2))
    remaining_value: Decimal = Field(default=Decimal("0"), sa_type=Numeric(12, 2))
    total_purchases: int = Field(default=0)
    total_ingredients: int = Field(default=0)
    low_stock_count: int = Field(default=0)

    ingredient_stats: list = Field(default_factory=list, sa_type=JSON)
    supplier_stats: list = Field(default_factory=list, sa_type=JSON)
    category_distribution: list = Field(default_factory=list, sa_type=JSON)

    created_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc)
    )
    updated_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc)
    )


class IngredientAnalytics(TenantMixin, table=True):
    """Per-ingredient analytics with 90-day trends"""
    __tablename__ = "ingredient_analytics"
    __table_args__ = (UniqueConstraint("tenant_id", "ingredient_id"),)

    id: int | None = Field(default=None, primary_key=True)
    ingredient_id: int = Field(foreign_key="ingredients.id", index=True)

    total_value: Decimal = Field(default=Decimal("0"), sa_type=Numeric(12, 2))
    remaining_value: Decimal = Field(default=Decimal("0"), sa_type=Numeric(12, 2))
    average_price_per_unit: Decimal = Field(default=Decimal("0"), sa_type=Numeric(12, 4))
    total_purchases: int = Field(default=0)

    price_trend: list = Field(default_factory=list, sa_type=JSON)  # [{date, average_price}]
    stock_value_trend: list = Field(default_factory=list, sa_type=JSON)  # [{date, total_value, remaining_value}]

    created_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc)
    )
    updated_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc)
    )


# ============ REQUEST SCHEMAS ============

class PurchaseCreate(SQLModel):
    """Schema for recording a purchase"""
    ingredient_id: int
    storage_location_id: int
    supplier_id: int
    quantity: Decimal
    purchase_price: Decimal
    purchase_date: date
    batch_number: str | None = None
    expiration_date: date | None = None


class UsageCreate(SQLModel):
    """Schema for recording usage against a lot"""
    ingredient_stock_id: int
    quantity_used: Decimal
    usage_date: date
    reason: str | None = None
    notes: str | None = None


class UsageBatchCreate(SQLModel):
    items: list[UsageCreate]


class SpoilageCreate(SQLModel):
    """Schema for recording spoilage/waste"""
    ingredient_stock_id: int
    quantity: Decimal
    reason: str
    spoilage_date: date
    notes: str | None = None


class ActualQuantity(SQLModel):
    ingredient_id: int
    quantity: Decimal


class CompleteRecipeInput(SQLModel):
    """Schema for completing a recipe (deducting its ingredients)"""
    completed_on: date | None = None
    servings: Decimal | None = None
    allow_partial_stock: bool = False
    actual_quantities: list[ActualQuantity] | None = None


# ============ RESPONSE SCHEMAS ============

class LocationStock(SQLModel):
    location_id: int
    location_name: str
    quantity: Decimal


class StockSummary(SQLModel):
    """Remaining stock for one ingredient, broken out by location"""
    ingredient_id: int
    ingredient_name: str
    total_stock: Decimal
    locations: list[LocationStock] = []


class LotDetail(SQLModel):
    id: int
    ingredient_id: int
    ingredient_name: str
    unit_name: str
    storage_location_id: int
    storage_location_name: str
    supplier_id: int
    supplier_name: str
    quantity: Decimal
    remaining_quantity: Decimal
    purchase_price: Decimal
    unit_price: Decimal | None
    purchase_date: date
    batch_number: str | None
    expiration_date: date | None


class ExpiringItem(SQLModel):
    id: int
    ingredient_id: int
    ingredient_name: str
    storage_location_id: int
    storage_location_name: str
    expiration_date: date
    quantity: Decimal
    remaining_quantity: Decimal


class LowStockItem(SQLModel):
    ingredient_id: int
    ingredient_name: str
    remaining_quantity: Decimal
    restock_threshold: Decimal


class UsageHistoryEntry(SQLModel):
    id: int
    usage_date: date
    quantity_used: Decimal
    reason: str | None
    notes: str | None
    ingredient_stock_id: int
    ingredient_id: int
    ingredient_name: str


class IngredientShortage(SQLModel):
    ingredient_id: int
    ingredient_name: str
    required: Decimal
    available: Decimal
    shortage: Decimal


class RecipeCompletionResult(SQLModel):
    success: bool
    shortages: list[IngredientShortage] = []
    usage_ids: list[int] = []


class RecipeCostLine(SQLModel):
    ingredient_id: int
    ingredient: str
    quantity: Decimal
    unit: str
    unit_price: Decimal
    subtotal: Decimal
    has_price_data: bool


class RecipeCost(SQLModel):
    recipe_id: int
    total_cost: Decimal
    breakdown: list[RecipeCostLine]
    serves: Decimal
    cost_per_serving: Decimal


class RecipeListItem(SQLModel):
    id: int
    name: str
    category_id: int | None
    serves: Decimal
    estimated_cost: Decimal | None


class MenuCostLine(SQLModel):
    recipe_id: int
    recipe_name: str
    servings: Decimal
    cost: Decimal
    cost_per_serving: Decimal


class MenuCost(SQLModel):
    menu_plan_id: int
    total_cost: Decimal
    cost_per_serving: Decimal
    total_servings: Decimal
    breakdown: list[MenuCostLine]


class ShoppingListItem(SQLModel):
    ingredient_id: int
    ingredient_name: str
    unit: str
    total_quantity: Decimal
    current_stock: Decimal
    needed: Decimal
    unit_price: Decimal
    subtotal: Decimal
    is_low_stock: bool


class ValueTrendPoint(SQLModel):
    day: date
    purchased: Decimal
    consumed: Decimal


class PurchaseTrendPoint(SQLModel):
    day: date
    purchases: Decimal


# ============ ANALYTICS SCHEMAS ============

class IngredientStat(SQLModel):
    ingredient_id: int
    name: str
    total_value: Decimal
    remaining_value: Decimal
    total_quantity: Decimal
    remaining_quantity: Decimal
    purchase_count: int


class SupplierStat(SQLModel):
    """average_price_per_unit is Σprice / Σquantity over the supplier's lots"""
    supplier_id: int
    name: str
    average_price_per_unit: Decimal
    total_purchases: int
    total_spent: Decimal


class CategoryStock(SQLModel):
    category_name: str
    category_color: str
    total_stock: Decimal


class OverallStatistics(SQLModel):
    total_value: Decimal
    remaining_value: Decimal
    total_purchases: int
    total_ingredients: int
    low_stock_count: int
    ingredient_stats: list[IngredientStat] = []
    supplier_stats: list[SupplierStat] = []
    category_distribution: list[CategoryStock] = []


class PricePoint(SQLModel):
    day: date
    average_price: Decimal


class StockValuePoint(SQLModel):
    day: date
    total_value: Decimal
    remaining_value: Decimal


class IngredientAnalyticsResult(SQLModel):
    total_value: Decimal
    remaining_value: Decimal
    average_price_per_unit: Decimal
    total_purchases: int
    price_trend: list[PricePoint] = []
    stock_value_trend: list[StockValuePoint] = []


class MostBoughtIngredient(SQLModel):
    ingredient_id: int
    name: str
    purchase_count: int
    total_quantity: Decimal
    total_value: Decimal


class IngredientValue(SQLModel):
    ingredient_id: int
    name: str
    value: Decimal
