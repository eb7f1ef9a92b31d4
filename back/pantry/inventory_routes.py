"""
Inventory API Routes

REST API over the inventory ledger:
- Purchases, usage and spoilage
- Stock levels, lot detail, expiring and low-stock items
- Recipe completion and costing, menu costing and shopping lists
- Analytics (snapshot overview, trends, rankings)
"""

from datetime import date, timedelta
from decimal import Decimal

from fastapi import APIRouter, Query
from fastapi.responses import JSONResponse

from .analytics import time_range_days
from .deps import Analytics, Costs, CurrentTenant, Inventory, Stock
from .inventory_models import (
    CategoryStock,
    CompleteRecipeInput,
    DailyInventorySnapshot,
    ExpiringItem,
    IngredientAnalytics,
    IngredientStock,
    IngredientValue,
    LotDetail,
    LowStockItem,
    MenuCost,
    MostBoughtIngredient,
    PricePoint,
    PurchaseCreate,
    PurchaseTrendPoint,
    RecipeCompletionResult,
    RecipeCost,
    RecipeListItem,
    ShoppingListItem,
    SpoilageCreate,
    SpoilageRecord,
    StockSummary,
    StockValuePoint,
    SupplierStat,
    UsageBatchCreate,
    UsageCreate,
    UsageHistory,
    UsageHistoryEntry,
    ValueTrendPoint,
)
from .settings import settings


router = APIRouter()


# ============ LEDGER WRITES ============

@router.post("/purchases", response_model=IngredientStock, status_code=201)
def record_purchase(purchase: PurchaseCreate, tenant_id: CurrentTenant, inventory: Inventory):
    """Record a purchase as a new stock lot"""
    return inventory.record_purchase(tenant_id, purchase)


@router.post("/usage", response_model=UsageHistory, status_code=201)
def record_usage(usage: UsageCreate, tenant_id: CurrentTenant, inventory: Inventory):
    return inventory.record_usage(tenant_id, usage)


@router.post("/usage/batch", response_model=list[UsageHistory], status_code=201)
def record_usage_batch(batch: UsageBatchCreate, tenant_id: CurrentTenant, inventory: Inventory):
    """All-or-nothing: one insufficient lot rejects the whole batch"""
    return inventory.record_usage_batch(tenant_id, batch.items)


@router.post("/spoilage", response_model=SpoilageRecord, status_code=201)
def record_spoilage(spoilage: SpoilageCreate, tenant_id: CurrentTenant, inventory: Inventory):
    return inventory.record_spoilage(tenant_id, spoilage)


# ============ STOCK ============

@router.get("/stock", response_model=list[StockSummary])
def get_stock_by_ingredient(tenant_id: CurrentTenant, stock: Stock):
    return stock.stock_by_ingredient(tenant_id)


@router.get("/stock/{ingredient_id}", response_model=list[LotDetail])
def get_ingredient_stock(ingredient_id: int, tenant_id: CurrentTenant, stock: Stock):
    """Every lot of an ingredient, newest first"""
    return stock.ingredient_stock(tenant_id, ingredient_id)


@router.get("/lots/{lot_id}/remaining")
def get_lot_remaining(lot_id: int, tenant_id: CurrentTenant, stock: Stock):
    return {
        "ingredient_stock_id": lot_id,
        "remaining_quantity": stock.remaining_quantity(tenant_id, lot_id),
    }


@router.get("/usage-history", response_model=list[UsageHistoryEntry])
def get_usage_history(
    tenant_id: CurrentTenant,
    stock: Stock,
    start_date: date | None = None,
    end_date: date | None = None,
    ingredient_id: int | None = None,
):
    return stock.usage_history(tenant_id, start_date, end_date, ingredient_id)


@router.get("/expiring", response_model=list[ExpiringItem])
def get_expiring_items(
    tenant_id: CurrentTenant,
    stock: Stock,
    days: int = Query(default=settings.expiring_soon_days, ge=0, le=365),
):
    return stock.expiring_items(tenant_id, days)


@router.get("/low-stock", response_model=list[LowStockItem])
def get_low_stock(tenant_id: CurrentTenant, stock: Stock):
    return stock.low_stock_items(tenant_id)


# ============ RECIPES & MENUS ============

@router.get("/recipes/with-cost", response_model=list[RecipeListItem])
def list_recipes_with_cost(tenant_id: CurrentTenant, costs: Costs):
    return costs.list_recipes_with_cost(tenant_id)


@router.get("/recipes/{recipe_id}/cost", response_model=RecipeCost)
def get_recipe_cost(
    recipe_id: int,
    tenant_id: CurrentTenant,
    costs: Costs,
    servings: Decimal | None = None,
):
    return costs.calculate_recipe_cost(tenant_id, recipe_id, servings)


@router.post("/recipes/{recipe_id}/complete", response_model=RecipeCompletionResult)
def complete_recipe(
    recipe_id: int,
    completion: CompleteRecipeInput,
    tenant_id: CurrentTenant,
    inventory: Inventory,
):
    """
    Deduct the recipe's ingredients from stock (FIFO).
    Shortages without allow_partial_stock come back as 400 with the report.
    """
    result = inventory.complete_recipe(tenant_id, recipe_id, completion)
    if not result.success:
        return JSONResponse(status_code=400, content=result.model_dump(mode="json"))
    return result


@router.get("/menus/{menu_plan_id}/cost", response_model=MenuCost)
def get_menu_cost(menu_plan_id: int, tenant_id: CurrentTenant, costs: Costs):
    return costs.calculate_menu_cost(tenant_id, menu_plan_id)


@router.get("/menus/{menu_plan_id}/shopping-list", response_model=list[ShoppingListItem])
def get_shopping_list(menu_plan_id: int, tenant_id: CurrentTenant, costs: Costs):
    return costs.generate_shopping_list(tenant_id, menu_plan_id)


# ============ ANALYTICS ============

@router.get("/analytics/overview", response_model=DailyInventorySnapshot)
def get_overview(tenant_id: CurrentTenant, analytics: Analytics):
    return analytics.get_overview(tenant_id)


@router.get("/analytics/value-trend", response_model=list[ValueTrendPoint])
def get_value_trend(
    tenant_id: CurrentTenant,
    analytics: Analytics,
    time_range: str = "30d",
    start_date: date | None = None,
    end_date: date | None = None,
):
    """Explicit start/end dates win over time_range"""
    if start_date and end_date:
        return analytics.calculate_value_trend(tenant_id, start_date, end_date)
    end = date.today()
    return analytics.calculate_value_trend(tenant_id, end - timedelta(days=time_range_days(time_range)), end)


@router.get("/analytics/purchases-over-time", response_model=list[PurchaseTrendPoint])
def get_purchases_over_time(tenant_id: CurrentTenant, analytics: Analytics, time_range: str = "30d"):
    end = date.today()
    return analytics.calculate_purchase_value_trend(
        tenant_id, end - timedelta(days=time_range_days(time_range)), end
    )


@router.get("/analytics/best-suppliers", response_model=list[SupplierStat])
def get_best_suppliers(
    tenant_id: CurrentTenant,
    analytics: Analytics,
    limit: int = Query(default=5, ge=1, le=20),
):
    return analytics.best_suppliers(tenant_id, limit)


@router.get("/analytics/most-bought-ingredients", response_model=list[MostBoughtIngredient])
def get_most_bought_ingredients(
    tenant_id: CurrentTenant,
    analytics: Analytics,
    limit: int = Query(default=5, ge=1, le=20),
):
    return analytics.most_bought_ingredients(tenant_id, limit)


@router.get("/analytics/top-ingredients-by-value", response_model=list[IngredientValue])
def get_top_ingredients_by_value(
    tenant_id: CurrentTenant,
    analytics: Analytics,
    limit: int = Query(default=10, ge=1, le=50),
):
    return analytics.top_ingredients_by_value(tenant_id, limit)


@router.get("/analytics/category-distribution", response_model=list[CategoryStock])
def get_category_distribution(tenant_id: CurrentTenant, analytics: Analytics):
    return analytics.category_distribution(tenant_id)


@router.get("/analytics/ingredient/{ingredient_id}", response_model=IngredientAnalytics)
def get_ingredient_analytics(ingredient_id: int, tenant_id: CurrentTenant, analytics: Analytics):
    """Cached analytics; stale rows are returned while a refresh runs in the background"""
    return analytics.get_ingredient_analytics(tenant_id, ingredient_id)


@router.get("/analytics/ingredient/{ingredient_id}/price-trend", response_model=list[PricePoint])
def get_price_trend(
    ingredient_id: int,
    tenant_id: CurrentTenant,
    analytics: Analytics,
    time_range: str = "30d",
):
    return analytics.price_trend(tenant_id, ingredient_id, time_range)


@router.get("/analytics/ingredient/{ingredient_id}/stock-value", response_model=list[StockValuePoint])
def get_stock_value_trend(
    ingredient_id: int,
    tenant_id: CurrentTenant,
    analytics: Analytics,
    time_range: str = "30d",
):
    return analytics.stock_value_trend(tenant_id, ingredient_id, time_range)


@router.post("/analytics/refresh")
def refresh_analytics(tenant_id: CurrentTenant, analytics: Analytics):
    """Recompute today's snapshot and every ingredient's analytics"""
    count = analytics.refresh_all(tenant_id)
    return {"message": "Analytics refreshed successfully", "ingredients": count}
