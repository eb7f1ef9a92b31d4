"""Per-request wiring of the ledger components"""

from typing import Annotated

from fastapi import Depends, Request
from sqlmodel import Session

from .analytics import AnalyticsAggregator
from .costing import CostEngine
from .db import get_session
from .inventory_service import InventoryService
from .ledger import LedgerStore
from .security import get_current_tenant_id
from .stock import StockCalculator
from .tasks import AnalyticsDispatcher


CurrentTenant = Annotated[int, Depends(get_current_tenant_id)]


def get_dispatcher(request: Request) -> AnalyticsDispatcher | None:
    return getattr(request.app.state, "dispatcher", None)


def get_ledger(session: Annotated[Session, Depends(get_session)]) -> LedgerStore:
    return LedgerStore(session)


def get_stock(ledger: Annotated[LedgerStore, Depends(get_ledger)]) -> StockCalculator:
    return StockCalculator(ledger)


def get_cost_engine(
    ledger: Annotated[LedgerStore, Depends(get_ledger)],
    stock: Annotated[StockCalculator, Depends(get_stock)],
) -> CostEngine:
    return CostEngine(ledger, stock)


def get_analytics(
    ledger: Annotated[LedgerStore, Depends(get_ledger)],
    stock: Annotated[StockCalculator, Depends(get_stock)],
    dispatcher: Annotated[AnalyticsDispatcher | None, Depends(get_dispatcher)],
) -> AnalyticsAggregator:
    return AnalyticsAggregator(ledger, stock, dispatcher)


def get_inventory_service(
    ledger: Annotated[LedgerStore, Depends(get_ledger)],
    stock: Annotated[StockCalculator, Depends(get_stock)],
    dispatcher: Annotated[AnalyticsDispatcher | None, Depends(get_dispatcher)],
) -> InventoryService:
    return InventoryService(ledger, stock, dispatcher)


Stock = Annotated[StockCalculator, Depends(get_stock)]
Costs = Annotated[CostEngine, Depends(get_cost_engine)]
Analytics = Annotated[AnalyticsAggregator, Depends(get_analytics)]
Inventory = Annotated[InventoryService, Depends(get_inventory_service)]
