"""
Shared fixtures: an in-memory SQLite database per test, one tenant with a
small directory (category, unit, supplier, two storage locations) and
factories for ingredients, purchases and recipes.
"""

import os

# Must be set before pantry.settings is imported
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["ANALYTICS_WORKER_ENABLED"] = "false"

from datetime import date
from decimal import Decimal
from types import SimpleNamespace

import pytest
from sqlalchemy import event
from sqlmodel import Session

from pantry.db import build_engine, create_db_and_tables
from pantry.inventory_models import PurchaseCreate
from pantry.inventory_service import InventoryService
from pantry.ledger import LedgerStore
from pantry.models import (
    Category,
    Ingredient,
    MenuItem,
    MenuPlan,
    Recipe,
    RecipeIngredient,
    StorageLocation,
    Supplier,
    Tenant,
    Unit,
    UnitType,
)
from pantry.stock import StockCalculator
from pantry.tasks import AnalyticsDispatcher


@pytest.fixture
def engine():
    engine = build_engine("sqlite://")
    create_db_and_tables(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def count_queries(engine):
    """SELECT statements issued while the test runs"""
    statements = []

    def before_cursor_execute(conn, cursor, statement, parameters, context, executemany):
        if statement.lstrip().upper().startswith("SELECT"):
            statements.append(statement)

    event.listen(engine, "before_cursor_execute", before_cursor_execute)
    yield statements
    event.remove(engine, "before_cursor_execute", before_cursor_execute)


@pytest.fixture
def session(engine):
    with Session(engine) as session:
        yield session


@pytest.fixture
def ledger(session):
    return LedgerStore(session)


@pytest.fixture
def stock(ledger):
    return StockCalculator(ledger)


@pytest.fixture
def dispatcher(engine):
    # Never started; tests run queued tasks with drain()
    return AnalyticsDispatcher(engine)


@pytest.fixture
def service(ledger, stock, dispatcher):
    return InventoryService(ledger, stock, dispatcher)


def _add_tenant(session, name):
    tenant = Tenant(name=name)
    session.add(tenant)
    session.commit()
    session.refresh(tenant)
    return tenant


def _directory(ledger, tenant_id):
    return SimpleNamespace(
        category=ledger.create_named(Category, tenant_id, name="Produce", color="#22AA22"),
        unit=ledger.create_named(Unit, tenant_id, name="kg", type=UnitType.weight, symbol="kg"),
        supplier=ledger.create_named(Supplier, tenant_id, name="Acme Foods"),
        walk_in=ledger.create_named(StorageLocation, tenant_id, name="Walk-in"),
        dry_store=ledger.create_named(StorageLocation, tenant_id, name="Dry store"),
    )


@pytest.fixture
def tenant(session):
    return _add_tenant(session, "Bistro")


@pytest.fixture
def other_tenant(session):
    return _add_tenant(session, "Cantina")


@pytest.fixture
def directory(ledger, tenant):
    return _directory(ledger, tenant.id)


@pytest.fixture
def make_ingredient(ledger, tenant, directory):
    def _make(name, restock_threshold="0", category=None):
        return ledger.create_named(
            Ingredient,
            tenant.id,
            name=name,
            category_id=(category or directory.category).id,
            unit_id=directory.unit.id,
            restock_threshold=Decimal(restock_threshold),
        )
    return _make


@pytest.fixture
def buy(service, tenant, directory):
    """Record a purchase through the service; quantity and price as strings"""
    def _buy(ingredient, quantity, price, on=date(2024, 1, 1), location=None, supplier=None, **extra):
        return service.record_purchase(
            tenant.id,
            PurchaseCreate(
                ingredient_id=ingredient.id,
                storage_location_id=(location or directory.walk_in).id,
                supplier_id=(supplier or directory.supplier).id,
                quantity=Decimal(quantity),
                purchase_price=Decimal(price),
                purchase_date=on,
                **extra,
            ),
        )
    return _buy


@pytest.fixture
def make_recipe(session, tenant):
    """make_recipe("Soup", serves="4", lines=[(onion, "2"), ...])"""
    def _make(name, serves="4", lines=()):
        recipe = Recipe(tenant_id=tenant.id, name=name, serves=Decimal(serves))
        session.add(recipe)
        session.flush()
        for ingredient, quantity in lines:
            session.add(RecipeIngredient(
                recipe_id=recipe.id, ingredient_id=ingredient.id, quantity=Decimal(quantity)
            ))
        session.commit()
        session.refresh(recipe)
        return recipe
    return _make


@pytest.fixture
def make_menu(session, tenant):
    """make_menu("Week 1", [(recipe, "8"), ...])"""
    def _make(name, items=()):
        menu = MenuPlan(tenant_id=tenant.id, name=name)
        session.add(menu)
        session.flush()
        for position, (recipe, servings) in enumerate(items):
            session.add(MenuItem(
                menu_plan_id=menu.id, recipe_id=recipe.id, servings=Decimal(servings), order=position
            ))
        session.commit()
        session.refresh(menu)
        return menu
    return _make
