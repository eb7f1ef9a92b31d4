"""
Tenant and reference-directory models.

Categories, units, suppliers, storage locations, ingredients, recipes and
menu plans are owned by the directory services; the ledger only joins
against them by id. Every row belongs to exactly one tenant and names are
unique per tenant.
"""

from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum

from sqlalchemy import Numeric, UniqueConstraint
from sqlmodel import Field, Relationship, SQLModel


class UnitType(str, Enum):
    weight = "weight"
    volume = "volume"
    count = "count"
    other = "other"


class Tenant(SQLModel, table=True):
    id: int | None = Field(default=None, primary_key=True)
    name: str = Field(index=True)
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class TenantMixin(SQLModel):
    tenant_id: int = Field(foreign_key="tenant.id", index=True)


class Category(TenantMixin, table=True):
    """Ingredient categories (Dairy, Produce, ...)"""
    __tablename__ = "categories"
    __table_args__ = (UniqueConstraint("tenant_id", "name"),)

    id: int | None = Field(default=None, primary_key=True)
    name: str
    description: str | None = None
    color: str | None = None  # Hex colour used by charts
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    updated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class Unit(TenantMixin, table=True):
    __tablename__ = "units"
    __table_args__ = (UniqueConstraint("tenant_id", "name"),)

    id: int | None = Field(default=None, primary_key=True)
    name: str
    type: UnitType = Field(default=UnitType.count)
    symbol: str | None = None
    description: str | None = None
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    updated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class Supplier(TenantMixin, table=True):
    __tablename__ = "suppliers"
    __table_args__ = (UniqueConstraint("tenant_id", "name"),)

    id: int | None = Field(default=None, primary_key=True)
    name: str
    contact_info: str | None = None
    notes: str | None = None
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    updated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class StorageLocation(TenantMixin, table=True):
    """Walk-in, dry store, freezer..."""
    __tablename__ = "storage_locations"
    __table_args__ = (UniqueConstraint("tenant_id", "name"),)

    id: int | None = Field(default=None, primary_key=True)
    name: str
    description: str | None = None
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    updated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class Ingredient(TenantMixin, table=True):
    """
    Raw ingredient tracked by the ledger.
    Low stock when the remaining quantity summed over all lots drops
    below restock_threshold.
    """
    __tablename__ = "ingredients"
    __table_args__ = (UniqueConstraint("tenant_id", "name"),)

    id: int | None = Field(default=None, primary_key=True)
    name: str = Field(index=True)
    category_id: int = Field(foreign_key="categories.id", index=True)
    unit_id: int = Field(foreign_key="units.id")
    restock_threshold: Decimal = Field(
        default=Decimal("0"),
        sa_type=Numeric(12, 4),
    )
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    updated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class RecipeCategory(TenantMixin, table=True):
    __tablename__ = "recipe_categories"
    __table_args__ = (UniqueConstraint("tenant_id", "name"),)

    id: int | None = Field(default=None, primary_key=True)
    name: str
    description: str | None = None
    color: str | None = None


class Recipe(TenantMixin, table=True):
    """A recipe with a base serving size; lines scale with servings / serves"""
    __tablename__ = "recipes"
    __table_args__ = (UniqueConstraint("tenant_id", "name"),)

    id: int | None = Field(default=None, primary_key=True)
    name: str = Field(index=True)
    category_id: int | None = Field(default=None, foreign_key="recipe_categories.id")
    description: str | None = None
    instructions: str = ""
    serves: Decimal = Field(sa_type=Numeric(12, 4))
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    updated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    ingredients: list["RecipeIngredient"] = Relationship(back_populates="recipe")


class RecipeIngredient(SQLModel, table=True):
    __tablename__ = "recipe_ingredients"

    id: int | None = Field(default=None, primary_key=True)
    recipe_id: int = Field(foreign_key="recipes.id", index=True)
    ingredient_id: int = Field(foreign_key="ingredients.id", index=True)
    # Quantity for the recipe's base serving size
    quantity: Decimal = Field(sa_type=Numeric(12, 4))

    recipe: Recipe = Relationship(back_populates="ingredients")


class MenuPlan(TenantMixin, table=True):
    __tablename__ = "menu_plans"
    __table_args__ = (UniqueConstraint("tenant_id", "name"),)

    id: int | None = Field(default=None, primary_key=True)
    name: str
    description: str | None = None
    is_template: bool = Field(default=False)
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    updated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    items: list["MenuItem"] = Relationship(back_populates="menu_plan")


class MenuItem(SQLModel, table=True):
    __tablename__ = "menu_items"

    id: int | None = Field(default=None, primary_key=True)
    menu_plan_id: int = Field(foreign_key="menu_plans.id", index=True)
    recipe_id: int = Field(foreign_key="recipes.id", index=True)
    servings: Decimal = Field(sa_type=Numeric(12, 4))
    notes: str | None = None
    order: int | None = None

    menu_plan: MenuPlan = Relationship(back_populates="items")
