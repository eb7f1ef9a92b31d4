import logging
from collections.abc import Iterator

from sqlalchemy.pool import StaticPool
from sqlmodel import Session, SQLModel, create_engine, text

from .settings import settings

logger = logging.getLogger(__name__)


def build_engine(url: str):
    """Create an engine; in-memory SQLite shares a single connection."""
    if url.startswith("sqlite"):
        return create_engine(
            url,
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )
    return create_engine(url, pool_pre_ping=True)


engine = build_engine(settings.database_url)


def create_db_and_tables(bind=None) -> None:
    # Import table modules so they register on SQLModel.metadata
    from . import inventory_models, models  # noqa: F401

    SQLModel.metadata.create_all(bind or engine)


def check_db_connection(bind=None) -> None:
    with Session(bind or engine) as session:
        session.exec(text("SELECT 1"))
    logger.info("Database connection OK")


def get_session() -> Iterator[Session]:
    with Session(engine) as session:
        yield session
