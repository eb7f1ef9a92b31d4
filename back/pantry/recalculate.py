#!/usr/bin/env python3
"""
Analytics recalculation.

Rebuilds the materialized analytics (today's inventory snapshot and every
ingredient's analytics row) from the ledger. Safe to run at any time; the
snapshot tables are pure caches.

Usage:
    python -m pantry.recalculate              # every tenant
    python -m pantry.recalculate --tenant 3   # one tenant
"""
import argparse
import logging
import sys
import time
from dataclasses import dataclass

from sqlmodel import Session, select

from .analytics import AnalyticsAggregator
from .db import engine
from .ledger import LedgerStore
from .models import Tenant
from .stock import StockCalculator

logger = logging.getLogger(__name__)


@dataclass
class RecalculationReport:
    tenants: int = 0
    ingredients: int = 0
    errors: int = 0


def recalculate(session: Session, tenant_ids: list[int] | None = None) -> RecalculationReport:
    """
    Recompute snapshots for the given tenants (all when None).
    A failing snapshot or ingredient is logged and counted; the run carries on.
    """
    if tenant_ids is None:
        tenant_ids = list(session.exec(select(Tenant.id).order_by(Tenant.id)).all())

    ledger = LedgerStore(session)
    analytics = AnalyticsAggregator(ledger, StockCalculator(ledger))
    report = RecalculationReport()

    for tenant_id in tenant_ids:
        started = time.monotonic()
        try:
            analytics.save_daily_snapshot(tenant_id)
        except Exception as e:
            session.rollback()
            report.errors += 1
            logger.error(f"Failed to save snapshot for tenant {tenant_id}: {e}")
        ingredients = ledger.ingredients(tenant_id)
        for ingredient in ingredients:
            try:
                analytics.update_ingredient_analytics(tenant_id, ingredient.id)
                report.ingredients += 1
            except Exception as e:
                session.rollback()
                report.errors += 1
                logger.error(f"Failed to update analytics for ingredient {ingredient.id} ({ingredient.name}): {e}")
        report.tenants += 1
        logger.info(
            f"Tenant {tenant_id}: {len(ingredients)} ingredient(s) processed "
            f"in {time.monotonic() - started:.2f}s"
        )

    return report


def main():
    """Main entry point."""
    # Set up logging for CLI usage
    logging.basicConfig(
        level=logging.INFO,
        format='%(levelname)s: %(message)s'
    )

    parser = argparse.ArgumentParser(description="Recalculate inventory analytics")
    parser.add_argument(
        "--tenant",
        type=int,
        action="append",
        dest="tenants",
        help="Tenant id to recalculate (repeatable; default: all tenants)",
    )
    parser.add_argument(
        "--verbose", "-v",
        action="store_true",
        help="Enable verbose logging",
    )

    args = parser.parse_args()

    if args.verbose:
        logging.getLogger().setLevel(logging.DEBUG)

    try:
        with Session(engine) as session:
            report = recalculate(session, args.tenants)
    except Exception as e:
        logger.error(f"Analytics recalculation failed: {e}")
        sys.exit(1)

    logger.info(
        f"Recalculated {report.tenants} tenant(s), {report.ingredients} ingredient(s), "
        f"{report.errors} error(s)"
    )
    if report.errors:
        sys.exit(1)


if __name__ == "__main__":
    main()
