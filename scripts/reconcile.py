#!/usr/bin/env python3
"""Escrow state reconciliation script.

Finds work that deferred tasks never finished (the bot was stopped while a
reservation timer or a teardown was still waiting) and finishes it.

Usage:
    python scripts/reconcile.py [--dry-run]

Options:
    --dry-run  Show what would be done without making changes
"""

import argparse
import asyncio
import logging
from datetime import timedelta

from dotenv import load_dotenv

from escrowbot.config import get_settings
from escrowbot.ledger.database import close_db, get_db, init_db
from escrowbot.ledger.repository import LedgerRepository, utcnow
from escrowbot.services import get_order_service, get_reservation_service, shutdown_services

load_dotenv()

logging.basicConfig(level=logging.INFO, format="%(asctime)s - %(levelname)s - %(message)s")
logger = logging.getLogger(__name__)


async def report() -> tuple[list[int], list[int]]:
    """Stale reservations and sold accounts still waiting for teardown."""
    settings = get_settings()
    cutoff = utcnow() - timedelta(seconds=settings.reservation_timeout_seconds)

    async with get_db() as session:
        repo = LedgerRepository(session)
        stale = await repo.get_expired_reservations(cutoff)
        sold = await repo.get_sold_account_ids()
    return stale, sold


async def main():
    parser = argparse.ArgumentParser(description="Escrow state reconciliation")
    parser.add_argument("--dry-run", action="store_true", help="Show what would be done")
    args = parser.parse_args()

    await init_db()
    try:
        stale, sold = await report()
        print("=" * 60)
        print("ESCROW RECONCILIATION")
        print("=" * 60)
        print(f"Stale reservations: {stale or 'none'}")
        print(f"Sold accounts awaiting teardown: {sold or 'none'}")

        if args.dry_run:
            print("\n[DRY RUN] No changes made")
            return

        released = await get_reservation_service().release_expired()
        purged = await get_order_service().purge_sold_accounts()
        print(f"\nReleased {len(released)} reservation(s): {released}")
        print(f"Deleted {len(purged)} sold account(s): {purged}")
    finally:
        await shutdown_services()
        await close_db()


if __name__ == "__main__":
    asyncio.run(main())
