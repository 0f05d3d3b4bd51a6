#!/usr/bin/env python3
"""
Materialize upcoming games for recurring series.

Usage:
    python scripts/materialize_series.py                # every active series
    python scripts/materialize_series.py --series-id abc123XYZ_-
    python scripts/materialize_series.py --look-ahead-days 60 --max-batch-size 20
    python scripts/materialize_series.py --init-db         # create missing tables first
"""

import argparse
import asyncio
import logging
import os
import sys

from agon.database.db import AsyncSessionLocal, init_database
from agon.services import recurrence_service
from agon.utils.constants import RECURRING_LOOK_AHEAD_DAYS, RECURRING_MAX_BATCH_SIZE

log_level = os.getenv("LOG_LEVEL", "INFO").upper()
logging.basicConfig(
    level=getattr(logging, log_level, logging.INFO),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger("materialize_series")


async def materialize(series_id: str, look_ahead_days: int, max_batch_size: int, init_db: bool = False) -> int:
    """Materialize one series or all active ones. Returns a process exit code."""
    if init_db:
        await init_database()
        logger.info("Database tables ensured")

    async with AsyncSessionLocal() as session:
        if series_id:
            try:
                count = await recurrence_service.materialize(
                    session,
                    series_id,
                    look_ahead_days=look_ahead_days,
                    max_batch_size=max_batch_size,
                )
            except ValueError as e:
                print(f"❌ {e}")
                return 1
            print(f"✓ Series {series_id}: {count} game(s) built")
            return 0

        results = await recurrence_service.materialize_active_series(
            session, look_ahead_days=look_ahead_days, max_batch_size=max_batch_size
        )

    if not results:
        print("No active series materialized.")
        return 0

    print("=" * 60)
    for sid, count in results.items():
        print(f"  {sid}: {count} game(s) built")
    print("=" * 60)
    print(f"✓ {sum(results.values())} game(s) built across {len(results)} series")
    return 0


def main() -> int:
    parser = argparse.ArgumentParser(description="Materialize games for recurring series")
    parser.add_argument("--series-id", type=str, help="Only materialize this series", default=None)
    parser.add_argument(
        "--look-ahead-days", type=int, help="Window horizon in days",
        default=RECURRING_LOOK_AHEAD_DAYS,
    )
    parser.add_argument(
        "--max-batch-size", type=int, help="Maximum games built per series",
        default=RECURRING_MAX_BATCH_SIZE,
    )
    parser.add_argument("--init-db", action="store_true", help="Create missing tables before running")
    args = parser.parse_args()

    return asyncio.run(
        materialize(args.series_id, args.look_ahead_days, args.max_batch_size, init_db=args.init_db)
    )


if __name__ == "__main__":
    sys.exit(main())
