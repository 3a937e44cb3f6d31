"""
Maintenance: Periodic Store Cleanup
===================================

Deletes rate windows for users inactive longer than a cutoff and purges
expired cache entries. Both operations work in bounded batches and are
safe to run concurrently with live traffic.

Usage:
    python -m orchestration.maintenance
    python -m orchestration.maintenance --older-than-hours 48
"""

import argparse
import asyncio
from typing import Dict, Optional

from loguru import logger

from optimization.cache_manager import ResultCache
from optimization.rate_limiter import AdmissionController


class MaintenanceRunner:
    """Runs one cleanup cycle over admission windows and cached results."""

    def __init__(self, admission: AdmissionController, cache: ResultCache):
        self.admission = admission
        self.cache = cache

    async def run_once(
        self, older_than_hours: int = 24, purge_batch_size: Optional[int] = None
    ) -> Dict[str, int]:
        windows_deleted = await self.admission.cleanup_expired(older_than_hours)
        entries_purged = await self.cache.purge_expired(purge_batch_size)

        logger.info(
            f"Maintenance cycle complete | rate_windows_deleted={windows_deleted} "
            f"| cache_entries_purged={entries_purged}"
        )
        return {
            "rate_windows_deleted": windows_deleted,
            "cache_entries_purged": entries_purged,
        }


async def main(older_than_hours: int) -> Dict[str, int]:
    from container import container_manager

    await container_manager.initialize()
    try:
        runner = container_manager.get_container().maintenance()
        return await runner.run_once(older_than_hours)
    finally:
        await container_manager.cleanup()


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Clean up rate windows and expired cache entries")
    parser.add_argument(
        "--older-than-hours",
        type=int,
        default=24,
        help="Delete rate windows untouched for this many hours",
    )
    args = parser.parse_args()
    asyncio.run(main(args.older_than_hours))
