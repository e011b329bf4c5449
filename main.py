"""
medsearch entry point
Loads the catalog, warms the cache and runs the given searches.

Usage: python main.py <query> [<query> ...]
"""

import asyncio
import sys

from loguru import logger

from medsearch.search.scheduler import CacheMaintenanceScheduler
from medsearch.search.service import close_search_service, get_search_service
from medsearch.settings import global_settings


async def main(queries: list[str]) -> None:
    """Main function"""
    logger.info("Starting medsearch...")

    service = get_search_service()
    scheduler = CacheMaintenanceScheduler(
        service,
        cleanup_interval_minutes=global_settings.cleanup_interval_minutes,
        catalog_refresh_hours=global_settings.catalog_refresh_hours,
    )

    try:
        logger.info("Loading medication catalog...")
        await service.initialize()

        scheduler.start()

        for query in queries:
            result = await service.search(query)
            print(
                f"\n{query!r}: {len(result.medications)} results "
                f"from {result.source.value} in {result.search_time_ms:.1f}ms"
            )
            for medication in result.medications:
                marker = "*" if medication.is_starts_with_match else " "
                print(f"  {marker} {medication.name}  [{medication.id}]")

        stats = await service.get_stats()
        logger.info(
            f"Catalog: {stats['search']['total_medications']} medications, "
            f"upstream online: {stats['health']['is_online']}"
        )

    except KeyboardInterrupt:
        logger.info("Received interrupt signal, shutting down...")
    finally:
        if scheduler.is_running():
            scheduler.stop()

        await close_search_service()
        logger.info("medsearch stopped")


if __name__ == "__main__":
    if len(sys.argv) < 2:
        print("Usage: python main.py <query> [<query> ...]")
        sys.exit(1)

    asyncio.run(main(sys.argv[1:]))
