"""
Search module
Exports the search service and its maintenance scheduler.
"""

from medsearch.search.scheduler import CacheMaintenanceScheduler
from medsearch.search.service import (
    MedicationSearchService,
    close_search_service,
    get_search_service,
)

__all__ = [
    "CacheMaintenanceScheduler",
    "MedicationSearchService",
    "close_search_service",
    "get_search_service",
]
