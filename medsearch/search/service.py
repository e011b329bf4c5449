"""
MedicationSearchService - Façade over cache, catalog and ranking.

Search flow:
1. Normalize and validate the query (too short -> empty result, nothing touched)
2. Tiered cache lookup (memory, then persistent)
3. On miss: make sure the catalog is loaded (single-flight), rank, cache, return

``search`` never raises for the caller: anything other than a validation
failure is logged and turned into an empty result. Upstream health is visible
through ``get_stats()["health"]``.
"""

import asyncio
import time
from datetime import datetime, timedelta
from typing import Any, Callable

from loguru import logger

from medsearch.datasource.rxnorm import RxNormSource
from medsearch.models import (
    Catalog,
    Medication,
    RankedResults,
    ResultSource,
    SearchOptions,
    SearchQuery,
    SearchResult,
)
from medsearch.search.ranking import finalize, rank
from medsearch.services.cache import MEMORY_TIER, MemoryCacheTier, TieredCache
from medsearch.services.circuit_breaker import CircuitBreaker, CircuitBreakerConfig
from medsearch.services.client import ResilientClient
from medsearch.services.errors import ValidationError
from medsearch.services.persistent_cache import PersistentCacheTier
from medsearch.services.singleflight import SingleFlight
from medsearch.settings import Settings, global_settings

CATALOG_FLIGHT = "catalog"
CATALOG_REFRESH_FLIGHT = "catalog-refresh"

WARM_UP_PREFIX_LIMIT = 50
WARM_UP_NAME_LIMIT = 15

# Cached rankings hold at least this many matches, whatever the request limit
CACHE_DEPTH = 100

# Common one- and two-letter prefixes typed first
COMMON_PREFIXES = [
    "a", "b", "c", "d", "e", "f", "g", "h", "i", "l", "m",
    "n", "o", "p", "r", "s", "t", "v", "w", "z",
    "as", "at", "bu", "ca", "ce", "cl", "co", "di", "do",
    "es", "fl", "ga", "hy", "ib", "in", "li", "lo", "me",
    "mo", "na", "ni", "om", "ox", "pa", "pr", "se", "si",
    "tr", "va", "vi", "wa", "zi",
]

# Most prescribed medications
COMMON_MEDICATIONS = [
    "aspirin", "ibuprofen", "acetaminophen", "amoxicillin",
    "lisinopril", "metformin", "atorvastatin", "metoprolol",
    "omeprazole", "simvastatin", "losartan", "gabapentin",
    "sertraline", "levothyroxine", "amlodipine", "prednisone",
]


class MedicationSearchService:
    """
    Resilient medication search.

    Usage:
        service = MedicationSearchService.from_settings()
        result = await service.search("lora", SearchOptions(limit=10))
        for medication in result.medications:
            print(medication.name, medication.is_starts_with_match)
    """

    def __init__(
        self,
        source: RxNormSource | None = None,
        cache: TieredCache | None = None,
        min_search_length: int = 1,
        max_search_results: int = 15,
        warm_up: bool = True,
        warm_up_ttl: timedelta = timedelta(days=7),
        catalog_refresh_interval: timedelta = timedelta(hours=6),
        catalog_retry_interval: timedelta = timedelta(seconds=60),
        clock: Callable[[], datetime] = datetime.now,
        debug: bool = False,
    ):
        self._source = source or RxNormSource()
        self._cache = cache or TieredCache(debug=debug)
        self._min_search_length = min_search_length
        self._max_search_results = max_search_results
        self._warm_up_enabled = warm_up
        self._warm_up_ttl = warm_up_ttl
        self._catalog_refresh_interval = catalog_refresh_interval
        self._catalog_retry_interval = catalog_retry_interval
        self._clock = clock
        self._debug = debug

        self._catalog = Catalog()
        self._initialized = False
        self._last_load_attempt: datetime | None = None
        self._flight = SingleFlight(debug=debug)
        self._refresh_task: asyncio.Task[Any] | None = None

    @classmethod
    def from_settings(cls, settings: Settings | None = None) -> "MedicationSearchService":
        """Wire every component from configuration."""
        settings = settings or global_settings

        breaker = CircuitBreaker(
            RxNormSource.SERVICE_ID,
            CircuitBreakerConfig(
                failure_threshold=settings.failure_threshold,
                reset_timeout=timedelta(seconds=settings.reset_timeout_seconds),
                half_open_requests=settings.half_open_requests,
            ),
        )
        client = ResilientClient(
            service_id=RxNormSource.SERVICE_ID,
            breaker=breaker,
            default_timeout=settings.request_timeout_seconds,
            max_retries=settings.max_retries,
            retry_delay=settings.retry_delay_ms / 1000,
            debug=settings.debug,
        )
        source = RxNormSource(
            client=client,
            base_url=settings.rxnorm_base_url,
            endpoint=settings.display_names_endpoint,
            timeout=settings.catalog_timeout_seconds,
            retries=settings.catalog_retries,
            cache_validity=timedelta(hours=settings.catalog_refresh_hours),
        )

        persistent = None
        if settings.persistent_cache_enabled:
            persistent = PersistentCacheTier(
                settings.cache_database_url,
                max_size_bytes=settings.max_persistent_size_bytes,
                default_ttl=timedelta(hours=settings.persistent_ttl_hours),
                echo=settings.database_echo,
                debug=settings.debug,
            )
        cache = TieredCache(
            memory=MemoryCacheTier(
                max_entries=settings.max_memory_entries,
                default_ttl=timedelta(minutes=settings.memory_ttl_minutes),
                debug=settings.debug,
            ),
            persistent=persistent,
            eviction_policy=settings.eviction_policy,
            debug=settings.debug,
        )

        return cls(
            source=source,
            cache=cache,
            min_search_length=settings.min_search_length,
            max_search_results=settings.max_search_results,
            warm_up_ttl=timedelta(days=settings.warm_up_ttl_days),
            catalog_refresh_interval=timedelta(hours=settings.catalog_refresh_hours),
            catalog_retry_interval=timedelta(seconds=settings.reset_timeout_seconds),
            debug=settings.debug,
        )

    @property
    def catalog(self) -> Catalog:
        return self._catalog

    @property
    def cache(self) -> TieredCache:
        return self._cache

    @property
    def is_initialized(self) -> bool:
        return self._initialized

    # Catalog lifecycle

    async def initialize(self) -> None:
        """Load the catalog if it has never been loaded. Safe to call concurrently."""
        if not self._initialized:
            await self._flight.do(CATALOG_FLIGHT, self._load_catalog)

    async def refresh_catalog(self, force: bool = False) -> Catalog:
        """
        Replace the catalog with a fresh fetch (or the adapter's still-valid one).

        A forced refresh runs in its own flight and does not join a non-forced
        load already in progress.
        """
        if force:
            await self._flight.do(
                CATALOG_REFRESH_FLIGHT, lambda: self._load_catalog(force_refresh=True)
            )
        else:
            await self._flight.do(CATALOG_FLIGHT, self._load_catalog)
        return self._catalog

    def _catalog_loading(self) -> bool:
        return self._flight.is_in_flight(CATALOG_FLIGHT) or self._flight.is_in_flight(
            CATALOG_REFRESH_FLIGHT
        )

    async def _ensure_catalog(self) -> None:
        """
        Block on the first load; afterwards refresh stale catalogs in the background.

        An empty catalog (upstream down at startup) is retried at most once per
        ``catalog_retry_interval`` so searches do not pile onto a dead upstream.
        """
        if not self._initialized:
            await self.initialize()
            return

        now = self._clock()
        retry_due = (
            self._last_load_attempt is None
            or now - self._last_load_attempt >= self._catalog_retry_interval
        )

        if self._catalog.is_empty:
            if retry_due:
                await self._flight.do(CATALOG_FLIGHT, self._load_catalog)
            return

        fetched_at = self._catalog.fetched_at
        is_stale = fetched_at is None or now - fetched_at >= self._catalog_refresh_interval
        if is_stale and retry_due and not self._catalog_loading():
            if self._refresh_task is None or self._refresh_task.done():
                logger.info("Catalog is stale, refreshing in the background")
                self._refresh_task = asyncio.create_task(self._background_refresh())

    async def _background_refresh(self) -> None:
        try:
            await self.refresh_catalog()
        except Exception as e:
            logger.error(f"Background catalog refresh failed: {e}")

    async def _load_catalog(self, force_refresh: bool = False) -> None:
        self._last_load_attempt = self._clock()
        started = time.monotonic()
        logger.info("Loading medication catalog...")

        if self._source.is_configured():
            medications = await self._source.fetch_display_names(
                force_refresh=force_refresh
            )
        else:
            logger.warning(
                f"Data source '{self._source.service_id}' is not configured, "
                "skipping catalog fetch"
            )
            medications = []
        previous = self._catalog
        catalog = Catalog(
            medications=tuple(medications),
            fetched_at=self._source.last_fetch_time if medications else None,
        )

        # Swap, never mutate: in-flight searches keep their own snapshot
        self._catalog = catalog
        self._initialized = True

        if catalog.is_empty:
            logger.warning(
                "Medication catalog is empty, searches return no results "
                "until the terminology service recovers"
            )
            return

        is_new = catalog.fetched_at != previous.fetched_at
        if is_new and self._warm_up_enabled:
            await self.warm_up_cache(catalog)

        elapsed_ms = (time.monotonic() - started) * 1000
        logger.info(
            f"Medication catalog ready in {elapsed_ms:.0f}ms "
            f"({len(catalog)} medications)"
        )

    async def warm_up_cache(self, catalog: Catalog | None = None) -> None:
        """Pre-populate the cache with common prefixes and medication names."""
        catalog = catalog or self._catalog
        if catalog.is_empty:
            return

        try:
            for prefix in COMMON_PREFIXES:
                ranked = rank(catalog.medications, prefix)
                await self._cache.set(
                    prefix, self._cacheable(ranked, WARM_UP_PREFIX_LIMIT), self._warm_up_ttl
                )

            for name in COMMON_MEDICATIONS:
                ranked = rank(catalog.medications, name)
                await self._cache.set(
                    name, self._cacheable(ranked, WARM_UP_NAME_LIMIT), self._warm_up_ttl
                )

            logger.info(
                f"Cache warmed up with {len(COMMON_PREFIXES) + len(COMMON_MEDICATIONS)} "
                "common searches"
            )
        except Exception as e:
            logger.error(f"Failed to warm up cache: {e}")

    # Search

    def _parse_query(self, raw: str, options: SearchOptions) -> SearchQuery:
        text = SearchQuery.normalize(raw)
        if len(text) < self._min_search_length:
            raise ValidationError(text, self._min_search_length)
        return SearchQuery(text=text, options=options)

    async def search(
        self, query: str, options: SearchOptions | None = None
    ) -> SearchResult:
        """
        Search medications.

        Args:
            query: Free text typed by the user
            options: Result limit and generic-name handling

        Returns:
            SearchResult, empty if the query is too short or anything failed
        """
        options = options or SearchOptions()
        started = time.monotonic()

        try:
            parsed = self._parse_query(query, options)
        except ValidationError:
            return SearchResult(
                medications=[],
                source=ResultSource.MEMORY_CACHE,
                search_time_ms=0.0,
                query=SearchQuery.normalize(query),
            )

        try:
            return await self._search(parsed, started)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(f"Search failed for '{parsed.text}': {e}")
            return SearchResult(
                medications=[],
                source=ResultSource.CATALOG,
                search_time_ms=self._elapsed_ms(started),
                query=parsed.text,
            )

    async def _search(self, query: SearchQuery, started: float) -> SearchResult:
        limit = query.options.limit or self._max_search_results
        include_generics = query.options.include_generics

        hit = await self._cache.get(query.text)
        cached = hit.data if hit is not None else None
        if isinstance(cached, RankedResults) and cached.covers(limit):
            source = (
                ResultSource.MEMORY_CACHE
                if hit.tier == MEMORY_TIER
                else ResultSource.PERSISTENT_CACHE
            )
            medications = finalize(cached.medications, query.text, limit, include_generics)
            self._log(f"Cache hit ({source.value}): '{query.text}' -> {len(medications)}")
            return SearchResult(
                medications=medications,
                source=source,
                search_time_ms=self._elapsed_ms(started),
                query=query.text,
            )

        await self._ensure_catalog()
        catalog = self._catalog

        ranked = rank(catalog.medications, query.text)
        if not catalog.is_empty:
            depth = max(limit, self._max_search_results, CACHE_DEPTH)
            await self._cache.set(query.text, self._cacheable(ranked, depth))

        medications = finalize(ranked, query.text, limit, include_generics)
        result = SearchResult(
            medications=medications,
            source=ResultSource.CATALOG,
            search_time_ms=self._elapsed_ms(started),
            query=query.text,
        )
        self._log(
            f"Search completed: '{query.text}' -> {len(medications)} "
            f"in {result.search_time_ms:.1f}ms"
        )
        return result

    async def get_medication(self, medication_id: str) -> Medication | None:
        """Look a medication up by id in the current catalog."""
        await self._ensure_catalog()
        return self._catalog.get(medication_id)

    # Management

    async def clear_cache(self) -> None:
        await self._cache.clear()

    async def get_stats(self) -> dict[str, Any]:
        """Cache, upstream health and catalog statistics."""
        return {
            "cache": await self._cache.get_stats(),
            "health": self._source.get_health_status().to_dict(),
            "search": {
                "total_medications": len(self._catalog),
                "is_initialized": self._initialized,
                "catalog_fetched_at": (
                    self._catalog.fetched_at.isoformat()
                    if self._catalog.fetched_at
                    else None
                ),
                "catalog_loading": self._catalog_loading(),
                "catalog_loads": self._flight.get_stats().to_dict(),
            },
        }

    def cancel_all_requests(self) -> int:
        return self._source.cancel_all_requests()

    async def close(self) -> None:
        if self._refresh_task is not None and not self._refresh_task.done():
            self._refresh_task.cancel()
        await self._flight.cancel_all()
        await self._source.close()
        await self._cache.close()
        logger.debug("MedicationSearchService closed")

    @staticmethod
    def _cacheable(ranked: list[Medication], depth: int) -> RankedResults:
        return RankedResults(medications=ranked[:depth], complete=len(ranked) <= depth)

    @staticmethod
    def _elapsed_ms(started: float) -> float:
        return (time.monotonic() - started) * 1000

    def _log(self, message: str) -> None:
        """Log debug message if debug mode is enabled."""
        if self._debug:
            logger.debug(f"[MedicationSearchService] {message}")


# Global service instance
_global_service: MedicationSearchService | None = None


def get_search_service() -> MedicationSearchService:
    """Get the global search service instance."""
    global _global_service
    if _global_service is None:
        _global_service = MedicationSearchService.from_settings()
    return _global_service


async def close_search_service() -> None:
    """Close the global search service."""
    global _global_service
    if _global_service:
        await _global_service.close()
        _global_service = None
