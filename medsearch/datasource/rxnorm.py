"""
RxNorm displaynames data source.

API Documentation: https://lhncbc.nlm.nih.gov/RxNav/APIs/api-RxNorm.getDisplayTerms.html
One GET returns every display name (tens of thousands of strings), so the
result is kept for ``cache_validity`` and only refetched after that.
"""

from datetime import datetime, timedelta
from typing import Any, Callable

from loguru import logger

from medsearch.datasource.base import BaseDataSource
from medsearch.datasource.formatting import normalize_display_name, parse_medication
from medsearch.models import Medication
from medsearch.services.client import HealthStatus, RequestConfig, ResilientClient


def catalog_sort_key(medication: Medication) -> tuple[str, str]:
    """Alphabetical, case-insensitive, exact name breaking ties."""
    return (medication.name.casefold(), medication.name)


class RxNormSource(BaseDataSource[Medication]):
    """
    RxNorm terminology data source.

    Fetches the full display-name list and turns it into deduplicated,
    sorted Medication objects. Never raises: on failure it serves the last
    good list (even if stale) or an empty one.
    """

    BASE_URL = "https://rxnav.nlm.nih.gov/REST"
    ENDPOINT = "/displaynames.json"
    SERVICE_ID = "rxnorm"

    def __init__(
        self,
        client: ResilientClient | None = None,
        base_url: str | None = None,
        endpoint: str | None = None,
        timeout: float = 30.0,
        retries: int = 2,
        cache_validity: timedelta = timedelta(hours=6),
        clock: Callable[[], datetime] = datetime.now,
    ):
        super().__init__(client)
        self.base_url = (self.BASE_URL if base_url is None else base_url).rstrip("/")
        self.endpoint = endpoint or self.ENDPOINT
        self.timeout = timeout
        self.retries = retries
        self.cache_validity = cache_validity
        self._clock = clock

        self._cached: list[Medication] | None = None
        self.last_fetch_time: datetime | None = None

    @property
    def service_id(self) -> str:
        return self.SERVICE_ID

    @property
    def url(self) -> str:
        return f"{self.base_url}{self.endpoint}"

    def is_configured(self) -> bool:
        """RxNav is a public API, only the URL is needed."""
        return bool(self.base_url)

    async def fetch_display_names(self, force_refresh: bool = False) -> list[Medication]:
        """
        Fetch all display names as Medication objects.

        Args:
            force_refresh: Ignore the still-valid previous result

        Returns:
            Sorted, deduplicated medications; stale or empty on failure
        """
        if not force_refresh and self._cached is not None and self.last_fetch_time:
            age = self._clock() - self.last_fetch_time
            if age < self.cache_validity:
                logger.debug(
                    f"Using cached RxNorm display names "
                    f"(age {int(age.total_seconds() // 60)} min, {len(self._cached)} items)"
                )
                return self._cached

        try:
            logger.info("Fetching RxNorm display names...")
            started = self._clock()

            data = await self.client.request(
                RequestConfig(url=self.url, timeout=self.timeout, retries=self.retries)
            )
            medications = self._transform_response(data)

            self._cached = medications
            self.last_fetch_time = self._clock()
            elapsed = (self.last_fetch_time - started).total_seconds()
            logger.info(
                f"Fetched {len(medications)} medications from RxNorm in {elapsed:.2f}s"
            )
            return medications

        except Exception as e:
            logger.error(f"Failed to fetch RxNorm display names: {e}")

            if self._cached is not None:
                logger.warning("Using stale RxNorm data due to upstream failure")
                return self._cached
            return []

    def _transform_response(self, data: Any) -> list[Medication]:
        """Transform a displaynames response into sorted unique Medications."""
        if isinstance(data, dict):
            terms = (data.get("displayTermsList") or {}).get("term") or []
        elif isinstance(data, list):
            terms = data
        else:
            logger.warning(f"Unexpected RxNorm response type: {type(data).__name__}")
            return []

        if not terms:
            logger.warning("No medications found in RxNorm response")
            return []

        by_key: dict[str, Medication] = {}
        for term in terms:
            if not isinstance(term, str) or not term.strip():
                continue

            name = normalize_display_name(term)
            key = name.lower()
            if key in by_key:
                continue
            by_key[key] = parse_medication(name)

        medications = sorted(by_key.values(), key=catalog_sort_key)
        logger.debug(
            f"Processed {len(medications)} unique medications "
            f"from {len(terms)} display names"
        )
        return medications

    def get_health_status(self) -> HealthStatus:
        return self.client.get_health_status()

    def cancel_all_requests(self) -> int:
        return self.client.cancel_all_requests()

    async def close(self) -> None:
        await self.client.close()
