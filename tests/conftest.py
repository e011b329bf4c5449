"""
Shared pytest fixtures for the medication search tests.

Async code is driven with ``asyncio.run`` from plain test functions. Time is
controlled through injectable clocks and the upstream is an httpx MockTransport.
"""
from datetime import datetime, timedelta

import httpx
import pytest

from medsearch.datasource.formatting import parse_medication
from medsearch.datasource.rxnorm import RxNormSource
from medsearch.services.cache import MemoryCacheTier, TieredCache
from medsearch.services.client import ResilientClient

CATALOG_TERMS = [
    "Lorazepam",
    "Loratadine",
    "Chlorpromazine",
    "Aspirin",
    "Baby Aspirin",
    "Children's Aspirin",
    "Ibuprofen (Advil)",
    "Tylenol [Acetaminophen]",
    "Metformin HCL 500 MG",
]


class FakeClock:
    """Callable clock that only moves when told to."""

    def __init__(self, start: datetime = datetime(2026, 1, 1, 12, 0, 0)):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


class RecordingSleep:
    """Stand-in for asyncio.sleep that records the requested delays."""

    def __init__(self):
        self.delays: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


class FakeRxNorm:
    """
    Scriptable RxNorm displaynames endpoint.

    ``status_code`` other than 200 makes every request fail with that status.
    """

    def __init__(self, terms=None):
        self.terms = list(CATALOG_TERMS if terms is None else terms)
        self.status_code = 200
        self.calls = 0

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.calls += 1
        if self.status_code != 200:
            return httpx.Response(self.status_code, text="upstream error")
        return httpx.Response(200, json={"displayTermsList": {"term": self.terms}})

    def client(self, **kwargs) -> ResilientClient:
        kwargs.setdefault("sleep", RecordingSleep())
        return ResilientClient(
            http_client=httpx.AsyncClient(transport=httpx.MockTransport(self.handler)),
            **kwargs,
        )

    def source(self, clock=None, **kwargs) -> RxNormSource:
        return RxNormSource(
            client=self.client(**kwargs),
            retries=0,
            clock=clock or datetime.now,
        )


def build_catalog(names):
    """Medications the way the RxNorm source builds them."""
    return [parse_medication(name) for name in names]


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def recording_sleep():
    return RecordingSleep()


@pytest.fixture
def rxnorm():
    """Healthy upstream serving CATALOG_TERMS."""
    return FakeRxNorm()


@pytest.fixture
def memory_cache(clock):
    """Memory-only tiered cache on the fake clock."""
    return TieredCache(MemoryCacheTier(max_entries=100, clock=clock))
