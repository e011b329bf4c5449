"""
ResilientClient - Async HTTP client for the terminology service.

Combines:
- CircuitBreaker wrapped around every logical request
- Per-attempt timeout racing
- Bounded retries with exponential backoff
- Cooperative cancellation (by id, by external event, or all at once)
"""

import asyncio
import itertools
import time
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Awaitable, Callable

import httpx
from loguru import logger

from medsearch.services.circuit_breaker import CircuitBreaker, CircuitBreakerConfig
from medsearch.services.errors import (
    ClientError,
    NetworkError,
    RequestCancelledError,
    RequestTimeoutError,
    ServerError,
    ServiceError,
)

DEFAULT_HEADERS = {
    "Content-Type": "application/json",
    "Accept": "application/json",
}


@dataclass
class RequestConfig:
    """A single logical request. ``None`` fields fall back to client defaults."""

    url: str
    method: str = "GET"
    headers: dict[str, str] | None = None
    timeout: float | None = None  # seconds, per attempt
    retries: int | None = None
    retry_delay: float | None = None  # seconds, base of the backoff
    cancel_event: asyncio.Event | None = None


@dataclass
class RequestStats:
    """Aggregate request statistics."""

    total: int = 0
    successful: int = 0
    failed: int = 0
    total_response_time: float = 0.0  # seconds, successful requests only
    last_success_time: datetime | None = None
    last_failure_time: datetime | None = None


@dataclass
class HealthStatus:
    """Health of the upstream as seen by this client."""

    is_online: bool
    last_success_time: datetime | None
    last_failure_time: datetime | None
    total_requests: int
    failure_count: int
    success_rate: float
    average_response_time_ms: float
    in_flight: int
    circuit: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "is_online": self.is_online,
            "last_success_time": (
                self.last_success_time.isoformat() if self.last_success_time else None
            ),
            "last_failure_time": (
                self.last_failure_time.isoformat() if self.last_failure_time else None
            ),
            "total_requests": self.total_requests,
            "failure_count": self.failure_count,
            "success_rate": self.success_rate,
            "average_response_time_ms": round(self.average_response_time_ms, 2),
            "in_flight": self.in_flight,
            "circuit": self.circuit,
        }


class ResilientClient:
    """
    HTTP client with circuit breaker, retries and cancellation.

    Usage:
        client = ResilientClient(service_id="rxnorm")

        data = await client.request(RequestConfig(
            url="https://rxnav.nlm.nih.gov/REST/displaynames.json",
            timeout=30.0,
            retries=2,
        ))

    Attempt 0 runs immediately; attempt ``n`` first waits
    ``retry_delay * 2 ** (n - 1)``. 4xx responses and cancellations are never
    retried. The whole retry loop counts as one call for the breaker.
    """

    def __init__(
        self,
        service_id: str = "rxnorm",
        breaker: CircuitBreaker | None = None,
        breaker_config: CircuitBreakerConfig | None = None,
        default_timeout: float = 10.0,
        max_retries: int = 3,
        retry_delay: float = 0.3,
        http_client: httpx.AsyncClient | None = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        debug: bool = False,
    ):
        if max_retries < 0:
            raise ValueError(f"max_retries must be >= 0, got {max_retries}")

        self.service_id = service_id
        self._breaker = breaker or CircuitBreaker(service_id, breaker_config)
        self._default_timeout = default_timeout
        self._max_retries = max_retries
        self._retry_delay = retry_delay
        self._sleep = sleep
        self._debug = debug

        # HTTP client (lazy initialization unless injected)
        self._http_client = http_client

        self._active_requests: dict[str, asyncio.Task[Any]] = {}
        self._cancelled: set[str] = set()
        self._request_ids = itertools.count(1)
        self._stats = RequestStats()

    @property
    def breaker(self) -> CircuitBreaker:
        return self._breaker

    async def _get_http_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(
                timeout=httpx.Timeout(self._default_timeout),
                follow_redirects=True,
            )
        return self._http_client

    async def request(self, config: RequestConfig) -> Any:
        """
        Make a resilient HTTP request and return the decoded JSON body.

        Raises:
            CircuitOpenError: If the circuit breaker is open
            RequestTimeoutError: If the last attempt timed out
            ClientError: On a 4xx response (not retried)
            ServerError: If the last attempt got a 5xx response
            NetworkError: If the last attempt failed in transport
            RequestCancelledError: If the request was cancelled through this client
            ValueError: If ``config.retries`` is negative
        """
        if config.retries is not None and config.retries < 0:
            raise ValueError(f"retries must be >= 0, got {config.retries}")

        request_id = self._generate_request_id()
        started = time.monotonic()

        task = asyncio.create_task(
            self._breaker.execute(lambda: self._execute_with_retry(config, request_id))
        )
        self._active_requests[request_id] = task

        watcher = None
        if config.cancel_event is not None:
            watcher = asyncio.create_task(
                self._cancel_on_event(config.cancel_event, request_id)
            )

        try:
            result = await task
        except asyncio.CancelledError:
            self._record_failure()
            if request_id in self._cancelled:
                raise RequestCancelledError(self.service_id, request_id) from None
            raise
        except Exception:
            self._record_failure()
            raise
        else:
            self._record_success(time.monotonic() - started)
            return result
        finally:
            self._active_requests.pop(request_id, None)
            self._cancelled.discard(request_id)
            if watcher is not None:
                watcher.cancel()

    async def get(self, url: str, **kwargs: Any) -> Any:
        """Shorthand for a GET ``request``."""
        return await self.request(RequestConfig(url=url, method="GET", **kwargs))

    async def _cancel_on_event(self, event: asyncio.Event, request_id: str) -> None:
        await event.wait()
        self.cancel_request(request_id)

    async def _execute_with_retry(self, config: RequestConfig, request_id: str) -> Any:
        """Run the attempts for one request, backing off between them."""
        retries = config.retries if config.retries is not None else self._max_retries
        retry_delay = (
            config.retry_delay if config.retry_delay is not None else self._retry_delay
        )
        timeout = config.timeout if config.timeout is not None else self._default_timeout
        last_error: ServiceError | None = None

        for attempt in range(retries + 1):
            if attempt > 0:
                backoff = retry_delay * 2 ** (attempt - 1)
                self._log(
                    f"{request_id}: retry {attempt}/{retries} in {backoff:.3f}s "
                    f"({config.url})"
                )
                await self._sleep(backoff)

            try:
                return await self._execute_request(config, timeout)
            except ClientError:
                raise
            except ServiceError as e:
                last_error = e
                if attempt < retries:
                    logger.warning(
                        f"Request to {self.service_id} failed, will retry "
                        f"(attempt {attempt + 1}/{retries + 1}): {e}"
                    )

        logger.error(
            f"All retry attempts exhausted for {config.url} "
            f"({retries} retries): {last_error}"
        )
        raise last_error

    async def _execute_request(self, config: RequestConfig, timeout: float) -> Any:
        """Execute one HTTP attempt, racing it against ``timeout``."""
        client = await self._get_http_client()
        headers = {**DEFAULT_HEADERS, **(config.headers or {})}

        try:
            response = await asyncio.wait_for(
                client.request(
                    method=config.method, url=config.url, headers=headers, timeout=timeout
                ),
                timeout=timeout,
            )
        except asyncio.TimeoutError:
            raise RequestTimeoutError(self.service_id, timeout) from None

        except httpx.TimeoutException as e:
            raise RequestTimeoutError(self.service_id, timeout) from e

        except httpx.RequestError as e:
            raise NetworkError(
                str(e) or type(e).__name__, service_id=self.service_id
            ) from e

        if 400 <= response.status_code < 500:
            raise ClientError(self.service_id, response.status_code, response.text[:200])
        if not response.is_success:
            raise ServerError(self.service_id, response.status_code, response.text[:200])

        try:
            return response.json()
        except ValueError as e:
            raise NetworkError(
                f"Invalid JSON from {config.url}: {e}", service_id=self.service_id
            ) from e

    def cancel_request(self, request_id: str) -> bool:
        """Cancel one in-flight request."""
        task = self._active_requests.get(request_id)
        if task is None or task.done():
            return False
        self._cancelled.add(request_id)
        task.cancel()
        self._log(f"CANCEL: {request_id}")
        return True

    def cancel_all_requests(self) -> int:
        """Cancel every in-flight request."""
        count = 0
        for request_id in list(self._active_requests):
            if self.cancel_request(request_id):
                count += 1
        if count:
            logger.debug(f"Cancelled {count} in-flight requests to {self.service_id}")
        return count

    def get_in_flight_ids(self) -> list[str]:
        return list(self._active_requests)

    def _record_success(self, elapsed: float) -> None:
        self._stats.total += 1
        self._stats.successful += 1
        self._stats.total_response_time += elapsed
        self._stats.last_success_time = datetime.now()

    def _record_failure(self) -> None:
        self._stats.total += 1
        self._stats.failed += 1
        self._stats.last_failure_time = datetime.now()

    def get_health_status(self) -> HealthStatus:
        """Get health status of the upstream."""
        stats = self._stats
        success_rate = stats.successful / stats.total if stats.total else 0.0
        average = (
            stats.total_response_time / stats.successful * 1000
            if stats.successful
            else 0.0
        )
        return HealthStatus(
            is_online=self._breaker.is_healthy,
            last_success_time=stats.last_success_time,
            last_failure_time=stats.last_failure_time,
            total_requests=stats.total,
            failure_count=stats.failed,
            success_rate=success_rate,
            average_response_time_ms=average,
            in_flight=len(self._active_requests),
            circuit=self._breaker.get_stats(),
        )

    def _generate_request_id(self) -> str:
        return f"req-{int(time.time() * 1000)}-{next(self._request_ids)}"

    async def close(self) -> None:
        """Cancel outstanding requests and close the HTTP client."""
        self.cancel_all_requests()
        if self._http_client:
            await self._http_client.aclose()
            self._http_client = None
        logger.debug(f"ResilientClient '{self.service_id}' closed")

    async def __aenter__(self) -> "ResilientClient":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    def _log(self, message: str) -> None:
        """Log debug message if debug mode is enabled."""
        if self._debug:
            logger.debug(f"[ResilientClient] {message}")
