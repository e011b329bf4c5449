"""
Service layer infrastructure - resilience patterns for the terminology service.

Provides:
- CircuitBreaker: Fails fast while the upstream is unhealthy
- ResilientClient: Timeouts, retries with backoff, cancellation
- TieredCache: Memory LRU tier in front of an optional persistent tier
- SingleFlight: Collapses concurrent identical loads
"""

from medsearch.services.errors import (
    ServiceError,
    ValidationError,
    CacheTierError,
    CircuitOpenError,
    RequestTimeoutError,
    NetworkError,
    ClientError,
    ServerError,
    RequestCancelledError,
)
from medsearch.services.cache import (
    CacheHit,
    CacheTier,
    MemoryCacheTier,
    TieredCache,
)
from medsearch.services.circuit_breaker import (
    CircuitBreaker,
    CircuitBreakerConfig,
    CircuitState,
)
from medsearch.services.singleflight import SingleFlight
from medsearch.services.client import HealthStatus, RequestConfig, ResilientClient

__all__ = [
    # Errors
    "ServiceError",
    "ValidationError",
    "CacheTierError",
    "CircuitOpenError",
    "RequestTimeoutError",
    "NetworkError",
    "ClientError",
    "ServerError",
    "RequestCancelledError",
    # Cache
    "CacheHit",
    "CacheTier",
    "MemoryCacheTier",
    "TieredCache",
    # Circuit Breaker
    "CircuitBreaker",
    "CircuitBreakerConfig",
    "CircuitState",
    # Single flight
    "SingleFlight",
    # Client
    "HealthStatus",
    "RequestConfig",
    "ResilientClient",
]
