"""
Service layer exceptions.

Only ``ValidationError`` and the HTTP-level errors ever reach callers of the
search service directly; everything else is recovered inside the service and
surfaces through health statistics.
"""


class ServiceError(Exception):
    """Base exception for service layer errors."""

    def __init__(self, message: str, service_id: str | None = None):
        self.service_id = service_id
        super().__init__(message)


class ValidationError(ServiceError):
    """Search query rejected before any cache or catalog access."""

    def __init__(self, query: str, min_length: int):
        self.query = query
        self.min_length = min_length
        super().__init__(
            f"Query '{query}' is shorter than the minimum length {min_length}"
        )


class CacheTierError(ServiceError):
    """Persistent cache tier unavailable or over quota."""

    pass


class CircuitOpenError(ServiceError):
    """Circuit breaker is open, request blocked."""

    def __init__(self, service_id: str, reset_after_seconds: float):
        self.reset_after_seconds = reset_after_seconds
        super().__init__(
            f"Circuit breaker open for service '{service_id}', "
            f"retry after {reset_after_seconds:.1f}s",
            service_id=service_id,
        )


class RequestTimeoutError(ServiceError):
    """Request timed out."""

    def __init__(self, service_id: str, timeout: float):
        self.timeout = timeout
        super().__init__(
            f"Request to service '{service_id}' timed out after {timeout}s",
            service_id=service_id,
        )


class NetworkError(ServiceError):
    """Transport failure (connection refused, DNS, reset, bad payload)."""

    pass


class HTTPStatusError(ServiceError):
    """Upstream answered with a non-success status."""

    def __init__(self, service_id: str, status_code: int, detail: str = ""):
        self.status_code = status_code
        message = f"HTTP {status_code}"
        if detail:
            message += f": {detail}"
        super().__init__(message, service_id=service_id)


class ClientError(HTTPStatusError):
    """Upstream 4xx. Retrying will not help."""

    pass


class ServerError(HTTPStatusError):
    """Upstream 5xx. Retried."""

    pass


class RequestCancelledError(ServiceError):
    """Request was cancelled by id, by external event or by cancel-all."""

    def __init__(self, service_id: str, request_id: str):
        self.request_id = request_id
        super().__init__(
            f"Request '{request_id}' to service '{service_id}' was cancelled",
            service_id=service_id,
        )
