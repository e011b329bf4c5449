"""
Base interface for terminology data sources.
"""

from abc import ABC, abstractmethod
from typing import Generic, TypeVar

from pydantic import BaseModel

from medsearch.services.client import ResilientClient

T = TypeVar("T", bound=BaseModel)


class BaseDataSource(ABC, Generic[T]):
    """
    Abstract base class for upstream terminology sources.

    All data sources should:
    - Use ResilientClient for HTTP requests (circuit breaker, retries, cancellation)
    - Return Pydantic models
    - Handle upstream errors gracefully (never raise out of their fetch methods)
    """

    def __init__(self, client: ResilientClient | None = None):
        self.client = client or ResilientClient(service_id=self.service_id)

    @property
    @abstractmethod
    def service_id(self) -> str:
        """Identifier shared by the client, its breaker and log lines."""
        ...

    @abstractmethod
    def is_configured(self) -> bool:
        """Whether enough configuration is present to call the upstream."""
        ...
