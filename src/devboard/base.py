"""
Base classes for service adapters.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import date
from typing import Optional

from .models import CodingSummary, ListeningSummary, RepositorySummary, ServiceId


@dataclass(frozen=True)
class FetchParams:
    """Query parameters passed to every adapter call."""

    page_size: Optional[int] = None
    sort: str = "updated"
    day: Optional[date] = None

    def resolved_day(self) -> date:
        """The day to query, today unless set."""
        return self.day or date.today()


class ServiceAdapter(ABC):
    """Abstract base class for service adapters.

    Adapters are the only code that talks to an external service. They keep
    no state between calls and never retry: retry policy belongs to the
    orchestrator.
    """

    @property
    @abstractmethod
    def service_id(self) -> ServiceId:
        """Return the service this adapter serves."""
        pass

    @abstractmethod
    def fetch_summary(self, secret: str, params: FetchParams):
        """
        Fetch and normalize recent activity.

        Args:
            secret: API key or access token for the service.
            params: Page size, sort order and day to query.

        Returns:
            The service's summary variant.

        Raises:
            AdapterError: Unauthorized, RateLimited, Unreachable or Malformed.
        """
        pass

    @abstractmethod
    def validate_credential(self, secret: str) -> bool:
        """
        Check a secret with a cheap identity call before it is saved.

        Returns:
            True when the service accepts the secret.

        Raises:
            Unauthorized: If the service rejects the secret.
            AdapterError: For transient failures.
        """
        pass


SummaryVariant = (CodingSummary, RepositorySummary, ListeningSummary)
