"""
Devboard
--------
Credential-gated aggregation of coding (WakaTime), repository (GitHub) and
listening (Spotify) activity for a personal dashboard.
"""

from .base import FetchParams, ServiceAdapter
from .config import DashboardConfig, load_config
from .context import DashboardContext
from .credentials import CredentialStore
from .models import AggregateSnapshot, FetchState, FetchStatus, ServiceId
from .orchestrator import FetchOrchestrator
from .viewmodel import AggregationViewModel

__all__ = [
    "AggregateSnapshot",
    "AggregationViewModel",
    "CredentialStore",
    "DashboardConfig",
    "DashboardContext",
    "FetchOrchestrator",
    "FetchParams",
    "FetchState",
    "FetchStatus",
    "ServiceAdapter",
    "ServiceId",
    "load_config",
]
