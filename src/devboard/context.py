"""
Dashboard Context
-----------------
Owns the credential store, adapters, orchestrator and view-model for one
process, with an explicit open/close lifecycle instead of module globals.

Usage:
    async with DashboardContext(load_config()) as ctx:
        ctx.store.set(ServiceId.CODING_ACTIVITY, "waka_...")
        snapshot = await ctx.view_model.refresh()
"""

import logging
from typing import Mapping, Optional

from .adapters import build_adapters
from .base import FetchParams, ServiceAdapter
from .config import DashboardConfig
from .credentials import CredentialStore
from .models import ServiceId
from .orchestrator import FetchOrchestrator
from .viewmodel import AggregationViewModel

logger = logging.getLogger(__name__)


class DashboardContext:
    """Wires and owns the aggregation layer components."""

    def __init__(
        self,
        config: DashboardConfig,
        adapters: Optional[Mapping[ServiceId, ServiceAdapter]] = None,
        params: Optional[FetchParams] = None,
    ):
        self.config = config
        self.store = CredentialStore(config.store_path)
        self.adapters = dict(adapters) if adapters is not None else build_adapters(config)
        self.orchestrator = FetchOrchestrator(self.store, self.adapters, config, params)
        self.view_model = AggregationViewModel(self.orchestrator, self.store)
        self._opened = False

    def open(self) -> "DashboardContext":
        """Load persisted credentials."""
        self.store.open()
        self._opened = True
        return self

    async def aclose(self) -> None:
        """Cancel in-flight fetches and flush pending credential writes."""
        await self.orchestrator.aclose()
        self.view_model.close()
        if self._opened:
            self.store.close()
            self._opened = False
        logger.debug("Dashboard context closed")

    async def __aenter__(self) -> "DashboardContext":
        return self.open()

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.aclose()
