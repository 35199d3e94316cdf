"""
Aggregation View-Model
----------------------
Presentation-facing projection of the orchestrator's state table.
"""

import logging
from typing import Callable, List, Optional

from .credentials import CredentialStore
from .models import AggregateSnapshot, FetchState, FetchStatus, ServiceId, build_snapshot
from .orchestrator import FetchOrchestrator

logger = logging.getLogger(__name__)

SnapshotListener = Callable[[AggregateSnapshot], None]


class AggregationViewModel:
    """Merges per-service fetch states into one snapshot for the UI."""

    def __init__(self, orchestrator: FetchOrchestrator, store: CredentialStore):
        self.orchestrator = orchestrator
        self.store = store
        self._snapshot: Optional[AggregateSnapshot] = None
        self._listeners: List[SnapshotListener] = []
        self._unsubscribe = [
            orchestrator.subscribe(self._on_state_changed),
            store.subscribe(self._on_credential_changed),
        ]

    def snapshot(self) -> AggregateSnapshot:
        """Return the current snapshot, rebuilding it after any change."""
        if self._snapshot is None:
            configured = set(self.store.configured_services())
            self._snapshot = build_snapshot(
                self.orchestrator.states(),
                {service: service in configured for service in ServiceId},
            )
        return self._snapshot

    @property
    def is_refreshing(self) -> bool:
        return self.snapshot().is_refreshing

    async def refresh(self) -> AggregateSnapshot:
        """Refresh every service and return the settled snapshot."""
        await self.orchestrator.refresh_all()
        snapshot = self.snapshot()
        failed = [s.value for s, view in snapshot.services.items() if view.status == FetchStatus.ERROR]
        if failed:
            logger.warning(f"Refresh finished with errors: {failed}")
        return snapshot

    async def retry(self, service: ServiceId) -> AggregateSnapshot:
        """Refresh a single service, e.g. from its inline error indicator."""
        await self.orchestrator.refresh_one(service)
        return self.snapshot()

    def subscribe(self, listener: SnapshotListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def close(self) -> None:
        for unsubscribe in self._unsubscribe:
            unsubscribe()
        self._listeners.clear()

    def _invalidate(self) -> None:
        self._snapshot = None
        if not self._listeners:
            return
        snapshot = self.snapshot()
        for listener in list(self._listeners):
            listener(snapshot)

    def _on_state_changed(self, service: ServiceId, state: FetchState) -> None:
        self._invalidate()

    def _on_credential_changed(self, service: ServiceId, secret: Optional[str]) -> None:
        self._invalidate()
