"""
Fetch Orchestrator
------------------
Single owner of the per-service FetchState table.

- Gates every fetch on the current credential.
- Runs adapters concurrently in worker threads, bounded by a per-call deadline.
- Deduplicates in-flight fetches by RequestKey (service, secret).
- Retries transient failures with exponential backoff.
- Drops results whose RequestKey no longer matches the stored credential.
- Publishes every state transition to subscribers.
"""

import asyncio
import logging
from typing import Callable, Dict, List, Mapping, Optional

from .base import FetchParams, ServiceAdapter, SummaryVariant
from .config import DashboardConfig
from .credentials import CredentialStore
from .errors import AdapterError, Malformed, Unreachable
from .models import ErrorInfo, FetchState, FetchStatus, RequestKey, ServiceId, utcnow

logger = logging.getLogger(__name__)

StateListener = Callable[[ServiceId, FetchState], None]


class FetchOrchestrator:
    """Credential-gated, deduplicating fetcher for all services."""

    def __init__(
        self,
        store: CredentialStore,
        adapters: Mapping[ServiceId, ServiceAdapter],
        config: DashboardConfig,
        params: Optional[FetchParams] = None,
    ):
        """
        Initialize the orchestrator and subscribe to credential changes.

        Args:
            store: Credential store to read secrets from.
            adapters: One adapter per ServiceId.
            config: Deadline and retry settings.
            params: Query parameters passed to every adapter call.
        """
        missing = set(ServiceId) - set(adapters)
        if missing:
            raise ValueError(f"No adapter for: {', '.join(sorted(s.value for s in missing))}")

        self.store = store
        self.adapters = dict(adapters)
        self.config = config
        self.params = params or FetchParams()

        self._states: Dict[ServiceId, FetchState] = {s: FetchState() for s in ServiceId}
        # Secret the current state of each service was produced with
        self._owners: Dict[ServiceId, Optional[str]] = {s: None for s in ServiceId}
        # Status to fall back to if a fetch is cancelled on close
        self._resume: Dict[ServiceId, FetchStatus] = {s: FetchStatus.IDLE for s in ServiceId}
        self._in_flight: Dict[RequestKey, asyncio.Task] = {}
        self._listeners: List[StateListener] = []
        self._closed = False
        self._unsubscribe_store = store.subscribe(self.on_credential_changed)

    # -------------------------------------------------------------------------
    # Reads and notification
    # -------------------------------------------------------------------------

    def state(self, service: ServiceId) -> FetchState:
        return self._states[ServiceId(service)]

    def states(self) -> Dict[ServiceId, FetchState]:
        return dict(self._states)

    def in_flight(self) -> List[RequestKey]:
        return list(self._in_flight)

    def subscribe(self, listener: StateListener) -> Callable[[], None]:
        """
        Register a callback for state transitions.

        Returns:
            A function that removes the callback.
        """
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _set_state(self, service: ServiceId, state: FetchState) -> None:
        if self._states[service] == state:
            return
        self._states[service] = state
        logger.debug(f"{service.value} -> {state.status.value}")
        for listener in list(self._listeners):
            listener(service, state)

    def _force_idle(self, service: ServiceId) -> None:
        self._owners[service] = None
        self._set_state(service, FetchState())

    # -------------------------------------------------------------------------
    # Credential gating
    # -------------------------------------------------------------------------

    def on_credential_changed(self, service: ServiceId, secret: Optional[str]) -> None:
        """
        React to a credential change from the store.

        A cleared or replaced credential resets the service to idle. Any fetch
        still running for the old secret becomes stale and its result will be
        dropped when it settles.
        """
        if secret is None or secret != self._owners[service]:
            if self._states[service].status != FetchStatus.IDLE:
                logger.info(f"Credential for {service.value} changed, resetting state")
            self._force_idle(service)

    def _is_current(self, key: RequestKey) -> bool:
        return not self._closed and self.store.get(key.service) == key.secret

    # -------------------------------------------------------------------------
    # Refresh
    # -------------------------------------------------------------------------

    async def refresh_all(self) -> Dict[ServiceId, FetchState]:
        """
        Refresh every service with a credential, concurrently.

        Services without a credential are forced to idle. Returns once every
        eligible fetch has settled; individual failures are recorded in the
        state table and never raised.
        """
        await asyncio.gather(*(self.refresh_one(service) for service in ServiceId))
        return self.states()

    async def refresh_one(self, service: ServiceId) -> FetchState:
        """Refresh a single service, joining an in-flight fetch for the same key."""
        service = ServiceId(service)
        if self._closed:
            return self._states[service]

        secret = self.store.get(service)
        if not secret:
            self._force_idle(service)
            return self._states[service]

        key = RequestKey(service, secret)
        task = self._in_flight.get(key)
        # A finished task may linger until its done callback runs
        if task is None or task.done():
            task = asyncio.create_task(self._fetch(key), name=f"fetch-{service.value}")
            self._in_flight[key] = task
            task.add_done_callback(lambda t, key=key: self._forget(key, t))
        else:
            logger.debug(f"Joining in-flight fetch for {service.value}")

        if self._states[service].status != FetchStatus.LOADING:
            self._owners[service] = secret
            self._resume[service] = self._states[service].status
            self._set_state(
                service, self._states[service].model_copy(update={"status": FetchStatus.LOADING})
            )

        try:
            await asyncio.shield(task)
        except asyncio.CancelledError:
            # The fetch was cancelled by aclose(); only re-raise our own cancellation
            if not task.cancelled():
                raise
        return self._states[service]

    def _forget(self, key: RequestKey, task: asyncio.Task) -> None:
        if self._in_flight.get(key) is task:
            del self._in_flight[key]

    async def _call_adapter(self, key: RequestKey):
        adapter = self.adapters[key.service]
        try:
            summary = await asyncio.wait_for(
                asyncio.to_thread(adapter.fetch_summary, key.secret, self.params),
                timeout=self.config.fetch_deadline,
            )
        except asyncio.TimeoutError as e:
            raise Unreachable(
                f"{key.service.value} did not respond within {self.config.fetch_deadline}s"
            ) from e
        except AdapterError:
            raise
        except Exception as e:
            logger.exception(f"Unexpected error from {key.service.value} adapter")
            raise Malformed(f"unexpected adapter failure: {e}") from e

        if not isinstance(summary, SummaryVariant):
            raise Malformed(
                f"{key.service.value} adapter returned {type(summary).__name__}, not a summary"
            )
        return summary

    async def _fetch(self, key: RequestKey) -> None:
        service = key.service
        attempt = 0

        while True:
            try:
                summary = await self._call_adapter(key)
                error = None
                break
            except AdapterError as e:
                error = e

            if (
                not error.kind.transient
                or attempt >= self.config.max_retries
                or not self._is_current(key)
            ):
                break

            delay = self.config.retry_base_delay * self.config.retry_multiplier**attempt
            if error.retry_after is not None:
                if error.retry_after > self.config.max_retry_delay:
                    logger.warning(
                        f"{service.value} asked to wait {error.retry_after:.0f}s, not retrying"
                    )
                    break
                delay = max(delay, error.retry_after)
            delay = min(delay, self.config.max_retry_delay)
            attempt += 1
            logger.warning(
                f"{service.value} failed ({error.kind.value}), "
                f"retry {attempt}/{self.config.max_retries} in {delay:.1f}s"
            )
            await asyncio.sleep(delay)
            if not self._is_current(key):
                break

        if not self._is_current(key):
            logger.debug(f"Dropping stale {service.value} result")
            return

        current = self._states[service]
        if error is None:
            self._set_state(
                service,
                FetchState(
                    status=FetchStatus.SUCCESS,
                    value=summary,
                    error=None,
                    fetched_at=utcnow(),
                ),
            )
            logger.info(f"{service.value} refreshed")
        else:
            # Keep the last good value and its timestamp
            self._set_state(
                service,
                current.model_copy(
                    update={
                        "status": FetchStatus.ERROR,
                        "error": ErrorInfo.from_exception(error),
                    }
                ),
            )
            logger.error(f"{service.value} refresh failed: {error.kind.value}: {error.message}")

    # -------------------------------------------------------------------------
    # Teardown
    # -------------------------------------------------------------------------

    async def aclose(self) -> None:
        """
        Stop accepting refreshes and cancel in-flight fetches.

        Services that were loading go back to the status they had before the
        fetch started, keeping their last value.
        """
        if self._closed:
            return
        self._closed = True
        self._unsubscribe_store()

        tasks = list(self._in_flight.values())
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

        for service, state in self._states.items():
            if state.status == FetchStatus.LOADING:
                self._set_state(
                    service, state.model_copy(update={"status": self._resume[service]})
                )
        logger.info(f"Orchestrator closed ({len(tasks)} fetches cancelled)")
