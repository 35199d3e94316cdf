import asyncio
import threading
import time
from datetime import datetime, timezone

import pytest

from devboard.base import ServiceAdapter
from devboard.config import DashboardConfig
from devboard.credentials import CredentialStore
from devboard.models import CodingSummary, ListeningSummary, RepositorySummary, ServiceId, Track

T0 = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)


class FakeAdapter(ServiceAdapter):
    """In-memory adapter whose outcomes are scripted per call."""

    def __init__(self, service, outcomes=None, gate=None, delay=0.0):
        self._service = service
        # Each outcome is a summary to return or an exception to raise;
        # the last one repeats once the list is exhausted.
        self.outcomes = list(outcomes or [default_summary(service)])
        self.gate = gate
        self.delay = delay
        self.calls = []
        self.validated = []

    @property
    def service_id(self):
        return self._service

    def fetch_summary(self, secret, params):
        self.calls.append(secret)
        if self.gate is not None:
            self.gate.wait(timeout=5)
        if self.delay:
            time.sleep(self.delay)
        outcome = self.outcomes.pop(0) if len(self.outcomes) > 1 else self.outcomes[0]
        if isinstance(outcome, Exception):
            raise outcome
        return outcome

    def validate_credential(self, secret):
        self.validated.append(secret)
        return True


def default_summary(service):
    if service == ServiceId.CODING_ACTIVITY:
        return CodingSummary(day=T0.date(), total_seconds=3600, durations_count=5, last_activity_at=T0)
    if service == ServiceId.REPOSITORY_ACTIVITY:
        return RepositorySummary(total_repos=7)
    return ListeningSummary(
        tracks=[Track(name="Song", artist="Artist", album="Album", played_at=T0)]
    )


@pytest.fixture
def config(tmp_path):
    return DashboardConfig(
        store_path=tmp_path / "credentials.json",
        fetch_deadline=2,
        max_retries=0,
        retry_base_delay=0,
    )


@pytest.fixture
def store(config):
    return CredentialStore(config.store_path).open()


@pytest.fixture
def adapters():
    return {service: FakeAdapter(service) for service in ServiceId}


@pytest.fixture
def gate():
    event = threading.Event()
    yield event
    event.set()


@pytest.fixture
def wait_for_calls():
    async def _wait(adapter, count=1, timeout=2.0):
        deadline = time.monotonic() + timeout
        while len(adapter.calls) < count:
            if time.monotonic() > deadline:
                raise AssertionError(f"adapter called {len(adapter.calls)} times, expected {count}")
            await asyncio.sleep(0.01)

    return _wait
