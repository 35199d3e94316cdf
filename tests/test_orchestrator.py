import asyncio
from dataclasses import replace
from unittest.mock import patch

import pytest

from devboard.errors import ErrorKind, Malformed, RateLimited, Unauthorized, Unreachable
from devboard.models import CodingSummary, FetchStatus, ServiceId
from devboard.orchestrator import FetchOrchestrator

from conftest import T0, FakeAdapter, default_summary

pytestmark = pytest.mark.asyncio

CODING = ServiceId.CODING_ACTIVITY
REPOS = ServiceId.REPOSITORY_ACTIVITY
LISTENING = ServiceId.LISTENING_ACTIVITY


def make_orchestrator(store, adapters, config):
    return FetchOrchestrator(store, adapters, config)


async def test_services_without_credentials_stay_idle(store, adapters, config):
    store.set(CODING, "tok1")
    orchestrator = make_orchestrator(store, adapters, config)

    states = await orchestrator.refresh_all()

    assert states[REPOS].status == FetchStatus.IDLE
    assert states[REPOS].value is None
    assert adapters[REPOS].calls == []
    assert states[CODING].status == FetchStatus.SUCCESS


async def test_coding_transitions_idle_loading_success(store, adapters, config):
    store.set(CODING, "tok1")
    orchestrator = make_orchestrator(store, adapters, config)
    seen = []
    orchestrator.subscribe(lambda service, state: seen.append((service, state.status)))

    assert orchestrator.state(CODING).status == FetchStatus.IDLE
    await orchestrator.refresh_all()

    coding = [status for service, status in seen if service == CODING]
    assert coding == [FetchStatus.LOADING, FetchStatus.SUCCESS]
    state = orchestrator.state(CODING)
    assert state.value == default_summary(CODING)
    assert state.fetched_at is not None
    assert state.error is None


async def test_concurrent_refresh_all_calls_adapter_once(store, config, gate, wait_for_calls):
    adapters = {s: FakeAdapter(s, gate=gate) for s in ServiceId}
    for service in ServiceId:
        store.set(service, f"secret-{service.value}")
    orchestrator = make_orchestrator(store, adapters, config)

    first = asyncio.create_task(orchestrator.refresh_all())
    await wait_for_calls(adapters[CODING])
    second = asyncio.create_task(orchestrator.refresh_all())
    await asyncio.sleep(0.05)
    gate.set()

    first_states, second_states = await asyncio.gather(first, second)

    for service in ServiceId:
        assert len(adapters[service].calls) == 1
        assert first_states[service] == second_states[service]
        assert first_states[service].status == FetchStatus.SUCCESS
    assert orchestrator.in_flight() == []


async def test_failure_keeps_previous_value(store, config):
    adapter = FakeAdapter(
        LISTENING,
        outcomes=[default_summary(LISTENING), RateLimited("slow down", retry_after=30)],
    )
    adapters = {s: FakeAdapter(s) for s in ServiceId}
    adapters[LISTENING] = adapter
    store.set(LISTENING, "spotify-token")
    orchestrator = make_orchestrator(store, adapters, config)

    await orchestrator.refresh_one(LISTENING)
    good = orchestrator.state(LISTENING)
    await orchestrator.refresh_one(LISTENING)
    state = orchestrator.state(LISTENING)

    assert state.status == FetchStatus.ERROR
    assert state.error.kind == ErrorKind.RATE_LIMITED
    assert state.error.retry_after == 30
    assert state.value == good.value
    assert state.fetched_at == good.fetched_at


async def test_failure_without_history_has_no_value(store, adapters, config):
    adapters[LISTENING] = FakeAdapter(LISTENING, outcomes=[RateLimited("slow down")])
    store.set(LISTENING, "spotify-token")
    orchestrator = make_orchestrator(store, adapters, config)

    await orchestrator.refresh_all()

    state = orchestrator.state(LISTENING)
    assert state.status == FetchStatus.ERROR
    assert state.error.kind == ErrorKind.RATE_LIMITED
    assert state.value is None


async def test_partial_failure_does_not_fail_refresh_all(store, adapters, config):
    adapters[REPOS] = FakeAdapter(REPOS, outcomes=[Unauthorized("bad token")])
    store.set(CODING, "waka")
    store.set(REPOS, "ghp")
    orchestrator = make_orchestrator(store, adapters, config)

    states = await orchestrator.refresh_all()

    assert states[CODING].status == FetchStatus.SUCCESS
    assert states[REPOS].status == FetchStatus.ERROR
    assert states[REPOS].error.kind == ErrorKind.UNAUTHORIZED


async def test_clearing_credential_drops_in_flight_result(store, config, gate, wait_for_calls):
    adapters = {s: FakeAdapter(s, gate=gate) for s in ServiceId}
    store.set(CODING, "tok1")
    orchestrator = make_orchestrator(store, adapters, config)

    task = asyncio.create_task(orchestrator.refresh_one(CODING))
    await wait_for_calls(adapters[CODING])
    assert orchestrator.state(CODING).status == FetchStatus.LOADING

    store.set(CODING, None)
    assert orchestrator.state(CODING).status == FetchStatus.IDLE

    gate.set()
    state = await task

    assert state.status == FetchStatus.IDLE
    assert state.value is None


async def test_replacing_credential_drops_old_result(store, config, gate, wait_for_calls):
    adapters = {s: FakeAdapter(s, gate=gate) for s in ServiceId}
    store.set(CODING, "old")
    orchestrator = make_orchestrator(store, adapters, config)

    task = asyncio.create_task(orchestrator.refresh_one(CODING))
    await wait_for_calls(adapters[CODING])
    store.set(CODING, "new")
    gate.set()
    await task

    assert orchestrator.state(CODING).status == FetchStatus.IDLE

    await orchestrator.refresh_one(CODING)
    assert adapters[CODING].calls == ["old", "new"]
    assert orchestrator.state(CODING).status == FetchStatus.SUCCESS


async def test_clearing_credential_resets_value(store, adapters, config):
    store.set(CODING, "tok1")
    orchestrator = make_orchestrator(store, adapters, config)
    await orchestrator.refresh_all()
    assert orchestrator.state(CODING).value is not None

    store.set(CODING, None)

    state = orchestrator.state(CODING)
    assert state.status == FetchStatus.IDLE
    assert state.value is None


async def test_adapter_value_is_exposed_unchanged(store, adapters, config):
    summary = CodingSummary(day=T0.date(), durations_count=5, last_activity_at=T0)
    adapters[CODING] = FakeAdapter(CODING, outcomes=[summary])
    store.set(CODING, "tok1")
    orchestrator = make_orchestrator(store, adapters, config)

    await orchestrator.refresh_all()

    assert orchestrator.state(CODING).value == summary


async def test_transient_failures_are_retried(store, adapters, config):
    adapters[CODING] = FakeAdapter(
        CODING, outcomes=[Unreachable("down"), Unreachable("down"), default_summary(CODING)]
    )
    store.set(CODING, "tok1")
    orchestrator = make_orchestrator(store, adapters, replace(config, max_retries=2))

    await orchestrator.refresh_one(CODING)

    assert len(adapters[CODING].calls) == 3
    assert orchestrator.state(CODING).status == FetchStatus.SUCCESS


async def test_retries_stop_at_limit(store, adapters, config):
    adapters[CODING] = FakeAdapter(CODING, outcomes=[Unreachable("down")])
    store.set(CODING, "tok1")
    orchestrator = make_orchestrator(store, adapters, replace(config, max_retries=1))

    await orchestrator.refresh_one(CODING)

    assert len(adapters[CODING].calls) == 2
    assert orchestrator.state(CODING).error.kind == ErrorKind.UNREACHABLE


@pytest.mark.parametrize("error", [Unauthorized("bad"), Malformed("weird")])
async def test_non_transient_failures_are_not_retried(store, adapters, config, error):
    adapters[CODING] = FakeAdapter(CODING, outcomes=[error])
    store.set(CODING, "tok1")
    orchestrator = make_orchestrator(store, adapters, replace(config, max_retries=3))

    await orchestrator.refresh_one(CODING)

    assert len(adapters[CODING].calls) == 1
    assert orchestrator.state(CODING).error.kind == error.kind


async def test_deadline_bounds_slow_adapter(store, adapters, config):
    adapters[CODING] = FakeAdapter(CODING, delay=0.5)
    store.set(CODING, "tok1")
    orchestrator = make_orchestrator(store, adapters, replace(config, fetch_deadline=0.05))

    await orchestrator.refresh_all()

    state = orchestrator.state(CODING)
    assert state.status == FetchStatus.ERROR
    assert state.error.kind == ErrorKind.UNREACHABLE


async def test_unexpected_exception_becomes_malformed(store, adapters, config):
    adapters[CODING] = FakeAdapter(CODING, outcomes=[KeyError("data")])
    store.set(CODING, "tok1")
    orchestrator = make_orchestrator(store, adapters, config)

    await orchestrator.refresh_all()

    assert orchestrator.state(CODING).error.kind == ErrorKind.MALFORMED


async def test_wrong_return_type_becomes_malformed(store, adapters, config):
    adapters[CODING] = FakeAdapter(CODING, outcomes=[{"activityCount": 5}])
    store.set(CODING, "tok1")
    orchestrator = make_orchestrator(store, adapters, config)

    await orchestrator.refresh_all()

    assert orchestrator.state(CODING).error.kind == ErrorKind.MALFORMED


async def test_aclose_drops_late_results(store, config, gate, wait_for_calls):
    adapters = {s: FakeAdapter(s, gate=gate) for s in ServiceId}
    store.set(CODING, "tok1")
    orchestrator = make_orchestrator(store, adapters, config)

    task = asyncio.create_task(orchestrator.refresh_one(CODING))
    await wait_for_calls(adapters[CODING])
    await orchestrator.aclose()
    gate.set()
    await task

    state = orchestrator.state(CODING)
    assert state.status == FetchStatus.IDLE
    assert state.value is None
    assert orchestrator.in_flight() == []


async def test_missing_adapter_is_rejected(store, adapters, config):
    del adapters[LISTENING]
    with pytest.raises(ValueError):
        make_orchestrator(store, adapters, config)


async def test_aclose_restores_previous_status(store, adapters, config, gate, wait_for_calls):
    store.set(CODING, "tok1")
    orchestrator = make_orchestrator(store, adapters, config)
    await orchestrator.refresh_one(CODING)
    good = orchestrator.state(CODING)

    orchestrator.adapters[CODING] = FakeAdapter(CODING, gate=gate)
    task = asyncio.create_task(orchestrator.refresh_one(CODING))
    await wait_for_calls(orchestrator.adapters[CODING])
    assert orchestrator.state(CODING).status == FetchStatus.LOADING

    await orchestrator.aclose()
    gate.set()
    await task

    state = orchestrator.state(CODING)
    assert state.status == FetchStatus.SUCCESS
    assert state.value == good.value
    assert state.fetched_at == good.fetched_at


async def test_refresh_requested_from_success_listener_starts_new_fetch(store, adapters, config):
    store.set(CODING, "tok1")
    orchestrator = make_orchestrator(store, adapters, config)
    scheduled = []

    def on_change(service, state):
        if service == CODING and state.status == FetchStatus.SUCCESS and not scheduled:
            scheduled.append(asyncio.create_task(orchestrator.refresh_one(CODING)))

    orchestrator.subscribe(on_change)

    await orchestrator.refresh_one(CODING)
    await scheduled[0]

    assert adapters[CODING].calls == ["tok1", "tok1"]
    assert orchestrator.state(CODING).status == FetchStatus.SUCCESS
    assert orchestrator.in_flight() == []


# -----------------------------------------------------------------------------
# Retry delays
# -----------------------------------------------------------------------------


@pytest.fixture
def sleeps():
    """Record retry delays instead of waiting them out."""
    recorded = []
    real_sleep = asyncio.sleep

    async def fake_sleep(delay, *args, **kwargs):
        recorded.append(delay)
        await real_sleep(0)

    with patch("devboard.orchestrator.asyncio.sleep", new=fake_sleep):
        yield recorded


def retry_config(config, **changes):
    defaults = dict(max_retries=2, retry_base_delay=1.0, retry_multiplier=2.0, max_retry_delay=10.0)
    defaults.update(changes)
    return replace(config, **defaults)


async def test_backoff_grows_exponentially(store, adapters, config, sleeps):
    adapters[CODING] = FakeAdapter(
        CODING, outcomes=[Unreachable("down"), Unreachable("down"), default_summary(CODING)]
    )
    store.set(CODING, "tok1")
    orchestrator = make_orchestrator(store, adapters, retry_config(config))

    await orchestrator.refresh_one(CODING)

    assert sleeps == [1.0, 2.0]
    assert orchestrator.state(CODING).status == FetchStatus.SUCCESS


async def test_backoff_is_capped(store, adapters, config, sleeps):
    adapters[CODING] = FakeAdapter(CODING, outcomes=[Unreachable("down")])
    store.set(CODING, "tok1")
    orchestrator = make_orchestrator(store, adapters, retry_config(config, retry_base_delay=8.0))

    await orchestrator.refresh_one(CODING)

    assert sleeps == [8.0, 10.0]
    assert len(adapters[CODING].calls) == 3


async def test_retry_after_is_honored(store, adapters, config, sleeps):
    adapters[CODING] = FakeAdapter(
        CODING, outcomes=[RateLimited("slow down", retry_after=5), default_summary(CODING)]
    )
    store.set(CODING, "tok1")
    orchestrator = make_orchestrator(store, adapters, retry_config(config))

    await orchestrator.refresh_one(CODING)

    assert sleeps == [5]
    assert orchestrator.state(CODING).status == FetchStatus.SUCCESS


async def test_long_retry_after_is_reported_not_waited(store, adapters, config, sleeps):
    adapters[CODING] = FakeAdapter(CODING, outcomes=[RateLimited("slow down", retry_after=3600)])
    store.set(CODING, "tok1")
    orchestrator = make_orchestrator(store, adapters, retry_config(config))

    await orchestrator.refresh_one(CODING)

    assert sleeps == []
    assert len(adapters[CODING].calls) == 1
    state = orchestrator.state(CODING)
    assert state.status == FetchStatus.ERROR
    assert state.error.kind == ErrorKind.RATE_LIMITED
    assert state.error.retry_after == 3600


async def test_long_retry_after_does_not_stall_refresh_all(store, adapters, config):
    adapters[LISTENING] = FakeAdapter(LISTENING, outcomes=[RateLimited("slow down", retry_after=3600)])
    store.set(LISTENING, "spotify-token")
    orchestrator = make_orchestrator(store, adapters, retry_config(config, fetch_deadline=1))

    states = await asyncio.wait_for(orchestrator.refresh_all(), timeout=3)

    assert states[LISTENING].status == FetchStatus.ERROR
    assert not any(state.status == FetchStatus.LOADING for state in states.values())


async def test_credential_cleared_during_backoff_is_not_sent(store, adapters, config):
    adapters[CODING] = FakeAdapter(CODING, outcomes=[Unreachable("down"), default_summary(CODING)])
    store.set(CODING, "tok1")
    orchestrator = make_orchestrator(store, adapters, retry_config(config, max_retries=1))
    real_sleep = asyncio.sleep

    async def clear_while_waiting(delay, *args, **kwargs):
        store.set(CODING, None)
        await real_sleep(0)

    with patch("devboard.orchestrator.asyncio.sleep", new=clear_while_waiting):
        await orchestrator.refresh_one(CODING)

    assert adapters[CODING].calls == ["tok1"]
    state = orchestrator.state(CODING)
    assert state.status == FetchStatus.IDLE
    assert state.value is None
