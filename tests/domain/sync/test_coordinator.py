from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING

import pytest

from cohortsync.domain.model import RecordType
from cohortsync.domain.records import PushEvent, PushReason, RecordLocator
from cohortsync.domain.sync import (
    CoordinatorState,
    SyncCoordinator,
    SyncMode,
    TriggerReason,
    TriggerThrottle,
)
from tests.helpers.cohort import FakeMonotonic, fast_config

if TYPE_CHECKING:
    from collections.abc import Callable

    from cohortsync.config import SyncConfig


class RecordingRunner:
    """Sync runner that records each run; the first run can be held open."""

    def __init__(self, *, hold_first: bool = False, fail: bool = False) -> None:
        self.modes: list[SyncMode] = []
        self.release = asyncio.Event()
        if not hold_first:
            self.release.set()
        self.fail = fail

    async def __call__(self, mode: SyncMode) -> None:
        self.modes.append(mode)
        if len(self.modes) == 1:
            await self.release.wait()
        if self.fail:
            raise RuntimeError("sync blew up")


def _coordinator(
    runner: RecordingRunner,
    *,
    config: SyncConfig | None = None,
    full_for: frozenset[TriggerReason] = frozenset(),
    **kwargs: object,
) -> SyncCoordinator:
    def select(reason: TriggerReason) -> SyncMode:
        return SyncMode.FULL if reason in full_for else SyncMode.INCREMENTAL

    return SyncCoordinator(
        runner,
        config=config or fast_config(),
        mode_selector=select,
        throttle=TriggerThrottle.from_config(config or fast_config(), clock=FakeMonotonic()),
        **kwargs,  # type: ignore[arg-type]
    )


async def _until(predicate: Callable[[], bool]) -> None:
    async def poll() -> None:
        while not predicate():
            await asyncio.sleep(0)

    await asyncio.wait_for(poll(), timeout=1)


def test_triggers_within_debounce_window_coalesce() -> None:
    async def scenario() -> RecordingRunner:
        runner = RecordingRunner()
        coordinator = _coordinator(runner)
        await coordinator.start(initial=False)
        coordinator.trigger(TriggerReason.LOCAL_WRITE)
        coordinator.trigger(TriggerReason.PUSH)
        coordinator.trigger(TriggerReason.LOCAL_WRITE)
        await asyncio.wait_for(coordinator.wait_idle(), timeout=1)
        await coordinator.stop()
        return runner

    runner = asyncio.run(scenario())

    assert runner.modes == [SyncMode.INCREMENTAL]


def test_triggers_during_a_sync_queue_exactly_one_followup() -> None:
    async def scenario() -> tuple[RecordingRunner, list[CoordinatorState]]:
        runner = RecordingRunner(hold_first=True)
        coordinator = _coordinator(runner)
        await coordinator.start(initial=False)
        coordinator.trigger(TriggerReason.LOCAL_WRITE, immediate=True)
        await _until(lambda: coordinator.state is CoordinatorState.SYNCING)
        for _ in range(4):
            coordinator.trigger(TriggerReason.LOCAL_WRITE)
        await _until(lambda: coordinator.state is CoordinatorState.SYNCING_WITH_FOLLOWUP)
        states = [coordinator.state]
        runner.release.set()
        await asyncio.wait_for(coordinator.wait_idle(), timeout=1)
        states.append(coordinator.state)
        await coordinator.stop()
        return runner, states

    runner, states = asyncio.run(scenario())

    assert len(runner.modes) == 2
    assert states == [CoordinatorState.SYNCING_WITH_FOLLOWUP, CoordinatorState.IDLE]


def test_initial_trigger_skips_the_debounce() -> None:
    config = fast_config(debounce_seconds=30.0)

    async def scenario() -> RecordingRunner:
        runner = RecordingRunner()
        coordinator = _coordinator(
            runner, config=config, full_for=frozenset({TriggerReason.INITIAL})
        )
        await coordinator.start()
        await asyncio.wait_for(coordinator.wait_idle(), timeout=1)
        await coordinator.stop()
        return runner

    runner = asyncio.run(scenario())

    assert runner.modes == [SyncMode.FULL]


def test_coalesced_run_is_full_when_any_reason_needs_it() -> None:
    async def scenario() -> RecordingRunner:
        runner = RecordingRunner()
        coordinator = _coordinator(runner, full_for=frozenset({TriggerReason.RECONCILE}))
        await coordinator.start(initial=False)
        coordinator.trigger(TriggerReason.LOCAL_WRITE)
        coordinator.trigger(TriggerReason.RECONCILE)
        await asyncio.wait_for(coordinator.wait_idle(), timeout=1)
        await coordinator.stop()
        return runner

    runner = asyncio.run(scenario())

    assert runner.modes == [SyncMode.FULL]


def test_throttled_triggers_are_rejected() -> None:
    async def scenario() -> list[bool]:
        coordinator = _coordinator(RecordingRunner())
        await coordinator.start(initial=False)
        accepted = [
            coordinator.trigger(TriggerReason.WINDOW_FOCUSED),
            coordinator.trigger(TriggerReason.WINDOW_FOCUSED),
        ]
        await asyncio.wait_for(coordinator.wait_idle(), timeout=1)
        await coordinator.stop()
        return accepted

    assert asyncio.run(scenario()) == [True, False]


def test_full_trigger_queue_drops_triggers() -> None:
    async def scenario() -> list[bool]:
        coordinator = _coordinator(RecordingRunner(), config=fast_config(trigger_queue_size=1))
        await coordinator.start(initial=False)
        accepted = [
            coordinator.trigger(TriggerReason.LOCAL_WRITE),
            coordinator.trigger(TriggerReason.LOCAL_WRITE),
        ]
        await asyncio.wait_for(coordinator.wait_idle(), timeout=1)
        await coordinator.stop()
        return accepted

    assert asyncio.run(scenario()) == [True, False]


def test_failed_sync_is_logged_and_the_next_trigger_retries(
    caplog: pytest.LogCaptureFixture,
) -> None:
    async def scenario() -> RecordingRunner:
        runner = RecordingRunner(fail=True)
        coordinator = _coordinator(runner)
        await coordinator.start(initial=False)
        coordinator.trigger(TriggerReason.LOCAL_WRITE, immediate=True)
        await asyncio.wait_for(coordinator.wait_idle(), timeout=1)
        assert coordinator.state is CoordinatorState.IDLE
        coordinator.trigger(TriggerReason.LOCAL_WRITE, immediate=True)
        await asyncio.wait_for(coordinator.wait_idle(), timeout=1)
        await coordinator.stop()
        return runner

    runner = asyncio.run(scenario())

    assert len(runner.modes) == 2
    assert "Sync failed" in caplog.text


def test_push_for_structural_record_is_applied_directly() -> None:
    applied: list[PushEvent] = []

    async def apply(event: PushEvent) -> bool:
        applied.append(event)
        return True

    group = PushEvent(RecordLocator(RecordType.GROUP, "g-1"), PushReason.UPDATED)
    progress = PushEvent(RecordLocator(RecordType.PROGRESS, "p-1"), PushReason.UPDATED)

    async def scenario() -> RecordingRunner:
        runner = RecordingRunner()
        coordinator = _coordinator(runner, push_applier=apply)
        await coordinator.start(initial=False)
        coordinator.notify_push(group)
        coordinator.notify_push(progress)
        await asyncio.wait_for(coordinator.wait_idle(), timeout=1)
        await coordinator.stop()
        return runner

    runner = asyncio.run(scenario())

    assert applied == [group]
    assert runner.modes == [SyncMode.INCREMENTAL]


def test_poll_timer_triggers_syncs() -> None:
    config = fast_config(poll_interval_seconds=0.01, poll_throttle_seconds=0.0)

    async def scenario() -> RecordingRunner:
        runner = RecordingRunner()
        coordinator = _coordinator(runner, config=config)
        await coordinator.start(initial=False)
        await _until(lambda: len(runner.modes) >= 1)
        await coordinator.stop()
        return runner

    runner = asyncio.run(scenario())

    assert runner.modes


def test_subscription_failure_does_not_prevent_start() -> None:
    async def broken_subscriptions() -> None:
        raise RuntimeError("push unavailable")

    async def scenario() -> bool:
        coordinator = _coordinator(RecordingRunner(), setup_subscriptions=broken_subscriptions)
        await coordinator.start()
        await asyncio.wait_for(coordinator.wait_idle(), timeout=1)
        running = coordinator.running
        await coordinator.stop()
        return running and not coordinator.running

    assert asyncio.run(scenario())


def test_stop_rejects_further_triggers() -> None:
    async def scenario() -> bool:
        coordinator = _coordinator(RecordingRunner())
        await coordinator.start(initial=False)
        await coordinator.stop()
        return coordinator.trigger(TriggerReason.LOCAL_WRITE)

    assert not asyncio.run(scenario())


def test_run_now_propagates_errors() -> None:
    async def scenario() -> None:
        coordinator = _coordinator(RecordingRunner(fail=True))
        await coordinator.run_now(SyncMode.FULL)

    with pytest.raises(RuntimeError, match="blew up"):
        asyncio.run(scenario())
