"""Single-flight sync coordinator driven by a bounded trigger channel."""

from __future__ import annotations

import asyncio
from enum import StrEnum
from logging import getLogger
from typing import TYPE_CHECKING

from cohortsync.domain.model import HIGH_CHURN_TYPES

from .policy import SyncMode, Trigger, TriggerReason, TriggerThrottle

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

    from cohortsync.config import SyncConfig
    from cohortsync.domain.records import PushEvent

    SyncRunner = Callable[[SyncMode], Awaitable[object]]
    ModeSelector = Callable[[TriggerReason], SyncMode]
    PushApplier = Callable[[PushEvent], Awaitable[bool]]
    SubscriptionSetup = Callable[[], Awaitable[None]]

log = getLogger(__name__)


class CoordinatorState(StrEnum):
    IDLE = "idle"
    SYNCING = "syncing"
    SYNCING_WITH_FOLLOWUP = "syncing-with-queued-followup"


class SyncCoordinator:
    """Decide when to sync and make sure only one sync runs at a time.

    Triggers enter through a bounded queue consumed by a single loop. While idle, a
    trigger (re)starts the debounce timer, except ``initial`` and immediate triggers,
    which start a sync right away. While a sync runs, triggers collapse into a single
    queued follow-up that starts as soon as the running sync completes. Sync failures
    are logged and swallowed; the next trigger retries.
    """

    def __init__(
        self,
        runner: SyncRunner,
        *,
        config: SyncConfig,
        mode_selector: ModeSelector,
        push_applier: PushApplier | None = None,
        setup_subscriptions: SubscriptionSetup | None = None,
        throttle: TriggerThrottle | None = None,
    ) -> None:
        self._runner = runner
        self._config = config
        self._select_mode = mode_selector
        self._push_applier = push_applier
        self._setup_subscriptions = setup_subscriptions
        self._throttle = throttle or TriggerThrottle.from_config(config)

        self.state = CoordinatorState.IDLE
        self.completed_runs: list[tuple[TriggerReason, SyncMode]] = []
        self._queue: asyncio.Queue[Trigger] = asyncio.Queue(maxsize=config.trigger_queue_size)
        self._pending: list[TriggerReason] = []
        self._run_lock = asyncio.Lock()
        self._settled = asyncio.Event()
        self._settled.set()
        self._stopping = False
        self._consumer_task: asyncio.Task[None] | None = None
        self._debounce_task: asyncio.Task[None] | None = None
        self._sync_task: asyncio.Task[None] | None = None
        self._timer_tasks: list[asyncio.Task[None]] = []

    @property
    def running(self) -> bool:
        return self._consumer_task is not None

    # Lifecycle ---------------------------------------------------------------

    async def start(self, *, initial: bool = True) -> None:
        if self._consumer_task is not None:
            return
        self._stopping = False
        self._consumer_task = asyncio.create_task(self._consume(), name="cohortsync-triggers")
        if self._setup_subscriptions is not None:
            try:
                await self._setup_subscriptions()
            except Exception:  # noqa: BLE001
                log.warning("Subscription setup failed; relying on polling", exc_info=True)
        self._timer_tasks = [
            asyncio.create_task(
                self._every(self._config.poll_interval_seconds, TriggerReason.POLL),
                name="cohortsync-poll",
            ),
            asyncio.create_task(
                self._every(self._config.reconcile_interval_seconds, TriggerReason.RECONCILE),
                name="cohortsync-reconcile",
            ),
        ]
        if initial:
            self.trigger(TriggerReason.INITIAL)

    async def stop(self) -> None:
        """Stop timers and the trigger loop; a sync already running completes first."""

        self._stopping = True
        tasks = [*self._timer_tasks, self._debounce_task, self._consumer_task]
        for task in tasks:
            if task is not None:
                task.cancel()
        await asyncio.gather(*(t for t in tasks if t is not None), return_exceptions=True)
        self._timer_tasks = []
        self._debounce_task = None
        self._consumer_task = None
        if self._sync_task is not None:
            await self._sync_task
        self._pending.clear()
        self.state = CoordinatorState.IDLE
        self._settled.set()

    async def wait_idle(self) -> None:
        """Wait until no trigger, debounce timer or sync is outstanding."""

        await self._settled.wait()

    # Triggers ------------------------------------------------------------------

    def trigger(self, reason: TriggerReason, *, immediate: bool = False) -> bool:
        """Submit a trigger; returns False when it was throttled or dropped."""

        return self._submit(Trigger(reason, immediate=immediate))

    def notify_push(self, event: PushEvent) -> bool:
        return self._submit(Trigger(TriggerReason.PUSH, push=event))

    def _submit(self, trigger: Trigger) -> bool:
        if self._stopping:
            return False
        if not self._throttle.allow(trigger.reason):
            log.debug("Throttled %s trigger", trigger.reason)
            return False
        try:
            self._queue.put_nowait(trigger)
        except asyncio.QueueFull:
            # the queued triggers already guarantee a sync
            log.debug("Trigger queue full; dropping %s", trigger.reason)
            return False
        self._settled.clear()
        return True

    async def run_now(self, mode: SyncMode) -> None:
        """Run a sync directly, serialized with coordinator-driven syncs; errors propagate."""

        async with self._run_lock:
            await self._runner(mode)

    # Loop ----------------------------------------------------------------------

    async def _consume(self) -> None:
        while True:
            trigger = await self._queue.get()
            try:
                await self._handle(trigger)
            finally:
                self._queue.task_done()
                self._update_settled()

    async def _handle(self, trigger: Trigger) -> None:
        push = trigger.push
        if (
            push is not None
            and self._push_applier is not None
            and push.record_type not in HIGH_CHURN_TYPES
        ):
            try:
                await self._push_applier(push)
            except Exception:  # noqa: BLE001
                log.warning("Direct apply of %s failed", push.locator, exc_info=True)

        self._pending.append(trigger.reason)
        if self.state is not CoordinatorState.IDLE:
            self.state = CoordinatorState.SYNCING_WITH_FOLLOWUP
            return
        if trigger.bypasses_debounce:
            self._cancel_debounce()
            self._start_sync()
        else:
            self._schedule_debounce()

    def _schedule_debounce(self) -> None:
        self._cancel_debounce()
        self._debounce_task = asyncio.create_task(self._debounce_elapsed())

    def _cancel_debounce(self) -> None:
        if self._debounce_task is not None:
            self._debounce_task.cancel()
            self._debounce_task = None

    async def _debounce_elapsed(self) -> None:
        await asyncio.sleep(self._config.debounce_seconds)
        self._debounce_task = None
        if self.state is CoordinatorState.IDLE:
            self._start_sync()
        self._update_settled()

    def _start_sync(self) -> None:
        if not self._pending:
            return
        reasons, self._pending = self._pending, []
        # the run must cover every coalesced cause, so any reason asking for full wins
        mode = SyncMode.INCREMENTAL
        if any(self._select_mode(reason) is SyncMode.FULL for reason in reasons):
            mode = SyncMode.FULL
        self.state = CoordinatorState.SYNCING
        self._sync_task = asyncio.create_task(self._run(reasons[-1], mode))

    async def _run(self, reason: TriggerReason, mode: SyncMode) -> None:
        log.debug("Sync started: reason=%s, mode=%s", reason, mode)
        try:
            async with self._run_lock:
                await self._runner(mode)
        except Exception:  # noqa: BLE001
            log.exception("Sync failed: reason=%s, mode=%s", reason, mode)
        finally:
            self.completed_runs.append((reason, mode))
            self._sync_task = None
            followup = self.state is CoordinatorState.SYNCING_WITH_FOLLOWUP
            if followup and self._pending and not self._stopping:
                self._start_sync()
            else:
                self.state = CoordinatorState.IDLE
            self._update_settled()

    def _update_settled(self) -> None:
        if (
            self.state is CoordinatorState.IDLE
            and self._queue.empty()
            and self._debounce_task is None
            and self._sync_task is None
        ):
            self._settled.set()

    async def _every(self, interval: float, reason: TriggerReason) -> None:
        while True:
            await asyncio.sleep(interval)
            self.trigger(reason)


__all__ = ["CoordinatorState", "SyncCoordinator"]
