"""
Scheduler / Trigger Coordinator.

Every asset owns a slot with a tiny state machine:

    IDLE --request--> PENDING --worker slot free--> RUNNING --done--> IDLE
                                                       |
                                  request during run   v
                                  (rerun queued) ---> RUNNING again

At most one run per asset is ever in flight: the slot has a single runner
task, and requests only append to its pending batch. A burst of N requests
during a run collapses into one extra run that carries all N reasons. Every
request gets a future resolved by the first run that *starts after* it.

Runs for different assets proceed concurrently, capped by a semaphore.
Periodic ticks and scheduled events are just more requests.
"""
import asyncio
import heapq
import itertools
from dataclasses import dataclass, field
from datetime import datetime
from typing import Awaitable, Callable, Optional

from common.logger import get_logger, new_run_id
from common.models import (
    AssetCode, AssetSchedulerStatus, AssetScore, Impact, ScheduledEvent, SchedulerState, utcnow,
)
from config.settings import EngineSettings
from scoring.aggregator import BiasScoringEngine, ScoringRun

logger = get_logger("scheduler")

PublishListener = Callable[[ScoringRun], Awaitable[None]]

_PRIORITY_RANK = {Impact.HIGH: 0, Impact.MEDIUM: 1, Impact.LOW: 2}


@dataclass
class _Slot:
    asset: AssetCode
    state: SchedulerState = SchedulerState.IDLE
    pending_reasons: list[str] = field(default_factory=list)
    waiters: list[asyncio.Future] = field(default_factory=list)
    runner: Optional[asyncio.Task] = None
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)
    runs_completed: int = 0
    requests_coalesced: int = 0
    last_run_at: Optional[datetime] = None
    last_reasons: list[str] = field(default_factory=list)
    last_diagnostics: list[str] = field(default_factory=list)
    last_error: Optional[str] = None

    def take_batch(self) -> tuple[list[str], list[asyncio.Future]]:
        reasons, waiters = self.pending_reasons, self.waiters
        self.pending_reasons, self.waiters = [], []
        return reasons, waiters


class Scheduler:
    def __init__(self, engine: BiasScoringEngine, settings: Optional[EngineSettings] = None):
        self.engine = engine
        self.settings = settings or engine.settings
        self._slots = {asset: _Slot(asset) for asset in AssetCode}
        self._cache: dict[AssetCode, AssetScore] = {}
        self._semaphore = asyncio.Semaphore(self.settings.max_concurrent_runs)
        self._listeners: list[PublishListener] = []
        self._accepting = True

        self._events: list[tuple[datetime, int, int, ScheduledEvent]] = []
        self._event_seq = itertools.count()
        self._events_changed = asyncio.Event()
        self._tick_task: Optional[asyncio.Task] = None
        self._timer_task: Optional[asyncio.Task] = None

    # ── cache ─────────────────────────────────────────────────────────────────

    def get_score(self, asset: AssetCode) -> Optional[AssetScore]:
        return self._cache.get(asset)

    def scores(self) -> dict[AssetCode, AssetScore]:
        """Copy of the cache; AssetScore itself is frozen."""
        return dict(self._cache)

    def add_listener(self, listener: PublishListener) -> None:
        self._listeners.append(listener)

    def remove_listener(self, listener: PublishListener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    # ── requests ──────────────────────────────────────────────────────────────

    @property
    def accepting(self) -> bool:
        return self._accepting

    def request(self, asset: AssetCode, reason: str) -> Optional[asyncio.Future]:
        """Ask for a recompute of *asset*.

        Returns a future resolved with the ScoringRun (or None if the run
        failed or was dropped by ``stop``), or None when not accepting.
        """
        if not self._accepting:
            logger.debug(f"{asset.value}: request '{reason}' ignored, scheduler stopped")
            return None
        slot = self._slots[asset]
        waiter = asyncio.get_running_loop().create_future()
        if slot.pending_reasons:
            slot.requests_coalesced += 1
        slot.pending_reasons.append(reason)
        slot.waiters.append(waiter)

        if slot.runner is None:
            slot.state = SchedulerState.PENDING
            slot.runner = asyncio.create_task(self._drive(slot), name=f"bias-run-{asset.value}")
            logger.debug(f"{asset.value}: IDLE -> PENDING ({reason})")
        else:
            if slot.state != SchedulerState.RUNNING:
                slot.state = SchedulerState.PENDING
            logger.debug(f"{asset.value}: {slot.state.value}, queued '{reason}' for next run")
        return waiter

    async def recalculate_all(self, reason: str = "recalculate_all") -> list[AssetScore]:
        """Request every asset, wait for all of them, return fresh scores in enum order."""
        waiters = [self.request(asset, reason) for asset in AssetCode]
        await asyncio.gather(*(w for w in waiters if w is not None))
        return [self._cache[a] for a in AssetCode if a in self._cache]

    async def _drive(self, slot: _Slot) -> None:
        while True:
            if not slot.pending_reasons:
                slot.state = SchedulerState.IDLE
                slot.runner = None
                return
            if not self._accepting:
                self._drop_queued(slot)
                return

            async with self._semaphore:
                if not self._accepting:
                    self._drop_queued(slot)
                    return
                # Everything queued while waiting for a worker joins this run
                reasons, waiters = slot.take_batch()
                run = await self._run_once(slot, reasons)
            slot.state = SchedulerState.PENDING if slot.pending_reasons else SchedulerState.IDLE
            # Listeners have seen the run by the time any requester resumes
            if run is not None:
                await self._notify(run)
            for w in waiters:
                if not w.done():
                    w.set_result(run)

    def _drop_queued(self, slot: _Slot) -> None:
        reasons, waiters = slot.take_batch()
        logger.info(f"{slot.asset.value}: dropped {len(reasons)} queued request(s) on stop")
        for w in waiters:
            if not w.done():
                w.set_result(None)
        slot.state = SchedulerState.IDLE
        slot.runner = None

    async def _run_once(self, slot: _Slot, reasons: list[str]) -> Optional[ScoringRun]:
        """One engine call; the caller holds a worker slot."""
        slot.state = SchedulerState.RUNNING
        run_id = new_run_id()
        logger.debug(f"{slot.asset.value}: PENDING -> RUNNING run={run_id} reasons={reasons}")
        try:
            run = await self.engine.calculate_bias_score(slot.asset)
        except Exception as e:
            logger.exception(f"{slot.asset.value}: scoring run failed")
            slot.last_error = f"{type(e).__name__}: {e}"
            slot.last_reasons = reasons
            return None

        async with slot.lock:
            self._cache[slot.asset] = run.score
            slot.runs_completed += 1
            slot.last_run_at = run.score.last_updated
            slot.last_reasons = reasons
            slot.last_diagnostics = list(run.diagnostics)
            slot.last_error = None
        logger.info(f"✅ {slot.asset.value} published {run.score.signal.value} "
                    f"({run.score.normalized_score:+.3f}) for {', '.join(reasons)}")
        return run

    async def _notify(self, run: ScoringRun) -> None:
        if not self._listeners:
            return
        results = await asyncio.gather(*(listener(run) for listener in list(self._listeners)),
                                       return_exceptions=True)
        for result in results:
            if isinstance(result, Exception):
                logger.warning(f"{run.score.asset.value}: publish listener failed: {result}")

    # ── scheduled events ──────────────────────────────────────────────────────

    def add_event(self, event: ScheduledEvent) -> None:
        key = (event.trigger_at, _PRIORITY_RANK[event.priority], next(self._event_seq), event)
        heapq.heappush(self._events, key)
        self._events_changed.set()
        logger.info(f"Scheduled {event.asset.value} '{event.reason}' at {event.trigger_at.isoformat()}")

    def pending_events(self) -> list[ScheduledEvent]:
        return [entry[-1] for entry in sorted(self._events)]

    def fire_due_events(self, now: Optional[datetime] = None) -> list[ScheduledEvent]:
        now = now or utcnow()
        fired = []
        while self._events and self._events[0][0] <= now:
            event = heapq.heappop(self._events)[-1]
            fired.append(event)
            self.request(event.asset, event.reason)
        return fired

    async def _event_timer(self) -> None:
        while True:
            self._events_changed.clear()
            self.fire_due_events()
            timeout = None
            if self._events:
                timeout = max(0.0, (self._events[0][0] - utcnow()).total_seconds())
            try:
                await asyncio.wait_for(self._events_changed.wait(), timeout)
            except asyncio.TimeoutError:
                pass

    async def _ticker(self) -> None:
        interval = self.settings.tick_interval_seconds
        while True:
            await asyncio.sleep(interval)
            logger.info(f"🚀 Periodic tick: requesting {len(self._slots)} assets")
            for asset in AssetCode:
                self.request(asset, "periodic")

    # ── lifecycle ─────────────────────────────────────────────────────────────

    def start(self) -> None:
        self._accepting = True
        if self._tick_task is None:
            self._tick_task = asyncio.create_task(self._ticker(), name="bias-ticker")
        if self._timer_task is None:
            self._timer_task = asyncio.create_task(self._event_timer(), name="bias-event-timer")
        logger.info("Scheduler timers started")

    async def stop(self) -> None:
        """Stop accepting requests and cancel timers; in-flight runs finish."""
        self._accepting = False
        tasks = [t for t in (self._tick_task, self._timer_task) if t is not None]
        self._tick_task = self._timer_task = None
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        logger.info("Scheduler timers stopped")

    async def close(self) -> None:
        await self.stop()
        runners = [s.runner for s in self._slots.values() if s.runner is not None]
        if runners:
            logger.info(f"Waiting for {len(runners)} in-flight run(s)")
            await asyncio.gather(*runners)
        self._cache.clear()
        self._events.clear()
        self._listeners.clear()

    def status(self, asset: AssetCode) -> AssetSchedulerStatus:
        slot = self._slots[asset]
        return AssetSchedulerStatus(
            asset=asset,
            state=slot.state,
            rerun_queued=slot.state == SchedulerState.RUNNING and bool(slot.pending_reasons),
            pending_reasons=list(slot.pending_reasons),
            runs_completed=slot.runs_completed,
            requests_coalesced=slot.requests_coalesced,
            last_run_at=slot.last_run_at,
            last_reasons=list(slot.last_reasons),
            last_diagnostics=list(slot.last_diagnostics),
            last_error=slot.last_error,
        )
