"""
Bias Service — the orchestrator that owns every other component.

    submit() ─▶ RecordBuffers ─▶ BiasScoringEngine ─▶ Scheduler cache ─▶ queries
                    │                                      ▲
                    └── significance triggers ─────────────┘

One instance per process (or per test); nothing here is a module-level
singleton. Lifecycle:

    UNINITIALIZED ─initialize()─▶ INITIALIZED ─start()─▶ STARTED ─stop()─▶ STOPPED ─close()─▶ CLOSED
                                                             ▲                 │
                                                             └─────start()─────┘
"""
import time
from datetime import timedelta
from typing import Any, Optional, Union

import pandas as pd
from pydantic import ValidationError

from common.exceptions import ConfigurationError, ServiceClosedError, UnknownAssetError
from common.logger import get_logger
from common.models import (
    AssetCode, AssetSchedulerStatus, AssetScore, COTData, Dimension, EconomicCalendarEvent,
    EconomicDataPoint, Factor, Impact, LifecycleState, Record, ScheduledEvent, SchedulerState,
    ScrapingResult, SentimentData, ServiceStatus, TriggerOutcome, utcnow,
)
from config.settings import EngineSettings
from ingest.base import BaseIngestor
from ingest.buffers import RecordBuffers
from ingest.health import HealthTracker
from ingest.validation import DEFAULT_ECONOMIC_RULES, ValidationRule, apply_rules
from scheduler import PublishListener, Scheduler
from scoring.aggregator import DIMENSION_ORDER, BiasScoringEngine, ScoringRun
from scoring.base import ScoreProvider
from scoring.registry import FactorRegistry

logger = get_logger("service")

RECORD_KINDS: dict[str, type] = {
    "economic": EconomicDataPoint,
    "cot": COTData,
    "sentiment": SentimentData,
    "calendar": EconomicCalendarEvent,
}

_SUB_SCORE_FIELDS = {
    Dimension.ECONOMIC: "economic_score",
    Dimension.SENTIMENT: "sentiment_score",
    Dimension.COT: "cot_score",
    Dimension.TECHNICAL: "technical_score",
    Dimension.CENTRAL_BANK: "central_bank_score",
}


def resolve_asset(asset: Union[AssetCode, str]) -> AssetCode:
    if isinstance(asset, AssetCode):
        return asset
    try:
        return AssetCode(str(asset).strip().upper())
    except ValueError:
        raise UnknownAssetError(asset) from None


class BiasService:
    def __init__(self, settings: Optional[EngineSettings] = None,
                 registry: Optional[FactorRegistry] = None,
                 technical_provider: Optional[ScoreProvider] = None,
                 central_bank_provider: Optional[ScoreProvider] = None,
                 economic_rules: Optional[list[ValidationRule]] = None):
        self.settings = settings or EngineSettings()
        self.registry = registry or FactorRegistry()
        self.buffers = RecordBuffers(self.settings.buffer_max_records)
        self.health = HealthTracker(stale_data_hours=self.settings.stale_data_hours)
        self.economic_rules = list(DEFAULT_ECONOMIC_RULES if economic_rules is None else economic_rules)
        self.engine = BiasScoringEngine(
            self.registry, self.buffers, self.settings,
            technical_provider=technical_provider,
            central_bank_provider=central_bank_provider,
        )
        self.scheduler: Optional[Scheduler] = None
        self._state = LifecycleState.UNINITIALIZED
        self._calendar_scheduled: set[str] = set()

    @property
    def state(self) -> LifecycleState:
        return self._state

    def _ensure_open(self, operation: str) -> None:
        if self._state == LifecycleState.CLOSED:
            raise ServiceClosedError(f"{operation}: service is closed")

    # ── lifecycle ─────────────────────────────────────────────────────────────

    def initialize(self) -> None:
        self._ensure_open("initialize")
        if self._state != LifecycleState.UNINITIALIZED:
            return
        self.scheduler = Scheduler(self.engine, self.settings)
        if self.settings.score_history_enabled:
            self.scheduler.add_listener(self._persist)
        self._state = LifecycleState.INITIALIZED
        logger.info(f"Bias service initialized ({len(self.registry.get_factors())} factors, "
                    f"registry revision {self.registry.revision})")

    async def start(self) -> None:
        self._ensure_open("start")
        if self._state == LifecycleState.STARTED:
            return
        self.initialize()
        self.scheduler.start()
        self._state = LifecycleState.STARTED
        logger.info("🚀 Bias service started")

    async def stop(self) -> None:
        if self._state != LifecycleState.STARTED:
            return
        await self.scheduler.stop()
        self._state = LifecycleState.STOPPED
        logger.info("Bias service stopped (cached scores retained)")

    async def close(self) -> None:
        if self._state not in (LifecycleState.STARTED, LifecycleState.STOPPED):
            return
        await self.scheduler.close()
        self.buffers.clear()
        self._calendar_scheduled.clear()
        self._state = LifecycleState.CLOSED
        logger.info("Bias service closed")

    async def __aenter__(self) -> "BiasService":
        await self.start()
        return self

    async def __aexit__(self, *exc) -> None:
        await self.close()

    def add_listener(self, listener: PublishListener) -> None:
        """Call *listener* with every published ScoringRun."""
        self.initialize()
        self.scheduler.add_listener(listener)

    def remove_listener(self, listener: PublishListener) -> None:
        if self.scheduler is not None:
            self.scheduler.remove_listener(listener)

    # ── ingestion boundary ────────────────────────────────────────────────────

    def submit(self, record: Record) -> bool:
        """Buffer a normalized record. Never raises; returns whether it was kept."""
        if self._state == LifecycleState.CLOSED:
            logger.warning(f"Dropped {type(record).__name__}: service is closed")
            return False
        try:
            if isinstance(record, EconomicDataPoint) and record.validation_passed:
                failures = apply_rules(record, self.economic_rules)
                if failures:
                    logger.info(f"{record.asset.value} {record.indicator.value} failed validation: "
                                f"{'; '.join(failures)}")
                    record = record.model_copy(update={"validation_passed": False})
            self.buffers.append(record)
        except Exception as e:
            self.health.record_rejected(f"{type(record).__name__}: {e}")
            return False

        if isinstance(record, EconomicDataPoint):
            self.health.record_accepted(is_data_point=True, usable=record.is_usable)
        else:
            self.health.record_accepted()
        self._react(record)
        return True

    def submit_raw(self, kind: str, payload: dict[str, Any]) -> bool:
        """Build a record of *kind* from a plain payload and submit it."""
        model = RECORD_KINDS.get(kind)
        if model is None:
            self.health.record_rejected(f"unknown record kind {kind!r}")
            return False
        try:
            record = model.model_validate(payload)
        except ValidationError as e:
            self.health.record_rejected(f"{kind}: {e.error_count()} validation error(s): "
                                        f"{e.errors()[0]['msg']}")
            return False
        return self.submit(record)

    async def ingest_from(self, ingestor: BaseIngestor, asset: Union[AssetCode, str]) -> ScrapingResult:
        """Run one collaborator fetch for *asset* and submit what it returns."""
        self._ensure_open("ingest_from")
        asset = resolve_asset(asset)
        started = time.perf_counter()
        try:
            records = await ingestor.fetch(asset)
            if not ingestor.validate(records, asset):
                raise ValueError(f"{ingestor.source.value} returned records for another asset")
        except Exception as e:
            ingestor.logger.warning(f"{ingestor.source.value} failed for {asset.value}: {e}")
            result = ScrapingResult(
                source=ingestor.source, asset=asset, success=False, errors=[str(e)],
                execution_time_ms=(time.perf_counter() - started) * 1000,
            )
        else:
            kept = sum(1 for r in records if self.submit(r))
            errors = [f"{len(records) - kept} record(s) rejected"] if kept < len(records) else []
            result = ScrapingResult(
                source=ingestor.source, asset=asset, success=True, record_count=kept, errors=errors,
                execution_time_ms=(time.perf_counter() - started) * 1000,
            )
        self.health.record_scrape(result)
        return result

    def _react(self, record: Record) -> None:
        """Turn a significant record into a recompute request (or a scheduled one)."""
        s = self.settings
        if isinstance(record, EconomicCalendarEvent) and not record.is_released:
            self._schedule_release(record)
            return
        if self._state != LifecycleState.STARTED:
            return

        reason = None
        if isinstance(record, EconomicDataPoint):
            if record.is_usable and record.surprise is not None and abs(record.surprise) >= s.significance_threshold:
                reason = f"{record.indicator.value} surprise {record.surprise:+.1%}"
        elif isinstance(record, COTData):
            reason = f"COT report {record.report_date.date().isoformat()}"
        elif isinstance(record, SentimentData):
            if abs(record.contrarian_score) >= s.contrarian_trigger_threshold:
                reason = f"sentiment contrarian {record.contrarian_score:+.2f}"
        elif isinstance(record, EconomicCalendarEvent):
            if record.impact == Impact.HIGH:
                reason = f"{record.event_name} released"
        if reason:
            self.scheduler.request(record.asset, reason)

    def _schedule_release(self, event: EconomicCalendarEvent) -> None:
        if self.scheduler is None or event.id in self._calendar_scheduled:
            return
        trigger_at = event.event_time + timedelta(minutes=self.settings.event_buffer_minutes)
        if trigger_at <= utcnow():
            return
        self._calendar_scheduled.add(event.id)
        self.scheduler.add_event(ScheduledEvent(
            id=f"calendar-{event.id}",
            asset=event.asset,
            trigger_at=trigger_at,
            reason=f"{event.event_name} release",
            priority=event.impact,
        ))

    # ── queries ───────────────────────────────────────────────────────────────

    def get_asset_bias_score(self, asset: Union[AssetCode, str]) -> Optional[AssetScore]:
        try:
            asset = resolve_asset(asset)
        except UnknownAssetError:
            return None
        if self.scheduler is None:
            return None
        return self.scheduler.get_score(asset)

    def get_all_bias_scores(self) -> list[AssetScore]:
        """Cached scores in asset enumeration order; never-scored assets are skipped."""
        if self.scheduler is None:
            return []
        cache = self.scheduler.scores()
        return [cache[a] for a in AssetCode if a in cache]

    def get_fundamental_factors(self) -> dict[str, Factor]:
        return self.registry.get_factors()

    def get_service_status(self) -> ServiceStatus:
        scores = self.get_all_bias_scores()
        if self.scheduler is not None:
            assets = {a: self.scheduler.status(a) for a in AssetCode}
            scheduled = len(self.scheduler.pending_events())
        else:
            assets = {a: AssetSchedulerStatus(asset=a, state=SchedulerState.IDLE) for a in AssetCode}
            scheduled = 0
        return ServiceStatus(
            lifecycle=self._state,
            assets=assets,
            health=self.health.snapshot(),
            assets_with_scores=len(scores),
            average_confidence=sum(s.confidence for s in scores) / len(scores) if scores else 0.0,
            registry_revision=self.registry.revision,
            scheduled_events=scheduled,
            last_update=max((s.last_updated for s in scores), default=None),
        )

    # ── triggers ──────────────────────────────────────────────────────────────

    async def trigger_asset_update(self, asset: Union[AssetCode, str],
                                   reason: str = "manual") -> list[TriggerOutcome]:
        """Recompute *asset* now and report what changed.

        The first outcome is the composite check on normalized_score; one
        outcome per dimension follows. Unknown assets yield an empty list.
        """
        self._ensure_open("trigger_asset_update")
        try:
            asset = resolve_asset(asset)
        except UnknownAssetError as e:
            logger.warning(f"Trigger ignored: {e}")
            return []
        if self._state not in (LifecycleState.INITIALIZED, LifecycleState.STARTED):
            return [TriggerOutcome(check="composite", has_changes=False,
                                   detail=f"not scheduled: service is {self._state.value}")]

        previous = self.scheduler.get_score(asset)
        waiter = self.scheduler.request(asset, reason)
        run: Optional[ScoringRun] = await waiter if waiter is not None else None
        if run is None:
            status = self.scheduler.status(asset)
            return [TriggerOutcome(check="composite", has_changes=False,
                                   detail=f"recompute failed: {status.last_error or 'dropped'}",
                                   previous=previous.normalized_score if previous else None)]
        return self._outcomes(previous, run)

    def _outcomes(self, previous: Optional[AssetScore], run: ScoringRun) -> list[TriggerOutcome]:
        eps = self.settings.change_epsilon
        current = run.score

        def compare(check: str, before: Optional[float], after: float) -> TriggerOutcome:
            if before is None:
                return TriggerOutcome(check=check, has_changes=True,
                                      detail=f"first score {after:+.4f}", current=after)
            changed = abs(after - before) > eps
            detail = f"{before:+.4f} -> {after:+.4f}" if changed else f"unchanged at {after:+.4f}"
            return TriggerOutcome(check=check, has_changes=changed, detail=detail,
                                  previous=before, current=after)

        outcomes = [compare("composite",
                            previous.normalized_score if previous else None,
                            current.normalized_score)]
        for dim in DIMENSION_ORDER:
            name = _SUB_SCORE_FIELDS[dim]
            outcome = compare(dim.value,
                              getattr(previous, name) if previous else None,
                              getattr(current, name))
            error = run.dimensions[dim].error
            if error:
                outcome = outcome.model_copy(update={"detail": f"{outcome.detail} ({error})"})
            outcomes.append(outcome)
        return outcomes

    async def recalculate_all_scores(self) -> list[AssetScore]:
        """Recompute every asset and return the post-recompute scores."""
        self._ensure_open("recalculate_all_scores")
        if self._state not in (LifecycleState.INITIALIZED, LifecycleState.STARTED):
            logger.warning(f"Recalculation skipped: service is {self._state.value}")
            return self.get_all_bias_scores()
        logger.info(f"🚀 Recalculating all {len(AssetCode)} assets")
        return await self.scheduler.recalculate_all()

    def add_scheduled_event(self, event: Union[ScheduledEvent, dict]) -> ScheduledEvent:
        self._ensure_open("add_scheduled_event")
        if not isinstance(event, ScheduledEvent):
            try:
                event = ScheduledEvent.model_validate(event)
            except ValidationError as e:
                raise ConfigurationError(f"Malformed scheduled event: {e.errors()[0]['msg']}") from e
        if self.scheduler is None:
            raise ConfigurationError("Service not initialized; call initialize() or start() first")
        self.scheduler.add_event(event)
        return event

    # ── history ───────────────────────────────────────────────────────────────

    async def _persist(self, run: ScoringRun) -> None:
        from storage.database import save_scores
        try:
            await save_scores([run.score])
        except Exception as e:
            logger.warning(f"{run.score.asset.value}: score history write failed: {e}")

    async def get_score_history(self, asset: Union[AssetCode, str], days: int = 30) -> pd.DataFrame:
        from storage.database import load_history
        try:
            asset = resolve_asset(asset)
        except UnknownAssetError:
            return pd.DataFrame()
        return await load_history(asset.value, days)
