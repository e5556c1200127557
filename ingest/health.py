"""Ingestion telemetry.

Counts what the collaborators delivered and how much of it was usable, and
derives the SystemHealth report. Nothing in here is read by the scoring path.
"""
import threading
from collections import deque
from datetime import datetime, timedelta

import numpy as np

from common.logger import get_logger
from common.models import DataSource, ScrapingResult, SystemHealth, SystemStatus, utcnow

logger = get_logger("health")

FRESHNESS_POINTS_PER_HOUR = 4.0


class HealthTracker:
    def __init__(self, stale_data_hours: float = 48, history: int = 1000):
        self.stale_data_hours = stale_data_hours
        self._lock = threading.Lock()
        self._submitted = 0
        self._rejected = 0
        self._data_points = 0
        self._valid_data_points = 0
        self._last_success: dict[DataSource, datetime] = {}
        self._last_failure: dict[DataSource, datetime] = {}
        self._results: deque[ScrapingResult] = deque(maxlen=history)

    # ── counters ──────────────────────────────────────────────────────────────

    def record_accepted(self, is_data_point: bool = False, usable: bool = True) -> None:
        with self._lock:
            self._submitted += 1
            if is_data_point:
                self._data_points += 1
                if usable:
                    self._valid_data_points += 1

    def record_rejected(self, reason: str) -> None:
        with self._lock:
            self._submitted += 1
            self._rejected += 1
        logger.warning(f"Record rejected: {reason}")

    def record_scrape(self, result: ScrapingResult) -> None:
        with self._lock:
            self._results.append(result)
            if result.success:
                self._last_success[result.source] = result.timestamp
            else:
                self._last_failure[result.source] = result.timestamp

    # ── report ────────────────────────────────────────────────────────────────

    def _failed_sources(self) -> list[DataSource]:
        failed = []
        for source, failed_at in self._last_failure.items():
            ok_at = self._last_success.get(source)
            if ok_at is None or failed_at > ok_at:
                failed.append(source)
        return sorted(failed, key=lambda s: s.value)

    def _freshness(self, now: datetime) -> float:
        if not self._last_success:
            return 0.0
        ages = np.array([(now - ts).total_seconds() / 3600 for ts in self._last_success.values()])
        scores = np.clip(100 - ages * FRESHNESS_POINTS_PER_HOUR, 0, 100)
        return float(scores.mean())

    def _alerts(self, now: datetime, failed: list[DataSource]) -> list[str]:
        alerts = [f"Source {s.value} failed on its last attempt" for s in failed]
        for source, ts in sorted(self._last_success.items(), key=lambda kv: kv[0].value):
            age_hours = (now - ts).total_seconds() / 3600
            if age_hours > self.stale_data_hours:
                alerts.append(f"{source.value} data is stale ({round(age_hours)} hours old)")
        return alerts

    def snapshot(self, now: datetime | None = None) -> SystemHealth:
        now = now or utcnow()
        with self._lock:
            known_sources = set(self._last_success) | set(self._last_failure)
            failed = self._failed_sources()
            day_ago = now - timedelta(hours=24)
            recent = [r for r in self._results if r.timestamp >= day_ago]
            error_rate = (sum(1 for r in recent if not r.success) / len(recent) * 100) if recent else 0.0
            avg_time = float(np.mean([r.execution_time_ms for r in recent])) if recent else 0.0
            # Rejected records and buffered-but-unusable points both count as failures
            failures = self._rejected + (self._data_points - self._valid_data_points)
            pass_rate = (self._submitted - failures) / self._submitted if self._submitted else 0.0
            alerts = self._alerts(now, failed)

            if known_sources and len(failed) / len(known_sources) >= 0.5:
                status = SystemStatus.CRITICAL
            elif alerts or (self._submitted and pass_rate < 0.8):
                status = SystemStatus.WARNING
            else:
                status = SystemStatus.HEALTHY

            return SystemHealth(
                timestamp=now,
                active_sources=len(known_sources) - len(failed),
                failed_sources=failed,
                last_successful_scrape=dict(self._last_success),
                records_submitted=self._submitted,
                records_rejected=self._rejected,
                total_data_points=self._data_points,
                validation_pass_rate=pass_rate,
                data_freshness_score=self._freshness(now),
                average_scrape_time_ms=avg_time,
                error_rate_24h=error_rate,
                active_alerts=alerts,
                system_status=status,
            )
