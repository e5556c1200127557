"""Per-asset record buffers.

Ingestion appends, scoring reads. A scoring run never sees the live deques: it
works on a ``BufferSnapshot`` of tuples taken at the start of the run, so
records arriving mid-run wait for the next run.
"""
import threading
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timedelta

from common.models import (
    AssetCode, COTData, EconomicCalendarEvent, EconomicDataPoint, Record, SentimentData, utcnow,
)


@dataclass(frozen=True)
class BufferSnapshot:
    asset: AssetCode
    taken_at: datetime
    economic: tuple[EconomicDataPoint, ...] = ()
    cot: tuple[COTData, ...] = ()
    sentiment: tuple[SentimentData, ...] = ()
    calendar: tuple[EconomicCalendarEvent, ...] = ()

    def economic_since(self, days: int) -> list[EconomicDataPoint]:
        cutoff = self.taken_at - timedelta(days=days)
        return [p for p in self.economic if p.timestamp >= cutoff]

    def latest_cot(self, days: int):
        cutoff = self.taken_at - timedelta(days=days)
        recent = [r for r in self.cot if r.report_date >= cutoff]
        return max(recent, key=lambda r: r.report_date) if recent else None

    def latest_sentiment(self, days: int):
        cutoff = self.taken_at - timedelta(days=days)
        recent = [r for r in self.sentiment if r.timestamp >= cutoff]
        return max(recent, key=lambda r: r.timestamp) if recent else None


def _same_release(a: EconomicDataPoint, b: EconomicDataPoint) -> bool:
    """Same record id, or the same dated release of one indicator from one source."""
    if a.id == b.id:
        return True
    return (a.release_date is not None and a.release_date == b.release_date
            and a.indicator == b.indicator and a.source == b.source)


def _replace_or_append(records: deque, record, same) -> None:
    for i, existing in enumerate(records):
        if same(existing, record):
            del records[i]
            break
    records.append(record)


@dataclass
class _AssetBuffer:
    economic: deque
    cot: deque
    sentiment: deque
    calendar: deque
    lock: threading.Lock = field(default_factory=threading.Lock)


class RecordBuffers:
    """Bounded, thread-safe buffers for every asset in the universe."""

    def __init__(self, max_records: int = 500):
        self.max_records = max_records
        self._buffers = {
            asset: _AssetBuffer(
                economic=deque(maxlen=max_records),
                cot=deque(maxlen=max_records),
                sentiment=deque(maxlen=max_records),
                calendar=deque(maxlen=max_records),
            )
            for asset in AssetCode
        }

    def append(self, record: Record) -> None:
        buf = self._buffers[record.asset]
        with buf.lock:
            if isinstance(record, EconomicDataPoint):
                # A re-delivered release replaces the copy already buffered
                _replace_or_append(buf.economic, record, _same_release)
            elif isinstance(record, COTData):
                buf.cot.append(record)
            elif isinstance(record, SentimentData):
                buf.sentiment.append(record)
            elif isinstance(record, EconomicCalendarEvent):
                # A realized release replaces its scheduled placeholder
                _replace_or_append(buf.calendar, record, lambda a, b: a.id == b.id)
            else:
                raise TypeError(f"Unsupported record type: {type(record).__name__}")

    def snapshot(self, asset: AssetCode, now: datetime | None = None) -> BufferSnapshot:
        buf = self._buffers[asset]
        with buf.lock:
            return BufferSnapshot(
                asset=asset,
                taken_at=now or utcnow(),
                economic=tuple(buf.economic),
                cot=tuple(buf.cot),
                sentiment=tuple(buf.sentiment),
                calendar=tuple(buf.calendar),
            )

    def counts(self, asset: AssetCode) -> dict[str, int]:
        buf = self._buffers[asset]
        with buf.lock:
            return {
                "economic": len(buf.economic),
                "cot": len(buf.cot),
                "sentiment": len(buf.sentiment),
                "calendar": len(buf.calendar),
            }

    def clear(self) -> None:
        for buf in self._buffers.values():
            with buf.lock:
                buf.economic.clear()
                buf.cot.clear()
                buf.sentiment.clear()
                buf.calendar.clear()
