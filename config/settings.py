"""Configuration loader.

Every tunable of the bias engine lives here as a module constant read from the
environment (``.env`` at project root is loaded first). Components never read
these directly at call time; they receive an ``EngineSettings`` instance whose
defaults are the constants below, so one process can run several differently
tuned services side by side.
"""
import os
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv
from pydantic import BaseModel, Field

load_dotenv(Path(__file__).parent.parent / ".env")


def _env_float(name: str, default: float) -> float:
    return float(os.getenv(name, str(default)))


def _env_int(name: str, default: int) -> int:
    return int(os.getenv(name, str(default)))


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

ASSETS = ["USD", "EUR", "GBP", "JPY", "AUD", "CAD", "CHF", "CNY", "NZD", "XAU", "XAG"]

# Read by the record models themselves (derived fields), not via EngineSettings.
# |surprise| at or below the dead-band counts as "as expected".
SURPRISE_DEAD_BAND = _env_float("SURPRISE_DEAD_BAND", 0.02)

# Lookback windows per dimension (days)
ECONOMIC_LOOKBACK_DAYS = _env_int("ECONOMIC_LOOKBACK_DAYS", 90)
SENTIMENT_LOOKBACK_DAYS = _env_int("SENTIMENT_LOOKBACK_DAYS", 7)
COT_LOOKBACK_DAYS = _env_int("COT_LOOKBACK_DAYS", 21)

# Unset -> 5 (max importance) x highest factor weight in the registry
_raw_denominator = os.getenv("ECONOMIC_SATURATION_DENOMINATOR", "").strip()
ECONOMIC_SATURATION_DENOMINATOR: Optional[float] = float(_raw_denominator) if _raw_denominator else None

COT_STRENGTH_SATURATION = _env_float("COT_STRENGTH_SATURATION", 0.25)
COT_SCALE_BY_STRENGTH = _env_bool("COT_SCALE_BY_STRENGTH", True)

SENTIMENT_SUM_TOLERANCE = _env_float("SENTIMENT_SUM_TOLERANCE", 0.5)

# Ingest-driven scheduling triggers
SIGNIFICANCE_THRESHOLD = _env_float("SIGNIFICANCE_THRESHOLD", 0.05)
CONTRARIAN_TRIGGER_THRESHOLD = _env_float("CONTRARIAN_TRIGGER_THRESHOLD", 0.5)
EVENT_BUFFER_MINUTES = _env_int("EVENT_BUFFER_MINUTES", 5)

TICK_INTERVAL_SECONDS = _env_float("TICK_INTERVAL_SECONDS", 900)
MAX_CONCURRENT_RUNS = _env_int("MAX_CONCURRENT_RUNS", 4)
PROVIDER_TIMEOUT_SECONDS = _env_float("PROVIDER_TIMEOUT_SECONDS", 10)
CHANGE_EPSILON = _env_float("CHANGE_EPSILON", 1e-6)

BUFFER_MAX_RECORDS = _env_int("BUFFER_MAX_RECORDS", 500)
STALE_DATA_HOURS = _env_float("STALE_DATA_HOURS", 48)

SCORE_HISTORY_ENABLED = _env_bool("SCORE_HISTORY_ENABLED", False)


class EngineSettings(BaseModel):
    """Per-instance view of the tunables above."""

    economic_lookback_days: int = Field(ECONOMIC_LOOKBACK_DAYS, gt=0)
    sentiment_lookback_days: int = Field(SENTIMENT_LOOKBACK_DAYS, gt=0)
    cot_lookback_days: int = Field(COT_LOOKBACK_DAYS, gt=0)
    economic_saturation_denominator: Optional[float] = Field(ECONOMIC_SATURATION_DENOMINATOR, gt=0)
    cot_strength_saturation: float = Field(COT_STRENGTH_SATURATION, gt=0, le=1)
    cot_scale_by_strength: bool = COT_SCALE_BY_STRENGTH
    significance_threshold: float = Field(SIGNIFICANCE_THRESHOLD, ge=0)
    contrarian_trigger_threshold: float = Field(CONTRARIAN_TRIGGER_THRESHOLD, ge=0, le=1)
    event_buffer_minutes: int = Field(EVENT_BUFFER_MINUTES, ge=0)
    tick_interval_seconds: float = Field(TICK_INTERVAL_SECONDS, gt=0)
    max_concurrent_runs: int = Field(MAX_CONCURRENT_RUNS, gt=0)
    provider_timeout_seconds: float = Field(PROVIDER_TIMEOUT_SECONDS, gt=0)
    change_epsilon: float = Field(CHANGE_EPSILON, ge=0)
    buffer_max_records: int = Field(BUFFER_MAX_RECORDS, gt=0)
    stale_data_hours: float = Field(STALE_DATA_HOURS, gt=0)
    score_history_enabled: bool = SCORE_HISTORY_ENABLED
