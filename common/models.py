"""Core Pydantic models for FX BIAS PULSE.

Records are frozen: a buffered observation or a published score is never
mutated in place, replacements are new objects. Derived analysis fields
(surprise, COT net positions, contrarian readings) are always computed here
and never taken from the source payload.
"""
import math
import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Optional, Union

from pydantic import BaseModel, ConfigDict, Field, computed_field, field_validator, model_validator

from config.settings import SENTIMENT_SUM_TOLERANCE, SURPRISE_DEAD_BAND


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _new_id() -> str:
    return uuid.uuid4().hex[:12]


class AssetCode(str, Enum):
    USD = "USD"
    EUR = "EUR"
    GBP = "GBP"
    JPY = "JPY"
    AUD = "AUD"
    CAD = "CAD"
    CHF = "CHF"
    CNY = "CNY"
    NZD = "NZD"
    XAU = "XAU"
    XAG = "XAG"

    @property
    def is_metal(self) -> bool:
        return self in (AssetCode.XAU, AssetCode.XAG)


class DataSource(str, Enum):
    FRED = "FRED"
    ECB = "ECB"
    BOE = "BOE"
    BOJ = "BOJ"
    BLS = "BLS"
    EUROSTAT = "EUROSTAT"
    TRADING_ECONOMICS = "TRADING_ECONOMICS"
    INVESTING_COM = "INVESTING_COM"
    CFTC = "CFTC"
    DAILYFX = "DAILYFX"
    MARKET_DATA = "MARKET_DATA"
    MANUAL = "MANUAL"
    CALCULATED = "CALCULATED"


class IndicatorType(str, Enum):
    UNEMPLOYMENT = "UNEMPLOYMENT"
    INFLATION_CPI = "INFLATION_CPI"
    INFLATION_PPI = "INFLATION_PPI"
    GDP_GROWTH = "GDP_GROWTH"
    INTEREST_RATE = "INTEREST_RATE"
    PMI_MANUFACTURING = "PMI_MANUFACTURING"
    PMI_SERVICES = "PMI_SERVICES"
    RETAIL_SALES = "RETAIL_SALES"
    INDUSTRIAL_PRODUCTION = "INDUSTRIAL_PRODUCTION"
    CONSUMER_CONFIDENCE = "CONSUMER_CONFIDENCE"
    TRADE_BALANCE = "TRADE_BALANCE"
    CURRENT_ACCOUNT = "CURRENT_ACCOUNT"
    GOVERNMENT_DEBT = "GOVERNMENT_DEBT"
    CURRENCY_RATE = "CURRENCY_RATE"
    BOND_YIELD = "BOND_YIELD"
    PRECIOUS_METAL_PRICE = "PRECIOUS_METAL_PRICE"
    COT_COMMERCIAL = "COT_COMMERCIAL"
    COT_NON_COMMERCIAL = "COT_NON_COMMERCIAL"
    COT_RETAIL = "COT_RETAIL"
    SENTIMENT_RETAIL = "SENTIMENT_RETAIL"
    SENTIMENT_INSTITUTIONAL = "SENTIMENT_INSTITUTIONAL"
    RATE_CUT_PROBABILITY = "RATE_CUT_PROBABILITY"


class Frequency(str, Enum):
    DAILY = "DAILY"
    WEEKLY = "WEEKLY"
    MONTHLY = "MONTHLY"
    QUARTERLY = "QUARTERLY"
    YEARLY = "YEARLY"


class Sentiment(str, Enum):
    BULLISH = "BULLISH"
    BEARISH = "BEARISH"
    NEUTRAL = "NEUTRAL"


class ContrarianSignal(str, Enum):
    BUY = "BUY"
    SELL = "SELL"
    HOLD = "HOLD"


class Impact(str, Enum):
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"


class MarketReaction(str, Enum):
    POSITIVE = "POSITIVE"
    NEGATIVE = "NEGATIVE"
    NEUTRAL = "NEUTRAL"


class Signal(str, Enum):
    STRONG_BUY = "STRONG_BUY"
    BUY = "BUY"
    HOLD = "HOLD"
    SELL = "SELL"
    STRONG_SELL = "STRONG_SELL"


class Dimension(str, Enum):
    ECONOMIC = "economic"
    SENTIMENT = "sentiment"
    COT = "cot"
    TECHNICAL = "technical"
    CENTRAL_BANK = "central_bank"


class SchedulerState(str, Enum):
    IDLE = "IDLE"
    PENDING = "PENDING"
    RUNNING = "RUNNING"


class LifecycleState(str, Enum):
    UNINITIALIZED = "UNINITIALIZED"
    INITIALIZED = "INITIALIZED"
    STARTED = "STARTED"
    STOPPED = "STOPPED"
    CLOSED = "CLOSED"


class SystemStatus(str, Enum):
    HEALTHY = "HEALTHY"
    WARNING = "WARNING"
    CRITICAL = "CRITICAL"


# ── helpers ───────────────────────────────────────────────────────────────────

def compute_surprise(actual: Optional[float], forecast: Optional[float]) -> Optional[float]:
    """(actual - forecast) / |forecast|; undefined without a non-zero forecast."""
    if actual is None or forecast is None or forecast == 0:
        return None
    return (actual - forecast) / abs(forecast)


def sign_with_dead_band(value: Optional[float], dead_band: float = 0.0) -> int:
    if value is None or abs(value) <= dead_band:
        return 0
    return 1 if value > 0 else -1


def _as_utc(value: Optional[datetime]) -> Optional[datetime]:
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class _Record(BaseModel):
    model_config = ConfigDict(frozen=True)

    @field_validator("*", mode="after")
    @classmethod
    def _naive_datetimes_are_utc(cls, value):
        if isinstance(value, datetime):
            return _as_utc(value)
        return value


# ── normalized records ────────────────────────────────────────────────────────

class EconomicDataPoint(_Record):
    id: str = Field(default_factory=_new_id)
    asset: AssetCode
    indicator: IndicatorType
    source: DataSource
    timestamp: datetime = Field(default_factory=utcnow)

    actual: Optional[float] = None
    forecast: Optional[float] = None
    previous: Optional[float] = None

    unit: str = ""
    frequency: Frequency = Frequency.MONTHLY
    release_date: Optional[datetime] = None
    next_release: Optional[datetime] = None

    importance_weight: float = Field(3.0, ge=1, le=5)
    confidence_level: float = Field(1.0, ge=0, le=1)
    last_updated: datetime = Field(default_factory=utcnow)
    scrape_success: bool = True
    validation_passed: bool = True

    @computed_field
    @property
    def surprise(self) -> Optional[float]:
        return compute_surprise(self.actual, self.forecast)

    @computed_field
    @property
    def surprise_score(self) -> int:
        return sign_with_dead_band(self.surprise, SURPRISE_DEAD_BAND)

    @computed_field
    @property
    def trend_score(self) -> int:
        if self.actual is None or self.previous is None:
            return 0
        return sign_with_dead_band(self.actual - self.previous)

    @property
    def is_usable(self) -> bool:
        """Only scraped and validated points may feed a sub-score."""
        return self.scrape_success and self.validation_passed


class COTData(_Record):
    asset: AssetCode
    report_date: datetime

    commercial_long: float = Field(ge=0)
    commercial_short: float = Field(ge=0)
    commercial_net: float = 0.0

    non_commercial_long: float = Field(0.0, ge=0)
    non_commercial_short: float = Field(0.0, ge=0)
    non_commercial_net: float = 0.0

    retail_long: float = Field(ge=0)
    retail_short: float = Field(ge=0)
    retail_net: float = 0.0

    confidence_level: float = Field(1.0, ge=0, le=1)
    source: DataSource = DataSource.CFTC
    last_updated: datetime = Field(default_factory=utcnow)

    @model_validator(mode="before")
    @classmethod
    def _recompute_nets(cls, data):
        if not isinstance(data, dict):
            return data
        data = dict(data)
        for trader_class in ("commercial", "non_commercial", "retail"):
            long_ = data.get(f"{trader_class}_long")
            short = data.get(f"{trader_class}_short")
            if long_ is None and short is None:
                continue
            data[f"{trader_class}_net"] = float(long_ or 0) - float(short or 0)
        return data

    @computed_field
    @property
    def commercial_sentiment(self) -> Sentiment:
        return _sentiment_from_net(self.commercial_net)

    @computed_field
    @property
    def non_commercial_sentiment(self) -> Sentiment:
        return _sentiment_from_net(self.non_commercial_net)

    @computed_field
    @property
    def retail_sentiment(self) -> Sentiment:
        return _sentiment_from_net(self.retail_net)

    @computed_field
    @property
    def contrarian_signal(self) -> ContrarianSignal:
        # Smart money wins only when it disagrees with the crowd
        if self.commercial_net > 0 and self.retail_net < 0:
            return ContrarianSignal.BUY
        if self.commercial_net < 0 and self.retail_net > 0:
            return ContrarianSignal.SELL
        return ContrarianSignal.HOLD

    @property
    def commercial_strength(self) -> float:
        """|commercial_net| / (commercial_long + commercial_short), in [0, 1]."""
        gross = self.commercial_long + self.commercial_short
        if gross <= 0:
            return 0.0
        return abs(self.commercial_net) / gross


def _sentiment_from_net(net: float) -> Sentiment:
    if net > 0:
        return Sentiment.BULLISH
    if net < 0:
        return Sentiment.BEARISH
    return Sentiment.NEUTRAL


class SentimentData(_Record):
    asset: AssetCode
    timestamp: datetime = Field(default_factory=utcnow)

    retail_long_percentage: float = Field(ge=0, le=100)
    retail_short_percentage: float = Field(ge=0, le=100)
    institutional_sentiment: Optional[Sentiment] = None

    fear_greed_index: Optional[float] = Field(None, ge=0, le=100)
    volatility_index: Optional[float] = Field(None, ge=0)

    confidence_level: float = Field(1.0, ge=0, le=1)
    source: DataSource = DataSource.DAILYFX
    last_updated: datetime = Field(default_factory=utcnow)

    @model_validator(mode="after")
    def _percentages_sum_to_100(self):
        total = self.retail_long_percentage + self.retail_short_percentage
        if abs(total - 100.0) > SENTIMENT_SUM_TOLERANCE:
            raise ValueError(
                f"retail long/short percentages sum to {total:.2f}, expected 100 ± {SENTIMENT_SUM_TOLERANCE}"
            )
        return self

    @computed_field
    @property
    def retail_sentiment(self) -> Sentiment:
        if self.retail_long_percentage > self.retail_short_percentage:
            return Sentiment.BULLISH
        if self.retail_long_percentage < self.retail_short_percentage:
            return Sentiment.BEARISH
        return Sentiment.NEUTRAL

    @computed_field
    @property
    def contrarian_score(self) -> float:
        """Negative retail skew: a crowded long book reads bearish."""
        total = self.retail_long_percentage + self.retail_short_percentage
        skew = (self.retail_long_percentage - self.retail_short_percentage) / total
        return float(max(-1.0, min(1.0, -skew)))


class EconomicCalendarEvent(_Record):
    id: str = Field(default_factory=_new_id)
    asset: AssetCode
    indicator: IndicatorType
    event_name: str = Field(min_length=1)
    event_time: datetime
    impact: Impact = Impact.MEDIUM

    forecast: Optional[float] = None
    previous: Optional[float] = None
    actual: Optional[float] = None

    source: DataSource = DataSource.TRADING_ECONOMICS
    last_updated: datetime = Field(default_factory=utcnow)

    @computed_field
    @property
    def surprise(self) -> Optional[float]:
        return compute_surprise(self.actual, self.forecast)

    @computed_field
    @property
    def market_reaction(self) -> MarketReaction:
        direction = sign_with_dead_band(self.surprise, SURPRISE_DEAD_BAND)
        if direction > 0:
            return MarketReaction.POSITIVE
        if direction < 0:
            return MarketReaction.NEGATIVE
        return MarketReaction.NEUTRAL

    @property
    def is_released(self) -> bool:
        return self.actual is not None


Record = Union[EconomicDataPoint, COTData, SentimentData, EconomicCalendarEvent]


# ── configuration entities ────────────────────────────────────────────────────

class Factor(BaseModel):
    """Factor Registry entry: one weighted view on one or more indicators."""
    model_config = ConfigDict(frozen=True)

    name: str = Field(min_length=1)
    indicators: tuple[IndicatorType, ...] = Field(min_length=1)
    weight: float = Field(gt=0)
    direction: int = 1
    description: str = ""

    @field_validator("weight")
    @classmethod
    def _finite_weight(cls, value: float) -> float:
        if not math.isfinite(value):
            raise ValueError("weight must be finite")
        return value

    @field_validator("direction")
    @classmethod
    def _unit_direction(cls, value: int) -> int:
        if value not in (1, -1):
            raise ValueError("direction must be +1 or -1")
        return value

    @property
    def label(self) -> str:
        return self.description or self.name


class ScheduledEvent(_Record):
    id: str = Field(default_factory=_new_id)
    asset: AssetCode
    trigger_at: datetime
    reason: str = Field(min_length=1)
    priority: Impact = Impact.MEDIUM


# ── engine output ─────────────────────────────────────────────────────────────

class AssetScore(BaseModel):
    model_config = ConfigDict(frozen=True)

    asset: AssetCode
    timestamp: datetime

    economic_score: float = Field(ge=-5, le=5)
    sentiment_score: float = Field(ge=-5, le=5)
    cot_score: float = Field(ge=-5, le=5)
    technical_score: float = Field(ge=-5, le=5)
    central_bank_score: float = Field(ge=-5, le=5)

    total_score: float = Field(ge=-25, le=25)
    normalized_score: float = Field(ge=-1, le=1)

    signal: Signal
    confidence: float = Field(ge=0, le=1)

    bullish_factors: tuple[str, ...] = ()
    bearish_factors: tuple[str, ...] = ()

    registry_revision: int = 0
    processing_time_ms: float = 0.0
    last_updated: datetime = Field(default_factory=utcnow)

    @property
    def sub_scores(self) -> dict[Dimension, float]:
        return {
            Dimension.ECONOMIC: self.economic_score,
            Dimension.SENTIMENT: self.sentiment_score,
            Dimension.COT: self.cot_score,
            Dimension.TECHNICAL: self.technical_score,
            Dimension.CENTRAL_BANK: self.central_bank_score,
        }


class TriggerOutcome(BaseModel):
    check: str
    has_changes: bool
    detail: str
    previous: Optional[float] = None
    current: Optional[float] = None


# ── telemetry ─────────────────────────────────────────────────────────────────

class ScrapingResult(BaseModel):
    source: DataSource
    asset: Optional[AssetCode] = None
    success: bool
    record_count: int = 0
    errors: list[str] = []
    execution_time_ms: float = 0.0
    timestamp: datetime = Field(default_factory=utcnow)


class SystemHealth(BaseModel):
    timestamp: datetime = Field(default_factory=utcnow)

    active_sources: int = 0
    failed_sources: list[DataSource] = []
    last_successful_scrape: dict[DataSource, datetime] = {}

    records_submitted: int = 0
    records_rejected: int = 0
    total_data_points: int = 0
    validation_pass_rate: float = 0.0
    data_freshness_score: float = 0.0

    average_scrape_time_ms: float = 0.0
    error_rate_24h: float = 0.0

    active_alerts: list[str] = []
    system_status: SystemStatus = SystemStatus.HEALTHY


class AssetSchedulerStatus(BaseModel):
    asset: AssetCode
    state: SchedulerState
    rerun_queued: bool = False
    pending_reasons: list[str] = []
    runs_completed: int = 0
    requests_coalesced: int = 0
    last_run_at: Optional[datetime] = None
    last_reasons: list[str] = []
    last_diagnostics: list[str] = []
    last_error: Optional[str] = None


class ServiceStatus(BaseModel):
    lifecycle: LifecycleState
    assets: dict[AssetCode, AssetSchedulerStatus] = {}
    health: SystemHealth
    total_assets: int = len(AssetCode)
    assets_with_scores: int = 0
    average_confidence: float = 0.0
    registry_revision: int = 0
    scheduled_events: int = 0
    last_update: Optional[datetime] = None
