"""
FX BIAS PULSE — Bias Scoring Engine

Combines five independently scored dimensions into one bias per asset:

  Economic      release surprises x importance x factor weight
  Sentiment     contrarian read of retail positioning
  COT           commercials vs retail disagreement
  Technical     external price-action feed
  Central bank  external policy-trajectory feed

Each sub-score lives in [-5, +5]; total = sum (range [-25, +25]);
normalized = total / 25. The signal is a fixed threshold ladder on the
normalized score. Confidence is the average of the contributing records'
confidence levels, weighted by how much each moved its sub-score.

The engine reads buffers and registry but writes nothing; publishing the
result is the scheduler's job.
"""
import asyncio
import time
from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional

from common.logger import get_logger
from common.models import AssetCode, AssetScore, Dimension, Signal, utcnow
from config.settings import EngineSettings
from ingest.buffers import BufferSnapshot, RecordBuffers
from scoring.base import SUB_SCORE_LIMIT, DimensionResult, ScoreProvider, in_bounds
from scoring.central_bank import CentralBankScorer
from scoring.cot import COTScorer
from scoring.economic import EconomicScorer
from scoring.registry import FactorRegistry
from scoring.sentiment import SentimentScorer
from scoring.technical import TechnicalScorer

logger = get_logger("aggregator")

DIMENSION_ORDER = (
    Dimension.ECONOMIC,
    Dimension.SENTIMENT,
    Dimension.COT,
    Dimension.TECHNICAL,
    Dimension.CENTRAL_BANK,
)
MAX_TOTAL = SUB_SCORE_LIMIT * len(DIMENSION_ORDER)


def signal_from_score(normalized: float) -> Signal:
    if normalized >= 0.6:   return Signal.STRONG_BUY
    if normalized >= 0.2:   return Signal.BUY
    if normalized > -0.2:   return Signal.HOLD
    if normalized > -0.6:   return Signal.SELL
    return Signal.STRONG_SELL


def weighted_confidence(results: list[DimensionResult]) -> float:
    total_weight = 0.0
    weighted = 0.0
    for result in results:
        for c in result.contributions:
            total_weight += c.magnitude
            weighted += c.magnitude * c.confidence
    if total_weight <= 0:
        return 0.0
    return min(1.0, weighted / total_weight)


@dataclass(frozen=True)
class ScoringRun:
    """One engine invocation: the score plus what happened along the way."""
    score: AssetScore
    dimensions: dict[Dimension, DimensionResult]
    diagnostics: tuple[str, ...] = ()
    registry_changed: bool = False


@dataclass
class _RunContext:
    started: float
    diagnostics: list[str] = field(default_factory=list)


class BiasScoringEngine:
    def __init__(self, registry: FactorRegistry, buffers: RecordBuffers,
                 settings: Optional[EngineSettings] = None,
                 technical_provider: Optional[ScoreProvider] = None,
                 central_bank_provider: Optional[ScoreProvider] = None):
        self.registry = registry
        self.buffers = buffers
        self.settings = settings or EngineSettings()
        s = self.settings
        self.economic = EconomicScorer(saturation_denominator=s.economic_saturation_denominator)
        self.sentiment = SentimentScorer()
        self.cot = COTScorer(strength_saturation=s.cot_strength_saturation,
                             scale_by_strength=s.cot_scale_by_strength)
        self.technical = TechnicalScorer(technical_provider, timeout=s.provider_timeout_seconds)
        self.central_bank = CentralBankScorer(central_bank_provider, timeout=s.provider_timeout_seconds)

    async def calculate_bias_score(self, asset: AssetCode, now: Optional[datetime] = None) -> ScoringRun:
        """Score *asset* against the records buffered right now."""
        return await self.score_snapshot(self.buffers.snapshot(asset, now=now))

    async def score_snapshot(self, snapshot: BufferSnapshot) -> ScoringRun:
        asset = snapshot.asset
        ctx = _RunContext(started=time.perf_counter())
        registry = self.registry.snapshot()
        s = self.settings

        logger.info(f"Scoring {asset.value}...")

        results = {
            Dimension.ECONOMIC: self.economic.score(
                asset, snapshot.economic_since(s.economic_lookback_days), registry),
            Dimension.SENTIMENT: self.sentiment.score(
                asset, [r for r in [snapshot.latest_sentiment(s.sentiment_lookback_days)] if r]),
            Dimension.COT: self.cot.score(
                asset, [r for r in [snapshot.latest_cot(s.cot_lookback_days)] if r]),
        }
        technical, central_bank = await asyncio.gather(
            self.technical.score(asset), self.central_bank.score(asset))
        results[Dimension.TECHNICAL] = technical
        results[Dimension.CENTRAL_BANK] = central_bank

        for dim in DIMENSION_ORDER:
            if results[dim].error:
                ctx.diagnostics.append(f"{dim.value}: {results[dim].error}")

        registry_changed = self.registry.revision != registry.revision
        if registry_changed:
            msg = (f"factor registry changed during run "
                   f"(revision {registry.revision} -> {self.registry.revision})")
            ctx.diagnostics.append(msg)
            logger.warning(f"{asset.value}: {msg}")

        score = self._compose(asset, results, registry.revision, ctx)
        logger.info(f"{asset.value} scores: "
                    f"{', '.join(f'{d.value}={results[d].score:.2f}' for d in DIMENSION_ORDER)}")
        logger.info(f"{asset.value} BIAS = {score.normalized_score:+.2f} -> {score.signal.value} "
                    f"(confidence {score.confidence:.0%})")
        return ScoringRun(score=score, dimensions=results,
                          diagnostics=tuple(ctx.diagnostics), registry_changed=registry_changed)

    @staticmethod
    def _compose(asset: AssetCode, results: dict[Dimension, DimensionResult],
                 revision: int, ctx: _RunContext) -> AssetScore:
        subs = {dim: round(results[dim].score, 4) for dim in DIMENSION_ORDER}
        assert all(in_bounds(v) for v in subs.values()), f"sub-score out of range: {subs}"

        total = sum(subs[dim] for dim in DIMENSION_ORDER)
        normalized = total / MAX_TOTAL
        assert -1.0 <= normalized <= 1.0, f"normalized score out of range: {normalized}"

        bullish, bearish = [], []
        for dim in DIMENSION_ORDER:
            bullish.extend(results[dim].bullish_factors)
            bearish.extend(results[dim].bearish_factors)

        now = utcnow()
        return AssetScore(
            asset=asset,
            timestamp=now,
            economic_score=subs[Dimension.ECONOMIC],
            sentiment_score=subs[Dimension.SENTIMENT],
            cot_score=subs[Dimension.COT],
            technical_score=subs[Dimension.TECHNICAL],
            central_bank_score=subs[Dimension.CENTRAL_BANK],
            total_score=total,
            normalized_score=normalized,
            signal=signal_from_score(normalized),
            confidence=weighted_confidence(list(results.values())),
            bullish_factors=tuple(bullish),
            bearish_factors=tuple(bearish),
            registry_revision=revision,
            processing_time_ms=(time.perf_counter() - ctx.started) * 1000,
            last_updated=now,
        )


def compose_from_sub_scores(asset: AssetCode, sub_scores: list[float]) -> AssetScore:
    """Build an AssetScore straight from five sub-scores (no records)."""
    if len(sub_scores) != len(DIMENSION_ORDER):
        raise ValueError(f"expected {len(DIMENSION_ORDER)} sub-scores, got {len(sub_scores)}")
    results = {
        dim: DimensionResult(dimension=dim, score=value)
        for dim, value in zip(DIMENSION_ORDER, sub_scores)
    }
    ctx = _RunContext(started=time.perf_counter())
    return BiasScoringEngine._compose(asset, results, 0, ctx)
