"""Tests for dimension scorers and the bias scoring engine."""
import asyncio
from datetime import timedelta

import pytest

from common.exceptions import ProviderError
from common.models import (
    AssetCode, COTData, DataSource, Dimension, EconomicDataPoint, IndicatorType, Sentiment,
    SentimentData, Signal, utcnow,
)
from config.settings import EngineSettings
from ingest.buffers import RecordBuffers
from scoring.aggregator import (
    BiasScoringEngine, compose_from_sub_scores, signal_from_score, weighted_confidence,
)
from scoring.base import Contribution, DimensionResult, ProviderReading, saturate
from scoring.cot import COTScorer
from scoring.economic import EconomicScorer
from scoring.registry import FactorRegistry
from scoring.sentiment import SentimentScorer
from scoring.technical import TechnicalScorer


def point(indicator=IndicatorType.INFLATION_CPI, actual=3.4, forecast=3.0, asset=AssetCode.USD, **kw):
    return EconomicDataPoint(asset=asset, indicator=indicator, source=DataSource.FRED,
                             actual=actual, forecast=forecast, **kw)


def cot(asset=AssetCode.EUR, **kw):
    data = dict(report_date=utcnow() - timedelta(days=2),
                commercial_long=5000, commercial_short=3800, retail_long=2000, retail_short=2900)
    data.update(kw)
    return COTData(asset=asset, **data)


def sentiment(long_pct=70.0, asset=AssetCode.GBP, **kw):
    return SentimentData(asset=asset, retail_long_percentage=long_pct,
                         retail_short_percentage=100 - long_pct, **kw)


class StaticProvider:
    name = "static"

    def __init__(self, value):
        self.value = value
        self.calls = 0

    def score(self, asset):
        self.calls += 1
        if isinstance(self.value, Exception):
            raise self.value
        return self.value


class TestSaturate:
    def test_linear_then_clipped(self):
        assert saturate(1.5, 3) == pytest.approx(2.5)
        assert saturate(30, 3) == 5.0
        assert saturate(-30, 3) == -5.0

    def test_zero_scale(self):
        assert saturate(10, 0) == 0.0


class TestEconomicScorer:
    def setup_method(self):
        self.scorer = EconomicScorer()
        self.registry = FactorRegistry().snapshot()

    def test_empty_window(self):
        result = self.scorer.score(AssetCode.USD, [], self.registry)
        assert result.score == 0
        assert result.contributions == []
        assert result.bullish_factors == [] and result.bearish_factors == []

    def test_single_maximal_surprise_saturates(self):
        result = self.scorer.score(AssetCode.USD, [point(importance_weight=5)], self.registry)
        assert result.score == pytest.approx(5.0)
        assert result.bullish_factors

    def test_unemployment_beat_is_bearish(self):
        result = self.scorer.score(
            AssetCode.USD, [point(IndicatorType.UNEMPLOYMENT, actual=4.3, forecast=4.0)], self.registry)
        assert result.score < 0
        assert result.bearish_factors and not result.bullish_factors

    def test_failed_scrape_never_counts(self):
        base = [point(importance_weight=3)]
        before = self.scorer.score(AssetCode.USD, base, self.registry).score
        poisoned = base + [point(actual=1e9, forecast=-1.0, importance_weight=5, scrape_success=False)]
        assert self.scorer.score(AssetCode.USD, poisoned, self.registry).score == before

    def test_failed_validation_never_counts(self):
        result = self.scorer.score(AssetCode.USD, [point(validation_passed=False)], self.registry)
        assert result.score == 0

    def test_other_assets_ignored(self):
        result = self.scorer.score(AssetCode.EUR, [point(asset=AssetCode.USD)], self.registry)
        assert result.score == 0

    def test_denominator_override(self):
        scorer = EconomicScorer(saturation_denominator=30)
        result = scorer.score(AssetCode.USD, [point(importance_weight=5)], self.registry)
        assert result.score == pytest.approx(2.5)


class TestSentimentScorer:
    def setup_method(self):
        self.scorer = SentimentScorer()

    def test_crowded_long_is_strongly_negative(self):
        result = self.scorer.score(AssetCode.GBP, [sentiment(70)])
        assert result.score == pytest.approx(-2.0)
        assert result.bearish_factors

    def test_institutional_nudge(self):
        result = self.scorer.score(AssetCode.GBP, [sentiment(70, institutional_sentiment=Sentiment.BULLISH)])
        assert result.score == pytest.approx(-1.0)

    def test_latest_snapshot_wins(self):
        old = sentiment(80, timestamp=utcnow() - timedelta(days=2))
        new = sentiment(30, timestamp=utcnow())
        assert self.scorer.score(AssetCode.GBP, [new, old]).score == pytest.approx(2.0)

    def test_empty(self):
        assert self.scorer.score(AssetCode.GBP, []).score == 0


class TestCOTScorer:
    def test_buy_scaled_by_strength(self):
        result = COTScorer().score(AssetCode.EUR, [cot()])
        expected = 5.0 * (1200 / 8800) / 0.25
        assert result.score == pytest.approx(expected)
        assert result.bullish_factors

    def test_full_strength_without_scaling(self):
        assert COTScorer(scale_by_strength=False).score(AssetCode.EUR, [cot()]).score == 5.0

    def test_sell(self):
        report = cot(commercial_long=1000, commercial_short=4000, retail_long=3000, retail_short=1000)
        assert COTScorer().score(AssetCode.EUR, [report]).score == -5.0

    def test_hold(self):
        report = cot(retail_long=3000, retail_short=1000)
        assert COTScorer().score(AssetCode.EUR, [report]).score == 0.0


class TestExternalScorer:
    @pytest.mark.asyncio
    async def test_no_provider_is_empty(self):
        result = await TechnicalScorer().score(AssetCode.USD)
        assert result.score == 0 and result.error is None

    @pytest.mark.asyncio
    async def test_reading_is_used(self):
        provider = StaticProvider(ProviderReading(score=2.5, confidence=0.8, factors=["MA20 above MA50"]))
        result = await TechnicalScorer(provider).score(AssetCode.USD)
        assert result.score == 2.5
        assert result.bullish_factors == ["MA20 above MA50 (+2.50)"]
        assert result.contributions == [Contribution(magnitude=2.5, confidence=0.8)]

    @pytest.mark.asyncio
    async def test_plain_float_accepted(self):
        result = await TechnicalScorer(StaticProvider(-1.5)).score(AssetCode.USD)
        assert result.score == -1.5

    @pytest.mark.asyncio
    async def test_out_of_range_excluded(self):
        result = await TechnicalScorer(StaticProvider(7.0)).score(AssetCode.USD)
        assert result.score == 0
        assert "out-of-range" in result.error

    @pytest.mark.asyncio
    async def test_provider_error_excluded(self):
        provider = StaticProvider(ProviderError("static", "feed down"))
        result = await TechnicalScorer(provider).score(AssetCode.USD)
        assert result.score == 0
        assert "feed down" in result.error

    @pytest.mark.asyncio
    async def test_stuck_provider_times_out(self):
        class Stuck:
            name = "stuck"

            async def score(self, asset):
                await asyncio.sleep(10)

        result = await TechnicalScorer(Stuck(), timeout=0.05).score(AssetCode.USD)
        assert result.score == 0
        assert "timed out" in result.error


class TestSignal:
    @pytest.mark.parametrize("normalized,signal", [
        (1.0, Signal.STRONG_BUY), (0.6, Signal.STRONG_BUY), (0.59, Signal.BUY),
        (0.2, Signal.BUY), (0.19, Signal.HOLD), (0.0, Signal.HOLD), (-0.19, Signal.HOLD),
        (-0.2, Signal.SELL), (-0.59, Signal.SELL), (-0.6, Signal.STRONG_SELL), (-1.0, Signal.STRONG_SELL),
    ])
    def test_thresholds(self, normalized, signal):
        assert signal_from_score(normalized) == signal

    def test_example_sub_scores(self):
        score = compose_from_sub_scores(AssetCode.USD, [2, 1, 0, -1, 3])
        assert score.total_score == 5
        assert score.normalized_score == pytest.approx(0.2)
        assert score.signal == Signal.BUY

    def test_extremes_stay_in_range(self):
        assert compose_from_sub_scores(AssetCode.USD, [5] * 5).normalized_score == 1.0
        assert compose_from_sub_scores(AssetCode.USD, [-5] * 5).normalized_score == -1.0

    def test_wrong_arity(self):
        with pytest.raises(ValueError):
            compose_from_sub_scores(AssetCode.USD, [1, 2])


class TestConfidence:
    def test_weighted_by_magnitude(self):
        results = [
            DimensionResult(dimension=Dimension.ECONOMIC, score=5,
                            contributions=[Contribution(magnitude=5, confidence=0.5)]),
            DimensionResult(dimension=Dimension.SENTIMENT, score=-2,
                            contributions=[Contribution(magnitude=2, confidence=1.0)]),
        ]
        assert weighted_confidence(results) == pytest.approx((2.5 + 2.0) / 7)

    def test_zero_without_contributions(self):
        assert weighted_confidence([DimensionResult(dimension=Dimension.COT)]) == 0.0


class TestEngine:
    def setup_method(self):
        self.buffers = RecordBuffers()
        self.registry = FactorRegistry()

    def engine(self, **kw):
        return BiasScoringEngine(self.registry, self.buffers, EngineSettings(), **kw)

    @pytest.mark.asyncio
    async def test_no_data_is_neutral(self):
        run = await self.engine().calculate_bias_score(AssetCode.CHF)
        assert run.score.total_score == 0
        assert run.score.signal == Signal.HOLD
        assert run.score.confidence == 0.0
        assert run.diagnostics == ()

    @pytest.mark.asyncio
    async def test_total_is_sum_of_sub_scores(self):
        self.buffers.append(point(asset=AssetCode.EUR, indicator=IndicatorType.GDP_GROWTH, importance_weight=4))
        self.buffers.append(cot())
        self.buffers.append(sentiment(35, asset=AssetCode.EUR))
        run = await self.engine(technical_provider=StaticProvider(1.25),
                                central_bank_provider=StaticProvider(-0.5)).calculate_bias_score(AssetCode.EUR)
        s = run.score
        assert s.total_score == pytest.approx(sum(s.sub_scores.values()))
        assert s.normalized_score == pytest.approx(s.total_score / 25)
        assert all(-5 <= v <= 5 for v in s.sub_scores.values())
        assert s.technical_score == 1.25 and s.central_bank_score == -0.5
        assert 0 < s.confidence <= 1
        assert s.registry_revision == 0

    @pytest.mark.asyncio
    async def test_provider_failure_goes_to_diagnostics(self):
        engine = self.engine(technical_provider=StaticProvider(ProviderError("static", "no prices")))
        run = await engine.calculate_bias_score(AssetCode.USD)
        assert run.score.technical_score == 0
        assert any("no prices" in d for d in run.diagnostics)

    @pytest.mark.asyncio
    async def test_stale_records_outside_window(self):
        self.buffers.append(point(timestamp=utcnow() - timedelta(days=200), importance_weight=5))
        run = await self.engine().calculate_bias_score(AssetCode.USD)
        assert run.score.economic_score == 0

    @pytest.mark.asyncio
    async def test_same_inputs_same_signal(self):
        self.buffers.append(point(importance_weight=4))
        engine = self.engine()
        first = await engine.calculate_bias_score(AssetCode.USD)
        second = await engine.calculate_bias_score(AssetCode.USD)
        assert first.score.signal == second.score.signal
        assert first.score.normalized_score == second.score.normalized_score

    @pytest.mark.asyncio
    async def test_registry_change_mid_run_is_reported(self):
        registry = self.registry

        class Meddling:
            name = "meddling"

            async def score(self, asset):
                registry.set_weight("growth", 1.5)
                return 0.0

        run = await self.engine(technical_provider=Meddling()).calculate_bias_score(AssetCode.USD)
        assert run.registry_changed
        assert run.score.registry_revision == 0
        assert any("registry changed" in d for d in run.diagnostics)
