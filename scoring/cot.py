"""
COT (Commitments of Traders) Scorer.

The contrarian signal of the latest weekly report maps to the full range
(BUY +5, SELL -5, HOLD 0). With strength scaling on, the signal is faded
toward 0 when commercials hold only a thin net position:

    strength = |commercial_net| / (commercial_long + commercial_short)
    score    = base x min(1, strength / saturation)
"""
from typing import Sequence

from common.models import AssetCode, COTData, ContrarianSignal, Dimension
from scoring.base import SUB_SCORE_LIMIT, BaseScorer, Contribution, DimensionResult

SIGNAL_SCORES = {
    ContrarianSignal.BUY: SUB_SCORE_LIMIT,
    ContrarianSignal.SELL: -SUB_SCORE_LIMIT,
    ContrarianSignal.HOLD: 0.0,
}


class COTScorer(BaseScorer):
    dimension = Dimension.COT

    def __init__(self, strength_saturation: float = 0.25, scale_by_strength: bool = True):
        super().__init__()
        self.strength_saturation = strength_saturation
        self.scale_by_strength = scale_by_strength

    def strength_factor(self, report: COTData) -> float:
        if not self.scale_by_strength:
            return 1.0
        return min(1.0, report.commercial_strength / self.strength_saturation)

    def score(self, asset: AssetCode, reports: Sequence[COTData]) -> DimensionResult:
        reports = [r for r in reports if r.asset == asset]
        if not reports:
            return DimensionResult.empty(self.dimension)
        latest = max(reports, key=lambda r: r.report_date)

        score = SIGNAL_SCORES[latest.contrarian_signal] * self.strength_factor(latest)
        result = DimensionResult(dimension=self.dimension, score=score)
        self.split_factor(
            result,
            f"COT commercials {latest.commercial_sentiment.value.lower()} "
            f"vs retail {latest.retail_sentiment.value.lower()}",
            score,
        )
        result.contributions = [Contribution(magnitude=abs(score), confidence=latest.confidence_level)]
        return result
