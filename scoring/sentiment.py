"""
Sentiment Scorer.

Retail positioning is read contrarian: a crowd that is mostly long is a
bearish signal. The latest snapshot in the window decides:

    score = contrarian_score x 5  (+1 / -1 if institutions are bullish / bearish)

clipped to [-5, +5].
"""
from typing import Sequence

import numpy as np

from common.models import AssetCode, Dimension, SentimentData, Sentiment
from scoring.base import SUB_SCORE_LIMIT, BaseScorer, Contribution, DimensionResult

INSTITUTIONAL_NUDGE = 1.0


class SentimentScorer(BaseScorer):
    dimension = Dimension.SENTIMENT

    def score(self, asset: AssetCode, records: Sequence[SentimentData]) -> DimensionResult:
        records = [r for r in records if r.asset == asset]
        if not records:
            return DimensionResult.empty(self.dimension)
        latest = max(records, key=lambda r: r.timestamp)

        crowd = latest.contrarian_score * SUB_SCORE_LIMIT
        nudge = 0.0
        if latest.institutional_sentiment == Sentiment.BULLISH:
            nudge = INSTITUTIONAL_NUDGE
        elif latest.institutional_sentiment == Sentiment.BEARISH:
            nudge = -INSTITUTIONAL_NUDGE

        score = float(np.clip(crowd + nudge, -SUB_SCORE_LIMIT, SUB_SCORE_LIMIT))
        result = DimensionResult(dimension=self.dimension, score=score)
        self.split_factor(
            result,
            f"Retail {latest.retail_long_percentage:.0f}% long / "
            f"{latest.retail_short_percentage:.0f}% short (contrarian)",
            crowd,
        )
        if nudge:
            self.split_factor(result, f"Institutional sentiment {latest.institutional_sentiment.value}", nudge)
        result.contributions = [Contribution(magnitude=abs(score), confidence=latest.confidence_level)]
        return result
