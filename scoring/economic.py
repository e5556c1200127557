"""
Economic Scorer.

Aggregates release surprises over the lookback window:

    contribution = surprise_score x importance_weight x factor.weight x factor.direction

and rescales the raw sum into [-5, +5]. The scale denominator defaults to the
largest contribution a single release can make (importance 5 on the heaviest
factor), so one maximal surprise on the most important factor saturates the
dimension on its own.

Points that failed scraping or validation never contribute, nor do indicators
that no registered factor reads.
"""
from typing import Optional, Sequence

import pandas as pd

from common.models import AssetCode, Dimension, EconomicDataPoint
from scoring.base import BaseScorer, Contribution, DimensionResult, saturate
from scoring.registry import RegistrySnapshot

MAX_IMPORTANCE = 5.0


class EconomicScorer(BaseScorer):
    dimension = Dimension.ECONOMIC

    def __init__(self, saturation_denominator: Optional[float] = None):
        super().__init__()
        self.saturation_denominator = saturation_denominator

    def scale_for(self, registry: RegistrySnapshot) -> float:
        if self.saturation_denominator:
            return self.saturation_denominator
        return MAX_IMPORTANCE * registry.max_weight

    def score(self, asset: AssetCode, points: Sequence[EconomicDataPoint],
              registry: RegistrySnapshot) -> DimensionResult:
        rows = []
        for point in points:
            if point.asset != asset or not point.is_usable:
                continue
            factor = registry.factor_for(point.indicator)
            if factor is None:
                continue
            rows.append({
                "factor": factor.label,
                "contribution": point.surprise_score * point.importance_weight * factor.weight * factor.direction,
                "confidence": point.confidence_level,
            })

        scale = self.scale_for(registry)
        if not rows or scale <= 0:
            return DimensionResult.empty(self.dimension)

        df = pd.DataFrame(rows)
        result = DimensionResult(dimension=self.dimension, score=saturate(df["contribution"].sum(), scale))

        per_factor = df.groupby("factor", sort=True)["contribution"].sum()
        for label, value in per_factor.items():
            self.split_factor(result, label, saturate(value, scale))

        result.contributions = [
            Contribution(magnitude=abs(saturate(c, scale)), confidence=conf)
            for c, conf in zip(df["contribution"], df["confidence"])
        ]
        self.logger.debug(f"{asset.value} economic: raw={df['contribution'].sum():.2f} "
                          f"scale={scale:.2f} -> {result.score:.2f} ({len(df)} releases)")
        return result
