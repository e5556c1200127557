"""Central-bank feed built from observed policy-rate paths.

The score blends the recent trajectory of the policy rate (a least-squares
slope, in percentage points per year) with a static stance bias per
central bank. Metals have no central bank of their own; they read the USD
path inverted, since a tightening Fed weighs on gold and silver.
"""
import threading
from collections import defaultdict
from datetime import datetime
from typing import Iterable, Optional

import numpy as np

from common.exceptions import ProviderError
from common.logger import get_logger
from common.models import AssetCode
from scoring.base import SUB_SCORE_LIMIT, ProviderReading

logger = get_logger("policy_rates")

# Positive = hawkish lean, negative = dovish lean
STANCE_BIAS: dict[AssetCode, float] = {
    AssetCode.USD: 0.0,
    AssetCode.EUR: -0.2,
    AssetCode.GBP: 0.1,
    AssetCode.JPY: -0.5,
    AssetCode.AUD: 0.0,
    AssetCode.CAD: 0.0,
    AssetCode.CHF: -0.3,
    AssetCode.CNY: -0.4,
    AssetCode.NZD: -0.1,
}

SLOPE_WEIGHT = 4.0
BIAS_WEIGHT = 2.0
FULL_CONFIDENCE_OBSERVATIONS = 4


class PolicyRateProvider:
    name = "policy_rates"

    def __init__(self, stance_bias: Optional[dict[AssetCode, float]] = None):
        self.stance_bias = dict(STANCE_BIAS if stance_bias is None else stance_bias)
        self._paths: dict[AssetCode, dict[datetime, float]] = defaultdict(dict)
        self._lock = threading.Lock()

    def record(self, asset: AssetCode, when: datetime, rate: float) -> None:
        """Store one policy-rate observation; a repeat date overwrites."""
        if asset.is_metal:
            raise ValueError(f"{asset.value} has no policy rate")
        with self._lock:
            self._paths[asset][when] = float(rate)

    def update(self, asset: AssetCode, observations: Iterable[tuple[datetime, float]]) -> None:
        for when, rate in observations:
            self.record(asset, when, rate)

    def path(self, asset: AssetCode) -> list[tuple[datetime, float]]:
        with self._lock:
            return sorted(self._paths.get(asset, {}).items())

    def score(self, asset: AssetCode) -> ProviderReading:
        source = AssetCode.USD if asset.is_metal else asset
        path = self.path(source)
        if not path:
            raise ProviderError(self.name, f"no policy-rate observations for {source.value}")

        slope = 0.0
        if len(path) >= 2:
            t0 = path[0][0]
            years = np.array([(when - t0).total_seconds() / (365.25 * 86400) for when, _ in path])
            rates = np.array([rate for _, rate in path])
            if np.ptp(years) > 0:
                slope = float(np.polyfit(years, rates, 1)[0])

        bias = self.stance_bias.get(source, 0.0)
        raw = slope * SLOPE_WEIGHT + bias * BIAS_WEIGHT
        if asset.is_metal:
            raw = -raw
        score = float(np.clip(raw, -SUB_SCORE_LIMIT, SUB_SCORE_LIMIT))

        direction = "hiking" if slope > 0 else "cutting" if slope < 0 else "on hold"
        factor = f"{source.value} policy rate {direction} ({slope:+.2f}pp/yr)"
        if asset.is_metal:
            factor = f"{factor}, inverse for {asset.value}"
        logger.debug(f"{asset.value}: slope={slope:.3f} bias={bias:+.2f} -> {score:+.2f}")
        return ProviderReading(
            score=score,
            confidence=min(1.0, len(path) / FULL_CONFIDENCE_OBSERVATIONS),
            factors=[factor],
        )
