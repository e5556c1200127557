"""Base scorer abstract class and shared dimension types."""
import asyncio
import inspect
from abc import ABC, abstractmethod
from typing import Awaitable, Optional, Protocol, Union

import numpy as np
import pandas as pd
from pydantic import BaseModel, Field

from common.exceptions import ProviderError
from common.logger import get_logger
from common.models import AssetCode, Dimension

SUB_SCORE_LIMIT = 5.0


def saturate(value: float, scale: float = 1.0) -> float:
    """Linearly map ``value / scale`` onto [-5, +5], clipping beyond ±1."""
    if scale <= 0:
        return 0.0
    return float(np.clip(value / scale * SUB_SCORE_LIMIT, -SUB_SCORE_LIMIT, SUB_SCORE_LIMIT))


def in_bounds(score: float) -> bool:
    return bool(np.isfinite(score)) and -SUB_SCORE_LIMIT <= score <= SUB_SCORE_LIMIT


def zscore_last(series: pd.Series, window: int = 20) -> float:
    """Rolling Z-score of the last value, clipped to [-3, +3]."""
    if len(series) < window:
        return 0.0
    rolling = series.rolling(window)
    mean = rolling.mean().iloc[-1]
    std = rolling.std().iloc[-1]
    if std == 0 or np.isnan(std):
        return 0.0
    z = (series.iloc[-1] - mean) / std
    return float(np.clip(z, -3, 3))


class Contribution(BaseModel):
    """One record's share of a sub-score, used for the confidence average."""
    magnitude: float = Field(ge=0)
    confidence: float = Field(ge=0, le=1)


class DimensionResult(BaseModel):
    dimension: Dimension
    score: float = Field(0.0, ge=-SUB_SCORE_LIMIT, le=SUB_SCORE_LIMIT)
    bullish_factors: list[str] = []
    bearish_factors: list[str] = []
    contributions: list[Contribution] = []
    error: Optional[str] = None

    @classmethod
    def empty(cls, dimension: Dimension, error: Optional[str] = None) -> "DimensionResult":
        return cls(dimension=dimension, error=error)


class ProviderReading(BaseModel):
    """What an external technical / central-bank feed hands the engine."""
    score: float
    confidence: float = Field(1.0, ge=0, le=1)
    factors: list[str] = []


class ScoreProvider(Protocol):
    name: str

    def score(self, asset: AssetCode) -> Union[ProviderReading, Awaitable[ProviderReading]]:
        ...


class BaseScorer(ABC):
    dimension: Dimension

    def __init__(self):
        self.logger = get_logger(self.__class__.__name__)

    @abstractmethod
    def score(self, asset: AssetCode, *args, **kwargs) -> DimensionResult:
        """Return a sub-score in [-5, +5] with its contributing factors."""
        pass

    def split_factor(self, result: DimensionResult, label: str, value: float) -> None:
        """File a named factor under bullish or bearish by the sign of its push."""
        if value > 0:
            result.bullish_factors.append(f"{label} (+{value:.2f})")
        elif value < 0:
            result.bearish_factors.append(f"{label} ({value:.2f})")


class ExternalScorer(BaseScorer):
    """Sub-score supplied by an external feed.

    The feed is trusted to do its own reduction; the engine only checks the
    bound. A feed that times out, raises, or returns an out-of-range score is
    excluded from the run (sub-score 0, no confidence) and the reason is kept
    on the result.
    """
    label: str = "External feed"

    def __init__(self, provider: Optional[ScoreProvider] = None, timeout: float = 10.0):
        super().__init__()
        self.provider = provider
        self.timeout = timeout

    async def _read(self, asset: AssetCode) -> ProviderReading:
        call = self.provider.score
        if inspect.iscoroutinefunction(call):
            reading = await call(asset)
        else:
            reading = await asyncio.to_thread(call, asset)
            if inspect.isawaitable(reading):
                reading = await reading
        if not isinstance(reading, ProviderReading):
            reading = ProviderReading(score=float(reading))
        return reading

    async def score(self, asset: AssetCode) -> DimensionResult:
        if self.provider is None:
            return DimensionResult.empty(self.dimension)
        name = getattr(self.provider, "name", type(self.provider).__name__)
        try:
            reading = await asyncio.wait_for(self._read(asset), timeout=self.timeout)
        except asyncio.TimeoutError:
            return self._failed(asset, f"{name} timed out after {self.timeout:g}s")
        except ProviderError as e:
            return self._failed(asset, str(e))
        except Exception as e:
            self.logger.exception(f"{name} raised for {asset.value}")
            return self._failed(asset, f"{name} failed: {e}")

        if not in_bounds(reading.score):
            return self._failed(asset, f"{name} returned out-of-range score {reading.score!r}")

        result = DimensionResult(dimension=self.dimension, score=reading.score)
        for label in reading.factors or [self.label]:
            self.split_factor(result, label, reading.score)
        result.contributions = [Contribution(magnitude=abs(reading.score), confidence=reading.confidence)]
        return result

    def _failed(self, asset: AssetCode, reason: str) -> DimensionResult:
        self.logger.warning(f"{self.dimension.value} excluded for {asset.value}: {reason}")
        return DimensionResult.empty(self.dimension, error=reason)
