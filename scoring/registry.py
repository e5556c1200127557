"""Factor Registry.

Named fundamental factors, each a weight on one or more economic indicators.
Mutations are administrative: serialized by one writer lock, validated
all-or-nothing, and each bumps ``revision``. Scoring never holds the lock; it
takes a ``RegistrySnapshot`` and compares revisions afterwards.
"""
import threading
from dataclasses import dataclass
from types import MappingProxyType
from typing import Iterable, Mapping, Optional

from pydantic import ValidationError

from common.exceptions import ConfigurationError
from common.logger import get_logger
from common.models import Factor, IndicatorType

logger = get_logger("registry")


DEFAULT_FACTORS = [
    Factor(name="interest_rate", indicators=(IndicatorType.INTEREST_RATE,), weight=3,
           description="Interest Rate Decision"),
    Factor(name="inflation", indicators=(IndicatorType.INFLATION_CPI, IndicatorType.INFLATION_PPI), weight=3,
           description="Inflation"),
    Factor(name="employment", indicators=(IndicatorType.UNEMPLOYMENT,), weight=3, direction=-1,
           description="Unemployment"),
    Factor(name="growth", indicators=(IndicatorType.GDP_GROWTH,), weight=3,
           description="GDP Growth"),
    Factor(name="manufacturing", indicators=(IndicatorType.PMI_MANUFACTURING, IndicatorType.INDUSTRIAL_PRODUCTION),
           weight=2, description="Manufacturing Activity"),
    Factor(name="services", indicators=(IndicatorType.PMI_SERVICES,), weight=2,
           description="Services Activity"),
    Factor(name="consumer", indicators=(IndicatorType.RETAIL_SALES, IndicatorType.CONSUMER_CONFIDENCE), weight=2,
           description="Consumer Demand"),
    Factor(name="external_balance", indicators=(IndicatorType.TRADE_BALANCE, IndicatorType.CURRENT_ACCOUNT),
           weight=1, description="External Balance"),
    Factor(name="yields", indicators=(IndicatorType.BOND_YIELD,), weight=2,
           description="Bond Yields"),
    Factor(name="fiscal", indicators=(IndicatorType.GOVERNMENT_DEBT,), weight=1, direction=-1,
           description="Government Debt"),
    Factor(name="rate_cut_odds", indicators=(IndicatorType.RATE_CUT_PROBABILITY,), weight=2, direction=-1,
           description="Rate Cut Probability"),
]


@dataclass(frozen=True)
class RegistrySnapshot:
    revision: int
    factors: Mapping[str, Factor]
    by_indicator: Mapping[IndicatorType, Factor]

    @property
    def max_weight(self) -> float:
        return max((f.weight for f in self.factors.values()), default=0.0)

    def factor_for(self, indicator: IndicatorType) -> Optional[Factor]:
        return self.by_indicator.get(indicator)


class FactorRegistry:
    def __init__(self, factors: Optional[Iterable[Factor]] = None):
        self._lock = threading.Lock()
        initial = list(DEFAULT_FACTORS if factors is None else factors)
        self._check_consistency(initial)
        self._snapshot = self._build(0, {f.name: f for f in initial})
        logger.info(f"Initialized {len(initial)} fundamental factors")

    @property
    def revision(self) -> int:
        return self._snapshot.revision

    def snapshot(self) -> RegistrySnapshot:
        return self._snapshot

    def get_factors(self) -> dict[str, Factor]:
        return dict(self._snapshot.factors)

    # ── administrative mutations ──────────────────────────────────────────────

    def add_factor(self, factor) -> int:
        factor = self._coerce(factor)
        with self._lock:
            current = dict(self._snapshot.factors)
            if factor.name in current:
                raise ConfigurationError(f"Factor '{factor.name}' already exists")
            current[factor.name] = factor
            return self._commit(current, f"Added factor {factor.name}")

    def update_factor(self, name: str, factor) -> int:
        factor = self._coerce(factor)
        if factor.name != name:
            raise ConfigurationError(f"Factor name mismatch: '{name}' vs '{factor.name}'")
        with self._lock:
            current = dict(self._snapshot.factors)
            if name not in current:
                raise ConfigurationError(f"Unknown factor '{name}'")
            current[name] = factor
            return self._commit(current, f"Updated factor {name}")

    def set_weight(self, name: str, weight: float) -> int:
        # Read-modify-write under the lock so concurrent updates are not lost
        with self._lock:
            current = dict(self._snapshot.factors)
            existing = current.get(name)
            if existing is None:
                raise ConfigurationError(f"Unknown factor '{name}'")
            current[name] = self._coerce({**existing.model_dump(), "weight": weight})
            return self._commit(current, f"Set weight of {name} to {weight}")

    def remove_factor(self, name: str) -> int:
        with self._lock:
            current = dict(self._snapshot.factors)
            if name not in current:
                raise ConfigurationError(f"Unknown factor '{name}'")
            del current[name]
            return self._commit(current, f"Removed factor {name}")

    # ── internals ─────────────────────────────────────────────────────────────

    @staticmethod
    def _coerce(factor) -> Factor:
        if isinstance(factor, Factor):
            return factor
        try:
            return Factor.model_validate(factor)
        except ValidationError as e:
            raise ConfigurationError(f"Invalid factor: {e.errors()[0]['msg']}") from e

    @staticmethod
    def _check_consistency(ordered: Iterable[Factor]) -> None:
        seen: dict[IndicatorType, str] = {}
        names = set()
        for factor in ordered:
            if factor.name in names:
                raise ConfigurationError(f"Duplicate factor name '{factor.name}'")
            names.add(factor.name)
            for indicator in factor.indicators:
                if indicator in seen and seen[indicator] != factor.name:
                    raise ConfigurationError(
                        f"Indicator {indicator.value} already bound to factor '{seen[indicator]}'"
                    )
                seen[indicator] = factor.name

    @staticmethod
    def _build(revision: int, factors: dict[str, Factor]) -> RegistrySnapshot:
        by_indicator = {i: f for f in factors.values() for i in f.indicators}
        return RegistrySnapshot(
            revision=revision,
            factors=MappingProxyType(dict(factors)),
            by_indicator=MappingProxyType(by_indicator),
        )

    def _commit(self, factors: dict[str, Factor], message: str) -> int:
        # Caller holds the lock; validation happens before the swap
        self._check_consistency(factors.values())
        self._snapshot = self._build(self._snapshot.revision + 1, factors)
        logger.info(f"{message} (revision {self._snapshot.revision})")
        return self._snapshot.revision
