"""Tests for the Factor Registry."""
import threading

import pytest

from common.exceptions import ConfigurationError
from common.models import Factor, IndicatorType
from scoring.registry import DEFAULT_FACTORS, FactorRegistry


@pytest.fixture
def registry():
    return FactorRegistry()


class TestDefaults:
    def test_eleven_factors(self, registry):
        factors = registry.get_factors()
        assert len(factors) == len(DEFAULT_FACTORS) == 11
        assert registry.revision == 0

    def test_unemployment_is_inverse(self, registry):
        f = registry.snapshot().factor_for(IndicatorType.UNEMPLOYMENT)
        assert f.name == "employment"
        assert f.direction == -1

    def test_max_weight(self, registry):
        assert registry.snapshot().max_weight == 3

    def test_unbound_indicator(self, registry):
        assert registry.snapshot().factor_for(IndicatorType.COT_RETAIL) is None


class TestMutations:
    def test_set_weight_bumps_revision(self, registry):
        rev = registry.set_weight("growth", 2.5)
        assert rev == 1
        assert registry.get_factors()["growth"].weight == 2.5

    @pytest.mark.parametrize("weight", [0, -1, float("inf")])
    def test_invalid_weight_leaves_registry_untouched(self, registry, weight):
        before = registry.snapshot()
        with pytest.raises(ConfigurationError):
            registry.set_weight("growth", weight)
        assert registry.snapshot() is before
        assert registry.revision == 0

    def test_add_and_remove(self, registry):
        registry.add_factor({"name": "metals_demand",
                             "indicators": ["PRECIOUS_METAL_PRICE"], "weight": 1})
        assert "metals_demand" in registry.get_factors()
        registry.remove_factor("metals_demand")
        assert "metals_demand" not in registry.get_factors()
        assert registry.revision == 2

    def test_duplicate_name_rejected(self, registry):
        with pytest.raises(ConfigurationError):
            registry.add_factor(Factor(name="growth", indicators=(IndicatorType.CURRENCY_RATE,), weight=1))

    def test_indicator_bound_twice_rejected(self, registry):
        with pytest.raises(ConfigurationError, match="already bound"):
            registry.add_factor(Factor(name="cpi_again", indicators=(IndicatorType.INFLATION_CPI,), weight=1))
        assert registry.revision == 0

    def test_unknown_factor(self, registry):
        with pytest.raises(ConfigurationError):
            registry.remove_factor("nope")
        with pytest.raises(ConfigurationError):
            registry.set_weight("nope", 1)

    def test_update_name_mismatch(self, registry):
        with pytest.raises(ConfigurationError):
            registry.update_factor("growth", Factor(name="other", indicators=(IndicatorType.GDP_GROWTH,), weight=1))

    def test_malformed_factor_is_configuration_error(self, registry):
        with pytest.raises(ConfigurationError):
            registry.add_factor({"name": "bad", "indicators": [], "weight": 1})

    def test_snapshot_is_read_only(self, registry):
        snap = registry.snapshot()
        with pytest.raises(TypeError):
            snap.factors["growth"] = None

    def test_old_snapshot_survives_mutation(self, registry):
        snap = registry.snapshot()
        registry.set_weight("growth", 1)
        assert snap.factors["growth"].weight == 3
        assert snap.revision == 0

    def test_concurrent_writers_serialize(self, registry):
        def bump(i):
            registry.set_weight("growth", 1 + (i % 3))

        threads = [threading.Thread(target=bump, args=(i,)) for i in range(20)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        assert registry.revision == 20

    def test_set_weight_reads_inside_the_lock(self):
        """An update racing with set_weight waits for it instead of being overwritten."""
        writer = []

        class RacingRegistry(FactorRegistry):
            def _coerce(self, factor):
                if not writer:
                    t = threading.Thread(target=self.update_factor, args=("growth", Factor(
                        name="growth", indicators=(IndicatorType.GDP_GROWTH,), weight=3, description="Output")))
                    writer.append(t)
                    t.start()
                    t.join(timeout=0.1)
                return super()._coerce(factor)

        registry = RacingRegistry()
        registry.set_weight("growth", 2.5)
        writer[0].join()
        factor = registry.get_factors()["growth"]
        assert factor.description == "Output"
        assert registry.revision == 2
