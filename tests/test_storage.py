"""Tests for the score history storage layer.

Coverage:
  - CSV helpers (_csv_* functions) — sync, no DB required
  - Public async API (save_scores / load_history) backed by CSV
    (monkeypatched USE_POSTGRES=False)
  - Public async API dispatcher routes to PostgreSQL helpers
    when USE_POSTGRES=True (mocked with AsyncMock — no real DB needed)
  - BiasService history listener writing through the CSV backend
"""
from datetime import timedelta
from pathlib import Path
from unittest.mock import AsyncMock

import pandas as pd
import pytest

from common.models import AssetCode, utcnow
from config.settings import EngineSettings
from scoring.aggregator import compose_from_sub_scores
from service import BiasService
from storage import database
from storage.database import (
    COLUMNS,
    FACTOR_SEPARATOR,
    _csv_load_history,
    _csv_save_scores,
    load_history,
    save_scores,
    score_to_row,
)


# ── Helpers ───────────────────────────────────────────────────────────────────

def make_score(asset: AssetCode = AssetCode.USD, economic: float = 2.0, age_days: float = 0, **kw):
    score = compose_from_sub_scores(asset, [economic, 1.0, 0.0, -1.0, 0.5])
    update = {"timestamp": utcnow() - timedelta(days=age_days)}
    update.update(kw)
    return score.model_copy(update=update)


# ── Row mapping ───────────────────────────────────────────────────────────────

class TestRowMapping:
    def test_every_column_present(self) -> None:
        row = score_to_row(make_score())
        assert list(row) == COLUMNS
        assert row["asset"] == "USD"
        assert row["signal"] == "HOLD"

    def test_factors_joined(self) -> None:
        row = score_to_row(make_score(bullish_factors=("Inflation beat", "COT commercial long")))
        assert row["bullish_factors"] == FACTOR_SEPARATOR.join(["Inflation beat", "COT commercial long"])
        assert row["bearish_factors"] == ""


# ── CSV helper unit tests (sync) ──────────────────────────────────────────────

class TestCSVHelpers:
    """Direct tests of sync CSV helpers — no async, no mocking."""

    def test_save_creates_file(self, tmp_path: Path) -> None:
        _csv_save_scores([make_score()], tmp_path)
        assert (tmp_path / "scores.csv").exists()

    def test_save_creates_missing_directory(self, tmp_path: Path) -> None:
        target = tmp_path / "nested" / "data"
        _csv_save_scores([make_score()], target)
        assert (target / "scores.csv").exists()

    def test_save_appends_rows_with_single_header(self, tmp_path: Path) -> None:
        _csv_save_scores([make_score(AssetCode.USD)], tmp_path)
        _csv_save_scores([make_score(AssetCode.EUR)], tmp_path)
        df = pd.read_csv(tmp_path / "scores.csv")
        assert len(df) == 2
        assert list(df.columns) == COLUMNS

    def test_load_history_empty_when_no_file(self, tmp_path: Path) -> None:
        df = _csv_load_history("USD", 30, tmp_path)
        assert df.empty
        assert list(df.columns) == COLUMNS

    def test_load_history_filters_by_asset(self, tmp_path: Path) -> None:
        _csv_save_scores([make_score(AssetCode.USD), make_score(AssetCode.XAU)], tmp_path)
        df = _csv_load_history("XAU", 30, tmp_path)
        assert len(df) == 1
        assert df.iloc[0]["asset"] == "XAU"

    def test_load_history_case_insensitive(self, tmp_path: Path) -> None:
        _csv_save_scores([make_score(AssetCode.EUR)], tmp_path)
        assert len(_csv_load_history("eur", 30, tmp_path)) == 1

    def test_load_history_window_and_order(self, tmp_path: Path) -> None:
        _csv_save_scores([
            make_score(economic=3.0, age_days=1),
            make_score(economic=1.0, age_days=5),
            make_score(economic=5.0, age_days=60),
        ], tmp_path)
        df = _csv_load_history("USD", 30, tmp_path)
        assert df["economic_score"].tolist() == [1.0, 3.0]
        assert str(df["timestamp"].dt.tz) == "UTC"


# ── Async public API — CSV backend ────────────────────────────────────────────

@pytest.mark.asyncio
class TestAsyncCSVAPI:
    """Public async API tests using the CSV backend (USE_POSTGRES forced False)."""

    async def test_save_and_load_history(self, tmp_path: Path, monkeypatch) -> None:
        monkeypatch.setattr(database, "USE_POSTGRES", False)
        monkeypatch.setattr(database, "DATA_DIR", tmp_path)
        await save_scores([make_score(AssetCode.GBP)])
        df = await load_history("GBP", days=30)
        assert len(df) == 1
        assert df.iloc[0]["normalized_score"] == pytest.approx(0.1)

    async def test_save_empty_list_is_noop(self, tmp_path: Path, monkeypatch) -> None:
        monkeypatch.setattr(database, "USE_POSTGRES", False)
        monkeypatch.setattr(database, "DATA_DIR", tmp_path)
        await save_scores([])
        assert not (tmp_path / "scores.csv").exists()

    async def test_multiple_saves_accumulate(self, tmp_path: Path, monkeypatch) -> None:
        monkeypatch.setattr(database, "USE_POSTGRES", False)
        monkeypatch.setattr(database, "DATA_DIR", tmp_path)
        for days in (3, 2, 1):
            await save_scores([make_score(age_days=days)])
        df = await load_history("USD", days=30)
        assert len(df) == 3


# ── Async public API — PostgreSQL backend (mocked) ────────────────────────────

@pytest.mark.asyncio
class TestAsyncPostgresDispatch:
    """Verify that public functions delegate to _pg_* helpers when USE_POSTGRES=True."""

    async def test_save_scores_delegates_to_pg(self, monkeypatch) -> None:
        mock = AsyncMock()
        monkeypatch.setattr(database, "USE_POSTGRES", True)
        monkeypatch.setattr(database, "_pg_save_scores", mock)
        scores = [make_score()]
        await save_scores(scores)
        mock.assert_awaited_once_with(scores)

    async def test_load_history_delegates_to_pg(self, monkeypatch) -> None:
        expected = pd.DataFrame({"asset": ["USD"], "normalized_score": [0.1]})
        mock = AsyncMock(return_value=expected)
        monkeypatch.setattr(database, "USE_POSTGRES", True)
        monkeypatch.setattr(database, "_pg_load_history", mock)
        df = await load_history("USD", 14)
        mock.assert_awaited_once_with("USD", 14)
        assert not df.empty

    async def test_empty_save_never_calls_pg(self, monkeypatch) -> None:
        mock = AsyncMock()
        monkeypatch.setattr(database, "USE_POSTGRES", True)
        monkeypatch.setattr(database, "_pg_save_scores", mock)
        await save_scores([])
        mock.assert_not_awaited()


# ── Service history listener ──────────────────────────────────────────────────

@pytest.mark.asyncio
class TestServiceHistory:
    async def test_published_scores_are_recorded(self, tmp_path: Path, monkeypatch) -> None:
        monkeypatch.setattr(database, "USE_POSTGRES", False)
        monkeypatch.setattr(database, "DATA_DIR", tmp_path)
        service = BiasService(settings=EngineSettings(score_history_enabled=True))
        service.initialize()
        await service.trigger_asset_update("CHF")
        await service.trigger_asset_update("CHF")
        history = await service.get_score_history("chf", days=1)
        assert len(history) == 2
        assert set(history["asset"]) == {"CHF"}

    async def test_write_failure_does_not_break_publish(self, monkeypatch) -> None:
        monkeypatch.setattr(database, "USE_POSTGRES", True)
        monkeypatch.setattr(database, "_pg_save_scores", AsyncMock(side_effect=OSError("db down")))
        service = BiasService(settings=EngineSettings(score_history_enabled=True))
        service.initialize()
        outcomes = await service.trigger_asset_update("NZD")
        assert outcomes[0].has_changes
        assert service.get_asset_bias_score("NZD") is not None
