"""Score history storage.

Backend is selected at startup via the DATABASE_URL environment variable:
  - DATABASE_URL=none (or unset) → CSV file data/scores.csv (default)
  - DATABASE_URL=postgresql://... → PostgreSQL via SQLAlchemy async + asyncpg

All public functions are async so the scheduler can await them as publish
listeners. Factor lists are stored pipe-joined in one text column.
"""
import asyncio
import os
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Optional

import pandas as pd

from common.logger import get_logger
from common.models import AssetScore

logger = get_logger("database")

DATA_DIR = Path(os.getenv("SCORE_DATA_DIR", str(Path(__file__).parent.parent / "data")))
FACTOR_SEPARATOR = " | "

COLUMNS = [
    "timestamp", "asset",
    "economic_score", "sentiment_score", "cot_score", "technical_score", "central_bank_score",
    "total_score", "normalized_score", "signal", "confidence",
    "bullish_factors", "bearish_factors", "registry_revision", "processing_time_ms",
]

# ── Backend detection ──────────────────────────────────────────────────────────
_raw_url: str = os.getenv("DATABASE_URL", "none").strip()
USE_POSTGRES: bool = _raw_url.lower() not in ("none", "", "null")

# PostgreSQL objects, populated only when USE_POSTGRES is True
_engine = None
_SessionFactory = None

if USE_POSTGRES:
    from sqlalchemy.dialects.postgresql import insert as pg_insert
    from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine
    from sqlalchemy import select
    from storage.models import AssetScoreDB, Base

    # Normalise URL scheme for asyncpg driver
    _db_url = _raw_url
    if _db_url.startswith("postgres://"):
        _db_url = "postgresql+asyncpg://" + _db_url[len("postgres://"):]
    elif _db_url.startswith("postgresql://") and "+asyncpg" not in _db_url:
        _db_url = _db_url.replace("postgresql://", "postgresql+asyncpg://", 1)

    _engine = create_async_engine(
        _db_url,
        echo=False,
        pool_pre_ping=True,
        pool_size=5,
        max_overflow=10,
    )
    _SessionFactory = async_sessionmaker(_engine, expire_on_commit=False)
    logger.info(f"[PG] Backend: {_db_url.split('@')[-1]}")
else:
    logger.info("[CSV] Backend: %s/scores.csv", DATA_DIR)


def score_to_row(score: AssetScore) -> dict:
    return {
        "timestamp": score.timestamp,
        "asset": score.asset.value,
        "economic_score": score.economic_score,
        "sentiment_score": score.sentiment_score,
        "cot_score": score.cot_score,
        "technical_score": score.technical_score,
        "central_bank_score": score.central_bank_score,
        "total_score": score.total_score,
        "normalized_score": score.normalized_score,
        "signal": score.signal.value,
        "confidence": score.confidence,
        "bullish_factors": FACTOR_SEPARATOR.join(score.bullish_factors),
        "bearish_factors": FACTOR_SEPARATOR.join(score.bearish_factors),
        "registry_revision": score.registry_revision,
        "processing_time_ms": score.processing_time_ms,
    }


# ── CSV helpers (sync; run via asyncio.to_thread) ─────────────────────────────

def _csv_save_scores(scores: list[AssetScore], data_dir: Path) -> None:
    data_dir.mkdir(parents=True, exist_ok=True)
    rows = []
    for s in scores:
        row = score_to_row(s)
        row["timestamp"] = s.timestamp.isoformat()
        rows.append(row)
    df = pd.DataFrame(rows, columns=COLUMNS)
    path = data_dir / "scores.csv"
    df.to_csv(path, mode="a", header=not path.exists(), index=False)
    logger.info("[CSV] Saved %d scores → %s", len(rows), path)


def _csv_load_history(asset: str, days: int, data_dir: Path) -> pd.DataFrame:
    path = data_dir / "scores.csv"
    if not path.exists():
        return pd.DataFrame(columns=COLUMNS)
    df = pd.read_csv(path, keep_default_na=False, na_values=[""])
    df = df[df["asset"] == asset.upper()]
    if df.empty:
        return df.reset_index(drop=True)
    df["timestamp"] = pd.to_datetime(df["timestamp"], utc=True, format="ISO8601")
    cutoff = pd.Timestamp.now(tz="UTC") - pd.Timedelta(days=days)
    return df[df["timestamp"] >= cutoff].sort_values("timestamp").reset_index(drop=True)


# ── PostgreSQL helpers (async) ─────────────────────────────────────────────────

async def _pg_save_scores(scores: list[AssetScore]) -> None:
    async with _SessionFactory() as session:
        async with session.begin():
            for s in scores:
                row = score_to_row(s)
                stmt = (
                    pg_insert(AssetScoreDB)
                    .values(**row)
                    .on_conflict_do_nothing(index_elements=["asset", "timestamp"])
                )
                await session.execute(stmt)
    logger.info("[PG] Saved %d scores", len(scores))


def _to_float(val) -> Optional[float]:
    return float(val) if val is not None else None


def _pg_row_to_dict(r: "AssetScoreDB") -> dict:
    return {
        "timestamp": r.timestamp,
        "asset": r.asset,
        "economic_score": _to_float(r.economic_score),
        "sentiment_score": _to_float(r.sentiment_score),
        "cot_score": _to_float(r.cot_score),
        "technical_score": _to_float(r.technical_score),
        "central_bank_score": _to_float(r.central_bank_score),
        "total_score": _to_float(r.total_score),
        "normalized_score": _to_float(r.normalized_score),
        "signal": r.signal,
        "confidence": _to_float(r.confidence),
        "bullish_factors": r.bullish_factors,
        "bearish_factors": r.bearish_factors,
        "registry_revision": r.registry_revision,
        "processing_time_ms": _to_float(r.processing_time_ms),
    }


async def _pg_load_history(asset: str, days: int) -> pd.DataFrame:
    cutoff = datetime.now(timezone.utc) - timedelta(days=days)
    async with _SessionFactory() as session:
        stmt = (
            select(AssetScoreDB)
            .where(AssetScoreDB.asset == asset.upper())
            .where(AssetScoreDB.timestamp >= cutoff)
            .order_by(AssetScoreDB.timestamp)
        )
        rows = (await session.execute(stmt)).scalars().all()
    if not rows:
        return pd.DataFrame(columns=COLUMNS)
    return pd.DataFrame([_pg_row_to_dict(r) for r in rows])


# ── Public async API ───────────────────────────────────────────────────────────

async def save_scores(scores: list[AssetScore]) -> None:
    """Persist published scores to PostgreSQL or CSV (based on DATABASE_URL)."""
    if not scores:
        return
    if USE_POSTGRES:
        await _pg_save_scores(scores)
    else:
        await asyncio.to_thread(_csv_save_scores, scores, DATA_DIR)


async def load_history(asset: str, days: int = 30) -> pd.DataFrame:
    """Return score history for *asset* over the last *days* days, oldest first."""
    if USE_POSTGRES:
        return await _pg_load_history(asset, days)
    return await asyncio.to_thread(_csv_load_history, asset, days, DATA_DIR)


async def init_db() -> None:
    """Create all tables (idempotent). Prefer Alembic for production migrations."""
    if not USE_POSTGRES:
        return
    async with _engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("[PG] Tables ensured")
