"""SQLAlchemy ORM model for the published AssetScore history."""
from sqlalchemy import (
    BigInteger, CheckConstraint, Column, Index, Integer, String, DECIMAL, TIMESTAMP, TEXT,
    UniqueConstraint,
)
from sqlalchemy.orm import DeclarativeBase
from sqlalchemy.sql import func


class Base(DeclarativeBase):
    pass


class AssetScoreDB(Base):
    __tablename__ = "asset_scores"

    id = Column(BigInteger, primary_key=True, autoincrement=True)
    asset = Column(String(3), nullable=False)
    timestamp = Column(
        TIMESTAMP(timezone=True), server_default=func.now(), nullable=False
    )

    # 5 sub-scores, each in [-5, +5]
    economic_score = Column(DECIMAL(8, 4), nullable=False)
    sentiment_score = Column(DECIMAL(8, 4), nullable=False)
    cot_score = Column(DECIMAL(8, 4), nullable=False)
    technical_score = Column(DECIMAL(8, 4), nullable=False)
    central_bank_score = Column(DECIMAL(8, 4), nullable=False)

    # Composite
    total_score = Column(DECIMAL(8, 4), nullable=False)
    normalized_score = Column(DECIMAL(8, 6), nullable=False)
    signal = Column(
        String(20),
        CheckConstraint(
            "signal IN ('STRONG_BUY', 'BUY', 'HOLD', 'SELL', 'STRONG_SELL')",
            name="ck_asset_scores_signal",
        ),
        nullable=False,
    )
    confidence = Column(DECIMAL(6, 4), nullable=False)
    bullish_factors = Column(TEXT)
    bearish_factors = Column(TEXT)

    # Metadata
    registry_revision = Column(Integer)
    processing_time_ms = Column(DECIMAL(12, 3))

    __table_args__ = (
        UniqueConstraint("asset", "timestamp", name="uq_asset_scores_asset_time"),
        Index("idx_asset_scores_asset", "asset", "timestamp"),
    )
