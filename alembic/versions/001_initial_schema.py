"""Initial schema — asset_scores history table.

Revision ID: 001
Revises:
Create Date: 2026-10-17
"""
from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op

revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        "asset_scores",
        sa.Column("id", sa.BigInteger(), autoincrement=True, nullable=False),
        sa.Column("asset", sa.String(length=3), nullable=False),
        sa.Column(
            "timestamp",
            sa.TIMESTAMP(timezone=True),
            server_default=sa.text("now()"),
            nullable=False,
        ),
        # 5 sub-scores
        sa.Column("economic_score", sa.DECIMAL(precision=8, scale=4), nullable=False),
        sa.Column("sentiment_score", sa.DECIMAL(precision=8, scale=4), nullable=False),
        sa.Column("cot_score", sa.DECIMAL(precision=8, scale=4), nullable=False),
        sa.Column("technical_score", sa.DECIMAL(precision=8, scale=4), nullable=False),
        sa.Column("central_bank_score", sa.DECIMAL(precision=8, scale=4), nullable=False),
        # Composite score & signal
        sa.Column("total_score", sa.DECIMAL(precision=8, scale=4), nullable=False),
        sa.Column("normalized_score", sa.DECIMAL(precision=8, scale=6), nullable=False),
        sa.Column("signal", sa.String(length=20), nullable=False),
        sa.Column("confidence", sa.DECIMAL(precision=6, scale=4), nullable=False),
        sa.Column("bullish_factors", sa.TEXT(), nullable=True),
        sa.Column("bearish_factors", sa.TEXT(), nullable=True),
        # Metadata
        sa.Column("registry_revision", sa.Integer(), nullable=True),
        sa.Column("processing_time_ms", sa.DECIMAL(precision=12, scale=3), nullable=True),
        sa.CheckConstraint(
            "signal IN ('STRONG_BUY', 'BUY', 'HOLD', 'SELL', 'STRONG_SELL')",
            name="ck_asset_scores_signal",
        ),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("asset", "timestamp", name="uq_asset_scores_asset_time"),
    )
    op.create_index("idx_asset_scores_asset", "asset_scores", ["asset", "timestamp"])


def downgrade() -> None:
    op.drop_index("idx_asset_scores_asset", table_name="asset_scores")
    op.drop_table("asset_scores")
