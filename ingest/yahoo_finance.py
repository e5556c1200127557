"""Technical feed from Yahoo Finance daily prices via yfinance.

Every asset is scored in "strength of the asset" terms: for pairs quoted as
USD/XXX (JPY=X, CAD=X, ...) the close series is inverted before scoring, so
a rising quote reads as a weakening JPY.
"""
from typing import Callable

import numpy as np
import pandas as pd

from common.exceptions import ProviderError
from common.logger import get_logger
from common.models import AssetCode
from scoring.base import SUB_SCORE_LIMIT, ProviderReading, zscore_last

logger = get_logger("yahoo_finance")

# asset -> (ticker, invert)
SYMBOLS: dict[AssetCode, tuple[str, bool]] = {
    AssetCode.USD: ("DX-Y.NYB", False),
    AssetCode.EUR: ("EURUSD=X", False),
    AssetCode.GBP: ("GBPUSD=X", False),
    AssetCode.JPY: ("JPY=X", True),
    AssetCode.AUD: ("AUDUSD=X", False),
    AssetCode.CAD: ("CAD=X", True),
    AssetCode.CHF: ("CHF=X", True),
    AssetCode.CNY: ("CNY=X", True),
    AssetCode.NZD: ("NZDUSD=X", False),
    AssetCode.XAU: ("GC=F", False),
    AssetCode.XAG: ("SI=F", False),
}

MIN_ROWS = 50


def download_yahoo(ticker: str, period: str = "6mo") -> pd.DataFrame:
    import yfinance as yf
    logger.info(f"Fetching {ticker} from Yahoo Finance...")
    df = yf.download(ticker, period=period, progress=False, auto_adjust=True)
    if isinstance(df.columns, pd.MultiIndex):
        df.columns = df.columns.get_level_values(0)
    df.columns = [str(c).lower() for c in df.columns]
    logger.info(f"Got {len(df)} rows for {ticker}")
    return df


def trend_score(close: pd.Series) -> tuple[float, list[str]]:
    """MA20/MA50 crossover + RSI(14) + 5-day momentum Z-score, on [-5, +5]."""
    close = close.astype(float)
    ma20 = close.rolling(20).mean()
    ma50 = close.rolling(50).mean()

    ma_signal = 1.0 if ma20.iloc[-1] > ma50.iloc[-1] else -1.0
    ma_strength = abs(ma20.iloc[-1] - ma50.iloc[-1]) / abs(ma50.iloc[-1])
    ma_score = ma_signal * min(ma_strength * 100, 1.0)

    delta = close.diff()
    gain = delta.clip(lower=0).rolling(14).mean()
    loss = (-delta.clip(upper=0)).rolling(14).mean()
    rs = gain / (loss + 1e-10)
    rsi_val = float((100 - (100 / (1 + rs))).iloc[-1])

    # <30 oversold = bullish, >70 overbought = bearish
    if rsi_val < 30:
        rsi_score = 0.8
    elif rsi_val < 50:
        rsi_score = 0.3
    elif rsi_val < 70:
        rsi_score = -0.1
    else:
        rsi_score = -0.7

    z = zscore_last(close.pct_change(5).dropna()) / 3

    combined = ma_score * 0.5 + rsi_score * 0.2 + z * 0.3
    factors = [
        f"MA20 {'above' if ma_signal > 0 else 'below'} MA50",
        f"RSI {rsi_val:.0f}",
    ]
    return float(np.clip(combined * SUB_SCORE_LIMIT, -SUB_SCORE_LIMIT, SUB_SCORE_LIMIT)), factors


class PriceTrendProvider:
    name = "yahoo_finance"

    def __init__(self, fetch_prices: Callable[[str], pd.DataFrame] = download_yahoo):
        self.fetch_prices = fetch_prices

    def score(self, asset: AssetCode) -> ProviderReading:
        ticker, invert = SYMBOLS[asset]
        try:
            df = self.fetch_prices(ticker)
        except Exception as e:
            raise ProviderError(self.name, f"download failed for {ticker}: {e}") from e
        if df is None or df.empty or "close" not in df.columns:
            raise ProviderError(self.name, f"no price data for {ticker}")

        close = df["close"].dropna()
        if len(close) < MIN_ROWS:
            raise ProviderError(self.name, f"only {len(close)} rows for {ticker}, need {MIN_ROWS}")
        if invert:
            close = 1.0 / close

        score, factors = trend_score(close)
        # Confidence grows with history up to a quarter of daily bars
        confidence = min(1.0, len(close) / 90)
        return ProviderReading(score=score, confidence=confidence, factors=factors)
