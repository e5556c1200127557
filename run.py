"""
FX BIAS PULSE v0.3 — Entry point
Feeds a demo batch of records, scores all 11 assets and prints the bias table.
Run: python run.py            (live technical feed from Yahoo Finance)
     python run.py --offline  (no network; technical dimension stays 0)
"""
import argparse
import asyncio
import warnings
from datetime import timedelta

warnings.filterwarnings("ignore")

from common.logger import get_logger
from common.models import (
    AssetCode, COTData, DataSource, EconomicDataPoint, IndicatorType, SentimentData, Signal, utcnow,
)
from ingest.policy_rates import PolicyRateProvider
from ingest.yahoo_finance import PriceTrendProvider
from scoring.aggregator import DIMENSION_ORDER
from service import BiasService

logger = get_logger("run")

SIGNAL_EMOJI = {
    Signal.STRONG_BUY: "🟢🟢", Signal.BUY: "🟢", Signal.HOLD: "🟡",
    Signal.SELL: "🔴", Signal.STRONG_SELL: "🔴🔴",
}

# (asset, indicator, actual, forecast, importance)
DEMO_RELEASES = [
    (AssetCode.USD, IndicatorType.INFLATION_CPI, 3.4, 3.1, 5),
    (AssetCode.USD, IndicatorType.UNEMPLOYMENT, 4.1, 3.9, 4),
    (AssetCode.EUR, IndicatorType.GDP_GROWTH, 0.1, 0.3, 4),
    (AssetCode.GBP, IndicatorType.PMI_SERVICES, 54.2, 52.5, 3),
    (AssetCode.JPY, IndicatorType.INFLATION_CPI, 2.8, 2.6, 4),
    (AssetCode.AUD, IndicatorType.RETAIL_SALES, -0.4, 0.3, 3),
    (AssetCode.CAD, IndicatorType.UNEMPLOYMENT, 6.2, 6.4, 4),
]

# asset -> (commercial long/short, retail long/short)
DEMO_COT = {
    AssetCode.EUR: ((5000, 3800), (2000, 2900)),
    AssetCode.JPY: ((3100, 4200), (3600, 2400)),
    AssetCode.XAU: ((8200, 6100), (1500, 2600)),
}

DEMO_SENTIMENT = {
    AssetCode.GBP: 70.0,
    AssetCode.USD: 38.0,
    AssetCode.XAG: 82.0,
}

# asset -> policy rate path, oldest first (quarterly)
DEMO_RATES = {
    AssetCode.USD: [5.50, 5.50, 5.25, 4.75],
    AssetCode.EUR: [4.50, 4.25, 3.65, 3.40],
    AssetCode.GBP: [5.25, 5.25, 5.00, 4.75],
    AssetCode.JPY: [-0.10, 0.10, 0.25, 0.50],
    AssetCode.AUD: [4.35, 4.35, 4.35, 4.35],
    AssetCode.CAD: [5.00, 4.75, 4.25, 3.75],
    AssetCode.CHF: [1.75, 1.50, 1.25, 1.00],
    AssetCode.CNY: [3.45, 3.45, 3.35, 3.10],
    AssetCode.NZD: [5.50, 5.50, 5.25, 4.75],
}


def feed_demo(service: BiasService) -> None:
    now = utcnow()
    for asset, indicator, actual, forecast, importance in DEMO_RELEASES:
        service.submit(EconomicDataPoint(
            asset=asset, indicator=indicator, source=DataSource.MANUAL, timestamp=now - timedelta(days=2),
            actual=actual, forecast=forecast, importance_weight=importance,
        ))
    for asset, ((c_long, c_short), (r_long, r_short)) in DEMO_COT.items():
        service.submit(COTData(
            asset=asset, report_date=now - timedelta(days=3),
            commercial_long=c_long, commercial_short=c_short,
            non_commercial_long=0, non_commercial_short=0,
            retail_long=r_long, retail_short=r_short,
        ))
    for asset, long_pct in DEMO_SENTIMENT.items():
        service.submit(SentimentData(
            asset=asset, timestamp=now - timedelta(hours=6),
            retail_long_percentage=long_pct, retail_short_percentage=100 - long_pct,
        ))


def print_table(scores) -> None:
    print("\n" + "=" * 92)
    print("  🚀  FX BIAS PULSE v0.3  —  5-Dimension Fundamental Bias")
    print("=" * 92)
    print(f"{'Asset':<7} {'Econ':>6} {'Sntmt':>6} {'COT':>6} {'Tech':>6} {'CB':>6} "
          f"{'Total':>7} {'Norm':>7} {'Conf':>6}  Signal")
    print("-" * 92)
    for s in scores:
        subs = s.sub_scores
        print(
            f"{s.asset.value:<7}"
            + "".join(f" {subs[d]:>6.2f}" for d in DIMENSION_ORDER)
            + f" {s.total_score:>7.2f} {s.normalized_score:>+7.2f} {s.confidence:>6.0%}"
            f"  {SIGNAL_EMOJI[s.signal]} {s.signal.value}"
        )
    print("=" * 92)
    print("  Total: -25 (STRONG_SELL) → +25 (STRONG_BUY); normalized = total / 25")
    print("=" * 92 + "\n")


async def main(offline: bool = False) -> None:
    rates = PolicyRateProvider()
    now = utcnow()
    for asset, path in DEMO_RATES.items():
        rates.update(asset, [(now - timedelta(days=91 * (len(path) - 1 - i)), r)
                             for i, r in enumerate(path)])
    service = BiasService(
        technical_provider=None if offline else PriceTrendProvider(),
        central_bank_provider=rates,
    )
    service.initialize()
    feed_demo(service)
    scores = await service.recalculate_all_scores()
    print_table(scores)
    status = service.get_service_status()
    logger.info(f"Health: {status.health.system_status.value}, "
                f"pass rate {status.health.validation_pass_rate:.0%}, "
                f"avg confidence {status.average_confidence:.0%}")


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Score all FX assets once and print the bias table.")
    parser.add_argument("--offline", action="store_true", help="skip the Yahoo Finance technical feed")
    args = parser.parse_args()
    asyncio.run(main(offline=args.offline))
