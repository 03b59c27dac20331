"""
Example demonstrating a gold (XAUUSD) backtest with the trend-following strategy.

This script shows how to:
1. Build 15-minute OHLCV candles
2. Configure a run (risk, concurrency, kill switch)
3. Run a backtest
4. Analyze performance metrics and the trade ledger
"""

import math
from datetime import datetime, timedelta, timezone

import pandas as pd

from strategy_lab.backtest.configuration import BacktestConfiguration
from strategy_lab.backtest.engine import Backtester


def generate_sample_data(days: int = 20) -> pd.DataFrame:
    """
    Generate sample 15-minute gold candles for demonstration.

    In production, load a CSV dataset with strategy_lab.data.datasets.DatasetProvider.
    """
    start = datetime(2025, 7, 1, tzinfo=timezone.utc)
    data = []

    base_price = 3300.0
    for i in range(days * 96):  # 15-minute candles
        timestamp = start + timedelta(minutes=15 * i)
        # Slow drift with a multi-day swing and intraday noise
        trend = i * 0.05
        swing = 40 * math.sin(i / 150)
        noise = 3 * math.sin(i * 1.7)
        price = base_price + trend + swing + noise

        data.append({
            "timestamp": timestamp,
            "open": price - 0.5,
            "high": price + 2.0,
            "low": price - 2.0,
            "close": price + (0.5 if i % 2 == 0 else -0.5),
            "volume": 1.0,
        })

    return pd.DataFrame(data)


def main():
    """Run backtest example."""

    # 1. Configure the run
    configuration = BacktestConfiguration.create(
        strategy_id="trend_following",
        dataset_reference="sample-xauusd-15m",
        initial_balance=10000,
        risk_per_trade_percent=1.0,  # Risk 1% of balance per trade
        max_concurrent_positions=2,
        max_drawdown_percent=15.0,  # Kill switch
    )

    # 2. Load data
    print("Generating sample data...")
    candles = generate_sample_data(days=20)
    print(f"Loaded {len(candles)} candles")

    # 3. Run backtest
    print("\nRunning backtest...")
    result = Backtester(configuration).run(candles, run_id="example")

    # 4. Display results
    print("\n" + "=" * 60)
    print(result.summary())
    print("=" * 60)

    # 5. Show trade details
    if result.trades:
        print("\nTrade Details:")
        print("-" * 60)
        for i, trade in enumerate(result.trades[:5], 1):  # Show first 5 trades
            print(f"\nTrade #{i} ({trade.action.value}, {trade.volume} lots):")
            print(f"  Entry: {trade.entry_time:%Y-%m-%d %H:%M} @ ${trade.entry_price:,.2f}")
            print(f"  Exit:  {trade.exit_time:%Y-%m-%d %H:%M} @ ${trade.exit_price:,.2f} ({trade.exit_reason.value})")
            print(f"  P&L:   ${trade.pnl:,.2f}")
            print(f"  Duration: {trade.duration_minutes / 60:.1f} hours")

        if len(result.trades) > 5:
            print(f"\n... and {len(result.trades) - 5} more trades")

    # 6. Entry rejections by reason
    if result.rejection_counts:
        print("\nRejected Entries:")
        print("-" * 60)
        for reason, count in sorted(result.rejection_counts.items()):
            print(f"  {reason:20s}: {count:4d}")

    # 7. Export equity curve (optional)
    # result.equity_frame().to_csv("equity_curve.csv")
    # print("\nEquity curve exported to equity_curve.csv")


if __name__ == "__main__":
    main()
