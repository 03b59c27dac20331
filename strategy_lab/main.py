"""
Strategy Lab - command line entry point

Runs candle-by-candle backtests of the built-in strategies against CSV
datasets, either one run at a time or as a parallel batch.

Usage:
    python -m strategy_lab.main list-datasets
    python -m strategy_lab.main run --strategy vab_breakout --dataset july-sep-2025/XAUUSD15.csv
    python -m strategy_lab.main batch --strategies mean_reversion,trend_following --dataset XAUUSD15.csv

Configuration:
    Defaults come from environment variables or .env (see config/settings.py).
"""

import argparse
import json
import sys
from pathlib import Path
from typing import Optional, Sequence

from config.logging_config import get_logger, setup_logging
from config.settings import get_settings
from strategy_lab.backtest.errors import ConfigurationError
from strategy_lab.backtest.models import TieBreakPolicy
from strategy_lab.backtest.runner import execute_run, new_run_id, run_batch
from strategy_lab.data.datasets import DatasetProvider
from strategy_lab.strategy.registry import available_strategies

EXIT_OK = 0
EXIT_FAILURE = 1
EXIT_CONFIGURATION_ERROR = 2


def _add_run_options(parser: argparse.ArgumentParser) -> None:
    """Per-run overrides shared by `run` and `batch`."""
    parser.add_argument("--dataset", required=True, help="Dataset id (path relative to the dataset dir)")
    parser.add_argument("--balance", type=float, help="Initial balance")
    parser.add_argument("--risk", type=float, help="Risk per trade in percent of balance")
    parser.add_argument("--max-positions", type=int, help="Maximum concurrent positions")
    parser.add_argument("--max-drawdown", type=float, help="Kill-switch drawdown threshold in percent")
    parser.add_argument(
        "--no-force-close",
        action="store_true",
        help="Keep open positions when the kill switch trips (default: close them)",
    )
    parser.add_argument(
        "--tie-break",
        choices=[policy.value for policy in TieBreakPolicy],
        help="Exit taken when a candle crosses both stop-loss and take-profit",
    )
    parser.add_argument("--max-candles", type=int, help="Stop after N candles")
    parser.add_argument("--json", action="store_true", help="Print JSON instead of the text summary")


def create_parser() -> argparse.ArgumentParser:
    """Create the CLI argument parser."""
    parser = argparse.ArgumentParser(
        prog="strategy-lab",
        description="Backtest trading strategies against historical candle data",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  strategy-lab list-datasets                                     # Show available datasets
  strategy-lab run --strategy ict_smc --dataset XAUUSD15.csv     # Single run, text summary
  strategy-lab run --strategy martingale --dataset XAUUSD15.csv --max-drawdown 10 --json
  strategy-lab batch --strategies mean_reversion,hf_scalping --dataset XAUUSD15.csv
        """,
    )
    parser.add_argument(
        "--dataset-dir",
        type=str,
        help="Dataset root directory (default: DATASET_DIR setting)",
    )
    parser.add_argument("--verbose", "-v", action="store_true", help="Debug logging")

    subparsers = parser.add_subparsers(dest="command", required=True)

    subparsers.add_parser("list-datasets", help="List CSV datasets under the dataset dir")

    run_parser = subparsers.add_parser("run", help="Run one backtest")
    run_parser.add_argument(
        "--strategy",
        required=True,
        choices=available_strategies(),
        help="Strategy to run",
    )
    _add_run_options(run_parser)

    batch_parser = subparsers.add_parser("batch", help="Run several strategies in parallel")
    batch_parser.add_argument(
        "--strategies",
        required=True,
        help="Comma-separated strategy ids (e.g. mean_reversion,trend_following)",
    )
    batch_parser.add_argument("--workers", type=int, help="Worker processes (default: BATCH_MAX_WORKERS)")
    _add_run_options(batch_parser)

    return parser


def _overrides(args: argparse.Namespace) -> dict:
    return {
        "initial_balance": args.balance,
        "risk_per_trade_percent": args.risk,
        "max_concurrent_positions": args.max_positions,
        "max_drawdown_percent": args.max_drawdown,
        "force_close_on_halt": False if args.no_force_close else None,
        "tie_break": args.tie_break,
        "max_candles": args.max_candles,
    }


def _print_error(error: ConfigurationError) -> None:
    print(json.dumps(error.to_dict()), file=sys.stderr)


def _list_datasets(provider: DatasetProvider) -> int:
    datasets = provider.list_datasets()
    if not datasets:
        print(f"[INFO] No datasets found under {provider.root}")
        return EXIT_OK
    for info in datasets:
        print(f"{info.id:<50} {info.name}")
    return EXIT_OK


def _run_single(args: argparse.Namespace, provider: DatasetProvider) -> int:
    settings = get_settings()
    configuration = settings.build_configuration(args.strategy, args.dataset, **_overrides(args))
    result = execute_run(configuration, provider, new_run_id(configuration.strategy_id.value))

    if args.json:
        print(json.dumps(result.to_dict(), indent=2, default=str))
    else:
        print(result.summary())
    return EXIT_OK


def _run_batch(args: argparse.Namespace, provider: DatasetProvider) -> int:
    settings = get_settings()
    strategy_ids = [s.strip() for s in args.strategies.split(",") if s.strip()]
    if not strategy_ids:
        raise ConfigurationError(
            "No strategies given",
            [{"field": "strategies", "message": "at least one strategy id is required"}],
        )

    # Validate every configuration before any run starts
    configurations = [
        settings.build_configuration(strategy_id, args.dataset, **_overrides(args))
        for strategy_id in strategy_ids
    ]
    outcomes = run_batch(
        configurations,
        provider,
        max_workers=args.workers or settings.batch_max_workers,
    )

    if args.json:
        payload = [
            outcome.result.to_dict() if outcome.succeeded else {
                "strategy_id": outcome.configuration.strategy_id.value,
                **outcome.error.to_dict(),
            }
            for outcome in outcomes
        ]
        print(json.dumps(payload, indent=2, default=str))
    else:
        print(f"{'strategy':<22} {'trades':>7} {'return %':>10} {'max dd %':>10} {'sharpe':>8} {'win %':>7}")
        print("-" * 68)
        for outcome in outcomes:
            name = outcome.configuration.strategy_id.value
            if not outcome.succeeded:
                print(f"{name:<22} ERROR: {outcome.error.message}")
                continue
            m = outcome.result.metrics
            flag = " HALTED" if outcome.result.halted else ""
            print(
                f"{name:<22} {m.total_trades:>7} {m.total_return_percent:>10.2f} "
                f"{m.max_drawdown_percent:>10.2f} {m.sharpe_ratio:>8.2f} {m.win_rate:>7.1f}{flag}"
            )

    return EXIT_OK if all(outcome.succeeded for outcome in outcomes) else EXIT_FAILURE


def main(argv: Optional[Sequence[str]] = None) -> int:
    """
    Main entry point.

    Returns:
        Exit code (0 for success, 1 for failed batch runs or unexpected
        errors, 2 for configuration errors)
    """
    parser = create_parser()
    args = parser.parse_args(argv)

    settings = get_settings()
    setup_logging(
        log_level="DEBUG" if args.verbose else settings.log_level,
        log_file=settings.log_file,
        json_format=settings.log_json,
    )
    logger = get_logger(__name__)

    provider = DatasetProvider(Path(args.dataset_dir) if args.dataset_dir else settings.dataset_dir)

    try:
        if args.command == "list-datasets":
            return _list_datasets(provider)
        if args.command == "run":
            return _run_single(args, provider)
        return _run_batch(args, provider)
    except ConfigurationError as e:
        _print_error(e)
        return EXIT_CONFIGURATION_ERROR
    except KeyboardInterrupt:
        logger.info("interrupted")
        return EXIT_OK
    except Exception as e:
        logger.exception("fatal_error", error=str(e))
        return EXIT_FAILURE


if __name__ == "__main__":
    sys.exit(main())
