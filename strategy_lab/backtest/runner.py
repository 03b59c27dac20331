"""
Batch execution of independent backtest runs.

Each run loads its own candles and builds its own strategy, risk governor
and lifecycle state inside the worker, so nothing mutable is shared
between runs. Run ids are generated here, outside the engine, and only
label logs and results.
"""

import uuid
from concurrent.futures import Executor, ProcessPoolExecutor, ThreadPoolExecutor
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional, Sequence

import structlog

from config.logging_config import (
    active_logging_options,
    bind_run_context,
    clear_run_context,
    init_worker_logging,
)
from strategy_lab.backtest.configuration import BacktestConfiguration
from strategy_lab.backtest.engine import Backtester
from strategy_lab.backtest.errors import ConfigurationError
from strategy_lab.backtest.models import BacktestResult
from strategy_lab.data.datasets import DatasetProvider

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class BatchOutcome:
    """Result of one batch entry: a result or the configuration error that prevented it."""

    configuration: BacktestConfiguration
    result: Optional[BacktestResult] = None
    error: Optional[ConfigurationError] = None

    @property
    def succeeded(self) -> bool:
        return self.result is not None


def new_run_id(strategy_id: str) -> str:
    """Timestamped, randomly suffixed run label."""
    stamp = datetime.now(timezone.utc).strftime("%Y%m%dT%H%M%SZ")
    return f"{strategy_id}-{stamp}-{uuid.uuid4().hex[:6]}"


def execute_run(
    configuration: BacktestConfiguration,
    provider: DatasetProvider,
    run_id: Optional[str] = None,
) -> BacktestResult:
    """
    Load the dataset and run one backtest.

    Raises:
        ConfigurationError: If the dataset cannot be loaded or is invalid
    """
    run_id = run_id or new_run_id(configuration.strategy_id.value)
    bind_run_context(run_id, configuration.strategy_id.value, configuration.dataset_reference)
    try:
        candles = provider.load(configuration.dataset_reference)
        return Backtester(configuration).run(candles, run_id=run_id)
    finally:
        clear_run_context()


def _batch_worker(
    configuration: BacktestConfiguration,
    provider: DatasetProvider,
    run_id: str,
) -> BatchOutcome:
    try:
        result = execute_run(configuration, provider, run_id)
    except ConfigurationError as e:
        logger.warning(
            "batch_run_failed",
            run_id=run_id,
            strategy=configuration.strategy_id.value,
            dataset=configuration.dataset_reference,
            error=e.message,
        )
        return BatchOutcome(configuration=configuration, error=e)
    return BatchOutcome(configuration=configuration, result=result)


def run_batch(
    configurations: Sequence[BacktestConfiguration],
    provider: DatasetProvider,
    max_workers: int = 4,
    use_processes: bool = True,
) -> list[BatchOutcome]:
    """
    Run independent configurations in parallel.

    Args:
        configurations: Runs to execute
        provider: Dataset provider (each worker loads its own candles)
        max_workers: Pool size
        use_processes: Process pool when True, thread pool otherwise

    Returns:
        One BatchOutcome per configuration, in input order
    """
    if not configurations:
        return []

    workers = max(1, min(max_workers, len(configurations)))
    pool: Executor
    if use_processes:
        pool = ProcessPoolExecutor(
            max_workers=workers,
            initializer=init_worker_logging,
            initargs=(active_logging_options(),),
        )
    else:
        pool = ThreadPoolExecutor(max_workers=workers)

    logger.info(
        "batch_starting",
        runs=len(configurations),
        workers=workers,
        pool="process" if use_processes else "thread",
    )

    with pool:
        futures = [
            pool.submit(_batch_worker, config, provider, new_run_id(config.strategy_id.value))
            for config in configurations
        ]
        outcomes = [future.result() for future in futures]

    logger.info(
        "batch_complete",
        runs=len(outcomes),
        failed=sum(1 for outcome in outcomes if not outcome.succeeded),
    )
    return outcomes
