"""
Structured logging configuration using structlog.

Log output goes to stderr so command output on stdout (e.g. JSON results)
stays machine-readable. Every event carries the run context bound with
bind_run_context(), so interleaved batch output can be told apart.
"""

import logging
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

import structlog

# Libraries that log at INFO on every pool start/stop
_QUIET_LOGGERS = ("asyncio", "concurrent.futures")


@dataclass(frozen=True)
class LoggingOptions:
    """Applied logging configuration, re-applied inside batch worker processes."""

    level: str = "INFO"
    log_file: Optional[Path] = None
    json_format: bool = False


_active: Optional[LoggingOptions] = None


def _build_handlers(level: int, log_file: Optional[Path]) -> list[logging.Handler]:
    handlers: list[logging.Handler] = [logging.StreamHandler(sys.stderr)]
    if log_file:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(log_file, encoding="utf-8"))
    for handler in handlers:
        handler.setLevel(level)
    return handlers


def _renderer(json_format: bool):
    if json_format:
        return structlog.processors.JSONRenderer()
    return structlog.dev.ConsoleRenderer(
        colors=sys.stderr.isatty(),
        exception_formatter=structlog.dev.RichTracebackFormatter(
            show_locals=False,
            max_frames=10,
        ),
    )


def setup_logging(
    log_level: str = "INFO",
    log_file: Optional[Path] = None,
    json_format: bool = False,
) -> None:
    """
    Configure structured logging for the application.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_file: Optional path to log file
        json_format: Use JSON format for logs (one object per line)
    """
    global _active

    level = getattr(logging, log_level.upper(), logging.INFO)
    handlers = _build_handlers(level, log_file)

    logging.basicConfig(format="%(message)s", level=level, handlers=handlers, force=True)
    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    shared_processors = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
    ]

    structlog.configure(
        processors=shared_processors + [structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    formatter = structlog.stdlib.ProcessorFormatter(
        foreign_pre_chain=shared_processors,
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            _renderer(json_format),
        ],
    )
    for handler in handlers:
        handler.setFormatter(formatter)

    _active = LoggingOptions(level=log_level.upper(), log_file=log_file, json_format=json_format)


def active_logging_options() -> Optional[LoggingOptions]:
    """Options of the last setup_logging() call in this process, if any."""
    return _active


def init_worker_logging(options: Optional[LoggingOptions]) -> None:
    """
    Process-pool initializer: apply the parent's logging setup in a worker.

    Workers started with the "spawn" method do not inherit the parent's
    structlog configuration.
    """
    if options is not None:
        setup_logging(options.level, options.log_file, options.json_format)


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    """
    Get a structured logger instance.

    Args:
        name: Logger name (typically __name__)

    Returns:
        Structured logger instance
    """
    return structlog.get_logger(name)


def bind_run_context(run_id: str, strategy_id: str, dataset: Optional[str] = None) -> None:
    """
    Attach run identity to every log event emitted by this thread/process.

    Args:
        run_id: Label of the backtest run
        strategy_id: Strategy being run
        dataset: Dataset reference, if known
    """
    context = {"run_id": run_id, "strategy": strategy_id}
    if dataset is not None:
        context["dataset"] = dataset
    structlog.contextvars.bind_contextvars(**context)


def clear_run_context() -> None:
    """Remove run identity bound by bind_run_context()."""
    structlog.contextvars.unbind_contextvars("run_id", "strategy", "dataset")
