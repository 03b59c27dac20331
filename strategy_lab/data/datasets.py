"""
CSV dataset provider.

Datasets are *.csv files under a root directory (searched recursively);
the dataset id is the path relative to the root. Two layouts are read:

- Tab-separated: ``timestamp<TAB>open<TAB>high<TAB>low<TAB>close`` per line
- "Historical Data" export: a title line, a ``Date,Open,High,Low,Close``
  header, rows newest first

Volume is not present in either layout and is set to 1. Loading happens
strictly before a run; any failure is raised as DatasetError and never
retried.
"""

import io
from dataclasses import dataclass
from pathlib import Path
from typing import Union

import numpy as np
import pandas as pd
import structlog

from strategy_lab.backtest.errors import DatasetError

logger = structlog.get_logger(__name__)

CANDLE_COLUMNS = ["timestamp", "open", "high", "low", "close", "volume"]
PRICE_COLUMNS = ["open", "high", "low", "close"]
PLACEHOLDER_VOLUME = 1.0

# (max seconds, label)
_TIMEFRAME_LABELS = [
    (60, "1m"),
    (300, "5m"),
    (900, "15m"),
    (1800, "30m"),
    (3600, "1h"),
    (14400, "4h"),
    (86400, "1d"),
]


@dataclass(frozen=True)
class DatasetInfo:
    """A dataset file available to backtests."""

    id: str
    name: str
    path: Path


def is_historical_export(lines: list[str]) -> bool:
    """Title line mentioning "Historical Data" or a Date,Open,... second line."""
    if lines and "Historical Data" in lines[0]:
        return True
    return len(lines) > 1 and "Date,Open,High,Low,Close" in lines[1]


def _parse_historical_export(lines: list[str]) -> pd.DataFrame:
    body = [line for line in lines[1:] if line.strip()]
    try:
        raw = pd.read_csv(io.StringIO("\n".join(body)), header=0, dtype=str, on_bad_lines="skip")
    except pd.errors.ParserError as e:
        raise DatasetError(f"Cannot parse historical export: {e}") from e
    if raw.shape[1] < 5:
        raise DatasetError("Historical export has fewer than 5 columns")

    frame = raw.iloc[:, :5].copy()
    frame.columns = ["timestamp", *PRICE_COLUMNS]
    # Exports list the newest candle first
    return frame.iloc[::-1].reset_index(drop=True)


def _parse_tab_separated(lines: list[str]) -> pd.DataFrame:
    rows = [line.split("\t")[:5] for line in lines if line.strip()]
    rows = [row for row in rows if len(row) == 5]
    return pd.DataFrame(rows, columns=["timestamp", *PRICE_COLUMNS])


def parse_candles(text: str) -> pd.DataFrame:
    """Parse either supported layout into an unvalidated candle frame."""
    lines = text.strip().splitlines()
    if not lines:
        return pd.DataFrame(columns=CANDLE_COLUMNS)

    if is_historical_export(lines):
        frame = _parse_historical_export(lines)
    else:
        frame = _parse_tab_separated(lines)

    frame["volume"] = PLACEHOLDER_VOLUME
    return frame


def validate_candles(frame: pd.DataFrame) -> pd.DataFrame:
    """
    Clean a parsed candle frame.

    Rows with unparseable timestamps, non-finite or negative prices, or
    high < low are dropped; rows are sorted ascending and duplicate
    timestamps removed (first wins).

    Raises:
        DatasetError: If required columns are missing or no valid row remains
    """
    missing = [col for col in CANDLE_COLUMNS if col not in frame.columns]
    if missing:
        raise DatasetError(
            "Dataset is missing required columns",
            [{"field": col, "message": "column is required"} for col in missing],
        )

    df = frame.loc[:, CANDLE_COLUMNS].copy()
    df["timestamp"] = pd.to_datetime(df["timestamp"].astype(str).str.strip(), errors="coerce", format="mixed")
    for col in [*PRICE_COLUMNS, "volume"]:
        df[col] = pd.to_numeric(df[col], errors="coerce")

    numeric = df[[*PRICE_COLUMNS, "volume"]].to_numpy(dtype=float)
    valid = (
        df["timestamp"].notna().to_numpy()
        & np.isfinite(numeric).all(axis=1)
        & (numeric >= 0).all(axis=1)
        & (df["high"] >= df["low"]).to_numpy()
    )
    dropped = int((~valid).sum())
    df = df[valid]

    before = len(df)
    df = df.sort_values("timestamp", kind="stable").drop_duplicates("timestamp", keep="first")
    duplicates = before - len(df)

    if dropped or duplicates:
        logger.warning("dataset_rows_dropped", invalid=dropped, duplicates=duplicates)

    if df.empty:
        raise DatasetError("Dataset contains no valid candles")

    return df.reset_index(drop=True)


def infer_timeframe(candles: pd.DataFrame) -> str:
    """Timeframe label from the median candle spacing ("unknown" if undeterminable)."""
    if len(candles) < 2:
        return "unknown"
    seconds = pd.to_datetime(candles["timestamp"]).diff().dt.total_seconds().median()
    if pd.isna(seconds) or seconds <= 0:
        return "unknown"
    for max_seconds, label in _TIMEFRAME_LABELS:
        if seconds <= max_seconds:
            return label
    return "1w"


class DatasetProvider:
    """
    Lists and loads CSV datasets below a root directory.

    Example:
        >>> provider = DatasetProvider(Path("dataset"))
        >>> [d.id for d in provider.list_datasets()]
        ['july-sep-2025/XAUUSD15.csv']
        >>> candles = provider.load("july-sep-2025/XAUUSD15.csv")
    """

    def __init__(self, root: Union[str, Path]):
        self.root = Path(root)

    def list_datasets(self) -> list[DatasetInfo]:
        if not self.root.is_dir():
            return []
        datasets = []
        for path in sorted(self.root.rglob("*.csv")):
            relative = path.relative_to(self.root)
            folder = f"{relative.parent.as_posix()}: " if relative.parent != Path(".") else ""
            datasets.append(
                DatasetInfo(id=relative.as_posix(), name=f"{folder}{path.stem}", path=path)
            )
        return datasets

    def get(self, dataset_id: str) -> DatasetInfo:
        """
        Resolve a dataset id.

        Raises:
            DatasetError: If no dataset has this id
        """
        for info in self.list_datasets():
            if info.id == dataset_id:
                return info
        raise DatasetError(
            f"Unknown dataset: {dataset_id}",
            [{"field": "dataset_reference", "message": f"dataset '{dataset_id}' not found"}],
        )

    def load(self, dataset_id: str) -> pd.DataFrame:
        """
        Load and validate a dataset.

        Raises:
            DatasetError: If the id is unknown, the file cannot be read, or
                it holds no valid candles
        """
        info = self.get(dataset_id)
        try:
            text = info.path.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as e:
            raise DatasetError(
                f"Cannot read dataset {dataset_id}: {e}",
                [{"field": "dataset_reference", "message": str(e)}],
            ) from e

        candles = validate_candles(parse_candles(text))

        logger.info(
            "dataset_loaded",
            dataset=dataset_id,
            rows=len(candles),
            timeframe=infer_timeframe(candles),
            start=str(candles["timestamp"].iloc[0]),
            end=str(candles["timestamp"].iloc[-1]),
        )
        return candles
