"""
Data fetching, snapshot management and price-series normalization.
"""
import subprocess
from datetime import date, datetime, timezone
from pathlib import Path
from typing import Dict, List, Optional, Sequence

import pandas as pd
import pyarrow as pa
import pyarrow.parquet as pq
import yfinance as yf
from rich.console import Console

from amd_backtest.config import Config
from amd_backtest.types import PriceRecord

__all__ = [
    "DataValidationError",
    "fetch_and_snapshot",
    "discover_symbols",
    "load_snapshot",
    "load_price_csv",
    "to_price_records",
    "filter_date_window",
    "refresh_market_data",
]

PRICE_COLUMN = "Close"


class DataValidationError(ValueError):
    """Raised when a price series breaks the loader's ordering or value rules."""


def _get_run_metadata(config: Config) -> Dict[str, str]:
    """Generates metadata for the data snapshot."""
    try:
        git_hash = subprocess.check_output(
            ["git", "rev-parse", "--short", "HEAD"], stderr=subprocess.DEVNULL
        ).strip().decode()
    except (subprocess.CalledProcessError, FileNotFoundError):
        git_hash = "unknown"
    return {
        "fetch_utc": datetime.now(timezone.utc).isoformat(),
        "yfinance_version": yf.__version__,
        "git_hash": git_hash,
        "run_name": config.run.name,
    }


def _get_snapshot_dir(config: Config) -> Path:
    """Constructs the snapshot directory path from config."""
    return config.data.snapshot_dir / config.data.source


def _normalize_columns(df: pd.DataFrame) -> pd.DataFrame:
    """Flattens the (field, ticker) MultiIndex yfinance returns for one ticker."""
    if isinstance(df.columns, pd.MultiIndex):
        df = df.copy()
        df.columns = df.columns.get_level_values(0)
    return df


def discover_symbols(config: Config) -> List[str]:
    """Discovers all available symbols by scanning the snapshot directory."""
    snapshot_dir = _get_snapshot_dir(config)
    if not snapshot_dir.exists():
        return []
    suffix = "*.csv" if config.data.source == "csv" else "*.parquet"
    return sorted([p.stem for p in snapshot_dir.glob(suffix)])


# impure
def fetch_and_snapshot(symbols: List[str], config: Config) -> List[str]:
    """
    Fetch data from yfinance and save to parquet snapshots.
    Returns a list of symbols that failed to download.
    #impure: Accesses network and filesystem.
    """
    snapshot_dir = _get_snapshot_dir(config)
    snapshot_dir.mkdir(parents=True, exist_ok=True)

    failed_symbols = []
    for symbol in symbols:
        try:
            data = yf.download(
                tickers=symbol,
                start=config.data.start_date,
                end=config.data.end_date,
                interval="1d",
                auto_adjust=True,
                prepost=False,
                actions=False,
                progress=False,
            )
            if data is None or data.empty:
                raise ValueError(f"No data returned for symbol {symbol}")

            table = pa.Table.from_pandas(_normalize_columns(data))
            metadata = _get_run_metadata(config)
            table = table.replace_schema_metadata({
                **(table.schema.metadata or {}),
                **{k.encode(): str(v).encode() for k, v in metadata.items()}
            })
            pq.write_table(table, snapshot_dir / f"{symbol}.parquet")

        except Exception:
            failed_symbols.append(symbol)

    return failed_symbols


# impure
def load_price_csv(path: Path, price_column: Optional[str] = None) -> pd.DataFrame:
    """
    Loads a daily price CSV in the Yahoo Finance layout.

    The `Date` column becomes the index. The price column defaults to
    `Adj Close` when present, else `Close`, and is returned as `Close`.
    #impure: Reads from the filesystem.
    """
    if not path.is_file():
        raise FileNotFoundError(f"Price file not found: {path}")

    df = pd.read_csv(path, parse_dates=["Date"], index_col="Date")
    if price_column is None:
        price_column = "Adj Close" if "Adj Close" in df.columns else PRICE_COLUMN
    if price_column not in df.columns:
        raise ValueError(f"Column '{price_column}' not found in {path}.")

    return df[[price_column]].rename(columns={price_column: PRICE_COLUMN})


# impure
def load_snapshot(symbol: str, config: Config) -> pd.DataFrame:
    """
    Load the existing data snapshot for one symbol.
    #impure: Reads from the filesystem.
    """
    snapshot_dir = _get_snapshot_dir(config)
    if not snapshot_dir.exists():
        raise FileNotFoundError(f"Snapshot directory not found: {snapshot_dir}")

    if config.data.source == "csv":
        return load_price_csv(snapshot_dir / f"{symbol}.csv")

    parquet_path = snapshot_dir / f"{symbol}.parquet"
    if not parquet_path.is_file():
        raise FileNotFoundError(f"Missing snapshot for symbol: {symbol} at {parquet_path}")

    df = _normalize_columns(pd.read_parquet(parquet_path))
    if PRICE_COLUMN not in df.columns:
        raise ValueError(f"Data for {symbol} is missing the '{PRICE_COLUMN}' column.")
    return df


def to_price_records(df: pd.DataFrame, column: str = PRICE_COLUMN) -> List[PriceRecord]:
    """
    Converts a date-indexed price DataFrame into validated PriceRecords.

    Rows with a missing price are dropped. Non-positive prices, duplicate
    dates and dates out of order are rejected.
    """
    if column not in df.columns:
        raise ValueError(f"Input DataFrame must contain a '{column}' column.")

    prices = df[column].dropna()
    index = pd.DatetimeIndex(prices.index)

    if index.has_duplicates:
        dupes = sorted({d.date() for d in index[index.duplicated()]})
        raise DataValidationError(f"Duplicate dates in price series: {dupes}")
    if not index.is_monotonic_increasing:
        raise DataValidationError("Price series dates are not in increasing order.")
    if (prices <= 0).any():
        bad = index[(prices <= 0).to_numpy()][0].date()
        raise DataValidationError(f"Non-positive price on {bad}.")

    return [
        PriceRecord(date=ts.date(), price=float(price))
        for ts, price in zip(index, prices.to_numpy())
    ]


def filter_date_window(
    records: Sequence[PriceRecord],
    start: Optional[date] = None,
    end: Optional[date] = None,
) -> List[PriceRecord]:
    """Restricts records to the inclusive window [start, end]. Either end may be open."""
    if start is not None and end is not None and start > end:
        raise ValueError(f"Window start {start} is after window end {end}.")
    return [
        r for r in records
        if (start is None or r.date >= start) and (end is None or r.date <= end)
    ]


# impure
def refresh_market_data(config: Config, console: Console) -> List[str]:
    """
    Refreshes snapshots already on disk, or downloads the configured symbols
    when there are none yet. Returns the symbols that failed.
    #impure: Accesses network and filesystem.
    """
    if config.data.source != "yfinance":
        raise ValueError(f"Cannot refresh data for source '{config.data.source}'; only 'yfinance' is downloadable.")

    symbols = discover_symbols(config)
    if symbols:
        console.print(f"Found {len(symbols)} existing symbols. Refreshing them.")
    else:
        symbols = config.symbols
        console.print("No existing snapshots found. Performing initial download for symbols in config.")

    failed = fetch_and_snapshot(symbols, config)
    if failed:
        console.print(f"[bold yellow]Warning:[/bold yellow] Failed to fetch data for {len(failed)} symbols:")
        for symbol in sorted(failed):
            console.print(f" - {symbol}")
    return failed
