"""
Configuration loading and validation for the amd-backtest application.

This module uses standard library dataclasses for configuration objects,
with explicit, pure validation functions run before any object is built.
"""

import yaml
from dataclasses import dataclass, field
from datetime import date
from pathlib import Path
from typing import Any, Dict, List, Literal, Optional, Type, Union, cast, get_args, get_origin

from amd_backtest.simulator import DEFAULT_LOT_SIZE, DEFAULT_PROFIT_MARGIN

__all__ = ["load_config", "Config"]


# §1. Nested Configuration Dataclasses
# --------------------------------------------------------------------------------------


@dataclass(frozen=True)
class RunConfig:
    name: str
    output_dir: Path


@dataclass(frozen=True)
class DataConfig:
    source: Literal["yfinance", "csv"]
    symbol: str
    market_symbol: str
    risk_free_symbol: str
    start_date: date
    end_date: date
    snapshot_dir: Path
    refresh: bool = False


@dataclass(frozen=True)
class StrategyConfig:
    lot_size: float = DEFAULT_LOT_SIZE
    profit_margin: float = DEFAULT_PROFIT_MARGIN


@dataclass(frozen=True)
class WindowConfig:
    """Optional date window for the restricted momentum run."""
    start_date: Optional[date] = None
    end_date: Optional[date] = None

    @property
    def is_set(self) -> bool:
        return self.start_date is not None or self.end_date is not None


@dataclass(frozen=True)
class ReportingConfig:
    generate_plots: bool = False
    output_formats: List[Literal["json", "markdown", "csv"]] = field(
        default_factory=lambda: ["json", "markdown", "csv"]
    )


# §2. Top-Level Configuration
# --------------------------------------------------------------------------------------


@dataclass(frozen=True)
class Config:
    """The root configuration object, composing all nested sections."""
    run: RunConfig
    data: DataConfig
    strategy: StrategyConfig = field(default_factory=StrategyConfig)
    window: WindowConfig = field(default_factory=WindowConfig)
    reporting: ReportingConfig = field(default_factory=ReportingConfig)

    @property
    def symbols(self) -> List[str]:
        """Every symbol the pipeline needs data for."""
        return [self.data.symbol, self.data.market_symbol, self.data.risk_free_symbol]


# §3. Validation and Loading
# --------------------------------------------------------------------------------------


def _unwrap_optional(data_class: Any) -> Any:
    """Returns `X` for `Optional[X]`, otherwise the type unchanged."""
    if get_origin(data_class) is Union:
        args = [a for a in get_args(data_class) if a is not type(None)]
        if len(args) == 1:
            return args[0]
    return data_class


def _from_dict(data_class: Type[Any], data: Any) -> Any:
    """Recursively creates nested dataclasses from a dictionary."""
    data_class = _unwrap_optional(data_class)
    if isinstance(data, dict) and hasattr(data_class, "__dataclass_fields__"):
        field_types = {f.name: f.type for f in data_class.__dataclass_fields__.values()}

        kwargs = {}
        for k, v in data.items():
            field_type = field_types.get(k)
            # Unknown keys pass through and make the constructor raise a
            # TypeError, which load_config reports.
            kwargs[k] = _from_dict(field_type, v) if field_type else v
        return data_class(**kwargs)

    # Convert date strings to date objects
    if isinstance(data, str) and data_class is date:
        return date.fromisoformat(data)
    # Convert path strings to Path objects
    if isinstance(data, str) and data_class is Path:
        return Path(data)
    return data


def _as_date(value: Any) -> date:
    """YAML gives dates for bare ISO values and strings for quoted ones."""
    if isinstance(value, date):
        return value
    return date.fromisoformat(str(value))


def _validate_config(cfg: Dict[str, Any]) -> None:
    """
    Performs simple, explicit validation checks on the raw config dictionary.
    Fail fast on any logical inconsistencies.
    """
    if not isinstance(cfg, dict):
        raise ValueError("Configuration must be a YAML object.")

    for section in ("run", "data"):
        if not isinstance(cfg.get(section), dict):
            raise ValueError(f"Missing required section: {section}")

    # Date validation
    data_start = _as_date(cfg["data"]["start_date"])
    data_end = _as_date(cfg["data"]["end_date"])
    if data_end <= data_start:
        raise ValueError("data.end_date must be after data.start_date")
    if cfg["data"].get("refresh") and cfg["data"].get("source") != "yfinance":
        raise ValueError("data.refresh requires the 'yfinance' source.")

    window = cfg.get("window") or {}
    window_start = window.get("start_date")
    window_end = window.get("end_date")
    if window_start is not None and window_end is not None:
        if _as_date(window_end) < _as_date(window_start):
            raise ValueError("window.end_date must not be before window.start_date")

    # Strategy validation
    strategy = cfg.get("strategy") or {}
    if strategy.get("lot_size", DEFAULT_LOT_SIZE) <= 0:
        raise ValueError("strategy.lot_size must be positive.")
    if strategy.get("profit_margin", DEFAULT_PROFIT_MARGIN) <= 1.0:
        raise ValueError("strategy.profit_margin must be greater than 1.0.")


# impure
def load_config(config_path: Path) -> Config:
    """
    Loads and validates a YAML configuration file into a Config object.
    #impure: Reads from the filesystem.
    """
    if not config_path.is_file():
        raise FileNotFoundError(f"Configuration file not found: {config_path}")

    try:
        with config_path.open("r", encoding="utf-8") as f:
            raw_config = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ValueError(f"Invalid YAML syntax in {config_path}: {e}") from e

    try:
        _validate_config(raw_config)
        # Empty sections in YAML load as None; let the dataclass defaults apply.
        raw_config = {k: v for k, v in raw_config.items() if v is not None}
        # We cast here because _from_dict is too dynamic for mypy to track types.
        return cast(Config, _from_dict(Config, raw_config))
    except (TypeError, KeyError) as e:
        raise ValueError(f"Configuration validation failed: missing or invalid key. Details: {e}") from e
