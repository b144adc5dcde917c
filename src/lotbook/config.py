"""
Configuration loading for lotbook.

Settings are read from several sources with priority (later sources
override earlier):
1. Built-in defaults
2. config/lotbook.yaml (or an explicit YAML file)
3. .env file in the working directory
4. LOTBOOK_* environment variables
"""

import logging
import os
from dataclasses import dataclass, field, fields
from datetime import time
from pathlib import Path
from typing import Any, Mapping, Optional

import yaml
from dotenv import dotenv_values


DEFAULT_CONFIG_FILE = Path("config") / "lotbook.yaml"
DEFAULT_ENV_FILE = Path(".env")
ENV_PREFIX = "LOTBOOK_"


class ConfigurationError(Exception):
    """Raised when configuration is invalid or cannot be loaded."""
    pass


@dataclass
class Settings:
    """
    Runtime settings.

    Attributes:
        store_path: JSON file backing the document store
        activity_log_path: JSONL audit log
        quote_max_retries: Attempts per quote source request
        quote_retry_delay: Base delay between retries (seconds)
        quote_workers: Parallel quote fetches per valuation run
        market_open: Start of the charted trading session
        market_close: End of the charted trading session
        history_interval: Sampling interval for intraday history
        log_level: Level for diagnostic logging
    """
    store_path: str = "data/lotbook.json"
    activity_log_path: str = "output/activity_log.jsonl"
    quote_max_retries: int = 3
    quote_retry_delay: float = 2.0
    quote_workers: int = 1
    market_open: time = field(default_factory=lambda: time(8, 30))
    market_close: time = field(default_factory=lambda: time(15, 0))
    history_interval: str = "5m"
    log_level: str = "WARNING"


SETTING_NAMES = tuple(f.name for f in fields(Settings))


def load_settings(
    config_path: str | Path | None = None,
    env_file: str | Path | None = None,
    environ: Optional[Mapping[str, str]] = None,
) -> Settings:
    """
    Load settings from all configuration sources.

    Args:
        config_path: YAML file; must exist when given explicitly
            (defaults to config/lotbook.yaml, skipped if missing)
        env_file: .env file (defaults to .env, skipped if missing)
        environ: Environment mapping (defaults to os.environ)

    Returns:
        Validated Settings

    Raises:
        ConfigurationError: If a file cannot be read or a value is invalid
    """
    raw: dict[str, Any] = {}

    # 1. YAML file
    if config_path is not None:
        yaml_path = Path(config_path)
        if not yaml_path.exists():
            raise ConfigurationError(f"Configuration file not found: {yaml_path}")
    else:
        yaml_path = DEFAULT_CONFIG_FILE

    if yaml_path.exists():
        raw.update(_load_yaml(yaml_path))

    # 2. .env file
    env_path = Path(env_file) if env_file else DEFAULT_ENV_FILE
    if env_path.exists():
        raw.update(_prefixed(dotenv_values(env_path)))

    # 3. Environment variables (highest priority)
    raw.update(_prefixed(os.environ if environ is None else environ))

    return _parse_settings(raw)


def _load_yaml(path: Path) -> dict[str, Any]:
    try:
        with open(path, "r") as f:
            loaded = yaml.safe_load(f) or {}
    except yaml.YAMLError as e:
        raise ConfigurationError(f"Invalid YAML in configuration file: {e}")
    except OSError as e:
        raise ConfigurationError(f"Cannot read configuration file {path}: {e}")

    if not isinstance(loaded, dict):
        raise ConfigurationError(f"Configuration file {path} must contain a mapping")

    unknown = sorted(set(loaded) - set(SETTING_NAMES))
    if unknown:
        raise ConfigurationError(f"Unknown configuration fields: {', '.join(unknown)}")

    return loaded


def _prefixed(values: Mapping[str, Optional[str]]) -> dict[str, Any]:
    """Pick LOTBOOK_* keys and map them to setting names."""
    result = {}
    for key, value in values.items():
        if not key.startswith(ENV_PREFIX) or value is None:
            continue
        name = key[len(ENV_PREFIX):].lower()
        if name in SETTING_NAMES:
            result[name] = value
    return result


def _parse_settings(raw: dict[str, Any]) -> Settings:
    """
    Validate raw values into Settings.

    Raises:
        ConfigurationError: If any value is invalid
    """
    defaults = Settings()

    market_open = _parse_time(raw.get("market_open", defaults.market_open), "market_open")
    market_close = _parse_time(raw.get("market_close", defaults.market_close), "market_close")
    if market_close <= market_open:
        raise ConfigurationError(
            f"market_close must be after market_open, got {market_open} - {market_close}"
        )

    log_level = str(raw.get("log_level", defaults.log_level)).upper()
    if not isinstance(logging.getLevelName(log_level), int):
        raise ConfigurationError(f"Invalid log_level: {log_level}")

    return Settings(
        store_path=_parse_path(raw.get("store_path", defaults.store_path), "store_path"),
        activity_log_path=_parse_path(
            raw.get("activity_log_path", defaults.activity_log_path), "activity_log_path"
        ),
        quote_max_retries=_parse_int(
            raw.get("quote_max_retries", defaults.quote_max_retries), "quote_max_retries", min_val=1
        ),
        quote_retry_delay=_parse_float(
            raw.get("quote_retry_delay", defaults.quote_retry_delay), "quote_retry_delay", min_val=0.0
        ),
        quote_workers=_parse_int(
            raw.get("quote_workers", defaults.quote_workers), "quote_workers", min_val=1
        ),
        market_open=market_open,
        market_close=market_close,
        history_interval=str(raw.get("history_interval", defaults.history_interval)).strip(),
        log_level=log_level,
    )


def _parse_path(value: Any, field_name: str) -> str:
    text = str(value).strip() if value is not None else ""
    if not text:
        raise ConfigurationError(f"{field_name} cannot be empty")
    return text


def _parse_int(value: Any, field_name: str, min_val: Optional[int] = None) -> int:
    """
    Parse an integer value with optional lower bound.

    Raises:
        ConfigurationError: If the value is invalid or out of range
    """
    if isinstance(value, bool):
        raise ConfigurationError(f"Invalid integer value for {field_name}: {value}")
    try:
        int_value = int(str(value).strip())
    except ValueError:
        raise ConfigurationError(f"Invalid integer value for {field_name}: {value}")

    if min_val is not None and int_value < min_val:
        raise ConfigurationError(f"{field_name} must be >= {min_val}, got {int_value}")

    return int_value


def _parse_float(value: Any, field_name: str, min_val: Optional[float] = None) -> float:
    """
    Parse a float value with optional lower bound.

    Raises:
        ConfigurationError: If the value is invalid or out of range
    """
    if isinstance(value, bool):
        raise ConfigurationError(f"Invalid numeric value for {field_name}: {value}")
    try:
        float_value = float(str(value).strip())
    except ValueError:
        raise ConfigurationError(f"Invalid numeric value for {field_name}: {value}")

    if min_val is not None and float_value < min_val:
        raise ConfigurationError(f"{field_name} must be >= {min_val}, got {float_value}")

    return float_value


def _parse_time(value: Any, field_name: str) -> time:
    """
    Parse a time of day.

    Accepts time objects, "HH:MM" strings, and integers as minutes after
    midnight (YAML 1.1 reads an unquoted 15:00 as the base-60 integer 900).

    Raises:
        ConfigurationError: If the time cannot be parsed
    """
    if isinstance(value, time):
        return value

    if isinstance(value, int) and not isinstance(value, bool):
        if 0 <= value < 24 * 60:
            return time(value // 60, value % 60)

    if isinstance(value, str):
        try:
            return time.fromisoformat(value.strip())
        except ValueError:
            pass

    raise ConfigurationError(f"Invalid time format for {field_name}: {value}. Expected HH:MM")


def write_settings(settings: Settings, output_path: str | Path) -> None:
    """
    Write Settings to a YAML file.

    Args:
        settings: The settings to write
        output_path: Path to write the YAML file
    """
    output_path = Path(output_path)
    output_path.parent.mkdir(parents=True, exist_ok=True)

    config_dict = {
        "store_path": settings.store_path,
        "activity_log_path": settings.activity_log_path,
        "quote_max_retries": settings.quote_max_retries,
        "quote_retry_delay": settings.quote_retry_delay,
        "quote_workers": settings.quote_workers,
        "market_open": settings.market_open.strftime("%H:%M"),
        "market_close": settings.market_close.strftime("%H:%M"),
        "history_interval": settings.history_interval,
        "log_level": settings.log_level,
    }

    with open(output_path, "w") as f:
        yaml.dump(config_dict, f, default_flow_style=False, sort_keys=False)
