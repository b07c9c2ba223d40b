"""Settings management for fintrack.

Provides data-driven configuration with sensible defaults, an optional JSON
file and environment variable overrides.
"""

import json
import logging
import os
from copy import deepcopy
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

logger = logging.getLogger(__name__)

CONFIG_ENV_VAR = "FINTRACK_CONFIG"

# Default settings (used when nothing is configured)
DEFAULT_SETTINGS = {
    "$schema": "fintrack_settings_v1",
    "version": "1.0",

    "database": {
        "path": "~/.fintrack/fintrack.db",
        "write_retries": 3,
    },

    "rates": {
        "api_url": "https://open.exchangerate-api.com/v6",
        "timeout_seconds": 5.0,
        "cache_ttl_hours": 24,
        "supported_currencies": [
            "AUD", "MNT", "USD", "EUR", "GBP", "JPY", "CNY", "KRW", "THB", "VND"
        ],
    },

    "imports": {
        "preview_limit": 10,
        "max_upload_bytes": 10 * 1024 * 1024,
        "skip_duplicates": True,
        "source_encoding": "utf-8",
    },
}

# Environment variable -> (section, key, converter)
ENV_OVERRIDES = {
    "FINTRACK_DB_PATH": ("database", "path", str),
    "FINTRACK_RATES_URL": ("rates", "api_url", str),
    "FINTRACK_RATES_TIMEOUT": ("rates", "timeout_seconds", float),
}


@dataclass
class RateSettings:
    """Configuration for the exchange-rate layer."""
    api_url: str = "https://open.exchangerate-api.com/v6"
    timeout_seconds: float = 5.0
    cache_ttl_hours: int = 24
    supported_currencies: List[str] = field(default_factory=list)


@dataclass
class ImportSettings:
    """Configuration for the import pipeline."""
    preview_limit: int = 10
    max_upload_bytes: int = 10 * 1024 * 1024
    skip_duplicates: bool = True
    source_encoding: str = "utf-8"


@dataclass
class Settings:
    """Complete fintrack settings."""
    db_path: str = "~/.fintrack/fintrack.db"
    write_retries: int = 3
    rates: RateSettings = field(default_factory=RateSettings)
    imports: ImportSettings = field(default_factory=ImportSettings)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Settings":
        """Create settings from a (merged) settings dictionary."""
        database = data.get("database", {})
        rates = data.get("rates", {})
        imports = data.get("imports", {})

        return cls(
            db_path=database.get("path", "~/.fintrack/fintrack.db"),
            write_retries=int(database.get("write_retries", 3)),
            rates=RateSettings(
                api_url=rates.get("api_url", RateSettings.api_url).rstrip("/"),
                timeout_seconds=float(rates.get("timeout_seconds", 5.0)),
                cache_ttl_hours=int(rates.get("cache_ttl_hours", 24)),
                supported_currencies=[
                    c.upper() for c in rates.get("supported_currencies", [])
                ],
            ),
            imports=ImportSettings(
                preview_limit=int(imports.get("preview_limit", 10)),
                max_upload_bytes=int(imports.get("max_upload_bytes", 10 * 1024 * 1024)),
                skip_duplicates=bool(imports.get("skip_duplicates", True)),
                source_encoding=imports.get("source_encoding", "utf-8"),
            ),
        )


def _deep_merge(base: Dict, override: Dict) -> Dict:
    """Deep merge override dict into base dict."""
    result = deepcopy(base)
    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = _deep_merge(result[key], value)
        else:
            result[key] = value
    return result


def load_settings(
    config_path: Optional[Union[str, Path]] = None,
    environ: Optional[Dict[str, str]] = None,
) -> Settings:
    """
    Load settings from defaults, an optional JSON file and the environment.

    Args:
        config_path: JSON settings file. Falls back to $FINTRACK_CONFIG.
        environ: Environment mapping (defaults to os.environ)

    Returns:
        Settings
    """
    environ = os.environ if environ is None else environ
    data = deepcopy(DEFAULT_SETTINGS)

    if config_path is None and environ.get(CONFIG_ENV_VAR):
        config_path = environ[CONFIG_ENV_VAR]

    if config_path is not None:
        path = Path(config_path).expanduser()
        if path.exists():
            try:
                with open(path, "r", encoding="utf-8") as f:
                    data = _deep_merge(data, json.load(f))
                logger.debug(f"Loaded settings from {path}")
            except (json.JSONDecodeError, OSError) as e:
                logger.warning(f"Failed to load settings from {path}: {e}")
        else:
            logger.warning(f"Settings file not found: {path}")

    for env_var, (section, key, convert) in ENV_OVERRIDES.items():
        if env_var in environ:
            try:
                data[section][key] = convert(environ[env_var])
            except ValueError:
                logger.warning(f"Ignoring invalid {env_var}={environ[env_var]!r}")

    return Settings.from_dict(data)
