"""Pydantic settings loaded from YAML configuration."""

from __future__ import annotations

from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel

_settings: Settings | None = None

_DEFAULT_CONFIG_PATH = Path("config/settings.yaml")


class DatabaseConfig(BaseModel):
    """SQLite database location shared by the alert and portfolio stores."""

    path: str = "data/sentinel.db"


class MonitorConfig(BaseModel):
    """Background monitor housekeeping."""

    prune_interval_secs: float = 3600.0
    prune_after_days: int = 30


class WebhookConfig(BaseModel):
    """Outbound webhook delivery configuration."""

    enabled: bool = True
    timeout_secs: float = 10.0
    max_fail_count: int = 5
    failing_threshold: int = 3
    user_agent: str = "FolioSentinel-Alerts/1.0"
    min_severity: str = "info"


class MarketDataConfig(BaseModel):
    """Yahoo Finance market data client configuration."""

    chart_url: str = "https://query1.finance.yahoo.com/v8/finance/chart"
    summary_url: str = "https://query2.finance.yahoo.com/v10/finance/quoteSummary"
    timeout_secs: float = 10.0
    max_concurrency: int = 8
    user_agent: str = "Mozilla/5.0 (compatible; FolioSentinel/1.0)"


class LoggingConfig(BaseModel):
    """Logging configuration."""

    level: str = "INFO"
    format: str = "json"


class Settings(BaseModel):
    """Root settings container."""

    database: DatabaseConfig = DatabaseConfig()
    monitor: MonitorConfig = MonitorConfig()
    webhooks: WebhookConfig = WebhookConfig()
    market_data: MarketDataConfig = MarketDataConfig()
    logging: LoggingConfig = LoggingConfig()


def load_settings(path: str | Path | None = None) -> Settings:
    """Load settings from a YAML file and cache globally.

    Args:
        path: Path to YAML config. Defaults to config/settings.yaml.

    Returns:
        Parsed Settings instance.
    """
    global _settings  # noqa: PLW0603

    config_path = Path(path) if path else _DEFAULT_CONFIG_PATH

    data: dict[str, Any] = {}
    if config_path.exists():
        with open(config_path) as f:
            raw = yaml.safe_load(f)
            if isinstance(raw, dict):
                data = raw

    _settings = Settings(**data)
    return _settings


def get_settings() -> Settings:
    """Return the cached settings, loading defaults if not yet loaded."""
    global _settings  # noqa: PLW0603
    if _settings is None:
        _settings = load_settings()
    return _settings


def reset_settings() -> None:
    """Reset the cached settings (useful for testing)."""
    global _settings  # noqa: PLW0603
    _settings = None
