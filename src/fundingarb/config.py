"""Configuration system using pydantic-settings with environment variable loading."""

from decimal import Decimal
from typing import Literal

from pydantic import SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict


class HyperliquidSettings(BaseSettings):
    """Hyperliquid public info endpoint (reached through ccxt)."""

    model_config = SettingsConfigDict(env_prefix="HYPERLIQUID_")

    enabled: bool = True
    api_key: SecretStr = SecretStr("")
    funding_period_hours: int = 1  # used when ccxt omits the interval


class ExtendedSettings(BaseSettings):
    """Extended exchange REST settings."""

    model_config = SettingsConfigDict(env_prefix="EXTENDED_")

    enabled: bool = True
    base_url: str = "https://api.starknet.extended.exchange"
    api_key: SecretStr = SecretStr("")
    funding_period_hours: int = 1


class AsterSettings(BaseSettings):
    """Aster REST settings and funding-interval discovery knobs.

    Aster runs different cadences per symbol, so the interval is discovered
    from the two most recent funding events. ``default_interval_hours`` is
    only used for a symbol whose discovery failed on this pass.
    """

    model_config = SettingsConfigDict(env_prefix="ASTER_")

    enabled: bool = True
    base_url: str = "https://fapi.asterdex.com"
    api_key: SecretStr = SecretStr("")
    default_interval_hours: int = 4
    interval_timeout_seconds: float = 5.0  # per symbol
    interval_discovery_budget_seconds: float = 3.0  # per pass, must stay under the adapter timeout
    interval_concurrency: int = 8


class LighterSettings(BaseSettings):
    """Lighter REST settings."""

    model_config = SettingsConfigDict(env_prefix="LIGHTER_")

    enabled: bool = True
    base_url: str = "https://mainnet.zklighter.elliot.ai"
    api_key: SecretStr = SecretStr("")
    funding_period_hours: int = 8  # API reports the 8h rate


class ParadexSettings(BaseSettings):
    """Paradex REST settings."""

    model_config = SettingsConfigDict(env_prefix="PARADEX_")

    enabled: bool = True
    base_url: str = "https://api.prod.paradex.trade"
    api_key: SecretStr = SecretStr("")
    default_funding_period_hours: int = 8


class AggregationSettings(BaseSettings):
    """Aggregation pass parameters.

    All fields configurable via AGGREGATION_ environment variable prefix.
    """

    model_config = SettingsConfigDict(env_prefix="AGGREGATION_")

    adapter_timeout_seconds: float = 5.0
    pass_deadline_seconds: float | None = None  # whole pass; None waits for every adapter
    http_timeout_seconds: float = 10.0
    periods_per_year: int = 8760  # hourly periods, 365 * 24
    reporting_threshold: Decimal = Decimal("0.000001")  # |hourly spread| below this is zero
    poll_interval_seconds: float = 30.0
    history_max_points: int = 500


class IntervalCacheSettings(BaseSettings):
    """Where discovered funding intervals are memoized."""

    model_config = SettingsConfigDict(env_prefix="INTERVAL_CACHE_")

    backend: Literal["memory", "sqlite"] = "memory"
    db_path: str = "data/intervals.db"


class DashboardSettings(BaseSettings):
    """JSON API server configuration."""

    model_config = SettingsConfigDict(env_prefix="DASHBOARD_")

    host: str = "0.0.0.0"
    port: int = 8080
    enabled: bool = True


class AppSettings(BaseSettings):
    """Root application settings, composing all sub-settings."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
    )

    log_level: str = "INFO"
    hyperliquid: HyperliquidSettings = HyperliquidSettings()
    extended: ExtendedSettings = ExtendedSettings()
    aster: AsterSettings = AsterSettings()
    lighter: LighterSettings = LighterSettings()
    paradex: ParadexSettings = ParadexSettings()
    aggregation: AggregationSettings = AggregationSettings()
    interval_cache: IntervalCacheSettings = IntervalCacheSettings()
    dashboard: DashboardSettings = DashboardSettings()
