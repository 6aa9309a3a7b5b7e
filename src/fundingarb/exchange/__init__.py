"""Exchange adapter layer -- one funding feed per venue, selected by registry."""

from __future__ import annotations

import httpx

from fundingarb.config import AppSettings
from fundingarb.exchange.aster import AsterAdapter
from fundingarb.exchange.base import FundingAdapter, HttpFundingAdapter
from fundingarb.exchange.extended import ExtendedAdapter
from fundingarb.exchange.hyperliquid import HyperliquidAdapter
from fundingarb.exchange.interval_store import (
    FundingInterval,
    InMemoryIntervalStore,
    IntervalStore,
    SqliteIntervalStore,
)
from fundingarb.exchange.lighter import LighterAdapter
from fundingarb.exchange.paradex import ParadexAdapter
from fundingarb.models import Exchange

ADAPTERS: dict[Exchange, type[FundingAdapter]] = {
    Exchange.HYPERLIQUID: HyperliquidAdapter,
    Exchange.EXTENDED: ExtendedAdapter,
    Exchange.ASTER: AsterAdapter,
    Exchange.LIGHTER: LighterAdapter,
    Exchange.PARADEX: ParadexAdapter,
}


def build_adapters(
    settings: AppSettings,
    http_client: httpx.AsyncClient,
    interval_store: IntervalStore,
) -> list[FundingAdapter]:
    """Instantiate the adapter of every enabled exchange, in Exchange order."""
    adapters: list[FundingAdapter] = []
    for exchange, adapter_cls in ADAPTERS.items():
        exchange_settings = getattr(settings, exchange.value)
        if not exchange_settings.enabled:
            continue
        adapters.append(adapter_cls.from_settings(settings, http_client, interval_store))
    return adapters


def build_interval_store(settings: AppSettings) -> IntervalStore:
    """Interval memo backend selected by INTERVAL_CACHE_BACKEND."""
    if settings.interval_cache.backend == "sqlite":
        return SqliteIntervalStore(settings.interval_cache.db_path)
    return InMemoryIntervalStore()


__all__ = [
    "ADAPTERS",
    "AsterAdapter",
    "ExtendedAdapter",
    "FundingAdapter",
    "FundingInterval",
    "HttpFundingAdapter",
    "HyperliquidAdapter",
    "InMemoryIntervalStore",
    "IntervalStore",
    "LighterAdapter",
    "ParadexAdapter",
    "SqliteIntervalStore",
    "build_adapters",
    "build_interval_store",
]
