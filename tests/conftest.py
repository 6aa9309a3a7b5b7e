"""Shared test fixtures for the funding-rate normalization engine."""

import asyncio
from collections.abc import Callable
from decimal import Decimal

import pytest

from fundingarb.config import (
    AggregationSettings,
    AppSettings,
    AsterSettings,
    DashboardSettings,
    ExtendedSettings,
    HyperliquidSettings,
    IntervalCacheSettings,
    LighterSettings,
    ParadexSettings,
)
from fundingarb.exchange.base import FundingAdapter
from fundingarb.models import Exchange, FundingQuote

QuoteFactory = Callable[..., FundingQuote]


def make_quote(
    exchange: Exchange,
    rate: str,
    hours: int = 1,
    symbol: str = "BTC",
    asset: str | None = "BTC",
    volume: str | None = None,
    open_interest: str | None = None,
) -> FundingQuote:
    """Build a FundingQuote with string-literal Decimals."""
    return FundingQuote(
        exchange=exchange,
        raw_symbol=symbol,
        funding_rate_per_period=Decimal(rate),
        funding_period_hours=hours,
        canonical_asset=asset,
        volume_24h_usd=Decimal(volume) if volume is not None else None,
        open_interest_usd=Decimal(open_interest) if open_interest is not None else None,
    )


class StubAdapter(FundingAdapter):
    """Adapter returning canned quotes, raising, or blocking on demand."""

    def __init__(
        self,
        exchange: Exchange,
        quotes: list[FundingQuote] | None = None,
        error: BaseException | None = None,
        delay: float = 0.0,
    ) -> None:
        self.exchange = exchange  # type: ignore[misc]
        self._quotes = quotes or []
        self._error = error
        self._delay = delay
        self.calls = 0
        self.closed = False

    @classmethod
    def from_settings(cls, settings, http_client, interval_store):  # type: ignore[override]
        raise NotImplementedError

    async def fetch(self) -> list[FundingQuote]:
        self.calls += 1
        if self._delay:
            await asyncio.sleep(self._delay)
        if self._error is not None:
            raise self._error
        return list(self._quotes)

    async def close(self) -> None:
        self.closed = True


@pytest.fixture
def quote() -> QuoteFactory:
    """Factory fixture for FundingQuote objects."""
    return make_quote


@pytest.fixture
def aggregation_settings() -> AggregationSettings:
    """Aggregation settings with a short poll interval for loop tests."""
    return AggregationSettings(
        adapter_timeout_seconds=1.0,
        poll_interval_seconds=0.05,
        history_max_points=3,
    )


@pytest.fixture
def mock_settings() -> AppSettings:
    """Return AppSettings with test defaults (every exchange on, memory interval cache)."""
    return AppSettings(
        log_level="DEBUG",
        hyperliquid=HyperliquidSettings(),
        extended=ExtendedSettings(base_url="https://extended.test"),
        aster=AsterSettings(
            base_url="https://aster.test",
            interval_discovery_budget_seconds=0.5,
            interval_timeout_seconds=0.5,
        ),
        lighter=LighterSettings(base_url="https://lighter.test"),
        paradex=ParadexSettings(base_url="https://paradex.test"),
        aggregation=AggregationSettings(),
        interval_cache=IntervalCacheSettings(backend="memory"),
        dashboard=DashboardSettings(enabled=False),
    )
