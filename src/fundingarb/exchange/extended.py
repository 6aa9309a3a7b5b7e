"""Extended exchange funding adapter.

``GET /api/v1/info/markets`` returns ``{"status": "OK", "data": [...]}``
where each market carries a ``marketStats`` block with the current hourly
``fundingRate``, ``markPrice``, ``openInterest`` and ``dailyVolume`` (both
in USD collateral).
"""

from __future__ import annotations

from typing import TYPE_CHECKING

import httpx

from fundingarb.config import ExtendedSettings
from fundingarb.exceptions import FetchError
from fundingarb.exchange.base import HttpFundingAdapter, to_decimal
from fundingarb.logging import get_logger
from fundingarb.models import Exchange, FundingQuote

if TYPE_CHECKING:
    from fundingarb.config import AppSettings
    from fundingarb.exchange.interval_store import IntervalStore

logger = get_logger(__name__)

MARKETS_PATH = "/api/v1/info/markets"


class ExtendedAdapter(HttpFundingAdapter):
    """Extended (Starknet) perpetuals."""

    exchange = Exchange.EXTENDED

    def __init__(self, client: httpx.AsyncClient, settings: ExtendedSettings) -> None:
        super().__init__(client, settings.base_url, settings.api_key)
        self._settings = settings

    @classmethod
    def from_settings(
        cls,
        settings: AppSettings,
        http_client: httpx.AsyncClient,
        interval_store: IntervalStore,
    ) -> ExtendedAdapter:
        return cls(http_client, settings.extended)

    async def fetch(self) -> list[FundingQuote]:
        body = await self._get_json(MARKETS_PATH)
        if not isinstance(body, dict):
            raise self._shape_error("expected an object with a data list", body)
        if body.get("status") == "ERROR":
            error = body.get("error") or {}
            message = error.get("message") if isinstance(error, dict) else str(error)
            raise FetchError(self.exchange.value, f"API error: {message or 'unknown'}")

        markets = body.get("data")
        if not isinstance(markets, list):
            raise self._shape_error("missing data list", body)

        quotes: list[FundingQuote] = []
        for market in markets:
            if not isinstance(market, dict):
                self._skip_row("market is not an object", market)
                continue
            stats = market.get("marketStats")
            if not market.get("active", True) or not isinstance(stats, dict):
                continue
            name = market.get("name")
            rate = to_decimal(stats.get("fundingRate"))
            if not name or rate is None:
                self._skip_row("missing name or fundingRate", market)
                continue

            quotes.append(
                FundingQuote(
                    exchange=self.exchange,
                    raw_symbol=str(name),
                    funding_rate_per_period=rate,
                    funding_period_hours=self._settings.funding_period_hours,
                    mark_price=to_decimal(stats.get("markPrice")),
                    open_interest_usd=to_decimal(stats.get("openInterest")),
                    volume_24h_usd=to_decimal(stats.get("dailyVolume")),
                )
            )

        logger.info("extended_funding_fetched", count=len(quotes))
        return quotes
