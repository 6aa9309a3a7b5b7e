"""Lighter funding adapter.

``GET /api/v1/funding-rates`` returns
``{"code": 200, "funding_rates": [{market_id, exchange, symbol, rate}, ...]}``.
The list mixes in reference rates from other venues, so only rows whose
``exchange`` is "lighter" are kept. ``rate`` is the 8-hour rate and is
reported as such (``funding_period_hours=8``); the annualizer divides it.

``GET /api/v1/orderBookDetails`` adds liquidity figures. It is optional:
when it fails, quotes are still emitted without volume or open interest.
"""

from __future__ import annotations

from decimal import Decimal
from typing import TYPE_CHECKING

import httpx

from fundingarb.config import LighterSettings
from fundingarb.exceptions import FetchError, ParseError
from fundingarb.exchange.base import HttpFundingAdapter, to_decimal
from fundingarb.logging import get_logger
from fundingarb.models import Exchange, FundingQuote

if TYPE_CHECKING:
    from fundingarb.config import AppSettings
    from fundingarb.exchange.interval_store import IntervalStore

logger = get_logger(__name__)

FUNDING_RATES_PATH = "/api/v1/funding-rates"
ORDER_BOOK_DETAILS_PATH = "/api/v1/orderBookDetails"
_LIGHTER_SOURCES = {"lighter", "zklighter"}


class LighterAdapter(HttpFundingAdapter):
    """Lighter (zkLighter) perpetuals."""

    exchange = Exchange.LIGHTER
    api_key_header = "Authorization"

    def __init__(self, client: httpx.AsyncClient, settings: LighterSettings) -> None:
        super().__init__(client, settings.base_url, settings.api_key)
        self._settings = settings

    @classmethod
    def from_settings(
        cls,
        settings: AppSettings,
        http_client: httpx.AsyncClient,
        interval_store: IntervalStore,
    ) -> LighterAdapter:
        return cls(http_client, settings.lighter)

    async def fetch(self) -> list[FundingQuote]:
        body = await self._get_json(FUNDING_RATES_PATH)
        if not isinstance(body, dict):
            raise self._shape_error("expected an object with funding_rates", body)
        code = body.get("code")
        if code is not None and code != 200:
            raise FetchError(self.exchange.value, f"API code {code}: {body.get('message', '')}")
        rows = body.get("funding_rates")
        if not isinstance(rows, list):
            raise self._shape_error("missing funding_rates list", body)

        details = await self._fetch_details()

        quotes: list[FundingQuote] = []
        for row in rows:
            if not isinstance(row, dict):
                self._skip_row("row is not an object", row)
                continue
            if str(row.get("exchange", "")).lower() not in _LIGHTER_SOURCES:
                continue
            symbol = row.get("symbol")
            rate = to_decimal(row.get("rate"))
            if not symbol or rate is None:
                self._skip_row("missing symbol or rate", row)
                continue

            mark_price, open_interest_usd, volume_usd = details.get(str(symbol), (None, None, None))
            quotes.append(
                FundingQuote(
                    exchange=self.exchange,
                    raw_symbol=str(symbol),
                    funding_rate_per_period=rate,
                    funding_period_hours=self._settings.funding_period_hours,
                    mark_price=mark_price,
                    open_interest_usd=open_interest_usd,
                    volume_24h_usd=volume_usd,
                )
            )

        logger.info("lighter_funding_fetched", count=len(quotes))
        return quotes

    async def _fetch_details(
        self,
    ) -> dict[str, tuple[Decimal | None, Decimal | None, Decimal | None]]:
        """symbol -> (last price, open interest in USD, 24h quote volume)."""
        try:
            body = await self._get_json(ORDER_BOOK_DETAILS_PATH)
        except (FetchError, ParseError) as exc:
            logger.warning("lighter_details_unavailable", error=str(exc))
            return {}
        entries = body.get("order_book_details") if isinstance(body, dict) else None
        if not isinstance(entries, list):
            logger.warning("lighter_details_unexpected_shape")
            return {}

        details = {}
        for entry in entries:
            if not isinstance(entry, dict) or not entry.get("symbol"):
                continue
            price = to_decimal(entry.get("last_trade_price"))
            open_interest = to_decimal(entry.get("open_interest"))
            # open_interest is in base units
            open_interest_usd = (
                open_interest * price if open_interest is not None and price is not None else None
            )
            details[str(entry["symbol"])] = (
                price,
                open_interest_usd,
                to_decimal(entry.get("daily_quote_token_volume")),
            )
        return details
