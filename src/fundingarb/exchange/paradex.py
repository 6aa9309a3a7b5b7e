"""Paradex funding adapter.

Cadence is declared per market by ``GET /v1/markets``
(``funding_period_hours``); current rates come from
``GET /v1/markets/summary?market=ALL``. Both are required, so they are
fetched concurrently and either failing fails the exchange.
"""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING, Any

import httpx

from fundingarb.config import ParadexSettings
from fundingarb.exchange.base import HttpFundingAdapter, to_decimal, to_int
from fundingarb.logging import get_logger
from fundingarb.models import Exchange, FundingQuote

if TYPE_CHECKING:
    from fundingarb.config import AppSettings
    from fundingarb.exchange.interval_store import IntervalStore

logger = get_logger(__name__)

MARKETS_PATH = "/v1/markets"
SUMMARY_PATH = "/v1/markets/summary"


class ParadexAdapter(HttpFundingAdapter):
    """Paradex perpetuals (``asset_kind == "PERP"`` markets only)."""

    exchange = Exchange.PARADEX
    api_key_header = "Authorization"
    api_key_prefix = "Bearer "

    def __init__(self, client: httpx.AsyncClient, settings: ParadexSettings) -> None:
        super().__init__(client, settings.base_url, settings.api_key)
        self._settings = settings

    @classmethod
    def from_settings(
        cls,
        settings: AppSettings,
        http_client: httpx.AsyncClient,
        interval_store: IntervalStore,
    ) -> ParadexAdapter:
        return cls(http_client, settings.paradex)

    async def fetch(self) -> list[FundingQuote]:
        markets_body, summary_body = await asyncio.gather(
            self._get_json(MARKETS_PATH),
            self._get_json(SUMMARY_PATH, {"market": "ALL"}),
        )
        periods = self._perp_periods(markets_body)
        summaries = self._results(summary_body, SUMMARY_PATH)

        quotes: list[FundingQuote] = []
        for summary in summaries:
            if not isinstance(summary, dict):
                self._skip_row("summary is not an object", summary)
                continue
            symbol = summary.get("symbol")
            if symbol not in periods:
                continue
            rate = to_decimal(summary.get("funding_rate"))
            if rate is None:
                self._skip_row("missing funding_rate", summary)
                continue

            open_interest = to_decimal(summary.get("open_interest"))
            underlying = to_decimal(summary.get("underlying_price"))
            quotes.append(
                FundingQuote(
                    exchange=self.exchange,
                    raw_symbol=str(symbol),
                    funding_rate_per_period=rate,
                    funding_period_hours=periods[symbol],
                    mark_price=to_decimal(summary.get("mark_price")),
                    open_interest_usd=(
                        open_interest * underlying
                        if open_interest is not None and underlying is not None
                        else None
                    ),
                    volume_24h_usd=to_decimal(summary.get("volume_24h")),
                    next_funding_time=to_int(summary.get("next_funding_time")),
                )
            )

        logger.info("paradex_funding_fetched", count=len(quotes))
        return quotes

    def _results(self, body: Any, path: str) -> list:
        results = body.get("results") if isinstance(body, dict) else None
        if not isinstance(results, list):
            raise self._shape_error(f"missing results list from {path}", body)
        return results

    def _perp_periods(self, body: Any) -> dict[str, int]:
        """symbol -> funding period in hours, for perpetual markets."""
        periods: dict[str, int] = {}
        for market in self._results(body, MARKETS_PATH):
            if not isinstance(market, dict) or market.get("asset_kind") != "PERP":
                continue
            symbol = market.get("symbol")
            if not symbol:
                continue
            hours = to_int(market.get("funding_period_hours"))
            periods[str(symbol)] = (
                hours if hours is not None else self._settings.default_funding_period_hours
            )
        return periods
