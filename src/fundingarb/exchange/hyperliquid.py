"""Hyperliquid funding adapter via ccxt async.

ccxt's ``fetch_funding_rates`` issues the ``metaAndAssetCtxs`` info request
and merges each universe entry with its asset context, so ``info`` carries
``name``, ``funding``, ``markPx``, ``openInterest`` (in coins) and
``dayNtlVlm`` (USD). Hyperliquid settles funding every hour.
"""

from __future__ import annotations

import re
from typing import TYPE_CHECKING

import ccxt.async_support as ccxt_async

from fundingarb.config import HyperliquidSettings
from fundingarb.exceptions import FetchError, ParseError
from fundingarb.exchange.base import FundingAdapter, payload_excerpt, to_decimal, to_int
from fundingarb.logging import get_logger
from fundingarb.models import Exchange, FundingQuote

if TYPE_CHECKING:
    import httpx

    from fundingarb.config import AppSettings
    from fundingarb.exchange.interval_store import IntervalStore

logger = get_logger(__name__)

_INTERVAL_RE = re.compile(r"^(\d+)h$")


def parse_interval_hours(interval: object, default: int) -> int:
    """Convert a ccxt interval string such as "1h" or "8h" into hours."""
    if isinstance(interval, str):
        match = _INTERVAL_RE.match(interval.strip().lower())
        if match:
            return int(match.group(1))
    return default


class HyperliquidAdapter(FundingAdapter):
    """Hyperliquid perpetuals through ``ccxt.async_support.hyperliquid``.

    Args:
        settings: Hyperliquid settings.
        exchange: Optional pre-built ccxt exchange (injected in tests). When
            omitted the adapter creates and owns one.
        timeout_seconds: ccxt request timeout.
    """

    exchange = Exchange.HYPERLIQUID

    def __init__(
        self,
        settings: HyperliquidSettings,
        exchange: ccxt_async.hyperliquid | None = None,
        timeout_seconds: float = 10.0,
    ) -> None:
        self._settings = settings
        self._owns_client = exchange is None
        if exchange is None:
            config: dict = {
                "enableRateLimit": True,
                "timeout": int(timeout_seconds * 1000),
                "options": {"defaultType": "swap"},
            }
            api_key = settings.api_key.get_secret_value()
            if api_key:
                config["apiKey"] = api_key
            exchange = ccxt_async.hyperliquid(config)
        self._client = exchange

    @classmethod
    def from_settings(
        cls,
        settings: AppSettings,
        http_client: httpx.AsyncClient,
        interval_store: IntervalStore,
    ) -> HyperliquidAdapter:
        return cls(
            settings.hyperliquid,
            timeout_seconds=settings.aggregation.http_timeout_seconds,
        )

    async def fetch(self) -> list[FundingQuote]:
        try:
            rates = await self._client.fetch_funding_rates()
        except (ccxt_async.NetworkError, ccxt_async.ExchangeError) as exc:
            raise FetchError(self.exchange.value, f"{type(exc).__name__}: {exc}") from exc
        except (KeyError, TypeError, ValueError) as exc:
            raise ParseError(
                self.exchange.value, f"ccxt could not parse funding rates: {exc}"
            ) from exc

        if not isinstance(rates, dict):
            raise ParseError(
                self.exchange.value,
                "expected a symbol -> funding rate mapping",
                payload_excerpt(rates),
            )

        quotes: list[FundingQuote] = []
        for symbol, entry in rates.items():
            if not isinstance(entry, dict):
                self._skip_row("entry is not an object", entry)
                continue
            info = entry.get("info") or {}
            if info.get("isDelisted"):
                continue

            rate = to_decimal(entry.get("fundingRate"))
            if rate is None:
                self._skip_row("missing fundingRate", entry)
                continue

            mark_price = to_decimal(entry.get("markPrice")) or to_decimal(info.get("markPx"))
            open_interest = to_decimal(info.get("openInterest"))
            open_interest_usd = (
                open_interest * mark_price
                if open_interest is not None and mark_price is not None
                else None
            )

            quotes.append(
                FundingQuote(
                    exchange=self.exchange,
                    raw_symbol=str(info.get("name") or symbol),
                    funding_rate_per_period=rate,
                    funding_period_hours=parse_interval_hours(
                        entry.get("interval"), self._settings.funding_period_hours
                    ),
                    mark_price=mark_price,
                    open_interest_usd=open_interest_usd,
                    volume_24h_usd=to_decimal(info.get("dayNtlVlm")),
                    next_funding_time=to_int(entry.get("fundingTimestamp")),
                )
            )

        logger.info("hyperliquid_funding_fetched", count=len(quotes))
        return quotes

    async def close(self) -> None:
        """Close the ccxt session if this adapter created it."""
        if self._owns_client:
            await self._client.close()
