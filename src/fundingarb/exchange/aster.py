"""Aster funding adapter (Binance-compatible futures API).

``/fapi/v1/premiumIndex`` gives ``lastFundingRate`` per symbol but not the
cadence, and Aster runs 1h, 4h and 8h markets side by side. The cadence is
discovered per symbol from the gap between the two most recent entries of
``/fapi/v1/fundingRate`` and memoized in an injected IntervalStore.

Discovery is bounded per pass: symbols not resolved within
``interval_discovery_budget_seconds`` use ``default_interval_hours`` for this
pass while their lookups keep running in the background and fill the store
for the next pass. Fallback values are never stored.
"""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING

import httpx

from fundingarb.config import AsterSettings
from fundingarb.exceptions import FetchError, ParseError
from fundingarb.exchange.base import HttpFundingAdapter, to_decimal, to_int
from fundingarb.exchange.interval_store import FundingInterval, IntervalStore
from fundingarb.logging import get_logger
from fundingarb.models import Exchange, FundingQuote

if TYPE_CHECKING:
    from fundingarb.config import AppSettings

logger = get_logger(__name__)

PREMIUM_INDEX_PATH = "/fapi/v1/premiumIndex"
TICKER_24H_PATH = "/fapi/v1/ticker/24hr"
FUNDING_HISTORY_PATH = "/fapi/v1/fundingRate"


class AsterAdapter(HttpFundingAdapter):
    """Aster perpetuals with per-symbol funding interval discovery.

    Args:
        client: Shared async HTTP client.
        settings: Aster settings (endpoint and discovery knobs).
        interval_store: Memo of discovered intervals, owned by the caller.
    """

    exchange = Exchange.ASTER
    api_key_header = "X-MBX-APIKEY"

    def __init__(
        self,
        client: httpx.AsyncClient,
        settings: AsterSettings,
        interval_store: IntervalStore,
    ) -> None:
        super().__init__(client, settings.base_url, settings.api_key)
        self._settings = settings
        self._intervals = interval_store
        self._semaphore = asyncio.Semaphore(max(1, settings.interval_concurrency))
        self._inflight: dict[str, asyncio.Task[FundingInterval | None]] = {}

    @classmethod
    def from_settings(
        cls,
        settings: AppSettings,
        http_client: httpx.AsyncClient,
        interval_store: IntervalStore,
    ) -> AsterAdapter:
        return cls(http_client, settings.aster, interval_store)

    async def fetch(self) -> list[FundingQuote]:
        rows, volumes = await asyncio.gather(
            self._get_json(PREMIUM_INDEX_PATH),
            self._fetch_volumes(),
        )
        if isinstance(rows, dict):
            rows = [rows]
        if not isinstance(rows, list):
            raise self._shape_error("expected a list of premium index rows", rows)

        parsed: list[tuple[str, dict]] = []
        for row in rows:
            if not isinstance(row, dict) or not row.get("symbol"):
                self._skip_row("missing symbol", row)
                continue
            parsed.append((str(row["symbol"]), row))

        intervals = await self.resolve_intervals([symbol for symbol, _ in parsed])

        quotes: list[FundingQuote] = []
        for symbol, row in parsed:
            rate = to_decimal(row.get("lastFundingRate"))
            if rate is None:
                self._skip_row("missing lastFundingRate", row)
                continue
            quotes.append(
                FundingQuote(
                    exchange=self.exchange,
                    raw_symbol=symbol,
                    funding_rate_per_period=rate,
                    funding_period_hours=intervals[symbol],
                    mark_price=to_decimal(row.get("markPrice")),
                    volume_24h_usd=volumes.get(symbol),
                    next_funding_time=to_int(row.get("nextFundingTime")),
                )
            )

        logger.info("aster_funding_fetched", count=len(quotes))
        return quotes

    async def _fetch_volumes(self) -> dict:
        """24h quote volume per symbol. Optional: failures only drop the volume column."""
        try:
            tickers = await self._get_json(TICKER_24H_PATH)
        except (FetchError, ParseError) as exc:
            logger.warning("aster_volume_unavailable", error=str(exc))
            return {}
        if not isinstance(tickers, list):
            logger.warning("aster_volume_unexpected_shape")
            return {}
        volumes = {}
        for ticker in tickers:
            if isinstance(ticker, dict) and ticker.get("symbol"):
                volume = to_decimal(ticker.get("quoteVolume"))
                if volume is not None:
                    volumes[str(ticker["symbol"])] = volume
        return volumes

    async def resolve_intervals(self, symbols: list[str]) -> dict[str, int]:
        """Return the funding period in hours for every symbol.

        Cached values are used as-is; misses are discovered concurrently
        within the per-pass budget.
        """
        resolved: dict[str, int] = {}
        missing: list[str] = []
        for symbol in symbols:
            cached = await self._intervals.get(symbol)
            if cached is not None:
                resolved[symbol] = cached.hours
            else:
                missing.append(symbol)

        if missing:
            tasks = {symbol: self._discovery_task(symbol) for symbol in missing}
            done, _ = await asyncio.wait(
                tasks.values(),
                timeout=self._settings.interval_discovery_budget_seconds,
            )
            fallback = self._settings.default_interval_hours
            fallbacks = 0
            for symbol, task in tasks.items():
                interval = None
                if task in done and not task.cancelled():
                    if task.exception() is not None:
                        logger.warning(
                            "aster_interval_store_error",
                            symbol=symbol,
                            error=str(task.exception()),
                        )
                    else:
                        interval = task.result()
                if interval is None:
                    fallbacks += 1
                    resolved[symbol] = fallback
                else:
                    resolved[symbol] = interval.hours
            if fallbacks:
                logger.info(
                    "aster_interval_fallback",
                    symbols=fallbacks,
                    fallback_hours=fallback,
                )
        return resolved

    def _discovery_task(self, symbol: str) -> asyncio.Task[FundingInterval | None]:
        task = self._inflight.get(symbol)
        if task is None:
            task = asyncio.create_task(self._discover(symbol))
            self._inflight[symbol] = task
            task.add_done_callback(lambda _t, s=symbol: self._inflight.pop(s, None))
        return task

    async def _discover(self, symbol: str) -> FundingInterval | None:
        """Measure one symbol's cadence and store it. Returns None on failure."""
        async with self._semaphore:
            try:
                history = await asyncio.wait_for(
                    self._get_json(FUNDING_HISTORY_PATH, {"symbol": symbol, "limit": 2}),
                    timeout=self._settings.interval_timeout_seconds,
                )
            except (FetchError, ParseError, asyncio.TimeoutError) as exc:
                logger.debug("aster_interval_discovery_failed", symbol=symbol, error=str(exc))
                return None

        if not isinstance(history, list) or len(history) < 2:
            return None
        t0 = to_int(history[0].get("fundingTime")) if isinstance(history[0], dict) else None
        t1 = to_int(history[1].get("fundingTime")) if isinstance(history[1], dict) else None
        if t0 is None or t1 is None or t0 == t1:
            return None

        interval = FundingInterval.from_milliseconds(t1 - t0)
        await self._intervals.set(symbol, interval)
        return interval

    async def close(self) -> None:
        """Cancel background discoveries still running."""
        tasks = list(self._inflight.values())
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self._inflight.clear()
