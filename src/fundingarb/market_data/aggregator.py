"""Cross-exchange aggregation: collect quotes, group by asset, rank spreads.

Pipeline for one pass:
  1. fetch_all_funding: every adapter concurrently, each under its own timeout
  2. keying: raw symbol -> canonical asset, cadence validated
  3. build_snapshot: one AssetFundingSnapshot per canonical asset
  4. rank_opportunities: best long/short pair per asset, sorted by |APY|

No per-quote or per-exchange failure aborts a pass. Failures are returned
next to the quotes that did load, so callers can show "4 of 5 exchanges
loaded". Only contract violations (wrong input types) raise.
"""

from __future__ import annotations

import asyncio
import itertools
from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from decimal import Decimal

from fundingarb.exceptions import (
    FetchError,
    InvalidCadenceError,
    InvalidSymbolError,
    ParseError,
)
from fundingarb.exchange.base import FundingAdapter
from fundingarb.logging import get_logger
from fundingarb.market_data.annualizer import (
    HOURS_PER_YEAR,
    REPORTING_THRESHOLD,
    is_effectively_zero,
    to_hourly_rate,
)
from fundingarb.market_data.strategy import recommend
from fundingarb.market_data.symbols import normalize_symbol
from fundingarb.models import (
    AssetFundingSnapshot,
    Exchange,
    ExchangeError,
    FundingQuote,
    FundingResult,
    SpreadOpportunity,
)

logger = get_logger(__name__)

DEFAULT_ADAPTER_TIMEOUT = 5.0


# ---------------------------------------------------------------------------
# Collection
# ---------------------------------------------------------------------------


class FundingCollector:
    """Runs one aggregation pass over a set of adapters.

    ``result`` is filled in as adapters finish. When the pass deadline
    expires, or the pass itself is cancelled, pending adapters are cancelled,
    whatever already completed stays on ``result``, and exchanges that never
    finished are tagged "cancelled". A deadline returns the partial result;
    an outside cancellation still propagates, leaving it on ``result``.

    Args:
        adapters: Adapters to run; at most one per exchange.
        timeout: Per-adapter timeout in seconds.
    """

    def __init__(
        self,
        adapters: Sequence[FundingAdapter],
        timeout: float = DEFAULT_ADAPTER_TIMEOUT,
    ) -> None:
        self._adapters = list(adapters)
        self._timeout = timeout
        self._finished: set[str] = set()
        self.result = FundingResult(attempted=[a.exchange.value for a in self._adapters])

    async def run(self, deadline: float | None = None) -> FundingResult:
        """Fetch from every adapter concurrently and return the combined result.

        Args:
            deadline: Seconds the whole pass may take. Adapters still running
                when it expires are cancelled and tagged "cancelled"; the
                quotes that did arrive are returned. None waits for every
                adapter (each is still bounded by the per-adapter timeout).
        """
        tasks = [asyncio.create_task(self._run_adapter(a)) for a in self._adapters]
        try:
            if tasks:
                _, pending = await asyncio.wait(tasks, timeout=deadline)
            else:
                pending = set()
        except asyncio.CancelledError:
            await self._abandon(tasks)
            logger.info(
                "funding_pass_cancelled",
                completed=sorted(self._finished),
                quotes=len(self.result.quotes),
            )
            raise

        if pending:
            await self._abandon(pending)
            logger.warning(
                "funding_pass_deadline_exceeded",
                deadline=deadline,
                completed=sorted(self._finished),
                cancelled=sorted(
                    a.exchange.value
                    for a in self._adapters
                    if a.exchange.value not in self._finished
                ),
            )

        logger.info(
            "funding_pass_collected",
            quotes=len(self.result.quotes),
            errors=len(self.result.errors),
            summary=self.result.summary(),
        )
        return self.result

    async def _abandon(self, tasks: Iterable[asyncio.Task]) -> None:  # type: ignore[type-arg]
        """Cancel unfinished adapter tasks and tag their exchanges."""
        tasks = list(tasks)
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        for adapter in self._adapters:
            name = adapter.exchange.value
            if name not in self._finished:
                self.result.errors.append(
                    ExchangeError(exchange=name, error="cancelled", kind="CancelledError")
                )

    async def _run_adapter(self, adapter: FundingAdapter) -> None:
        name = adapter.exchange.value
        try:
            quotes = await asyncio.wait_for(adapter.fetch(), timeout=self._timeout)
            self._accept(name, quotes)
        except asyncio.TimeoutError:
            self._record(name, FetchError(name, f"timed out after {self._timeout}s"))
        except ParseError as exc:
            logger.warning(
                "adapter_parse_failed",
                exchange=name,
                error=exc.message,
                payload=exc.payload_excerpt,
            )
            self._record(name, exc)
        except FetchError as exc:
            logger.warning("adapter_fetch_failed", exchange=name, error=exc.message)
            self._record(name, exc)
        except Exception as exc:
            logger.error("adapter_crashed", exchange=name, exc_info=True)
            self._record(name, exc)
        self._finished.add(name)

    def _record(self, exchange: str, exc: BaseException, symbol: str | None = None) -> None:
        message = exc.message if isinstance(exc, (FetchError, ParseError)) else str(exc)
        self.result.errors.append(
            ExchangeError(
                exchange=exchange,
                error=message or type(exc).__name__,
                kind=type(exc).__name__,
                symbol=symbol,
            )
        )

    def _accept(self, exchange: str, quotes: Iterable[FundingQuote]) -> None:
        accepted = 0
        dropped = 0
        for quote in quotes:
            try:
                keyed = quote.with_canonical_asset(normalize_symbol(quote.raw_symbol))
                to_hourly_rate(keyed)
            except (InvalidSymbolError, InvalidCadenceError) as exc:
                dropped += 1
                logger.warning(
                    "quote_dropped",
                    exchange=exchange,
                    symbol=quote.raw_symbol,
                    reason=str(exc),
                )
                self._record(exchange, exc, symbol=quote.raw_symbol)
                continue
            self.result.quotes.append(keyed)
            accepted += 1
        logger.info("adapter_fetch_completed", exchange=exchange, quotes=accepted, dropped=dropped)


async def fetch_all_funding(
    adapters: Sequence[FundingAdapter],
    timeout: float = DEFAULT_ADAPTER_TIMEOUT,
    deadline: float | None = None,
) -> FundingResult:
    """Run every adapter concurrently and collect quotes plus per-exchange errors.

    With ``deadline`` set, the pass gives up on slow adapters after that many
    seconds and returns what completed; the rest are tagged "cancelled".
    """
    return await FundingCollector(adapters, timeout).run(deadline=deadline)


# ---------------------------------------------------------------------------
# Grouping
# ---------------------------------------------------------------------------


def _volume(quote: FundingQuote) -> Decimal:
    return quote.volume_24h_usd if quote.volume_24h_usd is not None else Decimal("-1")


def build_snapshot(quotes: Iterable[FundingQuote]) -> list[AssetFundingSnapshot]:
    """Group keyed quotes into one snapshot per canonical asset, sorted by asset.

    An exchange listing the same asset twice (e.g. BTC-USD and BTC-USDT)
    keeps the quote with the larger 24h volume; ties keep the first seen.
    Quotes with a non-positive funding period are dropped.

    Raises:
        TypeError: If an item is not a FundingQuote.
        ValueError: If a quote has no canonical asset.
    """
    grouped: dict[str, dict[Exchange, tuple[FundingQuote, Decimal]]] = {}
    for quote in quotes:
        if not isinstance(quote, FundingQuote):
            raise TypeError(f"expected FundingQuote, got {type(quote).__name__}")
        if quote.canonical_asset is None:
            raise ValueError(
                f"{quote.exchange.value}:{quote.raw_symbol} has no canonical asset"
            )
        try:
            hourly = to_hourly_rate(quote)
        except InvalidCadenceError as exc:
            logger.warning(
                "quote_dropped",
                exchange=quote.exchange.value,
                symbol=quote.raw_symbol,
                reason=str(exc),
            )
            continue

        by_exchange = grouped.setdefault(quote.canonical_asset, {})
        existing = by_exchange.get(quote.exchange)
        if existing is not None:
            logger.debug(
                "duplicate_asset_quote",
                exchange=quote.exchange.value,
                asset=quote.canonical_asset,
                kept=existing[0].raw_symbol,
                other=quote.raw_symbol,
            )
            if _volume(quote) <= _volume(existing[0]):
                continue
        by_exchange[quote.exchange] = (quote, hourly)

    snapshots = []
    for asset in sorted(grouped):
        entries = sorted(grouped[asset].values(), key=lambda e: e[0].exchange.order)
        snapshots.append(
            AssetFundingSnapshot(
                asset=asset,
                quotes=tuple(q for q, _ in entries),
                hourly_rates={q.exchange: rate for q, rate in entries},
            )
        )
    return snapshots


# ---------------------------------------------------------------------------
# Spreads and ranking
# ---------------------------------------------------------------------------


def _opportunity(
    snapshot: AssetFundingSnapshot,
    quote_a: FundingQuote,
    quote_b: FundingQuote,
    periods_per_year: int,
) -> SpreadOpportunity | None:
    rec = recommend(quote_a, quote_b, periods_per_year)
    if rec is None:
        return None
    long_quote = quote_a if quote_a.exchange == rec.long else quote_b
    short_quote = quote_b if long_quote is quote_a else quote_a
    return SpreadOpportunity(
        asset=snapshot.asset,
        long_exchange=rec.long,
        short_exchange=rec.short,
        long_hourly_rate=snapshot.hourly_rates[rec.long],
        short_hourly_rate=snapshot.hourly_rates[rec.short],
        hourly_spread=rec.hourly_spread,
        projected_apy=rec.projected_apy,
        long_quote=long_quote,
        short_quote=short_quote,
    )


def pairwise_spreads(
    snapshot: AssetFundingSnapshot,
    periods_per_year: int = HOURS_PER_YEAR,
) -> list[SpreadOpportunity]:
    """One opportunity per exchange pair whose hourly rates differ."""
    result = []
    for quote_a, quote_b in itertools.combinations(snapshot.quotes, 2):
        opportunity = _opportunity(snapshot, quote_a, quote_b, periods_per_year)
        if opportunity is not None:
            result.append(opportunity)
    return result


def best_spread(
    snapshot: AssetFundingSnapshot,
    periods_per_year: int = HOURS_PER_YEAR,
) -> SpreadOpportunity | None:
    """Widest spread for the asset: long the lowest hourly rate, short the highest.

    Ties go to the exchange listed first in ``Exchange``.
    """
    if not snapshot.is_spreadable:
        return None
    rates = snapshot.hourly_rates
    short_quote = max(snapshot.quotes, key=lambda q: rates[q.exchange])
    long_quote = min(snapshot.quotes, key=lambda q: rates[q.exchange])
    if short_quote is long_quote:
        return None
    return _opportunity(snapshot, long_quote, short_quote, periods_per_year)


def _rank_key(opportunity: SpreadOpportunity) -> tuple:
    return (
        -abs(opportunity.projected_apy),
        opportunity.asset,
        opportunity.long_exchange.order,
        opportunity.short_exchange.order,
    )


def rank_opportunities(
    snapshots: AssetFundingSnapshot | Iterable[AssetFundingSnapshot],
    *,
    pairwise: bool = False,
    periods_per_year: int = HOURS_PER_YEAR,
    threshold: Decimal = REPORTING_THRESHOLD,
) -> list[SpreadOpportunity]:
    """Spread opportunities sorted by |projected APY| descending, then asset name.

    Assets quoted by fewer than two exchanges and spreads below the
    reporting threshold are left out. With ``pairwise=True`` every exchange
    pair is listed instead of only the widest one per asset.
    """
    if isinstance(snapshots, AssetFundingSnapshot):
        snapshots = [snapshots]

    opportunities: list[SpreadOpportunity] = []
    for snapshot in snapshots:
        if not snapshot.is_spreadable:
            continue
        if pairwise:
            candidates = pairwise_spreads(snapshot, periods_per_year)
        else:
            best = best_spread(snapshot, periods_per_year)
            candidates = [best] if best is not None else []
        opportunities.extend(
            o for o in candidates if not is_effectively_zero(o.hourly_spread, threshold)
        )

    opportunities.sort(key=_rank_key)
    return opportunities


# ---------------------------------------------------------------------------
# Filtering
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class OpportunityFilter:
    """Caller-side narrowing of a ranked opportunity list.

    Liquidity thresholds apply to both legs: a hedge is only as liquid as its
    thinner side. A leg with unknown liquidity fails a threshold that is set.
    """

    min_apy: Decimal | None = None
    min_volume_24h_usd: Decimal | None = None
    min_open_interest_usd: Decimal | None = None
    query: str | None = None
    exchanges: frozenset[Exchange] | None = None


def _leg_passes(value: Decimal | None, threshold: Decimal | None) -> bool:
    if threshold is None:
        return True
    return value is not None and value >= threshold


def filter_opportunities(
    opportunities: Iterable[SpreadOpportunity],
    criteria: OpportunityFilter,
) -> list[SpreadOpportunity]:
    """Keep the opportunities matching every set criterion, preserving order."""
    query = criteria.query.strip().upper() if criteria.query else ""
    kept = []
    for opportunity in opportunities:
        if criteria.min_apy is not None and abs(opportunity.projected_apy) < criteria.min_apy:
            continue
        if query and query not in opportunity.asset:
            continue
        if criteria.exchanges is not None and not {
            opportunity.long_exchange,
            opportunity.short_exchange,
        } <= criteria.exchanges:
            continue
        legs = (opportunity.long_quote, opportunity.short_quote)
        if not all(_leg_passes(q.volume_24h_usd, criteria.min_volume_24h_usd) for q in legs):
            continue
        if not all(
            _leg_passes(q.open_interest_usd, criteria.min_open_interest_usd) for q in legs
        ):
            continue
        kept.append(opportunity)
    return kept


__all__ = [
    "FundingCollector",
    "OpportunityFilter",
    "best_spread",
    "build_snapshot",
    "fetch_all_funding",
    "filter_opportunities",
    "pairwise_spreads",
    "rank_opportunities",
]
