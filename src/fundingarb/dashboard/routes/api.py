"""JSON API endpoints for the funding board, spread opportunities, and history."""

from __future__ import annotations

from decimal import Decimal
from typing import Any

import structlog
from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

from fundingarb.market_data.aggregator import (
    OpportunityFilter,
    filter_opportunities,
    rank_opportunities,
)
from fundingarb.market_data.annualizer import to_apy
from fundingarb.market_data.funding_monitor import FundingMonitor
from fundingarb.models import (
    AssetFundingSnapshot,
    Exchange,
    FundingQuote,
    SpreadOpportunity,
)

log = structlog.get_logger(__name__)

router = APIRouter()


def _decimal_to_str(obj: Any) -> Any:
    """Recursively convert Decimal values to strings for JSON serialization."""
    if isinstance(obj, Decimal):
        return str(obj)
    if isinstance(obj, dict):
        return {k: _decimal_to_str(v) for k, v in obj.items()}
    if isinstance(obj, list):
        return [_decimal_to_str(item) for item in obj]
    return obj


def _monitor(request: Request) -> FundingMonitor | None:
    return getattr(request.app.state, "funding_monitor", None)


def _unavailable() -> JSONResponse:
    return JSONResponse(content={"error": "Funding monitor not running"}, status_code=503)


def _quote_dict(quote: FundingQuote) -> dict:
    return {
        "exchange": quote.exchange.value,
        "exchange_name": quote.exchange.display_name,
        "raw_symbol": quote.raw_symbol,
        "asset": quote.canonical_asset,
        "funding_rate": quote.funding_rate_per_period,
        "funding_period_hours": quote.funding_period_hours,
        "mark_price": quote.mark_price,
        "open_interest_usd": quote.open_interest_usd,
        "volume_24h_usd": quote.volume_24h_usd,
        "next_funding_time": quote.next_funding_time,
        "observed_at": quote.observed_at,
    }


def _snapshot_dict(snapshot: AssetFundingSnapshot, periods_per_year: int) -> dict:
    return {
        "asset": snapshot.asset,
        "exchanges": [e.value for e in snapshot.exchanges],
        "rates": {
            exchange.value: {
                "hourly_rate": hourly,
                "apy": to_apy(hourly, periods_per_year),
            }
            for exchange, hourly in snapshot.hourly_rates.items()
        },
        "quotes": [_quote_dict(q) for q in snapshot.quotes],
        "max_volume_24h_usd": snapshot.max_volume_24h_usd,
        "max_open_interest_usd": snapshot.max_open_interest_usd,
    }


def _opportunity_dict(opportunity: SpreadOpportunity) -> dict:
    return {
        "asset": opportunity.asset,
        "long_exchange": opportunity.long_exchange.value,
        "short_exchange": opportunity.short_exchange.value,
        "long_hourly_rate": opportunity.long_hourly_rate,
        "short_hourly_rate": opportunity.short_hourly_rate,
        "hourly_spread": opportunity.hourly_spread,
        "projected_apy": opportunity.projected_apy,
        "long_volume_24h_usd": opportunity.long_quote.volume_24h_usd,
        "short_volume_24h_usd": opportunity.short_quote.volume_24h_usd,
        "long_open_interest_usd": opportunity.long_quote.open_interest_usd,
        "short_open_interest_usd": opportunity.short_quote.open_interest_usd,
    }


def _parse_exchanges(raw: str | None) -> frozenset[Exchange] | None:
    """Comma list of exchange names; raises ValueError on an unknown name."""
    if not raw:
        return None
    names = [part.strip().lower() for part in raw.split(",") if part.strip()]
    return frozenset(Exchange(name) for name in names)


@router.get("/funding")
async def get_funding(request: Request) -> JSONResponse:
    """All normalized quotes from the last pass, plus per-exchange errors."""
    monitor = _monitor(request)
    if monitor is None:
        return _unavailable()
    result = monitor.board.result

    return JSONResponse(content=_decimal_to_str({
        "quotes": [_quote_dict(q) for q in result.quotes],
        "errors": [
            {"exchange": e.exchange, "error": e.error, "kind": e.kind, "symbol": e.symbol}
            for e in result.errors
        ],
        "loaded": len(result.loaded_exchanges),
        "total": len(result.attempted),
        "summary": result.summary(),
    }))


@router.get("/snapshots")
async def get_snapshots(request: Request) -> JSONResponse:
    """Per-asset rates, hourly and annualized, for every exchange listing it."""
    monitor = _monitor(request)
    if monitor is None:
        return _unavailable()
    periods = monitor.settings.periods_per_year
    return JSONResponse(
        content=_decimal_to_str([_snapshot_dict(s, periods) for s in monitor.board.snapshots])
    )


@router.get("/snapshots/{asset}")
async def get_snapshot(request: Request, asset: str) -> JSONResponse:
    monitor = _monitor(request)
    if monitor is None:
        return _unavailable()
    snapshot = monitor.get_snapshot(asset)
    if snapshot is None:
        return JSONResponse(content={"error": f"No data found for {asset}"}, status_code=404)
    return JSONResponse(
        content=_decimal_to_str(_snapshot_dict(snapshot, monitor.settings.periods_per_year))
    )


@router.get("/opportunities")
async def get_opportunities(
    request: Request,
    min_apy: Decimal | None = None,
    min_volume: Decimal | None = None,
    min_open_interest: Decimal | None = None,
    q: str | None = None,
    exchanges: str | None = None,
    pairwise: bool = False,
    limit: int | None = None,
) -> JSONResponse:
    """Ranked spread opportunities.

    Query params:
        min_apy: Minimum |projected APY| in percent.
        min_volume: Minimum 24h USD volume on both legs.
        min_open_interest: Minimum USD open interest on both legs.
        q: Substring match on the asset name.
        exchanges: Comma list; both legs must be on one of these exchanges.
        pairwise: Every exchange pair per asset instead of the best spread only.
        limit: Maximum number of rows returned.
    """
    monitor = _monitor(request)
    if monitor is None:
        return _unavailable()

    try:
        venue_filter = _parse_exchanges(exchanges)
    except ValueError:
        log.warning("opportunities_unknown_exchange", exchanges=exchanges)
        return JSONResponse(
            content={"error": f"Unknown exchange in {exchanges!r}"}, status_code=400
        )
    if limit is not None and limit < 0:
        return JSONResponse(content={"error": "limit must be >= 0"}, status_code=400)

    board = monitor.board
    if pairwise:
        opportunities = rank_opportunities(
            board.snapshots,
            pairwise=True,
            periods_per_year=monitor.settings.periods_per_year,
            threshold=monitor.settings.reporting_threshold,
        )
    else:
        opportunities = list(board.opportunities)

    criteria = OpportunityFilter(
        min_apy=min_apy,
        min_volume_24h_usd=min_volume,
        min_open_interest_usd=min_open_interest,
        query=q,
        exchanges=venue_filter,
    )
    opportunities = filter_opportunities(opportunities, criteria)
    if limit is not None:
        opportunities = opportunities[:limit]

    return JSONResponse(content=_decimal_to_str([_opportunity_dict(o) for o in opportunities]))


@router.get("/opportunities/{asset}/history")
async def get_opportunity_history(request: Request, asset: str) -> JSONResponse:
    """Best-spread history of one asset, oldest first."""
    monitor = _monitor(request)
    if monitor is None:
        return _unavailable()
    points = monitor.get_history(asset)
    return JSONResponse(content=_decimal_to_str({
        "asset": asset.upper(),
        "points": [
            {
                "ts": p.ts,
                "hourly_spread": p.hourly_spread,
                "projected_apy": p.projected_apy,
                "long_exchange": p.long_exchange,
                "short_exchange": p.short_exchange,
            }
            for p in points
        ],
    }))


@router.get("/status")
async def get_status(request: Request) -> JSONResponse:
    """Last refresh time and duration, and how each exchange fared."""
    monitor = _monitor(request)
    if monitor is None:
        return _unavailable()
    board = monitor.board
    result = board.result

    failures = {e.exchange: e for e in result.errors if e.symbol is None}
    exchanges = []
    for adapter in monitor.adapters:
        name = adapter.exchange.value
        failure = failures.get(name)
        if name not in result.attempted:
            status = "pending"
        elif failure is not None:
            status = "error"
        else:
            status = "ok"
        exchanges.append({
            "exchange": name,
            "name": adapter.exchange.display_name,
            "status": status,
            "quotes": sum(1 for quote in result.quotes if quote.exchange.value == name),
            "error": failure.error if failure is not None else None,
        })

    return JSONResponse(content={
        "running": monitor.is_running,
        "refreshed_at": board.refreshed_at or None,
        "refresh_ms": board.refresh_ms,
        "assets": len(board.snapshots),
        "opportunities": len(board.opportunities),
        "summary": result.summary(),
        "exchanges": exchanges,
    })
