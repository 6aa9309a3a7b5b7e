"""Funding monitor -- refreshes the cross-exchange board on a fixed cadence.

Uses REST polling: funding rates move slowly (hourly at the fastest venues),
so a 30-second refresh is plenty. Each pass builds a brand-new FundingBoard
and publishes it by swapping one reference, so readers always see a complete
board, either the previous one or the new one.

No retry happens here: a failed exchange shows up in the board's errors and
is tried again at the next scheduled refresh.
"""

import asyncio
import itertools
import time
from collections import deque
from collections.abc import Sequence
from dataclasses import dataclass, field
from decimal import Decimal

from fundingarb.config import AggregationSettings
from fundingarb.exchange.base import FundingAdapter
from fundingarb.logging import bind_pass, get_logger
from fundingarb.market_data.aggregator import (
    FundingCollector,
    build_snapshot,
    rank_opportunities,
)
from fundingarb.models import AssetFundingSnapshot, FundingResult, SpreadOpportunity

logger = get_logger(__name__)


@dataclass(frozen=True)
class FundingBoard:
    """Everything one aggregation pass produced."""

    result: FundingResult
    snapshots: tuple[AssetFundingSnapshot, ...]
    opportunities: tuple[SpreadOpportunity, ...]
    refreshed_at: float
    refresh_ms: int

    @classmethod
    def empty(cls) -> "FundingBoard":
        return cls(
            result=FundingResult(),
            snapshots=(),
            opportunities=(),
            refreshed_at=0.0,
            refresh_ms=0,
        )

    def get_snapshot(self, asset: str) -> AssetFundingSnapshot | None:
        asset = asset.upper()
        return next((s for s in self.snapshots if s.asset == asset), None)


@dataclass(frozen=True)
class SpreadPoint:
    """Best spread of one asset at one refresh."""

    ts: float
    hourly_spread: Decimal
    projected_apy: Decimal
    long_exchange: str
    short_exchange: str


@dataclass
class SpreadHistory:
    """Bounded per-asset history of best spreads, oldest first."""

    max_points: int = 500
    _points: dict[str, deque[SpreadPoint]] = field(default_factory=dict)

    def record(self, opportunities: Sequence[SpreadOpportunity], ts: float) -> None:
        for opportunity in opportunities:
            points = self._points.setdefault(opportunity.asset, deque(maxlen=self.max_points))
            points.append(
                SpreadPoint(
                    ts=ts,
                    hourly_spread=opportunity.hourly_spread,
                    projected_apy=opportunity.projected_apy,
                    long_exchange=opportunity.long_exchange.value,
                    short_exchange=opportunity.short_exchange.value,
                )
            )

    def get(self, asset: str) -> list[SpreadPoint]:
        return list(self._points.get(asset.upper(), ()))

    def assets(self) -> list[str]:
        return sorted(self._points)


class FundingMonitor:
    """Polls every adapter and keeps the latest FundingBoard.

    Args:
        adapters: One adapter per enabled exchange.
        settings: Aggregation parameters (timeouts, cadence, APY basis).
    """

    def __init__(
        self,
        adapters: Sequence[FundingAdapter],
        settings: AggregationSettings,
    ) -> None:
        self._adapters = list(adapters)
        self._settings = settings
        self._board = FundingBoard.empty()
        self._history = SpreadHistory(max_points=settings.history_max_points)
        self._pass_ids = itertools.count(1)
        self._running = False
        self._task: asyncio.Task | None = None  # type: ignore[type-arg]
        self._refresh_lock = asyncio.Lock()

    @property
    def board(self) -> FundingBoard:
        return self._board

    @property
    def history(self) -> SpreadHistory:
        return self._history

    @property
    def settings(self) -> AggregationSettings:
        return self._settings

    @property
    def adapters(self) -> list[FundingAdapter]:
        return list(self._adapters)

    @property
    def is_running(self) -> bool:
        return self._running

    def get_snapshot(self, asset: str) -> AssetFundingSnapshot | None:
        """Latest snapshot for ``asset`` (case-insensitive), or None."""
        return self._board.get_snapshot(asset)

    def get_history(self, asset: str) -> list[SpreadPoint]:
        """Best-spread history for ``asset``, oldest first."""
        return self._history.get(asset)

    async def start(self) -> None:
        """Begin refreshing in the background."""
        if self._running:
            logger.warning("funding_monitor_already_running")
            return
        self._running = True
        self._task = asyncio.create_task(self._poll_loop())
        logger.info(
            "funding_monitor_started",
            poll_interval=self._settings.poll_interval_seconds,
            exchanges=[a.exchange.value for a in self._adapters],
        )

    async def stop(self) -> None:
        """Stop the refresh loop gracefully."""
        self._running = False
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        logger.info("funding_monitor_stopped")

    async def _poll_loop(self) -> None:
        while self._running:
            try:
                await self.refresh_once()
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.warning("funding_monitor_refresh_error", exc_info=True)
            if self._running:
                await asyncio.sleep(self._settings.poll_interval_seconds)

    async def refresh_once(self, deadline: float | None = None) -> FundingBoard:
        """Run one aggregation pass and publish its board.

        Overlapping calls are serialized so passes never interleave.

        Args:
            deadline: Seconds the pass may take before slow exchanges are
                cancelled and the partial board is published. Defaults to
                ``settings.pass_deadline_seconds``.
        """
        if deadline is None:
            deadline = self._settings.pass_deadline_seconds
        async with self._refresh_lock:
            pass_id = next(self._pass_ids)
            with bind_pass(pass_id):
                started = time.monotonic()
                collector = FundingCollector(
                    self._adapters, timeout=self._settings.adapter_timeout_seconds
                )
                result = await collector.run(deadline=deadline)
                snapshots = build_snapshot(result.quotes)
                opportunities = rank_opportunities(
                    snapshots,
                    periods_per_year=self._settings.periods_per_year,
                    threshold=self._settings.reporting_threshold,
                )
                now = time.time()
                board = FundingBoard(
                    result=result,
                    snapshots=tuple(snapshots),
                    opportunities=tuple(opportunities),
                    refreshed_at=now,
                    refresh_ms=int((time.monotonic() - started) * 1000),
                )
                self._board = board
                self._history.record(opportunities, now)

                logger.info(
                    "funding_board_refreshed",
                    assets=len(snapshots),
                    opportunities=len(opportunities),
                    refresh_ms=board.refresh_ms,
                    summary=result.summary(),
                )
                return board

    async def close(self) -> None:
        """Stop polling and release every adapter's resources."""
        await self.stop()
        for adapter in self._adapters:
            try:
                await adapter.close()
            except Exception:
                logger.warning(
                    "adapter_close_failed", exchange=adapter.exchange.value, exc_info=True
                )
