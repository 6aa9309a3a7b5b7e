"""Shared data models for the funding-rate normalization engine.

All rates and monetary values use Decimal. Rates are signed fractions
(0.0001 == 0.01%), never percentages, except ``projected_apy`` which is a
percentage by definition.
"""

import time
from collections.abc import Mapping
from dataclasses import dataclass, field, replace
from decimal import Decimal
from enum import Enum
from types import MappingProxyType


class Exchange(str, Enum):
    """Supported perpetual-futures venues, in display order."""

    HYPERLIQUID = "hyperliquid"
    EXTENDED = "extended"
    ASTER = "aster"
    LIGHTER = "lighter"
    PARADEX = "paradex"

    @property
    def display_name(self) -> str:
        return self.value.capitalize()

    @property
    def order(self) -> int:
        """Position in the enum; used to break ties deterministically."""
        return list(Exchange).index(self)


@dataclass(frozen=True)
class FundingQuote:
    """One exchange's funding state for one market at one observation time.

    ``funding_rate_per_period`` is always relative to ``funding_period_hours``,
    the exchange's native cadence. Adapters never convert it; the hourly rate
    is derived by the annualizer only.
    """

    exchange: Exchange
    raw_symbol: str
    funding_rate_per_period: Decimal
    funding_period_hours: int
    canonical_asset: str | None = None
    mark_price: Decimal | None = None
    open_interest_usd: Decimal | None = None
    volume_24h_usd: Decimal | None = None
    next_funding_time: int | None = None  # Unix milliseconds
    observed_at: float = field(default_factory=time.time)

    def with_canonical_asset(self, asset: str) -> "FundingQuote":
        """Return a copy keyed by ``asset``. The key can only be set once."""
        if self.canonical_asset is not None and self.canonical_asset != asset:
            raise ValueError(
                f"{self.exchange.value}:{self.raw_symbol} already keyed as "
                f"{self.canonical_asset}, refusing {asset}"
            )
        return replace(self, canonical_asset=asset)


@dataclass(frozen=True)
class AssetFundingSnapshot:
    """All quotes for one canonical asset as of one aggregation pass.

    At most one quote per exchange. ``hourly_rates`` is filled at
    construction by the aggregator so downstream code never re-derives
    cadence. It is copied into a read-only mapping, so a published snapshot
    cannot be edited in place.
    """

    asset: str
    quotes: tuple[FundingQuote, ...]
    hourly_rates: Mapping[Exchange, Decimal]

    def __post_init__(self) -> None:
        object.__setattr__(self, "hourly_rates", MappingProxyType(dict(self.hourly_rates)))

    @property
    def exchanges(self) -> list[Exchange]:
        return [q.exchange for q in self.quotes]

    @property
    def is_spreadable(self) -> bool:
        return len(self.quotes) >= 2

    def quote_for(self, exchange: Exchange) -> FundingQuote | None:
        return next((q for q in self.quotes if q.exchange == exchange), None)

    @property
    def max_volume_24h_usd(self) -> Decimal | None:
        values = [q.volume_24h_usd for q in self.quotes if q.volume_24h_usd is not None]
        return max(values) if values else None

    @property
    def max_open_interest_usd(self) -> Decimal | None:
        values = [q.open_interest_usd for q in self.quotes if q.open_interest_usd is not None]
        return max(values) if values else None


@dataclass(frozen=True)
class SpreadOpportunity:
    """Long the cheaper venue, short the richer one, collect the hourly spread."""

    asset: str
    long_exchange: Exchange
    short_exchange: Exchange
    long_hourly_rate: Decimal
    short_hourly_rate: Decimal
    hourly_spread: Decimal
    projected_apy: Decimal  # percent, simple extrapolation
    long_quote: FundingQuote
    short_quote: FundingQuote


@dataclass(frozen=True)
class Recommendation:
    """Which side to take on each of two venues for one asset."""

    long: Exchange
    short: Exchange
    hourly_spread: Decimal
    projected_apy: Decimal

    def swap_sides(self) -> "Recommendation":
        """The reverse trade: sides exchanged, so the spread is paid instead of earned."""
        return Recommendation(
            long=self.short,
            short=self.long,
            hourly_spread=-self.hourly_spread,
            projected_apy=-self.projected_apy,
        )


@dataclass(frozen=True)
class ExchangeError:
    """A failure attributed to one exchange (and optionally one symbol)."""

    exchange: str
    error: str
    kind: str
    symbol: str | None = None


@dataclass
class FundingResult:
    """Quotes gathered in one pass plus everything that went wrong."""

    quotes: list[FundingQuote] = field(default_factory=list)
    errors: list[ExchangeError] = field(default_factory=list)
    attempted: list[str] = field(default_factory=list)

    @property
    def failed_exchanges(self) -> list[str]:
        """Exchanges whose whole fetch failed (per-quote errors excluded)."""
        return sorted({e.exchange for e in self.errors if e.symbol is None})

    @property
    def loaded_exchanges(self) -> list[str]:
        failed = set(self.failed_exchanges)
        return [name for name in self.attempted if name not in failed]

    def summary(self) -> str:
        return f"{len(self.loaded_exchanges)} of {len(self.attempted)} exchanges loaded"
