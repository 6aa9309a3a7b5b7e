"""Funding cadence handling: native period rate -> hourly rate -> APY.

This is the only place a funding period is divided out. Adapters report the
native rate with its native period; everything downstream works on hourly
rates.

APY is a simple (non-compounding) extrapolation:

  apy_pct = hourly_rate * periods_per_year * 100

Funding on a delta-neutral pair is collected in discrete events on capital
that is not reinvested each period, so the same linear projection is used for
every venue.
"""

from decimal import Decimal

from fundingarb.exceptions import InvalidCadenceError
from fundingarb.models import FundingQuote

HOURS_PER_YEAR = 8760  # 365 * 24
REPORTING_THRESHOLD = Decimal("0.000001")


def to_hourly_rate(quote: FundingQuote) -> Decimal:
    """Return the quote's funding rate per hour.

    Raises:
        InvalidCadenceError: If the quote's funding period is not positive.
    """
    hours = quote.funding_period_hours
    if hours <= 0:
        raise InvalidCadenceError(hours)
    return quote.funding_rate_per_period / Decimal(hours)


def to_apy(hourly_rate: Decimal, periods_per_year: int = HOURS_PER_YEAR) -> Decimal:
    """Project an hourly rate to a yearly percentage."""
    return hourly_rate * Decimal(periods_per_year) * 100


def is_effectively_zero(
    rate: Decimal, threshold: Decimal = REPORTING_THRESHOLD
) -> bool:
    """True when ``rate`` is below the reporting threshold in absolute value.

    Only used to suppress spread opportunities; stored rates keep full
    precision.
    """
    return abs(rate) < threshold
