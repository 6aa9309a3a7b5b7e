"""Delta-neutral side selection for a pair of venues.

Positive funding means longs pay shorts. Shorting the venue with the higher
hourly rate collects (or pays least) funding there, and the long on the
cheaper venue offsets price exposure. The captured spread is
``short_rate - long_rate``.
"""

from decimal import Decimal

from fundingarb.market_data.annualizer import HOURS_PER_YEAR, to_apy, to_hourly_rate
from fundingarb.models import FundingQuote, Recommendation


def recommend(
    quote_a: FundingQuote,
    quote_b: FundingQuote,
    periods_per_year: int = HOURS_PER_YEAR,
) -> Recommendation | None:
    """Pick long and short venues for two quotes on the same asset.

    Sides depend only on the hourly rates, so argument order does not matter.

    Returns:
        The recommendation, or None when the hourly rates are exactly equal.

    Raises:
        ValueError: If the quotes are for different assets, or for the same
            exchange with different rates.
        InvalidCadenceError: If either quote has a non-positive period.
    """
    if quote_a.canonical_asset != quote_b.canonical_asset:
        raise ValueError(
            f"cannot pair {quote_a.canonical_asset} with {quote_b.canonical_asset}"
        )

    rate_a = to_hourly_rate(quote_a)
    rate_b = to_hourly_rate(quote_b)
    if rate_a == rate_b:
        return None

    if quote_a.exchange == quote_b.exchange:
        raise ValueError(
            f"both quotes are from {quote_a.exchange.value}; a hedge needs two venues"
        )

    if rate_a > rate_b:
        short_quote, long_quote = quote_a, quote_b
        spread: Decimal = rate_a - rate_b
    else:
        short_quote, long_quote = quote_b, quote_a
        spread = rate_b - rate_a

    return Recommendation(
        long=long_quote.exchange,
        short=short_quote.exchange,
        hourly_spread=spread,
        projected_apy=to_apy(spread, periods_per_year),
    )
