"""Market data layer -- symbol normalization, annualization, aggregation, and recommendations."""

from fundingarb.market_data.aggregator import (
    FundingCollector,
    OpportunityFilter,
    best_spread,
    build_snapshot,
    fetch_all_funding,
    filter_opportunities,
    pairwise_spreads,
    rank_opportunities,
)
from fundingarb.market_data.annualizer import to_apy, to_hourly_rate
from fundingarb.market_data.funding_monitor import FundingBoard, FundingMonitor, SpreadHistory
from fundingarb.market_data.strategy import recommend
from fundingarb.market_data.symbols import normalize_symbol

__all__ = [
    "FundingBoard",
    "FundingCollector",
    "FundingMonitor",
    "OpportunityFilter",
    "SpreadHistory",
    "best_spread",
    "build_snapshot",
    "fetch_all_funding",
    "filter_opportunities",
    "normalize_symbol",
    "pairwise_spreads",
    "rank_opportunities",
    "recommend",
    "to_apy",
    "to_hourly_rate",
]
