"""Custom exceptions for the funding-rate normalization engine.

Per-exchange errors (FetchError, ParseError) and per-quote errors
(InvalidSymbolError, InvalidCadenceError) live here to avoid circular
imports between the adapter and aggregation layers. None of them abort an
aggregation pass; they are collected and reported alongside the quotes.
"""


class FundingError(Exception):
    """Base exception for all funding engine errors."""


class FetchError(FundingError):
    """Raised when an exchange cannot be reached or answers with an HTTP error."""

    def __init__(self, exchange: str, message: str) -> None:
        super().__init__(f"{exchange}: {message}")
        self.exchange = exchange
        self.message = message


class ParseError(FundingError):
    """Raised when an exchange payload does not have the expected shape."""

    def __init__(self, exchange: str, message: str, payload_excerpt: str = "") -> None:
        super().__init__(f"{exchange}: {message}")
        self.exchange = exchange
        self.message = message
        self.payload_excerpt = payload_excerpt


class InvalidSymbolError(FundingError):
    """Raised when a raw symbol cannot be reduced to a canonical asset key."""

    def __init__(self, raw_symbol: str) -> None:
        super().__init__(f"cannot canonicalize symbol {raw_symbol!r}")
        self.raw_symbol = raw_symbol


class InvalidCadenceError(FundingError):
    """Raised when a quote declares a non-positive funding period."""

    def __init__(self, hours: int) -> None:
        super().__init__(f"funding period must be positive, got {hours}h")
        self.hours = hours
