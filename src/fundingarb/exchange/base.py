"""Abstract funding adapter interface and shared REST plumbing.

Aggregation code depends only on ``FundingAdapter``; venue specifics stay in
the concrete adapters. Adapters report each market's NATIVE funding rate with
its native period and leave ``canonical_asset`` unset. They never divide a
rate by its period: that is the annualizer's job.
"""

from __future__ import annotations

import json
from abc import ABC, abstractmethod
from decimal import Decimal, InvalidOperation
from typing import TYPE_CHECKING, Any

import httpx
from pydantic import SecretStr

from fundingarb.exceptions import FetchError, ParseError
from fundingarb.logging import get_logger
from fundingarb.models import Exchange, FundingQuote

if TYPE_CHECKING:
    from fundingarb.config import AppSettings
    from fundingarb.exchange.interval_store import IntervalStore

logger = get_logger(__name__)

_EXCERPT_LIMIT = 300


def to_decimal(value: Any) -> Decimal | None:
    """Parse an exchange number (string, int or float) into a finite Decimal.

    Returns None for missing, empty, non-numeric or non-finite values.
    Floats go through str() so binary noise is not carried into Decimal.
    """
    if value is None or value == "" or isinstance(value, bool):
        return None
    try:
        result = Decimal(str(value))
    except (InvalidOperation, ValueError, TypeError):
        return None
    if not result.is_finite():
        return None
    return result


def to_int(value: Any) -> int | None:
    """Parse an integer-ish field (e.g. a millisecond timestamp)."""
    number = to_decimal(value)
    return int(number) if number is not None else None


def payload_excerpt(payload: Any, limit: int = _EXCERPT_LIMIT) -> str:
    """Short, log-safe rendering of a payload for ParseError context."""
    if isinstance(payload, str):
        text = payload
    else:
        try:
            text = json.dumps(payload, default=str)
        except (TypeError, ValueError):
            text = repr(payload)
    return text if len(text) <= limit else text[:limit] + "..."


class FundingAdapter(ABC):
    """Abstract base class for per-exchange funding feeds."""

    exchange: Exchange

    @classmethod
    @abstractmethod
    def from_settings(
        cls,
        settings: AppSettings,
        http_client: httpx.AsyncClient,
        interval_store: IntervalStore,
    ) -> FundingAdapter:
        """Build the adapter from application settings and shared resources."""
        ...

    @abstractmethod
    async def fetch(self) -> list[FundingQuote]:
        """Fetch current funding for every listed market.

        Raises:
            FetchError: The exchange could not be reached or returned an HTTP error.
            ParseError: The payload did not have the expected shape.
        """
        ...

    async def close(self) -> None:
        """Release adapter-owned resources. Shared HTTP clients are not closed here."""
        return None

    def _skip_row(self, reason: str, row: Any) -> None:
        logger.warning(
            "funding_row_skipped",
            exchange=self.exchange.value,
            reason=reason,
            row=payload_excerpt(row, 120),
        )


class HttpFundingAdapter(FundingAdapter):
    """Adapter backed by a JSON REST API, using a shared httpx client.

    Args:
        client: Shared async HTTP client (owned by the caller).
        base_url: Exchange REST root, e.g. "https://fapi.asterdex.com".
        api_key: Optional key, sent in ``api_key_header`` when non-empty.
    """

    api_key_header = "X-Api-Key"
    api_key_prefix = ""

    def __init__(
        self,
        client: httpx.AsyncClient,
        base_url: str,
        api_key: SecretStr | None = None,
    ) -> None:
        self._client = client
        self._base_url = base_url.rstrip("/")
        self._api_key = api_key.get_secret_value() if api_key is not None else ""

    def _headers(self) -> dict[str, str]:
        headers = {"Accept": "application/json"}
        if self._api_key:
            headers[self.api_key_header] = f"{self.api_key_prefix}{self._api_key}"
        return headers

    async def _get_json(self, path: str, params: dict | None = None) -> Any:
        """GET ``path`` and decode JSON, mapping failures to FetchError/ParseError."""
        url = f"{self._base_url}{path}"
        try:
            response = await self._client.get(url, params=params, headers=self._headers())
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            raise FetchError(
                self.exchange.value,
                f"HTTP {exc.response.status_code} from {path}",
            ) from exc
        except httpx.HTTPError as exc:
            raise FetchError(
                self.exchange.value,
                f"{type(exc).__name__} requesting {path}: {exc}",
            ) from exc

        try:
            return response.json()
        except ValueError as exc:
            raise ParseError(
                self.exchange.value,
                f"response from {path} is not JSON",
                payload_excerpt(response.text),
            ) from exc

    def _shape_error(self, message: str, payload: Any) -> ParseError:
        return ParseError(self.exchange.value, message, payload_excerpt(payload))
