"""Tests for the httpx-backed adapters (Extended, Aster, Lighter, Paradex).

Requests are served by httpx.MockTransport; no network access.
"""

import asyncio
import json
from collections.abc import Callable
from decimal import Decimal

import httpx
import pytest

from fundingarb.config import AsterSettings, ExtendedSettings, LighterSettings, ParadexSettings
from fundingarb.exceptions import FetchError, ParseError
from fundingarb.exchange.aster import AsterAdapter
from fundingarb.exchange.extended import ExtendedAdapter
from fundingarb.exchange.interval_store import FundingInterval, InMemoryIntervalStore
from fundingarb.exchange.lighter import LighterAdapter
from fundingarb.exchange.paradex import ParadexAdapter
from fundingarb.models import Exchange

Routes = dict[str, Callable[[httpx.Request], httpx.Response] | object]

HOUR_MS = 3_600_000


def mock_client(routes: Routes) -> httpx.AsyncClient:
    """AsyncClient answering by URL path. A callable route gets the request."""

    def handler(request: httpx.Request) -> httpx.Response:
        route = routes.get(request.url.path)
        if route is None:
            return httpx.Response(404, json={"error": "not found"})
        if callable(route):
            return route(request)
        return httpx.Response(200, json=route)

    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


# ---------------------------------------------------------------------------
# Extended
# ---------------------------------------------------------------------------

EXTENDED_MARKETS = {
    "status": "OK",
    "data": [
        {
            "name": "BTC-USD",
            "active": True,
            "marketStats": {
                "fundingRate": "0.000013",
                "markPrice": "97000.5",
                "openInterest": "125000000",
                "dailyVolume": "880000000",
            },
        },
        {
            "name": "ETH-USD",
            "active": True,
            "marketStats": {"fundingRate": "-0.00002", "markPrice": "3400"},
        },
        {"name": "OLD-USD", "active": False, "marketStats": {"fundingRate": "0.1"}},
        {"name": "NOSTATS-USD", "active": True},
        {"name": "BAD-USD", "active": True, "marketStats": {"fundingRate": "n/a"}},
    ],
}


class TestExtendedAdapter:
    @pytest.mark.asyncio
    async def test_parses_markets(self) -> None:
        async with mock_client({"/api/v1/info/markets": EXTENDED_MARKETS}) as client:
            adapter = ExtendedAdapter(client, ExtendedSettings(base_url="https://extended.test"))
            quotes = await adapter.fetch()

        assert [q.raw_symbol for q in quotes] == ["BTC-USD", "ETH-USD"]
        btc = quotes[0]
        assert btc.exchange == Exchange.EXTENDED
        assert btc.funding_rate_per_period == Decimal("0.000013")
        assert btc.funding_period_hours == 1
        assert btc.mark_price == Decimal("97000.5")
        assert btc.open_interest_usd == Decimal("125000000")
        assert btc.volume_24h_usd == Decimal("880000000")
        assert btc.canonical_asset is None
        assert quotes[1].volume_24h_usd is None

    @pytest.mark.asyncio
    async def test_api_error_status(self) -> None:
        body = {"status": "ERROR", "error": {"code": 1006, "message": "maintenance"}}
        async with mock_client({"/api/v1/info/markets": body}) as client:
            adapter = ExtendedAdapter(client, ExtendedSettings(base_url="https://extended.test"))
            with pytest.raises(FetchError, match="maintenance"):
                await adapter.fetch()

    @pytest.mark.asyncio
    async def test_http_error(self) -> None:
        routes = {"/api/v1/info/markets": lambda r: httpx.Response(503, text="down")}
        async with mock_client(routes) as client:
            adapter = ExtendedAdapter(client, ExtendedSettings(base_url="https://extended.test"))
            with pytest.raises(FetchError, match="HTTP 503"):
                await adapter.fetch()

    @pytest.mark.asyncio
    async def test_non_json_body(self) -> None:
        routes = {"/api/v1/info/markets": lambda r: httpx.Response(200, text="<html>")}
        async with mock_client(routes) as client:
            adapter = ExtendedAdapter(client, ExtendedSettings(base_url="https://extended.test"))
            with pytest.raises(ParseError) as excinfo:
                await adapter.fetch()
        assert excinfo.value.payload_excerpt == "<html>"

    @pytest.mark.asyncio
    async def test_missing_data_list(self) -> None:
        async with mock_client({"/api/v1/info/markets": {"status": "OK"}}) as client:
            adapter = ExtendedAdapter(client, ExtendedSettings(base_url="https://extended.test"))
            with pytest.raises(ParseError):
                await adapter.fetch()

    @pytest.mark.asyncio
    async def test_connection_error(self) -> None:
        def refuse(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("refused", request=request)

        async with mock_client({"/api/v1/info/markets": refuse}) as client:
            adapter = ExtendedAdapter(client, ExtendedSettings(base_url="https://extended.test"))
            with pytest.raises(FetchError, match="ConnectError"):
                await adapter.fetch()

    @pytest.mark.asyncio
    async def test_api_key_header(self) -> None:
        seen: list[str | None] = []

        def capture(request: httpx.Request) -> httpx.Response:
            seen.append(request.headers.get("X-Api-Key"))
            return httpx.Response(200, json={"status": "OK", "data": []})

        async with mock_client({"/api/v1/info/markets": capture}) as client:
            settings = ExtendedSettings(base_url="https://extended.test", api_key="k-123")  # type: ignore[arg-type]
            await ExtendedAdapter(client, settings).fetch()

        assert seen == ["k-123"]


# ---------------------------------------------------------------------------
# Aster
# ---------------------------------------------------------------------------

ASTER_PREMIUM = [
    {"symbol": "BTCUSDT", "markPrice": "97000", "lastFundingRate": "0.0001", "nextFundingTime": 1700000000000},
    {"symbol": "ETHUSDT", "markPrice": "3400", "lastFundingRate": "-0.0004", "nextFundingTime": 1700000000000},
]
ASTER_TICKERS = [
    {"symbol": "BTCUSDT", "quoteVolume": "150000000"},
    {"symbol": "ETHUSDT", "quoteVolume": "90000000"},
]


def aster_history(gaps: dict[str, int]) -> Callable[[httpx.Request], httpx.Response]:
    """fundingRate handler returning two events ``gaps[symbol]`` hours apart."""

    def handler(request: httpx.Request) -> httpx.Response:
        symbol = request.url.params["symbol"]
        if symbol not in gaps:
            return httpx.Response(400, json={"code": -1121, "msg": "Invalid symbol."})
        t0 = 1_699_999_200_000
        return httpx.Response(
            200,
            json=[
                {"symbol": symbol, "fundingTime": t0, "fundingRate": "0.0001"},
                {"symbol": symbol, "fundingTime": t0 + gaps[symbol] * HOUR_MS, "fundingRate": "0.0001"},
            ],
        )

    return handler


def aster_settings(**overrides) -> AsterSettings:
    values = {
        "base_url": "https://aster.test",
        "interval_discovery_budget_seconds": 1.0,
        "interval_timeout_seconds": 1.0,
    }
    values.update(overrides)
    return AsterSettings(**values)


class TestAsterAdapter:
    @pytest.mark.asyncio
    async def test_discovers_and_stores_intervals(self) -> None:
        store = InMemoryIntervalStore()
        routes = {
            "/fapi/v1/premiumIndex": ASTER_PREMIUM,
            "/fapi/v1/ticker/24hr": ASTER_TICKERS,
            "/fapi/v1/fundingRate": aster_history({"BTCUSDT": 8, "ETHUSDT": 1}),
        }
        async with mock_client(routes) as client:
            adapter = AsterAdapter(client, aster_settings(), store)
            quotes = await adapter.fetch()
            await adapter.close()

        by_symbol = {q.raw_symbol: q for q in quotes}
        assert by_symbol["BTCUSDT"].funding_period_hours == 8
        assert by_symbol["ETHUSDT"].funding_period_hours == 1
        assert by_symbol["BTCUSDT"].volume_24h_usd == Decimal("150000000")
        assert by_symbol["ETHUSDT"].funding_rate_per_period == Decimal("-0.0004")
        assert by_symbol["BTCUSDT"].next_funding_time == 1700000000000
        assert await store.get("BTCUSDT") == FundingInterval.from_hours(8)
        assert len(store) == 2

    @pytest.mark.asyncio
    async def test_cached_interval_skips_discovery(self) -> None:
        store = InMemoryIntervalStore()
        await store.set("BTCUSDT", FundingInterval.from_hours(4))
        await store.set("ETHUSDT", FundingInterval.from_hours(1))
        history_calls = 0

        def history(request: httpx.Request) -> httpx.Response:
            nonlocal history_calls
            history_calls += 1
            return httpx.Response(500)

        routes = {
            "/fapi/v1/premiumIndex": ASTER_PREMIUM,
            "/fapi/v1/ticker/24hr": ASTER_TICKERS,
            "/fapi/v1/fundingRate": history,
        }
        async with mock_client(routes) as client:
            quotes = await AsterAdapter(client, aster_settings(), store).fetch()

        assert {q.raw_symbol: q.funding_period_hours for q in quotes} == {"BTCUSDT": 4, "ETHUSDT": 1}
        assert history_calls == 0

    @pytest.mark.asyncio
    async def test_failed_discovery_falls_back_without_storing(self) -> None:
        store = InMemoryIntervalStore()
        routes = {
            "/fapi/v1/premiumIndex": ASTER_PREMIUM,
            "/fapi/v1/ticker/24hr": ASTER_TICKERS,
            "/fapi/v1/fundingRate": aster_history({"BTCUSDT": 8}),
        }
        async with mock_client(routes) as client:
            quotes = await AsterAdapter(client, aster_settings(), store).fetch()

        by_symbol = {q.raw_symbol: q for q in quotes}
        assert by_symbol["ETHUSDT"].funding_period_hours == 4
        assert await store.get("ETHUSDT") is None
        assert await store.get("BTCUSDT") is not None

    @pytest.mark.asyncio
    async def test_slow_discovery_uses_fallback_then_completes_in_background(self) -> None:
        store = InMemoryIntervalStore()
        release = asyncio.Event()
        fast_history = aster_history({"BTCUSDT": 8, "ETHUSDT": 1})

        async def handler(request: httpx.Request) -> httpx.Response:
            path = request.url.path
            if path == "/fapi/v1/fundingRate":
                await release.wait()
                return fast_history(request)
            if path == "/fapi/v1/premiumIndex":
                return httpx.Response(200, json=ASTER_PREMIUM)
            return httpx.Response(200, json=ASTER_TICKERS)

        client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        adapter = AsterAdapter(
            client,
            aster_settings(interval_discovery_budget_seconds=0.05, interval_timeout_seconds=5.0),
            store,
        )
        try:
            quotes = await adapter.fetch()
            assert {q.funding_period_hours for q in quotes} == {4}
            assert len(store) == 0

            release.set()
            for _ in range(50):
                if len(store) == 2:
                    break
                await asyncio.sleep(0.01)
            assert await store.get("BTCUSDT") == FundingInterval.from_hours(8)

            quotes = await adapter.fetch()
            assert {q.raw_symbol: q.funding_period_hours for q in quotes} == {"BTCUSDT": 8, "ETHUSDT": 1}
        finally:
            await adapter.close()
            await client.aclose()

    @pytest.mark.asyncio
    async def test_volume_endpoint_is_optional(self) -> None:
        store = InMemoryIntervalStore()
        routes = {
            "/fapi/v1/premiumIndex": ASTER_PREMIUM,
            "/fapi/v1/ticker/24hr": lambda r: httpx.Response(502),
            "/fapi/v1/fundingRate": aster_history({"BTCUSDT": 8, "ETHUSDT": 8}),
        }
        async with mock_client(routes) as client:
            quotes = await AsterAdapter(client, aster_settings(), store).fetch()

        assert len(quotes) == 2
        assert all(q.volume_24h_usd is None for q in quotes)

    @pytest.mark.asyncio
    async def test_premium_index_failure_fails_exchange(self) -> None:
        routes = {
            "/fapi/v1/premiumIndex": lambda r: httpx.Response(429),
            "/fapi/v1/ticker/24hr": ASTER_TICKERS,
        }
        async with mock_client(routes) as client:
            adapter = AsterAdapter(client, aster_settings(), InMemoryIntervalStore())
            with pytest.raises(FetchError, match="HTTP 429"):
                await adapter.fetch()

    @pytest.mark.asyncio
    async def test_api_key_header(self) -> None:
        seen: list[str | None] = []

        def premium(request: httpx.Request) -> httpx.Response:
            seen.append(request.headers.get("x-mbx-apikey"))
            return httpx.Response(200, json=[])

        routes = {"/fapi/v1/premiumIndex": premium, "/fapi/v1/ticker/24hr": []}
        async with mock_client(routes) as client:
            settings = aster_settings(api_key="aster-key")
            await AsterAdapter(client, settings, InMemoryIntervalStore()).fetch()

        assert seen == ["aster-key"]


# ---------------------------------------------------------------------------
# Lighter
# ---------------------------------------------------------------------------

LIGHTER_RATES = {
    "code": 200,
    "funding_rates": [
        {"market_id": 1, "exchange": "lighter", "symbol": "BTC", "rate": 0.0008},
        {"market_id": 1, "exchange": "binance", "symbol": "BTC", "rate": 0.0001},
        {"market_id": 2, "exchange": "lighter", "symbol": "ETH", "rate": "-0.00024"},
        {"market_id": 3, "exchange": "lighter", "symbol": "XYZ"},
    ],
}
LIGHTER_DETAILS = {
    "code": 200,
    "order_book_details": [
        {
            "symbol": "BTC",
            "last_trade_price": 97000,
            "open_interest": 12.5,
            "daily_quote_token_volume": 45000000,
        },
    ],
}


class TestLighterAdapter:
    @pytest.mark.asyncio
    async def test_reports_native_eight_hour_rate(self) -> None:
        routes = {
            "/api/v1/funding-rates": LIGHTER_RATES,
            "/api/v1/orderBookDetails": LIGHTER_DETAILS,
        }
        async with mock_client(routes) as client:
            adapter = LighterAdapter(client, LighterSettings(base_url="https://lighter.test"))
            quotes = await adapter.fetch()

        assert [q.raw_symbol for q in quotes] == ["BTC", "ETH"]
        btc = quotes[0]
        assert btc.funding_rate_per_period == Decimal("0.0008")
        assert btc.funding_period_hours == 8
        assert btc.mark_price == Decimal("97000")
        assert btc.open_interest_usd == Decimal("1212500.0")
        assert btc.volume_24h_usd == Decimal("45000000")
        assert quotes[1].open_interest_usd is None

    @pytest.mark.asyncio
    async def test_details_are_optional(self) -> None:
        routes = {
            "/api/v1/funding-rates": LIGHTER_RATES,
            "/api/v1/orderBookDetails": lambda r: httpx.Response(500),
        }
        async with mock_client(routes) as client:
            quotes = await LighterAdapter(client, LighterSettings(base_url="https://lighter.test")).fetch()

        assert len(quotes) == 2
        assert all(q.volume_24h_usd is None for q in quotes)

    @pytest.mark.asyncio
    async def test_non_200_code(self) -> None:
        routes = {"/api/v1/funding-rates": {"code": 29500, "message": "internal"}}
        async with mock_client(routes) as client:
            adapter = LighterAdapter(client, LighterSettings(base_url="https://lighter.test"))
            with pytest.raises(FetchError, match="29500"):
                await adapter.fetch()

    @pytest.mark.asyncio
    async def test_missing_rates_list(self) -> None:
        routes = {"/api/v1/funding-rates": {"code": 200}}
        async with mock_client(routes) as client:
            adapter = LighterAdapter(client, LighterSettings(base_url="https://lighter.test"))
            with pytest.raises(ParseError):
                await adapter.fetch()


# ---------------------------------------------------------------------------
# Paradex
# ---------------------------------------------------------------------------

PARADEX_MARKETS = {
    "results": [
        {"symbol": "BTC-USD-PERP", "asset_kind": "PERP", "funding_period_hours": 8},
        {"symbol": "ETH-USD-PERP", "asset_kind": "PERP"},
        {"symbol": "BTC-USD-100000-C", "asset_kind": "PERP_OPTION", "funding_period_hours": 8},
    ]
}
PARADEX_SUMMARY = {
    "results": [
        {
            "symbol": "BTC-USD-PERP",
            "funding_rate": "0.00012",
            "mark_price": "97010",
            "underlying_price": "97000",
            "open_interest": "150",
            "volume_24h": "310000000",
            "next_funding_time": 1700003600000,
        },
        {"symbol": "ETH-USD-PERP", "funding_rate": "-0.00003"},
        {"symbol": "BTC-USD-100000-C", "funding_rate": "0.01"},
        {"symbol": "SOL-USD-PERP", "funding_rate": "0.0001"},
    ]
}


class TestParadexAdapter:
    @pytest.mark.asyncio
    async def test_parses_perp_markets(self) -> None:
        seen_params: list[str | None] = []

        def summary(request: httpx.Request) -> httpx.Response:
            seen_params.append(request.url.params.get("market"))
            return httpx.Response(200, json=PARADEX_SUMMARY)

        routes = {"/v1/markets": PARADEX_MARKETS, "/v1/markets/summary": summary}
        async with mock_client(routes) as client:
            adapter = ParadexAdapter(client, ParadexSettings(base_url="https://paradex.test"))
            quotes = await adapter.fetch()

        assert seen_params == ["ALL"]
        assert [q.raw_symbol for q in quotes] == ["BTC-USD-PERP", "ETH-USD-PERP"]
        btc = quotes[0]
        assert btc.funding_period_hours == 8
        assert btc.funding_rate_per_period == Decimal("0.00012")
        assert btc.open_interest_usd == Decimal("14550000")
        assert btc.volume_24h_usd == Decimal("310000000")
        assert btc.next_funding_time == 1700003600000
        # default period when the market omits it
        assert quotes[1].funding_period_hours == 8

    @pytest.mark.asyncio
    async def test_either_endpoint_failing_fails_exchange(self) -> None:
        routes = {"/v1/markets": PARADEX_MARKETS, "/v1/markets/summary": lambda r: httpx.Response(500)}
        async with mock_client(routes) as client:
            adapter = ParadexAdapter(client, ParadexSettings(base_url="https://paradex.test"))
            with pytest.raises(FetchError):
                await adapter.fetch()

    @pytest.mark.asyncio
    async def test_missing_results(self) -> None:
        routes = {"/v1/markets": {"error": "x"}, "/v1/markets/summary": PARADEX_SUMMARY}
        async with mock_client(routes) as client:
            adapter = ParadexAdapter(client, ParadexSettings(base_url="https://paradex.test"))
            with pytest.raises(ParseError) as excinfo:
                await adapter.fetch()
        assert json.loads(excinfo.value.payload_excerpt) == {"error": "x"}

    @pytest.mark.asyncio
    async def test_bearer_token(self) -> None:
        seen: list[str | None] = []

        def markets(request: httpx.Request) -> httpx.Response:
            seen.append(request.headers.get("authorization"))
            return httpx.Response(200, json={"results": []})

        routes = {"/v1/markets": markets, "/v1/markets/summary": {"results": []}}
        async with mock_client(routes) as client:
            settings = ParadexSettings(base_url="https://paradex.test", api_key="jwt")  # type: ignore[arg-type]
            await ParadexAdapter(client, settings).fetch()

        assert seen == ["Bearer jwt"]
