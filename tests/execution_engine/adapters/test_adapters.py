"""
Exchange Adapter Tests.

============================================================
PURPOSE
============================================================
Unit tests for the shared adapter layer:
- Symbol mapping
- Error normalization
- Credential masking and metrics
- HTTP transport
- Simulated variant
- Factory, pool and the guarded ExchangeAdapter

============================================================
"""

import asyncio
from contextlib import asynccontextmanager
from decimal import Decimal

import aiohttp
import pytest

from core.exceptions import (
    AuthenticationError,
    ConfigurationError,
    EmergencyStopError,
    ExchangeProtocolError,
    NetworkError,
    RateLimitError,
    ValidationError,
)
from execution_engine.adapters import (
    AdapterConfig,
    AdapterFactory,
    AdapterMetrics,
    AdapterPool,
    ErrorCategory,
    HttpTransport,
    SimulatedProvider,
    SimulationConfig,
    classify_error,
    create_adapter,
    exchange_error,
    mask_headers,
    mask_params,
    mask_value,
    supported_exchanges,
    to_exchange_symbol,
)
from execution_engine.adapters.base import EXCHANGE_PROFILES, ExchangeAdapter
from execution_engine.adapters.binance import BinanceProvider
from execution_engine.adapters.kraken import KrakenProvider
from execution_engine.adapters.logging_utils import mask_url
from execution_engine.adapters.symbols import (
    base_asset,
    from_kraken_asset,
    quote_asset,
    split_symbol,
)
from execution_engine.config import RateLimitConfig
from execution_engine.guard import TradingGuard
from execution_engine.rate_limiter import RateLimiter
from execution_engine.types import (
    ExchangeCredentials,
    OrderParams,
    OrderSide,
    OrderStatus,
    OrderType,
)


CREDENTIALS = ExchangeCredentials("paper", "paper")


class StaticPrices:
    def __init__(self, prices):
        self.prices = {symbol: Decimal(price) for symbol, price in prices.items()}

    async def get_latest_price(self, symbol):
        return self.prices.get(symbol)


def _order(order_type=OrderType.MARKET, side=OrderSide.BUY, amount="0.1", **kwargs) -> OrderParams:
    return OrderParams(
        symbol=kwargs.pop("symbol", "BTC/USDT"),
        side=side,
        type=order_type,
        amount=Decimal(amount),
        **kwargs,
    )


# ============================================================
# SYMBOL MAPPING
# ============================================================

class TestSymbolMapping:
    """Tests for unified symbol translation."""

    @pytest.mark.parametrize("exchange_id,symbol,expected", [
        ("binance", "BTC/USDT", "BTCUSDT"),
        ("binance", "eth/usdt", "ETHUSDT"),
        ("deribit", "BTC/USDT", "BTC-PERPETUAL"),
        ("deribit", "ETH/USD", "ETH-PERPETUAL"),
        ("deribit", "ADA/USDT", "ADA-USDT-PERPETUAL"),
        ("kraken", "BTC/USDT", "XBTUSDT"),
        ("kraken", "BTC/USD", "XBTUSD"),
        ("kraken", "ETH/USD", "ETHUSD"),
        ("kraken", "DOGE/USD", "XDGUSD"),
        ("kucoin", "BTC/USDT", "BTC-USDT"),
        ("okx", "BTC/USDT", "BTC-USDT"),
        ("bybit", "BTC/USDT", "BTCUSDT"),
        ("simulated", "btc/usdt", "BTC/USDT"),
    ])
    def test_to_exchange_symbol(self, exchange_id, symbol, expected):
        assert to_exchange_symbol(exchange_id, symbol) == expected

    @pytest.mark.parametrize("asset,expected", [
        ("XXBT", "BTC"),
        ("XBT.F", "BTC"),
        ("ZUSD", "USD"),
        ("XETH", "ETH"),
        ("ETH.B", "ETH"),
        ("USDT", "USDT"),
        ("SOL", "SOL"),
    ])
    def test_kraken_balance_assets(self, asset, expected):
        assert from_kraken_asset(asset) == expected

    def test_split_symbol(self):
        assert split_symbol("btc/usdt") == ("BTC", "USDT")
        assert base_asset("ETH/USDC") == "ETH"
        assert base_asset("SOL") == "SOL"
        assert quote_asset("ETH/USDC") == "USDC"

    @pytest.mark.parametrize("symbol", ["BTCUSDT", "/USDT", "BTC/", ""])
    def test_malformed_symbol(self, symbol):
        with pytest.raises(ValidationError):
            split_symbol(symbol)


# ============================================================
# ERROR NORMALIZATION
# ============================================================

class TestErrorNormalization:
    """Tests for exchange_error / classify_error."""

    @pytest.mark.parametrize("exchange_id,code,expected", [
        ("binance", "-2015", ErrorCategory.AUTHENTICATION),
        ("binance", "-1003", ErrorCategory.RATE_LIMIT),
        ("deribit", "13009", ErrorCategory.AUTHENTICATION),
        ("deribit", "10028", ErrorCategory.RATE_LIMIT),
        ("kraken", "EAPI:Invalid signature", ErrorCategory.AUTHENTICATION),
        ("kucoin", "429000", ErrorCategory.RATE_LIMIT),
        ("okx", "50113", ErrorCategory.AUTHENTICATION),
        ("bybit", "10006", ErrorCategory.RATE_LIMIT),
        ("okx", "51008", ErrorCategory.PROTOCOL),
    ])
    def test_classify_by_code(self, exchange_id, code, expected):
        assert classify_error(exchange_id, code) is expected

    @pytest.mark.parametrize("status,expected", [
        (401, ErrorCategory.AUTHENTICATION),
        (403, ErrorCategory.AUTHENTICATION),
        (418, ErrorCategory.RATE_LIMIT),
        (429, ErrorCategory.RATE_LIMIT),
        (500, ErrorCategory.PROTOCOL),
    ])
    def test_classify_by_http_status(self, status, expected):
        assert classify_error("binance", None, status) is expected

    def test_exception_types(self):
        assert isinstance(exchange_error("okx", "50113", "Invalid Sign"), AuthenticationError)
        assert isinstance(exchange_error("okx", "50011", "Too Many Requests"), RateLimitError)

    def test_protocol_error_keeps_provider_fields(self):
        error = exchange_error("bybit", 170131, "Insufficient balance.", 200)

        assert isinstance(error, ExchangeProtocolError)
        assert error.provider_code == "170131"
        assert error.provider_message == "Insufficient balance."
        assert error.http_status == 200
        assert error.exchange_id == "bybit"

    def test_missing_message(self):
        error = exchange_error("kraken", None, None, 502)

        assert error.provider_message == "Unknown exchange error"


# ============================================================
# MASKING AND METRICS
# ============================================================

class TestMasking:
    """Tests for credential masking."""

    def test_mask_value(self):
        assert mask_value("abcdefghijklmnop") == "abcd...***"
        assert mask_value("short") == "***"
        assert mask_value("") == "***"

    def test_mask_headers(self):
        masked = mask_headers({
            "X-MBX-APIKEY": "abcdefghijklmnop",
            "OK-ACCESS-PASSPHRASE": "my-long-passphrase",
            "Content-Type": "application/json",
        })

        assert masked["X-MBX-APIKEY"] == "abcd...***"
        assert "passphrase" not in masked["OK-ACCESS-PASSPHRASE"]
        assert masked["Content-Type"] == "application/json"

    def test_mask_params_nested(self):
        masked = mask_params({"symbol": "BTCUSDT", "auth": {"client_secret": "super-secret-value"}})

        assert masked["symbol"] == "BTCUSDT"
        assert masked["auth"]["client_secret"] == "supe...***"

    def test_mask_url(self):
        url = "https://x/api?client_id=key123&client_secret=sec456&grant_type=client_credentials"

        masked = mask_url(url)

        assert "key123" not in masked
        assert "sec456" not in masked
        assert "grant_type=client_credentials" in masked

    def test_signature_masked_in_url(self):
        assert "deadbeef" not in mask_url("https://x/fapi/v1/order?timestamp=1&signature=deadbeef")


class TestAdapterMetrics:
    """Tests for AdapterMetrics."""

    def test_request_counts(self):
        metrics = AdapterMetrics("binance")
        metrics.record_request("/fapi/v1/order", 10.0, True)
        metrics.record_request("/fapi/v1/order", 30.0, False, "NetworkError")

        summary = metrics.get_summary()

        assert summary["requests"] == {"success": 1, "failure": 1}
        assert summary["errors"] == {"NetworkError": 1}
        assert summary["latency"]["/fapi/v1/order"]["avg_ms"] == 20.0
        assert metrics.error_rate == 0.5

    def test_order_counts(self):
        metrics = AdapterMetrics("okx")
        metrics.record_order(accepted=True)
        metrics.record_order(accepted=False)

        assert metrics.get_summary()["orders"] == {"submitted": 1, "rejected": 1}


# ============================================================
# HTTP TRANSPORT
# ============================================================

class FakeResponse:
    def __init__(self, status, text):
        self.status = status
        self._text = text

    async def text(self):
        return self._text


class FakeSession:
    """Minimal aiohttp.ClientSession stand-in."""

    def __init__(self, status=200, text="{}", error=None):
        self.status = status
        self.body_text = text
        self.error = error
        self.closed = False
        self.calls = []

    def request(self, method, url, data=None, headers=None):
        self.calls.append((method, url, data, headers))
        return self._respond()

    @asynccontextmanager
    async def _respond(self):
        if self.error is not None:
            raise self.error
        yield FakeResponse(self.status, self.body_text)

    async def close(self):
        self.closed = True


class TestHttpTransport:
    """Tests for HttpTransport."""

    @pytest.mark.asyncio
    async def test_json_response(self, clock):
        session = FakeSession(text='{"ok": true}')
        transport = HttpTransport("binance", RateLimiter(clock=clock), session=session)

        status, payload = await transport.request("POST", "https://x/a?b=1", "/a", body="x=1")

        assert (status, payload) == (200, {"ok": True})
        method, url, data, _ = session.calls[0]
        assert method == "POST"
        assert data == "x=1"

    @pytest.mark.asyncio
    async def test_url_sent_as_signed(self, clock):
        session = FakeSession()
        transport = HttpTransport("binance", RateLimiter(clock=clock), session=session)
        signed = "https://x/a?symbol=BTC%2FUSDT&signature=abc"

        await transport.request("GET", signed, "/a")

        assert str(session.calls[0][1]) == signed

    @pytest.mark.asyncio
    async def test_empty_body_is_empty_payload(self, clock):
        transport = HttpTransport("binance", RateLimiter(clock=clock), session=FakeSession(text=""))

        assert await transport.request("GET", "https://x/a", "/a") == (200, {})

    @pytest.mark.asyncio
    async def test_non_json(self, clock):
        session = FakeSession(status=502, text="<html>Bad Gateway</html>")
        transport = HttpTransport("kraken", RateLimiter(clock=clock), session=session)

        with pytest.raises(ExchangeProtocolError) as exc_info:
            await transport.request("GET", "https://x/a", "/a")

        assert exc_info.value.http_status == 502

    @pytest.mark.asyncio
    async def test_connection_error(self, clock):
        session = FakeSession(error=aiohttp.ClientConnectionError("refused"))
        metrics = AdapterMetrics("okx")
        transport = HttpTransport("okx", RateLimiter(clock=clock), session=session, metrics=metrics)

        with pytest.raises(NetworkError) as exc_info:
            await transport.request("GET", "https://x/a", "/a")

        assert exc_info.value.endpoint == "/a"
        assert metrics.get_summary()["errors"] == {"ClientConnectionError": 1}

    @pytest.mark.asyncio
    async def test_timeout(self, clock):
        session = FakeSession(error=asyncio.TimeoutError())
        transport = HttpTransport("bybit", RateLimiter(clock=clock), session=session)

        with pytest.raises(NetworkError) as exc_info:
            await transport.request("GET", "https://x/a", "/a")

        assert "timed out" in exc_info.value.message

    @pytest.mark.asyncio
    async def test_rate_limit_before_network(self, clock):
        session = FakeSession()
        limiter = RateLimiter(RateLimitConfig(max_requests=1), clock=clock)
        transport = HttpTransport("binance", limiter, session=session)
        await transport.request("GET", "https://x/a", "/a")

        with pytest.raises(RateLimitError):
            await transport.request("GET", "https://x/a", "/a")

        assert len(session.calls) == 1

    @pytest.mark.asyncio
    async def test_shared_session_not_closed(self, clock):
        session = FakeSession()
        transport = HttpTransport("binance", RateLimiter(clock=clock), session=session)

        await transport.close()

        assert session.closed is False


# ============================================================
# SIMULATED VARIANT
# ============================================================

def _simulated(exchange_id="binance", prices=None, clock=None, limiter=None):
    return SimulatedProvider(
        EXCHANGE_PROFILES[exchange_id],
        limiter or RateLimiter(clock=clock),
        config=SimulationConfig.instant(),
        price_source=StaticPrices({"BTC/USDT": "50000"} if prices is None else prices),
        clock=clock,
    )


class TestSimulatedProvider:
    """Tests for the paper-trading variant."""

    @pytest.mark.asyncio
    async def test_market_buy_with_slippage_and_fee(self, clock):
        provider = _simulated(clock=clock)

        result = await provider.create_order(CREDENTIALS, _order())

        assert result.status is OrderStatus.FILLED
        assert result.id.startswith("SIM-")
        assert result.average == Decimal("50025")
        assert result.cost == Decimal("5002.5")
        assert result.fee.cost == Decimal("5.0025")
        assert result.fee.currency == "USDT"
        assert result.timestamp == clock.now()

    @pytest.mark.asyncio
    async def test_market_sell_slips_down(self, clock):
        provider = _simulated(clock=clock)

        result = await provider.create_order(CREDENTIALS, _order(side=OrderSide.SELL))

        assert result.average == Decimal("49975")

    @pytest.mark.asyncio
    async def test_limit_fills_at_limit_price(self, clock):
        provider = _simulated(clock=clock)

        result = await provider.create_order(
            CREDENTIALS, _order(OrderType.LIMIT, price=Decimal("48000"))
        )

        assert result.average == Decimal("48000")

    @pytest.mark.asyncio
    async def test_stop_fills_at_stop_price(self, clock):
        provider = _simulated(clock=clock)

        result = await provider.create_order(
            CREDENTIALS, _order(OrderType.STOP, side=OrderSide.SELL, stop_price=Decimal("45000"))
        )

        assert result.average == Decimal("45000")

    @pytest.mark.asyncio
    async def test_trailing_stop_offset(self, clock):
        provider = _simulated("deribit", clock=clock)

        result = await provider.create_order(
            CREDENTIALS,
            _order(OrderType.TRAILING_STOP, side=OrderSide.SELL, stop_price=Decimal("500")),
        )

        assert result.average == Decimal("49500")

    @pytest.mark.asyncio
    async def test_default_price_without_market_data(self, clock):
        provider = _simulated(prices={}, clock=clock)

        result = await provider.create_order(CREDENTIALS, _order(OrderType.LIMIT, price=Decimal("1")))
        market = await provider.create_order(CREDENTIALS, _order())

        assert result.raw["market_price"] == "50000"
        assert market.average == Decimal("50025")

    @pytest.mark.asyncio
    async def test_balances_follow_fills(self, clock):
        provider = _simulated(clock=clock)
        await provider.create_order(CREDENTIALS, _order())

        balances = {b.currency: b.total for b in await provider.get_balances(CREDENTIALS)}

        assert balances["BTC"] == Decimal("0.1")
        assert balances["USDT"] == Decimal("10000") - Decimal("5002.5") - Decimal("5.0025")

    @pytest.mark.asyncio
    async def test_bounds_still_enforced(self, clock):
        provider = _simulated("kraken", clock=clock)

        with pytest.raises(ValidationError):
            await provider.create_order(CREDENTIALS, _order(amount="30000"))

    @pytest.mark.asyncio
    async def test_order_status(self, clock):
        provider = _simulated(clock=clock)
        result = await provider.create_order(CREDENTIALS, _order())

        report = await provider.get_order_status(CREDENTIALS, result.id)

        assert report.status is OrderStatus.FILLED
        assert report.remaining == Decimal("0")

    @pytest.mark.asyncio
    async def test_unknown_order(self, clock):
        provider = _simulated(clock=clock)

        with pytest.raises(ExchangeProtocolError):
            await provider.get_order_status(CREDENTIALS, "SIM-missing")

    @pytest.mark.asyncio
    async def test_counts_against_rate_limiter(self, clock):
        limiter = RateLimiter(RateLimitConfig(max_requests=2), clock=clock)
        provider = _simulated(clock=clock, limiter=limiter)
        await provider.create_order(CREDENTIALS, _order())
        await provider.create_order(CREDENTIALS, _order())

        with pytest.raises(RateLimitError):
            await provider.create_order(CREDENTIALS, _order())

    @pytest.mark.asyncio
    async def test_trailing_stop_beyond_market_rejected(self, clock):
        provider = _simulated("deribit", clock=clock)

        with pytest.raises(ValidationError) as exc_info:
            await provider.create_order(
                CREDENTIALS,
                _order(OrderType.TRAILING_STOP, side=OrderSide.SELL, stop_price=Decimal("60000")),
            )

        assert exc_info.value.context["field"] == "stop_price"
        balances = {b.currency: b.total for b in await provider.get_balances(CREDENTIALS)}
        assert balances == {"USDT": Decimal("10000")}

    @pytest.mark.asyncio
    async def test_order_history_capped(self, clock):
        provider = SimulatedProvider(
            EXCHANGE_PROFILES["binance"],
            RateLimiter(clock=clock),
            config=SimulationConfig(min_latency_ms=0.0, max_latency_ms=0.0, max_tracked_orders=2),
            price_source=StaticPrices({"BTC/USDT": "50000"}),
            clock=clock,
        )
        first, second, third = [await provider.create_order(CREDENTIALS, _order()) for _ in range(3)]

        with pytest.raises(ExchangeProtocolError):
            await provider.get_order_status(CREDENTIALS, first.id)
        assert (await provider.get_order_status(CREDENTIALS, third.id)).order_id == third.id


# ============================================================
# FACTORY AND POOL
# ============================================================

class TestAdapterFactory:
    """Tests for AdapterFactory."""

    def test_supported_exchanges(self):
        assert supported_exchanges() == ["binance", "bybit", "deribit", "kraken", "kucoin", "okx"]

    def test_unsupported_exchange(self):
        with pytest.raises(ConfigurationError):
            AdapterFactory.create("mtgox")

    def test_paper_trading_builds_simulated(self, clock):
        adapter = AdapterFactory.create("kraken", AdapterConfig(paper_trading=True), clock=clock)

        assert adapter.is_simulated is True
        assert adapter.exchange_id == "kraken"
        assert adapter.profile.max_trade_amount == Decimal("25000")

    @pytest.mark.asyncio
    async def test_live_builds_exchange_variant(self, clock):
        adapter = AdapterFactory.create("BYBIT", AdapterConfig(paper_trading=False), clock=clock)

        assert adapter.is_simulated is False
        assert adapter.exchange_id == "bybit"
        await adapter.close()

    def test_create_adapter_shortcut(self):
        assert create_adapter("okx").is_simulated is True

    def test_each_adapter_owns_its_limiter(self):
        first = AdapterFactory.create("binance")
        second = AdapterFactory.create("binance")

        assert first.rate_limiter is not second.rate_limiter


class TestAdapterPool:
    """Tests for AdapterPool."""

    def test_one_adapter_per_exchange(self, clock):
        pool = AdapterPool(AdapterConfig(paper_trading=True), clock=clock)

        first = pool.get_or_create("binance")
        second = pool.get_or_create("Binance")

        assert first is second
        assert "binance" in pool
        assert len(pool) == 1
        assert pool.get("okx") is None

    @pytest.mark.asyncio
    async def test_close_all(self, clock):
        pool = AdapterPool(clock=clock)
        pool.get_or_create("binance")
        pool.get_or_create("okx")

        await pool.close_all()

        assert len(pool) == 0

    def test_unsupported_exchange(self):
        with pytest.raises(ConfigurationError):
            AdapterPool().get_or_create("ftx")

    def test_paper_wallet_per_account(self, clock):
        pool = AdapterPool(AdapterConfig(paper_trading=True), clock=clock)

        first = pool.get_or_create("binance", account_id="acc-1")
        second = pool.get_or_create("binance", account_id="acc-2")

        assert first is not second
        assert first is pool.get_or_create("binance", account_id="acc-1")
        assert first.rate_limiter is second.rate_limiter

    @pytest.mark.asyncio
    async def test_live_pool_without_credentials_is_simulated(self, clock):
        pool = AdapterPool(AdapterConfig(paper_trading=False), clock=clock)

        paper = pool.get_or_create("okx", account_id="acc-1", live_credentials=False)
        live = pool.get_or_create("okx", account_id="acc-1")

        assert paper.is_simulated is True
        assert live.is_simulated is False
        assert live is pool.get_or_create("okx", account_id="acc-2")
        await pool.close_all()


# ============================================================
# GUARDED ADAPTER
# ============================================================

class TestExchangeAdapter:
    """Tests for ExchangeAdapter.create_order."""

    @pytest.mark.asyncio
    async def test_guard_required(self, clock):
        adapter = AdapterFactory.create("binance", clock=clock)

        with pytest.raises(ValidationError):
            await adapter.create_order(CREDENTIALS, _order(), None)

    @pytest.mark.asyncio
    async def test_order_through_guard(self, repository, account, clock):
        adapter = AdapterFactory.create(
            "binance",
            AdapterConfig(simulation=SimulationConfig.instant()),
            price_source=StaticPrices({"BTC/USDT": "50000"}),
            clock=clock,
        )

        result = await adapter.create_order(CREDENTIALS, _order(), TradingGuard(account.account_id, repository))

        assert result.status is OrderStatus.FILLED
        assert adapter.metrics.get_summary()["orders"]["submitted"] == 1

    @pytest.mark.asyncio
    async def test_emergency_stop_blocks_before_provider(self, repository, account, clock):
        limiter = RateLimiter(clock=clock)
        adapter = AdapterFactory.create(
            "binance",
            AdapterConfig(simulation=SimulationConfig.instant()),
            rate_limiter=limiter,
            clock=clock,
        )
        await repository.set_emergency_stop(account.account_id, "test halt")

        with pytest.raises(EmergencyStopError):
            await adapter.create_order(CREDENTIALS, _order(), TradingGuard(account.account_id, repository))

        assert limiter.remaining("binance", "create_order") == 60

    @pytest.mark.asyncio
    async def test_rejection_counted(self, repository, account, clock):
        adapter = AdapterFactory.create(
            "binance",
            AdapterConfig(simulation=SimulationConfig.instant()),
            clock=clock,
        )

        with pytest.raises(ValidationError):
            await adapter.create_order(
                CREDENTIALS, _order(amount="0.0001"), TradingGuard(account.account_id, repository)
            )

        assert adapter.metrics.get_summary()["orders"]["rejected"] == 1


# ============================================================
# TESTNET
# ============================================================

class TestTestnetRouting:
    """Tests for AdapterConfig.testnet."""

    @pytest.mark.asyncio
    async def test_testnet_adapter_uses_testnet_host(self, transport, clock):
        transport.queue(200, [])
        provider = BinanceProvider(EXCHANGE_PROFILES["binance"], transport, clock=clock)
        adapter = ExchangeAdapter(provider, RateLimiter(clock=clock), testnet=True)

        await adapter.get_balances(ExchangeCredentials("live-key", "live-secret"))

        assert transport.last.url.startswith("https://testnet.binancefuture.com/")
        assert adapter.is_testnet is True

    @pytest.mark.asyncio
    async def test_factory_passes_testnet_flag(self, clock):
        adapter = create_adapter("bybit", paper_trading=False, testnet=True, clock=clock)

        assert adapter.is_testnet is True
        await adapter.close()

    def test_exchange_without_testnet_refused(self, clock):
        with pytest.raises(ConfigurationError):
            create_adapter("kraken", paper_trading=False, testnet=True, clock=clock)

    @pytest.mark.asyncio
    async def test_testnet_credentials_never_reach_production(self, transport, clock):
        provider = KrakenProvider(EXCHANGE_PROFILES["kraken"], transport, clock=clock)
        adapter = ExchangeAdapter(provider, RateLimiter(clock=clock))

        with pytest.raises(ConfigurationError):
            await adapter.get_balances(ExchangeCredentials("key", "c2VjcmV0", is_testnet=True))

        assert transport.requests == []
