"""Tests for the Gate.io USDT futures adapter."""

from decimal import Decimal

import pytest

from funding_trader.exchanges.gateio import GateioClient
from funding_trader.exchanges.models import OrderStatus, PositionSide, Side
from funding_trader.exchanges.transport import HttpResponse

from conftest import FakeTransport, json_body, Sequence

POSITIONS = [
    {"contract": "BTC_USDT", "size": 12, "entry_price": "50000", "mark_price": "50100", "leverage": "0",
     "cross_leverage_limit": "1", "unrealised_pnl": "1.2", "liq_price": "0", "value": "60.12"},
    {"contract": "ETH_USDT", "size": 0, "entry_price": "0", "mark_price": "2000", "leverage": "1",
     "unrealised_pnl": "0", "liq_price": "0", "value": "0"},
    {"contract": "DOGE_USDT", "size": -30, "entry_price": "0.1", "mark_price": "0.1", "leverage": "1",
     "unrealised_pnl": "0", "liq_price": "0.2", "value": "30"},
]


def order(order_id, size, status="finished", finish_as="filled", left=0):
    return {"id": order_id, "contract": "BTC_USDT", "size": size, "price": "0", "fill_price": "50000",
            "tif": "ioc", "status": status, "finish_as": finish_as, "left": left, "create_time": 1700000000.5}


@pytest.fixture
def client(hmac_credentials):
    return GateioClient(hmac_credentials, transport=FakeTransport())


class TestGateioAccount:
    """Account and positions."""

    def test_balance(self, client):
        client.transport.add(
            "GET",
            "/futures/usdt/accounts",
            {"currency": "USDT", "total": "1000", "available": "700", "position_margin": "200",
             "order_margin": "100", "unrealised_pnl": "10"},
        )
        balance = client.get_wallet_balance("USDT").result[0]
        assert balance.used_margin == Decimal("300")
        assert balance.total_equity == Decimal("1010")
        assert client.get_wallet_balance("BTC").result == []

    def test_signature_headers(self, client):
        client.transport.add("GET", "/futures/usdt/accounts", {"currency": "USDT", "total": "0"})
        client.get_wallet_balance()
        headers = client.transport.calls[0]["headers"]
        expected = client.generate_signature("GET", "/api/v4/futures/usdt/accounts", "", "", headers["Timestamp"])
        assert headers["SIGN"] == expected
        assert headers["KEY"] == "test-key"

    def test_positions_skip_zero_size(self, client):
        client.transport.add("GET", "/futures/usdt/positions", POSITIONS)
        positions = client.get_positions().result
        assert [p.symbol for p in positions] == ["BTC_USDT", "DOGE_USDT"]
        assert positions[0].leverage == Decimal("1")
        assert positions[0].liquidation_price is None
        assert positions[1].side is PositionSide.SHORT
        assert positions[1].size == Decimal("30")


class TestGateioOrders:
    """Signed-size orders and close-all."""

    def test_sell_market_order_has_negative_size(self, client):
        client.transport.add("POST", "/futures/usdt/orders", order(1, -5))
        result = client.place_market_order("BTC", Side.SELL, "5.9")
        body = json_body(client.transport.calls[0])
        assert body == {"contract": "BTC_USDT", "size": -5, "price": "0", "tif": "ioc"}
        assert result.result.side is Side.SELL
        assert result.result.status is OrderStatus.FILLED

    def test_close_all_partial_failure(self, client):
        client.transport.add("GET", "/futures/usdt/positions", POSITIONS)
        client.transport.add(
            "POST",
            "/futures/usdt/orders",
            Sequence(HttpResponse(400, {"label": "INSUFFICIENT_AVAILABLE", "message": "balance not enough"}, ""),
                     order(2, 30)),
        )
        results = client.close_all_positions()
        calls = client.transport.calls_to("POST", "/futures/usdt/orders")
        assert len(calls) == 2
        assert [json_body(c)["size"] for c in calls] == [-12, 30]
        assert all(json_body(c)["reduce_only"] is True for c in calls)
        assert results[0].error_kind == "business"
        assert results[1].ok

    def test_ioc_partial_fill_status(self, client):
        client.transport.add("GET", "/futures/usdt/orders", [order(3, 10, finish_as="ioc", left=4)])
        assert client.get_order_history("BTC").result[0].status is OrderStatus.PARTIALLY_FILLED

    def test_auth_label(self, client):
        client.transport.add(
            "GET", "/futures/usdt/accounts", HttpResponse(401, {"label": "INVALID_SIGNATURE", "message": "bad sign"}, "")
        )
        assert client.get_wallet_balance().error_kind == "auth"


class TestGateioMarket:
    """Contracts, tickers and sizing."""

    CONTRACT = {"name": "BTC_USDT", "funding_rate": "0.0003", "funding_next_apply": 1700006400,
                "quanto_multiplier": "0.0001"}

    def test_funding_rate_in_ms(self, client):
        client.transport.add("GET", "/futures/usdt/contracts/BTC_USDT", self.CONTRACT)
        funding = client.get_funding_rate("BTC").result
        assert funding.rate == Decimal("0.0003")
        assert funding.next_funding_time == 1700006400000

    def test_ticker_is_unsigned(self, client):
        client.transport.add("GET", "/futures/usdt/tickers", [{"contract": "BTC_USDT", "last": "50000", "funding_rate": "0.0003"}])
        ticker = client.get_ticker("BTC").result
        assert ticker.funding_rate == Decimal("0.0003")
        assert "SIGN" not in client.transport.calls[0]["headers"]

    def test_order_quantity_uses_multiplier(self, client):
        client.transport.add("GET", "/futures/usdt/contracts/BTC_USDT", self.CONTRACT)
        # 500 / 50000 = 0.01 BTC = 100 contracts of 0.0001
        assert client.order_quantity("BTC", Decimal("500"), Decimal("50000")).result == Decimal("100")

    def test_unparseable_funding_time_is_malformed(self, client):
        client.transport.add("GET", "/futures/usdt/contracts/BTC_USDT", dict(self.CONTRACT, funding_next_apply="soon"))
        result = client.get_funding_rate("BTC")
        assert not result.ok
        assert result.error_kind == "malformed"

    def test_zero_multiplier_is_malformed(self, client):
        client.transport.add("GET", "/futures/usdt/contracts/BTC_USDT", dict(self.CONTRACT, quanto_multiplier="0"))
        result = client.order_quantity("BTC", Decimal("500"), Decimal("50000"))
        assert result.error_kind == "malformed"
        assert result.result is None
