"""Tests for the Binance USDS-M adapter and the Binance-compatible Aster adapter."""

from decimal import Decimal
from urllib.parse import parse_qs

import pytest

from funding_trader.core.errors import ConfigurationError
from funding_trader.exchanges.aster import AsterClient
from funding_trader.exchanges.binance import BinanceClient
from funding_trader.exchanges.models import Credentials, OrderStatus, PositionSide, Side
from funding_trader.exchanges.transport import HttpResponse

from conftest import FakeTransport, Sequence

POSITION_ROWS = [
    {"symbol": "BTCUSDT", "positionAmt": "0.010", "entryPrice": "50000", "markPrice": "50100",
     "leverage": "1", "unRealizedProfit": "1.0", "liquidationPrice": "0", "notional": "501"},
    {"symbol": "ETHUSDT", "positionAmt": "0.000", "entryPrice": "0", "markPrice": "2000",
     "leverage": "1", "unRealizedProfit": "0", "liquidationPrice": "0", "notional": "0"},
    {"symbol": "SOLUSDT", "positionAmt": "-3", "entryPrice": "100", "markPrice": "99",
     "leverage": "1", "unRealizedProfit": "3", "liquidationPrice": "180", "notional": "-297"},
]


def order_row(order_id, side, qty, status="NEW"):
    return {"orderId": order_id, "symbol": "BTCUSDT", "side": side, "type": "MARKET",
            "origQty": qty, "price": "0", "status": status}


def form(call):
    return {k: v[0] for k, v in parse_qs(call["body"] or call["query"]).items()}


@pytest.fixture
def client(hmac_credentials):
    return BinanceClient(hmac_credentials, transport=FakeTransport())


class TestBinanceAccount:
    """Balance and positions."""

    def test_balance(self, client):
        client.transport.add(
            "GET",
            "/fapi/v3/balance",
            [{"asset": "USDT", "balance": "1000", "availableBalance": "800", "crossUnPnl": "5"},
             {"asset": "BNB", "balance": "1", "availableBalance": "1", "crossUnPnl": "0"}],
        )
        result = client.get_wallet_balance("USDT")
        assert len(result.result) == 1
        balance = result.result[0]
        assert balance.used_margin == Decimal("200")
        assert balance.total_equity == Decimal("1005")

    def test_balance_request_is_signed(self, client):
        client.transport.add("GET", "/fapi/v3/balance", [])
        client.get_wallet_balance()
        call = client.transport.calls[0]
        query, signature = call["query"].split("&signature=")
        assert signature == client.generate_signature(query)
        assert call["headers"]["X-MBX-APIKEY"] == "test-key"

    def test_positions_skip_zero_size(self, client):
        client.transport.add("GET", "/fapi/v3/positionRisk", POSITION_ROWS)
        positions = client.get_positions().result
        assert [p.symbol for p in positions] == ["BTCUSDT", "SOLUSDT"]
        assert positions[0].side is PositionSide.LONG
        assert positions[0].liquidation_price is None
        assert positions[1].side is PositionSide.SHORT
        assert positions[1].size == Decimal("3")
        assert positions[1].position_value == Decimal("297")


class TestBinanceOrders:
    """Order placement, close-all, status mapping."""

    def test_limit_order_params(self, client):
        client.transport.add("POST", "/fapi/v1/order", order_row(7, "BUY", "0.010"))
        result = client.place_limit_order("BTC", "buy", "0.01", "49000.50")
        assert result.ok
        params = form(client.transport.calls[0])
        assert params["type"] == "LIMIT"
        assert params["timeInForce"] == "GTC"
        assert params["price"] == "49000.5"
        assert params["quantity"] == "0.01"
        assert "signature" in params

    def test_close_all_partial_failure(self, client):
        client.transport.add("GET", "/fapi/v3/positionRisk", POSITION_ROWS)
        client.transport.add(
            "POST",
            "/fapi/v1/order",
            Sequence(order_row(1, "SELL", "0.010"),
                     HttpResponse(400, {"code": -2019, "msg": "Margin is insufficient."}, "")),
        )
        results = client.close_all_positions()
        calls = client.transport.calls_to("POST", "/fapi/v1/order")
        assert len(calls) == 2
        assert results[0].ok
        assert results[1].ret_code == -2019
        assert results[1].error_kind == "business"
        sent = [form(c) for c in calls]
        assert [p["side"] for p in sent] == ["SELL", "BUY"]
        assert all(p["reduceOnly"] == "true" for p in sent)

    def test_cancel_maps_status(self, client):
        client.transport.add("DELETE", "/fapi/v1/order", order_row(1, "BUY", "1", status="CANCELED"))
        assert client.cancel_order("BTC", "1").result is OrderStatus.CANCELLED

    def test_history_requires_symbol(self, client):
        result = client.get_order_history()
        assert result.error_kind == "configuration"

    def test_history_statuses(self, client):
        client.transport.add(
            "GET",
            "/fapi/v1/allOrders",
            [order_row(1, "BUY", "1", "FILLED"), order_row(2, "SELL", "1", "EXPIRED"),
             order_row(3, "SELL", "1", "PARTIALLY_FILLED")],
        )
        statuses = [o.status for o in client.get_order_history("BTC").result]
        assert statuses == [OrderStatus.FILLED, OrderStatus.EXPIRED, OrderStatus.PARTIALLY_FILLED]

    def test_auth_error_code(self, client):
        client.transport.add("GET", "/fapi/v3/balance", HttpResponse(401, {"code": -2015, "msg": "Invalid API-key"}, ""))
        result = client.get_wallet_balance()
        assert result.error_kind == "auth"
        assert result.ret_code == -2015


class TestBinanceMarket:
    """Ticker, funding and sizing."""

    PREMIUM = {"symbol": "BTCUSDT", "markPrice": "50010", "indexPrice": "50000",
               "lastFundingRate": "-0.0002", "nextFundingTime": 1700006400000}

    def test_ticker_merges_premium_index(self, client):
        client.transport.add("GET", "/fapi/v1/ticker/24hr", {"symbol": "BTCUSDT", "lastPrice": "50005"})
        client.transport.add("GET", "/fapi/v1/premiumIndex", self.PREMIUM)
        ticker = client.get_ticker("BTC").result
        assert ticker.last_price == Decimal("50005")
        assert ticker.funding_rate == Decimal("-0.0002")

    def test_funding_rate(self, client):
        client.transport.add("GET", "/fapi/v1/premiumIndex", self.PREMIUM)
        funding = client.get_funding_rate("BTC").result
        assert funding.rate == Decimal("-0.0002")
        assert funding.next_funding_time == 1700006400000

    def test_order_quantity_uses_lot_size(self, client):
        client.transport.add(
            "GET",
            "/fapi/v1/exchangeInfo",
            {"symbols": [{"symbol": "BTCUSDT", "filters": [{"filterType": "LOT_SIZE", "stepSize": "0.001"}]}]},
        )
        qty = client.order_quantity("BTC", Decimal("1000"), Decimal("60000")).result
        assert qty == Decimal("0.016")
        client.order_quantity("BTC", Decimal("1000"), Decimal("60000"))
        assert len(client.transport.calls_to("GET", "/fapi/v1/exchangeInfo")) == 1


class TestAster:
    """Aster reuses Binance parsing with Web3 request signing."""

    @pytest.fixture
    def aster(self, web3_credentials):
        return AsterClient(web3_credentials, transport=FakeTransport())

    def test_requires_key_material(self):
        with pytest.raises(ConfigurationError):
            AsterClient(Credentials(api_key="", api_secret="0x" + "11" * 32), transport=FakeTransport())

    def test_positions_from_account(self, aster):
        aster.transport.add("GET", "/fapi/v3/account", {"positions": POSITION_ROWS})
        positions = aster.get_positions().result
        assert [p.symbol for p in positions] == ["BTCUSDT", "SOLUSDT"]
        params = form(aster.transport.calls[0])
        assert params["user"] == aster.user_address
        assert params["signer"] == aster.signer_address
        assert params["recvWindow"] == "50000"

    def test_order_carries_position_side(self, aster):
        aster.transport.add("POST", "/fapi/v3/order", order_row(9, "BUY", "0.01"))
        result = aster.place_market_order("BTC", Side.BUY, "0.01")
        assert result.ok
        params = form(aster.transport.calls[0])
        assert params["positionSide"] == "BOTH"
        assert params["signature"].startswith("0x")

    def test_close_all(self, aster):
        aster.transport.add("GET", "/fapi/v3/account", {"positions": POSITION_ROWS})
        aster.transport.add(
            "POST",
            "/fapi/v3/order",
            Sequence({"code": -2022, "msg": "ReduceOnly Order is rejected."}, order_row(2, "BUY", "3")),
        )
        results = aster.close_all_positions()
        assert len(results) == 2
        assert len(aster.transport.calls_to("POST", "/fapi/v3/order")) == 2
        assert results[0].ret_code == -2022
        assert results[0].error_kind == "business"
        assert results[1].ok
        assert results[1].result.order_id == "2"
