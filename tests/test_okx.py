"""Tests for the OKX v5 swap adapter."""

import json
from decimal import Decimal

import pytest

from funding_trader.core.errors import ConfigurationError
from funding_trader.exchanges.models import Credentials, OrderStatus, PositionSide, Side
from funding_trader.exchanges.okx import OkxClient, iso_timestamp

from conftest import FakeTransport, json_body, Sequence


def ok(data):
    return {"code": "0", "msg": "", "data": data}


POSITIONS = ok(
    [
        {"instId": "BTC-USDT-SWAP", "pos": "5", "posSide": "net", "avgPx": "50000", "markPx": "50100",
         "lever": "1", "upl": "5", "liqPx": "", "notionalUsd": "250"},
        {"instId": "ETH-USDT-SWAP", "pos": "0", "posSide": "net", "avgPx": "", "markPx": "2000",
         "lever": "1", "upl": "0", "liqPx": "", "notionalUsd": "0"},
        {"instId": "SOL-USDT-SWAP", "pos": "-2", "posSide": "net", "avgPx": "100", "markPx": "101",
         "lever": "1", "upl": "-2", "liqPx": "190", "notionalUsd": "202"},
    ]
)


@pytest.fixture
def client(okx_credentials):
    return OkxClient(okx_credentials, transport=FakeTransport())


class TestOkxClient:
    """Construction and signing headers."""

    def test_passphrase_required(self):
        with pytest.raises(ConfigurationError):
            OkxClient(Credentials(api_key="k", api_secret="s"), transport=FakeTransport())

    def test_iso_timestamp_format(self):
        from datetime import datetime, timezone

        assert iso_timestamp(datetime(2020, 12, 8, 9, 8, 57, 715000, tzinfo=timezone.utc)) == "2020-12-08T09:08:57.715Z"

    def test_headers(self, client):
        client.transport.add("GET", "/api/v5/account/balance", ok([]))
        client.get_wallet_balance("USDT")
        call = client.transport.calls[0]
        headers = call["headers"]
        assert headers["OK-ACCESS-PASSPHRASE"] == "test-pass"
        assert "x-simulated-trading" not in headers
        expected = client.generate_signature(headers["OK-ACCESS-TIMESTAMP"], "GET", "/api/v5/account/balance?ccy=USDT")
        assert headers["OK-ACCESS-SIGN"] == expected

    def test_simulated_trading_header(self, okx_credentials):
        okx_credentials.is_testnet = True
        client = OkxClient(okx_credentials, transport=FakeTransport())
        client.transport.add("GET", "/api/v5/account/balance", ok([]))
        client.get_wallet_balance()
        assert client.transport.calls[0]["headers"]["x-simulated-trading"] == "1"


class TestOkxAccount:
    """Balances and positions."""

    def test_balance(self, client):
        client.transport.add(
            "GET",
            "/api/v5/account/balance",
            ok([{"details": [{"ccy": "USDT", "cashBal": "1000", "availBal": "900", "frozenBal": "100",
                              "upl": "3", "eq": "1003"}]}]),
        )
        balance = client.get_wallet_balance("USDT").result[0]
        assert balance.available_balance == Decimal("900")
        assert balance.total_equity == Decimal("1003")

    def test_positions_skip_zero_size(self, client):
        client.transport.add("GET", "/api/v5/account/positions", POSITIONS)
        positions = client.get_positions().result
        assert [p.coin for p in positions] == ["BTC", "SOL"]
        assert positions[0].side is PositionSide.LONG
        assert positions[1].side is PositionSide.SHORT
        assert positions[1].size == Decimal("2")


class TestOkxOrders:
    """Orders and close-all."""

    def test_market_order_body(self, client):
        client.transport.add("POST", "/api/v5/trade/order", ok([{"ordId": "123", "clOrdId": "", "sCode": "0"}]))
        result = client.place_market_order("BTC", Side.SELL, "3")
        assert result.ok
        body = json_body(client.transport.calls[0])
        assert body == {"instId": "BTC-USDT-SWAP", "tdMode": "cross", "side": "sell", "ordType": "market", "sz": "3"}
        assert result.result.order_id == "123"

    def test_order_row_error_surfaces(self, client):
        client.transport.add(
            "POST",
            "/api/v5/trade/order",
            {"code": "1", "msg": "All operations failed", "data": [{"ordId": "", "sCode": "51008", "sMsg": "Insufficient margin"}]},
        )
        result = client.place_market_order("BTC", Side.BUY, "1")
        assert result.ret_code == 51008
        assert result.ret_msg == "Insufficient margin"
        assert result.error_kind == "business"

    def test_auth_code(self, client):
        client.transport.add("GET", "/api/v5/account/balance", {"code": "50111", "msg": "Invalid OK-ACCESS-KEY", "data": []})
        assert client.get_wallet_balance().error_kind == "auth"

    def test_close_all_uses_close_position(self, client):
        client.transport.add("GET", "/api/v5/account/positions", POSITIONS)
        client.transport.add(
            "POST",
            "/api/v5/trade/close-position",
            Sequence({"code": "51023", "msg": "Position does not exist", "data": []},
                     ok([{"instId": "SOL-USDT-SWAP", "posSide": "net", "clOrdId": ""}])),
        )
        results = client.close_all_positions()
        calls = client.transport.calls_to("POST", "/api/v5/trade/close-position")
        assert len(calls) == 2
        assert [json_body(c)["instId"] for c in calls] == ["BTC-USDT-SWAP", "SOL-USDT-SWAP"]
        assert not results[0].ok
        assert results[1].ok
        assert results[1].result.side is Side.BUY
        assert results[1].result.reduce_only

    def test_history_status_mapping(self, client):
        client.transport.add(
            "GET",
            "/api/v5/trade/orders-history-archive",
            ok([{"ordId": "1", "instId": "BTC-USDT-SWAP", "side": "buy", "ordType": "market", "sz": "1",
                 "avgPx": "50000", "state": "filled", "cTime": "1700000000000"},
                {"ordId": "2", "instId": "BTC-USDT-SWAP", "side": "sell", "ordType": "limit", "sz": "1",
                 "px": "60000", "avgPx": "", "state": "canceled"}]),
        )
        orders = client.get_order_history("BTC").result
        assert [o.status for o in orders] == [OrderStatus.FILLED, OrderStatus.CANCELLED]
        assert orders[1].price == Decimal("60000")


class TestOkxMarket:
    """Funding and contract sizing."""

    def test_ticker_has_no_funding_rate(self, client):
        client.transport.add("GET", "/api/v5/market/ticker", ok([{"instId": "BTC-USDT-SWAP", "last": "50000"}]))
        ticker = client.get_ticker("BTC").result
        assert ticker.last_price == Decimal("50000")
        assert ticker.funding_rate is None

    def test_funding_rate(self, client):
        client.transport.add(
            "GET",
            "/api/v5/public/funding-rate",
            ok([{"instId": "BTC-USDT-SWAP", "fundingRate": "0.0001", "nextFundingTime": "1700028800000"}]),
        )
        assert client.get_funding_rate("BTC").result.rate == Decimal("0.0001")

    def test_order_quantity_in_contracts(self, client):
        client.transport.add(
            "GET",
            "/api/v5/public/instruments",
            ok([{"instId": "BTC-USDT-SWAP", "ctVal": "0.01", "lotSz": "0.1"}]),
        )
        # 500 USDT / 50000 = 0.01 BTC = 1 contract
        assert client.order_quantity("BTC", Decimal("500"), Decimal("50000")).result == Decimal("1")
        assert client.order_quantity("BTC", Decimal("777"), Decimal("50000")).result == Decimal("1.5")

    def test_zero_contract_value_is_malformed(self, client):
        client.transport.add(
            "GET",
            "/api/v5/public/instruments",
            ok([{"instId": "BTC-USDT-SWAP", "ctVal": "0", "lotSz": "0.1"}]),
        )
        result = client.order_quantity("BTC", Decimal("500"), Decimal("50000"))
        assert not result.ok
        assert result.error_kind == "malformed"
