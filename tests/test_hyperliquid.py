"""Tests for the Hyperliquid adapter (SDK calls mocked)."""

from decimal import Decimal
from unittest.mock import Mock

import pytest
from hyperliquid.utils import signing
from hyperliquid.utils.error import ClientError, ServerError

from funding_trader.core.errors import ConfigurationError
from funding_trader.exchanges.hyperliquid import HyperliquidClient
from funding_trader.exchanges.models import Credentials, OrderStatus, PositionSide, Side

from conftest import TEST_PRIVATE_KEY, TEST_WALLET

USER_STATE = {
    "marginSummary": {"accountValue": "1010", "totalMarginUsed": "200"},
    "withdrawable": "800",
    "assetPositions": [
        {"position": {"coin": "BTC", "szi": "0.01", "entryPx": "50000", "positionValue": "505",
                      "unrealizedPnl": "5", "leverage": {"type": "cross", "value": 1}, "liquidationPx": None}},
        {"position": {"coin": "ETH", "szi": "0.0", "entryPx": "2000", "positionValue": "0",
                      "unrealizedPnl": "0", "leverage": {"type": "cross", "value": 1}}},
        {"position": {"coin": "SOL", "szi": "-2", "entryPx": "100", "positionValue": "200",
                      "unrealizedPnl": "5", "leverage": {"type": "cross", "value": 1}, "liquidationPx": "180"}},
    ],
}

META = {"universe": [{"name": "BTC", "szDecimals": 5}, {"name": "ETH", "szDecimals": 4}, {"name": "SOL", "szDecimals": 2}]}


def filled(oid, px="50000"):
    return {"status": "ok", "response": {"type": "order", "data": {"statuses": [{"filled": {"oid": oid, "totalSz": "0.01", "avgPx": px}}]}}}


@pytest.fixture
def info():
    mock = Mock()
    mock.user_state.return_value = USER_STATE
    mock.meta.return_value = META
    mock.all_mids.return_value = {"BTC": "50000", "SOL": "100"}
    return mock


@pytest.fixture
def exchange():
    return Mock()


@pytest.fixture
def client(web3_credentials, info, exchange):
    return HyperliquidClient(web3_credentials, info=info, exchange=exchange)


class TestHyperliquidAccount:
    """Balance and positions from clearinghouse state."""

    def test_requires_valid_private_key(self):
        with pytest.raises(ConfigurationError):
            HyperliquidClient(Credentials(api_key=TEST_WALLET, api_secret="0xdead", wallet_address=TEST_WALLET))

    def test_balance(self, client):
        balance = client.get_wallet_balance().result[0]
        assert balance.coin == "USDC"
        assert balance.total_equity == Decimal("1010")
        assert balance.unrealized_pnl == Decimal("10")
        assert balance.wallet_balance == Decimal("1000")
        assert balance.available_balance == Decimal("800")

    def test_positions_skip_zero_size(self, client):
        positions = client.get_positions().result
        assert [p.coin for p in positions] == ["BTC", "SOL"]
        assert positions[0].side is PositionSide.LONG
        assert positions[0].mark_price == Decimal("50500")
        assert positions[1].side is PositionSide.SHORT
        assert positions[1].liquidation_price == Decimal("180")


class TestHyperliquidOrders:
    """IOC market emulation, close-all and SDK error mapping."""

    def test_market_buy_prices_through_mid(self, client, exchange):
        exchange.order.return_value = filled(11)
        result = client.place_market_order("BTC", Side.BUY, "0.0123456")
        assert result.ok
        coin, is_buy, size, px, order_type, reduce_only = exchange.order.call_args[0]
        assert (coin, is_buy, reduce_only) == ("BTC", True, False)
        assert size == pytest.approx(0.01234)
        assert px == pytest.approx(51500.0)
        assert order_type == {"limit": {"tif": "Ioc"}}
        assert result.result.status is OrderStatus.FILLED
        assert result.result.order_id == "11"

    def test_limit_order_rests(self, client, exchange):
        exchange.order.return_value = {"status": "ok", "response": {"data": {"statuses": [{"resting": {"oid": 5}}]}}}
        result = client.place_limit_order("SOL", Side.SELL, "1", "123.456")
        assert result.result.status is OrderStatus.NEW
        assert exchange.order.call_args[0][3] == pytest.approx(123.46)

    def test_close_all_partial_failure(self, client, exchange):
        exchange.order.side_effect = [
            {"status": "ok", "response": {"data": {"statuses": [{"error": "Insufficient margin"}]}}},
            filled(12, "100"),
        ]
        results = client.close_all_positions()
        assert exchange.order.call_count == 2
        first, second = exchange.order.call_args_list
        assert first[0][0] == "BTC" and first[0][1] is False and first[0][5] is True
        assert second[0][0] == "SOL" and second[0][1] is True and second[0][5] is True
        assert results[0].error_kind == "business"
        assert results[1].ok

    def test_client_error_mapping(self, client, info):
        info.user_state.side_effect = ClientError(422, None, "bad request", None)
        result = client.get_wallet_balance()
        assert result.error_kind == "business"
        assert result.ret_code == 422

    def test_server_error_is_transport(self, client, info):
        info.user_state.side_effect = ServerError(502, "bad gateway")
        assert client.get_positions().error_kind == "transport"

    def test_history_status(self, client, info):
        info.historical_orders.return_value = [
            {"order": {"coin": "BTC", "side": "B", "limitPx": "50000", "sz": "0", "origSz": "0.01", "oid": 1,
                       "timestamp": 1700000000000, "orderType": "Limit"}, "status": "filled"},
            {"order": {"coin": "BTC", "side": "A", "limitPx": "60000", "sz": "0.01", "origSz": "0.01", "oid": 2,
                       "timestamp": 1700000000001, "orderType": "Limit"}, "status": "canceled"},
        ]
        orders = client.get_order_history("BTC").result
        assert [o.status for o in orders] == [OrderStatus.FILLED, OrderStatus.CANCELLED]
        assert orders[1].side is Side.SELL


class TestHyperliquidMarket:
    """Funding, ticker, leverage and sizing."""

    def test_ticker_from_asset_ctx(self, client, info):
        info.meta_and_asset_ctxs.return_value = (
            META,
            [{"funding": "0.0000125", "markPx": "50010", "midPx": "50005", "oraclePx": "50000", "prevDayPx": "49005"},
             {"funding": "0", "markPx": "2000"}, {"funding": "-0.00001", "markPx": "100"}],
        )
        ticker = client.get_ticker("BTC").result
        assert ticker.last_price == Decimal("50005")
        assert ticker.funding_rate == Decimal("0.0000125")
        assert client.get_funding_rate("SOL").result.rate == Decimal("-0.00001")

    def test_set_leverage_cross(self, client, exchange):
        exchange.update_leverage.return_value = {"status": "ok", "response": {"type": "default"}}
        assert client.set_leverage("BTC", 1).ok
        exchange.update_leverage.assert_called_once_with(1, "BTC", True)

    def test_order_quantity_floors_to_sz_decimals(self, client):
        assert client.order_quantity("SOL", Decimal("1000"), Decimal("3")).result == Decimal("333.33")

    def test_unlisted_coin(self, client):
        assert client.order_quantity("XYZ", Decimal("10"), Decimal("1")).error_kind == "business"

    def test_sign_l1_action(self, client):
        action = {"type": "noop"}
        signature = client.generate_signature(action, 1700000000000)
        assert set(signature) == {"r", "s", "v"}
        signer = signing.recover_agent_or_user_from_l1_action(
            action, signature, None, 1700000000000, None, not client.testnet
        )
        assert signer.lower() == client.wallet.address.lower()

    def test_mixed_case_coin_kept(self, client, info):
        info.meta.return_value = {"universe": META["universe"] + [{"name": "kPEPE", "szDecimals": 0}]}
        assert client.to_native_symbol("kPEPE") == "kPEPE"
        assert client.order_quantity("kPEPE", Decimal("100"), Decimal("0.012")).result == Decimal("8333")
        assert client.to_native_symbol("btc") == "BTC"
