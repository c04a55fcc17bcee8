"""
Bybit v5 adapter (inverse perpetuals).

Quantity unit: USD contracts. One contract is worth 1 USD, so an order qty
equals its USD notional and must be a whole number.
Native symbols look like BTCUSD; collateral is the base coin.
"""

import json
from decimal import ROUND_DOWN, Decimal
from typing import Any, Dict, List, Optional
from urllib.parse import urlencode

from funding_trader.core.errors import AuthError, ExchangeBusinessError, MalformedResponseError
from funding_trader.exchanges.base import HttpExchangeClient
from funding_trader.exchanges.models import (
    FundingRate,
    MarginType,
    NormalizedBalance,
    NormalizedOrderResult,
    NormalizedPosition,
    OrderStatus,
    OrderType,
    PositionSide,
    Side,
    Ticker,
)
from funding_trader.exchanges.signing import hmac_sha256_hex
from funding_trader.exchanges.transport import HttpResponse
from funding_trader.utils.precision import decimal_field, format_decimal, optional_decimal, to_decimal

CATEGORY = "inverse"
RECV_WINDOW_MS = 5000
LEVERAGE_NOT_MODIFIED = 110043
AUTH_ERROR_CODES = {10003, 10004, 10005, 10007, 33004}


def sorted_query(params: Dict[str, Any]) -> str:
    """Alphabetically sorted k=v&k=v string, used both on the wire and for signing."""
    return urlencode(sorted((k, str(v)) for k, v in params.items() if v is not None and v != ""))


def sorted_body(params: Dict[str, Any]) -> str:
    return json.dumps(params, sort_keys=True, separators=(",", ":"))


class BybitClient(HttpExchangeClient):
    exchange_id = "bybit"
    margin_type = MarginType.INVERSE
    settle_coin = ""
    quantity_unit = "USD contracts"
    native_symbol_template = "{coin}USD"
    default_quantity_step = Decimal("1")
    mainnet_url = "https://api.bybit.com"
    testnet_url = "https://api-testnet.bybit.com"

    status_map = {
        "Created": OrderStatus.NEW,
        "New": OrderStatus.NEW,
        "Untriggered": OrderStatus.NEW,
        "Triggered": OrderStatus.NEW,
        "PartiallyFilled": OrderStatus.PARTIALLY_FILLED,
        "Filled": OrderStatus.FILLED,
        "Cancelled": OrderStatus.CANCELLED,
        "PartiallyFilledCanceled": OrderStatus.CANCELLED,
        "Deactivated": OrderStatus.CANCELLED,
        "Rejected": OrderStatus.REJECTED,
    }

    recv_window = RECV_WINDOW_MS

    def generate_signature(self, payload: str, timestamp: str) -> str:
        """
        HMAC-SHA256 hex over timestamp + api_key + recv_window + payload.

        payload is the sorted query string for GET, the sorted JSON body for POST.
        """
        sign_str = f"{timestamp}{self.credentials.api_key}{self.recv_window}{payload}"
        return hmac_sha256_hex(self.credentials.api_secret, sign_str)

    def _request(self, method: str, path: str, params: Optional[Dict[str, Any]] = None) -> Any:
        params = {k: v for k, v in (params or {}).items() if v is not None and v != ""}
        timestamp = str(self._timestamp_ms())
        if method == "GET":
            query, body = sorted_query(params), None
            payload = query
        else:
            query, body = "", sorted_body(params)
            payload = body
        headers = {
            "X-BAPI-API-KEY": self.credentials.api_key,
            "X-BAPI-SIGN": self.generate_signature(payload, timestamp),
            "X-BAPI-SIGN-TYPE": "2",
            "X-BAPI-TIMESTAMP": timestamp,
            "X-BAPI-RECV-WINDOW": str(self.recv_window),
            "Content-Type": "application/json",
        }
        return self._unwrap(self.transport.request(method, path, query=query, body=body, headers=headers))

    def _unwrap(self, response: HttpResponse) -> Any:
        data = response.payload
        if not isinstance(data, dict) or "retCode" not in data:
            if response.status in (401, 403):
                raise AuthError(f"HTTP {response.status}", code=response.status)
            raise MalformedResponseError(f"unexpected Bybit envelope (HTTP {response.status})")
        code = int(data["retCode"])
        if code == 0:
            return data.get("result") or {}
        message = data.get("retMsg") or "unknown error"
        if code in AUTH_ERROR_CODES:
            raise AuthError(message, code=code)
        raise ExchangeBusinessError(message, code=code)

    # ------------------------
    # Account
    # ------------------------
    def _get_wallet_balance(self, coin: Optional[str]) -> List[NormalizedBalance]:
        result = self._request("GET", "/v5/account/wallet-balance", {"accountType": "CONTRACT", "coin": coin})
        balances = []
        for account in result.get("list", []):
            for item in account.get("coin", []):
                wallet = decimal_field(item, "walletBalance")
                # availableToWithdraw comes back blank on some account types
                available = optional_decimal(item.get("availableToWithdraw"), "availableToWithdraw")
                balances.append(
                    NormalizedBalance(
                        coin=item["coin"],
                        wallet_balance=wallet,
                        available_balance=wallet if available is None else available,
                        used_margin=decimal_field(item, "totalPositionIM", default="0"),
                        unrealized_pnl=decimal_field(item, "unrealisedPnl", default="0"),
                        total_equity=decimal_field(item, "equity", default="0"),
                    )
                )
        return balances

    def _get_positions(self, symbol: Optional[str]) -> List[NormalizedPosition]:
        result = self._request("GET", "/v5/position/list", {"category": CATEGORY, "symbol": symbol})
        positions = []
        for item in result.get("list", []):
            size = decimal_field(item, "size", default="0")
            if size == 0:
                continue
            side = PositionSide.LONG if item.get("side") == "Buy" else PositionSide.SHORT
            positions.append(
                NormalizedPosition(
                    symbol=item["symbol"],
                    coin=self.to_canonical_symbol(item["symbol"]),
                    side=side,
                    size=abs(size),
                    entry_price=decimal_field(item, "avgPrice", default="0"),
                    mark_price=decimal_field(item, "markPrice", default="0"),
                    leverage=decimal_field(item, "leverage", default="1"),
                    unrealized_pnl=decimal_field(item, "unrealisedPnl", default="0"),
                    liquidation_price=optional_decimal(item.get("liqPrice"), "liqPrice"),
                    position_value=decimal_field(item, "positionValue", default="0"),
                )
            )
        return positions

    # ------------------------
    # Orders
    # ------------------------
    def _create_order(
        self,
        symbol: str,
        side: Side,
        qty: Decimal,
        order_type: OrderType,
        price: Optional[Decimal],
        reduce_only: bool,
    ) -> NormalizedOrderResult:
        contracts = qty.to_integral_value(rounding=ROUND_DOWN)
        if contracts <= 0:
            raise ExchangeBusinessError(f"order qty {qty} is below one contract")
        params: Dict[str, Any] = {
            "category": CATEGORY,
            "symbol": symbol,
            "side": side.value,
            "orderType": order_type.value,
            "qty": format_decimal(contracts),
            "timeInForce": "GTC",
        }
        if price is not None:
            params["price"] = format_decimal(price)
        if reduce_only:
            params["reduceOnly"] = True
        result = self._request("POST", "/v5/order/create", params)
        return NormalizedOrderResult(
            order_id=str(result["orderId"]),
            client_order_id=result.get("orderLinkId") or None,
            symbol=symbol,
            side=side,
            order_type=order_type,
            price=price,
            quantity=contracts,
            status=OrderStatus.NEW,
            reduce_only=reduce_only,
            created_time=self._timestamp_ms(),
        )

    def _place_market_order(self, symbol, side, qty, reduce_only):
        return self._create_order(symbol, side, qty, OrderType.MARKET, None, reduce_only)

    def _place_limit_order(self, symbol, side, qty, price, reduce_only):
        return self._create_order(symbol, side, qty, OrderType.LIMIT, price, reduce_only)

    def _cancel_order(self, symbol: str, order_id: str) -> OrderStatus:
        self._request("POST", "/v5/order/cancel", {"category": CATEGORY, "symbol": symbol, "orderId": order_id})
        return OrderStatus.CANCELLED

    def _parse_order(self, item: Dict[str, Any]) -> NormalizedOrderResult:
        return NormalizedOrderResult(
            order_id=str(item["orderId"]),
            client_order_id=item.get("orderLinkId") or None,
            symbol=item["symbol"],
            side=Side.parse(item["side"]),
            order_type=OrderType.MARKET if item.get("orderType") == "Market" else OrderType.LIMIT,
            price=optional_decimal(item.get("price"), "price"),
            quantity=decimal_field(item, "qty"),
            status=self._map_status(item["orderStatus"]),
            reduce_only=bool(item.get("reduceOnly", False)),
            created_time=int(item["createdTime"]) if item.get("createdTime") else None,
        )

    def _get_order_history(self, symbol: Optional[str], limit: int) -> List[NormalizedOrderResult]:
        result = self._request("GET", "/v5/order/history", {"category": CATEGORY, "symbol": symbol, "limit": limit})
        return [self._parse_order(item) for item in result.get("list", [])]

    def _get_open_orders(self, symbol: Optional[str]) -> List[NormalizedOrderResult]:
        result = self._request("GET", "/v5/order/realtime", {"category": CATEGORY, "symbol": symbol})
        return [self._parse_order(item) for item in result.get("list", [])]

    # ------------------------
    # Market data
    # ------------------------
    def _ticker_row(self, symbol: str) -> Dict[str, Any]:
        result = self._request("GET", "/v5/market/tickers", {"category": CATEGORY, "symbol": symbol})
        rows = result.get("list", [])
        if not rows:
            raise MalformedResponseError(f"no ticker returned for {symbol}")
        return rows[0]

    def _get_funding_rate(self, symbol: str) -> FundingRate:
        row = self._ticker_row(symbol)
        next_time = row.get("nextFundingTime")
        return FundingRate(
            symbol=symbol,
            rate=decimal_field(row, "fundingRate"),
            next_funding_time=int(next_time) if next_time else None,
        )

    def _get_ticker(self, symbol: str) -> Ticker:
        row = self._ticker_row(symbol)
        next_time = row.get("nextFundingTime")
        return Ticker(
            symbol=symbol,
            last_price=decimal_field(row, "lastPrice"),
            mark_price=optional_decimal(row.get("markPrice"), "markPrice"),
            index_price=optional_decimal(row.get("indexPrice"), "indexPrice"),
            funding_rate=optional_decimal(row.get("fundingRate"), "fundingRate"),
            next_funding_time=int(next_time) if next_time else None,
            high_24h=optional_decimal(row.get("highPrice24h"), "highPrice24h"),
            low_24h=optional_decimal(row.get("lowPrice24h"), "lowPrice24h"),
            volume_24h=optional_decimal(row.get("volume24h"), "volume24h"),
            turnover_24h=optional_decimal(row.get("turnover24h"), "turnover24h"),
            price_change_pct=optional_decimal(row.get("price24hPcnt"), "price24hPcnt"),
        )

    def _set_leverage(self, symbol: str, leverage: int) -> int:
        params = {
            "category": CATEGORY,
            "symbol": symbol,
            "buyLeverage": str(leverage),
            "sellLeverage": str(leverage),
        }
        try:
            self._request("POST", "/v5/position/set-leverage", params)
        except ExchangeBusinessError as exc:
            if exc.code != LEVERAGE_NOT_MODIFIED:
                raise
        return leverage

    def _order_quantity(self, symbol: str, notional: Decimal, price: Decimal) -> Decimal:
        return to_decimal(notional, "notional").to_integral_value(rounding=ROUND_DOWN)
