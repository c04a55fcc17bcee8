"""
Binance USDS-M futures adapter.

Quantity unit: base asset (0.01 on BTCUSDT is 0.01 BTC), floored to the
symbol's LOT_SIZE step from exchangeInfo.
Native symbols look like BTCUSDT; collateral is USDT.

BinanceStyleClient holds the parsing shared with other venues that expose a
Binance-compatible /fapi surface (Aster).
"""

from abc import abstractmethod
from decimal import Decimal
from typing import Any, Dict, List, Optional
from urllib.parse import urlencode

from funding_trader.core.errors import (
    AuthError,
    ConfigurationError,
    ExchangeBusinessError,
    MalformedResponseError,
)
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
from funding_trader.utils.precision import decimal_field, format_decimal, optional_decimal

BINANCE_STATUS_MAP = {
    "NEW": OrderStatus.NEW,
    "PARTIALLY_FILLED": OrderStatus.PARTIALLY_FILLED,
    "FILLED": OrderStatus.FILLED,
    "CANCELED": OrderStatus.CANCELLED,
    "CANCELLED": OrderStatus.CANCELLED,
    "REJECTED": OrderStatus.REJECTED,
    "EXPIRED": OrderStatus.EXPIRED,
    "EXPIRED_IN_MATCH": OrderStatus.EXPIRED,
}

BINANCE_AUTH_CODES = {-1022, -2014, -2015, -1002}


class BinanceStyleClient(HttpExchangeClient):
    """Shared request parsing for Binance-compatible futures APIs."""

    status_map = BINANCE_STATUS_MAP
    auth_error_codes = BINANCE_AUTH_CODES

    paths: Dict[str, str] = {}

    def __init__(self, *args: Any, **kwargs: Any):
        super().__init__(*args, **kwargs)
        self._step_sizes: Dict[str, Decimal] = {}

    @abstractmethod
    def _signed_request(self, method: str, path: str, params: Optional[Dict[str, Any]] = None) -> Any:
        ...

    def _public_request(self, path: str, params: Optional[Dict[str, Any]] = None) -> Any:
        query = urlencode({k: v for k, v in (params or {}).items() if v is not None})
        return self._unwrap(self.transport.request("GET", path, query=query))

    def _unwrap(self, response: HttpResponse) -> Any:
        data = response.payload
        if isinstance(data, dict) and "code" in data and "msg" in data:
            code = int(data["code"])
            if code < 0 or response.status >= 400:
                if code in self.auth_error_codes:
                    raise AuthError(data["msg"], code=code)
                raise ExchangeBusinessError(data["msg"], code=code)
        if response.status in (401, 403):
            raise AuthError(f"HTTP {response.status}", code=response.status)
        if response.status >= 400:
            raise ExchangeBusinessError(f"HTTP {response.status}: {response.text[:200]}", code=response.status)
        if data is None:
            raise MalformedResponseError("empty response body")
        return data

    # ------------------------
    # Account
    # ------------------------
    def _get_wallet_balance(self, coin: Optional[str]) -> List[NormalizedBalance]:
        rows = self._signed_request("GET", self.paths["balance"])
        if not isinstance(rows, list):
            raise MalformedResponseError("balance response is not a list")
        balances = []
        for row in rows:
            if coin and row.get("asset") != coin:
                continue
            wallet = decimal_field(row, "balance")
            available = decimal_field(row, "availableBalance", default="0")
            unrealized = decimal_field(row, "crossUnPnl", default="0")
            balances.append(
                NormalizedBalance(
                    coin=row["asset"],
                    wallet_balance=wallet,
                    available_balance=available,
                    used_margin=max(wallet - available, Decimal("0")),
                    unrealized_pnl=unrealized,
                    total_equity=wallet + unrealized,
                )
            )
        return balances

    def _position_rows(self, symbol: Optional[str]) -> List[Dict[str, Any]]:
        params = {"symbol": symbol} if symbol else None
        rows = self._signed_request("GET", self.paths["positions"], params)
        if not isinstance(rows, list):
            raise MalformedResponseError("positionRisk response is not a list")
        return rows

    def _get_positions(self, symbol: Optional[str]) -> List[NormalizedPosition]:
        positions = []
        for row in self._position_rows(symbol):
            if symbol and row.get("symbol") != symbol:
                continue
            amount = decimal_field(row, "positionAmt", default="0")
            if amount == 0:
                continue
            liq = optional_decimal(row.get("liquidationPrice"), "liquidationPrice")
            positions.append(
                NormalizedPosition(
                    symbol=row["symbol"],
                    coin=self.to_canonical_symbol(row["symbol"]),
                    side=PositionSide.from_signed_size(amount),
                    size=abs(amount),
                    entry_price=decimal_field(row, "entryPrice", default="0"),
                    mark_price=decimal_field(row, "markPrice", default="0"),
                    leverage=decimal_field(row, "leverage", default="1"),
                    unrealized_pnl=decimal_field(row, "unRealizedProfit", default=row.get("unrealizedProfit", "0")),
                    liquidation_price=liq if liq else None,
                    position_value=abs(decimal_field(row, "notional", default="0")),
                )
            )
        return positions

    # ------------------------
    # Orders
    # ------------------------
    def _order_params(
        self,
        symbol: str,
        side: Side,
        qty: Decimal,
        order_type: OrderType,
        price: Optional[Decimal],
        reduce_only: bool,
    ) -> Dict[str, Any]:
        params: Dict[str, Any] = {
            "symbol": symbol,
            "side": side.value.upper(),
            "type": order_type.value.upper(),
            "quantity": format_decimal(qty),
        }
        if order_type is OrderType.LIMIT:
            params["timeInForce"] = "GTC"
            params["price"] = format_decimal(price)
        if reduce_only:
            params["reduceOnly"] = "true"
        return params

    def _create_order(self, symbol, side, qty, order_type, price, reduce_only) -> NormalizedOrderResult:
        params = self._order_params(symbol, side, qty, order_type, price, reduce_only)
        row = self._signed_request("POST", self.paths["order"], params)
        result = self._parse_order(row)
        if result.quantity == 0:
            result.quantity = qty
        result.reduce_only = reduce_only
        return result

    def _place_market_order(self, symbol, side, qty, reduce_only):
        return self._create_order(symbol, side, qty, OrderType.MARKET, None, reduce_only)

    def _place_limit_order(self, symbol, side, qty, price, reduce_only):
        return self._create_order(symbol, side, qty, OrderType.LIMIT, price, reduce_only)

    def _cancel_order(self, symbol: str, order_id: str) -> OrderStatus:
        row = self._signed_request("DELETE", self.paths["order"], {"symbol": symbol, "orderId": order_id})
        return self._map_status(row.get("status", "CANCELED"))

    def _parse_order(self, row: Dict[str, Any]) -> NormalizedOrderResult:
        price = optional_decimal(row.get("price"), "price")
        return NormalizedOrderResult(
            order_id=str(row["orderId"]),
            client_order_id=row.get("clientOrderId") or None,
            symbol=row["symbol"],
            side=Side.parse(row["side"]),
            order_type=OrderType.MARKET if str(row.get("type", "")).upper() == "MARKET" else OrderType.LIMIT,
            price=price if price else None,
            quantity=decimal_field(row, "origQty", default="0"),
            status=self._map_status(row.get("status", "NEW")),
            reduce_only=bool(row.get("reduceOnly", False)),
            created_time=row.get("updateTime") or row.get("time"),
        )

    def _get_open_orders(self, symbol: Optional[str]) -> List[NormalizedOrderResult]:
        params = {"symbol": symbol} if symbol else None
        rows = self._signed_request("GET", self.paths["open_orders"], params)
        return [self._parse_order(row) for row in rows]

    def _get_order_history(self, symbol: Optional[str], limit: int) -> List[NormalizedOrderResult]:
        if not symbol:
            raise ConfigurationError(f"{self.exchange_id} order history requires a symbol")
        rows = self._signed_request("GET", self.paths["all_orders"], {"symbol": symbol, "limit": limit})
        return [self._parse_order(row) for row in rows]

    # ------------------------
    # Market data
    # ------------------------
    def _premium_index(self, symbol: str) -> Dict[str, Any]:
        row = self._public_request(self.paths["premium_index"], {"symbol": symbol})
        if isinstance(row, list):
            row = row[0]
        return row

    def _get_funding_rate(self, symbol: str) -> FundingRate:
        row = self._premium_index(symbol)
        next_time = row.get("nextFundingTime")
        return FundingRate(
            symbol=symbol,
            rate=decimal_field(row, "lastFundingRate"),
            next_funding_time=int(next_time) if next_time else None,
        )

    def _get_ticker(self, symbol: str) -> Ticker:
        row = self._public_request(self.paths["ticker"], {"symbol": symbol})
        premium = self._premium_index(symbol)
        next_time = premium.get("nextFundingTime")
        return Ticker(
            symbol=symbol,
            last_price=decimal_field(row, "lastPrice"),
            mark_price=optional_decimal(premium.get("markPrice"), "markPrice"),
            index_price=optional_decimal(premium.get("indexPrice"), "indexPrice"),
            funding_rate=optional_decimal(premium.get("lastFundingRate"), "lastFundingRate"),
            next_funding_time=int(next_time) if next_time else None,
            high_24h=optional_decimal(row.get("highPrice"), "highPrice"),
            low_24h=optional_decimal(row.get("lowPrice"), "lowPrice"),
            volume_24h=optional_decimal(row.get("volume"), "volume"),
            turnover_24h=optional_decimal(row.get("quoteVolume"), "quoteVolume"),
            price_change_pct=optional_decimal(row.get("priceChangePercent"), "priceChangePercent"),
        )

    def _set_leverage(self, symbol: str, leverage: int) -> int:
        row = self._signed_request("POST", self.paths["leverage"], {"symbol": symbol, "leverage": leverage})
        return int(row.get("leverage", leverage))

    def _quantity_step(self, symbol: str) -> Decimal:
        if symbol in self._step_sizes:
            return self._step_sizes[symbol]
        info = self._public_request(self.paths["exchange_info"])
        for entry in info.get("symbols", []):
            if entry.get("symbol") != symbol:
                continue
            step = None
            for flt in entry.get("filters", []):
                if flt.get("filterType") == "LOT_SIZE":
                    step = decimal_field(flt, "stepSize")
            if step is None:
                step = Decimal(1).scaleb(-int(entry.get("quantityPrecision", 3)))
            self._step_sizes[symbol] = step
            return step
        raise MalformedResponseError(f"{symbol} not listed in exchangeInfo")


class BinanceClient(BinanceStyleClient):
    exchange_id = "binance"
    margin_type = MarginType.LINEAR
    settle_coin = "USDT"
    quantity_unit = "base asset"
    native_symbol_template = "{coin}USDT"
    mainnet_url = "https://fapi.binance.com"
    testnet_url = "https://testnet.binancefuture.com"
    recv_window = 5000

    paths = {
        "balance": "/fapi/v3/balance",
        "positions": "/fapi/v3/positionRisk",
        "order": "/fapi/v1/order",
        "open_orders": "/fapi/v1/openOrders",
        "all_orders": "/fapi/v1/allOrders",
        "premium_index": "/fapi/v1/premiumIndex",
        "ticker": "/fapi/v1/ticker/24hr",
        "leverage": "/fapi/v1/leverage",
        "exchange_info": "/fapi/v1/exchangeInfo",
    }

    def generate_signature(self, query_string: str) -> str:
        """HMAC-SHA256 hex over the query string (timestamp and recvWindow already appended)."""
        return hmac_sha256_hex(self.credentials.api_secret, query_string)

    def build_signed_query(self, params: Dict[str, Any], timestamp: int) -> str:
        items = [(k, str(v)) for k, v in params.items() if v is not None]
        items.append(("timestamp", str(timestamp)))
        items.append(("recvWindow", str(self.recv_window)))
        query = urlencode(items)
        return f"{query}&signature={self.generate_signature(query)}"

    def _signed_request(self, method: str, path: str, params: Optional[Dict[str, Any]] = None) -> Any:
        signed = self.build_signed_query(params or {}, self._timestamp_ms())
        headers = {"X-MBX-APIKEY": self.credentials.api_key}
        if method == "POST":
            headers["Content-Type"] = "application/x-www-form-urlencoded"
            response = self.transport.request(method, path, body=signed, headers=headers)
        else:
            response = self.transport.request(method, path, query=signed, headers=headers)
        return self._unwrap(response)
