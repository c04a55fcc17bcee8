"""
EdgeX adapter (StarkEx L2 perpetual DEX).

EdgeX is a DEX but its REST API still authenticates with an HMAC:
hex HMAC-SHA256 over timestamp(ms) + METHOD + path?query + body.
The wallet address identifies the account and is not used for signing.

Quantity unit: base asset, stepped by the market's stepSize.
Native symbols look like BTC-USDC-PERP; collateral is USDC.
"""

import json
from decimal import Decimal
from typing import Any, Dict, List, Optional
from urllib.parse import quote, urlencode

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
from funding_trader.utils.precision import format_decimal, optional_decimal, to_decimal

AUTH_HTTP_STATUS = {401, 403}


def _first(row: Dict[str, Any], *keys: str, default: Any = None) -> Any:
    """First present, non-empty value among keys (EdgeX field names vary by endpoint)."""
    for key in keys:
        value = row.get(key)
        if value not in (None, ""):
            return value
    return default


class EdgexClient(HttpExchangeClient):
    exchange_id = "edgex"
    margin_type = MarginType.LINEAR
    settle_coin = "USDC"
    quantity_unit = "base asset"
    native_symbol_template = "{coin}-USDC-PERP"
    mainnet_url = "https://api.edgex.exchange"
    testnet_url = "https://testnet-api.edgex.exchange"

    status_map = {
        "NEW": OrderStatus.NEW,
        "OPEN": OrderStatus.NEW,
        "PENDING": OrderStatus.NEW,
        "UNTRIGGERED": OrderStatus.NEW,
        "PARTIALLY_FILLED": OrderStatus.PARTIALLY_FILLED,
        "FILLED": OrderStatus.FILLED,
        "CANCELED": OrderStatus.CANCELLED,
        "CANCELLED": OrderStatus.CANCELLED,
        "REJECTED": OrderStatus.REJECTED,
        "EXPIRED": OrderStatus.EXPIRED,
    }

    def __init__(self, *args: Any, **kwargs: Any):
        super().__init__(*args, **kwargs)
        self._steps: Dict[str, Decimal] = {}

    def generate_signature(self, timestamp: str, method: str, path_with_query: str, body: str = "") -> str:
        message = f"{timestamp}{method.upper()}{path_with_query}{body}"
        return hmac_sha256_hex(self.credentials.api_secret, message)

    def _request(
        self,
        method: str,
        path: str,
        params: Optional[Dict[str, Any]] = None,
        body: Optional[Dict[str, Any]] = None,
        signed: bool = True,
    ) -> Any:
        query = urlencode([(k, str(v)) for k, v in (params or {}).items() if v is not None])
        body_str = json.dumps(body, separators=(",", ":")) if body is not None else ""
        headers = {"Content-Type": "application/json"}
        if signed:
            timestamp = str(self._timestamp_ms())
            path_with_query = f"{path}?{query}" if query else path
            headers.update(
                {
                    "X-EDGEX-API-KEY": self.credentials.api_key,
                    "X-EDGEX-TIMESTAMP": timestamp,
                    "X-EDGEX-SIGNATURE": self.generate_signature(timestamp, method, path_with_query, body_str),
                }
            )
        response = self.transport.request(method, path, query=query, body=body_str or None, headers=headers)
        return self._unwrap(response)

    def _unwrap(self, response: HttpResponse) -> Any:
        data = response.payload
        if response.status in AUTH_HTTP_STATUS:
            message = data.get("message") if isinstance(data, dict) else None
            raise AuthError(message or f"HTTP {response.status}", code=response.status)
        if not isinstance(data, dict) or "code" not in data:
            raise MalformedResponseError(f"unexpected EdgeX envelope (HTTP {response.status})")
        code = data["code"]
        if str(code) not in ("0", "SUCCESS"):
            message = data.get("message") or data.get("msg") or "request failed"
            numeric = int(code) if str(code).lstrip("-").isdigit() else response.status
            raise ExchangeBusinessError(message, code=numeric or -4)
        return data.get("data")

    # ------------------------
    # Account
    # ------------------------
    def _get_wallet_balance(self, coin: Optional[str]) -> List[NormalizedBalance]:
        account = self._request("GET", "/api/v1/private/account")
        if not isinstance(account, dict):
            raise MalformedResponseError("account response carried no data")
        if coin and coin.upper() != self.settle_coin:
            return []
        equity = to_decimal(_first(account, "equity", "totalEquity"), "equity")
        return [
            NormalizedBalance(
                coin=self.settle_coin,
                wallet_balance=equity,
                available_balance=to_decimal(_first(account, "availableBalance", "freeCollateral", default="0"), "availableBalance"),
                used_margin=to_decimal(_first(account, "usedMargin", "initialMargin", default="0"), "usedMargin"),
                unrealized_pnl=to_decimal(_first(account, "unrealizedPnl", "unrealisedPnl", default="0"), "unrealizedPnl"),
                total_equity=equity,
            )
        ]

    def _get_positions(self, symbol: Optional[str]) -> List[NormalizedPosition]:
        data = self._request("GET", "/api/v1/private/positions", {"symbol": symbol})
        if not data:
            return []
        rows = data if isinstance(data, list) else [data]
        positions = []
        for row in rows:
            size = to_decimal(_first(row, "size", "positionSize", default="0"), "size")
            if size == 0:
                continue
            native = _first(row, "symbol", "market")
            side_field = str(row.get("side", "")).upper()
            if side_field in ("LONG", "BUY"):
                side = PositionSide.LONG
            elif side_field in ("SHORT", "SELL"):
                side = PositionSide.SHORT
            else:
                side = PositionSide.from_signed_size(size)
            entry = to_decimal(_first(row, "entryPrice", "avgEntryPrice", default="0"), "entryPrice")
            liq = optional_decimal(_first(row, "liquidationPrice", "liqPrice"), "liquidationPrice")
            positions.append(
                NormalizedPosition(
                    symbol=native,
                    coin=self.to_canonical_symbol(native),
                    side=side,
                    size=abs(size),
                    entry_price=entry,
                    mark_price=to_decimal(_first(row, "markPrice", "indexPrice", default="0"), "markPrice"),
                    leverage=to_decimal(_first(row, "leverage", default="1"), "leverage"),
                    unrealized_pnl=to_decimal(_first(row, "unrealizedPnl", "unrealisedPnl", default="0"), "unrealizedPnl"),
                    liquidation_price=liq if liq else None,
                    position_value=abs(size) * entry,
                )
            )
        return positions

    # ------------------------
    # Orders
    # ------------------------
    def _create_order(self, symbol, side, qty, order_type, price, reduce_only) -> NormalizedOrderResult:
        body: Dict[str, Any] = {
            "symbol": symbol,
            "side": side.value.upper(),
            "type": order_type.value.upper(),
            "size": format_decimal(qty),
            "reduceOnly": reduce_only,
        }
        if price is not None:
            body["price"] = format_decimal(price)
            body["timeInForce"] = "GTC"
        order = self._request("POST", "/api/v1/private/orders", body=body) or {}
        order_id = _first(order, "orderId", "id")
        if order_id is None:
            raise MalformedResponseError("order response carried no order id")
        status = _first(order, "status", default="NEW")
        return NormalizedOrderResult(
            order_id=str(order_id),
            client_order_id=_first(order, "clientOrderId"),
            symbol=symbol,
            side=side,
            order_type=order_type,
            price=price,
            quantity=qty,
            status=self._map_status(status),
            reduce_only=reduce_only,
            created_time=_first(order, "createdAt", "createdTime", default=self._timestamp_ms()),
        )

    def _place_market_order(self, symbol, side, qty, reduce_only):
        return self._create_order(symbol, side, qty, OrderType.MARKET, None, reduce_only)

    def _place_limit_order(self, symbol, side, qty, price, reduce_only):
        return self._create_order(symbol, side, qty, OrderType.LIMIT, price, reduce_only)

    def _cancel_order(self, symbol: str, order_id: str) -> OrderStatus:
        self._request("DELETE", f"/api/v1/private/orders/{quote(order_id, safe='')}")
        return OrderStatus.CANCELLED

    def _parse_order(self, row: Dict[str, Any]) -> NormalizedOrderResult:
        price = optional_decimal(_first(row, "avgPrice", "price"), "price")
        native = _first(row, "symbol", "market")
        return NormalizedOrderResult(
            order_id=str(_first(row, "orderId", "id")),
            client_order_id=_first(row, "clientOrderId"),
            symbol=native,
            side=Side.parse(row["side"]),
            order_type=OrderType.MARKET if str(row.get("type", "")).upper() == "MARKET" else OrderType.LIMIT,
            price=price if price else None,
            quantity=to_decimal(_first(row, "size", "quantity", default="0"), "size"),
            status=self._map_status(_first(row, "status", default="NEW")),
            reduce_only=bool(row.get("reduceOnly", False)),
            created_time=_first(row, "createdAt", "createdTime"),
        )

    def _get_open_orders(self, symbol: Optional[str]) -> List[NormalizedOrderResult]:
        rows = self._request("GET", "/api/v1/private/orders", {"symbol": symbol}) or []
        return [self._parse_order(row) for row in rows]

    def _get_order_history(self, symbol: Optional[str], limit: int) -> List[NormalizedOrderResult]:
        rows = self._request("GET", "/api/v1/private/orders/history", {"symbol": symbol, "limit": limit}) or []
        return [self._parse_order(row) for row in rows]

    # ------------------------
    # Market data
    # ------------------------
    def _get_funding_rate(self, symbol: str) -> FundingRate:
        row = self._request("GET", "/api/v1/public/funding-rate", {"symbol": symbol}, signed=False)
        if not isinstance(row, dict):
            raise MalformedResponseError(f"no funding rate for {symbol}")
        next_time = row.get("nextFundingTime")
        return FundingRate(
            symbol=symbol,
            rate=to_decimal(_first(row, "fundingRate", "rate"), "fundingRate"),
            next_funding_time=int(next_time) if next_time else None,
        )

    def _get_ticker(self, symbol: str) -> Ticker:
        row = self._request("GET", "/api/v1/public/ticker", {"symbol": symbol}, signed=False)
        if not isinstance(row, dict):
            raise MalformedResponseError(f"no ticker for {symbol}")
        next_time = row.get("nextFundingTime")
        return Ticker(
            symbol=symbol,
            last_price=to_decimal(_first(row, "lastPrice", "price"), "lastPrice"),
            mark_price=optional_decimal(row.get("markPrice"), "markPrice"),
            index_price=optional_decimal(row.get("indexPrice"), "indexPrice"),
            funding_rate=optional_decimal(row.get("fundingRate"), "fundingRate"),
            next_funding_time=int(next_time) if next_time else None,
            high_24h=optional_decimal(_first(row, "high24h", "highPrice"), "high24h"),
            low_24h=optional_decimal(_first(row, "low24h", "lowPrice"), "low24h"),
            volume_24h=optional_decimal(_first(row, "volume24h", "volume"), "volume24h"),
            turnover_24h=optional_decimal(_first(row, "turnover24h", "quoteVolume"), "turnover24h"),
            price_change_pct=optional_decimal(_first(row, "priceChange24h", "priceChangePercent"), "priceChange24h"),
        )

    def _set_leverage(self, symbol: str, leverage: int) -> int:
        self._request("POST", "/api/v1/private/leverage", body={"symbol": symbol, "leverage": leverage})
        return leverage

    def _quantity_step(self, symbol: str) -> Decimal:
        if symbol not in self._steps:
            markets = self._request("GET", "/api/v1/public/markets", signed=False) or []
            step = self.default_quantity_step
            for market in markets:
                if _first(market, "symbol", "market") == symbol:
                    raw = _first(market, "stepSize", "sizeIncrement")
                    if raw is not None:
                        step = to_decimal(raw, "stepSize")
                    break
            self._steps[symbol] = step
        return self._steps[symbol]
