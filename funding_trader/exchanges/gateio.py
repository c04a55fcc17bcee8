"""
Gate.io v4 adapter (USDT-settled perpetual futures).

Quantity unit: contracts, passed as a signed integer (positive buys,
negative sells). Each contract is worth quanto_multiplier of the base coin.
Native symbols look like BTC_USDT.
"""

import json
import time
from decimal import ROUND_DOWN, Decimal
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
from funding_trader.exchanges.signing import hmac_sha512_hex, sha512_hex
from funding_trader.exchanges.transport import HttpResponse
from funding_trader.utils.precision import decimal_field, format_decimal, optional_decimal

API_PREFIX = "/api/v4"
SETTLE = "usdt"
AUTH_LABELS = {"INVALID_KEY", "INVALID_SIGNATURE", "MISSING_REQUIRED_HEADER", "REQUEST_EXPIRED", "FORBIDDEN", "INVALID_CREDENTIALS"}

FINISH_AS_STATUS = {
    "filled": OrderStatus.FILLED,
    "cancelled": OrderStatus.CANCELLED,
    "ioc": OrderStatus.CANCELLED,
    "reduce_only": OrderStatus.CANCELLED,
    "position_closed": OrderStatus.CANCELLED,
    "stp": OrderStatus.CANCELLED,
    "liquidated": OrderStatus.REJECTED,
    "auto_deleveraged": OrderStatus.REJECTED,
}


class GateioClient(HttpExchangeClient):
    exchange_id = "gateio"
    margin_type = MarginType.LINEAR
    settle_coin = "USDT"
    quantity_unit = "contracts (quanto_multiplier base coin each, signed)"
    native_symbol_template = "{coin}_USDT"
    default_quantity_step = Decimal("1")
    mainnet_url = "https://api.gateio.ws/api/v4"
    testnet_url = "https://fx-api-testnet.gateio.ws/api/v4"

    status_map = {
        "open": OrderStatus.NEW,
        "finished": OrderStatus.FILLED,
        "cancelled": OrderStatus.CANCELLED,
        "liquidated": OrderStatus.REJECTED,
    }

    def __init__(self, *args: Any, **kwargs: Any):
        super().__init__(*args, **kwargs)
        self._multipliers: Dict[str, Decimal] = {}

    def generate_signature(self, method: str, url_path: str, query: str, body: str, timestamp: str) -> str:
        """HMAC-SHA512 hex over METHOD\\n/api/v4path\\nquery\\nsha512(body)\\ntimestamp."""
        sign_str = "\n".join([method.upper(), url_path, query, sha512_hex(body or ""), timestamp])
        return hmac_sha512_hex(self.credentials.api_secret, sign_str)

    def _request(
        self,
        method: str,
        endpoint: str,
        params: Optional[Dict[str, Any]] = None,
        body: Optional[Dict[str, Any]] = None,
        signed: bool = True,
    ) -> Any:
        query = urlencode([(k, str(v)) for k, v in (params or {}).items() if v is not None])
        body_str = json.dumps(body, separators=(",", ":")) if body is not None else ""
        headers = {"Accept": "application/json", "Content-Type": "application/json"}
        if signed:
            timestamp = str(int(time.time()))
            headers.update(
                {
                    "KEY": self.credentials.api_key,
                    "SIGN": self.generate_signature(method, f"{API_PREFIX}{endpoint}", query, body_str, timestamp),
                    "Timestamp": timestamp,
                }
            )
        response = self.transport.request(method, endpoint, query=query, body=body_str or None, headers=headers)
        return self._unwrap(response)

    def _unwrap(self, response: HttpResponse) -> Any:
        data = response.payload
        if response.status >= 400:
            label = data.get("label", "") if isinstance(data, dict) else ""
            message = data.get("message", "") if isinstance(data, dict) else response.text[:200]
            text = f"{label}: {message}" if label else message or f"HTTP {response.status}"
            if label in AUTH_LABELS or response.status == 401:
                raise AuthError(text, code=response.status)
            raise ExchangeBusinessError(text, code=response.status)
        if data is None:
            raise MalformedResponseError("empty response body")
        return data

    # ------------------------
    # Account
    # ------------------------
    def _get_wallet_balance(self, coin: Optional[str]) -> List[NormalizedBalance]:
        row = self._request("GET", f"/futures/{SETTLE}/accounts")
        currency = str(row.get("currency") or "USDT").upper()
        if coin and coin.upper() != currency:
            return []
        total = decimal_field(row, "total")
        unrealized = decimal_field(row, "unrealised_pnl", default="0")
        used = decimal_field(row, "position_margin", default="0") + decimal_field(row, "order_margin", default="0")
        return [
            NormalizedBalance(
                coin=currency,
                wallet_balance=total,
                available_balance=decimal_field(row, "available", default="0"),
                used_margin=used,
                unrealized_pnl=unrealized,
                total_equity=total + unrealized,
            )
        ]

    def _get_positions(self, symbol: Optional[str]) -> List[NormalizedPosition]:
        rows = self._request("GET", f"/futures/{SETTLE}/positions")
        positions = []
        for row in rows:
            if symbol and row.get("contract") != symbol:
                continue
            size = decimal_field(row, "size", default="0")
            if size == 0:
                continue
            leverage = decimal_field(row, "leverage", default="0")
            liq = optional_decimal(row.get("liq_price"), "liq_price")
            positions.append(
                NormalizedPosition(
                    symbol=row["contract"],
                    coin=self.to_canonical_symbol(row["contract"]),
                    side=PositionSide.from_signed_size(size),
                    size=abs(size),
                    entry_price=decimal_field(row, "entry_price", default="0"),
                    mark_price=decimal_field(row, "mark_price", default="0"),
                    # leverage 0 means cross margin
                    leverage=leverage if leverage > 0 else decimal_field(row, "cross_leverage_limit", default="1"),
                    unrealized_pnl=decimal_field(row, "unrealised_pnl", default="0"),
                    liquidation_price=liq if liq else None,
                    position_value=abs(decimal_field(row, "value", default="0")),
                )
            )
        return positions

    # ------------------------
    # Orders
    # ------------------------
    def _create_order(self, symbol, side, qty, order_type, price, reduce_only) -> NormalizedOrderResult:
        contracts = int(qty.to_integral_value(rounding=ROUND_DOWN))
        if contracts <= 0:
            raise ExchangeBusinessError(f"order qty {qty} is below one contract")
        body: Dict[str, Any] = {
            "contract": symbol,
            "size": contracts if side is Side.BUY else -contracts,
            "price": "0" if order_type is OrderType.MARKET else format_decimal(price),
            "tif": "ioc" if order_type is OrderType.MARKET else "gtc",
        }
        if reduce_only:
            body["reduce_only"] = True
        row = self._request("POST", f"/futures/{SETTLE}/orders", body=body)
        result = self._parse_order(row)
        result.order_type = order_type
        return result

    def _place_market_order(self, symbol, side, qty, reduce_only):
        return self._create_order(symbol, side, qty, OrderType.MARKET, None, reduce_only)

    def _place_limit_order(self, symbol, side, qty, price, reduce_only):
        return self._create_order(symbol, side, qty, OrderType.LIMIT, price, reduce_only)

    def _cancel_order(self, symbol: str, order_id: str) -> OrderStatus:
        row = self._request("DELETE", f"/futures/{SETTLE}/orders/{quote(order_id, safe='')}")
        status = self._order_status(row)
        return OrderStatus.CANCELLED if status is OrderStatus.FILLED and row.get("finish_as") != "filled" else status

    def _order_status(self, row: Dict[str, Any]) -> OrderStatus:
        status = row.get("status", "open")
        if status == "finished" and row.get("finish_as"):
            finish_as = row["finish_as"]
            if finish_as in FINISH_AS_STATUS:
                left = decimal_field(row, "left", default="0")
                if finish_as == "ioc" and left != abs(decimal_field(row, "size", default="0")):
                    return OrderStatus.PARTIALLY_FILLED
                return FINISH_AS_STATUS[finish_as]
        return self._map_status(status)

    def _parse_order(self, row: Dict[str, Any]) -> NormalizedOrderResult:
        size = decimal_field(row, "size")
        price = optional_decimal(row.get("fill_price"), "fill_price") or optional_decimal(row.get("price"), "price")
        created = row.get("create_time")
        return NormalizedOrderResult(
            order_id=str(row["id"]),
            client_order_id=row.get("text") or None,
            symbol=row["contract"],
            side=Side.BUY if size > 0 else Side.SELL,
            order_type=OrderType.MARKET if row.get("tif") == "ioc" and str(row.get("price")) in ("0", "") else OrderType.LIMIT,
            price=price if price else None,
            quantity=abs(size),
            status=self._order_status(row),
            reduce_only=bool(row.get("is_reduce_only", False)),
            created_time=int(Decimal(str(created)) * 1000) if created else None,
        )

    def _get_open_orders(self, symbol: Optional[str]) -> List[NormalizedOrderResult]:
        rows = self._request("GET", f"/futures/{SETTLE}/orders", {"contract": symbol, "status": "open"})
        return [self._parse_order(row) for row in rows]

    def _get_order_history(self, symbol: Optional[str], limit: int) -> List[NormalizedOrderResult]:
        rows = self._request(
            "GET",
            f"/futures/{SETTLE}/orders",
            {"contract": symbol, "status": "finished", "limit": limit},
        )
        return [self._parse_order(row) for row in rows]

    # ------------------------
    # Market data
    # ------------------------
    def _contract(self, symbol: str) -> Dict[str, Any]:
        return self._request("GET", f"/futures/{SETTLE}/contracts/{symbol}", signed=False)

    def _get_funding_rate(self, symbol: str) -> FundingRate:
        row = self._contract(symbol)
        next_apply = row.get("funding_next_apply")
        return FundingRate(
            symbol=symbol,
            rate=decimal_field(row, "funding_rate"),
            next_funding_time=int(Decimal(str(next_apply)) * 1000) if next_apply else None,
        )

    def _get_ticker(self, symbol: str) -> Ticker:
        rows = self._request("GET", f"/futures/{SETTLE}/tickers", {"contract": symbol}, signed=False)
        if not rows:
            raise MalformedResponseError(f"no ticker for {symbol}")
        row = rows[0]
        return Ticker(
            symbol=symbol,
            last_price=decimal_field(row, "last"),
            mark_price=optional_decimal(row.get("mark_price"), "mark_price"),
            index_price=optional_decimal(row.get("index_price"), "index_price"),
            funding_rate=optional_decimal(row.get("funding_rate"), "funding_rate"),
            high_24h=optional_decimal(row.get("high_24h"), "high_24h"),
            low_24h=optional_decimal(row.get("low_24h"), "low_24h"),
            volume_24h=optional_decimal(row.get("volume_24h_base"), "volume_24h_base"),
            turnover_24h=optional_decimal(row.get("volume_24h_quote"), "volume_24h_quote"),
            price_change_pct=optional_decimal(row.get("change_percentage"), "change_percentage"),
        )

    def _set_leverage(self, symbol: str, leverage: int) -> int:
        row = self._request("POST", f"/futures/{SETTLE}/positions/{symbol}/leverage", {"leverage": leverage})
        value = row.get("leverage") if isinstance(row, dict) else None
        return int(Decimal(str(value))) if value not in (None, "", "0") else leverage

    # ------------------------
    # Sizing
    # ------------------------
    def _multiplier(self, symbol: str) -> Decimal:
        if symbol not in self._multipliers:
            self._multipliers[symbol] = decimal_field(self._contract(symbol), "quanto_multiplier")
        return self._multipliers[symbol]

    def _order_quantity(self, symbol: str, notional: Decimal, price: Decimal) -> Decimal:
        if price <= 0:
            raise MalformedResponseError(f"price must be positive, got {price}")
        return (notional / price / self._multiplier(symbol)).to_integral_value(rounding=ROUND_DOWN)
