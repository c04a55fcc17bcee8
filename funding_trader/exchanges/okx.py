"""
OKX v5 adapter (USDT-margined SWAP, cross margin, net position mode).

Quantity unit: contracts. Each contract is worth ctVal of the base coin
(0.01 BTC on BTC-USDT-SWAP), and sizes step by lotSz; both come from
/public/instruments.
Native symbols look like BTC-USDT-SWAP. The passphrase chosen when the
key was created travels in its own header. Testnet uses the same host
with the x-simulated-trading header.
"""

import json
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Dict, List, Optional, Tuple
from urllib.parse import urlencode

from funding_trader.core.errors import (
    AuthError,
    ConfigurationError,
    ExchangeBusinessError,
    MalformedResponseError,
)
from funding_trader.exchanges.base import HttpExchangeClient
from funding_trader.exchanges.models import (
    Credentials,
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
from funding_trader.exchanges.signing import hmac_sha256_base64
from funding_trader.exchanges.transport import DEFAULT_TIMEOUT_SEC, HttpResponse, RestTransport
from funding_trader.utils.precision import decimal_field, floor_to_step, format_decimal, optional_decimal

API_PREFIX = "/api/v5"
INST_TYPE = "SWAP"
MARGIN_MODE = "cross"
AUTH_ERROR_CODES = {50100, 50101, 50102, 50103, 50104, 50105, 50111, 50113, 50114}


def iso_timestamp(now: Optional[datetime] = None) -> str:
    """2020-12-08T09:08:57.715Z"""
    now = now or datetime.now(timezone.utc)
    return now.isoformat(timespec="milliseconds").replace("+00:00", "Z")


class OkxClient(HttpExchangeClient):
    exchange_id = "okx"
    margin_type = MarginType.LINEAR
    settle_coin = "USDT"
    quantity_unit = "contracts (ctVal base coin each)"
    native_symbol_template = "{coin}-USDT-SWAP"
    default_quantity_step = Decimal("1")
    mainnet_url = "https://www.okx.com"
    testnet_url = "https://www.okx.com"

    status_map = {
        "live": OrderStatus.NEW,
        "partially_filled": OrderStatus.PARTIALLY_FILLED,
        "filled": OrderStatus.FILLED,
        "canceled": OrderStatus.CANCELLED,
        "mmp_canceled": OrderStatus.CANCELLED,
    }

    def __init__(
        self,
        credentials: Credentials,
        timeout: float = DEFAULT_TIMEOUT_SEC,
        transport: Optional[RestTransport] = None,
    ):
        if not credentials.passphrase:
            raise ConfigurationError("okx requires an API passphrase")
        super().__init__(credentials, timeout, transport)
        self._instruments: Dict[str, Tuple[Decimal, Decimal]] = {}

    def generate_signature(self, timestamp: str, method: str, request_path: str, body: str = "") -> str:
        """Base64 HMAC-SHA256 over timestamp + METHOD + /api/v5 path (with ?query) + body."""
        prehash = f"{timestamp}{method.upper()}{request_path}{body}"
        return hmac_sha256_base64(self.credentials.api_secret, prehash)

    def _private(self, method: str, endpoint: str, params: Optional[Dict[str, Any]] = None) -> List[Any]:
        params = {k: v for k, v in (params or {}).items() if v is not None}
        path = f"{API_PREFIX}{endpoint}"
        query, body = "", ""
        if method == "GET" and params:
            query = urlencode([(k, str(v)) for k, v in params.items()])
        elif method == "POST":
            body = json.dumps(params, separators=(",", ":"))
        request_path = f"{path}?{query}" if query else path
        timestamp = iso_timestamp()
        headers = {
            "OK-ACCESS-KEY": self.credentials.api_key,
            "OK-ACCESS-SIGN": self.generate_signature(timestamp, method, request_path, body),
            "OK-ACCESS-TIMESTAMP": timestamp,
            "OK-ACCESS-PASSPHRASE": self.credentials.passphrase or "",
            "Content-Type": "application/json",
        }
        if self.testnet:
            headers["x-simulated-trading"] = "1"
        response = self.transport.request(method, path, query=query, body=body or None, headers=headers)
        return self._unwrap(response)

    def _public(self, endpoint: str, params: Dict[str, Any]) -> List[Any]:
        query = urlencode([(k, str(v)) for k, v in params.items() if v is not None])
        headers = {"x-simulated-trading": "1"} if self.testnet else None
        return self._unwrap(self.transport.request("GET", f"{API_PREFIX}{endpoint}", query=query, headers=headers))

    def _unwrap(self, response: HttpResponse) -> List[Any]:
        data = response.payload
        if not isinstance(data, dict) or "code" not in data:
            if response.status in (401, 403):
                raise AuthError(f"HTTP {response.status}", code=response.status)
            raise MalformedResponseError(f"unexpected OKX envelope (HTTP {response.status})")
        code = int(data["code"])
        rows = data.get("data") or []
        if code == 0:
            return rows
        message = data.get("msg") or ""
        # Order endpoints report the real reason per row
        if rows and isinstance(rows[0], dict) and rows[0].get("sCode") not in (None, "", "0"):
            code = int(rows[0]["sCode"])
            message = rows[0].get("sMsg") or message
        if code in AUTH_ERROR_CODES:
            raise AuthError(message or "authentication failed", code=code)
        raise ExchangeBusinessError(message or f"OKX error {code}", code=code)

    # ------------------------
    # Account
    # ------------------------
    def _get_wallet_balance(self, coin: Optional[str]) -> List[NormalizedBalance]:
        rows = self._private("GET", "/account/balance", {"ccy": coin})
        balances = []
        for account in rows:
            for item in account.get("details", []):
                balances.append(
                    NormalizedBalance(
                        coin=item["ccy"],
                        wallet_balance=decimal_field(item, "cashBal"),
                        available_balance=decimal_field(item, "availBal", default="0"),
                        used_margin=decimal_field(item, "frozenBal", default="0"),
                        unrealized_pnl=decimal_field(item, "upl", default="0"),
                        total_equity=decimal_field(item, "eq", default="0"),
                    )
                )
        return balances

    def _get_positions(self, symbol: Optional[str]) -> List[NormalizedPosition]:
        rows = self._private("GET", "/account/positions", {"instType": INST_TYPE, "instId": symbol})
        positions = []
        for item in rows:
            pos = decimal_field(item, "pos", default="0")
            if pos == 0:
                continue
            pos_side = item.get("posSide")
            if pos_side == "long":
                side = PositionSide.LONG
            elif pos_side == "short":
                side = PositionSide.SHORT
            else:
                side = PositionSide.from_signed_size(pos)
            positions.append(
                NormalizedPosition(
                    symbol=item["instId"],
                    coin=self.to_canonical_symbol(item["instId"]),
                    side=side,
                    size=abs(pos),
                    entry_price=decimal_field(item, "avgPx", default="0"),
                    mark_price=decimal_field(item, "markPx", default="0"),
                    leverage=decimal_field(item, "lever", default="1"),
                    unrealized_pnl=decimal_field(item, "upl", default="0"),
                    liquidation_price=optional_decimal(item.get("liqPx"), "liqPx"),
                    position_value=abs(decimal_field(item, "notionalUsd", default="0")),
                )
            )
        return positions

    # ------------------------
    # Orders
    # ------------------------
    def _create_order(self, symbol, side, qty, order_type, price, reduce_only) -> NormalizedOrderResult:
        params: Dict[str, Any] = {
            "instId": symbol,
            "tdMode": MARGIN_MODE,
            "side": side.value.lower(),
            "ordType": order_type.value.lower(),
            "sz": format_decimal(qty),
        }
        if price is not None:
            params["px"] = format_decimal(price)
        if reduce_only:
            params["reduceOnly"] = True
        rows = self._private("POST", "/trade/order", params)
        if not rows:
            raise MalformedResponseError("order response carried no data")
        row = rows[0]
        return NormalizedOrderResult(
            order_id=str(row["ordId"]),
            client_order_id=row.get("clOrdId") or None,
            symbol=symbol,
            side=side,
            order_type=order_type,
            price=price,
            quantity=qty,
            status=OrderStatus.NEW,
            reduce_only=reduce_only,
            created_time=int(row["ts"]) if row.get("ts") else self._timestamp_ms(),
        )

    def _place_market_order(self, symbol, side, qty, reduce_only):
        return self._create_order(symbol, side, qty, OrderType.MARKET, None, reduce_only)

    def _place_limit_order(self, symbol, side, qty, price, reduce_only):
        return self._create_order(symbol, side, qty, OrderType.LIMIT, price, reduce_only)

    def _close_position(self, position: NormalizedPosition) -> NormalizedOrderResult:
        params = {
            "instId": position.symbol,
            "mgnMode": MARGIN_MODE,
            "posSide": "net",
            "autoCxl": True,
        }
        rows = self._private("POST", "/trade/close-position", params)
        row = rows[0] if rows else {}
        return NormalizedOrderResult(
            order_id=row.get("clOrdId") or "",
            client_order_id=row.get("clOrdId") or None,
            symbol=position.symbol,
            side=position.side.closing_side,
            order_type=OrderType.MARKET,
            price=None,
            quantity=position.size,
            status=OrderStatus.NEW,
            reduce_only=True,
            created_time=self._timestamp_ms(),
        )

    def _cancel_order(self, symbol: str, order_id: str) -> OrderStatus:
        self._private("POST", "/trade/cancel-order", {"instId": symbol, "ordId": order_id})
        return OrderStatus.CANCELLED

    def _parse_order(self, row: Dict[str, Any]) -> NormalizedOrderResult:
        price = optional_decimal(row.get("avgPx"), "avgPx") or optional_decimal(row.get("px"), "px")
        return NormalizedOrderResult(
            order_id=str(row["ordId"]),
            client_order_id=row.get("clOrdId") or None,
            symbol=row["instId"],
            side=Side.parse(row["side"]),
            order_type=OrderType.MARKET if row.get("ordType") == "market" else OrderType.LIMIT,
            price=price,
            quantity=decimal_field(row, "sz", default="0"),
            status=self._map_status(row["state"]),
            reduce_only=str(row.get("reduceOnly", "false")).lower() == "true",
            created_time=int(row["cTime"]) if row.get("cTime") else None,
        )

    def _get_order_history(self, symbol: Optional[str], limit: int) -> List[NormalizedOrderResult]:
        rows = self._private(
            "GET",
            "/trade/orders-history-archive",
            {"instType": INST_TYPE, "instId": symbol, "limit": limit},
        )
        return [self._parse_order(row) for row in rows]

    def _get_open_orders(self, symbol: Optional[str]) -> List[NormalizedOrderResult]:
        rows = self._private("GET", "/trade/orders-pending", {"instType": INST_TYPE, "instId": symbol})
        return [self._parse_order(row) for row in rows]

    # ------------------------
    # Market data
    # ------------------------
    def _get_funding_rate(self, symbol: str) -> FundingRate:
        rows = self._public("/public/funding-rate", {"instId": symbol})
        if not rows:
            raise MalformedResponseError(f"no funding rate for {symbol}")
        row = rows[0]
        next_time = row.get("nextFundingTime") or row.get("fundingTime")
        return FundingRate(
            symbol=symbol,
            rate=decimal_field(row, "fundingRate"),
            next_funding_time=int(next_time) if next_time else None,
        )

    def _get_ticker(self, symbol: str) -> Ticker:
        rows = self._public("/market/ticker", {"instId": symbol})
        if not rows:
            raise MalformedResponseError(f"no ticker for {symbol}")
        row = rows[0]
        return Ticker(
            symbol=symbol,
            last_price=decimal_field(row, "last"),
            mark_price=optional_decimal(row.get("markPx"), "markPx"),
            index_price=optional_decimal(row.get("idxPx"), "idxPx"),
            high_24h=optional_decimal(row.get("high24h"), "high24h"),
            low_24h=optional_decimal(row.get("low24h"), "low24h"),
            volume_24h=optional_decimal(row.get("vol24h"), "vol24h"),
            turnover_24h=optional_decimal(row.get("volCcy24h"), "volCcy24h"),
        )

    def _set_leverage(self, symbol: str, leverage: int) -> int:
        rows = self._private(
            "POST",
            "/account/set-leverage",
            {"instId": symbol, "lever": str(leverage), "mgnMode": MARGIN_MODE},
        )
        if rows and rows[0].get("lever"):
            return int(Decimal(str(rows[0]["lever"])))
        return leverage

    # ------------------------
    # Sizing
    # ------------------------
    def _instrument(self, symbol: str) -> Tuple[Decimal, Decimal]:
        """(ctVal, lotSz) for an instrument."""
        if symbol not in self._instruments:
            rows = self._public("/public/instruments", {"instType": INST_TYPE, "instId": symbol})
            if not rows:
                raise MalformedResponseError(f"{symbol} not listed")
            row = rows[0]
            self._instruments[symbol] = (decimal_field(row, "ctVal"), decimal_field(row, "lotSz", default="1"))
        return self._instruments[symbol]

    def _quantity_step(self, symbol: str) -> Decimal:
        return self._instrument(symbol)[1]

    def _order_quantity(self, symbol: str, notional: Decimal, price: Decimal) -> Decimal:
        if price <= 0:
            raise MalformedResponseError(f"price must be positive, got {price}")
        ct_val, lot = self._instrument(symbol)
        return floor_to_step(notional / price / ct_val, lot)
