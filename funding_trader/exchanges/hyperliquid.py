"""
Hyperliquid adapter built on hyperliquid-python-sdk.

api_key (or wallet_address) is the trading account address; api_secret is
the private key of the account or of an approved API wallet. Actions are
signed by the SDK (EIP-712 over the msgpack action hash and nonce).

Quantity unit: base coin, floored to the asset's szDecimals.
Native symbols are bare coins (BTC). Collateral is USDC.
Market orders are IOC limit orders priced MARKET_SLIPPAGE through the mid.
"""

from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Any, Callable, Dict, List, Optional

from eth_account import Account
from hyperliquid.exchange import Exchange
from hyperliquid.info import Info
from hyperliquid.utils import constants, signing
from hyperliquid.utils.error import ClientError, ServerError

from funding_trader.core.errors import (
    AuthError,
    ConfigurationError,
    ExchangeBusinessError,
    MalformedResponseError,
    TransportError,
)
from funding_trader.exchanges.base import ExchangeClient
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
from funding_trader.exchanges.signing import checksum_address, normalize_private_key
from funding_trader.exchanges.transport import DEFAULT_TIMEOUT_SEC
from funding_trader.utils.precision import (
    decimal_field,
    floor_to_decimals,
    format_price,
    format_size,
    optional_decimal,
    to_decimal,
)

MARKET_SLIPPAGE = Decimal("0.03")
MAX_DECIMALS = 6

HISTORY_STATUS = {
    "open": OrderStatus.NEW,
    "filled": OrderStatus.FILLED,
    "canceled": OrderStatus.CANCELLED,
    "marginCanceled": OrderStatus.CANCELLED,
    "reduceOnlyCanceled": OrderStatus.CANCELLED,
    "selfTradeCanceled": OrderStatus.CANCELLED,
    "siblingFilledCanceled": OrderStatus.CANCELLED,
    "triggered": OrderStatus.NEW,
    "rejected": OrderStatus.REJECTED,
}


class HyperliquidClient(ExchangeClient):
    exchange_id = "hyperliquid"
    margin_type = MarginType.LINEAR
    settle_coin = "USDC"
    quantity_unit = "base coin (szDecimals)"
    native_symbol_template = "{coin}"
    status_map = HISTORY_STATUS

    def __init__(
        self,
        credentials: Credentials,
        timeout: float = DEFAULT_TIMEOUT_SEC,
        info: Optional[Info] = None,
        exchange: Optional[Exchange] = None,
        slippage: Decimal = MARKET_SLIPPAGE,
    ):
        super().__init__(credentials, timeout)
        address = credentials.wallet_address or credentials.api_key
        if not address:
            raise ConfigurationError("hyperliquid requires the account wallet address")
        self.address = checksum_address(address)
        try:
            self.wallet = Account.from_key(normalize_private_key(credentials.api_secret))
        except Exception as exc:  # eth_keys raises its own ValidationError
            raise ConfigurationError(f"invalid hyperliquid private key: {exc}") from exc
        self.api_url = constants.TESTNET_API_URL if self.testnet else constants.MAINNET_API_URL
        self.slippage = Decimal(str(slippage))
        self._info = info
        self._exchange = exchange
        self._sz_decimals: Dict[str, int] = {}

    # Info() fetches exchange metadata on construction, so both clients are built on first use
    @property
    def info(self) -> Info:
        if self._info is None:
            self._info = self._sdk(Info, self.api_url, True, timeout=self.timeout)
        return self._info

    @property
    def exchange(self) -> Exchange:
        if self._exchange is None:
            self._exchange = self._sdk(
                Exchange, self.wallet, self.api_url, account_address=self.address, timeout=self.timeout
            )
        return self._exchange

    def generate_signature(self, action: Dict[str, Any], nonce: int) -> Dict[str, Any]:
        """Sign an L1 action ({r, s, v}) exactly as the SDK does before posting it."""
        return signing.sign_l1_action(self.wallet, action, None, nonce, None, not self.testnet)

    def _sdk(self, fn: Callable[..., Any], *args: Any, **kwargs: Any) -> Any:
        try:
            return fn(*args, **kwargs)
        except ClientError as exc:
            message = str(exc.error_message or exc.args)
            if exc.status_code in (401, 403):
                raise AuthError(message, code=exc.status_code) from exc
            raise ExchangeBusinessError(message, code=exc.status_code) from exc
        except ServerError as exc:
            raise TransportError(f"hyperliquid server error {exc.status_code}: {exc.message}") from exc

    def _check_action(self, response: Any) -> Dict[str, Any]:
        """Validate an Exchange action response and return its data block."""
        if not isinstance(response, dict):
            raise MalformedResponseError("exchange action returned no object")
        if response.get("status") != "ok":
            message = str(response.get("response", "action rejected"))
            lowered = message.lower()
            if "does not exist" in lowered or "user or api wallet" in lowered:
                raise AuthError(message)
            raise ExchangeBusinessError(message)
        body = response.get("response") or {}
        data = body.get("data") if isinstance(body, dict) else None
        statuses = (data or {}).get("statuses") or []
        for status in statuses:
            if isinstance(status, dict) and "error" in status:
                raise ExchangeBusinessError(str(status["error"]))
        return data or {}

    # ------------------------
    # Account
    # ------------------------
    def _user_state(self) -> Dict[str, Any]:
        state = self._sdk(self.info.user_state, self.address)
        if not isinstance(state, dict) or "marginSummary" not in state:
            raise MalformedResponseError("clearinghouseState missing marginSummary")
        return state

    def _get_wallet_balance(self, coin: Optional[str]) -> List[NormalizedBalance]:
        if coin and coin.upper() != self.settle_coin:
            return []
        state = self._user_state()
        summary = state["marginSummary"]
        account_value = decimal_field(summary, "accountValue")
        unrealized = sum(
            (decimal_field(ap["position"], "unrealizedPnl", default="0") for ap in state.get("assetPositions", [])),
            Decimal("0"),
        )
        return [
            NormalizedBalance(
                coin=self.settle_coin,
                wallet_balance=account_value - unrealized,
                available_balance=decimal_field(state, "withdrawable", default="0"),
                used_margin=decimal_field(summary, "totalMarginUsed", default="0"),
                unrealized_pnl=unrealized,
                total_equity=account_value,
            )
        ]

    def _get_positions(self, symbol: Optional[str]) -> List[NormalizedPosition]:
        positions = []
        for entry in self._user_state().get("assetPositions", []):
            pos = entry["position"]
            if symbol and pos["coin"] != symbol:
                continue
            szi = decimal_field(pos, "szi", default="0")
            if szi == 0:
                continue
            size = abs(szi)
            value = decimal_field(pos, "positionValue", default="0")
            leverage = pos.get("leverage") or {}
            positions.append(
                NormalizedPosition(
                    symbol=pos["coin"],
                    coin=pos["coin"],
                    side=PositionSide.from_signed_size(szi),
                    size=size,
                    entry_price=decimal_field(pos, "entryPx", default="0"),
                    mark_price=value / size if size else Decimal("0"),
                    leverage=decimal_field(leverage, "value", default="1") if isinstance(leverage, dict) else to_decimal(leverage),
                    unrealized_pnl=decimal_field(pos, "unrealizedPnl", default="0"),
                    liquidation_price=optional_decimal(pos.get("liquidationPx"), "liquidationPx"),
                    position_value=value,
                )
            )
        return positions

    # ------------------------
    # Orders
    # ------------------------
    def _sz_decimals_for(self, coin: str) -> int:
        if not self._sz_decimals:
            meta = self._sdk(self.info.meta)
            self._sz_decimals = {u["name"]: int(u["szDecimals"]) for u in meta["universe"]}
        if coin not in self._sz_decimals:
            raise ExchangeBusinessError(f"{coin} is not listed on hyperliquid")
        return self._sz_decimals[coin]

    def _mid_price(self, coin: str) -> Decimal:
        mids = self._sdk(self.info.all_mids)
        if coin not in mids:
            raise MalformedResponseError(f"no mid price for {coin}")
        return to_decimal(mids[coin], "mid")

    def _submit(
        self,
        coin: str,
        side: Side,
        qty: Decimal,
        order_type: OrderType,
        price: Optional[Decimal],
        reduce_only: bool,
    ) -> NormalizedOrderResult:
        sz_decimals = self._sz_decimals_for(coin)
        size = Decimal(format_size(qty, sz_decimals))
        if size <= 0:
            raise ExchangeBusinessError(f"order size {qty} rounds to zero at {sz_decimals} decimals")
        is_buy = side is Side.BUY
        if order_type is OrderType.MARKET:
            mid = self._mid_price(coin)
            raw_px = mid * (1 + self.slippage) if is_buy else mid * (1 - self.slippage)
            tif = "Ioc"
        else:
            raw_px = price
            tif = "Gtc"
        limit_px = Decimal(format_price(raw_px, sz_decimals, MAX_DECIMALS))
        order_spec: signing.OrderType = {"limit": {"tif": tif}}  # type: ignore[assignment]
        response = self._sdk(
            self.exchange.order, coin, is_buy, float(size), float(limit_px), order_spec, reduce_only
        )
        data = self._check_action(response)
        statuses = data.get("statuses") or [{}]
        first = statuses[0]
        if "filled" in first:
            fill = first["filled"]
            order_id = str(fill["oid"])
            status = OrderStatus.FILLED
            fill_px = optional_decimal(fill.get("avgPx"), "avgPx")
        elif "resting" in first:
            order_id = str(first["resting"]["oid"])
            status = OrderStatus.NEW
            fill_px = None
        else:
            raise MalformedResponseError(f"unexpected order status {first!r}")
        return NormalizedOrderResult(
            order_id=order_id,
            client_order_id=None,
            symbol=coin,
            side=side,
            order_type=order_type,
            price=fill_px or limit_px,
            quantity=size,
            status=status,
            reduce_only=reduce_only,
            created_time=self._timestamp_ms(),
        )

    def _place_market_order(self, symbol, side, qty, reduce_only):
        return self._submit(symbol, side, qty, OrderType.MARKET, None, reduce_only)

    def _place_limit_order(self, symbol, side, qty, price, reduce_only):
        return self._submit(symbol, side, qty, OrderType.LIMIT, price, reduce_only)

    def _cancel_order(self, symbol: str, order_id: str) -> OrderStatus:
        self._check_action(self._sdk(self.exchange.cancel, symbol, int(order_id)))
        return OrderStatus.CANCELLED

    def _parse_order(self, order: Dict[str, Any], status: OrderStatus) -> NormalizedOrderResult:
        orig = order.get("origSz") or order.get("sz")
        return NormalizedOrderResult(
            order_id=str(order["oid"]),
            client_order_id=order.get("cloid"),
            symbol=order["coin"],
            side=Side.BUY if order["side"] == "B" else Side.SELL,
            order_type=OrderType.MARKET if "Market" in str(order.get("orderType", "")) else OrderType.LIMIT,
            price=optional_decimal(order.get("limitPx"), "limitPx"),
            quantity=to_decimal(orig, "origSz"),
            status=status,
            reduce_only=bool(order.get("reduceOnly", False)),
            created_time=order.get("timestamp"),
        )

    def _get_open_orders(self, symbol: Optional[str]) -> List[NormalizedOrderResult]:
        rows = self._sdk(self.info.open_orders, self.address)
        return [self._parse_order(o, OrderStatus.NEW) for o in rows if not symbol or o["coin"] == symbol]

    def _get_order_history(self, symbol: Optional[str], limit: int) -> List[NormalizedOrderResult]:
        rows = self._sdk(self.info.historical_orders, self.address)
        results = []
        for row in rows:
            order = row["order"]
            if symbol and order["coin"] != symbol:
                continue
            status = self.status_map.get(row.get("status", ""), OrderStatus.CANCELLED)
            results.append(self._parse_order(order, status))
            if len(results) >= limit:
                break
        return results

    # ------------------------
    # Market data
    # ------------------------
    def _asset_ctx(self, coin: str) -> Dict[str, Any]:
        meta, ctxs = self._sdk(self.info.meta_and_asset_ctxs)
        for universe, ctx in zip(meta["universe"], ctxs):
            if universe["name"] == coin:
                return ctx
        raise ExchangeBusinessError(f"{coin} is not listed on hyperliquid")

    @staticmethod
    def _next_hour_ms() -> int:
        now = datetime.now(timezone.utc)
        nxt = now.replace(minute=0, second=0, microsecond=0) + timedelta(hours=1)
        return int(nxt.timestamp() * 1000)

    def _get_funding_rate(self, symbol: str) -> FundingRate:
        ctx = self._asset_ctx(symbol)
        # funding settles hourly on the hour
        return FundingRate(symbol=symbol, rate=decimal_field(ctx, "funding"), next_funding_time=self._next_hour_ms())

    def _get_ticker(self, symbol: str) -> Ticker:
        ctx = self._asset_ctx(symbol)
        mark = decimal_field(ctx, "markPx")
        last = optional_decimal(ctx.get("midPx"), "midPx") or mark
        prev = optional_decimal(ctx.get("prevDayPx"), "prevDayPx")
        change = (last - prev) / prev if prev else None
        return Ticker(
            symbol=symbol,
            last_price=last,
            mark_price=mark,
            index_price=optional_decimal(ctx.get("oraclePx"), "oraclePx"),
            funding_rate=optional_decimal(ctx.get("funding"), "funding"),
            next_funding_time=self._next_hour_ms(),
            turnover_24h=optional_decimal(ctx.get("dayNtlVlm"), "dayNtlVlm"),
            volume_24h=optional_decimal(ctx.get("dayBaseVlm"), "dayBaseVlm"),
            price_change_pct=change,
        )

    def _set_leverage(self, symbol: str, leverage: int) -> int:
        self._check_action(self._sdk(self.exchange.update_leverage, leverage, symbol, True))
        return leverage

    def _quantity_step(self, symbol: str) -> Decimal:
        return Decimal(1).scaleb(-self._sz_decimals_for(symbol))

    def _order_quantity(self, symbol: str, notional: Decimal, price: Decimal) -> Decimal:
        if price <= 0:
            raise MalformedResponseError(f"price must be positive, got {price}")
        return floor_to_decimals(notional / price, self._sz_decimals_for(symbol))
