"""
Exchange client contract.

ExchangeClient owns the public surface every adapter exposes. Each public
method delegates to an abstract underscore-prefixed hook implemented by the
adapter and converts any failure into an ApiResult, so nothing raised by the
network, the exchange or a malformed payload escapes to the caller.
"""

import time
from abc import ABC, abstractmethod
from decimal import Decimal
from typing import Any, Callable, Dict, List, Optional, Tuple

import requests
import structlog

from funding_trader.core.errors import (
    ConfigurationError,
    FundingTraderError,
    MalformedResponseError,
    TransportError,
)
from funding_trader.exchanges.models import (
    ApiResult,
    ConnectionStatus,
    Credentials,
    FundingRate,
    MarginType,
    NormalizedBalance,
    NormalizedOrderResult,
    NormalizedPosition,
    OrderStatus,
    Side,
    Ticker,
    canonical_coin,
)
from funding_trader.exchanges.transport import DEFAULT_TIMEOUT_SEC, HttpResponse, RestTransport
from funding_trader.utils.precision import floor_to_step, to_decimal

logger = structlog.get_logger(__name__)

# Shape and decimal arithmetic errors while walking exchange JSON
_SHAPE_ERRORS = (KeyError, IndexError, TypeError, AttributeError, ValueError, ArithmeticError)


class ExchangeClient(ABC):
    """
    Base class for all exchange adapters.

    Subclasses set the class attributes below and implement the abstract
    hooks. Quantity semantics differ per exchange and are described by
    quantity_unit; order_quantity converts a quote-currency notional into
    that unit.
    """

    exchange_id: str = ""
    margin_type: MarginType = MarginType.LINEAR
    settle_coin: str = "USDT"
    quantity_unit: str = "base asset"
    native_symbol_template: str = "{coin}USDT"
    default_quantity_step: Decimal = Decimal("0.001")
    status_map: Dict[str, OrderStatus] = {}

    def __init__(self, credentials: Credentials, timeout: float = DEFAULT_TIMEOUT_SEC):
        self.credentials = credentials
        self.testnet = credentials.is_testnet
        self.timeout = timeout
        self.log = logger.bind(exchange=self.exchange_id, testnet=self.testnet)

    # ------------------------
    # Public contract
    # ------------------------
    def test_connection(self) -> ConnectionStatus:
        """Lightweight authenticated read. Never raises."""
        try:
            message, details = self._test_connection()
            return ConnectionStatus(success=True, message=message, details=details)
        except FundingTraderError as exc:
            self.log.warning("connection_test_failed", kind=exc.kind, code=exc.code, error=exc.message)
            return ConnectionStatus(
                success=False,
                message=exc.message,
                details={"error_kind": exc.kind, "code": exc.code},
            )
        except requests.RequestException as exc:
            self.log.warning("connection_test_failed", kind="transport", error=str(exc))
            return ConnectionStatus(success=False, message=str(exc), details={"error_kind": "transport"})
        except _SHAPE_ERRORS as exc:
            self.log.warning("connection_test_failed", kind="malformed", error=repr(exc))
            return ConnectionStatus(success=False, message=f"malformed response: {exc!r}", details={"error_kind": "malformed"})

    def get_wallet_balance(self, coin: Optional[str] = None) -> ApiResult[List[NormalizedBalance]]:
        return self._call("get_wallet_balance", self._get_wallet_balance, coin)

    def get_positions(self, symbol: Optional[str] = None) -> ApiResult[List[NormalizedPosition]]:
        native = self.to_native_symbol(symbol) if symbol else None
        result = self._call("get_positions", self._get_positions, native)
        if result.ok:
            result.result = [p for p in result.result or [] if p.size > 0]
        return result

    def place_market_order(
        self, symbol: str, side: Side, qty: Any, reduce_only: bool = False
    ) -> ApiResult[NormalizedOrderResult]:
        """Market order; qty is in this adapter's quantity_unit."""
        return self._call(
            "place_market_order",
            self._checked_order,
            self._place_market_order,
            symbol,
            side,
            qty,
            None,
            reduce_only,
        )

    def place_limit_order(
        self, symbol: str, side: Side, qty: Any, price: Any, reduce_only: bool = False
    ) -> ApiResult[NormalizedOrderResult]:
        """Limit GTC order; qty is in this adapter's quantity_unit."""
        return self._call(
            "place_limit_order",
            self._checked_order,
            self._place_limit_order,
            symbol,
            side,
            qty,
            price,
            reduce_only,
        )

    def cancel_order(self, symbol: str, order_id: str) -> ApiResult[OrderStatus]:
        return self._call("cancel_order", self._cancel_order, self.to_native_symbol(symbol), str(order_id))

    def close_position(self, position: NormalizedPosition) -> ApiResult[NormalizedOrderResult]:
        """Opposite-side reduce-only order for the full size of position."""
        self.log.info(
            "closing_position",
            symbol=position.symbol,
            side=position.side.value,
            size=str(position.size),
        )
        return self._call("close_position", self._close_position, position)

    def close_all_positions(self, symbol: Optional[str] = None) -> List[ApiResult[NormalizedOrderResult]]:
        """
        Close every open position matching symbol.

        Returns one result per position. A failure closing one position does
        not stop the others. If positions cannot be listed, the single
        returned result carries that failure.
        """
        positions = self.get_positions(symbol)
        if not positions.ok:
            return [ApiResult(positions.ret_code, positions.ret_msg, None, positions.error_kind)]

        results: List[ApiResult[NormalizedOrderResult]] = []
        for position in positions.result or []:
            results.append(self.close_position(position))

        failed = sum(1 for r in results if not r.ok)
        self.log.info("close_all_done", symbol=symbol, positions=len(results), failed=failed)
        return results

    def get_funding_rate(self, symbol: str) -> ApiResult[FundingRate]:
        return self._call("get_funding_rate", self._get_funding_rate, self.to_native_symbol(symbol))

    def get_ticker(self, symbol: str) -> ApiResult[Ticker]:
        return self._call("get_ticker", self._get_ticker, self.to_native_symbol(symbol))

    def set_leverage(self, symbol: str, leverage: int) -> ApiResult[int]:
        return self._call("set_leverage", self._checked_leverage, symbol, leverage)

    def get_order_history(self, symbol: Optional[str] = None, limit: int = 50) -> ApiResult[List[NormalizedOrderResult]]:
        native = self.to_native_symbol(symbol) if symbol else None
        return self._call("get_order_history", self._get_order_history, native, int(limit))

    def get_open_orders(self, symbol: Optional[str] = None) -> ApiResult[List[NormalizedOrderResult]]:
        native = self.to_native_symbol(symbol) if symbol else None
        return self._call("get_open_orders", self._get_open_orders, native)

    def order_quantity(self, symbol: str, notional: Any, price: Any) -> ApiResult[Decimal]:
        """Convert a quote-currency notional at price into an order quantity."""
        return self._call("order_quantity", self._checked_quantity, symbol, notional, price)

    # ------------------------
    # Symbol mapping
    # ------------------------
    @property
    def _native_suffix(self) -> str:
        return self.native_symbol_template.replace("{coin}", "")

    def to_native_symbol(self, symbol: str) -> str:
        """BTC -> this exchange's instrument id. Native ids pass through."""
        text = symbol.strip()
        suffix = self._native_suffix
        if suffix and text.upper().endswith(suffix.upper()):
            return text
        if not suffix:
            return canonical_coin(text)
        return self.native_symbol_template.format(coin=text.upper())

    def to_canonical_symbol(self, native: str) -> str:
        """Instrument id -> bare coin (BTCUSDT -> BTC)."""
        suffix = self._native_suffix
        if suffix and native.upper().endswith(suffix.upper()):
            return native[: -len(suffix)].upper()
        return native if not suffix else native.upper()

    # ------------------------
    # Adapter hooks
    # ------------------------
    def _test_connection(self) -> Tuple[str, Dict[str, Any]]:
        balances = self._get_wallet_balance(None)
        return "Connection successful", {"balances": len(balances)}

    @abstractmethod
    def _get_wallet_balance(self, coin: Optional[str]) -> List[NormalizedBalance]:
        ...

    @abstractmethod
    def _get_positions(self, symbol: Optional[str]) -> List[NormalizedPosition]:
        ...

    @abstractmethod
    def _place_market_order(self, symbol: str, side: Side, qty: Decimal, reduce_only: bool) -> NormalizedOrderResult:
        ...

    @abstractmethod
    def _place_limit_order(
        self, symbol: str, side: Side, qty: Decimal, price: Decimal, reduce_only: bool
    ) -> NormalizedOrderResult:
        ...

    @abstractmethod
    def _cancel_order(self, symbol: str, order_id: str) -> OrderStatus:
        ...

    @abstractmethod
    def _get_funding_rate(self, symbol: str) -> FundingRate:
        ...

    @abstractmethod
    def _get_ticker(self, symbol: str) -> Ticker:
        ...

    @abstractmethod
    def _set_leverage(self, symbol: str, leverage: int) -> int:
        ...

    @abstractmethod
    def _get_order_history(self, symbol: Optional[str], limit: int) -> List[NormalizedOrderResult]:
        ...

    @abstractmethod
    def _get_open_orders(self, symbol: Optional[str]) -> List[NormalizedOrderResult]:
        ...

    def _close_position(self, position: NormalizedPosition) -> NormalizedOrderResult:
        return self._place_market_order(
            position.symbol, position.side.closing_side, position.size, True
        )

    def _order_quantity(self, symbol: str, notional: Decimal, price: Decimal) -> Decimal:
        if price <= 0:
            raise MalformedResponseError(f"price must be positive, got {price}")
        return floor_to_step(notional / price, self._quantity_step(symbol))

    def _quantity_step(self, symbol: str) -> Decimal:
        return self.default_quantity_step

    # ------------------------
    # Helpers
    # ------------------------
    def _call(self, operation: str, fn: Callable[..., Any], *args: Any) -> ApiResult:
        try:
            return ApiResult.success(fn(*args))
        except FundingTraderError as exc:
            self.log.warning(
                "exchange_call_failed",
                operation=operation,
                kind=exc.kind,
                code=exc.code,
                error=exc.message,
            )
            return ApiResult.failure(exc)
        except requests.RequestException as exc:
            self.log.warning("exchange_call_failed", operation=operation, kind="transport", error=str(exc))
            return ApiResult.failure(TransportError(str(exc)))
        except _SHAPE_ERRORS as exc:
            self.log.warning("exchange_call_failed", operation=operation, kind="malformed", error=repr(exc))
            return ApiResult.failure(MalformedResponseError(f"unexpected response shape: {exc!r}"))

    def _checked_leverage(self, symbol: str, leverage: Any) -> int:
        try:
            value = int(leverage)
        except (TypeError, ValueError) as exc:
            raise ConfigurationError(f"leverage must be an integer, got {leverage!r}") from exc
        if value < 1:
            raise ConfigurationError(f"leverage must be >= 1, got {leverage}")
        return self._set_leverage(self.to_native_symbol(symbol), value)

    def _checked_quantity(self, symbol: str, notional: Any, price: Any) -> Decimal:
        try:
            amount = to_decimal(notional, "notional")
            px = to_decimal(price, "price")
        except MalformedResponseError as exc:
            raise ConfigurationError(exc.message) from exc
        return self._order_quantity(self.to_native_symbol(symbol), amount, px)

    def _checked_order(
        self,
        place: Callable[..., NormalizedOrderResult],
        symbol: str,
        side: Side,
        qty: Any,
        price: Any,
        reduce_only: bool,
    ) -> NormalizedOrderResult:
        quantity = to_decimal(qty, "quantity")
        if quantity <= 0:
            raise ConfigurationError(f"order quantity must be positive, got {qty}")
        if not isinstance(side, Side):
            try:
                side = Side.parse(side)
            except ValueError as exc:
                raise ConfigurationError(str(exc)) from exc
        native = self.to_native_symbol(symbol)
        if price is None:
            self.log.info("placing_market_order", symbol=native, side=side.value, qty=str(quantity), reduce_only=reduce_only)
            return place(native, side, quantity, reduce_only)
        limit_price = to_decimal(price, "price")
        if limit_price <= 0:
            raise ConfigurationError(f"limit price must be positive, got {price}")
        self.log.info(
            "placing_limit_order",
            symbol=native,
            side=side.value,
            qty=str(quantity),
            price=str(limit_price),
            reduce_only=reduce_only,
        )
        return place(native, side, quantity, limit_price, reduce_only)

    def _map_status(self, raw: Any) -> OrderStatus:
        key = str(raw)
        if key in self.status_map:
            return self.status_map[key]
        if key.upper() in self.status_map:
            return self.status_map[key.upper()]
        raise MalformedResponseError(f"unknown order status {raw!r}")

    @staticmethod
    def _timestamp_ms() -> int:
        return int(time.time() * 1000)

    def __repr__(self) -> str:
        return f"{type(self).__name__}(testnet={self.testnet})"


class HttpExchangeClient(ExchangeClient):
    """ExchangeClient backed by a signed REST transport."""

    mainnet_url: str = ""
    testnet_url: str = ""

    def __init__(
        self,
        credentials: Credentials,
        timeout: float = DEFAULT_TIMEOUT_SEC,
        transport: Optional[RestTransport] = None,
    ):
        super().__init__(credentials, timeout)
        self.base_url = self.testnet_url if self.testnet and self.testnet_url else self.mainnet_url
        self.transport = transport or RestTransport(self.base_url, timeout=timeout)

    @abstractmethod
    def _unwrap(self, response: HttpResponse) -> Any:
        """Validate the exchange envelope and return its data part, or raise."""
