"""
Normalized data model shared by every exchange adapter.

All monetary and quantity fields are Decimal; adapters parse them with
utils.precision.to_decimal at the point where exchange JSON is read.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, Generic, Optional, TypeVar

from funding_trader.core.errors import FundingTraderError

T = TypeVar("T")


class Side(str, Enum):
    BUY = "Buy"
    SELL = "Sell"

    @property
    def opposite(self) -> "Side":
        return Side.SELL if self is Side.BUY else Side.BUY

    @property
    def position_side(self) -> "PositionSide":
        """Position side that an opening order on this side produces."""
        return PositionSide.LONG if self is Side.BUY else PositionSide.SHORT

    @classmethod
    def parse(cls, value: str) -> "Side":
        """Accept Buy/BUY/buy/Sell/SELL/sell."""
        text = str(value).strip().lower()
        if text == "buy":
            return cls.BUY
        if text == "sell":
            return cls.SELL
        raise ValueError(f"unknown side: {value!r}")


class PositionSide(str, Enum):
    LONG = "long"
    SHORT = "short"

    @property
    def closing_side(self) -> Side:
        return Side.SELL if self is PositionSide.LONG else Side.BUY

    @classmethod
    def from_signed_size(cls, size: Decimal) -> "PositionSide":
        return cls.LONG if size > 0 else cls.SHORT


class OrderType(str, Enum):
    MARKET = "Market"
    LIMIT = "Limit"


class OrderStatus(str, Enum):
    NEW = "New"
    PARTIALLY_FILLED = "PartiallyFilled"
    FILLED = "Filled"
    CANCELLED = "Cancelled"
    REJECTED = "Rejected"
    EXPIRED = "Expired"


class ExchangeCategory(str, Enum):
    CEX = "cex"
    DEX = "dex"


class MarginType(str, Enum):
    INVERSE = "inverse"  # collateral is the base coin
    LINEAR = "linear"  # collateral is the settle coin (USDT/USDC)


def canonical_coin(symbol: str) -> str:
    """Upper-case a coin name unless it is written in mixed case (kPEPE)."""
    text = symbol.strip()
    return text.upper() if text.islower() or text.isupper() else text


@dataclass
class NormalizedBalance:
    coin: str
    wallet_balance: Decimal
    available_balance: Decimal
    used_margin: Decimal
    unrealized_pnl: Decimal
    total_equity: Decimal


@dataclass
class NormalizedPosition:
    """
    One open position.

    size is always an unsigned magnitude; direction lives in side.
    coin is the canonical bare-coin symbol, symbol the exchange-native id.
    """

    symbol: str
    coin: str
    side: PositionSide
    size: Decimal
    entry_price: Decimal
    mark_price: Decimal
    leverage: Decimal
    unrealized_pnl: Decimal
    liquidation_price: Optional[Decimal] = None
    position_value: Decimal = Decimal("0")


@dataclass
class NormalizedOrderResult:
    order_id: str
    client_order_id: Optional[str]
    symbol: str
    side: Side
    order_type: OrderType
    price: Optional[Decimal]
    quantity: Decimal
    status: OrderStatus
    reduce_only: bool = False
    created_time: Optional[int] = None  # epoch ms

    def to_record(self) -> Dict[str, Any]:
        """JSON-friendly dict for trade persistence."""
        return {
            "order_id": self.order_id,
            "client_order_id": self.client_order_id,
            "symbol": self.symbol,
            "side": self.side.value,
            "order_type": self.order_type.value,
            "price": None if self.price is None else str(self.price),
            "quantity": str(self.quantity),
            "status": self.status.value,
            "reduce_only": self.reduce_only,
            "created_time": self.created_time,
        }


@dataclass
class FundingRate:
    symbol: str
    rate: Decimal
    next_funding_time: Optional[int] = None  # epoch ms


@dataclass
class Ticker:
    symbol: str
    last_price: Decimal
    mark_price: Optional[Decimal] = None
    index_price: Optional[Decimal] = None
    funding_rate: Optional[Decimal] = None
    next_funding_time: Optional[int] = None
    high_24h: Optional[Decimal] = None
    low_24h: Optional[Decimal] = None
    volume_24h: Optional[Decimal] = None
    turnover_24h: Optional[Decimal] = None
    price_change_pct: Optional[Decimal] = None


@dataclass
class ConnectionStatus:
    success: bool
    message: str
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    details: Dict[str, Any] = field(default_factory=dict)

    def __bool__(self) -> bool:
        return self.success


@dataclass
class ApiResult(Generic[T]):
    """
    Uniform result returned by every public ExchangeClient method.

    ret_code 0 means success. Failures carry the exchange's own code when it
    reported one, otherwise the code of the error class, plus error_kind
    (transport | auth | business | malformed | configuration).
    """

    ret_code: int
    ret_msg: str
    result: Optional[T] = None
    error_kind: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.ret_code == 0

    @classmethod
    def success(cls, value: T, message: str = "OK") -> "ApiResult[T]":
        return cls(ret_code=0, ret_msg=message, result=value)

    @classmethod
    def failure(cls, exc: FundingTraderError) -> "ApiResult[T]":
        code = exc.code if exc.code != 0 else exc.default_code
        return cls(ret_code=code, ret_msg=exc.message, error_kind=exc.kind)


@dataclass
class Credentials:
    """
    Decrypted credential material for one exchange account.

    For Aster and Hyperliquid api_key is the account (wallet) address and
    api_secret the signing private key.
    """

    api_key: str
    api_secret: str
    passphrase: Optional[str] = None
    wallet_address: Optional[str] = None
    is_testnet: bool = False

    def __repr__(self) -> str:
        key = self.api_key[:4] + "..." if self.api_key else ""
        return (
            f"Credentials(api_key={key!r}, api_secret='***', "
            f"passphrase={'***' if self.passphrase else None}, "
            f"wallet_address={self.wallet_address!r}, is_testnet={self.is_testnet})"
        )


@dataclass(frozen=True)
class ExchangeCapabilities:
    id: str
    name: str
    description: str
    category: ExchangeCategory
    has_testnet: bool
    needs_passphrase: bool
    needs_wallet_address: bool
    is_implemented: bool = True

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "category": self.category.value,
            "has_testnet": self.has_testnet,
            "needs_passphrase": self.needs_passphrase,
            "needs_wallet_address": self.needs_wallet_address,
            "is_implemented": self.is_implemented,
        }
