"""Exchange adapters: one ExchangeClient per venue, plus the factory."""

from funding_trader.exchanges.aster import AsterClient
from funding_trader.exchanges.base import ExchangeClient, HttpExchangeClient
from funding_trader.exchanges.binance import BinanceClient
from funding_trader.exchanges.bybit import BybitClient
from funding_trader.exchanges.edgex import EdgexClient
from funding_trader.exchanges.factory import EXCHANGE_REGISTRY, ExchangeFactory, ExchangeSpec
from funding_trader.exchanges.gateio import GateioClient
from funding_trader.exchanges.hyperliquid import HyperliquidClient
from funding_trader.exchanges.models import (
    ApiResult,
    ConnectionStatus,
    Credentials,
    ExchangeCapabilities,
    FundingRate,
    NormalizedBalance,
    NormalizedOrderResult,
    NormalizedPosition,
    OrderStatus,
    OrderType,
    PositionSide,
    Side,
    Ticker,
)
from funding_trader.exchanges.okx import OkxClient

__all__ = [
    "EXCHANGE_REGISTRY",
    "ApiResult",
    "AsterClient",
    "BinanceClient",
    "BybitClient",
    "ConnectionStatus",
    "Credentials",
    "EdgexClient",
    "ExchangeCapabilities",
    "ExchangeClient",
    "ExchangeFactory",
    "ExchangeSpec",
    "FundingRate",
    "GateioClient",
    "HttpExchangeClient",
    "HyperliquidClient",
    "NormalizedBalance",
    "NormalizedOrderResult",
    "NormalizedPosition",
    "OkxClient",
    "OrderStatus",
    "OrderType",
    "PositionSide",
    "Side",
    "Ticker",
]
