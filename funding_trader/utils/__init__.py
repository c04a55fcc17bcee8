"""Utilities: Decimal parsing and precision helpers, state store."""

from funding_trader.utils.precision import format_price, format_size, to_decimal
from funding_trader.utils.state_store import StateStore, TradeRecorder

__all__ = [
    "format_price",
    "format_size",
    "to_decimal",
    "StateStore",
    "TradeRecorder",
]
