"""Account model and the scheduled funding-rate trading cycle."""

from funding_trader.trading.accounts import CurrencySetting, InMemoryUserStore, UserAccount, UserStore
from funding_trader.trading.cycle import (
    CycleReport,
    TradingCycle,
    UnitOutcome,
    UnitResult,
    compute_notional,
    decide_side,
)

__all__ = [
    "CurrencySetting",
    "CycleReport",
    "InMemoryUserStore",
    "TradingCycle",
    "UnitOutcome",
    "UnitResult",
    "UserAccount",
    "UserStore",
    "compute_notional",
    "decide_side",
]
