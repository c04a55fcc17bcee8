"""
Funding-Rate Trading System

Opens 1x perpetual-futures positions on the side that collects funding, at
each funding timestamp, for every enabled user across seven exchanges.

Components:
- Exchange Clients: Bybit, Binance, OKX, Gate.io, Aster, Hyperliquid, EdgeX
  behind one ExchangeClient contract with normalized Decimal models
- Exchange Factory: Registry of capabilities and client construction
- Credential Store: Fernet-encrypted keys, one valid credential per user/exchange
- Trading Cycle: Balance, leverage, ticker, sizing, side, position check, order
- Scheduler: Fires the cycle at funding hours and an hourly asset snapshot
- State Store: Persists trades, cycle logs and asset snapshots
- Monitoring: Structured logs, metrics, kill-switch
"""

__version__ = "0.1.0"

from funding_trader.core.config import Config
from funding_trader.core.scheduler import Scheduler

__all__ = [
    "Config",
    "Scheduler",
]
