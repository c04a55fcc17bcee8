"""
User accounts as seen by the trading cycle.

User management itself lives outside this package; the cycle only needs to
enumerate active, trading-enabled users and their enabled currencies.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from threading import RLock
from typing import Dict, List, Optional

from funding_trader.exchanges.models import canonical_coin


@dataclass
class CurrencySetting:
    symbol: str  # bare coin, e.g. "BTC"
    enabled: bool = True


@dataclass
class UserAccount:
    user_id: str
    exchange: str = "bybit"
    is_active: bool = True
    trading_enabled: bool = False
    currencies: List[CurrencySetting] = field(default_factory=list)

    @property
    def enabled_currencies(self) -> List[str]:
        return [canonical_coin(c.symbol) for c in self.currencies if c.enabled]

    @classmethod
    def from_dict(cls, data: dict, default_exchange: str = "bybit") -> "UserAccount":
        currencies = []
        for entry in data.get("currencies", []):
            if isinstance(entry, str):
                currencies.append(CurrencySetting(symbol=entry))
            else:
                currencies.append(CurrencySetting(symbol=entry["symbol"], enabled=entry.get("enabled", True)))
        return cls(
            user_id=str(data["user_id"]),
            exchange=str(data.get("exchange") or default_exchange).lower(),
            is_active=bool(data.get("is_active", True)),
            trading_enabled=bool(data.get("trading_enabled", False)),
            currencies=currencies,
        )


class UserStore(ABC):
    @abstractmethod
    def list_trading_users(self) -> List[UserAccount]:
        """Users that are active and have trading enabled."""

    @abstractmethod
    def list_active_users(self) -> List[UserAccount]:
        ...

    @abstractmethod
    def get(self, user_id: str) -> Optional[UserAccount]:
        ...


class InMemoryUserStore(UserStore):
    def __init__(self, users: Optional[List[UserAccount]] = None):
        self._users: Dict[str, UserAccount] = {}
        self._lock = RLock()
        for user in users or []:
            self.put(user)

    def put(self, user: UserAccount):
        with self._lock:
            self._users[user.user_id] = user

    def list_active_users(self) -> List[UserAccount]:
        with self._lock:
            return [u for u in self._users.values() if u.is_active]

    def list_trading_users(self) -> List[UserAccount]:
        return [u for u in self.list_active_users() if u.trading_enabled]

    def get(self, user_id: str) -> Optional[UserAccount]:
        with self._lock:
            return self._users.get(user_id)
