"""
Configuration management for the funding-rate trading system.

Supports loading from YAML and environment variable overrides.
"""

import os
from dataclasses import dataclass, field, fields, is_dataclass
from typing import Literal


@dataclass
class ExchangeConfig:
    """Exchange client construction."""

    default_exchange: str = "bybit"  # Used when an account does not name one
    request_timeout_sec: float = 30.0  # Per-call HTTP timeout


@dataclass
class ScheduleConfig:
    """Wall-clock firing times (UTC)."""

    funding_hours_utc: list[int] = field(default_factory=lambda: [0, 8, 16])
    funding_minute: int = 0
    snapshot_enabled: bool = True  # Hourly asset snapshot job
    snapshot_minute: int = 0
    poll_interval_sec: float = 60.0  # Longest single sleep in the loop
    refire_guard_sec: float = 10.0  # Pause after a firing so one minute never fires twice


@dataclass
class TradingConfig:
    """Per-cycle trading rule parameters."""

    leverage: int = 1  # Fixed-leverage policy
    min_order_notional: int = 1  # Units sized below this are skipped
    zero_rate_side: Literal["Buy", "Sell"] = "Sell"  # Side taken when funding rate is exactly 0
    max_workers: int = 1  # Users processed in parallel (1 = sequential)
    dry_run: bool = False  # Log intended orders instead of placing them
    history_limit: int = 50


@dataclass
class CredentialConfig:
    """Credential encryption at rest."""

    encryption_key: str = ""  # Fernet key (url-safe base64, 32 bytes)


@dataclass
class KillSwitchConfig:
    """Circuit breaker parameters."""

    enabled: bool = True
    max_consecutive_failed_cycles: int = 3  # Halt after N cycles where every unit failed


@dataclass
class MonitoringConfig:
    """Logging and local state."""

    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"
    log_format: Literal["console", "json"] = "console"
    log_file: str = ""  # Empty = stdout
    state_dir: str = "data/state"


@dataclass
class Config:
    """
    Complete system configuration.

    Environment variables (override config file):
    - FT_ENCRYPTION_KEY: Fernet key for stored credentials
    - FT_DEFAULT_EXCHANGE: Exchange id used when an account names none
    - FT_LOG_LEVEL / FT_LOG_FORMAT: Logging overrides
    - FT_STATE_DIR: Directory for trade/log/snapshot JSONL files
    - FT_DRY_RUN: "1", "true" or "yes" to disable order placement
    """

    exchange: ExchangeConfig = field(default_factory=ExchangeConfig)
    schedule: ScheduleConfig = field(default_factory=ScheduleConfig)
    trading: TradingConfig = field(default_factory=TradingConfig)
    credentials: CredentialConfig = field(default_factory=CredentialConfig)
    kill_switch: KillSwitchConfig = field(default_factory=KillSwitchConfig)
    monitoring: MonitoringConfig = field(default_factory=MonitoringConfig)

    def __post_init__(self):
        """Load environment variable overrides."""
        if os.getenv("FT_ENCRYPTION_KEY"):
            self.credentials.encryption_key = os.getenv("FT_ENCRYPTION_KEY", "")

        if os.getenv("FT_DEFAULT_EXCHANGE"):
            self.exchange.default_exchange = os.getenv("FT_DEFAULT_EXCHANGE", "bybit").lower()

        if os.getenv("FT_LOG_LEVEL"):
            self.monitoring.log_level = os.getenv("FT_LOG_LEVEL", "INFO").upper()

        if os.getenv("FT_LOG_FORMAT"):
            self.monitoring.log_format = os.getenv("FT_LOG_FORMAT", "console").lower()

        if os.getenv("FT_STATE_DIR"):
            self.monitoring.state_dir = os.getenv("FT_STATE_DIR", "data/state")

        if os.getenv("FT_DRY_RUN"):
            self.trading.dry_run = os.getenv("FT_DRY_RUN", "").lower() in ("1", "true", "yes")

    @classmethod
    def from_yaml(cls, path: str) -> "Config":
        """Load config from YAML file."""
        import yaml

        with open(path, "r") as f:
            data = yaml.safe_load(f) or {}
        return cls.from_dict(data)

    @classmethod
    def from_dict(cls, data: dict) -> "Config":
        """Load config from dictionary."""

        def build(dc_type, data):
            if not is_dataclass(dc_type):
                return data
            kwargs = {}
            for f in fields(dc_type):
                if f.name in data:
                    val = data[f.name]
                    if hasattr(f.type, "__dataclass_fields__"):
                        kwargs[f.name] = build(f.type, val or {})
                    else:
                        kwargs[f.name] = val
            return dc_type(**kwargs)

        return build(cls, data)

    def validate(self) -> list[str]:
        """
        Validate configuration parameters.

        Returns:
            List of validation errors (empty if valid)
        """
        from cryptography.fernet import Fernet

        from funding_trader.exchanges.factory import EXCHANGE_REGISTRY

        errors = []

        key = self.credentials.encryption_key
        if not key:
            errors.append("FT_ENCRYPTION_KEY environment variable required")
        else:
            try:
                Fernet(key)
            except (ValueError, TypeError):
                errors.append("credentials.encryption_key is not a valid Fernet key")

        if self.exchange.default_exchange.lower() not in EXCHANGE_REGISTRY:
            errors.append(f"exchange.default_exchange {self.exchange.default_exchange!r} is not supported")

        if self.exchange.request_timeout_sec <= 0:
            errors.append("exchange.request_timeout_sec must be > 0")

        if not self.schedule.funding_hours_utc:
            errors.append("schedule.funding_hours_utc must not be empty")
        elif any(not 0 <= h <= 23 for h in self.schedule.funding_hours_utc):
            errors.append("schedule.funding_hours_utc must be within [0, 23]")

        for name in ("funding_minute", "snapshot_minute"):
            if not 0 <= getattr(self.schedule, name) <= 59:
                errors.append(f"schedule.{name} must be within [0, 59]")

        if self.trading.leverage < 1:
            errors.append("trading.leverage must be >= 1")

        if self.trading.zero_rate_side not in ("Buy", "Sell"):
            errors.append("trading.zero_rate_side must be 'Buy' or 'Sell'")

        if self.trading.max_workers < 1:
            errors.append("trading.max_workers must be >= 1")

        if self.monitoring.log_format not in ("console", "json"):
            errors.append("monitoring.log_format must be 'console' or 'json'")

        return errors
