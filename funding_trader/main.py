"""
Main entry point for the funding-rate trading system.

Wires Config -> Credentials -> Factory -> TradingCycle -> Scheduler.
"""

import argparse
import sys
from pathlib import Path
from typing import List, Optional

import structlog
import yaml
from dotenv import load_dotenv

from funding_trader.core.config import Config
from funding_trader.core.scheduler import build_default_scheduler
from funding_trader.credentials.store import (
    CredentialCipher,
    CredentialService,
    InMemoryCredentialRepository,
    StoredCredential,
)
from funding_trader.exchanges.factory import ExchangeFactory
from funding_trader.monitoring.kill_switch import KillSwitch
from funding_trader.monitoring.logger import configure_logging
from funding_trader.monitoring.metrics import MetricsCollector
from funding_trader.trading.accounts import InMemoryUserStore, UserAccount
from funding_trader.trading.cycle import TradingCycle
from funding_trader.utils.state_store import StateStore

logger = structlog.get_logger(__name__)


def load_accounts(path: str, default_exchange: str):
    """
    Read users and their already-encrypted credentials from YAML.

    Format:
        users:
          - {user_id: alice, exchange: bybit, trading_enabled: true, currencies: [BTC]}
        credentials:
          - {user_id: alice, exchange: bybit, api_key: <fernet>, api_secret: <fernet>}
    """
    with open(path, "r") as f:
        data = yaml.safe_load(f) or {}
    users = [UserAccount.from_dict(u, default_exchange) for u in data.get("users", [])]
    records = [StoredCredential.from_dict(c) for c in data.get("credentials", [])]
    return users, records


class FundingTradingSystem:
    """
    Main orchestrator.

    Owns every long-lived component and hands them to each other explicitly.
    """

    def __init__(self, config: Config, users: List[UserAccount], records: List[StoredCredential]):
        self.config = config

        errors = config.validate()
        if errors:
            print("[ERROR] Configuration validation failed:", file=sys.stderr)
            for err in errors:
                print(f"  - {err}", file=sys.stderr)
            sys.exit(1)

        self.cipher = CredentialCipher(config.credentials.encryption_key)
        self.factory = ExchangeFactory(cipher=self.cipher, timeout=config.exchange.request_timeout_sec)
        self.credentials = CredentialService(InMemoryCredentialRepository(records), self.cipher, self.factory)
        self.user_store = InMemoryUserStore(users)
        self.state_store = StateStore(config.monitoring.state_dir)
        self.metrics = MetricsCollector(config)
        self.kill_switch = KillSwitch(config)
        self.cycle = TradingCycle(self.user_store, self.credentials, self.factory, self.state_store, config)
        self.scheduler = build_default_scheduler(config, self.cycle, self.kill_switch, self.metrics)

        logger.info(
            "system_initialized",
            users=len(users),
            credentials=len(records),
            dry_run=config.trading.dry_run,
        )

    def run_once(self):
        """Run a single trading cycle immediately."""
        self.cycle.run()
        if self.cycle.last_report is not None:
            self.metrics.record_cycle(self.cycle.last_report)
        self.state_store.save_snapshot("metrics", self.metrics.snapshot())

    def run(self):
        """Run the trading system (blocks until interrupted)."""
        try:
            self.scheduler.run_forever()
        except KeyboardInterrupt:
            logger.info("shutdown_requested")
            self.scheduler.stop()
        finally:
            self.state_store.save_snapshot("metrics", self.metrics.snapshot())


def print_exchanges():
    factory = ExchangeFactory()
    print(f"{'id':<12} {'name':<12} {'type':<4} {'testnet':<8} {'passphrase':<11} {'wallet':<7} implemented")
    for caps in factory.list_supported():
        print(
            f"{caps.id:<12} {caps.name:<12} {caps.category.value:<4} "
            f"{'yes' if caps.has_testnet else 'no':<8} "
            f"{'yes' if caps.needs_passphrase else 'no':<11} "
            f"{'yes' if caps.needs_wallet_address else 'no':<7} "
            f"{'yes' if caps.is_implemented else 'no'}"
        )


def main(argv: Optional[List[str]] = None):
    """CLI entry point."""
    parser = argparse.ArgumentParser(description="Funding-rate perpetual futures trader")
    parser.add_argument("--config", type=str, default="", help="Path to YAML config file")
    parser.add_argument("--accounts", type=str, default="", help="Path to YAML users/credentials file")
    parser.add_argument("--dry-run", action="store_true", help="Log intended orders instead of placing them")
    parser.add_argument("--once", action="store_true", help="Run one trading cycle and exit")
    parser.add_argument("--generate-key", action="store_true", help="Print a new credential encryption key")
    parser.add_argument("--list-exchanges", action="store_true", help="Print supported exchanges")
    args = parser.parse_args(argv)

    if args.generate_key:
        print(CredentialCipher.generate_key())
        return
    if args.list_exchanges:
        print_exchanges()
        return

    # Load .env if present (before Config) to populate FT_* variables
    load_dotenv(dotenv_path=Path.cwd() / ".env")

    config = Config.from_yaml(args.config) if args.config else Config()
    if args.dry_run:
        config.trading.dry_run = True

    configure_logging(
        service_name="funding-trader",
        log_level=config.monitoring.log_level,
        log_format=config.monitoring.log_format,
        log_file=config.monitoring.log_file or None,
    )

    users, records = load_accounts(args.accounts, config.exchange.default_exchange) if args.accounts else ([], [])
    system = FundingTradingSystem(config, users, records)
    if args.once:
        system.run_once()
    else:
        system.run()


if __name__ == "__main__":
    main()
