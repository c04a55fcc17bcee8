"""Tests for the CLI entry point and system wiring."""

import pytest
import yaml
from cryptography.fernet import Fernet

from funding_trader.credentials.store import CredentialCipher
from funding_trader.exchanges.models import Credentials
from funding_trader.main import FundingTradingSystem, load_accounts, main


@pytest.fixture
def accounts_file(tmp_path, fernet_key):
    record = CredentialCipher(fernet_key).encrypt_credentials("alice", "bybit", Credentials("test-key", "test-secret"))
    data = {
        "users": [
            {"user_id": "alice", "trading_enabled": True, "currencies": ["btc", {"symbol": "ETH", "enabled": False}]},
            {"user_id": "bob", "exchange": "OKX"},
        ],
        "credentials": [record.to_dict()],
    }
    path = tmp_path / "accounts.yaml"
    path.write_text(yaml.safe_dump(data))
    return path


class TestLoadAccounts:
    def test_users_and_records(self, accounts_file, fernet_key):
        users, records = load_accounts(str(accounts_file), "bybit")
        assert [u.user_id for u in users] == ["alice", "bob"]
        assert users[0].exchange == "bybit"
        assert users[0].enabled_currencies == ["BTC"]
        assert users[1].exchange == "okx"
        assert not users[1].trading_enabled
        assert CredentialCipher(fernet_key).decrypt_credentials(records[0]).api_secret == "test-secret"


class TestFundingTradingSystem:
    """Startup validation and one-shot runs."""

    def test_invalid_config_exits(self, config, capsys):
        config.credentials.encryption_key = ""
        with pytest.raises(SystemExit) as exc:
            FundingTradingSystem(config, [], [])
        assert exc.value.code == 1
        assert "FT_ENCRYPTION_KEY" in capsys.readouterr().err

    def test_run_once_saves_metrics(self, config, accounts_file):
        users, records = load_accounts(str(accounts_file), "bybit")
        # alice's credential was encrypted under another key, so her units fail
        config.credentials.encryption_key = Fernet.generate_key().decode("ascii")
        system = FundingTradingSystem(config, users, records)
        system.run_once()

        assert system.cycle.last_report.counts() == {"failed": 1}
        assert system.state_store.load_latest_snapshot("metrics")["cycles"] == 1


class TestCli:
    def test_generate_key(self, capsys):
        main(["--generate-key"])
        key = capsys.readouterr().out.strip()
        assert CredentialCipher(key)

    def test_list_exchanges(self, capsys):
        main(["--list-exchanges"])
        out = capsys.readouterr().out
        for exchange in ("bybit", "binance", "okx", "gateio", "aster", "hyperliquid", "edgex"):
            assert exchange in out
