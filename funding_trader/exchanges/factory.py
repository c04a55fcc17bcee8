"""
Exchange registry and client factory.

EXCHANGE_REGISTRY is the static capability table. ExchangeFactory resolves
an exchange id plus credentials (plain or stored-encrypted) into a client.
Construction errors are raised, not wrapped.
"""

from dataclasses import dataclass
from typing import TYPE_CHECKING, Dict, List, Optional, Type

import structlog

from funding_trader.core.errors import ConfigurationError, ExchangeNotImplemented, UnsupportedExchange
from funding_trader.exchanges.aster import AsterClient
from funding_trader.exchanges.base import ExchangeClient
from funding_trader.exchanges.binance import BinanceClient
from funding_trader.exchanges.bybit import BybitClient
from funding_trader.exchanges.edgex import EdgexClient
from funding_trader.exchanges.gateio import GateioClient
from funding_trader.exchanges.hyperliquid import HyperliquidClient
from funding_trader.exchanges.models import Credentials, ExchangeCapabilities, ExchangeCategory
from funding_trader.exchanges.okx import OkxClient
from funding_trader.exchanges.transport import DEFAULT_TIMEOUT_SEC

if TYPE_CHECKING:
    from funding_trader.credentials.store import CredentialCipher, StoredCredential

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class ExchangeSpec:
    capabilities: ExchangeCapabilities
    client_cls: Optional[Type[ExchangeClient]]


def exchange_spec(
    id: str,
    name: str,
    description: str,
    category: ExchangeCategory,
    has_testnet: bool,
    needs_passphrase: bool,
    needs_wallet_address: bool,
    client_cls: Optional[Type[ExchangeClient]],
) -> ExchangeSpec:
    """Registry entry; is_implemented follows from client_cls."""
    return ExchangeSpec(
        capabilities=ExchangeCapabilities(
            id=id,
            name=name,
            description=description,
            category=category,
            has_testnet=has_testnet,
            needs_passphrase=needs_passphrase,
            needs_wallet_address=needs_wallet_address,
            is_implemented=client_cls is not None,
        ),
        client_cls=client_cls,
    )


EXCHANGE_REGISTRY: Dict[str, ExchangeSpec] = {
    spec.capabilities.id: spec
    for spec in [
        exchange_spec("bybit", "Bybit", "Inverse perpetual futures (v5)",
                      ExchangeCategory.CEX, True, False, False, BybitClient),
        exchange_spec("binance", "Binance", "USDS-M perpetual futures",
                      ExchangeCategory.CEX, True, False, False, BinanceClient),
        exchange_spec("okx", "OKX", "USDT-margined perpetual swaps (v5)",
                      ExchangeCategory.CEX, True, True, False, OkxClient),
        exchange_spec("gateio", "Gate.io", "USDT-settled perpetual futures (v4)",
                      ExchangeCategory.CEX, True, False, False, GateioClient),
        exchange_spec("aster", "Aster", "Perpetual DEX with Web3-signed v3 API",
                      ExchangeCategory.DEX, False, False, True, AsterClient),
        exchange_spec("hyperliquid", "Hyperliquid", "On-chain perpetual DEX (L1)",
                      ExchangeCategory.DEX, True, False, True, HyperliquidClient),
        exchange_spec("edgex", "EdgeX", "StarkEx L2 perpetual DEX",
                      ExchangeCategory.DEX, True, False, True, EdgexClient),
    ]
}


class ExchangeFactory:
    """
    Stateless construction dispatch over a capability table.

    Args:
        registry: Capability table (defaults to EXCHANGE_REGISTRY)
        cipher: Decrypts stored credentials for create_client_from_stored_credential
        timeout: Per-call HTTP timeout handed to every client
    """

    def __init__(
        self,
        registry: Optional[Dict[str, ExchangeSpec]] = None,
        cipher: Optional["CredentialCipher"] = None,
        timeout: float = DEFAULT_TIMEOUT_SEC,
    ):
        self.registry = dict(EXCHANGE_REGISTRY if registry is None else registry)
        self.cipher = cipher
        self.timeout = timeout

    @staticmethod
    def _key(exchange_id: str) -> str:
        return (exchange_id or "").strip().lower()

    def list_supported(self, only_implemented: bool = False) -> List[ExchangeCapabilities]:
        return [
            spec.capabilities
            for spec in self.registry.values()
            if not only_implemented or spec.client_cls is not None
        ]

    def is_supported(self, exchange_id: str) -> bool:
        return self._key(exchange_id) in self.registry

    def is_implemented(self, exchange_id: str) -> bool:
        spec = self.registry.get(self._key(exchange_id))
        return spec is not None and spec.client_cls is not None

    def get_capabilities(self, exchange_id: str) -> ExchangeCapabilities:
        spec = self.registry.get(self._key(exchange_id))
        if spec is None:
            raise UnsupportedExchange(f"unsupported exchange: {exchange_id!r}")
        return spec.capabilities

    def create_client(self, exchange_id: str, credentials: Credentials) -> ExchangeClient:
        """
        Build a client for exchange_id.

        Raises:
            UnsupportedExchange: id not in the registry
            ExchangeNotImplemented: id known but no adapter registered
            ConfigurationError: a credential field the exchange needs is missing
        """
        key = self._key(exchange_id)
        spec = self.registry.get(key)
        if spec is None:
            raise UnsupportedExchange(f"unsupported exchange: {exchange_id!r}")
        if spec.client_cls is None:
            raise ExchangeNotImplemented(f"exchange {key!r} has no adapter")

        caps = spec.capabilities
        if not credentials.api_key or not credentials.api_secret:
            raise ConfigurationError(f"{caps.name} requires both API key and secret")
        if caps.needs_passphrase and not credentials.passphrase:
            raise ConfigurationError(f"{caps.name} requires an API passphrase")
        if caps.needs_wallet_address and not credentials.wallet_address:
            raise ConfigurationError(f"{caps.name} requires a wallet address")
        if credentials.is_testnet and not caps.has_testnet:
            raise ConfigurationError(f"{caps.name} has no testnet")

        logger.debug("creating_exchange_client", exchange=key, testnet=credentials.is_testnet)
        return spec.client_cls(credentials, timeout=self.timeout)

    def create_client_from_stored_credential(self, record: "StoredCredential") -> ExchangeClient:
        """Decrypt a stored credential record and build its client."""
        if self.cipher is None:
            raise ConfigurationError("no credential cipher configured")
        return self.create_client(record.exchange, self.cipher.decrypt_credentials(record))
