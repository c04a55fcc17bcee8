"""
Aster v3 futures adapter.

Aster exposes a Binance-compatible /fapi/v3 surface but authenticates each
request with an Ethereum signature instead of an API-key HMAC:

    sig = personal_sign(keccak(abi.encode(sortedQuery, user, signer, nonce)))

The account (user) address comes from wallet_address, falling back to
api_key; api_secret is the API wallet private key and the signer address
is derived from it.

Quantity unit: base asset. Native symbols look like BTCUSDT.
"""

import time
from typing import Any, Dict, List, Optional
from urllib.parse import urlencode

from funding_trader.core.errors import ConfigurationError, MalformedResponseError
from funding_trader.exchanges.binance import BinanceStyleClient
from funding_trader.exchanges.models import Credentials, MarginType
from funding_trader.exchanges.signing import (
    abi_encode_aster_payload,
    checksum_address,
    keccak256,
    private_key_to_address,
    sign_personal_hash,
)
from funding_trader.exchanges.transport import DEFAULT_TIMEOUT_SEC, RestTransport

RECV_WINDOW_MS = 50000


def sorted_param_string(params: Dict[str, Any]) -> str:
    """k=v pairs joined by & in ASCII key order, values unescaped."""
    return "&".join(f"{k}={params[k]}" for k in sorted(params) if params[k] is not None)


class AsterClient(BinanceStyleClient):
    exchange_id = "aster"
    margin_type = MarginType.LINEAR
    settle_coin = "USDT"
    quantity_unit = "base asset"
    native_symbol_template = "{coin}USDT"
    mainnet_url = "https://fapi.asterdex.com"
    testnet_url = ""
    recv_window = RECV_WINDOW_MS

    paths = {
        "balance": "/fapi/v3/balance",
        "positions": "/fapi/v3/account",
        "order": "/fapi/v3/order",
        "open_orders": "/fapi/v3/openOrders",
        "all_orders": "/fapi/v3/allOrders",
        "premium_index": "/fapi/v3/premiumIndex",
        "ticker": "/fapi/v3/ticker/24hr",
        "leverage": "/fapi/v3/leverage",
        "exchange_info": "/fapi/v3/exchangeInfo",
    }

    def __init__(
        self,
        credentials: Credentials,
        timeout: float = DEFAULT_TIMEOUT_SEC,
        transport: Optional[RestTransport] = None,
    ):
        super().__init__(credentials, timeout, transport)
        user = credentials.wallet_address or credentials.api_key
        if not user:
            raise ConfigurationError("aster requires the account wallet address")
        self.user_address = checksum_address(user)
        self.signer_address = private_key_to_address(credentials.api_secret)

    @staticmethod
    def _nonce() -> int:
        return int(time.time() * 1_000_000)

    def generate_signature(self, params: Dict[str, Any], nonce: int) -> str:
        query = sorted_param_string(params)
        encoded = abi_encode_aster_payload(query, self.user_address, self.signer_address, nonce)
        return sign_personal_hash(keccak256(encoded), self.credentials.api_secret)

    def build_signed_params(self, params: Dict[str, Any], timestamp: int, nonce: int) -> Dict[str, Any]:
        request_params = {k: v for k, v in params.items() if v is not None}
        request_params["timestamp"] = timestamp
        request_params["recvWindow"] = self.recv_window
        signed = dict(request_params)
        signed["nonce"] = nonce
        signed["user"] = self.user_address
        signed["signer"] = self.signer_address
        signed["signature"] = self.generate_signature(request_params, nonce)
        return signed

    def _signed_request(self, method: str, path: str, params: Optional[Dict[str, Any]] = None) -> Any:
        signed = self.build_signed_params(params or {}, self._timestamp_ms(), self._nonce())
        encoded = urlencode([(k, str(v)) for k, v in signed.items()])
        headers = {"Content-Type": "application/x-www-form-urlencoded"}
        if method in ("GET", "DELETE"):
            response = self.transport.request(method, path, query=encoded, headers=headers)
        else:
            response = self.transport.request(method, path, body=encoded, headers=headers)
        return self._unwrap(response)

    def _position_rows(self, symbol: Optional[str]) -> List[Dict[str, Any]]:
        account = self._signed_request("GET", self.paths["positions"])
        if not isinstance(account, dict):
            raise MalformedResponseError("account response is not an object")
        return list(account.get("positions", []))

    def _order_params(self, symbol, side, qty, order_type, price, reduce_only):
        params = super()._order_params(symbol, side, qty, order_type, price, reduce_only)
        params["positionSide"] = "BOTH"
        return params
