"""
Signature primitives used by the exchange adapters.

HMAC variants come from the standard library. Keccak-256, secp256k1 keys and
Ethereum personal-sign come from eth-account / eth-utils / eth-abi.
"""

import base64
import hashlib
import hmac
from typing import Union

from eth_abi import encode as abi_encode
from eth_account import Account
from eth_account.messages import encode_defunct
from eth_utils import keccak, to_checksum_address

from funding_trader.core.errors import ConfigurationError

BytesLike = Union[str, bytes]


def _to_bytes(value: BytesLike) -> bytes:
    return value.encode("utf-8") if isinstance(value, str) else value


def hmac_sha256_hex(secret: BytesLike, message: BytesLike) -> str:
    return hmac.new(_to_bytes(secret), _to_bytes(message), hashlib.sha256).hexdigest()


def hmac_sha256_base64(secret: BytesLike, message: BytesLike) -> str:
    digest = hmac.new(_to_bytes(secret), _to_bytes(message), hashlib.sha256).digest()
    return base64.b64encode(digest).decode("ascii")


def hmac_sha512_hex(secret: BytesLike, message: BytesLike) -> str:
    return hmac.new(_to_bytes(secret), _to_bytes(message), hashlib.sha512).hexdigest()


def sha512_hex(message: BytesLike) -> str:
    return hashlib.sha512(_to_bytes(message)).hexdigest()


def keccak256(data: bytes) -> bytes:
    return keccak(primitive=data)


def normalize_private_key(private_key: str) -> str:
    key = (private_key or "").strip()
    if not key:
        raise ConfigurationError("private key is empty")
    if not key.startswith("0x"):
        key = "0x" + key
    return key


def private_key_to_address(private_key: str) -> str:
    """Checksummed Ethereum address for a hex private key."""
    try:
        return Account.from_key(normalize_private_key(private_key)).address
    except Exception as exc:  # eth_keys raises its own ValidationError
        raise ConfigurationError(f"invalid private key: {exc}") from exc


def checksum_address(address: str) -> str:
    try:
        return to_checksum_address(address)
    except (ValueError, TypeError) as exc:
        raise ConfigurationError(f"invalid address {address!r}: {exc}") from exc


def sign_personal_hash(message_hash: bytes, private_key: str) -> str:
    """
    Ethereum personal-sign over a 32-byte hash.

    Signs keccak("\\x19Ethereum Signed Message:\\n32" + hash) and returns the
    65-byte r||s||v signature as 0x-prefixed hex.
    """
    signable = encode_defunct(primitive=message_hash)
    signed = Account.sign_message(signable, private_key=normalize_private_key(private_key))
    return "0x" + bytes(signed.signature).hex()


def recover_personal_hash_signer(message_hash: bytes, signature: str) -> str:
    """Address that produced signature over message_hash via sign_personal_hash."""
    signable = encode_defunct(primitive=message_hash)
    return Account.recover_message(signable, signature=signature)


def abi_encode_aster_payload(query_string: str, user: str, signer: str, nonce: int) -> bytes:
    """ABI-encode (string, address, address, uint256) as Aster v3 expects."""
    return abi_encode(
        ["string", "address", "address", "uint256"],
        [query_string, checksum_address(user), checksum_address(signer), int(nonce)],
    )
