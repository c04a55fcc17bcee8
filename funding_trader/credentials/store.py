"""
Credential storage: Fernet encryption at rest plus an append-only record
history with at most one valid credential per (user, exchange).
"""

import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from threading import RLock
from typing import Dict, List, Optional

import structlog
from cryptography.fernet import Fernet, InvalidToken

from funding_trader.core.errors import (
    AuthError,
    ConfigurationError,
    CredentialDecryptionError,
    UnsupportedExchange,
)
from funding_trader.exchanges.models import Credentials

logger = structlog.get_logger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class CredentialCipher:
    """
    Symmetric encryption for stored secrets.

    Tampered ciphertext, or ciphertext produced under another key, raises
    CredentialDecryptionError instead of yielding an empty secret.
    """

    def __init__(self, key: str):
        if not key:
            raise ConfigurationError("credential encryption key is empty")
        try:
            self._fernet = Fernet(key.encode("ascii") if isinstance(key, str) else key)
        except (ValueError, TypeError) as exc:
            raise ConfigurationError(f"invalid credential encryption key: {exc}") from exc

    @staticmethod
    def generate_key() -> str:
        return Fernet.generate_key().decode("ascii")

    def encrypt(self, plaintext: str) -> str:
        return self._fernet.encrypt(plaintext.encode("utf-8")).decode("ascii")

    def decrypt(self, ciphertext: str) -> str:
        if not ciphertext:
            raise CredentialDecryptionError("ciphertext is empty")
        try:
            return self._fernet.decrypt(ciphertext.encode("ascii")).decode("utf-8")
        except (InvalidToken, UnicodeError) as exc:
            raise CredentialDecryptionError("stored credential could not be decrypted") from exc

    def encrypt_optional(self, plaintext: Optional[str]) -> Optional[str]:
        return self.encrypt(plaintext) if plaintext else None

    def decrypt_optional(self, ciphertext: Optional[str]) -> Optional[str]:
        return self.decrypt(ciphertext) if ciphertext else None

    def encrypt_credentials(self, user_id: str, exchange: str, credentials: Credentials) -> "StoredCredential":
        return StoredCredential(
            user_id=user_id,
            exchange=exchange.lower(),
            api_key=self.encrypt(credentials.api_key),
            api_secret=self.encrypt(credentials.api_secret),
            passphrase=self.encrypt_optional(credentials.passphrase),
            wallet_address=self.encrypt_optional(credentials.wallet_address),
            is_testnet=credentials.is_testnet,
        )

    def decrypt_credentials(self, record: "StoredCredential") -> Credentials:
        return Credentials(
            api_key=self.decrypt(record.api_key),
            api_secret=self.decrypt(record.api_secret),
            passphrase=self.decrypt_optional(record.passphrase),
            wallet_address=self.decrypt_optional(record.wallet_address),
            is_testnet=record.is_testnet,
        )


@dataclass
class StoredCredential:
    """Encrypted credential record; secret fields hold Fernet tokens."""

    user_id: str
    exchange: str
    api_key: str
    api_secret: str
    passphrase: Optional[str] = None
    wallet_address: Optional[str] = None
    is_testnet: bool = False
    is_valid: bool = True
    last_validated_at: Optional[datetime] = None
    created_at: datetime = field(default_factory=_utcnow)
    credential_id: str = field(default_factory=lambda: uuid.uuid4().hex)

    def to_dict(self) -> Dict[str, object]:
        return {
            "credential_id": self.credential_id,
            "user_id": self.user_id,
            "exchange": self.exchange,
            "api_key": self.api_key,
            "api_secret": self.api_secret,
            "passphrase": self.passphrase,
            "wallet_address": self.wallet_address,
            "is_testnet": self.is_testnet,
            "is_valid": self.is_valid,
            "last_validated_at": self.last_validated_at.isoformat() if self.last_validated_at else None,
            "created_at": self.created_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, object]) -> "StoredCredential":
        def ts(value):
            return datetime.fromisoformat(value) if value else None

        return cls(
            user_id=str(data["user_id"]),
            exchange=str(data["exchange"]).lower(),
            api_key=str(data["api_key"]),
            api_secret=str(data["api_secret"]),
            passphrase=data.get("passphrase") or None,
            wallet_address=data.get("wallet_address") or None,
            is_testnet=bool(data.get("is_testnet", False)),
            is_valid=bool(data.get("is_valid", True)),
            last_validated_at=ts(data.get("last_validated_at")),
            created_at=ts(data.get("created_at")) or _utcnow(),
            credential_id=str(data.get("credential_id") or uuid.uuid4().hex),
        )


class CredentialRepository(ABC):
    """Persistence boundary for credential records. Records are never deleted."""

    @abstractmethod
    def add(self, record: StoredCredential) -> StoredCredential:
        ...

    @abstractmethod
    def update(self, record: StoredCredential) -> None:
        ...

    @abstractmethod
    def find_valid(self, user_id: str, exchange: Optional[str] = None) -> Optional[StoredCredential]:
        ...

    @abstractmethod
    def invalidate(self, user_id: str, exchange: str) -> int:
        """Mark every valid record for (user, exchange) invalid. Returns how many changed."""

    @abstractmethod
    def history(self, user_id: str) -> List[StoredCredential]:
        ...


class InMemoryCredentialRepository(CredentialRepository):
    """Thread-safe in-process repository; read-only use during a trading cycle."""

    def __init__(self, records: Optional[List[StoredCredential]] = None):
        self._records: List[StoredCredential] = list(records or [])
        self._lock = RLock()

    def add(self, record: StoredCredential) -> StoredCredential:
        with self._lock:
            self._records.append(record)
        return record

    def update(self, record: StoredCredential) -> None:
        with self._lock:
            for i, existing in enumerate(self._records):
                if existing.credential_id == record.credential_id:
                    self._records[i] = record
                    return
        raise KeyError(record.credential_id)

    def find_valid(self, user_id: str, exchange: Optional[str] = None) -> Optional[StoredCredential]:
        with self._lock:
            for record in reversed(self._records):
                if record.user_id != user_id or not record.is_valid:
                    continue
                if exchange and record.exchange != exchange.lower():
                    continue
                return record
        return None

    def invalidate(self, user_id: str, exchange: str) -> int:
        changed = 0
        with self._lock:
            for i, record in enumerate(self._records):
                if record.user_id == user_id and record.exchange == exchange.lower() and record.is_valid:
                    self._records[i] = replace(record, is_valid=False)
                    changed += 1
        return changed

    def history(self, user_id: str) -> List[StoredCredential]:
        with self._lock:
            return [r for r in self._records if r.user_id == user_id]


class CredentialService:
    """
    Register, re-validate and soft-delete exchange credentials.

    Args:
        repository: Record store
        cipher: Encrypts secrets before they reach the repository
        factory: ExchangeFactory used to test credentials against the exchange
    """

    def __init__(self, repository: CredentialRepository, cipher: CredentialCipher, factory):
        self.repository = repository
        self.cipher = cipher
        self.factory = factory

    def register(
        self,
        user_id: str,
        exchange: str,
        credentials: Credentials,
        validate: bool = True,
    ) -> StoredCredential:
        """
        Store a new credential for (user, exchange).

        Prior valid credentials for the same pair are invalidated; other
        exchanges are untouched. With validate=True the key is tested first
        and AuthError is raised if the exchange rejects it.
        """
        exchange = exchange.lower()
        if not self.factory.is_supported(exchange):
            raise UnsupportedExchange(f"unsupported exchange: {exchange!r}")

        # Raises ConfigurationError for missing passphrase / wallet address
        client = self.factory.create_client(exchange, credentials)
        validated_at = None
        if validate:
            status = client.test_connection()
            if not status.success:
                logger.warning("credential_rejected", user_id=user_id, exchange=exchange, reason=status.message)
                raise AuthError(f"{exchange} rejected the credential: {status.message}")
            validated_at = _utcnow()

        invalidated = self.repository.invalidate(user_id, exchange)
        record = self.cipher.encrypt_credentials(user_id, exchange, credentials)
        record.last_validated_at = validated_at
        self.repository.add(record)
        logger.info(
            "credential_registered",
            user_id=user_id,
            exchange=exchange,
            testnet=credentials.is_testnet,
            invalidated=invalidated,
        )
        return record

    def revalidate(self, user_id: str, exchange: str) -> bool:
        """Test the current valid credential again; a failure invalidates it."""
        record = self.repository.find_valid(user_id, exchange)
        if record is None:
            return False
        status = self.factory.create_client_from_stored_credential(record).test_connection()
        self.repository.update(
            replace(record, is_valid=status.success, last_validated_at=_utcnow())
        )
        logger.info("credential_revalidated", user_id=user_id, exchange=exchange, valid=status.success)
        return status.success

    def delete(self, user_id: str, exchange: str) -> int:
        """Soft-delete: records stay in history with is_valid=False."""
        changed = self.repository.invalidate(user_id, exchange)
        logger.info("credential_deleted", user_id=user_id, exchange=exchange, invalidated=changed)
        return changed

    def find_valid(self, user_id: str, exchange: Optional[str] = None) -> Optional[StoredCredential]:
        return self.repository.find_valid(user_id, exchange)

    def client_for(self, user_id: str, exchange: str):
        """Client for the user's valid credential, or None when there is none."""
        record = self.repository.find_valid(user_id, exchange)
        if record is None:
            return None
        return self.factory.create_client_from_stored_credential(record)
