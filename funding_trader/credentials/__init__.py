"""Credential encryption and storage."""

from funding_trader.credentials.store import (
    CredentialCipher,
    CredentialRepository,
    CredentialService,
    InMemoryCredentialRepository,
    StoredCredential,
)

__all__ = [
    "CredentialCipher",
    "CredentialRepository",
    "CredentialService",
    "InMemoryCredentialRepository",
    "StoredCredential",
]
