"""
Error taxonomy for the exchange adapter layer.

Adapters raise these internally and convert them into ApiResult values at
their public boundary. Factory construction errors are raised to callers.
"""

from typing import Optional


class FundingTraderError(Exception):
    """Base class for all errors raised by funding_trader."""

    kind = "error"
    default_code = -1

    def __init__(self, message: str, code: Optional[int] = None):
        super().__init__(message)
        self.message = message
        self.code = self.default_code if code is None else code

    def __str__(self) -> str:
        return self.message


class TransportError(FundingTraderError):
    """Network failure, timeout or a bodiless 5xx response."""

    kind = "transport"
    default_code = -1


class AuthError(FundingTraderError):
    """Signature rejected or credential not accepted by the exchange."""

    kind = "auth"
    default_code = 401


class ExchangeBusinessError(FundingTraderError):
    """Valid request rejected by the exchange (nonzero exchange error code)."""

    kind = "business"
    default_code = -4


class MalformedResponseError(ExchangeBusinessError):
    """Response body was not JSON, lacked a field, or held an unparsable number."""

    kind = "malformed"
    default_code = -2


class ConfigurationError(FundingTraderError):
    """Missing credential field, bad key material or invalid settings."""

    kind = "configuration"
    default_code = -3


class UnsupportedExchange(ConfigurationError):
    """Exchange identifier is not in the registry."""


class ExchangeNotImplemented(ConfigurationError):
    """Exchange is known but has no concrete adapter registered."""


class CredentialDecryptionError(FundingTraderError):
    """Stored ciphertext was tampered with or encrypted under another key."""

    kind = "configuration"
    default_code = -3
