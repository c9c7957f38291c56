"""
Onramp error types.

Specific exceptions for different failure modes, enabling callers
to handle each case appropriately (abort startup, fall back, reject request).
"""

from __future__ import annotations

from typing import Optional


class OnrampError(Exception):
    """Base error for all onramp session operations."""
    pass


# Configuration errors
class ConfigurationError(OnrampError):
    """Required configuration is missing or invalid. Fatal at startup."""
    pass


class InvalidKeyMaterialError(ConfigurationError):
    """Provider private key could not be normalized into a P-256 signing key.

    The message carries a redacted diagnostic only, never key material.
    """
    pass


# Signing errors
class SigningError(OnrampError):
    """ES256 assertion could not be produced."""
    pass


# Exchange errors
class ExchangeError(OnrampError):
    """Base error for provider token exchange failures (recoverable)."""
    pass


class ExchangeTimeoutError(ExchangeError):
    """Provider did not answer within the exchange deadline."""
    pass


class ExchangeUnavailableError(ExchangeError):
    """Network-level failure (DNS, connection refused, TLS)."""
    pass


class ExchangeRejectedError(ExchangeError):
    """Provider answered with a non-2xx status."""
    def __init__(self, status_code: int, message: str):
        self.status_code = status_code
        super().__init__(f"Token exchange rejected ({status_code}): {message}")


class ExchangeMalformedResponseError(ExchangeError):
    """Provider answered 2xx but without a usable session token."""
    def __init__(self, message: str, status_code: Optional[int] = None):
        self.status_code = status_code
        super().__init__(message)


# Caller errors
class MissingSessionTokenError(OnrampError):
    """Redirect URL requested without any session token."""
    pass


class InvalidSessionParametersError(OnrampError, ValueError):
    """Session parameters rejected before any signing or network work."""
    def __init__(self, field: str, message: str):
        self.field = field
        super().__init__(f"{field}: {message}")


# Fallback token errors
class FallbackTokenError(OnrampError):
    """Degraded token failed verification (signature, expiry, marker)."""
    pass
