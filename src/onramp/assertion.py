"""
ES256 assertions for the onramp token endpoint.

Every call produces a freshly signed, 120-second JWT with its own nonce.
Assertions are never cached: the short window and per-call nonce are what
keep a captured assertion from being replayed.
"""

from __future__ import annotations

import secrets
import time
from dataclasses import dataclass, field
from typing import Callable, Optional
from urllib.parse import urlparse

import jwt
from cryptography.hazmat.primitives.asymmetric import ec

from .errors import SigningError
from .keys import REQUIRED_CURVE, SigningKey

ONRAMP_TOKEN_URL = "https://api.developer.coinbase.com/onramp/v1/token"
ASSERTION_ALGORITHM = "ES256"
ASSERTION_WINDOW_SECONDS = 120


@dataclass(frozen=True)
class Assertion:
    """A signed, time-bounded credential for one exchange attempt."""

    token: str = field(repr=False)
    key_id: str
    issuer: str
    subject: str
    audience: str
    not_before: int
    issued_at: int
    expires_at: int
    nonce: str
    uris: tuple[str, ...] = ()

    def is_expired(self, now: Optional[float] = None) -> bool:
        return (time.time() if now is None else now) >= self.expires_at

    @property
    def authorization_header(self) -> str:
        return f"Bearer {self.token}"


class AssertionSigner:
    """Signs provider assertions with a fixed ES256 algorithm."""

    def __init__(
        self,
        audience: str = ONRAMP_TOKEN_URL,
        window_seconds: int = ASSERTION_WINDOW_SECONDS,
        algorithm: str = ASSERTION_ALGORITHM,
        clock: Callable[[], float] = time.time,
    ):
        if algorithm != ASSERTION_ALGORITHM:
            raise SigningError(
                f"Provider requires {ASSERTION_ALGORITHM} assertions; refusing {algorithm!r}"
            )
        if window_seconds <= 0:
            raise ValueError("Assertion window must be positive")

        parsed = urlparse(audience)
        if parsed.scheme != "https" or not parsed.netloc:
            raise ValueError(f"Invalid token endpoint URL: {audience}")

        self._audience = audience
        self._uri = f"POST {parsed.netloc}{parsed.path}"
        self._window_seconds = window_seconds
        self._clock = clock

    @property
    def audience(self) -> str:
        return self._audience

    def sign(self, key: SigningKey, issuer: Optional[str] = None) -> Assertion:
        private_key = key.private_key
        if not isinstance(private_key, ec.EllipticCurvePrivateKey):
            raise SigningError(f"ES256 needs an EC key, got {type(private_key).__name__}")
        if private_key.curve.name != REQUIRED_CURVE:
            raise SigningError(f"ES256 needs a P-256 key, got {private_key.curve.name}")

        now = int(self._clock())
        nonce = secrets.token_hex(16)
        resolved_issuer = issuer or key.key_id
        claims = {
            "iss": resolved_issuer,
            "sub": key.key_id,
            "aud": [self._audience],
            "nbf": now,
            "iat": now,
            "exp": now + self._window_seconds,
            "uris": [self._uri],
        }
        try:
            token = jwt.encode(
                claims,
                private_key,
                algorithm=ASSERTION_ALGORITHM,
                headers={
                    "alg": ASSERTION_ALGORITHM,
                    "kid": key.key_id,
                    "typ": "JWT",
                    "nonce": nonce,
                },
            )
        except (jwt.PyJWTError, ValueError, TypeError) as exc:
            raise SigningError(f"Assertion signing failed: {type(exc).__name__}") from exc

        return Assertion(
            token=token,
            key_id=key.key_id,
            issuer=resolved_issuer,
            subject=key.key_id,
            audience=self._audience,
            not_before=now,
            issued_at=now,
            expires_at=now + self._window_seconds,
            nonce=nonce,
            uris=(self._uri,),
        )


def sign_assertion(
    key: SigningKey,
    issuer: Optional[str] = None,
    audience: str = ONRAMP_TOKEN_URL,
) -> Assertion:
    """Convenience wrapper: sign one assertion with default settings."""
    return AssertionSigner(audience=audience).sign(key, issuer=issuer)
