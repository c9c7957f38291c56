"""
Degraded-mode session tokens.

When the provider exchange fails, checkout continues with a locally signed
HS256 token that embeds the same session parameters and an explicit
``degraded: true`` marker. The provider cannot verify it; only this
application's own success handling may accept it, and purchases made under
it require manual reconciliation.
"""

from __future__ import annotations

import secrets
import time
from dataclasses import dataclass
from typing import Any, Callable

import jwt

from .errors import ConfigurationError, FallbackTokenError, InvalidSessionParametersError
from .session import SessionParameters
from .tokens import SessionToken

FALLBACK_ALGORITHM = "HS256"
FALLBACK_ISSUER = "onramp-fallback"
FALLBACK_AUDIENCE = "onramp:checkout"
MAX_FALLBACK_TTL_SECONDS = 30 * 60
MIN_SECRET_LENGTH = 32


@dataclass(frozen=True)
class FallbackClaims:
    token_id: str
    issued_at: int
    expires_at: int
    session: SessionParameters
    degraded: bool = True

    def to_dict(self) -> dict:
        return {
            "token_id": self.token_id,
            "issued_at": self.issued_at,
            "expires_at": self.expires_at,
            "degraded": self.degraded,
            "session": self.session.to_claims(),
        }


class FallbackTokenIssuer:
    """Issues and verifies degraded tokens with a symmetric service secret."""

    def __init__(
        self,
        secret: str,
        ttl_seconds: int = MAX_FALLBACK_TTL_SECONDS,
        clock: Callable[[], float] = time.time,
    ):
        if not secret or len(secret) < MIN_SECRET_LENGTH:
            raise ConfigurationError(
                f"Fallback secret must be at least {MIN_SECRET_LENGTH} characters"
            )
        if ttl_seconds <= 0 or ttl_seconds > MAX_FALLBACK_TTL_SECONDS:
            raise ConfigurationError(
                f"Fallback token ttl must be within 1..{MAX_FALLBACK_TTL_SECONDS} seconds"
            )
        self._secret = secret
        self._ttl_seconds = ttl_seconds
        self._clock = clock

    @property
    def ttl_seconds(self) -> int:
        return self._ttl_seconds

    def issue(self, params: SessionParameters) -> SessionToken:
        now = int(self._clock())
        token_id = secrets.token_hex(16)
        claims: dict[str, Any] = {
            "iss": FALLBACK_ISSUER,
            "aud": FALLBACK_AUDIENCE,
            "sub": params.destination_wallet,
            "iat": now,
            "nbf": now,
            "exp": now + self._ttl_seconds,
            "jti": token_id,
            "degraded": True,
            "session": params.to_claims(),
        }
        token = jwt.encode(
            claims,
            self._secret,
            algorithm=FALLBACK_ALGORITHM,
            headers={"typ": "JWT"},
        )
        return SessionToken(
            value=token,
            degraded=True,
            issued_at=float(now),
            expires_at=float(now + self._ttl_seconds),
            token_id=token_id,
            claims=claims,
        )

    def decode(self, token: str, verify_expiry: bool = True) -> FallbackClaims:
        """Verify a degraded token and return its claims."""
        if not token:
            raise FallbackTokenError("Token is empty")
        try:
            claims = jwt.decode(
                token,
                self._secret,
                algorithms=[FALLBACK_ALGORITHM],
                audience=FALLBACK_AUDIENCE,
                issuer=FALLBACK_ISSUER,
                options={
                    "require": ["exp", "iat", "jti", "sub"],
                    "verify_exp": verify_expiry,
                    "verify_nbf": verify_expiry,
                },
            )
        except jwt.ExpiredSignatureError:
            raise FallbackTokenError("Degraded token has expired") from None
        except jwt.PyJWTError as exc:
            raise FallbackTokenError(f"Degraded token rejected: {type(exc).__name__}") from None

        if claims.get("degraded") is not True:
            raise FallbackTokenError("Token lacks the degraded marker")
        if int(claims["exp"]) - int(claims["iat"]) > MAX_FALLBACK_TTL_SECONDS:
            raise FallbackTokenError("Degraded token validity window too long")

        session_claims = claims.get("session")
        if not isinstance(session_claims, dict):
            raise FallbackTokenError("Degraded token has no session claims")
        try:
            session = SessionParameters.from_claims(session_claims)
        except InvalidSessionParametersError as exc:
            raise FallbackTokenError(str(exc)) from None
        if session.destination_wallet != claims["sub"]:
            raise FallbackTokenError("Degraded token subject does not match its wallet")

        return FallbackClaims(
            token_id=str(claims["jti"]),
            issued_at=int(claims["iat"]),
            expires_at=int(claims["exp"]),
            session=session,
        )
