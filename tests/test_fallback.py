"""Tests for degraded-mode fallback tokens."""

import time

import jwt
import pytest

from onramp.errors import ConfigurationError, FallbackTokenError
from onramp.fallback import (
    FALLBACK_AUDIENCE,
    FALLBACK_ISSUER,
    MAX_FALLBACK_TTL_SECONDS,
    FallbackTokenIssuer,
)

from conftest import FALLBACK_SECRET, WALLET


@pytest.fixture
def issuer():
    return FallbackTokenIssuer(FALLBACK_SECRET)


def test_issued_token_is_marked_degraded(issuer, session_params):
    token = issuer.issue(session_params)

    assert token.degraded is True
    assert token.claims["degraded"] is True
    assert token.claims["sub"] == WALLET
    assert token.expires_at - token.issued_at == MAX_FALLBACK_TTL_SECONDS
    assert jwt.get_unverified_header(token.value)["alg"] == "HS256"


def test_round_trip_recovers_session_parameters(issuer, session_params):
    token = issuer.issue(session_params)
    claims = issuer.decode(token.value)

    assert claims.degraded is True
    assert claims.session == session_params
    assert claims.token_id == token.token_id
    assert claims.expires_at - claims.issued_at <= MAX_FALLBACK_TTL_SECONDS


def test_token_ids_are_unique(issuer, session_params):
    ids = {issuer.issue(session_params).token_id for _ in range(20)}
    assert len(ids) == 20


def test_shorter_ttl_is_honored(session_params):
    token = FallbackTokenIssuer(FALLBACK_SECRET, ttl_seconds=300).issue(session_params)
    assert token.expires_at - token.issued_at == 300


@pytest.mark.parametrize("ttl", [0, -1, MAX_FALLBACK_TTL_SECONDS + 1])
def test_ttl_outside_window_is_rejected(ttl):
    with pytest.raises(ConfigurationError, match="ttl"):
        FallbackTokenIssuer(FALLBACK_SECRET, ttl_seconds=ttl)


def test_short_secret_is_rejected():
    with pytest.raises(ConfigurationError, match="at least"):
        FallbackTokenIssuer("short")


def test_wrong_secret_is_rejected(issuer, session_params):
    token = issuer.issue(session_params)
    other = FallbackTokenIssuer("another-secret-that-is-long-enough-0123456789")
    with pytest.raises(FallbackTokenError, match="rejected"):
        other.decode(token.value)


def test_tampered_token_is_rejected(issuer, session_params):
    header, payload, signature = issuer.issue(session_params).value.split(".")
    tampered = ".".join([header, payload[:-2] + ("A" if payload[-2] != "A" else "B") + payload[-1], signature])
    with pytest.raises(FallbackTokenError):
        issuer.decode(tampered)


def test_expired_token_is_rejected(session_params):
    past = FallbackTokenIssuer(FALLBACK_SECRET, clock=lambda: time.time() - 4000)
    token = past.issue(session_params)

    with pytest.raises(FallbackTokenError, match="expired"):
        past.decode(token.value)
    assert past.decode(token.value, verify_expiry=False).session == session_params


def test_token_without_degraded_marker_is_rejected(issuer, session_params):
    now = int(time.time())
    forged = jwt.encode(
        {
            "iss": FALLBACK_ISSUER,
            "aud": FALLBACK_AUDIENCE,
            "sub": WALLET,
            "iat": now,
            "exp": now + 60,
            "jti": "abc",
            "degraded": False,
            "session": session_params.to_claims(),
        },
        FALLBACK_SECRET,
        algorithm="HS256",
    )
    with pytest.raises(FallbackTokenError, match="degraded marker"):
        issuer.decode(forged)


def test_overlong_validity_window_is_rejected(issuer, session_params):
    now = int(time.time())
    forged = jwt.encode(
        {
            "iss": FALLBACK_ISSUER,
            "aud": FALLBACK_AUDIENCE,
            "sub": WALLET,
            "iat": now,
            "exp": now + 86400,
            "jti": "abc",
            "degraded": True,
            "session": session_params.to_claims(),
        },
        FALLBACK_SECRET,
        algorithm="HS256",
    )
    with pytest.raises(FallbackTokenError, match="too long"):
        issuer.decode(forged)


def test_provider_style_token_is_not_accepted(issuer):
    with pytest.raises(FallbackTokenError):
        issuer.decode("opaque-provider-token")
    with pytest.raises(FallbackTokenError, match="empty"):
        issuer.decode("")
