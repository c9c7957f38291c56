"""
Provider key material normalization.

Turns the raw CDP private key string (as it arrives from env vars, secret
stores or .env files) into a canonical P-256 signing key, or fails with a
redacted diagnostic. Truncated or marker-less input is rejected outright;
no key material is ever reconstructed or substituted.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field

from cryptography.exceptions import UnsupportedAlgorithm
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import ec

from .errors import InvalidKeyMaterialError

_BEGIN_RE = re.compile(r"-----BEGIN ([A-Z ]*)PRIVATE KEY-----")
_END_RE = re.compile(r"-----END ([A-Z ]*)PRIVATE KEY-----")

REQUIRED_CURVE = "secp256r1"


@dataclass(frozen=True)
class SigningKey:
    """Canonical ES256 signing key plus the provider-assigned key identifier."""

    key_id: str
    private_key: ec.EllipticCurvePrivateKey = field(repr=False)
    pem: str = field(repr=False)

    @property
    def curve(self) -> str:
        return self.private_key.curve.name


def normalize_pem(raw_key: str) -> str:
    """Return PEM text with real line breaks and both block markers present."""
    if not isinstance(raw_key, str) or not raw_key.strip():
        raise InvalidKeyMaterialError("Private key is empty")

    text = raw_key.strip()
    if len(text) >= 2 and text[0] == text[-1] and text[0] in {'"', "'"}:
        text = text[1:-1].strip()

    # Escaped newlines survive unquoted env vars and JSON secret stores.
    text = text.replace("\\r\\n", "\n").replace("\\n", "\n")
    text = text.replace("\r\n", "\n").replace("\r", "\n")

    begin = _BEGIN_RE.search(text)
    end = _END_RE.search(text)
    if begin is None or end is None or end.start() < begin.end():
        raise InvalidKeyMaterialError(
            "Private key is missing its BEGIN/END markers; the secret looks truncated or "
            f"was not exported as PEM ({_describe(text)})"
        )
    if begin.group(1) != end.group(1):
        raise InvalidKeyMaterialError(
            f"Private key BEGIN/END marker types do not match ({_describe(text)})"
        )

    lines = [line.strip() for line in text[begin.start():end.end()].split("\n")]
    return "\n".join(line for line in lines if line) + "\n"


def load_signing_key(key_id: str, raw_key: str) -> SigningKey:
    """Normalize raw key material into a P-256 :class:`SigningKey`."""
    if not key_id or not key_id.strip():
        raise InvalidKeyMaterialError("Key identifier is required")

    pem = normalize_pem(raw_key)
    try:
        key = serialization.load_pem_private_key(pem.encode("utf-8"), password=None)
    except (ValueError, TypeError, UnsupportedAlgorithm) as exc:
        raise InvalidKeyMaterialError(
            f"Private key could not be parsed ({type(exc).__name__}; {_describe(pem)})"
        ) from None

    if not isinstance(key, ec.EllipticCurvePrivateKey):
        raise InvalidKeyMaterialError(
            f"Private key must be an EC key for ES256, got {type(key).__name__}"
        )
    if key.curve.name != REQUIRED_CURVE:
        raise InvalidKeyMaterialError(
            f"Private key must be on {REQUIRED_CURVE} (P-256), got {key.curve.name}"
        )

    return SigningKey(key_id=key_id.strip(), private_key=key, pem=pem)


def _describe(text: str) -> str:
    """Redacted shape of a key string, safe to log."""
    return (
        f"length={len(text)}, lines={text.count(chr(10)) + 1}, "
        f"begin_marker={_BEGIN_RE.search(text) is not None}, "
        f"end_marker={_END_RE.search(text) is not None}"
    )
