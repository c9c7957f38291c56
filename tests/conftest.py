"""Shared fixtures: throwaway P-256 keys, secrets and session parameters."""

import pytest
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import ec

from onramp.keys import load_signing_key
from onramp.session import SessionParameters

WALLET = "0xAbC0000000000000000000000000000000000123"
KEY_ID = "organizations/org-123/apiKeys/key-456"
FALLBACK_SECRET = "fallback-secret-for-tests-0123456789abcdef"


def make_ec_private_key_pem(curve=None, sec1: bool = False) -> tuple[str, ec.EllipticCurvePrivateKey]:
    key = ec.generate_private_key(curve or ec.SECP256R1())
    pem = key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=(
            serialization.PrivateFormat.TraditionalOpenSSL
            if sec1
            else serialization.PrivateFormat.PKCS8
        ),
        encryption_algorithm=serialization.NoEncryption(),
    ).decode("utf-8")
    return pem, key


@pytest.fixture
def ec_key_pem():
    return make_ec_private_key_pem()


@pytest.fixture
def signing_key(ec_key_pem):
    pem, _ = ec_key_pem
    return load_signing_key(KEY_ID, pem)


@pytest.fixture
def session_params():
    return SessionParameters.create(
        destination_wallet=WALLET,
        assets=["USDC"],
        default_network="base",
        preset_fiat_amount="25",
        fiat_currency="USD",
        partner_user_id="user-42",
        redirect_url="https://market.example.com/payment/success",
    )


@pytest.fixture
def onramp_env(monkeypatch, ec_key_pem):
    pem, _ = ec_key_pem
    for name in (
        "CDP_API_KEY_NAME",
        "CDP_API_KEY_PRIVATE_KEY",
        "JWT_SECRET",
        "CORS_ORIGIN",
        "USE_ONRAMP_SANDBOX",
        "COINBASE_ENVIRONMENT",
        "ONRAMP_HANDLING_REQUEST_URL",
        "ONRAMP_EXCHANGE_TIMEOUT_SECONDS",
        "ONRAMP_FALLBACK_TTL_SECONDS",
        "ONRAMP_OP_ITEM",
        "ONRAMP_OP_VAULT",
    ):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("CDP_API_KEY_ID", KEY_ID)
    monkeypatch.setenv("CDP_API_KEY_SECRET", pem.replace("\n", "\\n"))
    monkeypatch.setenv("ONRAMP_FALLBACK_SECRET", FALLBACK_SECRET)
    monkeypatch.setenv("ONRAMP_REDIRECT_BASE_URL", "https://market.example.com")
    monkeypatch.setenv("ONRAMP_ENVIRONMENT", "sandbox")
    return pem
