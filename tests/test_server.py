"""Tests for the FastAPI routes."""

from urllib.parse import parse_qsl, urlparse

import httpx
import pytest
from fastapi.testclient import TestClient

from onramp.audit import EventType, IssuanceLog
from onramp.config import load_settings
from onramp.orchestrator import SessionOrchestrator
from onramp.server import create_app

from conftest import WALLET


def _app(handler, audit=None):
    transport_client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    orchestrator = SessionOrchestrator.from_settings(
        load_settings(), client=transport_client, audit=audit
    )
    return create_app(orchestrator), orchestrator


def _unreachable(request):
    raise httpx.ConnectError("provider down", request=request)


@pytest.fixture
def provider_app(onramp_env):
    app, _ = _app(lambda request: httpx.Response(200, json={"token": "provider-token"}))
    with TestClient(app) as client:
        yield client


@pytest.fixture
def degraded_app(onramp_env, tmp_path, monkeypatch):
    monkeypatch.delenv("ONRAMP_AUDIT_HMAC_KEY", raising=False)
    ledger = IssuanceLog(path=tmp_path / "issuance.jsonl", key_path=tmp_path / "k" / "key")
    app, orchestrator = _app(_unreachable, audit=ledger)
    with TestClient(app) as client:
        yield client, orchestrator, ledger


def test_health(provider_app):
    response = provider_app.get("/health")
    assert response.status_code == 200
    body = response.json()
    assert body["status"] == "ok"
    assert body["environment"] == "sandbox"
    assert body["sessions"]["issued"] == 0


def test_session_token_from_provider(provider_app):
    response = provider_app.post("/api/onramp/session-token", json={"walletAddress": WALLET})
    assert response.status_code == 200
    data = response.json()["data"]
    assert data == {"sessionToken": "provider-token", "degraded": False, "expiresAt": None}


def test_generate_url_from_provider(provider_app):
    response = provider_app.post(
        "/api/onramp/generate-url",
        json={
            "destinationWallet": WALLET,
            "presetFiatAmount": 25,
            "fiatCurrency": "usd",
            "defaultExperience": "buy",
            "theme": "dark",
        },
    )
    assert response.status_code == 200
    data = response.json()["data"]
    query = dict(parse_qsl(urlparse(data["onrampUrl"]).query))
    assert data["degraded"] is False
    assert query["sessionToken"] == "provider-token"
    assert query["presetFiatAmount"] == "25"
    assert query["fiatCurrency"] == "USD"
    assert query["theme"] == "dark"
    assert query["redirectUrl"] == "https://market.example.com/payment/success"


def test_generate_url_degrades_when_provider_unreachable(degraded_app):
    client, orchestrator, ledger = degraded_app
    response = client.post(
        "/api/onramp/generate-url",
        json={"destinationWallet": WALLET, "presetCryptoAmount": "0.5"},
    )
    assert response.status_code == 200
    data = response.json()["data"]
    assert data["degraded"] is True
    assert data["expiresAt"] is not None
    query = dict(parse_qsl(urlparse(data["onrampUrl"]).query))
    assert query["presetCryptoAmount"] == "0.5"
    claims = orchestrator.fallback.decode(query["sessionToken"])
    assert claims.session.destination_wallet == WALLET
    assert ledger.summary()["degraded_sessions"] == 1


@pytest.mark.parametrize(
    "payload, fragment",
    [
        ({}, "destinationWallet"),
        ({"destinationWallet": "0x123"}, "destination_wallet"),
        ({"destinationWallet": WALLET, "presetFiatAmount": -5}, "preset_fiat_amount"),
        ({"destinationWallet": WALLET, "theme": "neon"}, "theme"),
        ({"destinationWallet": WALLET, "redirectUrl": "ftp://x"}, "redirect_url"),
    ],
)
def test_generate_url_rejects_invalid_input(provider_app, payload, fragment):
    response = provider_app.post("/api/onramp/generate-url", json=payload)
    assert response.status_code == 400
    body = response.json()
    assert body["success"] is False
    assert fragment in body["message"]


def test_verify_fallback_token(degraded_app):
    client, orchestrator, ledger = degraded_app
    issued = client.post("/api/onramp/session-token", json={"walletAddress": WALLET})
    token = issued.json()["data"]["sessionToken"]

    response = client.post("/api/onramp/fallback/verify", json={"sessionToken": token})
    assert response.status_code == 200
    data = response.json()["data"]
    assert data["degraded"] is True
    assert data["requiresReconciliation"] is True
    assert data["session"]["destinationWallet"] == WALLET
    assert len(ledger.read_events(event_type=EventType.FALLBACK_VERIFIED)) == 1


def test_verify_rejects_provider_token(provider_app):
    response = provider_app.post(
        "/api/onramp/fallback/verify", json={"sessionToken": "provider-token"}
    )
    assert response.status_code == 400
    assert "rejected" in response.json()["message"]
