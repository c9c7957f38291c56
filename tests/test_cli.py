"""CLI tests."""

import json
from urllib.parse import parse_qsl, urlparse

import httpx
import pytest
from click.testing import CliRunner

import onramp.audit as audit_module
import onramp.exchange as exchange
from onramp.cli import main
from onramp.fallback import FallbackTokenIssuer
from onramp.session import SessionParameters

from conftest import FALLBACK_SECRET, KEY_ID, WALLET


@pytest.fixture
def ledger_paths(tmp_path, monkeypatch):
    monkeypatch.delenv("ONRAMP_AUDIT_HMAC_KEY", raising=False)
    monkeypatch.setattr(audit_module, "DEFAULT_LEDGER_PATH", tmp_path / "issuance.jsonl")
    monkeypatch.setattr(audit_module, "DEFAULT_LEDGER_KEY_PATH", tmp_path / "secret" / "key")
    return tmp_path


def _route_provider(monkeypatch, handler):
    real_client = httpx.AsyncClient

    def fake_client(**kwargs):
        return real_client(transport=httpx.MockTransport(handler), **kwargs)

    monkeypatch.setattr(exchange.httpx, "AsyncClient", fake_client)


def test_check_key_reports_key_without_secret(onramp_env):
    result = CliRunner().invoke(main, ["check-key"])

    assert result.exit_code == 0
    assert "Provider key is usable for ES256" in result.output
    assert KEY_ID in result.output
    assert "secp256r1" in result.output
    assert "PRIVATE KEY" not in result.output


def test_check_key_rejects_bad_key(onramp_env, monkeypatch):
    monkeypatch.setenv("CDP_API_KEY_SECRET", "not-a-pem")

    result = CliRunner().invoke(main, ["check-key"])

    assert result.exit_code == 1
    assert "BEGIN/END" in result.output
    assert "not-a-pem" not in result.output


def test_missing_configuration_exits(onramp_env, monkeypatch):
    monkeypatch.delenv("ONRAMP_FALLBACK_SECRET")

    result = CliRunner().invoke(main, ["check-key"])

    assert result.exit_code == 1
    assert "Configuration error" in result.output
    assert "ONRAMP_FALLBACK_SECRET" in result.output


def test_url_rejects_invalid_wallet(onramp_env):
    result = CliRunner().invoke(main, ["url", "--wallet", "0x123"])

    assert result.exit_code == 1
    assert "Invalid parameters" in result.output


def test_url_prints_provider_url(onramp_env, ledger_paths, monkeypatch):
    _route_provider(monkeypatch, lambda request: httpx.Response(200, json={"token": "cli-token"}))

    result = CliRunner().invoke(
        main, ["url", "--wallet", WALLET, "--fiat-amount", "25", "--theme", "dark"]
    )

    assert result.exit_code == 0, result.output
    url = result.output.strip().splitlines()[-1]
    query = dict(parse_qsl(urlparse(url).query))
    assert url.startswith("https://pay-sandbox.coinbase.com/buy?")
    assert query["sessionToken"] == "cli-token"
    assert query["presetFiatAmount"] == "25"
    assert "DEGRADED" not in result.output
    assert (ledger_paths / "issuance.jsonl").read_text().count("url_built") == 1


def test_url_warns_when_degraded(onramp_env, ledger_paths, monkeypatch):
    def handler(request):
        raise httpx.ConnectError("down", request=request)

    _route_provider(monkeypatch, handler)

    result = CliRunner().invoke(main, ["url", "--wallet", WALLET, "--json"])

    assert result.exit_code == 0, result.output
    payload = json.loads(result.output[result.output.index("{"):])
    assert payload["degraded"] is True
    assert payload["states"][-3:] == ["falling_back", "building_url", "done"]
    assert "ExchangeUnavailableError" in payload["failure"]


def test_inspect_decodes_fallback_token(onramp_env):
    params = SessionParameters.create(destination_wallet=WALLET, preset_fiat_amount="10")
    token = FallbackTokenIssuer(FALLBACK_SECRET).issue(params)

    result = CliRunner().invoke(main, ["inspect", token.value])

    assert result.exit_code == 0, result.output
    claims = json.loads(result.output)
    assert claims["degraded"] is True
    assert claims["session"]["presetFiatAmount"] == "10"


def test_inspect_rejects_foreign_token(onramp_env):
    params = SessionParameters.create(destination_wallet=WALLET)
    token = FallbackTokenIssuer("another-service-secret-0123456789abcdef").issue(params)

    result = CliRunner().invoke(main, ["inspect", token.value])

    assert result.exit_code == 1
    assert "Degraded token rejected" in result.output


def test_audit_summary(onramp_env, ledger_paths):
    ledger = audit_module.IssuanceLog()
    ledger.log(audit_module.EventType.SESSION_DEGRADED, wallet=WALLET, degraded=True)

    result = CliRunner().invoke(main, ["audit", "--summary"])

    assert result.exit_code == 0, result.output
    assert json.loads(result.output)["degraded_sessions"] == 1
