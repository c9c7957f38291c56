"""
Onramp service configuration.

Settings resolve from explicit arguments, then environment variables, then
(optionally) a 1Password item read through the ``op`` CLI. Anything
required that is still missing raises ``ConfigurationError``: the service
must not start half-configured.
"""

from __future__ import annotations

import json
import os
import subprocess
from dataclasses import dataclass, field
from typing import Optional
from urllib.parse import urlparse

from .errors import ConfigurationError
from .exchange import DEFAULT_EXCHANGE_TIMEOUT_SECONDS
from .fallback import MAX_FALLBACK_TTL_SECONDS, MIN_SECRET_LENGTH
from .url_builder import OnrampEnvironment

CDP_API_KEY_ID_ENV = "CDP_API_KEY_ID"
CDP_API_KEY_SECRET_ENV = "CDP_API_KEY_SECRET"
CDP_API_KEY_ID_ALIASES = ("CDP_API_KEY_NAME",)
CDP_API_KEY_SECRET_ALIASES = ("CDP_API_KEY_PRIVATE_KEY",)

FALLBACK_SECRET_ENV = "ONRAMP_FALLBACK_SECRET"
FALLBACK_SECRET_ALIASES = ("JWT_SECRET",)
ENVIRONMENT_ENV = "ONRAMP_ENVIRONMENT"
USE_SANDBOX_ENV = "USE_ONRAMP_SANDBOX"
REDIRECT_BASE_URL_ENV = "ONRAMP_REDIRECT_BASE_URL"
REDIRECT_BASE_URL_ALIASES = ("CORS_ORIGIN",)
HANDLING_REQUEST_URL_ENV = "ONRAMP_HANDLING_REQUEST_URL"
EXCHANGE_TIMEOUT_ENV = "ONRAMP_EXCHANGE_TIMEOUT_SECONDS"
FALLBACK_TTL_ENV = "ONRAMP_FALLBACK_TTL_SECONDS"

ONRAMP_OP_ITEM_ENV = "ONRAMP_OP_ITEM"
ONRAMP_OP_VAULT_ENV = "ONRAMP_OP_VAULT"
DEFAULT_OP_KEY_ID_FIELD = "CDP_API_KEY_ID"
DEFAULT_OP_KEY_SECRET_FIELD = "CDP_API_KEY_SECRET"
DEFAULT_OP_FALLBACK_SECRET_FIELD = "ONRAMP_FALLBACK_SECRET"

SUCCESS_PATH = "/payment/success"


@dataclass(frozen=True)
class OnrampSettings:
    api_key_id: str
    api_key_secret: str = field(repr=False)
    fallback_secret: str = field(repr=False)
    redirect_base_url: str
    environment: OnrampEnvironment = OnrampEnvironment.SANDBOX
    handling_request_url: Optional[str] = None
    exchange_timeout_seconds: float = DEFAULT_EXCHANGE_TIMEOUT_SECONDS
    fallback_ttl_seconds: int = MAX_FALLBACK_TTL_SECONDS

    @property
    def default_redirect_url(self) -> str:
        return self.redirect_base_url.rstrip("/") + SUCCESS_PATH


def load_settings(
    *,
    api_key_id: Optional[str] = None,
    api_key_secret: Optional[str] = None,
    fallback_secret: Optional[str] = None,
    redirect_base_url: Optional[str] = None,
    environment: Optional[str] = None,
    handling_request_url: Optional[str] = None,
    exchange_timeout_seconds: Optional[float] = None,
    op_item: Optional[str] = None,
    op_vault: Optional[str] = None,
    op_timeout_seconds: float = 10.0,
) -> OnrampSettings:
    """Resolve and validate service settings."""

    resolved_key_id = api_key_id or _getenv(CDP_API_KEY_ID_ENV, *CDP_API_KEY_ID_ALIASES)
    resolved_key_secret = api_key_secret or _getenv(
        CDP_API_KEY_SECRET_ENV, *CDP_API_KEY_SECRET_ALIASES
    )
    resolved_fallback = fallback_secret or _getenv(FALLBACK_SECRET_ENV, *FALLBACK_SECRET_ALIASES)

    resolved_op_item = op_item or os.getenv(ONRAMP_OP_ITEM_ENV)
    resolved_op_vault = op_vault or os.getenv(ONRAMP_OP_VAULT_ENV)
    needs_secrets = not (resolved_key_id and resolved_key_secret and resolved_fallback)
    if needs_secrets and resolved_op_item and resolved_op_vault:
        fields = _load_1password_fields(
            item=resolved_op_item,
            vault=resolved_op_vault,
            timeout_seconds=op_timeout_seconds,
        )
        resolved_key_id = resolved_key_id or _get_case_insensitive(fields, DEFAULT_OP_KEY_ID_FIELD)
        resolved_key_secret = resolved_key_secret or _get_case_insensitive(
            fields, DEFAULT_OP_KEY_SECRET_FIELD
        )
        resolved_fallback = resolved_fallback or _get_case_insensitive(
            fields, DEFAULT_OP_FALLBACK_SECRET_FIELD
        )

    missing = [
        name
        for name, value in (
            (CDP_API_KEY_ID_ENV, resolved_key_id),
            (CDP_API_KEY_SECRET_ENV, resolved_key_secret),
            (FALLBACK_SECRET_ENV, resolved_fallback),
        )
        if not value
    ]
    resolved_redirect = redirect_base_url or _getenv(REDIRECT_BASE_URL_ENV, *REDIRECT_BASE_URL_ALIASES)
    if not resolved_redirect:
        missing.append(REDIRECT_BASE_URL_ENV)
    if missing:
        raise ConfigurationError(
            "Onramp configuration incomplete; missing " + ", ".join(missing) + ". Set the "
            "environment variables or configure ONRAMP_OP_ITEM + ONRAMP_OP_VAULT."
        )

    if len(resolved_fallback) < MIN_SECRET_LENGTH:
        raise ConfigurationError(
            f"{FALLBACK_SECRET_ENV} must be at least {MIN_SECRET_LENGTH} characters"
        )
    if resolved_fallback.strip() == resolved_key_secret.strip():
        raise ConfigurationError("Fallback secret must differ from the provider private key")

    _require_http_url(resolved_redirect, REDIRECT_BASE_URL_ENV)
    resolved_handling = handling_request_url or os.getenv(HANDLING_REQUEST_URL_ENV) or None
    if resolved_handling:
        _require_http_url(resolved_handling, HANDLING_REQUEST_URL_ENV)

    return OnrampSettings(
        api_key_id=resolved_key_id.strip(),
        api_key_secret=resolved_key_secret,
        fallback_secret=resolved_fallback,
        redirect_base_url=resolved_redirect.strip(),
        environment=_resolve_environment(environment),
        handling_request_url=resolved_handling,
        exchange_timeout_seconds=_resolve_positive_float(
            exchange_timeout_seconds, EXCHANGE_TIMEOUT_ENV, DEFAULT_EXCHANGE_TIMEOUT_SECONDS
        ),
        fallback_ttl_seconds=int(
            _resolve_positive_float(None, FALLBACK_TTL_ENV, MAX_FALLBACK_TTL_SECONDS)
        ),
    )


def _resolve_environment(explicit: Optional[str]) -> OnrampEnvironment:
    if explicit:
        raw = explicit
    elif os.getenv(USE_SANDBOX_ENV, "").strip().lower() == "true":
        raw = OnrampEnvironment.SANDBOX.value
    else:
        raw = os.getenv(ENVIRONMENT_ENV) or os.getenv("COINBASE_ENVIRONMENT") or "sandbox"
    try:
        return OnrampEnvironment(raw.strip().lower())
    except ValueError:
        raise ConfigurationError(
            f"Unknown onramp environment {raw!r}; expected 'sandbox' or 'production'"
        ) from None


def _resolve_positive_float(explicit: Optional[float], env_name: str, default: float) -> float:
    if explicit is not None:
        value = explicit
    else:
        raw = os.getenv(env_name)
        if not raw:
            return default
        try:
            value = float(raw)
        except ValueError:
            raise ConfigurationError(f"{env_name} must be a number, got {raw!r}") from None
    if value <= 0:
        raise ConfigurationError(f"{env_name} must be positive")
    return value


def _require_http_url(value: str, name: str) -> None:
    parsed = urlparse(value.strip())
    if parsed.scheme not in {"http", "https"} or not parsed.netloc:
        raise ConfigurationError(f"{name} must be an http(s) URL, got {value!r}")


def _getenv(*names: str) -> Optional[str]:
    for name in names:
        value = os.getenv(name)
        if value:
            return value
    return None


def _load_1password_fields(item: str, vault: str, timeout_seconds: float) -> dict[str, str]:
    try:
        result = subprocess.run(
            ["op", "item", "get", item, "--vault", vault, "--format", "json"],
            capture_output=True,
            text=True,
            timeout=timeout_seconds,
        )
    except (OSError, subprocess.TimeoutExpired) as exc:
        raise ConfigurationError(f"1Password CLI unavailable: {type(exc).__name__}") from None
    if result.returncode != 0:
        raise ConfigurationError(f"1Password error: {result.stderr.strip()}")

    try:
        payload = json.loads(result.stdout)
    except ValueError:
        raise ConfigurationError("1Password returned unreadable item JSON") from None
    values: dict[str, str] = {}
    for entry in payload.get("fields", []):
        label = str(entry.get("label") or "")
        value = str(entry.get("value") or "")
        if label:
            values[label] = value
    return values


def _get_case_insensitive(values: dict[str, str], key: str) -> Optional[str]:
    direct = values.get(key)
    if direct:
        return direct
    lowered_key = key.lower()
    for k, v in values.items():
        if k.lower() == lowered_key and v:
            return v
    return None
