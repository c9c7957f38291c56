"""
Provider token exchange.

Presents a signed assertion to the onramp token endpoint and returns the
wallet-scoped session token. Every failure is mapped onto an
``ExchangeError`` subclass so the orchestrator can fall back.
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Any, Optional
from urllib.parse import quote

import httpx

from . import __version__
from .assertion import ONRAMP_TOKEN_URL, Assertion
from .errors import (
    ExchangeError,
    ExchangeMalformedResponseError,
    ExchangeRejectedError,
    ExchangeTimeoutError,
    ExchangeUnavailableError,
)
from .session import SessionParameters
from .tokens import SessionToken

logger = logging.getLogger(__name__)

DEFAULT_EXCHANGE_TIMEOUT_SECONDS = 10.0
_BODY_PREVIEW_CHARS = 200


def build_token_request(params: SessionParameters) -> dict[str, Any]:
    """Request body for the token endpoint."""
    body: dict[str, Any] = {
        "addresses": [
            {
                "address": params.destination_wallet,
                "blockchains": list(params.blockchains),
            }
        ],
        "assets": list(params.assets),
        "defaultNetwork": params.default_network,
        "defaultAsset": params.default_asset,
    }
    if params.preset_fiat_amount is not None:
        body["presetFiatAmount"] = params.preset_fiat_amount
        body["fiatCurrency"] = params.fiat_currency
    elif params.preset_crypto_amount is not None:
        body["presetCryptoAmount"] = params.preset_crypto_amount
    if params.partner_user_id:
        body["partnerUserId"] = params.partner_user_id
    if params.redirect_url:
        body["redirectUrl"] = params.redirect_url
    return body


class ProviderTokenExchanger:
    """Exchanges assertions for provider-issued session tokens."""

    def __init__(
        self,
        token_url: str = ONRAMP_TOKEN_URL,
        timeout_seconds: float = DEFAULT_EXCHANGE_TIMEOUT_SECONDS,
        client: Optional[httpx.AsyncClient] = None,
    ):
        if timeout_seconds <= 0:
            raise ValueError("Exchange timeout must be positive")
        self.token_url = token_url
        self.timeout_seconds = timeout_seconds
        self._owns_client = client is None
        self._http = client or httpx.AsyncClient(timeout=timeout_seconds)

    async def exchange(self, assertion: Assertion, params: SessionParameters) -> SessionToken:
        if assertion.is_expired():
            raise ExchangeError("Refusing to send an expired assertion")

        headers = {
            "Authorization": assertion.authorization_header,
            "Content-Type": "application/json",
            "Accept": "application/json",
            "Correlation-Context": _correlation_context(),
        }
        body = build_token_request(params)

        try:
            response = await asyncio.wait_for(
                self._http.post(
                    self.token_url,
                    json=body,
                    headers=headers,
                    timeout=self.timeout_seconds,
                ),
                timeout=self.timeout_seconds,
            )
        except (httpx.TimeoutException, asyncio.TimeoutError) as exc:
            raise ExchangeTimeoutError(
                f"Token endpoint did not answer within {self.timeout_seconds:.1f}s"
            ) from exc
        except httpx.TransportError as exc:
            raise ExchangeUnavailableError(
                f"Token endpoint unreachable: {type(exc).__name__}"
            ) from exc
        except httpx.DecodingError as exc:
            raise ExchangeMalformedResponseError(
                f"Token endpoint body could not be decoded: {type(exc).__name__}"
            ) from exc
        except httpx.HTTPError as exc:
            raise ExchangeUnavailableError(
                f"Token endpoint request failed: {type(exc).__name__}"
            ) from exc

        logger.debug(
            "Token endpoint answered %s for %s", response.status_code, params.destination_wallet
        )
        return self._parse_response(response)

    def _parse_response(self, response: httpx.Response) -> SessionToken:
        status = response.status_code
        if not 200 <= status < 300:
            raise ExchangeRejectedError(status, _redact(response.text))

        try:
            payload = response.json()
        except ValueError:
            raise ExchangeMalformedResponseError(
                f"Token endpoint returned non-JSON body ({status})", status_code=status
            ) from None

        if not isinstance(payload, dict):
            raise ExchangeMalformedResponseError(
                f"Token endpoint returned {type(payload).__name__}, expected object",
                status_code=status,
            )
        token = payload.get("token")
        if not isinstance(token, str) or not token.strip():
            raise ExchangeMalformedResponseError(
                f"No token in response (keys: {sorted(payload)})", status_code=status
            )

        channel_id = payload.get("channel_id") or payload.get("channelId")
        return SessionToken(
            value=token,
            degraded=False,
            issued_at=time.time(),
            channel_id=str(channel_id) if channel_id else None,
        )

    async def aclose(self) -> None:
        if self._owns_client:
            await self._http.aclose()

    async def __aenter__(self):
        return self

    async def __aexit__(self, *args):
        await self.aclose()


def _redact(text: str) -> str:
    preview = " ".join(text.split())
    if len(preview) > _BODY_PREVIEW_CHARS:
        return preview[:_BODY_PREVIEW_CHARS] + "..."
    return preview


def _correlation_context() -> str:
    data = {
        "sdk_language": "python",
        "source": "onramp",
        "source_version": __version__,
    }
    return ",".join(f"{k}={quote(str(v), safe='')}" for k, v in data.items())
