"""
HTTP routes for onramp checkout sessions.

Routes:
    POST /api/onramp/session-token     Issue a session token for a wallet
    POST /api/onramp/generate-url      Issue a token and build the redirect URL
    POST /api/onramp/fallback/verify   Verify a degraded token on return from checkout
    GET  /health                       Environment and issuance counters
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Optional, Union

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field

from .audit import EventType
from .errors import FallbackTokenError, InvalidSessionParametersError, MissingSessionTokenError
from .orchestrator import SessionOrchestrator
from .session import DisplayParameters, SessionParameters

logger = logging.getLogger(__name__)

Amount = Union[str, float, int]


class _CamelModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")


class SessionTokenRequest(_CamelModel):
    wallet_address: str = Field(alias="walletAddress")
    assets: Optional[list[str]] = None
    blockchains: Optional[list[str]] = None
    default_network: str = Field(default="base", alias="defaultNetwork")


class GenerateUrlRequest(_CamelModel):
    destination_wallet: str = Field(alias="destinationWallet")
    assets: Optional[list[str]] = None
    blockchains: Optional[list[str]] = None
    default_asset: Optional[str] = Field(default=None, alias="defaultAsset")
    default_network: str = Field(default="base", alias="defaultNetwork")
    preset_fiat_amount: Optional[Amount] = Field(default=None, alias="presetFiatAmount")
    fiat_currency: Optional[str] = Field(default=None, alias="fiatCurrency")
    preset_crypto_amount: Optional[Amount] = Field(default=None, alias="presetCryptoAmount")
    partner_user_id: Optional[str] = Field(default=None, alias="partnerUserId")
    redirect_url: Optional[str] = Field(default=None, alias="redirectUrl")
    default_experience: Optional[str] = Field(default=None, alias="defaultExperience")
    default_payment_method: Optional[str] = Field(default=None, alias="defaultPaymentMethod")
    handling_request_url: Optional[str] = Field(default=None, alias="handlingRequestUrl")
    theme: Optional[str] = None


class VerifyFallbackRequest(_CamelModel):
    session_token: str = Field(alias="sessionToken")


def create_app(orchestrator: SessionOrchestrator) -> FastAPI:
    @asynccontextmanager
    async def lifespan(app: FastAPI):
        yield
        await orchestrator.aclose()

    app = FastAPI(title="onramp", lifespan=lifespan)
    app.state.orchestrator = orchestrator

    @app.exception_handler(InvalidSessionParametersError)
    async def _invalid_params(request: Request, exc: InvalidSessionParametersError):
        return _error(400, str(exc))

    @app.exception_handler(RequestValidationError)
    async def _invalid_body(request: Request, exc: RequestValidationError):
        first = exc.errors()[0] if exc.errors() else {}
        location = ".".join(str(p) for p in first.get("loc", ()) if p != "body")
        return _error(400, f"{location}: {first.get('msg', 'invalid request')}".strip(": "))

    @app.exception_handler(MissingSessionTokenError)
    async def _missing_token(request: Request, exc: MissingSessionTokenError):
        logger.error("Redirect URL built without a session token")
        return _error(500, "Server error")

    @app.get("/health")
    async def health():
        return {
            "status": "ok",
            "environment": orchestrator.environment.value,
            "sessions": orchestrator.counters.snapshot(),
        }

    @app.post("/api/onramp/session-token")
    async def session_token(body: SessionTokenRequest):
        params = SessionParameters.create(
            destination_wallet=body.wallet_address,
            assets=body.assets,
            blockchains=body.blockchains,
            default_network=body.default_network,
        )
        outcome = await orchestrator.issue_session_token(params)
        return {
            "success": True,
            "data": {
                "sessionToken": outcome.token.value,
                "degraded": outcome.degraded,
                "expiresAt": _iso(outcome.token.expires_at),
            },
        }

    @app.post("/api/onramp/generate-url")
    async def generate_url(body: GenerateUrlRequest):
        params = SessionParameters.create(
            destination_wallet=body.destination_wallet,
            assets=body.assets,
            blockchains=body.blockchains,
            default_asset=body.default_asset,
            default_network=body.default_network,
            preset_fiat_amount=body.preset_fiat_amount,
            fiat_currency=body.fiat_currency,
            preset_crypto_amount=body.preset_crypto_amount,
            partner_user_id=body.partner_user_id,
            redirect_url=body.redirect_url,
        )
        display = DisplayParameters.create(
            default_experience=body.default_experience,
            default_payment_method=body.default_payment_method,
            handling_request_url=body.handling_request_url,
            theme=body.theme,
        )
        result = await orchestrator.create_checkout(params, display)
        return {
            "success": True,
            "data": {
                "onrampUrl": result.url,
                "degraded": result.degraded,
                "expiresAt": _iso(result.token.expires_at),
            },
        }

    @app.post("/api/onramp/fallback/verify")
    async def verify_fallback(body: VerifyFallbackRequest):
        try:
            claims = orchestrator.fallback.decode(body.session_token)
        except FallbackTokenError as exc:
            return _error(400, str(exc))
        await orchestrator.record_event(
            EventType.FALLBACK_VERIFIED,
            wallet=claims.session.destination_wallet,
            token_id=claims.token_id,
            degraded=True,
        )
        return {
            "success": True,
            "data": {
                **claims.to_dict(),
                "requiresReconciliation": True,
            },
        }

    return app


def _error(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"success": False, "message": message})


def _iso(timestamp: Optional[float]) -> Optional[str]:
    if timestamp is None:
        return None
    return datetime.fromtimestamp(timestamp, tz=timezone.utc).isoformat()
