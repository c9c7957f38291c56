"""
Checkout session orchestration.

Flow:
1. Check the signing key loaded at startup
2. Sign a fresh ES256 assertion
3. Exchange it for a provider session token
4. On any recoverable failure, issue a degraded fallback token instead
5. Build the redirect URL

The flow always ends in a usable URL; only its trust level differs.
Parameter validation happens before this point (``SessionParameters.create``).
"""

from __future__ import annotations

import asyncio
import dataclasses
import logging
import threading
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional

import httpx

from .assertion import AssertionSigner
from .audit import EventType, IssuanceLog
from .config import OnrampSettings
from .errors import (
    ExchangeError,
    ExchangeTimeoutError,
    ExchangeUnavailableError,
    InvalidKeyMaterialError,
    OnrampError,
    SigningError,
)
from .exchange import ProviderTokenExchanger
from .fallback import FallbackTokenIssuer
from .keys import SigningKey, load_signing_key
from .session import DisplayParameters, SessionParameters
from .tokens import SessionToken
from .url_builder import OnrampEnvironment, OnrampUrlBuilder

logger = logging.getLogger(__name__)

_RETRYABLE = (ExchangeTimeoutError, ExchangeUnavailableError)


class FlowState(str, Enum):
    START = "start"
    NORMALIZING = "normalizing"
    SIGNING = "signing"
    EXCHANGING = "exchanging"
    SUCCESS = "success"
    FALLING_BACK = "falling_back"
    BUILDING_URL = "building_url"
    DONE = "done"


@dataclass
class IssuanceOutcome:
    """Token produced for one request plus how it was obtained."""

    token: SessionToken
    states: list[FlowState] = field(default_factory=list)
    failure: Optional[OnrampError] = None

    @property
    def degraded(self) -> bool:
        return self.token.degraded


@dataclass
class CheckoutResult:
    """Redirect URL for one checkout request."""

    url: str
    token: SessionToken
    states: tuple[FlowState, ...]
    failure: Optional[OnrampError] = None

    @property
    def degraded(self) -> bool:
        return self.token.degraded

    @property
    def failure_reason(self) -> Optional[str]:
        if self.failure is None:
            return None
        return f"{type(self.failure).__name__}: {self.failure}"

    def to_dict(self) -> dict:
        return {
            "url": self.url,
            "degraded": self.degraded,
            "expires_at": self.token.expires_at,
            "states": [s.value for s in self.states],
            "failure": self.failure_reason,
        }


class IssuanceCounters:
    """Process-wide issued/degraded counters for operators."""

    def __init__(self):
        self._lock = threading.Lock()
        self.issued = 0
        self.degraded = 0
        self.exchange_failures: dict[str, int] = {}

    def record(self, degraded: bool, failure: Optional[OnrampError]) -> None:
        with self._lock:
            self.issued += 1
            if degraded:
                self.degraded += 1
            if failure is not None:
                name = type(failure).__name__
                self.exchange_failures[name] = self.exchange_failures.get(name, 0) + 1

    def snapshot(self) -> dict:
        with self._lock:
            return {
                "issued": self.issued,
                "degraded": self.degraded,
                "failures": dict(self.exchange_failures),
            }


class SessionOrchestrator:
    """Produces onramp redirect URLs, degrading instead of failing."""

    def __init__(
        self,
        signing_key: Optional[SigningKey],
        fallback: FallbackTokenIssuer,
        url_builder: OnrampUrlBuilder,
        exchanger: Optional[ProviderTokenExchanger] = None,
        signer: Optional[AssertionSigner] = None,
        key_error: Optional[InvalidKeyMaterialError] = None,
        default_redirect_url: Optional[str] = None,
        handling_request_url: Optional[str] = None,
        audit: Optional[IssuanceLog] = None,
        max_exchange_attempts: int = 1,
        issuer: Optional[str] = None,
    ):
        if signing_key is None and key_error is None:
            raise ValueError("Provide a signing key or the key error that prevented loading one")
        if max_exchange_attempts < 1:
            raise ValueError("max_exchange_attempts must be at least 1")

        self._signing_key = signing_key
        self._key_error = key_error
        self._signer = signer or AssertionSigner()
        self._exchanger = exchanger or ProviderTokenExchanger(token_url=self._signer.audience)
        self._fallback = fallback
        self._url_builder = url_builder
        self._default_redirect_url = default_redirect_url
        self._handling_request_url = handling_request_url
        self._audit = audit
        self._max_exchange_attempts = max_exchange_attempts
        self._issuer = issuer
        self.counters = IssuanceCounters()

    @classmethod
    def from_settings(
        cls,
        settings: OnrampSettings,
        *,
        strict_keys: bool = True,
        audit: Optional[IssuanceLog] = None,
        client: Optional[httpx.AsyncClient] = None,
        max_exchange_attempts: int = 1,
    ) -> "SessionOrchestrator":
        """Build from settings. Invalid key material aborts startup unless
        ``strict_keys`` is False, in which case every request degrades."""
        key: Optional[SigningKey] = None
        key_error: Optional[InvalidKeyMaterialError] = None
        try:
            key = load_signing_key(settings.api_key_id, settings.api_key_secret)
        except InvalidKeyMaterialError as exc:
            if strict_keys:
                raise
            logger.error("Provider key unusable, running degraded-only: %s", exc)
            key_error = exc

        signer = AssertionSigner()
        return cls(
            signing_key=key,
            key_error=key_error,
            signer=signer,
            exchanger=ProviderTokenExchanger(
                token_url=signer.audience,
                timeout_seconds=settings.exchange_timeout_seconds,
                client=client,
            ),
            fallback=FallbackTokenIssuer(
                settings.fallback_secret,
                ttl_seconds=settings.fallback_ttl_seconds,
            ),
            url_builder=OnrampUrlBuilder(settings.environment),
            default_redirect_url=settings.default_redirect_url,
            handling_request_url=settings.handling_request_url,
            audit=audit,
            max_exchange_attempts=max_exchange_attempts,
        )

    @property
    def environment(self) -> OnrampEnvironment:
        return self._url_builder.environment

    @property
    def fallback(self) -> FallbackTokenIssuer:
        return self._fallback

    async def issue_session_token(self, params: SessionParameters) -> IssuanceOutcome:
        params = self._with_defaults(params)
        states = [FlowState.START, FlowState.NORMALIZING]
        failure: Optional[OnrampError] = None
        token: Optional[SessionToken] = None

        if self._signing_key is None:
            failure = self._key_error
        else:
            for attempt in range(1, self._max_exchange_attempts + 1):
                states.append(FlowState.SIGNING)
                try:
                    assertion = self._signer.sign(self._signing_key, issuer=self._issuer)
                except SigningError as exc:
                    failure = exc
                    logger.warning("Assertion signing failed, degrading: %s", type(exc).__name__)
                    break

                states.append(FlowState.EXCHANGING)
                try:
                    token = await self._exchanger.exchange(assertion, params)
                except ExchangeError as exc:
                    failure = exc
                    await self._log_exchange_failure(exc, params, attempt)
                    if isinstance(exc, _RETRYABLE) and attempt < self._max_exchange_attempts:
                        continue
                    break
                states.append(FlowState.SUCCESS)
                failure = None
                break

        if token is None:
            states.append(FlowState.FALLING_BACK)
            token = self._fallback.issue(params)
            logger.warning(
                "Issued degraded onramp session (degraded_mode=1, wallet=%s, cause=%s)",
                params.destination_wallet,
                type(failure).__name__ if failure else "unknown",
            )
            await self.record_event(
                EventType.SESSION_DEGRADED,
                wallet=params.destination_wallet,
                token_id=token.token_id,
                degraded=True,
                reason=type(failure).__name__ if failure else None,
            )
        else:
            logger.info("Issued provider onramp session for %s", params.destination_wallet)
            await self.record_event(
                EventType.SESSION_ISSUED,
                wallet=params.destination_wallet,
                degraded=False,
            )

        self.counters.record(token.degraded, failure)
        return IssuanceOutcome(token=token, states=states, failure=failure)

    async def create_checkout(
        self,
        params: SessionParameters,
        display: Optional[DisplayParameters] = None,
    ) -> CheckoutResult:
        params = self._with_defaults(params)
        outcome = await self.issue_session_token(params)
        states = list(outcome.states)

        states.append(FlowState.BUILDING_URL)
        display = display or DisplayParameters()
        if display.handling_request_url is None and self._handling_request_url:
            display = dataclasses.replace(display, handling_request_url=self._handling_request_url)
        url = self._url_builder.build(outcome.token, params, display)
        states.append(FlowState.DONE)

        await self.record_event(
            EventType.URL_BUILT,
            wallet=params.destination_wallet,
            token_id=outcome.token.token_id,
            degraded=outcome.degraded,
            details={"environment": self._url_builder.environment.value},
        )
        return CheckoutResult(
            url=url,
            token=outcome.token,
            states=tuple(states),
            failure=outcome.failure,
        )

    async def aclose(self) -> None:
        await self._exchanger.aclose()

    async def __aenter__(self):
        return self

    async def __aexit__(self, *args):
        await self.aclose()

    def _with_defaults(self, params: SessionParameters) -> SessionParameters:
        if params.redirect_url is None and self._default_redirect_url:
            return params.with_redirect_url(self._default_redirect_url)
        return params

    async def _log_exchange_failure(self, exc: ExchangeError, params: SessionParameters, attempt: int):
        status_code = getattr(exc, "status_code", None)
        logger.warning(
            "Token exchange failed (attempt %d/%d, %s, status=%s): %s",
            attempt,
            self._max_exchange_attempts,
            type(exc).__name__,
            status_code,
            exc,
        )
        details: dict = {"attempt": attempt}
        if status_code is not None:
            details["status_code"] = status_code
        await self.record_event(
            EventType.EXCHANGE_FAILED,
            wallet=params.destination_wallet,
            success=False,
            reason=type(exc).__name__,
            details=details,
        )

    async def record_event(self, event_type: EventType, **kwargs) -> None:
        """Append to the issuance ledger off the event loop.

        Ledger faults are logged and dropped: checkout still gets its URL.
        """
        if self._audit is None:
            return
        try:
            await asyncio.to_thread(self._audit.log, event_type, **kwargs)
        except OSError:
            logger.exception("Issuance ledger write failed (event=%s)", event_type.value)
