"""
Onramp — provider session issuance for marketplace checkout.

Signed assertion → provider session token (or degraded fallback) →
redirect URL. Checkout degrades instead of failing when the provider is down.
"""

__version__ = "0.1.0"

from .errors import (
    ConfigurationError,
    ExchangeError,
    ExchangeMalformedResponseError,
    ExchangeRejectedError,
    ExchangeTimeoutError,
    ExchangeUnavailableError,
    FallbackTokenError,
    InvalidKeyMaterialError,
    InvalidSessionParametersError,
    MissingSessionTokenError,
    OnrampError,
    SigningError,
)
from .keys import SigningKey, load_signing_key, normalize_pem
from .assertion import Assertion, AssertionSigner, sign_assertion
from .session import DisplayParameters, SessionParameters
from .tokens import SessionToken
from .exchange import ProviderTokenExchanger
from .fallback import FallbackClaims, FallbackTokenIssuer
from .url_builder import OnrampEnvironment, OnrampUrlBuilder, build_onramp_url
from .config import OnrampSettings, load_settings
from .audit import EventType, IssuanceLog
from .orchestrator import CheckoutResult, FlowState, SessionOrchestrator

__all__ = [
    "OnrampError", "ConfigurationError", "InvalidKeyMaterialError", "SigningError",
    "ExchangeError", "ExchangeTimeoutError", "ExchangeUnavailableError",
    "ExchangeRejectedError", "ExchangeMalformedResponseError",
    "MissingSessionTokenError", "InvalidSessionParametersError", "FallbackTokenError",
    "SigningKey", "load_signing_key", "normalize_pem",
    "Assertion", "AssertionSigner", "sign_assertion",
    "SessionParameters", "DisplayParameters", "SessionToken",
    "ProviderTokenExchanger", "FallbackTokenIssuer", "FallbackClaims",
    "OnrampEnvironment", "OnrampUrlBuilder", "build_onramp_url",
    "OnrampSettings", "load_settings", "EventType", "IssuanceLog",
    "SessionOrchestrator", "CheckoutResult", "FlowState",
]
