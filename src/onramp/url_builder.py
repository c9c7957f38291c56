"""
Onramp redirect URL construction.

Parameters are emitted in a fixed order and always URL-encoded. A missing
session token is a hard error: a checkout URL without authentication is
never produced.
"""

from __future__ import annotations

import logging
from enum import Enum
from typing import Optional, Union
from urllib.parse import quote, urlencode

from .errors import MissingSessionTokenError
from .session import DisplayParameters, SessionParameters, truncate_partner_user_id
from .tokens import SessionToken

logger = logging.getLogger(__name__)


class OnrampEnvironment(str, Enum):
    SANDBOX = "sandbox"
    PRODUCTION = "production"

    @property
    def base_url(self) -> str:
        return ONRAMP_BASE_URLS[self]


ONRAMP_BASE_URLS = {
    OnrampEnvironment.SANDBOX: "https://pay-sandbox.coinbase.com/buy",
    OnrampEnvironment.PRODUCTION: "https://pay.coinbase.com/buy",
}


class OnrampUrlBuilder:
    """Builds provider redirect URLs for one configured environment."""

    def __init__(self, environment: OnrampEnvironment = OnrampEnvironment.SANDBOX):
        self.environment = OnrampEnvironment(environment)
        self.base_url = self.environment.base_url
        if self.environment is OnrampEnvironment.SANDBOX:
            logger.info("Onramp URLs target the SANDBOX environment (%s)", self.base_url)

    def build(
        self,
        token: Union[SessionToken, str, None],
        params: SessionParameters,
        display: Optional[DisplayParameters] = None,
    ) -> str:
        token_value = token.value if isinstance(token, SessionToken) else token
        if not token_value or not token_value.strip():
            raise MissingSessionTokenError("A session token is required to build an onramp URL")
        display = display or DisplayParameters()

        query: list[tuple[str, str]] = [
            ("sessionToken", token_value),
            ("defaultAsset", params.default_asset),
            ("defaultNetwork", params.default_network),
        ]

        if params.preset_fiat_amount is not None:
            query.append(("presetFiatAmount", params.preset_fiat_amount))
            query.append(("fiatCurrency", params.fiat_currency or "USD"))
        elif params.preset_crypto_amount is not None:
            query.append(("presetCryptoAmount", params.preset_crypto_amount))

        query.append(("defaultExperience", display.default_experience))

        optional = [
            ("defaultPaymentMethod", display.default_payment_method),
            ("partnerUserId", truncate_partner_user_id(params.partner_user_id)),
            ("redirectUrl", params.redirect_url),
            ("handlingRequestUrl", display.handling_request_url),
            ("theme", display.theme),
        ]
        query.extend((name, value) for name, value in optional if value)

        return f"{self.base_url}?{urlencode(query, quote_via=quote)}"


def build_onramp_url(
    token: Union[SessionToken, str, None],
    params: SessionParameters,
    display: Optional[DisplayParameters] = None,
    environment: OnrampEnvironment = OnrampEnvironment.SANDBOX,
) -> str:
    return OnrampUrlBuilder(environment).build(token, params, display)
