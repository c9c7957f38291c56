"""
Session parameters for one checkout.

``SessionParameters`` is what the provider binds into the session token
(wallet, assets, chains, preset amount, partner id). ``DisplayParameters``
only affects the redirect URL. Both are validated once, at construction,
so invalid input is rejected before any signing or network work.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Any, Iterable, Mapping, Optional
from urllib.parse import urlparse

from .errors import InvalidSessionParametersError
from .money import normalize_amount

logger = logging.getLogger(__name__)

PARTNER_USER_ID_MAX_LENGTH = 50

DEFAULT_ASSET = "USDC"
DEFAULT_NETWORK = "base"
DEFAULT_FIAT_CURRENCY = "USD"
DEFAULT_EXPERIENCE = "buy"

EVM_NETWORKS = frozenset(
    {"ethereum", "base", "polygon", "arbitrum", "optimism", "avalanche-c-chain", "bsc"}
)
EXPERIENCES = frozenset({"buy", "send"})
THEMES = frozenset({"light", "dark"})

_EVM_ADDRESS_RE = re.compile(r"^0x[0-9a-fA-F]{40}$")
_GENERIC_ADDRESS_RE = re.compile(r"^[A-Za-z0-9]{25,90}$")
_SYMBOL_RE = re.compile(r"^[A-Z0-9]{2,12}$")
_NETWORK_RE = re.compile(r"^[a-z0-9][a-z0-9-]{1,40}$")
_CURRENCY_RE = re.compile(r"^[A-Z]{3}$")


def truncate_partner_user_id(value: Optional[str]) -> Optional[str]:
    """Cap a partner user id at its first 50 characters (truncate, never reject).

    The id is kept verbatim; only a blank id is treated as absent.
    """
    if value is None or not value.strip():
        return None
    return value[:PARTNER_USER_ID_MAX_LENGTH]


@dataclass(frozen=True)
class SessionParameters:
    """Provider-bound parameters of one onramp session."""

    destination_wallet: str
    assets: tuple[str, ...]
    blockchains: tuple[str, ...]
    default_network: str = DEFAULT_NETWORK
    default_asset: str = DEFAULT_ASSET
    preset_fiat_amount: Optional[str] = None
    fiat_currency: Optional[str] = None
    preset_crypto_amount: Optional[str] = None
    partner_user_id: Optional[str] = None
    redirect_url: Optional[str] = None

    @classmethod
    def create(
        cls,
        destination_wallet: str,
        assets: Optional[Iterable[str]] = None,
        default_network: str = DEFAULT_NETWORK,
        default_asset: Optional[str] = None,
        blockchains: Optional[Iterable[str]] = None,
        preset_fiat_amount: Any = None,
        fiat_currency: Optional[str] = None,
        preset_crypto_amount: Any = None,
        partner_user_id: Optional[str] = None,
        redirect_url: Optional[str] = None,
    ) -> "SessionParameters":
        """Validate and normalize raw checkout input.

        Fiat preset takes precedence: when both presets are given the crypto
        preset is dropped. ``fiat_currency`` defaults to USD when a fiat
        preset is present and is discarded otherwise.
        """
        network = _normalize_network(default_network, "default_network")
        wallet = _normalize_wallet(destination_wallet, network)

        asset_list = _dedupe(_normalize_symbol(a, "assets") for a in (assets or [DEFAULT_ASSET]))
        if not asset_list:
            raise InvalidSessionParametersError("assets", "at least one asset is required")

        asset = _normalize_symbol(default_asset, "default_asset") if default_asset else asset_list[0]
        if asset not in asset_list:
            raise InvalidSessionParametersError(
                "default_asset", f"{asset} is not among allowed assets {list(asset_list)}"
            )

        chains = _dedupe(_normalize_network(c, "blockchains") for c in (blockchains or [network]))
        if network not in chains:
            raise InvalidSessionParametersError(
                "default_network", f"{network} is not among allowed blockchains {list(chains)}"
            )

        fiat_amount = None
        currency = None
        crypto_amount = None
        if _present(preset_fiat_amount):
            fiat_amount = normalize_amount(preset_fiat_amount, "preset_fiat_amount")
            currency = (fiat_currency or DEFAULT_FIAT_CURRENCY).strip().upper()
            if not _CURRENCY_RE.match(currency):
                raise InvalidSessionParametersError(
                    "fiat_currency", f"expected ISO 4217 code, got {fiat_currency!r}"
                )
            if _present(preset_crypto_amount):
                logger.debug("Both presets supplied; fiat preset wins, crypto preset dropped")
        elif _present(preset_crypto_amount):
            crypto_amount = normalize_amount(preset_crypto_amount, "preset_crypto_amount")

        return cls(
            destination_wallet=wallet,
            assets=asset_list,
            blockchains=chains,
            default_network=network,
            default_asset=asset,
            preset_fiat_amount=fiat_amount,
            fiat_currency=currency,
            preset_crypto_amount=crypto_amount,
            partner_user_id=truncate_partner_user_id(partner_user_id),
            redirect_url=_validate_http_url(redirect_url, "redirect_url"),
        )

    def with_redirect_url(self, redirect_url: str) -> "SessionParameters":
        return SessionParameters(
            **{**self.to_dict(), "redirect_url": _validate_http_url(redirect_url, "redirect_url")}
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "destination_wallet": self.destination_wallet,
            "assets": self.assets,
            "blockchains": self.blockchains,
            "default_network": self.default_network,
            "default_asset": self.default_asset,
            "preset_fiat_amount": self.preset_fiat_amount,
            "fiat_currency": self.fiat_currency,
            "preset_crypto_amount": self.preset_crypto_amount,
            "partner_user_id": self.partner_user_id,
            "redirect_url": self.redirect_url,
        }

    def to_claims(self) -> dict[str, Any]:
        """JSON-safe form embedded in fallback tokens."""
        claims: dict[str, Any] = {
            "destinationWallet": self.destination_wallet,
            "assets": list(self.assets),
            "blockchains": list(self.blockchains),
            "defaultNetwork": self.default_network,
            "defaultAsset": self.default_asset,
        }
        optional = {
            "presetFiatAmount": self.preset_fiat_amount,
            "fiatCurrency": self.fiat_currency,
            "presetCryptoAmount": self.preset_crypto_amount,
            "partnerUserId": self.partner_user_id,
            "redirectUrl": self.redirect_url,
        }
        claims.update({k: v for k, v in optional.items() if v is not None})
        return claims

    @classmethod
    def from_claims(cls, claims: Mapping[str, Any]) -> "SessionParameters":
        try:
            return cls(
                destination_wallet=str(claims["destinationWallet"]),
                assets=tuple(claims["assets"]),
                blockchains=tuple(claims["blockchains"]),
                default_network=str(claims["defaultNetwork"]),
                default_asset=str(claims["defaultAsset"]),
                preset_fiat_amount=claims.get("presetFiatAmount"),
                fiat_currency=claims.get("fiatCurrency"),
                preset_crypto_amount=claims.get("presetCryptoAmount"),
                partner_user_id=claims.get("partnerUserId"),
                redirect_url=claims.get("redirectUrl"),
            )
        except (KeyError, TypeError) as exc:
            raise InvalidSessionParametersError("session", f"malformed session claims: {exc}") from None


@dataclass(frozen=True)
class DisplayParameters:
    """Widget presentation options; never bound into the session token."""

    default_experience: str = DEFAULT_EXPERIENCE
    default_payment_method: Optional[str] = None
    handling_request_url: Optional[str] = None
    theme: Optional[str] = None

    @classmethod
    def create(
        cls,
        default_experience: Optional[str] = None,
        default_payment_method: Optional[str] = None,
        handling_request_url: Optional[str] = None,
        theme: Optional[str] = None,
    ) -> "DisplayParameters":
        experience = (default_experience or DEFAULT_EXPERIENCE).strip().lower()
        if experience not in EXPERIENCES:
            raise InvalidSessionParametersError(
                "default_experience", f"expected one of {sorted(EXPERIENCES)}"
            )
        resolved_theme = theme.strip().lower() if theme and theme.strip() else None
        if resolved_theme is not None and resolved_theme not in THEMES:
            raise InvalidSessionParametersError("theme", f"expected one of {sorted(THEMES)}")
        payment_method = default_payment_method.strip() if default_payment_method else None
        return cls(
            default_experience=experience,
            default_payment_method=payment_method or None,
            handling_request_url=_validate_http_url(handling_request_url, "handling_request_url"),
            theme=resolved_theme,
        )


def _present(value: Any) -> bool:
    if value is None:
        return False
    if isinstance(value, str):
        return bool(value.strip())
    return True


def _dedupe(values: Iterable[str]) -> tuple[str, ...]:
    seen: list[str] = []
    for value in values:
        if value not in seen:
            seen.append(value)
    return tuple(seen)


def _normalize_wallet(address: Optional[str], network: str) -> str:
    if not address or not str(address).strip():
        raise InvalidSessionParametersError("destination_wallet", "destination wallet is required")
    candidate = str(address).strip()
    if network in EVM_NETWORKS:
        if candidate.startswith("0X"):
            candidate = "0x" + candidate[2:]
        if not _EVM_ADDRESS_RE.match(candidate):
            raise InvalidSessionParametersError(
                "destination_wallet", f"not a valid {network} address: {candidate!r}"
            )
        return candidate
    if not _GENERIC_ADDRESS_RE.match(candidate):
        raise InvalidSessionParametersError(
            "destination_wallet", f"not a valid {network} address: {candidate!r}"
        )
    return candidate


def _normalize_symbol(value: Optional[str], field_name: str) -> str:
    symbol = (value or "").strip().upper()
    if not _SYMBOL_RE.match(symbol):
        raise InvalidSessionParametersError(field_name, f"invalid asset symbol {value!r}")
    return symbol


def _normalize_network(value: Optional[str], field_name: str) -> str:
    network = (value or "").strip().lower()
    if not _NETWORK_RE.match(network):
        raise InvalidSessionParametersError(field_name, f"invalid network {value!r}")
    return network


def _validate_http_url(value: Optional[str], field_name: str) -> Optional[str]:
    if value is None or not value.strip():
        return None
    url = value.strip()
    parsed = urlparse(url)
    if parsed.scheme not in {"http", "https"} or not parsed.netloc:
        raise InvalidSessionParametersError(field_name, f"expected an http(s) URL, got {url!r}")
    return url
