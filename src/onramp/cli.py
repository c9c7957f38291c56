"""
Onramp CLI — checkout session tooling.

Commands:
    onramp check-key   Validate the configured provider key (never prints it)
    onramp url         Issue a session and print the redirect URL
    onramp inspect     Decode a degraded (fallback) token
    onramp audit       View the issuance ledger
    onramp serve       Run the HTTP API
"""

from __future__ import annotations

import asyncio
import json
import logging
import sys
import time
from typing import Optional

import click

from . import __version__
from .audit import IssuanceLog
from .config import OnrampSettings, load_settings
from .errors import ConfigurationError, FallbackTokenError, InvalidSessionParametersError
from .fallback import FallbackTokenIssuer
from .keys import load_signing_key
from .orchestrator import SessionOrchestrator
from .session import DisplayParameters, SessionParameters


def _settings_or_exit(environment: Optional[str] = None) -> OnrampSettings:
    try:
        return load_settings(environment=environment)
    except ConfigurationError as e:
        click.echo(f"❌ Configuration error: {e}", err=True)
        sys.exit(1)


@click.group()
@click.version_option(version=__version__)
@click.option("-v", "--verbose", is_flag=True, help="Enable debug logging")
def main(verbose: bool):
    """Onramp — provider session issuance for marketplace checkout."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


@main.command("check-key")
def check_key():
    """Validate the configured provider key material."""
    settings = _settings_or_exit()
    try:
        key = load_signing_key(settings.api_key_id, settings.api_key_secret)
    except ConfigurationError as e:
        click.echo(f"❌ {e}", err=True)
        sys.exit(1)

    click.echo("✅ Provider key is usable for ES256")
    click.echo(f"   Key ID:      {key.key_id}")
    click.echo(f"   Curve:       {key.curve}")
    click.echo(f"   Environment: {settings.environment.value}")


@main.command()
@click.option("--wallet", required=True, help="Destination wallet address")
@click.option("--asset", "assets", multiple=True, help="Allowed asset symbol (repeatable, default USDC)")
@click.option("--default-asset", default=None, help="Asset preselected in the widget")
@click.option("--network", default="base", show_default=True, help="Default network")
@click.option("--chain", "blockchains", multiple=True, help="Allowed chain for the wallet (repeatable)")
@click.option("--fiat-amount", default=None, help="Preset fiat amount (wins over --crypto-amount)")
@click.option("--fiat-currency", default=None, help="Fiat currency code (default USD)")
@click.option("--crypto-amount", default=None, help="Preset crypto amount")
@click.option("--partner-user-id", default=None, help="Partner user id (truncated to 50 chars)")
@click.option("--redirect-url", default=None, help="Post-completion redirect URL")
@click.option("--experience", type=click.Choice(["buy", "send"]), default="buy", show_default=True)
@click.option("--payment-method", default=None, help="Default payment method hint")
@click.option("--theme", type=click.Choice(["light", "dark"]), default=None)
@click.option("--environment", type=click.Choice(["sandbox", "production"]), default=None,
              help="Override ONRAMP_ENVIRONMENT")
@click.option("--json", "as_json", is_flag=True, help="Print the result as JSON")
def url(
    wallet: str,
    assets: tuple[str, ...],
    default_asset: Optional[str],
    network: str,
    blockchains: tuple[str, ...],
    fiat_amount: Optional[str],
    fiat_currency: Optional[str],
    crypto_amount: Optional[str],
    partner_user_id: Optional[str],
    redirect_url: Optional[str],
    experience: str,
    payment_method: Optional[str],
    theme: Optional[str],
    environment: Optional[str],
    as_json: bool,
):
    """Issue a session and print the onramp redirect URL."""
    try:
        params = SessionParameters.create(
            destination_wallet=wallet,
            assets=list(assets) or None,
            default_asset=default_asset,
            default_network=network,
            blockchains=list(blockchains) or None,
            preset_fiat_amount=fiat_amount,
            fiat_currency=fiat_currency,
            preset_crypto_amount=crypto_amount,
            partner_user_id=partner_user_id,
            redirect_url=redirect_url,
        )
        display = DisplayParameters.create(
            default_experience=experience,
            default_payment_method=payment_method,
            theme=theme,
        )
    except InvalidSessionParametersError as e:
        click.echo(f"❌ Invalid parameters: {e}", err=True)
        sys.exit(1)

    settings = _settings_or_exit(environment)

    async def _run():
        orchestrator = SessionOrchestrator.from_settings(settings, audit=IssuanceLog())
        async with orchestrator:
            return await orchestrator.create_checkout(params, display)

    try:
        result = asyncio.run(_run())
    except ConfigurationError as e:
        click.echo(f"❌ Configuration error: {e}", err=True)
        sys.exit(1)

    if as_json:
        click.echo(json.dumps(result.to_dict(), indent=2))
        return

    if result.degraded:
        click.echo(f"⚠️  Provider unavailable, issued DEGRADED token ({result.failure_reason})", err=True)
    click.echo(result.url)


@main.command()
@click.argument("token")
@click.option("--allow-expired", is_flag=True, help="Decode even if the token has expired")
def inspect(token: str, allow_expired: bool):
    """Decode and verify a degraded (fallback) session token."""
    settings = _settings_or_exit()
    issuer = FallbackTokenIssuer(settings.fallback_secret, ttl_seconds=settings.fallback_ttl_seconds)
    try:
        claims = issuer.decode(token, verify_expiry=not allow_expired)
    except FallbackTokenError as e:
        click.echo(f"❌ {e}", err=True)
        sys.exit(1)

    click.echo(json.dumps(claims.to_dict(), indent=2))


@main.command()
@click.option("--wallet", default=None, help="Filter by wallet address")
@click.option("--limit", type=int, default=20, help="Number of events")
@click.option("--summary", "show_summary", is_flag=True, help="Show counts instead of events")
def audit(wallet: Optional[str], limit: int, show_summary: bool):
    """View the issuance ledger."""
    ledger = IssuanceLog()
    try:
        if show_summary:
            click.echo(json.dumps(ledger.summary(), indent=2))
            return
        events = ledger.read_events(wallet=wallet, limit=limit)
    except RuntimeError as e:
        click.echo(f"❌ {e}", err=True)
        sys.exit(1)

    if not events:
        click.echo("No issuance events found.")
        return

    for event in events:
        ts = time.strftime("%H:%M:%S", time.localtime(event.timestamp))
        status = "✅" if event.success else "❌"
        degraded = " [degraded]" if event.degraded else ""
        who = f" → {event.wallet}" if event.wallet else ""
        reason = f" ({event.reason})" if event.reason else ""
        click.echo(f"  {ts} {status} {event.event_type}{degraded}{who}{reason}")


@main.command()
@click.option("--host", default="127.0.0.1", show_default=True)
@click.option("--port", type=int, default=3001, show_default=True)
@click.option("--degraded-only-on-bad-key", is_flag=True,
              help="Start even if the provider key is invalid (every session degrades)")
def serve(host: str, port: int, degraded_only_on_bad_key: bool):
    """Run the onramp HTTP API."""
    import uvicorn

    from .server import create_app

    settings = _settings_or_exit()
    try:
        orchestrator = SessionOrchestrator.from_settings(
            settings,
            strict_keys=not degraded_only_on_bad_key,
            audit=IssuanceLog(),
        )
    except ConfigurationError as e:
        click.echo(f"❌ Configuration error: {e}", err=True)
        sys.exit(1)

    click.echo(f"🚀 Onramp API on http://{host}:{port} ({settings.environment.value})")
    uvicorn.run(create_app(orchestrator), host=host, port=port)


if __name__ == "__main__":
    main()
