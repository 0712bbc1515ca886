"""CLI for Reporting API operations."""
import asyncio
import click
import json
from typing import Optional

from reporting_api.settings import get_settings


def _credential_store():
    from reporting_api.dependencies import get_kv_store, get_object_store
    from reporting_api.domain.credentials import CredentialStore

    settings = get_settings()
    if settings.store_backend.lower() != "redis":
        click.echo("Warning: STORE_BACKEND is not 'redis'; changes will not outlive this process", err=True)

    async def build():
        return CredentialStore(
            await get_kv_store(),
            pepper=settings.api_key_pepper,
            pepper_id=settings.api_key_pepper_id,
            max_rotation_attempts=settings.rotation_max_attempts,
            object_store=get_object_store(),
            require_secure_pepper=settings.is_prod,
        )
    return build


def _authority():
    from reporting_api.domain.signed_url import SignedUrlAuthority

    settings = get_settings()
    return SignedUrlAuthority(
        settings.pdf_signing_secret,
        previous_secrets=settings.pdf_signing_previous_secrets,
        default_ttl_seconds=settings.signed_url_default_ttl_seconds,
        max_ttl_seconds=settings.signed_url_max_ttl_seconds,
    )


def _run(coro_fn):
    from reporting_api.adapters.redis.client import close_redis

    async def wrapper():
        try:
            return await coro_fn()
        finally:
            await close_redis()
    return asyncio.run(wrapper())


@click.group()
def cli():
    """Reporting API CLI."""
    pass


@cli.group()
def agency():
    """Manage agencies and their API keys."""
    pass


@agency.command("create")
@click.option("--name", required=True, help="Agency display name")
@click.option("--billing-email", required=True, help="Billing contact email")
def create_agency(name: str, billing_email: str):
    """Create an agency and print its API key (shown once)."""
    from reporting_api.errors import ReportingError

    build = _credential_store()

    async def go():
        store = await build()
        return await store.create_agency(name, billing_email)

    try:
        record, api_key = _run(go)
    except ReportingError as e:
        raise click.ClickException(f"{e.code}: {e.message}")

    click.echo(f"✓ Agency '{record.agency_id}' created")
    click.echo(json.dumps({"agencyId": record.agency_id, "apiKey": api_key}, indent=2))


@agency.command("rotate-key")
@click.argument("agency_id")
def rotate_key(agency_id: str):
    """Rotate an agency's API key. The old key stops working immediately."""
    from reporting_api.errors import ReportingError

    build = _credential_store()

    async def go():
        store = await build()
        return await store.rotate(agency_id)

    try:
        new_key = _run(go)
    except ReportingError as e:
        raise click.ClickException(f"{e.code}: {e.message}")

    click.echo(f"✓ Rotated API key for agency '{agency_id}'")
    click.echo(json.dumps({"newApiKey": new_key}, indent=2))


@cli.group("signed-url")
def signed_url():
    """Mint and check signed report URLs."""
    pass


@signed_url.command("mint")
@click.option("--agency-id", required=True)
@click.option("--client-id", required=True)
@click.option("--filename", required=True, help="Report file name, e.g. 2025-12-19T00-00-00-000Z.pdf")
@click.option("--ttl", type=int, default=None, help="Lifetime in seconds (capped at the configured max)")
@click.option("--base-url", default=None, help="Override BASE_URL")
def mint(agency_id: str, client_id: str, filename: str, ttl: Optional[int], base_url: Optional[str]):
    """Print a signed URL for a report artifact."""
    from reporting_api.domain.signed_url import ResourcePath
    from reporting_api.errors import ReportingError

    try:
        authority = _authority()
        resource = ResourcePath.validated(agency_id, client_id, filename)
        signed = authority.mint(resource, ttl)
    except ReportingError as e:
        raise click.ClickException(f"{e.code}: {e.message}")

    url = authority.build_url(base_url or get_settings().base_url, resource, signed.token)
    click.echo(json.dumps({"url": url, "expiresAt": signed.expires_at_iso(), "ttl": signed.ttl}, indent=2))


@signed_url.command("verify")
@click.option("--agency-id", required=True)
@click.option("--client-id", required=True)
@click.option("--filename", required=True)
@click.option("--token", required=True)
def verify(agency_id: str, client_id: str, filename: str, token: str):
    """Check a token against a report path. Exits non-zero when invalid."""
    from reporting_api.domain.signed_url import ResourcePath
    from reporting_api.errors import ReportingError

    try:
        authority = _authority()
    except ReportingError as e:
        raise click.ClickException(f"{e.code}: {e.message}")

    result = authority.verify(ResourcePath(agency_id, client_id, filename), token)
    if result.valid:
        click.echo("✓ Token valid")
    else:
        click.echo(f"✗ {result.reason}", err=True)
        raise SystemExit(1)


if __name__ == "__main__":
    cli()
