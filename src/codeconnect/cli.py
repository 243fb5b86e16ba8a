"""CLI entry point for codeconnect."""

import asyncio
import io
from pathlib import Path
from typing import Any

import aiohttp
import click
import qrcode

from codeconnect import __version__
from codeconnect.config import load_config
from codeconnect.errors import ConfigError
from codeconnect.logging import setup_logging

DEFAULT_SERVER = "http://127.0.0.1:3000"


@click.group()
@click.option(
    "--config",
    "-c",
    type=click.Path(exists=False, path_type=Path),
    default=None,
    help="Path to config file.",
)
@click.pass_context
def main(ctx: click.Context, config: Path | None) -> None:
    """codeconnect - Pair devices with short codes and relay events."""
    ctx.ensure_object(dict)
    try:
        ctx.obj["config"] = load_config(config)
    except ConfigError as e:
        raise click.ClickException(f"Invalid config: {e}")
    ctx.obj["logger"] = setup_logging(ctx.obj["config"])


@main.command()
@click.option("--host", default=None, help="Override bind address.")
@click.option("--port", type=int, default=None, help="Override port.")
@click.pass_context
def serve(ctx: click.Context, host: str | None, port: int | None) -> None:
    """Run the pairing and relay server."""
    from codeconnect.daemon import Daemon, StartupError

    config = ctx.obj["config"]
    if host is not None:
        config.host = host
    if port is not None:
        config.port = port

    async def _serve():
        daemon = Daemon(config=config)

        try:
            await daemon.start()
            click.echo(f"Server listening on {config.host}:{daemon.get_port()}")
            click.echo("Press Ctrl+C to stop")
            await daemon.run_forever()
        except StartupError as e:
            click.echo(f"Startup error: {e}", err=True)
            raise SystemExit(1)
        except KeyboardInterrupt:
            click.echo("\nShutting down...")
        finally:
            await daemon.stop()

    try:
        asyncio.run(_serve())
    except KeyboardInterrupt:
        pass


async def _request(method: str, url: str, payload: dict[str, Any] | None = None) -> tuple[int, dict]:
    """Make one JSON request against a running server."""
    async with aiohttp.ClientSession() as session:
        async with session.request(method, url, json=payload) as resp:
            try:
                data = await resp.json()
            except (aiohttp.ContentTypeError, ValueError):
                data = {"error": await resp.text()}
            return resp.status, data


def render_qr(data: str) -> str:
    """Render data as a terminal QR code."""
    qr = qrcode.QRCode(
        version=None,  # Auto-size
        error_correction=qrcode.constants.ERROR_CORRECT_M,
        border=2,
    )
    qr.add_data(data)
    qr.make(fit=True)

    output = io.StringIO()
    qr.print_ascii(out=output, invert=True)
    return output.getvalue()


def _fail(status: int, data: dict) -> None:
    message = data.get("message") or data.get("error") or "request failed"
    raise click.ClickException(f"{message} (HTTP {status})")


@main.command()
@click.option("--server", default=DEFAULT_SERVER, show_default=True, help="Server base URL.")
@click.option("--ttl", type=int, default=None, help="Code lifetime in seconds.")
@click.option("--qr", "show_qr", is_flag=True, help="Also print the code as a QR code.")
def issue(server: str, ttl: int | None, show_qr: bool) -> None:
    """Issue a pairing code from a running server."""
    payload = {"ttl_seconds": ttl} if ttl is not None else {}
    try:
        status, data = asyncio.run(
            _request("POST", f"{server}/api/pairing/generate-code", payload)
        )
    except aiohttp.ClientError as e:
        raise click.ClickException(f"Cannot reach {server}: {e}")

    if status != 200:
        _fail(status, data)

    click.echo(f"Code: {data['code']}")
    click.echo(f"Expires in: {data['expires_in_seconds']}s")
    click.echo(f"Owner token: {data['owner_token']}")
    if show_qr:
        click.echo(render_qr(data["code"]))


@main.command()
@click.argument("code")
@click.option("--server", default=DEFAULT_SERVER, show_default=True, help="Server base URL.")
def validate(code: str, server: str) -> None:
    """Check whether CODE can still be joined."""
    try:
        status, data = asyncio.run(
            _request("POST", f"{server}/api/pairing/validate-code", {"code": code})
        )
    except aiohttp.ClientError as e:
        raise click.ClickException(f"Cannot reach {server}: {e}")

    if status != 200:
        _fail(status, data)

    if data.get("valid"):
        click.echo(f"{code}: valid (expires in {data['expires_in_seconds']}s)")
    else:
        click.echo(f"{code}: not valid")
        raise SystemExit(1)


@main.command()
@click.option("--server", default=DEFAULT_SERVER, show_default=True, help="Server base URL.")
def active(server: str) -> None:
    """List live codes on a running server."""
    try:
        status, data = asyncio.run(_request("GET", f"{server}/api/pairing/active-codes"))
    except aiohttp.ClientError as e:
        raise click.ClickException(f"Cannot reach {server}: {e}")

    if status != 200:
        _fail(status, data)

    codes = data.get("codes", [])
    if not codes:
        click.echo("No active codes.")
        return

    click.echo(f"{'Code':<10} {'State':<10} {'Expires':<10} {'Claims'}")
    click.echo("-" * 40)
    for c in codes:
        click.echo(
            f"{c['code']:<10} {c['state']:<10} {str(c['expires_in_seconds']) + 's':<10} {c['claims']}"
        )


@main.command()
def version() -> None:
    """Show version."""
    click.echo(f"codeconnect version {__version__}")
