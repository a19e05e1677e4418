"""
Command-line interface for the Webull client.

Commands:
    status  Show the saved session state
    login   Log in (prompts for the MFA code when required)
    logout  Log out and delete the saved session
    stream  Print streaming events for symbols
"""

import json
import logging
import sys
from typing import Optional, Tuple

import click

from .auth.token_store import FileTokenStore
from .client import WebullClient
from .config import WebullConfig
from .exceptions import WebullError
from .streaming.events import EventType

logger = logging.getLogger(__name__)

DEFAULT_TOKEN_FILE = "~/.webull_client/session.json"


def get_client(ctx: click.Context) -> WebullClient:
    """Get the WebullClient from context."""
    return ctx.obj["client"]


def print_error(message: str) -> None:
    """Print error message to stderr."""
    click.secho(f"Error: {message}", fg="red", err=True)


def print_success(message: str) -> None:
    """Print success message."""
    click.secho(message, fg="green")


@click.group()
@click.option("--verbose", "-v", is_flag=True, help="Verbose output")
@click.option(
    "--token-file",
    default=DEFAULT_TOKEN_FILE,
    show_default=True,
    envvar="WEBULL_TOKEN_FILE",
    help="File the session is saved to",
)
@click.option("--paper", is_flag=True, help="Use the paper-trading account")
@click.pass_context
def cli(ctx: click.Context, verbose: bool, token_file: str, paper: bool) -> None:
    """Webull client - session management and market data streaming."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    ctx.ensure_object(dict)
    ctx.obj["verbose"] = verbose
    if "client" in ctx.obj:
        return

    overrides = {"token_store": FileTokenStore(token_file)}
    if paper:
        overrides["paper_trading"] = True
    try:
        config = WebullConfig.from_env(**overrides)
    except WebullError as e:
        print_error(str(e))
        sys.exit(1)

    client = WebullClient(config)
    ctx.obj["client"] = client
    ctx.call_on_close(client.close)


@cli.command()
@click.option("--json", "output_json", is_flag=True, help="JSON output")
@click.pass_context
def status(ctx: click.Context, output_json: bool) -> None:
    """Show the saved session state."""
    client = get_client(ctx)
    client.restore_session()
    info = client.status()

    if output_json:
        click.echo(json.dumps(info, indent=2, default=str))
        return

    click.secho("=== Webull Session ===", bold=True)
    click.echo(f"State:        {info['state']}")
    click.echo(f"Account mode: {info['account_mode']}")
    if "expires_at" in info:
        click.echo(f"Expires at:   {info['expires_at']}")
        click.echo(f"Refreshable:  {'yes' if info['refreshable'] else 'no'}")
    if not info["authenticated"]:
        click.echo("\nRun 'webull-client login' to authenticate.")


@cli.command()
@click.option("--username", prompt=True, help="Account username (email or phone)")
@click.option("--password", prompt=True, hide_input=True, help="Account password")
@click.option("--mfa-code", default=None, help="Verification code (prompted if needed)")
@click.pass_context
def login(ctx: click.Context, username: str, password: str, mfa_code: Optional[str]) -> None:
    """Log in and save the session."""
    client = get_client(ctx)
    try:
        session = client.login(username, password)
        if session.mfa_pending:
            click.echo("A verification code was sent to your device.")
            code = mfa_code or click.prompt("Verification code")
            client.complete_mfa(code.strip())
    except WebullError as e:
        print_error(f"Login failed: {e}")
        sys.exit(1)

    print_success(f"Logged in ({client.config.account_mode} account)")


@cli.command()
@click.pass_context
def logout(ctx: click.Context) -> None:
    """Log out and delete the saved session."""
    client = get_client(ctx)
    if not client.restore_session():
        click.echo("No saved session.")
        return
    client.logout()
    print_success("Logged out")


@cli.command()
@click.argument("symbols", nargs=-1, required=True)
@click.option(
    "--type",
    "event_types",
    multiple=True,
    default=("QUOTE",),
    show_default=True,
    type=click.Choice([t.value for t in (EventType.QUOTE, EventType.ORDER,
                                         EventType.ACCOUNT, EventType.TRADE)],
                      case_sensitive=False),
    help="Event type to subscribe to (repeatable)",
)
@click.option("--count", type=int, default=None, help="Stop after this many events")
@click.pass_context
def stream(
    ctx: click.Context,
    symbols: Tuple[str, ...],
    event_types: Tuple[str, ...],
    count: Optional[int],
) -> None:
    """Print streaming events for SYMBOLS as JSON lines."""
    client = get_client(ctx)
    verbose = ctx.obj.get("verbose", False)

    if not client.restore_session():
        print_error("Not logged in. Run 'webull-client login' first.")
        sys.exit(1)

    session = client.streaming()
    received = 0
    try:
        session.subscribe(symbols, event_types)
        session.connect()
        for event in session:
            if event.type is EventType.CONNECTION and not verbose:
                continue
            click.echo(event.model_dump_json())
            received += 1
            if count is not None and received >= count:
                break
    except WebullError as e:
        print_error(f"Streaming failed: {e}")
        sys.exit(1)
    except KeyboardInterrupt:
        click.echo("\nStopping stream.")
    finally:
        session.disconnect()


def main() -> None:
    """Main entry point for the CLI."""
    cli()


__all__ = ["cli", "main"]
