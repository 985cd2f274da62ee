"""Operator commands for Papermail credentials."""

from __future__ import annotations

import json
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

import keyring
import typer
from rich.console import Console
from rich.table import Table

from .auth.state import derive_state
from .config import DEFAULT_CONFIG_PATH, bootstrap_settings
from .exceptions import AuthenticationError, PapermailError
from .runtime import PapermailRuntime

console = Console()
error_console = Console(stderr=True)

app = typer.Typer(help="Papermail credential management")

ConfigOption = typer.Option(DEFAULT_CONFIG_PATH, "--config", "-c", help="Settings file")


def _build_runtime(config: Path) -> PapermailRuntime:
    try:
        settings = bootstrap_settings(path=config.expanduser())
    except ValueError as exc:
        error_console.print(f"Error: {exc}")
        raise typer.Exit(1)
    try:
        return PapermailRuntime(settings, keyring_module=keyring)
    except PapermailError as exc:
        error_console.print(f"Error: {exc}")
        raise typer.Exit(1)


@app.command("auth-url")
def auth_url(
    config: Path = ConfigOption,
    json_output: bool = typer.Option(False, "--json", help="Output as JSON"),
) -> None:
    """Print a consent URL with a fresh PKCE verifier and state."""
    runtime = _build_runtime(config)
    request = runtime.oauth.build_authorization_url()
    if json_output:
        print(json.dumps(request._asdict()))
        return
    console.print(f"[bold blue]Open this URL to authorize:[/bold blue]\n{request.url}")
    console.print(f"Code verifier: {request.code_verifier}")
    console.print(f"State: {request.state}")


@app.command("exchange")
def exchange(
    user: str = typer.Option(..., "--user", "-u", help="User identity subject"),
    code: str = typer.Option(..., "--code", help="Authorization code from the redirect"),
    verifier: str = typer.Option(..., "--verifier", help="PKCE code verifier from auth-url"),
    email: Optional[str] = typer.Option(None, "--email", "-e", help="Mailbox address"),
    config: Path = ConfigOption,
) -> None:
    """Redeem an authorization code and store the tokens."""
    runtime = _build_runtime(config)
    try:
        tokens = runtime.oauth.exchange_code(code, verifier)
        account = runtime.oauth.store_tokens(user, tokens, email_address=email)
    except AuthenticationError as exc:
        error_console.print(f"Authorization failed: {exc}")
        raise typer.Exit(1)
    except PapermailError as exc:
        error_console.print(f"Error: {exc}")
        raise typer.Exit(1)
    console.print(
        f"[green]Stored tokens for {account.email_address}[/green] "
        f"(valid until {account.expires_at.isoformat()})"
    )


@app.command("status")
def status(
    user: str = typer.Option(..., "--user", "-u", help="User identity subject"),
    config: Path = ConfigOption,
    json_output: bool = typer.Option(False, "--json", help="Output as JSON"),
) -> None:
    """Show the credential state of a user's account."""
    runtime = _build_runtime(config)
    account = runtime.store.find_account_by_user(user)
    state = derive_state(account, datetime.now(timezone.utc))
    summary = {
        "user": user,
        "state": state.value,
        "provider": account.provider_id if account else None,
        "email": account.email_address if account else None,
        "expires_at": account.expires_at.isoformat() if account and account.expires_at else None,
        "has_refresh_token": bool(account and account.refresh_token),
        "scopes": account.scopes if account else [],
    }
    if json_output:
        print(json.dumps(summary))
        return

    table = Table(title="Credential Status")
    table.add_column("Field", style="cyan")
    table.add_column("Value")
    for key, value in summary.items():
        if isinstance(value, list):
            value = " ".join(value) or "-"
        table.add_row(key, "-" if value is None else str(value))
    console.print(table)


@app.command("revoke")
def revoke(
    user: str = typer.Option(..., "--user", "-u", help="User identity subject"),
    config: Path = ConfigOption,
) -> None:
    """Clear stored tokens and deactivate the account."""
    runtime = _build_runtime(config)
    runtime.oauth.revoke_tokens(user)
    console.print(f"[yellow]Revoked credentials for {user}[/yellow]")


@app.command("rotate-key")
def rotate_key(config: Path = ConfigOption) -> None:
    """Add a new token protection key version."""
    runtime = _build_runtime(config)
    try:
        version = runtime.protector.rotate_key()
    except PapermailError as exc:
        error_console.print(f"Key rotation failed: {exc}")
        raise typer.Exit(1)
    console.print(f"[green]Token protection key is now version {version}[/green]")


def main() -> None:
    app()


__all__ = ["app", "main"]
