"""CLI commands for credential management."""

from __future__ import annotations

import time
from typing import Annotated, Any

import typer
from rich.console import Console

from token_keeper.config import get_config
from token_keeper.auth import AuthManager
from token_keeper.models.auth import TokenStatus
from token_keeper.store import CredentialStore
from token_keeper.utils.errors import CredentialError, handle_error
from token_keeper.utils.output import OutputFormat, print_output

console = Console(stderr=True)
app = typer.Typer(name="auth", help="Manage OAuth2 credentials.")

OutputOption = Annotated[OutputFormat, typer.Option("--output", "-o", help="Output format")]


def _status_dict(status: TokenStatus) -> dict[str, Any]:
    return {
        "state": status.state.value,
        "has_token": status.has_token,
        "has_refresh_token": status.has_refresh_token,
        "expires_at": status.expires_at.isoformat() if status.expires_at else None,
        "seconds_remaining": status.seconds_remaining or 0,
        "scopes": status.scopes,
        "placeholder": status.placeholder,
    }


@app.command()
def login(output: OutputOption = OutputFormat.TABLE) -> None:
    """Obtain a valid credential, launching the consent flow if needed."""
    auth = AuthManager(get_config())

    try:
        console.print("Authenticating...", style="yellow")
        auth.get_valid_credential(allow_interactive=True)
        print_output({"status": "authenticated", **_status_dict(auth.get_status())}, output, title="Authentication")
    except CredentialError as e:
        handle_error(e)
        raise typer.Exit(1)
    finally:
        auth.close()


@app.command()
def status(output: OutputOption = OutputFormat.TABLE) -> None:
    """Show the stored credential's status."""
    auth = AuthManager(get_config())
    try:
        print_output(_status_dict(auth.get_status()), output, title="Token Status")
    finally:
        auth.close()


@app.command()
def refresh(output: OutputOption = OutputFormat.TABLE) -> None:
    """Force refresh the access token."""
    auth = AuthManager(get_config())

    try:
        console.print("Force refreshing token...", style="yellow")
        auth.force_refresh()
        print_output({"status": "refreshed", **_status_dict(auth.get_status())}, output, title="Token Refreshed")
    except CredentialError as e:
        handle_error(e)
        raise typer.Exit(1)
    finally:
        auth.close()


@app.command()
def bootstrap(output: OutputOption = OutputFormat.TABLE) -> None:
    """Create credential files from GDRIVE_CREDENTIALS_JSON / GCP_OAUTH_KEYS_JSON."""
    store = CredentialStore(get_config())
    created = store.bootstrap_from_config()
    print_output(
        {"created": created, "path": str(store.path), "exists": store.exists},
        output,
        title="Bootstrap",
    )


@app.command()
def logout(output: OutputOption = OutputFormat.TABLE) -> None:
    """Delete the stored credential record."""
    auth = AuthManager(get_config())
    try:
        removed = auth.logout()
        print_output({"removed": removed, "path": str(auth.store.path)}, output, title="Logout")
    finally:
        auth.close()


@app.command()
def watch(
    interval: Annotated[
        int, typer.Option("--interval", "-i", help="Seconds between checks (default: configured interval)")
    ] = 0,
) -> None:
    """Keep the credential fresh in the foreground until interrupted."""
    config = get_config()
    if interval > 0:
        config = config.model_copy(
            update={"settings": config.settings.model_copy(update={"refresh_interval": interval})}
        )
    auth = AuthManager(config)

    console.print(
        f"Refreshing every [bold]{config.settings.refresh_interval}s[/bold]; Ctrl-C to stop",
        style="yellow",
    )
    auth.refresh_if_needed()
    auth.start_background_refresh()
    try:
        while True:
            time.sleep(1)
    except KeyboardInterrupt:
        console.print("Stopping background refresh", style="yellow")
    finally:
        auth.close()
