"""token-keeper CLI entry point.

Keeps OAuth2 credentials for Google Drive, Sheets and Docs access
valid and persisted.
"""

from __future__ import annotations

import logging

import typer

from token_keeper.commands.auth_cmd import app as auth_app

app = typer.Typer(
    name="token-keeper",
    help="Manage the OAuth2 credential used for outbound Google API calls.",
    no_args_is_help=True,
)

app.add_typer(auth_app, name="auth")


@app.callback()
def main(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable verbose logging"),
) -> None:
    """Acquire, persist and refresh OAuth2 credentials."""
    if verbose:
        logging.basicConfig(level=logging.INFO, format="%(levelname)s: %(message)s")


if __name__ == "__main__":
    app()
