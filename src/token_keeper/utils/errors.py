"""Credential errors and structured error output for the CLI."""

from __future__ import annotations

import json
import sys

from rich.console import Console

from token_keeper.models.auth import FailureKind

console = Console(stderr=True)


class CredentialError(Exception):
    """No usable credential could be produced.

    ``kind`` tells callers whether retrying can help; the manager itself
    never retries.
    """

    def __init__(self, kind: FailureKind, message: str = "") -> None:
        self.kind = kind
        super().__init__(message or kind.value.replace("_", " "))

    @property
    def retryable(self) -> bool:
        return self.kind.retryable


_LOGIN_HINT = "Run `token-keeper auth login` on a machine that allows interactive consent"

# Actionable hints keyed by failure kind
_KIND_HINTS: dict[FailureKind, str] = {
    FailureKind.INVALID_GRANT: "Refresh token was rejected — " + _LOGIN_HINT,
    FailureKind.AUTHENTICATION_REQUIRED: _LOGIN_HINT,
    FailureKind.NOT_PERMITTED: "Interactive consent is disabled here — set TOKEN_KEEPER_INTERACTIVE=true or provide GDRIVE_CREDENTIALS_JSON",
    FailureKind.NO_CREDENTIAL: _LOGIN_HINT,
    FailureKind.UNREFRESHABLE: "Stored token has no refresh token — " + _LOGIN_HINT,
    FailureKind.TIMEOUT: "Token exchange timed out — try again or check network connectivity",
    FailureKind.NETWORK_ERROR: "Could not reach the token endpoint — check network connectivity",
    FailureKind.PERSIST_FAILURE: "Token obtained but not saved — check permissions on the credentials directory",
}

# Fallback hints keyed by error substring
_ERROR_HINTS: list[tuple[str, str]] = [
    ("401", "Token may be expired — run `token-keeper auth refresh`"),
    ("unauthorized", "Token may be expired — run `token-keeper auth refresh`"),
    ("provider", "Check your config/providers.yaml provider names"),
    ("timeout", "Request timed out — try again or check network connectivity"),
    ("connection", "Connection error — check network connectivity"),
    ("permission denied", "Check permissions on the credentials directory"),
]


def _get_hint(error: Exception | str) -> str | None:
    """Match an error to an actionable hint."""
    if isinstance(error, CredentialError):
        return _KIND_HINTS.get(error.kind)
    lower = str(error).lower()
    for pattern, hint in _ERROR_HINTS:
        if pattern in lower:
            return hint
    return None


def _get_code(error: Exception) -> str:
    """Determine an error code from the exception type or message."""
    if isinstance(error, CredentialError):
        return error.kind.value.upper()
    message = str(error).lower()
    if "401" in message or "unauthorized" in message:
        return "AUTH_ERROR"
    if "timeout" in message:
        return "TIMEOUT"
    if "connection" in message:
        return "CONNECTION_ERROR"
    return "RUNTIME_ERROR"


def handle_error(error: Exception) -> None:
    """Handle an error with structured output to stdout and human-readable output to stderr.

    Outputs a JSON error object to stdout:
    {"error": true, "code": "INVALID_GRANT", "message": "...", "hint": "..."}
    """
    message = str(error)
    hint = _get_hint(error)

    error_obj: dict[str, object] = {
        "error": True,
        "code": _get_code(error),
        "message": message,
    }
    if isinstance(error, CredentialError):
        error_obj["retryable"] = error.retryable
    if hint:
        error_obj["hint"] = hint

    json.dump(error_obj, sys.stdout)
    sys.stdout.write("\n")

    console.print(f"[red]Error:[/red] {message}")
    if hint:
        console.print(f"[dim]Hint: {hint}[/dim]")
