"""CLI tests for the auth command group."""
import json
from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock, patch

from typer.testing import CliRunner

from token_keeper.commands.auth_cmd import app
from token_keeper.models.auth import FailureKind, TokenState, TokenStatus
from token_keeper.utils.errors import CredentialError

runner = CliRunner()


def _valid_status():
    return TokenStatus(
        state=TokenState.VALID,
        has_token=True,
        has_refresh_token=True,
        expires_at=datetime.now(timezone.utc) + timedelta(hours=1),
        seconds_remaining=3600,
        scopes=["scope.drive"],
    )


def _invoke(args, auth):
    with patch("token_keeper.commands.auth_cmd.get_config", return_value=MagicMock()), \
         patch("token_keeper.commands.auth_cmd.AuthManager", return_value=auth):
        return runner.invoke(app, args)


# ── login ────────────────────────────────────────────────────────────

def test_login_success():
    auth = MagicMock()
    auth.get_status.return_value = _valid_status()

    result = _invoke(["login", "--output", "json"], auth)

    assert result.exit_code == 0
    auth.get_valid_credential.assert_called_once_with(allow_interactive=True)
    assert '"status": "authenticated"' in result.stdout
    auth.close.assert_called_once()


def test_login_failure():
    auth = MagicMock()
    auth.get_valid_credential.side_effect = CredentialError(FailureKind.NOT_PERMITTED)

    result = _invoke(["login"], auth)

    assert result.exit_code == 1
    assert "NOT_PERMITTED" in result.stdout
    auth.close.assert_called_once()


# ── status ───────────────────────────────────────────────────────────

def test_status_json():
    auth = MagicMock()
    auth.get_status.return_value = TokenStatus(state=TokenState.MISSING, has_token=False)

    result = _invoke(["status", "--output", "json"], auth)

    assert result.exit_code == 0
    data = json.loads(result.stdout)
    assert data["state"] == "missing"
    assert data["has_token"] is False


# ── refresh ──────────────────────────────────────────────────────────

def test_refresh_success():
    auth = MagicMock()
    auth.get_status.return_value = _valid_status()

    result = _invoke(["refresh", "--output", "json"], auth)

    assert result.exit_code == 0
    auth.force_refresh.assert_called_once()


def test_refresh_failure():
    auth = MagicMock()
    auth.force_refresh.side_effect = CredentialError(FailureKind.INVALID_GRANT, "Token has been revoked")

    result = _invoke(["refresh"], auth)

    assert result.exit_code == 1
    assert "INVALID_GRANT" in result.stdout


# ── logout ───────────────────────────────────────────────────────────

def test_logout():
    auth = MagicMock()
    auth.logout.return_value = True
    auth.store.path = "/tmp/creds.json"

    result = _invoke(["logout", "--output", "json"], auth)

    assert result.exit_code == 0
    assert json.loads(result.stdout)["removed"] is True


# ── bootstrap ────────────────────────────────────────────────────────

def test_bootstrap_command(fake_config):
    config = fake_config.model_copy(update={
        "settings": fake_config.settings.model_copy(update={
            "credentials_json": json.dumps({"access_token": "x", "expiry_date": 1893456000000}),
        }),
    })
    with patch("token_keeper.commands.auth_cmd.get_config", return_value=config):
        result = runner.invoke(app, ["bootstrap", "--output", "json"])

    assert result.exit_code == 0
    data = json.loads(result.stdout)
    assert data["created"] is True
    assert data["exists"] is True
