"""Shared fixtures for the token-keeper test suite."""
from __future__ import annotations

from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock

import pytest

from token_keeper.config import Config, ProviderProfile, Settings
from token_keeper.models.auth import CredentialSet


@pytest.fixture
def creds_dir(tmp_path):
    return tmp_path / "creds"


@pytest.fixture
def fake_settings(creds_dir) -> Settings:
    return Settings(
        client_id="test-client-id",
        client_secret="test-client-secret",
        redirect_uri="http://localhost",
        provider="google",
        creds_dir=str(creds_dir),
        interactive=False,
        refresh_interval=2700,
        exchange_timeout=5.0,
    )


@pytest.fixture
def fake_providers() -> dict[str, ProviderProfile]:
    return {
        "google": ProviderProfile(
            auth_endpoint="https://accounts.example.com/o/oauth2/auth",
            token_endpoint="https://oauth2.example.com/token",
            scopes=["scope.drive", "scope.sheets"],
        ),
    }


@pytest.fixture
def fake_config(fake_settings, fake_providers) -> Config:
    return Config(settings=fake_settings, providers=fake_providers)


def make_creds(
    minutes: float = 60,
    access_token: str = "tok-current",
    refresh_token: str | None = "refresh-abc",
    scope: tuple[str, ...] = ("scope.drive", "scope.sheets"),
) -> CredentialSet:
    """Credential set expiring ``minutes`` from now."""
    return CredentialSet(
        access_token=access_token,
        refresh_token=refresh_token,
        scope=frozenset(scope),
        expiry=datetime.now(timezone.utc) + timedelta(minutes=minutes),
    )


def token_response(access_token="tok-new", expires_in=3600, status_code=200, json_data=None):
    """Build a fake httpx.Response for the token endpoint."""
    resp = MagicMock()
    resp.status_code = status_code
    resp.text = ""
    resp.json.return_value = json_data if json_data is not None else {
        "access_token": access_token,
        "token_type": "Bearer",
        "expires_in": expires_in,
    }
    return resp
