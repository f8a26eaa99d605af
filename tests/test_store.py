"""Tests for store.py: load/save, cold-start bootstrap, client identity."""
import json
import logging
import os
from unittest.mock import patch

import pytest

from token_keeper.config import Config
from token_keeper.store import CredentialStore

from conftest import make_creds


def _injected_record(**overrides):
    record = {
        "access_token": "injected-token",
        "refresh_token": "injected-refresh",
        "scope": "scope.drive scope.sheets",
        "token_type": "Bearer",
        "expiry_date": 1893456000000,
    }
    record.update(overrides)
    return record


def _config_with(fake_config, **settings) -> Config:
    return Config(
        settings=fake_config.settings.model_copy(update=settings),
        providers=fake_config.providers,
    )


# ── load / save ──────────────────────────────────────────────────────

def test_load_missing_returns_none(fake_config):
    assert CredentialStore(fake_config).load() is None


def test_save_then_load_roundtrip(fake_config):
    store = CredentialStore(fake_config)
    creds = make_creds(minutes=42)
    store.save(creds)
    assert store.load() == creds


def test_save_creates_directory(fake_config, creds_dir):
    assert not creds_dir.exists()
    CredentialStore(fake_config).save(make_creds())
    assert (creds_dir / ".gdrive-server-credentials.json").exists()


def test_save_writes_record_format(fake_config):
    store = CredentialStore(fake_config)
    store.save(make_creds(access_token="abc"))
    data = json.loads(store.path.read_text())
    assert data["access_token"] == "abc"
    assert isinstance(data["expiry_date"], int)
    assert data["scope"] == "scope.drive scope.sheets"


def test_save_overwrites_whole_record(fake_config):
    store = CredentialStore(fake_config)
    store.save(make_creds(access_token="first"))
    store.save(make_creds(access_token="second", refresh_token=None))
    loaded = store.load()
    assert loaded.access_token == "second"
    assert loaded.refresh_token is None


def test_save_leaves_no_temp_files(fake_config, creds_dir):
    store = CredentialStore(fake_config)
    store.save(make_creds())
    store.save(make_creds())
    assert [p.name for p in creds_dir.iterdir()] == [".gdrive-server-credentials.json"]


def test_save_directory_failure_propagates(fake_config, tmp_path):
    blocker = tmp_path / "not-a-dir"
    blocker.write_text("file in the way")
    store = CredentialStore(_config_with(fake_config, creds_dir=str(blocker / "creds")))
    with pytest.raises(OSError):
        store.save(make_creds())


def test_save_write_failure_keeps_previous_record(fake_config):
    store = CredentialStore(fake_config)
    original = make_creds(access_token="keep-me")
    store.save(original)

    with patch("token_keeper.store.os.replace", side_effect=OSError("disk full")):
        with pytest.raises(OSError, match="disk full"):
            store.save(make_creds(access_token="lost"))

    assert store.load() == original


def test_load_corrupt_file_returns_none(fake_config, creds_dir, caplog):
    creds_dir.mkdir(parents=True)
    (creds_dir / ".gdrive-server-credentials.json").write_text("{not json")
    with caplog.at_level(logging.ERROR):
        assert CredentialStore(fake_config).load() is None
    assert "Error loading credentials" in caplog.text


def test_load_invalid_record_returns_none(fake_config, creds_dir):
    creds_dir.mkdir(parents=True)
    (creds_dir / ".gdrive-server-credentials.json").write_text(json.dumps({"scope": "x"}))
    assert CredentialStore(fake_config).load() is None


@pytest.mark.parametrize("raw", [
    "null",
    "[]",
    '"x"',
    '{"access_token": "a", "expiry_date": 1e20}',
    '{"access_token": "a", "expiry_date": "soon"}',
])
def test_load_unusable_record_returns_none(fake_config, creds_dir, raw):
    creds_dir.mkdir(parents=True)
    (creds_dir / ".gdrive-server-credentials.json").write_text(raw)
    assert CredentialStore(fake_config).load() is None


def test_load_placeholder_warns(fake_config, caplog):
    store = CredentialStore(fake_config)
    store.save(make_creds(access_token="mock_access_token_for_testing"))
    with caplog.at_level(logging.WARNING):
        creds = store.load()
    assert creds.access_token == "mock_access_token_for_testing"
    assert "placeholder" in caplog.text


def test_delete(fake_config):
    store = CredentialStore(fake_config)
    store.save(make_creds())
    assert store.delete() is True
    assert store.exists is False
    assert store.delete() is False


# ── bootstrap_from_config ────────────────────────────────────────────

def test_bootstrap_materializes_injected_record(fake_config):
    config = _config_with(fake_config, credentials_json=json.dumps(_injected_record()))
    store = CredentialStore(config)

    creds = store.load()

    assert store.exists
    assert creds.access_token == "injected-token"
    assert creds.refresh_token == "injected-refresh"
    assert creds.scope == frozenset({"scope.drive", "scope.sheets"})
    assert creds.to_record()["expiry_date"] == 1893456000000


def test_bootstrap_does_not_overwrite_existing_record(fake_config):
    operator = make_creds(access_token="operator-token")
    CredentialStore(fake_config).save(operator)

    config = _config_with(fake_config, credentials_json=json.dumps(_injected_record()))
    store = CredentialStore(config)

    assert store.bootstrap_from_config() is False
    assert store.load() == operator


def test_bootstrap_runs_once(fake_config):
    config = _config_with(fake_config, credentials_json=json.dumps(_injected_record()))
    store = CredentialStore(config)

    assert store.bootstrap_from_config() is True
    store.delete()
    assert store.bootstrap_from_config() is False
    assert store.load() is None


def test_bootstrap_ignores_invalid_blob(fake_config, caplog):
    config = _config_with(fake_config, credentials_json="{broken")
    store = CredentialStore(config)
    with caplog.at_level(logging.ERROR):
        assert store.bootstrap_from_config() is False
    assert not store.exists
    assert "Ignoring injected credentials" in caplog.text


@pytest.mark.parametrize("blob", ["null", "[1]", '{"access_token": "a", "expiry_date": 1e20}'])
def test_bootstrap_ignores_non_record_blob(fake_config, blob):
    store = CredentialStore(_config_with(fake_config, credentials_json=blob))
    assert store.load() is None
    assert not store.exists


def test_bootstrap_without_config_is_noop(fake_config):
    store = CredentialStore(fake_config)
    assert store.bootstrap_from_config() is False
    assert not store.exists


def test_bootstrap_materializes_oauth_keys(fake_config, creds_dir):
    keys = {"installed": {"client_id": "kid", "client_secret": "ksec", "redirect_uris": ["http://localhost"]}}
    config = _config_with(fake_config, oauth_keys_json=json.dumps(keys))
    CredentialStore(config).bootstrap_from_config()
    assert json.loads((creds_dir / "gcp-oauth.keys.json").read_text()) == keys


def test_bootstrap_keeps_existing_oauth_keys(fake_config, creds_dir):
    creds_dir.mkdir(parents=True)
    keys_path = creds_dir / "gcp-oauth.keys.json"
    keys_path.write_text('{"installed": {"client_id": "mine"}}')
    config = _config_with(fake_config, oauth_keys_json='{"installed": {"client_id": "theirs"}}')
    CredentialStore(config).bootstrap_from_config()
    assert "mine" in keys_path.read_text()


@pytest.mark.skipif(os.name == "nt", reason="POSIX permissions")
def test_saved_record_is_private(fake_config):
    store = CredentialStore(fake_config)
    store.save(make_creds())
    assert store.path.stat().st_mode & 0o777 == 0o600


# ── load_identity ────────────────────────────────────────────────────

def test_identity_from_settings(fake_config):
    identity = CredentialStore(fake_config).load_identity()
    assert identity.client_id == "test-client-id"
    assert identity.client_secret == "test-client-secret"


def test_identity_from_keys_file(fake_config, creds_dir):
    config = _config_with(fake_config, client_id="", client_secret="")
    creds_dir.mkdir(parents=True)
    (creds_dir / "gcp-oauth.keys.json").write_text(json.dumps({
        "web": {"client_id": "file-id", "client_secret": "file-secret", "redirect_uris": ["http://localhost:8080"]}
    }))
    identity = CredentialStore(config).load_identity()
    assert identity.client_id == "file-id"
    assert identity.redirect_uri == "http://localhost:8080"


def test_identity_missing(fake_config):
    config = _config_with(fake_config, client_id="", client_secret="")
    assert CredentialStore(config).load_identity() is None


def test_load_survives_unwritable_bootstrap(fake_config, tmp_path):
    blocker = tmp_path / "blocker"
    blocker.write_text("file in the way")
    config = _config_with(
        fake_config,
        creds_dir=str(blocker / "creds"),
        credentials_json=json.dumps(_injected_record()),
    )
    assert CredentialStore(config).load() is None
