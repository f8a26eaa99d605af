"""Credential store: the persisted token record and its cold-start bootstrap.

The record lives at ``{creds_dir}/.gdrive-server-credentials.json`` and the
OAuth application keys at ``{creds_dir}/gcp-oauth.keys.json``.
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
from pathlib import Path

from pydantic import ValidationError

from token_keeper.config import Config
from token_keeper.models.auth import ClientIdentity, CredentialSet

logger = logging.getLogger(__name__)


class CredentialStore:
    """Single source of truth for the at-rest credential record."""

    def __init__(self, config: Config) -> None:
        self._config = config
        self._file = config.credentials_path
        self._keys_file = config.keys_path
        self._bootstrapped = False

    @property
    def path(self) -> Path:
        return self._file

    @property
    def exists(self) -> bool:
        return self._file.exists()

    # ── persistence ───────────────────────────────────────────────────

    def load(self) -> CredentialSet | None:
        """Load the persisted credential set, or None if absent or unreadable."""
        if not self._bootstrapped:
            self.bootstrap_from_config()

        if not self._file.exists():
            logger.info(f"No credentials file found at {self._file}")
            return None

        try:
            with open(self._file) as f:
                data = json.load(f)
            creds = CredentialSet.from_record(data)
        except (OSError, ValueError, KeyError, TypeError, ValidationError) as e:
            logger.error(f"Error loading credentials from {self._file}: {e}")
            return None

        logger.info(f"Loaded existing credentials with scopes: {' '.join(sorted(creds.scope))}")
        if creds.is_placeholder:
            logger.warning("Using placeholder credentials for testing - API calls will fail")
            logger.warning(f"To use real authentication, delete {self._file} and log in again")
        return creds

    def save(self, creds: CredentialSet) -> None:
        """Atomically overwrite the persisted record.

        Raises:
            OSError: If the directory cannot be created or the write fails.
        """
        self._ensure_dir()
        fd, tmp_name = tempfile.mkstemp(dir=self._file.parent, prefix=".creds-", suffix=".tmp")
        try:
            with os.fdopen(fd, "w") as f:
                json.dump(creds.to_record(), f, indent=2)
                f.flush()
                os.fsync(f.fileno())
            os.chmod(tmp_name, 0o600)
            os.replace(tmp_name, self._file)
        except OSError:
            Path(tmp_name).unlink(missing_ok=True)
            raise
        logger.info(f"Credentials saved to {self._file}")

    def delete(self) -> bool:
        """Remove the persisted record. Returns True if one was removed."""
        try:
            self._file.unlink()
        except FileNotFoundError:
            return False
        logger.info(f"Deleted credentials file {self._file}")
        return True

    def _ensure_dir(self) -> None:
        try:
            self._file.parent.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            logger.error(f"Failed to create credentials directory {self._file.parent}: {e}")
            raise

    # ── cold start ────────────────────────────────────────────────────

    def bootstrap_from_config(self) -> bool:
        """Materialize records from injected configuration on cold start.

        Never overwrites an existing file: a record placed by an operator
        takes precedence over injected defaults. Runs at most once.

        Returns:
            True if the credentials record was created.
        """
        if self._bootstrapped:
            return False
        self._bootstrapped = True

        settings = self._config.settings
        if settings.oauth_keys_json:
            self._materialize(self._keys_file, settings.oauth_keys_json, "OAuth keys", validate=False)

        if not settings.credentials_json:
            return False
        return self._materialize(self._file, settings.credentials_json, "credentials", validate=True)

    def _materialize(self, path: Path, blob: str, label: str, validate: bool) -> bool:
        if path.exists():
            logger.info(f"Existing {label} file at {path} takes precedence over environment")
            return False

        try:
            data = json.loads(blob)
            if validate:
                CredentialSet.from_record(data)
        except (ValueError, KeyError, TypeError, ValidationError) as e:
            logger.error(f"Ignoring injected {label}: invalid JSON record ({e})")
            return False

        try:
            self._ensure_dir()
            # "x" fails if another writer got there first
            with open(path, "x") as f:
                json.dump(data, f, indent=2)
            os.chmod(path, 0o600)
        except FileExistsError:
            logger.info(f"{label.capitalize()} file at {path} appeared concurrently; keeping it")
            return False
        except OSError as e:
            logger.error(f"Could not create {label} file at {path}: {e}")
            return False
        logger.info(f"Created {label} file from environment at {path}")
        return True

    # ── client identity ───────────────────────────────────────────────

    def load_identity(self) -> ClientIdentity | None:
        """Client identity from settings, else from the OAuth keys file."""
        identity = self._config.identity
        if identity is not None:
            return identity

        if not self._bootstrapped:
            self.bootstrap_from_config()
        if not self._keys_file.exists():
            return None

        try:
            with open(self._keys_file) as f:
                data = json.load(f)
            # Google client-secrets files nest under "installed" or "web"
            section = data.get("installed") or data.get("web") or data
            redirect_uris = section.get("redirect_uris") or [self._config.settings.redirect_uri]
            return ClientIdentity(
                client_id=section["client_id"],
                client_secret=section["client_secret"],
                redirect_uri=redirect_uris[0],
            )
        except (OSError, ValueError, KeyError, TypeError, AttributeError, ValidationError) as e:
            logger.error(f"Error loading OAuth keys from {self._keys_file}: {e}")
            return None
