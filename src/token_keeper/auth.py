"""OAuth2 credential lifecycle for outbound API calls.

Handles loading, validation, refresh, interactive bootstrap and
background refresh of the process-wide credential set.
"""

from __future__ import annotations

import logging
import threading
from datetime import datetime, timezone

from token_keeper.bootstrap import ConsentRunner, InteractiveBootstrap, installed_app_consent
from token_keeper.config import Config
from token_keeper.models.auth import CredentialSet, FailureKind, RefreshOutcome, TokenState, TokenStatus
from token_keeper.refresh import RefreshEngine
from token_keeper.scheduler import BackgroundRefresher
from token_keeper.store import CredentialStore
from token_keeper.utils.errors import CredentialError
from token_keeper.validator import classify, is_refreshable

logger = logging.getLogger(__name__)


class AuthManager:
    """Owns the credential slot, refresh engine and background refresher.

    Construct one per process and pass it to everything that makes
    authenticated calls.
    """

    def __init__(
        self,
        config: Config,
        store: CredentialStore | None = None,
        consent: ConsentRunner | None = None,
    ) -> None:
        settings = config.settings
        provider = config.get_provider()

        self._config = config
        self._store = store or CredentialStore(config)
        identity = self._store.load_identity()
        self._engine = RefreshEngine(
            self._store,
            identity,
            provider.token_endpoint,
            timeout=settings.exchange_timeout,
        )
        self._bootstrap = InteractiveBootstrap(
            self._engine,
            self._store,
            identity,
            consent or installed_app_consent(provider, settings.exchange_timeout),
            interactive=settings.interactive,
            default_scopes=config.scopes,
            timeout=settings.exchange_timeout,
        )
        self._refresher = BackgroundRefresher(self.refresh_if_needed, settings.refresh_interval)
        self._lock = threading.Lock()
        self._current: CredentialSet | None = None

    @property
    def store(self) -> CredentialStore:
        return self._store

    def get_valid_credential(self, allow_interactive: bool = True) -> CredentialSet:
        """Get a credential valid for at least the safety margin.

        Args:
            allow_interactive: Permit the consent flow when nothing else can
                produce a credential (still gated by the deployment mode).

        Raises:
            CredentialError: If no valid credential can be obtained.
        """
        with self._lock:
            current = self._current
        if classify(current) == TokenState.VALID:
            return current  # type: ignore[return-value]

        creds = self._store.load()
        state = classify(creds)
        self._log_state(creds, state)

        if state == TokenState.VALID:
            self._set_current(creds)
            return creds  # type: ignore[return-value]

        if is_refreshable(state):
            return self._take(self._engine.refresh(creds))  # type: ignore[arg-type]

        if allow_interactive and self._bootstrap.permitted:
            return self._take(self._bootstrap.bootstrap())

        if state == TokenState.MISSING:
            message = "No stored credentials and interactive authentication is not available"
        else:
            message = "Stored credentials cannot be renewed without interactive authentication"
        logger.error(message)
        raise CredentialError(FailureKind.AUTHENTICATION_REQUIRED, message)

    def get_access_token(self, allow_interactive: bool = True) -> str:
        """Get a valid access token string."""
        return self.get_valid_credential(allow_interactive).access_token

    def force_refresh(self) -> CredentialSet:
        """Refresh regardless of the current expiry.

        Raises:
            CredentialError: If nothing refreshable is stored or the refresh fails.
        """
        creds = self._store.load()
        if creds is None:
            raise CredentialError(FailureKind.NO_CREDENTIAL, "No stored credentials to refresh")
        if not creds.has_refresh_token:
            raise CredentialError(FailureKind.UNREFRESHABLE, "Stored credentials have no refresh token")
        return self._take(self._engine.refresh(creds))

    def refresh_if_needed(self) -> TokenState:
        """Non-interactive check: refresh when near expiry or expired.

        Never launches the consent flow. Returns the state observed before
        any refresh.
        """
        creds = self._store.load()
        state = classify(creds)
        self._log_state(creds, state)

        if is_refreshable(state):
            outcome = self._engine.refresh(creds)  # type: ignore[arg-type]
            if outcome.ok:
                self._set_current(outcome.credentials)
            else:
                logger.error(f"Background refresh failed ({outcome.failure.value}): {outcome.detail}")
        elif state == TokenState.VALID:
            self._set_current(creds)
        else:
            logger.warning(f"Skipping token refresh - credentials are {state.value}")
        return state

    def get_status(self) -> TokenStatus:
        """Get the stored credential's status without refreshing."""
        creds = self._store.load()
        state = classify(creds)
        if creds is None:
            return TokenStatus(state=state, has_token=False)

        remaining = creds.time_to_expiry()
        return TokenStatus(
            state=state,
            has_token=True,
            has_refresh_token=creds.has_refresh_token,
            expires_at=creds.expiry,
            seconds_remaining=int(remaining) if remaining > 0 else None,
            scopes=sorted(creds.scope),
            placeholder=creds.is_placeholder,
        )

    def logout(self) -> bool:
        """Delete the persisted record and forget the in-memory credential."""
        self._set_current(None)
        return self._store.delete()

    def start_background_refresh(self) -> None:
        self._refresher.start()

    def stop_background_refresh(self) -> None:
        self._refresher.stop()

    def close(self) -> None:
        """Stop the background refresher and release network resources."""
        self._refresher.stop()
        self._engine.close()

    def __enter__(self) -> AuthManager:
        return self

    def __exit__(self, *exc: object) -> None:
        self.close()

    def _take(self, outcome: RefreshOutcome) -> CredentialSet:
        if not outcome.ok:
            raise CredentialError(outcome.failure, outcome.detail)  # type: ignore[arg-type]
        self._set_current(outcome.credentials)
        return outcome.credentials  # type: ignore[return-value]

    def _set_current(self, creds: CredentialSet | None) -> None:
        with self._lock:
            self._current = creds

    @staticmethod
    def _log_state(creds: CredentialSet | None, state: TokenState) -> None:
        if creds is None:
            logger.info("Token status: no stored credentials")
            return
        logger.info(
            f"Token status: {state.value}, expires {creds.expiry.isoformat()} "
            f"({creds.time_to_expiry(datetime.now(timezone.utc)) / 60:.0f} min), "
            f"refresh token: {'yes' if creds.has_refresh_token else 'no'}"
        )
