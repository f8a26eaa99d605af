"""Interactive bootstrap: obtain a first credential set through user consent."""

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor, TimeoutError as FutureTimeout
from datetime import datetime, timedelta, timezone
from typing import Callable

from google_auth_oauthlib.flow import InstalledAppFlow

from token_keeper.config import ProviderProfile
from token_keeper.models.auth import ClientIdentity, CredentialSet, FailureKind, RefreshOutcome, TokenState
from token_keeper.refresh import EXCHANGE_TIMEOUT, IO_ALLOWANCE, RefreshEngine, SingleFlight
from token_keeper.store import CredentialStore
from token_keeper.validator import classify

logger = logging.getLogger(__name__)


ConsentRunner = Callable[[ClientIdentity, list[str]], CredentialSet]


def installed_app_consent(
    provider: ProviderProfile,
    timeout: float = EXCHANGE_TIMEOUT,
) -> ConsentRunner:
    """Build a consent runner using the installed-app loopback flow."""

    def run(identity: ClientIdentity, scopes: list[str]) -> CredentialSet:
        client_config = {
            "installed": {
                "client_id": identity.client_id,
                "client_secret": identity.client_secret,
                "auth_uri": provider.auth_endpoint,
                "token_uri": provider.token_endpoint,
                "redirect_uris": [identity.redirect_uri],
            }
        }
        flow = InstalledAppFlow.from_client_config(client_config, scopes)
        credentials = flow.run_local_server(port=0, timeout_seconds=int(timeout))

        # google-auth reports expiry as naive UTC
        expiry = credentials.expiry or datetime.now(timezone.utc) + timedelta(hours=1)
        return CredentialSet(
            access_token=credentials.token,
            refresh_token=credentials.refresh_token,
            scope=frozenset(credentials.scopes or scopes),
            expiry=expiry,
        )

    return run


class InteractiveBootstrap:
    """Runs the consent flow when no refresh token can carry the process."""

    def __init__(
        self,
        engine: RefreshEngine,
        store: CredentialStore,
        identity: ClientIdentity | None,
        consent: ConsentRunner,
        interactive: bool,
        default_scopes: list[str],
        timeout: float = EXCHANGE_TIMEOUT,
    ) -> None:
        self._engine = engine
        self._store = store
        self._identity = identity
        self._consent = consent
        self._interactive = interactive
        self._default_scopes = default_scopes
        self._timeout = timeout
        # Consent and the follow-up exchange each get the full deadline
        self._flight = SingleFlight("bootstrap", wait_timeout=2 * timeout + IO_ALLOWANCE)

    @property
    def permitted(self) -> bool:
        return self._interactive

    def bootstrap(self, scopes: list[str] | None = None) -> RefreshOutcome:
        """Obtain, refresh once and persist an initial credential set."""
        if not self._interactive:
            logger.warning("Non-interactive deployment - skipping interactive auth")
            return RefreshOutcome.failed(
                FailureKind.NOT_PERMITTED, "interactive consent is disabled in this deployment"
            )
        if self._identity is None:
            return RefreshOutcome.failed(
                FailureKind.AUTHENTICATION_REQUIRED, "no OAuth client identity configured"
            )

        scopes = scopes or self._default_scopes
        return self._flight.run(lambda: self._consent_and_save(scopes))

    def _consent_and_save(self, scopes: list[str]) -> RefreshOutcome:
        # A bootstrap that finished just before this one already saved a usable set
        latest = self._store.load()
        if classify(latest) == TokenState.VALID and set(scopes) <= latest.scope:
            logger.info("Credentials were obtained by a concurrent bootstrap, skipping consent")
            return RefreshOutcome.success(latest)

        logger.info(f"Launching auth flow for scopes: {' '.join(scopes)}")

        executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="consent")
        try:
            task = executor.submit(self._consent, self._identity, scopes)
            obtained = task.result(timeout=self._timeout)
        except FutureTimeout:
            logger.error(f"Authentication timed out after {self._timeout:.0f}s")
            return RefreshOutcome.failed(FailureKind.TIMEOUT, "consent flow timed out")
        except Exception as e:
            logger.error(f"Authentication failed: {e}")
            return RefreshOutcome.failed(FailureKind.AUTHENTICATION_REQUIRED, f"consent flow failed: {e}")
        finally:
            executor.shutdown(wait=False, cancel_futures=True)

        creds = self._refresh_once(obtained)

        try:
            self._store.save(creds)
        except OSError as e:
            logger.error(f"Consent succeeded but credentials could not be saved: {e}")
            return RefreshOutcome.failed(FailureKind.PERSIST_FAILURE, str(e))

        logger.info(f"Credentials saved with scopes: {' '.join(sorted(creds.scope))}")
        return RefreshOutcome.success(creds)

    def _refresh_once(self, obtained: CredentialSet) -> CredentialSet:
        """Force one refresh so the set carries full refresh metadata.

        Falls back to the consent result if the exchange fails.
        """
        outcome = self._engine.exchange(obtained)
        if outcome.ok:
            return outcome.credentials
        logger.warning(
            f"Error refreshing token during initial auth ({outcome.failure.value}); "
            "keeping the consent result"
        )
        return obtained
