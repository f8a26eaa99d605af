"""Refresh engine: exchanges a refresh token for a new access token.

Concurrent refresh requests are coalesced into one in-flight exchange
whose outcome every waiter receives.
"""

from __future__ import annotations

import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor, TimeoutError as FutureTimeout
from datetime import datetime, timedelta, timezone
from typing import Callable

import httpx
from pydantic import ValidationError

from token_keeper.models.auth import (
    ClientIdentity,
    CredentialSet,
    FailureKind,
    RefreshOutcome,
    TokenResponse,
    TokenState,
)
from token_keeper.store import CredentialStore
from token_keeper.validator import classify

logger = logging.getLogger(__name__)


EXCHANGE_TIMEOUT = 60.0
# Extra wait allowed to coalesced callers for the leader's store load/save
IO_ALLOWANCE = 5.0
# Abandoned exchanges keep their worker until httpx gives up
EXCHANGE_WORKERS = 8


class _ExchangeFailed(Exception):
    def __init__(self, kind: FailureKind, detail: str) -> None:
        self.kind = kind
        super().__init__(detail)


class SingleFlight:
    """Runs one operation at a time; overlapping callers share its outcome.

    Waiters give up after ``wait_timeout`` seconds and get a ``timeout``
    outcome instead of blocking on a stalled leader.
    """

    def __init__(self, name: str, wait_timeout: float) -> None:
        self._name = name
        self._wait_timeout = wait_timeout
        self._lock = threading.Lock()
        self._inflight: Future[RefreshOutcome] | None = None

    def run(self, operation: Callable[[], RefreshOutcome]) -> RefreshOutcome:
        with self._lock:
            inflight = self._inflight
            leader = inflight is None
            if leader:
                inflight = Future()
                self._inflight = inflight

        if not leader:
            logger.info(f"{self._name} already in flight, waiting for its outcome")
            try:
                return inflight.result(timeout=self._wait_timeout)
            except FutureTimeout:
                logger.error(f"Gave up waiting for in-flight {self._name} after {self._wait_timeout:.0f}s")
                return RefreshOutcome.failed(
                    FailureKind.TIMEOUT, f"in-flight {self._name} exceeded {self._wait_timeout:.0f}s"
                )

        outcome = RefreshOutcome.failed(FailureKind.NETWORK_ERROR, f"{self._name} aborted")
        try:
            outcome = operation()
        finally:
            with self._lock:
                self._inflight = None
            inflight.set_result(outcome)
        return outcome


class RefreshEngine:
    """Turns a refresh token into a new, persisted credential set."""

    def __init__(
        self,
        store: CredentialStore,
        identity: ClientIdentity | None,
        token_endpoint: str,
        timeout: float = EXCHANGE_TIMEOUT,
        io_allowance: float = IO_ALLOWANCE,
    ) -> None:
        self._store = store
        self._identity = identity
        self._token_endpoint = token_endpoint
        self._timeout = timeout
        # Four httpx phases (connect, write, read, pool) must fit in the deadline
        self._http = httpx.Client(timeout=httpx.Timeout(timeout / 4))
        self._executor = ThreadPoolExecutor(max_workers=EXCHANGE_WORKERS, thread_name_prefix="token-exchange")
        self._flight = SingleFlight("refresh", wait_timeout=timeout + io_allowance)

    @property
    def timeout(self) -> float:
        return self._timeout

    def refresh(self, current: CredentialSet) -> RefreshOutcome:
        """Refresh and persist, sharing one exchange among concurrent callers."""
        return self._flight.run(lambda: self._refresh_and_save(current))

    def _refresh_and_save(self, current: CredentialSet) -> RefreshOutcome:
        # Another caller may have refreshed between our classify and our turn
        latest = self._store.load()
        if (
            latest is not None
            and latest.access_token != current.access_token
            and classify(latest) == TokenState.VALID
        ):
            logger.info("Stored credentials were already refreshed, skipping exchange")
            return RefreshOutcome.success(latest)

        outcome = self.exchange(current)
        if not outcome.ok:
            return outcome

        try:
            self._store.save(outcome.credentials)
        except OSError as e:
            logger.error(f"Token refreshed but could not be saved: {e}")
            return RefreshOutcome.failed(FailureKind.PERSIST_FAILURE, str(e))

        logger.info("Token refreshed and saved successfully")
        return outcome

    def exchange(self, current: CredentialSet) -> RefreshOutcome:
        """Run one refresh-token grant under the deadline. Does not persist."""
        if not current.has_refresh_token:
            return RefreshOutcome.failed(FailureKind.UNREFRESHABLE, "credential has no refresh token")
        if self._identity is None:
            return RefreshOutcome.failed(
                FailureKind.AUTHENTICATION_REQUIRED, "no OAuth client identity configured"
            )

        logger.info("Attempting to refresh token using refresh_token")
        task = self._executor.submit(self._post_refresh, current)
        try:
            creds = task.result(timeout=self._timeout)
        except FutureTimeout:
            # The worker may still finish; its result is discarded unsaved
            task.cancel()
            logger.error(f"Token refresh timed out after {self._timeout:.0f}s")
            return RefreshOutcome.failed(FailureKind.TIMEOUT, f"token exchange exceeded {self._timeout:.0f}s")
        except _ExchangeFailed as e:
            logger.error(f"Failed to refresh token ({e.kind.value}): {e}")
            return RefreshOutcome.failed(e.kind, str(e))
        return RefreshOutcome.success(creds)

    def _post_refresh(self, current: CredentialSet) -> CredentialSet:
        """POST the refresh grant. Raises _ExchangeFailed."""
        assert self._identity is not None
        try:
            response = self._http.post(
                self._token_endpoint,
                data={
                    "grant_type": "refresh_token",
                    "refresh_token": current.refresh_token,
                    "client_id": self._identity.client_id,
                    "client_secret": self._identity.client_secret,
                },
            )
        except httpx.TimeoutException as e:
            raise _ExchangeFailed(FailureKind.TIMEOUT, f"Token endpoint timed out: {e}") from e
        except httpx.HTTPError as e:
            raise _ExchangeFailed(FailureKind.NETWORK_ERROR, f"Token endpoint unreachable: {e}") from e

        if response.status_code != 200:
            error_code = ""
            error_detail = response.text
            try:
                error_json = response.json()
                error_code = error_json.get("error", "")
                error_detail = error_json.get("error_description", error_code or response.text)
            except Exception:
                pass
            kind = FailureKind.NETWORK_ERROR
            if response.status_code in (400, 401) and error_code == "invalid_grant":
                kind = FailureKind.INVALID_GRANT
            raise _ExchangeFailed(
                kind, f"Token refresh failed (HTTP {response.status_code}): {error_detail}"
            )

        try:
            token_data = TokenResponse(**response.json())
        except (ValueError, TypeError, ValidationError) as e:
            raise _ExchangeFailed(FailureKind.NETWORK_ERROR, f"Malformed token response: {e}") from e

        return CredentialSet(
            access_token=token_data.access_token,
            refresh_token=token_data.refresh_token or current.refresh_token,
            scope=frozenset(token_data.scope.split()) if token_data.scope else current.scope,
            token_type=token_data.token_type,
            expiry=datetime.now(timezone.utc) + timedelta(seconds=token_data.expires_in),
        )

    def close(self) -> None:
        """Stop the exchange workers and close the HTTP client."""
        self._executor.shutdown(wait=False, cancel_futures=True)
        self._http.close()
