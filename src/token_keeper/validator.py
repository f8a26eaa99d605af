"""Classification of a stored credential against the expiry safety margin."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

from token_keeper.models.auth import CredentialSet, TokenState


# Network latency plus clock skew must not let a call start with a dying token
EXPIRY_MARGIN = timedelta(minutes=5)


def classify(
    creds: CredentialSet | None,
    now: datetime | None = None,
    margin: timedelta = EXPIRY_MARGIN,
) -> TokenState:
    """Classify a credential set. Total: never raises for any input."""
    if creds is None:
        return TokenState.MISSING

    now = now or datetime.now(timezone.utc)
    remaining = creds.expiry - now

    if remaining >= margin:
        return TokenState.VALID
    if not creds.has_refresh_token:
        return TokenState.UNREFRESHABLE
    if remaining < timedelta(0):
        return TokenState.EXPIRED
    return TokenState.NEAR_EXPIRY


def is_refreshable(state: TokenState) -> bool:
    return state in (TokenState.NEAR_EXPIRY, TokenState.EXPIRED)
