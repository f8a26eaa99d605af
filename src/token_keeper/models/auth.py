"""Auth-related data models."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator


# Access tokens that only ever come from local test fixtures / hosting templates
PLACEHOLDER_TOKENS = frozenset({"mock_access_token_for_testing", "mock_token"})


class TokenState(str, Enum):
    MISSING = "missing"
    VALID = "valid"
    NEAR_EXPIRY = "near_expiry"
    EXPIRED = "expired"
    UNREFRESHABLE = "unrefreshable"


class FailureKind(str, Enum):
    NO_CREDENTIAL = "no_credential"
    EXPIRED = "expired"
    UNREFRESHABLE = "unrefreshable"
    NETWORK_ERROR = "network_error"
    TIMEOUT = "timeout"
    INVALID_GRANT = "invalid_grant"
    PERSIST_FAILURE = "persist_failure"
    NOT_PERMITTED = "not_permitted"
    AUTHENTICATION_REQUIRED = "authentication_required"

    @property
    def retryable(self) -> bool:
        return self in _RETRYABLE


_RETRYABLE = frozenset({FailureKind.NETWORK_ERROR, FailureKind.TIMEOUT, FailureKind.PERSIST_FAILURE})


_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


def _to_epoch_millis(value: datetime) -> int:
    return (value - _EPOCH) // timedelta(milliseconds=1)


def _from_epoch_millis(value: int | float) -> datetime:
    return _EPOCH + timedelta(milliseconds=int(value))


class CredentialSet(BaseModel):
    """The persisted token set. Replaced whole, never mutated in place."""
    model_config = ConfigDict(frozen=True)

    access_token: str
    refresh_token: str | None = None
    scope: frozenset[str] = Field(default_factory=frozenset)
    token_type: str = "Bearer"
    expiry: datetime

    @field_validator("expiry")
    @classmethod
    def _normalize_expiry(cls, value: datetime) -> datetime:
        # Naive values are UTC; millisecond precision matches the record format
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        value = value.astimezone(timezone.utc)
        return value.replace(microsecond=(value.microsecond // 1000) * 1000)

    @property
    def has_refresh_token(self) -> bool:
        return bool(self.refresh_token)

    @property
    def is_placeholder(self) -> bool:
        return self.access_token in PLACEHOLDER_TOKENS

    def time_to_expiry(self, now: datetime | None = None) -> float:
        """Seconds until expiry (negative once expired)."""
        now = now or datetime.now(timezone.utc)
        return (self.expiry - now).total_seconds()

    def authorization_header(self) -> str:
        return f"{self.token_type} {self.access_token}"

    def to_record(self) -> dict[str, Any]:
        """Serialize to the on-disk record format."""
        return {
            "access_token": self.access_token,
            "refresh_token": self.refresh_token,
            "scope": " ".join(sorted(self.scope)),
            "token_type": self.token_type,
            "expiry_date": _to_epoch_millis(self.expiry),
        }

    @classmethod
    def from_record(cls, data: dict[str, Any]) -> CredentialSet:
        """Parse the on-disk record format. Unknown keys are ignored.

        Raises:
            ValueError: If the record is not an object or its fields are unusable.
        """
        if not isinstance(data, dict):
            raise ValueError(f"credential record must be a JSON object, got {type(data).__name__}")
        scope = data.get("scope") or ""
        if isinstance(scope, str):
            scope = scope.split()
        expiry_date = data.get("expiry_date")
        if expiry_date is None:
            raise ValueError("credential record has no expiry_date")
        try:
            expiry = _from_epoch_millis(expiry_date)
        except (OverflowError, TypeError) as e:
            raise ValueError(f"credential record has an invalid expiry_date: {expiry_date!r}") from e
        return cls(
            access_token=data["access_token"],
            refresh_token=data.get("refresh_token") or None,
            scope=frozenset(scope),
            token_type=data.get("token_type") or "Bearer",
            expiry=expiry,
        )


class ClientIdentity(BaseModel):
    """OAuth application identity. Static for the process lifetime."""
    model_config = ConfigDict(frozen=True)

    client_id: str
    client_secret: str
    redirect_uri: str = "http://localhost"


class TokenResponse(BaseModel):
    """Response from the OAuth2 token endpoint."""
    access_token: str
    token_type: str = "Bearer"
    expires_in: int = 3600
    refresh_token: str | None = None
    scope: str | None = None


class RefreshOutcome(BaseModel):
    """Result of a refresh or bootstrap attempt: new credentials or a failure."""
    credentials: CredentialSet | None = None
    failure: FailureKind | None = None
    detail: str = ""

    @property
    def ok(self) -> bool:
        return self.credentials is not None and self.failure is None

    @classmethod
    def success(cls, credentials: CredentialSet) -> RefreshOutcome:
        return cls(credentials=credentials)

    @classmethod
    def failed(cls, failure: FailureKind, detail: str = "") -> RefreshOutcome:
        return cls(failure=failure, detail=detail)


class TokenStatus(BaseModel):
    """Current state of the stored credential, for operators."""
    state: TokenState
    has_token: bool
    has_refresh_token: bool = False
    expires_at: datetime | None = None
    seconds_remaining: int | None = None
    scopes: list[str] = Field(default_factory=list)
    placeholder: bool = False
