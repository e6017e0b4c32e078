"""Data models for Basecamp authentication.

Secret values (client secret, tokens) are excluded from ``repr`` so they do
not leak into logs or tracebacks.
"""

from datetime import datetime, timedelta, timezone
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field

# Seconds of clock skew tolerated before a token is treated as expired.
EXPIRY_SKEW_SECONDS = 30

# Used when the token response omits expires_in.
DEFAULT_EXPIRES_IN = 3600


def utcnow() -> datetime:
    """Current time as a timezone-aware UTC datetime."""
    return datetime.now(timezone.utc)


class TokenStatus(str, Enum):
    """State of the stored session."""

    VALID = "valid"
    EXPIRED = "expired"
    MISSING = "missing"
    INVALID = "invalid"


# =============================================================================
# Tokens
# =============================================================================


class TokenResponse(BaseModel):
    """Successful response from the token endpoint.

    A missing ``refresh_token`` means the previously stored refresh token
    stays in use.
    """

    model_config = ConfigDict(extra="ignore")

    access_token: str = Field(repr=False)
    refresh_token: str | None = Field(default=None, repr=False)
    expires_in: int | None = None
    refresh_token_expires_in: int | None = None
    token_type: str = "Bearer"

    def to_token(
        self,
        issued_at: datetime,
        previous_refresh_token: str | None = None,
    ) -> "OAuthToken":
        """Build an OAuthToken with expiry instants fixed at ``issued_at``.

        Args:
            issued_at: When the response was received.
            previous_refresh_token: Refresh token to keep when the response
                does not rotate it.

        Returns:
            OAuthToken ready to persist.
        """
        expires_in = self.expires_in if self.expires_in is not None else DEFAULT_EXPIRES_IN
        refresh_expires_at = None
        if self.refresh_token_expires_in is not None:
            refresh_expires_at = issued_at + timedelta(seconds=self.refresh_token_expires_in)

        return OAuthToken(
            access_token=self.access_token,
            refresh_token=self.refresh_token or previous_refresh_token,
            expires_at=issued_at + timedelta(seconds=expires_in),
            refresh_token_expires_at=refresh_expires_at,
            token_type=self.token_type or "Bearer",
        )


class OAuthToken(BaseModel):
    """Secret half of a session."""

    access_token: str = Field(repr=False)
    refresh_token: str | None = Field(default=None, repr=False)
    expires_at: datetime
    refresh_token_expires_at: datetime | None = None
    token_type: str = "Bearer"

    def is_expired(
        self, buffer_seconds: int = EXPIRY_SKEW_SECONDS, now: datetime | None = None
    ) -> bool:
        """Check whether the access token is expired or about to expire."""
        now = now or utcnow()
        return now >= self.expires_at - timedelta(seconds=buffer_seconds)

    def can_refresh(self, now: datetime | None = None) -> bool:
        """Check whether a usable refresh token is held."""
        if not self.refresh_token:
            return False
        if self.refresh_token_expires_at is None:
            return True
        now = now or utcnow()
        return now < self.refresh_token_expires_at


# =============================================================================
# Accounts
# =============================================================================


class Account(BaseModel):
    """An account entry from the authorization introspection endpoint."""

    model_config = ConfigDict(extra="ignore")

    # Launchpad sometimes sends ids as strings; lax mode coerces them.
    id: int
    name: str
    href: str
    product: str


class AccountInfo(BaseModel):
    """The selected account recorded with a session."""

    id: int
    name: str
    href: str


class AccountSelection(BaseModel):
    """Outcome of account resolution.

    Either ``account`` is set, or ``candidates`` holds several accounts for
    an interactive chooser to pick from.
    """

    account: Account | None = None
    candidates: list[Account] = Field(default_factory=list)

    @property
    def needs_choice(self) -> bool:
        return self.account is None


# =============================================================================
# Stored configuration (non-secret)
# =============================================================================


class IntegrationConfig(BaseModel):
    """Non-secret half of the OAuth client registration."""

    model_config = ConfigDict(extra="forbid")

    client_id: str | None = None
    redirect_uri: str | None = None


class SessionConfig(BaseModel):
    """Non-secret half of a session."""

    model_config = ConfigDict(extra="forbid")

    # Matches the session_id stored with the secret half of the same login.
    session_id: str | None = None
    account_id: int | None = None
    account_name: str | None = None
    account_href: str | None = None
    updated_at: datetime | None = None

    def account_info(self) -> AccountInfo | None:
        """Return the selected account, or None if any account field is missing."""
        if self.account_id is None or self.account_name is None or self.account_href is None:
            return None
        return AccountInfo(id=self.account_id, name=self.account_name, href=self.account_href)

    def is_complete(self) -> bool:
        return self.session_id is not None and self.account_info() is not None


class AppConfig(BaseModel):
    """Document stored by ConfigStore. Secrets are rejected (extra=forbid)."""

    model_config = ConfigDict(extra="forbid")

    integration: IntegrationConfig = Field(default_factory=IntegrationConfig)
    session: SessionConfig = Field(default_factory=SessionConfig)


# =============================================================================
# Login inputs and outputs
# =============================================================================


class LoginOverrides(BaseModel):
    """Caller-supplied integration values; take precedence over env and stores."""

    client_id: str | None = None
    client_secret: str | None = Field(default=None, repr=False)
    redirect_uri: str | None = None


class ResolvedIntegration(BaseModel):
    """Integration values after precedence resolution."""

    client_id: str
    client_secret: str = Field(repr=False)
    redirect_uri: str


class IntegrationStatus(BaseModel):
    """Redacted view of the stored integration."""

    has_client_id: bool
    has_client_secret: bool
    has_redirect_uri: bool
    client_id: str | None = None
    redirect_uri: str | None = None


class CallbackResult(BaseModel):
    """Parameters captured from the OAuth redirect."""

    code: str | None = Field(default=None, repr=False)
    state: str | None = None
    error: str | None = None
    error_description: str | None = None


class Session(BaseModel):
    """A complete session: both halves from the same login event."""

    session_id: str
    token: OAuthToken
    account: AccountInfo
    updated_at: datetime
