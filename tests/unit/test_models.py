"""Unit tests for auth models."""

from datetime import timedelta

import pytest

from basecamp_cli.auth.models import (
    DEFAULT_EXPIRES_IN,
    Account,
    AccountInfo,
    OAuthToken,
    SessionConfig,
    TokenResponse,
)
from helpers import NOW


@pytest.mark.unit
class TestOAuthTokenExpiry:
    """Tests for OAuthToken.is_expired."""

    def test_should_not_be_expired_well_before_expiry(self) -> None:
        token = OAuthToken(access_token="a", expires_at=NOW + timedelta(hours=1))

        assert not token.is_expired(now=NOW)

    def test_should_be_expired_within_skew(self) -> None:
        """Verify tokens expiring within 30 seconds count as expired."""
        token = OAuthToken(access_token="a", expires_at=NOW + timedelta(seconds=29))

        assert token.is_expired(now=NOW)

    def test_should_be_expired_after_expiry(self) -> None:
        token = OAuthToken(access_token="a", expires_at=NOW - timedelta(seconds=1))

        assert token.is_expired(now=NOW)


@pytest.mark.unit
class TestOAuthTokenCanRefresh:
    """Tests for OAuthToken.can_refresh."""

    def test_should_refuse_without_refresh_token(self) -> None:
        token = OAuthToken(access_token="a", expires_at=NOW)

        assert not token.can_refresh(now=NOW)

    def test_should_refuse_when_refresh_token_expired(self) -> None:
        token = OAuthToken(
            access_token="a",
            refresh_token="r",
            expires_at=NOW,
            refresh_token_expires_at=NOW - timedelta(seconds=1),
        )

        assert not token.can_refresh(now=NOW)

    def test_should_allow_refresh_without_known_expiry(self) -> None:
        token = OAuthToken(access_token="a", refresh_token="r", expires_at=NOW)

        assert token.can_refresh(now=NOW)


@pytest.mark.unit
class TestTokenResponse:
    """Tests for TokenResponse.to_token."""

    def test_should_compute_expiry_from_issue_time(self) -> None:
        response = TokenResponse(access_token="a", refresh_token="r", expires_in=1209600)

        token = response.to_token(NOW)

        assert token.expires_at == NOW + timedelta(seconds=1209600)
        assert token.refresh_token == "r"

    def test_should_default_expiry_when_missing(self) -> None:
        token = TokenResponse(access_token="a").to_token(NOW)

        assert token.expires_at == NOW + timedelta(seconds=DEFAULT_EXPIRES_IN)

    def test_should_keep_previous_refresh_token_when_not_rotated(self) -> None:
        token = TokenResponse(access_token="a", expires_in=60).to_token(
            NOW, previous_refresh_token="old-refresh"
        )

        assert token.refresh_token == "old-refresh"

    def test_should_ignore_unknown_fields(self) -> None:
        response = TokenResponse.model_validate({"access_token": "a", "scope": "x"})

        assert response.access_token == "a"

    def test_should_hide_secrets_from_repr(self) -> None:
        response = TokenResponse(access_token="very-secret-access", refresh_token="very-secret-r")

        assert "very-secret" not in repr(response)
        assert "very-secret" not in repr(response.to_token(NOW))


@pytest.mark.unit
class TestAccount:
    """Tests for Account parsing."""

    def test_should_coerce_string_ids(self) -> None:
        account = Account.model_validate(
            {"id": "999", "name": "Acme", "href": "https://x", "product": "bc3", "app_href": "y"}
        )

        assert account.id == 999


@pytest.mark.unit
class TestSessionConfig:
    """Tests for SessionConfig completeness."""

    def test_should_be_incomplete_by_default(self) -> None:
        assert not SessionConfig().is_complete()

    def test_should_require_session_id(self) -> None:
        config = SessionConfig(account_id=1, account_name="A", account_href="h")

        assert not config.is_complete()

    def test_should_be_complete_with_all_fields(self) -> None:
        config = SessionConfig(session_id="s", account_id=1, account_name="A", account_href="h")

        assert config.is_complete()

    def test_should_build_account_info(self) -> None:
        config = SessionConfig(account_id=1, account_name="A", account_href="h")

        assert config.account_info() == AccountInfo(id=1, name="A", href="h")

    def test_should_not_build_account_info_without_href(self) -> None:
        assert SessionConfig(account_id=1, account_name="A").account_info() is None
