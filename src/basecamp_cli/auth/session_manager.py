"""Login, logout and token lifecycle for Basecamp.

SessionManager is the only way other features obtain a bearer token. It
composes the stores, the OAuth client, the loopback callback listener and
the account resolver.

A session is persisted in two halves: tokens in the SecretStore and the
selected account in the ConfigStore. Both carry the same ``session_id``;
when either half is missing or the ids differ, the session is treated as
absent and a new login is required.
"""

import asyncio
import logging
import secrets
import uuid
import webbrowser
from collections.abc import Callable
from datetime import datetime
from urllib.parse import urlparse

from basecamp_cli.auth.account_resolver import AccountResolver
from basecamp_cli.auth.callback_server import CallbackServer
from basecamp_cli.auth.config_store import ConfigStore
from basecamp_cli.auth.models import (
    Account,
    AccountInfo,
    IntegrationConfig,
    IntegrationStatus,
    LoginOverrides,
    OAuthToken,
    ResolvedIntegration,
    Session,
    SessionConfig,
    TokenStatus,
    utcnow,
)
from basecamp_cli.auth.oauth_client import OAuthClient
from basecamp_cli.auth.secret_store import (
    ACCESS_TOKEN,
    ACCESS_TOKEN_EXPIRES_AT,
    CLIENT_SECRET,
    REFRESH_TOKEN,
    REFRESH_TOKEN_EXPIRES_AT,
    SESSION_ID,
    SESSION_SECRET_KEYS,
    SecretStore,
)
from basecamp_cli.config import (
    CLIENT_ID_ENV,
    CLIENT_SECRET_ENV,
    REDIRECT_URI_ENV,
    env_value,
)
from basecamp_cli.errors import (
    AccountNotFoundError,
    AccountSelectionRequiredError,
    AuthError,
    AuthorizationDeniedError,
    BasecampCliError,
    ConfigInvalidError,
    NotLoggedInError,
    ReauthRequiredError,
    SessionRollbackFailedError,
    StateMismatchError,
    TokenExchangeFailedError,
)

logger = logging.getLogger(__name__)

DEFAULT_CALLBACK_TIMEOUT = 180.0

BrowserOpener = Callable[[str], bool]
AccountChooser = Callable[[list[Account]], Account]
AuthorizationUrlHandler = Callable[[str, bool], None]


def redact_value(value: str) -> str:
    """Show only the first and last two characters of an identifier."""
    if len(value) <= 4:
        return "****"
    return f"{value[:2]}***{value[-2:]}"


def validate_redirect_uri(redirect_uri: str) -> None:
    """Check a redirect URI is an absolute http(s) URL.

    Raises:
        ConfigInvalidError: If it is not.
    """
    parsed = urlparse(redirect_uri)
    if parsed.scheme not in ("http", "https"):
        raise ConfigInvalidError("redirect_uri must use http or https scheme.")
    if not parsed.hostname:
        raise ConfigInvalidError("redirect_uri must include a host.")


def _pick(*candidates: str | None) -> str | None:
    """Return the first candidate that is not None or blank."""
    for value in candidates:
        if value is not None and value.strip():
            return value
    return None


class SessionManager:
    """Orchestrates Basecamp OAuth login and token refresh.

    Attributes:
        config_store: Non-secret configuration storage.
        secret_store: Encrypted secret storage.
        oauth_client: OAuth protocol client.
        account_resolver: Account lookup for new tokens.

    Example:
        ```python
        manager = SessionManager(ConfigStore(config_dir), SecretStore(config_dir))

        session = await manager.login(LoginOverrides())
        token = await manager.get_valid_access_token()
        ```
    """

    def __init__(
        self,
        config_store: ConfigStore,
        secret_store: SecretStore,
        oauth_client: OAuthClient | None = None,
        account_resolver: AccountResolver | None = None,
        browser_opener: BrowserOpener | None = None,
        account_chooser: AccountChooser | None = None,
        callback_timeout: float = DEFAULT_CALLBACK_TIMEOUT,
        callback_server_factory: Callable[[str], CallbackServer] = CallbackServer,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        """Initialize the session manager.

        Args:
            config_store: Non-secret configuration storage.
            secret_store: Encrypted secret storage.
            oauth_client: OAuth client. Creates default if not provided.
            account_resolver: Account resolver. Creates default if not provided.
            browser_opener: Opens a URL, returning False when it could not.
                Defaults to ``webbrowser.open``.
            account_chooser: Picks one account when several are accessible.
                Without one, such logins fail with AccountSelectionRequiredError.
            callback_timeout: Seconds to wait for the browser redirect.
            callback_server_factory: Builds the loopback listener for a
                redirect URI.
            clock: Source of the current UTC time.
        """
        self.config_store = config_store
        self.secret_store = secret_store
        self.oauth_client = oauth_client or OAuthClient()
        self.account_resolver = account_resolver or AccountResolver()
        self.browser_opener = browser_opener or webbrowser.open
        self.account_chooser = account_chooser
        self.callback_timeout = callback_timeout
        self._callback_server_factory = callback_server_factory
        self._clock = clock

    async def close(self) -> None:
        """Release HTTP clients owned by the collaborators."""
        await self.oauth_client.close()
        await self.account_resolver.close()

    # -------------------------------------------------------------------------
    # Integration
    # -------------------------------------------------------------------------

    def set_integration(self, client_id: str, client_secret: str, redirect_uri: str) -> None:
        """Save the OAuth client registration.

        Raises:
            ConfigInvalidError: If a value is blank or the redirect URI is invalid.
        """
        for field, value in (
            ("client_id", client_id),
            ("client_secret", client_secret),
            ("redirect_uri", redirect_uri),
        ):
            if not value or not value.strip():
                raise ConfigInvalidError(f"{field} cannot be empty.")
        validate_redirect_uri(redirect_uri)

        self.secret_store.put(CLIENT_SECRET, client_secret)

        config = self.config_store.read()
        config.integration = IntegrationConfig(client_id=client_id, redirect_uri=redirect_uri)
        self.config_store.write(config)
        logger.info("Saved integration credentials")

    def show_integration(self) -> IntegrationStatus:
        """Report which integration values are stored, with client_id redacted."""
        config = self.config_store.read()
        client_secret = self.secret_store.get(CLIENT_SECRET)
        client_id = config.integration.client_id

        return IntegrationStatus(
            has_client_id=client_id is not None,
            has_client_secret=client_secret is not None,
            has_redirect_uri=config.integration.redirect_uri is not None,
            client_id=redact_value(client_id) if client_id else None,
            redirect_uri=config.integration.redirect_uri,
        )

    def clear_integration(self) -> None:
        """Remove the integration and any session."""
        self.logout(forget_client=True)

    def resolve_integration(self, overrides: LoginOverrides | None = None) -> ResolvedIntegration:
        """Resolve integration values.

        Precedence: overrides, then environment variables, then stored values.
        Blank values are skipped.

        Raises:
            ConfigInvalidError: If a value is missing or the redirect URI is invalid.
        """
        overrides = overrides or LoginOverrides()
        config = self.config_store.read()

        client_id = _pick(overrides.client_id, env_value(CLIENT_ID_ENV), config.integration.client_id)
        if client_id is None:
            raise ConfigInvalidError(
                f"Missing client_id. Set via --client-id, {CLIENT_ID_ENV}, "
                "or `basecamp integration set`."
            )

        client_secret = _pick(overrides.client_secret, env_value(CLIENT_SECRET_ENV))
        if client_secret is None:
            client_secret = _pick(self.secret_store.get(CLIENT_SECRET))
        if client_secret is None:
            raise ConfigInvalidError(
                f"Missing client_secret. Set via --client-secret, {CLIENT_SECRET_ENV}, "
                "or `basecamp integration set`."
            )

        redirect_uri = _pick(
            overrides.redirect_uri, env_value(REDIRECT_URI_ENV), config.integration.redirect_uri
        )
        if redirect_uri is None:
            raise ConfigInvalidError(
                f"Missing redirect_uri. Set via --redirect-uri, {REDIRECT_URI_ENV}, "
                "or `basecamp integration set`."
            )
        validate_redirect_uri(redirect_uri)

        return ResolvedIntegration(
            client_id=client_id,
            client_secret=client_secret,
            redirect_uri=redirect_uri,
        )

    # -------------------------------------------------------------------------
    # Login
    # -------------------------------------------------------------------------

    async def login(
        self,
        overrides: LoginOverrides | None = None,
        account_id: int | None = None,
        open_browser: bool = True,
        on_authorization_url: AuthorizationUrlHandler | None = None,
    ) -> Session:
        """Perform the complete OAuth login flow.

        Nothing is persisted unless token exchange and account resolution
        both succeed.

        Args:
            overrides: Integration values taking precedence over env/stores.
            account_id: Basecamp account to select.
            open_browser: Try to open the authorization URL in a browser.
            on_authorization_url: Called with the URL and whether a browser
                was opened, so the caller can print it.

        Returns:
            The new Session.

        Raises:
            ConfigInvalidError: If integration values are missing.
            CallbackBindFailedError: If the loopback listener cannot start.
            CallbackTimeoutError: If the browser redirect never arrives.
            AuthorizationDeniedError: If the user declined.
            StateMismatchError: If the CSRF state does not match.
            TokenExchangeFailedError: If the code exchange fails.
            NoAccessibleAccountError, AccountNotFoundError,
            AccountSelectionRequiredError: If no account can be selected.
        """
        integration = self.resolve_integration(overrides)

        # Generate state for CSRF protection
        state = secrets.token_urlsafe(32)
        auth_url = self.oauth_client.build_authorization_url(
            integration.client_id, integration.redirect_uri, state
        )

        with self._callback_server_factory(integration.redirect_uri) as callback:
            browser_opened = self._open_browser(auth_url) if open_browser else False
            if on_authorization_url is not None:
                on_authorization_url(auth_url, browser_opened)

            # wait() blocks; run it off the event loop
            loop = asyncio.get_running_loop()
            result = await loop.run_in_executor(None, callback.wait, self.callback_timeout)

        if result.error:
            raise AuthorizationDeniedError(result.error, result.error_description)

        returned_state = (result.state or "").encode()
        if not secrets.compare_digest(returned_state, state.encode()):
            logger.warning("OAuth callback state mismatch; aborting login")
            raise StateMismatchError()

        if not result.code:
            raise AuthError("OAuth callback did not include a code.", code="missing_code")

        token_response = await self.oauth_client.exchange_code(
            integration.client_id,
            integration.client_secret,
            integration.redirect_uri,
            result.code,
        )
        issued_at = self._clock()
        token = token_response.to_token(issued_at)

        selection = await self.account_resolver.resolve(token.access_token, account_id)
        account = selection.account or self._choose_account(selection.candidates)

        session = Session(
            session_id=uuid.uuid4().hex,
            token=token,
            account=AccountInfo(id=account.id, name=account.name, href=account.href),
            updated_at=issued_at,
        )
        self._save_session(session)
        logger.info("Logged in to Basecamp account %s", account.id)
        return session

    def _open_browser(self, url: str) -> bool:
        """Best-effort browser launch; failures are reported, never raised."""
        try:
            return bool(self.browser_opener(url))
        except Exception as e:  # noqa: BLE001
            logger.warning("Could not open browser: %s", e)
            return False

    def _choose_account(self, candidates: list[Account]) -> Account:
        if self.account_chooser is None:
            raise AccountSelectionRequiredError([account.id for account in candidates])

        chosen = self.account_chooser(candidates)
        for account in candidates:
            if account.id == chosen.id:
                return account
        raise AccountNotFoundError(chosen.id)

    # -------------------------------------------------------------------------
    # Session persistence
    # -------------------------------------------------------------------------

    def _token_secrets(self, session_id: str, token: OAuthToken) -> tuple[dict[str, str], list[str]]:
        """Split a token into secret values to store and names to drop."""
        values = {
            SESSION_ID: session_id,
            ACCESS_TOKEN: token.access_token,
            ACCESS_TOKEN_EXPIRES_AT: token.expires_at.isoformat(),
        }
        if token.refresh_token:
            values[REFRESH_TOKEN] = token.refresh_token
        if token.refresh_token_expires_at is not None:
            values[REFRESH_TOKEN_EXPIRES_AT] = token.refresh_token_expires_at.isoformat()

        remove = [key for key in SESSION_SECRET_KEYS if key not in values]
        return values, remove

    def _save_session(self, session: Session) -> None:
        """Write both session halves, rolling back the secrets on failure.

        Raises:
            SessionRollbackFailedError: If the config write failed and the
                secrets could not be removed afterwards.
        """
        values, remove = self._token_secrets(session.session_id, session.token)
        self.secret_store.put_many(values, remove=remove)

        try:
            config = self.config_store.read()
            config.session = SessionConfig(
                session_id=session.session_id,
                account_id=session.account.id,
                account_name=session.account.name,
                account_href=session.account.href,
                updated_at=session.updated_at,
            )
            self.config_store.write(config)
        except BasecampCliError as e:
            logger.error("Failed to store session metadata; rolling back stored tokens")
            try:
                self.secret_store.delete_many(SESSION_SECRET_KEYS)
            except BasecampCliError as rollback_error:
                raise SessionRollbackFailedError(
                    f"Failed to store session metadata ({e.message}) and failed to remove "
                    f"the stored tokens ({rollback_error.message}). Run `basecamp logout` "
                    "before logging in again."
                ) from rollback_error
            raise

    def get_status(self) -> tuple[TokenStatus, Session | None]:
        """Get the status of the stored session.

        Returns:
            Tuple of (TokenStatus, Session or None). INVALID means one half
            is missing or the halves come from different logins; the session
            is then unusable.
        """
        session_config = self.config_store.read().session
        stored = self.secret_store.get_many(SESSION_SECRET_KEYS)

        session_id = stored.get(SESSION_ID)
        account = session_config.account_info()
        has_secret_half = ACCESS_TOKEN in stored and ACCESS_TOKEN_EXPIRES_AT in stored
        has_config_half = session_config.is_complete()

        if not has_secret_half and not has_config_half:
            return TokenStatus.MISSING, None

        if (
            not has_secret_half
            or account is None
            or session_id is None
            or session_id != session_config.session_id
        ):
            logger.warning("Stored session is incomplete; a new login is required")
            return TokenStatus.INVALID, None

        try:
            token = OAuthToken(
                access_token=stored[ACCESS_TOKEN],
                refresh_token=stored.get(REFRESH_TOKEN),
                expires_at=datetime.fromisoformat(stored[ACCESS_TOKEN_EXPIRES_AT]),
                refresh_token_expires_at=(
                    datetime.fromisoformat(stored[REFRESH_TOKEN_EXPIRES_AT])
                    if REFRESH_TOKEN_EXPIRES_AT in stored
                    else None
                ),
            )
        except ValueError:
            logger.warning("Stored token expiry is unreadable; a new login is required")
            return TokenStatus.INVALID, None

        session = Session(
            session_id=session_id,
            token=token,
            account=account,
            updated_at=session_config.updated_at or token.expires_at,
        )

        if token.is_expired(now=self._clock()):
            return TokenStatus.EXPIRED, session
        return TokenStatus.VALID, session

    def get_session(self) -> Session | None:
        """Return the stored session, or None if absent or incomplete."""
        _status, session = self.get_status()
        return session

    def is_logged_in(self) -> bool:
        """Check whether a complete session is stored (expired or not)."""
        return self.get_session() is not None

    def current_account(self) -> AccountInfo | None:
        """Return the account of the stored session, if any."""
        session = self.get_session()
        return session.account if session else None

    # -------------------------------------------------------------------------
    # Tokens
    # -------------------------------------------------------------------------

    async def get_valid_access_token(self) -> str:
        """Get a valid access token, refreshing if necessary.

        Returns:
            Bearer token valid for at least the skew margin.

        Raises:
            NotLoggedInError: If no complete session is stored.
            ReauthRequiredError: If the token expired and cannot be refreshed.
        """
        session = self.get_session()
        if session is None:
            raise NotLoggedInError()

        if not session.token.is_expired(now=self._clock()):
            return session.token.access_token

        logger.info("Access token expired, attempting refresh...")
        return await self._refresh(session)

    async def force_refresh(self) -> str:
        """Refresh the access token regardless of its expiry.

        Used when the API rejects a token that looked valid locally.

        Raises:
            NotLoggedInError: If no complete session is stored.
            ReauthRequiredError: If the token cannot be refreshed.
        """
        session = self.get_session()
        if session is None:
            raise NotLoggedInError()
        return await self._refresh(session)

    async def _refresh(self, session: Session) -> str:
        now = self._clock()
        refresh_token = session.token.refresh_token
        if refresh_token is None or not session.token.can_refresh(now=now):
            raise ReauthRequiredError("Access token expired and no usable refresh token is stored.")

        integration = self.resolve_integration()

        try:
            response = await self.oauth_client.refresh(
                integration.client_id,
                integration.client_secret,
                refresh_token,
            )
        except TokenExchangeFailedError as e:
            raise ReauthRequiredError(f"Token refresh failed: {e.message}.") from e

        refreshed_at = self._clock()
        token = response.to_token(refreshed_at, previous_refresh_token=refresh_token)
        if response.refresh_token is None and token.refresh_token_expires_at is None:
            token.refresh_token_expires_at = session.token.refresh_token_expires_at

        values, remove = self._token_secrets(session.session_id, token)
        self.secret_store.put_many(values, remove=remove)

        config = self.config_store.read()
        config.session.updated_at = refreshed_at
        self.config_store.write(config)

        logger.info("Access token refreshed")
        return token.access_token

    # -------------------------------------------------------------------------
    # Logout
    # -------------------------------------------------------------------------

    def logout(self, forget_client: bool = False) -> None:
        """Delete the session; optionally forget the integration too.

        Idempotent: items already absent cause no writes.

        Args:
            forget_client: Also delete client_id, redirect_uri and client_secret.
        """
        secret_keys = list(SESSION_SECRET_KEYS)
        if forget_client:
            secret_keys.append(CLIENT_SECRET)
        self.secret_store.delete_many(secret_keys)

        config = self.config_store.read()
        changed = False
        if config.session != SessionConfig():
            config.session = SessionConfig()
            changed = True
        if forget_client and config.integration != IntegrationConfig():
            config.integration = IntegrationConfig()
            changed = True
        if changed:
            self.config_store.write(config)

        logger.info("Logged out%s", " and forgot integration" if forget_client else "")
