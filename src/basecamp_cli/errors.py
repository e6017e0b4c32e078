"""Exception hierarchy for basecamp-cli.

Every failure in the authentication core is raised as a subclass of
BasecampCliError. The CLI layer is the only place these are rendered; it
prints the message and exits with ``exit_code``.

Exit codes:
    1: generic failure
    2: invalid input or configuration
    3: OAuth / authentication failure
    4: no accessible account
    5: secure storage failure

Messages never include secret values (client secrets, tokens, keys).
"""

EXIT_GENERIC = 1
EXIT_INVALID_INPUT = 2
EXIT_OAUTH = 3
EXIT_NO_ACCOUNT = 4
EXIT_SECURE_STORAGE = 5


class BasecampCliError(Exception):
    """Base exception for all basecamp-cli errors.

    Attributes:
        message: Human-readable error message.
        code: Machine-readable error code.
        exit_code: Process exit code used by the CLI.
    """

    def __init__(self, message: str, code: str, exit_code: int = EXIT_GENERIC) -> None:
        super().__init__(message)
        self.message = message
        self.code = code
        self.exit_code = exit_code


# =============================================================================
# Configuration
# =============================================================================


class ConfigInvalidError(BasecampCliError):
    """Raised when client configuration is missing or malformed."""

    def __init__(self, message: str) -> None:
        super().__init__(message, code="config_invalid", exit_code=EXIT_INVALID_INPUT)


class ConfigWriteError(BasecampCliError):
    """Raised when the config file cannot be written."""

    def __init__(self, message: str) -> None:
        super().__init__(message, code="config_write_failed", exit_code=EXIT_GENERIC)


# =============================================================================
# Secret storage
# =============================================================================


class SecretStoreError(BasecampCliError):
    """Base class for secret storage failures."""

    def __init__(self, message: str, code: str) -> None:
        super().__init__(message, code=code, exit_code=EXIT_SECURE_STORAGE)


class KeyringUnavailableError(SecretStoreError):
    """Raised when the OS keychain cannot be used.

    There is no plaintext fallback: without the keychain-held key no secret
    is read or written.
    """

    def __init__(self, message: str) -> None:
        super().__init__(message, code="keyring_unavailable")


class SecretCorruptedError(SecretStoreError):
    """Raised when the encrypted secret file cannot be decrypted or decoded."""

    def __init__(self, message: str) -> None:
        super().__init__(message, code="secret_corrupted")


class SecretWriteError(SecretStoreError):
    """Raised when the encrypted secret file cannot be written."""

    def __init__(self, message: str) -> None:
        super().__init__(message, code="secret_write_failed")


# =============================================================================
# OAuth flow
# =============================================================================


class AuthError(BasecampCliError):
    """Base class for authentication failures."""

    def __init__(self, message: str, code: str, exit_code: int = EXIT_OAUTH) -> None:
        super().__init__(message, code=code, exit_code=exit_code)


class CallbackBindFailedError(AuthError):
    """Raised when the loopback callback listener cannot be started."""

    def __init__(self, message: str) -> None:
        super().__init__(message, code="callback_bind_failed")


class CallbackTimeoutError(AuthError):
    """Raised when no browser redirect arrives before the deadline."""

    def __init__(self, timeout: float) -> None:
        super().__init__(
            f"Timed out after {timeout:g}s waiting for OAuth callback. Try login again.",
            code="callback_timeout",
        )
        self.timeout = timeout


class StateMismatchError(AuthError):
    """Raised when the callback state does not match the generated CSRF token."""

    def __init__(self) -> None:
        super().__init__(
            "OAuth state mismatch. Aborting login for security.",
            code="state_mismatch",
        )


class AuthorizationDeniedError(AuthError):
    """Raised when the user declines authorization in the browser."""

    def __init__(self, error: str, description: str | None = None) -> None:
        message = f"Authorization was denied: {error}"
        if description:
            message = f"{message} ({description})"
        super().__init__(message, code="authorization_denied")
        self.error = error
        self.description = description


class TokenExchangeFailedError(AuthError):
    """Raised when the token endpoint rejects a grant or cannot be reached.

    Attributes:
        status: HTTP status code, or None for transport failures.
        error_code: Provider error code (e.g. ``invalid_grant``) when present.
    """

    def __init__(
        self,
        message: str,
        status: int | None = None,
        error_code: str | None = None,
    ) -> None:
        details = []
        if status is not None:
            details.append(f"status {status}")
        if error_code:
            details.append(f"error {error_code}")
        if details:
            message = f"{message} ({', '.join(details)})"
        super().__init__(message, code="token_exchange_failed")
        self.status = status
        self.error_code = error_code


class AuthorizationLookupFailedError(AuthError):
    """Raised when the authorization introspection endpoint fails."""

    def __init__(self, message: str, status: int | None = None) -> None:
        super().__init__(message, code="authorization_lookup_failed")
        self.status = status


class NoAccessibleAccountError(AuthError):
    """Raised when the token grants access to no Basecamp account."""

    def __init__(self, product: str) -> None:
        super().__init__(
            f"No accessible Basecamp account found (product == {product}).",
            code="no_accessible_account",
            exit_code=EXIT_NO_ACCOUNT,
        )


class AccountNotFoundError(AuthError):
    """Raised when a requested account id is not among accessible accounts."""

    def __init__(self, account_id: int) -> None:
        super().__init__(
            f"Requested account_id {account_id} was not found in accessible Basecamp accounts.",
            code="account_not_found",
            exit_code=EXIT_NO_ACCOUNT,
        )
        self.account_id = account_id


class AccountSelectionRequiredError(AuthError):
    """Raised when several accounts match and nothing can choose between them."""

    def __init__(self, account_ids: list[int]) -> None:
        ids = ", ".join(str(account_id) for account_id in account_ids)
        super().__init__(
            f"Multiple Basecamp accounts found ({ids}). Pass --account-id to choose one.",
            code="account_selection_required",
            exit_code=EXIT_NO_ACCOUNT,
        )
        self.account_ids = account_ids


# =============================================================================
# Session
# =============================================================================


class NotLoggedInError(AuthError):
    """Raised when no complete session is stored."""

    def __init__(self) -> None:
        super().__init__(
            "Not logged in. Run `basecamp login` first.",
            code="not_logged_in",
        )


class ReauthRequiredError(AuthError):
    """Raised when the session cannot be refreshed and a full login is needed."""

    def __init__(self, reason: str) -> None:
        super().__init__(
            f"{reason} Run `basecamp login` to sign in again.",
            code="reauth_required",
        )
        self.reason = reason


class SessionRollbackFailedError(SecretStoreError):
    """Raised when a failed session write could not be rolled back.

    The stored secrets may not match the stored account metadata; the
    session must not be trusted until the user logs in again.
    """

    def __init__(self, message: str) -> None:
        super().__init__(message, code="session_rollback_failed")


# =============================================================================
# API requests
# =============================================================================


class ApiRequestError(BasecampCliError):
    """Raised when an authenticated API request fails."""

    def __init__(self, message: str, status: int | None = None) -> None:
        super().__init__(message, code="api_request_failed", exit_code=EXIT_GENERIC)
        self.status = status


class ForbiddenError(ApiRequestError):
    """Raised on HTTP 403. Never retried."""

    def __init__(self, message: str) -> None:
        super().__init__(message, status=403)
        self.code = "forbidden"
        self.exit_code = EXIT_OAUTH
