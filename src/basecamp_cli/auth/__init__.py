"""OAuth authentication and credential custody for Basecamp.

Quick Start:
    ```python
    from basecamp_cli.auth import ConfigStore, SecretStore, SessionManager

    manager = SessionManager(ConfigStore(config_dir), SecretStore(config_dir))

    # Sign in through the browser
    session = await manager.login()

    # Bearer token for API requests, refreshed when needed
    token = await manager.get_valid_access_token()
    ```
"""

from basecamp_cli.auth.account_resolver import AccountResolver, select_account
from basecamp_cli.auth.callback_server import CallbackServer, CallbackState
from basecamp_cli.auth.config_store import ConfigStore
from basecamp_cli.auth.models import (
    Account,
    AccountInfo,
    AppConfig,
    LoginOverrides,
    OAuthToken,
    Session,
    TokenStatus,
)
from basecamp_cli.auth.oauth_client import OAuthClient
from basecamp_cli.auth.secret_store import SecretStore
from basecamp_cli.auth.session_manager import SessionManager

__all__ = [
    "SessionManager",
    "SecretStore",
    "ConfigStore",
    "OAuthClient",
    "CallbackServer",
    "CallbackState",
    "AccountResolver",
    "select_account",
    "Account",
    "AccountInfo",
    "AppConfig",
    "LoginOverrides",
    "OAuthToken",
    "Session",
    "TokenStatus",
]
