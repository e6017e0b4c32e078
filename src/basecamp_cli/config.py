"""Process-level configuration for basecamp-cli.

Environment Variables:
    BASECAMP_CLI_CONFIG_DIR: Override the config directory.
    BASECAMP_CLIENT_ID: OAuth client ID (overrides stored integration).
    BASECAMP_CLIENT_SECRET: OAuth client secret (overrides stored integration).
    BASECAMP_REDIRECT_URI: Redirect URI (overrides stored integration).

The config directory is resolved once here and passed explicitly into the
stores; no component reads it from global state.
"""

import os
import sys
from pathlib import Path

APP_NAME = "basecamp-cli"
CONFIG_DIR_ENV = "BASECAMP_CLI_CONFIG_DIR"

CLIENT_ID_ENV = "BASECAMP_CLIENT_ID"
CLIENT_SECRET_ENV = "BASECAMP_CLIENT_SECRET"  # nosec B105 - env var name, not a secret
REDIRECT_URI_ENV = "BASECAMP_REDIRECT_URI"

DEFAULT_REDIRECT_URI = "http://127.0.0.1:45455/callback"


def get_config_dir() -> Path:
    """Resolve the basecamp-cli config directory.

    Precedence: BASECAMP_CLI_CONFIG_DIR, %APPDATA% (Windows),
    $XDG_CONFIG_HOME/basecamp-cli, ~/.config/basecamp-cli.

    Returns:
        Path to the config directory (not created).
    """
    override = os.environ.get(CONFIG_DIR_ENV)
    if override:
        return Path(override)

    if sys.platform == "win32":
        for var in ("APPDATA", "LOCALAPPDATA"):
            base = os.environ.get(var)
            if base:
                return Path(base) / APP_NAME

    xdg = os.environ.get("XDG_CONFIG_HOME")
    if xdg:
        return Path(xdg) / APP_NAME

    return Path.home() / ".config" / APP_NAME


def env_value(name: str) -> str | None:
    """Read an environment variable, treating blank values as unset."""
    value = os.environ.get(name)
    if value is None or not value.strip():
        return None
    return value
