"""Plain JSON storage for non-secret configuration.

Storage Location: <config_dir>/config.json

Holds the integration's client_id and redirect_uri and the selected
account for the current session. Secrets never go here; AppConfig forbids
unknown fields, so a secret cannot be smuggled in.
"""

import json
import logging
import os
import tempfile
from pathlib import Path

from pydantic import ValidationError

from basecamp_cli.auth.models import AppConfig
from basecamp_cli.errors import ConfigInvalidError, ConfigWriteError

logger = logging.getLogger(__name__)

CONFIG_FILE = "config.json"


class ConfigStore:
    """JSON file storage for AppConfig.

    Attributes:
        config_path: Path to the config.json file.
    """

    def __init__(self, config_dir: Path) -> None:
        """Initialize config storage.

        Args:
            config_dir: Base config directory.
        """
        self.config_dir = config_dir
        self.config_path = config_dir / CONFIG_FILE

    def read(self) -> AppConfig:
        """Load the config.

        Returns:
            Stored AppConfig, or a default empty one if the file is missing
            or blank.

        Raises:
            ConfigInvalidError: If the file exists but cannot be parsed.
        """
        if not self.config_path.exists():
            return AppConfig()

        try:
            raw = self.config_path.read_text()
        except OSError as e:
            raise ConfigInvalidError(f"Failed to read config {self.config_path}: {e}") from e

        if not raw.strip():
            return AppConfig()

        try:
            return AppConfig.model_validate(json.loads(raw))
        except (json.JSONDecodeError, ValidationError) as e:
            raise ConfigInvalidError(f"Failed to parse config {self.config_path}: {e}") from e

    def write(self, config: AppConfig) -> None:
        """Atomically replace the config file.

        Args:
            config: Config to store.

        Raises:
            TypeError: If ``config`` is not an AppConfig.
            ConfigWriteError: If the file cannot be written.
        """
        if not isinstance(config, AppConfig):
            raise TypeError(f"ConfigStore.write expects AppConfig, got {type(config).__name__}")

        serialized = config.model_dump_json(indent=2) + "\n"

        try:
            self.config_dir.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(prefix=f".{CONFIG_FILE}.tmp-", dir=self.config_dir)
        except OSError as e:
            raise ConfigWriteError(f"Failed to write config {self.config_path}: {e}") from e

        tmp_path = Path(tmp_name)
        try:
            with os.fdopen(fd, "w") as f:
                f.write(serialized)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_path, self.config_path)
            self.config_path.chmod(0o600)
        except OSError as e:
            tmp_path.unlink(missing_ok=True)
            raise ConfigWriteError(f"Failed to write config {self.config_path}: {e}") from e

        logger.debug("Wrote config to %s", self.config_path)
