"""Encrypted secret storage for basecamp-cli.

Secrets (client secret, access/refresh tokens and their expiry instants) are
kept in a single Fernet-encrypted JSON document. The Fernet key lives only
in the OS keychain, accessed through the ``keyring`` library.

Storage Location: <config_dir>/secrets/local.enc

Keychain entry:
    service: basecamp-cli
    account: secrets|<first 16 hex chars of sha256(config_dir)>

There is no plaintext fallback. If the keychain cannot be used, every
operation raises KeyringUnavailableError before the secret file is touched.
"""

import hashlib
import json
import logging
import os
import tempfile
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from pathlib import Path

import keyring
from cryptography.fernet import Fernet, InvalidToken
from keyring.backend import KeyringBackend
from keyring.errors import KeyringError

from basecamp_cli.errors import (
    KeyringUnavailableError,
    SecretCorruptedError,
    SecretStoreError,
    SecretWriteError,
)

logger = logging.getLogger(__name__)

KEYRING_SERVICE = "basecamp-cli"
SECRETS_DIR = "secrets"
SECRETS_FILE = "local.enc"
SECRETS_VERSION = 1

# Well-known secret names
CLIENT_SECRET = "client_secret"  # nosec B105 - key name, not a secret
ACCESS_TOKEN = "access_token"  # nosec B105
REFRESH_TOKEN = "refresh_token"  # nosec B105
ACCESS_TOKEN_EXPIRES_AT = "access_token_expires_at"  # nosec B105
REFRESH_TOKEN_EXPIRES_AT = "refresh_token_expires_at"  # nosec B105
SESSION_ID = "session_id"

SESSION_SECRET_KEYS = (
    SESSION_ID,
    ACCESS_TOKEN,
    REFRESH_TOKEN,
    ACCESS_TOKEN_EXPIRES_AT,
    REFRESH_TOKEN_EXPIRES_AT,
)


@dataclass(frozen=True)
class SecretStoreInfo:
    """Where secrets are kept (no secret values)."""

    service: str
    account: str
    file_path: Path


class SecretStore:
    """Keychain-keyed encrypted key/value store.

    Attributes:
        config_dir: Base config directory.
        secrets_path: Path to the encrypted secrets file.

    Example:
        ```python
        store = SecretStore(config_dir=Path("~/.config/basecamp-cli").expanduser())
        store.put("client_secret", "s3cret")
        assert store.get("client_secret") == "s3cret"
        store.delete("client_secret")
        ```
    """

    def __init__(
        self,
        config_dir: Path,
        keyring_backend: KeyringBackend | None = None,
    ) -> None:
        """Initialize secret storage.

        Args:
            config_dir: Base config directory; secrets go in its ``secrets/``
                subdirectory.
            keyring_backend: Keyring backend holding the encryption key.
                Defaults to the backend ``keyring`` selects for this system.
        """
        self.config_dir = config_dir
        self.secrets_dir = config_dir / SECRETS_DIR
        self.secrets_path = self.secrets_dir / SECRETS_FILE
        self._keyring_backend = keyring_backend
        self._fernet: Fernet | None = None

    # -------------------------------------------------------------------------
    # Public API
    # -------------------------------------------------------------------------

    def info(self) -> SecretStoreInfo:
        """Describe the keychain entry and file backing this store."""
        return SecretStoreInfo(
            service=KEYRING_SERVICE,
            account=self.keyring_account,
            file_path=self.secrets_path,
        )

    def get(self, key: str) -> str | None:
        """Retrieve a secret.

        Args:
            key: Secret name.

        Returns:
            The stored value, or None if no value is stored under ``key``.

        Raises:
            KeyringUnavailableError: If the keychain cannot be used.
            SecretCorruptedError: If the secret file cannot be decrypted.
        """
        fernet = self._load_fernet()
        if fernet is None:
            return None
        return self._load_secrets(fernet).get(key)

    def put(self, key: str, value: str) -> None:
        """Store a secret, replacing any previous value."""
        self.put_many({key: value})

    def get_many(self, keys: Iterable[str]) -> dict[str, str]:
        """Retrieve several secrets with a single decryption.

        Returns:
            Mapping of the requested names that are stored to their values.
        """
        fernet = self._load_fernet()
        if fernet is None:
            return {}
        secrets = self._load_secrets(fernet)
        return {key: secrets[key] for key in keys if key in secrets}

    def put_many(self, values: Mapping[str, str], remove: Iterable[str] = ()) -> None:
        """Store several secrets with one atomic file rewrite.

        Args:
            values: Secret names mapped to values.
            remove: Secret names to drop in the same rewrite.

        Raises:
            KeyringUnavailableError: If the keychain cannot be used.
            SecretCorruptedError: If the existing secret file cannot be decrypted.
            SecretWriteError: If the file cannot be written.
        """
        for key, value in values.items():
            if not isinstance(value, str):
                raise TypeError(f"Secret {key!r} must be a string")

        fernet = self._load_or_create_fernet()
        secrets = self._load_secrets(fernet)
        for key in remove:
            secrets.pop(key, None)
        secrets.update(values)
        self._save_secrets(fernet, secrets)

    def delete(self, key: str) -> None:
        """Delete a secret. Deleting a missing secret is a no-op."""
        self.delete_many([key])

    def delete_many(self, keys: Iterable[str]) -> None:
        """Delete several secrets with at most one atomic file rewrite.

        No write happens when none of ``keys`` is stored.

        Raises:
            KeyringUnavailableError: If the keychain cannot be used.
            SecretCorruptedError: If the secret file cannot be decrypted.
            SecretWriteError: If the file cannot be written.
        """
        fernet = self._load_fernet()
        if fernet is None:
            return

        secrets = self._load_secrets(fernet)
        present = [key for key in keys if key in secrets]
        if not present:
            return

        for key in present:
            del secrets[key]
        self._save_secrets(fernet, secrets)

    # -------------------------------------------------------------------------
    # Keychain
    # -------------------------------------------------------------------------

    @property
    def keyring_account(self) -> str:
        """Keychain account name, unique per config directory."""
        try:
            canonical = str(self.config_dir.resolve())
        except OSError:
            canonical = str(self.config_dir)
        digest = hashlib.sha256(canonical.encode()).hexdigest()
        return f"secrets|{digest[:16]}"

    def _backend(self) -> KeyringBackend:
        if self._keyring_backend is not None:
            return self._keyring_backend
        return keyring.get_keyring()

    def _load_fernet(self) -> Fernet | None:
        """Load the encryption key from the keychain.

        Returns:
            Fernet cipher, or None if no key and no secret file exist.

        Raises:
            KeyringUnavailableError: If the keychain cannot be used.
            SecretCorruptedError: If a secret file exists without its key, or
                the stored key is malformed.
        """
        if self._fernet is not None:
            return self._fernet

        account = self.keyring_account
        try:
            stored_key = self._backend().get_password(KEYRING_SERVICE, account)
        except KeyringError as e:
            raise KeyringUnavailableError(
                f"Failed to load keyring secret (service={KEYRING_SERVICE}, "
                f"account={account}): {e}"
            ) from e

        if stored_key:
            try:
                self._fernet = Fernet(stored_key.encode())
            except (ValueError, TypeError) as e:
                raise SecretCorruptedError(
                    f"Keyring entry (service={KEYRING_SERVICE}, account={account}) "
                    "does not hold a valid encryption key."
                ) from e
            return self._fernet

        if self.secrets_path.exists():
            raise SecretCorruptedError(
                f"Secret file {self.secrets_path} exists but its encryption key is "
                "missing from the OS keyring. Stored secrets cannot be recovered."
            )
        return None

    def _load_or_create_fernet(self) -> Fernet:
        """Load the encryption key, generating and storing one if none exists.

        Raises:
            KeyringUnavailableError: If the keychain cannot be used.
            SecretCorruptedError: If a secret file exists without its key, or
                the stored key is malformed.
        """
        fernet = self._load_fernet()
        if fernet is not None:
            return fernet

        account = self.keyring_account
        new_key = Fernet.generate_key()
        try:
            self._backend().set_password(KEYRING_SERVICE, account, new_key.decode())
        except KeyringError as e:
            raise KeyringUnavailableError(
                f"Failed to persist keyring secret (service={KEYRING_SERVICE}, "
                f"account={account}): {e}"
            ) from e

        logger.info("Created secret store encryption key in OS keyring (account=%s)", account)
        self._fernet = Fernet(new_key)
        return self._fernet

    # -------------------------------------------------------------------------
    # File handling
    # -------------------------------------------------------------------------

    def _ensure_secrets_dir(self) -> None:
        """Create secrets directory with secure permissions if needed."""
        try:
            if not self.secrets_dir.exists():
                self.secrets_dir.mkdir(parents=True, mode=0o700)
            else:
                # Ensure directory has correct permissions
                self.secrets_dir.chmod(0o700)
        except OSError as e:
            raise SecretWriteError(
                f"Failed to prepare secret directory {self.secrets_dir}: {e}"
            ) from e

    def _load_secrets(self, fernet: Fernet) -> dict[str, str]:
        """Decrypt and decode the secret file.

        Returns:
            Dictionary of secret names to values; empty if no file exists.
        """
        if not self.secrets_path.exists():
            return {}

        try:
            ciphertext = self.secrets_path.read_bytes()
        except OSError as e:
            raise SecretStoreError(
                f"Failed to read secret file {self.secrets_path}: {e}",
                code="secret_read_failed",
            ) from e

        try:
            plaintext = fernet.decrypt(ciphertext)
        except InvalidToken as e:
            raise SecretCorruptedError(
                f"Failed to decrypt secret file {self.secrets_path}. "
                "The file is corrupted or was encrypted with a different key."
            ) from e

        try:
            document = json.loads(plaintext)
        except (json.JSONDecodeError, UnicodeDecodeError) as e:
            raise SecretCorruptedError(
                f"Failed to decode decrypted secret file {self.secrets_path}."
            ) from e

        if not isinstance(document, dict) or not isinstance(document.get("secrets"), dict):
            raise SecretCorruptedError(
                f"Secret file {self.secrets_path} has an unexpected layout."
            )

        version = document.get("version", SECRETS_VERSION)
        if not isinstance(version, int) or version > SECRETS_VERSION:
            raise SecretCorruptedError(
                f"Secrets file version {version} is newer than supported version "
                f"{SECRETS_VERSION}."
            )

        return {str(k): str(v) for k, v in document["secrets"].items() if v is not None}

    def _save_secrets(self, fernet: Fernet, secrets: dict[str, str]) -> None:
        """Encrypt and atomically replace the secret file."""
        self._ensure_secrets_dir()

        payload = json.dumps({"version": SECRETS_VERSION, "secrets": secrets}).encode()
        self._write_atomically(fernet.encrypt(payload))
        logger.debug("Wrote %d secret(s) to %s", len(secrets), self.secrets_path)

    def _write_atomically(self, contents: bytes) -> None:
        """Write to a temp file in the same directory, fsync, then rename."""
        try:
            # mkstemp creates the file with mode 0600
            fd, tmp_name = tempfile.mkstemp(prefix=f".{SECRETS_FILE}.tmp-", dir=self.secrets_dir)
        except OSError as e:
            raise SecretWriteError(
                f"Failed to create temporary secret file in {self.secrets_dir}: {e}"
            ) from e

        tmp_path = Path(tmp_name)
        try:
            with os.fdopen(fd, "wb") as f:
                f.write(contents)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_path, self.secrets_path)
        except OSError as e:
            tmp_path.unlink(missing_ok=True)
            raise SecretWriteError(
                f"Failed to atomically replace secret file {self.secrets_path}: {e}"
            ) from e

        try:
            # Set file permissions to owner read/write only (600)
            self.secrets_path.chmod(0o600)
        except OSError as e:
            raise SecretWriteError(
                f"Failed to set secure permissions on {self.secrets_path}: {e}"
            ) from e
