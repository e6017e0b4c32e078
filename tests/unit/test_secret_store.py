"""Unit tests for SecretStore."""

import json
import stat
from pathlib import Path

import pytest
from cryptography.fernet import Fernet
from keyring.backend import KeyringBackend

from basecamp_cli.auth.secret_store import (
    ACCESS_TOKEN,
    CLIENT_SECRET,
    KEYRING_SERVICE,
    REFRESH_TOKEN,
    SecretStore,
)
from basecamp_cli.errors import (
    KeyringUnavailableError,
    SecretCorruptedError,
)


@pytest.mark.unit
class TestSecretStoreRoundTrip:
    """Tests for storing and reading secrets."""

    def test_should_return_stored_value(self, secret_store: SecretStore) -> None:
        """Verify put then get returns the identical value."""
        secret_store.put(CLIENT_SECRET, "s3cret-välue")

        assert secret_store.get(CLIENT_SECRET) == "s3cret-välue"

    def test_should_return_none_after_delete(self, secret_store: SecretStore) -> None:
        """Verify a deleted secret reads back as None."""
        secret_store.put(CLIENT_SECRET, "value")
        secret_store.delete(CLIENT_SECRET)

        assert secret_store.get(CLIENT_SECRET) is None

    def test_should_return_none_when_nothing_stored(self, secret_store: SecretStore) -> None:
        """Verify reads with no key and no file return None without a keychain write."""
        assert secret_store.get(ACCESS_TOKEN) is None
        assert secret_store.get_many([ACCESS_TOKEN, REFRESH_TOKEN]) == {}
        assert not secret_store.secrets_path.exists()

    def test_should_persist_across_instances(
        self, config_dir: Path, memory_keyring: KeyringBackend
    ) -> None:
        """Verify a new store on the same dir and keychain reads earlier writes."""
        SecretStore(config_dir, keyring_backend=memory_keyring).put(ACCESS_TOKEN, "tok")

        other = SecretStore(config_dir, keyring_backend=memory_keyring)
        assert other.get(ACCESS_TOKEN) == "tok"

    def test_should_store_and_remove_in_one_write(self, secret_store: SecretStore) -> None:
        """Verify put_many stores values and drops names in the same rewrite."""
        secret_store.put_many({ACCESS_TOKEN: "a", REFRESH_TOKEN: "r"})
        secret_store.put_many({ACCESS_TOKEN: "b"}, remove=[REFRESH_TOKEN])

        assert secret_store.get_many([ACCESS_TOKEN, REFRESH_TOKEN]) == {ACCESS_TOKEN: "b"}

    def test_should_reject_non_string_values(self, secret_store: SecretStore) -> None:
        """Verify only strings can be stored."""
        with pytest.raises(TypeError):
            secret_store.put_many({ACCESS_TOKEN: 123})  # type: ignore[dict-item]


@pytest.mark.unit
class TestSecretStoreFileFormat:
    """Tests for the on-disk layout."""

    def test_should_not_store_plaintext(self, secret_store: SecretStore) -> None:
        """Verify the secret value does not appear in the file."""
        secret_store.put(CLIENT_SECRET, "plain-text-marker")

        assert b"plain-text-marker" not in secret_store.secrets_path.read_bytes()

    def test_should_write_versioned_document(
        self, secret_store: SecretStore, memory_keyring: KeyringBackend
    ) -> None:
        """Verify the decrypted document is {version, secrets}."""
        secret_store.put(CLIENT_SECRET, "value")

        key = memory_keyring.get_password(KEYRING_SERVICE, secret_store.keyring_account)
        assert key is not None
        document = json.loads(Fernet(key.encode()).decrypt(secret_store.secrets_path.read_bytes()))
        assert document == {"version": 1, "secrets": {CLIENT_SECRET: "value"}}

    def test_should_set_secure_permissions(self, secret_store: SecretStore) -> None:
        """Verify directory is 0700 and file is 0600."""
        secret_store.put(CLIENT_SECRET, "value")

        dir_mode = stat.S_IMODE(secret_store.secrets_dir.stat().st_mode)
        file_mode = stat.S_IMODE(secret_store.secrets_path.stat().st_mode)
        assert dir_mode == 0o700
        assert file_mode == 0o600

    def test_should_leave_no_temp_files(self, secret_store: SecretStore) -> None:
        """Verify atomic writes clean up after themselves."""
        secret_store.put(CLIENT_SECRET, "one")
        secret_store.put(CLIENT_SECRET, "two")

        assert [p.name for p in secret_store.secrets_dir.iterdir()] == ["local.enc"]

    def test_should_key_keychain_entry_by_config_dir(
        self, tmp_path: Path, memory_keyring: KeyringBackend
    ) -> None:
        """Verify different config dirs use different keychain accounts."""
        first = SecretStore(tmp_path / "a", keyring_backend=memory_keyring)
        second = SecretStore(tmp_path / "b", keyring_backend=memory_keyring)

        assert first.keyring_account.startswith("secrets|")
        assert len(first.keyring_account) == len("secrets|") + 16
        assert first.keyring_account != second.keyring_account
        assert first.info().service == KEYRING_SERVICE


@pytest.mark.unit
class TestSecretStoreDelete:
    """Tests for deleting secrets."""

    def test_should_ignore_missing_secret(self, secret_store: SecretStore) -> None:
        """Verify deleting with nothing stored is a no-op."""
        secret_store.delete(CLIENT_SECRET)

        assert not secret_store.secrets_path.exists()

    def test_should_not_rewrite_when_nothing_to_delete(self, secret_store: SecretStore) -> None:
        """Verify delete_many of absent names leaves the file untouched."""
        secret_store.put(CLIENT_SECRET, "value")
        before = secret_store.secrets_path.stat().st_mtime_ns
        contents = secret_store.secrets_path.read_bytes()

        secret_store.delete_many([ACCESS_TOKEN, REFRESH_TOKEN])

        assert secret_store.secrets_path.stat().st_mtime_ns == before
        assert secret_store.secrets_path.read_bytes() == contents


@pytest.mark.unit
class TestSecretStoreKeychainUnavailable:
    """Tests for the no-fallback guarantee."""

    @pytest.fixture
    def store(self, config_dir: Path, unavailable_keyring: KeyringBackend) -> SecretStore:
        return SecretStore(config_dir, keyring_backend=unavailable_keyring)

    def test_should_raise_on_get(self, store: SecretStore) -> None:
        with pytest.raises(KeyringUnavailableError):
            store.get(CLIENT_SECRET)

    def test_should_raise_on_put_without_creating_file(self, store: SecretStore) -> None:
        """Verify nothing is written in plaintext or otherwise."""
        with pytest.raises(KeyringUnavailableError) as exc_info:
            store.put(CLIENT_SECRET, "never-written")

        assert not store.secrets_path.exists()
        assert not store.secrets_dir.exists()
        assert "never-written" not in str(exc_info.value)

    def test_should_raise_on_delete(self, store: SecretStore) -> None:
        with pytest.raises(KeyringUnavailableError):
            store.delete(CLIENT_SECRET)

    def test_should_use_secure_storage_exit_code(self, store: SecretStore) -> None:
        with pytest.raises(KeyringUnavailableError) as exc_info:
            store.get(CLIENT_SECRET)

        assert exc_info.value.exit_code == 5


@pytest.mark.unit
class TestSecretStoreCorruption:
    """Tests for unreadable secret files."""

    def test_should_raise_when_file_is_garbage(self, secret_store: SecretStore) -> None:
        secret_store.put(CLIENT_SECRET, "value")
        secret_store.secrets_path.write_bytes(b"not a fernet token")

        with pytest.raises(SecretCorruptedError):
            secret_store.get(CLIENT_SECRET)

    def test_should_raise_when_key_differs(
        self, config_dir: Path, memory_keyring: KeyringBackend
    ) -> None:
        """Verify a file encrypted with another key is reported as corrupted."""
        store = SecretStore(config_dir, keyring_backend=memory_keyring)
        store.put(CLIENT_SECRET, "value")
        memory_keyring.set_password(
            KEYRING_SERVICE, store.keyring_account, Fernet.generate_key().decode()
        )

        with pytest.raises(SecretCorruptedError):
            SecretStore(config_dir, keyring_backend=memory_keyring).get(CLIENT_SECRET)

    def test_should_raise_when_key_missing_but_file_exists(
        self, config_dir: Path, memory_keyring: KeyringBackend
    ) -> None:
        """Verify losing the keychain entry does not silently start over."""
        store = SecretStore(config_dir, keyring_backend=memory_keyring)
        store.put(CLIENT_SECRET, "value")
        memory_keyring.delete_password(KEYRING_SERVICE, store.keyring_account)

        with pytest.raises(SecretCorruptedError):
            SecretStore(config_dir, keyring_backend=memory_keyring).get(CLIENT_SECRET)

    def test_should_not_replace_missing_key_on_write(
        self, config_dir: Path, memory_keyring: KeyringBackend
    ) -> None:
        """Verify a write with the key gone leaves the file and keychain untouched."""
        store = SecretStore(config_dir, keyring_backend=memory_keyring)
        store.put(CLIENT_SECRET, "value")
        original = store.secrets_path.read_bytes()
        memory_keyring.delete_password(KEYRING_SERVICE, store.keyring_account)

        with pytest.raises(SecretCorruptedError):
            SecretStore(config_dir, keyring_backend=memory_keyring).put(ACCESS_TOKEN, "token")

        assert memory_keyring.get_password(KEYRING_SERVICE, store.keyring_account) is None
        assert store.secrets_path.read_bytes() == original

    def test_should_raise_on_newer_version(
        self, secret_store: SecretStore, memory_keyring: KeyringBackend
    ) -> None:
        secret_store.put(CLIENT_SECRET, "value")
        key = memory_keyring.get_password(KEYRING_SERVICE, secret_store.keyring_account)
        assert key is not None
        payload = json.dumps({"version": 99, "secrets": {}}).encode()
        secret_store.secrets_path.write_bytes(Fernet(key.encode()).encrypt(payload))

        with pytest.raises(SecretCorruptedError, match="newer"):
            secret_store.get(CLIENT_SECRET)
