"""Shared pytest fixtures for basecamp-cli tests.

This module provides an in-memory keychain, temporary stores, a controllable
clock and a free loopback port so no test touches the real OS keychain or
the network. The test doubles themselves live in ``helpers``.
"""

import socket
from pathlib import Path

import keyring
import pytest

from basecamp_cli.auth.config_store import ConfigStore
from basecamp_cli.auth.models import AppConfig, IntegrationConfig
from basecamp_cli.auth.secret_store import CLIENT_SECRET, SecretStore
from helpers import (
    TEST_CLIENT_ID,
    TEST_CLIENT_SECRET,
    TEST_REDIRECT_URI,
    FakeClock,
    InMemoryKeyring,
    UnavailableKeyring,
)

# =============================================================================
# Keychain Fixtures
# =============================================================================


@pytest.fixture
def memory_keyring() -> InMemoryKeyring:
    """Create an empty in-memory keychain."""
    return InMemoryKeyring()


@pytest.fixture
def unavailable_keyring() -> UnavailableKeyring:
    """Create a keychain that fails every call."""
    return UnavailableKeyring()


@pytest.fixture
def system_keyring(monkeypatch: pytest.MonkeyPatch, memory_keyring: InMemoryKeyring):
    """Make ``keyring.get_keyring()`` return the in-memory keychain."""
    monkeypatch.setattr(keyring, "get_keyring", lambda: memory_keyring)
    return memory_keyring


# =============================================================================
# Storage Fixtures
# =============================================================================


@pytest.fixture
def config_dir(tmp_path: Path) -> Path:
    """Get a config directory that does not exist yet."""
    return tmp_path / "basecamp-cli"


@pytest.fixture
def secret_store(config_dir: Path, memory_keyring: InMemoryKeyring) -> SecretStore:
    """Create a SecretStore backed by the in-memory keychain."""
    return SecretStore(config_dir, keyring_backend=memory_keyring)


@pytest.fixture
def config_store(config_dir: Path) -> ConfigStore:
    """Create a ConfigStore in the temporary config directory."""
    return ConfigStore(config_dir)


@pytest.fixture
def stored_integration(config_store: ConfigStore, secret_store: SecretStore) -> None:
    """Store a complete integration registration."""
    secret_store.put(CLIENT_SECRET, TEST_CLIENT_SECRET)
    config_store.write(
        AppConfig(
            integration=IntegrationConfig(
                client_id=TEST_CLIENT_ID,
                redirect_uri=TEST_REDIRECT_URI,
            )
        )
    )


@pytest.fixture
def clean_env(monkeypatch: pytest.MonkeyPatch) -> None:
    """Remove integration environment variables."""
    for name in ("BASECAMP_CLIENT_ID", "BASECAMP_CLIENT_SECRET", "BASECAMP_REDIRECT_URI"):
        monkeypatch.delenv(name, raising=False)


# =============================================================================
# Clock and Network Fixtures
# =============================================================================


@pytest.fixture
def clock() -> FakeClock:
    """Create a clock fixed at NOW."""
    return FakeClock()


@pytest.fixture
def free_port() -> int:
    """Find a loopback port that is free right now."""
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        sock.bind(("127.0.0.1", 0))
        return sock.getsockname()[1]
