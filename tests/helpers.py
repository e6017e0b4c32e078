"""Test doubles and helpers shared by the basecamp-cli test modules."""

from collections.abc import Callable
from datetime import datetime, timedelta, timezone

import httpx
from keyring.backend import KeyringBackend
from keyring.errors import NoKeyringError, PasswordDeleteError

from basecamp_cli.auth.models import AccountInfo, CallbackResult, OAuthToken, Session
from basecamp_cli.auth.session_manager import SessionManager

TEST_CLIENT_ID = "client-id-1234"
TEST_CLIENT_SECRET = "client-secret-5678"  # pragma: allowlist secret
TEST_REDIRECT_URI = "http://127.0.0.1:45455/callback"

NOW = datetime(2026, 1, 15, 12, 0, 0, tzinfo=timezone.utc)


class InMemoryKeyring(KeyringBackend):
    """Keyring backend that keeps passwords in a dict."""

    priority = 1  # type: ignore[assignment]

    def __init__(self) -> None:
        super().__init__()
        self.passwords: dict[tuple[str, str], str] = {}

    def get_password(self, service: str, username: str) -> str | None:
        return self.passwords.get((service, username))

    def set_password(self, service: str, username: str, password: str) -> None:
        self.passwords[(service, username)] = password

    def delete_password(self, service: str, username: str) -> None:
        try:
            del self.passwords[(service, username)]
        except KeyError as e:
            raise PasswordDeleteError("Password not found") from e


class UnavailableKeyring(KeyringBackend):
    """Keyring backend that behaves like a system with no keychain."""

    priority = 1  # type: ignore[assignment]

    def get_password(self, service: str, username: str) -> str | None:
        raise NoKeyringError("No recommended backend was available.")

    def set_password(self, service: str, username: str, password: str) -> None:
        raise NoKeyringError("No recommended backend was available.")

    def delete_password(self, service: str, username: str) -> None:
        raise NoKeyringError("No recommended backend was available.")


class FakeClock:
    """Callable clock that only moves when told to."""

    def __init__(self, now: datetime = NOW) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> None:
        self.now += timedelta(**kwargs)


class RecordingHandler:
    """httpx.MockTransport handler that records requests.

    Responses are produced by ``respond``; requests are appended to
    ``requests`` in order.
    """

    def __init__(self, respond: Callable[[httpx.Request], httpx.Response]) -> None:
        self.respond = respond
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        return self.respond(request)

    def client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(self))

    def requests_to(self, url: str) -> list[httpx.Request]:
        return [r for r in self.requests if str(r.url).startswith(url)]


class FakeCallbackServer:
    """Stand-in for CallbackServer that returns a preset redirect."""

    def __init__(self, result: CallbackResult | None = None) -> None:
        self.result = result or CallbackResult()
        self.redirect_uri: str | None = None
        self.started = False
        self.stopped = False

    def __call__(self, redirect_uri: str) -> "FakeCallbackServer":
        self.redirect_uri = redirect_uri
        return self

    def __enter__(self) -> "FakeCallbackServer":
        self.started = True
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.stopped = True

    def wait(self, timeout: float) -> CallbackResult:
        return self.result


def make_token(
    now: datetime = NOW,
    expires_in: int = 3600,
    refresh_token: str | None = "refresh-old",
) -> OAuthToken:
    """Create an OAuthToken expiring ``expires_in`` seconds after ``now``."""
    return OAuthToken(
        access_token="access-old",
        refresh_token=refresh_token,
        expires_at=now + timedelta(seconds=expires_in),
    )


def store_session(manager: SessionManager, token: OAuthToken, now: datetime = NOW) -> Session:
    """Persist a session for account 111 through the manager."""
    session = Session(
        session_id="session-abc",
        token=token,
        account=AccountInfo(id=111, name="Acme", href="https://3.basecampapi.com/111"),
        updated_at=now,
    )
    manager._save_session(session)
    return session
