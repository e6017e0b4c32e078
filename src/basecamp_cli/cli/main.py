"""Command-line interface for basecamp-cli."""

import asyncio
import functools
import json
import logging
import sys
from collections.abc import Callable, Coroutine
from typing import TYPE_CHECKING, Any, TypeVar

import click

from basecamp_cli.__version__ import __version__
from basecamp_cli.config import DEFAULT_REDIRECT_URI, get_config_dir
from basecamp_cli.errors import BasecampCliError

if TYPE_CHECKING:
    from basecamp_cli.auth import Account, SessionManager

F = TypeVar("F", bound=Callable[..., Any])
T = TypeVar("T")

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


def handle_errors(func: F) -> F:
    """Render BasecampCliError as ``Error: <message>`` and exit with its code."""

    @functools.wraps(func)
    def wrapper(*args: Any, **kwargs: Any) -> Any:
        try:
            return func(*args, **kwargs)
        except BasecampCliError as e:
            click.echo(f"Error: {e.message}", err=True)
            sys.exit(e.exit_code)

    return wrapper  # type: ignore[return-value]


def choose_account(accounts: "list[Account]") -> "Account":
    """Prompt for one of several accessible accounts."""
    click.echo("Multiple Basecamp accounts are available:")
    for account in accounts:
        click.echo(f"  {account.id}  {account.name}")

    ids = [str(account.id) for account in accounts]
    chosen = click.prompt("Account ID", type=click.Choice(ids), show_choices=False)
    return next(account for account in accounts if str(account.id) == chosen)


def build_session_manager(interactive: bool = True) -> "SessionManager":
    """Create a SessionManager for the resolved config directory."""
    from basecamp_cli.auth import ConfigStore, SecretStore, SessionManager

    config_dir = get_config_dir()
    return SessionManager(
        config_store=ConfigStore(config_dir),
        secret_store=SecretStore(config_dir),
        account_chooser=choose_account if interactive else None,
    )


def run_with_manager(
    manager: "SessionManager",
    coro_factory: "Callable[[], Coroutine[Any, Any, T]]",
) -> T:
    """Run a coroutine and release the manager's HTTP clients afterwards."""

    async def runner() -> T:
        try:
            return await coro_factory()
        finally:
            await manager.close()

    return asyncio.run(runner())


def echo_json(data: Any) -> None:
    click.echo(json.dumps(data, indent=2, default=str))


@click.group()
@click.version_option(version=__version__)
@click.option("-v", "--verbose", is_flag=True, help="Enable debug logging on stderr")
def main(verbose: bool) -> None:
    """Basecamp CLI - sign in to Basecamp and manage stored credentials.

    Credentials are kept in an encrypted file whose key lives in the OS
    keychain. Start with:

    \b
    - basecamp integration set   (register your OAuth app)
    - basecamp login             (sign in through the browser)
    - basecamp whoami            (check the signed-in account)
    """
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format=LOG_FORMAT,
        stream=sys.stderr,
    )


# =============================================================================
# integration
# =============================================================================


@main.group()
def integration() -> None:
    """Manage the OAuth app registration (client ID, secret, redirect URI)."""


@integration.command("set")
@click.option("--client-id", help="OAuth client ID")
@click.option("--client-secret", help="OAuth client secret")
@click.option("--redirect-uri", help="OAuth redirect URI")
@handle_errors
def integration_set(
    client_id: str | None, client_secret: str | None, redirect_uri: str | None
) -> None:
    """Store the OAuth app registration.

    Missing values are prompted for; the client secret prompt is hidden.
    """
    if not client_id:
        client_id = click.prompt("Client ID")
    if not client_secret:
        client_secret = click.prompt("Client secret", hide_input=True)
    if not redirect_uri:
        redirect_uri = click.prompt("Redirect URI", default=DEFAULT_REDIRECT_URI)

    manager = build_session_manager(interactive=False)
    manager.set_integration(client_id, client_secret, redirect_uri)

    click.echo("✓ Integration saved.")
    click.echo(f"Config stored at: {manager.config_store.config_path}")
    click.echo(f"Secrets stored at: {manager.secret_store.secrets_path}")


@integration.command("show")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
@handle_errors
def integration_show(as_json: bool) -> None:
    """Show the stored integration with the client ID redacted."""
    manager = build_session_manager(interactive=False)
    status = manager.show_integration()

    if as_json:
        echo_json(status.model_dump())
        return

    click.echo("Integration:")
    click.echo(f"  Client ID:     {status.client_id or '(not set)'}")
    click.echo(f"  Client secret: {'stored' if status.has_client_secret else '(not set)'}")
    click.echo(f"  Redirect URI:  {status.redirect_uri or '(not set)'}")


@integration.command("clear")
@click.option("--force", is_flag=True, help="Do not ask for confirmation")
@handle_errors
def integration_clear(force: bool) -> None:
    """Forget the integration and sign out."""
    if not force and not click.confirm("Remove the stored integration and sign out?"):
        click.echo("Aborted.")
        return

    manager = build_session_manager(interactive=False)
    manager.clear_integration()
    click.echo("✓ Integration cleared.")


# =============================================================================
# session
# =============================================================================


@main.command()
@click.option("--account-id", type=int, help="Basecamp account to sign in to")
@click.option("--no-browser", is_flag=True, help="Print the authorization URL only")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
@click.option("--client-id", help="OAuth client ID (overrides stored value)")
@click.option("--client-secret", help="OAuth client secret (overrides stored value)")
@click.option("--redirect-uri", help="OAuth redirect URI (overrides stored value)")
@handle_errors
def login(
    account_id: int | None,
    no_browser: bool,
    as_json: bool,
    client_id: str | None,
    client_secret: str | None,
    redirect_uri: str | None,
) -> None:
    """Sign in to Basecamp through the browser.

    This will:
    1. Start a local listener on the redirect URI
    2. Open the Basecamp authorization page
    3. Store the tokens encrypted, keyed through the OS keychain
    """
    from basecamp_cli.auth import LoginOverrides

    manager = build_session_manager(interactive=not as_json)
    overrides = LoginOverrides(
        client_id=client_id,
        client_secret=client_secret,
        redirect_uri=redirect_uri,
    )

    def show_url(url: str, browser_opened: bool) -> None:
        if browser_opened:
            click.echo("Browser opened for Basecamp authorization...", err=True)
            click.echo("If it did not open, visit:", err=True)
        else:
            click.echo("Open this URL to authorize basecamp-cli:", err=True)
        click.echo(url, err=True)
        click.echo("", err=True)

    session = run_with_manager(
        manager,
        lambda: manager.login(
            overrides,
            account_id=account_id,
            open_browser=not no_browser,
            on_authorization_url=show_url,
        ),
    )

    if as_json:
        echo_json(
            {
                "logged_in": True,
                "account_id": session.account.id,
                "account_name": session.account.name,
                "account_href": session.account.href,
                "expires_at": session.token.expires_at.isoformat(),
            }
        )
        return

    click.echo(f"✓ Logged in to {session.account.name} ({session.account.id})")


@main.command()
@click.option("--forget-client", is_flag=True, help="Also forget the OAuth app registration")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
@handle_errors
def logout(forget_client: bool, as_json: bool) -> None:
    """Sign out and delete the stored tokens."""
    manager = build_session_manager(interactive=False)
    manager.logout(forget_client=forget_client)

    if as_json:
        echo_json({"logged_out": True, "forgot_client": forget_client})
        return

    click.echo("✓ Logged out.")
    if forget_client:
        click.echo("✓ Integration forgotten.")


@main.command()
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
@handle_errors
def whoami(as_json: bool) -> None:
    """Show the signed-in Basecamp person and account."""
    from basecamp_cli.api import BasecampClient
    from basecamp_cli.errors import NotLoggedInError

    manager = build_session_manager(interactive=False)
    account = manager.current_account()
    if account is None:
        raise NotLoggedInError()

    client = BasecampClient(manager, account.id)

    async def fetch() -> dict[str, Any]:
        try:
            return await client.fetch_my_profile()
        finally:
            await client.close()

    profile = run_with_manager(manager, fetch)

    if as_json:
        echo_json({"account": account.model_dump(), "profile": profile})
        return

    click.echo(f"Name:    {profile.get('name', '(unknown)')}")
    click.echo(f"Email:   {profile.get('email_address', '(unknown)')}")
    click.echo(f"Account: {account.name} ({account.id})")


@main.command()
@handle_errors
def status() -> None:
    """Check integration and session status without contacting Basecamp.

    Verifies:
    1. OAuth integration configured
    2. Secret storage reachable
    3. Token validity
    """
    from basecamp_cli.auth import TokenStatus

    manager = build_session_manager(interactive=False)
    store_info = manager.secret_store.info()

    click.echo("Basecamp CLI Status:")
    click.echo("")

    click.echo("Storage:")
    click.echo(f"  Config file: {manager.config_store.config_path}")
    click.echo(f"  Secret file: {store_info.file_path}")
    click.echo(f"  Keychain:    service={store_info.service} account={store_info.account}")
    click.echo("")

    integration_status = manager.show_integration()
    click.echo("Integration:")
    if integration_status.has_client_id and integration_status.has_client_secret:
        click.echo(f"  ✓ Client ID {integration_status.client_id}")
    else:
        click.echo("  ❌ Not configured. Run 'basecamp integration set'.")
    click.echo("")

    token_status, session = manager.get_status()

    click.echo("Session:")
    if token_status == TokenStatus.MISSING:
        click.echo("  ❌ Not logged in")
        click.echo("")
        click.echo("Run 'basecamp login' to sign in.")
        sys.exit(1)
    if session is None:
        click.echo("  ❌ Stored session is incomplete")
        click.echo("")
        click.echo("Run 'basecamp login' to sign in again.")
        sys.exit(1)

    click.echo(f"  Account: {session.account.name} ({session.account.id})")
    if token_status == TokenStatus.EXPIRED:
        click.echo("  ⚠️  Access token expired (refreshes automatically on use)")
    else:
        click.echo("  ✓ Authenticated")
    click.echo(
        f"  Token expires: {session.token.expires_at.strftime('%Y-%m-%d %H:%M:%S UTC')}"
    )


if __name__ == "__main__":
    main()
