"""OAuth 2.0 protocol client for 37signals Launchpad.

Builds the authorization URL and performs the authorization-code and
refresh-token grants. Stateless: nothing is stored here and nothing is
retried; the caller decides what to do with a failure.

Client credentials are sent in the request body, which is what Launchpad
expects for token requests.
"""

import json
import logging
from urllib.parse import urlencode

import httpx
from pydantic import ValidationError

from basecamp_cli.__version__ import __version__
from basecamp_cli.auth.models import TokenResponse
from basecamp_cli.errors import TokenExchangeFailedError

logger = logging.getLogger(__name__)

AUTH_URL = "https://launchpad.37signals.com/authorization/new"
TOKEN_URL = "https://launchpad.37signals.com/authorization/token"  # nosec B105 - public endpoint
AUTHORIZATION_JSON_URL = "https://launchpad.37signals.com/authorization.json"

USER_AGENT = f"basecamp-cli/{__version__} (+https://github.com/basecamp/bc3-api)"

DEFAULT_TIMEOUT = httpx.Timeout(30.0, connect=10.0)


def create_http_client() -> httpx.AsyncClient:
    """Create the HTTP client used for Launchpad and API requests."""
    return httpx.AsyncClient(
        follow_redirects=False,
        timeout=DEFAULT_TIMEOUT,
        headers={"User-Agent": USER_AGENT},
    )


class OAuthClient:
    """Launchpad OAuth grants.

    Example:
        ```python
        client = OAuthClient()
        url = client.build_authorization_url(client_id, redirect_uri, state)
        tokens = await client.exchange_code(client_id, client_secret, redirect_uri, code)
        ```
    """

    def __init__(self, http_client: httpx.AsyncClient | None = None) -> None:
        """Initialize the OAuth client.

        Args:
            http_client: Client for token requests. Created on first use if
                not provided, and then owned (closed by ``close()``).
        """
        self._http_client = http_client
        self._owns_client = http_client is None

    async def _get_http_client(self) -> httpx.AsyncClient:
        if self._http_client is None:
            self._http_client = create_http_client()
        return self._http_client

    async def close(self) -> None:
        """Close the HTTP client if this instance created it."""
        if self._owns_client and self._http_client is not None:
            await self._http_client.aclose()
            self._http_client = None

    def build_authorization_url(self, client_id: str, redirect_uri: str, state: str) -> str:
        """Build the browser authorization URL.

        Args:
            client_id: OAuth client ID.
            redirect_uri: Loopback redirect URI registered for the client.
            state: CSRF token for this login attempt.

        Returns:
            Authorization URL; identical inputs yield identical output.
        """
        query = urlencode(
            {
                "response_type": "code",
                "client_id": client_id,
                "redirect_uri": redirect_uri,
                "state": state,
            }
        )
        return f"{AUTH_URL}?{query}"

    async def exchange_code(
        self,
        client_id: str,
        client_secret: str,
        redirect_uri: str,
        code: str,
    ) -> TokenResponse:
        """Exchange an authorization code for tokens.

        Raises:
            TokenExchangeFailedError: On transport failure, non-2xx status or
                a malformed response.
        """
        return await self._request_token(
            {
                "grant_type": "authorization_code",
                "code": code,
                "redirect_uri": redirect_uri,
                "client_id": client_id,
                "client_secret": client_secret,
            },
            action="exchange",
        )

    async def refresh(
        self,
        client_id: str,
        client_secret: str,
        refresh_token: str,
    ) -> TokenResponse:
        """Obtain a new access token with the standard refresh-token grant.

        Raises:
            TokenExchangeFailedError: On transport failure, non-2xx status or
                a malformed response.
        """
        return await self._request_token(
            {
                "grant_type": "refresh_token",
                "refresh_token": refresh_token,
                "client_id": client_id,
                "client_secret": client_secret,
            },
            action="refresh",
        )

    async def _request_token(self, data: dict[str, str], action: str) -> TokenResponse:
        client = await self._get_http_client()

        try:
            response = await client.post(
                TOKEN_URL,
                data=data,
                headers={"Accept": "application/json"},
            )
        except httpx.HTTPError as e:
            logger.warning("OAuth token %s request failed: %s", action, type(e).__name__)
            raise TokenExchangeFailedError(
                f"OAuth token {action} failed: could not reach token endpoint "
                f"({type(e).__name__})."
            ) from e

        if not response.is_success:
            error_code = _provider_error_code(response)
            logger.warning(
                "OAuth token %s rejected (status=%s, error=%s)",
                action,
                response.status_code,
                error_code,
            )
            raise TokenExchangeFailedError(
                f"OAuth token {action} failed.",
                status=response.status_code,
                error_code=error_code,
            )

        try:
            token = TokenResponse.model_validate(response.json())
        except (json.JSONDecodeError, ValidationError) as e:
            raise TokenExchangeFailedError(
                f"OAuth token {action} returned a malformed response.",
                status=response.status_code,
            ) from e

        logger.info(
            "OAuth token %s succeeded (expires_in=%s, refresh_token=%s)",
            action,
            token.expires_in,
            "rotated" if token.refresh_token else "unchanged",
        )
        return token


def _provider_error_code(response: httpx.Response) -> str | None:
    """Extract the OAuth ``error`` field from an error response, if any."""
    try:
        body = response.json()
    except (json.JSONDecodeError, UnicodeDecodeError):
        return None
    if isinstance(body, dict):
        error = body.get("error")
        if isinstance(error, str):
            return error
    return None
