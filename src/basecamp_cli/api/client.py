"""Minimal Basecamp 3 API client.

Every request carries the session's bearer token. A 401 triggers exactly
one forced refresh and retry; a 403 is never retried.
"""

import json
import logging
from typing import Any

import httpx

from basecamp_cli.auth.oauth_client import create_http_client
from basecamp_cli.auth.session_manager import SessionManager
from basecamp_cli.errors import ApiRequestError, ForbiddenError

logger = logging.getLogger(__name__)

API_BASE_URL = "https://3.basecampapi.com"


class BasecampClient:
    """Bearer-authenticated requests against one Basecamp account.

    Attributes:
        session_manager: Source of access tokens.
        account_id: Account whose API is addressed.
        base_url: ``https://3.basecampapi.com/<account_id>/``.
    """

    def __init__(
        self,
        session_manager: SessionManager,
        account_id: int,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self.session_manager = session_manager
        self.account_id = account_id
        self.base_url = f"{API_BASE_URL}/{account_id}/"
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

    def url_for(self, path: str) -> str:
        """Resolve an API path such as ``my/profile.json`` against the account base."""
        return self.base_url + path.lstrip("/")

    async def request(
        self,
        method: str,
        path: str,
        params: dict[str, Any] | None = None,
        json_data: dict[str, Any] | None = None,
    ) -> httpx.Response:
        """Make an authenticated request.

        Args:
            method: HTTP method (GET, POST, etc.).
            path: Path relative to the account base URL.
            params: Optional query parameters.
            json_data: Optional JSON body data.

        Returns:
            The successful httpx.Response.

        Raises:
            NotLoggedInError: If no session is stored.
            ReauthRequiredError: If the token cannot be refreshed.
            ForbiddenError: On HTTP 403.
            ApiRequestError: On any other non-2xx status or transport failure.
        """
        access_token = await self.session_manager.get_valid_access_token()
        response = await self._send(method, path, access_token, params, json_data)

        if response.status_code == 401:
            logger.info("API returned 401; refreshing access token and retrying once")
            access_token = await self.session_manager.force_refresh()
            response = await self._send(method, path, access_token, params, json_data)

        if response.status_code == 403:
            raise ForbiddenError(f"Basecamp denied access to {path} (403 Forbidden).")
        if not response.is_success:
            raise ApiRequestError(
                f"Basecamp API request {method} {path} failed with status "
                f"{response.status_code}.",
                status=response.status_code,
            )
        return response

    async def _send(
        self,
        method: str,
        path: str,
        access_token: str,
        params: dict[str, Any] | None,
        json_data: dict[str, Any] | None,
    ) -> httpx.Response:
        client = await self._get_http_client()
        try:
            return await client.request(
                method=method,
                url=self.url_for(path),
                params=params,
                json=json_data,
                headers={
                    "Authorization": f"Bearer {access_token}",
                    "Accept": "application/json",
                },
            )
        except httpx.HTTPError as e:
            raise ApiRequestError(
                f"Basecamp API request {method} {path} failed ({type(e).__name__})."
            ) from e

    async def get_json(self, path: str, params: dict[str, Any] | None = None) -> Any:
        """GET a path and decode the JSON body."""
        response = await self.request("GET", path, params=params)
        try:
            return response.json()
        except json.JSONDecodeError as e:
            raise ApiRequestError(
                f"Basecamp API returned invalid JSON for {path}.",
                status=response.status_code,
            ) from e

    async def fetch_my_profile(self) -> dict[str, Any]:
        """Fetch the signed-in person's profile."""
        profile: dict[str, Any] = await self.get_json("my/profile.json")
        return profile
