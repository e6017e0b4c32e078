"""Select the Basecamp account a login applies to."""

import json
import logging

import httpx
from pydantic import ValidationError

from basecamp_cli.auth.models import Account, AccountSelection
from basecamp_cli.auth.oauth_client import AUTHORIZATION_JSON_URL, create_http_client
from basecamp_cli.errors import (
    AccountNotFoundError,
    AuthorizationLookupFailedError,
    NoAccessibleAccountError,
)

logger = logging.getLogger(__name__)

BASECAMP_PRODUCT = "bc3"


def select_account(
    accounts: list[Account],
    requested_account_id: int | None = None,
    product: str = BASECAMP_PRODUCT,
) -> AccountSelection:
    """Pick the target account from an authorization listing.

    Args:
        accounts: Accounts returned by the introspection endpoint.
        requested_account_id: Explicit account id, if the caller chose one.
        product: Product identifier accounts must have.

    Returns:
        AccountSelection with ``account`` set, or with ``candidates`` when
        several accounts match and no id was requested.

    Raises:
        NoAccessibleAccountError: If no account has the product.
        AccountNotFoundError: If the requested id is not among them.
    """
    matching = [account for account in accounts if account.product == product]

    if not matching:
        raise NoAccessibleAccountError(product)

    if requested_account_id is not None:
        for account in matching:
            if account.id == requested_account_id:
                return AccountSelection(account=account)
        raise AccountNotFoundError(requested_account_id)

    if len(matching) == 1:
        return AccountSelection(account=matching[0])

    return AccountSelection(candidates=matching)


class AccountResolver:
    """Looks up accessible accounts for a bearer token."""

    def __init__(self, http_client: httpx.AsyncClient | None = None) -> None:
        self._http_client = http_client
        self._owns_client = http_client is None

    async def _get_http_client(self) -> httpx.AsyncClient:
        if self._http_client is None:
            self._http_client = create_http_client()
        return self._http_client

    async def close(self) -> None:
        if self._owns_client and self._http_client is not None:
            await self._http_client.aclose()
            self._http_client = None

    async def fetch_accounts(self, access_token: str) -> list[Account]:
        """Fetch the accounts the token can access.

        Raises:
            AuthorizationLookupFailedError: On transport failure, non-2xx
                status or an undecodable body.
        """
        client = await self._get_http_client()

        try:
            response = await client.get(
                AUTHORIZATION_JSON_URL,
                headers={
                    "Authorization": f"Bearer {access_token}",
                    "Accept": "application/json",
                },
            )
        except httpx.HTTPError as e:
            raise AuthorizationLookupFailedError(
                f"Failed to request authorization.json ({type(e).__name__})."
            ) from e

        if response.status_code == 401:
            raise AuthorizationLookupFailedError(
                "Basecamp rejected the new access token (401 Unauthorized).", status=401
            )
        if response.status_code == 403:
            raise AuthorizationLookupFailedError(
                "Basecamp denied access to authorization.json (403 Forbidden).", status=403
            )
        if not response.is_success:
            raise AuthorizationLookupFailedError(
                f"Basecamp authorization.json failed with status {response.status_code}.",
                status=response.status_code,
            )

        try:
            body = response.json()
            raw_accounts = body.get("accounts", []) if isinstance(body, dict) else None
            if not isinstance(raw_accounts, list):
                raise ValueError("accounts is not a list")
            return [Account.model_validate(item) for item in raw_accounts]
        except (json.JSONDecodeError, ValidationError, ValueError) as e:
            raise AuthorizationLookupFailedError(
                f"Failed to decode authorization.json response: {e}",
                status=response.status_code,
            ) from e

    async def resolve(
        self,
        access_token: str,
        requested_account_id: int | None = None,
    ) -> AccountSelection:
        """Fetch accounts and select the target one.

        See ``select_account`` for the selection rules.
        """
        accounts = await self.fetch_accounts(access_token)
        selection = select_account(accounts, requested_account_id)

        if selection.account is not None:
            logger.info("Selected Basecamp account %s", selection.account.id)
        else:
            logger.info(
                "%d Basecamp accounts available; deferring choice", len(selection.candidates)
            )
        return selection
