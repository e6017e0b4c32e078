"""Authenticated access to the Basecamp 3 API."""

from basecamp_cli.api.client import API_BASE_URL, BasecampClient

__all__ = ["BasecampClient", "API_BASE_URL"]
