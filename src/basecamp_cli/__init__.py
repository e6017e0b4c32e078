"""Basecamp CLI.

Command-line access to Basecamp with OAuth login, encrypted local credential
storage and transparent token refresh.
"""

from basecamp_cli.__version__ import __version__

__all__ = ["__version__"]
