"""Version information for basecamp-cli."""

from importlib.metadata import PackageNotFoundError, version
from pathlib import Path

DISTRIBUTION_NAME = "basecamp-cli"


def _get_version() -> str:
    """Read the checkout's VERSION file, else the installed distribution's version."""
    # A source checkout keeps VERSION at the project root, next to src/
    checkout_version = Path(__file__).resolve().parents[2] / "VERSION"
    if checkout_version.is_file():
        return checkout_version.read_text().strip()

    try:
        return version(DISTRIBUTION_NAME)
    except PackageNotFoundError:
        return "0.0.0+unknown"


__version__ = _get_version()
