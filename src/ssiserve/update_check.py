"""
Startup check for a newer release on PyPI.

Skipped when NO_UPDATE_CHECK is set. Never fatal: any failure is a single
warning (with the full error only under --debug).
"""

import logging
import re
from typing import Optional, Tuple

import httpx

from . import __version__


logger = logging.getLogger(__name__)

PYPI_URL = "https://pypi.org/pypi/{name}/json"
PACKAGE_NAME = "ssiserve"
CHECK_TIMEOUT = 2.0


def _version_key(version: str) -> Tuple[int, ...]:
    return tuple(int(part) for part in re.findall(r"\d+", version.split("+")[0])[:3])


def latest_version(client: httpx.Client, name: str = PACKAGE_NAME) -> str:
    """
    Raises:
        httpx.HTTPError: PyPI unreachable or answered with an error.
        KeyError / ValueError: Unexpected response body.
    """
    response = client.get(PYPI_URL.format(name=name), timeout=CHECK_TIMEOUT)
    response.raise_for_status()
    return response.json()["info"]["version"]


def check_for_update(client: httpx.Client, debug: bool = False,
                     current: str = __version__) -> Optional[str]:
    """
    Log an UPDATE AVAILABLE line if PyPI has something newer.

    Returns:
        The newer version, or None (up to date, or the check failed).
    """
    try:
        latest = latest_version(client)
    except (httpx.HTTPError, KeyError, ValueError) as e:
        if debug:
            logger.warning(f"Checking for updates failed: {e}", exc_info=True)
        else:
            logger.warning("Checking for updates failed (use `--debug` to see full error)")
        return None

    if _version_key(latest) <= _version_key(current):
        logger.debug(f"{PACKAGE_NAME} {current} is up to date")
        return None

    logger.info(f"UPDATE AVAILABLE The latest version of `{PACKAGE_NAME}` is {latest}")
    return latest
