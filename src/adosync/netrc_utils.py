"""Utilities for reading Azure DevOps credentials from .netrc file."""

import netrc
import os
from pathlib import Path
from urllib.parse import urlparse


def get_devops_token_from_netrc(base_url: str) -> str | None:
    """
    Retrieve an Azure DevOps personal access token from .netrc file.

    Extracts the hostname from the base_url and looks up credentials
    in the user's .netrc file (~/.netrc on Unix, ~/_netrc on Windows).
    Azure DevOps ignores the login, so only the password is returned.

    Args:
        base_url: The Azure DevOps base URL (e.g., 'https://dev.azure.com/')

    Returns:
        The token if found, or None if not found or if any error occurs
        during lookup.

    Example .netrc entry:
        machine dev.azure.com
        login ignored
        password your_personal_access_token
    """
    try:
        parsed = urlparse(base_url)
        hostname = parsed.netloc or parsed.path.split("/")[0]

        if not hostname:
            return None

        netrc_path = Path.home() / (".netrc" if os.name != "nt" else "_netrc")

        if not netrc_path.exists():
            return None

        netrc_obj = netrc.netrc(str(netrc_path))
        auth = netrc_obj.authenticators(hostname)

        if auth:
            _, _, password = auth
            return password or None

        return None

    except (netrc.NetrcParseError, OSError, ValueError):
        # .netrc is optional
        return None
