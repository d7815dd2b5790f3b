"""Shared HTTP client for the Firebase identity endpoints."""

import requests

_session: requests.Session | None = None


def get_session() -> requests.Session:
    """Return a shared requests.Session.

    No retry adapter is mounted: a failed sign-in or token refresh is reported
    to the caller and has to be re-triggered by the user.
    """
    global _session
    if _session is None:
        _session = requests.Session()
    return _session
