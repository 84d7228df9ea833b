"""Header derivation for the supported auth modes."""

import base64
from typing import Dict, Iterable, List, Tuple

from .models import AuthMode, RequestAuth

Headers = List[Tuple[str, str]]


def auth_headers(auth: RequestAuth) -> Headers:
    """Return the header the active auth mode adds to a request, if any."""
    if auth.mode == AuthMode.APIKEY:
        if not auth.api_key_name:
            return []
        return [(auth.api_key_name, auth.api_key)]
    if auth.mode == AuthMode.BEARER:
        return [("Authorization", f"Bearer {auth.bearer_token}")]
    if auth.mode == AuthMode.OAUTH2:
        return [("Authorization", f"Bearer {auth.oauth_token}")]
    return []


def merge_headers(*groups: Iterable[Tuple[str, str]]) -> Headers:
    """Concatenate header groups, keeping one entry per key.

    Keys are compared exactly (case-sensitive). The last value written for a
    key wins; the key keeps the position where it first appeared.
    """
    merged: Dict[str, str] = {}
    for group in groups:
        for key, value in group:
            merged[key] = value
    return list(merged.items())


def basic_auth_header(client_id: str, client_secret: str) -> Tuple[str, str]:
    token = base64.b64encode(f"{client_id}:{client_secret}".encode()).decode()
    return ("Authorization", f"Basic {token}")
