"""
Read-only credential providers.

The engine never stores or refreshes credentials.  It asks a provider for
the headers to attach to each request, and reports a credential failure
back to the caller when the server rejects them.  Providers only need a
``headers()`` method, so a caller's own cookie store or token cache can be
passed in directly.
"""

from __future__ import annotations

import base64
from typing import Dict, Mapping, Optional, Protocol, runtime_checkable


@runtime_checkable
class CredentialProvider(Protocol):
    def headers(self) -> Mapping[str, str]:
        """Headers carrying the current credentials."""
        ...


class BasicAuth:
    def __init__(self, username: str, password: str) -> None:
        self.username = username
        self.password = password

    def __eq__(self, other: object) -> bool:
        return (self.username, self.password) == (
            getattr(other, "username", None),
            getattr(other, "password", None),
        )

    def headers(self) -> Dict[str, str]:
        credentials = f"{self.username}:{self.password}"
        encoded = base64.b64encode(credentials.encode()).decode()
        return {"Authorization": f"Basic {encoded}"}


class BearerAuth:
    def __init__(self, password: str) -> None:
        self.password = password

    def __eq__(self, other: object) -> bool:
        return self.password == getattr(other, "password", None)

    def headers(self) -> Dict[str, str]:
        return {"Authorization": f"Bearer {self.password}"}


class CookieAuth:
    """Session cookie, as handed out by a web login flow."""

    def __init__(self, cookie: str) -> None:
        self.cookie = cookie

    def headers(self) -> Dict[str, str]:
        return {"Cookie": self.cookie}


def extract_auth_types(header: str) -> set[str]:
    """
    Extract authentication types from WWW-Authenticate header.

    Example:
        >>> extract_auth_types('Basic realm="test", Digest realm="test"')
        {'basic', 'digest'}
    """
    return {h.split()[0] for h in header.lower().split(",") if h.strip()}


def build_credentials(
    username: Optional[str] = None,
    password: Optional[str] = None,
    cookie: Optional[str] = None,
    auth_type: Optional[str] = None,
) -> Optional[CredentialProvider]:
    """
    Pick a provider from plain connection parameters.

    A password without a username is taken to be a bearer token.
    """
    if cookie:
        return CookieAuth(cookie)
    auth_type = (auth_type or "").lower()
    if password and (auth_type == "bearer" or not username):
        return BearerAuth(password)
    if username is not None and password is not None:
        return BasicAuth(username, password)
    return None
