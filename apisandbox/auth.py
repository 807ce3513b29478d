"""apisandbox auth - credential injection into headers and query strings."""

import base64
from typing import Callable

from apisandbox.models import (
    ApiKeyAuth,
    AuthConfig,
    BasicAuth,
    BearerAuth,
    OAuth2Auth,
    PairList,
)

Substitute = Callable[[str], str]


def _identity(text: str) -> str:
    return text


def apply_auth(
    auth: AuthConfig | None,
    headers: PairList,
    query: PairList,
    substitute: Substitute = _identity,
) -> tuple[PairList, PairList]:
    """Write credentials for ``auth`` into headers and/or query.

    Supports:
    - bearer:  Authorization: Bearer <token>
    - basic:   Authorization: Basic <b64(username:password)>
    - api-key: <key>: <value> as a header, or ?<key>=<value>
    - oauth2:  a literal access token, sent as bearer

    Values are substituted before the presence check. Writes overwrite any
    same-named entry, so auth wins over user-set headers and params. Both
    containers are modified in place and returned.
    """
    if auth is None or auth.type == "none":
        return headers, query

    if isinstance(auth, BearerAuth):
        token = substitute(auth.bearer.token)
        if token:
            headers.set("Authorization", f"Bearer {token}")

    elif isinstance(auth, BasicAuth):
        username = substitute(auth.basic.username)
        password = substitute(auth.basic.password)
        if username and password:
            credentials = base64.b64encode(f"{username}:{password}".encode()).decode()
            headers.set("Authorization", f"Basic {credentials}")

    elif isinstance(auth, ApiKeyAuth):
        key = substitute(auth.api_key.key)
        value = substitute(auth.api_key.value)
        if key and value:
            if auth.api_key.add_to == "query":
                query.set(key, value)
            else:
                headers.set(key, value)

    elif isinstance(auth, OAuth2Auth):
        token = substitute(auth.oauth2.access_token or "")
        if token:
            headers.set("Authorization", f"Bearer {token}")

    return headers, query


def has_auth(auth: AuthConfig | None) -> bool:
    """True when ``auth`` carries the credentials its type needs."""
    if isinstance(auth, BearerAuth):
        return bool(auth.bearer.token)
    if isinstance(auth, BasicAuth):
        return bool(auth.basic.username and auth.basic.password)
    if isinstance(auth, ApiKeyAuth):
        return bool(auth.api_key.key and auth.api_key.value)
    if isinstance(auth, OAuth2Auth):
        return bool(auth.oauth2.access_token)
    return False


def describe_auth(auth: AuthConfig | None) -> str:
    if auth is None or auth.type == "none":
        return "No authentication"
    if isinstance(auth, BearerAuth):
        state = "configured" if auth.bearer.token else "not configured"
        return f"Bearer Token ({state})"
    if isinstance(auth, BasicAuth):
        if auth.basic.username:
            return f"Basic Auth ({auth.basic.username})"
        return "Basic Auth (not configured)"
    if isinstance(auth, ApiKeyAuth):
        if auth.api_key.key:
            location = "Header" if auth.api_key.add_to == "header" else "Query"
            return f"API Key ({auth.api_key.key} in {location})"
        return "API Key (not configured)"
    if isinstance(auth, OAuth2Auth):
        return "OAuth 2.0 (access token only)"
    return "Unknown authentication"
