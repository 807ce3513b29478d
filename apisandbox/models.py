"""apisandbox models - request, environment, auth and response shapes.

All models use Pydantic v2. JSON documents (history, exports) use the
camelCase field names (``queryParams``, ``bodyType``, ``statusText``);
Python code uses snake_case attributes. Both spellings are accepted on input.
"""

from __future__ import annotations

import random
import string
import time
from enum import Enum
from typing import Annotated, Any, Iterator, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter
from pydantic.alias_generators import to_camel


class _Model(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
    )

    def to_dict(self) -> dict[str, Any]:
        """JSON-ready dict using the camelCase document field names."""
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


# =============================================================================
# Enums
# =============================================================================


class HttpMethod(str, Enum):
    GET = "GET"
    POST = "POST"
    PUT = "PUT"
    PATCH = "PATCH"
    DELETE = "DELETE"
    HEAD = "HEAD"
    OPTIONS = "OPTIONS"


class BodyType(str, Enum):
    NONE = "none"
    JSON = "json"
    FORM_URLENCODED = "form-urlencoded"


class ErrorKind(str, Enum):
    """Why a send attempt failed.

    INVALID_URL and INVALID_BODY are raised while building, before anything
    reaches the network. The rest are folded into a status-0 ApiResponse.
    """

    INVALID_URL = "invalid-url"
    INVALID_BODY = "invalid-body"
    TIMEOUT = "timeout"
    CORS_OR_NETWORK = "cors-or-network"
    UNKNOWN_CLIENT_ERROR = "unknown-client-error"


# =============================================================================
# Identifiers
# =============================================================================

_ID_ALPHABET = string.ascii_lowercase + string.digits


def generate_id(prefix: str = "id") -> str:
    """Return ``{prefix}_{epoch_ms}_{random}``, e.g. ``req_1704567890123_x1y2z3a4b``."""
    suffix = "".join(random.choices(_ID_ALPHABET, k=9))
    return f"{prefix}_{int(time.time() * 1000)}_{suffix}"


def is_valid_id(value: str) -> bool:
    if not value or not isinstance(value, str):
        return False
    parts = value.split("_")
    if len(parts) != 3:
        return False
    prefix, stamp, suffix = parts
    return bool(prefix) and stamp.isdigit() and bool(suffix)


def get_id_prefix(value: str) -> str | None:
    if not is_valid_id(value):
        return None
    return value.split("_")[0]


# =============================================================================
# Key/value pairs and environments
# =============================================================================


class KeyValuePair(_Model):
    """One editable row: a query param, a header, or an environment variable.

    ``secret`` only tells a UI to mask the value; it never changes what is
    sent.
    """

    id: str = Field(default_factory=lambda: generate_id("kv"))
    key: str = ""
    value: str = ""
    enabled: bool = True
    secret: bool | None = None

    @property
    def is_active(self) -> bool:
        return self.enabled and bool(self.key)


class Environment(_Model):
    id: str = Field(default_factory=lambda: generate_id("env"))
    name: str = "New Environment"
    variables: list[KeyValuePair] = Field(default_factory=list)


# =============================================================================
# Authentication
# =============================================================================


class BearerCredentials(_Model):
    token: str = ""


class BasicCredentials(_Model):
    username: str = ""
    password: str = ""


class ApiKeyCredentials(_Model):
    key: str = ""
    value: str = ""
    add_to: Literal["header", "query"] = "header"


class OAuth2Credentials(_Model):
    access_token: str | None = None


class NoAuth(_Model):
    type: Literal["none"] = "none"


class BearerAuth(_Model):
    type: Literal["bearer"] = "bearer"
    bearer: BearerCredentials = Field(default_factory=BearerCredentials)


class BasicAuth(_Model):
    type: Literal["basic"] = "basic"
    basic: BasicCredentials = Field(default_factory=BasicCredentials)


class ApiKeyAuth(_Model):
    type: Literal["api-key"] = "api-key"
    api_key: ApiKeyCredentials = Field(default_factory=ApiKeyCredentials)


class OAuth2Auth(_Model):
    """Placeholder: a literal access token is sent as a bearer token."""

    type: Literal["oauth2"] = "oauth2"
    oauth2: OAuth2Credentials = Field(default_factory=OAuth2Credentials)


# Each variant holds only its own payload, so a document that still carries
# e.g. a "bearer" block next to type "basic" loses the bearer block on load.
AuthConfig = Annotated[
    Union[NoAuth, BearerAuth, BasicAuth, ApiKeyAuth, OAuth2Auth],
    Field(discriminator="type"),
]

AUTH_TYPES: dict[str, type[_Model]] = {
    "none": NoAuth,
    "bearer": BearerAuth,
    "basic": BasicAuth,
    "api-key": ApiKeyAuth,
    "oauth2": OAuth2Auth,
}

_auth_adapter: TypeAdapter = TypeAdapter(AuthConfig)


def parse_auth(data: dict[str, Any] | None) -> AuthConfig | None:
    """Validate an auth document (``{"type": ..., "<variant>": {...}}``)."""
    if data is None:
        return None
    return _auth_adapter.validate_python(data)


def switch_auth_type(auth: AuthConfig | None, new_type: str) -> AuthConfig:
    """Return an empty config of ``new_type``.

    Nothing is carried over from ``auth``; switching back later starts from
    blank credentials again.
    """
    if new_type not in AUTH_TYPES:
        raise ValueError(f"Unknown auth type: {new_type}")
    if auth is not None and auth.type == new_type:
        return auth.model_copy(deep=True)
    return AUTH_TYPES[new_type]()


# =============================================================================
# Requests, responses, history
# =============================================================================


class RequestDefinition(_Model):
    """A user-authored HTTP call, before variable substitution."""

    id: str = Field(default_factory=lambda: generate_id("req"))
    name: str = "Untitled Request"
    method: HttpMethod = HttpMethod.GET
    url: str = ""
    query_params: list[KeyValuePair] = Field(default_factory=list)
    headers: list[KeyValuePair] = Field(default_factory=list)
    body: str = ""
    body_type: BodyType = BodyType.NONE
    auth: AuthConfig | None = None


class ApiResponse(_Model):
    """Normalized result of a send attempt.

    ``status`` 0 means the call failed client-side before any response
    arrived. ``data`` is the JSON-decoded body when it parses, otherwise the
    raw text.
    """

    status: int
    status_text: str = ""
    headers: dict[str, str] = Field(default_factory=dict)
    data: Any = None
    time: int = 0
    size: int = 0
    raw: str = ""
    error_kind: ErrorKind | None = None

    @property
    def is_client_error(self) -> bool:
        return self.status == 0


class RequestHistoryItem(_Model):
    id: str = Field(default_factory=lambda: generate_id("hist"))
    request: RequestDefinition
    response: ApiResponse
    timestamp: int = Field(default_factory=lambda: int(time.time() * 1000))


class CollectionItem(_Model):
    """A node in the saved-requests tree: a folder or a request."""

    id: str = Field(default_factory=lambda: generate_id("coll"))
    name: str = "New Collection"
    type: Literal["request", "folder"] = "folder"
    request: RequestDefinition | None = None
    children: list[CollectionItem] | None = None

    def walk(self) -> Iterator[CollectionItem]:
        yield self
        for child in self.children or []:
            yield from child.walk()


class ExportData(_Model):
    version: str
    export_date: str
    collections: list[CollectionItem] | None = None
    environments: list[Environment] | None = None
    history: list[RequestHistoryItem] | None = None


# =============================================================================
# Header / query containers
# =============================================================================


class PairList:
    """Ordered multi-valued (key, value) list.

    Plays the part of a header set (``case_insensitive=True``) or a query
    string while a request is being assembled. ``append`` keeps duplicates;
    ``set`` overwrites the first match and drops the rest.
    """

    def __init__(
        self,
        pairs: list[tuple[str, str]] | None = None,
        case_insensitive: bool = False,
    ) -> None:
        self._pairs: list[tuple[str, str]] = list(pairs or [])
        self._case_insensitive = case_insensitive

    def _matches(self, a: str, b: str) -> bool:
        if self._case_insensitive:
            return a.lower() == b.lower()
        return a == b

    def append(self, key: str, value: str) -> None:
        self._pairs.append((key, value))

    def set(self, key: str, value: str) -> None:
        updated: list[tuple[str, str]] = []
        placed = False
        for k, v in self._pairs:
            if self._matches(k, key):
                if not placed:
                    updated.append((key, value))
                    placed = True
                continue
            updated.append((k, v))
        if not placed:
            updated.append((key, value))
        self._pairs = updated

    def get(self, key: str) -> str | None:
        for k, v in self._pairs:
            if self._matches(k, key):
                return v
        return None

    def has(self, key: str) -> bool:
        return any(self._matches(k, key) for k, _ in self._pairs)

    def remove(self, key: str) -> None:
        self._pairs = [(k, v) for k, v in self._pairs if not self._matches(k, key)]

    def items(self) -> list[tuple[str, str]]:
        return list(self._pairs)

    def __contains__(self, key: object) -> bool:
        return isinstance(key, str) and self.has(key)

    def __iter__(self) -> Iterator[tuple[str, str]]:
        return iter(list(self._pairs))

    def __len__(self) -> int:
        return len(self._pairs)

    def __repr__(self) -> str:
        return f"PairList({self._pairs!r})"
