"""apisandbox builder - assemble a transport-ready request from a definition.

The builder is a value threaded through fixed stages:

    resolve_url -> add_query -> add_headers -> apply_auth -> add_body -> build

Auth runs after the user's params and headers are in place so that its
writes overwrite same-named entries. Each stage returns the builder, so a
test can stop after any of them and inspect ``headers``/``query``/``body``.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from typing import Any, Iterable
from urllib.parse import SplitResult, parse_qsl, urlencode, urlunsplit

from apisandbox import auth as auth_mod
from apisandbox.core import active_pairs, substitute
from apisandbox.models import (
    BodyType,
    ErrorKind,
    HttpMethod,
    KeyValuePair,
    PairList,
    RequestDefinition,
)
from apisandbox.validation import (
    parse_absolute_url,
    sanitize_header_key,
    sanitize_header_value,
    sanitize_url,
    validate_url,
)

logger = logging.getLogger(__name__)

CONTENT_TYPE = "Content-Type"
JSON_CONTENT_TYPE = "application/json"
FORM_CONTENT_TYPE = "application/x-www-form-urlencoded"

BODYLESS_METHODS = (HttpMethod.GET, HttpMethod.HEAD)


class BuildError(Exception):
    """Raised when a request cannot be assembled; nothing was sent."""

    kind: ErrorKind = ErrorKind.UNKNOWN_CLIENT_ERROR

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class InvalidUrlError(BuildError):
    kind = ErrorKind.INVALID_URL


class InvalidBodyError(BuildError):
    kind = ErrorKind.INVALID_BODY


@dataclass
class BuiltRequest:
    """A fully substituted request, ready to hand to the executor."""

    request_id: str
    method: str
    url: str
    headers: list[tuple[str, str]] = field(default_factory=list)
    body: str | None = None

    def header(self, name: str) -> str | None:
        for k, v in self.headers:
            if k.lower() == name.lower():
                return v
        return None


def _form_value(value: Any) -> str:
    """String form of a JSON scalar as it appears in a form body."""
    if value is True:
        return "true"
    if value is False:
        return "false"
    if value is None:
        return "null"
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


class RequestBuilder:
    def __init__(
        self,
        definition: RequestDefinition,
        variables: Iterable[KeyValuePair] = (),
    ) -> None:
        self.definition = definition
        self.variables = list(variables)
        self.url: SplitResult | None = None
        self.query = PairList()
        self.headers = PairList(case_insensitive=True)
        self.body: str | None = None

    def substitute(self, text: str) -> str:
        return substitute(text, self.variables) or ""

    # ── Stages ───────────────────────────────────────────────────────────

    def resolve_url(self) -> RequestBuilder:
        """Substitute, sanitize and validate the URL; keep its existing query."""
        cleaned = sanitize_url(self.substitute(self.definition.url))
        if not validate_url(cleaned):
            raise InvalidUrlError(
                f"Invalid URL after variable substitution: {cleaned or '(empty)'}"
            )
        self.url = parse_absolute_url(cleaned)
        self.query = PairList(parse_qsl(self.url.query, keep_blank_values=True))
        return self

    def add_query(self) -> RequestBuilder:
        for param in active_pairs(self.definition.query_params):
            self.query.append(self.substitute(param.key), self.substitute(param.value))
        return self

    def add_headers(self) -> RequestBuilder:
        for header in active_pairs(self.definition.headers):
            key = sanitize_header_key(self.substitute(header.key))
            value = sanitize_header_value(self.substitute(header.value))
            if key:
                self.headers.append(key, value)
            else:
                logger.debug("Dropping header %r: nothing left after sanitizing", header.key)
        return self

    def apply_auth(self) -> RequestBuilder:
        auth_mod.apply_auth(
            self.definition.auth,
            self.headers,
            self.query,
            self.substitute,
        )
        return self

    def add_body(self) -> RequestBuilder:
        definition = self.definition
        self.body = None
        if definition.method in BODYLESS_METHODS or not definition.body:
            return self

        if definition.body_type == BodyType.JSON:
            self.body = self.substitute(definition.body)
            if not self.headers.has(CONTENT_TYPE):
                self.headers.append(CONTENT_TYPE, JSON_CONTENT_TYPE)

        elif definition.body_type == BodyType.FORM_URLENCODED:
            self.body = self._encode_form(self.substitute(definition.body))
            if not self.headers.has(CONTENT_TYPE):
                self.headers.append(CONTENT_TYPE, FORM_CONTENT_TYPE)

        return self

    def build(self) -> BuiltRequest:
        if self.url is None:
            raise BuildError("resolve_url() must run before build()")
        url = urlunsplit(self.url._replace(query=urlencode(self.query.items())))
        return BuiltRequest(
            request_id=self.definition.id,
            method=self.definition.method.value,
            url=url,
            headers=self.headers.items(),
            body=self.body,
        )

    # ── Helpers ──────────────────────────────────────────────────────────

    @staticmethod
    def _encode_form(text: str) -> str:
        try:
            fields = json.loads(text)
        except json.JSONDecodeError as e:
            raise InvalidBodyError(f"Form body is not valid JSON: {e.msg}") from e
        if not isinstance(fields, dict):
            raise InvalidBodyError("Form body must be a JSON object")

        pairs = []
        for key, value in fields.items():
            if isinstance(value, dict | list):
                raise InvalidBodyError(f"Form field '{key}' must be a scalar value")
            pairs.append((key, _form_value(value)))
        return urlencode(pairs)


def build_request(
    definition: RequestDefinition,
    variables: Iterable[KeyValuePair] = (),
) -> BuiltRequest:
    """Run every builder stage in order.

    Raises InvalidUrlError or InvalidBodyError before anything is sent.
    """
    built = (
        RequestBuilder(definition, variables)
        .resolve_url()
        .add_query()
        .add_headers()
        .apply_auth()
        .add_body()
        .build()
    )
    logger.debug("Built %s request %s", built.method, built.request_id)
    return built
