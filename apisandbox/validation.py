"""apisandbox validation - URL checks and input sanitization.

Sanitizers strip known-dangerous fragments from user input before it is
sent anywhere. ``validate_url`` and ``validate_url_advanced`` decide whether
a URL may be used.
"""

from __future__ import annotations

import json
import re
from dataclasses import dataclass
from urllib.parse import SplitResult, urlsplit

MAX_URL_LENGTH = 2048
MAX_REQUEST_NAME_LENGTH = 200

VALID_METHODS = ("GET", "POST", "PUT", "PATCH", "DELETE", "HEAD", "OPTIONS")
LOCAL_HOSTS = ("localhost", "127.0.0.1")

_SCRIPT_TAG = re.compile(r"<script\b[^<]*(?:(?!</script>)<[^<]*)*</script>", re.IGNORECASE)
_HTML_TAG = re.compile(r"<[^>]*>")
_EVENT_HANDLER = re.compile(r"on\w+\s*=", re.IGNORECASE)
_UNSAFE_SCHEMES = (
    re.compile(r"javascript:", re.IGNORECASE),
    re.compile(r"data:text/html", re.IGNORECASE),
    re.compile(r"vbscript:", re.IGNORECASE),
)

_XSS_PATTERNS = (
    re.compile(r"<script", re.IGNORECASE),
    re.compile(r"javascript:", re.IGNORECASE),
    _EVENT_HANDLER,
    re.compile(r"<iframe", re.IGNORECASE),
    re.compile(r"<embed", re.IGNORECASE),
    re.compile(r"<object", re.IGNORECASE),
    re.compile(r"vbscript:", re.IGNORECASE),
    re.compile(r"data:text/html", re.IGNORECASE),
)

# A bare domain needs at least one dot and an alphabetic TLD, so that
# "localhost:3000" and "127.0.0.1" fall through to the local-host rule.
_BARE_DOMAIN = re.compile(
    r"^[a-zA-Z0-9][a-zA-Z0-9\-.]*\.[a-zA-Z]{2,}(:\d+)?(/.*)?$"
)
_BARE_LOCALHOST = re.compile(r"^(localhost|127\.0\.0\.1)(:\d+)?(/.*)?$", re.IGNORECASE)
_SCHEME = re.compile(r"^[a-zA-Z][a-zA-Z0-9+.\-]*$")

_CONTENT_TYPE_PATTERNS = (
    re.compile(r"^application/json"),
    re.compile(r"^application/xml"),
    re.compile(r"^application/x-www-form-urlencoded"),
    re.compile(r"^multipart/form-data"),
    re.compile(r"^text/"),
    re.compile(r"^application/octet-stream"),
)


@dataclass
class UrlValidationResult:
    is_valid: bool
    state: str  # empty | valid | warning | invalid
    message: str | None = None
    suggestion: str | None = None


@dataclass
class JsonValidationResult:
    is_valid: bool
    error: str | None = None
    line_number: int | None = None


# ── URL ──────────────────────────────────────────────────────────────────


def sanitize_url(url: str | None) -> str:
    """Strip script tags, unsafe schemes and inline event handlers."""
    if not url:
        return ""
    sanitized = _SCRIPT_TAG.sub("", url)
    for pattern in _UNSAFE_SCHEMES:
        sanitized = pattern.sub("", sanitized)
    sanitized = _EVENT_HANDLER.sub("", sanitized)
    return sanitized.strip()


def parse_absolute_url(url: str) -> SplitResult:
    """Split an absolute URL, raising ValueError when it is not one.

    http(s) URLs must name a host and may not contain whitespace in it.
    """
    parts = urlsplit(url)
    scheme = parts.scheme
    if not scheme or not _SCHEME.match(scheme) or not url.lower().startswith(scheme + ":"):
        raise ValueError(f"Invalid URL: {url!r}")
    if scheme in ("http", "https"):
        if not parts.hostname or any(c.isspace() for c in parts.netloc):
            raise ValueError(f"Invalid URL: {url!r}")
        # .port raises ValueError for a non-numeric or out-of-range port
        if parts.port == 0:
            raise ValueError(f"Invalid port in URL: {url!r}")
    return parts


def validate_url(url: str | None) -> bool:
    """True for a parseable absolute http:// or https:// URL."""
    if not url or not url.strip():
        return False
    try:
        parts = parse_absolute_url(url.strip())
    except ValueError:
        return False
    return parts.scheme.lower() in ("http", "https")


def validate_url_advanced(raw: str | None) -> UrlValidationResult:
    """Classify a candidate URL as empty, valid, warning or invalid.

    Rules, first match wins:
      1. blank                                -> empty
      2. bare domain without scheme           -> invalid, suggest https://
      3. bare localhost/127.0.0.1             -> invalid, suggest http://
      4. not parseable                        -> invalid, maybe suggest https://
      5. scheme other than http/https         -> invalid
      6. script/handler/unsafe-scheme content -> invalid
      7. local host                           -> warning (usable)
      8. anything else                        -> valid
    """
    if raw is None or not raw.strip():
        return UrlValidationResult(False, "empty", "URL is required")

    url = raw.strip()
    if len(url) > MAX_URL_LENGTH:
        return UrlValidationResult(
            False,
            "invalid",
            f"URL exceeds maximum length of {MAX_URL_LENGTH} characters",
        )

    has_http_scheme = url.lower().startswith(("http://", "https://"))

    if not has_http_scheme and _BARE_DOMAIN.match(url):
        return UrlValidationResult(
            False,
            "invalid",
            "URL must start with http:// or https://",
            suggestion=f"https://{url}",
        )

    if not has_http_scheme and _BARE_LOCALHOST.match(url):
        return UrlValidationResult(
            False,
            "invalid",
            "Local URLs must start with http://",
            suggestion=f"http://{url}",
        )

    try:
        parts = parse_absolute_url(url)
    except ValueError:
        suggestion = f"https://{url}" if "." in url and "://" not in url else None
        return UrlValidationResult(False, "invalid", "Invalid URL format", suggestion)

    scheme = parts.scheme.lower()
    if scheme not in ("http", "https"):
        return UrlValidationResult(
            False,
            "invalid",
            f"Unsupported protocol: {scheme}:. Only HTTP and HTTPS are supported",
        )

    if contains_xss_patterns(url):
        return UrlValidationResult(False, "invalid", "URL contains potentially unsafe content")

    if (parts.hostname or "").lower() in LOCAL_HOSTS:
        return UrlValidationResult(True, "warning", "Local development URL")

    return UrlValidationResult(True, "valid", "Valid URL")


def contains_xss_patterns(text: str | None) -> bool:
    if not text:
        return False
    return any(p.search(text) for p in _XSS_PATTERNS)


# ── Headers ──────────────────────────────────────────────────────────────


def sanitize_header_key(key: str | None) -> str:
    """Keep only [A-Za-z0-9_-]."""
    if not key:
        return ""
    return re.sub(r"[^a-zA-Z0-9\-_]", "", key).strip()


def sanitize_header_value(value: str | None) -> str:
    """Drop CR, LF and NUL so a value cannot start a new header line."""
    if not value:
        return ""
    return re.sub(r"[\r\n\x00]", "", value).strip()


def validate_content_type(content_type: str | None) -> bool:
    if not content_type:
        return False
    lowered = content_type.lower()
    return any(p.match(lowered) for p in _CONTENT_TYPE_PATTERNS)


# ── Other input ──────────────────────────────────────────────────────────


def validate_json(text: str | None) -> JsonValidationResult:
    """Blank text counts as valid; otherwise report the first syntax error."""
    if not text or not text.strip():
        return JsonValidationResult(True)
    try:
        json.loads(text)
    except json.JSONDecodeError as e:
        return JsonValidationResult(False, e.msg, e.lineno)
    return JsonValidationResult(True)


def format_json(text: str, indent: int = 2) -> str:
    """Pretty-print JSON text; invalid JSON comes back unchanged."""
    try:
        return json.dumps(json.loads(text), indent=indent, ensure_ascii=False)
    except json.JSONDecodeError:
        return text


def validate_http_method(method: str) -> bool:
    return method.upper() in VALID_METHODS


def sanitize_request_name(name: str | None) -> str:
    if not name:
        return ""
    sanitized = _SCRIPT_TAG.sub("", name)
    sanitized = _HTML_TAG.sub("", sanitized)
    return sanitized[:MAX_REQUEST_NAME_LENGTH].strip()


def sanitize_variable_key(key: str | None) -> str:
    """Keep [A-Za-z0-9_-]; prefix '_' when the result starts with a digit."""
    if not key:
        return ""
    sanitized = re.sub(r"[^a-zA-Z0-9_-]", "", key)
    if sanitized[:1].isdigit():
        sanitized = "_" + sanitized
    return sanitized


def is_within_safe_length(text: str, max_length: int = 10000) -> bool:
    return len(text) <= max_length
