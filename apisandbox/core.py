"""apisandbox core - config loading, variable substitution, request helpers."""

import json
import os
import re
from pathlib import Path
from typing import Any, Iterable, Iterator
from urllib.parse import quote, urlparse

import yaml
from dotenv import dotenv_values

from apisandbox.models import (
    BodyType,
    HttpMethod,
    KeyValuePair,
    RequestDefinition,
    generate_id,
)

GLOBAL_DIR = Path.home() / ".apisandbox"
GLOBAL_CONFIG = GLOBAL_DIR / "config.yaml"
GLOBAL_DATA_DIR = GLOBAL_DIR / "data"

CWD_CONFIG_CANDIDATES = [
    ".apisandbox.yaml",
    ".apisandbox.yml",
    "apisandbox.yaml",
    "apisandbox.yml",
]

DEFAULT_TIMEOUT_MS = 30000

VARIABLE_PATTERN = re.compile(r"\{\{([^}]+)\}\}")


# ── Config ───────────────────────────────────────────────────────────────


def resolve_path(
    candidates: list[Path],
    default: Path | None = None,
) -> Path | None:
    """Return the first existing path from candidates, else default."""
    for p in candidates:
        if p.exists():
            return p.resolve()
    return default


def resolve_config_path(config_file: str | None) -> Path | None:
    """Find the config file to use.

    Resolution order:
      1. Explicit -c flag (hard, no fallthrough if missing)
      2. .apisandbox.yaml (variants) in CWD
      3. ~/.apisandbox/config.yaml
    """
    if config_file:
        return resolve_path([Path(config_file)])
    return resolve_path([Path(c) for c in CWD_CONFIG_CANDIDATES] + [GLOBAL_CONFIG])


def load_config(config_path: str | Path | None) -> dict:
    """Load YAML config file. Returns an empty defaults section if not found.

    Stores '_config_dir' in the returned dict so relative paths in the
    config (env_file, data_dir) resolve against the config file.
    """
    if config_path is None:
        return {"defaults": {}, "_config_dir": None}
    path = Path(config_path)
    if not path.exists():
        return {"defaults": {}, "_config_dir": None}
    with open(path) as f:
        data = yaml.safe_load(f) or {}
    return {
        "defaults": data.get("defaults") or {},
        "_config_dir": path.resolve().parent,
    }


def load_env(env_file: str | None, base_dir: str | Path = ".") -> dict[str, str]:
    """Load .env file and merge it over os.environ."""
    env = dict(os.environ)
    if env_file:
        dotenv_path = Path(base_dir) / env_file
        if dotenv_path.exists():
            dotenv_vars = dotenv_values(str(dotenv_path))
            env.update({k: v for k, v in dotenv_vars.items() if v is not None})
    return env


def resolve_value(value: Any, env: dict[str, str]) -> Any:
    """Resolve $VAR and ${VAR} references in a config string value.

    Unknown names are left as written. Non-strings pass through.
    """
    if value is None or not isinstance(value, str):
        return value

    def _replace(m: re.Match) -> str:
        var_name = m.group(1) or m.group(2)
        return env.get(var_name, os.environ.get(var_name, m.group(0)))

    return re.sub(r"\$\{([^}]+)\}|\$([A-Za-z_][A-Za-z0-9_]*)", _replace, value)


def resolve_data_dir(config: dict, env: dict[str, str]) -> Path:
    """Directory backing the JSON store; relative paths follow the config file."""
    configured = resolve_value(config.get("defaults", {}).get("data_dir"), env)
    if not configured:
        return GLOBAL_DATA_DIR
    p = Path(configured).expanduser()
    config_dir = config.get("_config_dir")
    if not p.is_absolute() and config_dir:
        p = Path(config_dir) / p
    return p


# ── Variable substitution ────────────────────────────────────────────────


def active_pairs(pairs: Iterable[KeyValuePair]) -> Iterator[KeyValuePair]:
    """Yield the pairs that take part in a request: enabled, with a key."""
    for pair in pairs:
        if pair.enabled and pair.key:
            yield pair


def substitute(text: str | None, variables: Iterable[KeyValuePair]) -> str | None:
    """Replace ``{{key}}`` tokens with the values of enabled variables.

    Keys match literally (no trimming, no case folding). The text is scanned
    once; a substituted value is never scanned again for further tokens, so
    the order of ``variables`` only matters for duplicate keys, where the
    first one wins. Unmatched tokens stay as they are.
    """
    if not text:
        return text
    lookup: dict[str, str] = {}
    for variable in active_pairs(variables):
        lookup.setdefault(variable.key, variable.value)
    if not lookup:
        return text
    pattern = "|".join(
        re.escape("{{" + key + "}}") for key in sorted(lookup, key=len, reverse=True)
    )
    return re.sub(pattern, lambda m: lookup[m.group(0)[2:-2]], text)


def find_variables(text: str | None) -> list[str]:
    """Names of the ``{{name}}`` tokens in text, in first-seen order."""
    if not text:
        return []
    seen: list[str] = []
    for m in VARIABLE_PATTERN.finditer(text):
        if m.group(1) not in seen:
            seen.append(m.group(1))
    return seen


def parse_assignments(specs: Iterable[str]) -> list[tuple[str, str]]:
    """Parse ``key=value`` strings, skipping entries without '='."""
    pairs = []
    for spec in specs:
        if "=" in spec:
            k, v = spec.split("=", 1)
            pairs.append((k.strip(), v.strip()))
    return pairs


# ── Request helpers ──────────────────────────────────────────────────────


def duplicate_request(request: RequestDefinition) -> RequestDefinition:
    """Copy a request under a new id; every param/header row gets a new id too."""
    copy = request.model_copy(deep=True)
    copy.id = generate_id("req")
    copy.name = f"{request.name} (Copy)"
    for param in copy.query_params:
        param.id = generate_id("param")
    for header in copy.headers:
        header.id = generate_id("header")
    return copy


def generate_request_name(url: str) -> str:
    """Title-case the last path segment, or the hostname when there is no path."""
    if not url or not url.strip():
        return "New Request"
    parsed = urlparse(url)
    if not parsed.scheme or not parsed.hostname:
        return "New Request"

    segments = [s for s in parsed.path.split("/") if s]
    if segments:
        words = re.sub(r"[-_]", " ", segments[-1]).split(" ")
        return " ".join(w[:1].upper() + w[1:] for w in words)

    return " ".join(p[:1].upper() + p[1:] for p in parsed.hostname.split("."))


def _shell_single_quote(s: str) -> str:
    return "'" + s.replace("'", "'\\''") + "'"


def generate_curl_command(
    request: RequestDefinition,
    variables: Iterable[KeyValuePair] = (),
) -> str:
    """Render a request as a multi-line curl command.

    Variables are substituted into the URL, header values and body. Auth is
    not rendered.
    """
    variables = list(variables)
    parts = ["curl"]

    if request.method != HttpMethod.GET:
        parts.append(f"-X {request.method.value}")

    url = substitute(request.url, variables) or ""
    params = list(active_pairs(request.query_params))
    if params:
        query = "&".join(
            f"{quote(p.key, safe='')}={quote(p.value, safe='')}" for p in params
        )
        url += ("&" if "?" in url else "?") + query

    for header in active_pairs(request.headers):
        value = substitute(header.value, variables) or ""
        escaped = value.replace('"', '\\"')
        parts.append(f'-H "{header.key}: {escaped}"')

    if (
        request.body_type != BodyType.NONE
        and request.body
        and request.method not in (HttpMethod.GET, HttpMethod.HEAD)
    ):
        body = substitute(request.body, variables) or ""
        if request.body_type == BodyType.JSON:
            try:
                body = json.dumps(json.loads(body), separators=(",", ":"))
            except json.JSONDecodeError:
                pass  # invalid JSON goes out as written
        parts.append(f"-d {_shell_single_quote(body)}")

    parts.append(f'"{url}"')
    return " \\\n  ".join(parts)
