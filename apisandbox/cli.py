"""apisandbox CLI - compose, send and inspect HTTP requests."""

import asyncio
import json
import logging
import sys
from datetime import datetime
from pathlib import Path

import click

TOOL_HELP = """\
apisandbox — HTTP request composer and executor.

\b
MODES
─────
  Direct:        apisandbox METHOD URL [options]
  Saved request: apisandbox -r NAME [options]

\b
DIRECT MODE
───────────
  apisandbox GET https://api.example.com/users -q page=2
  apisandbox POST https://api.example.com/users -b '{"name":"test"}'
  apisandbox POST https://api.example.com/login --body-type form-urlencoded \\
      -b '{"user":"admin","pass":"{{password}}"}'

\b
VARIABLES
─────────
  {{name}} tokens in the URL, query, headers, body and auth are replaced
  from -v name=value first, then from the active environment
  (-e NAME, or `environment:` in the config). Unknown tokens are sent as-is.

\b
AUTH
────
  --bearer TOKEN
  --basic USER:PASS
  --api-key NAME=VALUE [--api-key-in header|query]
  Auth always overrides a header or query param with the same name.

\b
OUTPUT
──────
    STATUS: 200 OK
    TIME: 45ms
    SIZE: 27 B
    BODY:
    {"id": 1, "name": "test"}

  --verbose adds response headers. --raw prints only the body.
  Exit code 1 on an invalid request or when no response was received.

\b
DATA
────
  apisandbox --history                     Recent requests (newest first)
  apisandbox --export-data backup.json     Collections, environments, history
  apisandbox --export-data out/ --only history
  apisandbox --import-data backup.json [--replace]
  apisandbox --check-url example.com       Validate a URL and suggest fixes

\b
CONFIG FILE (.apisandbox.yaml)
──────────────────────────────
  Resolution: -c flag, then .apisandbox.yaml in CWD, then
  ~/.apisandbox/config.yaml.

  \b
  defaults:
    base_url: ${API_BASE_URL}   # prefixed to relative URLs
    env_file: .env              # loaded before ${VAR} expansion
    timeout_ms: 30000
    data_dir: ~/.apisandbox/data
    environment: dev            # environment activated for each send
    log_level: WARNING
    headers:
      Accept: application/json
"""

CORS_NOTE = (
    "NOTE: The request never reached a server response. This is usually a "
    "CORS block, DNS failure, refused connection or lost connectivity. Check "
    "the URL and that the server is reachable and allows this origin."
)


@click.command(
    cls=click.Command,
    help=TOOL_HELP,
    context_settings={"max_content_width": 88},
)
@click.argument("method", required=False)
@click.argument("url", required=False)
@click.option(
    "-c",
    "--config",
    "config_file",
    default=None,
    help="Config file path. Default: .apisandbox.yaml in CWD, then ~/.apisandbox/config.yaml.",
)
@click.option(
    "-r",
    "--request",
    "request_name",
    default=None,
    help="Send a saved collection request by name or id.",
)
@click.option("-e", "--env", "env_name", default=None, help="Environment to use for this send.")
@click.option(
    "-v",
    "--var",
    multiple=True,
    help="Variable as key=value. Overrides the environment. Repeatable.",
)
@click.option("-q", "--query", multiple=True, help="Query parameter as key=value. Repeatable.")
@click.option("-H", "--header", multiple=True, help="HTTP header as 'Name: Value'. Repeatable.")
@click.option("-b", "--body", default=None, help="Request body text.")
@click.option(
    "--body-type",
    type=click.Choice(["none", "json", "form-urlencoded"]),
    default=None,
    help="How to send --body. Default: json when a body is given.",
)
@click.option("--bearer", default=None, metavar="TOKEN", help="Bearer token auth.")
@click.option("--basic", default=None, metavar="USER:PASS", help="Basic auth credentials.")
@click.option("--api-key", default=None, metavar="NAME=VALUE", help="API key auth.")
@click.option(
    "--api-key-in",
    type=click.Choice(["header", "query"]),
    default="header",
    help="Where --api-key goes. Default: header.",
)
@click.option("--timeout", type=int, default=None, help="Timeout in milliseconds. Default: 30000.")
@click.option("--verbose", is_flag=True, default=False, help="Include response headers.")
@click.option("--raw", is_flag=True, default=False, help="Print the response body only.")
@click.option("--curl", "as_curl", is_flag=True, default=False, help="Print a curl command instead of sending.")
@click.option("--check-url", default=None, metavar="URL", help="Validate a URL and exit.")
@click.option("--history", is_flag=True, default=False, help="Show request history.")
@click.option("--export-data", default=None, metavar="PATH", help="Export data to a JSON file or directory.")
@click.option(
    "--only",
    multiple=True,
    type=click.Choice(["collections", "environments", "history"]),
    help="Limit --export-data to these sections. Repeatable.",
)
@click.option("--import-data", default=None, metavar="PATH", help="Import an exported JSON file.")
@click.option("--replace", is_flag=True, default=False, help="With --import-data: replace instead of merge.")
@click.option(
    "--log-level",
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"], case_sensitive=False),
    default=None,
    help="Log level for stderr diagnostics. Default: WARNING.",
)
def main(
    method,
    url,
    config_file,
    request_name,
    env_name,
    var,
    query,
    header,
    body,
    body_type,
    bearer,
    basic,
    api_key,
    api_key_in,
    timeout,
    verbose,
    raw,
    as_curl,
    check_url,
    history,
    export_data,
    only,
    import_data,
    replace,
    log_level,
):
    """Send HTTP requests and manage sandbox data."""
    from apisandbox.core import (
        load_config,
        load_env,
        resolve_config_path,
        resolve_data_dir,
        resolve_value,
    )
    from apisandbox.session import Session
    from apisandbox.storage import JsonStore

    # --- Load config ---
    config_path = resolve_config_path(config_file)
    config = load_config(config_path)
    defaults = config.get("defaults", {})

    env = load_env(defaults.get("env_file"), config.get("_config_dir") or ".")
    _setup_logging(log_level or resolve_value(defaults.get("log_level"), env) or "WARNING")

    # --- Dispatch ---

    if check_url is not None:
        _cmd_check_url(check_url)
        return

    store = JsonStore(resolve_data_dir(config, env))
    session = Session(store)

    if history:
        _cmd_history(session)
        return

    if export_data:
        _cmd_export(session, export_data, only)
        return

    if import_data:
        _cmd_import(session, import_data, replace)
        return

    env_to_use = env_name or resolve_value(defaults.get("environment"), env)
    if env_to_use:
        try:
            session.activate(env_to_use, persist=False)
        except KeyError:
            click.echo(f"ERROR: Environment '{env_to_use}' not found.", err=True)
            sys.exit(1)

    if request_name:
        definition = session.find_request(request_name)
        if definition is None:
            click.echo(f"ERROR: Saved request '{request_name}' not found.", err=True)
            sys.exit(1)
    elif method and url:
        definition = _build_definition(
            method,
            url,
            query,
            header,
            body,
            body_type,
            bearer,
            basic,
            api_key,
            api_key_in,
            defaults,
            env,
        )
    else:
        # No request to send: show help
        ctx = click.get_current_context()
        click.echo(ctx.get_help())
        ctx.exit(1)
        return

    variables = _parse_vars(var)

    if as_curl:
        from apisandbox.core import generate_curl_command

        click.echo(generate_curl_command(definition, variables + session.active_variables()))
        return

    timeout_ms = _resolve_timeout(timeout, defaults.get("timeout_ms"))
    _cmd_send(session, definition, variables, timeout_ms, verbose, raw)


# ── Subcommand implementations ──────────────────────────────────────────


def _cmd_check_url(candidate):
    from apisandbox.validation import validate_url_advanced

    result = validate_url_advanced(candidate)
    click.echo(f"STATE: {result.state}")
    if result.message:
        click.echo(f"MESSAGE: {result.message}")
    if result.suggestion:
        click.echo(f"SUGGESTION: {result.suggestion}")
    if not result.is_valid:
        sys.exit(1)


def _cmd_history(session):
    items = session.history.items
    if not items:
        click.echo("No request history.")
        return
    click.echo("Request history:\n")
    for i, item in enumerate(items):
        ts = datetime.fromtimestamp(item.timestamp / 1000).isoformat(timespec="seconds")
        req = item.request
        click.echo(
            f"  [{i}] {req.method.value:<7} {req.url}  "
            f"-> {item.response.status} ({item.response.time}ms, {ts})"
        )


def _cmd_export(session, target, sections):
    from apisandbox.exchange import export_filename, write_export

    data = session.export(sections or None)
    path = Path(target)
    if path.is_dir():
        kind = sections[0] if len(sections) == 1 else "backup"
        path = path / export_filename(kind)
    write_export(data, path)
    click.echo(f"Exported to {path}")


def _cmd_import(session, source, replace):
    from apisandbox.exchange import ImportDataError, load_import

    try:
        data = load_import(source)
    except ImportDataError as e:
        click.echo(f"ERROR: {e}", err=True)
        sys.exit(1)
    counts = session.apply_import(data, mode="replace" if replace else "merge")
    summary = ", ".join(f"{name}: {count}" for name, count in counts.items())
    click.echo(f"Imported ({'replace' if replace else 'merge'}). {summary}")


def _cmd_send(session, definition, variables, timeout_ms, verbose, raw):
    from apisandbox.builder import BuildError, InvalidUrlError
    from apisandbox.core import substitute
    from apisandbox.models import ErrorKind
    from apisandbox.validation import validate_url_advanced

    async def _run():
        try:
            return await session.fire(definition, variables, timeout_ms)
        finally:
            await session.aclose()

    try:
        response = asyncio.run(_run())
    except BuildError as e:
        click.echo(f"ERROR: {e.message}", err=True)
        if isinstance(e, InvalidUrlError):
            resolved = substitute(definition.url, variables + session.active_variables())
            suggestion = validate_url_advanced(resolved or "").suggestion
            if suggestion:
                click.echo(f"Did you mean: {suggestion}", err=True)
        sys.exit(1)

    if response.is_client_error:
        click.echo(f"ERROR: {response.data['error']}: {response.data['details']}", err=True)
        if response.error_kind == ErrorKind.CORS_OR_NETWORK:
            click.echo(CORS_NOTE, err=True)
        sys.exit(1)

    click.echo(format_response(response, verbose=verbose, raw=raw))


# ── Helpers ──────────────────────────────────────────────────────────────


def format_response(response, verbose=False, raw=False) -> str:
    """Render an ApiResponse as STATUS/TIME/SIZE/[HEADERS]/BODY lines."""
    body = response.data
    if raw:
        if isinstance(body, dict | list):
            return json.dumps(body, indent=2)
        return str(body) if body is not None else ""

    lines = [
        f"STATUS: {response.status} {response.status_text}".rstrip(),
        f"TIME: {response.time}ms",
        f"SIZE: {response.size} B",
    ]
    if verbose and response.headers:
        lines.append("HEADERS:")
        for key, value in response.headers.items():
            lines.append(f"  {key}: {value}")
    if body not in (None, ""):
        lines.append("BODY:")
        if isinstance(body, dict | list):
            lines.append(json.dumps(body, indent=2))
        else:
            lines.append(str(body))
    return "\n".join(lines)


def _build_definition(
    method,
    url,
    query,
    header,
    body,
    body_type,
    bearer,
    basic,
    api_key,
    api_key_in,
    defaults,
    env,
):
    from apisandbox.core import parse_assignments, resolve_value
    from apisandbox.models import (
        ApiKeyAuth,
        ApiKeyCredentials,
        BasicAuth,
        BasicCredentials,
        BearerAuth,
        BearerCredentials,
        BodyType,
        KeyValuePair,
        RequestDefinition,
    )
    from apisandbox.validation import validate_http_method

    if not validate_http_method(method):
        click.echo(f"ERROR: Unsupported method '{method}'.", err=True)
        sys.exit(1)

    base_url = resolve_value(defaults.get("base_url"), env) or ""
    if base_url and not url.startswith(("http://", "https://")):
        url = base_url.rstrip("/") + "/" + url.lstrip("/")

    headers = [
        KeyValuePair(key=k, value=str(resolve_value(v, env)))
        for k, v in (defaults.get("headers") or {}).items()
    ]
    headers += [KeyValuePair(key=k, value=v) for k, v in _parse_headers(header).items()]

    auth = None
    if bearer:
        auth = BearerAuth(bearer=BearerCredentials(token=bearer))
    elif basic:
        username, _, password = basic.partition(":")
        auth = BasicAuth(basic=BasicCredentials(username=username, password=password))
    elif api_key:
        if "=" not in api_key:
            click.echo("ERROR: --api-key must be NAME=VALUE.", err=True)
            sys.exit(1)
        key, value = api_key.split("=", 1)
        auth = ApiKeyAuth(api_key=ApiKeyCredentials(key=key, value=value, add_to=api_key_in))

    if body_type is None:
        body_type = "json" if body else "none"

    return RequestDefinition(
        name=url,
        method=method.upper(),
        url=url,
        query_params=[KeyValuePair(key=k, value=v) for k, v in parse_assignments(query)],
        headers=headers,
        body=body or "",
        body_type=BodyType(body_type),
        auth=auth,
    )


def _parse_vars(var_specs):
    from apisandbox.core import parse_assignments
    from apisandbox.models import KeyValuePair

    return [KeyValuePair(key=k, value=v) for k, v in parse_assignments(var_specs)]


def _parse_headers(header_tuples):
    """Parse -H 'Name: Value' tuples into a dict."""
    headers = {}
    for h in header_tuples:
        if ":" in h:
            k, v = h.split(":", 1)
            headers[k.strip()] = v.strip()
    return headers


def _resolve_timeout(*sources, default=None):
    """Return the first timeout that is set (0 included), or default."""
    from apisandbox.core import DEFAULT_TIMEOUT_MS

    for t in sources:
        if t is not None:
            return int(t)
    return DEFAULT_TIMEOUT_MS if default is None else default


def _setup_logging(level):
    """Send apisandbox diagnostics to stderr; stdout stays for results."""
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(
        logging.Formatter(
            "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )
    )
    root = logging.getLogger("apisandbox")
    for existing in root.handlers[:]:
        root.removeHandler(existing)
    root.addHandler(handler)
    root.setLevel(str(level).upper())
