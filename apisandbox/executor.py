"""apisandbox executor - HTTP execution with cancellation and timeouts.

Every send gets its own CancellationToken, registered under the request id
for as long as the call is in flight, and its own timeout timer that fires
the same token. ``Executor.send`` never raises for transport problems:
timeouts, connection failures and unexpected errors all come back as an
ApiResponse with status 0.
"""

from __future__ import annotations

import asyncio
import json
import logging
import time
from enum import Enum
from typing import Any, Iterable

import httpx

from apisandbox.builder import BuiltRequest, build_request
from apisandbox.core import DEFAULT_TIMEOUT_MS
from apisandbox.models import ApiResponse, ErrorKind, KeyValuePair, RequestDefinition

logger = logging.getLogger(__name__)

CLIENT_ERROR_STATUS_TEXT = "Client Error"


class CancelReason(str, Enum):
    TIMEOUT = "timeout"
    USER = "user"


class RequestCancelled(Exception):
    """The token for an in-flight request fired before it completed."""

    def __init__(self, reason: CancelReason | None) -> None:
        super().__init__(f"Request cancelled ({reason.value if reason else 'unknown'})")
        self.reason = reason


class CancellationToken:
    """One-shot cancel signal for a single send.

    The first ``cancel`` wins and records its reason; later calls are no-ops.
    """

    def __init__(self) -> None:
        self._event = asyncio.Event()
        self.reason: CancelReason | None = None

    def cancel(self, reason: CancelReason = CancelReason.USER) -> bool:
        if self._event.is_set():
            return False
        self.reason = reason
        self._event.set()
        return True

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    async def wait(self) -> None:
        await self._event.wait()


class RequestRegistry:
    """In-flight request id -> CancellationToken.

    Only touched from the event loop thread, so there is no lock. Reusing an
    id for two concurrent sends overwrites the first token; the first send
    can then no longer be cancelled by id.
    """

    def __init__(self) -> None:
        self._active: dict[str, CancellationToken] = {}

    def register(self, request_id: str, token: CancellationToken) -> None:
        if request_id in self._active:
            logger.warning(
                "Request %s is already in flight; its cancel handle is replaced",
                request_id,
            )
        self._active[request_id] = token

    def unregister(self, request_id: str, token: CancellationToken | None = None) -> bool:
        """Remove the entry. With ``token``, only if it is still the registered one."""
        current = self._active.get(request_id)
        if current is None or (token is not None and current is not token):
            return False
        del self._active[request_id]
        return True

    def cancel(self, request_id: str) -> bool:
        token = self._active.pop(request_id, None)
        if token is None:
            return False
        token.cancel(CancelReason.USER)
        logger.info("Cancelled request %s", request_id)
        return True

    def cancel_all(self) -> int:
        tokens = list(self._active.values())
        self._active.clear()
        for token in tokens:
            token.cancel(CancelReason.USER)
        if tokens:
            logger.info("Cancelled %d in-flight request(s)", len(tokens))
        return len(tokens)

    def is_active(self, request_id: str) -> bool:
        return request_id in self._active

    def active_count(self) -> int:
        return len(self._active)


def classify_error(exc: BaseException) -> tuple[ErrorKind, str]:
    """Map a send failure to its ErrorKind and a one-line summary."""
    if isinstance(exc, RequestCancelled):
        if exc.reason == CancelReason.USER:
            return ErrorKind.TIMEOUT, "Request cancelled"
        return ErrorKind.TIMEOUT, "Request timeout exceeded"
    if isinstance(exc, httpx.TimeoutException):
        return ErrorKind.TIMEOUT, "Request timeout exceeded"
    if isinstance(exc, httpx.TransportError):
        return (
            ErrorKind.CORS_OR_NETWORK,
            "Request blocked or network error occurred (CORS, DNS, refused or dropped connection)",
        )
    return ErrorKind.UNKNOWN_CLIENT_ERROR, "Request failed"


def parse_body(raw: str) -> Any:
    """JSON-decoded body, or the raw text when it does not parse."""
    try:
        return json.loads(raw)
    except (json.JSONDecodeError, ValueError):
        return raw


def _elapsed_ms(start: float, end: float | None = None) -> int:
    return int(round(((end if end is not None else time.monotonic()) - start) * 1000))


def error_response(exc: BaseException, elapsed_ms: int) -> ApiResponse:
    kind, summary = classify_error(exc)
    details = str(exc) or exc.__class__.__name__
    return ApiResponse(
        status=0,
        status_text=CLIENT_ERROR_STATUS_TEXT,
        headers={},
        data={"error": summary, "details": details, "kind": kind.value},
        time=elapsed_ms,
        size=0,
        raw=details,
        error_kind=kind,
    )


class Executor:
    """Sends built requests and normalizes every outcome into an ApiResponse.

    Usage:
        async with Executor() as executor:
            response = await executor.execute(definition, variables)

    Pass ``client`` to supply a preconfigured httpx.AsyncClient (the caller
    then owns closing it).
    """

    def __init__(
        self,
        client: httpx.AsyncClient | None = None,
        registry: RequestRegistry | None = None,
        default_timeout_ms: int = DEFAULT_TIMEOUT_MS,
    ) -> None:
        self.registry = registry or RequestRegistry()
        self.default_timeout_ms = default_timeout_ms
        self._owns_client = client is None
        # The per-send timer governs timeouts, so httpx's own is disabled.
        self._client = client or httpx.AsyncClient(follow_redirects=True, timeout=None)

    async def __aenter__(self) -> Executor:
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        self.registry.cancel_all()
        if self._owns_client:
            await self._client.aclose()

    # ── Public API ───────────────────────────────────────────────────────

    async def execute(
        self,
        definition: RequestDefinition,
        variables: Iterable[KeyValuePair] = (),
        timeout_ms: int | None = None,
    ) -> ApiResponse:
        """Build and send. Build errors (bad URL, bad form body) propagate."""
        built = build_request(definition, variables)
        return await self.send(built, timeout_ms)

    async def send(self, request: BuiltRequest, timeout_ms: int | None = None) -> ApiResponse:
        if timeout_ms is None:
            timeout_ms = self.default_timeout_ms
        start = time.monotonic()
        token = CancellationToken()
        self.registry.register(request.request_id, token)
        timer = asyncio.get_running_loop().call_later(
            timeout_ms / 1000, token.cancel, CancelReason.TIMEOUT
        )
        marks: dict[str, float] = {}
        logger.debug("Dispatching %s request %s", request.method, request.request_id)

        try:
            response = await self._race(self._perform(request, timer, marks), token)
        except Exception as e:
            result = error_response(e, _elapsed_ms(start))
            logger.warning(
                "Request %s failed (%s): %s",
                request.request_id,
                result.error_kind.value,
                result.raw,
            )
            return result
        finally:
            timer.cancel()
            self.registry.unregister(request.request_id, token)

        raw = response.text
        result = ApiResponse(
            status=response.status_code,
            status_text=response.reason_phrase,
            headers=dict(response.headers.items()),
            data=parse_body(raw),
            time=_elapsed_ms(start, marks.get("received")),
            size=len(raw.encode("utf-8")),
            raw=raw,
        )
        logger.info(
            "Request %s -> %d in %dms (%d bytes)",
            request.request_id,
            result.status,
            result.time,
            result.size,
        )
        return result

    def cancel(self, request_id: str) -> bool:
        return self.registry.cancel(request_id)

    def cancel_all(self) -> int:
        return self.registry.cancel_all()

    # ── Internals ────────────────────────────────────────────────────────

    async def _perform(
        self,
        request: BuiltRequest,
        timer: asyncio.TimerHandle,
        marks: dict[str, float],
    ) -> httpx.Response:
        http_request = self._client.build_request(
            request.method,
            request.url,
            headers=request.headers,
            content=request.body.encode("utf-8") if request.body is not None else None,
        )
        response = await self._client.send(http_request, stream=True)
        try:
            # Headers are in: the timeout no longer applies, the body read does.
            timer.cancel()
            marks["received"] = time.monotonic()
            await response.aread()
        finally:
            await response.aclose()
        return response

    @staticmethod
    async def _race(call_coro: Any, token: CancellationToken) -> httpx.Response:
        """Await the call unless the token fires first; cancellation wins ties."""
        call = asyncio.ensure_future(call_coro)
        waiter = asyncio.ensure_future(token.wait())
        try:
            await asyncio.wait({call, waiter}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            waiter.cancel()
            if not call.done():
                call.cancel()

        if token.cancelled:
            # Let the aborted call unwind and close its connection.
            await asyncio.gather(call, return_exceptions=True)
            raise RequestCancelled(token.reason)
        return call.result()
