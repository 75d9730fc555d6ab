"""
RequestLoggingMiddleware - Records every HTTP transaction

Plain ASGI middleware: it tees the request and response bodies as they
stream through (at most LOG_BODY_LIMIT + 1 bytes of each), times the
exchange, and hands one RequestLogEntry to the monitor after the response
has been sent. Routes publish the resolved system/module ids through
``scope["state"]``.
"""

import logging
import time
from typing import Callable, Dict, Iterable, List

from starlette.types import ASGIApp, Message, Receive, Scope, Send

from sapmock.models.data_models import RequestLogEntry
from sapmock.services.monitor import RequestMonitor
from sapmock.utils.helpers import LOG_BODY_LIMIT, decode_body

logger = logging.getLogger(__name__)

SKIPPED_PREFIXES = ("/docs", "/redoc", "/openapi.json", "/favicon.ico", "/static")

STATE_SYSTEM = "sap_system_id"
STATE_MODULE = "sap_module_id"


class BodyCapture:
    """Keeps the first `limit + 1` bytes of a streamed body so truncation still shows"""

    def __init__(self, limit: int = LOG_BODY_LIMIT):
        self.limit = limit
        self.size = 0
        self._chunks: List[bytes] = []
        self._kept = 0

    def feed(self, chunk: bytes) -> None:
        self.size += len(chunk)
        room = self.limit + 1 - self._kept
        if room > 0 and chunk:
            kept = chunk[:room]
            self._chunks.append(kept)
            self._kept += len(kept)

    @property
    def buffered(self) -> int:
        return self._kept

    def value(self) -> bytes:
        return b"".join(self._chunks)


class RequestLoggingMiddleware:
    def __init__(
        self,
        app: ASGIApp,
        monitor_getter: Callable[[], RequestMonitor],
        skipped_prefixes: Iterable[str] = SKIPPED_PREFIXES,
    ):
        self.app = app
        self.monitor_getter = monitor_getter
        self.skipped_prefixes = tuple(skipped_prefixes)

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http" or scope.get("path", "").startswith(self.skipped_prefixes):
            await self.app(scope, receive, send)
            return

        started = time.perf_counter()
        request_body = BodyCapture()
        response_body = BodyCapture()
        status = {"code": 500}
        state = scope.setdefault("state", {})

        async def receive_wrapper() -> Message:
            message = await receive()
            if message["type"] == "http.request":
                request_body.feed(message.get("body", b""))
            return message

        async def send_wrapper(message: Message) -> None:
            if message["type"] == "http.response.start":
                status["code"] = message["status"]
            elif message["type"] == "http.response.body":
                response_body.feed(message.get("body", b""))
            await send(message)

        try:
            await self.app(scope, receive_wrapper, send_wrapper)
        finally:
            elapsed_ms = (time.perf_counter() - started) * 1000.0
            self._record(scope, state, status["code"], elapsed_ms, request_body.value(), response_body.value())

    def _record(self, scope: Scope, state: Dict, status_code: int, elapsed_ms: float, request_body: bytes, response_body: bytes) -> None:
        try:
            headers = {k.decode("latin-1"): v.decode("latin-1") for k, v in scope.get("headers") or []}
            client = scope.get("client")
            entry = RequestLogEntry(
                method=scope.get("method", ""),
                path=scope.get("path", ""),
                status_code=status_code,
                response_time_ms=round(elapsed_ms, 3),
                system=state.get(STATE_SYSTEM, ""),
                module=state.get(STATE_MODULE, ""),
                headers=headers,
                request_body=decode_body(request_body),
                response_body=decode_body(response_body),
                user_agent=headers.get("user-agent", ""),
                remote_ip_address=client[0] if client else "",
            )
            self.monitor_getter().log_request(entry)
        except Exception:
            logger.exception("Failed to record request %s %s", scope.get("method"), scope.get("path"))
