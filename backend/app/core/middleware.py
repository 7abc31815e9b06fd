"""
Request middleware — correlation ids, timing and one log line per request.

Provides:
    • X-Request-ID on every response (echoed when the client sent one)
    • X-Process-Time on every response
    • Request context for every log line written while the request runs:
      request id, method, endpoint and the calling user (X-User-Id)
    • One summary line per request, levelled by outcome: 5xx → ERROR,
      401/403 → WARNING tagged "denied", other 4xx → WARNING, else INFO
"""

from __future__ import annotations

import logging
import time
import uuid
from typing import Iterable

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response
from starlette.types import ASGIApp

from backend.app.core.logging_config import bind_request_context, reset_request_context

logger = logging.getLogger(__name__)

REQUEST_ID_HEADER = "X-Request-ID"
CALLER_HEADER = "X-User-Id"

# Docs and health checks; still logged when they fail with a 5xx
QUIET_PATHS = ("/docs", "/redoc", "/openapi", "/favicon", "/health/live", "/health/ready")


def _elapsed_ms(start: float) -> float:
    return (time.perf_counter() - start) * 1000


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """
    Bind request context, time the request and log its outcome.

    WebSocket upgrades do not pass through BaseHTTPMiddleware, so the
    realtime endpoint and the hub log their own connect/disconnect lines.
    """

    def __init__(self, app: ASGIApp, quiet_paths: Iterable[str] = QUIET_PATHS):
        super().__init__(app)
        self.quiet_paths = tuple(quiet_paths)

    async def dispatch(self, request: Request, call_next) -> Response:
        request_id = request.headers.get(REQUEST_ID_HEADER) or uuid.uuid4().hex[:16]
        path = request.url.path
        caller = request.headers.get(CALLER_HEADER)

        token = bind_request_context(
            request_id=request_id,
            method=request.method,
            endpoint=path,
            user_id=caller,
            client_ip=request.client.host if request.client else None,
        )
        start = time.perf_counter()

        try:
            response = await call_next(request)
        except Exception:
            self._log_outcome(request.method, path, 500, _elapsed_ms(start), caller)
            raise
        else:
            duration_ms = _elapsed_ms(start)
            response.headers[REQUEST_ID_HEADER] = request_id
            response.headers["X-Process-Time"] = f"{duration_ms:.1f}ms"
            self._log_outcome(request.method, path, response.status_code, duration_ms, caller)
            return response
        finally:
            reset_request_context(token)

    def _log_outcome(
        self, method: str, path: str, status_code: int, duration_ms: float, caller,
    ) -> None:
        if status_code < 500 and path.startswith(self.quiet_paths):
            return

        if status_code >= 500:
            level = logging.ERROR
        elif status_code >= 400:
            level = logging.WARNING
        else:
            level = logging.INFO

        denied = " denied" if status_code in (401, 403) else ""
        logger.log(
            level,
            "%s %s → %d%s (%.1fms) caller=%s",
            method, path, status_code, denied, duration_ms, caller or "anonymous",
            extra={
                "duration_ms": duration_ms,
                "status_code": status_code,
                "endpoint": path,
            },
        )
