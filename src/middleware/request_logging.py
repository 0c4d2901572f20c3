from __future__ import annotations

import logging
import time
import uuid
from contextvars import ContextVar
from typing import Iterable, Optional

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

logger = logging.getLogger(__name__)

CORRELATION_HEADER = "X-Correlation-ID"
DEFAULT_SKIP_PATHS = ("/actuator/health",)

correlation_id: ContextVar[Optional[str]] = ContextVar("correlation_id", default=None)


class LoggingMiddleware(BaseHTTPMiddleware):
    """
    Access log for every request.

    Writes one line per request with method, path, status and duration,
    and tags the request with a correlation id (taken from the incoming
    X-Correlation-ID header or generated) that is echoed on the response.
    """

    def __init__(self, app, *, skip_paths: Iterable[str] = DEFAULT_SKIP_PATHS):
        super().__init__(app)
        self.skip_paths = frozenset(skip_paths)

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        request_id = request.headers.get(CORRELATION_HEADER) or uuid.uuid4().hex
        token = correlation_id.set(request_id)
        start = time.perf_counter()
        path = request.url.path
        # The context variable stays set until the access line is written
        try:
            try:
                response = await call_next(request)
            except Exception:
                duration_ms = (time.perf_counter() - start) * 1000
                logger.error(
                    f"{request.method} {path} failed after {duration_ms:.1f}ms "
                    f"[correlation_id={request_id}]",
                    exc_info=True,
                )
                raise

            duration_ms = (time.perf_counter() - start) * 1000
            response.headers[CORRELATION_HEADER] = request_id
            if path not in self.skip_paths:
                logger.info(
                    f"{request.method} {path} -> {response.status_code} "
                    f"({duration_ms:.1f}ms) [correlation_id={request_id}]"
                )
            return response
        finally:
            correlation_id.reset(token)
