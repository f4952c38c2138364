"""Request-ID middleware and structured request logging for the hourbank API.

Adds X-Request-ID to every response (reads from header or generates one).
Logs one compact line per request: request_id, method, path, status, elapsed_ms.
Never logs request bodies or customer payment data.

Supports HOURBANK_LOG_FORMAT=json for machine-readable JSON log lines.
"""

from __future__ import annotations

import datetime
import json
import logging
import time
import uuid

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

logger = logging.getLogger("hourbank.api")


class RequestIDMiddleware(BaseHTTPMiddleware):
    """Attach request ID and log request metadata."""

    def __init__(self, app, log_format: str = "text") -> None:
        super().__init__(app)
        self._log_format = log_format

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        request_id = request.headers.get("x-request-id") or uuid.uuid4().hex[:12]
        request.state.request_id = request_id

        t0 = time.monotonic()
        response = await call_next(request)
        elapsed_ms = int((time.monotonic() - t0) * 1000)

        response.headers["x-request-id"] = request_id

        if self._log_format == "json":
            logger.info(json.dumps({
                "ts": datetime.datetime.now(datetime.timezone.utc).isoformat(),
                "level": "INFO",
                "request_id": request_id,
                "method": request.method,
                "path": request.url.path,
                "status": response.status_code,
                "elapsed_ms": elapsed_ms,
            }, separators=(",", ":")))
        else:
            logger.info(
                "request_id=%s method=%s path=%s status=%d elapsed_ms=%d",
                request_id,
                request.method,
                request.url.path,
                response.status_code,
                elapsed_ms,
            )

        return response
