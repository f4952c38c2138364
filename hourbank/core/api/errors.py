"""Error envelope for the hourbank API.

Every error response has the shape
    {"error": {"type": "<CODE>", "message": "...", "request_id": "<id>"}}

Domain errors (hourbank.core.errors) bring their own type, status and extra
fields such as ``available_hours``. The few framework errors hourbank can
produce (bad webhook signature, admin key, unknown intent or route, wrong
method, body validation) are mapped below; anything else is a 500.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional

from fastapi import Request
from fastapi.exceptions import RequestValidationError
from starlette.exceptions import HTTPException
from starlette.responses import JSONResponse

from hourbank.core.errors import HourbankError

logger = logging.getLogger("hourbank.api")

# Statuses raised as HTTPException by the routes or by routing itself.
_HTTP_ERROR_TYPES: Dict[int, str] = {
    400: "INVALID_SIGNATURE",
    403: "ADMIN_KEY_REQUIRED",
    404: "NOT_FOUND",
    405: "METHOD_NOT_ALLOWED",
}


def error_body(
    error_type: str, message: str, request_id: Optional[str] = None
) -> Dict[str, Any]:
    return {"error": {"type": error_type, "message": message, "request_id": request_id}}


def _request_id(request: Request) -> Optional[str]:
    return getattr(request.state, "request_id", None)


async def hourbank_exception_handler(request: Request, exc: HourbankError) -> JSONResponse:
    """Domain error -> envelope, keeping fields like requested/available hours."""
    content = error_body(exc.error_type, str(exc), _request_id(request))
    for key, value in exc.to_dict().items():
        content["error"].setdefault(key, value)
    if exc.status_code >= 500:
        logger.warning("request %s failed: %s", _request_id(request), exc.error_type)
    return JSONResponse(status_code=exc.status_code, content=content)


async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    error_type = _HTTP_ERROR_TYPES.get(exc.status_code, "INTERNAL_ERROR")
    message = exc.detail if isinstance(exc.detail, str) else str(exc.detail)
    return JSONResponse(
        status_code=exc.status_code,
        content=error_body(error_type, message, _request_id(request)),
        headers=getattr(exc, "headers", None),
    )


async def validation_exception_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    """Request body or path that pydantic rejected; one line per field."""
    parts = []
    for err in exc.errors():
        loc = " -> ".join(str(part) for part in err.get("loc", []))
        msg = err.get("msg", "")
        parts.append(f"{loc}: {msg}" if loc else msg)
    message = "; ".join(parts) or str(exc)
    return JSONResponse(
        status_code=422,
        content=error_body("VALIDATION_ERROR", message, _request_id(request)),
    )


async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    request_id = _request_id(request)
    logger.error("unhandled error request_id=%s", request_id, exc_info=exc)
    return JSONResponse(
        status_code=500,
        content=error_body("INTERNAL_ERROR", "Internal server error.", request_id),
    )
