"""
Global Error Handler Middleware.

Unhandled exceptions become a structured JSON 500 with an ``error_id``
that matches the server-side log line. Internals never reach the client.
"""

import uuid

import structlog
from fastapi import Request, Response
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from flowwatch.config import settings

logger = structlog.get_logger(__name__)


class ErrorHandlerMiddleware(BaseHTTPMiddleware):
    """
    Response body on failure:
    {
      "error": "human-readable message",
      "error_id": "uuid for log correlation",
      "status": 500
    }
    """

    async def dispatch(self, request: Request, call_next) -> Response:
        try:
            return await call_next(request)
        except Exception as exc:
            error_id = str(uuid.uuid4())
            # Full traceback stays server-side, keyed by error_id
            logger.error(
                "unhandled_exception",
                error_id=error_id,
                path=request.url.path,
                method=request.method,
                error=str(exc),
                exc_info=True,
            )

            # Generic message only
            body: dict = {
                "error": "An internal error occurred. Please try again later.",
                "error_id": error_id,
                "status": 500,
            }
            # Debug mode adds the exception type, never the traceback
            if settings.debug:
                body["debug_hint"] = type(exc).__name__

            return JSONResponse(status_code=500, content=body)
