"""
Custom middleware and exception handlers for error handling and monitoring.
"""

import time
import traceback
from typing import Callable
from fastapi import Request, Response, status
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from tracker_sync.core.logging_config import get_logger, RequestLogger
from tracker_sync.core.config import get_settings
from tracker_sync.core.errors import TrackerSyncError

logger = get_logger(__name__)


class ErrorHandlingMiddleware(BaseHTTPMiddleware):
    """Middleware for centralized error handling."""

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        start_time = time.time()

        try:
            RequestLogger.log_request(method=request.method, url=str(request.url))

            response = await call_next(request)

            process_time = time.time() - start_time
            RequestLogger.log_response(status_code=response.status_code, response_time=process_time)

            response.headers["X-Process-Time"] = str(process_time)
            return response

        except Exception as exc:
            process_time = time.time() - start_time
            logger.error(
                f"Request processing failed: {request.method} {request.url} "
                f"({type(exc).__name__}: {exc}) after {process_time:.3f}s"
            )
            if get_settings().DEBUG:
                logger.debug(traceback.format_exc())

            return self._create_error_response(exc, process_time)

    def _create_error_response(self, exc: Exception, process_time: float) -> JSONResponse:
        """Creates standardized error response."""
        settings = get_settings()

        if isinstance(exc, TrackerSyncError):
            status_code = exc.status_code
            error_type = exc.error_type
            message = exc.message
        else:
            status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
            error_type = "internal_error"
            message = str(exc) if settings.DEBUG else "An error occurred"

        content = {
            "error": error_type,
            "message": message,
            "timestamp": time.time(),
            "process_time": process_time
        }

        if settings.DEBUG:
            content["details"] = {
                "exception_type": type(exc).__name__,
                "traceback": traceback.format_exc()
            }

        return JSONResponse(
            status_code=status_code,
            content=content,
            headers={"X-Process-Time": str(process_time)}
        )


class SecurityMiddleware(BaseHTTPMiddleware):
    """Middleware for security headers."""

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        response = await call_next(request)

        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["X-Frame-Options"] = "DENY"
        response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"

        if "Server" in response.headers:
            del response.headers["Server"]

        return response


async def tracker_sync_error_handler(request: Request, exc: TrackerSyncError) -> JSONResponse:
    """Renders pipeline errors as {"error", "message"} with the error's status code."""
    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed with {exc.error_type}: {exc.message}")
    else:
        logger.warning(f"{request.method} {request.url.path} rejected with {exc.error_type}: {exc.message}")

    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())
