# mirai_webhook/transport/middleware.py
import time
import uuid
from typing import Callable
from fastapi import Request, Response
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.types import ASGIApp
from mirai_webhook.core.errors import InternalError
from mirai_webhook.infra.logging_config import get_logger, LogContext

logger = get_logger(__name__)


def new_trace_id() -> str:
    """32 hex chars, quoted to the caller and written next to the traceback."""
    return uuid.uuid4().hex


class RequestIDMiddleware(BaseHTTPMiddleware):
    """Add unique request ID to each request for tracing"""

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        request_id = request.headers.get("X-Request-ID", str(uuid.uuid4()))
        request.state.request_id = request_id

        response = await call_next(request)
        response.headers["X-Request-ID"] = request_id
        return response


class CORSHeadersMiddleware(BaseHTTPMiddleware):
    """Webhooks may be fired from browsers: every response is open to any origin."""

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        response = await call_next(request)
        response.headers["Access-Control-Allow-Origin"] = "*"
        return response


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Log one line per request: ``[status] METHOD path``"""

    def __init__(self, app: ASGIApp, enabled: bool = True):
        super().__init__(app)
        self.enabled = enabled

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        if not self.enabled:
            return await call_next(request)

        request_id = getattr(request.state, "request_id", "unknown")
        start_time = time.time()
        log_ctx = LogContext(logger, request_id=request_id)

        try:
            response = await call_next(request)
        except Exception as exc:
            duration_ms = (time.time() - start_time) * 1000
            log_ctx.error(
                f"Request failed: {request.method} {request.url.path} "
                f"error={exc.__class__.__name__} duration={duration_ms:.2f}ms"
            )
            raise

        duration_ms = (time.time() - start_time) * 1000
        log_ctx.info(
            f"[{response.status_code}] {request.method} {request.url.path} "
            f"duration={duration_ms:.2f}ms",
            extra={
                "method": request.method,
                "path": request.url.path,
                "status_code": response.status_code,
                "duration_ms": duration_ms,
            }
        )
        return response


class ErrorHandlingMiddleware(BaseHTTPMiddleware):
    """
    Last line of defence for unhandled exceptions.

    The caller gets an ``InternalError`` envelope with a trace id and
    nothing else; the traceback goes to the error log under the same id.
    """

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        try:
            return await call_next(request)
        except Exception as exc:
            trace_id = new_trace_id()
            request_id = getattr(request.state, "request_id", "unknown")

            logger.error(
                f"Unhandled exception: {exc.__class__.__name__}: {exc}",
                extra={"request_id": request_id, "trace_id": trace_id},
                exc_info=True
            )

            error = InternalError(f"internal error, trace id: {trace_id}", cause=trace_id)
            return JSONResponse(
                status_code=error.status_code,
                content=error.to_dict(),
            )
