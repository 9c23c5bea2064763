"""
Request correlation and logging middleware.

RequestIDMiddleware reads X-Request-ID (or generates one), stores it in
request.state and echoes it in the response. The router forwards it in the
call meta, so HttpBroker passes it on to remote nodes.

LoggingMiddleware logs every request with method, path, status code and
latency. It must be registered before RequestIDMiddleware (middleware runs
in reverse registration order) so that request_id is available.
"""

import time
import uuid
from typing import Callable

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware

from dataservice.core.logging_config import get_logger

logger = get_logger(__name__)


class RequestIDMiddleware(BaseHTTPMiddleware):
    """Attach a correlation id to every request and response."""

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
        request.state.request_id = request_id

        response = await call_next(request)
        response.headers["X-Request-ID"] = request_id
        return response


class LoggingMiddleware(BaseHTTPMiddleware):
    """
    Log HTTP requests and responses.

    Log output (JSON):
        {"message": "Request completed", "method": "GET",
         "path": "/posts/", "status_code": 200, "latency_ms": 3.1,
         "request_id": "abc-123"}
    """

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        method = request.method
        path = request.url.path
        request_id = getattr(request.state, "request_id", None)

        start_time = time.time()
        try:
            response = await call_next(request)
        except Exception as exc:
            logger.error(
                f"Request failed: {exc}",
                extra={
                    "method": method,
                    "path": path,
                    "latency_ms": round((time.time() - start_time) * 1000, 2),
                    "request_id": request_id,
                    "exception_type": type(exc).__name__,
                },
                exc_info=True,
            )
            raise

        logger.info(
            "Request completed",
            extra={
                "method": method,
                "path": path,
                "status_code": response.status_code,
                "latency_ms": round((time.time() - start_time) * 1000, 2),
                "request_id": request_id,
            },
        )
        return response
