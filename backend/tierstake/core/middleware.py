"""
FastAPI middleware for request context, logging and HTTP metrics
"""
import time
import uuid
from typing import Callable

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware

from tierstake.core.identity import IDENTITY_HEADER, normalize_identity
from tierstake.core.logging_config import LoggingConfig
from tierstake.core.metrics import (http_request_duration_seconds,
                                    http_requests_total)

logger = LoggingConfig.get_logger(__name__)


class LoggingContextMiddleware(BaseHTTPMiddleware):
    """Middleware to add request context to logs"""

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        request_id = request.headers.get("x-request-id") or str(uuid.uuid4())

        LoggingConfig.set_context(
            request_id=request_id,
            method=request.method,
            path=request.url.path,
            caller=normalize_identity(request.headers.get(IDENTITY_HEADER)) or None,
        )

        # Route template keeps metric cardinality bounded
        route = request.scope.get("route")
        endpoint = getattr(route, "path", request.url.path)

        start_time = time.time()
        logger.debug(
            "Request started",
            extra={"query_params": str(request.query_params)}
        )

        try:
            response = await call_next(request)
            duration = time.time() - start_time
            endpoint = getattr(request.scope.get("route"), "path", endpoint)

            http_requests_total.labels(
                method=request.method,
                endpoint=endpoint,
                status_code=response.status_code
            ).inc()
            http_request_duration_seconds.labels(
                method=request.method,
                endpoint=endpoint
            ).observe(duration)

            logger.info(
                "Request completed",
                extra={
                    "status_code": response.status_code,
                    "duration_ms": int(duration * 1000),
                }
            )

            response.headers["X-Request-ID"] = request_id
            return response

        except Exception as e:
            logger.error(
                "Request failed",
                exc_info=True,
                extra={
                    "error": str(e),
                    "error_type": type(e).__name__,
                    "duration_ms": int((time.time() - start_time) * 1000),
                }
            )
            raise

        finally:
            LoggingConfig.clear_context()
