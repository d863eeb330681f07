"""
Exception handlers translating service errors into HTTP responses
"""
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from tierstake.core.exceptions import ServiceError
from tierstake.core.logging_config import LoggingConfig
from tierstake.core.metrics import service_errors_total

logger = LoggingConfig.get_logger(__name__)


async def service_error_handler(request: Request, exc: ServiceError) -> JSONResponse:
    service_errors_total.labels(code=exc.code).inc()
    log = logger.warning if exc.status_code >= 500 else logger.info
    log(
        f"{request.method} {request.url.path} -> {exc.code}: {exc.message}",
        extra={"error_code": exc.code, "error_context": exc.context}
    )
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(ServiceError, service_error_handler)
