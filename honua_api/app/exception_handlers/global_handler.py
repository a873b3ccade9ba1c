"""
Application-wide exception handlers.

Services raise subclasses of ``ServiceError``; ``service_error_handler``
turns them into ``{"detail": ...}`` JSON bodies with the status the
error class declares, merged with any extra payload (the daily limit
figures of a 429, for instance).  Anything else that escapes an
endpoint is logged with its traceback by ``global_exception_handler``
and answered with a 500 carrying an error id clients can report.
"""

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from honua_api.app.core.errors import ServiceError
from honua_api.app.core.logging_config import get_logger

logger = get_logger(__name__)


async def service_error_handler(request: Request, exc: ServiceError) -> JSONResponse:
    """Translate an expected domain failure into its HTTP response."""
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
    else:
        logger.info("%s %s rejected (%s): %s", request.method, request.url.path, exc.status_code, exc.message)
    content = {"detail": exc.message}
    content.update(exc.extra)
    return JSONResponse(status_code=exc.status_code, content=content)


async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Log an unhandled exception and return a generic 500 response."""
    error_id = id(exc)
    logger.error(
        "Unhandled exception [%s] in %s %s: %s",
        error_id,
        request.method,
        request.url.path,
        exc,
        exc_info=exc,
    )
    return JSONResponse(
        status_code=500,
        content={
            "detail": "Internal server error",
            "error_id": error_id,
            "error_type": type(exc).__name__,
        },
    )


def setup_exception_handlers(app: FastAPI) -> None:
    """Register the handlers on ``app``; call once from ``create_app``."""
    app.add_exception_handler(ServiceError, service_error_handler)
    app.add_exception_handler(Exception, global_exception_handler)
