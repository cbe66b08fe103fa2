"""Global error handlers: every error is rendered as ``{"detail": ...}`` JSON."""

import structlog
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from tilawa.errors import ConcurrencyConflict, InsufficientFunds, TilawaError

logger = structlog.get_logger()

CONFLICT_RETRY_AFTER_SECONDS = 1


def setup_error_handlers(app: FastAPI) -> None:
    """Register global exception handlers."""

    @app.exception_handler(TilawaError)
    async def tilawa_error_handler(request: Request, exc: TilawaError) -> JSONResponse:
        """Map service errors to their HTTP status."""
        content: dict = {"detail": exc.message}
        headers: dict[str, str] = {}

        if isinstance(exc, InsufficientFunds):
            content["balance"] = exc.balance
            content["requested"] = exc.requested
        elif isinstance(exc, ConcurrencyConflict):
            headers["Retry-After"] = str(CONFLICT_RETRY_AFTER_SECONDS)

        if exc.status_code >= 500:
            logger.error(
                "service_error",
                path=request.url.path,
                error_type=type(exc).__name__,
                error=exc.message,
            )
            if not isinstance(exc, ConcurrencyConflict):
                content = {"detail": "Internal server error"}

        return JSONResponse(status_code=exc.status_code, content=content, headers=headers or None)

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(_request: Request, exc: StarletteHTTPException) -> JSONResponse:
        return JSONResponse(
            status_code=exc.status_code,
            content={"detail": exc.detail},
            headers=getattr(exc, "headers", None),
        )

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(_request: Request, exc: RequestValidationError) -> JSONResponse:
        return JSONResponse(
            status_code=422,
            content={"detail": "Validation error", "errors": jsonable_errors(exc)},
        )

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        """Catch-all for unhandled exceptions, always JSON."""
        logger.error(
            "unhandled_exception",
            path=request.url.path,
            method=request.method,
            error=str(exc),
            exc_info=exc,
        )
        return JSONResponse(
            status_code=500,
            content={"detail": "Internal server error"},
        )


def jsonable_errors(exc: RequestValidationError) -> list[dict]:
    """Validation errors without the raw ``ctx`` objects, which may not serialize."""
    return [{k: v for k, v in err.items() if k != "ctx"} for err in exc.errors()]
