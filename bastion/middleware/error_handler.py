"""Standard error handler — one error body shape for every route."""

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from ..errors import BastionError, ErrorKind
from ..utils.logging import get_logger
from ..utils.timeutil import utcnow

logger = get_logger("middleware.error_handler")

_STATUS_BY_KIND = {
    ErrorKind.INVALID_INPUT: 400,
    ErrorKind.SCAN_IN_PROGRESS: 409,
    ErrorKind.RATE_LIMITED: 429,
    ErrorKind.FIREWALL_PERMISSION_DENIED: 403,
    ErrorKind.SOURCE_UNAVAILABLE: 503,
}


def status_for_kind(kind: ErrorKind | None) -> int:
    return _STATUS_BY_KIND.get(kind, 500)


def error_body(status_code: int, detail, error_kind: str | None = None, **extra) -> dict:
    body = {
        "error": True,
        "status_code": status_code,
        "detail": detail,
        "error_kind": error_kind,
        "timestamp": utcnow().isoformat(),
    }
    body.update(extra)
    return body


def register_error_handlers(app: FastAPI) -> None:
    """Register standard error handlers on the app."""

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(request: Request, exc: StarletteHTTPException):
        return JSONResponse(status_code=exc.status_code, content=error_body(exc.status_code, exc.detail))

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        return JSONResponse(
            status_code=422,
            content=error_body(
                422, "Validation error", ErrorKind.INVALID_INPUT.value,
                errors=[{"loc": list(e.get("loc", ())), "msg": e.get("msg"), "type": e.get("type")} for e in exc.errors()],
            ),
        )

    @app.exception_handler(BastionError)
    async def bastion_exception_handler(request: Request, exc: BastionError):
        status_code = status_for_kind(exc.kind)
        logger.warning("request_failed", path=str(request.url.path), error=str(exc), error_kind=exc.kind.value)
        return JSONResponse(status_code=status_code, content=error_body(status_code, str(exc), exc.kind.value))

    @app.exception_handler(Exception)
    async def unhandled_exception_handler(request: Request, exc: Exception):
        logger.error(
            "unhandled_exception",
            error=str(exc),
            path=str(request.url.path),
            exc_info=True,
        )
        return JSONResponse(
            status_code=500,
            content=error_body(500, "Internal server error", ErrorKind.INTERNAL.value),
        )
