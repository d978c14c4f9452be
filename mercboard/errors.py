"""
Error taxonomy for the board's core.

Every failure raised by validators, the mutation coordinator or the
collection store derives from ``MercBoardError`` and carries the HTTP status
it is surfaced with. Handlers registered in ``install_error_handlers`` render
all of them, plus FastAPI's own request/HTTP errors, as
``{"success": false, "message": ...}``.
"""
import structlog
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException


logger = structlog.get_logger(__name__)


class MercBoardError(Exception):
    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(MercBoardError):
    """Malformed, out-of-range or unresolvable input. Never mutates state."""
    status_code = 400


class NotFoundError(MercBoardError):
    status_code = 404


class ConflictError(MercBoardError):
    """The request contradicts something currently true of the data."""
    status_code = 409


class LockTimeoutError(MercBoardError):
    """A mutation lock could not be acquired in time. Safe to retry."""
    status_code = 503


class StorageError(MercBoardError):
    status_code = 500


def error_body(message: str) -> dict:
    return {"success": False, "message": message}


async def _board_error_handler(request: Request, exc: MercBoardError):
    if exc.status_code >= 500:
        logger.error("request_failed", path=request.url.path, error=exc.message, kind=type(exc).__name__)
    return JSONResponse(status_code=exc.status_code, content=error_body(exc.message))


async def _http_error_handler(request: Request, exc: HTTPException):
    return JSONResponse(status_code=exc.status_code, content=error_body(str(exc.detail)), headers=exc.headers)


async def _request_validation_handler(request: Request, exc: RequestValidationError):
    parts = []
    for err in exc.errors():
        loc = ".".join(str(x) for x in err.get("loc", ()) if x != "body")
        parts.append(f"{loc}: {err.get('msg')}" if loc else str(err.get("msg")))
    return JSONResponse(status_code=400, content=error_body("; ".join(parts) or "Invalid request"))


def install_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(MercBoardError, _board_error_handler)
    app.add_exception_handler(HTTPException, _http_error_handler)
    app.add_exception_handler(RequestValidationError, _request_validation_handler)
