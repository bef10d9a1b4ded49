"""
Error taxonomy and the handlers that render it as the API envelope.
"""
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError
from starlette.exceptions import HTTPException

from chatrelay.core.logging import get_logger

logger = get_logger(__name__)


class ChatError(Exception):
    """Base class for errors that map onto an HTTP status."""

    status_code = 500
    default_message = "Server error"

    def __init__(self, message: str = None):
        self.message = message or self.default_message
        super().__init__(self.message)


class Unauthenticated(ChatError):
    status_code = 401
    default_message = "Invalid token"


class Forbidden(ChatError):
    status_code = 403
    default_message = "Not authorized"


class NotFound(ChatError):
    status_code = 404
    default_message = "Not found"


class Conflict(ChatError):
    status_code = 409
    default_message = "Already exists"


class Malformed(ChatError):
    status_code = 400
    default_message = "Malformed request"


class StoreUnavailable(ChatError):
    status_code = 500
    default_message = "Store unavailable"


def error_response(status_code: int, message: str) -> JSONResponse:
    """Build the ``{success: false, message}`` envelope."""
    return JSONResponse(
        status_code=status_code,
        content={"success": False, "message": message},
    )


async def handle_chat_error(request: Request, exc: ChatError) -> JSONResponse:
    log = logger.error if exc.status_code >= 500 else logger.info
    log(
        "Request failed",
        extra={
            "extra_data": {
                "path": request.url.path,
                "status": exc.status_code,
                "error": type(exc).__name__,
                "detail": exc.message,
            }
        }
    )
    return error_response(exc.status_code, exc.message)


async def handle_http_exception(request: Request, exc: HTTPException) -> JSONResponse:
    return error_response(exc.status_code, str(exc.detail))


async def handle_validation_error(request: Request, exc: RequestValidationError) -> JSONResponse:
    errors = exc.errors()
    first = errors[0] if errors else {}
    field = ".".join(str(part) for part in first.get("loc", ()) if part != "body")
    message = first.get("msg", "Invalid request")
    if field:
        message = f"{field}: {message}"
    logger.info(
        "Rejected malformed request",
        extra={"extra_data": {"path": request.url.path, "detail": message}}
    )
    return error_response(Malformed.status_code, message)


async def handle_store_error(request: Request, exc: SQLAlchemyError) -> JSONResponse:
    logger.error(
        "Durable store failure",
        exc_info=exc,
        extra={"extra_data": {"path": request.url.path}}
    )
    return error_response(StoreUnavailable.status_code, StoreUnavailable.default_message)


def register_exception_handlers(app: FastAPI) -> None:
    """Install the envelope-producing handlers on the application."""
    app.add_exception_handler(ChatError, handle_chat_error)
    app.add_exception_handler(HTTPException, handle_http_exception)
    app.add_exception_handler(RequestValidationError, handle_validation_error)
    app.add_exception_handler(SQLAlchemyError, handle_store_error)
