"""Application exceptions and their JSON rendering."""

import logging

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

logger = logging.getLogger(__name__)


class AppException(Exception):
    """Base exception rendered as {"success": false, "error", "code"}."""

    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR
    default_message: str = "Something went wrong"
    default_code: str = "INTERNAL_ERROR"

    def __init__(self, message: str | None = None, code: str | None = None):
        self.message = message or self.default_message
        self.code = code or self.default_code
        super().__init__(self.message)


class BadRequestException(AppException):
    status_code = status.HTTP_400_BAD_REQUEST
    default_message = "Bad request"
    default_code = "VALIDATION_ERROR"


class UnauthorizedException(AppException):
    status_code = status.HTTP_401_UNAUTHORIZED
    default_message = "Authentication required"
    default_code = "NOT_AUTHENTICATED"


class SessionExpiredException(UnauthorizedException):
    default_message = "Session expired. Please sign in again."
    default_code = "SESSION_EXPIRED"


class ForbiddenException(AppException):
    status_code = status.HTTP_403_FORBIDDEN
    default_message = "You are not allowed to do that"
    default_code = "FORBIDDEN"


class NotFoundException(AppException):
    status_code = status.HTTP_404_NOT_FOUND
    default_message = "Not found"
    default_code = "NOT_FOUND"


class ConflictException(AppException):
    status_code = status.HTTP_409_CONFLICT
    default_message = "Conflict"
    default_code = "CONFLICT"


class UpstreamException(AppException):
    """Spotify failures reported to the caller with a generic message."""

    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    default_message = "Failed to fetch data from Spotify"
    default_code = "UPSTREAM_ERROR"


HTTP_ERROR_CODES = {
    400: "VALIDATION_ERROR",
    401: "NOT_AUTHENTICATED",
    403: "FORBIDDEN",
    404: "NOT_FOUND",
    405: "METHOD_NOT_ALLOWED",
}


def error_body(message: str, code: str) -> dict:
    return {"success": False, "error": message, "code": code}


def register_exception_handlers(app: FastAPI, debug: bool = False) -> None:
    """Attach JSON handlers for app, validation and unexpected errors."""

    @app.exception_handler(AppException)
    async def app_exception_handler(request: Request, exc: AppException):
        return JSONResponse(
            status_code=exc.status_code,
            content=error_body(exc.message, exc.code),
        )

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(request: Request, exc: StarletteHTTPException):
        code = HTTP_ERROR_CODES.get(exc.status_code, "HTTP_ERROR")
        return JSONResponse(
            status_code=exc.status_code,
            content=error_body(str(exc.detail), code),
            headers=getattr(exc, "headers", None),
        )

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        errors = exc.errors()
        message = "Invalid request"
        if errors:
            first = errors[0]
            field = ".".join(str(part) for part in first.get("loc", ()) if part != "body")
            message = f"{field}: {first.get('msg')}" if field else first.get("msg", message)
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content=error_body(message, "VALIDATION_ERROR"),
        )

    @app.exception_handler(Exception)
    async def unhandled_exception_handler(request: Request, exc: Exception):
        logger.exception("Unhandled error on %s %s", request.method, request.url.path)
        body = error_body("Something went wrong!", "INTERNAL_ERROR")
        if debug:
            body["message"] = str(exc)
        return JSONResponse(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, content=body)
