import logging
import traceback

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

logger = logging.getLogger("forum.errors")


class ForumError(Exception):
    """Base error carrying the HTTP status it maps to"""
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    default_message = "Internal server error"

    def __init__(self, message: str = None):
        self.message = message or self.default_message
        super().__init__(self.message)


class BadRequest(ForumError):
    status_code = status.HTTP_400_BAD_REQUEST
    default_message = "Bad request"


class Unauthenticated(ForumError):
    status_code = status.HTTP_401_UNAUTHORIZED
    default_message = "Authentication required"


class Forbidden(ForumError):
    status_code = status.HTTP_403_FORBIDDEN
    default_message = "Forbidden"


class NotFound(ForumError):
    status_code = status.HTTP_404_NOT_FOUND
    default_message = "Not found"


class Conflict(ForumError):
    status_code = status.HTTP_409_CONFLICT
    default_message = "Conflict"


class InternalError(ForumError):
    pass


def validation_errors(exc: RequestValidationError):
    """Flatten pydantic errors into [{field, message}] entries"""
    errors = []
    for err in exc.errors():
        # Drop the "body"/"query" prefix, keep the field path
        loc = [str(part) for part in err.get("loc", ()) if part not in ("body", "query", "path")]
        errors.append({
            "field": ".".join(loc) or None,
            "message": err.get("msg", "invalid value"),
        })
    return errors


def register_exception_handlers(app: FastAPI, debug: bool = False):
    """Map the error taxonomy onto JSON responses"""

    @app.exception_handler(ForumError)
    async def forum_error_handler(request: Request, exc: ForumError):
        content = {"detail": exc.message}
        if debug and isinstance(exc, InternalError):
            content["trace"] = traceback.format_exception(exc)
        return JSONResponse(status_code=exc.status_code, content=content)

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError):
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content={"detail": "Bad request", "errors": validation_errors(exc)},
        )

    @app.exception_handler(StarletteHTTPException)
    async def http_error_handler(request: Request, exc: StarletteHTTPException):
        return JSONResponse(status_code=exc.status_code, content={"detail": exc.detail})

    @app.exception_handler(Exception)
    async def unexpected_error_handler(request: Request, exc: Exception):
        logger.exception("Unhandled error on %s %s", request.method, request.url.path)
        content = {"detail": InternalError.default_message}
        if debug:
            content["trace"] = traceback.format_exception(exc)
        return JSONResponse(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, content=content)
