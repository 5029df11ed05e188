import logging
from http import HTTPStatus
from typing import Any, Dict

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pymongo.errors import PyMongoError
from starlette.exceptions import HTTPException as StarletteHTTPException

from . import constants

logger = logging.getLogger(__name__)


def error_body(status_code: int, message: str) -> Dict[str, Any]:
    try:
        phrase = HTTPStatus(status_code).phrase
    except ValueError:
        phrase = "Error"
    return {"error": phrase, "message": message}


class ChatError(Exception):
    """Base error raised by the chat services.

    Routers let these propagate; the handlers installed by
    `register_exception_handlers` turn them into `{error, message}` bodies.
    """

    status_code: int = 400

    def __init__(self, message: str, status_code: int = None):
        self.message = message
        if status_code is not None:
            self.status_code = status_code
        super().__init__(message)


class AuthError(ChatError):
    status_code = 401


class InvalidInputError(ChatError):
    status_code = 400


class ForbiddenError(ChatError):
    status_code = 403


class NotFoundError(ChatError):
    status_code = 404


class ConflictError(ChatError):
    status_code = 409


class InternalError(ChatError):
    status_code = 500

    def __init__(self, message: str = constants.ERR_SERVER, status_code: int = None):
        super().__init__(message, status_code)


def register_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(ChatError)
    async def _chat_error_handler(_request: Request, exc: ChatError) -> JSONResponse:
        if exc.status_code >= 500:
            logger.error("internal error: %s", exc.message)
        return JSONResponse(status_code=exc.status_code, content=error_body(exc.status_code, exc.message))

    @app.exception_handler(RequestValidationError)
    async def _validation_handler(_request: Request, exc: RequestValidationError) -> JSONResponse:
        logger.debug("request validation failed: %s", exc.errors())
        return JSONResponse(status_code=400, content=error_body(400, constants.ERR_INVALID_DATA))

    @app.exception_handler(StarletteHTTPException)
    async def _http_handler(_request: Request, exc: StarletteHTTPException) -> JSONResponse:
        message = exc.detail if isinstance(exc.detail, str) else HTTPStatus(exc.status_code).phrase
        return JSONResponse(
            status_code=exc.status_code,
            content=error_body(exc.status_code, message),
            headers=getattr(exc, "headers", None),
        )

    @app.exception_handler(PyMongoError)
    async def _store_handler(request: Request, exc: PyMongoError) -> JSONResponse:
        logger.exception("store error on %s %s", request.method, request.url.path)
        return JSONResponse(status_code=500, content=error_body(500, constants.ERR_SERVER))

    @app.exception_handler(Exception)
    async def _unhandled_handler(request: Request, exc: Exception) -> JSONResponse:
        logger.exception("unhandled error on %s %s", request.method, request.url.path)
        return JSONResponse(status_code=500, content=error_body(500, constants.ERR_SERVER))
