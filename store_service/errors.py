"""Operational errors and the exception handlers that render them."""
import logging
import re
import traceback
from typing import Any, Optional

import jwt
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from sqlalchemy.exc import IntegrityError
from starlette.exceptions import HTTPException as StarletteHTTPException

from store_service.config import ENVIRONMENT
from store_service.responses import error

logger = logging.getLogger(__name__)


class ApiError(Exception):
    """
    Error with an explicit HTTP status, surfaced verbatim to the client.

    Args:
        message: Client-facing message
        status_code: HTTP status code
        errors: Optional structured details (validation failures)
    """

    def __init__(
        self,
        message: str,
        status_code: int,
        errors: Optional[Any] = None
    ):
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.errors = errors

    @property
    def status(self) -> str:
        return "fail" if str(self.status_code).startswith("4") else "error"


def _error_response(message: str, status_code: int, errors: Any = None, headers=None) -> JSONResponse:
    return JSONResponse(status_code=status_code, content=error(message, status_code, errors), headers=headers)


async def api_error_handler(request: Request, exc: ApiError) -> JSONResponse:
    return _error_response(exc.message, exc.status_code, exc.errors)


async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Pydantic failures become 400s; a malformed path id reads like a cast error."""
    details = exc.errors()
    path_errors = [d for d in details if d.get("loc", ())[:1] == ("path",)]
    if path_errors and len(path_errors) == len(details):
        first = path_errors[0]
        field = first["loc"][-1]
        return _error_response(f"Invalid {field}: {first.get('input')}.", 400)

    errors = [
        {"message": d.get("msg"), "path": [str(part) for part in d.get("loc", ())[1:]]}
        for d in details
    ]
    return _error_response("Validation Error", 400, errors)


_DUPLICATE_VALUE = re.compile(r"Key \((?P<field>[^)]+)\)=\((?P<value>[^)]*)\)")


async def integrity_error_handler(request: Request, exc: IntegrityError) -> JSONResponse:
    detail = str(exc.orig)
    if "unique" not in detail.lower() and "duplicate" not in detail.lower():
        logger.warning("Integrity error", extra={"path": request.url.path, "error": detail})
        return _error_response("Invalid input data.", 400)

    match = _DUPLICATE_VALUE.search(detail)
    value = f'"{match.group("value")}"' if match else detail.split(":")[-1].strip()
    return _error_response(f"Duplicate field value: {value}. Please use another value!", 400)


async def expired_token_handler(request: Request, exc: jwt.ExpiredSignatureError) -> JSONResponse:
    return _error_response("Your token has expired! Please log in again.", 401)


async def invalid_token_handler(request: Request, exc: jwt.InvalidTokenError) -> JSONResponse:
    return _error_response("Invalid token. Please log in again!", 401)


async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    if exc.status_code == 404:
        return JSONResponse(
            status_code=404,
            content={"status": "error", "message": f"Cannot find {request.url.path} on this server"},
        )
    return _error_response(str(exc.detail), exc.status_code, headers=getattr(exc, "headers", None))


async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.error("Unhandled error", exc_info=exc, extra={
        "path": request.url.path,
        "method": request.method
    })
    if ENVIRONMENT == "development":
        return JSONResponse(status_code=500, content={
            "status": "error",
            "message": str(exc) or exc.__class__.__name__,
            "stack": traceback.format_exception(type(exc), exc, exc.__traceback__),
        })
    return _error_response("Something went wrong", 500)


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(ApiError, api_error_handler)
    app.add_exception_handler(RequestValidationError, validation_error_handler)
    app.add_exception_handler(IntegrityError, integrity_error_handler)
    app.add_exception_handler(jwt.ExpiredSignatureError, expired_token_handler)
    app.add_exception_handler(jwt.InvalidTokenError, invalid_token_handler)
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(Exception, unhandled_error_handler)
