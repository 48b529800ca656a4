from __future__ import annotations

import logging

from fastapi import FastAPI, Request, status
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pymongo.errors import PyMongoError
from slowapi.errors import RateLimitExceeded
from sqlalchemy.exc import IntegrityError

logger = logging.getLogger(__name__)

_UNIQUE_MARKERS = ("unique", "duplicate")


def error_body(code: str, message: str, **extra: object) -> dict:
    """Build the JSON error envelope shared by every error response."""
    detail = {"code": code, "message": message}
    detail.update(extra)
    return {"detail": detail}


def describe_integrity_error(exc: IntegrityError) -> tuple[int, str, str]:
    """Map a database constraint violation to a status code and a user-facing message."""
    message = str(exc.orig).lower()
    if any(marker in message for marker in _UNIQUE_MARKERS):
        if "isbn" in message:
            return status.HTTP_409_CONFLICT, "duplicate_entry", "A book with this ISBN already exists."
        if "email" in message:
            return status.HTTP_409_CONFLICT, "duplicate_entry", "Email already registered."
        if "username" in message:
            return status.HTTP_409_CONFLICT, "duplicate_entry", "Username already taken."
        if "reviews" in message or "uq_reviews_user_book" in message:
            return status.HTTP_409_CONFLICT, "duplicate_entry", "User has already reviewed this book."
        return status.HTTP_409_CONFLICT, "duplicate_entry", "A record with this information already exists."
    if "foreign key" in message:
        return status.HTTP_400_BAD_REQUEST, "constraint_violation", "Referenced record does not exist."
    return status.HTTP_400_BAD_REQUEST, "constraint_violation", "The request violates a data constraint."


async def _validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content=error_body(
            "validation_error",
            "Request validation failed.",
            errors=jsonable_encoder(exc.errors(), custom_encoder={Exception: str}),
        ),
    )


async def _integrity_error_handler(request: Request, exc: IntegrityError) -> JSONResponse:
    status_code, code, message = describe_integrity_error(exc)
    logger.warning("Integrity error on %s %s: %s", request.method, request.url.path, exc.orig)
    return JSONResponse(status_code=status_code, content=error_body(code, message))


async def _rate_limit_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    return JSONResponse(
        status_code=status.HTTP_429_TOO_MANY_REQUESTS,
        content=error_body(
            "too_many_requests",
            "Too many requests from this client, please try again later.",
            limit=str(exc.detail),
        ),
    )


async def _mongo_error_handler(request: Request, exc: PyMongoError) -> JSONResponse:
    logger.error("Document store error on %s %s: %s", request.method, request.url.path, exc)
    return JSONResponse(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        content=error_body("analytics_unavailable", "Reading analytics are temporarily unavailable."),
    )


async def _unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content=error_body("internal_error", "Internal server error."),
    )


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(RequestValidationError, _validation_error_handler)
    app.add_exception_handler(IntegrityError, _integrity_error_handler)
    app.add_exception_handler(RateLimitExceeded, _rate_limit_handler)
    app.add_exception_handler(PyMongoError, _mongo_error_handler)
    app.add_exception_handler(Exception, _unhandled_error_handler)
