"""
Error Mapping

Translates service errors into HTTP responses. Bodies carry the error code
and message only.
"""

from typing import Dict, Type

import structlog
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from ratings.reviews.errors import (
    DuplicateReview,
    InvalidStateTransition,
    NotFound,
    RatingsError,
    StoreUnavailable,
    Unauthorized,
    ValidationError,
)

logger = structlog.get_logger(__name__)

STATUS_CODES: Dict[Type[RatingsError], int] = {
    NotFound: 404,
    DuplicateReview: 409,
    Unauthorized: 403,
    InvalidStateTransition: 409,
    ValidationError: 422,
    StoreUnavailable: 503,
}


def status_for(error: RatingsError) -> int:
    for error_type in type(error).__mro__:
        if error_type in STATUS_CODES:
            return STATUS_CODES[error_type]
    return 500


async def ratings_error_handler(request: Request, exc: RatingsError) -> JSONResponse:
    status_code = status_for(exc)
    log = logger.warning if status_code < 500 else logger.error
    log(
        "Request failed",
        path=request.url.path,
        error=exc.code,
        status_code=status_code,
        message=exc.message,
    )
    return JSONResponse(
        status_code=status_code,
        content={"error": exc.code, "message": exc.message},
    )


def register_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(RatingsError, ratings_error_handler)
