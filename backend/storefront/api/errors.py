"""
Translate domain errors into HTTP responses.

Services raise AppError subclasses; this is the single place they become
status codes. The internal code is always logged, the client only gets
the public message (download failures share one generic message so the
endpoint cannot be used to probe who owns what).
"""

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from storefront.core.errors import AppError
from storefront.core.logging import get_logger

logger = get_logger(__name__)


async def app_error_handler(request: Request, exc: AppError) -> JSONResponse:
    log = logger.warning if exc.status_code < 500 else logger.error
    log(
        "request_error",
        code=exc.code,
        status_code=exc.status_code,
        retryable=exc.retryable,
        detail=exc.message,
    )
    headers = {"Retry-After": "1"} if exc.retryable else None
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict(), headers=headers)


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(AppError, app_error_handler)
