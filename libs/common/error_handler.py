"""Uniform JSON error envelopes.

Every failure leaves the service as ``{"ok": false, "errorCode": ..., "message": ...}``
with an HTTP status that matches the error category.
"""

from typing import Any, Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from libs.common.logging import get_logger
from libs.db.transaction import TransactionFailed

logger = get_logger(__name__)

_CODE_BY_STATUS = {
    400: "VALIDATION",
    401: "UNAUTHORIZED",
    403: "FORBIDDEN",
    404: "NOT_FOUND",
    405: "VALIDATION",
    409: "CONFLICT",
    422: "VALIDATION",
    429: "RATE_LIMITED",
}


class AppError(Exception):
    """Base for errors that carry their own code and HTTP status."""

    status_code = 500

    def __init__(self, code: str, message: str, status_code: Optional[int] = None, **extra: Any):
        super().__init__(message)
        self.code = code
        self.message = message
        if status_code is not None:
            self.status_code = status_code
        self.extra = extra

    def to_payload(self) -> dict[str, Any]:
        return {"ok": False, "errorCode": self.code, "message": self.message, **self.extra}


def error_payload(code: str, message: str, **extra: Any) -> dict[str, Any]:
    return {"ok": False, "errorCode": code, "message": message, **extra}


async def app_error_handler(request: Request, exc: AppError) -> JSONResponse:
    log = logger.warning if exc.status_code < 500 else logger.error
    log("%s %s failed: %s (%s)", request.method, request.url.path, exc.code, exc.message)
    return JSONResponse(status_code=exc.status_code, content=exc.to_payload())


async def validation_error_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    errors = [
        {"loc": list(err.get("loc", ())), "msg": err.get("msg")}
        for err in exc.errors()
    ]
    return JSONResponse(
        status_code=400,
        content=error_payload("VALIDATION", "Invalid request payload", details=errors),
    )


async def transaction_failed_handler(
    request: Request, exc: TransactionFailed
) -> JSONResponse:
    return JSONResponse(
        status_code=502,
        content=error_payload(
            "UPSTREAM_FAILURE", "Storage unavailable, please retry", attempts=exc.attempts
        ),
    )


async def http_exception_handler(
    request: Request, exc: StarletteHTTPException
) -> JSONResponse:
    code = _CODE_BY_STATUS.get(exc.status_code, "UPSTREAM_FAILURE")
    message = exc.detail if isinstance(exc.detail, str) else "Request failed"
    return JSONResponse(
        status_code=exc.status_code,
        content=error_payload(code, message),
        headers=getattr(exc, "headers", None),
    )


async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.error(
        "Unhandled error on %s %s", request.method, request.url.path, exc_info=exc
    )
    return JSONResponse(
        status_code=500,
        content=error_payload("UPSTREAM_FAILURE", "Internal error, please retry"),
    )


def add_exception_handlers(app: FastAPI) -> None:
    """Register the envelope handlers on an app."""
    app.add_exception_handler(AppError, app_error_handler)
    app.add_exception_handler(TransactionFailed, transaction_failed_handler)
    app.add_exception_handler(RequestValidationError, validation_error_handler)
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)
