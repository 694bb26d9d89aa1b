"""Store error taxonomy."""

import enum
from typing import Any

from libs.common.error_handler import AppError


class ErrorCode(str, enum.Enum):
    VALIDATION = "VALIDATION"
    UNAUTHORIZED = "UNAUTHORIZED"
    FORBIDDEN = "FORBIDDEN"
    NOT_FOUND = "NOT_FOUND"
    CONFLICT = "CONFLICT"
    RATE_LIMITED = "RATE_LIMITED"
    UPSTREAM_FAILURE = "UPSTREAM_FAILURE"
    INVARIANT_VIOLATION = "INVARIANT_VIOLATION"


HTTP_STATUS = {
    ErrorCode.VALIDATION: 400,
    ErrorCode.UNAUTHORIZED: 401,
    ErrorCode.FORBIDDEN: 403,
    ErrorCode.NOT_FOUND: 404,
    ErrorCode.CONFLICT: 409,
    ErrorCode.RATE_LIMITED: 429,
    ErrorCode.UPSTREAM_FAILURE: 502,
    ErrorCode.INVARIANT_VIOLATION: 422,
}

# Transient categories: the caller may back off and retry with the same key
RETRYABLE = {ErrorCode.CONFLICT, ErrorCode.RATE_LIMITED, ErrorCode.UPSTREAM_FAILURE}


class StoreError(AppError):
    """A store operation failed with a categorised, user-visible error."""

    def __init__(self, code: ErrorCode, message: str, **extra: Any):
        super().__init__(code.value, message, status_code=HTTP_STATUS[code], **extra)
        self.error_code = code

    @property
    def retryable(self) -> bool:
        return self.error_code in RETRYABLE
