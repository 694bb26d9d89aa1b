"""Shared helper functions for store routers."""

from typing import Any, Optional, Union

from fastapi import Header
from fastapi.responses import JSONResponse
from libs.auth.models import AuthUser
from services.store_service.errors import ErrorCode, StoreError
from services.store_service.services.idempotency import Operation, with_idempotency
from services.store_service.services.rate_limiter import enforce_rate_limit
from sqlalchemy.ext.asyncio import AsyncSession


def idempotency_key_header(
    idempotency_key: Optional[str] = Header(None, alias="Idempotency-Key", max_length=200),
) -> Optional[str]:
    """Read the Idempotency-Key header; blank counts as absent."""
    if idempotency_key is None:
        return None
    return idempotency_key.strip() or None


def scope_key(user: AuthUser, action: str, idempotency_key: Optional[str]) -> Optional[str]:
    """Namespace a caller key by user and action."""
    if not idempotency_key:
        return None
    return f"{user.user_id}:{action}:{idempotency_key}"


def ensure_user_match(user: AuthUser, provided_user_id: Optional[str]) -> None:
    """A body ``user_id``, when sent, must name the authenticated caller."""
    if provided_user_id and provided_user_id != user.user_id:
        raise StoreError(ErrorCode.FORBIDDEN, "User mismatch")


async def run_guarded(
    db: AsyncSession,
    *,
    user: AuthUser,
    action: str,
    idempotency_key: Optional[str],
    operation: Operation,
) -> Union[dict[str, Any], JSONResponse]:
    """Rate-limit, then run ``operation`` under the caller's idempotency key.

    Keys are scoped to the caller and action so two callers can never replay
    each other's responses. A request racing an in-flight one gets 202.
    """
    await enforce_rate_limit(db, user.user_id, action)

    result = await with_idempotency(
        db,
        scope_key(user, action, idempotency_key),
        operation,
        operation_name=action,
    )

    body = {**result.payload, "idempotency_key": idempotency_key, "reused": result.reused}
    if result.pending:
        return JSONResponse(status_code=202, content=body)
    return body
