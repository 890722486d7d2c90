"""Shared FastAPI dependencies for the API routes."""
from __future__ import annotations

from typing import Optional
from uuid import UUID

from fastapi import Header, HTTPException, status

from app.core.context import user_id_ctx_var
from app.core.middleware import USER_ID_HEADER


def get_current_user_id(x_user_id: Optional[str] = Header(default=None, alias=USER_ID_HEADER)) -> UUID:
    """Resolve the caller from the header set by the upstream auth layer."""
    if not x_user_id:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Missing user identity")
    try:
        user_id = UUID(x_user_id)
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid user identity") from exc
    user_id_ctx_var.set(str(user_id))
    return user_id
