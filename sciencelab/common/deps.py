"""Shared FastAPI dependencies for authentication and authorization."""

from __future__ import annotations

import asyncio
import logging
import time
from functools import lru_cache
from typing import Callable

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from pydantic import BaseModel

from sciencelab.core.config import get_settings
from sciencelab.db.supabase import get_supabase

logger = logging.getLogger("auth.deps")
security = HTTPBearer(auto_error=True)


class CurrentUser(BaseModel):
    """Minimal user identity shared across endpoints."""
    id: str
    email: str
    role: str = "student"


@lru_cache()
def _staff_roles() -> frozenset[str]:
    return frozenset({"teacher", "admin"})


async def _lookup_role(client, user_id: str) -> str:
    try:
        resp = await client.table("profiles").select("role").eq("id", user_id).limit(1).execute()
    except Exception as exc:  # noqa: BLE001
        logger.warning("auth_role_lookup_failed user_id=%s error=%s", user_id, exc)
        return "student"
    rows = getattr(resp, "data", None) or []
    return (rows[0].get("role") if rows else None) or "student"


async def get_current_user(
    request: Request,
    credentials: HTTPAuthorizationCredentials = Depends(security),
) -> CurrentUser:
    """Resolve the bearer token through Supabase Auth and return a typed identity."""
    client = await get_supabase()
    token = credentials.credentials
    try:
        t0 = time.perf_counter()
        auth_user = await asyncio.wait_for(client.auth.get_user(token), timeout=get_settings().auth_whoami_timeout)
        ms = int((time.perf_counter() - t0) * 1000)
        if ms > 50:
            logger.info("auth.get_user_ms=%d", ms)
    except Exception as exc:  # noqa: BLE001
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid authentication credentials") from exc

    if not auth_user or not auth_user.user:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid authentication credentials")

    sup_user = auth_user.user
    email = sup_user.email or (sup_user.user_metadata or {}).get("email") or ""
    role = await _lookup_role(client, str(sup_user.id))
    current = CurrentUser(id=str(sup_user.id), email=email, role=role)

    request_id = getattr(request.state, "request_id", None)
    logger.info(
        "auth_resolved user_id=%s role=%s request_id=%s path=%s",
        current.id,
        current.role,
        request_id,
        request.url.path,
    )
    return current


def require_staff() -> Callable[..., CurrentUser]:
    """Dependency factory admitting teachers and admins only."""

    async def _dep(current_user: CurrentUser = Depends(get_current_user)) -> CurrentUser:
        if current_user.role not in _staff_roles():
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Teacher or admin role required")
        return current_user

    return _dep


__all__ = ["CurrentUser", "get_current_user", "require_staff"]
