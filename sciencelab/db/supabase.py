"""Process-wide async Supabase client.

Every repository goes through ``get_supabase()``; the client is created on
first use so importing the app never touches the network.
"""
from __future__ import annotations

import asyncio
import logging
from typing import Optional

from supabase import AsyncClient, create_async_client

from sciencelab.core.config import get_settings

logger = logging.getLogger("db.supabase")

_client: Optional[AsyncClient] = None
_lock = asyncio.Lock()


async def get_supabase() -> AsyncClient:
    global _client
    if _client is not None:
        return _client
    async with _lock:
        if _client is None:
            settings = get_settings()
            if not settings.supabase_configured:
                raise RuntimeError("SUPABASE_URL and a Supabase key must be set")
            try:
                _client = await create_async_client(settings.supabase_url, settings.supabase_key)
            except Exception as exc:  # pragma: no cover (network/init failure)
                logger.error("supabase_client_init_failed url=%s error=%s", settings.supabase_url, exc)
                raise RuntimeError("Could not create Supabase async client") from exc
            role = "service_role" if settings.supabase_service_role_key else "anon"
            logger.info("supabase_client_ready url=%s key=%s", settings.supabase_url, role)
    return _client


__all__ = ["get_supabase"]
