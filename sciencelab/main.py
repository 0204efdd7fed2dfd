"""FastAPI entry point for the Science Lab progression backend."""

from __future__ import annotations

import logging
import time
import uuid
from datetime import datetime, timezone
from typing import Any, Dict

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware

from sciencelab.core.config import get_settings
from sciencelab.features.progression.endpoints import router as progression_router
from sciencelab.features.dashboard.endpoints import router as dashboard_router

_settings = get_settings()
_START_TIME = datetime.now(timezone.utc)

logging.basicConfig(level=logging.DEBUG if _settings.debug else logging.INFO)

app = FastAPI(title=_settings.app_name)


# ------------------------
# CORS Setup
# ------------------------
app.add_middleware(
    CORSMiddleware,
    allow_origins=_settings.allow_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ------------------------
# Custom Middlewares
# ------------------------
@app.middleware("http")
async def request_id_middleware(request: Request, call_next):
    incoming = request.headers.get("X-Request-Id") or request.headers.get("X-Request-ID")
    req_id = incoming or str(uuid.uuid4())
    request.state.request_id = req_id
    logger = logging.getLogger("request")
    t0 = time.perf_counter()
    logger.info("request.start request_id=%s method=%s path=%s", req_id, request.method, request.url.path)
    response = await call_next(request)
    dt = int((time.perf_counter() - t0) * 1000)
    response.headers["X-Request-Id"] = req_id
    logger.info(
        "request.end request_id=%s path=%s status_code=%s ms=%d",
        req_id,
        request.url.path,
        response.status_code,
        dt,
    )
    return response


# ------------------------
# Routers
# ------------------------
app.include_router(progression_router)
app.include_router(dashboard_router)


# ------------------------
# Meta endpoints
# ------------------------
@app.get("/", tags=["meta"], summary="API Root")
async def root():
    return {
        "name": _settings.app_name,
        "status": "ok",
        "docs": "/docs",
        "health": "/healthz",
    }


@app.get("/healthz", tags=["meta"], summary="Liveness and readiness check")
async def healthz() -> Dict[str, Any]:
    now = datetime.now(timezone.utc)
    tags = sorted({t for r in app.routes for t in getattr(r, "tags", [])})
    return {
        "status": "ok" if _settings.supabase_configured else "degraded",
        "time_utc": now.isoformat(),
        "uptime_seconds": round((now - _START_TIME).total_seconds(), 2),
        "version": _settings.app_version,
        "environment": "debug" if _settings.debug else "prod",
        "components": {
            "supabase": "configured" if _settings.supabase_configured else "missing-config",
        },
        "counts": {"routes": len(app.routes)},
        "tags": tags,
    }
