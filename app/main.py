"""FastAPI app for the multi-test batch engine."""

from __future__ import annotations

import logging
import os
import uuid
from datetime import datetime, timezone
from time import perf_counter
from typing import Any, Dict

from fastapi import FastAPI, Request

from app.core.config import get_settings
from app.features.judge0.endpoints import router as judge0_router
from app.features.multitest.endpoints import router as multitest_router

_settings = get_settings()
logging.basicConfig(
    level=getattr(logging, _settings.log_level, logging.INFO),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)

app = FastAPI(title=_settings.app_name, debug=_settings.debug)
_START_TIME = datetime.now(timezone.utc)
_request_logger = logging.getLogger("request")


@app.middleware("http")
async def request_id_middleware(request: Request, call_next):
    req_id = request.headers.get("X-Request-Id") or uuid.uuid4().hex
    request.state.request_id = req_id
    started = perf_counter()
    _request_logger.info("request.start", extra={"request_id": req_id, "path": request.url.path, "method": request.method})
    try:
        response = await call_next(request)
    except Exception:
        _request_logger.exception(
            "request.error",
            extra={"request_id": req_id, "path": request.url.path, "duration_ms": int((perf_counter() - started) * 1000)},
        )
        raise
    response.headers["X-Request-Id"] = req_id
    _request_logger.info(
        "request.end",
        extra={
            "request_id": req_id,
            "path": request.url.path,
            "status_code": response.status_code,
            "duration_ms": int((perf_counter() - started) * 1000),
        },
    )
    return response


app.include_router(judge0_router)
app.include_router(multitest_router)


@app.get("/", tags=["meta"], summary="API Root")
async def root():
    return {
        "name": _settings.app_name,
        "status": "ok",
        "docs": "/docs",
        "health": "/healthz",
    }


@app.get("/healthz", tags=["meta"], summary="Liveness / readiness probe")
async def healthz() -> Dict[str, Any]:
    now = datetime.now(timezone.utc)
    judge0_ready = bool(_settings.judge0_api_url)
    return {
        "status": "ok" if judge0_ready else "degraded",
        "time_utc": now.isoformat(),
        "uptime_seconds": round((now - _START_TIME).total_seconds(), 2),
        "version": os.getenv("APP_VERSION", "dev"),
        "environment": "debug" if _settings.debug else "prod",
        "components": {
            "judge0": "configured" if judge0_ready else "missing-config",
            "dispatch_mode": _settings.judge0_dispatch_mode,
        },
        "limits": {
            "max_cpu_time_s": _settings.judge0_max_cpu_time_s,
            "max_wall_time_s": _settings.judge0_max_wall_time_s,
            "max_batch_submissions": _settings.judge0_max_batch_submissions,
            "safety_margin": _settings.batch_safety_margin,
        },
    }
