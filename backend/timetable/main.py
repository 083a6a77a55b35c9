# timetable/main.py
from __future__ import annotations

import logging
import time
from contextlib import asynccontextmanager
from typing import Optional

import httpx
from fastapi import FastAPI, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from timetable.deps import Settings
from timetable.errors import TimetableError
from timetable.routers.timetable import router as timetable_router
from timetable.services.logging import (
    get_logger,
    new_trace_id,
    bind_trace_id,
    get_trace_id,
    log_kv,
)
from timetable.upstream.session import TimetableSession

LOG = get_logger("timetable")


def create_app(
    settings: Optional[Settings] = None,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> FastAPI:
    """
    Build the app. `transport` swaps the upstream HTTP transport (tests pass
    an httpx.MockTransport); production leaves it None.
    """

    # ---------- Lifespan (startup/shutdown) ----------
    @asynccontextmanager
    async def lifespan(app: FastAPI):
        cfg = settings or Settings.from_env()
        async with TimetableSession(cfg, transport=transport) as session:
            app.state.timetable = session
            yield
        # session exit stopped the sweeper, dropped the cache and closed httpx

    app = FastAPI(title="Timetable Backend", lifespan=lifespan)
    app.include_router(timetable_router)

    # ---------- CORS ----------
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["http://localhost:3000", "http://localhost:5173"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # ---------- Per-request trace middleware ----------
    @app.middleware("http")
    async def trace_middleware(request: Request, call_next):
        tid = new_trace_id()
        bind_trace_id(tid)

        start = time.perf_counter()
        response: Response | None = None
        try:
            response = await call_next(request)
        finally:
            duration_ms = int((time.perf_counter() - start) * 1000)
            log_kv(
                LOG,
                logging.INFO,
                "request.complete",
                method=request.method,
                path=request.url.path,
                status=getattr(response, "status_code", 0) if response else 0,
                duration_ms=duration_ms,
            )

        response.headers["X-Trace-Id"] = get_trace_id()
        return response

    # ---------- Error envelope ----------
    @app.exception_handler(TimetableError)
    async def timetable_error_handler(request: Request, exc: TimetableError):
        log_kv(
            LOG,
            logging.ERROR,
            "request.failed",
            path=request.url.path,
            error=exc.__class__.__name__,
            detail=str(exc),
        )
        return JSONResponse(
            status_code=exc.status_code,
            content={"success": False, "error": str(exc), "trace_id": get_trace_id()},
            headers={"X-Trace-Id": get_trace_id()},
        )

    # ---------- Health ----------
    @app.get("/healthz")
    async def healthz():
        return {"ok": True}

    return app


app = create_app()
