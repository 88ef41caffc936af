"""FastAPI application setup for Agent Sources."""

from __future__ import annotations

import asyncio
import time

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from agent_sources.api.dependencies import (
    get_app_settings,
    get_database,
    get_link_service,
    get_prefetch_orchestrator,
    get_response_processor,
)
from agent_sources.api.routes_admin import router as admin_router
from agent_sources.api.routes_agents import router as agents_router
from agent_sources.api.routes_files import router as files_router
from agent_sources.api.routes_prefetch import router as prefetch_router
from agent_sources.core.errors import AgentSourceError
from agent_sources.core.logging import configure_logging, get_logger, log_context
from agent_sources.core.metrics import REQUEST_COUNT, REQUEST_LATENCY
from agent_sources.utils.ids import new_id

configure_logging()
logger = get_logger(__name__)

app = FastAPI(
    title="Agent Sources",
    version="0.1.0",
    docs_url="/docs",
    redoc_url="/redoc",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=[
        "http://127.0.0.1:3080",
        "http://localhost:3080",
    ],
    allow_credentials=True,
    allow_methods=['*'],
    allow_headers=['*'],
)

app.include_router(files_router, prefix="/api/files", tags=["files"])
app.include_router(agents_router, prefix="/api/agents", tags=["agents"])
app.include_router(prefetch_router, prefix="/api/prefetch", tags=["prefetch"])
app.include_router(admin_router, prefix="", tags=["admin"])

_sweeper: asyncio.Task | None = None


@app.exception_handler(AgentSourceError)
async def agent_source_error_handler(request: Request, exc: AgentSourceError) -> JSONResponse:
    return JSONResponse(status_code=exc.status_code, content={"error": exc.public_message})


@app.exception_handler(StarletteHTTPException)
async def http_error_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    return JSONResponse(status_code=exc.status_code, content={"error": exc.detail}, headers=exc.headers)


@app.middleware("http")
async def record_request_metrics(request: Request, call_next):
    started = time.perf_counter()
    with log_context(request_id=new_id("req"), user_id=request.headers.get("x-user-id"), path=request.url.path):
        response = await call_next(request)
    route = request.scope.get("route")
    endpoint = getattr(route, "path", "unmatched")
    REQUEST_LATENCY.labels(endpoint=endpoint, method=request.method).observe(time.perf_counter() - started)
    REQUEST_COUNT.labels(endpoint=endpoint, method=request.method, status=str(response.status_code)).inc()
    return response


async def _sweep_prefetch_cache(interval: float) -> None:
    orchestrator = get_prefetch_orchestrator()
    while True:
        await asyncio.sleep(interval)
        orchestrator.sweep()


@app.on_event("startup")
async def startup() -> None:
    """Warm up core singletons and start the prefetch sweeper."""
    global _sweeper
    settings = get_app_settings()
    get_database()
    get_link_service()
    get_response_processor()
    get_prefetch_orchestrator()
    if settings.uses_default_signing_secret:
        logger.warning("signing_secret is the built-in default; set AGS_SIGNING_SECRET before exposing object-store links")
    if settings.prefetch_enabled:
        _sweeper = asyncio.create_task(_sweep_prefetch_cache(settings.prefetch_sweep_interval_seconds))
    logger.info("Agent Sources started", extra={"ctx_db_path": str(settings.db_path)})


@app.on_event("shutdown")
async def shutdown() -> None:
    global _sweeper
    if _sweeper is not None:
        _sweeper.cancel()
        try:
            await _sweeper
        except asyncio.CancelledError:
            pass
        _sweeper = None


@app.get("/health", tags=["admin"])
def health() -> dict[str, bool]:
    """Simple liveness check."""
    return {"ok": True}
