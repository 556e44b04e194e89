"""
DubSync FastAPI Application.

Main application entry point with route registration and lifecycle management.
"""

import uuid
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from dubsync import __version__
from dubsync.api.deps import status_for
from dubsync.api.routers import admin, health, quota, subscriptions, tasks, videos
from dubsync.core.config import settings
from dubsync.core.db import close_db, init_db
from dubsync.core.exceptions import DubSyncError
from dubsync.core.logging import clear_context, get_logger, set_request_id

logger = get_logger(__name__)


# =============================================================================
# Application Lifecycle
# =============================================================================


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan manager.

    Creates tables on startup and disposes the engine on shutdown.
    """
    logger.info("Starting DubSync application...")
    init_db()

    yield

    logger.info("Shutting down DubSync application...")
    close_db()


# =============================================================================
# Application Instance
# =============================================================================

app = FastAPI(
    title="DubSync API",
    description="Subscription sync and automated dubbing for YouTube channels",
    version=__version__,
    docs_url="/docs" if settings.enable_swagger_ui else None,
    redoc_url="/redoc" if settings.enable_swagger_ui else None,
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.middleware("http")
async def request_context_middleware(request: Request, call_next):
    """Tag log lines with a per-request id and echo it back to the caller."""
    request_id = request.headers.get("X-Request-ID") or uuid.uuid4().hex
    set_request_id(request_id)
    try:
        response = await call_next(request)
    finally:
        clear_context()
    response.headers["X-Request-ID"] = request_id
    return response


# =============================================================================
# Exception Handlers
# =============================================================================


@app.exception_handler(DubSyncError)
async def dubsync_exception_handler(request: Request, exc: DubSyncError):
    """Map domain errors to HTTP status codes."""
    status_code = status_for(exc)
    log = logger.error if status_code >= 500 else logger.info
    log(f"{request.method} {request.url.path} -> {status_code}: {exc}")
    return JSONResponse(
        status_code=status_code,
        content={"detail": str(exc), "type": type(exc).__name__, "code": exc.code},
    )


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """Catches all unhandled exceptions and returns a proper error response."""
    logger.error(
        f"Unhandled exception: {exc}",
        exc_info=True,
        extra={"path": request.url.path, "method": request.method},
    )
    return JSONResponse(
        status_code=500,
        content={
            "detail": "Internal server error",
            "type": type(exc).__name__,
            "message": str(exc) if settings.debug else "An error occurred",
        },
    )


# =============================================================================
# Route Registration
# =============================================================================

app.include_router(health.router)
app.include_router(quota.router)
app.include_router(tasks.router)
app.include_router(subscriptions.router)
app.include_router(videos.router)
app.include_router(admin.router)


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "dubsync.main:app",
        host=settings.api_host,
        port=settings.api_port,
        reload=settings.auto_reload and settings.debug,
    )
