"""FastAPI application entry point."""

from contextlib import asynccontextmanager
from typing import AsyncGenerator

import structlog
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import ORJSONResponse
from uvicorn.middleware.proxy_headers import ProxyHeadersMiddleware

from taskflow.api import router as api_router
from taskflow.config import get_settings
from taskflow.db.session import close_db, init_db
from taskflow.exceptions import TaskflowError
from taskflow.middleware.logging import LoggingMiddleware
from taskflow.middleware.request_id import RequestIDMiddleware

logger = structlog.get_logger()
settings = get_settings()


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Verify the database on startup and release the pool on shutdown."""
    logger.info("app_starting", app=settings.app_name, version=settings.app_version)
    await init_db()
    logger.info("database_ready")

    yield

    await close_db()
    logger.info("app_stopped")


async def taskflow_error_handler(request: Request, exc: TaskflowError) -> ORJSONResponse:
    """Return domain errors with their message verbatim as ``detail``."""
    log = logger.error if exc.status_code >= 500 else logger.info
    log("domain_error", code=exc.code, status_code=exc.status_code, detail=exc.message)
    return ORJSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.message, "code": exc.code},
    )


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    app = FastAPI(
        title=settings.app_name,
        version=settings.app_version,
        description="Task management with department visibility, recurrence and reports",
        openapi_url=f"{settings.api_prefix}/openapi.json",
        docs_url=f"{settings.api_prefix}/docs",
        redoc_url=f"{settings.api_prefix}/redoc",
        default_response_class=ORJSONResponse,
        lifespan=lifespan,
    )

    # Last added runs first
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.allowed_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_middleware(LoggingMiddleware)
    app.add_middleware(RequestIDMiddleware)
    app.add_middleware(ProxyHeadersMiddleware, trusted_hosts=["*"])

    app.add_exception_handler(TaskflowError, taskflow_error_handler)
    app.include_router(api_router, prefix=settings.api_prefix)

    @app.get("/health")
    async def health_check() -> dict[str, str]:
        """Health check for load balancers."""
        return {"status": "healthy", "version": settings.app_version}

    return app


app = create_app()
