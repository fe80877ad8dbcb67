"""Agent Marketplace - Main Application.

This is the main FastAPI application that combines all module routers
and provides the unified API for the marketplace.
"""

import time
import uuid
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from marketplace.agents.api import reviews_router
from marketplace.agents.api import router as agents_router
from marketplace.config import get_app_settings
from marketplace.disputes.api import router as disputes_router
from marketplace.infrastructure.database.session import close_db, init_db
from marketplace.infrastructure.periodic_tasks import auto_approve_overdue_tasks
from marketplace.infrastructure.redis import close_redis, get_redis, init_redis
from marketplace.infrastructure.scheduler import PeriodicScheduler
from marketplace.ledger.api import earnings_router
from marketplace.ledger.api import router as wallet_router
from marketplace.notifications.api import router as notifications_router
from marketplace.security.config import DEV_SECRET_KEY, get_security_settings
from marketplace.shared.middleware.rate_limit import RateLimitMiddleware
from marketplace.shared.schemas.base import HealthResponse
from marketplace.shared.utils.logging import (
    bind_request_context,
    clear_request_context,
    configure_logging,
    get_logger,
)
from marketplace.tasks.api import router as tasks_router
from marketplace.tasks.api import stats_router
from marketplace.tasks.config import get_task_settings

logger = get_logger(__name__)


# ===========================================
# APPLICATION METADATA
# ===========================================

APP_TITLE = "Agent Marketplace"
APP_DESCRIPTION = """
## Overview

A two-sided marketplace where buyers post tasks and sellers' AI agents bid on,
deliver and get paid for them. Payment is held in escrow from assignment until
the buyer approves, the auto-approve window lapses, or an admin resolves a dispute.

## Authentication

Buyers, sellers and admins send a bearer token:

```
Authorization: Bearer <access_token>
```

Agents send the API key issued at registration:

```
X-Agent-Key: mk_agent_<key>
```
"""

APP_VERSION = "0.1.0"
API_PREFIX = "/api/v1"

TAGS_METADATA = [
    {"name": "health", "description": "Health check, status and public platform stats"},
    {"name": "wallet", "description": "Wallet balance, top-ups, withdrawals, earnings and ledger history"},
    {"name": "agents", "description": "Agent registration, browsing, self-service and key rotation"},
    {"name": "tasks", "description": "Task posting, bidding, delivery and approval"},
    {"name": "disputes", "description": "Dispute responses and admin resolution"},
    {"name": "reviews", "description": "Post-approval reviews and agent ratings"},
    {"name": "notifications", "description": "Per-user notification inbox"},
]


# ===========================================
# LIFECYCLE MANAGEMENT
# ===========================================


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager for startup and shutdown events."""
    settings = get_app_settings()
    configure_logging(settings.log_level, json_format=settings.log_format == "json")
    logger.info("app_starting", title=APP_TITLE, version=APP_VERSION, environment=settings.environment)

    if get_security_settings().jwt_secret_key == DEV_SECRET_KEY:
        logger.warning("jwt_secret_is_dev_default", environment=settings.environment)

    await init_db()

    try:
        await init_redis(settings.redis_url)
    except Exception as e:
        # Rate limiting fails open without Redis.
        logger.warning("redis_unavailable", error=str(e))

    scheduler = PeriodicScheduler()
    if settings.enable_scheduler:
        scheduler.register(
            "auto_approve_overdue_tasks",
            get_task_settings().auto_approve_poll_seconds,
            auto_approve_overdue_tasks,
        )
        await scheduler.start()
    app.state.scheduler = scheduler

    logger.info("app_started", jobs=scheduler.job_names)

    yield

    logger.info("app_stopping")
    await scheduler.stop()
    await close_redis()
    await close_db()
    logger.info("app_stopped")


# ===========================================
# APPLICATION FACTORY
# ===========================================


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = get_app_settings()
    app = FastAPI(
        title=APP_TITLE,
        description=APP_DESCRIPTION,
        version=APP_VERSION,
        openapi_tags=TAGS_METADATA,
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.add_middleware(
        RateLimitMiddleware,
        redis_getter=get_redis,
        limit=settings.rate_limit_per_minute,
    )

    # Add request timing middleware
    @app.middleware("http")
    async def add_request_timing(request: Request, call_next):
        start_time = time.time()
        response = await call_next(request)
        process_time = time.time() - start_time
        response.headers["X-Process-Time"] = str(process_time)
        return response

    # Add request ID middleware
    @app.middleware("http")
    async def add_request_id(request: Request, call_next):
        request_id = request.headers.get("X-Request-ID", str(uuid.uuid4()))
        request.state.request_id = request_id
        bind_request_context(request_id=request_id)
        try:
            response = await call_next(request)
        finally:
            clear_request_context()
        response.headers["X-Request-ID"] = request_id
        return response

    # Register exception handlers
    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        errors = [
            {"loc": list(err.get("loc", ())), "msg": err.get("msg", ""), "type": err.get("type", "")}
            for err in exc.errors()
        ]
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content={
                "detail": {
                    "type": "https://api.agent-marketplace.dev/errors/validation_error",
                    "title": "Validation Error",
                    "status": status.HTTP_400_BAD_REQUEST,
                    "detail": "Request validation failed",
                    "errors": errors,
                }
            },
        )

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception):
        logger.exception("unhandled_exception", path=request.url.path, error=str(exc))
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={
                "detail": {
                    "type": "https://api.agent-marketplace.dev/errors/internal_error",
                    "title": "Internal Server Error",
                    "status": status.HTTP_500_INTERNAL_SERVER_ERROR,
                    "detail": str(exc) if app.debug else "An unexpected error occurred",
                }
            },
        )

    # Include routers with API prefix
    app.include_router(wallet_router, prefix=API_PREFIX)
    app.include_router(earnings_router, prefix=API_PREFIX)
    app.include_router(agents_router, prefix=API_PREFIX)
    app.include_router(tasks_router, prefix=API_PREFIX)
    app.include_router(disputes_router, prefix=API_PREFIX)
    app.include_router(reviews_router, prefix=API_PREFIX)
    app.include_router(notifications_router, prefix=API_PREFIX)
    app.include_router(stats_router, prefix=API_PREFIX)

    register_root_endpoints(app)

    return app


def register_root_endpoints(app: FastAPI) -> None:
    """Register root-level endpoints."""

    @app.get("/", tags=["health"])
    async def root() -> dict[str, Any]:
        """Root endpoint with API information."""
        return {
            "name": APP_TITLE,
            "version": APP_VERSION,
            "status": "running",
            "docs": "/docs",
            "api_prefix": API_PREFIX,
        }

    @app.get("/health", tags=["health"], response_model=HealthResponse)
    async def health_check() -> HealthResponse:
        """Basic health check endpoint."""
        return HealthResponse(timestamp=datetime.now(timezone.utc))


app = create_app()
