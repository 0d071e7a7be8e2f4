"""
FastAPI application entry point.
Configures routes, middleware, and lifecycle events.
"""

import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator, Optional

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncEngine

from pitrace.api.auth import router as auth_router
from pitrace.api.payments import router as payments_router
from pitrace.api.users import router as users_router
from pitrace.clock import Clock, SystemClock
from pitrace.config import Settings, settings
from pitrace.database import build_session_maker, close_db, engine, init_db
from pitrace.errors import PiTraceError, RateLimitExceededError
from pitrace.logging_config import configure_logging
from pitrace.redis import RedisClient
from pitrace.services.admission import AdmissionGate, build_rate_limiters
from pitrace.services.auth_service import TokenService
from pitrace.services.catalog_service import CatalogService
from pitrace.services.payment_service import PaymentService
from pitrace.services.payment_store import PaymentStore
from pitrace.services.stats_service import StatsService


def register_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(PiTraceError)
    async def pitrace_exception_handler(request: Request, exc: PiTraceError):
        headers = None
        if isinstance(exc, RateLimitExceededError) and exc.retry_after:
            headers = {"Retry-After": str(exc.retry_after)}
        if exc.status_code >= 500:
            logging.error(f"{exc.code} on {request.method} {request.url.path}: {exc.message}")
        return JSONResponse(
            status_code=exc.status_code,
            content={"success": False, "message": exc.message, "error": exc.code},
            headers=headers,
        )

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError):
        return JSONResponse(
            status_code=400,
            content={
                "success": False,
                "message": "Invalid request",
                "error": "VALIDATION_ERROR",
                "details": jsonable_encoder(exc.errors()),
            },
        )

    # Global Exception Handler
    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception):
        logging.error(f"Global exception: {exc}", exc_info=True)
        return JSONResponse(
            status_code=500,
            content={"success": False, "message": "Internal Server Error", "error": "INTERNAL_ERROR"},
        )


def create_app(
    app_settings: Optional[Settings] = None,
    bind: Optional[AsyncEngine] = None,
    clock: Optional[Clock] = None,
) -> FastAPI:
    """Build the app and wire its services onto app.state."""
    app_settings = app_settings or settings
    bind = bind or engine
    clock = clock or SystemClock()

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        """Application lifecycle manager."""
        # Startup
        configure_logging(app_settings)
        logging.info(f"Starting up {app_settings.app_name}...")
        await init_db(bind)

        yield

        # Shutdown
        if app_settings.rate_limit_backend == "redis":
            await RedisClient.close()
        await close_db(bind)
        logging.info("Shutting down...")

    app = FastAPI(
        title="PI TRACE",
        description="Supply chain product tracking with Pi Network payments",
        version="1.0.0",
        lifespan=lifespan,
        debug=app_settings.debug,
    )

    session_maker = build_session_maker(bind)
    store = PaymentStore(session_maker, clock=clock)

    app.state.settings = app_settings
    app.state.clock = clock
    app.state.session_maker = session_maker
    app.state.payment_service = PaymentService(
        store,
        catalog=CatalogService(session_maker),
        clock=clock,
        settings=app_settings,
    )
    app.state.stats_service = StatsService(store)
    app.state.admission = AdmissionGate(
        TokenService.from_settings(app_settings, clock=clock),
        build_rate_limiters(app_settings, clock=clock),
        webhook_secret=app_settings.webhook_secret,
    )

    register_exception_handlers(app)

    # CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
        allow_headers=["Content-Type", "Authorization"],
    )

    @app.get("/")
    async def read_root():
        return {
            "message": "PI TRACE API",
            "version": app.version,
            "endpoints": {
                "auth": "/auth",
                "users": "/users",
                "payments": "/payments",
                "health": "/health",
            },
        }

    # Health check endpoint
    @app.get("/health")
    async def health_check():
        """Health check endpoint."""
        health = {
            "status": "healthy",
            "app": app_settings.app_name,
            "env": app_settings.app_env,
            "timestamp": clock.now().isoformat(),
            "rate_limit_backend": app_settings.rate_limit_backend,
        }
        if app_settings.rate_limit_backend == "redis":
            health["redis"] = await RedisClient.ping()
            if not health["redis"]:
                health["status"] = "degraded"
        return health

    app.include_router(auth_router, tags=["auth"])
    app.include_router(users_router, tags=["users"])
    app.include_router(payments_router, tags=["payments"])

    return app


app = create_app()
