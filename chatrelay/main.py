"""
FastAPI application factory and configuration.
"""
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from chatrelay.api import auth, conversations, health, messages, metrics, realtime, users
from chatrelay.api.metrics import MetricsMiddleware, set_startup_time
from chatrelay.core.config import get_settings
from chatrelay.core.database import init_db
from chatrelay.core.errors import register_exception_handlers
from chatrelay.core.logging import get_logger, setup_logging
from chatrelay.core.security import IdentityVerifier
from chatrelay.services.messaging import MessagingService, PresenceBroadcaster
from chatrelay.services.presence import PresenceRegistry
from chatrelay.services.relay import Relay


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan events."""
    logger = get_logger(__name__)
    logger.info("Starting application...")

    init_db()
    logger.info("Database initialized")

    app.state.broadcaster.start()
    set_startup_time()

    yield

    logger.info(
        "Shutting down application...",
        extra={"extra_data": {"open_connections": app.state.presence.connection_count()}}
    )
    await app.state.broadcaster.stop()


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = get_settings()

    setup_logging()
    logger = get_logger(__name__)

    app = FastAPI(
        title=settings.app_name,
        version=settings.app_version,
        description="Realtime messaging and call-signaling backend",
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
        lifespan=lifespan,
    )

    # Process-wide state, created once per application
    registry = PresenceRegistry()
    relay = Relay(registry)
    messaging = MessagingService(registry, relay)
    broadcaster = PresenceBroadcaster(messaging)
    registry.add_listener(broadcaster.notify)

    app.state.verifier = IdentityVerifier(settings)
    app.state.presence = registry
    app.state.relay = relay
    app.state.messaging = messaging
    app.state.broadcaster = broadcaster

    if not app.state.verifier.configured:
        logger.warning("JWT_SECRET not configured; authentication will reject every credential")

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_middleware(MetricsMiddleware)

    register_exception_handlers(app)

    for router in (auth.router, users.router, conversations.router, messages.router):
        app.include_router(router, prefix=settings.api_prefix)
    app.include_router(realtime.router)
    app.include_router(health.router)
    app.include_router(metrics.router)

    logger.info(
        "Application created",
        extra={
            "extra_data": {
                "app_name": settings.app_name,
                "version": settings.app_version,
                "debug": settings.debug,
            }
        }
    )

    return app


app = create_app()
