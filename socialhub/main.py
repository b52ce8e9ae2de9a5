"""
SocialHub API — entry point.

Startup sequence:
  1. Configure OTel tracing (→ Jaeger via OTLP)
  2. Create tables if not present
  3. Initialise MinIO client & bucket
  4. Expose Prometheus /metrics endpoint

The event hub, notification writer and conversation coordinator are built
once per app and shared by every request and WebSocket session.
"""
import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from prometheus_client import make_asgi_app
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from socialhub.clients.media import MediaStore
from socialhub.config import settings
from socialhub.database import AsyncSessionLocal, engine, init_db
from socialhub.errors import register_error_handlers
from socialhub.realtime.hub import EventHub
from socialhub.routers import comments, messages, notifications, posts, realtime, stories, users
from socialhub.services.conversations import ConversationCoordinator
from socialhub.services.notifications import NotificationWriter
from socialhub.telemetry import instrument_app, setup_tracing

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s — %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Manage startup and shutdown of all external connections."""
    logger.info("Starting SocialHub API (env=%s)", settings.environment)

    if app.state.manage_resources:
        setup_tracing(engine)
        await init_db()
        app.state.media.init()      # boto3 is blocking

    logger.info("All services connected. API ready.")
    yield

    logger.info("Shutting down...")
    if app.state.manage_resources:
        await engine.dispose()


def create_app(
    session_factory: Optional[async_sessionmaker[AsyncSession]] = None,
    media: Optional[MediaStore] = None,
) -> FastAPI:
    """
    Build the application. Passing a session factory or media store means the
    caller owns them, and startup skips tracing, table creation and the
    MinIO bucket check.
    """
    app = FastAPI(
        title="SocialHub API",
        description="Posts, stories, follows, direct messages and live notifications.",
        version="1.0.0",
        lifespan=lifespan,
    )

    sessions = session_factory or AsyncSessionLocal
    hub = EventHub()
    app.state.manage_resources = session_factory is None and media is None
    app.state.sessions = sessions
    app.state.hub = hub
    app.state.notifications = NotificationWriter(hub, sessions)
    app.state.conversations = ConversationCoordinator(hub, sessions)
    app.state.media = media or MediaStore()

    app.add_middleware(
        CORSMiddleware,
        allow_origins=[settings.client_url],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    register_error_handlers(app)

    # ── Routers ────────────────────────────────────────────────────────────
    app.include_router(users.router, prefix="/users", tags=["Users"])
    app.include_router(posts.router, prefix="/posts", tags=["Posts"])
    app.include_router(comments.router, tags=["Comments"])
    app.include_router(stories.router, prefix="/stories", tags=["Stories"])
    app.include_router(messages.router, prefix="/messages", tags=["Messages"])
    app.include_router(notifications.router, prefix="/notifications", tags=["Notifications"])
    app.include_router(realtime.router, tags=["Realtime"])

    # ── Prometheus metrics endpoint ────────────────────────────────────────
    app.mount("/metrics", make_asgi_app())

    @app.get("/health", tags=["Health"])
    async def health():
        return {"status": "ok", "service": settings.service_name}

    # ── OTel FastAPI instrumentation ──────────────────────────────────────
    if app.state.manage_resources:
        instrument_app(app)

    return app


app = create_app()
