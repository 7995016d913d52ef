"""Main FastAPI application for the push delivery engine."""
import logging
from contextlib import asynccontextmanager
from typing import Callable, Optional

import httpx
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy.ext.asyncio import AsyncEngine, async_sessionmaker

from .config import Settings, settings as default_settings
from .database import init_db, close_db, build_session_factory
from .routers import push_router
from .services.push_sender import PushSenderService
from .services.reservation import ReservationService
from .services.subscription_registry import SubscriptionRegistry

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


def create_app(
    settings: Optional[Settings] = None,
    engine: Optional[AsyncEngine] = None,
    http_client_factory: Optional[Callable[[], httpx.AsyncClient]] = None,
) -> FastAPI:
    """Create and configure the FastAPI application.

    The engine and relay client factory can be supplied by tests; by default
    the process-wide engine from DATABASE_URL is used.
    """
    settings = settings or default_settings

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Application lifespan - startup and shutdown."""
        logger.info("Starting push delivery engine")

        await init_db(engine)
        logger.info("Database initialized")

        session_factory: Optional[async_sessionmaker] = (
            build_session_factory(engine) if engine is not None else None
        )
        registry = SubscriptionRegistry(session_factory)
        extra = {"http_client_factory": http_client_factory} if http_client_factory else {}
        push_sender = PushSenderService.from_settings(settings, registry=registry, **extra)

        app.state.registry = registry
        app.state.push_sender = push_sender
        app.state.reservations = ReservationService(push_sender, session_factory)

        yield

        if engine is not None:
            await engine.dispose()
        else:
            await close_db()
        logger.info("Shutdown complete")

    app = FastAPI(
        title="Push Engine",
        description="Encrypted Web Push delivery with VAPID and at-most-once reservations",
        version="1.0.0",
        lifespan=lifespan,
    )

    # CORS middleware so browsers can register subscriptions directly
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],  # In production, restrict to your domain
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(push_router)

    # Health check endpoint
    @app.get("/health")
    async def health_check():
        return {
            "status": "healthy",
            "push_configured": app.state.push_sender.configured,
        }

    return app


# Create the application instance
app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=default_settings.web_port)
