"""FastAPI entry-point exposing the A2A orchestrator."""
from __future__ import annotations

from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI

from a2a.api.conversations import router as conversations_router
from a2a.api.routes import router as agents_router
from a2a.api.system import router as system_router
from a2a.config import Config
from a2a.core.event_bus import ConversationEventBus
from a2a.core.logging import configure_logging, get_logger
from a2a.runtime import build_service
from a2a.service import A2AService

logger = get_logger(name=__name__)


def create_app(service: Optional[A2AService] = None, config: Optional[Config] = None) -> FastAPI:
    """Build the application; a prebuilt ``service`` skips environment configuration."""

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Lifecycle manager for FastAPI application."""
        if service is not None:
            app.state.service = service
        else:
            settings = config or Config.from_env()
            configure_logging(settings.log_level)
            app.state.event_bus = ConversationEventBus()
            app.state.service = build_service(settings, event_bus=app.state.event_bus)
        app.state.service.initialize()
        logger.info("application_started", agents=app.state.service.registry.count())
        yield
        logger.info("application_stopped")

    app = FastAPI(title="A2A Orchestrator", lifespan=lifespan)
    app.include_router(agents_router)
    app.include_router(conversations_router)
    app.include_router(system_router)

    @app.get("/health")
    async def health() -> dict:
        return {"status": "ok"}

    return app


app = create_app()
