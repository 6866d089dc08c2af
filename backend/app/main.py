"""FastAPI application entry point with lifespan management."""

import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from app.api.chat import websocket_chat
from app.api.router import api_router
from app.config import Settings, settings
from app.dependencies import close_services, create_services
from app.engine.base import InferenceEngine
from app.memory.chat_store import ChatHistoryStore

logger = logging.getLogger(__name__)


def create_app(
    app_settings: Settings | None = None,
    *,
    engine: InferenceEngine | None = None,
    history: ChatHistoryStore | None = None,
) -> FastAPI:
    """Build the application. ``engine`` and ``history`` override the configured ones."""
    cfg = app_settings or settings

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        """Manage application startup and shutdown lifecycle."""
        logger.info("Starting %s backend...", cfg.app_name)

        services = await create_services(cfg, engine=engine, history=history)
        app.state.services = services
        logger.info("Chat services initialized (history=%s)", services.history_backend)

        yield

        await close_services(services)
        logger.info("%s backend shut down cleanly", cfg.app_name)

    application = FastAPI(
        title=f"{cfg.app_name} API",
        description="Chat backend with pooled per-conversation model sessions",
        version="0.1.0",
        debug=cfg.debug,
        lifespan=lifespan,
    )

    # CORS configuration
    application.add_middleware(
        CORSMiddleware,
        allow_origins=[
            cfg.frontend_url,
            "http://localhost:3000",
        ],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Mount API routes
    application.include_router(api_router, prefix="/api")

    # Mount WebSocket endpoint (outside /api prefix to match frontend expectations)
    application.websocket("/ws/chat")(websocket_chat)

    return application


app = create_app()

# Configure logging
logging.basicConfig(
    level=getattr(logging, settings.log_level.upper(), logging.INFO),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
