"""FastAPI application for the inventory chat service."""
import logging
import os
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from stockchat.config import Settings
from stockchat.context import QueryContext, build_context
from stockchat.db import close_db, init_db
from stockchat.routes import chat

logger = logging.getLogger(__name__)

if not logging.getLogger().handlers:
    logging.basicConfig(
        level=getattr(logging, os.getenv("LOG_LEVEL", "INFO").upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
    )


def create_app(context: Optional[QueryContext] = None) -> FastAPI:
    """Build the app. A prebuilt context skips connecting to the store."""

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Application lifespan: startup and shutdown."""
        if context is not None:
            app.state.context = context
            yield
            return

        # Startup
        settings = Settings.from_env()
        database = init_db(settings)
        app.state.context = build_context(settings, database)
        logger.info(f"Inventory chat ready (model={settings.gemini_model}, env={settings.app_env})")
        yield
        # Shutdown
        close_db()

    app = FastAPI(
        title="Inventory Chat Service",
        description="Ask questions about your inventory in any language",
        version="1.0.0",
        lifespan=lifespan,
    )

    # Add CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Register routers
    app.include_router(chat.router)

    @app.get("/")
    def root():
        """Health check endpoint."""
        return {"status": "ok", "service": "inventory-chat"}

    @app.exception_handler(Exception)
    async def global_exception_handler(request, exc):
        """Global exception handler for unhandled errors."""
        logger.exception(f"Unhandled error on {request.url.path}")
        return JSONResponse(
            status_code=500,
            content={"detail": "Internal server error"}
        )

    return app


app = create_app()
