"""FastAPI application."""

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from docchat.api.deps import Container, build_container
from docchat.api.errors import register_error_handlers
from docchat.api.routes.chat import router as chat_router
from docchat.api.routes.documents import router as documents_router
from docchat.api.routes.health import router as health_router
from docchat.api.routes.metrics import router as metrics_router
from docchat.config import get_settings
from docchat.db.engine import create_all
from docchat.utils.logging import configure_logging

logger = logging.getLogger(__name__)


def create_app(container: Container | None = None) -> FastAPI:
    """Build the application.

    Args:
        container: Pre-built components (tests); built from settings at
            startup when omitted. The app closes it on shutdown either way.
    """
    settings = container.settings if container is not None else get_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        configure_logging(settings.log_level)
        active = container if container is not None else build_container(settings)
        if active.engine.url.get_backend_name() == "sqlite":
            # Dev databases are created on the fly; others are managed by alembic
            await create_all(active.engine)
        app.state.container = active
        logger.info(f"DocChat started (llm={active.llm.name}, index={active.index.name})")
        try:
            yield
        finally:
            await active.close()

    app = FastAPI(title="DocChat API", version="0.1.0", lifespan=lifespan)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=[o.strip() for o in settings.cors_origins.split(",") if o.strip()],
        allow_methods=["*"],
        allow_headers=["*"],
    )
    register_error_handlers(app)

    # Register routes
    app.include_router(health_router, tags=["health"])
    app.include_router(metrics_router, tags=["metrics"])
    app.include_router(documents_router)
    app.include_router(chat_router)

    @app.get("/")
    async def root() -> dict[str, str]:
        """Root endpoint."""
        return {"message": "DocChat API", "version": "0.1.0"}

    return app


app = create_app()
