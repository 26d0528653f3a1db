"""FastAPI application factory."""

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI

from rdfrepo.config import get_settings
from rdfrepo.infrastructure.database.session import engine
from rdfrepo.infrastructure.dependencies import get_facet_descriptors
from rdfrepo.infrastructure.logging.log_config import setup_logging
from rdfrepo.presentation.api.router import router as api_router

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Application lifespan — configure logging, validate facets, dispose the engine."""
    settings = get_settings()
    setup_logging()

    # Facet descriptors are validated when the first search registers them;
    # reading them here surfaces YAML errors at startup.
    facets = get_facet_descriptors()
    logger.info(
        "Repository %s ready (%d facets configured)", settings.repository_base_url, len(facets)
    )

    yield

    await engine.dispose()


def create_app() -> FastAPI:
    """Factory function that builds and configures the FastAPI application."""
    settings = get_settings()

    app = FastAPI(
        title=settings.app_title,
        version=settings.app_version,
        lifespan=lifespan,
    )

    # Mount API routes
    app.include_router(api_router)

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "rdfrepo.main:app",
        host="0.0.0.0",
        port=8020,
        reload=True,
    )
