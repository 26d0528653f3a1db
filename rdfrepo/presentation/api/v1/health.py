"""Health check endpoint — does not touch the database."""

from fastapi import APIRouter

from rdfrepo.config import get_settings
from rdfrepo.infrastructure.dependencies import get_facet_descriptors

router = APIRouter(tags=["Health"])


@router.get("/health")
async def health_check() -> dict:
    """Service status plus the repository this instance searches."""
    settings = get_settings()
    return {
        "status": "healthy",
        "version": settings.app_version,
        "environment": settings.app_env,
        "repository": settings.repository_base_url,
        "facets": len(get_facet_descriptors()),
    }
