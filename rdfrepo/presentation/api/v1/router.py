"""V1 API router — aggregates all v1 endpoint routers."""

from fastapi import APIRouter

from rdfrepo.presentation.api.v1.health import router as health_router
from rdfrepo.presentation.api.v1.search_controller import router as search_router
from rdfrepo.presentation.api.v1.smart_search_controller import router as smart_search_router

router = APIRouter(prefix="/v1")
router.include_router(health_router)
router.include_router(smart_search_router)
router.include_router(search_router)
