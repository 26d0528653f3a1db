"""FastAPI dependency injection — wires infrastructure to application layer."""

import logging
from collections.abc import AsyncGenerator
from functools import lru_cache
from pathlib import Path
from typing import Any

from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession

from rdfrepo.application.services.weighted_search import WeightedSearchEngine
from rdfrepo.config import get_settings
from rdfrepo.domain.entities.search_config import split_order_property
from rdfrepo.infrastructure.database.repo_db import RepoDb
from rdfrepo.infrastructure.database.session import get_db_session
from rdfrepo.infrastructure.storage.facet_cache import load_facet_descriptors

logger = logging.getLogger(__name__)


@lru_cache
def get_facet_descriptors() -> tuple[dict[str, Any], ...]:
    """Facet descriptors of the configured facets file (read once)."""
    settings = get_settings()
    if not settings.facets_file or not Path(settings.facets_file).exists():
        return ()
    return tuple(load_facet_descriptors(settings.facets_file))


async def get_repo_db(
    session: AsyncSession = Depends(get_db_session),
) -> AsyncGenerator[RepoDb, None]:
    """Provides a RepoDb bound to the request's session."""
    settings = get_settings()
    yield RepoDb(
        session,
        base_url=settings.repository_base_url,
        schema=settings.repository_schema,
        literal_only_properties=settings.literal_only_properties,
        string_max_length=settings.search_string_max_length,
        min_timestamp_year=settings.search_min_timestamp_year,
    )


async def get_search_engine(
    repo: RepoDb = Depends(get_repo_db),
) -> AsyncGenerator[WeightedSearchEngine, None]:
    """Provides a WeightedSearchEngine with the configured facets; the search is closed afterwards."""
    settings = get_settings()
    engine = WeightedSearchEngine(
        repo,
        exact_weight=settings.search_exact_weight,
        lang_weight=settings.search_lang_weight,
        matches_limit=settings.search_matches_limit,
    )
    engine.set_facets(get_facet_descriptors())
    if settings.search_fallback_order_by:
        prop, ascending = split_order_property(settings.search_fallback_order_by)
        engine.set_fallback_order_by(prop, ascending)
    try:
        yield engine
    finally:
        await engine.close_search()
