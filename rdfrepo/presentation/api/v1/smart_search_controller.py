"""Smart search API controller — ranked, faceted search."""

from fastapi import APIRouter, Depends, HTTPException, Query

from rdfrepo.application.schemas.search import (
    FacetStats,
    SearchResultSchema,
    SmartSearchRequest,
    SmartSearchResponse,
)
from rdfrepo.application.services.weighted_search import WeightedSearchEngine
from rdfrepo.config import get_settings
from rdfrepo.domain.entities.resource import RepoResource
from rdfrepo.domain.entities.search_config import SearchConfig
from rdfrepo.domain.exceptions import RepoLibError
from rdfrepo.infrastructure.dependencies import get_search_engine

router = APIRouter(prefix="/smart-search", tags=["smart-search"])


# ── Helpers ──────────────────────────────────────────────────────────


def _to_result_schema(resource: RepoResource) -> SearchResultSchema:
    """Map a ranked resource to its response schema."""
    node = resource.get_graph()
    metadata: dict[str, list[str]] = {}
    for p, o in node.graph.predicate_objects(node.identifier):
        metadata.setdefault(str(p), []).append(str(o))
    return SearchResultSchema(
        uri=resource.uri,
        id=resource.id,
        weight=resource.search_weight,
        highlights=resource.search_highlights,
        match_properties=resource.search_match_properties,
        metadata=metadata,
    )


# ── Endpoints ────────────────────────────────────────────────────────


@router.post("", response_model=SmartSearchResponse)
async def smart_search(
    body: SmartSearchRequest,
    engine: WeightedSearchEngine = Depends(get_search_engine),
):
    """Run a weighted search and return one ranked page with facet statistics."""
    config = SearchConfig(
        metadata_mode=body.metadata_mode,
        metadata_parent_property=body.metadata_parent_property,
    )
    try:
        await engine.search(
            phrase=body.phrase,
            language=body.language,
            in_binary=body.in_binary,
            allowed_properties=body.allowed_properties,
            search_terms=[c.to_condition() for c in body.conditions],
            spatial_term=body.spatial.to_condition() if body.spatial is not None else None,
            parent_ids=body.parent_ids,
            matches_limit=body.matches_limit,
        )
        resources = await engine.get_search_page_resources(
            body.page, body.page_size, config, body.preferred_language
        )
        facets = await engine.get_search_facets(body.preferred_language) if body.include_facets else {}
    except RepoLibError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)

    return SmartSearchResponse(
        total=config.count,
        page=body.page,
        page_size=body.page_size,
        results=[_to_result_schema(r) for r in resources],
        facets=facets,
    )


@router.get("/initial-facets", response_model=list[FacetStats])
async def initial_facets(
    lang: str = Query(default="", description="Preferred label language"),
    force: bool = Query(default=False, description="Recompute even when the cache is current"),
    engine: WeightedSearchEngine = Depends(get_search_engine),
):
    """Facet statistics over the whole repository."""
    try:
        return await engine.get_initial_facets(lang, get_settings().facet_cache_file, force)
    except RepoLibError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)
