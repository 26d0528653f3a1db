"""Search API controller — the repository's form-encoded search endpoint.

Answers with N-Triples including the technical search triples, which is the
format ``RepoRest`` consumes.
"""

from fastapi import APIRouter, Depends, HTTPException, Request, Response

from rdfrepo.config import get_settings
from rdfrepo.domain.entities.metadata_mode import MetadataMode
from rdfrepo.domain.entities.search_condition import SearchCondition
from rdfrepo.domain.entities.search_config import SearchConfig
from rdfrepo.domain.exceptions import RepoLibError
from rdfrepo.infrastructure.database.repo_db import RepoDb
from rdfrepo.infrastructure.dependencies import get_repo_db
from rdfrepo.infrastructure.rest.repo_rest import NTRIPLES

router = APIRouter(tags=["search"])


# ── Helpers ──────────────────────────────────────────────────────────


def _apply_headers(config: SearchConfig, request: Request) -> SearchConfig:
    """Read the metadata read mode and parent property from request headers."""
    names = get_settings().header_names()
    mode = request.headers.get(names["metadata_read_mode"])
    if mode:
        config.metadata_mode = mode
    parent = request.headers.get(names["metadata_parent_property"])
    if parent:
        config.metadata_parent_property = parent
    return config


# ── Endpoints ────────────────────────────────────────────────────────


@router.post("/search")
async def search(request: Request, repo: RepoDb = Depends(get_repo_db)) -> Response:
    """Search by conditions given as ``property[n]``/``operator[n]``/``value[n]``/... form fields."""
    form: dict[str, list[str]] = {}
    for key, value in (await request.form()).multi_items():
        if isinstance(value, str):
            form.setdefault(key, []).append(value)

    try:
        terms = SearchCondition.list_from_form_data(form)
        config = _apply_headers(SearchConfig.from_form_data(form), request)
        graph = await repo.get_search_graph(repo.search_terms_query(terms), config)
    except RepoLibError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)
    return Response(content=graph.serialize(format="nt"), media_type=NTRIPLES)


@router.get("/{resource_id}/metadata")
async def resource_metadata(
    resource_id: int,
    request: Request,
    repo: RepoDb = Depends(get_repo_db),
) -> Response:
    """Metadata of a single resource in the breadth requested by the read mode header."""
    config = _apply_headers(SearchConfig(metadata_mode=MetadataMode.RESOURCE.value), request)
    try:
        graph = await repo.load_resource_metadata(
            repo.get_resource_by_id(resource_id), config.metadata_mode, config.metadata_parent_property
        )
    except RepoLibError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)
    if len(graph) == 0:
        raise HTTPException(status_code=404, detail="Resource not found")
    return Response(content=graph.serialize(format="nt"), media_type=NTRIPLES)
