"""Pydantic schemas for search API requests, responses and facet statistics."""

from typing import Any

from pydantic import BaseModel, Field

from rdfrepo.domain.entities.search_condition import SearchCondition

Scalar = str | int | float | bool


# ── Request Schemas ──────────────────────────────────────────────────


class SearchConditionSchema(BaseModel):
    """JSON form of a single search condition."""

    property: str | list[str] | None = None
    value: Scalar | list[Scalar] | None = None
    operator: str = "="
    type: str | None = None
    language: str | None = None

    def to_condition(self) -> SearchCondition:
        return SearchCondition(
            property=self.property,
            value=self.value,
            operator=self.operator,
            type=self.type,
            language=self.language,
        )


class SmartSearchRequest(BaseModel):
    """Request body of a weighted (ranked and faceted) search."""

    phrase: str = ""
    language: str = Field(default="", description="Preferred language of full-text matches")
    in_binary: bool = Field(default=True, description="Also search binary content")
    allowed_properties: list[str] = []
    conditions: list[SearchConditionSchema] = []
    spatial: SearchConditionSchema | None = None
    parent_ids: list[int] = []
    matches_limit: int | None = Field(default=None, ge=1)
    page: int = Field(default=0, ge=0)
    page_size: int = Field(default=20, ge=1, le=1000)
    preferred_language: str = ""
    metadata_mode: str = "resource"
    metadata_parent_property: str | None = None
    include_facets: bool = True


# ── Facet statistics ─────────────────────────────────────────────────


class FacetValue(BaseModel):
    """One bucket of a facet: a discrete value or a continuous bin."""

    value: Any = None
    label: str = ""
    count: int = 0
    lower: float | None = None
    upper: float | None = None


class FacetStats(BaseModel):
    """Statistics of one facet over the current match set."""

    property: str
    label: str = ""
    type: str
    continuous: bool = False
    values: list[FacetValue] = []
    min: float | None = None
    max: float | None = None


class InitialFacetsResponse(BaseModel):
    date: str | None = None
    facets: list[FacetStats] = []


# ── Response Schemas ─────────────────────────────────────────────────


class SearchResultSchema(BaseModel):
    """A single ranked resource with its metadata."""

    uri: str
    id: int
    weight: float | None = None
    highlights: list[str] = []
    match_properties: list[str] = []
    metadata: dict[str, list[str]] = {}


class SmartSearchResponse(BaseModel):
    total: int = 0
    page: int = 0
    page_size: int = 0
    results: list[SearchResultSchema] = []
    facets: dict[str, FacetStats] = {}
