from .search import (
    FacetStats,
    FacetValue,
    InitialFacetsResponse,
    SearchConditionSchema,
    SearchResultSchema,
    SmartSearchRequest,
    SmartSearchResponse,
)

__all__ = [
    "FacetStats",
    "FacetValue",
    "InitialFacetsResponse",
    "SearchConditionSchema",
    "SearchResultSchema",
    "SmartSearchRequest",
    "SmartSearchResponse",
]
