from .facets import (
    ContinuousFacet,
    Facet,
    LinkPropertyFacet,
    LiteralFacet,
    MapFacet,
    MatchPropertyFacet,
    ObjectFacet,
    facet_to_dict,
    parse_facet,
)
from .metadata_mode import MetadataMode, relatives_params
from .query_fragment import JoinCounter, QueryFragment
from .resource import RepoResource
from .schema import RepositorySchema, SearchSchema
from .search_condition import CompileContext, SearchCondition, ValueType
from .search_config import SearchConfig

__all__ = [
    "CompileContext",
    "ContinuousFacet",
    "Facet",
    "JoinCounter",
    "LinkPropertyFacet",
    "LiteralFacet",
    "MapFacet",
    "MatchPropertyFacet",
    "MetadataMode",
    "ObjectFacet",
    "QueryFragment",
    "RepoResource",
    "RepositorySchema",
    "SearchCondition",
    "SearchConfig",
    "SearchSchema",
    "ValueType",
    "facet_to_dict",
    "parse_facet",
    "relatives_params",
]
