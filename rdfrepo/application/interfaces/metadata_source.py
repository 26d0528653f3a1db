"""Abstract metadata source interface (port) — read access to repository metadata."""

from abc import ABC, abstractmethod

from rdflib import Graph

from rdfrepo.domain.entities.resource import RepoResource
from rdfrepo.domain.entities.schema import RepositorySchema
from rdfrepo.domain.entities.search_condition import SearchCondition
from rdfrepo.domain.entities.search_config import SearchConfig


class MetadataSource(ABC):
    """Port for searching the repository and reading resource metadata.

    Implemented over the relational database (``RepoDb``) and over the
    repository REST API (``RepoRest``).
    """

    base_url: str
    schema: RepositorySchema

    def get_resource_by_id(self, id: int | str) -> RepoResource:
        """Handle of the resource with a given internal id (metadata not loaded)."""
        return RepoResource(self.base_url + str(id), self)

    @abstractmethod
    async def get_resource_by_ids(self, ids: list[str]) -> RepoResource:
        """Find the single resource having any of the identifiers.

        Raises:
            NotFoundError: no resource matches.
            AmbiguousMatchError: more than one resource matches.
        """
        ...

    @abstractmethod
    async def get_graph_by_search_terms(
        self, terms: list[SearchCondition], config: SearchConfig
    ) -> Graph:
        """Metadata graph of all resources matching every condition.

        ``config.count`` is set to the total number of matches.
        """
        ...

    @abstractmethod
    async def get_resources_by_search_terms(
        self, terms: list[SearchCondition], config: SearchConfig
    ) -> list[RepoResource]:
        ...

    @abstractmethod
    async def load_resource_metadata(
        self, resource: RepoResource, mode: str, parent_property: str | None
    ) -> Graph:
        """Graph holding a resource's metadata in a given breadth mode."""
        ...
