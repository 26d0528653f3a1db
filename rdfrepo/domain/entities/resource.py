"""Repository resource handle — a URI plus the metadata graph loaded for it."""

from __future__ import annotations

import re
from typing import TYPE_CHECKING

from rdflib import Graph, URIRef
from rdflib.namespace import RDF
from rdflib.resource import Resource

from rdfrepo.domain.entities.metadata_mode import MetadataMode
from rdfrepo.domain.exceptions import RepoLibError

if TYPE_CHECKING:
    from rdfrepo.application.interfaces.metadata_source import MetadataSource

_TRAILING_ID = re.compile(r"([0-9]+)$")


class RepoResource:
    """A single repository resource.

    Metadata are fetched lazily with ``load_metadata()``; search results come
    with their metadata already attached. ``search_*`` attributes are filled
    in from technical triples of a search result and stay empty otherwise.
    """

    def __init__(self, uri: str, source: MetadataSource):
        match = _TRAILING_ID.search(uri)
        if match is None:
            raise RepoLibError(f"Not a repository resource URI: {uri}", 400)
        self.id = int(match.group(1))
        self.uri = source.base_url + str(self.id)
        self.source = source
        self._metadata: Resource | None = None
        self.search_weight: float | None = None
        self.search_highlights: list[str] = []
        self.search_match_properties: list[str] = []
        self.search_order_values: list[str] = []

    def __repr__(self) -> str:
        return f"RepoResource({self.uri!r})"

    def __eq__(self, other: object) -> bool:
        return isinstance(other, RepoResource) and other.uri == self.uri

    def __hash__(self) -> int:
        return hash(self.uri)

    @property
    def is_loaded(self) -> bool:
        return self._metadata is not None

    async def load_metadata(
        self,
        force: bool = False,
        mode: str = MetadataMode.RESOURCE.value,
        parent_property: str | None = None,
    ) -> None:
        """Fetch metadata from the repository unless already loaded (or ``force``)."""
        if self._metadata is not None and not force:
            return
        graph = await self.source.load_resource_metadata(self, mode, parent_property)
        self._metadata = graph.resource(URIRef(self.uri))

    def get_graph(self) -> Resource:
        """The metadata as a live view — modifications affect the resource."""
        if self._metadata is None:
            raise RepoLibError("Metadata not loaded")
        return self._metadata

    def get_metadata(self) -> Resource:
        """A deep copy of the resource's own triples."""
        resource = self.get_graph()
        graph = Graph()
        for triple in resource.graph.triples((resource.identifier, None, None)):
            graph.add(triple)
        return graph.resource(resource.identifier)

    def set_graph(self, resource: Resource) -> None:
        self._metadata = resource

    def set_metadata(self, resource: Resource) -> None:
        """Store a copy of ``resource``'s triples, re-subjected to this resource's URI."""
        graph = Graph()
        subject = URIRef(self.uri)
        for _, p, o in resource.graph.triples((resource.identifier, None, None)):
            graph.add((subject, p, o))
        self._metadata = graph.resource(subject)

    def get_ids(self) -> list[str]:
        prop = URIRef(self.source.schema.id)
        return [str(o) for o in self.get_graph().graph.objects(URIRef(self.uri), prop)]

    def get_classes(self) -> list[str]:
        return [str(o) for o in self.get_graph().graph.objects(URIRef(self.uri), RDF.type)]

    def is_a(self, cls: str) -> bool:
        return cls in self.get_classes()
