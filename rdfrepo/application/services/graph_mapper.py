"""Row → RDF graph mapping for repository search results.

Search statements return flat ``(id, property, type, lang, value)`` rows.
Besides real metadata they carry technical triples (match marker, order,
total count, highlights, weights) which are consumed here and never exposed
as resource metadata.
"""

import math
from collections.abc import Callable, Iterable, Mapping
from typing import Any

from rdflib import Graph, Literal, URIRef
from rdflib.namespace import XSD

from rdfrepo.domain.entities.resource import RepoResource
from rdfrepo.domain.entities.schema import RepositorySchema
from rdfrepo.domain.entities.search_config import SearchConfig

TYPE_ID = "ID"
TYPE_RELATION = "REL"
TYPE_URI = "URI"
TYPE_GEOMETRY = "GEOM"

_XSD_STRING = str(XSD.string)


class ResourceGraphMapper:
    """Turns metadata rows into a graph and the graph into resource handles."""

    def __init__(self, base_url: str, schema: RepositorySchema):
        self._base_url = base_url
        self._schema = schema
        search = schema.search
        self._technical = [
            URIRef(p) for p in (search.match, search.order, search.count, search.fts, search.weight)
        ]

    def rows_to_graph(self, rows: Iterable[Mapping[str, Any]], graph: Graph | None = None) -> Graph:
        graph = graph if graph is not None else Graph()
        id_property = URIRef(self._schema.id)
        for row in rows:
            row_id = row["id"]
            subject = URIRef(self._base_url + ("" if row_id is None else str(row_id)))
            value = row["value"]
            if value is None:
                continue
            row_type = row["type"]
            if row_type == TYPE_ID:
                graph.add((subject, id_property, URIRef(value)))
            elif row_type == TYPE_RELATION:
                graph.add((subject, URIRef(row["property"]), URIRef(self._base_url + str(value))))
            elif row_type == TYPE_URI:
                graph.add((subject, URIRef(row["property"]), URIRef(value)))
            else:
                graph.add((subject, URIRef(row["property"]), self._literal(value, row_type, row["lang"])))
        return graph

    @staticmethod
    def _literal(value: Any, row_type: str | None, lang: str | None) -> Literal:
        if row_type == TYPE_GEOMETRY:
            row_type = _XSD_STRING
        if lang:
            return Literal(str(value), lang=lang)
        if row_type and row_type != _XSD_STRING:
            return Literal(str(value), datatype=URIRef(row_type))
        return Literal(str(value))

    def extract_count(self, graph: Graph, config: SearchConfig) -> int:
        """Move the total match count from the base URL node into ``config.count``."""
        node = URIRef(self._base_url)
        prop = URIRef(self._schema.search.count)
        value = graph.value(node, prop)
        config.count = int(value) if value is not None else 0
        graph.remove((node, prop, None))
        return config.count

    def to_resources(
        self,
        graph: Graph,
        factory: Callable[[str], RepoResource],
    ) -> list[RepoResource]:
        """Resource handles for all search matches, ordered by their search order.

        Technical triples are stripped from the graph and surfaced as the
        ``search_*`` attributes of each resource.
        """
        search = self._schema.search
        match_prop = URIRef(search.match)
        order_prop = URIRef(search.order)
        base = URIRef(self._base_url)

        subjects = [
            s for s in dict.fromkeys([*graph.subjects(match_prop), *graph.subjects(order_prop)])
            if s != base
        ]

        def position(subject: URIRef) -> float:
            order = graph.value(subject, order_prop)
            return float(order) if order is not None else math.inf

        subjects.sort(key=position)

        resources = []
        for subject in subjects:
            resource = factory(str(subject))
            self._read_search_triples(graph, subject, resource)
            resources.append(resource)

        self.strip_technical(graph)
        for resource, subject in zip(resources, subjects):
            resource.set_graph(graph.resource(subject))
        return resources

    def _read_search_triples(self, graph: Graph, subject: URIRef, resource: RepoResource) -> None:
        search = self._schema.search
        weight = graph.value(subject, URIRef(search.weight))
        if weight is not None:
            resource.search_weight = float(weight)
        resource.search_highlights = [str(o) for o in graph.objects(subject, URIRef(search.fts))]
        resource.search_match_properties = [
            str(o)
            for o in graph.objects(subject, URIRef(search.match))
            if not (isinstance(o, Literal) and o.datatype == XSD.boolean)
        ]
        order_values = sorted(
            (_suffix_number(str(p)[len(search.order_value):]), str(o))
            for p, o in graph.predicate_objects(subject)
            if str(p).startswith(search.order_value)
        )
        resource.search_order_values = [value for _, value in order_values]

    def strip_technical(self, graph: Graph) -> None:
        for prop in self._technical:
            graph.remove((None, prop, None))
        prefix = self._schema.search.order_value
        for prop in {p for p in graph.predicates() if str(p).startswith(prefix)}:
            graph.remove((None, prop, None))


def _suffix_number(suffix: str) -> int:
    return int(suffix) if suffix.isdigit() else 0
