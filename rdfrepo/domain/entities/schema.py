"""Repository schema — logical concepts mapped to the RDF properties of one repository.

Resolved once per repository connection and shared read-only afterwards.
Unknown keys are rejected when the schema is built, not when it is used.
"""

from pydantic import BaseModel, ConfigDict


class SearchSchema(BaseModel):
    """Properties of the technical triples injected into search results."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    match: str = "search://match"
    order: str = "search://order"
    order_value: str = "search://orderValue"
    count: str = "search://count"
    fts: str = "search://fts"
    fts_query: str = "search://ftsQuery"
    fts_property: str = "search://ftsProperty"
    weight: str = "search://weight"

    def technical_properties(self) -> frozenset[str]:
        return frozenset({
            self.match, self.order, self.count, self.fts, self.weight,
        })


class RepositorySchema(BaseModel):
    """Logical name -> RDF property bindings of a repository instance."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    id: str
    label: str
    parent: str
    modification_date: str
    delete: str | None = None
    binary_size: str | None = None
    hash: str | None = None
    mime: str | None = None
    file_name: str | None = None
    search: SearchSchema = SearchSchema()
