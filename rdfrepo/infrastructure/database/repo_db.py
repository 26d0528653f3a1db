"""Relational metadata reader — repository search and metadata retrieval over SQL.

Every search is a single statement:

    WITH allids AS (<filter> + <authorization>),
         ids AS (<ordering joins> ORDER BY ... LIMIT/OFFSET)
    <metadata of ids in the requested breadth>
    UNION <technical rows: match marker, total count, order, order values, highlights>
"""

import logging
from collections.abc import Iterable, Sequence
from typing import Any

from rdflib import Graph
from rdflib.namespace import XSD
from sqlalchemy import Result
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from rdfrepo.application.interfaces.auth_provider import AuthorizationProvider
from rdfrepo.application.interfaces.metadata_source import MetadataSource
from rdfrepo.application.services.graph_mapper import ResourceGraphMapper
from rdfrepo.domain.entities.metadata_mode import MetadataMode, relatives_params
from rdfrepo.domain.entities.query_fragment import JoinCounter, QueryFragment
from rdfrepo.domain.entities.resource import RepoResource
from rdfrepo.domain.entities.schema import RepositorySchema
from rdfrepo.domain.entities.search_condition import (
    PROPERTY_BINARY,
    CompileContext,
    SearchCondition,
    ValueType,
    escape_fts,
)
from rdfrepo.domain.entities.search_config import SearchConfig, split_order_property
from rdfrepo.domain.exceptions import (
    AmbiguousMatchError,
    BadQueryError,
    MalformedConditionError,
    NotFoundError,
)
from rdfrepo.infrastructure.logging.search_logger import SearchLogger, SearchStage

_NO_METADATA = (
    "SELECT NULL::bigint AS id, NULL::text AS property, NULL::text AS type,"
    " NULL::text AS lang, NULL::text AS value WHERE false\n"
)


class RepoDb(MetadataSource):
    """Read-only repository access on the relational database level."""

    def __init__(
        self,
        session: AsyncSession,
        base_url: str,
        schema: RepositorySchema,
        literal_only_properties: Iterable[str] = (),
        auth: AuthorizationProvider | None = None,
        string_max_length: int = 1000,
        min_timestamp_year: int = -4713,
    ):
        self._session = session
        self.base_url = base_url
        self.schema = schema
        self._auth = auth
        self._context = CompileContext(
            base_url=base_url,
            id_property=schema.id,
            literal_only_properties=frozenset(literal_only_properties),
            string_max_length=string_max_length,
            min_timestamp_year=min_timestamp_year,
        )
        self._mapper = ResourceGraphMapper(base_url, schema)
        self._log = SearchLogger()

    @property
    def session(self) -> AsyncSession:
        return self._session

    @property
    def compile_context(self) -> CompileContext:
        return self._context

    @property
    def mapper(self) -> ResourceGraphMapper:
        return self._mapper

    def set_query_log(self, log: logging.Logger) -> None:
        """Route statement and failure logging to ``log``."""
        self._log = SearchLogger(log)

    # ── Statement execution ─────────────────────────────────────────

    async def execute(self, query: QueryFragment) -> Result:
        """Run a statement; driver failures become ``BadQueryError``."""
        self._log.statement(query)
        statement, binds = query.to_text()
        try:
            return await self._session.execute(statement, binds)
        except SQLAlchemyError as exc:
            self._log.step_error(SearchStage.QUERY, "Query failed", error=exc)
            raise BadQueryError() from exc

    async def fetch_rows(self, query: QueryFragment) -> list[dict[str, Any]]:
        result = await self.execute(query)
        return [dict(row._mapping) for row in result]

    # ── Resource lookup ─────────────────────────────────────────────

    async def get_resource_by_ids(self, ids: list[str]) -> RepoResource:
        if not ids:
            raise NotFoundError(ids)
        query = QueryFragment(
            f"SELECT DISTINCT id FROM identifiers WHERE ids IN ({QueryFragment.placeholders(ids, 'text').sql})",
            tuple(str(i) for i in ids),
        )
        result = await self.execute(query)
        found = [row.id for row in result]
        if not found:
            raise NotFoundError(ids)
        if len(found) > 1:
            raise AmbiguousMatchError([self.base_url + str(i) for i in sorted(found)])
        return self.get_resource_by_id(found[0])

    async def load_resource_metadata(
        self, resource: RepoResource, mode: str, parent_property: str | None
    ) -> Graph:
        """Metadata of a single resource, expressed as a search by its internal id."""
        config = SearchConfig(
            metadata_mode=mode,
            metadata_parent_property=parent_property,
            skip_artificial_properties=True,
        )
        condition = SearchCondition(value=resource.id, type=ValueType.ID)
        query = self.build_search_query(condition.compile(self._context), config)
        rows = await self.fetch_rows(query)
        return self._mapper.rows_to_graph(rows)

    # ── Search ──────────────────────────────────────────────────────

    async def get_resources_by_search_terms(
        self, terms: list[SearchCondition], config: SearchConfig
    ) -> list[RepoResource]:
        graph = await self.get_graph_by_search_terms(terms, config)
        return self._mapper.to_resources(graph, self._resource_factory)

    async def get_resources_by_sql_query(
        self, query: str, params: Sequence[Any], config: SearchConfig
    ) -> list[RepoResource]:
        graph = await self.get_graph_by_sql_query(query, params, config)
        return self._mapper.to_resources(graph, self._resource_factory)

    async def get_graph_by_search_terms(
        self, terms: list[SearchCondition], config: SearchConfig
    ) -> Graph:
        return await self._graph(self.search_terms_query(terms), config)

    async def get_graph_by_sql_query(
        self, query: str, params: Sequence[Any], config: SearchConfig
    ) -> Graph:
        """Like ``get_graph_by_search_terms()`` for a hand-written ``SELECT id ...`` query."""
        return await self._graph(QueryFragment(query, tuple(params)), config)

    async def get_search_graph(self, query: QueryFragment, config: SearchConfig) -> Graph:
        """Search result graph with the technical triples left in place (the REST wire form)."""
        rows = await self.fetch_rows(self.build_search_query(query, config))
        return self._mapper.rows_to_graph(rows)

    async def _graph(self, query: QueryFragment, config: SearchConfig) -> Graph:
        graph = await self.get_search_graph(query, config)
        self._mapper.extract_count(graph, config)
        return graph

    def _resource_factory(self, uri: str) -> RepoResource:
        return RepoResource(uri, self)

    def search_terms_query(self, terms: Sequence[SearchCondition]) -> QueryFragment:
        """Ids matching all conditions — an inner join of the compiled conditions."""
        if not terms:
            raise MalformedConditionError("Empty search term")
        counter = JoinCounter()
        query = QueryFragment("SELECT id FROM ")
        for n, term in enumerate(terms):
            fragment = term.compile(self._context)
            if n == 0:
                query += fragment.join("", "\n", counter)
            else:
                query += fragment.join("JOIN", "USING (id)", counter)
        return query

    def metadata_auth_query(self) -> QueryFragment:
        if self._auth is not None:
            return self._auth.metadata_auth_query()
        return QueryFragment()

    # ── Statement building ──────────────────────────────────────────

    def build_search_query(self, query: QueryFragment, config: SearchConfig) -> QueryFragment:
        """Full search statement returning ``(id, property, type, lang, value)`` rows."""
        counter = JoinCounter()
        joins, columns, order_by = self._order_by_query(config, counter)
        selected = "".join(f", {column}" for column in columns)

        statement = (
            QueryFragment("WITH\n  allids AS (\n    SELECT id FROM (")
            + query
            + QueryFragment(") t ")
            + self.metadata_auth_query()
            + QueryFragment(
                f"\n  ),\n  ids AS (\n"
                f"    SELECT id{selected}, row_number() OVER (ORDER BY {order_by}) AS _ord\n"
                f"    FROM allids\n"
            )
            + joins
            + QueryFragment(f"    ORDER BY {order_by}\n")
            + self._paging_query(config)
            + QueryFragment("\n  )")
            + self._metadata_query(config)
        )
        if not config.skip_artificial_properties:
            statement += self._technical_query(config, columns)
        return statement

    def _order_by_query(
        self, config: SearchConfig, counter: JoinCounter
    ) -> tuple[QueryFragment, list[str], str]:
        joins = QueryFragment()
        columns: list[str] = []
        order: list[str] = []
        for n, value in enumerate(config.order_by):
            prop, ascending = split_order_property(value)
            direction = "" if ascending else " DESC"
            where = "property = ?::text"
            params: list[Any] = [prop]
            if config.order_by_lang:
                where += " AND (type <> ?::text OR lang = ?::text)"
                params += [str(XSD.string), config.order_by_lang]
            joins += QueryFragment(
                f"SELECT id, min(value) AS _ob{n}, min(value_t) AS _obt{n}, min(value_n) AS _obn{n}\n"
                f"      FROM metadata WHERE {where} GROUP BY 1",
                params,
            ).join("    LEFT JOIN", "USING (id)", counter)
            columns.append(f"_ob{n}")
            order.append(
                f"_obt{n}{direction} NULLS LAST, _obn{n}{direction} NULLS LAST, _ob{n}{direction} NULLS LAST"
            )
        order.append("id")
        return joins, columns, ", ".join(order)

    @staticmethod
    def _paging_query(config: SearchConfig) -> QueryFragment:
        query = QueryFragment()
        if config.limit is not None:
            query += QueryFragment("    LIMIT ?::bigint", (config.limit,))
        if config.offset is not None:
            query += QueryFragment(" OFFSET ?::bigint", (config.offset,))
        return query

    def _metadata_query(self, config: SearchConfig) -> QueryFragment:
        mode = config.metadata_mode or MetadataMode.RESOURCE.value
        if mode == MetadataMode.NONE.value:
            return QueryFragment("\n" + _NO_METADATA)
        if mode == MetadataMode.IDS.value:
            return QueryFragment(
                "\nSELECT id, property, type, lang, value FROM metadata JOIN ids USING (id) WHERE property = ?::text\n",
                (self.schema.label,),
            )

        if mode == MetadataMode.RESOURCE.value:
            relatives = QueryFragment(",\n  relatives AS (SELECT id FROM ids)")
        else:
            fwd, back, neighbors, reverse = relatives_params(mode)
            relatives = QueryFragment(
                ",\n  relatives AS (\n"
                "    SELECT DISTINCT (get_relatives(id, ?::text, ?::int, ?::int, ?::bool, ?::bool)).id FROM ids\n"
                "  )",
                (config.metadata_parent_property, fwd, back, neighbors, reverse),
            )
        meta = QueryFragment(
            """,
  meta AS (
    SELECT id, ?::text AS property, 'ID'::text AS type, NULL::text AS lang, ids AS value
    FROM relatives JOIN identifiers USING (id)
    UNION
    SELECT id, property, 'REL'::text AS type, NULL::text AS lang, target_id::text AS value
    FROM relatives JOIN relations USING (id)
    UNION
    SELECT id, property, type, lang, value
    FROM relatives JOIN metadata USING (id)
  )
""",
            (self.schema.id,),
        )
        return relatives + meta + self._output_filter(config)

    @staticmethod
    def _output_filter(config: SearchConfig) -> QueryFragment:
        resource_props = config.resource_properties
        relatives_props = config.relatives_properties
        if not resource_props and not relatives_props:
            return QueryFragment("SELECT id, property, type, lang, value FROM meta\n")

        conditions: list[QueryFragment] = []
        if resource_props:
            conditions.append(
                QueryFragment.placeholders(resource_props, "text").prefix(
                    "ids.id IS NOT NULL AND meta.property IN ("
                ) + QueryFragment(")")
            )
        else:
            conditions.append(QueryFragment("ids.id IS NOT NULL"))
        if relatives_props:
            conditions.append(
                QueryFragment.placeholders(relatives_props, "text").prefix(
                    "ids.id IS NULL AND meta.property IN ("
                ) + QueryFragment(")")
            )
        else:
            conditions.append(QueryFragment("ids.id IS NULL"))
        return QueryFragment(
            "SELECT meta.id, meta.property, meta.type, meta.lang, meta.value\n"
            "FROM meta LEFT JOIN ids ON meta.id = ids.id\nWHERE "
        ) + QueryFragment.concat(conditions, " OR ") + QueryFragment("\n")

    def _technical_query(self, config: SearchConfig, order_columns: list[str]) -> QueryFragment:
        search = self.schema.search
        query = QueryFragment(
            """UNION
SELECT id, ?::text AS property, ?::text AS type, ''::text AS lang, 'true'::text AS value FROM ids
UNION
SELECT NULL::bigint, ?::text, ?::text, ''::text, count(*)::text FROM allids
UNION
SELECT id, ?::text, ?::text, ''::text, _ord::text FROM ids
""",
            (
                search.match, str(XSD.boolean),
                search.count, str(XSD.integer),
                search.order, str(XSD.positiveInteger),
            ),
        )
        for n, column in enumerate(order_columns):
            query += QueryFragment(
                f"UNION\nSELECT id, ?::text, ?::text, ''::text, {column} FROM ids WHERE {column} IS NOT NULL\n",
                (f"{search.order_value}{n + 1}", str(XSD.string)),
            )
        return query + self._fts_query(config)

    def _fts_query(self, config: SearchConfig) -> QueryFragment:
        """``ts_headline()`` highlights of the full-text query within the returned ids."""
        if not config.fts_query:
            return QueryFragment()
        phrase = escape_fts(config.fts_query)
        prop = config.fts_property
        if prop == PROPERTY_BINARY:
            source, where, params = "JOIN ids ON fts.id = ids.id", "", []
        elif prop == self.schema.id:
            source, where, params = "JOIN ids ON fts.iid = ids.id", "", []
        elif prop:
            source = "JOIN metadata m USING (mid) JOIN ids ON m.id = ids.id"
            where, params = " AND m.property = ?::text", [prop]
        else:
            source = "LEFT JOIN metadata m USING (mid) JOIN ids ON COALESCE(fts.id, fts.iid, m.id) = ids.id"
            where, params = "", []
        return QueryFragment(
            f"""UNION
SELECT ids.id, ?::text, ?::text, ''::text,
    ts_headline('simple', fts.raw, websearch_to_tsquery('simple', ?::text), ?::text)
FROM full_text_search fts {source}
WHERE websearch_to_tsquery('simple', ?::text) @@ fts.segments{where}
""",
            (self.schema.search.fts, str(XSD.string), phrase, config.ts_headline_options(), phrase, *params),
        )
