"""Weighted search engine — ranked, faceted search over the relational repository.

A search runs as a pipeline of session-local temporary tables:

    _filters  ids satisfying all structural conditions and parent scopes
    _search   match candidates from the full-text and/or spatial signal,
              expanded through named-entity links
    _matches  candidates plus facet rows, with final per-row weights

Result pages rank ids by the product of their per-(property|facet) maximum
weights and are materialized into RDF graphs by ``RepoDb``. The temporary
tables live inside one explicit transaction which ``close_search()`` rolls
back.
"""

import dataclasses
import logging
from collections.abc import Iterable, Mapping, Sequence
from typing import Any

from rdflib import Graph
from rdflib.namespace import XSD

from rdfrepo.application.schemas.search import FacetStats, FacetValue
from rdfrepo.domain.entities.facets import (
    MAP,
    ContinuousFacet,
    Facet,
    LinkPropertyFacet,
    LiteralFacet,
    MapFacet,
    MatchPropertyFacet,
    ObjectFacet,
    parse_facet,
)
from rdfrepo.domain.entities.metadata_mode import UNLIMITED_DEPTH
from rdfrepo.domain.entities.query_fragment import JoinCounter, QueryFragment
from rdfrepo.domain.entities.resource import RepoResource
from rdfrepo.domain.entities.search_condition import PROPERTY_BINARY, SearchCondition, escape_fts
from rdfrepo.domain.entities.search_config import SearchConfig
from rdfrepo.domain.exceptions import FacetConfigurationError
from rdfrepo.infrastructure.database.repo_db import RepoDb
from rdfrepo.infrastructure.logging.search_logger import SearchLogger, SearchStage
from rdfrepo.infrastructure.storage.facet_cache import FacetCache

logger = logging.getLogger(__name__)

FILTERS_TABLE = "_filters"
SEARCH_TABLE = "_search"
MATCHES_TABLE = "_matches"
PAGE_TABLE = "_page"

_EMPTY_CANDIDATES = (
    "SELECT NULL::bigint AS id, NULL::bigint AS ftsid, NULL::text AS property,"
    " NULL::text AS facet, NULL::text AS value, 1.0::float8 AS weight WHERE false"
)


def _weights_cte(name: str, weights: Mapping[str, float], value_cast: str = "text") -> QueryFragment:
    """``name (value, weight) AS (VALUES (?, ?), ...)``."""
    rows = ", ".join(f"(?::{value_cast}, ?::float8)" for _ in weights)
    params: list[Any] = []
    for value, weight in weights.items():
        params.append(int(value) if value_cast == "bigint" else value)
        params.append(weight)
    return QueryFragment(f"{name} (value, weight) AS (VALUES {rows})", params)


def _in_list(column: str, values: Sequence[Any], cast: str = "text") -> QueryFragment:
    return QueryFragment.placeholders(values, cast).prefix(f"{column} IN (") + QueryFragment(")")


def _escape_like(phrase: str) -> str:
    return phrase.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


class WeightedSearchEngine:
    """Ranked and faceted search over a single database session.

    Usage:
        engine = WeightedSearchEngine(repo)
        engine.set_facets([{"type": "literal", "property": "https://.../subject"}])
        await engine.search("climate", language="en")
        resources = await engine.get_search_page_resources(0, 20, SearchConfig(), "en")
        facets = await engine.get_search_facets("en")
        await engine.close_search()

    One search at a time per session: the temporary tables have fixed names.
    """

    def __init__(
        self,
        repo: RepoDb,
        exact_weight: float = 10.0,
        lang_weight: float = 10.0,
        matches_limit: int = 10000,
    ):
        self._repo = repo
        self._session = repo.session
        self._schema = repo.schema
        self._mapper = repo.mapper
        self._log = SearchLogger()
        self._exact_weight = exact_weight
        self._lang_weight = lang_weight
        self._matches_limit = matches_limit
        self._order_property: str | None = None
        self._order_ascending = True
        self._phrase = ""

        self._facets: list[Facet] = []
        self._match_facet: MatchPropertyFacet | None = None
        self._link_facet: LinkPropertyFacet | None = None
        self._map_facet: MapFacet | None = None
        self._discrete: list[LiteralFacet | ObjectFacet] = []
        self._continuous: list[ContinuousFacet] = []

    # ── Configuration ───────────────────────────────────────────────

    def set_facets(self, facets: Iterable[Facet | Mapping[str, Any]], default_weight: float = 1.0) -> None:
        """Register facets, validating each eagerly.

        Wire-form mappings are parsed with ``parse_facet()``; every facet key
        (property, or the facet type for pseudo-facets) may appear only once.
        """
        parsed = [
            parse_facet(f, default_weight) if isinstance(f, Mapping) else f
            for f in facets
        ]
        match_facet = link_facet = map_facet = None
        discrete: list[LiteralFacet | ObjectFacet] = []
        continuous: list[ContinuousFacet] = []
        seen: set[str] = set()
        for facet in parsed:
            key = facet.key()
            if key in seen:
                raise FacetConfigurationError(key, "configured more than once")
            seen.add(key)
            if isinstance(facet, MatchPropertyFacet):
                match_facet = facet
            elif isinstance(facet, LinkPropertyFacet):
                link_facet = facet
            elif isinstance(facet, MapFacet):
                map_facet = facet
            elif isinstance(facet, ContinuousFacet):
                continuous.append(facet)
            else:
                discrete.append(facet)

        self._facets = parsed
        self._match_facet = match_facet
        self._link_facet = link_facet
        self._map_facet = map_facet
        self._discrete = discrete
        self._continuous = continuous

    @property
    def facets(self) -> list[Facet]:
        return list(self._facets)

    def set_exact_weight(self, weight: float) -> None:
        self._exact_weight = weight

    def set_lang_weight(self, weight: float) -> None:
        self._lang_weight = weight

    def set_fallback_order_by(self, property: str, ascending: bool = True) -> None:
        """Order resources of equal weight by a literal property."""
        self._order_property = property
        self._order_ascending = ascending

    def set_query_log(self, log: logging.Logger) -> None:
        self._log = SearchLogger(log)
        self._repo.set_query_log(log)

    # ── Search ──────────────────────────────────────────────────────

    async def search(
        self,
        phrase: str = "",
        language: str = "",
        in_binary: bool = True,
        allowed_properties: Sequence[str] = (),
        search_terms: Sequence[SearchCondition] = (),
        spatial_term: SearchCondition | None = None,
        parent_ids: Sequence[int] = (),
        matches_limit: int | None = None,
    ) -> int:
        """Run the search pipeline and return the number of matched resources.

        Results stay available until ``close_search()``.
        """
        if self._session.in_transaction():
            await self._session.rollback()
        await self._session.begin()

        self._phrase = phrase
        filtered = bool(search_terms) or bool(parent_ids)
        limit = matches_limit if matches_limit is not None else self._matches_limit

        if filtered:
            with self._log.timed_step(
                SearchStage.FILTERS, "Applying filters",
                conditions=len(search_terms), parents=len(parent_ids),
            ):
                await self._repo.execute(self._filters_query(search_terms, parent_ids))

        with self._log.timed_step(SearchStage.MATCHES, "Collecting match candidates", phrase=phrase or "-"):
            await self._repo.execute(
                self._search_query(phrase, language, in_binary, allowed_properties, spatial_term, filtered, limit)
            )

        with self._log.timed_step(SearchStage.FACETS, "Weighting matches and facets", facets=len(self._facets)):
            await self._repo.execute(self._matches_query())
            await self._repo.execute(QueryFragment(
                f"DELETE FROM {MATCHES_TABLE} WHERE id IN (SELECT id FROM {MATCHES_TABLE} WHERE weight = 0)"
            ))

        result = await self._repo.execute(QueryFragment(f"SELECT count(DISTINCT id) FROM {MATCHES_TABLE}"))
        count = int(result.scalar_one())
        self._log.stats(matches=count)
        return count

    async def close_search(self) -> None:
        """Drop all temporary tables of the current search."""
        await self._session.rollback()

    # ── Stage A: filters ────────────────────────────────────────────

    def _filters_query(self, terms: Sequence[SearchCondition], parent_ids: Sequence[int]) -> QueryFragment:
        parts = [term.compile(self._repo.compile_context) for term in terms]
        if parent_ids:
            parts.append(QueryFragment.concat(
                (
                    QueryFragment(
                        f"SELECT id FROM get_relatives(?::bigint, ?::text, {UNLIMITED_DEPTH}, 0, false, false)",
                        (int(parent_id), self._schema.parent),
                    )
                    for parent_id in parent_ids
                ),
                "\nUNION\n",
            ))
        counter = JoinCounter("f")
        query = QueryFragment(f"CREATE TEMPORARY TABLE {FILTERS_TABLE} AS\nSELECT DISTINCT id FROM ")
        for n, part in enumerate(parts):
            if n == 0:
                query += part.join("", "\n", counter)
            else:
                query += part.join("JOIN", "USING (id)", counter)
        return query

    # ── Stage B: match candidates ───────────────────────────────────

    def _search_query(
        self,
        phrase: str,
        language: str,
        in_binary: bool,
        allowed_properties: Sequence[str],
        spatial_term: SearchCondition | None,
        filtered: bool,
        limit: int,
    ) -> QueryFragment:
        ctes: list[QueryFragment] = []
        link = self._link_facet
        match = self._match_facet
        if link is not None:
            if match is not None and match.weights:
                ctes.append(_weights_cte("weights_p", match.weights))
            if link.weights:
                ctes.append(_weights_cte("weights_ne", link.weights))

        signals: list[str] = []
        if phrase:
            ctes.append(
                self._fts_signal(phrase, language, in_binary, allowed_properties).prefix("search_fts AS (\n")
                + QueryFragment("\n)")
            )
            signals.append("search_fts")
        if spatial_term is not None:
            ctes.append(
                self._spatial_signal(spatial_term, in_binary, allowed_properties).prefix("search_spatial AS (\n")
                + QueryFragment("\n)")
            )
            signals.append("search_spatial")

        if len(signals) == 2:
            # both signals have to agree on the id, rows of both are kept
            candidates = (
                "SELECT * FROM search_fts WHERE id IN (SELECT id FROM search_spatial)\n"
                "UNION ALL\n"
                "SELECT * FROM search_spatial WHERE id IN (SELECT id FROM search_fts)"
            )
        elif signals:
            candidates = f"SELECT * FROM {signals[0]}"
        elif filtered:
            candidates = (
                "SELECT id, NULL::bigint AS ftsid, NULL::text AS property, NULL::text AS facet,"
                f" NULL::text AS value, 1.0::float8 AS weight FROM {FILTERS_TABLE}"
            )
        else:
            candidates = _EMPTY_CANDIDATES
        ctes.append(QueryFragment(f"search1 AS (\n{candidates}\n)"))

        restrict = f"WHERE EXISTS (SELECT 1 FROM {FILTERS_TABLE} f WHERE f.id = s.id)" if filtered and signals else ""
        body = QueryFragment(
            "SELECT s.id, s.ftsid, s.property, NULL::text AS link_property, s.facet, s.value, s.weight\n"
            f"FROM search1 s {restrict}"
        )
        if link is not None:
            body += self._link_expansion(link, match, filtered)

        return (
            QueryFragment(f"CREATE TEMPORARY TABLE {SEARCH_TABLE} AS\nWITH\n")
            + QueryFragment.concat(ctes, ",\n")
            + QueryFragment("\nSELECT * FROM (\n")
            + body
            + QueryFragment("\n) t\nORDER BY weight DESC\nLIMIT ?::bigint", (limit,))
        )

    def _fts_signal(
        self, phrase: str, language: str, in_binary: bool, allowed_properties: Sequence[str]
    ) -> QueryFragment:
        property_expr = (
            "CASE WHEN sm.property IS NOT NULL THEN sm.property "
            f"WHEN f.iid IS NOT NULL THEN ?::text ELSE '{PROPERTY_BINARY}' END"
        )
        query = QueryFragment(
            f"SELECT COALESCE(f.id, f.iid, sm.id) AS id, f.ftsid, {property_expr} AS property,\n"
            "    NULL::text AS facet, NULL::text AS value,\n"
            "    CASE WHEN f.raw = ?::text THEN ?::float8 ELSE 1.0::float8 END",
            (self._schema.id, phrase, self._exact_weight),
        )
        if language:
            query += QueryFragment(
                " * CASE WHEN sm.lang = ?::text THEN ?::float8 ELSE 1.0::float8 END",
                (language, self._lang_weight),
            )
        query += QueryFragment(
            " AS weight\n"
            "FROM full_text_search f LEFT JOIN metadata sm USING (mid)\n"
            "WHERE (websearch_to_tsquery('simple', ?::text) @@ f.segments OR f.raw ILIKE ?::text)",
            (escape_fts(phrase), f"%{_escape_like(phrase)}%"),
        )
        if not in_binary:
            query += QueryFragment(" AND f.id IS NULL")
        if allowed_properties:
            query += QueryFragment(f" AND {property_expr}", (self._schema.id,)) + _in_list("", allowed_properties)
        return query

    def _spatial_signal(
        self, term: SearchCondition, in_binary: bool, allowed_properties: Sequence[str]
    ) -> QueryFragment:
        property_expr = f"CASE WHEN m.property IS NOT NULL THEN m.property ELSE '{PROPERTY_BINARY}' END"
        query = QueryFragment(
            f"SELECT COALESCE(m.id, ss.id) AS id, NULL::bigint AS ftsid, {property_expr} AS property,\n"
            f"    '{MAP}'::text AS facet, st_astext(ss.geom::geometry) AS value, 1.0::float8 AS weight\n"
            "FROM spatial_search ss LEFT JOIN metadata m USING (mid)\n"
            "WHERE "
        ) + term.spatial_predicate("ss.geom")
        if isinstance(term.property, str) and term.property:
            query += QueryFragment(" AND m.property = ?::text", (term.property,))
        if not in_binary:
            query += QueryFragment(" AND ss.id IS NULL")
        if allowed_properties:
            query += QueryFragment(f" AND {property_expr}") + _in_list("", allowed_properties)
        return query

    def _link_expansion(
        self, link: LinkPropertyFacet, match: MatchPropertyFacet | None, filtered: bool
    ) -> QueryFragment:
        """Matches on named entities propagated to the resources referring to them.

        weight = match weight × matched property weight × linking property weight
        """
        if match is not None and match.weights:
            outer_weight = QueryFragment("coalesce(t.weight_p, ?::float8)", (match.default_weight,))
            inner_weight = QueryFragment("coalesce(wp.weight, ?::float8)", (match.default_weight,))
            weight_join = "LEFT JOIN weights_p wp ON s.property = wp.value"
        else:
            default = match.default_weight if match is not None else 1.0
            outer_weight = QueryFragment("?::float8", (default,))
            inner_weight = QueryFragment("?::float8", (default,))
            weight_join = ""
        if link.weights:
            link_weight = QueryFragment("coalesce(wne.weight, ?::float8)", (link.default_weight,))
            link_join = "LEFT JOIN weights_ne wne ON r.property = wne.value"
        else:
            link_weight = QueryFragment("?::float8", (link.default_weight,))
            link_join = ""
        weight_p = "wp.weight" if weight_join else "NULL::float8"
        restrict = f"WHERE EXISTS (SELECT 1 FROM {FILTERS_TABLE} f WHERE f.id = r.id)" if filtered else ""

        return (
            QueryFragment(
                "\nUNION\n"
                "SELECT r.id, t.ftsid, t.property, r.property AS link_property, NULL::text AS facet,"
                " NULL::text AS value, t.weight * "
            )
            + outer_weight
            + QueryFragment(" * ")
            + link_weight
            + QueryFragment(
                " AS weight\n"
                "FROM (\n"
                f"    SELECT DISTINCT ON (s.id) s.*, {weight_p} AS weight_p\n"
                f"    FROM search1 s {weight_join}\n"
                "    ORDER BY s.id, s.weight * "
            )
            + inner_weight
            + QueryFragment(
                " DESC\n) t\n"
                "JOIN metadata mne ON t.id = mne.id AND mne.property = ?::text AND ",
                (link.property,),
            )
            + _in_list("mne.value", link.classes)
            + QueryFragment(f"\nJOIN relations r ON t.id = r.target_id\n{link_join}\n{restrict}")
        )

    # ── Stage C: facets and final weights ───────────────────────────

    def _matches_query(self) -> QueryFragment:
        ctes: list[QueryFragment] = []
        match = self._match_facet
        if match is not None and match.weights:
            ctes.append(_weights_cte("weights_p", match.weights))
        for n, facet in enumerate(self._discrete):
            if facet.weights:
                cast = "bigint" if isinstance(facet, ObjectFacet) else "text"
                ctes.append(_weights_cte(f"weights_{n}", facet.weights, cast))

        query = QueryFragment(f"CREATE TEMPORARY TABLE {MATCHES_TABLE} AS\n")
        if ctes:
            query += QueryFragment("WITH\n") + QueryFragment.concat(ctes, ",\n") + QueryFragment("\n")

        # property weights apply to direct matches; link rows carry them already
        if match is None:
            weight = QueryFragment("s.weight")
        elif match.weights:
            weight = QueryFragment(
                "CASE WHEN s.property IS NULL OR s.link_property IS NOT NULL THEN s.weight"
                " ELSE s.weight * coalesce(w.weight, ?::float8) END",
                (match.default_weight,),
            )
        else:
            weight = QueryFragment(
                "CASE WHEN s.property IS NULL OR s.link_property IS NOT NULL THEN s.weight"
                " ELSE s.weight * ?::float8 END",
                (match.default_weight,),
            )
        query += (
            QueryFragment("SELECT s.id, s.ftsid, s.property, s.link_property, s.facet, s.value, ")
            + weight
            + QueryFragment(f" AS weight\nFROM {SEARCH_TABLE} s")
        )
        if match is not None and match.weights:
            query += QueryFragment(" LEFT JOIN weights_p w ON s.property = w.value")
        query += QueryFragment("\n")

        for n, facet in enumerate(self._discrete):
            query += self._discrete_facet_rows(n, facet)
        for facet in self._continuous:
            query += self._continuous_facet_rows(facet)
        return query

    @staticmethod
    def _discrete_facet_rows(n: int, facet: LiteralFacet | ObjectFacet) -> QueryFragment:
        table, column = ("relations", "target_id") if isinstance(facet, ObjectFacet) else ("metadata", "value")
        if facet.weights:
            weight = QueryFragment("coalesce(w.weight, ?::float8)", (facet.default_weight,))
            weight_join = f"LEFT JOIN weights_{n} w ON m.{column} = w.value"
        else:
            # unweighted facets do not affect ranking
            weight = QueryFragment("NULL::float8")
            weight_join = ""
        return (
            QueryFragment(
                "UNION\n"
                "SELECT s.id, NULL::bigint, NULL::text, NULL::text, m.property, "
                f"m.{column}::text, "
            )
            + weight
            + QueryFragment(
                f"\nFROM (SELECT DISTINCT id FROM {SEARCH_TABLE}) s\n"
                f"JOIN {table} m ON s.id = m.id AND m.property = ?::text\n"
                f"{weight_join}\n",
                (facet.property,),
            )
        )

    @staticmethod
    def _continuous_facet_rows(facet: ContinuousFacet) -> QueryFragment:
        def bound(function: str, alias: str, properties: Sequence[str]) -> QueryFragment:
            return (
                QueryFragment(f"SELECT m.id, {function}(m.value_n) AS {alias} FROM metadata m WHERE ")
                + _in_list("m.property", properties)
                + QueryFragment(
                    f" AND EXISTS (SELECT 1 FROM {SEARCH_TABLE} x WHERE x.id = m.id) GROUP BY 1"
                )
            )

        counter = JoinCounter("c")
        return (
            QueryFragment(
                "UNION\n"
                "SELECT s.id, NULL::bigint, NULL::text, NULL::text, ?::text,\n"
                "    '[' || least(vmin, vmax)::text || ', ' || greatest(vmin, vmax)::text || ']', NULL::float8\n"
                f"FROM (SELECT DISTINCT id FROM {SEARCH_TABLE}) s\n",
                (facet.property,),
            )
            + bound("min", "vmin", facet.start).join("JOIN", "USING (id)", counter)
            + bound("max", "vmax", facet.end).join("JOIN", "USING (id)", counter)
            + QueryFragment("WHERE vmin IS NOT NULL AND vmax IS NOT NULL\n")
        )

    # ── Result pages ────────────────────────────────────────────────

    async def get_search_page(
        self, page: int, page_size: int, config: SearchConfig, pref_lang: str = ""
    ) -> list[dict[str, Any]]:
        """Rows of one result page: technical rows followed by resource metadata.

        Resources are ranked by the product of their per-(property, facet)
        maximum weights, so a facet on a matched property is a factor of its
        own. Ties fall back to the order property, then to the id.
        """
        with self._log.timed_step(SearchStage.PAGE, "Ranking", page=page, page_size=page_size):
            await self._repo.execute(QueryFragment(f"DROP TABLE IF EXISTS {PAGE_TABLE}"))
            await self._repo.execute(self._page_query(page, page_size, pref_lang))
            rows = await self._repo.fetch_rows(self._technical_query(config))

        metadata_config = dataclasses.replace(
            config, skip_artificial_properties=True, limit=None, offset=None, order_by=[]
        )
        query = self._repo.build_search_query(QueryFragment(f"SELECT id FROM {PAGE_TABLE}"), metadata_config)
        with self._log.timed_step(SearchStage.PAGE, "Fetching metadata", mode=metadata_config.metadata_mode):
            rows.extend(await self._repo.fetch_rows(query))
        return rows

    async def get_search_page_graph(
        self, page: int, page_size: int, config: SearchConfig, pref_lang: str = ""
    ) -> Graph:
        rows = await self.get_search_page(page, page_size, config, pref_lang)
        graph = self._mapper.rows_to_graph(rows)
        self._mapper.extract_count(graph, config)
        return graph

    async def get_search_page_resources(
        self, page: int, page_size: int, config: SearchConfig, pref_lang: str = ""
    ) -> list[RepoResource]:
        graph = await self.get_search_page_graph(page, page_size, config, pref_lang)
        return self._mapper.to_resources(graph, lambda uri: RepoResource(uri, self._repo))

    def _page_query(self, page: int, page_size: int, pref_lang: str) -> QueryFragment:
        order = "r.weight DESC NULLS LAST"
        order_join = QueryFragment()
        if self._order_property:
            direction = "ASC" if self._order_ascending else "DESC"
            order += f", COALESCE(o.o1, o.o2) {direction} NULLS LAST"
            order_join = QueryFragment(
                "LEFT JOIN (\n"
                "    SELECT id, min(value) FILTER (WHERE lang = ?::text) AS o1, min(value) AS o2\n"
                "    FROM metadata m\n"
                f"    WHERE m.property = ?::text AND EXISTS (SELECT 1 FROM {MATCHES_TABLE} x WHERE x.id = m.id)\n"
                "    GROUP BY 1\n"
                ") o ON r.id = o.id\n",
                (pref_lang, self._order_property),
            )
        offset = page * page_size
        return (
            QueryFragment(
                f"CREATE TEMPORARY TABLE {PAGE_TABLE} AS\n"
                "SELECT id, weight, ord FROM (\n"
                f"  SELECT r.id, r.weight, row_number() OVER (ORDER BY {order}, r.id) AS ord\n"
                "  FROM (\n"
                "    SELECT id, exp(sum(ln(weight))) AS weight\n"
                "    FROM (\n"
                "      SELECT id, property, facet, max(weight) AS weight\n"
                f"      FROM {MATCHES_TABLE}\n"
                "      GROUP BY id, property, facet\n"
                "    ) w\n"
                "    GROUP BY 1\n"
                "  ) r\n"
            )
            + order_join
            + QueryFragment(
                ") ranked\nWHERE ord > ?::bigint AND ord <= ?::bigint",
                (offset, offset + page_size),
            )
        )

    def _technical_query(self, config: SearchConfig) -> QueryFragment:
        search = self._schema.search
        query = QueryFragment(
            "SELECT id, property, type, lang, value FROM (\n"
            "  SELECT NULL::bigint AS id, ?::text AS property, ?::text AS type, ''::text AS lang,"
            " count(DISTINCT id)::text AS value, 0::bigint AS ftsid\n"
            f"  FROM {MATCHES_TABLE}\n"
            "  UNION\n"
            f"  SELECT id, ?::text, ?::text, ''::text, ord::text, 0::bigint FROM {PAGE_TABLE}\n"
            "  UNION\n"
            f"  SELECT id, ?::text, ?::text, ''::text, weight::text, 0::bigint FROM {PAGE_TABLE}"
            " WHERE weight IS NOT NULL\n"
            "  UNION\n"
            "  SELECT id, ?::text, ?::text, ''::text, coalesce(link_property, property), ftsid\n"
            f"  FROM {PAGE_TABLE} JOIN {MATCHES_TABLE} USING (id)\n"
            "  WHERE coalesce(link_property, property) IS NOT NULL\n",
            (
                search.count, str(XSD.integer),
                search.order, str(XSD.integer),
                search.weight, str(XSD.double),
                search.match, str(XSD.anyURI),
            ),
        )
        if self._phrase:
            query += QueryFragment(
                "  UNION\n"
                "  SELECT p.id, ?::text, ?::text, ''::text,"
                " ts_headline('simple', f.raw, websearch_to_tsquery('simple', ?::text), ?::text), m.ftsid\n"
                f"  FROM {PAGE_TABLE} p JOIN {MATCHES_TABLE} m USING (id)"
                " JOIN full_text_search f ON f.ftsid = m.ftsid\n",
                (search.fts, str(XSD.string), escape_fts(self._phrase), config.ts_headline_options()),
            )
        return query + QueryFragment(") t\nORDER BY ftsid NULLS FIRST")

    # ── Facet statistics ────────────────────────────────────────────

    async def get_search_facets(self, pref_lang: str = "") -> dict[str, FacetStats]:
        """Statistics of all facets over the current match set."""
        stats: dict[str, FacetStats] = {}
        with self._log.timed_step(SearchStage.STATS, "Computing facet statistics"):
            await self._match_property_stats(stats)
            if self._link_facet is not None:
                await self._link_property_stats(stats, self._link_facet)
            for facet in self._discrete:
                stats[facet.key()] = FacetStats(property=facet.property, label=facet.label, type=facet.type)
            await self._object_facet_stats(stats, pref_lang)
            await self._literal_facet_stats(stats)
            for facet in self._continuous:
                stats[facet.key()] = await self._continuous_facet_stats(facet)
            if self._map_facet is not None:
                stats[MAP] = await self._map_facet_stats(self._map_facet)
        return stats

    async def _match_property_stats(self, stats: dict[str, FacetStats]) -> None:
        rows = await self._repo.fetch_rows(QueryFragment(
            "SELECT property AS value, count(DISTINCT id) AS count\n"
            f"FROM {MATCHES_TABLE} WHERE property IS NOT NULL\n"
            "GROUP BY 1 ORDER BY 2 DESC, 1"
        ))
        if rows:
            facet = self._match_facet or MatchPropertyFacet()
            stats[facet.key()] = FacetStats(
                property=facet.key(),
                label=facet.label,
                type=facet.type,
                values=[FacetValue(value=r["value"], label=r["value"], count=r["count"]) for r in rows],
            )

    async def _link_property_stats(self, stats: dict[str, FacetStats], facet: LinkPropertyFacet) -> None:
        rows = await self._repo.fetch_rows(QueryFragment(
            "SELECT link_property AS value, count(DISTINCT id) AS count\n"
            f"FROM {MATCHES_TABLE} WHERE link_property IS NOT NULL\n"
            "GROUP BY 1 ORDER BY 2 DESC, 1"
        ))
        if rows:
            stats[facet.key()] = FacetStats(
                property=facet.property,
                label=facet.label,
                type=facet.type,
                values=[FacetValue(value=r["value"], label=r["value"], count=r["count"]) for r in rows],
            )

    async def _object_facet_stats(self, stats: dict[str, FacetStats], pref_lang: str) -> None:
        properties = [f.property for f in self._discrete if isinstance(f, ObjectFacet)]
        if not properties:
            return
        query = (
            QueryFragment(
                "SELECT facet, value, label, count FROM (\n"
                "  SELECT DISTINCT ON (t.facet, t.target)\n"
                "    t.facet, ?::text || t.target::text AS value, m.value AS label, t.count\n"
                "  FROM (\n"
                "    SELECT facet, value::bigint AS target, count(DISTINCT id) AS count\n"
                f"    FROM {MATCHES_TABLE} WHERE ",
                (self._repo.base_url,),
            )
            + _in_list("facet", properties)
            + QueryFragment(
                "\n    GROUP BY 1, 2\n"
                "  ) t\n"
                "  LEFT JOIN metadata m ON m.id = t.target AND m.property = ?::text\n"
                "  ORDER BY t.facet, t.target, m.lang = ?::text DESC NULLS LAST\n"
                ") x\n"
                "ORDER BY count DESC, label",
                (self._schema.label, pref_lang),
            )
        )
        for row in await self._repo.fetch_rows(query):
            stats[row["facet"]].values.append(
                FacetValue(value=row["value"], label=row["label"] or row["value"], count=row["count"])
            )

    async def _literal_facet_stats(self, stats: dict[str, FacetStats]) -> None:
        properties = [f.property for f in self._discrete if isinstance(f, LiteralFacet)]
        if not properties:
            return
        query = (
            QueryFragment(f"SELECT facet, value, count(DISTINCT id) AS count\nFROM {MATCHES_TABLE}\nWHERE ")
            + _in_list("facet", properties)
            + QueryFragment("\nGROUP BY 1, 2\nORDER BY 1, 3 DESC, 2")
        )
        for row in await self._repo.fetch_rows(query):
            stats[row["facet"]].values.append(
                FacetValue(value=row["value"], label=row["value"], count=row["count"])
            )

    async def _continuous_facet_stats(self, facet: ContinuousFacet) -> FacetStats:
        stats = FacetStats(property=facet.property, label=facet.label, type=facet.type, continuous=True)
        limits = QueryFragment(
            "SELECT greatest(min(lower(value::numrange)), ?::numeric) AS start,\n"
            "       least(max(upper(value::numrange)), ?::numeric) AS stop,\n"
            "       count(DISTINCT value) AS nd\n"
            f"FROM {MATCHES_TABLE} WHERE facet = ?::text",
            (facet.min, facet.max, facet.property),
        )
        if not facet.distribution:
            rows = await self._repo.fetch_rows(limits)
            if rows and rows[0]["start"] is not None:
                stats.min = float(rows[0]["start"])
                stats.max = float(rows[0]["stop"])
            return stats

        for row in await self._repo.fetch_rows(self._histogram_query(facet, limits)):
            stats.values.append(FacetValue(
                label=row["label"],
                count=row["count"],
                lower=float(row["lower"]),
                upper=float(row["upper"]),
            ))
        if stats.values:
            stats.min = stats.values[0].lower
            stats.max = stats.values[-1].upper
        return stats

    @staticmethod
    def _histogram_query(facet: ContinuousFacet, limits: QueryFragment) -> QueryFragment:
        """Bins of a continuous facet; the last bin is closed.

        With no decimal precision the bin width never drops below 1.
        """
        if facet.precision == 0:
            step_sql = "CASE WHEN range > least(?::numeric, nd) THEN range / least(?::numeric, nd) ELSE 1 END"
            step_params: tuple[Any, ...] = (facet.bins, facet.bins)
        else:
            step_sql = "CASE WHEN range > 0 THEN range / least(?::numeric, nd) ELSE 1 END"
            step_params = (facet.bins,)
        return (
            limits.prefix("WITH\n  limits AS (\n")
            + QueryFragment(
                "\n  ),\n"
                f"  steps AS (\n    SELECT {step_sql} AS step,\n",
                step_params,
            )
            + QueryFragment(f"      round(generate_series(start, stop, {step_sql}), ?::int) AS steps\n",
                            (*step_params, facet.precision))
            + QueryFragment(
                "    FROM (SELECT start, stop, stop - start AS range, nd FROM limits) l\n"
                "  ),\n"
                "  bins AS (\n"
                "    SELECT CASE WHEN t2.row = 1\n"
                "        THEN numrange(t2.start, greatest(t2.start, limits.stop), '[]')\n"
                "        ELSE numrange(t2.start, t2.stop, '[)') END AS bin\n"
                "    FROM limits, (\n"
                "      SELECT start, stop, row_number() OVER (ORDER BY start DESC) AS row\n"
                "      FROM (SELECT step, steps AS start, lead(steps) OVER (ORDER BY steps) AS stop FROM steps) t1\n"
                "      WHERE stop IS NOT NULL OR step = 1\n"
                "    ) t2\n"
                "  )\n"
                "SELECT bin::text AS label, count(DISTINCT m.id) AS count, lower(bin) AS lower, upper(bin) AS upper\n"
                f"FROM bins b JOIN {MATCHES_TABLE} m ON m.facet = ?::text AND b.bin && m.value::numrange\n"
                "GROUP BY b.bin\n"
                "ORDER BY lower(b.bin)",
                (facet.property,),
            )
        )

    async def _map_facet_stats(self, facet: MapFacet) -> FacetStats:
        rows = await self._repo.fetch_rows(QueryFragment(
            "SELECT st_astext(st_union(st_centroid(g))) AS value, count(DISTINCT id) AS count FROM (\n"
            "  SELECT m.id, ss.geom::geometry AS g\n"
            "  FROM spatial_search ss JOIN metadata m USING (mid)\n"
            f"  WHERE EXISTS (SELECT 1 FROM {MATCHES_TABLE} x WHERE x.id = m.id)\n"
            "  UNION ALL\n"
            "  SELECT ss.id, ss.geom::geometry\n"
            "  FROM spatial_search ss\n"
            f"  WHERE EXISTS (SELECT 1 FROM {MATCHES_TABLE} x WHERE x.id = ss.id)\n"
            ") t"
        ))
        stats = FacetStats(property=MAP, label=facet.label, type=facet.type)
        if rows and rows[0]["value"] is not None:
            stats.values.append(FacetValue(value=rows[0]["value"], label=MAP, count=rows[0]["count"]))
        return stats

    # ── Initial facets ──────────────────────────────────────────────

    async def get_initial_facets(
        self, pref_lang: str = "", cache_file: str = "", force: bool = False
    ) -> list[FacetStats]:
        """Facet statistics over the whole repository, cached until the next modification."""
        result = await self._repo.execute(QueryFragment(
            "SELECT max(value_t)::text FROM metadata WHERE property = ?::text",
            (self._schema.modification_date,),
        ))
        last_modified = result.scalar_one_or_none() or ""

        cache = FacetCache(cache_file) if cache_file else None
        if cache is not None and not force:
            cached = cache.load()
            if cached is not None and cached.date is not None and cached.date >= last_modified:
                logger.debug("Initial facets served from %s (%s)", cache_file, cached.date)
                return cached.facets

        facets: list[FacetStats] = []
        with self._log.timed_step(SearchStage.STATS, "Computing initial facets", facets=len(self._facets)):
            for facet in self._facets:
                if isinstance(facet, ObjectFacet):
                    facets.append(await self._initial_object_facet(facet, pref_lang))
                elif isinstance(facet, LiteralFacet):
                    facets.append(await self._initial_literal_facet(facet, pref_lang))
                elif isinstance(facet, ContinuousFacet):
                    facets.append(await self._initial_continuous_facet(facet))
                elif isinstance(facet, MapFacet):
                    facets.append(await self._initial_map_facet(facet))

        if cache is not None:
            cache.save(last_modified, facets)
        return facets

    async def _initial_object_facet(self, facet: ObjectFacet, pref_lang: str) -> FacetStats:
        query = QueryFragment()
        weight_join, weight_order = "", ""
        if facet.weights:
            query = QueryFragment("WITH ") + _weights_cte("w", facet.weights, "bigint") + QueryFragment("\n")
            weight_join = "LEFT JOIN w ON w.value = t.target"
            weight_order = "w.weight DESC NULLS LAST, "
        query += QueryFragment(
            "SELECT ?::text || t.target::text AS value, coalesce(t.label, t.target::text) AS label, t.count\n"
            "FROM (\n"
            "  SELECT DISTINCT ON (r.target) r.target, m.value AS label, r.count\n"
            "  FROM (\n"
            "    SELECT target_id AS target, count(*) AS count FROM relations WHERE property = ?::text GROUP BY 1\n"
            "  ) r\n"
            "  LEFT JOIN metadata m ON m.id = r.target AND m.property = ?::text\n"
            "  ORDER BY r.target, m.lang = ?::text DESC NULLS LAST\n"
            f") t {weight_join}\n"
            f"ORDER BY {weight_order}t.count DESC, label",
            (self._repo.base_url, facet.property, self._schema.label, pref_lang),
        )
        rows = await self._repo.fetch_rows(query)
        return FacetStats(
            property=facet.property,
            label=facet.label,
            type=facet.type,
            values=[FacetValue(value=r["value"], label=r["label"], count=r["count"]) for r in rows],
        )

    async def _initial_literal_facet(self, facet: LiteralFacet, pref_lang: str) -> FacetStats:
        query = QueryFragment()
        weight_join, weight_order = "", ""
        if facet.weights:
            query = QueryFragment("WITH ") + _weights_cte("w", facet.weights) + QueryFragment("\n")
            weight_join = "LEFT JOIN w USING (value)"
            weight_order = "w.weight DESC NULLS LAST, "
        query += QueryFragment(
            "SELECT value, c.count\n"
            "FROM (\n"
            "  SELECT value, count(*) AS count\n"
            "  FROM (\n"
            "    SELECT DISTINCT ON (id) id, value FROM metadata WHERE property = ?::text\n"
            "    ORDER BY id, lang = ?::text DESC NULLS LAST\n"
            "  ) t\n"
            "  GROUP BY 1\n"
            f") c {weight_join}\n"
            f"ORDER BY {weight_order}c.count DESC, value",
            (facet.property, pref_lang),
        )
        rows = await self._repo.fetch_rows(query)
        return FacetStats(
            property=facet.property,
            label=facet.label,
            type=facet.type,
            values=[FacetValue(value=r["value"], label=r["value"], count=r["count"]) for r in rows],
        )

    async def _initial_continuous_facet(self, facet: ContinuousFacet) -> FacetStats:
        query = (
            QueryFragment("SELECT (SELECT min(value_n) FROM metadata WHERE ")
            + _in_list("property", facet.start)
            + QueryFragment(") AS vmin, (SELECT max(value_n) FROM metadata WHERE ")
            + _in_list("property", facet.end)
            + QueryFragment(") AS vmax")
        )
        row = (await self._repo.fetch_rows(query))[0]
        stats = FacetStats(property=facet.property, label=facet.label, type=facet.type, continuous=True)
        if row["vmin"] is not None:
            stats.min = float(row["vmin"]) if facet.min is None else max(float(row["vmin"]), facet.min)
        if row["vmax"] is not None:
            stats.max = float(row["vmax"]) if facet.max is None else min(float(row["vmax"]), facet.max)
        return stats

    async def _initial_map_facet(self, facet: MapFacet) -> FacetStats:
        rows = await self._repo.fetch_rows(QueryFragment(
            "SELECT st_astext(st_union(st_centroid(geom::geometry))) AS value, count(*) AS count FROM spatial_search"
        ))
        stats = FacetStats(property=MAP, label=facet.label, type=facet.type)
        if rows and rows[0]["value"] is not None:
            stats.values.append(FacetValue(value=rows[0]["value"], label=MAP, count=rows[0]["count"]))
        return stats
