"""Unit tests for the WeightedSearchEngine pipeline statements (fake session)."""

from decimal import Decimal

import pytest
from rdflib import URIRef
from rdflib.namespace import XSD

from conftest import BASE_URL, SCHEMA, FakeSession
from rdfrepo.application.services.weighted_search import WeightedSearchEngine
from rdfrepo.domain.entities.facets import LiteralFacet
from rdfrepo.domain.entities.search_condition import SearchCondition
from rdfrepo.domain.entities.search_config import SearchConfig
from rdfrepo.domain.exceptions import BadQueryError, FacetConfigurationError
from rdfrepo.infrastructure.database.repo_db import RepoDb

LANG = "https://vocabs.example.org/hasLanguage"
LICENSE = "https://vocabs.example.org/hasLicense"
YEAR = "https://vocabs.example.org/year"
PERSON = "https://vocabs.example.org/Person"
AUTHOR = "https://vocabs.example.org/hasAuthor"

COUNT_SQL = "SELECT count(DISTINCT id) FROM _matches"


def _engine(responder=None) -> tuple[WeightedSearchEngine, FakeSession]:
    def respond(sql: str):
        if sql.startswith(COUNT_SQL):
            return [{"count": 3}]
        return responder(sql) if responder else []

    session = FakeSession(respond)
    return WeightedSearchEngine(RepoDb(session, BASE_URL, SCHEMA)), session


def _statement(session: FakeSession, contains: str) -> tuple[str, dict]:
    matches = [(s, b) for s, b in session.statements if contains in s]
    assert len(matches) == 1, f"expected one statement containing {contains!r}"
    return matches[0]


# ── Facet registration ───────────────────────────────────────────────


def test_set_facets_parses_wire_form_and_objects():
    engine, _ = _engine()
    engine.set_facets([
        {"type": "matchProperty", "weights": {SCHEMA.label: 2}},
        LiteralFacet(property=LANG),
        {"type": "map"},
    ])

    assert [f.key() for f in engine.facets] == ["matchProperty", LANG, "map"]


def test_duplicate_facets_are_rejected():
    engine, _ = _engine()

    with pytest.raises(FacetConfigurationError):
        engine.set_facets([{"type": "literal", "property": LANG}, {"type": "object", "property": LANG}])
    with pytest.raises(FacetConfigurationError):
        engine.set_facets([{"type": "matchProperty"}, {"type": "matchProperty"}])


# ── Search stages ────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_phrase_search_runs_stages_in_order():
    engine, session = _engine()

    count = await engine.search("climate", language="en", allowed_properties=[SCHEMA.label])

    assert count == 3
    assert session.transaction
    executed = [s.split("\n")[0] for s, _ in session.statements]
    assert executed == [
        "CREATE TEMPORARY TABLE _search AS",
        "CREATE TEMPORARY TABLE _matches AS",
        "DELETE FROM _matches WHERE id IN (SELECT id FROM _matches WHERE weight = 0)",
        COUNT_SQL,
    ]

    sql, binds = _statement(session, "CREATE TEMPORARY TABLE _search")
    assert "search_fts AS (" in sql
    assert "f.raw ILIKE" in sql
    assert "END IN (" in sql
    assert "search_spatial" not in sql
    assert "_filters" not in sql
    values = list(binds.values())
    assert "climate" in values
    assert "%climate%" in values
    assert "en" in values
    assert values[-1] == 10000


@pytest.mark.asyncio
async def test_open_transaction_is_rolled_back_first():
    engine, session = _engine()
    session.transaction = True

    await engine.search("climate")

    assert session.rollbacks == 1
    assert session.transaction


@pytest.mark.asyncio
async def test_filters_without_phrase_match_all_filtered_ids():
    engine, session = _engine()

    await engine.search(
        search_terms=[SearchCondition(property=LANG, value="en")],
        parent_ids=[42],
        matches_limit=50,
    )

    filters, binds = _statement(session, "CREATE TEMPORARY TABLE _filters")
    assert "get_relatives((:p" in filters
    assert "USING (id)" in filters
    assert 42 in binds.values()
    assert SCHEMA.parent in binds.values()

    search, binds = _statement(session, "CREATE TEMPORARY TABLE _search")
    assert "1.0::float8 AS weight FROM _filters" in search
    assert "search_fts" not in search
    assert list(binds.values())[-1] == 50


@pytest.mark.asyncio
async def test_no_signals_and_no_filters_match_nothing():
    engine, session = _engine()

    await engine.search()

    search, _ = _statement(session, "CREATE TEMPORARY TABLE _search")
    assert "WHERE false" in search


@pytest.mark.asyncio
async def test_phrase_and_spatial_signals_must_agree():
    engine, session = _engine()

    await engine.search(
        "vienna",
        in_binary=False,
        spatial_term=SearchCondition(value="POLYGON((16 48, 17 48, 17 49, 16 48))", operator="&&"),
        search_terms=[SearchCondition(property=LANG, value="de")],
    )

    search, _ = _statement(session, "CREATE TEMPORARY TABLE _search")
    assert "SELECT * FROM search_fts WHERE id IN (SELECT id FROM search_spatial)" in search
    assert "'map'::text AS facet" in search
    assert "AND f.id IS NULL" in search
    assert "AND ss.id IS NULL" in search
    assert "WHERE EXISTS (SELECT 1 FROM _filters f WHERE f.id = s.id)" in search


@pytest.mark.asyncio
async def test_named_entity_links_expand_matches():
    engine, session = _engine()
    engine.set_facets([
        {"type": "matchProperty", "weights": {SCHEMA.label: 3}, "defaultWeight": 0.5},
        {"type": "linkProperty", "classes": [PERSON], "weights": {AUTHOR: 2}},
    ])

    await engine.search("alice")

    search, binds = _statement(session, "CREATE TEMPORARY TABLE _search")
    assert "weights_p (value, weight) AS (VALUES" in search
    assert "weights_ne (value, weight) AS (VALUES" in search
    assert "JOIN relations r ON t.id = r.target_id" in search
    assert "LEFT JOIN weights_ne wne ON r.property = wne.value" in search
    assert PERSON in binds.values()

    matches, _ = _statement(session, "CREATE TEMPORARY TABLE _matches")
    assert "CASE WHEN s.property IS NULL OR s.link_property IS NOT NULL THEN s.weight" in matches
    assert "LEFT JOIN weights_p w ON s.property = w.value" in matches


@pytest.mark.asyncio
async def test_facet_rows_are_added_to_matches():
    engine, session = _engine()
    engine.set_facets([
        {"type": "literal", "property": LANG, "weights": {"en": 2, "de": 0}},
        {"type": "object", "property": LICENSE},
        {"type": "continuous", "property": YEAR, "start": [YEAR + "From"], "end": [YEAR + "To"]},
    ])

    await engine.search("climate")

    matches, binds = _statement(session, "CREATE TEMPORARY TABLE _matches")
    assert "weights_0 (value, weight) AS (VALUES" in matches
    assert "LEFT JOIN weights_0 w ON m.value = w.value" in matches
    assert "JOIN relations m ON s.id = m.id" in matches
    assert "m.target_id::text" in matches
    assert "least(vmin, vmax)" in matches
    assert "WHERE vmin IS NOT NULL AND vmax IS NOT NULL" in matches
    assert {LANG, LICENSE, YEAR, YEAR + "From", YEAR + "To"} <= set(binds.values())
    assert 0.0 in binds.values()


@pytest.mark.asyncio
async def test_driver_failure_surfaces_as_bad_query():
    engine, session = _engine()
    session.fail_on = "CREATE TEMPORARY TABLE _matches"

    with pytest.raises(BadQueryError):
        await engine.search("climate")


# ── Result pages ─────────────────────────────────────────────────────


def _page_responder(sql: str):
    if sql.startswith("SELECT id, property, type, lang, value FROM ("):
        return [
            {"id": None, "property": SCHEMA.search.count, "type": str(XSD.integer), "lang": "", "value": "12"},
            {"id": 7, "property": SCHEMA.search.order, "type": str(XSD.integer), "lang": "", "value": "1"},
            {"id": 7, "property": SCHEMA.search.weight, "type": str(XSD.double), "lang": "", "value": "20"},
            {"id": 7, "property": SCHEMA.search.match, "type": str(XSD.anyURI), "lang": "", "value": SCHEMA.label},
            {"id": 7, "property": SCHEMA.search.fts, "type": str(XSD.string), "lang": "", "value": "<b>Climate</b>"},
            {"id": 3, "property": SCHEMA.search.order, "type": str(XSD.integer), "lang": "", "value": "2"},
            {"id": 3, "property": SCHEMA.search.weight, "type": str(XSD.double), "lang": "", "value": "1"},
        ]
    if "allids" in sql:
        return [
            {"id": 7, "property": SCHEMA.label, "type": str(XSD.string), "lang": "en", "value": "Climate"},
            {"id": 3, "property": SCHEMA.label, "type": str(XSD.string), "lang": "en", "value": "Weather"},
        ]
    return []


@pytest.mark.asyncio
async def test_search_page_ranks_and_pages():
    engine, session = _engine(_page_responder)
    engine.set_fallback_order_by("https://p/date", ascending=False)
    await engine.search("climate")

    rows = await engine.get_search_page(2, 10, SearchConfig(), "en")

    assert len(rows) == 9
    page, binds = _statement(session, "CREATE TEMPORARY TABLE _page")
    assert "exp(sum(ln(weight)))" in page
    assert "max(weight) AS weight" in page
    assert "GROUP BY id, property, facet" in page
    assert "COALESCE(o.o1, o.o2) DESC NULLS LAST, r.id" in page
    assert list(binds.values())[-2:] == [20, 30]
    assert "en" in binds.values()
    assert session.sql("DROP TABLE IF EXISTS _page")

    metadata, _ = _statement(session, "allids")
    assert "SELECT id FROM (SELECT id FROM _page) t" in metadata
    assert "LIMIT" not in metadata


@pytest.mark.asyncio
async def test_facet_rows_on_a_matched_property_are_ranked_separately():
    engine, session = _engine(_page_responder)
    engine.set_facets([{"type": "literal", "property": SCHEMA.label, "weights": {"Climate": 5}}])
    await engine.search("climate", language="en")

    await engine.get_search_page(0, 10, SearchConfig())

    page, _ = _statement(session, "CREATE TEMPORARY TABLE _page")
    assert "SELECT id, property, facet, max(weight) AS weight" in page
    assert "coalesce(property, facet)" not in page


@pytest.mark.asyncio
async def test_search_page_resources():
    engine, _ = _engine(_page_responder)
    await engine.search("climate")
    config = SearchConfig()

    resources = await engine.get_search_page_resources(0, 20, config, "en")

    assert config.count == 12
    assert [r.id for r in resources] == [7, 3]
    assert resources[0].search_weight == 20.0
    assert resources[0].search_highlights == ["<b>Climate</b>"]
    assert resources[0].search_match_properties == [SCHEMA.label]
    assert resources[1].search_highlights == []


@pytest.mark.asyncio
async def test_close_search_rolls_back():
    engine, session = _engine()
    await engine.search("climate")

    await engine.close_search()

    assert not session.transaction


# ── Facet statistics ─────────────────────────────────────────────────


def _facet_responder(sql: str):
    if "FROM _matches WHERE property IS NOT NULL" in sql:
        return [{"value": SCHEMA.label, "count": 2}, {"value": "BINARY", "count": 1}]
    if "DISTINCT ON (t.facet, t.target)" in sql:
        return [{"facet": LICENSE, "value": BASE_URL + "12", "label": "CC BY", "count": 2}]
    if "ORDER BY 1, 3 DESC, 2" in sql:
        return [{"facet": LANG, "value": "en", "count": 2}, {"facet": LANG, "value": "de", "count": 1}]
    if "bins AS (" in sql:
        return [
            {"label": "[2000,2010)", "count": 1, "lower": Decimal(2000), "upper": Decimal(2010)},
            {"label": "[2010,2020]", "count": 2, "lower": Decimal(2010), "upper": Decimal(2020)},
        ]
    if "st_union(st_centroid(g))" in sql:
        return [{"value": "MULTIPOINT(16 48,17 49)", "count": 2}]
    return []


@pytest.mark.asyncio
async def test_search_facets():
    engine, session = _engine(_facet_responder)
    engine.set_facets([
        {"type": "literal", "property": LANG},
        {"type": "object", "property": LICENSE, "label": "License"},
        {"type": "continuous", "property": YEAR, "start": [YEAR], "end": [YEAR], "bins": 2},
        {"type": "map"},
    ])
    await engine.search("climate")

    facets = await engine.get_search_facets("en")

    assert set(facets) == {"matchProperty", LANG, LICENSE, YEAR, "map"}
    assert [v.count for v in facets["matchProperty"].values] == [2, 1]
    assert [v.value for v in facets[LANG].values] == ["en", "de"]
    assert facets[LICENSE].label == "License"
    assert facets[LICENSE].values[0].label == "CC BY"
    assert facets[YEAR].continuous
    assert (facets[YEAR].min, facets[YEAR].max) == (2000.0, 2020.0)
    assert facets["map"].values[0].count == 2

    histogram, binds = _statement(session, "bins AS (")
    assert "generate_series(start, stop" in histogram
    # no decimals: the bin width never drops below 1
    assert "CASE WHEN range > least(" in histogram
    assert 2 in binds.values()


@pytest.mark.asyncio
async def test_continuous_facet_without_distribution_reports_limits_only():
    def responder(sql: str):
        if "count(DISTINCT value) AS nd" in sql:
            return [{"start": Decimal("1.5"), "stop": Decimal(9), "nd": 4}]
        return []

    engine, session = _engine(responder)
    engine.set_facets([
        {"type": "continuous", "property": YEAR, "start": [YEAR], "end": [YEAR], "distribution": False, "min": 0},
    ])
    await engine.search("climate")

    facets = await engine.get_search_facets()

    assert facets[YEAR].values == []
    assert (facets[YEAR].min, facets[YEAR].max) == (1.5, 9.0)
    assert not session.sql("bins AS (")


# ── Initial facets ───────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_initial_facets_are_cached_until_modified(tmp_path):
    state = {"date": "2024-01-01 10:00:00"}

    def responder(sql: str):
        if "max(value_t)::text" in sql:
            return [{"max": state["date"]}]
        if "SELECT DISTINCT ON (id) id, value FROM metadata" in sql:
            return [{"value": "en", "count": 5}]
        return []

    engine, session = _engine(responder)
    engine.set_facets([{"type": "literal", "property": LANG}])
    cache_file = tmp_path / "facets.json"

    first = await engine.get_initial_facets("en", str(cache_file))
    assert first[0].values[0].count == 5
    assert cache_file.exists()
    computed = len(session.sql("DISTINCT ON (id)"))

    again = await engine.get_initial_facets("en", str(cache_file))
    assert again == first
    assert len(session.sql("DISTINCT ON (id)")) == computed

    state["date"] = "2024-02-01 10:00:00"
    await engine.get_initial_facets("en", str(cache_file))
    assert len(session.sql("DISTINCT ON (id)")) == computed + 1

    await engine.get_initial_facets("en", str(cache_file), force=True)
    assert len(session.sql("DISTINCT ON (id)")) == computed + 2


@pytest.mark.asyncio
async def test_exact_and_language_weights_are_bound():
    engine, session = _engine()
    engine.set_exact_weight(3.0)
    engine.set_lang_weight(2.0)

    await engine.search("climate", language="en")

    _, binds = _statement(session, "CREATE TEMPORARY TABLE _search")
    values = list(binds.values())
    assert 3.0 in values
    assert 2.0 in values
    assert 10.0 not in values


@pytest.mark.asyncio
async def test_search_page_graph_keeps_technical_triples():
    engine, _ = _engine(_page_responder)
    await engine.search("climate")
    config = SearchConfig()

    graph = await engine.get_search_page_graph(0, 20, config)

    assert config.count == 12
    assert (URIRef(BASE_URL + "7"), URIRef(SCHEMA.search.weight), None) in graph
    assert (URIRef(BASE_URL + "3"), URIRef(SCHEMA.label), None) in graph
