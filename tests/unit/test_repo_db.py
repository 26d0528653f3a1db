"""Unit tests for RepoDb statement building and execution (fake session)."""

import logging

import pytest
from rdflib import URIRef
from rdflib.namespace import XSD

from conftest import BASE_URL, SCHEMA, FakeSession
from rdfrepo.application.interfaces.auth_provider import AuthorizationProvider
from rdfrepo.domain.entities.metadata_mode import UNLIMITED_DEPTH
from rdfrepo.domain.entities.query_fragment import QueryFragment
from rdfrepo.domain.entities.search_condition import SearchCondition
from rdfrepo.domain.entities.search_config import SearchConfig
from rdfrepo.domain.exceptions import (
    AmbiguousMatchError,
    BadMetadataModeError,
    BadQueryError,
    MalformedConditionError,
    NotFoundError,
)
from rdfrepo.infrastructure.database.repo_db import RepoDb

FILTER = QueryFragment("SELECT ?::bigint AS id", (1,))


def _repo(session=None, **kwargs) -> RepoDb:
    return RepoDb(session or FakeSession(), BASE_URL, SCHEMA, **kwargs)


# ── Fakes ────────────────────────────────────────────────────────────


class OwnerOnly(AuthorizationProvider):
    def metadata_auth_query(self) -> QueryFragment:
        return QueryFragment(
            "WHERE EXISTS (SELECT 1 FROM metadata a WHERE a.id = t.id AND a.value = ?::text)", ("alice",)
        )


# ── Statement building ───────────────────────────────────────────────


def test_default_search_statement():
    query = _repo().build_search_query(FILTER, SearchConfig())

    assert query.sql.startswith("WITH\n  allids AS (\n    SELECT id FROM (SELECT ?::bigint AS id) t")
    assert "row_number() OVER (ORDER BY id) AS _ord" in query.sql
    assert "relatives AS (SELECT id FROM ids)" in query.sql
    assert "LIMIT" not in query.sql
    # technical rows: match, count, order
    assert SCHEMA.search.match in query.params
    assert SCHEMA.search.count in query.params
    assert SCHEMA.search.order in query.params
    assert str(XSD.positiveInteger) in query.params
    assert query.params[0] == 1


def test_order_by_descending_property_with_order_values():
    config = SearchConfig(order_by=["^https://p/date"], order_by_lang="en")
    query = _repo().build_search_query(FILTER, config)

    assert "ORDER BY _obt0 DESC NULLS LAST, _obn0 DESC NULLS LAST, _ob0 DESC NULLS LAST, id" in query.sql
    assert "LEFT JOIN (SELECT id, min(value) AS _ob0" in query.sql
    assert "https://p/date" in query.params
    assert "en" in query.params
    assert SCHEMA.search.order_value + "1" in query.params


def test_paging():
    query = _repo().build_search_query(FILTER, SearchConfig(limit=10, offset=20))

    assert "LIMIT ?::bigint OFFSET ?::bigint" in query.sql
    assert query.params[1:3] == (10, 20)


def test_metadata_modes():
    repo = _repo()

    none = repo.build_search_query(FILTER, SearchConfig(metadata_mode="none", skip_artificial_properties=True))
    assert "WHERE false" in none.sql
    assert "meta AS" not in none.sql

    ids = repo.build_search_query(FILTER, SearchConfig(metadata_mode="ids", skip_artificial_properties=True))
    assert ids.params[-1] == SCHEMA.label

    relatives = repo.build_search_query(
        FILTER, SearchConfig(metadata_mode="relatives", metadata_parent_property=SCHEMA.parent)
    )
    assert "get_relatives(id, ?::text, ?::int, ?::int, ?::bool, ?::bool)" in relatives.sql
    start = relatives.params.index(SCHEMA.parent)
    assert relatives.params[start:start + 5] == (SCHEMA.parent, UNLIMITED_DEPTH, -UNLIMITED_DEPTH, True, False)


def test_bad_metadata_mode():
    with pytest.raises(BadMetadataModeError):
        _repo().build_search_query(FILTER, SearchConfig(metadata_mode="sideways"))


def test_skip_artificial_properties():
    query = _repo().build_search_query(FILTER, SearchConfig(skip_artificial_properties=True))

    assert SCHEMA.search.match not in query.params
    assert "count(*)" not in query.sql


def test_output_property_filters():
    config = SearchConfig(resource_properties=[SCHEMA.label], relatives_properties=[SCHEMA.id])
    query = _repo().build_search_query(FILTER, config)

    assert "ids.id IS NOT NULL AND meta.property IN (?::text)" in query.sql
    assert "ids.id IS NULL AND meta.property IN (?::text)" in query.sql


@pytest.mark.parametrize(
    ("fts_property", "expected"),
    [
        ("BINARY", "JOIN ids ON fts.id = ids.id"),
        (SCHEMA.id, "JOIN ids ON fts.iid = ids.id"),
        (SCHEMA.label, "JOIN metadata m USING (mid) JOIN ids ON m.id = ids.id"),
        (None, "COALESCE(fts.id, fts.iid, m.id) = ids.id"),
    ],
)
def test_fts_highlight_sources(fts_property, expected):
    config = SearchConfig(fts_query="climate", fts_property=fts_property, fts_start_sel="<b>")
    query = _repo().build_search_query(FILTER, config)

    assert expected in query.sql
    assert "StartSel=<b>" in query.params
    assert SCHEMA.search.fts in query.params


def test_authorization_fragment_follows_the_filter():
    query = _repo(auth=OwnerOnly()).build_search_query(FILTER, SearchConfig())

    assert ") t WHERE EXISTS (SELECT 1 FROM metadata a" in query.sql
    assert query.params[:2] == (1, "alice")


def test_search_terms_are_joined():
    terms = [
        SearchCondition(property=SCHEMA.label, value="Climate"),
        SearchCondition(property="https://p/size", value=5, operator=">"),
    ]
    query = _repo().search_terms_query(terms)

    assert query.sql.startswith("SELECT id FROM  (")
    assert "_t2 USING (id)" in query.sql


def test_empty_search_terms_are_rejected():
    with pytest.raises(MalformedConditionError):
        _repo().search_terms_query([])


# ── Execution ────────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_driver_errors_become_bad_query():
    session = FakeSession()
    session.fail_on = "identifiers"

    with pytest.raises(BadQueryError) as info:
        await _repo(session).get_resource_by_ids(["https://ext/1"])
    assert info.value.__cause__ is not None
    assert info.value.status_code == 400


@pytest.mark.asyncio
async def test_get_resource_by_ids():
    found = FakeSession(lambda sql: [{"id": 5}])
    resource = await _repo(found).get_resource_by_ids(["https://ext/1", "https://ext/2"])
    assert resource.uri == BASE_URL + "5"
    assert found.statements[0][1] == {"p0": "https://ext/1", "p1": "https://ext/2"}

    with pytest.raises(NotFoundError):
        await _repo(FakeSession()).get_resource_by_ids(["https://ext/1"])

    with pytest.raises(AmbiguousMatchError) as info:
        await _repo(FakeSession(lambda sql: [{"id": 3}, {"id": 2}])).get_resource_by_ids(["https://ext/1"])
    assert info.value.matches == [BASE_URL + "2", BASE_URL + "3"]


@pytest.mark.asyncio
async def test_get_resources_by_search_terms_maps_rows():
    rows = [
        {"id": 4, "property": SCHEMA.label, "type": str(XSD.string), "lang": "en", "value": "Climate"},
        {"id": 4, "property": SCHEMA.search.match, "type": str(XSD.boolean), "lang": "", "value": "true"},
        {"id": 4, "property": SCHEMA.search.order, "type": str(XSD.positiveInteger), "lang": "", "value": "1"},
        {"id": None, "property": SCHEMA.search.count, "type": str(XSD.integer), "lang": "", "value": "1"},
    ]
    session = FakeSession(lambda sql: rows)
    config = SearchConfig()

    resources = await _repo(session).get_resources_by_search_terms(
        [SearchCondition(property=SCHEMA.label, value="Climate")], config
    )

    assert config.count == 1
    assert [r.uri for r in resources] == [BASE_URL + "4"]
    assert resources[0].is_loaded
    assert (None, URIRef(SCHEMA.search.match), None) not in resources[0].get_graph().graph


@pytest.mark.asyncio
async def test_load_resource_metadata_skips_technical_rows():
    session = FakeSession(lambda sql: [])
    repo = _repo(session)

    await repo.load_resource_metadata(repo.get_resource_by_id(8), "resource", None)

    sql, binds = session.statements[0]
    assert "SELECT (:p0)::bigint AS id" in sql
    assert 8 in binds.values()
    assert SCHEMA.search.match not in binds.values()


@pytest.mark.asyncio
async def test_hand_written_sql_query_is_wrapped_as_filter():
    session = FakeSession()
    config = SearchConfig(metadata_mode="none")

    resources = await _repo(session).get_resources_by_sql_query(
        "SELECT id FROM metadata WHERE value = ?", ["Climate"], config
    )

    assert resources == []
    sql, binds = session.statements[0]
    assert "SELECT id FROM (SELECT id FROM metadata WHERE value = (:p0)) t" in sql
    assert binds["p0"] == "Climate"


@pytest.mark.asyncio
async def test_query_log_receives_statements(caplog):
    log = logging.getLogger("tests.repo_db")
    caplog.set_level(logging.DEBUG, logger="tests.repo_db")
    repo = _repo(FakeSession(lambda sql: [{"x": 1}]))
    repo.set_query_log(log)

    rows = await repo.fetch_rows(QueryFragment("SELECT 1 AS x"))

    assert rows == [{"x": 1}]
    assert any("SQL:" in r.getMessage() and "SELECT 1 AS x" in r.getMessage() for r in caplog.records)
