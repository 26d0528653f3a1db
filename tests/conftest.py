"""Shared fixtures — repository schema and a recording fake database session."""

from collections.abc import Callable
from typing import Any

import pytest

from rdfrepo.domain.entities.schema import RepositorySchema

BASE_URL = "https://repo.example.org/api/"

SCHEMA = RepositorySchema(
    id="https://vocabs.example.org/hasIdentifier",
    label="https://vocabs.example.org/hasTitle",
    parent="https://vocabs.example.org/isPartOf",
    modification_date="https://vocabs.example.org/lastModified",
)


# ── Fakes ────────────────────────────────────────────────────────────


class FakeRow:
    """Row with both ``row._mapping`` and attribute access."""

    def __init__(self, data: dict[str, Any]):
        self._mapping = data

    def __getattr__(self, name: str) -> Any:
        try:
            return self._mapping[name]
        except KeyError as exc:
            raise AttributeError(name) from exc


class FakeResult:
    def __init__(self, rows: list[dict[str, Any]]):
        self._rows = [FakeRow(r) for r in rows]

    def __iter__(self):
        return iter(self._rows)

    def scalar_one(self) -> Any:
        return next(iter(self._rows[0]._mapping.values()))

    def scalar_one_or_none(self) -> Any:
        if not self._rows:
            return None
        return self.scalar_one()


class FakeSession:
    """Records executed statements; answers each with rows chosen by ``responder``."""

    def __init__(self, responder: Callable[[str], list[dict[str, Any]]] | None = None):
        self.statements: list[tuple[str, dict[str, Any]]] = []
        self.responder = responder or (lambda sql: [])
        self.transaction = False
        self.rollbacks = 0
        self.fail_on: str | None = None

    async def execute(self, statement, binds=None):
        sql = str(statement)
        self.statements.append((sql, dict(binds or {})))
        if self.fail_on is not None and self.fail_on in sql:
            from sqlalchemy.exc import ProgrammingError

            raise ProgrammingError(sql, binds, Exception("syntax error"))
        return FakeResult(self.responder(sql))

    def in_transaction(self) -> bool:
        return self.transaction

    async def begin(self):
        self.transaction = True

    async def rollback(self):
        self.rollbacks += 1
        self.transaction = False

    def sql(self, contains: str) -> list[str]:
        """All executed statements containing a substring."""
        return [s for s, _ in self.statements if contains in s]


@pytest.fixture
def schema() -> RepositorySchema:
    return SCHEMA


@pytest.fixture
def fake_session() -> FakeSession:
    return FakeSession()
