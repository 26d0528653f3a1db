"""Immutable SQL text + positional parameters pair.

Fragments use ``?`` as the only placeholder and compose without renumbering:
concatenating two fragments concatenates their SQL and their parameter lists.
Rendering to named binds happens once, right before execution.
"""

from collections.abc import Iterable
from dataclasses import dataclass, field
from typing import Any

from sqlalchemy import TextClause, text

PLACEHOLDER = "?"


@dataclass
class JoinCounter:
    """Numbers derived-table aliases within a single statement build."""

    prefix: str = "_t"
    _n: int = field(default=0, repr=False)

    def next_alias(self) -> str:
        self._n += 1
        return f"{self.prefix}{self._n}"


@dataclass(frozen=True)
class QueryFragment:
    """A piece of SQL together with the values of its ``?`` placeholders."""

    sql: str = ""
    params: tuple[Any, ...] = ()

    def __post_init__(self) -> None:
        object.__setattr__(self, "params", tuple(self.params))
        expected = self.sql.count(PLACEHOLDER)
        if expected != len(self.params):
            raise ValueError(
                f"Query fragment has {expected} placeholders but {len(self.params)} parameters"
            )

    @property
    def is_empty(self) -> bool:
        return not self.sql.strip()

    def __add__(self, other: "QueryFragment") -> "QueryFragment":
        return QueryFragment(self.sql + other.sql, self.params + other.params)

    def prefix(self, sql: str, params: Iterable[Any] = ()) -> "QueryFragment":
        """Prepend SQL (and its parameters) to this fragment."""
        return QueryFragment(sql, tuple(params)) + self

    def join(self, kind: str, clause: str, counter: JoinCounter) -> "QueryFragment":
        """Wrap the fragment as an aliased derived table, e.g. ``JOIN (...) _t3 USING (id)``.

        An empty fragment joins to nothing.
        """
        if self.is_empty:
            return QueryFragment()
        alias = counter.next_alias()
        return QueryFragment(f"{kind} ({self.sql}) {alias} {clause}\n", self.params)

    def union(self, other: "QueryFragment") -> "QueryFragment":
        if self.is_empty:
            return other
        if other.is_empty:
            return self
        return QueryFragment(f"{self.sql}\nUNION\n{other.sql}", self.params + other.params)

    @classmethod
    def concat(cls, parts: Iterable["QueryFragment"], separator: str = "") -> "QueryFragment":
        sql: list[str] = []
        params: list[Any] = []
        for part in parts:
            sql.append(part.sql)
            params.extend(part.params)
        return cls(separator.join(sql), tuple(params))

    @classmethod
    def placeholders(cls, values: Iterable[Any], cast: str = "") -> "QueryFragment":
        """``?, ?, ?`` for a list of values, optionally with a cast on each."""
        values = tuple(values)
        suffix = f"::{cast}" if cast else ""
        return cls(", ".join(f"?{suffix}" for _ in values), values)

    def to_text(self) -> tuple[TextClause, dict[str, Any]]:
        """Render as a SQLAlchemy text clause with named binds ``:p0, :p1, ...``.

        Every bind is parenthesized so that a following ``::type`` cast is not
        swallowed by the bind-name parser.
        """
        chunks = self.sql.split(PLACEHOLDER)
        sql = chunks[0]
        binds: dict[str, Any] = {}
        for n, chunk in enumerate(chunks[1:]):
            name = f"p{n}"
            sql += f"(:{name})" + chunk
            binds[name] = self.params[n]
        return text(sql), binds

    def __str__(self) -> str:
        """SQL with inlined parameter values — for logging only."""
        chunks = self.sql.split(PLACEHOLDER)
        out = chunks[0]
        for value, chunk in zip(self.params, chunks[1:]):
            out += _quote(value) + chunk
        return out


def _quote(value: Any) -> str:
    if value is None:
        return "NULL"
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (int, float)):
        return str(value)
    return "'" + str(value).replace("'", "''") + "'"
