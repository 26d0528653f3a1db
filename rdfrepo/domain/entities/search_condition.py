"""Search conditions — one typed predicate over repository resources.

A condition compiles into an SQL fragment returning the ids of all resources
satisfying it (``SELECT id FROM ...``). Conditions are also the unit of the
form-encoded search wire format (``property[n]``, ``operator[n]``, ...).
"""

import re
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field, replace
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Any

from rdflib.namespace import RDFS, XSD

from rdfrepo.domain.entities.query_fragment import QueryFragment
from rdfrepo.domain.exceptions import MalformedConditionError

Scalar = str | int | float | bool


class ValueType(str, Enum):
    """Datatype hints understood on top of plain XSD datatype URIs."""

    NUMBER = "number"
    DATE = "date"
    DATETIME = "datetime"
    STRING = "string"
    RELATION = "relation"
    FTS = "fts"
    SPATIAL = "spatial"
    ID = "id"


PROPERTY_BINARY = "BINARY"
NEGATE_MARKER = "^"

DATETIME_REGEX = re.compile(
    r"^-?[0-9]{4,}-[0-9]{2}-[0-9]{2}"
    r"(T[0-9]{2}(:[0-9]{2})?(:[0-9]{2})?([.][0-9]+)?Z?)?$"
)
NUMBER_REGEX = re.compile(r"^[+-]?([0-9]+([.][0-9]*)?|[.][0-9]+)([eE][+-]?[0-9]+)?$")
URI_REGEX = re.compile(r"\w+:(/?/?)[^\s\"]+")
_YEAR_REGEX = re.compile(r"^-?[0-9]+")
_SPATIAL_DISTANCE = re.compile(r"^&&([0-9]+)$")

# operator -> datatype it enforces (None = no enforcement)
OPERATORS: dict[str, ValueType | None] = {
    "=": None,
    ">": None,
    "<": None,
    "<=": None,
    ">=": None,
    "~": ValueType.STRING,
    "~*": ValueType.STRING,
    "@@": ValueType.FTS,
    "&&": ValueType.SPATIAL,
    "&&&": ValueType.SPATIAL,
    "&>": ValueType.SPATIAL,
    "&<": ValueType.SPATIAL,
}

COLUMN_STRING = "value"

TYPES_TO_COLUMNS: dict[str, str] = {
    str(XSD.string): "value",
    str(XSD.boolean): "value_n",
    str(XSD.decimal): "value_n",
    str(XSD.integer): "value_n",
    str(XSD.float): "value_n",
    str(XSD.double): "value_n",
    str(XSD.duration): "value",
    str(XSD.dateTime): "value_t",
    str(XSD.time): "value_t::time",
    str(XSD.date): "value_t::date",
    str(XSD.hexBinary): "value",
    str(XSD.base64Binary): "value",
    str(XSD.anyURI): "value",
    str(RDFS.Resource): "ids",
    ValueType.DATE.value: "value_t::date",
    ValueType.DATETIME.value: "value_t",
    ValueType.NUMBER.value: "value_n",
    ValueType.STRING.value: "value",
    ValueType.RELATION.value: "ids",
    ValueType.ID.value: "id",
}

_TEMPORAL_CASTS = {
    "value_t": "timestamp",
    "value_t::date": "date",
    "value_t::time": "time",
}


def escape_fts(phrase: str) -> str:
    """Quote URIs so that ``websearch_to_tsquery()`` treats them as phrases."""
    escaped = URI_REGEX.sub(lambda m: f'"{m.group(0)}"', phrase)
    return escaped.replace('""', '"')


def operator_type(operator: str) -> ValueType | None:
    """Datatype enforced by an operator; raises for unknown operators."""
    if operator in OPERATORS:
        return OPERATORS[operator]
    if _SPATIAL_DISTANCE.match(operator):
        return ValueType.SPATIAL
    raise MalformedConditionError(f"Unknown operator {operator}")


@dataclass(frozen=True)
class CompileContext:
    """Repository-specific information needed to compile conditions."""

    base_url: str
    id_property: str
    literal_only_properties: frozenset[str] = field(default_factory=frozenset)
    string_max_length: int = 1000
    min_timestamp_year: int = -4713


@dataclass(frozen=True)
class SearchCondition:
    """A single search predicate.

    ``property`` and ``value`` may be lists — the condition then matches the
    union of every (property, value) combination. A property prefixed with
    ``^`` matches the subject side of a relation instead of its object.
    """

    property: str | list[str] | None = None
    value: Scalar | list[Scalar] | None = None
    operator: str = "="
    type: str | None = None
    language: str | None = None

    def __post_init__(self) -> None:
        # lists are normalized to tuples so the condition stays hashable
        if isinstance(self.property, list):
            object.__setattr__(self, "property", tuple(self.property))
        if isinstance(self.value, list):
            object.__setattr__(self, "value", tuple(self.value))
        operator_type(self.operator)
        if isinstance(self.type, ValueType):
            object.__setattr__(self, "type", self.type.value)
        if self.type is not None and self.type not in TYPES_TO_COLUMNS:
            raise MalformedConditionError(f"Unknown type {self.type}")

    # ── Compilation ─────────────────────────────────────────────────

    def compile(self, ctx: CompileContext) -> QueryFragment:
        """Return a fragment selecting ids of all resources matching the condition."""
        if self.type == ValueType.ID.value and not isinstance(self.property, tuple):
            return self._compile_id()
        if isinstance(self.property, tuple) or isinstance(self.value, tuple):
            return self._compile_or(ctx)

        value_type = self.resolve_type(ctx)
        if value_type == ValueType.ID.value:
            return self._compile_id()
        if value_type == ValueType.FTS.value:
            return self._compile_fts(ctx)
        if value_type == ValueType.SPATIAL.value:
            return self._compile_spatial()
        if value_type in (ValueType.RELATION.value, str(RDFS.Resource)):
            return self._compile_relation()
        return self._compile_metadata(value_type, ctx)

    def resolve_type(self, ctx: CompileContext) -> str:
        """Effective datatype of a single-valued condition."""
        prop = self.property if isinstance(self.property, str) else None
        if prop is not None and prop.startswith(NEGATE_MARKER):
            value_type: str | None = ValueType.RELATION.value
        else:
            enforced = operator_type(self.operator)
            value_type = enforced.value if enforced is not None else self.type
            if value_type is None:
                value_type = self._guess_type()
        if prop is not None and prop.lstrip(NEGATE_MARKER) in ctx.literal_only_properties:
            value_type = ValueType.STRING.value
        return value_type

    def expand(self) -> list["SearchCondition"]:
        """Single-valued conditions whose union is equivalent to this one."""
        properties = self.property if isinstance(self.property, tuple) else (self.property,)
        values = self.value if isinstance(self.value, tuple) else (self.value,)
        return [
            replace(self, property=prop, value=value)
            for prop in properties
            for value in values
        ]

    def spatial_predicate(self, column: str = "geom") -> QueryFragment:
        """The bare spatial test against ``column`` (no SELECT around it)."""
        geometry = "st_geomfromtext(?::text, 4326)"
        wkt = str(self.value)
        if self.operator == "&>":
            return QueryFragment(f"st_contains({column}::geometry, {geometry})", (wkt,))
        if self.operator == "&<":
            return QueryFragment(f"st_contains({geometry}, {column}::geometry)", (wkt,))
        if self.operator == "&&&":
            return QueryFragment(f"{column}::geometry && {geometry}", (wkt,))
        distance = _SPATIAL_DISTANCE.match(self.operator)
        if distance and int(distance.group(1)) > 0:
            return QueryFragment(
                f"st_dwithin({column}::geography, {geometry}::geography, ?::float8, false)",
                (wkt, float(distance.group(1))),
            )
        return QueryFragment(f"st_intersects({column}::geometry, {geometry})", (wkt,))

    def _guess_type(self) -> str:
        value = self.value
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            return ValueType.NUMBER.value
        text_value = "" if value is None else str(value)
        if NUMBER_REGEX.match(text_value):
            return ValueType.NUMBER.value
        if DATETIME_REGEX.match(text_value):
            return ValueType.DATETIME.value
        return ValueType.STRING.value

    def _compile_or(self, ctx: CompileContext) -> QueryFragment:
        terms = self.expand()
        if not terms:
            raise MalformedConditionError("Empty search term")
        return QueryFragment.concat((t.compile(ctx) for t in terms), "\nUNION\n")

    def _compile_id(self) -> QueryFragment:
        values = self.value if isinstance(self.value, tuple) else (self.value,)
        try:
            ids = tuple(int(v) for v in values)
        except (TypeError, ValueError) as exc:
            raise MalformedConditionError(f"Bad resource id {self.value}") from exc
        if not ids:
            raise MalformedConditionError("Empty search term")
        if isinstance(self.value, tuple):
            rows = ", ".join("(?::bigint)" for _ in ids)
            return QueryFragment(f"SELECT id FROM (VALUES {rows}) AS t (id)", ids)
        return QueryFragment("SELECT ?::bigint AS id", ids)

    def _compile_fts(self, ctx: CompileContext) -> QueryFragment:
        phrase = escape_fts("" if self.value is None else str(self.value))
        where = ""
        params: list[Any] = [phrase]
        if self.language:
            where += " AND (m.lang = ?::text OR m.lang IS NULL)"
            params.append(self.language)
        if self.property == PROPERTY_BINARY:
            where += " AND fts.mid IS NULL AND fts.iid IS NULL"
        elif self.property == ctx.id_property:
            where += " AND fts.iid IS NOT NULL"
        elif self.property:
            where += " AND m.property = ?::text"
            params.append(self.property)
        sql = f"""
            SELECT DISTINCT COALESCE(m.id, fts.iid, fts.id) AS id
            FROM full_text_search fts LEFT JOIN metadata m USING (mid)
            WHERE websearch_to_tsquery('simple', ?::text) @@ fts.segments {where}
        """
        return QueryFragment(sql, tuple(params))

    def _compile_spatial(self) -> QueryFragment:
        predicate = self.spatial_predicate("ss.geom")
        where = predicate.sql
        params = list(predicate.params)
        prop = self.property if isinstance(self.property, str) else None
        if prop:
            where += " AND m.property = ?::text"
            params.append(prop)
        sql = f"""
            SELECT DISTINCT COALESCE(m.id, ss.id) AS id
            FROM spatial_search ss LEFT JOIN metadata m USING (mid)
            WHERE {where}
        """
        return QueryFragment(sql, tuple(params))

    def _compile_relation(self) -> QueryFragment:
        prop = self.property if isinstance(self.property, str) else None
        reverse = prop is not None and prop.startswith(NEGATE_MARKER)
        if reverse:
            prop = prop[len(NEGATE_MARKER):]
        where: list[str] = []
        params: list[Any] = []
        if prop:
            where.append("r.property = ?::text")
            params.append(prop)
        if self.value is not None and self.value != "":
            where.append("i.ids = ?::text")
            params.append(str(self.value))
        if not where:
            raise MalformedConditionError("Empty search term")
        if reverse:
            select, join = "r.target_id AS id", "r.id = i.id"
        else:
            select, join = "r.id", "r.target_id = i.id"
        sql = f"""
            SELECT DISTINCT {select}
            FROM relations r JOIN identifiers i ON {join}
            WHERE {' AND '.join(where)}
        """
        return QueryFragment(sql, tuple(params))

    def _compile_metadata(self, value_type: str, ctx: CompileContext) -> QueryFragment:
        where: list[str] = []
        params: list[Any] = []
        prop = self.property if isinstance(self.property, str) else None
        if prop:
            where.append("property = ?::text")
            params.append(prop)
        if self.language:
            where.append("lang = ?::text")
            params.append(self.language)

        other_tables = False
        if self.value is not None and self.value != "":
            column = TYPES_TO_COLUMNS[value_type]
            other_tables = column == COLUMN_STRING
            if column in _TEMPORAL_CASTS:
                clause, clause_params = self._temporal_clause(column, ctx)
            elif column == COLUMN_STRING:
                clause, clause_params = self._string_clause(ctx)
            elif column == "value_n":
                clause, clause_params = f"value_n {self.operator} ?::numeric", [self._numeric_value()]
            else:
                clause, clause_params = f"{column} {self.operator} ?::text", [str(self.value)]
            where.append(clause)
            params.extend(clause_params)

        if not where:
            raise MalformedConditionError("Empty search term")
        condition = " AND ".join(where)
        sql = f"""
            SELECT DISTINCT id
            FROM metadata
            WHERE {condition}
        """
        all_params = list(params)
        if other_tables:
            sql += f"""
              UNION
                SELECT DISTINCT id
                FROM (SELECT id, ?::text AS property, ''::text AS lang, ids AS value FROM identifiers) t
                WHERE {condition}
              UNION
                SELECT DISTINCT id
                FROM (SELECT id, property, ''::text AS lang, ?::text || target_id AS value FROM relations) t
                WHERE {condition}
            """
            all_params += [ctx.id_property, *params, ctx.base_url, *params]
        return QueryFragment(sql, tuple(all_params))

    def _string_clause(self, ctx: CompileContext) -> tuple[str, list[Any]]:
        # the value column is indexed only on its leading substring; the
        # predicate has to repeat the index expression to use it
        value = str(self.value)
        column = COLUMN_STRING
        if self.operator == "=" and len(value) < ctx.string_max_length:
            column = f"substring({COLUMN_STRING}, 1, {ctx.string_max_length})"
        return f"{column} {self.operator} ?::text", [value]

    def _temporal_clause(self, column: str, ctx: CompileContext) -> tuple[str, list[Any]]:
        text_value = str(self.value)
        year_match = _YEAR_REGEX.match(text_value)
        if year_match is None:
            raise MalformedConditionError(f"Bad {self.type or 'date'} value {text_value}")
        year = int(year_match.group(0))
        if year < ctx.min_timestamp_year:
            return f"value_n {self.operator} ?::bigint", [year]
        if text_value.startswith("-"):
            text_value = text_value[1:] + " BC"
        cast = _TEMPORAL_CASTS[column]
        clause = (
            f"({column} IS NOT NULL AND {column} {self.operator} ?::text::{cast}"
            f" OR value_t IS NULL AND value_n {self.operator} ?::bigint)"
        )
        return clause, [text_value, year]

    def _numeric_value(self) -> Decimal:
        if isinstance(self.value, bool):
            return Decimal(int(self.value))
        try:
            return Decimal(str(self.value))
        except InvalidOperation as exc:
            raise MalformedConditionError(f"Bad numeric value {self.value}") from exc

    # ── Wire form ───────────────────────────────────────────────────

    def to_form_data(self, n: int) -> list[tuple[str, str]]:
        """Serialize as ``property[n]=...&operator[n]=...`` form fields."""
        fields: list[tuple[str, str]] = []
        for name in ("property", "operator", "value", "type", "language"):
            value = getattr(self, name)
            if value is None:
                continue
            values = value if isinstance(value, tuple) else (value,)
            for item in values:
                fields.append((f"{name}[{n}]", _form_value(item)))
        return fields

    @classmethod
    def from_form_data(cls, form: Mapping[str, Sequence[str]], n: int) -> "SearchCondition":
        """Build the n-th condition of a parsed form (key -> list of values)."""

        def pick(name: str) -> str | list[str] | None:
            values = list(form.get(f"{name}[{n}]", []))
            if not values:
                return None
            return values[0] if len(values) == 1 else values

        operator = pick("operator")
        type_ = pick("type")
        language = pick("language")
        return cls(
            property=pick("property"),
            value=pick("value"),
            operator=operator if isinstance(operator, str) else "=",
            type=type_ if isinstance(type_, str) else None,
            language=language if isinstance(language, str) else None,
        )

    @classmethod
    def list_from_form_data(cls, form: Mapping[str, Sequence[str]]) -> list["SearchCondition"]:
        indices = sorted({
            int(m.group(2))
            for key in form
            if (m := _FORM_KEY.match(key)) is not None
        })
        return [cls.from_form_data(form, n) for n in indices]


_FORM_KEY = re.compile(r"^(property|operator|value|type|language)\[([0-9]+)\]$")


def _form_value(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)

