"""Facet descriptors — one dataclass per facet kind.

Facets both influence ranking (optional per-value weights) and report
statistics over the current match set. Descriptors arrive in a wire form
(a JSON/YAML object with a ``type`` key); ``parse_facet()`` turns it into the
matching variant and validates it eagerly.
"""

from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any

from rdflib.namespace import RDF

from rdfrepo.domain.exceptions import FacetConfigurationError

MATCH_PROPERTY = "matchProperty"
LINK_PROPERTY = "linkProperty"
LITERAL = "literal"
OBJECT = "object"
CONTINUOUS = "continuous"
MAP = "map"

FACET_TYPES = (MATCH_PROPERTY, LINK_PROPERTY, LITERAL, OBJECT, CONTINUOUS, MAP)


def _validate_weights(name: str, weights: Mapping[str, float] | None) -> dict[str, float] | None:
    if weights is None:
        return None
    if len(weights) == 0:
        raise FacetConfigurationError(name, "empty weights list")
    checked: dict[str, float] = {}
    for value, weight in weights.items():
        try:
            weight = float(weight)
        except (TypeError, ValueError) as exc:
            raise FacetConfigurationError(name, f"weight of '{value}' is not a number") from exc
        if weight < 0:
            raise FacetConfigurationError(name, f"weight of '{value}' is negative")
        checked[str(value)] = weight
    return checked


@dataclass(frozen=True)
class MatchPropertyFacet:
    """Weights of the property on which a full-text/spatial match was found."""

    weights: dict[str, float] | None = None
    default_weight: float = 1.0
    label: str = ""
    type: str = field(default=MATCH_PROPERTY, init=False)

    def key(self) -> str:
        return MATCH_PROPERTY

    def __post_init__(self) -> None:
        object.__setattr__(self, "weights", _validate_weights(self.key(), self.weights))


@dataclass(frozen=True)
class LinkPropertyFacet:
    """Named-entity linking: matches on entities of ``classes`` propagate to referrers."""

    classes: tuple[str, ...]
    property: str = str(RDF.type)
    weights: dict[str, float] | None = None
    default_weight: float = 1.0
    label: str = ""
    type: str = field(default=LINK_PROPERTY, init=False)

    def key(self) -> str:
        return LINK_PROPERTY

    def __post_init__(self) -> None:
        object.__setattr__(self, "classes", tuple(self.classes))
        if not self.classes:
            raise FacetConfigurationError(self.key(), "at least one entity class is required")
        object.__setattr__(self, "weights", _validate_weights(self.key(), self.weights))


@dataclass(frozen=True)
class LiteralFacet:
    """Discrete facet over literal values of ``property``."""

    property: str
    weights: dict[str, float] | None = None
    default_weight: float = 1.0
    label: str = ""
    type: str = field(default=LITERAL, init=False)

    def key(self) -> str:
        return self.property

    def __post_init__(self) -> None:
        object.__setattr__(self, "weights", _validate_weights(self.property, self.weights))


@dataclass(frozen=True)
class ObjectFacet:
    """Discrete facet over related resources (``property`` is a relation).

    Weight keys are repository resource ids.
    """

    property: str
    weights: dict[str, float] | None = None
    default_weight: float = 1.0
    label: str = ""
    type: str = field(default=OBJECT, init=False)

    def key(self) -> str:
        return self.property

    def __post_init__(self) -> None:
        weights = _validate_weights(self.property, self.weights)
        if weights is not None:
            for value in weights:
                if not value.lstrip("-").isdigit():
                    raise FacetConfigurationError(self.property, f"'{value}' is not a resource id")
        object.__setattr__(self, "weights", weights)


@dataclass(frozen=True)
class ContinuousFacet:
    """Numeric range facet spanning the ``start`` … ``end`` properties of a resource.

    Informational only — it never affects ranking.
    """

    property: str
    start: tuple[str, ...]
    end: tuple[str, ...]
    bins: int = 10
    precision: int = 0
    distribution: bool = True
    min: float | None = None
    max: float | None = None
    label: str = ""
    type: str = field(default=CONTINUOUS, init=False)

    def key(self) -> str:
        return self.property

    def __post_init__(self) -> None:
        object.__setattr__(self, "start", tuple(self.start))
        object.__setattr__(self, "end", tuple(self.end))
        if not self.start or not self.end:
            raise FacetConfigurationError(self.property, "start and end property lists are required")
        if self.bins < 1:
            raise FacetConfigurationError(self.property, "bins must be positive")
        if self.precision < 0:
            raise FacetConfigurationError(self.property, "precision must not be negative")


@dataclass(frozen=True)
class MapFacet:
    """Geographic aggregation of matched resources."""

    label: str = ""
    type: str = field(default=MAP, init=False)

    def key(self) -> str:
        return MAP


Facet = (
    MatchPropertyFacet
    | LinkPropertyFacet
    | LiteralFacet
    | ObjectFacet
    | ContinuousFacet
    | MapFacet
)


def _as_list(value: Any) -> list[str]:
    if value is None:
        return []
    if isinstance(value, str):
        return [value]
    return [str(v) for v in value]


def parse_facet(data: Mapping[str, Any], default_weight: float = 1.0) -> Facet:
    """Build a facet from its wire form (``{"type": ..., ...}``)."""
    facet_type = data.get("type")
    name = str(data.get("property") or facet_type or "")
    label = str(data.get("label") or "")
    weight = float(data.get("defaultWeight", default_weight))
    weights = data.get("weights")
    if weights is not None and not isinstance(weights, Mapping):
        raise FacetConfigurationError(name, "weights must be a value -> weight mapping")

    if facet_type == MATCH_PROPERTY:
        return MatchPropertyFacet(weights=weights, default_weight=weight, label=label)
    if facet_type == LINK_PROPERTY:
        return LinkPropertyFacet(
            classes=tuple(_as_list(data.get("classes"))),
            property=str(data.get("property") or RDF.type),
            weights=weights,
            default_weight=weight,
            label=label,
        )
    if facet_type in (LITERAL, OBJECT):
        if not data.get("property"):
            raise FacetConfigurationError(name, "property is required")
        cls = LiteralFacet if facet_type == LITERAL else ObjectFacet
        return cls(property=str(data["property"]), weights=weights, default_weight=weight, label=label)
    if facet_type == CONTINUOUS:
        if not data.get("property"):
            raise FacetConfigurationError(name, "property is required")
        return ContinuousFacet(
            property=str(data["property"]),
            start=tuple(_as_list(data.get("start"))),
            end=tuple(_as_list(data.get("end"))),
            bins=int(data.get("bins", 10)),
            precision=int(data.get("precision", 0)),
            distribution=bool(data.get("distribution", True)),
            min=data.get("min"),
            max=data.get("max"),
            label=label,
        )
    if facet_type == MAP:
        return MapFacet(label=label)
    raise FacetConfigurationError(name, f"unknown facet type '{facet_type}'")


def facet_to_dict(facet: Facet) -> dict[str, Any]:
    """Inverse of ``parse_facet()`` — the facet's wire form."""
    out: dict[str, Any] = {"type": facet.type}
    if facet.label:
        out["label"] = facet.label
    if isinstance(facet, (LiteralFacet, ObjectFacet, ContinuousFacet, LinkPropertyFacet)):
        out["property"] = facet.property
    if isinstance(facet, (MatchPropertyFacet, LinkPropertyFacet, LiteralFacet, ObjectFacet)):
        if facet.weights is not None:
            out["weights"] = dict(facet.weights)
        out["defaultWeight"] = facet.default_weight
    if isinstance(facet, LinkPropertyFacet):
        out["classes"] = list(facet.classes)
    if isinstance(facet, ContinuousFacet):
        out.update(
            start=list(facet.start),
            end=list(facet.end),
            bins=facet.bins,
            precision=facet.precision,
            distribution=facet.distribution,
        )
        if facet.min is not None:
            out["min"] = facet.min
        if facet.max is not None:
            out["max"] = facet.max
    return out
