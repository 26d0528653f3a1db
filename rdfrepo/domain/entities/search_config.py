"""Search configuration — paging, ordering, metadata breadth and highlighting options."""

from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field, fields

from rdfrepo.domain.entities.metadata_mode import MetadataMode

FTS_BINARY = "BINARY"
DESCENDING_MARKER = "^"

# ts_headline() option name -> SearchConfig field
_HEADLINE_OPTIONS = {
    "StartSel": "fts_start_sel",
    "StopSel": "fts_stop_sel",
    "MaxWords": "fts_max_words",
    "MinWords": "fts_min_words",
    "ShortWord": "fts_short_word",
    "HighlightAll": "fts_highlight_all",
    "MaxFragments": "fts_max_fragments",
    "FragmentDelimiter": "fts_fragment_delimiter",
}

# fields never sent over the wire: they travel as headers or are results
_LOCAL_FIELDS = {"metadata_mode", "metadata_parent_property", "count", "skip_artificial_properties"}
_INT_FIELDS = {"limit", "offset", "fts_max_words", "fts_min_words", "fts_short_word", "fts_max_fragments"}
_BOOL_FIELDS = {"fts_highlight_all"}


@dataclass
class SearchConfig:
    """Options of a single search request.

    ``count`` is filled in after the search with the total number of matches
    (regardless of ``limit``/``offset``).
    """

    metadata_mode: str = MetadataMode.RESOURCE.value
    metadata_parent_property: str | None = None
    limit: int | None = None
    offset: int | None = None
    count: int = 0
    # properties to order by; a leading "^" means descending
    order_by: list[str] = field(default_factory=list)
    order_by_lang: str | None = None
    resource_properties: list[str] = field(default_factory=list)
    relatives_properties: list[str] = field(default_factory=list)
    skip_artificial_properties: bool = False

    # Full-text search highlighting, applied to results only and not used for matching
    fts_query: str | None = None
    fts_property: str | None = None
    fts_start_sel: str | None = None
    fts_stop_sel: str | None = None
    fts_max_words: int | None = None
    fts_min_words: int | None = None
    fts_short_word: int | None = None
    fts_highlight_all: bool | None = None
    fts_max_fragments: int | None = None
    fts_fragment_delimiter: str | None = None

    def ts_headline_options(self) -> str:
        """Options string for PostgreSQL's ``ts_headline()``."""
        options = []
        for option, attr in _HEADLINE_OPTIONS.items():
            value = getattr(self, attr)
            if value is None:
                continue
            if isinstance(value, bool):
                value = "true" if value else "false"
            options.append(f"{option}={value}")
        return ", ".join(options)

    def to_form_data(self) -> list[tuple[str, str]]:
        """Non-empty transportable fields as ``camelCase`` form pairs."""
        pairs: list[tuple[str, str]] = []
        for f in fields(self):
            if f.name in _LOCAL_FIELDS:
                continue
            value = getattr(self, f.name)
            if value is None or value == [] or value == "":
                continue
            key = _camel(f.name)
            if isinstance(value, list):
                pairs.extend((f"{key}[]", str(v)) for v in value)
            elif isinstance(value, bool):
                pairs.append((key, "true" if value else "false"))
            else:
                pairs.append((key, str(value)))
        return pairs

    @classmethod
    def from_form_data(cls, form: Mapping[str, Sequence[str]]) -> "SearchConfig":
        config = cls()
        for f in fields(cls):
            if f.name in ("count", "skip_artificial_properties"):
                continue
            key = _camel(f.name)
            values = list(form.get(key, [])) or list(form.get(f"{key}[]", []))
            if not values:
                continue
            if isinstance(getattr(config, f.name), list):
                setattr(config, f.name, values)
            elif f.name in _INT_FIELDS:
                setattr(config, f.name, int(values[0]))
            elif f.name in _BOOL_FIELDS:
                setattr(config, f.name, values[0].lower() in ("1", "true", "yes"))
            else:
                setattr(config, f.name, values[0])
        return config

    def headers(self, header_names: Mapping[str, str]) -> dict[str, str]:
        """HTTP headers carrying the metadata read mode and parent property."""
        out: dict[str, str] = {}
        if self.metadata_mode and "metadata_read_mode" in header_names:
            out[header_names["metadata_read_mode"]] = self.metadata_mode
        if self.metadata_parent_property and "metadata_parent_property" in header_names:
            out[header_names["metadata_parent_property"]] = self.metadata_parent_property
        return out


def _camel(name: str) -> str:
    head, *tail = name.split("_")
    return head + "".join(part.capitalize() for part in tail)


def split_order_property(value: str) -> tuple[str, bool]:
    """``"^prop"`` -> ``("prop", False)``; ``"prop"`` -> ``("prop", True)`` (ascending)."""
    if value.startswith(DESCENDING_MARKER):
        return value[len(DESCENDING_MARKER):], False
    return value, True
