"""Unit tests for facet descriptor loading and the initial facet cache."""

import pytest

from rdfrepo.application.schemas.search import FacetStats, FacetValue
from rdfrepo.domain.entities.facets import parse_facet
from rdfrepo.domain.exceptions import FacetConfigurationError
from rdfrepo.infrastructure.storage.facet_cache import FacetCache, load_facet_descriptors


def test_load_descriptors_from_list(tmp_path):
    path = tmp_path / "facets.yaml"
    path.write_text(
        "- type: literal\n"
        "  property: https://vocabs.example.org/hasLanguage\n"
        "  weights:\n"
        "    en: 2\n"
        "- type: map\n",
        encoding="utf-8",
    )

    descriptors = load_facet_descriptors(path)

    assert [d["type"] for d in descriptors] == ["literal", "map"]
    assert parse_facet(descriptors[0]).weights == {"en": 2.0}


def test_load_descriptors_from_mapping(tmp_path):
    path = tmp_path / "facets.yaml"
    path.write_text("facets:\n  - type: matchProperty\n", encoding="utf-8")

    assert load_facet_descriptors(path) == [{"type": "matchProperty"}]


def test_empty_descriptor_file(tmp_path):
    path = tmp_path / "facets.yaml"
    path.write_text("", encoding="utf-8")

    assert load_facet_descriptors(path) == []


def test_bad_descriptor_file(tmp_path):
    path = tmp_path / "facets.yaml"
    path.write_text("- literal\n- map\n", encoding="utf-8")

    with pytest.raises(FacetConfigurationError):
        load_facet_descriptors(path)


def test_cache_round_trip(tmp_path):
    cache = FacetCache(tmp_path / "cache" / "facets.json")
    assert cache.load() is None

    facets = [
        FacetStats(property="p", type="literal", values=[FacetValue(value="en", label="en", count=3)]),
        FacetStats(property="y", type="continuous", continuous=True, min=1990.0, max=2024.0),
    ]
    cache.save("2024-05-01 12:00:00", facets)

    loaded = cache.load()
    assert loaded is not None
    assert loaded.date == "2024-05-01 12:00:00"
    assert loaded.facets == facets


def test_unreadable_cache_is_ignored(tmp_path):
    path = tmp_path / "facets.json"
    path.write_text("{not json", encoding="utf-8")

    assert FacetCache(path).load() is None
