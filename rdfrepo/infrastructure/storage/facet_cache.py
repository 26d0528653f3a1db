"""Facet storage on the local filesystem.

    <facets_file>       YAML list of facet descriptors (wire form)
    <facet_cache_file>  JSON {"date": <last modification>, "facets": [FacetStats, ...]}
"""

import json
import logging
from pathlib import Path
from typing import Any

import yaml
from pydantic import ValidationError

from rdfrepo.application.schemas.search import FacetStats, InitialFacetsResponse
from rdfrepo.domain.exceptions import FacetConfigurationError

logger = logging.getLogger(__name__)


def load_facet_descriptors(path: str | Path) -> list[dict[str, Any]]:
    """Read facet descriptors from a YAML file.

    Accepts either a top-level list or a mapping with a ``facets`` list.
    Validation of the single descriptors is left to ``parse_facet()``.
    """
    path = Path(path)
    with path.open("r", encoding="utf-8") as fh:
        data = yaml.safe_load(fh) or []
    if isinstance(data, dict):
        data = data.get("facets") or []
    if not isinstance(data, list) or not all(isinstance(d, dict) for d in data):
        raise FacetConfigurationError(str(path), "expected a list of facet descriptors")
    logger.info("Loaded %d facet descriptors from %s", len(data), path)
    return data


class FacetCache:
    """JSON cache of the initial (unfiltered) facet statistics."""

    def __init__(self, path: str | Path):
        self._path = Path(path)

    @property
    def path(self) -> Path:
        return self._path

    def load(self) -> InitialFacetsResponse | None:
        """Cached facets, or None when the cache is missing or unreadable."""
        if not self._path.exists():
            return None
        try:
            return InitialFacetsResponse.model_validate_json(self._path.read_text(encoding="utf-8"))
        except (OSError, ValidationError) as exc:
            logger.warning("Ignoring unreadable facet cache %s: %s", self._path, exc)
            return None

    def save(self, date: str, facets: list[FacetStats]) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        payload = InitialFacetsResponse(date=date, facets=facets)
        self._path.write_text(
            json.dumps(payload.model_dump(mode="json"), ensure_ascii=False, indent=2),
            encoding="utf-8",
        )
        logger.info("Stored %d initial facets in %s", len(facets), self._path)
