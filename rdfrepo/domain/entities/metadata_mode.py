"""Metadata read modes — how far metadata retrieval traverses from a matched resource."""

from enum import Enum

from rdfrepo.domain.exceptions import BadMetadataModeError

UNLIMITED_DEPTH = 999999


class MetadataMode(str, Enum):
    NONE = "none"
    RESOURCE = "resource"
    NEIGHBORS = "neighbors"
    RELATIVES = "relatives"
    RELATIVES_ONLY = "relativesOnly"
    RELATIVES_REVERSE = "relativesReverse"
    PARENTS = "parents"
    PARENTS_ONLY = "parentsOnly"
    PARENTS_REVERSE = "parentsReverse"
    IDS = "ids"


# (max forward depth, max backward depth, include neighbors, reverse)
_TRAVERSALS: dict[str, tuple[int, int, bool, bool]] = {
    MetadataMode.RESOURCE.value: (0, 0, False, False),
    MetadataMode.NEIGHBORS.value: (0, 0, True, True),
    MetadataMode.RELATIVES.value: (UNLIMITED_DEPTH, -UNLIMITED_DEPTH, True, False),
    MetadataMode.RELATIVES_ONLY.value: (UNLIMITED_DEPTH, -UNLIMITED_DEPTH, False, False),
    MetadataMode.RELATIVES_REVERSE.value: (UNLIMITED_DEPTH, -UNLIMITED_DEPTH, True, True),
    MetadataMode.PARENTS.value: (0, -UNLIMITED_DEPTH, True, False),
    MetadataMode.PARENTS_ONLY.value: (0, -UNLIMITED_DEPTH, False, False),
    MetadataMode.PARENTS_REVERSE.value: (0, -UNLIMITED_DEPTH, True, True),
}


def relatives_params(mode: str) -> tuple[int, int, bool, bool]:
    """Traversal parameters of ``get_relatives()`` for a named or custom mode.

    A custom mode is written ``<forward>_<backward>[_<neighbors>[_<reverse>]]``
    with non-negative depths and 0/1 flags, e.g. ``2_0_1``.
    """
    if mode in _TRAVERSALS:
        return _TRAVERSALS[mode]
    parts = mode.split("_")
    if len(parts) > 4 or not all(p.isdigit() for p in parts):
        raise BadMetadataModeError(mode)
    values = [int(p) for p in parts] + [0] * (4 - len(parts))
    if values[2] > 1 or values[3] > 1:
        raise BadMetadataModeError(mode)
    return values[0], -values[1], bool(values[2]), bool(values[3])
