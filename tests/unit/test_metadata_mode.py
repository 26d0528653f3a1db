"""Unit tests for metadata read modes."""

import pytest

from rdfrepo.domain.entities.metadata_mode import UNLIMITED_DEPTH, relatives_params
from rdfrepo.domain.exceptions import BadMetadataModeError


def test_named_modes():
    assert relatives_params("resource") == (0, 0, False, False)
    assert relatives_params("neighbors") == (0, 0, True, True)
    assert relatives_params("relatives") == (UNLIMITED_DEPTH, -UNLIMITED_DEPTH, True, False)
    assert relatives_params("parentsOnly") == (0, -UNLIMITED_DEPTH, False, False)


def test_custom_modes():
    assert relatives_params("2_1_1") == (2, -1, True, False)
    assert relatives_params("3") == (3, 0, False, False)
    assert relatives_params("0_2_0_1") == (0, -2, False, True)


@pytest.mark.parametrize("mode", ["everything", "1_2_3", "1_-2", "1_2_1_1_1", ""])
def test_bad_modes(mode):
    with pytest.raises(BadMetadataModeError):
        relatives_params(mode)
