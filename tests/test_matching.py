import math

import numpy as np
import pytest

from attendance_scanner.recognition.matching import (
    ReferenceSet,
    descriptor_distances,
    match_descriptor,
)
from attendance_scanner.recognition.types import EnrolledIdentity

from conftest import unit


def references():
    return ReferenceSet([
        EnrolledIdentity('a', unit(0), name='Ann'),
        EnrolledIdentity('b', unit(1)),
    ])


def test_nearest_below_threshold_wins():
    query = unit(1) * 0.9
    result = match_descriptor(query, references(), threshold=0.55)

    assert result.matched
    assert result.identity_id == 'b'
    assert result.distance == pytest.approx(0.1)


def test_threshold_is_strict():
    query = unit(0) * 0.5
    result = match_descriptor(query, references(), threshold=0.5)

    assert not result.matched
    assert result.distance == 0.5


def test_empty_reference_set_matches_nothing():
    result = match_descriptor(unit(0), ReferenceSet(), threshold=0.55)

    assert result.identity_id is None
    assert math.isinf(result.distance)


def test_cosine_metric():
    refs = ReferenceSet([EnrolledIdentity('a', unit(0) * 10)])

    result = match_descriptor(unit(0), refs, threshold=0.1, metric='cosine')

    assert result.identity_id == 'a'
    assert result.distance == pytest.approx(0.0)


def test_invalid_inputs_raise():
    with pytest.raises(ValueError):
        descriptor_distances(unit(0), references().matrix, metric='manhattan')
    with pytest.raises(ValueError):
        match_descriptor(np.ones(3), references(), threshold=0.55)


def test_snapshot_is_isolated_from_source():
    source = unit(0)
    refs = ReferenceSet([EnrolledIdentity('a', source)])

    source[0] = 42.0

    assert refs.matrix[0, 0] == 1.0
    assert not refs.matrix.flags.writeable


def test_mismatched_and_duplicate_records():
    refs = ReferenceSet([
        EnrolledIdentity('a', unit(0)),
        EnrolledIdentity('short', np.ones(3)),
        EnrolledIdentity('empty', np.array([])),
        EnrolledIdentity('a', unit(2), name='Ann'),
    ])

    assert refs.identity_ids == ('a',)
    assert refs.matrix[0, 2] == 1.0
    assert refs.display_name('a') == 'Ann'
    assert refs.display_name('zed') == 'zed'
    assert 'short' not in refs
