import numpy as np
import pytest

from cooccurrence.errors import InvalidParameterError
from cooccurrence.utils import (state_matrix, encode_states, encode_detections,
                                decode_observations, softmax, check_count)

def test_state_matrix():
    states = state_matrix(2)
    should_be = np.array([[0, 0], [1, 0], [0, 1], [1, 1]])
    assert np.array_equal(states, should_be)

    assert state_matrix(3).shape == (8, 3)

def test_encode_detections():
    # species by sites by visits, one visit per detection pair
    detections = np.array([[[0, 1, 0, 1]],
                           [[0, 0, 1, 1]]])
    codes = encode_detections(detections)
    should_be = np.array([[1, 2, 3, 4]])
    assert np.array_equal(codes, should_be)

def test_decode_observations():
    observations = np.array([[1, 2], [3, 4]])
    detections = decode_observations(observations, 2)

    assert detections.shape == (2, 2, 2)
    assert np.array_equal(detections[0], [[0, 1], [0, 1]])
    assert np.array_equal(detections[1], [[0, 0], [1, 1]])
    assert np.array_equal(encode_detections(detections), observations)

def test_encode_states():
    occupancy = np.array([[0, 0], [1, 0], [0, 1], [1, 1]])
    assert np.array_equal(encode_states(occupancy), [1, 2, 3, 4])

def test_encode_detections_rejects_counts():
    with pytest.raises(InvalidParameterError):
        encode_detections(np.full((2, 3, 3), 2))

def test_decode_rejects_codes():
    with pytest.raises(InvalidParameterError):
        decode_observations(np.array([[0, 1]]), 2)
    with pytest.raises(InvalidParameterError):
        decode_observations(np.array([[5, 1]]), 2)

def test_softmax():
    probs = softmax([0., 1000., -1000.])
    assert np.isclose(probs.sum(), 1.)
    assert np.allclose(probs, [0., 1., 0.])

@pytest.mark.parametrize('count', [0, -1, 2.5])
def test_check_count(count):
    with pytest.raises(InvalidParameterError):
        check_count(count, 'site_count', 'sample')
