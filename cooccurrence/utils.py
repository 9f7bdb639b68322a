import json

import numpy as np

from cooccurrence.errors import InvalidParameterError


class NumpyEncoder(json.JSONEncoder):
    '''Easy conversion between numpy and json.'''
    def default(self, obj):
        if isinstance(obj, np.ndarray):
            return obj.tolist()
        if isinstance(obj, np.integer):
            return int(obj)
        if isinstance(obj, np.floating):
            return float(obj)
        return json.JSONEncoder.default(self, obj)

def state_matrix(species_count: int) -> np.ndarray:
    """Enumerates every occupancy combination for species_count species.

    Row i holds the binary digits of i, least significant bit first, so that
    species s is present in combination i when (i >> s) & 1. The code of the
    combination is i + 1. For two species the rows are 00, 10, 01, 11.

    Args:
        species_count: number of species, S
    Returns:
        np.ndarray of shape (2 ** S, S) with entries in {0, 1}
    """
    indices = np.arange(2 ** species_count)
    species = np.arange(species_count)
    return (indices[:, None] >> species[None, :]) & 1

def encode_states(occupancy: np.ndarray) -> np.ndarray:
    """Convert an N by S occupancy matrix into state codes in 1..2^S."""
    occupancy = np.asarray(occupancy)
    species_count = occupancy.shape[1]
    weights = 2 ** np.arange(species_count)
    return 1 + occupancy.astype(np.int64) @ weights

def encode_detections(detections: np.ndarray) -> np.ndarray:
    """Fold per-species detections into one categorical code per visit.

    Args:
        detections: binary array of shape (S, N, J)
    Returns:
        np.ndarray of shape (N, J) with codes in 1..2^S, where code 1 means
          nothing was detected and code 2 ** S means every species was
    """
    detections = np.asarray(detections)
    if not np.isin(detections, (0, 1)).all():
        raise InvalidParameterError('detections must be binary', 'detect')

    species_count = detections.shape[0]
    weights = 2 ** np.arange(species_count)
    return 1 + np.tensordot(weights, detections.astype(np.int64), axes=1)

def decode_observations(observations: np.ndarray,
                        species_count: int) -> np.ndarray:
    """Inverse of encode_detections, returns an (S, N, J) binary array."""
    observations = np.asarray(observations)
    if observations.min() < 1 or observations.max() > 2 ** species_count:
        raise InvalidParameterError(
            f'observation codes must lie in 1..{2 ** species_count}', 'detect'
        )

    species = np.arange(species_count)
    shifts = species.reshape((species_count,) + (1,) * observations.ndim)
    return ((observations[None, ...] - 1) >> shifts) & 1

def softmax(x):
    '''Normalize exp(x) to the simplex, shifted by max(x) for stability.'''
    x = np.asarray(x, dtype=float)
    w = np.exp(x - x.max())
    return w / w.sum()

def expit(x):
    return 1 / (1 + np.exp(-x))

def check_probabilities(values, name: str, stage: str,
                        closed: bool = False) -> np.ndarray:
    """Reject probabilities outside (0, 1), or [0, 1] when closed is True."""
    values = np.asarray(values, dtype=float)

    if not np.isfinite(values).all():
        raise InvalidParameterError(f'{name} must be finite: {values}', stage)

    if closed:
        is_valid = (values >= 0) & (values <= 1)
        interval = '[0, 1]'
    else:
        is_valid = (values > 0) & (values < 1)
        interval = '(0, 1)'

    if not is_valid.all():
        raise InvalidParameterError(
            f'{name} must lie in {interval}, got {values}', stage
        )

    return values

def check_count(value, name: str, stage: str) -> int:
    '''Reject counts (sites, visits) that are not positive integers.'''
    if isinstance(value, bool) or int(value) != value or value <= 0:
        raise InvalidParameterError(
            f'{name} must be a positive integer, got {value}', stage
        )
    return int(value)
