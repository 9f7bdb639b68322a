"""Simulates latent co-occurrence and the imperfect detection process.

Latent occupancy rows are drawn from the joint table as categorical draws over
the 2^S combinations. Detections are conditionally independent Bernoulli
trials given the latent state, with no false positives, and each site/visit
outcome is folded into one observation code (see utils.encode_detections).

Typical usage example:

    rng = np.random.default_rng(42)
    z = sample_occupancy(joint, site_count=500, rng=rng)
    sim = simulate_detection(z, p=np.array([0.5, 0.9]), visit_count=5, rng=rng)
    y = sim['observations']
"""

import logging

import numpy as np

from cooccurrence.errors import InvalidParameterError
from cooccurrence.utils import (state_matrix, encode_detections,
                                check_probabilities, check_count)

def sample_occupancy(joint: np.ndarray, site_count: int,
                     rng: np.random.Generator) -> np.ndarray:
    """Draw site_count independent occupancy vectors from a joint table.

    Args:
        joint: length 2^S joint probability table, indexed like state_matrix
        site_count: number of sites, N
        rng: np.random.Generator supplying every draw
    Returns:
        np.ndarray of shape (N, S) with entries in {0, 1}
    """
    site_count = check_count(site_count, 'site_count', 'sample')
    joint = check_probabilities(joint, 'joint table', 'sample', closed=True)

    # a power of two, with at least one species
    state_count = joint.size
    if joint.ndim != 1 or state_count < 2 or state_count & (state_count - 1):
        raise InvalidParameterError(
            f'joint table must have 2^S entries, got {state_count}', 'sample'
        )
    species_count = state_count.bit_length() - 1
    if not np.isclose(joint.sum(), 1.):
        raise InvalidParameterError(
            f'joint table must sum to one, got {joint.sum()}', 'sample'
        )

    # matrix where one indicates the drawn combination
    draw_matrix = rng.multinomial(n=1, pvals=joint, size=site_count)
    state_index = draw_matrix.nonzero()[1]

    occupancy = state_matrix(species_count)[state_index]
    logging.debug(f'Sampled occupancy for {site_count} sites, '
                  f'naive occupancy {occupancy.mean(axis=0)}')

    return occupancy

def simulate_detection(occupancy: np.ndarray, p: np.ndarray, visit_count: int,
                       rng: np.random.Generator) -> dict:
    """Simulate repeat-visit detections given latent occupancy.

    Detection of species s at site j on visit k is Bernoulli with probability
    occupancy[j, s] * p[s], independently across species, sites and visits.

    Args:
        occupancy: N by S binary latent occupancy matrix, not modified
        p: length S vector of per-visit detection probabilities in [0, 1]
        visit_count: number of repeat visits per site, J
        rng: np.random.Generator supplying every draw
    Returns:
        dict with 'detections', the (S, N, J) raw detection array, and
          'observations', the (N, J) matrix of observation codes
    """
    visit_count = check_count(visit_count, 'visit_count', 'detect')
    p = check_probabilities(p, 'detection probabilities', 'detect', closed=True)

    occupancy = np.asarray(occupancy)
    if occupancy.ndim != 2 or not np.isin(occupancy, (0, 1)).all():
        raise InvalidParameterError(
            'occupancy must be a binary N by S matrix', 'detect'
        )

    site_count, species_count = occupancy.shape
    site_count = check_count(site_count, 'site_count', 'detect')
    species_count = check_count(species_count, 'species_count', 'detect')
    if p.shape != (species_count,):
        raise InvalidParameterError(
            f'expected {species_count} detection probabilities, '
            f'got {p.shape}', 'detect'
        )

    detections = np.zeros((species_count, site_count, visit_count),
                          dtype=np.int64)
    for s in range(species_count):

        # present species are detected with p, absent species never
        p_site = occupancy[:, s, None] * p[s]
        detections[s] = rng.binomial(1, p_site, size=(site_count, visit_count))

    observations = encode_detections(detections)

    return {'detections': detections, 'observations': observations}
