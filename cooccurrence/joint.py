"""Joint occupancy distribution from marginals and pairwise odds ratios.

Each pair of species fixes a 2x2 table through its two marginal occupancy
probabilities and its odds ratio (Plackett, 1965). With two species that
table is the joint distribution. With more species the 2^S table is fitted to
all pairwise tables by iterative proportional fitting, starting from the
uniform table, which yields the maximum entropy distribution with the given
pairwise structure whenever one exists.

Typical usage example:

    psi = np.array([40 / 175, 85 / 175])
    odds_ratio = odds_ratio_from_conditionals(0.6, 0.1)
    joint = solve_joint(psi, odds_ratio)
    # joint[0] = P(00), joint[1] = P(10), joint[2] = P(01), joint[3] = P(11)
"""

import logging
from itertools import combinations

import numpy as np

from cooccurrence.errors import InfeasibleConstraintError, InvalidParameterError
from cooccurrence.utils import state_matrix, check_probabilities

# tolerance when checking a solved table against its constraints
CHECK_TOL = 1e-6

def odds_ratio_from_conditionals(p_b_given_not_a: float,
                                 p_b_given_a: float) -> float:
    """Odds ratio between species A and B from B's conditional occupancy.

    Args:
        p_b_given_not_a: P(B present | A absent)
        p_b_given_a: P(B present | A present)
    Returns:
        odds of B where A is present divided by odds of B where A is absent
    """
    p0, p1 = check_probabilities(
        [p_b_given_not_a, p_b_given_a], 'conditional probabilities', 'solve'
    )
    return (p1 / (1 - p1)) / (p0 / (1 - p0))

def odds_ratio_matrix(odds_ratios, species_count: int) -> np.ndarray:
    """Validate an odds-ratio matrix, expanding a scalar to all pairs."""
    odds_ratios = np.asarray(odds_ratios, dtype=float)

    if odds_ratios.ndim == 0:
        matrix = np.full((species_count, species_count), odds_ratios.item())
        np.fill_diagonal(matrix, 1.)
        odds_ratios = matrix

    if odds_ratios.shape != (species_count, species_count):
        raise InvalidParameterError(
            f'odds ratios must be {species_count}x{species_count}, '
            f'got shape {odds_ratios.shape}', 'solve'
        )
    if not np.isfinite(odds_ratios).all() or (odds_ratios <= 0).any():
        raise InvalidParameterError(
            f'odds ratios must be finite and positive: {odds_ratios}', 'solve'
        )
    if not np.allclose(odds_ratios, odds_ratios.T):
        raise InvalidParameterError('odds ratio matrix must be symmetric',
                                    'solve')
    if not np.allclose(odds_ratios.diagonal(), 1.):
        raise InvalidParameterError('odds ratio matrix must have unit diagonal',
                                    'solve')

    return odds_ratios

def pairwise_table(psi_a: float, psi_b: float, odds_ratio: float) -> np.ndarray:
    """2x2 table implied by two marginals and their odds ratio.

    The cell P(1, 1) is the root of the Plackett quadratic that lies within
    the Frechet bounds. It is computed in the conjugate form
    2 * OR * pa * pb / (a + sqrt(a^2 - 4 * OR * (OR - 1) * pa * pb)), with
    a = 1 + (pa + pb) * (OR - 1), which has no cancellation near OR = 1 and
    reduces to pa * pb there.

    Returns:
        np.ndarray table[a, b] = P(A = a, B = b)
    """
    a = 1 + (psi_a + psi_b) * (odds_ratio - 1)
    discriminant = a ** 2 - 4 * odds_ratio * (odds_ratio - 1) * psi_a * psi_b
    if discriminant < 0:
        raise InfeasibleConstraintError(
            f'no 2x2 table for marginals ({psi_a}, {psi_b}) '
            f'and odds ratio {odds_ratio}'
        )

    p11 = 2 * odds_ratio * psi_a * psi_b / (a + np.sqrt(discriminant))
    p10 = psi_a - p11
    p01 = psi_b - p11
    p00 = 1 - psi_a - psi_b + p11

    return np.array([[p00, p01], [p10, p11]])

def solve_joint(psi, odds_ratios, tol: float = 1e-10,
                max_iter: int = 1000) -> np.ndarray:
    """Joint probability table over all 2^S occupancy combinations.

    Args:
        psi: length S vector of marginal occupancy probabilities in (0, 1)
        odds_ratios: S by S symmetric matrix with unit diagonal, or a scalar
          applied to every pair
        tol: convergence tolerance on the maximum absolute cell change
        max_iter: iteration budget for the iterative fit (S > 2)
    Returns:
        read-only np.ndarray of length 2^S, indexed like state_matrix
    Raises:
        InvalidParameterError: inputs outside their domains
        InfeasibleConstraintError: no valid joint table exists, or the fit
          did not converge within max_iter
    """
    psi = check_probabilities(psi, 'marginal occupancy probabilities', 'solve')
    if psi.ndim != 1 or psi.size == 0:
        raise InvalidParameterError('psi must be a non-empty vector', 'solve')

    species_count = psi.size
    odds_ratios = odds_ratio_matrix(odds_ratios, species_count)

    # 2x2 target table for every pair of species
    targets = {
        (s, t): pairwise_table(psi[s], psi[t], odds_ratios[s, t])
        for s, t in combinations(range(species_count), 2)
    }
    for (s, t), table in targets.items():
        if (table < 0).any():
            raise InfeasibleConstraintError(
                f'species {s + 1} and {t + 1}: negative cell in {table}'
            )

    if species_count == 1:
        joint = np.array([1 - psi[0], psi[0]])
    elif species_count == 2:
        # closed form, ordered 00, 10, 01, 11
        joint = targets[(0, 1)].flatten(order='F')
    else:
        joint = fit_ipf(targets, species_count, tol=tol, max_iter=max_iter)

    check_joint(joint, psi, odds_ratios)
    joint.setflags(write=False)

    return joint

def fit_ipf(targets: dict, species_count: int, tol: float = 1e-10,
            max_iter: int = 1000) -> np.ndarray:
    """Iterative proportional fitting of a 2^S table to pairwise tables.

    Each sweep rescales, for every pair (s, t) and every cell (a, b) of its
    2x2 table, the joint cells with z_s = a and z_t = b so that their sum
    matches the target. With a single pair (S = 2) the first sweep lands on
    the target table exactly.

    Args:
        targets: dict mapping (s, t) to the 2x2 target table
        species_count: number of species, S
    Returns:
        np.ndarray of length 2^S
    """
    states = state_matrix(species_count)
    state_count = states.shape[0]

    # masks[(s, t)][a, b] selects the joint cells with z_s = a and z_t = b
    masks = {
        pair: np.array([[(states[:, pair[0]] == a) & (states[:, pair[1]] == b)
                         for b in (0, 1)] for a in (0, 1)])
        for pair in targets
    }

    joint = np.full(state_count, 1 / state_count)
    change = np.inf

    for iteration in range(max_iter):

        previous = joint.copy()

        for pair, target in targets.items():
            for a in (0, 1):
                for b in (0, 1):
                    mask = masks[pair][a, b]
                    current = joint[mask].sum()

                    if current > 0:
                        joint[mask] *= target[a, b] / current
                    elif target[a, b] > 0:
                        raise InfeasibleConstraintError(
                            f'species {pair[0] + 1} and {pair[1] + 1}: cell '
                            f'({a}, {b}) has no mass left to rescale'
                        )

        change = np.abs(joint - previous).max()
        if change < tol:
            logging.debug(f'IPF converged after {iteration + 1} sweeps')
            return joint

    raise InfeasibleConstraintError(
        f'IPF did not converge within {max_iter} sweeps (last change {change})'
    )

def marginals_from_joint(joint: np.ndarray) -> np.ndarray:
    '''P(species s present) for every species.'''
    species_count = int(np.log2(len(joint)))
    return state_matrix(species_count).T @ joint

def odds_ratios_from_joint(joint: np.ndarray) -> np.ndarray:
    '''Odds ratios of the pairwise 2x2 tables implied by a joint table.'''
    species_count = int(np.log2(len(joint)))
    states = state_matrix(species_count)

    odds_ratios = np.ones((species_count, species_count))
    for s, t in combinations(range(species_count), 2):
        cells = {}
        for a in (0, 1):
            for b in (0, 1):
                mask = (states[:, s] == a) & (states[:, t] == b)
                cells[a, b] = joint[mask].sum()

        odds_ratio = (cells[1, 1] * cells[0, 0]) / (cells[1, 0] * cells[0, 1])
        odds_ratios[s, t] = odds_ratios[t, s] = odds_ratio

    return odds_ratios

def check_joint(joint: np.ndarray, psi: np.ndarray,
                odds_ratios: np.ndarray) -> None:
    """Raise unless joint is a distribution reproducing psi and odds_ratios."""
    if not np.isfinite(joint).all() or (joint < 0).any() or (joint > 1).any():
        raise InfeasibleConstraintError(f'joint table out of [0, 1]: {joint}')

    if not np.isclose(joint.sum(), 1., atol=CHECK_TOL):
        raise InfeasibleConstraintError(f'joint table sums to {joint.sum()}')

    if not np.allclose(marginals_from_joint(joint), psi, atol=CHECK_TOL):
        raise InfeasibleConstraintError('joint table misses the marginals')

    # a zero cell leaves the odds ratio undefined, compare where defined
    with np.errstate(divide='ignore', invalid='ignore'):
        fitted = odds_ratios_from_joint(joint)
    defined = np.isfinite(fitted)
    if not np.allclose(fitted[defined], odds_ratios[defined], rtol=CHECK_TOL,
                       atol=CHECK_TOL):
        raise InfeasibleConstraintError(
            f'joint table misses the odds ratios: {fitted}'
        )
