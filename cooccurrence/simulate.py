"""Simulates trial_count co-occurrence datasets for a scenario.

Each trial runs the whole chain: solve the joint occupancy table from the
marginals and odds ratio, draw the latent occupancy of every site, then
simulate the repeat-visit detections and their observation codes. A single
np.random.Generator, seeded from the scenario seed and the trial number, is
passed down the chain so that every trial can be reproduced exactly.

The script is called from the command line with the following arguments:
    -s: scenario name, reads config/<scenario>.yaml (default: debug)

Typical usage example:
    $ python -m cooccurrence.simulate --scenario debug
"""
import argparse
import json
import logging
import os

import numpy as np

from config.config import SIMULATION_KEYS, load_config
from cooccurrence.errors import InvalidParameterError
from cooccurrence.joint import solve_joint
from cooccurrence.occupancy import sample_occupancy, simulate_detection
from cooccurrence.utils import NumpyEncoder, check_probabilities, check_count

def parse():
    '''Parses arguments from the command line'''
    parser = argparse.ArgumentParser(description="Simulating co-occurrence")
    parser.add_argument('-s', "--scenario", default="debug")
    return parser.parse_args()

def simulate_dataset(psi, odds_ratios, p, site_count: int, visit_count: int,
                     rng: np.random.Generator = None, seed=None,
                     tol: float = 1e-10, max_iter: int = 1000) -> dict:
    """Solve, sample and detect for one simulated dataset.

    Args:
        psi: length S marginal occupancy probabilities
        odds_ratios: S by S odds-ratio matrix, or a scalar for every pair
        p: length S detection probabilities
        site_count: number of sites, N
        visit_count: number of visits per site, J
        rng: np.random.Generator for every draw, built from seed if None
        seed: seed for the generator when rng is None
    Returns:
        dict with the joint table, the (N, S) occupancy matrix, the
          (S, N, J) detections and the (N, J) observation codes
    """
    # reject bad inputs before anything is drawn
    site_count = check_count(site_count, 'site_count', 'sample')
    visit_count = check_count(visit_count, 'visit_count', 'detect')
    p = check_probabilities(p, 'detection probabilities', 'detect', closed=True)
    if p.shape != np.shape(psi):
        raise InvalidParameterError(
            f'psi and p must have one entry per species, got '
            f'{np.shape(psi)} and {p.shape}', 'detect'
        )

    if rng is None:
        rng = np.random.default_rng(seed)

    joint = solve_joint(psi, odds_ratios, tol=tol, max_iter=max_iter)
    logging.debug(f'Joint occupancy table: {joint}')

    occupancy = sample_occupancy(joint, site_count, rng)
    sim = simulate_detection(occupancy, p, visit_count, rng)

    return {
        'joint': joint,
        'occupancy': occupancy,
        'detections': sim['detections'],
        'observations': sim['observations'],
    }

def simulate_from_config(cfg, trial: int) -> dict:
    '''Simulate one trial of a scenario config.'''
    rng = np.random.default_rng([cfg.seed, trial])
    return simulate_dataset(
        psi=cfg.psi, odds_ratios=cfg.odds_ratio, p=cfg.p,
        site_count=cfg.site_count, visit_count=cfg.visit_count, rng=rng,
        tol=cfg.tol, max_iter=cfg.max_iter
    )

def main():
    '''Simulate trial_count datasets for the scenario.'''
    args = parse()

    config_path = f'config/{args.scenario}.yaml'
    cfg = load_config(config_path, "config/default.yaml", SIMULATION_KEYS)

    # don't overwrite, unless we're writing the debug scenario
    data_dir = f'sim_data/{args.scenario}'
    if os.path.isdir(data_dir):
        if args.scenario != 'debug':
            raise NameError(f'Directory: {data_dir} already exists.')
    else:
        os.makedirs(data_dir)

    logging.basicConfig(filename=f'{data_dir}/simulate.log',
                        level=logging.DEBUG)
    logging.info(f'Simulating data for scenario: {args.scenario}')

    # the joint table is fixed by the scenario, solve it once for the truth
    joint = solve_joint(cfg.psi, cfg.odds_ratio, tol=cfg.tol,
                        max_iter=cfg.max_iter)

    # simulate every trial before writing, a failed stage leaves no output
    sims = [simulate_from_config(cfg, trial)
            for trial in range(cfg.trial_count)]

    for trial, sim in enumerate(sims):

        results = {
            'occupancy': sim['occupancy'],
            'observations': sim['observations']
        }

        path = f'{data_dir}/trial_{trial}.json'
        with open(path, 'w') as f:
            json.dump(results, f, cls=NumpyEncoder)

    # save the truth for comparing with the posterior
    settings = {'psi': cfg.psi, 'odds_ratio': cfg.odds_ratio, 'p': cfg.p,
                'joint': joint, 'site_count': cfg.site_count,
                'visit_count': cfg.visit_count}
    with open(f'{data_dir}/settings.json', 'w') as f:
        json.dump(settings, f, cls=NumpyEncoder)

    logging.info('scenario complete.')

if __name__ == '__main__':
    main()
