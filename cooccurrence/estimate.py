"""Run MCMC for every simulated trial in the scenario.

Each trial's observation codes and true occupancy are turned into a ModelSpec,
which is compiled into PyMC and sampled; the posterior is saved to a json
file. Trials run in parallel with multiprocessing, while the chains within a
trial run sequentially. Trials with saved results are skipped.

The script is called from the command line with the following arguments:
    -s: scenario name (default: debug)

Typical usage example:
    $ python -m cooccurrence.estimate --scenario debug
"""

from multiprocessing import Pool, cpu_count

import argparse
import json
import logging
import os

import numpy as np

from config.config import ESTIMATION_KEYS, load_config
from cooccurrence.model import CoOccupancy, build_model_spec

def parse():
    '''Parse arguments from the command line.'''
    parser = argparse.ArgumentParser(description="Estimating co-occurrence")
    parser.add_argument('-s', "--scenario", default="debug")
    return parser.parse_args()

def main():
    '''Estimate all the trials under a given scenario.'''
    args = parse()

    results_dir = f'results/{args.scenario}'
    os.makedirs(results_dir, exist_ok=True)

    logging.basicConfig(filename=f'{results_dir}/estimate.log',
                        level=logging.INFO)

    scenario = Scenario(args.scenario)
    scenario.estimate()

class Scenario:
    '''Estimate the trials of a scenario.

    Attributes:
        scenario: string naming the scenario being estimated
        data_dir: path to the directory with the simulated data
        results_dir: path to the posterior output
        config_path: path to the config for the scenario
    '''
    def __init__(self, scenario: str) -> None:
        self.scenario = scenario
        self.data_dir = f'sim_data/{scenario}'
        self.results_dir = f'results/{scenario}'
        self.config_path = f'config/{scenario}.yaml'

    def estimate(self):
        '''Sample every trial that has no results yet.'''
        logging.info(f'Estimating {self.scenario}...')

        cfg = load_config(self.config_path, "config/default.yaml",
                          ESTIMATION_KEYS)

        # check to see theres a json file for each trial in trial_count
        files = [f'{self.data_dir}/trial_{t}.json'
                 for t in range(cfg.trial_count)]
        if not all(os.path.isfile(f) for f in files):
            e = f'{self.data_dir} missing data for each trial in {cfg.trial_count}'
            raise OSError(e)

        # find trials that have already been completed
        completed_trials = [extract_trial_number(f)
                            for f in os.listdir(self.results_dir)
                            if f.startswith('trial_') and f.endswith('.json')]
        remaining_trials = [t for t in range(cfg.trial_count)
                            if t not in completed_trials]

        if not remaining_trials:
            logging.info(f'All trials for {self.scenario} already completed.')
            return None

        # arguments for mcmc sampler
        self.sample_kwargs = {
            'draws': cfg.draws,
            'tune': cfg.tune,
            'chains': cfg.chains,
            'cores': 1,
            'progressbar': False,
            'random_seed': cfg.seed,
        }

        counts = max(1, min(cpu_count() - 2, len(remaining_trials)))
        with Pool(counts) as p:
            p.map(self.run_trial, remaining_trials)

        return None

    def run_trial(self, trial):
        '''Build the spec for one trial, sample, and save the posterior.'''
        logging.info(f'Sampling for trial {trial} of {self.scenario}...')

        trial_path = f'{self.data_dir}/trial_{trial}.json'
        with open(trial_path, 'r') as f:
            trial_results = json.load(f)

        observations = np.asarray(trial_results['observations'])
        occupancy = np.asarray(trial_results['occupancy'])

        spec = build_model_spec(observations, occupancy=occupancy,
                                species_count=occupancy.shape[1])
        spec.to_json(f'{self.results_dir}/spec_{trial}.json')

        co = CoOccupancy()
        idata = co.estimate_bayes(spec, self.sample_kwargs)

        # dump results to json
        path = f'{self.results_dir}/trial_{trial}.json'
        idata.to_json(path)

def extract_trial_number(path):
    """Extracts trial integer from 'results/debug/trial_17.json'"""
    number_extension = path.split('trial_')[1]
    number = int(number_extension.split('.')[0])
    return number

if __name__ == '__main__':
    main()
