"""Compare posterior draws with the simulation truth.

For every monitored scalar (psi[k] and p[s]) the draws across chains and
iterations are pooled, and the median and the central 95% interval are
reported next to the true value. The posterior is only read, never
interpreted beyond these summaries.

The script is called from the command line with the following arguments:
    -s: scenario name (default: debug)

Typical usage example:
    $ python -m cooccurrence.analyze --scenario debug
"""

import argparse
import json
import logging

import numpy as np
import arviz as az
import pandas as pd

from config.config import load_config

MONITORED = ['psi', 'p']

def parse():
    '''Parse command line arguments.'''
    parser = argparse.ArgumentParser(description="Analyzing results")
    parser.add_argument('-s', "--scenario", default="debug")
    return parser.parse_args()

def analyze_scenario():
    '''Summarize every trial of a scenario against the truth.'''
    args = parse()

    results_dir = f'results/{args.scenario}'
    logging.basicConfig(filename=f'{results_dir}/analyze.log',
                        level=logging.INFO)

    cfg = load_config(f'config/{args.scenario}.yaml', "config/default.yaml")

    with open(f'sim_data/{args.scenario}/settings.json', 'r') as f:
        truth = get_truth(json.load(f))

    trial_list = []
    for trial in range(cfg.trial_count):
        logging.info(f'Summarizing trial {trial} for {args.scenario}')

        idata = az.from_json(f'{results_dir}/trial_{trial}.json')
        summary = summarize_posterior(posterior_draws(idata), truth)
        summary['trial'] = trial
        trial_list.append(summary)

    scenario_results = pd.concat(trial_list)
    scenario_results['scenario'] = args.scenario

    out_path = f'{results_dir}/{args.scenario}-summary.csv'
    scenario_results.to_csv(out_path, index=False)

def posterior_draws(idata, var_names: list = None) -> dict:
    """Pool the chains and iterations of each monitored variable.

    Args:
        idata: inference data with a posterior group of (chain, draw, ...)
          arrays
        var_names: variables to extract, MONITORED if None
    Returns:
        dict mapping each name to an array of shape (..., n_samples)
    """
    var_names = var_names or MONITORED
    draws = {}
    for name in var_names:
        values = np.asarray(idata.posterior[name])
        pooled = values.reshape((-1,) + values.shape[2:])
        draws[name] = np.moveaxis(pooled, 0, -1)
    return draws

def summarize_posterior(draws: dict, truth: dict) -> pd.DataFrame:
    """Median and 95% interval of each scalar parameter, with its truth.

    Args:
        draws: dict of name to array of shape (..., n_samples)
        truth: dict of name to the true value(s), same leading shape
    Returns:
        pd.DataFrame with one row per scalar parameter, e.g. psi[3]
    """
    rows = []
    for name, samples in draws.items():
        samples = np.atleast_2d(samples)
        true_values = np.atleast_1d(truth[name])

        medians = np.median(samples, axis=-1)
        low, high = np.quantile(samples, [0.025, 0.975], axis=-1)

        for i, true_value in enumerate(true_values):
            rows.append({
                'parameter': f'{name}[{i}]',
                'median': medians[i],
                'low': low[i],
                'high': high[i],
                'truth': true_value,
            })

    summary = pd.DataFrame(rows)
    summary['covered'] = ((summary.low <= summary.truth)
                          & (summary.truth <= summary.high))
    summary['error'] = summary['median'] - summary.truth

    return summary

def get_truth(settings: dict) -> dict:
    """True occupancy (the joint table) and detection probabilities."""
    return {'psi': np.asarray(settings['joint']),
            'p': np.asarray(settings['p'])}

if __name__ == '__main__':
    analyze_scenario()
