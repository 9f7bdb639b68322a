import json
import os
import shutil
import sys

import numpy as np
import pytest

from config.config import load_config
from cooccurrence import simulate
from cooccurrence.errors import InvalidParameterError
from cooccurrence.simulate import simulate_dataset, simulate_from_config
from cooccurrence.utils import decode_observations

CONFIG_DIR = os.path.join(os.path.dirname(os.path.abspath(__file__)), 'config')

debug_kwargs = {
    'psi': np.array([40 / 175, 85 / 175]),
    'odds_ratios': 2 / 27,
    'p': np.array([0.5, 0.9]),
    'site_count': 500,
    'visit_count': 5,
    'seed': 42
}

def test_simulate_dataset():
    sim = simulate_dataset(**debug_kwargs)
    y = sim['observations']

    assert y.shape == (500, 5)
    assert np.isin(y, (1, 2, 3, 4)).all()
    assert sim['occupancy'].shape == (500, 2)
    assert np.allclose(sim['joint'], np.array([54, 36, 81, 4]) / 175)

    # detections only where the species is present
    detected = decode_observations(y, 2).max(axis=-1).T
    assert (detected <= sim['occupancy']).all()

def test_bit_identical():
    sim1 = simulate_dataset(**debug_kwargs)
    sim2 = simulate_dataset(**debug_kwargs)

    for key in ('joint', 'occupancy', 'detections', 'observations'):
        assert np.array_equal(sim1[key], sim2[key])

def test_seed_matters():
    sim1 = simulate_dataset(**debug_kwargs)
    sim2 = simulate_dataset(**dict(debug_kwargs, seed=43))
    assert not np.array_equal(sim1['observations'], sim2['observations'])

def test_injected_rng():
    sim1 = simulate_dataset(**dict(debug_kwargs, seed=None),
                            rng=np.random.default_rng(7))
    sim2 = simulate_dataset(**dict(debug_kwargs, seed=7))
    assert np.array_equal(sim1['observations'], sim2['observations'])

@pytest.mark.parametrize('changes, stage', [
    ({'psi': np.array([0., 0.5])}, 'solve'),
    ({'odds_ratios': -2.}, 'solve'),
    ({'p': np.array([0.5, 1.5])}, 'detect'),
    ({'p': np.array([0.5])}, 'detect'),
    ({'site_count': 0}, 'sample'),
    ({'visit_count': -1}, 'detect'),
])
def test_invalid_parameters(changes, stage):
    with pytest.raises(InvalidParameterError) as excinfo:
        simulate_dataset(**dict(debug_kwargs, **changes))
    assert excinfo.value.stage == stage
    assert f'[{stage}]' in str(excinfo.value)

def test_simulate_from_config():
    cfg = load_config(os.path.join(CONFIG_DIR, 'debug.yaml'),
                      os.path.join(CONFIG_DIR, 'default.yaml'))

    sim = simulate_from_config(cfg, trial=0)
    assert sim['observations'].shape == (cfg.site_count, cfg.visit_count)

    again = simulate_from_config(cfg, trial=0)
    other = simulate_from_config(cfg, trial=1)
    assert np.array_equal(sim['observations'], again['observations'])
    assert not np.array_equal(sim['observations'], other['observations'])

def test_main(tmp_path, monkeypatch):
    shutil.copytree(CONFIG_DIR, tmp_path / 'config')
    monkeypatch.chdir(tmp_path)
    monkeypatch.setattr(sys, 'argv', ['simulate', '-s', 'debug'])

    simulate.main()

    data_dir = tmp_path / 'sim_data' / 'debug'
    with open(data_dir / 'trial_1.json') as f:
        trial = json.load(f)
    with open(data_dir / 'settings.json') as f:
        settings = json.load(f)

    observations = np.array(trial['observations'])
    assert observations.shape == (100, 3)
    assert np.isclose(sum(settings['joint']), 1.)

def test_main_no_trials(tmp_path, monkeypatch):
    shutil.copytree(CONFIG_DIR, tmp_path / 'config')
    debug_path = tmp_path / 'config' / 'debug.yaml'
    debug_path.write_text(
        debug_path.read_text().replace('trial_count: 2', 'trial_count: 0')
    )
    monkeypatch.chdir(tmp_path)
    monkeypatch.setattr(sys, 'argv', ['simulate', '-s', 'debug'])

    simulate.main()

    data_dir = tmp_path / 'sim_data' / 'debug'
    assert not (data_dir / 'trial_0.json').exists()
    with open(data_dir / 'settings.json') as f:
        settings = json.load(f)
    assert np.allclose(settings['joint'], np.array([54, 36, 81, 4]) / 175)
