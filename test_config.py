import os

import pytest

from config.config import (Config, check_config, load_config,
                           SIMULATION_KEYS, ESTIMATION_KEYS)

CONFIG_DIR = os.path.join(os.path.dirname(os.path.abspath(__file__)), 'config')

def test_load_config():
    cfg = load_config(os.path.join(CONFIG_DIR, 'debug.yaml'),
                      os.path.join(CONFIG_DIR, 'default.yaml'))

    # from debug.yaml
    assert cfg.site_count == 100
    assert cfg.trial_count == 2

    # filled in from default.yaml
    assert cfg.p == [0.5, 0.9]
    assert cfg.seed == 42

def test_config_attributes():
    cfg = Config({'priors': {'sigma': 1.}})
    assert cfg.priors.sigma == 1.
    with pytest.raises(AttributeError):
        cfg.missing

def test_scenario_keys():
    cfg = load_config(os.path.join(CONFIG_DIR, 'debug.yaml'),
                      os.path.join(CONFIG_DIR, 'default.yaml'),
                      SIMULATION_KEYS + ESTIMATION_KEYS)
    assert cfg.tol == 1e-10

def test_missing_keys(tmp_path):
    path = tmp_path / 'partial.yaml'
    path.write_text('site_count: 50\n')

    # without defaults the scenario keys are absent
    with pytest.raises(KeyError, match='psi'):
        load_config(str(path), None, SIMULATION_KEYS)

    with pytest.raises(KeyError, match="'draws', 'tune'"):
        check_config(Config({'seed': 1, 'trial_count': 2, 'chains': 4}),
                     ESTIMATION_KEYS)
