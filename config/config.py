from typing import Iterable, Optional

import logging

import yaml

# keys every co-occurrence scenario needs after defaults are applied
SIMULATION_KEYS = ('psi', 'odds_ratio', 'p', 'site_count', 'visit_count',
                   'seed', 'trial_count', 'tol', 'max_iter')
ESTIMATION_KEYS = ('seed', 'trial_count', 'draws', 'tune', 'chains')

class Config(dict):
    def __getattr__(self, key):
        try:
            val = self[key]
        except KeyError:
            return super().__getattribute__(key)
        if isinstance(val, dict):
            return Config(val)
        return val

def check_config(cfg: Config, required: Iterable[str]) -> Config:
    '''Raises KeyError naming every required scenario key cfg lacks.'''
    missing = [key for key in required if key not in cfg]
    if missing:
        raise KeyError(f'scenario config is missing keys: {missing}')
    return cfg

def load_config(path: str, default_path: Optional[str],
                required: Iterable[str] = ()) -> Config:
    with open(path) as f:
        cfg = Config(yaml.full_load(f) or {})
    if default_path is not None:
        # set keys not included in `path` by default
        with open(default_path) as f:
            default_cfg = Config(yaml.full_load(f) or {})
        for key, val in default_cfg.items():
            if key not in cfg:
                logging.debug(f"used default config {key}: {val}")
                cfg[key] = val
    return check_config(cfg, required)
