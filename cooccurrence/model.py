"""Categorical state/observation model for co-occurring species.

The latent state of a site is one of the 2^S occupancy combinations, with
probabilities from a multinomial-logit link on 2^S - 1 free parameters (the
"all absent" combination is the reference). Observations are the per-visit
codes from the detection simulator, whose probabilities given the state come
from the deterministic detection table.

The model is first described declaratively by a ModelSpec (priors, data,
initial values), which CoOccupancy compiles into a PyMC model. The marginal
likelihood, with the latent states summed out, also gives a quick maximum
likelihood fit.

Typical usage example:

    spec = build_model_spec(sim['observations'], occupancy=sim['occupancy'])
    co = CoOccupancy()
    idata = co.estimate_bayes(spec, sample_kwargs={'draws': 1000})
"""

import json
import logging

import numpy as np
import pandas as pd
import pymc as pm
from pytensor import tensor as pt
from scipy.optimize import minimize
from scipy.special import logsumexp

from cooccurrence.errors import (DataBundleError, InvalidParameterError,
                                 SamplerError)
from cooccurrence.utils import (NumpyEncoder, state_matrix, encode_states,
                                decode_observations, softmax, expit)

DEFAULT_LINK_PRIOR = {'distribution': 'normal', 'mu': 0., 'sigma': 1.}
DEFAULT_DETECTION_PRIOR = {'distribution': 'uniform', 'lower': 0., 'upper': 1.}

# priors with support on the whole real line, and on exactly (0, 1)
LINK_DISTRIBUTIONS = {'normal': pm.Normal, 'logistic': pm.Logistic}
DETECTION_DISTRIBUTIONS = {'uniform': pm.Uniform, 'beta': pm.Beta}

# scale and shape parameters each family requires
POSITIVE_PARAMS = {'normal': ['sigma'], 'logistic': ['s'], 'uniform': [],
                   'beta': ['alpha', 'beta']}

def occupancy_probabilities(beta) -> np.ndarray:
    """Multinomial-logit link from 2^S - 1 free parameters to 2^S states.

    The reference state (all species absent) has weight exp(0) = 1 and state
    i > 0 has weight exp(beta[i - 1]).
    """
    beta = np.asarray(beta, dtype=float)
    return softmax(np.concatenate(([0.], beta)))

def detection_table(p, species_count: int = None):
    """Probability of each observation code given each true state.

    Entry [k, c] is the product over species of P(detection bit of code c |
    presence bit of state k): p or 1 - p for present species, 1 or 0 for
    absent ones. For two species the rows are

        absent:  [1, 0, 0, 0]
        A only:  [1 - pA, pA, 0, 0]
        B only:  [1 - pB, 0, pB, 0]
        both:    [(1 - pA)(1 - pB), pA(1 - pB), (1 - pA)pB, pA pB]

    Args:
        p: length S detection probabilities, np.ndarray or PyTensor vector
        species_count: S, required when p is a PyTensor vector
    Returns:
        2^S by 2^S table of the same kind as p
    """
    if species_count is None:
        species_count = len(p)
    states = state_matrix(species_count)

    present = states[:, None, :]
    detected = states[None, :, :]

    # p-dependent operand first so PyTensor broadcasting takes over
    factors = ((p * detected + (1 - p) * (1 - detected)) * present
               + (1 - detected) * (1 - present))

    return factors.prod(axis=-1)

def build_model_spec(observations: np.ndarray, occupancy: np.ndarray = None,
                     species_count: int = 2, link_prior: dict = None,
                     detection_prior: dict = None,
                     detection_init: float = 0.5) -> 'ModelSpec':
    """Assemble the model structure, data bundle and initial values.

    Args:
        observations: N by J matrix of observation codes in 1..2^S
        occupancy: N by S true occupancy matrix used for the latent initial
          states. If None, a species counts as present wherever it was ever
          detected.
        species_count: number of species, S
        link_prior: prior for the link parameters, DEFAULT_LINK_PRIOR if None
        detection_prior: prior for p, DEFAULT_DETECTION_PRIOR if None
        detection_init: initial value for every detection probability
    Returns:
        validated ModelSpec
    """
    observations = np.asarray(observations)
    if observations.ndim != 2:
        raise DataBundleError(
            f'observations must be a sites by visits matrix, '
            f'got {observations.ndim} dimensions'
        )

    site_count, visit_count = observations.shape
    state_count = 2 ** species_count

    if observations.size == 0:
        raise InvalidParameterError(
            f'site_count and visit_count must be positive, got '
            f'{site_count} and {visit_count}', 'build'
        )
    if not np.issubdtype(observations.dtype, np.integer):
        raise DataBundleError(
            f'observation codes must be integers, got {observations.dtype}'
        )
    if observations.min() < 1 or observations.max() > state_count:
        raise DataBundleError(f'observation codes must lie in 1..{state_count}')

    if occupancy is None:
        # ever detected implies present
        detections = decode_observations(observations, species_count)
        occupancy = detections.max(axis=-1).T
        logging.debug('Latent initial states derived from observations')
    else:
        occupancy = np.asarray(occupancy)
        if occupancy.shape != (site_count, species_count):
            raise DataBundleError(
                f'occupancy has shape {occupancy.shape}, expected '
                f'{(site_count, species_count)}'
            )

    model = {
        'species_count': species_count,
        'state_count': state_count,
        'states': state_matrix(species_count),
        'priors': {
            'beta': dict(link_prior or DEFAULT_LINK_PRIOR,
                         shape=state_count - 1),
            'p': dict(detection_prior or DEFAULT_DETECTION_PRIOR,
                      shape=species_count),
        },
        'deterministic': {
            'psi': 'softmax(concatenate([0], beta))',
            'detection_table': 'prod_s(z_s * (y_s * p_s + (1 - y_s) * '
                               '(1 - p_s)) + (1 - z_s) * (1 - y_s))',
        },
        'likelihood': {
            'z': {'distribution': 'categorical', 'p': 'psi',
                  'shape': 'site_count'},
            'y': {'distribution': 'categorical', 'p': 'detection_table[z]',
                  'observed': 'observations'},
        },
    }

    data = {
        'observations': observations,
        'site_count': site_count,
        'visit_count': visit_count,
    }

    inits = {
        'latent_states': encode_states(occupancy),
        'detection_probs': np.full(species_count, detection_init),
        'link_parameters': np.zeros(state_count - 1),
    }

    spec = ModelSpec(model=model, data=data, inits=inits)
    spec.validate()

    return spec

class ModelSpec:
    """Declarative description of the model handed to the sampler.

    Attributes:
        model: dict with the states, priors, deterministic nodes and
          likelihood statements over the symbols beta, p, psi, z and y
        data: dict with observations (N by J codes), site_count, visit_count
        inits: dict with latent_states (length N, codes 1..2^S),
          detection_probs (length S) and link_parameters (length 2^S - 1)
    """

    def __init__(self, model: dict, data: dict, inits: dict) -> None:
        self.model = model
        self.data = data
        self.inits = inits

    @property
    def species_count(self) -> int:
        return self.model['species_count']

    @property
    def state_count(self) -> int:
        return self.model['state_count']

    def validate(self) -> None:
        """Check the data bundle and initial values before handoff."""
        observations = np.asarray(self.data['observations'])
        site_count = self.data['site_count']
        visit_count = self.data['visit_count']
        state_count = self.state_count

        if site_count <= 0 or visit_count <= 0:
            raise InvalidParameterError(
                f'site_count and visit_count must be positive, got '
                f'{site_count} and {visit_count}', 'build'
            )
        if observations.shape != (site_count, visit_count):
            raise DataBundleError(
                f'observations have shape {observations.shape}, declared '
                f'{(site_count, visit_count)}'
            )
        if not np.issubdtype(observations.dtype, np.integer):
            raise DataBundleError('observation codes must be integers')
        if observations.min() < 1 or observations.max() > state_count:
            raise DataBundleError(
                f'observation codes must lie in 1..{state_count}'
            )

        latent_states = np.asarray(self.inits['latent_states'])
        detection_probs = np.asarray(self.inits['detection_probs'])
        link_parameters = np.asarray(self.inits['link_parameters'])

        if latent_states.shape != (site_count,):
            raise DataBundleError(
                f'latent_states has shape {latent_states.shape}, expected '
                f'({site_count},)'
            )
        if latent_states.min() < 1 or latent_states.max() > state_count:
            raise DataBundleError(f'latent states must lie in 1..{state_count}')
        if detection_probs.shape != (self.species_count,):
            raise DataBundleError(
                f'expected {self.species_count} initial detection '
                f'probabilities, got {detection_probs.shape}'
            )
        if ((detection_probs <= 0) | (detection_probs >= 1)).any():
            raise DataBundleError(
                'initial detection probabilities must lie in (0, 1)'
            )
        if link_parameters.shape != (state_count - 1,):
            raise DataBundleError(
                f'expected {state_count - 1} link parameters, got '
                f'{link_parameters.shape}'
            )
        if not np.isfinite(link_parameters).all():
            raise DataBundleError('link parameters must be finite')

        self.check_priors()

        # a species detected at a site must be present in its initial state
        states = state_matrix(self.species_count)
        detected = decode_observations(observations, self.species_count)
        ever_detected = detected.max(axis=-1).T
        present = states[latent_states - 1]
        impossible = (ever_detected > present).any(axis=1)
        if impossible.any():
            sites = np.flatnonzero(impossible)
            raise DataBundleError(
                f'latent initial states have zero likelihood at sites {sites}'
            )

    def check_priors(self) -> None:
        '''Reject priors without the support the parameters need.'''
        link_prior = self.model['priors']['beta']
        detection_prior = self.model['priors']['p']

        if link_prior['distribution'] not in LINK_DISTRIBUTIONS:
            raise InvalidParameterError(
                f"link prior {link_prior['distribution']} not in "
                f'{list(LINK_DISTRIBUTIONS)}', 'build'
            )
        if detection_prior['distribution'] not in DETECTION_DISTRIBUTIONS:
            raise InvalidParameterError(
                f"detection prior {detection_prior['distribution']} not in "
                f'{list(DETECTION_DISTRIBUTIONS)}', 'build'
            )
        if detection_prior['distribution'] == 'uniform':
            bounds = (detection_prior.get('lower'), detection_prior.get('upper'))
            if bounds != (0, 1):
                raise InvalidParameterError(
                    f'uniform detection prior must cover (0, 1), got {bounds}',
                    'build'
                )

        for name, prior in (('beta', link_prior), ('p', detection_prior)):
            for param in POSITIVE_PARAMS[prior['distribution']]:
                value = prior.get(param)
                if value is None:
                    raise InvalidParameterError(
                        f"{prior['distribution']} prior for {name} needs "
                        f'{param}', 'build'
                    )
                if not np.isfinite(value) or value <= 0:
                    raise InvalidParameterError(
                        f'{param} of the {name} prior must be positive, '
                        f'got {value}', 'build'
                    )

            location = prior.get('mu', 0.)
            if not np.isfinite(location):
                raise InvalidParameterError(
                    f'mu of the {name} prior must be finite, got {location}',
                    'build'
                )

    def to_dict(self) -> dict:
        return {'model': self.model, 'data': self.data, 'inits': self.inits}

    def to_json(self, path: str = None) -> str:
        '''Serialize the spec, writing it to path when given.'''
        dumped = json.dumps(self.to_dict(), cls=NumpyEncoder)
        if path is not None:
            with open(path, 'w') as f:
                f.write(dumped)
        return dumped

    @classmethod
    def from_json(cls, dumped: str) -> 'ModelSpec':
        loaded = json.loads(dumped)
        model = loaded['model']
        model['states'] = np.asarray(model['states'])
        data = loaded['data']
        data['observations'] = np.asarray(data['observations'])
        inits = {key: np.asarray(val) for key, val in loaded['inits'].items()}
        spec = cls(model=model, data=data, inits=inits)
        spec.validate()
        return spec

class CoOccupancy:
    """Estimating co-occurrence and detection from the observation codes.

    The Bayesian fit compiles a ModelSpec into PyMC, keeping the latent state
    of every site. The maximum likelihood fit sums the latent states out.
    """

    def compile_pymc_model(self, spec: ModelSpec) -> pm.Model:
        """Creates the pymc model object that can be sampled from."""
        spec.validate()

        priors = spec.model['priors']
        observations = spec.data['observations']
        site_count = spec.data['site_count']
        visit_count = spec.data['visit_count']

        # flatten visits, keeping the site of each observation
        site_index = np.repeat(np.arange(site_count), visit_count)
        y = observations.flatten() - 1

        with pm.Model() as co_occupancy:

            # link parameters and detection probabilities
            beta = self.prior('beta', priors['beta'], LINK_DISTRIBUTIONS,
                              initval=spec.inits['link_parameters'])
            p = self.prior('p', priors['p'], DETECTION_DISTRIBUTIONS,
                           initval=spec.inits['detection_probs'])

            # occupancy probabilities, reference state has weight one
            weights = pt.exp(pt.concatenate([pt.zeros(1), beta]))
            psi = pm.Deterministic('psi', weights / weights.sum())

            # latent state of each site, zero based
            z = pm.Categorical(
                'z', p=psi, shape=site_count,
                initval=np.asarray(spec.inits['latent_states']) - 1
            )

            # observation codes given the latent state, zero based
            table = detection_table(p, spec.species_count)
            pm.Categorical('y', p=table[z[site_index]], observed=y)

        return co_occupancy

    def prior(self, name: str, prior: dict, distributions: dict, initval):
        '''Create the PyMC variable for a declarative prior.'''
        params = {k: v for k, v in prior.items()
                  if k not in ('distribution', 'shape')}
        dist = distributions[prior['distribution']]
        return dist(name, shape=prior['shape'], initval=initval, **params)

    def estimate_bayes(self, spec: ModelSpec, sample_kwargs: dict = None):
        """Sample the posterior with PyMC.

        Args:
            spec: validated ModelSpec
            sample_kwargs: keyword arguments for pm.sample
        Returns:
            the inference data returned by pm.sample
        Raises:
            SamplerError: the sampler failed, the run is not retried
        """
        model = self.compile_pymc_model(spec)
        sample_kwargs = sample_kwargs or {}

        logging.info(f'Sampling with {sample_kwargs}')
        with model:
            try:
                idata = pm.sample(**sample_kwargs)
            except Exception as e:
                raise SamplerError(f'sampler run failed: {e}') from e

        return idata

    def loglik(self, theta: np.ndarray, observations: np.ndarray,
               species_count: int) -> float:
        """Negative marginal log likelihood of the observation codes.

        Args:
            theta: link parameters followed by logit detection probabilities
            observations: N by J matrix of codes in 1..2^S
            species_count: number of species, S
        Returns:
            float representing the negative log likelihood of the model.
        """
        state_count = 2 ** species_count
        beta = theta[:state_count - 1]
        p = expit(theta[state_count - 1:])

        psi = occupancy_probabilities(beta)
        with np.errstate(divide='ignore'):
            log_table = np.log(detection_table(p))
            log_psi = np.log(psi)

        # log P(site history | state), shape (2^S, N)
        site_loglik = log_table[:, observations - 1].sum(axis=-1)

        likhood = logsumexp(site_loglik + log_psi[:, None], axis=0).sum()

        return -likhood

    def estimate_mle(self, observations: np.ndarray,
                     species_count: int = 2) -> pd.DataFrame:
        """Estimate the MLE by summing out the latent states.

        Returns:
            pd.DataFrame with the link-scale estimate and standard error of
              beta and logit(p), plus the real-scale value of each
        """
        observations = np.asarray(observations)
        state_count = 2 ** species_count

        theta_start = np.zeros(state_count - 1 + species_count)
        res = minimize(self.loglik, theta_start, method='BFGS',
                       args=(observations, species_count))
        se = np.sqrt(np.diag(res.hess_inv))

        beta_hat = res.x[:state_count - 1]
        real = np.concatenate((occupancy_probabilities(beta_hat)[1:],
                               expit(res.x[state_count - 1:])))

        names = ([f'beta[{i}]' for i in range(state_count - 1)]
                 + [f'p[{s}]' for s in range(species_count)])
        results = pd.DataFrame({'parameter': names, 'est_link': res.x,
                                'se': se, 'real': real})

        logging.debug(f'MLE converged: {res.success}')
        return results
