"""
MCMC Configuration and Initialization.

This module handles setting up and validating sampler configurations:
- clean_config: Fill in configuration defaults
- validate_mcmc_inputs: Validate data, constraints and hyperparameters
- configure_sampler: Main configuration entry point
- initialize_state: Build the initial chain state
- gen_rng_key: Generate the JAX random key for a seed

Configuration is split into two parts:
- user_config: Serializable config that can be saved/loaded without JAX
- model / run_params: JAX-side arrays and static run parameters

All config keys use lowercase with underscores (e.g., 'target_accept', 'rng_seed').
"""

import jax
import jax.numpy as jnp
import jax.random as random
import numpy as np
from typing import Any, Dict, Tuple

from ..constraints import validate_constraint_table
from ..error_handling import validate_mcmc_config, raise_collected
from ..hyperparameters import Hyperparameters
from .sampling import update_labels
from .types import ChainState, ModelArrays, RunParams, build_model_arrays


def clean_config(mcmc_config: Dict[str, Any]) -> Dict[str, Any]:
    """
    Cleans the config dict and sets defaults.
    All config keys use lowercase with underscores.
    """
    mcmc_config.setdefault('rng_seed', 42)
    mcmc_config.setdefault('use_double', True)
    mcmc_config.setdefault('target_accept', 0.3)
    mcmc_config.setdefault('adapt_window', 50)
    mcmc_config.setdefault('adapt_rate', 1.0)
    mcmc_config.setdefault('initial_scale', 0.1)
    mcmc_config.setdefault('min_scale', 1e-6)
    mcmc_config.setdefault('max_scale', 10.0)
    mcmc_config.setdefault('init_spread', 0.1)
    return mcmc_config


def gen_rng_key(rng_seed: int):
    """Generate the JAX PRNGKey for a chain from an integer seed."""
    return random.PRNGKey(rng_seed)


def validate_mcmc_inputs(x, hyperparameters: Hyperparameters, nstep, constraint_table) -> np.ndarray:
    """
    Validate sampler inputs before starting.

    Args:
        x: (n, D) observations
        hyperparameters: Hyperparameters
        nstep: Number of iterations
        constraint_table: (M, D) constraint table

    Returns:
        Validated observation matrix as float64 numpy array

    Raises:
        InvalidInputError: listing every problem found
    """
    errors = []

    if isinstance(nstep, bool) or not isinstance(nstep, (int, np.integer)):
        errors.append(f"nstep must be an integer, got {type(nstep).__name__}")
    elif nstep < 1:
        errors.append(f"nstep must be >= 1, got {nstep}")

    x = np.asarray(x, dtype=np.float64)
    if x.ndim != 2:
        errors.append(f"x must be 2-D (n, D), got shape {x.shape}")
    elif not np.all(np.isfinite(x)):
        errors.append("x contains NaN or Inf")

    if not isinstance(hyperparameters, Hyperparameters):
        errors.append(f"hyperparameters must be Hyperparameters, got {type(hyperparameters).__name__}")

    raise_collected(errors, "MCMC Input Validation Failed")

    n_clusters, n_dims = constraint_table.shape
    if x.shape[1] != n_dims:
        errors.append(f"x has {x.shape[1]} columns but the constraint table has {n_dims}")
    if x.shape[0] < n_clusters:
        errors.append(f"x has {x.shape[0]} observations, fewer than the {n_clusters} clusters")
    if hyperparameters.n_clusters != n_clusters:
        errors.append(
            f"hyperparameters describe {hyperparameters.n_clusters} clusters, "
            f"constraint table has {n_clusters}"
        )
    raise_collected(errors, "MCMC Input Validation Failed")

    hyperparameters.validate(n_clusters, n_dims)
    return x


def configure_sampler(
    x,
    hyperparameters: Hyperparameters,
    nstep: int,
    constraints,
    mcmc_config: Dict[str, Any],
) -> Tuple[ModelArrays, RunParams, Dict[str, Any]]:
    """
    Configure the sampler from inputs and config.

    Args:
        x: (n, D) observations
        hyperparameters: Hyperparameters
        nstep: Number of iterations
        constraints: (M, D) constraint table
        mcmc_config: Config dict (defaults are filled in place)

    Returns:
        model: ModelArrays on device
        run_params: Static RunParams
        user_config: Serializable config with derived sizes
    """
    mcmc_config = clean_config(mcmc_config)
    validate_mcmc_config(mcmc_config)

    table = validate_constraint_table(constraints)
    x = validate_mcmc_inputs(x, hyperparameters, nstep, table)

    # Configure JAX precision
    use_double = mcmc_config['use_double']
    jax.config.update("jax_enable_x64", use_double)
    dtype = jnp.float64 if use_double else jnp.float32

    model = build_model_arrays(x, hyperparameters, table, dtype=dtype)

    run_params = RunParams(
        TARGET_ACCEPT=float(mcmc_config['target_accept']),
        ADAPT_WINDOW=int(mcmc_config['adapt_window']),
        ADAPT_RATE=float(mcmc_config['adapt_rate']),
        MIN_LOG_SCALE=float(np.log(mcmc_config['min_scale'])),
        MAX_LOG_SCALE=float(np.log(mcmc_config['max_scale'])),
        INITIAL_LOG_SCALE=float(np.log(mcmc_config['initial_scale'])),
        INIT_SPREAD=float(mcmc_config['init_spread']),
    )

    user_config = dict(mcmc_config)
    user_config.update({
        'nstep': int(nstep),
        'num_obs': model.n_obs,
        'num_dims': model.n_dims,
        'num_clusters': model.n_clusters,
        'constraints': table.tolist(),
    })

    return model, run_params, user_config


def initialize_state(key, model: ModelArrays, run_params: RunParams) -> ChainState:
    """
    Build the initial chain state.

    Means start at the prior mean, jittered by init_spread * step_sd on free
    dimensions and folded onto the allowed sign. Covariances start at the
    inverse-Wishart mode, proportions at the normalised Dirichlet
    concentration, and labels are drawn from that starting state.
    """
    mu_key, z_key = random.split(key)
    prior = model.prior
    dtype = model.x.dtype

    noise = random.normal(mu_key, prior.mu0.shape, dtype=dtype)
    mu = (prior.mu0 + run_params.INIT_SPREAD * model.step_sd * noise) * prior.free
    mu = jnp.where(prior.sign > 0, jnp.abs(mu), jnp.where(prior.sign < 0, -jnp.abs(mu), mu))

    sigma = prior.psi / (prior.nu0 + model.n_dims + 1.0)[:, None, None]
    prop = model.alpha / jnp.sum(model.alpha)
    z = update_labels(z_key, model.x, mu, sigma, prop)

    return ChainState(
        mu=mu,
        sigma=sigma,
        prop=prop,
        z=z,
        log_scale=jnp.full((model.n_clusters,), run_params.INITIAL_LOG_SCALE, dtype=dtype),
        accept_buf=jnp.zeros((model.n_clusters, run_params.ADAPT_WINDOW), dtype=dtype),
        accept_rate=jnp.zeros((model.n_clusters,), dtype=dtype),
    )
