"""
MCMC Runs - Single-chain and multi-chain sampling entry points.

This module provides run_mcmc() for one chain and run_chains() for several
independent chains. Each chain is a pure function of (x, hyperparameters,
constraints, key): run_chains derives one key per chain and either vmaps the
whole chain over keys or loops over them, with identical semantics.

Helper functions:
- _sample_chain: Jitted scan over nstep iterations for one key
- _sample_chains: vmapped version over a batch of keys
- _transfer_to_host: Move a stacked ChainState to numpy
- _build_results: Assemble the results dict
"""

import time
from datetime import timedelta
from functools import partial
from typing import Any, Dict, List, Optional

import jax
import jax.numpy as jnp
import jax.random as random
import numpy as np

from ..error_handling import InvalidInputError
from ..hyperparameters import Hyperparameters
from .config import configure_sampler, gen_rng_key, initialize_state
from .diagnostics import log_acceptance_summary
from .sampling import gibbs_iteration
from .types import ChainState, ModelArrays, RunParams

import logging
logger = logging.getLogger('patmix')

# Public API for this module
__all__ = [
    'run_mcmc',
    'run_chains',
]


# =============================================================================
# JITTED KERNELS
# =============================================================================

@partial(jax.jit, static_argnames=('run_params', 'nstep'))
def _sample_chain(key, model: ModelArrays, run_params: RunParams, nstep: int):
    """
    Run one chain for nstep iterations.

    Returns:
        states: ChainState stacked over nstep + 1 iterations (initial state first)
        accepted: (nstep, M) accept indicators
    """
    init_key, run_key = random.split(key)
    initial_state = initialize_state(init_key, model, run_params)

    def scan_body(carry, step):
        state, current_key = carry
        current_key, step_key = random.split(current_key)
        new_state, accepted = gibbs_iteration(step_key, state, step, model, run_params)
        return (new_state, current_key), (new_state, accepted)

    _, (trace, accepted) = jax.lax.scan(
        scan_body,
        (initial_state, run_key),
        jnp.arange(1, nstep + 1),
    )

    states = jax.tree_util.tree_map(
        lambda first, rest: jnp.concatenate([first[None], rest], axis=0),
        initial_state, trace,
    )
    return states, accepted


@partial(jax.jit, static_argnames=('run_params', 'nstep'))
def _sample_chains(keys, model: ModelArrays, run_params: RunParams, nstep: int):
    """Run one chain per key in parallel; outputs carry a leading chain axis."""
    return jax.vmap(lambda k: _sample_chain(k, model, run_params, nstep))(keys)


# =============================================================================
# HELPERS
# =============================================================================

def _transfer_to_host(states: ChainState) -> ChainState:
    """Move a (stacked) ChainState from device to numpy."""
    return ChainState(*(np.asarray(leaf) for leaf in jax.device_get(states)))


def _build_results(
    states: ChainState,
    accepted,
    user_config: Dict[str, Any],
    wall_time: float,
) -> Dict[str, Any]:
    """
    Build results dict from sampling outputs.

    Args:
        states: Host ChainState stacked over nstep + 1 iterations
        accepted: (nstep, M) accept indicators
        user_config: User configuration
        wall_time: Sampling wall time in seconds

    Returns:
        Results dict with the raw chain and tuning/acceptance records
    """
    accepted = np.asarray(accepted)
    return {
        'states': states,
        'accepted': accepted,
        'acceptance_rate': states.accept_rate[1:],
        'proposal_scale': np.exp(states.log_scale),
        'mcmc_config': user_config,
        'wall_time': wall_time,
    }


# =============================================================================
# PUBLIC ENTRY POINTS
# =============================================================================

def run_mcmc(
    x,
    hyperparameters: Hyperparameters,
    nstep: int,
    constraints,
    seed: Optional[int] = None,
    key=None,
    mcmc_config: Optional[Dict[str, Any]] = None,
) -> Dict[str, Any]:
    """
    Run the adaptive sampler for a single chain.

    Args:
        x: (n, D) observation matrix
        hyperparameters: Prior hyperparameters for the M classes
        nstep: Number of iterations (>= 1)
        constraints: (M, D) constraint table (Constraint values)
        seed: Optional integer seed (overrides mcmc_config['rng_seed'])
        key: Optional JAX PRNGKey; takes precedence over any seed
        mcmc_config: Optional config dict, see config.clean_config

    Returns:
        Results dict:
            states: ChainState with a leading axis of nstep + 1 iterations
            accepted: (nstep, M) accept indicators
            acceptance_rate: (nstep, M) trailing-window acceptance rate
            proposal_scale: (nstep + 1, M) proposal scale per iteration
            mcmc_config: Serializable configuration used
            wall_time: Seconds spent sampling (including compilation)

    Raises:
        InvalidInputError: If any input is malformed
    """
    mcmc_config = dict(mcmc_config or {})
    if seed is not None:
        mcmc_config['rng_seed'] = seed

    model, run_params, user_config = configure_sampler(
        x, hyperparameters, nstep, constraints, mcmc_config
    )
    if key is None:
        key = gen_rng_key(user_config['rng_seed'])

    logger.info(f"--- MCMC RUN ({model.n_clusters} clusters, {model.n_obs} obs, "
                f"{model.n_dims} dims, {nstep} steps) ---")

    start = time.perf_counter()
    states, accepted = _sample_chain(key, model, run_params, int(nstep))
    jax.block_until_ready(states)
    wall_time = time.perf_counter() - start

    logger.info(f"  Total Wall Time: {timedelta(seconds=int(wall_time))} ({wall_time:.2f}s)")
    log_acceptance_summary(accepted)

    return _build_results(_transfer_to_host(states), accepted, user_config, wall_time)


def run_chains(
    x,
    hyperparameters: Hyperparameters,
    nstep: int,
    constraints,
    n_chains: int = 3,
    seed: Optional[int] = None,
    mcmc_config: Optional[Dict[str, Any]] = None,
    vectorize: bool = True,
) -> List[Dict[str, Any]]:
    """
    Run several independent chains on the same inputs.

    Chain c uses the c-th key split from the seed, so results do not depend
    on whether the chains run vectorised (vectorize=True) or one after the
    other.

    Returns:
        List of results dicts, one per chain, as returned by run_mcmc
    """
    if isinstance(n_chains, bool) or not isinstance(n_chains, (int, np.integer)) or n_chains < 1:
        raise InvalidInputError(f"n_chains must be a positive integer, got {n_chains}")

    mcmc_config = dict(mcmc_config or {})
    if seed is not None:
        mcmc_config['rng_seed'] = seed

    model, run_params, user_config = configure_sampler(
        x, hyperparameters, nstep, constraints, mcmc_config
    )
    keys = random.split(gen_rng_key(user_config['rng_seed']), int(n_chains))

    mode = "vectorized" if vectorize else "sequential"
    logger.info(f"--- MCMC RUN: {n_chains} chains ({mode}), {nstep} steps ---")

    start = time.perf_counter()
    if vectorize:
        states, accepted = _sample_chains(keys, model, run_params, int(nstep))
        jax.block_until_ready(states)
        host_states = _transfer_to_host(states)
        host_accepted = np.asarray(accepted)
        per_chain = [
            (ChainState(*(leaf[c] for leaf in host_states)), host_accepted[c])
            for c in range(int(n_chains))
        ]
    else:
        per_chain = []
        for c in range(int(n_chains)):
            states, accepted = _sample_chain(keys[c], model, run_params, int(nstep))
            per_chain.append((_transfer_to_host(states), np.asarray(accepted)))
            logger.info(f"  Chain {c + 1}/{n_chains} done")
    wall_time = time.perf_counter() - start

    logger.info(f"  Total Wall Time: {timedelta(seconds=int(wall_time))} ({wall_time:.2f}s)")

    results = []
    for c, (states, accepted) in enumerate(per_chain):
        chain_config = dict(user_config, chain_index=c)
        log_acceptance_summary(accepted)
        results.append(_build_results(states, accepted, chain_config, wall_time))
    return results
