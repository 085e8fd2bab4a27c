"""
MCMC Data Structures and Type Definitions.

This module contains the core data structures used by the sampler:
- ClusterPrior: Per-cluster constraint masks and NIW hyperparameters
- ModelArrays: Data matrix plus all read-only model arrays (JAX pytree)
- ChainState: Mutable chain state carried through the scan
- RunParams: Immutable run parameters for JAX static arguments
- build_model_arrays: Factory function for ModelArrays
"""

import jax
import jax.numpy as jnp
import numpy as np
from dataclasses import dataclass
from typing import NamedTuple

from ..constraints import free_mask, sign_matrix
from ..hyperparameters import Hyperparameters


# Floor on the reference proposal scale
MIN_STEP_SD = 1e-3


class ClusterPrior(NamedTuple):
    """
    Per-cluster prior and constraint arrays.

    Leaves carry a leading cluster axis (M, ...) inside ModelArrays and are
    vmapped down to a single cluster inside the Metropolis step.
    """
    free: jnp.ndarray    # (M, D) 1.0 where the mean is free
    sign: jnp.ndarray    # (M, D) +1 NONNEGATIVE, -1 NONPOSITIVE, 0 otherwise
    mu0: jnp.ndarray     # (M, D)
    kappa0: jnp.ndarray  # (M,)
    psi: jnp.ndarray     # (M, D, D)
    nu0: jnp.ndarray     # (M,)


class ChainState(NamedTuple):
    """
    Full sampler state at one iteration.

    After a run the same structure is returned with a leading iteration axis
    (nstep + 1, ...), iteration 0 being the initial state.
    """
    mu: jnp.ndarray           # (M, D)
    sigma: jnp.ndarray        # (M, D, D)
    prop: jnp.ndarray         # (M,)
    z: jnp.ndarray            # (n,) int labels in [0, M)
    log_scale: jnp.ndarray    # (M,) log proposal scale
    accept_buf: jnp.ndarray   # (M, window) trailing accept indicators
    accept_rate: jnp.ndarray  # (M,) trailing-window acceptance rate


@dataclass(frozen=True)
class ModelArrays:
    """
    Read-only model inputs, grouped to reduce function parameter counts.

    Registered as a JAX pytree: arrays are traced children, the integer
    sizes are static auxiliary data.
    """
    x: jnp.ndarray            # (n, D) observations
    prior: ClusterPrior       # per-cluster arrays with leading M axis
    alpha: jnp.ndarray        # (M,) Dirichlet concentration
    step_sd: jnp.ndarray      # (M, D) per-cluster reference proposal scale

    n_obs: int
    n_dims: int
    n_clusters: int


def _model_arrays_flatten(ma):
    """Flatten ModelArrays for JAX pytree."""
    children = (ma.x, ma.prior, ma.alpha, ma.step_sd)
    aux_data = (ma.n_obs, ma.n_dims, ma.n_clusters)
    return children, aux_data


def _model_arrays_unflatten(aux_data, children):
    """Unflatten ModelArrays from JAX pytree."""
    x, prior, alpha, step_sd = children
    n_obs, n_dims, n_clusters = aux_data
    return ModelArrays(x=x, prior=prior, alpha=alpha, step_sd=step_sd,
                       n_obs=n_obs, n_dims=n_dims, n_clusters=n_clusters)


# Register ModelArrays as a JAX pytree
jax.tree_util.register_pytree_node(
    ModelArrays,
    _model_arrays_flatten,
    _model_arrays_unflatten
)


@dataclass(frozen=True)
class RunParams:
    """
    Immutable run parameters for JAX static argument compatibility.

    Hashable, so it can be passed as a static argument to jitted functions.
    """
    TARGET_ACCEPT: float = 0.3
    ADAPT_WINDOW: int = 50
    ADAPT_RATE: float = 1.0
    MIN_LOG_SCALE: float = float(np.log(1e-6))
    MAX_LOG_SCALE: float = float(np.log(10.0))
    INITIAL_LOG_SCALE: float = float(np.log(0.1))
    INIT_SPREAD: float = 0.1


def build_model_arrays(x, hyperparameters: Hyperparameters, constraint_table,
                       dtype=jnp.float64) -> ModelArrays:
    """
    Build ModelArrays from validated inputs.

    ZERO dimensions of mu0 are forced to 0 so the prior never pulls a fixed
    coordinate away from its structural value.

    The reference proposal scale of cluster k is the square root of the
    diagonal of its inverse-Wishart mode, psi_k / (nu0_k + D + 1). Mean
    steps scale with it and covariance steps with its outer product, which
    keeps the two parts of the joint proposal on comparable footing.

    Args:
        x: (n, D) observations
        hyperparameters: Validated Hyperparameters
        constraint_table: Validated (M, D) int constraint table
        dtype: Floating dtype for all arrays

    Returns:
        ModelArrays ready for the sampling loop
    """
    x = np.asarray(x, dtype=np.float64)
    n_obs, n_dims = x.shape
    n_clusters = constraint_table.shape[0]

    free = free_mask(constraint_table)
    sign = sign_matrix(constraint_table)

    # Exact symmetry, so proposals built on top stay exactly symmetric
    psi = 0.5 * (hyperparameters.psi + np.swapaxes(hyperparameters.psi, -1, -2))

    mode_var = np.diagonal(psi, axis1=-2, axis2=-1) / (hyperparameters.nu0 + n_dims + 1.0)[:, None]
    step_sd = np.maximum(np.sqrt(mode_var), MIN_STEP_SD)

    prior = ClusterPrior(
        free=jnp.asarray(free, dtype=dtype),
        sign=jnp.asarray(sign, dtype=dtype),
        mu0=jnp.asarray(hyperparameters.mu0 * free, dtype=dtype),
        kappa0=jnp.asarray(hyperparameters.kappa0, dtype=dtype),
        psi=jnp.asarray(psi, dtype=dtype),
        nu0=jnp.asarray(hyperparameters.nu0, dtype=dtype),
    )

    return ModelArrays(
        x=jnp.asarray(x, dtype=dtype),
        prior=prior,
        alpha=jnp.asarray(hyperparameters.alpha, dtype=dtype),
        step_sd=jnp.asarray(step_sd, dtype=dtype),
        n_obs=int(n_obs),
        n_dims=int(n_dims),
        n_clusters=int(n_clusters),
    )
