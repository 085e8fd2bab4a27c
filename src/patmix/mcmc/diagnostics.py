"""
MCMC Diagnostics.

Convergence diagnostics for sampler output:
- compute_psrf: Gelman-Rubin potential scale reduction factor per parameter
- log_acceptance_summary: Report per-cluster MH acceptance rates
"""

from typing import Optional, Sequence

import jax
import jax.numpy as jnp
import numpy as np

import logging
logger = logging.getLogger('patmix')


# Relative variance below which a parameter is treated as constant
DEGENERATE_TOL = 1e-20


@jax.jit
def _psrf_kernel(history: jnp.ndarray) -> jnp.ndarray:
    n_samples, n_chains, n_params = history.shape

    chain_means = jnp.mean(history, axis=0)  # (m, n_params)
    grand_mean = jnp.mean(chain_means, axis=0)

    # Between-chain variance: B = n * var(chain_means)
    B = n_samples * jnp.var(chain_means, axis=0, ddof=1)

    # Within-chain variance, averaged over chains
    W = jnp.mean(jnp.var(history, axis=0, ddof=1), axis=0)

    # V_hat = (n-1)/n * W + B/n + B/(m*n)
    n, m = n_samples, n_chains
    V_hat = ((n - 1) / n) * W + B / n + B / (m * n)

    # Constant parameters (structural zeros, frozen clusters): NaN when the chains
    # agree, +inf when they are stuck at different values
    tol = DEGENERATE_TOL * (1.0 + grand_mean ** 2)
    w_zero = W <= tol
    b_zero = B <= tol * n
    safe_W = jnp.where(w_zero, 1.0, W)
    rhat = jnp.sqrt(V_hat / safe_W)

    rhat = jnp.where(w_zero & b_zero, jnp.nan, rhat)
    rhat = jnp.where(w_zero & ~b_zero, jnp.inf, rhat)
    return rhat


def compute_psrf(history) -> np.ndarray:
    """
    Gelman-Rubin potential scale reduction factor.

    PSRF = sqrt(V_hat / W) with the standard between/within decomposition
    over m chains of n post-burn-in draws each.

    Args:
        history: Sample history array (n_samples, n_chains, n_params)

    Returns:
        psrf: (n_params,) numpy array. NaN for parameters that are constant
            in every chain, +inf for parameters constant within chains but
            different between them.
    """
    history = jnp.asarray(history)
    if history.ndim != 3:
        raise ValueError(f"history must be (n_samples, n_chains, n_params), got {history.shape}")
    if history.shape[0] < 2 or history.shape[1] < 2:
        raise ValueError(
            f"PSRF needs at least 2 draws and 2 chains, got {history.shape[0]} draws "
            f"and {history.shape[1]} chains"
        )
    return np.array(jax.device_get(_psrf_kernel(history)))


def log_acceptance_summary(accepted, labels: Optional[Sequence[str]] = None) -> np.ndarray:
    """
    Report summary statistics for per-cluster MH acceptance rates.

    Args:
        accepted: (nstep, M) accept indicators from a run
        labels: Optional cluster labels for the warning message

    Returns:
        (M,) overall acceptance rates
    """
    accepted = np.asarray(accepted)
    if accepted.size == 0:
        return np.zeros(accepted.shape[-1] if accepted.ndim else 0)

    rates = accepted.mean(axis=0)
    if labels is None:
        labels = [f"Cluster {k}" for k in range(rates.shape[0])]

    logger.info(f"--- MH Acceptance Rates ({rates.shape[0]} clusters) ---")
    logger.info(f"  Mean: {np.mean(rates):.1%}  Median: {np.median(rates):.1%}  "
                f"Min: {np.min(rates):.1%}  Max: {np.max(rates):.1%}")

    # Warn about low acceptance rates
    low_rate_mask = rates < 0.10
    if np.any(low_rate_mask):
        low_count = int(np.sum(low_rate_mask))
        low_labels = [lbl for lbl, is_low in zip(labels, low_rate_mask) if is_low]
        logger.warning(f"  {low_count} cluster(s) have acceptance rate < 10%")
        if low_count <= 10:
            logger.warning(f"    Low clusters: {', '.join(low_labels)}")

    return rates
