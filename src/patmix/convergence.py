"""
Multi-chain convergence diagnostics.

gelman_rubin() computes the potential scale reduction factor of every scalar
mean, covariance and proportion parameter across independently run chains,
grouped by parameter name. Label chains are discrete and excluded.

Cross-chain comparison is only meaningful because the constraint table pins
cluster identity: cluster k of one chain is cluster k of every other chain.
"""

from typing import Any, Dict, Sequence

import numpy as np

from .chains import ChainArtifact, as_artifact, burnin_length, check_compatible
from .error_handling import InvalidInputError
from .mcmc.diagnostics import compute_psrf

import logging
logger = logging.getLogger('patmix')


def _per_chain_burnin(burnin, chains: Sequence[ChainArtifact]):
    """Normalise a shared or per-chain burn-in into a list of prefix lengths."""
    if isinstance(burnin, (list, tuple, np.ndarray)):
        if len(burnin) != len(chains):
            raise InvalidInputError(
                f"got {len(burnin)} burn-in entries for {len(chains)} chains"
            )
        return [burnin_length(b, c.n_iterations) for b, c in zip(burnin, chains)]
    return [burnin_length(burnin, c.n_iterations) for c in chains]


def gelman_rubin(chains, burnin, prop_tol: float = 1e-6) -> Dict[str, np.ndarray]:
    """
    Gelman-Rubin PSRF per scalar parameter across chains.

    Args:
        chains: Sequence of >= 2 ChainArtifacts (or raw results accepted by
            extract_chains) with identical M, D and n
        burnin: Shared int / range / slice, or one such entry per chain.
            After burn-in every chain is cut to the shortest remaining
            length, keeping its latest draws.
        prop_tol: Clusters whose proportion never exceeds this in any chain
            are treated as never sampled and get NaN everywhere, as are
            clusters no observation is assigned to in any kept draw

    Returns:
        Dict with:
            mu: (M, D) PSRF of each mean component
            sigma: (M, D, D) PSRF of each covariance entry
            prop: (M,) PSRF of each proportion

        NaN marks parameters that are constant in every chain (ZERO
        dimensions, unoccupied clusters); +inf marks parameters frozen at
        different values in different chains.

    Raises:
        InvalidInputError: Fewer than 2 chains, bad burn-in, or fewer than
            2 draws left after burn-in
        DimensionMismatchError: Chains disagree on M, D or n
    """
    chains = [as_artifact(c) for c in chains]
    if len(chains) < 2:
        raise InvalidInputError(f"PSRF needs at least 2 chains, got {len(chains)}")
    check_compatible(chains)

    starts = _per_chain_burnin(burnin, chains)
    n_keep = min(c.n_iterations - s for c, s in zip(chains, starts))
    if n_keep < 2:
        raise InvalidInputError(f"PSRF needs at least 2 draws per chain after burn-in, got {n_keep}")

    n_clusters = chains[0].n_clusters
    n_dims = chains[0].n_dims

    # (n_keep, m, ...) histories, latest draws of each chain
    mu = np.stack([c.mu_array()[-n_keep:] for c in chains], axis=1)
    sigma = np.stack([c.sigma_array()[-n_keep:] for c in chains], axis=1)
    prop = np.stack([c.prop[-n_keep:] for c in chains], axis=1)

    n_mu = n_clusters * n_dims
    n_sigma = n_clusters * n_dims * n_dims
    history = np.concatenate([
        mu.reshape(n_keep, len(chains), n_mu),
        sigma.reshape(n_keep, len(chains), n_sigma),
        prop.reshape(n_keep, len(chains), n_clusters),
    ], axis=2)

    psrf = compute_psrf(history)
    result = {
        'mu': psrf[:n_mu].reshape(n_clusters, n_dims),
        'sigma': psrf[n_mu:n_mu + n_sigma].reshape(n_clusters, n_dims, n_dims),
        'prop': psrf[n_mu + n_sigma:].reshape(n_clusters),
    }

    # Empty clusters keep a Dirichlet share and move under their prior,
    # so label occupancy decides whether a cluster was ever used.
    labels = np.stack([c.z[-n_keep:] for c in chains], axis=0)
    occupancy = np.array([np.sum(labels == k) for k in range(n_clusters)])
    never_used = (occupancy == 0) | np.all(prop <= prop_tol, axis=(0, 1))
    if np.any(never_used):
        logger.debug(f"Clusters never occupied in any chain: {np.flatnonzero(never_used).tolist()}")
        result['mu'][never_used] = np.nan
        result['sigma'][never_used] = np.nan
        result['prop'][never_used] = np.nan

    n_degenerate = int(sum(np.sum(np.isnan(v)) for v in result.values()))
    logger.info(f"PSRF over {len(chains)} chains x {n_keep} draws: "
                f"{n_degenerate} of {psrf.size} parameters degenerate")
    return result


def summarize_psrf(psrf: Dict[str, np.ndarray], threshold: float = 1.1) -> Dict[str, Any]:
    """
    Summarise a gelman_rubin() result and log it.

    Returns:
        Dict with per-group 'max' and 'median' (ignoring NaN), 'n_degenerate'
        counts, 'overall_max', and 'converged' (every finite-or-inf value
        below threshold; NaN entries are ignored)
    """
    summary: Dict[str, Any] = {'max': {}, 'median': {}, 'n_degenerate': {}}
    overall = []

    logger.info(f"--- PSRF Summary (threshold {threshold}) ---")
    for name, values in psrf.items():
        values = np.asarray(values, dtype=float).ravel()
        defined = values[~np.isnan(values)]
        summary['n_degenerate'][name] = int(values.size - defined.size)
        if defined.size == 0:
            summary['max'][name] = np.nan
            summary['median'][name] = np.nan
            logger.info(f"  {name}: all {values.size} parameters degenerate")
            continue
        summary['max'][name] = float(np.max(defined))
        summary['median'][name] = float(np.median(defined))
        overall.append(defined)
        logger.info(f"  {name}: max {summary['max'][name]:.4f}  median {summary['median'][name]:.4f}  "
                    f"({summary['n_degenerate'][name]} degenerate)")

    if overall:
        all_defined = np.concatenate(overall)
        summary['overall_max'] = float(np.max(all_defined))
        summary['converged'] = bool(np.all(all_defined < threshold))
    else:
        summary['overall_max'] = np.nan
        summary['converged'] = False

    if summary['converged']:
        logger.info("  All defined PSRF values below threshold")
    else:
        n_bad = int(sum(np.sum(v >= threshold) for v in overall))
        logger.warning(f"  {n_bad} parameter(s) at or above PSRF threshold {threshold}")
    return summary
