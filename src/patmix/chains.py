"""
Chain artifacts: extraction, burn-in and persistence.

This module provides functions for:
- Reshaping raw sampler output into per-parameter series (extract_chains)
- Dropping burn-in iterations (apply_burnin, burnin_length)
- Posterior summaries of a single chain (summarize_chain)
- Saving and loading chain artifacts as compressed .npz bundles
"""

from dataclasses import dataclass
from typing import Any, Dict, Mapping, Optional, Sequence, Tuple

import numpy as np
from pathlib import Path

from .error_handling import DimensionMismatchError, InvalidInputError

import logging
logger = logging.getLogger('patmix')


@dataclass(frozen=True)
class ChainArtifact:
    """
    The recorded sequence of sampled parameters of one sampler run.

    mu[k] and sigma[k] are the series of cluster k (row k of the constraint
    table). Iteration 0 is the initial state.
    """
    mu: Tuple[np.ndarray, ...]     # M arrays of shape (T, D)
    sigma: Tuple[np.ndarray, ...]  # M arrays of shape (T, D, D)
    prop: np.ndarray               # (T, M)
    z: np.ndarray                  # (T, n)

    def __post_init__(self):
        object.__setattr__(self, 'mu', tuple(np.asarray(m) for m in self.mu))
        object.__setattr__(self, 'sigma', tuple(np.asarray(s) for s in self.sigma))
        object.__setattr__(self, 'prop', np.asarray(self.prop))
        object.__setattr__(self, 'z', np.asarray(self.z))
        _check_artifact_shapes(self.mu, self.sigma, self.prop, self.z)

    @property
    def n_iterations(self) -> int:
        return self.prop.shape[0]

    @property
    def n_clusters(self) -> int:
        return self.prop.shape[1]

    @property
    def n_dims(self) -> int:
        return self.mu[0].shape[1]

    @property
    def n_obs(self) -> int:
        return self.z.shape[1]

    def mu_array(self) -> np.ndarray:
        """Means stacked as (T, M, D)."""
        return np.stack(self.mu, axis=1)

    def sigma_array(self) -> np.ndarray:
        """Covariances stacked as (T, M, D, D)."""
        return np.stack(self.sigma, axis=1)


def _check_artifact_shapes(mu, sigma, prop, z):
    """Raise DimensionMismatchError unless the four series agree."""
    if len(mu) == 0 or len(mu) != len(sigma):
        raise DimensionMismatchError(
            f"need one mean and one covariance series per cluster, got {len(mu)} and {len(sigma)}"
        )
    if prop.ndim != 2 or z.ndim != 2:
        raise DimensionMismatchError(
            f"prop and z must be 2-D, got shapes {prop.shape} and {z.shape}"
        )

    n_iter, n_clusters = prop.shape
    if len(mu) != n_clusters:
        raise DimensionMismatchError(f"{len(mu)} cluster series but prop has {n_clusters} columns")
    if z.shape[0] != n_iter:
        raise DimensionMismatchError(f"z has {z.shape[0]} iterations, prop has {n_iter}")

    n_dims = mu[0].shape[-1] if mu[0].ndim == 2 else -1
    for k, (m, s) in enumerate(zip(mu, sigma)):
        if m.shape != (n_iter, n_dims):
            raise DimensionMismatchError(
                f"mu[{k}] has shape {m.shape}, expected ({n_iter}, {n_dims})"
            )
        if s.shape != (n_iter, n_dims, n_dims):
            raise DimensionMismatchError(
                f"sigma[{k}] has shape {s.shape}, expected ({n_iter}, {n_dims}, {n_dims})"
            )


def _raw_arrays(raw) -> Tuple[np.ndarray, np.ndarray, np.ndarray, np.ndarray]:
    """Pull (mu, sigma, prop, z) out of a results dict, ChainState or mapping."""
    if isinstance(raw, Mapping) and 'states' in raw:
        raw = raw['states']
    if isinstance(raw, Mapping):
        missing = [k for k in ('mu', 'sigma', 'prop', 'z') if k not in raw]
        if missing:
            raise DimensionMismatchError(f"raw chain is missing arrays: {missing}")
        return tuple(np.asarray(raw[k]) for k in ('mu', 'sigma', 'prop', 'z'))
    try:
        return tuple(np.asarray(getattr(raw, k)) for k in ('mu', 'sigma', 'prop', 'z'))
    except AttributeError as exc:
        raise DimensionMismatchError(f"cannot read chain arrays from {type(raw).__name__}") from exc


def extract_chains(raw) -> ChainArtifact:
    """
    Reshape raw sampler output into per-parameter series.

    No values are recomputed or reordered: mu[k][t] is the mean of cluster k
    at iteration t exactly as the sampler stored it.

    Args:
        raw: Results dict from run_mcmc, a stacked ChainState, or a mapping
            with 'mu' (T, M, D), 'sigma' (T, M, D, D), 'prop' (T, M), 'z' (T, n)

    Returns:
        ChainArtifact

    Raises:
        DimensionMismatchError: If the arrays have inconsistent shapes
    """
    mu, sigma, prop, z = _raw_arrays(raw)

    if mu.ndim != 3:
        raise DimensionMismatchError(f"mu must be (T, M, D), got {mu.shape}")
    if sigma.ndim != 4:
        raise DimensionMismatchError(f"sigma must be (T, M, D, D), got {sigma.shape}")
    if sigma.shape[:2] != mu.shape[:2]:
        raise DimensionMismatchError(
            f"mu {mu.shape} and sigma {sigma.shape} disagree on iterations/clusters"
        )

    n_clusters = mu.shape[1]
    return ChainArtifact(
        mu=tuple(mu[:, k, :].copy() for k in range(n_clusters)),
        sigma=tuple(sigma[:, k, :, :].copy() for k in range(n_clusters)),
        prop=prop.copy(),
        z=z.copy(),
    )


def as_artifact(chain) -> ChainArtifact:
    """Pass ChainArtifacts through; extract anything else."""
    if isinstance(chain, ChainArtifact):
        return chain
    return extract_chains(chain)


def burnin_length(burnin, n_iterations: int) -> int:
    """
    Number of leading iterations discarded by a burn-in argument.

    Args:
        burnin: int count, or a range/slice naming a prefix of iterations
            (e.g. range(200) or slice(0, 200))
        n_iterations: Chain length, used to check something remains

    Raises:
        InvalidInputError: Negative, non-prefix, or burn-in covering the whole chain
    """
    if isinstance(burnin, (range, slice)):
        start = burnin.start or 0
        step = burnin.step or 1
        if start != 0 or step != 1:
            raise InvalidInputError(f"burn-in must be a prefix of the chain, got {burnin}")
        length = burnin.stop if burnin.stop is not None else n_iterations
    elif isinstance(burnin, (int, np.integer)) and not isinstance(burnin, bool):
        length = int(burnin)
    else:
        raise InvalidInputError(f"burn-in must be an int, range or slice, got {burnin!r}")

    if length < 0:
        raise InvalidInputError(f"burn-in must be >= 0, got {length}")
    if length >= n_iterations:
        raise InvalidInputError(
            f"burn-in of {length} iterations leaves no draws from a chain of {n_iterations}"
        )
    return int(length)


def apply_burnin(chain: ChainArtifact, burnin) -> ChainArtifact:
    """Drop the burn-in prefix from every series of a chain."""
    start = burnin_length(burnin, chain.n_iterations)
    return ChainArtifact(
        mu=tuple(m[start:] for m in chain.mu),
        sigma=tuple(s[start:] for s in chain.sigma),
        prop=chain.prop[start:],
        z=chain.z[start:],
    )


def summarize_chain(chain: ChainArtifact, burnin=0) -> Dict[str, np.ndarray]:
    """
    Posterior summaries of one chain after burn-in.

    Returns:
        Dict with:
            mu: (M, D) posterior mean of each cluster mean
            sigma: (M, D, D) posterior mean of each cluster covariance
            prop: (M,) posterior mean proportions
            membership: (n, M) fraction of draws placing each observation in each class
            labels: (n,) most frequent class per observation
            occupancy: (M,) posterior mean number of observations per class
    """
    kept = apply_burnin(chain, burnin)
    n_clusters = kept.n_clusters

    counts = np.stack([(kept.z == k).sum(axis=0) for k in range(n_clusters)], axis=1)
    membership = counts / kept.n_iterations
    occupancy = np.stack([(kept.z == k).sum(axis=1) for k in range(n_clusters)], axis=1).mean(axis=0)

    return {
        'mu': kept.mu_array().mean(axis=0),
        'sigma': kept.sigma_array().mean(axis=0),
        'prop': kept.prop.mean(axis=0),
        'membership': membership,
        'labels': np.argmax(membership, axis=1),
        'occupancy': occupancy,
    }


def save_chains(filepath, chain: ChainArtifact, metadata: Optional[Dict[str, Any]] = None) -> None:
    """
    Save a chain artifact to disk as a compressed .npz bundle.

    Saves:
        - mu: (M, T, D) per-cluster mean series
        - sigma: (M, T, D, D) per-cluster covariance series
        - prop: (T, M) proportions
        - z: (T, n) labels
        - metadata: optional dict (pickled)
    """
    bundle = {
        'mu': np.stack(chain.mu, axis=0),
        'sigma': np.stack(chain.sigma, axis=0),
        'prop': chain.prop,
        'z': chain.z,
    }
    if metadata:
        bundle['metadata'] = metadata

    filepath = Path(filepath)
    np.savez_compressed(filepath, **bundle)
    logger.info(f"Chains saved to {filepath}")


def load_chains(filepath) -> ChainArtifact:
    """
    Load a chain artifact written by save_chains.

    Raises:
        FileNotFoundError: If the file does not exist
        DimensionMismatchError: If the stored arrays are inconsistent
    """
    filepath = Path(filepath)
    if not filepath.exists():
        raise FileNotFoundError(f"Chain file not found: {filepath}")

    # Copy arrays so the NpzFile can be closed
    with np.load(filepath, allow_pickle=True) as data:
        mu = data['mu'].copy()
        sigma = data['sigma'].copy()
        prop = data['prop'].copy()
        z = data['z'].copy()

    return ChainArtifact(
        mu=tuple(mu[k] for k in range(mu.shape[0])),
        sigma=tuple(sigma[k] for k in range(sigma.shape[0])),
        prop=prop,
        z=z,
    )


def load_chain_metadata(filepath) -> Optional[Dict[str, Any]]:
    """Return the metadata dict stored by save_chains, or None."""
    with np.load(Path(filepath), allow_pickle=True) as data:
        if 'metadata' in data:
            return data['metadata'].item()
    return None


def check_compatible(chains: Sequence[ChainArtifact]) -> None:
    """Raise DimensionMismatchError unless all chains share M, D and n."""
    first = chains[0]
    for i, chain in enumerate(chains[1:], start=1):
        if (chain.n_clusters, chain.n_dims, chain.n_obs) != (first.n_clusters, first.n_dims, first.n_obs):
            raise DimensionMismatchError(
                f"chain {i} has (M, D, n) = ({chain.n_clusters}, {chain.n_dims}, {chain.n_obs}), "
                f"chain 0 has ({first.n_clusters}, {first.n_dims}, {first.n_obs})"
            )
