"""
Cross-run class merging.

Clusters from one or more independent analyses (e.g. per-chromosome runs) are
compared through their posterior estimates, clustered hierarchically and cut
to a target number of groups. Each group gets a consensus mean and covariance.

Cluster indices are local to an analysis, so every cluster is identified by
ClusterKey(analysis, cluster). Inputs that lose this provenance are rejected.
"""

from dataclasses import dataclass
from typing import Any, Dict, List, Mapping, NamedTuple, Sequence, Tuple

import numpy as np
from scipy.cluster.hierarchy import cut_tree, linkage
from scipy.spatial.distance import squareform

from .chains import ChainArtifact, apply_burnin, as_artifact, check_compatible
from .error_handling import (
    AmbiguousClusterIdentityError,
    DimensionMismatchError,
    InvalidInputError,
)

import logging
logger = logging.getLogger('patmix')


CLUSTER_METRICS = ('kl', 'euclidean')
LINKAGE_METHODS = ('single', 'complete', 'average', 'weighted')


class ClusterKey(NamedTuple):
    """Provenance of a cluster: analysis id plus 0-based local cluster index."""
    analysis: Any
    cluster: int


@dataclass(frozen=True)
class MergeResult:
    """
    Consensus classes after merging.

    Attributes:
        mu: (G, D) consensus means
        sigma: (G, D, D) consensus covariances
        weight: (G,) share of total occupancy held by each group
        groups: (K,) group index of each input cluster, in cluster_keys order
        cluster_keys: ClusterKey of each input cluster
        assignment: ClusterKey -> group index
        cluster_distance: (K, K) distance matrix between input clusters
        condition_distance: (D, D) distance matrix between conditions
        linkage: (K - 1, 4) scipy linkage matrix
    """
    mu: np.ndarray
    sigma: np.ndarray
    weight: np.ndarray
    groups: np.ndarray
    cluster_keys: Tuple[ClusterKey, ...]
    assignment: Dict[ClusterKey, int]
    cluster_distance: np.ndarray
    condition_distance: np.ndarray
    linkage: np.ndarray

    @property
    def n_groups(self) -> int:
        return self.mu.shape[0]

    def members(self, group: int) -> List[ClusterKey]:
        """Input clusters merged into one group."""
        return [key for key, g in zip(self.cluster_keys, self.groups) if g == group]


# =============================================================================
# INPUT NORMALISATION
# =============================================================================

def _is_single_chain(obj) -> bool:
    return isinstance(obj, ChainArtifact) or (isinstance(obj, Mapping) and 'states' in obj)


def _as_chain_list(value) -> List[ChainArtifact]:
    if _is_single_chain(value):
        return [as_artifact(value)]
    if isinstance(value, (list, tuple)) and len(value) > 0:
        return [as_artifact(v) for v in value]
    raise InvalidInputError(f"expected a chain artifact or a non-empty list of them, got {type(value).__name__}")


def _normalise_analyses(analyses) -> List[Tuple[Any, List[ChainArtifact]]]:
    """
    Turn any accepted input form into [(analysis_id, [chains])].

    Accepted forms: a single chain; a mapping analysis_id -> chain(s); a list
    of per-analysis chain lists. A flat list of several chains does not say
    which analysis each came from and is rejected.
    """
    if _is_single_chain(analyses):
        return [(0, [as_artifact(analyses)])]

    if isinstance(analyses, Mapping):
        if len(analyses) == 0:
            raise InvalidInputError("no analyses given")
        return [(aid, _as_chain_list(value)) for aid, value in analyses.items()]

    if isinstance(analyses, (list, tuple)):
        if len(analyses) == 0:
            raise InvalidInputError("no analyses given")
        if all(_is_single_chain(a) for a in analyses):
            if len(analyses) == 1:
                return [(0, [as_artifact(analyses[0])])]
            raise AmbiguousClusterIdentityError(
                f"got a flat list of {len(analyses)} chains; pass a mapping "
                f"{{analysis_id: [chains]}} or a list of per-analysis lists so that "
                f"cluster indices can be attributed to their analysis"
            )
        if all(isinstance(a, (list, tuple)) for a in analyses):
            return [(i, _as_chain_list(a)) for i, a in enumerate(analyses)]
        raise AmbiguousClusterIdentityError(
            "analyses list mixes single chains and per-analysis lists"
        )

    raise InvalidInputError(f"cannot interpret analyses of type {type(analyses).__name__}")


# =============================================================================
# POSTERIOR SUMMARIES PER ANALYSIS
# =============================================================================

def _pool_analysis(chains: Sequence[ChainArtifact], burnin):
    """
    Pool post-burn-in draws over the chains of one analysis.

    Returns:
        mu_draws: (T_total, M, D)
        sigma_hat: (M, D, D) posterior mean covariances
        occupancy: (M,) mean number of observations per cluster
    """
    kept = [apply_burnin(c, burnin) for c in chains]
    mu_draws = np.concatenate([c.mu_array() for c in kept], axis=0)
    sigma_hat = np.concatenate([c.sigma_array() for c in kept], axis=0).mean(axis=0)
    z = np.concatenate([c.z for c in kept], axis=0)
    occupancy = np.array([(z == k).sum(axis=1).mean() for k in range(kept[0].n_clusters)], dtype=float)
    return mu_draws, sigma_hat, occupancy


def _normalised_weights(occupancy: np.ndarray) -> np.ndarray:
    total = occupancy.sum()
    if total > 0:
        return occupancy / total
    return np.full(occupancy.shape, 1.0 / occupancy.size)


# =============================================================================
# DISTANCES
# =============================================================================

def cluster_distance(mu: np.ndarray, sigma: np.ndarray, metric: str = 'kl') -> np.ndarray:
    """
    Distance matrix between clusters from their posterior estimates.

    Args:
        mu: (K, D) posterior mean vectors
        sigma: (K, D, D) posterior mean covariances
        metric: 'kl' for the symmetrised Kullback-Leibler divergence between
            N(mu_j, sigma_j) and N(mu_k, sigma_k), 'euclidean' for the
            distance between mean vectors

    Returns:
        (K, K) symmetric, non-negative matrix with zero diagonal
    """
    mu = np.asarray(mu, dtype=float)
    diff = mu[:, None, :] - mu[None, :, :]

    if metric == 'euclidean':
        dist = np.sqrt(np.sum(diff ** 2, axis=-1))
    elif metric == 'kl':
        sigma = np.asarray(sigma, dtype=float)
        n_dims = mu.shape[1]
        prec = np.linalg.inv(sigma)
        # tr(S_k^-1 S_j) for every pair
        trace = np.einsum('kab,jba->jk', prec, sigma)
        maha = np.einsum('jka,jkab,jkb->jk', diff, prec[None, :, :, :] + prec[:, None, :, :], diff)
        dist = 0.25 * (trace + trace.T + maha - 2 * n_dims)
    else:
        raise InvalidInputError(f"metric must be one of {CLUSTER_METRICS}, got {metric!r}")

    dist = 0.5 * (dist + dist.T)
    dist = np.maximum(dist, 0.0)
    np.fill_diagonal(dist, 0.0)
    return dist


def condition_distance(mu_draws: Sequence[np.ndarray], occupancy: np.ndarray) -> np.ndarray:
    """
    Distance matrix between conditions (columns of X).

    For each cluster the posterior expectation of |mu[j] - mu[k]| is taken
    over its draws; clusters are then averaged with occupancy weights
    (uniform when nothing is occupied).

    Args:
        mu_draws: One (T, D) array of mean draws per cluster
        occupancy: (K,) occupancy of each cluster

    Returns:
        (D, D) symmetric, non-negative matrix with zero diagonal
    """
    weights = _normalised_weights(np.asarray(occupancy, dtype=float))
    per_cluster = np.stack([
        np.abs(draws[:, :, None] - draws[:, None, :]).mean(axis=0)
        for draws in mu_draws
    ])
    dist = np.tensordot(weights, per_cluster, axes=1)
    np.fill_diagonal(dist, 0.0)
    return dist


# =============================================================================
# MERGING
# =============================================================================

def _linkage_matrix(dist: np.ndarray, method: str) -> np.ndarray:
    if dist.shape[0] < 2:
        return np.zeros((0, 4))
    condensed = squareform(dist, checks=False)
    return linkage(condensed, method=method)


def _cut(link: np.ndarray, n_clusters: int, n_groups: int) -> np.ndarray:
    """Cut a linkage into exactly n_groups, numbered by first appearance."""
    if n_clusters == 1:
        return np.zeros(1, dtype=int)
    raw = cut_tree(link, n_clusters=n_groups).ravel()
    relabel = {}
    for label in raw:
        relabel.setdefault(label, len(relabel))
    return np.array([relabel[label] for label in raw], dtype=int)


def merge_classes(analyses, burnin, n_groups: int, metric: str = 'kl',
                  method: str = 'complete') -> MergeResult:
    """
    Merge the latent classes of one or more analyses into n_groups groups.

    Args:
        analyses: A single chain, a mapping analysis_id -> chain or list of
            chains, or a list of per-analysis chain lists
        burnin: Burn-in (int / range / slice) applied to every chain
        n_groups: Number of merged groups, in [1, total number of clusters]
        metric: Cluster distance, 'kl' or 'euclidean'
        method: scipy linkage method

    Returns:
        MergeResult

    Raises:
        AmbiguousClusterIdentityError: Several chains without analysis provenance
        DimensionMismatchError: Chains of one analysis disagree on M, D or n,
            or analyses disagree on D
        InvalidInputError: Bad n_groups, metric or method
    """
    if metric not in CLUSTER_METRICS:
        raise InvalidInputError(f"metric must be one of {CLUSTER_METRICS}, got {metric!r}")
    if method not in LINKAGE_METHODS:
        raise InvalidInputError(f"method must be one of {LINKAGE_METHODS}, got {method!r}")

    per_analysis = _normalise_analyses(analyses)

    n_dims = per_analysis[0][1][0].n_dims
    for aid, chains in per_analysis:
        check_compatible(chains)
        if chains[0].n_dims != n_dims:
            raise DimensionMismatchError(
                f"analysis {aid!r} has {chains[0].n_dims} dimensions, expected {n_dims}"
            )

    keys: List[ClusterKey] = []
    mu_draws: List[np.ndarray] = []
    sigma_hat: List[np.ndarray] = []
    occupancy: List[float] = []
    for aid, chains in per_analysis:
        draws, sig, occ = _pool_analysis(chains, burnin)
        for k in range(draws.shape[1]):
            keys.append(ClusterKey(aid, k))
            mu_draws.append(draws[:, k, :])
            sigma_hat.append(sig[k])
            occupancy.append(occ[k])

    n_clusters = len(keys)
    if isinstance(n_groups, bool) or not isinstance(n_groups, (int, np.integer)) \
            or not 1 <= n_groups <= n_clusters:
        raise InvalidInputError(f"n_groups must be an integer in [1, {n_clusters}], got {n_groups}")

    mu_hat = np.stack([d.mean(axis=0) for d in mu_draws])
    sigma_hat = np.stack(sigma_hat)
    occupancy = np.asarray(occupancy, dtype=float)

    logger.info(f"Merging {n_clusters} clusters from {len(per_analysis)} analyses "
                f"into {n_groups} groups ({metric} distance, {method} linkage)")

    dist = cluster_distance(mu_hat, sigma_hat, metric=metric)
    cond_dist = condition_distance(mu_draws, occupancy)
    link = _linkage_matrix(dist, method)
    groups = _cut(link, n_clusters, int(n_groups))

    total = occupancy.sum()
    consensus_mu = np.zeros((n_groups, n_dims))
    consensus_sigma = np.zeros((n_groups, n_dims, n_dims))
    weight = np.zeros(n_groups)
    for g in range(n_groups):
        idx = np.flatnonzero(groups == g)
        w = _normalised_weights(occupancy[idx])
        consensus_mu[g] = np.tensordot(w, mu_hat[idx], axes=1)
        consensus_sigma[g] = np.tensordot(w, sigma_hat[idx], axes=1)
        weight[g] = occupancy[idx].sum() / total if total > 0 else idx.size / n_clusters
        logger.debug(f"  group {g}: {[tuple(keys[i]) for i in idx]}")

    return MergeResult(
        mu=consensus_mu,
        sigma=consensus_sigma,
        weight=weight,
        groups=groups,
        cluster_keys=tuple(keys),
        assignment={key: int(g) for key, g in zip(keys, groups)},
        cluster_distance=dist,
        condition_distance=cond_dist,
        linkage=link,
    )
