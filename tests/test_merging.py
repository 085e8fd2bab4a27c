"""
Tests for cross-run class merging.

Run with: pytest tests/test_merging.py -v
"""

import numpy as np
import pytest
from scipy import stats as scipy_stats

from patmix.error_handling import (
    AmbiguousClusterIdentityError,
    DimensionMismatchError,
    InvalidInputError,
)
from patmix.merging import (
    ClusterKey,
    MergeResult,
    cluster_distance,
    condition_distance,
    merge_classes,
)


def noisy_chain(artifact_factory, means, T=60, noise=0.05, z=None, seed=0):
    """Chain whose mean draws scatter around fixed (M, D) means."""
    np.random.seed(seed)
    means = np.asarray(means, dtype=float)
    mu = means[None] + noise * np.random.normal(size=(T,) + means.shape)
    return artifact_factory(mu, z=z)


# ============================================================================
# DISTANCES
# ============================================================================

class TestDistances:
    """Tests for the cluster and condition distance matrices."""

    def test_euclidean(self):
        mu = np.array([[0.0, 0.0], [3.0, 4.0]])
        dist = cluster_distance(mu, None, metric='euclidean')
        np.testing.assert_allclose(dist, [[0.0, 5.0], [5.0, 0.0]])

    def test_kl_equal_covariance_is_mahalanobis(self):
        """With shared covariance the symmetrised KL is half the squared Mahalanobis distance."""
        mu = np.array([[0.0, 0.0], [1.0, 2.0]])
        cov = np.array([[2.0, 0.5], [0.5, 1.0]])
        dist = cluster_distance(mu, np.stack([cov, cov]), metric='kl')

        d = mu[1] - mu[0]
        expected = 0.5 * d @ np.linalg.solve(cov, d)
        np.testing.assert_allclose(dist[0, 1], expected)
        np.testing.assert_allclose(dist, dist.T)
        np.testing.assert_allclose(np.diag(dist), 0.0)

    def test_kl_matches_one_dimensional_formula(self):
        mu = np.array([[0.0], [1.0]])
        sigma = np.array([[[1.0]], [[4.0]]])
        dist = cluster_distance(mu, sigma, metric='kl')

        # KL(N(0,1) || N(1,4)) and KL(N(1,4) || N(0,1))
        kl_ab = np.log(2.0) + (1.0 + 1.0) / (2 * 4.0) - 0.5
        kl_ba = np.log(0.5) + (4.0 + 1.0) / 2.0 - 0.5
        np.testing.assert_allclose(dist[0, 1], 0.5 * (kl_ab + kl_ba))

    def test_unknown_metric(self):
        with pytest.raises(InvalidInputError, match="metric"):
            cluster_distance(np.zeros((2, 2)), np.stack([np.eye(2)] * 2), metric='cosine')

    def test_condition_distance(self):
        """Occupancy-weighted posterior expectation of |mu[j] - mu[k]|."""
        draws_a = np.array([[1.0, 0.0], [3.0, 0.0]])   # |diff| = 1, 3
        draws_b = np.array([[0.0, 0.0], [0.0, 2.0]])   # |diff| = 0, 2
        dist = condition_distance([draws_a, draws_b], occupancy=np.array([3.0, 1.0]))

        expected = 0.75 * 2.0 + 0.25 * 1.0
        np.testing.assert_allclose(dist, [[0.0, expected], [expected, 0.0]])

    def test_condition_distance_uniform_when_unoccupied(self):
        draws_a = np.array([[2.0, 0.0]])
        draws_b = np.array([[0.0, 0.0]])
        dist = condition_distance([draws_a, draws_b], occupancy=np.zeros(2))
        np.testing.assert_allclose(dist[0, 1], 1.0)


# ============================================================================
# MERGING
# ============================================================================

class TestMergeClasses:
    """Tests for merge_classes()."""

    MEANS = [[4.0, 4.0, 0.0], [-4.0, 0.0, 4.0], [0.0, -4.0, -4.0], [0.0, 0.0, 0.0]]

    def test_identity_when_no_reduction(self, artifact_factory):
        """n_groups = M on one analysis returns every cluster as its own group."""
        chain = noisy_chain(artifact_factory, self.MEANS)
        result = merge_classes(chain, burnin=10, n_groups=4)

        assert isinstance(result, MergeResult)
        np.testing.assert_array_equal(result.groups, [0, 1, 2, 3])
        np.testing.assert_allclose(result.mu, chain.mu_array()[10:].mean(axis=0))
        np.testing.assert_allclose(result.sigma, chain.sigma_array()[10:].mean(axis=0))
        assert result.cluster_keys == tuple(ClusterKey(0, k) for k in range(4))
        assert result.linkage.shape == (3, 4)
        assert result.cluster_distance.shape == (4, 4)
        assert result.condition_distance.shape == (3, 3)

    def test_two_analyses_merge_matching_clusters(self, artifact_factory):
        """Clusters with the same pattern in two analyses end up in one group."""
        a = noisy_chain(artifact_factory, self.MEANS, seed=1)
        b = noisy_chain(artifact_factory, self.MEANS, seed=2)
        result = merge_classes({'chr1': [a], 'chr2': [b]}, burnin=10, n_groups=4)

        assert len(result.cluster_keys) == 8
        for k in range(4):
            assert result.assignment[ClusterKey('chr1', k)] == result.assignment[ClusterKey('chr2', k)]
        assert len(set(result.groups.tolist())) == 4
        np.testing.assert_allclose(result.mu, np.asarray(self.MEANS), atol=0.1)

    def test_weighted_consensus(self, artifact_factory):
        """Consensus means are occupancy weighted."""
        n_obs = 4
        # Cluster 0 holds three observations, cluster 1 holds one
        z = np.tile([0, 0, 0, 1], (20, 1))
        chain = artifact_factory(np.tile([[[0.0, 0.0], [0.4, 0.0]]], (20, 1, 1)), z=z, n_obs=n_obs)
        result = merge_classes(chain, burnin=0, n_groups=1, metric='euclidean')

        np.testing.assert_allclose(result.mu[0], [0.1, 0.0])
        np.testing.assert_allclose(result.weight, [1.0])
        assert result.members(0) == [ClusterKey(0, 0), ClusterKey(0, 1)]

    def test_list_of_analysis_lists(self, artifact_factory):
        a1 = noisy_chain(artifact_factory, self.MEANS, seed=1)
        a2 = noisy_chain(artifact_factory, self.MEANS, seed=2)
        b1 = noisy_chain(artifact_factory, self.MEANS, seed=3)
        result = merge_classes([[a1, a2], [b1]], burnin=10, n_groups=4)

        assert len(result.cluster_keys) == 8
        assert result.cluster_keys[4] == ClusterKey(1, 0)

    def test_flat_list_is_ambiguous(self, artifact_factory):
        """A flat list of chains gives no analysis provenance."""
        a = noisy_chain(artifact_factory, self.MEANS, seed=1)
        b = noisy_chain(artifact_factory, self.MEANS, seed=2)
        with pytest.raises(AmbiguousClusterIdentityError):
            merge_classes([a, b], burnin=10, n_groups=4)

    def test_single_element_list_allowed(self, artifact_factory):
        chain = noisy_chain(artifact_factory, self.MEANS)
        result = merge_classes([chain], burnin=10, n_groups=2)
        assert result.n_groups == 2

    def test_dimension_mismatch_between_analyses(self, artifact_factory):
        a = noisy_chain(artifact_factory, self.MEANS)
        b = noisy_chain(artifact_factory, [[1.0, 1.0], [0.0, 0.0]])
        with pytest.raises(DimensionMismatchError):
            merge_classes({'a': a, 'b': b}, burnin=10, n_groups=2)

    @pytest.mark.parametrize("n_groups", [0, 5, 2.0])
    def test_bad_n_groups(self, artifact_factory, n_groups):
        chain = noisy_chain(artifact_factory, self.MEANS)
        with pytest.raises(InvalidInputError, match="n_groups"):
            merge_classes(chain, burnin=10, n_groups=n_groups)

    def test_bad_method(self, artifact_factory):
        chain = noisy_chain(artifact_factory, self.MEANS)
        with pytest.raises(InvalidInputError, match="method"):
            merge_classes(chain, burnin=10, n_groups=2, method='ward')

    def test_exact_group_count(self, artifact_factory):
        """Every n_groups in [1, K] is honoured exactly."""
        chain = noisy_chain(artifact_factory, self.MEANS)
        for n_groups in range(1, 5):
            result = merge_classes(chain, burnin=10, n_groups=n_groups)
            assert result.n_groups == n_groups
            assert sorted(set(result.groups.tolist())) == list(range(n_groups))
            np.testing.assert_allclose(result.weight.sum(), 1.0)

    def test_single_cluster(self, artifact_factory):
        chain = noisy_chain(artifact_factory, [[1.0, -1.0]])
        result = merge_classes(chain, burnin=10, n_groups=1)
        assert result.linkage.shape == (0, 4)
        np.testing.assert_array_equal(result.groups, [0])
