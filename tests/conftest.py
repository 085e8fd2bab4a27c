"""
Pytest configuration and shared fixtures for patmix tests.
"""

import pytest
import numpy as np

from patmix.chains import ChainArtifact
from patmix.constraints import constraints_from_patterns
from patmix.hyperparameters import Hyperparameters


# ============================================================================
# SCENARIO DEFINITION
# ============================================================================

# Three association patterns plus the null class, D = 3 conditions
SCENARIO_PATTERNS = np.array([
    [1, 1, 0],
    [-1, 0, 1],
    [0, -1, -1],
    [0, 0, 0],
])

SCENARIO_MEANS = np.array([
    [4.0, 4.0, 0.0],
    [-4.0, 0.0, 4.0],
    [0.0, -4.0, -4.0],
    [0.0, 0.0, 0.0],
])


def make_hyperparameters(patterns, effect=4.0, kappa0=0.01, nu0=None, alpha=1.0):
    """
    Weakly informative hyperparameters for a pattern matrix.

    Prior means sit at effect * pattern; psi is chosen so that the
    inverse-Wishart mode is the identity.
    """
    patterns = np.asarray(patterns, dtype=float)
    M, D = patterns.shape
    if nu0 is None:
        nu0 = D + 2.0
    psi = np.stack([(nu0 + D + 1.0) * np.eye(D) for _ in range(M)])
    return Hyperparameters(
        mu0=effect * patterns,
        kappa0=np.full(M, kappa0),
        psi=psi,
        nu0=np.full(M, nu0),
        alpha=np.full(M, alpha),
    )


def generate_pattern_data(n_per_class=450, n_null=150, seed=42):
    """Draw observations around SCENARIO_MEANS with identity covariance."""
    np.random.seed(seed)
    counts = [n_per_class] * 3 + [n_null]
    blocks = [np.random.normal(SCENARIO_MEANS[k], 1.0, size=(c, 3)) for k, c in enumerate(counts)]
    labels = np.concatenate([np.full(c, k) for k, c in enumerate(counts)])
    return np.concatenate(blocks, axis=0), labels


def make_artifact(mu, sigma=None, prop=None, z=None, n_obs=5):
    """
    Build a ChainArtifact directly from (T, M, D) mean draws.

    Missing pieces get simple valid defaults: identity covariances, uniform
    proportions, and labels cycling through the clusters.
    """
    mu = np.asarray(mu, dtype=float)
    T, M, D = mu.shape
    if sigma is None:
        sigma = np.broadcast_to(np.eye(D), (T, M, D, D)).copy()
    if prop is None:
        prop = np.full((T, M), 1.0 / M)
    if z is None:
        z = np.tile(np.arange(n_obs) % M, (T, 1))
    return ChainArtifact(
        mu=tuple(mu[:, k, :] for k in range(M)),
        sigma=tuple(np.asarray(sigma)[:, k] for k in range(M)),
        prop=prop,
        z=z,
    )


# ============================================================================
# FIXTURES
# ============================================================================

@pytest.fixture
def rng_seed():
    """Default RNG seed for reproducible tests."""
    return 42


@pytest.fixture(scope="session")
def scenario_table():
    """Constraint table of the three-pattern scenario (null class last)."""
    return constraints_from_patterns(SCENARIO_PATTERNS)


@pytest.fixture(scope="session")
def scenario_hyperparameters():
    """Hyperparameters matching scenario_table."""
    return make_hyperparameters(SCENARIO_PATTERNS)


@pytest.fixture(scope="session")
def scenario_data():
    """1500 observations: 450 per pattern plus 150 null."""
    x, labels = generate_pattern_data()
    return {'x': x, 'labels': labels, 'means': SCENARIO_MEANS}


@pytest.fixture
def small_problem():
    """
    Tiny two-condition problem for fast sampler tests.

    Returns:
        Tuple (x, table, hyperparameters)
    """
    patterns = np.array([[1, 0], [0, -1], [0, 0]])
    np.random.seed(0)
    x = np.concatenate([
        np.random.normal([3.0, 0.0], 1.0, size=(30, 2)),
        np.random.normal([0.0, -3.0], 1.0, size=(30, 2)),
        np.random.normal([0.0, 0.0], 1.0, size=(20, 2)),
    ])
    return x, constraints_from_patterns(patterns), make_hyperparameters(patterns, effect=3.0)


@pytest.fixture
def artifact_factory():
    """Expose make_artifact to tests."""
    return make_artifact


@pytest.fixture
def hyperparameter_factory():
    """Expose make_hyperparameters to tests."""
    return make_hyperparameters
