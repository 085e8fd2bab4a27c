"""
patmix - Adaptive MCMC for constrained association-pattern mixtures

Public API:
    Inputs:
        Constraint - IntEnum for per-(class, condition) mean restrictions
        constraints_from_patterns - Build a constraint table from {-1, 0, 1} patterns
        validate_constraint_table - Check a constraint table
        null_rows - Mask of all-ZERO (null) classes
        Hyperparameters - NIW + Dirichlet prior container
        save_hyperparameters / load_hyperparameters - JSON persistence

    Sampling:
        run_mcmc - Run one adaptive chain
        run_chains - Run several independent chains (vectorised or sequential)

    Chains:
        ChainArtifact - Per-parameter series of one run
        extract_chains - Reshape raw sampler output into a ChainArtifact
        apply_burnin - Drop a burn-in prefix
        summarize_chain - Posterior means, memberships and occupancy
        save_chains / load_chains - Compressed .npz persistence

    Diagnostics:
        gelman_rubin - PSRF per parameter across chains
        summarize_psrf - Log and summarise PSRF values
        diagnose_sampler_issues / log_diagnostics - Post-run checks

    Merging:
        merge_classes - Merge classes across analyses into consensus groups
        ClusterKey - (analysis, cluster) provenance of a cluster
        MergeResult - Consensus estimates, distances and linkage

Example:
    from patmix import run_chains, extract_chains, gelman_rubin

    runs = run_chains(x, hyperparameters, nstep=1000, constraints=table, n_chains=3, seed=1)
    chains = [extract_chains(r) for r in runs]
    psrf = gelman_rubin(chains, burnin=200)
"""
# CRITICAL: Import jax_config FIRST to set environment variables before JAX loads
from . import jax_config  # noqa: F401

from .error_handling import (
    PatmixError,
    InvalidInputError,
    DimensionMismatchError,
    AmbiguousClusterIdentityError,
    diagnose_sampler_issues,
    log_diagnostics,
)
from .constraints import (
    Constraint,
    constraints_from_patterns,
    validate_constraint_table,
    null_rows,
)
from .hyperparameters import Hyperparameters, save_hyperparameters, load_hyperparameters
from .mcmc import run_mcmc, run_chains
from .chains import (
    ChainArtifact,
    extract_chains,
    apply_burnin,
    summarize_chain,
    save_chains,
    load_chains,
)
from .convergence import gelman_rubin, summarize_psrf
from .merging import ClusterKey, MergeResult, merge_classes

__version__ = "0.1.0"

__all__ = [
    # Inputs
    'Constraint',
    'constraints_from_patterns',
    'validate_constraint_table',
    'null_rows',
    'Hyperparameters',
    'save_hyperparameters',
    'load_hyperparameters',
    # Sampling
    'run_mcmc',
    'run_chains',
    # Chains
    'ChainArtifact',
    'extract_chains',
    'apply_burnin',
    'summarize_chain',
    'save_chains',
    'load_chains',
    # Diagnostics
    'gelman_rubin',
    'summarize_psrf',
    'diagnose_sampler_issues',
    'log_diagnostics',
    # Merging
    'merge_classes',
    'ClusterKey',
    'MergeResult',
    # Errors
    'PatmixError',
    'InvalidInputError',
    'DimensionMismatchError',
    'AmbiguousClusterIdentityError',
]
