"""
MCMC Subpackage - Core sampler implementation.

This package contains the adaptive Gibbs/Metropolis sampler:
- single_run: Entry points (run_mcmc, run_chains) and jitted chain kernels
- config: Configuration, input validation and initial state
- diagnostics: PSRF kernel and acceptance summaries
- sampling: Label, proportion and per-cluster MH updates, adaptive tuning
- densities: Log-space normal, inverse-Wishart and cluster posterior densities
- types: Core data structures (ModelArrays, ChainState, RunParams)
"""

# Import types first (registers the ModelArrays pytree)
from .types import ChainState, ClusterPrior, ModelArrays, RunParams, build_model_arrays

# Import main entry points
from .single_run import run_mcmc, run_chains

# Import commonly used functions
from .config import (
    clean_config,
    configure_sampler,
    initialize_state,
    validate_mcmc_inputs,
)
from .diagnostics import compute_psrf, log_acceptance_summary

__all__ = [
    # Main entry points
    'run_mcmc',
    'run_chains',
    # Types
    'ChainState',
    'ClusterPrior',
    'ModelArrays',
    'RunParams',
    'build_model_arrays',
    # Config
    'clean_config',
    'configure_sampler',
    'initialize_state',
    'validate_mcmc_inputs',
    # Diagnostics
    'compute_psrf',
    'log_acceptance_summary',
]
