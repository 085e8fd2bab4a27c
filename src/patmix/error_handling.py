"""
Error Handling and Validation Utilities for the Mixture Sampler

This module provides the exception hierarchy, configuration validation and
post-run diagnostic tools.
"""

from typing import Any, Dict

import numpy as np

import logging
logger = logging.getLogger('patmix')


class PatmixError(ValueError):
    """Base class for errors raised by patmix."""


class InvalidInputError(PatmixError):
    """Sampler inputs are malformed; the chain never starts."""


class DimensionMismatchError(PatmixError):
    """A chain artifact (or raw sampler output) has inconsistent shapes."""


class AmbiguousClusterIdentityError(PatmixError):
    """Chains from several analyses were passed without analysis provenance."""


def raise_collected(errors, header):
    """Raise InvalidInputError listing every collected problem, if any."""
    if errors:
        raise InvalidInputError(header + ":\n  " + "\n  ".join(errors))


def validate_mcmc_config(mcmc_config: Dict[str, Any]) -> None:
    """
    Validates that sampler configuration is sensible.

    Args:
        mcmc_config: Configuration dictionary (after clean_config)

    Raises:
        InvalidInputError: If configuration is invalid
    """
    errors = []

    numeric_keys = ('target_accept', 'adapt_window', 'adapt_rate', 'initial_scale',
                    'min_scale', 'max_scale', 'init_spread')
    for key in numeric_keys:
        value = mcmc_config.get(key)
        if value is not None and (isinstance(value, bool) or not isinstance(value, (int, float, np.number))):
            errors.append(f"{key} must be a number, got {value!r}")
    if errors:
        raise_collected(errors, "Invalid MCMC configuration")

    target = mcmc_config.get('target_accept')
    if target is not None and not 0.0 < target < 1.0:
        errors.append(f"target_accept must be in (0, 1), got {target}")

    if mcmc_config.get('adapt_window', 1) < 1:
        errors.append(f"adapt_window must be >= 1, got {mcmc_config['adapt_window']}")

    if mcmc_config.get('adapt_rate', 1.0) < 0:
        errors.append(f"adapt_rate must be >= 0, got {mcmc_config['adapt_rate']}")

    min_scale = mcmc_config.get('min_scale', 1e-6)
    max_scale = mcmc_config.get('max_scale', 10.0)
    initial_scale = mcmc_config.get('initial_scale', 0.1)
    if min_scale <= 0:
        errors.append(f"min_scale must be > 0, got {min_scale}")
    if max_scale <= min_scale:
        errors.append(f"max_scale ({max_scale}) must exceed min_scale ({min_scale})")
    elif not min_scale <= initial_scale <= max_scale:
        errors.append(
            f"initial_scale ({initial_scale}) must lie in [{min_scale}, {max_scale}]"
        )

    if mcmc_config.get('init_spread', 0.0) < 0:
        errors.append(f"init_spread must be >= 0, got {mcmc_config['init_spread']}")

    if not isinstance(mcmc_config.get('use_double', True), bool):
        errors.append("use_double must be True or False")

    raise_collected(errors, "Invalid MCMC configuration")


def diagnose_sampler_issues(results: Dict[str, Any]) -> Dict[str, Any]:
    """
    Analyzes a finished sampler run to identify common issues.

    Args:
        results: Results dict returned by run_mcmc

    Returns:
        diagnostics: Dictionary with issues, warnings, and info
    """
    diagnostics = {
        'issues': [],
        'warnings': [],
        'info': []
    }

    states = results['states']

    # Check for NaN/Inf in the continuous state
    for name in ('mu', 'sigma', 'prop'):
        if not np.all(np.isfinite(getattr(states, name))):
            diagnostics['issues'].append(
                f"'{name}' contains NaN or Inf values - sampler became unstable"
            )

    # Low acceptance over the whole run
    accepted = np.asarray(results['accepted'])
    if accepted.size:
        overall = accepted.mean(axis=0)
        low = np.flatnonzero(overall < 0.10)
        if low.size:
            diagnostics['warnings'].append(
                f"{low.size} cluster(s) have acceptance rate < 10%: {low.tolist()}"
            )

    # Clusters that never received an observation
    z = np.asarray(states.z)
    n_clusters = states.mu.shape[1]
    occupied = np.zeros(n_clusters, dtype=bool)
    occupied[np.unique(z)] = True
    if not np.all(occupied):
        diagnostics['warnings'].append(
            f"{np.sum(~occupied)} cluster(s) were never occupied: "
            f"{np.flatnonzero(~occupied).tolist()}"
        )

    diagnostics['info'].append(f"Iterations stored: {z.shape[0]}")
    diagnostics['info'].append(f"Number of clusters: {n_clusters}")
    diagnostics['info'].append(f"Number of observations: {z.shape[1]}")

    return diagnostics


def log_diagnostics(diagnostics: Dict[str, Any]) -> None:
    """Report diagnostics from diagnose_sampler_issues through the package logger."""
    if diagnostics['issues']:
        logger.error("[ERROR] ISSUES:")
        for issue in diagnostics['issues']:
            logger.error(f"  - {issue}")

    if diagnostics['warnings']:
        logger.warning("[WARN] WARNINGS:")
        for warning in diagnostics['warnings']:
            logger.warning(f"  - {warning}")

    if diagnostics['info']:
        logger.info("[INFO] INFO:")
        for info in diagnostics['info']:
            logger.info(f"  - {info}")

    if not diagnostics['issues'] and not diagnostics['warnings']:
        logger.info("[OK] No issues detected")
