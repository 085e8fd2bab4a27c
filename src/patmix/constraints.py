"""
Class Constraint Tables

A constraint table has one row per candidate latent class and one column per
condition. Each entry says whether the class mean in that condition is
structurally zero or free, optionally with a sign restriction.

Tables are produced upstream (by the enumeration of candidate association
patterns) and are consumed read-only by the sampler. They are stored as
plain integer arrays of Constraint values so they can be shipped to JAX as
masks without any per-entry type inspection.
"""

from enum import IntEnum

import numpy as np

from .error_handling import raise_collected


# ============================================================================
# CONSTRAINT ENUMERATION
# ============================================================================

class Constraint(IntEnum):
    """
    Per-(class, condition) restriction on a cluster mean.

    ZERO dimensions are never perturbed by proposals. NONNEGATIVE and
    NONPOSITIVE dimensions are free but proposals with the wrong sign are
    rejected outright.
    """
    ZERO = 0
    FREE = 1
    NONNEGATIVE = 2
    NONPOSITIVE = 3

    def __str__(self):
        return self.name.replace('_', ' ').title()


# Association pattern codes used by the candidate-class enumeration
PATTERN_TO_CONSTRAINT = {
    -1: Constraint.NONPOSITIVE,
    0: Constraint.ZERO,
    1: Constraint.NONNEGATIVE,
}


def validate_constraint_table(table) -> np.ndarray:
    """
    Validate a constraint table and return it as an int array.

    Args:
        table: (M, D) array-like of Constraint values (or their ints)

    Returns:
        (M, D) int32 array

    Raises:
        InvalidInputError: empty table, wrong rank, unknown codes or
            duplicate rows
    """
    arr = np.asarray(table)
    errors = []

    if arr.ndim != 2:
        raise_collected([f"constraint table must be 2-D, got shape {arr.shape}"],
                        "Invalid constraint table")
    if arr.shape[0] == 0:
        errors.append("constraint table has zero rows")
    if arr.shape[1] == 0:
        errors.append("constraint table has zero columns")
    raise_collected(errors, "Invalid constraint table")

    valid_codes = {int(c) for c in Constraint}
    if not np.issubdtype(arr.dtype, np.integer):
        if not np.all(np.isin(arr, list(valid_codes))):
            errors.append("constraint table contains non-integer codes")
            raise_collected(errors, "Invalid constraint table")
    arr = arr.astype(np.int32)

    bad = ~np.isin(arr, list(valid_codes))
    if np.any(bad):
        errors.append(f"unknown constraint codes: {sorted(set(arr[bad].tolist()))}")

    _, first_idx, counts = np.unique(arr, axis=0, return_index=True, return_counts=True)
    if np.any(counts > 1):
        dup_rows = sorted(first_idx[counts > 1].tolist())
        errors.append(f"duplicate class rows (first occurrences): {dup_rows}")

    raise_collected(errors, "Invalid constraint table")
    return arr


def constraints_from_patterns(patterns) -> np.ndarray:
    """
    Convert a {-1, 0, 1} association-pattern matrix into a constraint table.

    -1 means negatively associated (mean <= 0), 0 means null (mean == 0),
    1 means positively associated (mean >= 0).
    """
    pat = np.asarray(patterns)
    if pat.ndim != 2:
        raise_collected([f"pattern matrix must be 2-D, got shape {pat.shape}"],
                        "Invalid association patterns")
    unknown = set(np.unique(pat).tolist()) - set(PATTERN_TO_CONSTRAINT)
    if unknown:
        raise_collected([f"unknown pattern codes: {sorted(unknown)}"],
                        "Invalid association patterns")

    table = np.empty(pat.shape, dtype=np.int32)
    for code, constraint in PATTERN_TO_CONSTRAINT.items():
        table[pat == code] = int(constraint)
    return validate_constraint_table(table)


def free_mask(table) -> np.ndarray:
    """1.0 where the class mean is free to move, 0.0 where it is fixed at zero."""
    return (np.asarray(table) != Constraint.ZERO).astype(np.float64)


def sign_matrix(table) -> np.ndarray:
    """+1 for NONNEGATIVE, -1 for NONPOSITIVE, 0 for unrestricted or zero entries."""
    table = np.asarray(table)
    sign = np.zeros(table.shape, dtype=np.float64)
    sign[table == Constraint.NONNEGATIVE] = 1.0
    sign[table == Constraint.NONPOSITIVE] = -1.0
    return sign


def null_rows(table) -> np.ndarray:
    """Boolean mask of null classes (every condition ZERO)."""
    return np.all(np.asarray(table) == Constraint.ZERO, axis=1)


def satisfies_constraints(mu, table) -> bool:
    """Check a mean matrix (M, D) against a constraint table."""
    mu = np.asarray(mu)
    table = np.asarray(table)
    zero_ok = np.all(mu[table == Constraint.ZERO] == 0.0)
    nonneg_ok = np.all(mu[table == Constraint.NONNEGATIVE] >= 0.0)
    nonpos_ok = np.all(mu[table == Constraint.NONPOSITIVE] <= 0.0)
    return bool(zero_ok and nonneg_ok and nonpos_ok)
