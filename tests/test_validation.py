"""
Tests for input validation: constraint tables, hyperparameters and sampler config.

Run with: pytest tests/test_validation.py -v
"""

import json

import numpy as np
import pytest

from patmix.constraints import (
    Constraint,
    constraints_from_patterns,
    free_mask,
    null_rows,
    satisfies_constraints,
    sign_matrix,
    validate_constraint_table,
)
from patmix.error_handling import InvalidInputError, PatmixError, validate_mcmc_config
from patmix.hyperparameters import Hyperparameters, load_hyperparameters, save_hyperparameters
from patmix.mcmc.config import clean_config, configure_sampler


# ============================================================================
# CONSTRAINT TABLES
# ============================================================================

class TestConstraintTable:
    """Tests for constraint table validation and helpers."""

    def test_patterns_map_to_constraints(self):
        """-1/0/1 patterns become NONPOSITIVE/ZERO/NONNEGATIVE."""
        table = constraints_from_patterns([[1, -1, 0], [0, 0, 0]])
        assert table.dtype == np.int32
        assert table[0, 0] == Constraint.NONNEGATIVE
        assert table[0, 1] == Constraint.NONPOSITIVE
        assert table[0, 2] == Constraint.ZERO
        np.testing.assert_array_equal(null_rows(table), [False, True])

    def test_unknown_pattern_code_rejected(self):
        with pytest.raises(InvalidInputError, match="unknown pattern codes"):
            constraints_from_patterns([[2, 0]])

    def test_empty_table_rejected(self):
        with pytest.raises(InvalidInputError, match="zero rows"):
            validate_constraint_table(np.zeros((0, 3), dtype=int))

    def test_wrong_rank_rejected(self):
        with pytest.raises(InvalidInputError, match="2-D"):
            validate_constraint_table([0, 1, 2])

    def test_duplicate_rows_rejected(self):
        """Duplicate rows would make two clusters indistinguishable."""
        table = [[Constraint.FREE, Constraint.ZERO],
                 [Constraint.ZERO, Constraint.ZERO],
                 [Constraint.FREE, Constraint.ZERO]]
        with pytest.raises(InvalidInputError, match="duplicate"):
            validate_constraint_table(table)

    def test_unknown_code_rejected(self):
        with pytest.raises(InvalidInputError, match="unknown constraint codes"):
            validate_constraint_table([[0, 7]])

    def test_masks(self):
        table = np.array([[Constraint.FREE, Constraint.NONNEGATIVE,
                           Constraint.NONPOSITIVE, Constraint.ZERO]])
        np.testing.assert_array_equal(free_mask(table), [[1.0, 1.0, 1.0, 0.0]])
        np.testing.assert_array_equal(sign_matrix(table), [[0.0, 1.0, -1.0, 0.0]])

    def test_satisfies_constraints(self):
        table = constraints_from_patterns([[1, -1, 0]])
        assert satisfies_constraints([[0.5, -0.5, 0.0]], table)
        assert not satisfies_constraints([[-0.5, -0.5, 0.0]], table)
        assert not satisfies_constraints([[0.5, -0.5, 1e-12]], table)

    def test_errors_are_value_errors(self):
        """Configuration problems surface as ValueError subclasses."""
        assert issubclass(InvalidInputError, PatmixError)
        assert issubclass(InvalidInputError, ValueError)


# ============================================================================
# HYPERPARAMETERS
# ============================================================================

class TestHyperparameters:
    """Tests for Hyperparameters validation and persistence."""

    def test_valid_hyperparameters_pass(self, hyperparameter_factory):
        hyp = hyperparameter_factory([[1, 0], [0, 0]])
        hyp.validate(2, 2)
        assert hyp.n_clusters == 2
        assert hyp.n_dims == 2

    def test_non_pd_psi_rejected(self, hyperparameter_factory):
        hyp = hyperparameter_factory([[1, 0], [0, 0]])
        psi = hyp.psi.copy()
        psi[1] = np.array([[1.0, 2.0], [2.0, 1.0]])
        bad = Hyperparameters(mu0=hyp.mu0, kappa0=hyp.kappa0, psi=psi, nu0=hyp.nu0, alpha=hyp.alpha)
        with pytest.raises(InvalidInputError, match=r"psi\[1\] is not positive-definite"):
            bad.validate(2, 2)

    def test_all_problems_reported(self, hyperparameter_factory):
        """Every problem is listed in one error."""
        hyp = hyperparameter_factory([[1, 0], [0, 0]])
        bad = Hyperparameters(mu0=hyp.mu0, kappa0=[-1.0, 1.0], psi=hyp.psi,
                              nu0=[0.5, 0.5], alpha=[0.0, 1.0])
        with pytest.raises(InvalidInputError) as excinfo:
            bad.validate(2, 2)
        message = str(excinfo.value)
        assert "kappa0" in message
        assert "alpha" in message
        assert "nu0" in message

    def test_shape_mismatch_rejected(self, hyperparameter_factory):
        hyp = hyperparameter_factory([[1, 0], [0, 0]])
        with pytest.raises(InvalidInputError, match="expected"):
            hyp.validate(3, 2)

    def test_json_round_trip(self, tmp_path, hyperparameter_factory):
        hyp = hyperparameter_factory([[1, 0, -1], [0, 0, 0]])
        path = save_hyperparameters(tmp_path / "hyp.json", hyp)

        with open(path) as f:
            assert set(json.load(f)) == {'mu0', 'kappa0', 'psi', 'nu0', 'alpha'}

        loaded = load_hyperparameters(path)
        for name in ('mu0', 'kappa0', 'psi', 'nu0', 'alpha'):
            np.testing.assert_array_equal(getattr(loaded, name), getattr(hyp, name))

    def test_load_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_hyperparameters(tmp_path / "missing.json")


# ============================================================================
# SAMPLER CONFIGURATION
# ============================================================================

class TestSamplerConfig:
    """Tests for config defaults and input validation before sampling."""

    def test_clean_config_defaults(self):
        config = clean_config({})
        assert config['rng_seed'] == 42
        assert config['target_accept'] == 0.3
        assert config['adapt_window'] == 50
        assert config['use_double'] is True

    def test_clean_config_keeps_user_values(self):
        config = clean_config({'adapt_window': 20})
        assert config['adapt_window'] == 20

    @pytest.mark.parametrize("key,value", [
        ('target_accept', 1.5),
        ('adapt_window', 0),
        ('adapt_rate', -1.0),
        ('use_double', 'yes'),
    ])
    def test_bad_config_values(self, key, value):
        config = clean_config({key: value})
        with pytest.raises(InvalidInputError):
            validate_mcmc_config(config)

    @pytest.mark.parametrize("key,value", [
        ('adapt_window', 'a'),
        ('min_scale', [1e-6]),
        ('target_accept', True),
    ])
    def test_non_numeric_config_values(self, key, value):
        """Wrong value types are reported, not raised as TypeError."""
        config = clean_config({key: value})
        with pytest.raises(InvalidInputError, match=f"{key} must be a number"):
            validate_mcmc_config(config)

    def test_configure_sampler_builds_model(self, small_problem):
        x, table, hyp = small_problem
        model, run_params, user_config = configure_sampler(x, hyp, 10, table, {})

        assert model.n_obs == x.shape[0]
        assert model.n_dims == 2
        assert model.n_clusters == 3
        assert model.step_sd.shape == (3, 2)
        # ZERO dims of the prior mean are forced to zero
        assert float(model.prior.mu0[1, 0]) == 0.0
        assert run_params.ADAPT_WINDOW == 50
        assert user_config['nstep'] == 10
        assert user_config['constraints'] == table.tolist()

    def test_run_params_hashable(self, small_problem):
        """RunParams is a static JIT argument."""
        x, table, hyp = small_problem
        _, run_params, _ = configure_sampler(x, hyp, 10, table, {})
        hash(run_params)

    @pytest.mark.parametrize("nstep", [0, -5, 2.5])
    def test_bad_nstep(self, small_problem, nstep):
        x, table, hyp = small_problem
        with pytest.raises(InvalidInputError, match="nstep"):
            configure_sampler(x, hyp, nstep, table, {})

    def test_dimension_mismatch(self, small_problem):
        x, table, hyp = small_problem
        with pytest.raises(InvalidInputError, match="columns"):
            configure_sampler(np.hstack([x, x[:, :1]]), hyp, 10, table, {})

    def test_too_few_observations(self, small_problem):
        x, table, hyp = small_problem
        with pytest.raises(InvalidInputError, match="fewer than"):
            configure_sampler(x[:2], hyp, 10, table, {})

    def test_cluster_count_mismatch(self, small_problem, hyperparameter_factory):
        x, table, _ = small_problem
        hyp = hyperparameter_factory([[1, 0], [0, 0]])
        with pytest.raises(InvalidInputError, match="clusters"):
            configure_sampler(x, hyp, 10, table, {})

    def test_non_finite_data(self, small_problem):
        x, table, hyp = small_problem
        x = x.copy()
        x[0, 0] = np.nan
        with pytest.raises(InvalidInputError, match="NaN"):
            configure_sampler(x, hyp, 10, table, {})
