"""
Prior hyperparameters for the constrained mixture.

For cluster i the prior is normal-inverse-Wishart restricted to the region
allowed by its constraint row:

    Sigma_i            ~ InvWishart(psi[i], nu0[i])
    mu_i[F] | Sigma_i  ~ N(mu0[i, F], Sigma_i[F, F] / kappa0[i])   (F = free dims)
    mu_i[d]            = 0                                          (ZERO dims)
    pi                 ~ Dirichlet(alpha)

Hyperparameters are derived upstream and treated here as opaque, validated
inputs. save/load helpers write JSON so analysis code can inspect priors
without importing JAX.
"""

import json
from dataclasses import dataclass
from pathlib import Path

import numpy as np

from .error_handling import raise_collected


@dataclass(frozen=True)
class Hyperparameters:
    """Per-cluster NIW prior plus Dirichlet concentration."""
    mu0: np.ndarray     # (M, D) prior mean
    kappa0: np.ndarray  # (M,) prior precision multiplier for the mean
    psi: np.ndarray     # (M, D, D) inverse-Wishart scale matrices
    nu0: np.ndarray     # (M,) inverse-Wishart degrees of freedom
    alpha: np.ndarray   # (M,) Dirichlet concentration

    def __post_init__(self):
        # Normalise to float arrays; frozen dataclass needs object.__setattr__
        object.__setattr__(self, 'mu0', np.asarray(self.mu0, dtype=np.float64))
        object.__setattr__(self, 'kappa0', np.asarray(self.kappa0, dtype=np.float64).reshape(-1))
        object.__setattr__(self, 'psi', np.asarray(self.psi, dtype=np.float64))
        object.__setattr__(self, 'nu0', np.asarray(self.nu0, dtype=np.float64).reshape(-1))
        object.__setattr__(self, 'alpha', np.asarray(self.alpha, dtype=np.float64).reshape(-1))

    @property
    def n_clusters(self) -> int:
        return self.alpha.shape[0]

    @property
    def n_dims(self) -> int:
        return self.mu0.shape[1] if self.mu0.ndim == 2 else 0

    def validate(self, n_clusters: int, n_dims: int) -> None:
        """
        Check shapes against (M, D) and check every prior is proper.

        Raises:
            InvalidInputError: listing every problem found
        """
        errors = []
        M, D = n_clusters, n_dims

        expected = {
            'mu0': (M, D),
            'kappa0': (M,),
            'psi': (M, D, D),
            'nu0': (M,),
            'alpha': (M,),
        }
        for name, shape in expected.items():
            actual = getattr(self, name).shape
            if actual != shape:
                errors.append(f"{name} has shape {actual}, expected {shape}")
        raise_collected(errors, "Invalid hyperparameters")

        for name in expected:
            if not np.all(np.isfinite(getattr(self, name))):
                errors.append(f"{name} contains NaN or Inf")

        if np.any(self.kappa0 <= 0):
            errors.append("kappa0 must be > 0")
        if np.any(self.alpha <= 0):
            errors.append("alpha must be > 0")
        if np.any(self.nu0 <= D - 1):
            errors.append(f"nu0 must be > D - 1 = {D - 1}")

        for i in range(M):
            if not np.allclose(self.psi[i], self.psi[i].T):
                errors.append(f"psi[{i}] is not symmetric")
                continue
            try:
                np.linalg.cholesky(self.psi[i])
            except np.linalg.LinAlgError:
                errors.append(f"psi[{i}] is not positive-definite")

        raise_collected(errors, "Invalid hyperparameters")

    def to_dict(self) -> dict:
        """JSON-serialisable view."""
        return {
            'mu0': self.mu0.tolist(),
            'kappa0': self.kappa0.tolist(),
            'psi': self.psi.tolist(),
            'nu0': self.nu0.tolist(),
            'alpha': self.alpha.tolist(),
        }

    @classmethod
    def from_dict(cls, d: dict) -> 'Hyperparameters':
        return cls(mu0=d['mu0'], kappa0=d['kappa0'], psi=d['psi'],
                   nu0=d['nu0'], alpha=d['alpha'])


def save_hyperparameters(path, hyperparameters: Hyperparameters) -> str:
    """Write hyperparameters to JSON. Returns the path written."""
    path = Path(path)
    with open(path, 'w') as f:
        json.dump(hyperparameters.to_dict(), f, indent=2)
    return str(path)


def load_hyperparameters(path) -> Hyperparameters:
    """Read hyperparameters written by save_hyperparameters."""
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Hyperparameter file not found: {path}")
    with open(path, 'r') as f:
        return Hyperparameters.from_dict(json.load(f))
