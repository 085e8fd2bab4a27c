"""
Log-space densities for the constrained mixture.

Everything is evaluated through Cholesky factors. A covariance whose
factorisation fails (NaN or non-positive diagonal) is reported through an
`ok` flag instead of an exception, so callers can turn it into a Metropolis
rejection.

Functions:
    safe_cholesky: Cholesky factor plus positive-definiteness flag
    log_mvn_density: Multivariate normal log density for rows of x
    log_inv_wishart_density: Inverse-Wishart log density
    log_mean_prior: Normal prior on the free coordinates of a cluster mean
    constraint_violated: Sign / structural-zero check for a cluster mean
    cluster_log_prior: Restricted NIW log prior for one cluster
    cluster_log_likelihood: Weighted data log likelihood for one cluster
    cluster_log_posterior: Sum of the two, -inf when the covariance is not SPD
"""

import jax.numpy as jnp
import jax.scipy.linalg
from jax.scipy.special import multigammaln

from .types import ClusterPrior


LOG_2PI = jnp.log(2.0 * jnp.pi)


def safe_cholesky(sigma):
    """
    Lower Cholesky factor of sigma with a positive-definiteness flag.

    Returns:
        L: Cholesky factor, replaced by the identity when the factorisation fails
        ok: Boolean scalar, True if sigma is numerically SPD
    """
    L = jnp.linalg.cholesky(sigma)
    ok = jnp.all(jnp.isfinite(L)) & jnp.all(jnp.diagonal(L) > 0)
    eye = jnp.eye(sigma.shape[-1], dtype=sigma.dtype)
    return jnp.where(ok, L, eye), ok


def log_mvn_density(x, mean, L):
    """
    Log density of N(mean, L L^T) at each row of x.

    Args:
        x: (n, D) or (D,) points
        mean: (D,)
        L: (D, D) lower Cholesky factor

    Returns:
        (n,) log densities (scalar if x is 1-D)
    """
    dim = mean.shape[-1]
    diff = x - mean
    y = jax.scipy.linalg.solve_triangular(L, diff.T, lower=True)
    log_det = 2.0 * jnp.sum(jnp.log(jnp.diagonal(L)))
    return -0.5 * (dim * LOG_2PI + log_det + jnp.sum(y ** 2, axis=0))


def log_inv_wishart_density(L_sigma, psi, nu):
    """
    Inverse-Wishart log density of Sigma = L_sigma L_sigma^T.

    log p = nu/2 log|psi| - nu D/2 log 2 - log Gamma_D(nu/2)
            - (nu + D + 1)/2 log|Sigma| - 1/2 tr(psi Sigma^-1)
    """
    dim = psi.shape[-1]
    L_psi = jnp.linalg.cholesky(psi)
    log_det_psi = 2.0 * jnp.sum(jnp.log(jnp.diagonal(L_psi)))
    log_det_sigma = 2.0 * jnp.sum(jnp.log(jnp.diagonal(L_sigma)))

    # tr(psi Sigma^-1) = ||L_sigma^-1 L_psi||_F^2
    A = jax.scipy.linalg.solve_triangular(L_sigma, L_psi, lower=True)
    trace_term = jnp.sum(A ** 2)

    return (0.5 * nu * log_det_psi
            - 0.5 * nu * dim * jnp.log(2.0)
            - multigammaln(0.5 * nu, dim)
            - 0.5 * (nu + dim + 1.0) * log_det_sigma
            - 0.5 * trace_term)


def log_mean_prior(mu, sigma, free, mu0, kappa0):
    """
    Log density of mu[F] ~ N(mu0[F], Sigma[F, F] / kappa0) over the free dims F.

    Fixed dimensions are masked out by replacing their rows/columns of Sigma
    with the identity and zeroing their residuals, so they contribute nothing.
    """
    dim = sigma.shape[-1]
    eye = jnp.eye(dim, dtype=sigma.dtype)
    free_2d = jnp.outer(free, free) > 0
    sigma_free = jnp.where(free_2d, sigma, eye)
    L, _ = safe_cholesky(sigma_free)

    diff = (mu - mu0) * free
    y = jax.scipy.linalg.solve_triangular(L, diff, lower=True)
    n_free = jnp.sum(free)
    log_det = 2.0 * jnp.sum(jnp.log(jnp.diagonal(L)))

    return -0.5 * (n_free * (LOG_2PI - jnp.log(kappa0)) + log_det + kappa0 * jnp.sum(y ** 2))


def constraint_violated(mu, free, sign):
    """True if mu leaves the region allowed by its constraint row."""
    wrong_sign = ((sign > 0) & (mu < 0)) | ((sign < 0) & (mu > 0))
    nonzero_fixed = (free == 0) & (mu != 0)
    return jnp.any(wrong_sign | nonzero_fixed)


def cluster_log_prior(mu, sigma, L_sigma, prior: ClusterPrior):
    """Restricted NIW log prior for a single cluster (prior leaves without the M axis)."""
    lp = (log_inv_wishart_density(L_sigma, prior.psi, prior.nu0)
          + log_mean_prior(mu, sigma, prior.free, prior.mu0, prior.kappa0))
    return jnp.where(constraint_violated(mu, prior.free, prior.sign), -jnp.inf, lp)


def cluster_log_likelihood(mu, L_sigma, x, weights):
    """Sum of weights * log N(x_j | mu, Sigma); weights select the cluster's members."""
    return jnp.sum(weights * log_mvn_density(x, mu, L_sigma))


def cluster_log_posterior(mu, sigma, x, weights, prior: ClusterPrior):
    """
    Unnormalised log posterior of (mu, Sigma) for one cluster.

    Returns -inf if Sigma is not positive-definite or mu violates its
    constraints.
    """
    L, ok = safe_cholesky(sigma)
    lp = cluster_log_likelihood(mu, L, x, weights) + cluster_log_prior(mu, sigma, L, prior)
    return jnp.where(ok, lp, -jnp.inf)
