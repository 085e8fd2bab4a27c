"""
MCMC Sampling Functions.

Core sampling functions for the mixture sampler:
- update_labels: Gibbs draw of every observation's latent class
- update_proportions: Conjugate Dirichlet draw of the mixing proportions
- propose_cluster: Constrained symmetric random-walk proposal for (mu, Sigma)
- metropolis_cluster_step: Metropolis-Hastings step for a single cluster
- adapt_log_scale: Robbins-Monro update of the per-cluster proposal scale
- gibbs_iteration: One full iteration over labels, proportions and clusters
"""

import jax
import jax.numpy as jnp
import jax.random as random

from .densities import safe_cholesky, log_mvn_density, cluster_log_posterior
from .types import ChainState, ClusterPrior, ModelArrays, RunParams


def update_labels(key, x, mu, sigma, prop):
    """
    Draw a class label for every observation.

    Weight of class k for observation j is prop_k * N(x_j | mu_k, Sigma_k),
    normalised over k in log space. Rows where no class has a finite weight
    fall back to a uniform draw.

    Args:
        key: JAX random key
        x: (n, D) observations
        mu: (M, D) cluster means
        sigma: (M, D, D) cluster covariances
        prop: (M,) mixing proportions

    Returns:
        z: (n,) int32 labels in [0, M)
    """
    chol, ok = jax.vmap(safe_cholesky)(sigma)
    log_dens = jax.vmap(lambda m, L: log_mvn_density(x, m, L))(mu, chol)  # (M, n)
    log_dens = jnp.where(ok[:, None], log_dens, -jnp.inf)

    logits = (jnp.log(prop)[:, None] + log_dens).T  # (n, M)
    logits = jnp.where(jnp.isnan(logits), -jnp.inf, logits)

    degenerate = ~jnp.any(jnp.isfinite(logits), axis=1)
    logits = jnp.where(degenerate[:, None], 0.0, logits)

    return random.categorical(key, logits, axis=-1).astype(jnp.int32)


def update_proportions(key, z, alpha, prop, n_clusters):
    """
    Draw prop ~ Dirichlet(alpha + counts(z)).

    A non-finite draw (all gamma variates underflowing) keeps the previous
    proportions.

    Returns:
        new_prop: (M,) proportions on the simplex
        counts: (M,) occupancy of each class
    """
    counts = jnp.bincount(z, length=n_clusters)
    draw = random.dirichlet(key, alpha + counts, dtype=prop.dtype)
    total = jnp.sum(draw)
    ok = jnp.all(jnp.isfinite(draw)) & (total > 0)
    new_prop = jnp.where(ok, draw / jnp.where(ok, total, 1.0), prop)
    return new_prop, counts


def propose_cluster(key, mu, sigma, log_scale, prior: ClusterPrior, step_sd):
    """
    Symmetric joint random walk on (mu, Sigma).

    mu'    = mu + s * step_sd * eps * free          eps ~ N(0, I)
    Sigma' = Sigma + s * (step_sd step_sd^T) * E    E symmetric, E_jk ~ N(0, 1)

    ZERO dimensions are never perturbed. The increments do not depend on the
    current state, so q(x'|x) = q(x|x') and the Hastings ratio is 0.
    Sign constraints and positive-definiteness are enforced by the caller.
    """
    mu_key, sigma_key = random.split(key)
    scale = jnp.exp(log_scale)

    eps = random.normal(mu_key, mu.shape, dtype=mu.dtype)
    mu_prop = mu + scale * step_sd * eps * prior.free

    A = random.normal(sigma_key, sigma.shape, dtype=sigma.dtype)
    E = jnp.triu(A) + jnp.triu(A, 1).T
    sigma_prop = sigma + scale * jnp.outer(step_sd, step_sd) * E

    return mu_prop, sigma_prop


def metropolis_cluster_step(key, mu, sigma, log_scale, x, weights, prior: ClusterPrior, step_sd):
    """
    Perform one Metropolis-Hastings step for a single cluster.

    Target is the likelihood of the observations selected by `weights` times
    the restricted NIW prior. With all weights zero (empty cluster) the chain
    moves under the prior alone.

    Args:
        key: JAX random key
        mu: (D,) current mean
        sigma: (D, D) current covariance
        log_scale: Scalar log proposal scale
        x: (n, D) observations
        weights: (n,) 1.0 for observations currently in this cluster
        prior: ClusterPrior for this cluster (no leading M axis)
        step_sd: (D,) reference proposal scale of this cluster

    Returns:
        mu, sigma: Next state (unchanged on rejection)
        accepted: 1.0 if the proposal was accepted, else 0.0
    """
    proposal_key, accept_key = random.split(key)
    mu_prop, sigma_prop = propose_cluster(proposal_key, mu, sigma, log_scale, prior, step_sd)

    lp_current = cluster_log_posterior(mu, sigma, x, weights, prior)
    lp_proposed = cluster_log_posterior(mu_prop, sigma_prop, x, weights, prior)

    safe_lp_current = jnp.nan_to_num(lp_current, nan=-jnp.inf, posinf=-jnp.inf, neginf=-jnp.inf)
    safe_lp_proposed = jnp.nan_to_num(lp_proposed, nan=-jnp.inf, posinf=-jnp.inf, neginf=-jnp.inf)

    # Symmetric proposal: no Hastings correction
    log_ratio = jnp.nan_to_num(safe_lp_proposed - safe_lp_current, nan=-jnp.inf)

    log_uniform = jnp.log(random.uniform(accept_key, shape=(), dtype=mu.dtype))
    accept = log_uniform < log_ratio

    next_mu = jnp.where(accept, mu_prop, mu)
    next_sigma = jnp.where(accept, sigma_prop, sigma)
    return next_mu, next_sigma, accept.astype(mu.dtype)


def adapt_log_scale(log_scale, accept_buf, accepted, step, run_params: RunParams):
    """
    Robbins-Monro update of the proposal scale toward the target acceptance rate.

    The acceptance rate is measured over a trailing window of accept
    indicators. The step size decays as adapt_rate / sqrt(step), so the
    adaptation vanishes and the scale stabilises.

    Args:
        log_scale: (M,) current log proposal scale
        accept_buf: (M, window) ring buffer of accept indicators
        accepted: (M,) indicators from this iteration
        step: 1-based iteration number
        run_params: RunParams with TARGET_ACCEPT, ADAPT_RATE and scale bounds

    Returns:
        log_scale, accept_buf, rate: Updated scale, buffer and window rate
    """
    window = accept_buf.shape[-1]
    slot = (step - 1) % window
    accept_buf = accept_buf.at[:, slot].set(accepted)

    n_filled = jnp.minimum(step, window).astype(log_scale.dtype)
    rate = jnp.sum(accept_buf, axis=-1) / n_filled

    gamma = run_params.ADAPT_RATE / jnp.sqrt(jnp.asarray(step, dtype=log_scale.dtype))
    log_scale = jnp.clip(log_scale + gamma * (rate - run_params.TARGET_ACCEPT),
                         run_params.MIN_LOG_SCALE, run_params.MAX_LOG_SCALE)
    return log_scale, accept_buf, rate


def gibbs_iteration(key, state: ChainState, step, model: ModelArrays, run_params: RunParams):
    """
    Run one full iteration: labels, proportions, per-cluster MH, adaptation.

    Given the labels, clusters are conditionally independent, so the
    per-cluster Metropolis steps are vmapped with independent keys.

    Returns:
        new_state: ChainState after the iteration
        accepted: (M,) accept indicators of the cluster steps
    """
    label_key, prop_key, mh_key = random.split(key, 3)

    z = update_labels(label_key, model.x, state.mu, state.sigma, state.prop)
    prop, _ = update_proportions(prop_key, z, model.alpha, state.prop, model.n_clusters)

    weights = (z[None, :] == jnp.arange(model.n_clusters)[:, None]).astype(model.x.dtype)
    cluster_keys = random.split(mh_key, model.n_clusters)

    mu, sigma, accepted = jax.vmap(
        metropolis_cluster_step,
        in_axes=(0, 0, 0, 0, None, 0, 0, 0),
    )(cluster_keys, state.mu, state.sigma, state.log_scale, model.x, weights,
      model.prior, model.step_sd)

    log_scale, accept_buf, rate = adapt_log_scale(
        state.log_scale, state.accept_buf, accepted, step, run_params
    )

    new_state = ChainState(
        mu=mu,
        sigma=sigma,
        prop=prop,
        z=z,
        log_scale=log_scale,
        accept_buf=accept_buf,
        accept_rate=rate,
    )
    return new_state, accepted
