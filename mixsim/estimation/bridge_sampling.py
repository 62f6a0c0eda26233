"""
Bridge Sampling for Marginal Likelihoods
========================================

Estimates log p(y) of a Bayesian model from its posterior draws with the
iterative bridge sampler of Meng & Wong (1996), using a multivariate
normal proposal as in Gronau et al. (2017):

1. Split posterior draws in two halves
2. Fit the normal proposal g on the first half, draw N2 samples from g
3. l1 = log q(θ) - log g(θ) on the second half of posterior draws
   l2 = log q(θ) - log g(θ) on the proposal draws
4. Iterate  r <- mean(exp(l2) / (s1 exp(l2) + s2 r)) / mean(1 / (s1 exp(l1) + s2 r))
   until the relative change in r falls below tol

q is the unnormalized posterior on the unconstrained parameter space
(log prior + log likelihood + log Jacobian). All arithmetic runs in log
space to stay finite for models with many parameters.

References:
- Meng, X.-L. & Wong, W.H. (1996). Simulating ratios of normalizing
  constants via a simple identity. Statistica Sinica, 6, 831-860.
- Gronau, Q.F. et al. (2017). A tutorial on bridge sampling. Journal of
  Mathematical Psychology, 81, 80-97.
"""

from dataclasses import dataclass
from typing import Callable, Dict, List, Optional, Tuple

import numpy as np
from scipy import stats
from scipy.special import logsumexp

from mixsim import constants as C
from mixsim.utils.logging_config import get_logger

logger = get_logger(__name__)


@dataclass
class BridgeResult:
    """Outcome of one bridge sampling run."""
    logml: float
    niter: int
    converged: bool
    n_posterior: int
    n_proposal: int


def _evaluate(log_posterior: Callable[[np.ndarray], float], draws: np.ndarray) -> np.ndarray:
    return np.array([log_posterior(row) for row in draws], dtype=float)


def bridge_sampler(samples: np.ndarray,
                   log_posterior: Callable[[np.ndarray], float],
                   rng: Optional[np.random.Generator] = None,
                   maxiter: int = C.BRIDGE_MAXITER,
                   tol: float = C.BRIDGE_TOL) -> BridgeResult:
    """
    Estimate the log marginal likelihood from posterior draws.

    Args:
        samples: Posterior draws on the unconstrained space, shape (n, d)
        log_posterior: Unnormalized log posterior density of one row
        rng: Generator for the proposal draws
        maxiter: Maximum fixed-point iterations
        tol: Relative tolerance on the bridge estimate

    Returns:
        BridgeResult with logml (nan when no finite estimate exists)

    Raises:
        ValueError: If fewer than 4 draws are provided
    """
    samples = np.asarray(samples, dtype=float)
    if samples.ndim == 1:
        samples = samples.reshape(-1, 1)
    n, d = samples.shape
    if n < 4:
        raise ValueError(f"Bridge sampling needs at least 4 posterior draws (got {n})")

    rng = rng if rng is not None else np.random.default_rng()

    # Shuffle before splitting so chain order does not bias either half
    samples = samples[rng.permutation(n)]
    fit_half = samples[: n // 2]
    iter_half = samples[n // 2:]

    mean = fit_half.mean(axis=0)
    cov = np.atleast_2d(np.cov(fit_half, rowvar=False))
    # Ridge keeps the proposal proper for nearly constant coordinates
    cov = cov + np.eye(d) * 1e-10 * max(1.0, float(np.trace(cov)) / d)
    proposal = stats.multivariate_normal(mean=mean, cov=cov, allow_singular=False)

    n1 = iter_half.shape[0]
    n2 = n1
    proposal_draws = np.asarray(proposal.rvs(size=n2, random_state=rng)).reshape(n2, d)

    l1 = _evaluate(log_posterior, iter_half) - np.atleast_1d(proposal.logpdf(iter_half))
    l2 = _evaluate(log_posterior, proposal_draws) - np.atleast_1d(proposal.logpdf(proposal_draws))

    # Proposal draws far outside the posterior support evaluate to -inf
    l1 = np.where(np.isnan(l1), -np.inf, l1)
    l2 = np.where(np.isnan(l2), -np.inf, l2)
    if not np.isfinite(l1).any():
        logger.warning("Bridge sampling: no finite log posterior at posterior draws")
        return BridgeResult(np.nan, 0, False, n1, n2)

    lstar = float(np.median(l1[np.isfinite(l1)]))
    log_s1 = np.log(n1 / (n1 + n2))
    log_s2 = np.log(n2 / (n1 + n2))
    a1 = l1 - lstar
    a2 = l2 - lstar

    log_r = 0.0
    converged = False
    niter = 0
    for niter in range(1, maxiter + 1):
        log_num = a2 - np.logaddexp(log_s1 + a2, log_s2 + log_r)
        log_den = -np.logaddexp(log_s1 + a1, log_s2 + log_r)
        new_log_r = (logsumexp(log_num) - np.log(n2)) - (logsumexp(log_den) - np.log(n1))

        if not np.isfinite(new_log_r):
            logger.warning("Bridge sampling: estimate became non-finite")
            return BridgeResult(np.nan, niter, False, n1, n2)

        # |r_new - r_old| / r_new, evaluated without leaving log space
        change = abs(np.expm1(log_r - new_log_r))
        log_r = float(new_log_r)
        if change < tol:
            converged = True
            break

    if not converged:
        logger.warning(f"Bridge sampling did not converge in {maxiter} iterations")

    return BridgeResult(
        logml=log_r + lstar,
        niter=niter,
        converged=converged,
        n_posterior=n1,
        n_proposal=n2,
    )


# =============================================================================
# PyMC INTEGRATION
# =============================================================================

def stack_unconstrained_draws(model, idata) -> Tuple[np.ndarray, List[Tuple[str, Tuple[int, ...]]]]:
    """
    Collect posterior draws of a PyMC model's value variables as a matrix.

    Value variables are the unconstrained parameters the sampler moves in
    (e.g. ``sigma_log__``); they must be stored in the posterior group
    (``include_transformed=True``).

    Returns:
        (draws of shape (n_draws, d), [(name, shape), ...] for unpacking)
    """
    posterior = idata.posterior
    blocks = []
    layout = []
    for value_var in model.value_vars:
        name = value_var.name
        if name not in posterior:
            raise KeyError(f"Posterior lacks unconstrained draws for {name!r}; "
                           f"sample with include_transformed=True")
        values = posterior[name].values  # (chain, draw, *shape)
        shape = tuple(values.shape[2:])
        blocks.append(values.reshape(values.shape[0] * values.shape[1], -1))
        layout.append((name, shape))
    return np.hstack(blocks), layout


def unpack_point(row: np.ndarray, layout: List[Tuple[str, Tuple[int, ...]]]) -> Dict[str, np.ndarray]:
    """Turn one stacked row back into a {value_var_name: array} point."""
    point = {}
    offset = 0
    for name, shape in layout:
        size = int(np.prod(shape)) if shape else 1
        point[name] = row[offset: offset + size].reshape(shape)
        offset += size
    return point


def log_marginal_likelihood(fit,
                            rng: Optional[np.random.Generator] = None,
                            maxiter: int = C.BRIDGE_MAXITER,
                            tol: float = C.BRIDGE_TOL) -> BridgeResult:
    """
    Bridge-sample the log marginal likelihood of a BayesianFit.

    Args:
        fit: BayesianFit with a PyMC model and transformed posterior draws
        rng: Generator for proposal draws
        maxiter: Maximum bridge iterations
        tol: Relative tolerance

    Returns:
        BridgeResult
    """
    model = fit.model
    draws, layout = stack_unconstrained_draws(model, fit.idata)
    # Log joint density incl. Jacobian of the unconstraining transforms
    logp_fn = model.compile_logp(jacobian=True)

    def log_posterior(row: np.ndarray) -> float:
        return float(logp_fn(unpack_point(row, layout)))

    return bridge_sampler(draws, log_posterior, rng=rng, maxiter=maxiter, tol=tol)
