"""
Frequentist Mixed-Model Fitting and Likelihood Ratio Tests
==========================================================

Wraps statsmodels MixedLM for the four study models and compares nested
models with likelihood ratio tests.

Models are estimated by REML. Because the compared models differ in their
fixed effects, the LR statistic uses maximum-likelihood log-likelihoods:
every fit also carries an ML refit's log-likelihood, the same refit that
lme4's anova() performs before comparing models.

    LR = 2 * (LL_full - LL_null) ~ χ²(df)
    df = K_full - K_null

When a random-effect variance sits on zero MixedLM.fit returns an infinite
log-likelihood or raises. Those fits are redone by maximizing the profile
likelihood over a Cholesky factor of the covariance, which reaches the
boundary with a finite log-likelihood, as lme4 does for singular fits.

Usage:
    from mixsim.estimation.frequentist import FrequentistTemplate, likelihood_ratio_test

    full = FrequentistTemplate(ModelSpec.FULL).fit(data)
    null = FrequentistTemplate(ModelSpec.A).fit(data)
    lr = likelihood_ratio_test(null, full)
"""

import math
import warnings
from dataclasses import dataclass
from typing import Any, List, Tuple, Union

import numpy as np
import pandas as pd
from scipy import optimize, stats
import statsmodels.formula.api as smf
from statsmodels.regression.mixed_linear_model import MixedLMParams
from statsmodels.tools.sm_exceptions import ConvergenceWarning

from mixsim import constants as C
from mixsim.estimation.fits import (
    FrequentistFit, FittingFailure,
    CAUSE_NON_CONVERGENCE, CAUSE_NUMERICAL, CAUSE_SINGULAR,
)
from mixsim.estimation.formulas import ModelSpec
from mixsim.utils.logging_config import get_logger

logger = get_logger(__name__)

# Optimizers tried in order by MixedLM.fit
FIT_METHODS = ['lbfgs', 'bfgs', 'powell']


@dataclass
class LRTestResult:
    """Result from a likelihood ratio test."""
    restricted_model: str
    unrestricted_model: str
    lr_statistic: float
    df: int
    p_value: float

    @property
    def significant_05(self) -> bool:
        return self.p_value < 0.05

    def __str__(self) -> str:
        sig = "*" if self.significant_05 else ""
        return (f"LR({self.restricted_model} vs {self.unrestricted_model}): "
                f"χ²={self.lr_statistic:.2f}, df={self.df}, p={self.p_value:.4f}{sig}")


def count_parameters(model) -> int:
    """Fixed effects + random-effect covariance terms + residual variance."""
    return int(model.k_fe + model.k_re2 + model.k_vc + 1)


def is_singular(result, tol: float = C.SINGULAR_TOL) -> bool:
    """
    Boundary check in the spirit of lme4's isSingular().

    The random-effect covariance relative to the residual variance is
    singular when its smallest eigenvalue corresponds to an sd below tol.
    """
    cov_re = np.asarray(result.cov_re, dtype=float)
    if cov_re.size == 0 or not np.isfinite(cov_re).all():
        return True
    relative = cov_re / float(result.scale)
    min_eig = float(np.linalg.eigvalsh(relative).min())
    return math.sqrt(max(min_eig, 0.0)) < tol


def _build_mixedlm(spec: ModelSpec, data: pd.DataFrame):
    return smf.mixedlm(spec.formula, data, groups=data['lab'], re_formula=spec.re_formula)


def _fit_mixedlm(spec: ModelSpec, data: pd.DataFrame, reml: bool) -> Tuple[object, List[str]]:
    """Fit one MixedLM, collecting warnings instead of printing them."""
    model = _build_mixedlm(spec, data)
    with warnings.catch_warnings(record=True) as caught:
        warnings.simplefilter('always')
        result = model.fit(reml=reml, method=FIT_METHODS)
    messages = [str(w.message) for w in caught
                if issubclass(w.category, (ConvergenceWarning, RuntimeWarning, UserWarning))]
    return result, messages


@dataclass
class ProfileFit:
    """
    Maximum of the MixedLM profile likelihood with the random-effect
    covariance allowed onto the boundary.

    Mirrors the MixedLMResults attributes the study reads, so it can stand
    in for one inside a FrequentistFit.
    """
    model: Any
    llf: float
    fe_params: pd.Series
    cov_re: np.ndarray          # absolute scale, like MixedLMResults.cov_re
    scale: float
    converged: bool


def _fit_boundary(spec: ModelSpec, data: pd.DataFrame, reml: bool) -> ProfileFit:
    """
    Maximize the profile log-likelihood over a Cholesky factor of the
    relative random-effect covariance, the parametrization lme4 uses.

    A zero variance is an interior point of the factor space, so the
    optimizer can reach the boundary where MixedLM.fit breaks down (its
    log-determinant of a singular covariance is -inf). The likelihood is
    evaluated at the factor's covariance plus BOUNDARY_FLOOR.
    """
    model = _build_mixedlm(spec, data)
    model.reml = reml
    # loglike counts pseudo-inverse fallbacks here; MixedLM.fit normally sets it
    model._cov_sing = 0

    k_re = model.k_re
    rows, cols = np.tril_indices(k_re)
    no_vcomp = np.empty(0)
    floor = C.BOUNDARY_FLOOR * np.eye(k_re)

    def relative_cov(theta):
        factor = np.zeros((k_re, k_re))
        factor[rows, cols] = theta
        return factor @ factor.T

    def objective(theta):
        params = MixedLMParams.from_components(cov_re=relative_cov(theta) + floor, vcomp=no_vcomp)
        llf = model.loglike(params, profile_fe=True)
        return -llf if np.isfinite(llf) else np.inf

    best = None
    with warnings.catch_warnings():
        warnings.simplefilter('ignore', RuntimeWarning)
        for start in C.BOUNDARY_STARTS:
            theta0 = (start * np.eye(k_re))[rows, cols]
            opt = optimize.minimize(objective, theta0, method='Nelder-Mead',
                                    options={'xatol': 1e-6, 'fatol': 1e-8, 'maxiter': 4000})
            if np.isfinite(opt.fun) and (best is None or opt.fun < best.fun):
                best = opt

    if best is None:
        return ProfileFit(model, math.nan, pd.Series(dtype=float),
                          np.full((k_re, k_re), np.nan), math.nan, converged=False)

    cov_rel = relative_cov(best.x)
    fe, _ = model.get_fe_params(cov_rel + floor, no_vcomp)
    scale = float(model.get_scale(fe, cov_rel + floor, no_vcomp))
    return ProfileFit(
        model=model,
        llf=-float(best.fun),
        fe_params=pd.Series(fe, index=model.exog_names),
        cov_re=cov_rel * scale,
        scale=scale,
        converged=bool(best.success),
    )


def _fit_one(spec: ModelSpec, data: pd.DataFrame, reml: bool) -> Tuple[object, List[str]]:
    """MixedLM fit, refit on the boundary where MixedLM breaks down."""
    try:
        result, messages = _fit_mixedlm(spec, data, reml=reml)
        if result.converged and np.isfinite(result.llf):
            return result, messages
        reason = 'non-finite log-likelihood' if result.converged else 'no convergence'
    except np.linalg.LinAlgError as e:
        messages, reason = [], f"LinAlgError: {e}"

    logger.debug(f"MixedLM {reason} for {spec.lme4_formula} (reml={reml}); profile refit")
    messages.append(f"MixedLM {reason}; boundary profile fit used")
    return _fit_boundary(spec, data, reml=reml), messages


def fit_frequentist(spec: ModelSpec,
                    dataset: pd.DataFrame,
                    reml: bool = True,
                    singular_is_failure: bool = False) -> Union[FrequentistFit, FittingFailure]:
    """
    Fit one study model by REML (plus an ML refit for LR tests).

    Each fit falls back to a boundary profile fit when MixedLM raises,
    does not converge or reports a non-finite log-likelihood. Under the
    null regimes that is the usual case: the lab-intercept variance is
    zero in every simulated dataset.

    Args:
        spec: Which of the study models to fit
        dataset: Frame with lab, condition, obs
        reml: Estimate by REML (False = ML only)
        singular_is_failure: Treat boundary fits as failures

    Returns:
        FrequentistFit, or FittingFailure with the cause
    """
    try:
        result, messages = _fit_one(spec, dataset, reml=reml)
        if not result.converged:
            return FittingFailure(CAUSE_NON_CONVERGENCE, '; '.join(messages), spec)

        if reml:
            ml_result, ml_messages = _fit_one(spec, dataset, reml=False)
            messages.extend(ml_messages)
            if not ml_result.converged:
                return FittingFailure(CAUSE_NON_CONVERGENCE, 'ML refit: ' + '; '.join(ml_messages), spec)
            llf_ml = float(ml_result.llf)
        else:
            llf_ml = float(result.llf)

        if not (np.isfinite(result.llf) and np.isfinite(llf_ml)):
            return FittingFailure(CAUSE_NUMERICAL, 'non-finite log-likelihood', spec)

        singular = is_singular(result)
    except (np.linalg.LinAlgError, ValueError, OverflowError, FloatingPointError) as e:
        return FittingFailure(CAUSE_NUMERICAL, f"{type(e).__name__}: {e}", spec)

    if singular:
        logger.debug(f"Singular fit: {spec.lme4_formula}")
        if singular_is_failure:
            return FittingFailure(CAUSE_SINGULAR, 'random-effect covariance on the boundary', spec)

    return FrequentistFit(
        spec=spec,
        result=result,
        llf_ml=llf_ml,
        n_parameters=count_parameters(result.model),
        singular=singular,
        warnings=messages,
    )


@dataclass(frozen=True)
class FrequentistTemplate:
    """
    Read-only prototype for repeated fits of one model.

    Holds everything except the data, so each replication refits with
    ``template.fit(new_data)``.
    """
    spec: ModelSpec
    reml: bool = True
    singular_is_failure: bool = False

    def fit(self, dataset: pd.DataFrame) -> Union[FrequentistFit, FittingFailure]:
        return fit_frequentist(self.spec, dataset, reml=self.reml,
                               singular_is_failure=self.singular_is_failure)


def likelihood_ratio_test(restricted: FrequentistFit,
                          unrestricted: FrequentistFit) -> LRTestResult:
    """
    Perform likelihood ratio test between nested models.

    H0: Restricted model is adequate
    H1: Unrestricted model provides better fit

    Args:
        restricted: Fit of the null (simpler) model
        unrestricted: Fit of the alternative model

    Returns:
        LRTestResult

    Raises:
        ValueError: If the models are not nested by parameter count
    """
    df = unrestricted.n_parameters - restricted.n_parameters
    if df <= 0:
        raise ValueError(f"Invalid df={df}. Unrestricted model needs more parameters.")

    # Optimizer noise can make the nested fit marginally worse
    lr_stat = max(2.0 * (unrestricted.llf_ml - restricted.llf_ml), 0.0)
    p_value = float(stats.chi2.sf(lr_stat, df))

    return LRTestResult(
        restricted_model=restricted.spec.name,
        unrestricted_model=unrestricted.spec.name,
        lr_statistic=lr_stat,
        df=df,
        p_value=p_value,
    )
