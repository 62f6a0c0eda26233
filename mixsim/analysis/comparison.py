"""
Null-Model Comparison Engine
============================

Given one dataset, fits the four study models and derives the four
comparisons that define the null-model strategies:

    label  alternative  null   Bayesian            Frequentist
    A      Full         A      BF(Full / A)        LRT(A, Full)   df = 3
    B      Full         B      BF(Full / B)        LRT(B, Full)   df = 1
    C1     Full         C1     BF(Full / C1)       LRT(C1, Full)  df = 2
    C2     C1           C2=A   BF(C1 / A)          LRT(A, C1)     df = 1

Every statistic is oriented "alternative over null": a large Bayes factor
or a small p-value is always evidence against that label's null model.

A removes the fixed and random condition effects together, so it cannot
tell them apart. B keeps a random slope without its fixed counterpart.
C1/C2 cost an extra model but never compare a model with a random slope
and no fixed slope.

If any single fit fails, the replication has no statistics at all; the
outcome carries the failure and still yields one missing row per label.
"""

import math
from dataclasses import dataclass, field
from typing import Dict, List, Mapping, Optional, Tuple

import numpy as np
import pandas as pd

from mixsim import constants as C
from mixsim.config import StudyConfig
from mixsim.estimation.fits import (
    FittingFailure, is_failure, CAUSE_BRIDGE,
)
from mixsim.estimation.formulas import ModelSpec, FITTED_SPECS
from mixsim.utils.logging_config import get_logger

logger = get_logger(__name__)

# (label, alternative model, null model)
COMPARISONS: Tuple[Tuple[str, ModelSpec, ModelSpec], ...] = (
    ('A', ModelSpec.FULL, ModelSpec.A),
    ('B', ModelSpec.FULL, ModelSpec.B),
    ('C1', ModelSpec.FULL, ModelSpec.C1),
    ('C2', ModelSpec.C1, ModelSpec.C2),
)


@dataclass(frozen=True)
class ComparisonResult:
    """One row of the results store."""
    regime: str
    null_model: str
    statistic: float
    method: str
    seed: Optional[int] = None

    @property
    def missing(self) -> bool:
        return math.isnan(self.statistic)


@dataclass
class ReplicationOutcome:
    """
    Result type of one replication: either four results or one failure.

    Exactly one of ``results`` and ``failure`` is set.
    """
    regime: str
    method: str
    seed: Optional[int] = None
    results: List[ComparisonResult] = field(default_factory=list)
    failure: Optional[FittingFailure] = None

    @property
    def ok(self) -> bool:
        return self.failure is None

    @classmethod
    def failed(cls, regime: str, method: str, seed: Optional[int],
               failure: FittingFailure) -> 'ReplicationOutcome':
        return cls(regime=regime, method=method, seed=seed, failure=failure)

    def to_rows(self) -> List[ComparisonResult]:
        """Four rows, with NaN statistics when the replication failed."""
        if self.ok:
            return list(self.results)
        return [
            ComparisonResult(self.regime, label, np.nan, self.method, self.seed)
            for label in C.NULL_MODEL_LABELS
        ]


# =============================================================================
# TEMPLATES
# =============================================================================

def build_templates(method: str, config: Optional[StudyConfig] = None) -> Dict[ModelSpec, object]:
    """
    Read-only fitting prototypes for the four models of one method.

    Args:
        method: "bayesian" or "frequentist"
        config: Study settings (priors, sampler controls, singular policy)

    Returns:
        {ModelSpec: template} for Full, A, B, C1
    """
    if method == C.METHOD_FREQUENTIST:
        from mixsim.estimation.frequentist import FrequentistTemplate
        singular = config.singular_is_failure if config is not None else False
        return {spec: FrequentistTemplate(spec, singular_is_failure=singular)
                for spec in FITTED_SPECS}

    if method == C.METHOD_BAYESIAN:
        from mixsim.config import PriorConfig, SamplerControls
        from mixsim.estimation.bayesian import BayesianTemplate
        priors = config.priors if config is not None else PriorConfig()
        sampler = config.sampler if config is not None else SamplerControls()
        return {spec: BayesianTemplate(spec, priors, sampler) for spec in FITTED_SPECS}

    raise ValueError(f"Unknown method: {method}. Must be one of {list(C.METHODS)}")


# =============================================================================
# COMPARISON
# =============================================================================

def _fit_all(templates: Mapping[ModelSpec, object], dataset: pd.DataFrame,
             method: str, seed: Optional[int]):
    """Fit every model; stop at the first failure."""
    fits = {}
    for spec in FITTED_SPECS:
        template = templates[spec]
        if method == C.METHOD_BAYESIAN:
            outcome = template.fit(dataset, random_seed=seed)
        else:
            outcome = template.fit(dataset)
        if is_failure(outcome):
            return None, outcome
        fits[spec] = outcome
    return fits, None


def _bayes_factors(fits: Mapping[ModelSpec, object], seed: Optional[int],
                   maxiter: int, tol: float):
    """Log marginal likelihoods of each fit, or the first failure."""
    from mixsim.estimation.bridge_sampling import log_marginal_likelihood

    rng = np.random.default_rng(seed)
    logml = {}
    for spec, fit in fits.items():
        bridge = log_marginal_likelihood(fit, rng=rng, maxiter=maxiter, tol=tol)
        if not (bridge.converged and np.isfinite(bridge.logml)):
            return None, FittingFailure(
                CAUSE_BRIDGE, f"logml={bridge.logml}, {bridge.niter} iterations", spec
            )
        logml[spec] = bridge.logml

    statistics = {}
    for label, alternative, null in COMPARISONS:
        log_bf = logml[alternative] - logml[null]
        # exp overflows to inf for overwhelming evidence; inf still reads as BF > 3
        with np.errstate(over='ignore'):
            statistics[label] = float(np.exp(log_bf))
    return statistics, None


def _p_values(fits: Mapping[ModelSpec, object]) -> Dict[str, float]:
    from mixsim.estimation.frequentist import likelihood_ratio_test

    statistics = {}
    for label, alternative, null in COMPARISONS:
        lr = likelihood_ratio_test(fits[null], fits[alternative])
        logger.debug(f"{label}: {lr}")
        statistics[label] = lr.p_value
    return statistics


def compare(dataset: pd.DataFrame,
            method: str,
            regime: str,
            templates: Optional[Mapping[ModelSpec, object]] = None,
            seed: Optional[int] = None,
            bridge_maxiter: int = C.BRIDGE_MAXITER,
            bridge_tol: float = C.BRIDGE_TOL) -> ReplicationOutcome:
    """
    Fit Full, A, B, C1 and compute the four comparison statistics.

    Args:
        dataset: Frame with lab, condition, obs
        method: "bayesian" (Bayes factors) or "frequentist" (p-values)
        regime: Regime tag the dataset was generated under
        templates: Fitting prototypes from build_templates (built if None)
        seed: Replication seed, reused for sampler and bridge sampling
        bridge_maxiter: Bridge sampling iteration limit
        bridge_tol: Bridge sampling tolerance

    Returns:
        ReplicationOutcome with four ComparisonResults or a FittingFailure
    """
    if method not in C.METHODS:
        raise ValueError(f"Unknown method: {method}. Must be one of {list(C.METHODS)}")
    if templates is None:
        templates = build_templates(method)

    fits, failure = _fit_all(templates, dataset, method, seed)
    if failure is not None:
        return ReplicationOutcome.failed(regime, method, seed, failure)

    if method == C.METHOD_BAYESIAN:
        statistics, failure = _bayes_factors(fits, seed, bridge_maxiter, bridge_tol)
        if failure is not None:
            return ReplicationOutcome.failed(regime, method, seed, failure)
    else:
        statistics = _p_values(fits)

    results = [
        ComparisonResult(regime, label, statistics[label], method, seed)
        for label in C.NULL_MODEL_LABELS
    ]
    return ReplicationOutcome(regime=regime, method=method, seed=seed, results=results)
