"""
Fit Result Types
================

Typed results returned by the model fitting adapters. A fit either
succeeds (FrequentistFit / BayesianFit) or returns a FittingFailure value
carrying the cause; adapters never raise for estimation problems.
"""

import math
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Union

from mixsim.estimation.formulas import ModelSpec


# Failure causes
CAUSE_NON_CONVERGENCE = 'non-convergence'
CAUSE_SINGULAR = 'singular'
CAUSE_DIVERGENCE = 'divergence'
CAUSE_RHAT = 'rhat'
CAUSE_SAMPLER_ERROR = 'sampler-error'
CAUSE_NUMERICAL = 'numerical'
CAUSE_BRIDGE = 'bridge-sampling'
CAUSE_REPLICATION_ERROR = 'replication-error'


@dataclass(frozen=True)
class FittingFailure:
    """A fit (or a replication) that produced no usable statistic."""
    cause: str
    detail: str = ''
    spec: Optional[ModelSpec] = None

    def __str__(self) -> str:
        where = f" [{self.spec.name}]" if self.spec is not None else ""
        return f"{self.cause}{where}: {self.detail}" if self.detail else f"{self.cause}{where}"


@dataclass
class FrequentistFit:
    """REML fit of one mixed model plus the ML log-likelihood for LR tests."""
    spec: ModelSpec
    result: Any                 # MixedLMResults or boundary ProfileFit (REML)
    llf_ml: float               # maximum-likelihood log-likelihood
    n_parameters: int           # fixed + random covariance + residual
    singular: bool = False
    warnings: List[str] = field(default_factory=list)

    @property
    def llf_reml(self) -> float:
        return float(self.result.llf)

    @property
    def fe_params(self) -> Dict[str, float]:
        return {k: float(v) for k, v in self.result.fe_params.items()}


@dataclass
class BayesianFit:
    """Posterior draws of one mixed model, ready for bridge sampling."""
    spec: ModelSpec
    model: Any                  # pymc.Model
    idata: Any                  # arviz.InferenceData incl. transformed draws
    n_divergences: int = 0
    max_rhat: float = math.nan

    @property
    def n_draws(self) -> int:
        posterior = self.idata.posterior
        return int(posterior.sizes['chain'] * posterior.sizes['draw'])


FitOutcome = Union[FrequentistFit, BayesianFit, FittingFailure]


def is_failure(outcome: Any) -> bool:
    """True for a FittingFailure outcome."""
    return isinstance(outcome, FittingFailure)
