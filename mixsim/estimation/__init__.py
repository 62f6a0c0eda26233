"""
Estimation module: model specs, fitting adapters and marginal likelihoods.

The Bayesian adapter needs PyMC; it is not imported here so that the
frequentist path works without loading it:
    from mixsim.estimation.bayesian import BayesianTemplate
"""
from .formulas import ModelSpec, FITTED_SPECS
from .fits import BayesianFit, FittingFailure, FrequentistFit, is_failure
from .frequentist import (
    FrequentistTemplate,
    LRTestResult,
    fit_frequentist,
    likelihood_ratio_test,
)
from .bridge_sampling import BridgeResult, bridge_sampler
