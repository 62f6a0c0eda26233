"""
Bayesian Mixed-Model Fitting (PyMC)
===================================

Builds and samples the four study models with PyMC's NUTS sampler.

Model (Full; the other specs drop terms):
    obs_i ~ Normal(mu_i, sigma)
    mu_i  = Intercept + b_condition * cond_i
            + sd_lab_intercept * z0[lab_i]
            + sd_lab_condition * z1[lab_i] * cond_i
    z0, z1 ~ Normal(0, 1)   (non-centred lab effects)

All priors are proper (see PriorConfig) because Bayes factors need
normalized priors. Sampling keeps the unconstrained ("transformed") draws
so the marginal likelihood can be bridge-sampled afterwards.

Usage:
    from mixsim.estimation.bayesian import BayesianTemplate

    template = BayesianTemplate(ModelSpec.FULL, priors, sampler)
    fit = template.fit(data, random_seed=7)
"""

from dataclasses import dataclass, field
from typing import Optional, Union

import numpy as np
import pandas as pd

from mixsim.config import PriorConfig, SamplerControls
from mixsim.estimation.fits import (
    BayesianFit, FittingFailure,
    CAUSE_DIVERGENCE, CAUSE_RHAT, CAUSE_SAMPLER_ERROR,
)
from mixsim.estimation.formulas import ModelSpec
from mixsim.utils.logging_config import get_logger

logger = get_logger(__name__)


def _require_pymc():
    try:
        import pymc as pm  # type: ignore
        import arviz as az  # type: ignore
    except ImportError as e:
        raise ImportError(
            "PyMC/ArviZ is required for the Bayesian path. "
            "Install with: pymc>=5.10 arviz>=0.17"
        ) from e
    return pm, az


def build_model(spec: ModelSpec, dataset: pd.DataFrame, priors: PriorConfig):
    """
    Build the PyMC model for one spec and dataset.

    Args:
        spec: Which study model to build
        dataset: Frame with lab, condition, obs
        priors: Proper prior settings

    Returns:
        pymc.Model
    """
    pm, _ = _require_pymc()

    lab_idx, labs = pd.factorize(dataset['lab'], sort=True)
    n_labs = len(labs)
    cond = dataset['condition'].to_numpy(dtype=float)
    obs = dataset['obs'].to_numpy(dtype=float)

    with pm.Model() as model:
        intercept = pm.Normal('Intercept', mu=priors.intercept_mu, sigma=priors.intercept_sd)
        mu = intercept

        if spec.has_fixed_slope:
            b_condition = pm.Normal('b_condition', mu=0.0, sigma=priors.slope_sd)
            mu = mu + b_condition * cond

        sd_intercept = pm.HalfNormal('sd_lab_intercept', sigma=priors.re_sd_scale)
        z_intercept = pm.Normal('z_lab_intercept', mu=0.0, sigma=1.0, shape=n_labs)
        mu = mu + (sd_intercept * z_intercept)[lab_idx]

        if spec.has_random_slope:
            sd_slope = pm.HalfNormal('sd_lab_condition', sigma=priors.re_sd_scale)
            z_slope = pm.Normal('z_lab_condition', mu=0.0, sigma=1.0, shape=n_labs)
            mu = mu + (sd_slope * z_slope)[lab_idx] * cond

        sigma = pm.HalfNormal('sigma', sigma=priors.sigma_scale)
        pm.Normal('obs', mu=mu, sigma=sigma, observed=obs)

    return model


def _max_rhat(az, idata) -> float:
    rhat = az.rhat(idata.posterior)
    values = [float(np.nanmax(rhat[name].values)) for name in rhat.data_vars]
    return max(values) if values else np.nan


def fit_bayesian(spec: ModelSpec,
                 dataset: pd.DataFrame,
                 priors: PriorConfig = PriorConfig(),
                 sampler: SamplerControls = SamplerControls(),
                 random_seed: Optional[int] = None) -> Union[BayesianFit, FittingFailure]:
    """
    Sample the posterior of one study model.

    Args:
        spec: Which study model to fit
        dataset: Frame with lab, condition, obs
        priors: Proper prior settings
        sampler: NUTS settings (target_accept, max_treedepth, ...)
        random_seed: Seed for the sampler

    Returns:
        BayesianFit, or FittingFailure on sampler error, too many divergent
        transitions or R-hat above the limit
    """
    pm, az = _require_pymc()

    try:
        model = build_model(spec, dataset, priors)
        with model:
            idata = pm.sample(
                draws=sampler.draws,
                tune=sampler.tune,
                chains=sampler.chains,
                cores=sampler.cores,
                target_accept=sampler.target_accept,
                random_seed=random_seed,
                progressbar=False,
                compute_convergence_checks=False,
                idata_kwargs={'include_transformed': True},
                nuts={'max_treedepth': sampler.max_treedepth},
            )
    except (RuntimeError, ValueError, FloatingPointError, np.linalg.LinAlgError) as e:
        return FittingFailure(CAUSE_SAMPLER_ERROR, f"{type(e).__name__}: {e}", spec)

    n_divergences = int(idata.sample_stats['diverging'].sum())
    if n_divergences > sampler.max_divergences:
        return FittingFailure(CAUSE_DIVERGENCE, f"{n_divergences} divergent transitions", spec)

    max_rhat = _max_rhat(az, idata) if sampler.chains > 1 else np.nan
    if np.isfinite(max_rhat) and max_rhat > sampler.max_rhat:
        return FittingFailure(CAUSE_RHAT, f"max R-hat {max_rhat:.3f}", spec)

    logger.debug(f"Sampled {spec.lme4_formula}: {n_divergences} divergences, "
                 f"max R-hat {max_rhat:.3f}")

    return BayesianFit(
        spec=spec,
        model=model,
        idata=idata,
        n_divergences=n_divergences,
        max_rhat=max_rhat,
    )


@dataclass(frozen=True)
class BayesianTemplate:
    """
    Read-only prototype for repeated fits of one model.

    Priors, structure and sampler controls are fixed once; each
    replication calls ``template.fit(new_data, seed)``.
    """
    spec: ModelSpec
    priors: PriorConfig = field(default_factory=PriorConfig)
    sampler: SamplerControls = field(default_factory=SamplerControls)

    def fit(self, dataset: pd.DataFrame,
            random_seed: Optional[int] = None) -> Union[BayesianFit, FittingFailure]:
        return fit_bayesian(self.spec, dataset, self.priors, self.sampler, random_seed)
