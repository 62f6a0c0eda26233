"""
Study Configuration Schema
==========================

This module defines the configuration format for the simulation study.
It provides:
1. Schema definition with validation
2. Default values for every optional section
3. Frozen configuration objects shared read-only with worker processes

Configuration Structure:
------------------------
{
    "design": {
        "n_labs": int,            # Number of labs (grouping factor levels)
        "n_per_lab": int          # Trials per lab, split evenly over conditions
    },
    "fixed_effect": {
        "mu": float,              # Population condition effect (when present)
        "sigma": float            # Residual noise sd
    },
    "random_effect": {
        "sigma": float,           # Noise sd around the lab-specific effect
        "lab_effect_mean": float, # Mean magnitude of lab-specific effects
        "lab_effect_sd": float,   # Spread of lab-specific effect magnitudes
        "lab_effect_seed": int    # Seed for the once-per-study lab effect vector
    },
    "study": {
        "regimes": list,          # Subset of REGIMES, processed in this order
        "methods": list,          # "bayesian" and/or "frequentist"
        "n_replications": int,    # Replications per regime per run
        "n_workers": int,         # Worker processes (1 = sequential)
        "results_dir": str,       # Directory holding the CSV stores
        "run_simulation": bool    # False = only re-aggregate existing stores
    },
    "thresholds": {
        "bf_upper": float,        # BF above this rejects the null
        "bf_lower": float,        # BF below this is evidence for the null
        "alpha": float            # p below this rejects the null
    },
    "sampler": {
        "draws": int, "tune": int, "chains": int, "cores": int,
        "target_accept": float, "max_treedepth": int,
        "max_divergences": int, "max_rhat": float
    },
    "priors": {
        "intercept_mu": float, "intercept_sd": float,
        "slope_sd": float, "re_sd_scale": float, "sigma_scale": float
    },
    "bridge": {
        "maxiter": int, "tol": float
    },
    "frequentist": {
        "singular_is_failure": bool
    }
}

Only "design" is required; every other section falls back to defaults.
"""

import json
import os
import warnings
from dataclasses import dataclass, field, asdict
from pathlib import Path
from typing import Dict, List, Optional, Tuple, Any, Union

from mixsim import constants as C
from mixsim.simulation.dgp import SimulationConfig, build_lab_effects


# =============================================================================
# FROZEN CONFIGURATION OBJECTS
# =============================================================================

@dataclass(frozen=True)
class Thresholds:
    """Decision thresholds for Bayes factors and p-values."""
    bf_upper: float = C.BF_UPPER
    bf_lower: float = C.BF_LOWER
    alpha: float = C.ALPHA


@dataclass(frozen=True)
class SamplerControls:
    """NUTS sampler settings for every Bayesian fit."""
    draws: int = C.N_DRAWS_DEFAULT
    tune: int = C.N_TUNE_DEFAULT
    chains: int = C.N_CHAINS_DEFAULT
    cores: int = 1
    target_accept: float = C.TARGET_ACCEPT_DEFAULT
    max_treedepth: int = C.MAX_TREEDEPTH_DEFAULT
    max_divergences: int = C.MAX_DIVERGENCES_DEFAULT
    max_rhat: float = C.MAX_RHAT_DEFAULT


@dataclass(frozen=True)
class PriorConfig:
    """
    Proper priors for the Bayesian mixed models.

    Bridge sampling needs a normalized prior, so every parameter gets a
    proper distribution:
        Intercept   ~ Normal(intercept_mu, intercept_sd)
        b_condition ~ Normal(0, slope_sd)
        sd_lab_*    ~ HalfNormal(re_sd_scale)
        sigma       ~ HalfNormal(sigma_scale)
    """
    intercept_mu: float = 0.0
    intercept_sd: float = 1.0
    slope_sd: float = 1.0
    re_sd_scale: float = 1.0
    sigma_scale: float = 1.0


@dataclass(frozen=True)
class StudyConfig:
    """Complete, immutable configuration of one simulation study."""
    simulation: SimulationConfig
    regimes: Tuple[str, ...] = C.REGIMES
    methods: Tuple[str, ...] = C.METHODS
    n_replications: int = 100
    n_workers: int = 1
    results_dir: str = C.RESULTS_DIR
    run_simulation: bool = True
    thresholds: Thresholds = field(default_factory=Thresholds)
    sampler: SamplerControls = field(default_factory=SamplerControls)
    priors: PriorConfig = field(default_factory=PriorConfig)
    bridge_maxiter: int = C.BRIDGE_MAXITER
    bridge_tol: float = C.BRIDGE_TOL
    singular_is_failure: bool = False

    def to_dict(self) -> Dict[str, Any]:
        """Serialize (e.g. for logging the exact settings of a run)."""
        return asdict(self)


# =============================================================================
# SCHEMA VALIDATION
# =============================================================================

@dataclass
class ValidationResult:
    """Result of configuration validation."""
    is_valid: bool
    errors: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _positive(section: Dict, key: str, path: str, errors: List[str]) -> None:
    if key not in section:
        return
    if not _is_number(section[key]):
        errors.append(f"{path}.{key} must be a number (got {section[key]!r})")
    elif not section[key] > 0:
        errors.append(f"{path}.{key} must be positive (got {section[key]})")


def validate_config(config: Dict) -> ValidationResult:
    """
    Validate configuration against schema.

    Args:
        config: Configuration dictionary

    Returns:
        ValidationResult with validity status and any errors/warnings
    """
    errors = []
    warnings_list = []

    if 'design' not in config:
        errors.append("Missing required key: design")
        return ValidationResult(False, errors, warnings_list)

    design = config['design']
    for key in ('n_labs', 'n_per_lab'):
        if key not in design:
            errors.append(f"design.{key} is required")
        elif not isinstance(design[key], int) or isinstance(design[key], bool):
            errors.append(f"design.{key} must be an integer (got {design[key]!r})")
    if errors:
        return ValidationResult(False, errors, warnings_list)

    if design['n_labs'] < 2:
        errors.append(f"design.n_labs must be at least 2 (got {design['n_labs']})")
    n_per_lab = design['n_per_lab']
    if n_per_lab < 2 or n_per_lab % 2 != 0:
        errors.append(f"design.n_per_lab must be a positive even number (got {n_per_lab})")

    _positive(config.get('fixed_effect', {}), 'sigma', 'fixed_effect', errors)
    _positive(config.get('random_effect', {}), 'sigma', 'random_effect', errors)
    _positive(config.get('random_effect', {}), 'lab_effect_sd', 'random_effect', errors)

    study = config.get('study', {})
    for regime in study.get('regimes', []):
        if regime not in C.REGIMES:
            errors.append(f"Invalid regime: {regime}. Must be one of {list(C.REGIMES)}")
    for method in study.get('methods', []):
        if method not in C.METHODS:
            errors.append(f"Invalid method: {method}. Must be one of {list(C.METHODS)}")
    _positive(study, 'n_replications', 'study', errors)
    _positive(study, 'n_workers', 'study', errors)
    if 'regimes' in study and list(study['regimes']) != [r for r in C.REGIMES if r in study['regimes']]:
        warnings_list.append("study.regimes is not in canonical order; regimes run in the order given")

    thresholds = config.get('thresholds', {})
    alpha = thresholds.get('alpha', C.ALPHA)
    if not _is_number(alpha) or not 0 < alpha < 1:
        errors.append(f"thresholds.alpha must be in (0, 1) (got {alpha})")
    bf_lower = thresholds.get('bf_lower', C.BF_LOWER)
    bf_upper = thresholds.get('bf_upper', C.BF_UPPER)
    if not (_is_number(bf_lower) and _is_number(bf_upper)) or not 0 < bf_lower <= 1 <= bf_upper:
        errors.append(f"thresholds must satisfy 0 < bf_lower <= 1 <= bf_upper "
                      f"(got {bf_lower}, {bf_upper})")

    sampler = config.get('sampler', {})
    target_accept = sampler.get('target_accept', C.TARGET_ACCEPT_DEFAULT)
    if not _is_number(target_accept) or not 0 < target_accept < 1:
        errors.append(f"sampler.target_accept must be in (0, 1) (got {target_accept})")
    for key in ('draws', 'tune', 'chains', 'cores', 'max_treedepth'):
        _positive(sampler, key, 'sampler', errors)

    # Nested parallelism: outer workers x inner chains should fit the machine
    n_workers = study.get('n_workers', 1)
    cores = sampler.get('cores', 1)
    n_cpu = os.cpu_count() or 1
    if (C.METHOD_BAYESIAN in study.get('methods', C.METHODS) and _is_number(n_workers)
            and _is_number(cores) and n_workers * cores > n_cpu):
        warnings_list.append(
            f"study.n_workers x sampler.cores = {n_workers * cores} exceeds "
            f"{n_cpu} available cores; fits will oversubscribe the CPU"
        )

    for section, cls in (('thresholds', Thresholds), ('sampler', SamplerControls),
                         ('priors', PriorConfig)):
        known = set(cls.__dataclass_fields__)
        for key in config.get(section, {}):
            if key not in known:
                errors.append(f"Unknown key {section}.{key}. Must be one of {sorted(known)}")

    if 'priors' in config:
        for key, value in config['priors'].items():
            if key.endswith(('_sd', '_scale')) and not value > 0:
                errors.append(f"priors.{key} must be positive (got {value})")

    return ValidationResult(
        is_valid=len(errors) == 0,
        errors=errors,
        warnings=warnings_list
    )


# =============================================================================
# CONFIG LOADING AND CONVERSION
# =============================================================================

def apply_defaults(config: Dict) -> Dict:
    """
    Apply default values to configuration.

    Args:
        config: Raw configuration dictionary

    Returns:
        New configuration dictionary with every section filled in
    """
    config = json.loads(json.dumps(config))  # deep copy, caller's dict untouched

    fixed = config.setdefault('fixed_effect', {})
    fixed.setdefault('mu', C.FE_MU_DEFAULT)
    fixed.setdefault('sigma', C.FE_SIGMA_DEFAULT)

    random = config.setdefault('random_effect', {})
    random.setdefault('sigma', C.RE_SIGMA_DEFAULT)
    random.setdefault('lab_effect_mean', fixed['mu'])
    random.setdefault('lab_effect_sd', random['sigma'])
    random.setdefault('lab_effect_seed', C.SEED_DEFAULT)

    study = config.setdefault('study', {})
    study.setdefault('regimes', list(C.REGIMES))
    study.setdefault('methods', list(C.METHODS))
    study.setdefault('n_replications', 100)
    study.setdefault('n_workers', 1)
    study.setdefault('results_dir', C.RESULTS_DIR)
    study.setdefault('run_simulation', True)

    config.setdefault('thresholds', {})
    config.setdefault('sampler', {})
    config.setdefault('priors', {})
    config.setdefault('bridge', {})
    config.setdefault('frequentist', {})

    return config


def config_from_dict(config: Dict) -> StudyConfig:
    """
    Build a frozen StudyConfig from a (defaulted) configuration dictionary.

    The lab effect vector is drawn here, once per study configuration,
    from its own seed.

    Raises:
        ValueError: If configuration is invalid
    """
    result = validate_config(config)
    if not result.is_valid:
        raise ValueError("Invalid configuration:\n" + "\n".join(result.errors))

    config = apply_defaults(config)
    design = config['design']
    fixed = config['fixed_effect']
    random = config['random_effect']
    study = config['study']

    lab_effects = build_lab_effects(
        design['n_labs'],
        mean=random['lab_effect_mean'],
        sd=random['lab_effect_sd'],
        seed=random['lab_effect_seed'],
    )

    simulation = SimulationConfig(
        n_labs=design['n_labs'],
        n_per_lab=design['n_per_lab'],
        fe_mu=fixed['mu'],
        fe_sigma=fixed['sigma'],
        re_sigma=random['sigma'],
        lab_effects=tuple(lab_effects),
    )

    return StudyConfig(
        simulation=simulation,
        regimes=tuple(study['regimes']),
        methods=tuple(study['methods']),
        n_replications=int(study['n_replications']),
        n_workers=int(study['n_workers']),
        results_dir=str(study['results_dir']),
        run_simulation=bool(study['run_simulation']),
        thresholds=Thresholds(**config['thresholds']),
        sampler=SamplerControls(**config['sampler']),
        priors=PriorConfig(**config['priors']),
        bridge_maxiter=int(config['bridge'].get('maxiter', C.BRIDGE_MAXITER)),
        bridge_tol=float(config['bridge'].get('tol', C.BRIDGE_TOL)),
        singular_is_failure=bool(config['frequentist'].get('singular_is_failure', False)),
    )


def load_config(config_path: Union[str, Path]) -> StudyConfig:
    """
    Load and validate configuration from JSON file.

    Args:
        config_path: Path to study_config.json

    Returns:
        Frozen StudyConfig

    Raises:
        ValueError: If configuration is invalid
    """
    with open(config_path) as f:
        config = json.load(f)

    result = validate_config(config)

    if result.warnings:
        for w in result.warnings:
            warnings.warn(w, UserWarning)

    if not result.is_valid:
        raise ValueError("Invalid configuration:\n" + "\n".join(result.errors))

    return config_from_dict(config)
