"""
Pytest Configuration and Shared Fixtures
=========================================

Provides common test fixtures for the simulation study tests.
"""

import pytest
import numpy as np
import pandas as pd
from pathlib import Path
import sys

# Add project root to path
PROJECT_ROOT = Path(__file__).parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

from mixsim import constants as C
from mixsim.analysis.comparison import ComparisonResult, ReplicationOutcome
from mixsim.config import config_from_dict
from mixsim.estimation.fits import FittingFailure
from mixsim.simulation.dgp import SimulationConfig, build_lab_effects, generate
from mixsim.storage import ResultsStore


# =============================================================================
# Configuration Fixtures
# =============================================================================

@pytest.fixture(scope="session")
def project_root():
    """Return project root path."""
    return PROJECT_ROOT


@pytest.fixture(scope="session")
def config_path():
    """Path to the shipped study configuration."""
    return PROJECT_ROOT / C.CONFIG_PATH


@pytest.fixture(scope="session")
def simulation_config():
    """Default design: 20 labs x 24 trials, fe.mu = 0.5, sds 0.2."""
    effects = build_lab_effects(20, mean=0.5, sd=0.2, seed=42)
    return SimulationConfig(
        n_labs=20,
        n_per_lab=24,
        fe_mu=0.5,
        fe_sigma=0.2,
        re_sigma=0.2,
        lab_effects=tuple(effects),
    )


@pytest.fixture
def study_config(tmp_path):
    """Small frequentist study writing into a temporary results dir."""
    return config_from_dict({
        "design": {"n_labs": 20, "n_per_lab": 24},
        "fixed_effect": {"mu": 0.5, "sigma": 0.2},
        "random_effect": {"sigma": 0.2, "lab_effect_seed": 42},
        "study": {
            "methods": ["frequentist"],
            "n_replications": 3,
            "n_workers": 1,
            "results_dir": str(tmp_path / "results"),
        },
    })


@pytest.fixture
def p_store(tmp_path):
    """Empty p-value store."""
    return ResultsStore.for_method(tmp_path / "results", C.METHOD_FREQUENTIST)


# =============================================================================
# Data Fixtures
# =============================================================================

@pytest.fixture(scope="session")
def null_both_data(simulation_config):
    """No condition effect at all: every lab-level variance is zero."""
    return generate(C.REGIME_NULL_BOTH, 1, simulation_config)


@pytest.fixture(scope="session")
def null_re_data(simulation_config):
    """Fixed effect present, no random slope."""
    return generate(C.REGIME_NULL_RE, 11, simulation_config)


@pytest.fixture(scope="session")
def null_none_data(simulation_config):
    """Fixed effect and random slope present."""
    return generate(C.REGIME_NULL_NONE, 12, simulation_config)


# =============================================================================
# Fakes
# =============================================================================

def make_fake_compare(fail_seeds=(), raise_seeds=(), statistic=0.5, calls=None):
    """
    Stand-in for analysis.comparison.compare that skips model fitting.

    Seeds in fail_seeds return a FittingFailure outcome, seeds in
    raise_seeds raise RuntimeError, everything else returns four rows.
    """
    def fake_compare(dataset, method, regime, templates=None, seed=None, **kwargs):
        if calls is not None:
            calls.append((regime, seed, len(dataset)))
        if seed in raise_seeds:
            raise RuntimeError(f"boom at seed {seed}")
        if seed in fail_seeds:
            return ReplicationOutcome.failed(
                regime, method, seed, FittingFailure('non-convergence', 'forced')
            )
        results = [ComparisonResult(regime, label, statistic, method, seed)
                   for label in C.NULL_MODEL_LABELS]
        return ReplicationOutcome(regime=regime, method=method, seed=seed, results=results)

    return fake_compare


@pytest.fixture
def fake_compare_factory():
    return make_fake_compare
