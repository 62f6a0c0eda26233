"""
Data Generating Process (DGP) for the Null-Model Study
======================================================

Simulates balanced lab x condition datasets under four regimes that switch
the population-level (fixed) condition effect and the lab-specific
(random) condition effect on and off independently.

Functions:
- build_lab_effects: Zero-sum per-lab effect vector with a magnitude floor
- build_skeleton: Balanced lab x condition x trial design
- generate: Draw one dataset for a regime from a seed

Usage:
    from mixsim.simulation.dgp import SimulationConfig, build_lab_effects, generate

    effects = build_lab_effects(20, mean=0.5, sd=0.2, seed=42)
    config = SimulationConfig(n_labs=20, n_per_lab=24, fe_mu=0.5,
                              fe_sigma=0.2, re_sigma=0.2,
                              lab_effects=tuple(effects))
    data = generate('null_fe', seed=1, config=config)
"""

import numpy as np
import pandas as pd
from dataclasses import dataclass
from typing import List, Optional, Tuple

from mixsim import constants as C


class GenerationError(ValueError):
    """Invalid regime or generation configuration. Fatal for the run."""


@dataclass(frozen=True)
class SimulationConfig:
    """Design and effect sizes for data generation."""
    n_labs: int
    n_per_lab: int
    fe_mu: float
    fe_sigma: float
    re_sigma: float
    lab_effects: Tuple[float, ...]


# =============================================================================
# LAB EFFECT VECTOR
# =============================================================================

def _draw_lab_effects(rng: np.random.Generator, n_labs: int,
                      mean: float, sd: float, floor: float) -> np.ndarray:
    """One attempt: clamp, sort, alternate signs, close the sum."""
    draws = rng.normal(mean, sd, size=n_labs - 1)
    draws = np.sort(np.maximum(draws, floor))
    signs = np.where(np.arange(n_labs - 1) % 2 == 0, 1.0, -1.0)
    effects = draws * signs
    return np.append(effects, -effects.sum())


def build_lab_effects(n_labs: int,
                      mean: float,
                      sd: float,
                      seed: Optional[int] = None,
                      floor: float = C.LAB_EFFECT_FLOOR,
                      max_attempts: int = C.LAB_EFFECT_MAX_ATTEMPTS) -> List[float]:
    """
    Build per-lab condition-effect deviations that sum to exactly zero.

    n_labs - 1 magnitudes are drawn from Normal(mean, sd) and clamped below
    at ``floor``, sorted ascending and given alternating signs so they
    largely cancel. The last lab takes minus the sum of the others, which
    makes the population mean of the random effect zero by construction.
    When that closing value lands inside (-floor, floor) the whole vector
    is redrawn from the same generator.

    Args:
        n_labs: Number of labs (at least 2)
        mean: Mean of the magnitude distribution
        sd: Standard deviation of the magnitude distribution
        seed: Seed for the dedicated generator (None = fresh entropy)
        floor: Minimum absolute effect per lab
        max_attempts: Redraws allowed before giving up

    Returns:
        List of n_labs floats

    Raises:
        GenerationError: If n_labs < 2, sd <= 0, or no valid vector is found
    """
    if n_labs < 2:
        raise GenerationError(f"Lab effects need at least 2 labs (got {n_labs})")
    if sd <= 0:
        raise GenerationError(f"Lab effect sd must be positive (got {sd})")

    rng = np.random.default_rng(seed)

    for _ in range(max_attempts):
        effects = _draw_lab_effects(rng, n_labs, mean, sd, floor)
        if abs(effects[-1]) >= floor:
            return effects.tolist()

    raise GenerationError(
        f"No zero-sum lab effect vector with |effect| >= {floor} after "
        f"{max_attempts} attempts (n_labs={n_labs}, mean={mean}, sd={sd})"
    )


# =============================================================================
# DATASET GENERATION
# =============================================================================

def validate_simulation_config(config: SimulationConfig) -> None:
    """
    Check a SimulationConfig before drawing data.

    Raises:
        GenerationError: On any inconsistent setting
    """
    if config.n_labs < 2:
        raise GenerationError(f"n_labs must be at least 2 (got {config.n_labs})")
    if config.n_per_lab < 2 or config.n_per_lab % 2 != 0:
        raise GenerationError(
            f"n_per_lab must be a positive even number (got {config.n_per_lab})"
        )
    if config.fe_sigma <= 0 or config.re_sigma <= 0:
        raise GenerationError(
            f"Noise sds must be positive (fe_sigma={config.fe_sigma}, "
            f"re_sigma={config.re_sigma})"
        )
    if len(config.lab_effects) != config.n_labs:
        raise GenerationError(
            f"lab_effects has {len(config.lab_effects)} entries for "
            f"{config.n_labs} labs"
        )


def build_skeleton(n_labs: int, n_per_lab: int) -> pd.DataFrame:
    """
    Balanced design: every (lab, condition) cell gets n_per_lab / 2 trials.

    Rows are lab-major, condition 0 before condition 1.
    """
    n_per_cell = n_per_lab // 2
    lab = np.repeat(np.arange(1, n_labs + 1), n_per_lab)
    condition = np.tile(np.repeat([0, 1], n_per_cell), n_labs)
    return pd.DataFrame({'lab': lab, 'condition': condition})


def generate(regime: str, seed: int, config: SimulationConfig) -> pd.DataFrame:
    """
    Generate one dataset for a regime.

    obs per regime:
        null_both: N(0, fe_sigma)
        null_re:   N(condition * fe_mu, fe_sigma)
        null_fe:   N(0, fe_sigma) + N(condition * lab_effect[lab], re_sigma)
        null_none: N(condition * fe_mu, fe_sigma) + N(condition * lab_effect[lab], re_sigma)

    Args:
        regime: One of REGIMES
        seed: Replication seed; same seed and regime give the same data
        config: Frozen simulation settings (never modified)

    Returns:
        DataFrame with columns lab, condition, obs

    Raises:
        GenerationError: For an unknown regime or invalid config
    """
    if regime not in C.REGIMES:
        raise GenerationError(f"Unknown regime: {regime!r}. Must be one of {list(C.REGIMES)}")
    validate_simulation_config(config)

    rng = np.random.default_rng(seed)
    data = build_skeleton(config.n_labs, config.n_per_lab)
    condition = data['condition'].to_numpy(dtype=float)
    n = len(data)

    has_fixed = regime in (C.REGIME_NULL_RE, C.REGIME_NULL_NONE)
    has_random = regime in (C.REGIME_NULL_FE, C.REGIME_NULL_NONE)

    fixed_mean = condition * config.fe_mu if has_fixed else np.zeros(n)
    obs = rng.normal(fixed_mean, config.fe_sigma)

    if has_random:
        lab_effects = np.asarray(config.lab_effects, dtype=float)
        lab_mean = condition * lab_effects[data['lab'].to_numpy() - 1]
        obs = obs + rng.normal(lab_mean, config.re_sigma)

    data['obs'] = obs
    return data
