"""
Centralized Constants for the Null-Model Simulation Study
==========================================================

This module defines all magic numbers and constants used across the study.
Import from here to ensure consistency and avoid hardcoded values.

Usage:
    from mixsim.constants import REGIMES, BF_UPPER, ALPHA
    # or
    import mixsim.constants as C
    reject = bf > C.BF_UPPER

Author: Mixed Models Simulation Team
"""

# =============================================================================
# DATA-GENERATING REGIMES
# =============================================================================

# Ordered: the driver processes regimes in exactly this order
REGIME_NULL_BOTH = 'null_both'   # no fixed effect, no random slope
REGIME_NULL_RE = 'null_re'       # fixed effect only
REGIME_NULL_FE = 'null_fe'       # random slope only (lab effects cancel)
REGIME_NULL_NONE = 'null_none'   # fixed effect and random slope

REGIMES = (REGIME_NULL_BOTH, REGIME_NULL_RE, REGIME_NULL_FE, REGIME_NULL_NONE)


# =============================================================================
# NULL-MODEL LABELS
# =============================================================================

NULL_MODEL_LABELS = ('A', 'B', 'C1', 'C2')

# One row per label per replication in both result stores
ROWS_PER_REPLICATION = len(NULL_MODEL_LABELS)


# =============================================================================
# INFERENCE METHODS
# =============================================================================

METHOD_BAYESIAN = 'bayesian'
METHOD_FREQUENTIST = 'frequentist'
METHODS = (METHOD_BAYESIAN, METHOD_FREQUENTIST)


# =============================================================================
# DECISION THRESHOLDS
# =============================================================================

# Bayes factor (effect model over null model)
BF_UPPER = 3.0        # BF > 3: evidence for the effect, null rejected
BF_LOWER = 1.0 / 3.0  # BF < 1/3: evidence for the null

# Likelihood-ratio test
ALPHA = 0.05


# =============================================================================
# DESIGN DEFAULTS
# =============================================================================

N_LABS_DEFAULT = 20
N_PER_LAB_DEFAULT = 24

FE_MU_DEFAULT = 0.5
FE_SIGMA_DEFAULT = 0.2
RE_SIGMA_DEFAULT = 0.2

# Every lab carries at least this much condition effect
LAB_EFFECT_FLOOR = 0.05
LAB_EFFECT_MAX_ATTEMPTS = 1000

SEED_DEFAULT = 42


# =============================================================================
# SAMPLER DEFAULTS (Bayesian path)
# =============================================================================

# High adaptation targets avoid divergent transitions with few trials per lab
TARGET_ACCEPT_DEFAULT = 0.99
MAX_TREEDEPTH_DEFAULT = 15

N_DRAWS_DEFAULT = 2000
N_TUNE_DEFAULT = 1000
N_CHAINS_DEFAULT = 4

MAX_DIVERGENCES_DEFAULT = 0
MAX_RHAT_DEFAULT = 1.05


# =============================================================================
# BRIDGE SAMPLING DEFAULTS
# =============================================================================

BRIDGE_MAXITER = 1000
BRIDGE_TOL = 1e-10


# =============================================================================
# FREQUENTIST DEFAULTS
# =============================================================================

# Relative random-effect sd below this marks a singular (boundary) fit
SINGULAR_TOL = 1e-4

# Relative variance added to the random-effect covariance when the profile
# likelihood is evaluated on the boundary (keeps its log-determinant finite)
BOUNDARY_FLOOR = 1e-8

# Starting relative sds for the boundary profile fit
BOUNDARY_STARTS = (0.1, 1.0)


# =============================================================================
# FILE PATHS (relative to project root)
# =============================================================================

CONFIG_PATH = 'config/study_config.json'
RESULTS_DIR = 'results'
BF_RESULTS_FILE = 'bf_results.csv'
P_RESULTS_FILE = 'p_results.csv'
ERROR_RATES_FILE = 'error_rates_{method}.csv'

# Column names shared with the R-side analysis scripts
COL_REGIME = 'data_structure'
COL_NULL_MODEL = 'null_model'
COL_BF = 'bf'
COL_P_VALUE = 'p.value'


def statistic_column(method: str) -> str:
    """Return the store column holding the test statistic for a method."""
    if method == METHOD_BAYESIAN:
        return COL_BF
    if method == METHOD_FREQUENTIST:
        return COL_P_VALUE
    raise ValueError(f"Unknown method: {method}. Must be one of {list(METHODS)}")
