"""
mixsim: simulation study of null-model strategies for mixed-effects models.

Compares Bayes factors (bridge sampling) with likelihood ratio tests for
detecting fixed and random condition effects across labs, under four
data-generating regimes and three null-model strategies (A, B, C1/C2).

Usage:
    from mixsim import load_config, run_study, compute_error_rates

    config = load_config("config/study_config.json")
    report = run_study(config.regimes, 100, "frequentist", config=config)

    # Or run the full pipeline
    python scripts/run_simulation.py --config config/study_config.json
"""

__version__ = "0.1.0"

from .config import StudyConfig, load_config, config_from_dict
from .simulation.dgp import GenerationError, build_lab_effects, generate
from .analysis.comparison import ComparisonResult, ReplicationOutcome, compare
from .analysis.error_rates import compute_error_rates
from .storage import PersistenceError, ResultsStore
from .validation.monte_carlo import SimulationStudy, StudyReport, run_study
