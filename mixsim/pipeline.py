"""
Study Pipeline
==============

Runs the whole study for the configured methods:

1. (optional) simulate new replications and append them to the stores
2. aggregate every store into error-rate tables
3. save the tables next to the stores

With ``run_simulation = false`` only step 2 and 3 run, re-aggregating what
earlier runs produced.
"""

from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Optional, Sequence

import pandas as pd

from mixsim import constants as C
from mixsim.analysis.error_rates import compute_error_rates, error_rate_matrix
from mixsim.config import StudyConfig
from mixsim.storage import ResultsStore
from mixsim.utils.logging_config import get_logger
from mixsim.validation.monte_carlo import StudyReport, run_study

logger = get_logger(__name__)


@dataclass
class MethodResult:
    """Outcome of the pipeline for one method."""
    method: str
    report: Optional[StudyReport]
    error_rates: pd.DataFrame
    output_path: Optional[Path] = None


def run_pipeline(config: StudyConfig,
                 methods: Optional[Sequence[str]] = None,
                 n_workers: Optional[int] = None,
                 verbose: bool = True) -> Dict[str, MethodResult]:
    """
    Simulate (if enabled) and aggregate for each method.

    Args:
        config: Frozen study configuration
        methods: Methods to process (default: config.methods)
        n_workers: Override config.n_workers
        verbose: Print progress and the error-rate tables

    Returns:
        {method: MethodResult}
    """
    methods = tuple(methods) if methods is not None else config.methods
    results: Dict[str, MethodResult] = {}

    for method in methods:
        store = ResultsStore.for_method(config.results_dir, method)

        report = None
        if config.run_simulation:
            report = run_study(config.regimes, config.n_replications, method,
                               config=config, store=store, n_workers=n_workers,
                               verbose=verbose)
        elif not store.exists():
            logger.warning(f"Simulation disabled and no {method} store at {store.path}; skipping")
            continue

        rates = compute_error_rates(store, config.thresholds, method)
        output_path = Path(config.results_dir) / C.ERROR_RATES_FILE.format(method=method)
        if not rates.empty:
            output_path.parent.mkdir(parents=True, exist_ok=True)
            rates.to_csv(output_path, index=False)
            logger.info(f"Error rates saved to: {output_path}")

        if verbose and not rates.empty:
            print(f"\nError rates ({method}):")
            print(error_rate_matrix(rates).to_string(float_format=lambda x: f"{x:.3f}"))
            missing = rates.groupby(C.COL_REGIME, sort=False)['n_missing'].max()
            print("\nMissing replications per regime:")
            print(missing.to_string())

        results[method] = MethodResult(method, report, rates, output_path if not rates.empty else None)

    return results
