"""
Monte Carlo Simulation Driver
=============================

Runs the null-model study: for every regime, N independent replications of

1. Generate a dataset from the regime's DGP (seed = replication index)
2. Fit the four models and compute the four comparison statistics
3. Record four rows, or four missing rows if any fit failed

and appends each regime's batch to the results store before moving on to
the next regime. A crash after regime k therefore keeps regimes before k.

Seeds continue from what the store already holds, so rerunning the same
configuration adds new replications instead of repeating seeds 1..N.

Example:
    >>> study = SimulationStudy(config, method='frequentist', n_workers=4)
    >>> report = study.run()
    >>> report.counts['null_both']
    {'ok': 99, 'missing': 1}
"""

import time
from concurrent.futures import ProcessPoolExecutor
from dataclasses import dataclass, field
from typing import Dict, List, Mapping, Optional, Sequence

from mixsim import constants as C
from mixsim.analysis.comparison import ReplicationOutcome, build_templates, compare
from mixsim.config import StudyConfig
from mixsim.estimation.fits import FittingFailure, CAUSE_REPLICATION_ERROR
from mixsim.simulation.dgp import GenerationError, SimulationConfig, generate
from mixsim.storage import ResultsStore
from mixsim.utils.logging_config import StudyLogger, get_logger

logger = get_logger(__name__)


@dataclass
class StudyReport:
    """What one call of run_study did."""
    method: str
    start_index: int
    n_replications: int
    seeds: Dict[str, List[int]] = field(default_factory=dict)
    counts: Dict[str, Dict[str, int]] = field(default_factory=dict)
    failures: Dict[str, List[str]] = field(default_factory=dict)
    rows_written: int = 0
    total_time: float = 0.0

    @property
    def n_missing(self) -> int:
        return sum(c['missing'] for c in self.counts.values())


def run_replication(regime: str,
                    seed: int,
                    method: str,
                    simulation: SimulationConfig,
                    templates: Mapping,
                    bridge_maxiter: int = C.BRIDGE_MAXITER,
                    bridge_tol: float = C.BRIDGE_TOL) -> ReplicationOutcome:
    """
    Run single replication.

    Generation errors propagate (they invalidate the whole study); any other
    exception becomes a missing outcome carrying its cause.
    """
    data = generate(regime, seed, simulation)

    try:
        return compare(data, method, regime, templates=templates, seed=seed,
                       bridge_maxiter=bridge_maxiter, bridge_tol=bridge_tol)
    except GenerationError:
        raise
    except Exception as e:
        failure = FittingFailure(CAUSE_REPLICATION_ERROR, f"{type(e).__name__}: {e}")
        return ReplicationOutcome.failed(regime, method, seed, failure)


class SimulationStudy:
    """
    Parallel Monte Carlo driver for one inference method.

    Replications within a regime are independent and go to a pool of
    worker processes; the coordinating process alone writes to the store,
    once per completed regime batch.
    """

    def __init__(self,
                 config: StudyConfig,
                 method: str,
                 store: Optional[ResultsStore] = None,
                 n_workers: Optional[int] = None,
                 verbose: bool = True):
        """
        Initialize study.

        Args:
            config: Frozen study configuration
            method: "bayesian" or "frequentist"
            store: Results store (default: the method's CSV in results_dir)
            n_workers: Worker processes (default: config.n_workers; 1 = sequential)
            verbose: Print progress
        """
        if method not in C.METHODS:
            raise ValueError(f"Unknown method: {method}. Must be one of {list(C.METHODS)}")
        self.config = config
        self.method = method
        self.store = store or ResultsStore.for_method(config.results_dir, method)
        self.n_workers = n_workers if n_workers is not None else config.n_workers
        self.verbose = verbose
        self.study_log = StudyLogger(method, verbose=verbose)

    def _run_batch(self, regime: str, seeds: Sequence[int], templates: Mapping) -> List[ReplicationOutcome]:
        args = (self.method, self.config.simulation, templates,
                self.config.bridge_maxiter, self.config.bridge_tol)
        outcomes = []
        n_missing = 0

        if self.n_workers > 1:
            # Parallel execution
            with ProcessPoolExecutor(max_workers=self.n_workers) as executor:
                futures = [executor.submit(run_replication, regime, seed, *args) for seed in seeds]

                for i, future in enumerate(futures):
                    outcome = future.result()
                    outcomes.append(outcome)
                    n_missing += self._note(outcome)
                    if (i + 1) % 10 == 0:
                        self.study_log.progress(i + 1, len(seeds), n_missing)
        else:
            # Sequential execution
            for i, seed in enumerate(seeds):
                outcome = run_replication(regime, seed, *args)
                outcomes.append(outcome)
                n_missing += self._note(outcome)
                if (i + 1) % 10 == 0:
                    self.study_log.progress(i + 1, len(seeds), n_missing)

        return outcomes

    def _note(self, outcome: ReplicationOutcome) -> int:
        if outcome.ok:
            return 0
        self.study_log.replication_failed(outcome.regime, outcome.seed, str(outcome.failure))
        return 1

    def run(self,
            regimes: Optional[Sequence[str]] = None,
            n_replications: Optional[int] = None,
            start_index: Optional[int] = None) -> StudyReport:
        """
        Run the study and append results regime by regime.

        Args:
            regimes: Regimes in processing order (default: config.regimes)
            n_replications: Replications per regime (default: config.n_replications)
            start_index: Seed offset; None derives it from the store

        Returns:
            StudyReport with seed ranges and successful/missing counts

        Raises:
            GenerationError: Invalid regime or generation config
            PersistenceError: Store cannot be written
        """
        start_time = time.time()
        regimes = tuple(regimes) if regimes is not None else self.config.regimes
        n_replications = n_replications if n_replications is not None else self.config.n_replications

        for regime in regimes:
            if regime not in C.REGIMES:
                raise GenerationError(f"Unknown regime: {regime!r}. Must be one of {list(C.REGIMES)}")

        if start_index is None:
            start_index = self.store.n_previous(regimes)

        report = StudyReport(method=self.method, start_index=start_index,
                             n_replications=n_replications)
        seeds = list(range(start_index + 1, start_index + n_replications + 1))
        templates = build_templates(self.method, self.config)

        self.study_log.start(regimes, n_replications, start_index)

        for regime in regimes:
            self.study_log.batch_start(regime, seeds[0], seeds[-1])
            outcomes = self._run_batch(regime, seeds, templates)

            rows = [row for outcome in outcomes for row in outcome.to_rows()]
            report.rows_written += self.store.append(rows)

            n_ok = sum(outcome.ok for outcome in outcomes)
            report.seeds[regime] = list(seeds)
            report.counts[regime] = {'ok': n_ok, 'missing': len(outcomes) - n_ok}
            report.failures[regime] = [str(o.failure) for o in outcomes if not o.ok]
            self.study_log.batch_complete(regime, n_ok, len(outcomes) - n_ok)

        report.total_time = time.time() - start_time
        self.study_log.summary(report.counts)
        return report


def run_study(regimes: Sequence[str],
              n_replications: int,
              method: str,
              start_index: Optional[int] = None,
              config: Optional[StudyConfig] = None,
              store: Optional[ResultsStore] = None,
              n_workers: Optional[int] = None,
              verbose: bool = True) -> StudyReport:
    """
    Run N replications per regime for one method, appending to the store.

    Args:
        regimes: Ordered regimes to simulate
        n_replications: Replications per regime
        method: "bayesian" or "frequentist"
        start_index: Seed offset (None = derived from the store)
        config: Study configuration (required)
        store: Results store (default: the method's CSV in config.results_dir)
        n_workers: Worker processes
        verbose: Print progress

    Returns:
        StudyReport
    """
    if n_replications < 1:
        raise ValueError(f"n_replications must be at least 1 (got {n_replications})")
    if config is None:
        raise ValueError("run_study needs a StudyConfig (see mixsim.config.load_config)")
    study = SimulationStudy(config, method, store=store, n_workers=n_workers, verbose=verbose)
    return study.run(regimes=regimes, n_replications=n_replications, start_index=start_index)
