"""
Structured Logging for the Simulation Study
===========================================

Provides consistent logging across the study.

Usage:
    from mixsim.utils.logging_config import get_logger, StudyLogger

    # Simple logging
    logger = get_logger(__name__)
    logger.info("Starting study")

    # Structured study progress
    study_log = StudyLogger("frequentist")
    study_log.start(regimes, n_replications=100, start_index=0)
    study_log.batch_complete("null_both", n_ok=98, n_missing=2)
"""

import json
import logging
import sys
import warnings
from datetime import datetime, timezone
from typing import Dict, Optional

NOISY_LOGGERS = ("pymc", "pytensor", "arviz")


# =============================================================================
# LOGGING CONFIGURATION
# =============================================================================

def setup_logging(
    level: int = logging.INFO,
    log_file: Optional[str] = None,
    format_style: str = "standard"
) -> None:
    """
    Configure logging for the mixsim package.

    Args:
        level: Logging level (DEBUG, INFO, WARNING, ERROR)
        log_file: Optional file path for log output
        format_style: "standard", "detailed", or "json"
    """
    formats = {
        "standard": "%(asctime)s | %(levelname)-8s | %(message)s",
        "detailed": "%(asctime)s | %(levelname)-8s | %(name)s:%(lineno)d | %(message)s",
        "json": None  # Handled by JsonFormatter
    }

    handlers = []

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(level)

    if format_style == "json":
        console_handler.setFormatter(JsonFormatter())
    else:
        console_handler.setFormatter(
            logging.Formatter(formats.get(format_style, formats["standard"]),
                              datefmt="%Y-%m-%d %H:%M:%S")
        )
    handlers.append(console_handler)

    if log_file:
        file_handler = logging.FileHandler(log_file)
        file_handler.setLevel(level)
        file_handler.setFormatter(
            logging.Formatter(formats["detailed"], datefmt="%Y-%m-%d %H:%M:%S")
        )
        handlers.append(file_handler)

    logging.basicConfig(level=level, handlers=handlers, force=True)

    # Sampler backends log compilation and per-chain chatter at INFO
    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(max(level, logging.WARNING))


def get_logger(name: str) -> logging.Logger:
    """Get a logger instance for a module."""
    return logging.getLogger(name)


class JsonFormatter(logging.Formatter):
    """JSON formatter for structured logging."""

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        # Replication context attached by StudyLogger
        study = getattr(record, "study", None)
        if study:
            log_data.update(study)

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_data)


# =============================================================================
# STUDY LOGGER
# =============================================================================

class StudyLogger:
    """
    Structured logger for simulation study progress.

    Example:
        logger = StudyLogger("bayesian")
        logger.start(["null_both"], n_replications=10, start_index=0)
        logger.batch_start("null_both", first_seed=1, last_seed=10)
        logger.replication_failed("null_both", 3, "divergence [FULL]: 2 divergent transitions")
        logger.batch_complete("null_both", n_ok=9, n_missing=1)
    """

    def __init__(self, method: str, verbose: bool = True):
        self.method = method
        self.verbose = verbose
        self.start_time: Optional[datetime] = None
        self.batch_start_time: Optional[datetime] = None
        self._logger = get_logger(f"mixsim.study.{method}")

    def _print(self, message: str) -> None:
        """Print if verbose mode is on."""
        if self.verbose:
            print(message)

    def start(self, regimes, n_replications: int, start_index: int) -> None:
        """Log study start."""
        self.start_time = datetime.now()
        self._print(f"\n{'='*60}")
        self._print(f"Simulation study: {self.method}")
        self._print(f"Regimes: {', '.join(regimes)}")
        self._print(f"Seeds: {start_index + 1}..{start_index + n_replications} per regime")
        self._print(f"{'='*60}")
        self._logger.info(
            f"Started study: method={self.method} regimes={list(regimes)} "
            f"n_replications={n_replications} start_index={start_index}"
        )

    def batch_start(self, regime: str, first_seed: int, last_seed: int) -> None:
        """Log the start of one regime batch."""
        self.batch_start_time = datetime.now()
        self._print(f"\nRegime: {regime} (seeds {first_seed}..{last_seed})")
        self._print("-" * 40)
        self._logger.info(f"Batch start: {regime} seeds {first_seed}..{last_seed}")

    def progress(self, done: int, total: int, n_missing: int) -> None:
        """Log batch progress."""
        self._print(f"  Completed {done}/{total} (missing: {n_missing})")
        self._logger.debug(f"Progress {done}/{total}, missing={n_missing}")

    def replication_failed(self, regime: str, seed: int, cause: str) -> None:
        """Log a replication recorded as missing."""
        self._logger.warning(
            f"Replication failed: {regime} seed={seed} | {cause}",
            extra={"study": {"method": self.method, "regime": regime,
                             "seed": seed, "cause": cause}},
        )

    def batch_complete(self, regime: str, n_ok: int, n_missing: int) -> None:
        """Log completion of a regime batch."""
        elapsed = (datetime.now() - self.batch_start_time).total_seconds() if self.batch_start_time else 0
        self._print(f"  Done in {elapsed:.1f}s | successful: {n_ok} | missing: {n_missing}")
        self._logger.info(
            f"Batch complete: {self.method} {regime} | ok={n_ok} | missing={n_missing} | "
            f"time={elapsed:.1f}s"
        )

    def summary(self, counts: Dict[str, Dict[str, int]]) -> None:
        """Log per-regime successful vs missing counts for the whole run."""
        elapsed = (datetime.now() - self.start_time).total_seconds() if self.start_time else 0
        self._print(f"\n{'='*60}")
        self._print(f"Study complete ({self.method}) in {elapsed:.1f}s")
        self._print(f"{'Regime':<12} {'Successful':>12} {'Missing':>10}")
        for regime, c in counts.items():
            self._print(f"{regime:<12} {c['ok']:>12} {c['missing']:>10}")
        self._print(f"{'='*60}")
        self._logger.info(f"Study complete: {self.method} | {counts} | time={elapsed:.1f}s")


# =============================================================================
# WARNING CONFIGURATION
# =============================================================================

def configure_warnings(debug_mode: bool = False) -> None:
    """
    Configure warning filters for model fitting.

    By default, suppresses expected warnings from statsmodels and PyMC.
    Set debug_mode=True to see all warnings for troubleshooting.

    Suppressed warnings (when debug_mode=False):
        - ConvergenceWarning: boundary fits under null regimes (expected)
        - FutureWarning: library deprecation warnings
        - overflow / divide by zero / invalid value: numerical chatter
          during optimization and sampling
    """
    if debug_mode:
        warnings.filterwarnings('default')
        logging.info("Debug mode: All warnings enabled")
    else:
        from statsmodels.tools.sm_exceptions import ConvergenceWarning

        warnings.filterwarnings('ignore', category=ConvergenceWarning)
        warnings.filterwarnings('ignore', category=FutureWarning)
        warnings.filterwarnings('ignore', message='.*overflow.*')
        warnings.filterwarnings('ignore', message='.*divide by zero.*')
        warnings.filterwarnings('ignore', message='.*invalid value.*')
