"""
Append-Only Results Stores
==========================

One CSV file per inference method:

    bf_results.csv  data_structure, null_model, bf
    p_results.csv   data_structure, null_model, p.value

Missing statistics (failed replications) are written as NA. Each
replication of a regime contributes exactly four rows, one per null-model
label, which lets a rerun derive how many seeds were already consumed.
"""

from pathlib import Path
from typing import Iterable, Optional, Sequence, Union

import pandas as pd

from mixsim import constants as C
from mixsim.utils.logging_config import get_logger

logger = get_logger(__name__)

NA_REP = 'NA'


class PersistenceError(OSError):
    """The results store cannot be read or written. Fatal for the run."""


class ResultsStore:
    """
    CSV store of comparison statistics for one method.

    Example:
        >>> store = ResultsStore.for_method('results', 'frequentist')
        >>> store.append(rows)
        >>> store.n_previous(REGIMES)
        100
    """

    def __init__(self, path: Union[str, Path], statistic_column: str):
        self.path = Path(path)
        self.statistic_column = statistic_column

    @classmethod
    def for_method(cls, results_dir: Union[str, Path], method: str) -> 'ResultsStore':
        """Store for a method inside a results directory."""
        filename = C.BF_RESULTS_FILE if method == C.METHOD_BAYESIAN else C.P_RESULTS_FILE
        return cls(Path(results_dir) / filename, C.statistic_column(method))

    @property
    def columns(self):
        return [C.COL_REGIME, C.COL_NULL_MODEL, self.statistic_column]

    def exists(self) -> bool:
        return self.path.exists()

    def read(self) -> pd.DataFrame:
        """
        Read all stored rows.

        Returns:
            DataFrame with the store columns (empty if the file is absent)

        Raises:
            PersistenceError: If the file exists but cannot be parsed
        """
        if not self.path.exists():
            return pd.DataFrame({col: pd.Series(dtype=float if col == self.statistic_column else object)
                                 for col in self.columns})
        try:
            df = pd.read_csv(self.path, na_values=[NA_REP], keep_default_na=True)
        except (OSError, pd.errors.ParserError, pd.errors.EmptyDataError) as e:
            raise PersistenceError(f"Cannot read results store {self.path}: {e}") from e

        missing = [col for col in self.columns if col not in df.columns]
        if missing:
            raise PersistenceError(
                f"Results store {self.path} lacks columns {missing}; "
                f"found {list(df.columns)}"
            )
        df[self.statistic_column] = pd.to_numeric(df[self.statistic_column], errors='coerce')
        return df[self.columns]

    def append(self, rows: Union[pd.DataFrame, Iterable]) -> int:
        """
        Append rows, writing the header only when the file is new.

        Args:
            rows: DataFrame with the store columns, or ComparisonResult objects

        Returns:
            Number of rows written

        Raises:
            PersistenceError: If the file cannot be written
        """
        df = rows if isinstance(rows, pd.DataFrame) else self.to_frame(rows)
        df = df[self.columns]
        if df.empty:
            return 0

        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            write_header = not self.path.exists() or self.path.stat().st_size == 0
            df.to_csv(self.path, mode='a', header=write_header, index=False, na_rep=NA_REP)
        except OSError as e:
            raise PersistenceError(f"Cannot append to results store {self.path}: {e}") from e

        logger.info(f"Appended {len(df)} rows to {self.path}")
        return len(df)

    def to_frame(self, results: Iterable) -> pd.DataFrame:
        """Convert ComparisonResult objects to store rows."""
        records = [
            {
                C.COL_REGIME: r.regime,
                C.COL_NULL_MODEL: r.null_model,
                self.statistic_column: r.statistic,
            }
            for r in results
        ]
        return pd.DataFrame(records, columns=self.columns)

    def n_previous(self, regimes: Optional[Sequence[str]] = None,
                   rows_per_replication: int = C.ROWS_PER_REPLICATION) -> int:
        """
        Replications already stored, i.e. the seed offset for the next run.

        Each (regime, replication) pair contributes rows_per_replication rows.
        The largest per-regime count is used, so a run interrupted part way
        never hands out an already-consumed seed.

        Args:
            regimes: Regimes to consider (default: all present in the store)
            rows_per_replication: Rows one replication writes (4 labels)

        Returns:
            Number of replications already completed per regime
        """
        df = self.read()
        if df.empty:
            return 0
        counts = df.groupby(C.COL_REGIME).size()
        if regimes is not None:
            counts = counts.reindex(list(regimes), fill_value=0)
        if counts.empty:
            return 0
        return int(counts.max()) // rows_per_replication
