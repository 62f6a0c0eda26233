"""
Error Rate Aggregation
======================

Turns the accumulated statistics into empirical Type I / Type II error
rates per (regime, null-model label).

Whether a label's null model is true depends on the regime:

    label  tests                        null true in
    A      fixed + random slope jointly null_both
    B      fixed (random slope kept)    null_both, null_fe
    C1     random slope (fixed kept)    null_both, null_re
    C2     fixed (no random slope)      null_both, null_fe

Where the null is true, rejecting it is a Type I error; where it is false,
failing to reject is a Type II error. Failed replications (NA) are
counted separately and never enter the rates.
"""

from typing import Dict, List, Optional, Union

import numpy as np
import pandas as pd
from scipy import stats

from mixsim import constants as C
from mixsim.config import Thresholds
from mixsim.storage import ResultsStore

TYPE_I = 'Type I'
TYPE_II = 'Type II'

NULL_TRUE_IN: Dict[str, frozenset] = {
    'A': frozenset({C.REGIME_NULL_BOTH}),
    'B': frozenset({C.REGIME_NULL_BOTH, C.REGIME_NULL_FE}),
    'C1': frozenset({C.REGIME_NULL_BOTH, C.REGIME_NULL_RE}),
    'C2': frozenset({C.REGIME_NULL_BOTH, C.REGIME_NULL_FE}),
}


def null_is_true(regime: str, label: str) -> bool:
    """True when the label's null model matches the data-generating regime."""
    return regime in NULL_TRUE_IN[label]


def error_type(regime: str, label: str) -> str:
    return TYPE_I if null_is_true(regime, label) else TYPE_II


def rejects(statistics: np.ndarray, method: str, thresholds: Thresholds) -> np.ndarray:
    """Boolean rejection of the null for each (non-missing) statistic."""
    if method == C.METHOD_BAYESIAN:
        return statistics > thresholds.bf_upper
    return statistics < thresholds.alpha


def wilson_interval(k: int, n: int, confidence: float = 0.95):
    """Wilson score interval for k errors out of n (nan when n == 0)."""
    if n == 0:
        return np.nan, np.nan
    ci = stats.binomtest(k, n).proportion_ci(confidence_level=confidence, method='wilson')
    return float(ci.low), float(ci.high)


def compute_error_rates(store: Union[ResultsStore, pd.DataFrame],
                        thresholds: Optional[Thresholds] = None,
                        method: Optional[str] = None) -> pd.DataFrame:
    """
    Empirical error rates per regime and null-model label.

    Args:
        store: ResultsStore or a frame with the store columns
        thresholds: Decision thresholds (default: BF 3 / (1/3), alpha .05)
        method: "bayesian" or "frequentist"; inferred from the statistic
                column when omitted

    Returns:
        DataFrame with one row per (data_structure, null_model):
        n_total, n_missing, n_valid, missing_rate, error_type, n_errors,
        error_rate, ci_lower, ci_upper and, for Bayes factors,
        evidence_null_rate and inconclusive_rate
    """
    thresholds = thresholds or Thresholds()
    df = store.read() if isinstance(store, ResultsStore) else store

    if method is None:
        method = C.METHOD_BAYESIAN if C.COL_BF in df.columns else C.METHOD_FREQUENTIST
    column = C.statistic_column(method)
    if column not in df.columns:
        raise ValueError(f"Results lack the {column!r} column for method {method!r}")

    regimes = [r for r in C.REGIMES if r in set(df[C.COL_REGIME])]
    records: List[Dict] = []

    for regime in regimes:
        for label in C.NULL_MODEL_LABELS:
            mask = (df[C.COL_REGIME] == regime) & (df[C.COL_NULL_MODEL] == label)
            values = pd.to_numeric(df.loc[mask, column], errors='coerce').to_numpy(dtype=float)
            n_total = len(values)
            valid = values[~np.isnan(values)]
            n_valid = len(valid)

            rejected = rejects(valid, method, thresholds)
            etype = error_type(regime, label)
            n_errors = int(rejected.sum()) if etype == TYPE_I else int((~rejected).sum())
            ci_lower, ci_upper = wilson_interval(n_errors, n_valid)

            record = {
                C.COL_REGIME: regime,
                C.COL_NULL_MODEL: label,
                'method': method,
                'n_total': n_total,
                'n_missing': n_total - n_valid,
                'n_valid': n_valid,
                'missing_rate': (n_total - n_valid) / n_total if n_total else np.nan,
                'error_type': etype,
                'n_errors': n_errors,
                'error_rate': n_errors / n_valid if n_valid else np.nan,
                'ci_lower': ci_lower,
                'ci_upper': ci_upper,
            }
            if method == C.METHOD_BAYESIAN:
                evidence_null = int((valid < thresholds.bf_lower).sum())
                record['evidence_null_rate'] = evidence_null / n_valid if n_valid else np.nan
                record['inconclusive_rate'] = (
                    (n_valid - int(rejected.sum()) - evidence_null) / n_valid if n_valid else np.nan
                )
            records.append(record)

    return pd.DataFrame(records)


def error_rate_matrix(rates: pd.DataFrame) -> pd.DataFrame:
    """Pivot to a regime x label table of error rates."""
    if rates.empty:
        return pd.DataFrame()
    table = rates.pivot(index=C.COL_REGIME, columns=C.COL_NULL_MODEL, values='error_rate')
    order = [r for r in C.REGIMES if r in table.index]
    return table.loc[order, [l for l in C.NULL_MODEL_LABELS if l in table.columns]]
