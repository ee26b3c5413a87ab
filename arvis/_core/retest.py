"""
Test-Retest Reliability
=======================

Stability of the ARVIS composite between two administrations.

Analyses:
1. Inner join of time-1 and time-2 scores by subject id
2. Pearson retest correlation with Fisher-z 95% CI
3. Two-way intraclass correlations (McGraw & Wong, 1996): absolute
   agreement and consistency, single and average measures, with F tests
   and confidence intervals
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Union

import numpy as np
import pandas as pd
from scipy import stats

from ..preprocessing.constants import COMPOSITE_COL, ICC_ALPHA, SUBJECT_ID_COL
from ..preprocessing.loaders import check_schema
from .validity import fisher_ci

ICC_TYPES = ("agreement", "consistency")
ICC_UNITS = ("single", "average")


# =============================================================================
# PAIRING
# =============================================================================

@dataclass(frozen=True)
class RetestPairs:
    data: pd.DataFrame = field(repr=False)
    n_unmatched_time1: int
    n_unmatched_time2: int

    @property
    def n(self) -> int:
        return len(self.data)

    def ratings(self) -> np.ndarray:
        return self.data[['time1', 'time2']].to_numpy(dtype=float)


def _as_scores(scores: Union[pd.Series, pd.DataFrame], id_column: str, value_column: str) -> pd.Series:
    if isinstance(scores, pd.DataFrame):
        check_schema(scores, [id_column, value_column], context="retest scores")
        scores = scores.set_index(id_column)[value_column]
    scores = scores.copy()
    scores.index = scores.index.astype(str)
    return scores


def join_by_id(
    time1: Union[pd.Series, pd.DataFrame],
    time2: Union[pd.Series, pd.DataFrame],
    id_column: str = SUBJECT_ID_COL,
    value_column: str = COMPOSITE_COL,
    verbose: bool = False,
) -> RetestPairs:
    """
    Pair time-1 and time-2 scores by subject id (inner join).

    Scores may be Series indexed by subject id or DataFrames holding
    ``id_column`` and ``value_column``. Subjects present at only one time
    point are dropped and counted.
    """
    t1 = _as_scores(time1, id_column, value_column).rename('time1')
    t2 = _as_scores(time2, id_column, value_column).rename('time2')

    joined = pd.concat([t1, t2], axis=1, join='inner').dropna()
    joined.index.name = id_column
    data = joined.reset_index()

    pairs = RetestPairs(
        data=data,
        n_unmatched_time1=int((~t1.index.isin(data[id_column])).sum()),
        n_unmatched_time2=int((~t2.index.isin(data[id_column])).sum()),
    )

    if verbose:
        print(f"  Retest pairs: {pairs.n} (unmatched: time1={pairs.n_unmatched_time1}, "
              f"time2={pairs.n_unmatched_time2})")

    return pairs


# =============================================================================
# CORRELATION
# =============================================================================

@dataclass(frozen=True)
class RetestCorrelation:
    r: float
    t: float
    df: int
    p_value: float
    ci_lower: float
    ci_upper: float
    n: int


def pearson_retest(pairs: RetestPairs) -> RetestCorrelation:
    n = pairs.n
    if n < 3:
        raise ValueError(f"Need at least 3 retest pairs, got {n}")
    r, p = stats.pearsonr(pairs.data['time1'], pairs.data['time2'])
    r = float(r)
    df = n - 2
    t = r * np.sqrt(df / (1 - r ** 2)) if abs(r) < 1 else np.copysign(np.inf, r)
    low, high = fisher_ci(r, n)
    return RetestCorrelation(r=r, t=float(t), df=df, p_value=float(p), ci_lower=low, ci_upper=high, n=n)


# =============================================================================
# INTRACLASS CORRELATION
# =============================================================================

@dataclass(frozen=True)
class ICCResult:
    type: str
    unit: str
    icc: float
    f: float
    df1: float
    df2: float
    p_value: float
    ci_lower: float
    ci_upper: float
    n: int
    k: int

    def to_dict(self) -> dict:
        return {
            'type': self.type,
            'unit': self.unit,
            'icc': self.icc,
            'f': self.f,
            'df1': self.df1,
            'df2': self.df2,
            'p_value': self.p_value,
            'ci_lower': self.ci_lower,
            'ci_upper': self.ci_upper,
            'n': self.n,
            'k': self.k,
        }


def _spearman_brown(value: float, k: int) -> float:
    return k * value / (1 + (k - 1) * value)


def icc_from_matrix(
    ratings: np.ndarray,
    type: str = "agreement",
    unit: str = "single",
    alpha: float = ICC_ALPHA,
) -> ICCResult:
    """
    Two-way ICC for an n subjects x k occasions matrix.

    Parameters
    ----------
    ratings : np.ndarray
        Complete matrix, one row per subject.
    type : str
        "agreement" (absolute agreement, occasion effects count as error)
        or "consistency" (occasion effects removed).
    unit : str
        "single" measure or "average" of the k measures.
    alpha : float
        1 - confidence level of the interval.

    Returns
    -------
    ICCResult
    """
    if type not in ICC_TYPES:
        raise ValueError(f"Unknown ICC type: {type}. Valid: {ICC_TYPES}")
    if unit not in ICC_UNITS:
        raise ValueError(f"Unknown ICC unit: {unit}. Valid: {ICC_UNITS}")

    y = np.asarray(ratings, dtype=float)
    if y.ndim != 2 or y.shape[0] < 2 or y.shape[1] < 2:
        raise ValueError(f"Need at least 2 subjects x 2 occasions, got shape {y.shape}")
    if np.isnan(y).any():
        raise ValueError("Ratings matrix contains missing values")

    n, k = y.shape
    grand = y.mean()
    ss_rows = k * ((y.mean(axis=1) - grand) ** 2).sum()
    ss_cols = n * ((y.mean(axis=0) - grand) ** 2).sum()
    ss_err = ((y - grand) ** 2).sum() - ss_rows - ss_cols

    ms_r = ss_rows / (n - 1)
    ms_c = ss_cols / (k - 1)
    ms_e = ss_err / ((n - 1) * (k - 1))

    f_value = ms_r / ms_e
    df1 = n - 1
    df2 = (n - 1) * (k - 1)
    p_value = float(stats.f.sf(f_value, df1, df2))

    if type == "consistency":
        icc = (ms_r - ms_e) / (ms_r + (k - 1) * ms_e)
        f_low = f_value / stats.f.ppf(1 - alpha / 2, df1, df2)
        f_high = f_value * stats.f.ppf(1 - alpha / 2, df2, df1)
        lower = (f_low - 1) / (f_low + k - 1)
        upper = (f_high - 1) / (f_high + k - 1)
    else:
        icc = (ms_r - ms_e) / (ms_r + (k - 1) * ms_e + (k / n) * (ms_c - ms_e))
        a = k * icc / (n * (1 - icc))
        b = 1 + k * icc * (n - 1) / (n * (1 - icc))
        v = (a * ms_c + b * ms_e) ** 2 / ((a * ms_c) ** 2 / (k - 1) + (b * ms_e) ** 2 / ((n - 1) * (k - 1)))
        f_low = stats.f.ppf(1 - alpha / 2, n - 1, v)
        f_high = stats.f.ppf(1 - alpha / 2, v, n - 1)
        lower = n * (ms_r - f_low * ms_e) / (f_low * (k * ms_c + (k * n - k - n) * ms_e) + n * ms_r)
        upper = n * (f_high * ms_r - ms_e) / (k * ms_c + (k * n - k - n) * ms_e + n * f_high * ms_r)

    if unit == "average":
        icc, lower, upper = (_spearman_brown(v_, k) for v_ in (icc, lower, upper))

    return ICCResult(
        type=type,
        unit=unit,
        icc=float(icc),
        f=float(f_value),
        df1=float(df1),
        df2=float(df2),
        p_value=p_value,
        ci_lower=float(lower),
        ci_upper=float(upper),
        n=n,
        k=k,
    )


def intraclass_correlation(
    pairs: RetestPairs,
    type: str = "agreement",
    unit: str = "single",
    alpha: float = ICC_ALPHA,
) -> ICCResult:
    return icc_from_matrix(pairs.ratings(), type=type, unit=unit, alpha=alpha)


def retest_icc_table(pairs: RetestPairs, alpha: float = ICC_ALPHA) -> pd.DataFrame:
    """Agreement and consistency ICCs for single and average measures."""
    rows = [
        intraclass_correlation(pairs, type=icc_type, unit=unit, alpha=alpha).to_dict()
        for icc_type in ICC_TYPES
        for unit in ICC_UNITS
    ]
    return pd.DataFrame(rows)
