"""
Validity Analysis
=================

Convergent, divergent and criterion validity of the ARVIS composite.

Analyses:
1. Composite score (unweighted item sum)
2. Correlation table with Fisher-z 95% CIs and FDR-adjusted p-values
   (Spearman for ordinal or behavioural outcomes)
3. Steiger's (1980) Z test comparing a convergent and a divergent
   correlation that share the ARVIS composite
"""

from __future__ import annotations

import warnings
from dataclasses import dataclass
from itertools import combinations
from typing import Iterable, Optional, Sequence, Tuple

import numpy as np
import pandas as pd
from scipy import stats
from statsmodels.stats.multitest import multipletests

from ..preprocessing.constants import COMPOSITE_COL, SUBJECT_ID_COL
from ..preprocessing.loaders import check_schema


# =============================================================================
# SCORES
# =============================================================================

def composite_score(
    df: pd.DataFrame,
    items: Sequence[str],
    id_column: str = SUBJECT_ID_COL,
    name: str = COMPOSITE_COL,
) -> pd.Series:
    """Unweighted sum of ``items`` per subject, indexed by subject id."""
    items = list(items)
    check_schema(df, [id_column, *items], context="composite score")
    scores = df.set_index(id_column)[items].astype(float).sum(axis=1)
    return scores.rename(name)


# =============================================================================
# CORRELATIONS
# =============================================================================

def fisher_ci(r: float, n: int, level: float = 0.95) -> Tuple[float, float]:
    """Confidence interval for a correlation via Fisher's z."""
    if n <= 3 or not np.isfinite(r) or abs(r) >= 1:
        return np.nan, np.nan
    z = np.arctanh(r)
    half = stats.norm.ppf((1 + level) / 2) / np.sqrt(n - 3)
    return float(np.tanh(z - half)), float(np.tanh(z + half))


def apply_fdr_correction(
    results_df: pd.DataFrame,
    p_col: str = 'p',
    alpha: float = 0.05,
    method: str = 'fdr_bh'
) -> pd.DataFrame:
    """
    Apply FDR (Benjamini-Hochberg) correction to p-values in results DataFrame.

    Parameters
    ----------
    results_df : pd.DataFrame
        DataFrame containing p-values.
    p_col : str, default 'p'
        Column name containing p-values.
    alpha : float, default 0.05
        Significance threshold.
    method : str, default 'fdr_bh'
        Correction method. Options: 'fdr_bh', 'bonferroni', 'holm', etc.

    Returns
    -------
    pd.DataFrame
        DataFrame with added 'p_fdr' and 'significant_fdr' columns.
    """
    result = results_df.copy()

    pvals = result[p_col].to_numpy(dtype=float)
    valid_mask = ~np.isnan(pvals)

    if valid_mask.sum() < 2:
        if len(result) > 1:
            warnings.warn("Fewer than 2 valid p-values. Cannot apply FDR correction.")
        result['p_fdr'] = result[p_col]
        result['significant_fdr'] = result[p_col] < alpha
        return result

    _, p_adj, _, _ = multipletests(pvals[valid_mask], method=method, alpha=alpha)

    result['p_fdr'] = np.nan
    result.loc[valid_mask, 'p_fdr'] = p_adj
    result['significant_fdr'] = result['p_fdr'] < alpha

    return result


def correlate(x: pd.Series, y: pd.Series, method: str = "pearson") -> dict:
    """r, p, Fisher CI and n over complete pairs."""
    pair = pd.concat([x, y], axis=1).dropna()
    n = len(pair)
    if n < 3:
        return {'method': method, 'r': np.nan, 'p': np.nan, 'ci_lower': np.nan, 'ci_upper': np.nan, 'n': n}

    a, b = pair.iloc[:, 0].to_numpy(dtype=float), pair.iloc[:, 1].to_numpy(dtype=float)
    if method == "spearman":
        r, p = stats.spearmanr(a, b)
    elif method == "pearson":
        r, p = stats.pearsonr(a, b)
    else:
        raise ValueError(f"Unsupported correlation method: {method}")

    low, high = fisher_ci(float(r), n)
    return {'method': method, 'r': float(r), 'p': float(p), 'ci_lower': low, 'ci_upper': high, 'n': n}


def correlation_table(
    scores: pd.DataFrame,
    pairs: Optional[Iterable[Tuple[str, str]]] = None,
    method: str = "pearson",
    spearman_columns: Sequence[str] = (),
) -> pd.DataFrame:
    """
    Long-format correlation table.

    Parameters
    ----------
    scores : pd.DataFrame
        One column per measure, one row per subject.
    pairs : iterable of (str, str), optional
        Pairs to correlate; defaults to every pair of columns.
    method : str
        Default method, "pearson" or "spearman".
    spearman_columns : sequence of str
        Ordinal or behavioural measures; any pair involving one of these uses
        Spearman's rho.

    Returns
    -------
    pd.DataFrame
        variable_1, variable_2, method, r, p, ci_lower, ci_upper, n, p_fdr,
        significant_fdr.
    """
    pairs = list(pairs) if pairs is not None else list(combinations(scores.columns, 2))
    check_schema(scores, {col for pair in pairs for col in pair}, context="correlation table")

    rows = []
    for var1, var2 in pairs:
        pair_method = "spearman" if (var1 in spearman_columns or var2 in spearman_columns) else method
        row = {'variable_1': var1, 'variable_2': var2}
        row.update(correlate(scores[var1], scores[var2], method=pair_method))
        rows.append(row)

    table = pd.DataFrame(rows, columns=['variable_1', 'variable_2', 'method', 'r', 'p', 'ci_lower', 'ci_upper', 'n'])
    if table.empty:
        return table
    return apply_fdr_correction(table, p_col='p')


# =============================================================================
# DEPENDENT CORRELATIONS
# =============================================================================

@dataclass(frozen=True)
class ValidityComparison:
    z: float
    p_value: float
    r_jk: float
    r_jh: float
    r_kh: float
    n: int

    @property
    def significant(self) -> bool:
        return bool(self.p_value < 0.05)


def compare_overlapping_correlations(r_jk: float, r_jh: float, r_kh: float, n: int) -> ValidityComparison:
    """
    Steiger's (1980) Z test for two dependent correlations sharing variable j.

    Tests H0: rho_jk = rho_jh using the pooled correlation in the asymptotic
    covariance. Swapping ``r_jk`` and ``r_jh`` flips the sign of Z only.
    """
    if n <= 3:
        raise ValueError(f"Need n > 3 to compare correlations, got {n}")
    for label, value in (('r_jk', r_jk), ('r_jh', r_jh), ('r_kh', r_kh)):
        if not -1 < value < 1:
            raise ValueError(f"{label} must lie strictly between -1 and 1, got {value}")

    r_bar = (r_jk + r_jh) / 2.0
    r_bar_sq = r_bar ** 2
    psi = r_kh * (1 - 2 * r_bar_sq) - 0.5 * r_bar_sq * (1 - 2 * r_bar_sq - r_kh ** 2)
    c = psi / (1 - r_bar_sq) ** 2

    z = (np.arctanh(r_jk) - np.arctanh(r_jh)) * np.sqrt(n - 3) / np.sqrt(2 - 2 * c)
    p_value = 2 * stats.norm.sf(abs(z))

    return ValidityComparison(z=float(z), p_value=float(p_value), r_jk=r_jk, r_jh=r_jh, r_kh=r_kh, n=int(n))


def convergent_divergent_comparisons(
    scores: pd.DataFrame,
    target: str,
    convergent: Sequence[str],
    divergent: Sequence[str],
    method: str = "pearson",
) -> pd.DataFrame:
    """
    Compare every convergent correlation with every divergent one.

    Correlations are compared in magnitude: a negatively related measure is
    reflected (its sign flipped together with its correlation with the other
    measure) before the Steiger test.
    """
    check_schema(scores, [target, *convergent, *divergent], context="validity comparisons")

    rows = []
    for conv in convergent:
        for div in divergent:
            complete = scores[[target, conv, div]].dropna()
            n = len(complete)
            corr = complete.corr(method=method)
            r_jk, r_jh, r_kh = corr.at[target, conv], corr.at[target, div], corr.at[conv, div]
            if r_jk < 0:
                r_jk, r_kh = -r_jk, -r_kh
            if r_jh < 0:
                r_jh, r_kh = -r_jh, -r_kh

            result = compare_overlapping_correlations(float(r_jk), float(r_jh), float(r_kh), n)
            rows.append({
                'target': target,
                'convergent': conv,
                'divergent': div,
                'abs_r_convergent': result.r_jk,
                'abs_r_divergent': result.r_jh,
                'r_between': result.r_kh,
                'n': n,
                'z': result.z,
                'p': result.p_value,
            })

    table = pd.DataFrame(rows)
    if table.empty:
        return table
    return apply_fdr_correction(table, p_col='p')
