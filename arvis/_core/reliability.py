"""
Reliability Analysis
====================

Internal consistency of the retained ARVIS items.

Analyses:
1. Cronbach's alpha (raw and standardized) with item-total statistics
2. McDonald's omega total from a one-factor model
3. Omega hierarchical / omega total from a Schmid-Leiman transformed
   oblique solution (minres extraction, three group factors by default)

Degenerate Schmid-Leiman solutions (negative uniquenesses or communalities
above one) are reported with ``DegenerateSolutionWarning`` and kept on the
report instead of aborting the pipeline.
"""

from __future__ import annotations

import warnings
from dataclasses import dataclass, field
from typing import Optional, Sequence, Tuple

import numpy as np
import pandas as pd
from factor_analyzer import FactorAnalyzer

from ..errors import ConvergenceError, DegenerateSolutionWarning
from ..preprocessing.constants import EFA_ROTATION, OMEGA_GROUP_FACTORS
from ..preprocessing.loaders import check_schema


# =============================================================================
# ALPHA
# =============================================================================

def cronbach_alpha(df: pd.DataFrame) -> float:
    """
    Calculate Cronbach's alpha for internal consistency.

    Parameters
    ----------
    df : pd.DataFrame
        DataFrame with items as columns, participants as rows

    Returns
    -------
    float
        Cronbach's alpha coefficient
    """
    df_clean = df.dropna()
    if len(df_clean) < 2:
        return np.nan

    n_items = df_clean.shape[1]
    if n_items < 2:
        return np.nan

    item_variances = df_clean.var(axis=0, ddof=1)
    total_variance = df_clean.sum(axis=1).var(ddof=1)

    if total_variance == 0:
        return np.nan

    alpha = (n_items / (n_items - 1)) * (1 - item_variances.sum() / total_variance)
    return float(alpha)


def standardized_alpha(corr: pd.DataFrame) -> float:
    """Alpha from the mean inter-item correlation (items scaled to unit variance)."""
    values = np.asarray(corr, dtype=float)
    p = values.shape[0]
    if p < 2:
        return np.nan
    r_bar = values[~np.eye(p, dtype=bool)].mean()
    return float(p * r_bar / (1 + (p - 1) * r_bar))


def interpret_alpha(alpha: float) -> str:
    """Interpret Cronbach's alpha value."""
    if np.isnan(alpha):
        return "N/A"
    if alpha >= 0.9:
        return "Excellent"
    if alpha >= 0.8:
        return "Good"
    if alpha >= 0.7:
        return "Acceptable"
    if alpha >= 0.6:
        return "Questionable"
    if alpha >= 0.5:
        return "Poor"
    return "Unacceptable"


def item_total_statistics(df: pd.DataFrame, items: Sequence[str]) -> pd.DataFrame:
    """
    Corrected item-total correlation and alpha-if-item-deleted.

    Returns
    -------
    pd.DataFrame
        Indexed by item with columns mean, sd, corrected_item_total_r,
        alpha_if_deleted.
    """
    items = list(items)
    check_schema(df, items, context="item-total statistics")
    data = df[items].astype(float)
    total = data.sum(axis=1)

    rows = []
    for item in items:
        rest = total - data[item]
        others = [other for other in items if other != item]
        rows.append({
            'item': item,
            'mean': float(data[item].mean()),
            'sd': float(data[item].std(ddof=1)),
            'corrected_item_total_r': float(data[item].corr(rest)),
            'alpha_if_deleted': cronbach_alpha(data[others]) if len(others) >= 2 else np.nan,
        })
    return pd.DataFrame(rows).set_index('item')


# =============================================================================
# OMEGA
# =============================================================================

def omega_total_single_factor(df: pd.DataFrame, items: Sequence[str]) -> float:
    """McDonald's omega total from a one-factor ML solution."""
    items = list(items)
    check_schema(df, items, context="omega")
    if len(items) < 3:
        return np.nan

    fa = FactorAnalyzer(n_factors=1, rotation=None, method='ml')
    try:
        fa.fit(df[items].astype(float))
    except (np.linalg.LinAlgError, ValueError) as e:
        raise ConvergenceError(f"One-factor omega failed for {len(items)} items: {e}") from e

    loadings = fa.loadings_[:, 0]
    uniquenesses = 1.0 - loadings ** 2
    common = loadings.sum() ** 2
    return float(common / (common + uniquenesses.sum()))


@dataclass(frozen=True)
class SchmidLeimanResult:
    g_loadings: pd.Series
    group_loadings: pd.DataFrame
    communalities: pd.Series
    uniquenesses: pd.Series
    second_order: pd.Series
    omega_hierarchical: float
    omega_total: float
    warnings: Tuple[str, ...] = ()


def _align_signs(pattern: np.ndarray, phi: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
    """Flip factors so each has a positive loading sum; phi follows the flips."""
    signs = np.where(pattern.sum(axis=0) < 0, -1.0, 1.0)
    return pattern * signs, phi * np.outer(signs, signs)


def _second_order_loadings(phi: np.ndarray) -> np.ndarray:
    k = phi.shape[0]
    if k == 2:
        # Two group factors cannot identify a second-order factor; split phi12 evenly
        return np.repeat(np.sqrt(abs(phi[0, 1])), 2)

    fa = FactorAnalyzer(n_factors=1, rotation=None, method='minres', is_corr_matrix=True)
    fa.fit(phi)
    g = fa.loadings_[:, 0]
    return -g if g.sum() < 0 else g


def schmid_leiman(pattern: pd.DataFrame, phi: pd.DataFrame, corr: pd.DataFrame) -> SchmidLeimanResult:
    """
    Schmid-Leiman transformation of an oblique solution.

    Parameters
    ----------
    pattern : pd.DataFrame
        Oblique pattern loadings, items x group factors (at least two).
    phi : pd.DataFrame
        Group factor correlation matrix.
    corr : pd.DataFrame
        Item correlation matrix the solution was fit to.

    Returns
    -------
    SchmidLeimanResult
        General and group loadings, h2, u2, omega hierarchical and total.
        Items with u2 < 0 or h2 > 1 are listed in ``warnings``.
    """
    k = pattern.shape[1]
    if k < 2:
        raise ValueError("Schmid-Leiman needs at least two group factors")

    items = list(pattern.index)
    factors = list(pattern.columns)
    lam, phi_values = _align_signs(pattern.to_numpy(dtype=float), phi.to_numpy(dtype=float))

    notes = []
    g_factor = _second_order_loadings(phi_values)
    residual = 1.0 - g_factor ** 2
    if np.any(residual < 0):
        notes.append("Second-order loading above 1; group loadings set to 0 for that factor")
    residual = np.clip(residual, 0.0, None)

    g_items = lam @ g_factor
    group = lam * np.sqrt(residual)
    h2 = g_items ** 2 + (group ** 2).sum(axis=1)
    u2 = 1.0 - h2

    degenerate = [item for item, h, u in zip(items, h2, u2) if u < 0 or h > 1]
    if degenerate:
        notes.append(f"Ultra-Heywood case (h2 > 1) for items {degenerate}")

    v_total = float(np.asarray(corr, dtype=float).sum())
    omega_h = float(g_items.sum() ** 2 / v_total)
    omega_t = float(1.0 - u2.sum() / v_total)

    for note in notes:
        warnings.warn(note, DegenerateSolutionWarning, stacklevel=2)

    return SchmidLeimanResult(
        g_loadings=pd.Series(g_items, index=items, name='g'),
        group_loadings=pd.DataFrame(group, index=items, columns=factors),
        communalities=pd.Series(h2, index=items, name='h2'),
        uniquenesses=pd.Series(u2, index=items, name='u2'),
        second_order=pd.Series(g_factor, index=factors, name='g'),
        omega_hierarchical=omega_h,
        omega_total=omega_t,
        warnings=tuple(notes),
    )


# =============================================================================
# REPORT
# =============================================================================

@dataclass(frozen=True)
class ReliabilityReport:
    n_items: int
    n_obs: int
    alpha: float
    standardized_alpha: float
    omega_total_1f: float
    omega_hierarchical: float
    omega_total: float
    item_total: pd.DataFrame = field(repr=False)
    schmid_leiman: Optional[SchmidLeimanResult] = field(default=None, repr=False)
    warnings: Tuple[str, ...] = ()

    @property
    def interpretation(self) -> str:
        return interpret_alpha(self.alpha)

    def to_dict(self) -> dict:
        return {
            'n_items': self.n_items,
            'n_obs': self.n_obs,
            'cronbach_alpha': self.alpha,
            'standardized_alpha': self.standardized_alpha,
            'interpretation': self.interpretation,
            'omega_total_1f': self.omega_total_1f,
            'omega_hierarchical': self.omega_hierarchical,
            'omega_total': self.omega_total,
            'warnings': list(self.warnings),
            'item_total': self.item_total.reset_index().to_dict(orient='records'),
        }


def compute_reliability(
    df: pd.DataFrame,
    items: Sequence[str],
    n_group_factors: int = OMEGA_GROUP_FACTORS,
    rotation: str = EFA_ROTATION,
    verbose: bool = False,
) -> ReliabilityReport:
    """
    Alpha, single-factor omega and Schmid-Leiman omegas for an item set.

    The group-factor count is capped at ``p - 1`` items; with fewer than two
    group factors omega hierarchical is undefined and reported as NaN.
    """
    items = list(items)
    check_schema(df, items, context="reliability")
    data = df[items].astype(float)
    corr = data.corr()

    alpha = cronbach_alpha(data)
    notes = []

    k = min(n_group_factors, len(items) - 1)
    sl_result = None
    omega_h = omega_t = np.nan
    if k >= 2:
        fa = FactorAnalyzer(n_factors=k, rotation=rotation, method='minres')
        try:
            fa.fit(data)
        except (np.linalg.LinAlgError, ValueError) as e:
            raise ConvergenceError(f"Schmid-Leiman extraction failed ({k} factors, {len(items)} items): {e}") from e

        factors = [f"F{i + 1}" for i in range(k)]
        pattern = pd.DataFrame(fa.loadings_, index=items, columns=factors)
        phi_values = fa.phi_ if getattr(fa, 'phi_', None) is not None else np.eye(k)
        phi = pd.DataFrame(phi_values, index=factors, columns=factors)

        sl_result = schmid_leiman(pattern, phi, corr)
        omega_h, omega_t = sl_result.omega_hierarchical, sl_result.omega_total
        notes.extend(sl_result.warnings)
    else:
        notes.append(f"Too few items ({len(items)}) for a {n_group_factors}-group-factor omega")

    report = ReliabilityReport(
        n_items=len(items),
        n_obs=len(data),
        alpha=alpha,
        standardized_alpha=standardized_alpha(corr),
        omega_total_1f=omega_total_single_factor(df, items),
        omega_hierarchical=omega_h,
        omega_total=omega_t,
        item_total=item_total_statistics(df, items),
        schmid_leiman=sl_result,
        warnings=tuple(notes),
    )

    if verbose:
        print(f"  Cronbach's alpha = {report.alpha:.3f} ({report.interpretation})")
        print(f"  Omega hierarchical = {report.omega_hierarchical:.3f}, omega total = {report.omega_total:.3f}")
        for note in report.warnings:
            print(f"  [WARN] {note}")

    return report
