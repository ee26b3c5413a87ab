"""
Fit-index helpers for maximum-likelihood factor models.

Used for EFA solutions (factor_analyzer reports loadings but no fit tests)
and to add the RMSEA confidence interval and SRMR to semopy's CFA output.
"""

from __future__ import annotations

from typing import Tuple

import numpy as np
from scipy import optimize, stats

from .models import FitStatistics

_MAX_BRACKET_STEPS = 60


def ml_discrepancy(sample: np.ndarray, implied: np.ndarray) -> float:
    """ML discrepancy F = ln|Sigma| - ln|S| + tr(S Sigma^-1) - p."""
    p = sample.shape[0]
    sign_s, logdet_s = np.linalg.slogdet(sample)
    sign_i, logdet_i = np.linalg.slogdet(implied)
    if sign_s <= 0 or sign_i <= 0:
        raise np.linalg.LinAlgError("Correlation matrix is not positive definite")
    return float(logdet_i - logdet_s + np.trace(sample @ np.linalg.inv(implied)) - p)


def rmsea(chi_square: float, df: float, n: int) -> float:
    if df <= 0 or n <= 1 or not np.isfinite(chi_square):
        return np.nan
    return float(np.sqrt(max(chi_square - df, 0.0) / (df * (n - 1))))


def _ncx2_cdf(x: float, df: float, nc: float) -> float:
    if nc <= 0:
        return float(stats.chi2.cdf(x, df))
    return float(stats.ncx2.cdf(x, df, nc))


def _noncentrality_bound(chi_square: float, df: float, target: float) -> float:
    """Noncentrality at which P(X <= chi_square) equals ``target`` (0 if none)."""
    if _ncx2_cdf(chi_square, df, 0.0) < target:
        return 0.0
    upper = max(chi_square, 1.0)
    for _ in range(_MAX_BRACKET_STEPS):
        if _ncx2_cdf(chi_square, df, upper) < target:
            break
        upper *= 2.0
    return float(optimize.brentq(lambda nc: _ncx2_cdf(chi_square, df, nc) - target, 0.0, upper))


def rmsea_ci(chi_square: float, df: float, n: int, level: float = 0.90) -> Tuple[float, float]:
    """Confidence interval for RMSEA by inverting the noncentral chi-square."""
    if df <= 0 or n <= 1 or not np.isfinite(chi_square):
        return np.nan, np.nan
    lam_low = _noncentrality_bound(chi_square, df, (1 + level) / 2)
    lam_high = _noncentrality_bound(chi_square, df, (1 - level) / 2)
    scale = df * (n - 1)
    return float(np.sqrt(lam_low / scale)), float(np.sqrt(lam_high / scale))


def srmr(observed: np.ndarray, implied: np.ndarray) -> float:
    """Standardized root mean square residual over the lower triangle (incl. diagonal)."""
    d_obs = np.sqrt(np.diag(observed))
    d_imp = np.sqrt(np.diag(implied))
    resid = observed / np.outer(d_obs, d_obs) - implied / np.outer(d_imp, d_imp)
    tri = np.tril_indices_from(resid)
    return float(np.sqrt(np.mean(resid[tri] ** 2)))


def incremental_indices(chi_square: float, df: float, chi_null: float, df_null: float) -> Tuple[float, float]:
    """(CFI, TLI) relative to the independence model."""
    if df <= 0 or df_null <= 0:
        return np.nan, np.nan
    d_model = max(chi_square - df, 0.0)
    d_null = max(chi_null - df_null, d_model)
    cfi = 1.0 if d_null == 0 else 1.0 - d_model / d_null
    null_ratio = chi_null / df_null
    tli = np.nan if null_ratio == 1 else (null_ratio - chi_square / df) / (null_ratio - 1.0)
    return float(cfi), float(tli)


def efa_fit_statistics(corr: np.ndarray, implied: np.ndarray, n: int, n_factors: int) -> FitStatistics:
    """
    Fit statistics for an ML exploratory solution.

    Uses Bartlett's correction ``n - 1 - (2p + 5)/6 - 2k/3`` for the model
    chi-square and BIC = chi2 - df * ln(n), the conventions of R's psych::fa.
    """
    p = corr.shape[0]
    k = n_factors
    df = ((p - k) ** 2 - (p + k)) / 2.0

    f_model = ml_discrepancy(corr, implied)
    chi_square = (n - 1 - (2 * p + 5) / 6.0 - 2 * k / 3.0) * f_model
    p_value = float(stats.chi2.sf(chi_square, df)) if df > 0 else np.nan

    sign, logdet = np.linalg.slogdet(corr)
    chi_null = -(n - 1 - (2 * p + 5) / 6.0) * logdet
    df_null = p * (p - 1) / 2.0

    cfi, tli = incremental_indices(chi_square, df, chi_null, df_null)
    low, high = rmsea_ci(chi_square, df, n)

    return FitStatistics(
        chi_square=float(chi_square),
        df=float(df),
        p_value=p_value,
        rmsea=rmsea(chi_square, df, n),
        rmsea_ci_lower=low,
        rmsea_ci_upper=high,
        cfi=cfi,
        tli=tli,
        srmr=srmr(corr, implied),
        bic=float(chi_square - df * np.log(n)) if df > 0 else np.nan,
    )
