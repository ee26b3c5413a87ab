"""
Fitted factor-model containers shared by the EFA and CFA steps.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from typing import Any, Dict, Optional, Tuple

import numpy as np
import pandas as pd


@dataclass(frozen=True)
class FitStatistics:
    """Model fit statistics; indices that do not apply are NaN."""
    chi_square: float = np.nan
    df: float = np.nan
    p_value: float = np.nan
    rmsea: float = np.nan
    rmsea_ci_lower: float = np.nan
    rmsea_ci_upper: float = np.nan
    cfi: float = np.nan
    tli: float = np.nan
    srmr: float = np.nan
    aic: float = np.nan
    bic: float = np.nan

    def to_dict(self) -> Dict[str, float]:
        return {key: float(value) for key, value in asdict(self).items()}


@dataclass(frozen=True, eq=False)
class FactorModel:
    """
    Result of fitting a factor model to a dataset restricted to an item set.

    Attributes
    ----------
    name : str
        Label used in comparison tables (e.g. "efa_2f", "cfa_1f_cov").
    items : tuple of str
        Items the model was fit on.
    loadings : pd.DataFrame
        Standardized loadings, items x factors.
    factor_correlations : pd.DataFrame
        Inter-factor correlation matrix (identity for one factor).
    fit : FitStatistics
        Chi-square test, RMSEA with 90% CI, information criteria, etc.
    n_obs : int
        Number of subjects used.
    uniquenesses : pd.Series, optional
        Standardized residual variances per item.
    method, rotation : str
        Estimation method and rotation (EFA) or "semopy" (CFA).
    warnings : tuple of str
        Non-fatal problems noticed while fitting (e.g. Heywood cases).
    specification : object, optional
        CFASpecification the model was fit from (CFA only).
    parameters : pd.DataFrame, optional
        Full parameter table from the estimator (CFA only).
    """

    name: str
    items: Tuple[str, ...]
    loadings: pd.DataFrame
    factor_correlations: pd.DataFrame
    fit: FitStatistics
    n_obs: int
    uniquenesses: Optional[pd.Series] = None
    method: str = "ml"
    rotation: Optional[str] = None
    warnings: Tuple[str, ...] = ()
    specification: Any = None
    parameters: Optional[pd.DataFrame] = field(default=None, repr=False)

    @property
    def n_factors(self) -> int:
        return int(self.loadings.shape[1])

    def max_factor_correlation(self) -> float:
        """Largest absolute off-diagonal factor correlation (0 for one factor)."""
        phi = self.factor_correlations.to_numpy(dtype=float)
        if phi.shape[0] < 2:
            return 0.0
        off_diag = np.abs(phi[~np.eye(phi.shape[0], dtype=bool)])
        return float(off_diag.max())

    def summary_row(self) -> Dict[str, Any]:
        row = {'model': self.name, 'n_factors': self.n_factors, 'n_items': len(self.items), 'n': self.n_obs}
        row.update(self.fit.to_dict())
        row['max_factor_r'] = self.max_factor_correlation()
        return row
