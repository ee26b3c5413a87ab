"""
Exploratory Factor Analysis
===========================

Factorability checks, factor-count selection and item pruning for the ARVIS
item pool.

Analyses:
1. Bartlett's test of sphericity (gate) with KMO sampling adequacy
2. Parallel analysis (seeded random-normal simulation)
3. ML extraction with oblique rotation for a range of factor counts, with
   chi-square, RMSEA (90% CI), BIC, TLI, CFI and SRMR per solution
4. Factor-count choice by lowest BIC (RMSEA preference reported alongside)
5. Cross-loading pruning and top-loading item selection
"""

from __future__ import annotations

import warnings
from dataclasses import dataclass, field
from typing import Dict, Optional, Sequence, Tuple

import numpy as np
import pandas as pd
from factor_analyzer import FactorAnalyzer
from factor_analyzer.factor_analyzer import calculate_bartlett_sphericity, calculate_kmo

from ..errors import AssumptionViolation, ConvergenceError, DegenerateSolutionWarning
from ..items import ItemSet, ScreeningDecision
from ..preprocessing.constants import (
    EFA_ROTATION,
    ITEMS_PER_FACTOR,
    MIN_LOADING_GAP,
    PA_ITERATIONS,
    PA_QUANTILE,
    RANDOM_SEED,
    SPHERICITY_ALPHA,
)
from ..preprocessing.loaders import check_schema
from .fit_indices import efa_fit_statistics
from .models import FactorModel


def _item_data(df: pd.DataFrame, items: Sequence[str], context: str) -> pd.DataFrame:
    items = list(items)
    check_schema(df, items, context=context)
    return df[items].astype(float)


# =============================================================================
# FACTORABILITY
# =============================================================================

@dataclass(frozen=True)
class SphericityResult:
    chi_square: float
    df: float
    p_value: float
    kmo: float
    kmo_per_item: pd.Series = field(repr=False)
    n_obs: int = 0
    alpha: float = SPHERICITY_ALPHA

    @property
    def significant(self) -> bool:
        return bool(self.p_value < self.alpha)


def interpret_kmo(kmo: float) -> str:
    """Interpret KMO value."""
    if np.isnan(kmo):
        return "N/A"
    if kmo >= 0.9:
        return "Marvelous"
    if kmo >= 0.8:
        return "Meritorious"
    if kmo >= 0.7:
        return "Middling"
    if kmo >= 0.6:
        return "Mediocre"
    if kmo >= 0.5:
        return "Miserable"
    return "Unacceptable"


def test_sphericity(
    df: pd.DataFrame,
    items: Sequence[str],
    alpha: float = SPHERICITY_ALPHA,
    verbose: bool = False,
) -> SphericityResult:
    """
    Bartlett's test that the item correlation matrix is not an identity matrix.

    Raises
    ------
    AssumptionViolation
        If ``p >= alpha``; the result is attached as ``.result``.
    """
    data = _item_data(df, items, "sphericity test")
    p = data.shape[1]

    chi_square, p_value = calculate_bartlett_sphericity(data)
    with np.errstate(divide='ignore', invalid='ignore'):
        kmo_per_item, kmo_total = calculate_kmo(data)

    result = SphericityResult(
        chi_square=float(chi_square),
        df=p * (p - 1) / 2.0,
        p_value=float(p_value),
        kmo=float(kmo_total),
        kmo_per_item=pd.Series(np.asarray(kmo_per_item, dtype=float), index=list(items), name='kmo'),
        n_obs=len(data),
        alpha=alpha,
    )

    if verbose:
        print(f"  Bartlett's test: chi2({result.df:.0f}) = {result.chi_square:.2f}, p = {result.p_value:.6f}")
        print(f"  KMO = {result.kmo:.3f} ({interpret_kmo(result.kmo)})")

    if not result.p_value < alpha:
        raise AssumptionViolation(
            f"Correlation matrix of {p} items is not distinguishable from identity "
            f"(Bartlett p = {result.p_value:.4f} >= {alpha})",
            result=result,
        )
    return result


test_sphericity.__test__ = False  # not a pytest test


# =============================================================================
# PARALLEL ANALYSIS
# =============================================================================

@dataclass(frozen=True)
class ParallelAnalysisResult:
    real: np.ndarray
    simulated_quantile: np.ndarray
    simulated_mean: np.ndarray
    n_factors: int
    quantile: float
    iterations: int
    seed: Optional[int]

    @property
    def table(self) -> pd.DataFrame:
        return pd.DataFrame({
            'factor': np.arange(1, len(self.real) + 1),
            'real_eigenvalue': self.real,
            'simulated_mean': self.simulated_mean,
            f'simulated_p{self.quantile:g}': self.simulated_quantile,
            'retain': np.arange(len(self.real)) < self.n_factors,
        })


def parallel_analysis(
    df: pd.DataFrame,
    items: Sequence[str],
    iterations: int = PA_ITERATIONS,
    quantile: float = PA_QUANTILE,
    seed: Optional[int] = RANDOM_SEED,
    verbose: bool = False,
) -> ParallelAnalysisResult:
    """
    Parallel analysis for determining number of factors.

    Compares the eigenvalues of the item correlation matrix to the
    ``quantile``-th percentile of eigenvalues from random normal data of the
    same shape. The recommendation is the number of leading eigenvalues that
    all exceed their simulated counterparts.
    """
    data = _item_data(df, items, "parallel analysis").to_numpy()
    n_obs, n_vars = data.shape
    rng = np.random.default_rng(seed)

    real = np.linalg.eigvalsh(np.corrcoef(data, rowvar=False))[::-1]

    simulated = np.empty((iterations, n_vars))
    for i in range(iterations):
        random_data = rng.normal(size=(n_obs, n_vars))
        simulated[i] = np.linalg.eigvalsh(np.corrcoef(random_data, rowvar=False))[::-1]

    sim_quantile = np.percentile(simulated, quantile, axis=0)
    exceeds = real > sim_quantile
    n_factors = n_vars if exceeds.all() else int(np.argmin(exceeds))

    result = ParallelAnalysisResult(
        real=real,
        simulated_quantile=sim_quantile,
        simulated_mean=simulated.mean(axis=0),
        n_factors=n_factors,
        quantile=quantile,
        iterations=iterations,
        seed=seed,
    )

    if verbose:
        print(f"  Parallel analysis ({iterations} iterations, p{quantile:g}): "
              f"suggested factors = {n_factors}")
        for i in range(min(5, n_vars)):
            retain = "retain" if i < n_factors else "-"
            print(f"    Factor {i + 1}: {real[i]:.3f} vs {sim_quantile[i]:.3f} -> {retain}")

    return result


# =============================================================================
# EXTRACTION
# =============================================================================

def _align_factor_signs(loadings: np.ndarray, phi: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
    signs = np.where(loadings.sum(axis=0) < 0, -1.0, 1.0)
    return loadings * signs, phi * np.outer(signs, signs)


def fit_efa(
    df: pd.DataFrame,
    items: Sequence[str],
    n_factors: int,
    rotation: Optional[str] = EFA_ROTATION,
    method: str = "ml",
    name: Optional[str] = None,
) -> FactorModel:
    """
    Fit an exploratory factor model with factor_analyzer.

    Parameters
    ----------
    df : pd.DataFrame
        Cleaned dataset.
    items : sequence of str
        Items to analyse.
    n_factors : int
        Number of factors to extract.
    rotation : str, optional
        factor_analyzer rotation; ignored for one factor.
    method : str
        Extraction method ("ml" or "minres").

    Returns
    -------
    FactorModel
        Pattern loadings, factor correlations, uniquenesses and fit statistics.

    Raises
    ------
    ConvergenceError
        If extraction fails or produces a non-finite solution.
    """
    items = list(items)
    data = _item_data(df, items, "EFA")
    n_obs = len(data)
    label = name or f"efa_{n_factors}f"

    if n_factors < 1 or n_factors >= len(items):
        raise ValueError(f"{label}: cannot extract {n_factors} factors from {len(items)} items")

    rot = rotation if n_factors > 1 else None
    fa = FactorAnalyzer(n_factors=n_factors, rotation=rot, method=method)
    try:
        fa.fit(data)
    except (np.linalg.LinAlgError, ValueError) as e:
        raise ConvergenceError(f"{label}: extraction failed for items {items}: {e}") from e

    loadings = np.asarray(fa.loadings_, dtype=float)
    if not np.all(np.isfinite(loadings)):
        raise ConvergenceError(f"{label}: non-finite loadings for items {items}")

    phi = getattr(fa, 'phi_', None)
    phi = np.eye(n_factors) if phi is None else np.asarray(phi, dtype=float)
    loadings, phi = _align_factor_signs(loadings, phi)

    common = loadings @ phi @ loadings.T
    communalities = np.diag(common).copy()
    implied = common.copy()
    np.fill_diagonal(implied, 1.0)

    notes = []
    heywood = [item for item, h2 in zip(items, communalities) if h2 >= 1.0]
    if heywood:
        notes.append(f"Heywood case (communality >= 1) for items {heywood}")
        warnings.warn(f"{label}: {notes[-1]}", DegenerateSolutionWarning, stacklevel=2)

    corr = data.corr().to_numpy()
    try:
        fit = efa_fit_statistics(corr, implied, n_obs, n_factors)
    except np.linalg.LinAlgError as e:
        raise ConvergenceError(f"{label}: implied correlation matrix is not positive definite") from e

    factors = [f"F{i + 1}" for i in range(n_factors)]
    return FactorModel(
        name=label,
        items=tuple(items),
        loadings=pd.DataFrame(loadings, index=items, columns=factors),
        factor_correlations=pd.DataFrame(phi, index=factors, columns=factors),
        fit=fit,
        n_obs=n_obs,
        uniquenesses=pd.Series(1.0 - communalities, index=items, name='uniqueness'),
        method=method,
        rotation=rot,
        warnings=tuple(notes),
    )


def fit_efa_range(
    df: pd.DataFrame,
    items: Sequence[str],
    factor_range: Sequence[int],
    rotation: Optional[str] = EFA_ROTATION,
    method: str = "ml",
    verbose: bool = False,
) -> Dict[int, FactorModel]:
    """Fit one EFA per factor count; counts that leave no degrees of freedom are skipped."""
    p = len(list(items))
    models = {}
    for k in factor_range:
        if ((p - k) ** 2 - (p + k)) / 2.0 <= 0:
            if verbose:
                print(f"  [WARN] {k}-factor model not identified with {p} items; skipped")
            continue
        model = fit_efa(df, items, k, rotation=rotation, method=method)
        models[k] = model
        if verbose:
            fit = model.fit
            print(f"  {k}-factor: chi2({fit.df:.0f}) = {fit.chi_square:.2f}, "
                  f"RMSEA = {fit.rmsea:.3f} [{fit.rmsea_ci_lower:.3f}, {fit.rmsea_ci_upper:.3f}], "
                  f"BIC = {fit.bic:.2f}, TLI = {fit.tli:.3f}")
    return models


# =============================================================================
# FACTOR COUNT
# =============================================================================

@dataclass(frozen=True)
class FactorCountDecision:
    n_factors: int
    by_bic: int
    by_rmsea: int
    disagreement: bool
    rationale: str
    table: pd.DataFrame = field(repr=False)


def select_factor_count(models: Sequence[FactorModel]) -> FactorCountDecision:
    """
    Choose the factor count with the lowest BIC (ties go to fewer factors).

    The count RMSEA would prefer is reported as well; a disagreement is
    recorded but never overrides BIC.
    """
    models = [m for m in models if np.isfinite(m.fit.bic)]
    if not models:
        raise ValueError("No fitted models with a finite BIC to compare")

    by_bic = min(models, key=lambda m: (m.fit.bic, m.n_factors)).n_factors
    with_rmsea = [m for m in models if np.isfinite(m.fit.rmsea)]
    by_rmsea = min(with_rmsea, key=lambda m: (m.fit.rmsea, m.n_factors)).n_factors if with_rmsea else by_bic

    disagreement = by_bic != by_rmsea
    rationale = f"Lowest BIC at {by_bic} factor(s)"
    if disagreement:
        rationale += f"; RMSEA would prefer {by_rmsea} factor(s) (reported, not applied)"

    table = pd.DataFrame([m.summary_row() for m in sorted(models, key=lambda m: m.n_factors)])
    table['selected'] = table['n_factors'] == by_bic

    return FactorCountDecision(
        n_factors=by_bic,
        by_bic=by_bic,
        by_rmsea=by_rmsea,
        disagreement=disagreement,
        rationale=rationale,
        table=table,
    )


# =============================================================================
# PRUNING
# =============================================================================

def prune_cross_loadings(model: FactorModel, min_gap: float = MIN_LOADING_GAP) -> ScreeningDecision:
    """
    Flag items without a clear primary factor.

    An item is flagged when the gap between its largest and second-largest
    absolute loading is below ``min_gap``. Nothing is flagged in a
    one-factor model.
    """
    abs_loadings = model.loadings.abs()
    if model.n_factors < 2:
        gaps = pd.Series(np.nan, index=abs_loadings.index)
        flagged: Tuple[str, ...] = ()
    else:
        ordered = np.sort(abs_loadings.to_numpy(), axis=1)
        gaps = pd.Series(ordered[:, -1] - ordered[:, -2], index=abs_loadings.index)
        flagged = tuple(sorted(gaps.index[gaps < min_gap]))

    return ScreeningDecision(
        stage="cross_loading",
        metric="loading_gap",
        threshold=float(min_gap),
        items_matched=flagged,
        values={item: float(v) for item, v in gaps.items()},
        rationale=f"Pruned from {model.name}",
    )


def primary_factors(model: FactorModel) -> pd.Series:
    """Factor with the largest absolute loading for each item."""
    return model.loadings.abs().idxmax(axis=1).rename('factor')


def top_loading_items(model: FactorModel, per_factor: int = ITEMS_PER_FACTOR) -> Dict[str, Tuple[str, ...]]:
    """Strongest primary indicators per factor, by |loading| then item name."""
    primary = primary_factors(model)
    selected = {}
    for factor in model.loadings.columns:
        members = [item for item in model.loadings.index if primary[item] == factor]
        ranked = sorted(members, key=lambda item: (-abs(model.loadings.at[item, factor]), item))
        selected[factor] = tuple(ranked[:per_factor])
    return selected


def select_top_loading_items(
    model: FactorModel,
    per_factor: int = ITEMS_PER_FACTOR,
    item_set: Optional[ItemSet] = None,
) -> ItemSet:
    """Narrow ``item_set`` (default: the model's items) to the top items per factor."""
    item_set = item_set if item_set is not None else ItemSet.from_columns(model.items)
    selected = top_loading_items(model, per_factor)
    keep = [item for items in selected.values() for item in items]
    return item_set.retain(
        keep,
        stage="top_loading",
        rationale=f"Top {per_factor} items per factor from {model.name}",
    )
