"""
Confirmatory Factor Analysis
============================

Fits and compares CFA models of the retained ARVIS items with semopy.

Model revisions are explicit ``CFASpecification`` values: adding a residual
covariance, dropping an item or collapsing to one factor returns a new named
specification, so every fitted model records exactly what it was fit from.

Analyses:
1. Fit of each candidate (chi-square, CFI, TLI, RMSEA with 90% CI, SRMR,
   AIC, BIC) with excellent / acceptable / poor labels per index
2. Modification indices by refitting each relaxed model
3. Local misfit: residual covariance vs. removing one of the two items
4. Likelihood-ratio tests between nested specifications
5. Final model choice: best fit tier, no redundant factors, least complex
"""

from __future__ import annotations

import warnings
from dataclasses import dataclass, field, replace
from itertools import combinations
from typing import Dict, FrozenSet, List, Mapping, Optional, Sequence, Tuple

import numpy as np
import pandas as pd
import semopy
from scipy import stats

from ..errors import AssumptionViolation, ConvergenceError, DegenerateSolutionWarning, NotNestedError
from ..preprocessing.constants import (
    CFI_CUTOFFS,
    MIN_MODIFICATION_INDEX,
    REDUNDANT_FACTOR_R,
    RMSEA_CUTOFFS,
    SRMR_CUTOFFS,
    TLI_CUTOFFS,
)
from ..preprocessing.loaders import check_schema
from .fit_indices import rmsea_ci, srmr
from .models import FactorModel, FitStatistics

GENERAL_FACTOR = "ARVIS"
FIT_TIERS = ("poor", "acceptable", "excellent")


def _pair(a: str, b: str) -> Tuple[str, str]:
    if a == b:
        raise ValueError(f"A residual covariance needs two distinct items, got '{a}' twice")
    return (a, b) if a < b else (b, a)


# =============================================================================
# SPECIFICATION
# =============================================================================

@dataclass(frozen=True)
class CFASpecification:
    """
    Measurement model: factors with their indicators plus residual covariances.

    Attributes
    ----------
    name : str
        Label of this revision.
    factors : tuple of (factor, tuple of items)
        Primary indicators per factor, in order.
    covariances : frozenset of (item, item)
        Freed residual covariances (pairs stored in sorted order).
    cross_loadings : frozenset of (factor, item)
        Additional loadings of items on non-primary factors.
    """

    name: str
    factors: Tuple[Tuple[str, Tuple[str, ...]], ...]
    covariances: FrozenSet[Tuple[str, str]] = frozenset()
    cross_loadings: FrozenSet[Tuple[str, str]] = frozenset()

    @classmethod
    def from_mapping(
        cls,
        name: str,
        factor_map: Mapping[str, Sequence[str]],
        covariances: Sequence[Tuple[str, str]] = (),
    ) -> "CFASpecification":
        factors = tuple((str(f), tuple(items)) for f, items in factor_map.items())
        spec = cls(name=name, factors=factors, covariances=frozenset(_pair(a, b) for a, b in covariances))
        spec._validate()
        return spec

    def _validate(self) -> None:
        seen = set()
        for factor, items in self.factors:
            if not items:
                raise ValueError(f"{self.name}: factor '{factor}' has no indicators")
            overlap = seen.intersection(items)
            if overlap:
                raise ValueError(f"{self.name}: items {sorted(overlap)} assigned to more than one factor")
            seen.update(items)
        unknown = {i for pair in self.covariances for i in pair}.difference(seen)
        if unknown:
            raise ValueError(f"{self.name}: covariance terms reference unknown items {sorted(unknown)}")

    @property
    def factor_map(self) -> Dict[str, Tuple[str, ...]]:
        return dict(self.factors)

    @property
    def factor_names(self) -> Tuple[str, ...]:
        return tuple(f for f, _ in self.factors)

    @property
    def items(self) -> Tuple[str, ...]:
        return tuple(item for _, items in self.factors for item in items)

    @property
    def n_factors(self) -> int:
        return len(self.factors)

    def to_syntax(self) -> str:
        """lavaan-style model description understood by semopy."""
        extra: Dict[str, List[str]] = {}
        for factor, item in sorted(self.cross_loadings):
            extra.setdefault(factor, []).append(item)

        lines = [f"{factor} =~ {' + '.join(items + tuple(extra.get(factor, ())))}" for factor, items in self.factors]
        for f1, f2 in combinations(self.factor_names, 2):
            lines.append(f"{f1} ~~ {f2}")
        for a, b in sorted(self.covariances):
            lines.append(f"{a} ~~ {b}")
        return "\n".join(lines)

    def with_covariance(self, a: str, b: str, name: Optional[str] = None) -> "CFASpecification":
        pair = _pair(a, b)
        missing = set(pair).difference(self.items)
        if missing:
            raise ValueError(f"{self.name}: cannot covary unknown items {sorted(missing)}")
        return replace(self, name=name or f"{self.name}+{pair[0]}~~{pair[1]}",
                       covariances=self.covariances | {pair})

    def with_cross_loading(self, factor: str, item: str, name: Optional[str] = None) -> "CFASpecification":
        if factor not in self.factor_names or item not in self.items:
            raise ValueError(f"{self.name}: unknown factor or item ({factor}, {item})")
        if item in self.factor_map[factor]:
            raise ValueError(f"{self.name}: '{item}' already loads on '{factor}'")
        return replace(self, name=name or f"{self.name}+{factor}=~{item}",
                       cross_loadings=self.cross_loadings | {(factor, item)})

    def without_item(self, item: str, name: Optional[str] = None) -> "CFASpecification":
        if item not in self.items:
            raise ValueError(f"{self.name}: '{item}' is not part of the model")
        factors = tuple((f, tuple(i for i in items if i != item)) for f, items in self.factors)
        spec = replace(
            self,
            name=name or f"{self.name}-{item}",
            factors=factors,
            covariances=frozenset(p for p in self.covariances if item not in p),
            cross_loadings=frozenset(c for c in self.cross_loadings if c[1] != item),
        )
        spec._validate()
        return spec

    def collapsed(self, name: Optional[str] = None, factor: str = GENERAL_FACTOR) -> "CFASpecification":
        """Same items and covariances on a single factor."""
        return CFASpecification(
            name=name or f"{self.name}_1f",
            factors=((factor, self.items),),
            covariances=self.covariances,
        )

    def is_nested_in(self, other: "CFASpecification") -> bool:
        """
        True if this model is a constrained special case of ``other``.

        Both must use the same items; this model's residual covariances and
        cross-loadings must be a subset of the other's, and its factor
        structure must either match the other's or be a single factor
        (the other's factor correlations fixed at one).
        """
        if set(self.items) != set(other.items):
            return False
        if not (self.covariances <= other.covariances and self.cross_loadings <= other.cross_loadings):
            return False
        same_structure = {frozenset(i) for _, i in self.factors} == {frozenset(i) for _, i in other.factors}
        if not (same_structure or self.n_factors == 1):
            return False
        return (self.n_factors, len(self.covariances), len(self.cross_loadings)) != (
            other.n_factors, len(other.covariances), len(other.cross_loadings))


def candidate_specifications(
    factor_map: Mapping[str, Sequence[str]],
    covariance_pairs: Sequence[Tuple[str, str]] = (),
) -> List[CFASpecification]:
    """One-factor and multi-factor models, each with and without the given covariances."""
    k = len(factor_map)
    base = CFASpecification.from_mapping(f"cfa_{k}f", factor_map)
    structures = [base] if k == 1 else [base.collapsed(name="cfa_1f"), base]

    specs = []
    for spec in structures:
        specs.append(spec)
        if covariance_pairs:
            relaxed = spec
            for a, b in covariance_pairs:
                relaxed = relaxed.with_covariance(a, b)
            specs.append(replace(relaxed, name=f"{spec.name}_cov"))
    return specs


# =============================================================================
# FITTING
# =============================================================================

def _std_column(params: pd.DataFrame) -> str:
    return 'Est. Std' if 'Est. Std' in params.columns else 'Estimate'


def _parameter(params: pd.DataFrame, lval: str, op: str, rval: str) -> float:
    """Standardized estimate of one parameter (either order for covariances)."""
    col = _std_column(params)
    mask = (params['op'] == op) & (params['lval'] == lval) & (params['rval'] == rval)
    if op == '~~':
        mask |= (params['op'] == op) & (params['lval'] == rval) & (params['rval'] == lval)
    values = params.loc[mask, col]
    return float(values.iloc[0]) if len(values) else np.nan


def _standardized_solution(spec: CFASpecification, params: pd.DataFrame):
    """Standardized loadings, factor correlations and residual (co)variances."""
    items = list(spec.items)
    factors = list(spec.factor_names)
    estimates = pd.to_numeric(params[_std_column(params)], errors='coerce')

    loadings = pd.DataFrame(0.0, index=items, columns=factors)
    phi = pd.DataFrame(np.eye(len(factors)), index=factors, columns=factors)
    theta = pd.DataFrame(0.0, index=items, columns=items)

    for lval, op, rval, value in zip(params['lval'], params['op'], params['rval'], estimates):
        if op == '~' and lval in items and rval in factors:
            loadings.at[lval, rval] = value
        elif op == '~~' and lval in factors and rval in factors and lval != rval:
            phi.at[lval, rval] = phi.at[rval, lval] = value
        elif op == '~~' and lval in items and rval in items:
            theta.at[lval, rval] = theta.at[rval, lval] = value

    return loadings, phi, theta


def _stat(values: pd.Series, name: str) -> float:
    value = values.get(name, np.nan)
    return float(value) if pd.notna(value) else np.nan


def fit_cfa(spec: CFASpecification, df: pd.DataFrame, verbose: bool = False) -> FactorModel:
    """
    Fit a CFA specification with semopy.

    Loadings and factor correlations are reported from the standardized
    solution (``std_est``), which is equivalent to identifying the model by
    fixing latent variances at one. SRMR is computed from the standardized
    implied matrix and the RMSEA interval from the noncentral chi-square.

    Raises
    ------
    ConvergenceError
        If semopy fails or returns a non-finite solution.
    """
    items = list(spec.items)
    check_schema(df, items, context=f"CFA {spec.name}")
    data = df[items].astype(float)
    n_obs = len(data)

    try:
        model = semopy.Model(spec.to_syntax())
        result = model.fit(data)
        params = model.inspect(std_est=True)
        fit_stats = semopy.calc_stats(model)
    except (np.linalg.LinAlgError, ValueError, RuntimeError, KeyError) as e:
        raise ConvergenceError(f"{spec.name}: semopy fit failed: {e}") from e

    if getattr(result, 'success', True) is False:
        raise ConvergenceError(f"{spec.name}: optimizer did not converge ({getattr(result, 'message', '')})")

    loadings, phi, theta = _standardized_solution(spec, params)
    if not (np.all(np.isfinite(loadings.to_numpy())) and np.all(np.isfinite(phi.to_numpy()))):
        raise ConvergenceError(f"{spec.name}: non-finite standardized estimates")

    values = fit_stats.T.iloc[:, 0]
    chi_square = _stat(values, 'chi2')
    dof = _stat(values, 'DoF')
    low, high = rmsea_ci(chi_square, dof, n_obs)

    implied = loadings.to_numpy() @ phi.to_numpy() @ loadings.to_numpy().T + theta.to_numpy()
    observed = data.corr().to_numpy()

    fit = FitStatistics(
        chi_square=chi_square,
        df=dof,
        p_value=_stat(values, 'chi2 p-value'),
        rmsea=_stat(values, 'RMSEA'),
        rmsea_ci_lower=low,
        rmsea_ci_upper=high,
        cfi=_stat(values, 'CFI'),
        tli=_stat(values, 'TLI'),
        srmr=srmr(observed, implied) if np.all(np.diag(implied) > 0) else np.nan,
        aic=_stat(values, 'AIC'),
        bic=_stat(values, 'BIC'),
    )

    uniquenesses = pd.Series(np.diag(theta.to_numpy()), index=items, name='uniqueness')
    notes = []
    heywood = list(uniquenesses.index[uniquenesses < 0])
    if heywood:
        notes.append(f"Negative residual variance for items {heywood}")
    if (loadings.abs() > 1).to_numpy().any():
        notes.append("Standardized loading above 1")
    for note in notes:
        warnings.warn(f"{spec.name}: {note}", DegenerateSolutionWarning, stacklevel=2)

    fitted = FactorModel(
        name=spec.name,
        items=tuple(items),
        loadings=loadings,
        factor_correlations=phi,
        fit=fit,
        n_obs=n_obs,
        uniquenesses=uniquenesses,
        method="semopy",
        warnings=tuple(notes),
        specification=spec,
        parameters=params,
    )

    if verbose:
        print(f"  {spec.name}: chi2({fit.df:.0f}) = {fit.chi_square:.2f}, CFI = {fit.cfi:.3f}, "
              f"TLI = {fit.tli:.3f}, RMSEA = {fit.rmsea:.3f} [{fit.rmsea_ci_lower:.3f}, "
              f"{fit.rmsea_ci_upper:.3f}], SRMR = {fit.srmr:.3f}, BIC = {fit.bic:.2f}")

    return fitted


# =============================================================================
# FIT QUALITY
# =============================================================================

def _label_below(value: float, cutoffs: Tuple[float, float]) -> Optional[str]:
    if not np.isfinite(value):
        return None
    acceptable, excellent = cutoffs
    if value < excellent:
        return "excellent"
    return "acceptable" if value < acceptable else "poor"


def _label_above(value: float, cutoffs: Tuple[float, float]) -> Optional[str]:
    if not np.isfinite(value):
        return None
    acceptable, excellent = cutoffs
    if value > excellent:
        return "excellent"
    return "acceptable" if value > acceptable else "poor"


def fit_quality(fit: FitStatistics) -> Dict[str, Optional[str]]:
    """
    Label each index and the overall fit.

    RMSEA < .05 / .08 and SRMR < .05 / .08, CFI and TLI > .95 / .90 are
    excellent / acceptable; the overall tier is the worst label among the
    indices that are available.
    """
    labels = {
        'rmsea': _label_below(fit.rmsea, RMSEA_CUTOFFS),
        'cfi': _label_above(fit.cfi, CFI_CUTOFFS),
        'tli': _label_above(fit.tli, TLI_CUTOFFS),
        'srmr': _label_below(fit.srmr, SRMR_CUTOFFS),
    }
    available = [label for label in labels.values() if label is not None]
    labels['overall'] = min(available, key=FIT_TIERS.index) if available else None
    return labels


def _tier_rank(tier: Optional[str]) -> int:
    return FIT_TIERS.index(tier) if tier in FIT_TIERS else -1


def _n_covariances(model: FactorModel) -> int:
    spec = model.specification
    return len(spec.covariances) if spec is not None else 0


def compare_fit_indices(models: Sequence[FactorModel]) -> pd.DataFrame:
    """Fit table ranked by overall tier, number of excellent indices, then BIC."""
    rows = []
    for model in models:
        labels = fit_quality(model.fit)
        row = model.summary_row()
        row['n_covariances'] = _n_covariances(model)
        for index in ('rmsea', 'cfi', 'tli', 'srmr'):
            row[f'{index}_label'] = labels[index]
        row['tier'] = labels['overall']
        row['n_excellent'] = sum(1 for k in ('rmsea', 'cfi', 'tli', 'srmr') if labels[k] == 'excellent')
        rows.append(row)

    table = pd.DataFrame(rows)
    if table.empty:
        return table
    table['_tier_rank'] = table['tier'].map(_tier_rank)
    table = table.sort_values(['_tier_rank', 'n_excellent', 'bic'], ascending=[False, False, True], kind='stable')
    return table.drop(columns='_tier_rank').reset_index(drop=True)


# =============================================================================
# MODIFICATION INDICES
# =============================================================================

def modification_indices(
    spec: CFASpecification,
    df: pd.DataFrame,
    minimum: float = MIN_MODIFICATION_INDEX,
    base: Optional[FactorModel] = None,
    verbose: bool = False,
) -> pd.DataFrame:
    """
    Chi-square improvement from freeing each fixed parameter.

    Every residual covariance not yet in the model (and, for multi-factor
    models, every cross-loading) is freed one at a time and the model refit.
    ``mi`` is the drop in chi-square; ``epc`` is the standardized estimate of
    the freed parameter. Candidates that fail to converge are kept in the
    table with ``converged=False``.
    """
    base = base if base is not None else fit_cfa(spec, df)

    candidates = []
    for a, b in combinations(sorted(spec.items), 2):
        if (a, b) not in spec.covariances:
            candidates.append(('covariance', a, b, spec.with_covariance(a, b)))
    if spec.n_factors > 1:
        for factor in spec.factor_names:
            for item in spec.items:
                if item not in spec.factor_map[factor] and (factor, item) not in spec.cross_loadings:
                    candidates.append(('cross_loading', factor, item, spec.with_cross_loading(factor, item)))

    rows = []
    for kind, lhs, rhs, relaxed in candidates:
        row = {'kind': kind, 'lhs': lhs, 'rhs': rhs, 'mi': np.nan, 'epc': np.nan, 'converged': False}
        try:
            with warnings.catch_warnings():
                warnings.simplefilter('ignore', DegenerateSolutionWarning)
                refit = fit_cfa(relaxed, df)
        except ConvergenceError as e:
            if verbose:
                print(f"  [WARN] {relaxed.name}: {e}")
            rows.append(row)
            continue

        params = refit.parameters
        epc = _parameter(params, lhs, '~~', rhs) if kind == 'covariance' else _parameter(params, rhs, '~', lhs)
        row.update(mi=base.fit.chi_square - refit.fit.chi_square, epc=epc, converged=True)
        rows.append(row)

    table = pd.DataFrame(rows, columns=['kind', 'lhs', 'rhs', 'mi', 'epc', 'converged'])
    table = table[(table['mi'] >= minimum) | ~table['converged'].astype(bool)]
    table = table.sort_values(['mi', 'lhs', 'rhs'], ascending=[False, True, True], na_position='last')
    table = table.reset_index(drop=True)

    if verbose:
        print(f"  {spec.name}: {int((table['mi'] >= minimum).sum())} modification indices >= {minimum}")

    return table


# =============================================================================
# LOCAL MISFIT
# =============================================================================

@dataclass(frozen=True)
class FixDecision:
    action: str
    specification: CFASpecification
    model: FactorModel = field(repr=False)
    rationale: str
    removed_item: Optional[str] = None
    table: pd.DataFrame = field(default=None, repr=False)


def resolve_local_misfit(
    spec: CFASpecification,
    df: pd.DataFrame,
    pair: Tuple[str, str],
    theoretically_motivated: bool = False,
    verbose: bool = False,
) -> FixDecision:
    """
    Choose between freeing a residual covariance and removing one of its items.

    Both options are fit. Removing an item is preferred when its overall fit
    tier is at least as good as the covariance model's, unless the caller
    marks the covariance as theoretically motivated.
    """
    a, b = _pair(*pair)
    with_cov = fit_cfa(spec.with_covariance(a, b), df)
    removals = {item: fit_cfa(spec.without_item(item), df) for item in (a, b)}

    table = compare_fit_indices([with_cov, *removals.values()])

    best_item = max(
        removals,
        key=lambda item: (_tier_rank(fit_quality(removals[item].fit)['overall']),
                          removals[item].fit.cfi, -removals[item].fit.rmsea),
    )
    removal = removals[best_item]
    cov_tier = fit_quality(with_cov.fit)['overall']
    removal_tier = fit_quality(removal.fit)['overall']

    if theoretically_motivated:
        decision = FixDecision(
            action="add_covariance",
            specification=with_cov.specification,
            model=with_cov,
            rationale=f"Residual covariance {a} ~~ {b} kept as theoretically motivated "
                      f"(fit {cov_tier}; removing {best_item} would be {removal_tier})",
            table=table,
        )
    elif _tier_rank(removal_tier) >= _tier_rank(cov_tier):
        decision = FixDecision(
            action="remove_item",
            specification=removal.specification,
            model=removal,
            rationale=f"Removing {best_item} fits at least as well ({removal_tier}) as freeing "
                      f"{a} ~~ {b} ({cov_tier}); the simpler measurement model is kept",
            removed_item=best_item,
            table=table,
        )
    else:
        decision = FixDecision(
            action="add_covariance",
            specification=with_cov.specification,
            model=with_cov,
            rationale=f"Freeing {a} ~~ {b} reaches {cov_tier} fit; removing {best_item} only reaches {removal_tier}",
            table=table,
        )

    if verbose:
        print(f"  Local misfit {a} ~~ {b}: {decision.action} ({decision.rationale})")

    return decision


# =============================================================================
# NESTED COMPARISON
# =============================================================================

@dataclass(frozen=True)
class LikelihoodRatioResult:
    restricted: str
    full: str
    chi_square_diff: float
    df_diff: float
    p_value: float

    @property
    def significant(self) -> bool:
        return bool(self.p_value < 0.05)


def likelihood_ratio_test(model_a: FactorModel, model_b: FactorModel) -> LikelihoodRatioResult:
    """
    Chi-square difference test between two nested CFA models.

    The argument order does not matter; the restricted model is detected from
    the specifications.

    Raises
    ------
    NotNestedError
        If neither specification is a constrained special case of the other
        on the same items and sample.
    """
    spec_a, spec_b = model_a.specification, model_b.specification
    if spec_a is None or spec_b is None:
        raise NotNestedError("Likelihood-ratio tests need models fit from CFA specifications")
    if model_a.n_obs != model_b.n_obs:
        raise NotNestedError(f"{model_a.name} and {model_b.name} were fit on different samples")

    if spec_a.is_nested_in(spec_b):
        restricted, full = model_a, model_b
    elif spec_b.is_nested_in(spec_a):
        restricted, full = model_b, model_a
    else:
        raise NotNestedError(f"{model_a.name} and {model_b.name} are not nested")

    df_diff = restricted.fit.df - full.fit.df
    if not df_diff > 0:
        raise NotNestedError(f"{restricted.name} has no more degrees of freedom than {full.name}")

    chi_diff = restricted.fit.chi_square - full.fit.chi_square
    return LikelihoodRatioResult(
        restricted=restricted.name,
        full=full.name,
        chi_square_diff=float(chi_diff),
        df_diff=float(df_diff),
        p_value=float(stats.chi2.sf(max(chi_diff, 0.0), df_diff)),
    )


# =============================================================================
# MODEL CHOICE
# =============================================================================

@dataclass(frozen=True)
class ModelChoice:
    model: FactorModel = field(repr=False)
    tier: str
    fallback: bool
    excluded: Mapping[str, str]
    rationale: str
    table: pd.DataFrame = field(repr=False)

    @property
    def name(self) -> str:
        return self.model.name


def choose_model(models: Sequence[FactorModel], redundancy_r: float = REDUNDANT_FACTOR_R) -> ModelChoice:
    """
    Pick the final measurement model.

    1. Keep models with excellent fit on every index; if none, fall back to
       acceptable fit (noted in the rationale).
    2. Drop multi-factor models whose factors correlate above
       ``redundancy_r`` in absolute value.
    3. Among the rest prefer fewest factors, then fewest residual
       covariances, then lowest BIC.

    Raises
    ------
    AssumptionViolation
        If no model reaches acceptable fit or every candidate is excluded.
    """
    table = compare_fit_indices(models)
    tiers = {model.name: fit_quality(model.fit)['overall'] for model in models}

    tier = "excellent"
    pool = [m for m in models if tiers[m.name] == "excellent"]
    fallback = False
    if not pool:
        tier, fallback = "acceptable", True
        pool = [m for m in models if tiers[m.name] == "acceptable"]
    if not pool:
        raise AssumptionViolation("No candidate model reaches acceptable fit", result=table)

    pool_names = {m.name for m in pool}
    excluded = {m.name: f"fit {tiers[m.name]}" for m in models if m.name not in pool_names}
    kept = []
    for model in pool:
        max_r = model.max_factor_correlation()
        if model.n_factors > 1 and max_r > redundancy_r:
            excluded[model.name] = f"factors redundant (|r| = {max_r:.2f} > {redundancy_r})"
        else:
            kept.append(model)
    if not kept:
        raise AssumptionViolation("Every well-fitting model has redundant factors", result=table)

    chosen = min(kept, key=lambda m: (m.n_factors, _n_covariances(m), m.fit.bic))

    rationale = f"{chosen.name}: {tier} fit"
    if fallback:
        rationale += " (no model reached excellent fit; acceptable used)"
    rationale += f"; least complex of {[m.name for m in kept]}"
    redundant = [name for name, reason in excluded.items() if reason.startswith("factors redundant")]
    if redundant:
        rationale += f"; excluded as redundant: {redundant}"

    return ModelChoice(
        model=chosen,
        tier=tier,
        fallback=fallback,
        excluded=excluded,
        rationale=rationale,
        table=table,
    )
