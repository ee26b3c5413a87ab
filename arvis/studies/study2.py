"""
Study 2: Confirmatory Validation
================================

CFA, reliability and validity of the Study 1 scale on an independent sample.

Steps:
1. Clean the second sample and keep the final Study 1 items
2. Fit one-factor and multi-factor candidates (with/without covariances)
3. Modification indices; covariance vs. item removal for the top pair
4. Likelihood-ratio tests between nested candidates; final model choice
5. Reliability (alpha, omega) of the chosen model's items
6. Composite score vs. external measures (correlations, Steiger's Z)

Output:
    data/outputs/study2/
    - cleaned.csv, cfa_model_comparison.csv, cfa_modification_indices.csv
    - cfa_nested_tests.csv, cfa_local_misfit.csv, cfa_loadings.csv
    - reliability.json, validity_scores.csv, validity_correlations.csv
    - validity_comparisons.csv, final_items.json
"""

from __future__ import annotations

import warnings
from dataclasses import dataclass, field
from itertools import combinations
from typing import Dict, List, Optional, Sequence, Tuple

import pandas as pd

from .._core.cfa import (
    CFASpecification,
    FixDecision,
    ModelChoice,
    candidate_specifications,
    choose_model,
    fit_cfa,
    fit_quality,
    likelihood_ratio_test,
    modification_indices,
    resolve_local_misfit,
)
from .._core.models import FactorModel
from .._core.reliability import ReliabilityReport, compute_reliability
from .._core.validity import composite_score, convergent_divergent_comparisons, correlation_table
from ..config import PipelineConfig
from ..errors import DegenerateSolutionWarning, NotNestedError
from ..items import ItemSet
from ..preprocessing import check_schema, clean_dataset, load_study, save_table
from ..preprocessing.constants import COMPOSITE_COL
from ._utils import format_pvalue, print_section_header, save_final_items, write_json

STUDY = "study2"


@dataclass(frozen=True)
class Study2Result:
    items: ItemSet
    factor_map: Dict[str, Tuple[str, ...]]
    cleaning: dict
    choice: ModelChoice = field(repr=False)
    models: Tuple[FactorModel, ...] = field(repr=False)
    modification_indices: pd.DataFrame = field(repr=False)
    fix: Optional[FixDecision] = field(repr=False)
    nested_tests: pd.DataFrame = field(repr=False)
    reliability: ReliabilityReport = field(repr=False)
    composite: pd.Series = field(repr=False)
    correlations: pd.DataFrame = field(repr=False)
    comparisons: pd.DataFrame = field(repr=False)


def load_validation_sample(
    items: Sequence[str],
    config: PipelineConfig,
    study: str = STUDY,
    verbose: bool = False,
) -> Tuple[pd.DataFrame, dict]:
    """Load and clean a sample, keeping the id column and the given items."""
    raw = load_study(study, data_dir=config.data_dir, id_column=config.id_column, verbose=verbose)
    check_schema(raw, items, context=f"{study} items")
    cleaned, summary = clean_dataset(
        raw,
        check_column=config.attention_check_for(study),
        required_value=config.attention_check_value,
        prefix=config.item_prefix,
        verbose=verbose,
    )
    return cleaned[[config.id_column, *items]], summary


def _fit_all(specs: Sequence[CFASpecification], df: pd.DataFrame, verbose: bool) -> List[FactorModel]:
    models = []
    for spec in specs:
        with warnings.catch_warnings(record=True) as caught:
            warnings.simplefilter('always', DegenerateSolutionWarning)
            models.append(fit_cfa(spec, df, verbose=verbose))
        if verbose:
            for w in caught:
                print(f"  [WARN] {w.message}")
    return models


def nested_tests(models: Sequence[FactorModel]) -> pd.DataFrame:
    """Likelihood-ratio tests for every nested pair among the fitted models."""
    rows = []
    for model_a, model_b in combinations(models, 2):
        try:
            result = likelihood_ratio_test(model_a, model_b)
        except NotNestedError:
            continue
        rows.append({
            'restricted': result.restricted,
            'full': result.full,
            'chi_square_diff': result.chi_square_diff,
            'df_diff': result.df_diff,
            'p_value': result.p_value,
        })
    return pd.DataFrame(rows, columns=['restricted', 'full', 'chi_square_diff', 'df_diff', 'p_value'])


def _local_misfit(
    base: FactorModel,
    df: pd.DataFrame,
    config: PipelineConfig,
    verbose: bool,
) -> Tuple[pd.DataFrame, Optional[FixDecision]]:
    mi = modification_indices(base.specification, df, minimum=config.min_modification_index, base=base, verbose=verbose)
    if config.cfa_covariance_pairs:
        return mi, None

    tier = fit_quality(base.fit)['overall']
    if tier == "excellent":
        if verbose:
            print(f"  {base.name} already fits excellently; no local revision")
        return mi, None

    covariances = mi[(mi['kind'] == 'covariance') & mi['converged'].astype(bool)]
    if covariances.empty:
        if verbose:
            print(f"  No residual covariance with MI >= {config.min_modification_index}")
        return mi, None

    top = covariances.iloc[0]
    pair = (top['lhs'], top['rhs'])
    fix = resolve_local_misfit(
        base.specification, df, pair,
        theoretically_motivated=config.is_theoretically_motivated(*pair),
        verbose=verbose,
    )
    return mi, fix


def _primary_model(models: Sequence[FactorModel], n_factors: int) -> FactorModel:
    """The n-factor candidate without residual covariances."""
    for model in models:
        spec = model.specification
        if spec.n_factors == n_factors and not spec.covariances:
            return model
    raise ValueError(f"No {n_factors}-factor candidate without covariances was fit")


def run_validity(
    df: pd.DataFrame,
    items: Sequence[str],
    config: PipelineConfig,
    verbose: bool = False,
) -> Tuple[pd.Series, pd.DataFrame, pd.DataFrame]:
    """
    Composite score against the external measures.

    Every numeric column of the other-measures file is correlated with the
    composite; convergent vs. divergent comparisons run when both lists are
    configured.
    """
    out = config.output_dir_for(STUDY)
    composite = composite_score(df, items, id_column=config.id_column)

    other = load_study("other_measures", data_dir=config.data_dir, id_column=config.id_column, verbose=verbose)
    measures = [col for col in other.columns
                if col != config.id_column and pd.api.types.is_numeric_dtype(other[col])]
    check_schema(other, [*config.convergent_measures, *config.divergent_measures, *config.spearman_measures],
                 context="other measures")

    scores = composite.to_frame().join(other.set_index(config.id_column)[measures], how="inner")
    scores.index.name = config.id_column
    save_table(scores, out / "validity_scores.csv", index=True)

    correlations = correlation_table(
        scores,
        pairs=[(COMPOSITE_COL, measure) for measure in measures],
        spearman_columns=config.spearman_measures,
    )
    if verbose:
        print(f"  N with external measures = {len(scores)}")
        for row in correlations.itertuples(index=False):
            print(f"    {row.variable_2}: r = {row.r:.3f} [{row.ci_lower:.3f}, {row.ci_upper:.3f}], "
                  f"p {format_pvalue(row.p)} ({row.method})")

    comparisons = pd.DataFrame()
    if config.convergent_measures and config.divergent_measures:
        comparisons = convergent_divergent_comparisons(
            scores, COMPOSITE_COL, config.convergent_measures, config.divergent_measures,
        )
        if verbose:
            for row in comparisons.itertuples(index=False):
                print(f"    {row.convergent} vs {row.divergent}: z = {row.z:.2f}, p {format_pvalue(row.p)}")
    elif verbose:
        print("  [INFO] convergent/divergent measures not configured; comparisons skipped")

    return composite, correlations, comparisons


def run_study2(
    items: ItemSet,
    factor_map: Dict[str, Sequence[str]],
    config: Optional[PipelineConfig] = None,
    verbose: bool = True,
) -> Study2Result:
    """
    Confirm the Study 1 structure and estimate reliability and validity.

    Parameters
    ----------
    items : ItemSet
        Final (frozen) item set from Study 1.
    factor_map : dict
        Factor -> items assignment from the Study 1 EFA.
    """
    config = config or PipelineConfig()
    out = config.output_dir_for(STUDY)

    if verbose:
        print_section_header("STUDY 2: CONFIRMATORY FACTOR ANALYSIS AND VALIDITY")

    df, cleaning = load_validation_sample(items.items, config, verbose=verbose)
    save_table(df, out / "cleaned.csv")

    # Candidate models
    if verbose:
        print("\n[1] Candidate models")
    specs = candidate_specifications(factor_map, config.cfa_covariance_pairs)
    models = _fit_all(specs, df, verbose)

    # Local misfit on the primary structure without covariances
    if verbose:
        print("\n[2] Modification indices")
    base = _primary_model(models, len(factor_map))
    mi, fix = _local_misfit(base, df, config, verbose)
    save_table(mi, out / "cfa_modification_indices.csv")

    if fix is not None:
        save_table(fix.table.assign(decision=fix.action, rationale=fix.rationale), out / "cfa_local_misfit.csv")
        if fix.action == "add_covariance":
            pair = sorted(fix.specification.covariances)[0]
            models = _fit_all(candidate_specifications(factor_map, [pair]), df, verbose)
        else:
            factor_map = {f: tuple(i for i in members if i != fix.removed_item)
                          for f, members in factor_map.items()}
            df = df.drop(columns=[fix.removed_item])
            models = _fit_all(candidate_specifications(factor_map), df, verbose)

    # Nested comparisons and choice
    if verbose:
        print("\n[3] Model comparison")
    tests = nested_tests(models)
    save_table(tests, out / "cfa_nested_tests.csv")
    choice = choose_model(models, redundancy_r=config.redundancy_r)
    save_table(choice.table.assign(chosen=choice.table['model'] == choice.name), out / "cfa_model_comparison.csv")
    save_table(choice.model.loadings.assign(uniqueness=choice.model.uniquenesses), out / "cfa_loadings.csv", index=True)
    if verbose:
        for row in tests.itertuples(index=False):
            print(f"  LRT {row.restricted} vs {row.full}: dchi2({row.df_diff:.0f}) = "
                  f"{row.chi_square_diff:.2f}, p {format_pvalue(row.p_value)}")
        print(f"  Chosen: {choice.rationale}")

    chosen_spec = choice.model.specification
    final_map = chosen_spec.factor_map
    final_items = items
    if set(choice.model.items) != set(items.items):
        rationale = fix.rationale if fix is not None else "Items of the chosen CFA model"
        if items.frozen:
            final_items = items.revise(choice.model.items, stage="cfa_local_misfit", rationale=rationale)
        else:
            final_items = items.retain(choice.model.items, stage="cfa_local_misfit", rationale=rationale)

    # Reliability
    if verbose:
        print("\n[4] Reliability")
    reliability = compute_reliability(
        df, final_items.items, n_group_factors=config.omega_group_factors,
        rotation=config.efa_rotation, verbose=verbose,
    )
    write_json(reliability.to_dict(), out / "reliability.json")

    # Validity
    if verbose:
        print("\n[5] Validity")
    composite, correlations, comparisons = run_validity(df, final_items.items, config, verbose=verbose)
    save_table(correlations, out / "validity_correlations.csv")
    save_table(comparisons, out / "validity_comparisons.csv")

    save_table(final_items.trail_frame(), out / "decision_trail.csv")
    save_final_items(final_items, final_map, out, source=STUDY)

    if verbose:
        print(f"\n  Output: {out}")

    return Study2Result(
        items=final_items,
        factor_map={f: tuple(m) for f, m in final_map.items()},
        cleaning=cleaning,
        choice=choice,
        models=tuple(models),
        modification_indices=mi,
        fix=fix,
        nested_tests=tests,
        reliability=reliability,
        composite=composite,
        correlations=correlations,
        comparisons=comparisons,
    )
