"""
Study 1: Item Reduction
=======================

Exploratory development of the ARVIS item pool on the first sample.

Steps:
1. Clean (complete cases, attention check)
2. Distribution screen (degenerate response distributions)
3. Inter-item correlation screen (mean r with the other items)
4. Factorability (Bartlett, KMO) and parallel analysis
5. ML EFA for each candidate factor count; factor count by lowest BIC
6. Iterative cross-loading pruning with refits
7. Top-loading items per factor; final EFA and reliability

Output:
    data/outputs/study1/
    - cleaned.csv, distribution_screened.csv
    - response_distribution.csv, distribution_metrics.csv
    - inter_item_correlations.csv, inter_item_means.csv
    - parallel_analysis.csv, efa_loadings_<k>f.csv, efa_model_comparison.csv
    - efa_loadings_final.csv, decision_trail.csv
    - reliability.json, final_items.json
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, Optional, Tuple

import pandas as pd

from .._core.efa import (
    FactorCountDecision,
    ParallelAnalysisResult,
    SphericityResult,
    fit_efa,
    fit_efa_range,
    parallel_analysis,
    primary_factors,
    prune_cross_loadings,
    select_factor_count,
    select_top_loading_items,
    test_sphericity,
)
from .._core.correlation import screen_inter_item_correlations
from .._core.models import FactorModel
from .._core.reliability import ReliabilityReport, compute_reliability
from ..config import PipelineConfig
from ..errors import AssumptionViolation
from ..items import ItemSet
from ..preprocessing import (
    clean_dataset,
    distribution_metrics,
    flag_skewed,
    item_columns,
    load_study,
    response_distribution,
    save_table,
)
from ._utils import factor_map_from_primary, print_section_header, save_final_items, write_json

STUDY = "study1"


@dataclass(frozen=True)
class Study1Result:
    items: ItemSet
    factor_map: Dict[str, Tuple[str, ...]]
    cleaning: dict
    sphericity: SphericityResult
    parallel: ParallelAnalysisResult
    factor_count: FactorCountDecision
    model: FactorModel = field(repr=False)
    reliability: ReliabilityReport = field(repr=False)


def _prune_until_clean(
    df: pd.DataFrame,
    items: ItemSet,
    model: FactorModel,
    config: PipelineConfig,
    verbose: bool,
) -> Tuple[ItemSet, FactorModel]:
    """Drop cross-loading items and refit until no item is flagged."""
    k = model.n_factors
    round_no = 0
    while True:
        decision = prune_cross_loadings(model, min_gap=config.min_loading_gap)
        if not decision.items_matched:
            return items, model

        round_no += 1
        items = items.drop(decision)
        if verbose:
            print(f"  Pruning round {round_no}: removed {list(decision.items_matched)} "
                  f"({len(items)} items left)")

        p = len(items)
        if ((p - k) ** 2 - (p + k)) / 2.0 <= 0:
            raise AssumptionViolation(
                f"Cross-loading pruning left {p} items, too few for a {k}-factor model",
                result=decision,
            )
        model = fit_efa(df, items, k, rotation=config.efa_rotation, name=f"efa_{k}f_pruned{round_no}")


def run_study1(config: Optional[PipelineConfig] = None, verbose: bool = True) -> Study1Result:
    """Run the Study 1 item-reduction pipeline and write its checkpoints."""
    config = config or PipelineConfig()
    out = config.output_dir_for(STUDY)

    if verbose:
        print_section_header("STUDY 1: ITEM REDUCTION (EFA)")

    # Cleaning
    raw = load_study(STUDY, data_dir=config.data_dir, id_column=config.id_column, verbose=verbose)
    cleaned, cleaning = clean_dataset(
        raw,
        check_column=config.attention_check_for(STUDY),
        required_value=config.attention_check_value,
        prefix=config.item_prefix,
        verbose=verbose,
    )
    save_table(cleaned, out / "cleaned.csv")
    items = ItemSet.from_columns(item_columns(cleaned, prefix=config.item_prefix))

    # Distribution screen
    if verbose:
        print("\n[1] Response distributions")
    criteria = config.distribution_criteria()
    save_table(response_distribution(cleaned, items.items, criteria.response_range), out / "response_distribution.csv", index=True)
    save_table(distribution_metrics(cleaned, items.items, criteria.response_range), out / "distribution_metrics.csv", index=True)
    items = items.drop(flag_skewed(cleaned, items.items, criteria, verbose=verbose))
    save_table(cleaned[[config.id_column, *items.items]], out / "distribution_screened.csv")

    # Inter-item correlations
    if verbose:
        print("\n[2] Inter-item correlations")
    screen = screen_inter_item_correlations(cleaned, items.items, threshold=config.min_mean_inter_item_r, verbose=verbose)
    save_table(screen.matrix, out / "inter_item_correlations.csv", index=True)
    save_table(screen.item_means.to_frame(), out / "inter_item_means.csv", index=True)
    items = items.drop(screen.decision)

    # Factorability and factor retention
    if verbose:
        print("\n[3] Factorability")
    sphericity = test_sphericity(cleaned, items.items, alpha=config.sphericity_alpha, verbose=verbose)
    parallel = parallel_analysis(
        cleaned, items.items,
        iterations=config.pa_iterations, quantile=config.pa_quantile, seed=config.seed, verbose=verbose,
    )
    save_table(parallel.table, out / "parallel_analysis.csv")

    # EFA
    if verbose:
        print("\n[4] Exploratory factor analysis")
    models = fit_efa_range(cleaned, items.items, config.efa_factor_range, rotation=config.efa_rotation, verbose=verbose)
    for k, model in models.items():
        save_table(model.loadings.assign(uniqueness=model.uniquenesses), out / f"efa_loadings_{k}f.csv", index=True)
    factor_count = select_factor_count(list(models.values()))
    save_table(factor_count.table, out / "efa_model_comparison.csv")
    if verbose:
        print(f"  Factor count: {factor_count.n_factors} ({factor_count.rationale}); "
              f"parallel analysis suggests {parallel.n_factors}")

    # Pruning
    if verbose:
        print("\n[5] Cross-loading pruning")
    items, model = _prune_until_clean(cleaned, items, models[factor_count.n_factors], config, verbose)

    if config.items_per_factor:
        shortened = select_top_loading_items(model, config.items_per_factor, items)
        if len(shortened) < len(items):
            if verbose:
                print(f"  Top {config.items_per_factor} items per factor: "
                      f"removed {list(shortened.trail[-1].items_matched)}")
            model = fit_efa(cleaned, shortened, model.n_factors, rotation=config.efa_rotation,
                            name=f"efa_{model.n_factors}f_final")
        items = shortened

    save_table(model.loadings.assign(uniqueness=model.uniquenesses), out / "efa_loadings_final.csv", index=True)
    factor_map = factor_map_from_primary(primary_factors(model), items.items)

    # Reliability of the retained items
    if verbose:
        print("\n[6] Reliability")
    reliability = compute_reliability(
        cleaned, items.items, n_group_factors=config.omega_group_factors,
        rotation=config.efa_rotation, verbose=verbose,
    )
    write_json(reliability.to_dict(), out / "reliability.json")

    items = items.freeze()
    save_table(items.trail_frame(), out / "decision_trail.csv")
    save_final_items(items, factor_map, out, source=STUDY)

    if verbose:
        print(f"\n  Final scale: {len(items)} items {list(items.items)}")
        for factor, members in factor_map.items():
            print(f"    {factor}: {list(members)}")
        print(f"\n  Output: {out}")

    return Study1Result(
        items=items,
        factor_map=factor_map,
        cleaning=cleaning,
        sphericity=sphericity,
        parallel=parallel,
        factor_count=factor_count,
        model=model,
        reliability=reliability,
    )
