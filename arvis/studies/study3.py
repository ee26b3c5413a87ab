"""
Study 3: Test-Retest Reliability
================================

Time 1 is the Study 2 administration, time 2 the retest sample; both are
scored on the same final items.

Output:
    data/outputs/study3/
    - cleaned.csv, retest_pairs.csv, retest_icc.csv, retest_summary.json
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Optional

import pandas as pd

from .._core.retest import (
    RetestCorrelation,
    RetestPairs,
    join_by_id,
    pearson_retest,
    retest_icc_table,
)
from .._core.validity import composite_score
from ..config import PipelineConfig
from ..items import ItemSet
from ..preprocessing import save_table
from ._utils import format_pvalue, print_section_header, write_json
from .study2 import load_validation_sample

STUDY = "study3"


@dataclass(frozen=True)
class Study3Result:
    pairs: RetestPairs = field(repr=False)
    correlation: RetestCorrelation
    icc: pd.DataFrame = field(repr=False)


def run_study3(
    items: ItemSet,
    time1_scores: Optional[pd.Series] = None,
    config: Optional[PipelineConfig] = None,
    verbose: bool = True,
) -> Study3Result:
    """
    Retest analysis of the final scale.

    Parameters
    ----------
    items : ItemSet
        Final item set (from Study 2, or Study 1 if Study 2 kept it unchanged).
    time1_scores : pd.Series, optional
        Time-1 composite indexed by subject id; recomputed from the Study 2
        sample when not given.
    """
    config = config or PipelineConfig()
    out = config.output_dir_for(STUDY)

    if verbose:
        print_section_header("STUDY 3: TEST-RETEST RELIABILITY")

    if time1_scores is None:
        time1_df, _ = load_validation_sample(items.items, config, study="study2", verbose=verbose)
        time1_scores = composite_score(time1_df, items.items, id_column=config.id_column)

    time2_df, cleaning = load_validation_sample(items.items, config, study=STUDY, verbose=verbose)
    save_table(time2_df, out / "cleaned.csv")
    time2_scores = composite_score(time2_df, items.items, id_column=config.id_column)

    pairs = join_by_id(time1_scores, time2_scores, id_column=config.id_column, verbose=verbose)
    save_table(pairs.data, out / "retest_pairs.csv")

    correlation = pearson_retest(pairs)
    icc = retest_icc_table(pairs, alpha=config.icc_alpha)
    save_table(icc, out / "retest_icc.csv")

    write_json({
        'items': list(items.items),
        'cleaning': cleaning,
        'n_pairs': pairs.n,
        'n_unmatched_time1': pairs.n_unmatched_time1,
        'n_unmatched_time2': pairs.n_unmatched_time2,
        'pearson': {
            'r': correlation.r,
            't': correlation.t,
            'df': correlation.df,
            'p_value': correlation.p_value,
            'ci_lower': correlation.ci_lower,
            'ci_upper': correlation.ci_upper,
        },
        'icc': icc.to_dict(orient='records'),
    }, out / "retest_summary.json")

    if verbose:
        print(f"\n  Pearson r = {correlation.r:.3f} [{correlation.ci_lower:.3f}, {correlation.ci_upper:.3f}], "
              f"t({correlation.df}) = {correlation.t:.2f}, p {format_pvalue(correlation.p_value)}")
        for row in icc.itertuples(index=False):
            print(f"  ICC({row.type}, {row.unit}) = {row.icc:.3f} [{row.ci_lower:.3f}, {row.ci_upper:.3f}], "
                  f"F({row.df1:.0f}, {row.df2:.0f}) = {row.f:.2f}")
        print(f"\n  Output: {out}")

    return Study3Result(pairs=pairs, correlation=correlation, icc=icc)
