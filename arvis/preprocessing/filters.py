"""
Response-distribution screening.

Items whose responses pile up in one category (usually the "never avoid" or
"always avoid" endpoint) carry little information and distort correlations.
The rule is expressed as a ``DistributionCriteria`` (metric + threshold) so the
same decision can be replayed on a new sample.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Sequence, Tuple

import numpy as np
import pandas as pd
from scipy import stats

from ..items import ScreeningDecision
from .constants import MAX_ENDPOINT_PROPORTION, RESPONSE_MAX, RESPONSE_MIN, SKEW_METRIC
from .loaders import check_schema

DISTRIBUTION_METRICS = ("endpoint_proportion", "modal_proportion", "skewness")


# =============================================================================
# Criteria
# =============================================================================

@dataclass(frozen=True)
class DistributionCriteria:
    """Degenerate-distribution rule.

    metric: one of DISTRIBUTION_METRICS; 'skewness' is compared in absolute value
    threshold: items with metric above this value are flagged
    """
    metric: str = SKEW_METRIC
    threshold: float = MAX_ENDPOINT_PROPORTION
    response_range: Tuple[int, int] = (RESPONSE_MIN, RESPONSE_MAX)

    def __post_init__(self):
        if self.metric not in DISTRIBUTION_METRICS:
            raise ValueError(f"Unknown distribution metric: {self.metric}. Valid: {DISTRIBUTION_METRICS}")


# =============================================================================
# Metrics
# =============================================================================

def response_distribution(
    df: pd.DataFrame,
    items: Sequence[str],
    response_range: Tuple[int, int] = (RESPONSE_MIN, RESPONSE_MAX),
) -> pd.DataFrame:
    """Proportion of responses in each category (rows = items, columns = categories)."""
    check_schema(df, items, context="distribution screening")
    low, high = response_range
    categories = list(range(low, high + 1))

    rows = {}
    for item in items:
        counts = df[item].value_counts(normalize=True)
        rows[item] = [float(counts.get(cat, 0.0)) for cat in categories]

    return pd.DataFrame.from_dict(rows, orient='index', columns=categories)


def distribution_metrics(
    df: pd.DataFrame,
    items: Sequence[str],
    response_range: Tuple[int, int] = (RESPONSE_MIN, RESPONSE_MAX),
) -> pd.DataFrame:
    """
    Per-item summary of how concentrated the responses are.

    Returns
    -------
    pd.DataFrame
        Indexed by item with columns modal_category, modal_proportion,
        endpoint_proportion and skewness.
    """
    props = response_distribution(df, items, response_range)
    low, high = response_range

    metrics = pd.DataFrame(index=props.index)
    metrics['modal_category'] = props.idxmax(axis=1).astype(int)
    metrics['modal_proportion'] = props.max(axis=1)
    metrics['endpoint_proportion'] = props[[low, high]].max(axis=1)
    metrics['skewness'] = [
        float(stats.skew(df[item].to_numpy(dtype=float), bias=False))
        if df[item].nunique() > 1 else np.nan
        for item in props.index
    ]
    return metrics


# =============================================================================
# Decision
# =============================================================================

def flag_skewed(
    df: pd.DataFrame,
    items: Sequence[str],
    criteria: DistributionCriteria | None = None,
    verbose: bool = False,
) -> ScreeningDecision:
    """Flag items whose distribution metric exceeds the criteria threshold."""
    criteria = criteria or DistributionCriteria()
    metrics = distribution_metrics(df, items, criteria.response_range)

    values = metrics[criteria.metric].astype(float)
    if criteria.metric == "skewness":
        values = values.abs()
    # Constant items have undefined skew but are maximally degenerate
    values = values.fillna(np.inf)

    flagged = tuple(sorted(values.index[values > criteria.threshold]))

    if verbose:
        print(f"  Distribution screen ({criteria.metric} > {criteria.threshold}): "
              f"{len(flagged)} flagged {list(flagged)}")

    return ScreeningDecision(
        stage="distribution",
        metric=criteria.metric,
        threshold=float(criteria.threshold),
        items_matched=flagged,
        values={item: float(v) for item, v in values.items()},
    )
