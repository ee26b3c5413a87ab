"""
Inter-item correlation screening.

Items that share little variance with the rest of the pool are unlikely to
measure the same construct. Each item's mean correlation with the *other*
items is compared against a floor (0.40 by default).
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Sequence

import numpy as np
import pandas as pd

from ..items import ScreeningDecision
from ..preprocessing.constants import MIN_MEAN_INTER_ITEM_R
from ..preprocessing.loaders import check_schema


@dataclass(frozen=True)
class CorrelationScreen:
    matrix: pd.DataFrame
    item_means: pd.Series
    decision: ScreeningDecision


def inter_item_correlation(df: pd.DataFrame, items: Sequence[str], method: str = "pearson") -> pd.DataFrame:
    """
    Correlation matrix of the given items.

    Parameters
    ----------
    df : pd.DataFrame
        Cleaned dataset.
    items : sequence of str
        Item columns, in the order the matrix should use.
    method : str
        "pearson" or "spearman".

    Returns
    -------
    pd.DataFrame
        Symmetric matrix indexed by item name with a unit diagonal.
    """
    if method not in ("pearson", "spearman"):
        raise ValueError(f"Unsupported correlation method: {method}")
    items = list(items)
    check_schema(df, items, context="inter-item correlation")

    corr = df[items].astype(float).corr(method=method)
    values = corr.to_numpy(copy=True)
    values = (values + values.T) / 2.0
    np.fill_diagonal(values, 1.0)
    return pd.DataFrame(values, index=items, columns=items)


def mean_inter_item_correlation(corr: pd.DataFrame) -> pd.Series:
    """Mean correlation of each item with every other item (self excluded)."""
    p = corr.shape[0]
    if p < 2:
        raise ValueError("Need at least two items for inter-item correlations")
    values = corr.to_numpy(dtype=float, copy=True)
    np.fill_diagonal(values, 0.0)
    return pd.Series(values.sum(axis=1) / (p - 1), index=corr.index, name='mean_r')


def low_correlation_items(corr: pd.DataFrame, threshold: float = MIN_MEAN_INTER_ITEM_R) -> ScreeningDecision:
    means = mean_inter_item_correlation(corr)
    flagged = tuple(sorted(means.index[means < threshold]))
    return ScreeningDecision(
        stage="inter_item_correlation",
        metric="mean_inter_item_r",
        threshold=float(threshold),
        items_matched=flagged,
        values={item: float(v) for item, v in means.items()},
    )


def screen_inter_item_correlations(
    df: pd.DataFrame,
    items: Sequence[str],
    threshold: float = MIN_MEAN_INTER_ITEM_R,
    method: str = "pearson",
    verbose: bool = False,
) -> CorrelationScreen:
    """Compute the matrix, the per-item means and the low-correlation decision together."""
    corr = inter_item_correlation(df, items, method=method)
    means = mean_inter_item_correlation(corr)
    decision = low_correlation_items(corr, threshold=threshold)

    if verbose:
        print(f"  Inter-item correlation screen (mean r < {threshold}): "
              f"{len(decision.items_matched)} flagged {list(decision.items_matched)}")

    return CorrelationScreen(matrix=corr, item_means=means, decision=decision)
