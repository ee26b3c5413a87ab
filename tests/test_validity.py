import numpy as np
import pandas as pd
import pytest

from arvis._core.validity import (
    apply_fdr_correction,
    compare_overlapping_correlations,
    composite_score,
    convergent_divergent_comparisons,
    correlate,
    correlation_table,
    fisher_ci,
)


@pytest.fixture
def measures(rng):
    n = 250
    latent = rng.normal(size=n)
    return pd.DataFrame({
        'arvis_total': latent + rng.normal(scale=0.5, size=n),
        'anxiety': latent + rng.normal(scale=0.7, size=n),
        'wellbeing': -latent + rng.normal(scale=1.0, size=n),
        'noise': rng.normal(size=n),
    })


def test_composite_is_indexed_by_subject(likert_df):
    scores = composite_score(likert_df, ['arvis_1', 'arvis_2', 'arvis_3'])

    assert scores.name == "arvis_total"
    assert scores.index.name == "id"
    first = likert_df.iloc[0]
    assert scores[first['id']] == first['arvis_1'] + first['arvis_2'] + first['arvis_3']


def test_fisher_ci_contains_r():
    low, high = fisher_ci(0.4, 100)
    assert low < 0.4 < high
    assert np.isnan(fisher_ci(1.0, 100)[0])
    assert np.isnan(fisher_ci(0.4, 3)[0])


def test_correlate_uses_complete_pairs():
    x = pd.Series([1.0, 2.0, 3.0, 4.0, np.nan, 6.0])
    y = pd.Series([2.0, 1.0, 4.0, 3.0, 5.0, np.nan])
    result = correlate(x, y)
    assert result['n'] == 4
    assert result['method'] == "pearson"

    with pytest.raises(ValueError):
        correlate(x, y, method="kendall")


def test_correlation_table_applies_spearman_and_fdr(measures):
    table = correlation_table(
        measures,
        pairs=[('arvis_total', 'anxiety'), ('arvis_total', 'wellbeing'), ('arvis_total', 'noise')],
        spearman_columns=['wellbeing'],
    )

    assert table['method'].tolist() == ["pearson", "spearman", "pearson"]
    assert table.loc[0, 'r'] > 0.5
    assert table.loc[1, 'r'] < -0.3
    assert (table['p_fdr'] >= table['p'] - 1e-15).all()
    assert table['significant_fdr'].tolist()[:2] == [True, True]
    assert (table['ci_lower'] < table['r']).all() and (table['r'] < table['ci_upper']).all()


def test_correlation_table_defaults_to_every_pair(measures):
    table = correlation_table(measures)
    assert len(table) == 6


def test_fdr_correction_keeps_missing_p_values():
    table = pd.DataFrame({'p': [0.01, np.nan, 0.04, 0.03]})
    corrected = apply_fdr_correction(table)

    assert np.isnan(corrected.loc[1, 'p_fdr'])
    assert corrected.loc[0, 'p_fdr'] == pytest.approx(0.03)
    assert corrected.loc[2, 'p_fdr'] == pytest.approx(0.04)


def test_steiger_z_known_value():
    result = compare_overlapping_correlations(0.5, 0.3, 0.4, 100)
    assert result.z == pytest.approx(2.035, abs=0.005)
    assert result.p_value == pytest.approx(0.0419, abs=0.002)


def test_steiger_z_is_antisymmetric():
    forward = compare_overlapping_correlations(0.45, 0.20, 0.30, 180)
    backward = compare_overlapping_correlations(0.20, 0.45, 0.30, 180)

    assert forward.z == pytest.approx(-backward.z)
    assert forward.p_value == pytest.approx(backward.p_value)


def test_steiger_z_is_zero_for_equal_correlations():
    result = compare_overlapping_correlations(0.35, 0.35, 0.2, 120)
    assert result.z == pytest.approx(0.0)
    assert result.p_value == pytest.approx(1.0)


def test_steiger_z_input_checks():
    with pytest.raises(ValueError):
        compare_overlapping_correlations(0.5, 0.3, 0.4, 3)
    with pytest.raises(ValueError):
        compare_overlapping_correlations(1.0, 0.3, 0.4, 100)


def test_convergent_divergent_comparisons(measures):
    table = convergent_divergent_comparisons(
        measures, 'arvis_total', convergent=['anxiety', 'wellbeing'], divergent=['noise'],
    )

    assert len(table) == 2
    assert (table['abs_r_convergent'] > 0).all()
    assert (table['z'] > 0).all()
    assert 'p_fdr' in table.columns
    assert table.loc[table['convergent'] == 'anxiety', 'significant_fdr'].item()
