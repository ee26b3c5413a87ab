"""
Confirmatory factor analysis: specifications, fit labels, nested tests,
model choice and semopy fits on synthetic data.
"""

import numpy as np
import pandas as pd
import pytest
from scipy import stats

from arvis._core.cfa import (
    GENERAL_FACTOR,
    CFASpecification,
    candidate_specifications,
    choose_model,
    compare_fit_indices,
    fit_cfa,
    fit_quality,
    likelihood_ratio_test,
    modification_indices,
    resolve_local_misfit,
)
from arvis._core.models import FactorModel, FitStatistics
from arvis._core import cfa
from arvis.errors import AssumptionViolation, ConvergenceError, NotNestedError

FACTOR_MAP = {
    'F1': ('arvis_1', 'arvis_2', 'arvis_3', 'arvis_4', 'arvis_5'),
    'F2': ('arvis_6', 'arvis_7', 'arvis_8', 'arvis_9', 'arvis_10'),
}
SMALL_MAP = {'F1': ('arvis_1', 'arvis_2', 'arvis_3'), 'F2': ('arvis_6', 'arvis_7', 'arvis_8')}

EXCELLENT = dict(rmsea=0.03, cfi=0.98, tli=0.97, srmr=0.03)
ACCEPTABLE = dict(rmsea=0.07, cfi=0.93, tli=0.92, srmr=0.06)
POOR = dict(rmsea=0.12, cfi=0.80, tli=0.75, srmr=0.10)


@pytest.fixture
def two_factor():
    return CFASpecification.from_mapping("cfa_2f", FACTOR_MAP)


def _fitted(spec, fit_values, chi_square=50.0, df=20.0, bic=100.0, factor_r=0.3, n_obs=300):
    factors = list(spec.factor_names)
    phi = np.full((len(factors), len(factors)), factor_r)
    np.fill_diagonal(phi, 1.0)
    return FactorModel(
        name=spec.name,
        items=spec.items,
        loadings=pd.DataFrame(0.7, index=list(spec.items), columns=factors),
        factor_correlations=pd.DataFrame(phi, index=factors, columns=factors),
        fit=FitStatistics(chi_square=chi_square, df=df, bic=bic, **fit_values),
        n_obs=n_obs,
        method="semopy",
        specification=spec,
    )


# =============================================================================
# SPECIFICATION
# =============================================================================

def test_syntax_lists_loadings_factor_and_residual_covariances():
    spec = CFASpecification.from_mapping("m", {'F1': ['a', 'b', 'c'], 'F2': ['d', 'e', 'f']}, [('b', 'a')])

    assert spec.to_syntax().splitlines() == [
        "F1 =~ a + b + c",
        "F2 =~ d + e + f",
        "F1 ~~ F2",
        "a ~~ b",
    ]


def test_specification_rejects_bad_structures():
    with pytest.raises(ValueError, match="more than one factor"):
        CFASpecification.from_mapping("m", {'F1': ['a', 'b'], 'F2': ['b', 'c']})
    with pytest.raises(ValueError, match="no indicators"):
        CFASpecification.from_mapping("m", {'F1': ['a', 'b'], 'F2': []})
    with pytest.raises(ValueError, match="unknown items"):
        CFASpecification.from_mapping("m", {'F1': ['a', 'b']}, [('a', 'z')])
    with pytest.raises(ValueError, match="distinct"):
        CFASpecification.from_mapping("m", {'F1': ['a', 'b']}, [('a', 'a')])


def test_revisions_return_new_named_specifications(two_factor):
    relaxed = two_factor.with_covariance('arvis_3', 'arvis_2')
    assert relaxed.name == "cfa_2f+arvis_2~~arvis_3"
    assert relaxed.covariances == frozenset({('arvis_2', 'arvis_3')})
    assert two_factor.covariances == frozenset()

    reduced = relaxed.without_item('arvis_2')
    assert 'arvis_2' not in reduced.items
    assert reduced.covariances == frozenset()
    assert reduced.name == "cfa_2f+arvis_2~~arvis_3-arvis_2"

    crossed = two_factor.with_cross_loading('F2', 'arvis_1')
    assert "F2 =~ arvis_6 + arvis_7 + arvis_8 + arvis_9 + arvis_10 + arvis_1" in crossed.to_syntax()
    with pytest.raises(ValueError, match="already loads"):
        two_factor.with_cross_loading('F1', 'arvis_1')


def test_collapsed_model_is_nested_in_the_multifactor_model(two_factor):
    one = two_factor.collapsed()

    assert one.factor_names == (GENERAL_FACTOR,)
    assert set(one.items) == set(two_factor.items)
    assert one.is_nested_in(two_factor)
    assert not two_factor.is_nested_in(one)


def test_covariance_nesting(two_factor):
    relaxed = two_factor.with_covariance('arvis_1', 'arvis_2')
    assert two_factor.is_nested_in(relaxed)
    assert not relaxed.is_nested_in(two_factor)
    assert not two_factor.is_nested_in(two_factor)


def test_models_on_different_items_are_not_nested(two_factor):
    assert not two_factor.without_item('arvis_1').is_nested_in(two_factor)


def test_candidate_specifications(two_factor):
    specs = candidate_specifications(FACTOR_MAP, [('arvis_1', 'arvis_2')])

    assert [s.name for s in specs] == ["cfa_1f", "cfa_1f_cov", "cfa_2f", "cfa_2f_cov"]
    assert specs[1].covariances == frozenset({('arvis_1', 'arvis_2')})
    assert [s.name for s in candidate_specifications({'ARVIS': FACTOR_MAP['F1']})] == ["cfa_1f"]


# =============================================================================
# FIT LABELS AND COMPARISON
# =============================================================================

def test_fit_quality_labels():
    labels = fit_quality(FitStatistics(rmsea=0.03, cfi=0.96, tli=0.93, srmr=0.09))

    assert labels == {
        'rmsea': "excellent",
        'cfi': "excellent",
        'tli': "acceptable",
        'srmr': "poor",
        'overall': "poor",
    }


def test_fit_quality_ignores_missing_indices():
    labels = fit_quality(FitStatistics(rmsea=0.03, cfi=0.96))
    assert labels['srmr'] is None
    assert labels['overall'] == "excellent"


def test_compare_fit_indices_ranks_by_tier(two_factor):
    table = compare_fit_indices([
        _fitted(two_factor.collapsed(), POOR, bic=50.0),
        _fitted(two_factor, EXCELLENT, bic=120.0),
    ])
    assert table['model'].tolist() == ["cfa_2f", "cfa_2f_1f"]
    assert table.loc[0, 'tier'] == "excellent"
    assert table.loc[0, 'n_excellent'] == 4


# =============================================================================
# NESTED COMPARISON
# =============================================================================

def test_likelihood_ratio_test_is_order_independent(two_factor):
    restricted = _fitted(two_factor.collapsed(), POOR, chi_square=80.0, df=35.0)
    full = _fitted(two_factor, EXCELLENT, chi_square=40.0, df=34.0)

    forward = likelihood_ratio_test(restricted, full)
    backward = likelihood_ratio_test(full, restricted)

    assert forward == backward
    assert forward.restricted == "cfa_2f_1f"
    assert forward.chi_square_diff == pytest.approx(40.0)
    assert forward.df_diff == 1.0
    assert forward.p_value == pytest.approx(stats.chi2.sf(40.0, 1))
    assert forward.significant


def test_likelihood_ratio_test_rejects_non_nested_models(two_factor):
    a = _fitted(two_factor, EXCELLENT)
    b = _fitted(two_factor.without_item('arvis_1'), EXCELLENT, df=15.0)
    with pytest.raises(NotNestedError):
        likelihood_ratio_test(a, b)


def test_likelihood_ratio_test_rejects_different_samples(two_factor):
    a = _fitted(two_factor.collapsed(), POOR, df=35.0)
    b = _fitted(two_factor, EXCELLENT, df=34.0, n_obs=250)
    with pytest.raises(NotNestedError, match="different samples"):
        likelihood_ratio_test(a, b)


# =============================================================================
# MODEL CHOICE
# =============================================================================

def test_choose_model_prefers_fewer_factors_among_excellent(two_factor):
    one = _fitted(two_factor.collapsed(name="cfa_1f"), EXCELLENT, bic=130.0)
    two = _fitted(two_factor, EXCELLENT, bic=90.0)

    choice = choose_model([one, two])
    assert choice.name == "cfa_1f"
    assert choice.tier == "excellent"
    assert not choice.fallback


def test_choose_model_excludes_redundant_factors(two_factor):
    one = _fitted(two_factor.collapsed(name="cfa_1f"), ACCEPTABLE)
    two = _fitted(two_factor, EXCELLENT, factor_r=0.91)
    relaxed = _fitted(two_factor.with_covariance('arvis_1', 'arvis_2', name="cfa_2f_cov"), EXCELLENT, factor_r=0.5)

    choice = choose_model([one, two, relaxed])
    assert choice.name == "cfa_2f_cov"
    assert "redundant" in choice.excluded["cfa_2f"]
    assert choice.excluded["cfa_1f"] == "fit acceptable"


def test_choose_model_falls_back_to_acceptable(two_factor):
    one = _fitted(two_factor.collapsed(name="cfa_1f"), POOR)
    two = _fitted(two_factor, ACCEPTABLE)

    choice = choose_model([one, two])
    assert choice.name == "cfa_2f"
    assert choice.fallback
    assert "acceptable used" in choice.rationale


def test_choose_model_fails_without_acceptable_fit(two_factor):
    with pytest.raises(AssumptionViolation):
        choose_model([_fitted(two_factor, POOR)])


def test_choose_model_fails_when_every_candidate_is_redundant(two_factor):
    with pytest.raises(AssumptionViolation, match="redundant"):
        choose_model([_fitted(two_factor, EXCELLENT, factor_r=0.95)])


# =============================================================================
# SEMOPY FITS
# =============================================================================

def test_fit_cfa_recovers_two_factor_structure(likert_df, two_factor):
    model = fit_cfa(two_factor, likert_df)

    assert model.method == "semopy"
    assert model.specification is two_factor
    assert model.n_obs == 300
    assert (model.loadings.loc[list(FACTOR_MAP['F1']), 'F1'] > 0.5).all()
    assert (model.loadings.loc[list(FACTOR_MAP['F1']), 'F2'] == 0).all()
    assert 0 < model.factor_correlations.at['F1', 'F2'] < 0.6
    assert model.fit.cfi > 0.9
    assert model.fit.df == 34
    assert model.fit.rmsea_ci_lower <= model.fit.rmsea_ci_upper
    assert 0 <= model.fit.srmr < 0.08


def test_one_factor_model_fits_worse(likert_df, two_factor):
    one = fit_cfa(two_factor.collapsed(), likert_df)
    two = fit_cfa(two_factor, likert_df)

    result = likelihood_ratio_test(one, two)
    assert result.restricted == one.name
    assert result.df_diff == 1
    assert result.chi_square_diff > 0
    assert result.significant


def test_modification_indices_table(likert_df):
    spec = CFASpecification.from_mapping("cfa_small", SMALL_MAP)
    table = modification_indices(spec, likert_df, minimum=0.0)

    assert list(table.columns) == ['kind', 'lhs', 'rhs', 'mi', 'epc', 'converged']
    assert set(table['kind']) <= {'covariance', 'cross_loading'}
    converged = table[table['converged'].astype(bool)]
    assert converged['mi'].is_monotonic_decreasing
    assert len(table) <= 15 + 6


def test_theoretically_motivated_covariance_is_kept(likert_df):
    spec = CFASpecification.from_mapping("cfa_small", SMALL_MAP)
    fix = resolve_local_misfit(spec, likert_df, ('arvis_2', 'arvis_1'), theoretically_motivated=True)

    assert fix.action == "add_covariance"
    assert fix.specification.covariances == frozenset({('arvis_1', 'arvis_2')})
    assert fix.removed_item is None
    assert len(fix.table) == 3


def test_item_removal_wins_when_it_fits_as_well(likert_df, two_factor):
    fix = resolve_local_misfit(two_factor, likert_df, ('arvis_6', 'arvis_1'))

    assert fix.action == "remove_item"
    assert fix.removed_item in ('arvis_1', 'arvis_6')
    assert fix.removed_item not in fix.specification.items
    assert len(fix.specification.items) == 9
    assert fix.specification.covariances == frozenset()
    assert "at least as well" in fix.rationale
    assert len(fix.table) == 3


def test_failed_semopy_fit_raises_convergence_error(likert_df, two_factor, monkeypatch):
    def failing(self, data, *args, **kwargs):
        raise RuntimeError("optimizer diverged")

    monkeypatch.setattr(cfa.semopy.Model, 'fit', failing)
    with pytest.raises(ConvergenceError, match="cfa_2f: semopy fit failed"):
        fit_cfa(two_factor, likert_df)
