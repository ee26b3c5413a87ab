import numpy as np
import pandas as pd
import pytest

from arvis.preprocessing import DistributionCriteria, distribution_metrics, flag_skewed, response_distribution


@pytest.fixture
def responses():
    """arvis_1 piles up at 'never' (95%), arvis_2 is spread, arvis_3 is constant."""
    return pd.DataFrame({
        'arvis_1': [0] * 95 + [1, 2, 3, 4, 4],
        'arvis_2': [0, 1, 2, 3, 4] * 20,
        'arvis_3': [2] * 100,
    })


def test_response_distribution_rows_sum_to_one(responses):
    props = response_distribution(responses, ['arvis_1', 'arvis_2', 'arvis_3'])

    assert list(props.columns) == [0, 1, 2, 3, 4]
    np.testing.assert_allclose(props.sum(axis=1), 1.0)
    assert props.at['arvis_1', 0] == pytest.approx(0.95)
    assert props.at['arvis_3', 2] == pytest.approx(1.0)


def test_distribution_metrics(responses):
    metrics = distribution_metrics(responses, ['arvis_1', 'arvis_2', 'arvis_3'])

    assert metrics.at['arvis_1', 'modal_category'] == 0
    assert metrics.at['arvis_1', 'endpoint_proportion'] == pytest.approx(0.95)
    assert metrics.at['arvis_2', 'modal_proportion'] == pytest.approx(0.20)
    assert metrics.at['arvis_1', 'skewness'] > 2
    assert np.isnan(metrics.at['arvis_3', 'skewness'])


def test_flag_endpoint_proportion(responses):
    decision = flag_skewed(responses, ['arvis_1', 'arvis_2'])

    assert decision.stage == "distribution"
    assert decision.metric == "endpoint_proportion"
    assert decision.items_matched == ('arvis_1',)
    assert decision.values['arvis_2'] == pytest.approx(0.20)


def test_threshold_is_configurable(responses):
    criteria = DistributionCriteria(metric="endpoint_proportion", threshold=0.96)
    assert flag_skewed(responses, ['arvis_1', 'arvis_2'], criteria).items_matched == ()


def test_skewness_metric_uses_absolute_value_and_flags_constant_items(responses):
    reversed_item = responses.assign(arvis_4=4 - responses['arvis_1'])
    criteria = DistributionCriteria(metric="skewness", threshold=2.0)

    decision = flag_skewed(reversed_item, ['arvis_1', 'arvis_2', 'arvis_3', 'arvis_4'], criteria)
    assert decision.items_matched == ('arvis_1', 'arvis_3', 'arvis_4')


def test_unknown_metric_is_rejected():
    with pytest.raises(ValueError, match="Unknown distribution metric"):
        DistributionCriteria(metric="kurtosis")
