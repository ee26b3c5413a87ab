import numpy as np
import pandas as pd
import pytest

from arvis.errors import SchemaError
from arvis.preprocessing import (
    apply_attention_check,
    check_schema,
    clean_dataset,
    ensure_numeric,
    item_columns,
    load_dataset,
    load_study,
)


@pytest.fixture
def raw_survey():
    """242 subjects, six of whom fail the attention check."""
    n = 242
    df = pd.DataFrame({
        'id': [f"S{i:03d}" for i in range(n)],
        'arvis_1': np.arange(n) % 5,
        'arvis_2': (np.arange(n) + 1) % 5,
        'attention_check': 0,
    })
    df.loc[[3, 40, 77, 120, 200, 241], 'attention_check'] = 2
    return df


def test_attention_check_excludes_failed_rows(raw_survey):
    cleaned, n_excluded = apply_attention_check(raw_survey)

    assert n_excluded == 6
    assert len(cleaned) == 236
    assert 'attention_check' not in cleaned.columns


def test_attention_check_requires_column(raw_survey):
    with pytest.raises(SchemaError) as info:
        apply_attention_check(raw_survey.drop(columns=['attention_check']))
    assert info.value.missing == ['attention_check']


def test_clean_dataset_summary(raw_survey):
    raw_survey.loc[10, 'arvis_2'] = np.nan
    cleaned, summary = clean_dataset(raw_survey)

    assert summary == {
        'n_raw': 242,
        'n_incomplete': 1,
        'n_attention_failed': 6,
        'n_clean': 235,
        'n_items': 2,
    }
    assert len(cleaned) == 235


def test_clean_dataset_without_attention_check(raw_survey):
    cleaned, summary = clean_dataset(raw_survey.drop(columns=['attention_check']), check_column=None)
    assert summary['n_attention_failed'] == 0
    assert len(cleaned) == 242


def test_item_columns_by_prefix(raw_survey):
    assert item_columns(raw_survey) == ['arvis_1', 'arvis_2']
    with pytest.raises(SchemaError):
        item_columns(raw_survey, prefix="ucla_")


def test_ensure_numeric_rejects_text_responses():
    df = pd.DataFrame({'arvis_1': ["1", "2", "often"]})
    with pytest.raises(SchemaError) as info:
        ensure_numeric(df, ['arvis_1'])
    assert info.value.missing == ['arvis_1']


def test_check_schema_lists_missing_columns(raw_survey):
    with pytest.raises(SchemaError) as info:
        check_schema(raw_survey, ['arvis_1', 'arvis_9', 'age'])
    assert info.value.missing == ['arvis_9', 'age']


def test_load_dataset_reads_ids_as_strings(tmp_path):
    path = tmp_path / "survey.csv"
    pd.DataFrame({'id': [101, 102], 'arvis_1': [1, 2]}).to_csv(path, index=False)

    df = load_dataset(path)
    assert df['id'].tolist() == ["101", "102"]


def test_load_dataset_missing_file(tmp_path):
    with pytest.raises(FileNotFoundError):
        load_dataset(tmp_path / "absent.csv")


def test_load_dataset_missing_required_columns(tmp_path):
    path = tmp_path / "survey.csv"
    pd.DataFrame({'id': [1], 'arvis_1': [1]}).to_csv(path, index=False)

    with pytest.raises(SchemaError) as info:
        load_dataset(path, required_columns=['arvis_1', 'attention_check'])
    assert info.value.missing == ['attention_check']


def test_load_dataset_duplicate_ids(tmp_path):
    path = tmp_path / "survey.csv"
    pd.DataFrame({'id': [1, 1], 'arvis_1': [1, 2]}).to_csv(path, index=False)

    with pytest.raises(SchemaError, match="duplicated"):
        load_dataset(path)


def test_load_study_unknown_name(tmp_path):
    with pytest.raises(ValueError, match="Unknown input"):
        load_study("study9", data_dir=tmp_path)
