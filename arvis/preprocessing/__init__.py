"""
ARVIS Preprocessing Module
==========================

Loading, cleaning and distribution screening of the wide survey exports.

    from arvis.preprocessing import load_study, clean_dataset
    raw = load_study('study1')
    cleaned, summary = clean_dataset(raw)
"""

from .constants import (
    ANALYSIS_OUTPUT_DIR,
    ATTENTION_CHECK_COL,
    ATTENTION_CHECK_VALUE,
    DATA_DIR,
    ITEM_PREFIX,
    RAW_DIR,
    STUDY_FILES,
    SUBJECT_ID_COL,
    VALID_STUDIES,
    get_output_dir,
)
from .loaders import (
    apply_attention_check,
    check_schema,
    clean_dataset,
    drop_incomplete,
    ensure_numeric,
    item_columns,
    load_dataset,
    load_study,
    save_table,
)
from .filters import (
    DISTRIBUTION_METRICS,
    DistributionCriteria,
    distribution_metrics,
    flag_skewed,
    response_distribution,
)

__all__ = [
    # Constants
    'ANALYSIS_OUTPUT_DIR',
    'ATTENTION_CHECK_COL',
    'ATTENTION_CHECK_VALUE',
    'DATA_DIR',
    'ITEM_PREFIX',
    'RAW_DIR',
    'STUDY_FILES',
    'SUBJECT_ID_COL',
    'VALID_STUDIES',
    'get_output_dir',
    # Loaders
    'apply_attention_check',
    'check_schema',
    'clean_dataset',
    'drop_incomplete',
    'ensure_numeric',
    'item_columns',
    'load_dataset',
    'load_study',
    'save_table',
    # Filters
    'DISTRIBUTION_METRICS',
    'DistributionCriteria',
    'distribution_metrics',
    'flag_skewed',
    'response_distribution',
]
