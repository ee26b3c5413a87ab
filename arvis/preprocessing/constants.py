"""
Shared constants for ARVIS data preprocessing and analysis.

Paths, file names, column conventions and decision thresholds live here so
that every study runner reads the same values.
"""

from __future__ import annotations

from pathlib import Path

# Directory paths
BASE_DIR = Path(__file__).resolve().parents[2]
DATA_DIR = BASE_DIR / "data"
RAW_DIR = DATA_DIR / "raw"
ANALYSIS_OUTPUT_DIR = DATA_DIR / "outputs"

# Input files (one row per subject, header row of column names)
STUDY_FILES = {
    'study1': "arvis_wide.csv",
    'study2': "arvis_wide_sample2.csv",
    'other_measures': "arvis_other_measures.csv",
    'study3': "arvis_wide_retest.csv",
}

VALID_STUDIES = {'study1', 'study2', 'study3'}


def get_output_dir(study: str, base_dir: Path | None = None) -> Path:
    """Return (and create) the output directory for a study.

    Args:
        study: 'study1', 'study2', or 'study3'
        base_dir: override for ANALYSIS_OUTPUT_DIR

    Returns:
        Path to the study-specific output directory
    """
    if study not in VALID_STUDIES:
        raise ValueError(f"Unknown study: {study}. Valid studies: {sorted(VALID_STUDIES)}")
    output_dir = (base_dir or ANALYSIS_OUTPUT_DIR) / study
    output_dir.mkdir(parents=True, exist_ok=True)
    return output_dir


# Column conventions
SUBJECT_ID_COL = "id"
ITEM_PREFIX = "arvis_"
ATTENTION_CHECK_COL = "attention_check"
ATTENTION_CHECK_VALUE = 0
RESPONSE_MIN = 0              # Likert lower anchor
RESPONSE_MAX = 4              # Likert upper anchor
COMPOSITE_COL = "arvis_total"

# Distribution screening
SKEW_METRIC = "endpoint_proportion"
MAX_ENDPOINT_PROPORTION = 0.90  # share of responses in one endpoint category

# Inter-item correlation screening
MIN_MEAN_INTER_ITEM_R = 0.40

# Exploratory factor analysis
SPHERICITY_ALPHA = 0.05
PA_ITERATIONS = 100
PA_QUANTILE = 95
RANDOM_SEED = 42
EFA_FACTOR_RANGE = (1, 2, 3)
EFA_ROTATION = "oblimin"
MIN_LOADING_GAP = 0.30
ITEMS_PER_FACTOR = 4

# Reliability
OMEGA_GROUP_FACTORS = 3

# Confirmatory factor analysis fit thresholds (acceptable, excellent)
RMSEA_CUTOFFS = (0.08, 0.05)  # below
CFI_CUTOFFS = (0.90, 0.95)    # above
TLI_CUTOFFS = (0.90, 0.95)    # above
SRMR_CUTOFFS = (0.08, 0.05)   # below
REDUNDANT_FACTOR_R = 0.85
MIN_MODIFICATION_INDEX = 3.84  # chi-square(1) critical value at .05

# Retest
ICC_ALPHA = 0.05
