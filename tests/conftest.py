"""
conftest.py - Shared fixtures

Synthetic ARVIS survey data with a known structure:
- arvis_1 .. arvis_5 load on the first factor
- arvis_6 .. arvis_10 load on the second factor
- factor correlation 0.3, responses on the 0-4 Likert scale
"""

import numpy as np
import pandas as pd
import pytest

from arvis.preprocessing import ATTENTION_CHECK_COL, SUBJECT_ID_COL

ITEMS = [f"arvis_{i}" for i in range(1, 11)]
FIRST_FACTOR = ITEMS[:5]
SECOND_FACTOR = ITEMS[5:]
LIKERT_CUTS = [-1.5, -0.5, 0.5, 1.5]


def simulate_likert(rng, n, loading=0.8, factor_r=0.3, n_per_factor=5):
    """Two correlated factors, simple structure, discretized to 0-4."""
    phi = np.array([[1.0, factor_r], [factor_r, 1.0]])
    factors = rng.multivariate_normal(np.zeros(2), phi, size=n)

    lam = np.zeros((2 * n_per_factor, 2))
    lam[:n_per_factor, 0] = loading
    lam[n_per_factor:, 1] = loading

    noise = rng.normal(size=(n, 2 * n_per_factor)) * np.sqrt(1 - loading ** 2)
    latent = factors @ lam.T + noise
    return np.digitize(latent, LIKERT_CUTS), factors


def survey_frame(responses, prefix="S"):
    n = responses.shape[0]
    df = pd.DataFrame(responses, columns=ITEMS)
    df.insert(0, SUBJECT_ID_COL, [f"{prefix}{i:04d}" for i in range(n)])
    df[ATTENTION_CHECK_COL] = 0
    return df


# =============================================================================
# RANDOM NUMBER GENERATORS
# =============================================================================

@pytest.fixture
def rng():
    """Seeded generator so every test sees the same sample."""
    return np.random.default_rng(seed=2024)


# =============================================================================
# SURVEY DATA
# =============================================================================

@pytest.fixture
def likert_df(rng):
    """300 subjects, ten items, two factors; everyone passes the attention check."""
    responses, _ = simulate_likert(rng, 300)
    return survey_frame(responses)


@pytest.fixture
def shrout_fleiss_ratings():
    """Six targets rated by four judges (Shrout & Fleiss, 1979, Table 2)."""
    return np.array([
        [9, 2, 5, 8],
        [6, 1, 3, 2],
        [8, 4, 6, 8],
        [7, 1, 2, 6],
        [10, 5, 6, 9],
        [6, 2, 4, 7],
    ], dtype=float)


@pytest.fixture
def study_data_dir(tmp_path, rng):
    """
    Input folder with all four survey files.

    Study 1 and Study 2 are independent samples; the retest file re-surveys
    the first 200 Study 2 subjects with a little response noise; the
    other-measures file holds one related and one unrelated measure.
    """
    data_dir = tmp_path / "raw"
    data_dir.mkdir()

    study1, _ = simulate_likert(rng, 300)
    survey_frame(study1, prefix="A").to_csv(data_dir / "arvis_wide.csv", index=False)

    study2, factors = simulate_likert(rng, 300)
    sample2 = survey_frame(study2, prefix="B")
    sample2.to_csv(data_dir / "arvis_wide_sample2.csv", index=False)

    other = pd.DataFrame({
        SUBJECT_ID_COL: sample2[SUBJECT_ID_COL],
        'anxiety': factors.sum(axis=1) + rng.normal(scale=0.8, size=len(sample2)),
        'unrelated': rng.normal(size=len(sample2)),
    })
    other.to_csv(data_dir / "arvis_other_measures.csv", index=False)

    retest = sample2.iloc[:200].copy()
    jitter = rng.choice([-1, 0, 0, 0, 1], size=(200, len(ITEMS)))
    retest[ITEMS] = np.clip(retest[ITEMS].to_numpy() + jitter, 0, 4)
    retest.to_csv(data_dir / "arvis_wide_retest.csv", index=False)

    return data_dir
