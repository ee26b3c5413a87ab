"""
Pipeline configuration.

Defaults come from ``arvis.preprocessing.constants``; a JSON file can
override any field and the CLI overrides paths and the seed.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, fields, replace
from pathlib import Path
from typing import Optional, Tuple

from .preprocessing import constants as C
from .preprocessing.filters import DistributionCriteria


@dataclass(frozen=True)
class PipelineConfig:
    """Every tunable of the three-study pipeline."""

    # Paths
    data_dir: Path = C.RAW_DIR
    output_dir: Path = C.ANALYSIS_OUTPUT_DIR

    # Columns and cleaning
    id_column: str = C.SUBJECT_ID_COL
    item_prefix: str = C.ITEM_PREFIX
    attention_check_column: str = C.ATTENTION_CHECK_COL
    attention_check_value: int = C.ATTENTION_CHECK_VALUE
    attention_check_studies: Tuple[str, ...] = ('study1', 'study2', 'study3')
    response_range: Tuple[int, int] = (C.RESPONSE_MIN, C.RESPONSE_MAX)

    # Screening
    distribution_metric: str = C.SKEW_METRIC
    distribution_threshold: float = C.MAX_ENDPOINT_PROPORTION
    min_mean_inter_item_r: float = C.MIN_MEAN_INTER_ITEM_R

    # EFA
    sphericity_alpha: float = C.SPHERICITY_ALPHA
    pa_iterations: int = C.PA_ITERATIONS
    pa_quantile: float = C.PA_QUANTILE
    seed: Optional[int] = C.RANDOM_SEED
    efa_factor_range: Tuple[int, ...] = C.EFA_FACTOR_RANGE
    efa_rotation: str = C.EFA_ROTATION
    min_loading_gap: float = C.MIN_LOADING_GAP
    items_per_factor: Optional[int] = C.ITEMS_PER_FACTOR

    # Reliability
    omega_group_factors: int = C.OMEGA_GROUP_FACTORS

    # CFA
    redundancy_r: float = C.REDUNDANT_FACTOR_R
    min_modification_index: float = C.MIN_MODIFICATION_INDEX
    cfa_covariance_pairs: Tuple[Tuple[str, str], ...] = ()
    theoretically_motivated_pairs: Tuple[Tuple[str, str], ...] = ()

    # Validity (columns of the other-measures file)
    convergent_measures: Tuple[str, ...] = ()
    divergent_measures: Tuple[str, ...] = ()
    spearman_measures: Tuple[str, ...] = ()

    # Retest
    icc_alpha: float = C.ICC_ALPHA

    def distribution_criteria(self) -> DistributionCriteria:
        return DistributionCriteria(
            metric=self.distribution_metric,
            threshold=self.distribution_threshold,
            response_range=tuple(self.response_range),
        )

    def output_dir_for(self, study: str) -> Path:
        return C.get_output_dir(study, base_dir=self.output_dir)

    def attention_check_for(self, study: str) -> Optional[str]:
        return self.attention_check_column if study in self.attention_check_studies else None

    def is_theoretically_motivated(self, a: str, b: str) -> bool:
        return {a, b} in [set(pair) for pair in self.theoretically_motivated_pairs]


_PATH_FIELDS = {'data_dir', 'output_dir'}
_PAIR_FIELDS = {'cfa_covariance_pairs', 'theoretically_motivated_pairs'}


def _coerce(name: str, value):
    if value is None:
        return None
    if name in _PATH_FIELDS:
        return Path(value)
    if name in _PAIR_FIELDS:
        return tuple(tuple(pair) for pair in value)
    if isinstance(value, list):
        return tuple(value)
    return value


def load_config(path: Optional[Path] = None, **overrides) -> PipelineConfig:
    """
    Build a PipelineConfig from defaults, an optional JSON file and overrides.

    Overrides whose value is None are ignored, so CLI flags can be passed
    straight through.
    """
    known = {f.name for f in fields(PipelineConfig)}
    values = {}

    if path is not None:
        path = Path(path)
        if not path.exists():
            raise FileNotFoundError(f"Config file not found: {path}")
        with open(path, 'r', encoding='utf-8') as f:
            payload = json.load(f)
        unknown = set(payload).difference(known)
        if unknown:
            raise ValueError(f"{path.name}: unknown config keys {sorted(unknown)}")
        values.update(payload)

    unknown = set(overrides).difference(known)
    if unknown:
        raise ValueError(f"Unknown config overrides {sorted(unknown)}")
    values.update({k: v for k, v in overrides.items() if v is not None})

    config = replace(PipelineConfig(), **{k: _coerce(k, v) for k, v in values.items()})
    config.distribution_criteria()  # validates the metric name
    return config
