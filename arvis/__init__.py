"""
ARVIS
=====

Development and validation of the ARVIS scale (avoidance of
respiratory-viral-infection situations) across three survey samples:
item reduction (EFA), confirmatory validation (CFA, reliability,
validity) and test-retest reliability.

    python -m arvis --list
"""

from .config import PipelineConfig, load_config
from .errors import (
    ArvisError,
    AssumptionViolation,
    ConvergenceError,
    DegenerateSolutionWarning,
    NotNestedError,
    SchemaError,
)
from .items import ItemSet, ScreeningDecision

__version__ = "0.1.0"

__all__ = [
    'ArvisError',
    'AssumptionViolation',
    'ConvergenceError',
    'DegenerateSolutionWarning',
    'ItemSet',
    'NotNestedError',
    'PipelineConfig',
    'SchemaError',
    'ScreeningDecision',
    'load_config',
]
