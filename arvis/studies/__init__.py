"""
Study runners: item reduction (Study 1), confirmation and validity
(Study 2), test-retest (Study 3).
"""

from ._utils import load_final_items, save_final_items
from .study1 import Study1Result, run_study1
from .study2 import Study2Result, run_study2, run_validity
from .study3 import Study3Result, run_study3

__all__ = [
    'Study1Result',
    'Study2Result',
    'Study3Result',
    'load_final_items',
    'run_study1',
    'run_study2',
    'run_study3',
    'run_validity',
    'save_final_items',
]
