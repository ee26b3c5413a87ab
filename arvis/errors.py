"""
Exception and warning types raised by the ARVIS pipeline.
"""

from __future__ import annotations


class ArvisError(Exception):
    """Base class for pipeline errors."""


class SchemaError(ArvisError):
    """Expected columns are missing or malformed."""

    def __init__(self, message: str, missing: list[str] | None = None):
        super().__init__(message)
        self.missing = list(missing or [])


class AssumptionViolation(ArvisError):
    """A factorability or model assumption is not met.

    The test result that triggered the violation is attached as ``result`` so
    the caller can decide whether to proceed anyway.
    """

    def __init__(self, message: str, result=None):
        super().__init__(message)
        self.result = result


class ConvergenceError(ArvisError):
    """An iterative estimator failed to produce a usable solution."""


class NotNestedError(ArvisError):
    """Two models cannot be compared with a likelihood-ratio test."""


class DegenerateSolutionWarning(UserWarning):
    """Heywood case or negative variance in a fitted solution."""
