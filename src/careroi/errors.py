"""
Error taxonomy for the risk-scoring / ROI pipeline.

- InvalidConfiguration: bad inputs, rejected before any generation happens.
- EmptyCohort: the selector produced no patients; fatal to the ROI stage only.
- DegenerateModelFit: warning category for fits/predictions that collapse
  (single class, singular design). Never raised as an exception.
"""

from typing import Any


class InvalidConfiguration(ValueError):
    """Configuration value outside its valid domain."""

    def __init__(self, stage: str, name: str, value: Any, expected: str):
        self.stage = stage
        self.name = name
        self.value = value
        self.expected = expected
        super().__init__(f"[{stage}] {name} must be {expected}, got {value!r}")


class EmptyCohort(RuntimeError):
    """Target cohort has no patients, so ROI is undefined."""

    def __init__(self, stage: str = 'roi', cutoff: float = float('nan')):
        self.stage = stage
        self.cutoff = cutoff
        super().__init__(
            f"[{stage}] target cohort is empty (cutoff={cutoff:.4f}); "
            f"ROI would divide by zero"
        )


class DegenerateModelFit(UserWarning):
    """Model fit or thresholded predictions collapsed to a degenerate case."""
