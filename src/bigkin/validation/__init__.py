"""Validation helpers for bigkin output.

- tolerances: tolerance thresholds per output type
- compare: structured comparisons of kernels, scores and predictions
"""

from bigkin.validation.compare import (
    ComparisonResult,
    align_signs,
    compare_arrays,
    compare_kernel_matrices,
    compare_predictions,
    compare_scores,
)
from bigkin.validation.tolerances import ToleranceConfig

__all__ = [
    "ToleranceConfig",
    "ComparisonResult",
    "align_signs",
    "compare_arrays",
    "compare_kernel_matrices",
    "compare_predictions",
    "compare_scores",
]
