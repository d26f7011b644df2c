"""Structured comparison of bigkin outputs.

The functions here return a ComparisonResult instead of raising, so callers
(tests, equivalence scripts) can report every discrepancy at once.
"""

from __future__ import annotations

from dataclasses import dataclass

import numpy as np

from bigkin.validation.tolerances import ToleranceConfig


@dataclass
class ComparisonResult:
    """Result of a numerical array comparison.

    Attributes:
        passed: Whether the comparison passed within tolerance.
        max_abs_diff: Maximum absolute difference found.
        max_rel_diff: Maximum relative difference found (0 where expected is 0
            and the values agree).
        worst_location: Index of the worst mismatch, or None if passed.
        message: Human-readable description of the result.

    Example:
        >>> result = compare_arrays(actual, expected, rtol=1e-6, atol=1e-12)
        >>> if not result.passed:
        ...     print(result.message)
    """

    passed: bool
    max_abs_diff: float
    max_rel_diff: float
    worst_location: tuple[int, ...] | None
    message: str


def compare_arrays(
    actual: np.ndarray,
    expected: np.ndarray,
    rtol: float,
    atol: float,
    name: str = "array",
) -> ComparisonResult:
    """Compare two arrays elementwise with |a - e| <= atol + rtol * |e|.

    Args:
        actual: The computed array.
        expected: The reference array.
        rtol: Relative tolerance.
        atol: Absolute tolerance.
        name: Name used in the result message.

    Returns:
        ComparisonResult with pass/fail status and diagnostics.

    Example:
        >>> compare_arrays(np.ones(3), np.ones(3), rtol=1e-6, atol=0.0).passed
        True
    """
    actual = np.asarray(actual, dtype=np.float64)
    expected = np.asarray(expected, dtype=np.float64)

    if actual.shape != expected.shape:
        return ComparisonResult(
            passed=False,
            max_abs_diff=np.inf,
            max_rel_diff=np.inf,
            worst_location=None,
            message=(
                f"{name} shape mismatch: "
                f"actual {actual.shape} vs expected {expected.shape}"
            ),
        )
    if actual.size == 0:
        return ComparisonResult(True, 0.0, 0.0, None, f"{name} is empty")

    abs_diff = np.abs(actual - expected)
    with np.errstate(divide="ignore", invalid="ignore"):
        rel_diff = abs_diff / np.abs(expected)
    rel_diff = np.where(abs_diff == 0.0, 0.0, rel_diff)
    max_abs_diff = float(np.max(abs_diff))
    max_rel_diff = float(np.max(rel_diff))

    excess = abs_diff - (atol + rtol * np.abs(expected))
    if not np.any(excess > 0):
        return ComparisonResult(
            passed=True,
            max_abs_diff=max_abs_diff,
            max_rel_diff=max_rel_diff,
            worst_location=None,
            message=(
                f"{name} comparison passed "
                f"(max abs diff: {max_abs_diff:.2e}, max rel diff: {max_rel_diff:.2e})"
            ),
        )

    worst = tuple(int(i) for i in np.unravel_index(np.argmax(excess), excess.shape))
    return ComparisonResult(
        passed=False,
        max_abs_diff=max_abs_diff,
        max_rel_diff=max_rel_diff,
        worst_location=worst,
        message=(
            f"{name} comparison failed at {worst}: "
            f"actual={actual[worst]:.10e}, expected={expected[worst]:.10e}, "
            f"abs_diff={abs_diff[worst]:.2e} (rtol={rtol}, atol={atol})"
        ),
    )


def compare_kernel_matrices(
    actual: np.ndarray,
    expected: np.ndarray,
    config: ToleranceConfig | None = None,
) -> ComparisonResult:
    """Compare kernel matrices with kernel tolerances.

    atol is scaled by the largest |expected| entry, since kernels are sums
    over loci and grow with their number.
    """
    config = config or ToleranceConfig()
    scale = float(np.max(np.abs(expected))) if np.size(expected) else 1.0
    return compare_arrays(
        actual,
        expected,
        rtol=config.kernel_rtol,
        atol=config.atol * max(scale, 1.0),
        name="kernel",
    )


def align_signs(actual: np.ndarray, expected: np.ndarray) -> np.ndarray:
    """Flip columns of actual so each has a non-negative dot product with expected.

    Eigenvectors, and so PC scores, are only defined up to sign.
    """
    actual = np.asarray(actual, dtype=np.float64)
    if actual.shape != np.shape(expected):
        return actual
    signs = np.sign(np.sum(actual * expected, axis=0))
    signs[signs == 0] = 1.0
    return actual * signs


def compare_scores(
    actual: np.ndarray,
    expected: np.ndarray,
    config: ToleranceConfig | None = None,
) -> ComparisonResult:
    """Compare PC score matrices column by column, up to the sign of each column."""
    config = config or ToleranceConfig()
    return compare_arrays(
        align_signs(actual, expected),
        expected,
        rtol=config.score_rtol,
        atol=config.atol,
        name="scores",
    )


def compare_predictions(
    actual: np.ndarray,
    expected: np.ndarray,
    config: ToleranceConfig | None = None,
) -> ComparisonResult:
    """Compare gBLUP prediction vectors."""
    config = config or ToleranceConfig()
    return compare_arrays(
        actual,
        expected,
        rtol=config.prediction_rtol,
        atol=config.atol,
        name="predictions",
    )
