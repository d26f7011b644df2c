"""Tolerance configuration for numerical comparisons of bigkin results.

Different outputs accumulate rounding differently:

- **Kernel matrices**: sums of block products. Block size, update routine
  (JAX vs BLAS) and worker count only change summation order, so kernels
  agree to near machine precision relative to their magnitude.
- **PC scores**: pass through an eigensolver. Eigenvectors are defined up
  to sign, and LAPACK drivers differ in the last digits, so scores get a
  looser tolerance and are compared after sign alignment.
- **gBLUP predictions**: divide by retained eigenvalues; the smallest
  retained eigenvalue amplifies kernel rounding.
"""

from dataclasses import dataclass


@dataclass
class ToleranceConfig:
    """Relative and absolute tolerances per output type.

    Attributes:
        kernel_rtol: Relative tolerance for kernel matrix elements.
        score_rtol: Relative tolerance for principal component scores.
        prediction_rtol: Relative tolerance for gBLUP predictions.
        atol: Absolute tolerance for values near zero.

    Example:
        >>> ToleranceConfig().kernel_rtol
        1e-09
        >>> ToleranceConfig.strict().kernel_rtol
        1e-12
    """

    # Kernels: summation order only
    kernel_rtol: float = 1e-9
    # Scores: eigensolver differences after sign alignment
    score_rtol: float = 1e-6
    # Predictions: amplified by 1 / smallest retained eigenvalue
    prediction_rtol: float = 1e-6
    atol: float = 1e-9

    @classmethod
    def strict(cls) -> "ToleranceConfig":
        """Tolerances for comparing runs with identical blocking and routine."""
        return cls(
            kernel_rtol=1e-12,
            score_rtol=1e-9,
            prediction_rtol=1e-9,
            atol=1e-12,
        )

    @classmethod
    def relaxed(cls) -> "ToleranceConfig":
        """Tolerances for comparing against .10g text output or other platforms."""
        return cls(
            kernel_rtol=1e-7,
            score_rtol=1e-4,
            prediction_rtol=1e-4,
            atol=1e-7,
        )
