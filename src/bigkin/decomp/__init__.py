"""Kernel centering and spectral decomposition.

- center_kernel / center_query_kernel: double and column centering
- reduce_spectrum: eigendecomposition with threshold x n_loci truncation
- EigenSolver: decompose(matrix, k) capability; ScipyEigenSolver is the default
"""

from bigkin.decomp.centering import center_kernel, center_query_kernel
from bigkin.decomp.eigen import (
    DEFAULT_THRESHOLD,
    EigenSolver,
    ScipyEigenSolver,
    SpectralDecomposition,
    reduce_spectrum,
    validate_rank,
    validate_threshold,
)

__all__ = [
    "DEFAULT_THRESHOLD",
    "EigenSolver",
    "ScipyEigenSolver",
    "SpectralDecomposition",
    "center_kernel",
    "center_query_kernel",
    "reduce_spectrum",
    "validate_rank",
    "validate_threshold",
]
