"""Eigendecomposition of centred kernel matrices with eigenvalue truncation.

The eigensolver is a capability: any object with a
``decompose(matrix, k=None) -> (values, vectors)`` method returning eigenpairs
sorted by decreasing eigenvalue can be passed to reduce_spectrum. The
default ScipyEigenSolver uses scipy.linalg.eigh (LAPACK):

- full solve (k=None): driver chosen from available memory.
  dsyevd (driver='evd') is fastest but needs O(n^2) workspace; dsyevr
  (driver='evr') is the O(n) workspace fallback.
- top-k solve: dsyevr restricted to the k largest eigenvalues
  (subset_by_index), so only k eigenvectors are formed.

Eigenpairs are kept while the eigenvalue exceeds threshold * n_loci. The
kernels are sums over loci, so eigenvalues grow with the number of loci and
the cutoff must scale with it.
"""

from __future__ import annotations

import math
import numbers
import time
from dataclasses import dataclass
from typing import Protocol, runtime_checkable

import numpy as np
import psutil
import scipy.linalg
from loguru import logger
from threadpoolctl import threadpool_info

from bigkin.core.memory import (
    _dsyevd_workspace_gb,
    check_memory_available,
    estimate_eigendecomp_memory,
    log_memory_snapshot,
)
from bigkin.core.threading import blas_threads, get_blas_thread_count
from bigkin.errors import ConfigurationError, NumericalError

DEFAULT_THRESHOLD = 1e-3


@runtime_checkable
class EigenSolver(Protocol):
    """Symmetric eigensolver returning eigenpairs in decreasing order."""

    def decompose(
        self, matrix: np.ndarray, k: int | None = None
    ) -> tuple[np.ndarray, np.ndarray]: ...


def _select_eigendecomp_driver(n_samples: int) -> str:
    """Select LAPACK driver based on available memory.

    The input is not overwritten (the centred kernel is still needed for
    projection), so scipy works on a copy. We need space for:
    - copy of the input: n^2 * 8 bytes
    - eigenvectors (output): n^2 * 8 bytes
    - dsyevd workspace: (1 + 6*n + 2*n^2) * 8 + (3 + 5*n) * 4 bytes

    Returns:
        'evd' if dsyevd workspace fits in available memory, 'evr' otherwise.
    """
    available_gb = psutil.virtual_memory().available / 1e9
    workspace_gb = _dsyevd_workspace_gb(n_samples)
    total_needed = 2 * n_samples**2 * 8 / 1e9 + workspace_gb

    if total_needed * 1.1 < available_gb:
        return "evd"
    logger.warning(
        f"dsyevd workspace ({workspace_gb:.1f}GB) too large for "
        f"available memory ({available_gb:.1f}GB), "
        f"falling back to dsyevr (slower but O(n) workspace)"
    )
    return "evr"


def validate_rank(k: int | None, n: int) -> None:
    """Check that k eigenpairs can be requested from an n x n matrix.

    Raises:
        ConfigurationError: Unless k is None or an integer with 1 <= k < n.
    """
    if k is None:
        return
    if isinstance(k, bool) or not isinstance(k, numbers.Integral):
        raise ConfigurationError(f"k must be an integer, got {k!r}")
    if not 1 <= k < n:
        raise ConfigurationError(
            f"k must satisfy 1 <= k < {n} (number of reference individuals), "
            f"got k={k}"
        )


def validate_threshold(threshold: float) -> None:
    """Check an eigenvalue threshold.

    Raises:
        ConfigurationError: Unless threshold is a finite, non-negative number.
    """
    if isinstance(threshold, bool) or not isinstance(threshold, numbers.Real):
        raise ConfigurationError(f"threshold must be a number, got {threshold!r}")
    if not math.isfinite(threshold) or threshold < 0:
        raise ConfigurationError(
            f"threshold must be finite and non-negative, got {threshold}"
        )


class ScipyEigenSolver:
    """Default eigensolver backed by scipy.linalg.eigh.

    Args:
        check_memory: Check available memory before a full decomposition.
        n_threads: BLAS threads for LAPACK. None uses get_blas_thread_count().
    """

    def __init__(self, check_memory: bool = True, n_threads: int | None = None):
        self.check_memory = check_memory
        self.n_threads = n_threads

    def decompose(
        self, matrix: np.ndarray, k: int | None = None
    ) -> tuple[np.ndarray, np.ndarray]:
        """Eigendecompose a symmetric matrix.

        Args:
            matrix: Symmetric matrix (n, n). Not modified.
            k: Number of leading eigenpairs, or None for all of them.

        Returns:
            Tuple of (eigenvalues, eigenvectors), eigenvalues sorted
            descending and eigenvectors as matching columns.

        Raises:
            ValueError: If the matrix is not square.
            ConfigurationError: If k is not in [1, n).
            MemoryError: If a full decomposition would not fit in memory.
        """
        if matrix.ndim != 2 or matrix.shape[0] != matrix.shape[1]:
            raise ValueError(f"Matrix must be square, got shape {matrix.shape}")
        n = matrix.shape[0]
        validate_rank(k, n)

        n_threads = (
            self.n_threads if self.n_threads is not None else get_blas_thread_count()
        )
        for lib in threadpool_info():
            if lib.get("user_api") == "blas":
                logger.debug(
                    f"BLAS: {lib.get('internal_api')}, "
                    f"current={lib.get('num_threads')}, target={n_threads}"
                )

        if k is None:
            if self.check_memory:
                check_memory_available(
                    estimate_eigendecomp_memory(n),
                    safety_margin=0.1,
                    operation=f"eigendecomposition of {n:,}x{n:,} kernel matrix",
                )
            driver = _select_eigendecomp_driver(n)
            logger.info(f"Full eigendecomposition ({n:,} x {n:,}), driver={driver}")
            with blas_threads(n_threads):
                values, vectors = scipy.linalg.eigh(
                    matrix, driver=driver, check_finite=False
                )
        else:
            logger.info(f"Top-{k} eigendecomposition ({n:,} x {n:,}), driver=evr")
            with blas_threads(n_threads):
                values, vectors = scipy.linalg.eigh(
                    matrix,
                    subset_by_index=[n - k, n - 1],
                    driver="evr",
                    check_finite=False,
                )

        # LAPACK returns ascending order
        return values[::-1].copy(), vectors[:, ::-1].copy()


@dataclass(frozen=True)
class SpectralDecomposition:
    """Retained eigenpairs of a centred reference kernel.

    Attributes:
        values: Retained eigenvalues, strictly decreasing order (r,).
        vectors: Matching eigenvectors as columns (n_reference, r).
        n_loci: Number of loci behind the kernel.
        threshold: Relative cutoff; kept values exceed threshold * n_loci.
        requested_rank: k passed to the solver, or None for a full solve.
    """

    values: np.ndarray
    vectors: np.ndarray
    n_loci: int
    threshold: float
    requested_rank: int | None = None

    @property
    def rank(self) -> int:
        """Number of retained eigenpairs."""
        return len(self.values)


def reduce_spectrum(
    K_centered: np.ndarray,
    n_loci: int,
    k: int | None = None,
    threshold: float = DEFAULT_THRESHOLD,
    solver: EigenSolver | None = None,
) -> SpectralDecomposition:
    """Decompose a centred kernel and drop insignificant eigenpairs.

    Args:
        K_centered: Double-centred reference kernel (n_reference, n_reference).
        n_loci: Number of loci the kernel was accumulated over.
        k: Number of leading eigenpairs to request, or None for all.
        threshold: Keep eigenvalues greater than threshold * n_loci.
        solver: Eigensolver capability. Defaults to ScipyEigenSolver().

    Returns:
        SpectralDecomposition with rank <= k (or <= n_reference).

    Raises:
        ConfigurationError: Invalid k, threshold or n_loci.
        NumericalError: If no eigenvalue exceeds threshold * n_loci.
    """
    validate_threshold(threshold)
    if n_loci <= 0:
        raise ConfigurationError(f"n_loci must be positive, got {n_loci}")
    validate_rank(k, K_centered.shape[0])

    solver = solver if solver is not None else ScipyEigenSolver()

    n = K_centered.shape[0]
    log_memory_snapshot(f"before_eigendecomp_{n}samples")
    start_time = time.perf_counter()

    values, vectors = solver.decompose(K_centered, k)
    values = np.asarray(values, dtype=np.float64)
    vectors = np.asarray(vectors, dtype=np.float64)

    order = np.argsort(values, kind="stable")[::-1]
    values, vectors = values[order], vectors[:, order]

    elapsed = time.perf_counter() - start_time
    logger.info(f"Eigendecomposition completed in {elapsed:.2f} seconds")
    log_memory_snapshot(f"after_eigendecomp_{n}samples")

    cutoff = threshold * n_loci
    rank = int(np.sum(values > cutoff))
    if rank == 0:
        top = f"{values[0]:.6g}" if len(values) else "none"
        raise NumericalError(
            f"No eigenvalue exceeds threshold x n_loci = {cutoff:.6g} "
            f"(largest eigenvalue: {top}); lower the threshold"
        )

    if k is not None and rank < k:
        logger.warning(
            f"Only {rank} of {k} requested eigenvalues exceed {cutoff:.6g}; "
            f"keeping {rank} components"
        )
    else:
        logger.info(f"Retained {rank} eigenpairs (eigenvalue > {cutoff:.6g})")

    return SpectralDecomposition(
        values=values[:rank].copy(),
        vectors=vectors[:, :rank].copy(),
        n_loci=n_loci,
        threshold=threshold,
        requested_rank=k,
    )
