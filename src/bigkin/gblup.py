"""Genomic best linear unbiased prediction (gBLUP) from a blocked kernel.

With the centred reference kernel K_c = U diag(lambda) U^T (truncated to
eigenvalues above threshold * n_loci) and reference phenotypes y:

    b = U diag(1 / lambda) U^T (y - mean(y))
    prediction = K_qry_c @ b + mean(y)

i.e. the minimum-norm solution of K_c b = y - mean(y) on the retained
eigenspace, evaluated at the query individuals. The truncation is what keeps
the inversion stable.
"""

from __future__ import annotations

import threading

import numpy as np
from loguru import logger

from bigkin.core.config import DEFAULT_BLOCK_SIZE
from bigkin.core.memory import cleanup_memory
from bigkin.core.progress import BlockCallback
from bigkin.decomp import (
    DEFAULT_THRESHOLD,
    EigenSolver,
    ScipyEigenSolver,
    SpectralDecomposition,
    center_kernel,
    center_query_kernel,
    reduce_spectrum,
    validate_threshold,
)
from bigkin.errors import ConfigurationError, DataError
from bigkin.io.store import GenotypeStore
from bigkin.kernel.compute import compute_kernel
from bigkin.kernel.partition import IndividualPartition
from bigkin.utils.logging import log_rss_memory


def _reference_phenotypes(
    phenotypes: np.ndarray, partition: IndividualPartition
) -> np.ndarray:
    """Select the phenotypes of the reference individuals, in reference order."""
    y = np.asarray(phenotypes, dtype=np.float64)
    if y.ndim != 1:
        raise DataError(f"Phenotypes must be 1D, got shape {y.shape}")

    if len(y) == partition.n_reference:
        y_ref = y
    elif len(y) == partition.n_individuals:
        y_ref = y[partition.reference]
    else:
        raise DataError(
            f"Got {len(y)} phenotypes; expected {partition.n_reference} "
            f"(reference individuals) or {partition.n_individuals} (all individuals)"
        )

    n_missing = int(np.isnan(y_ref).sum())
    if n_missing > 0:
        raise DataError(
            f"{n_missing} reference individual(s) have missing phenotypes; "
            "remove them from the reference set"
        )
    return y_ref


def predict_gblup(
    query_centered: np.ndarray,
    spectrum: SpectralDecomposition,
    phenotypes: np.ndarray,
) -> np.ndarray:
    """Predict query phenotypes from a centred query kernel.

    Args:
        query_centered: Column-centred query kernel (n_query, n_reference).
        spectrum: Retained eigenpairs of the centred reference kernel.
        phenotypes: Reference phenotypes (n_reference,), reference order.

    Returns:
        Predictions (n_query,), in query order.
    """
    y = np.asarray(phenotypes, dtype=np.float64)
    y_mean = y.mean()

    t = spectrum.vectors.T @ (y - y_mean)
    b = spectrum.vectors @ (t / spectrum.values)
    return query_centered @ b + y_mean


def compute_gblup(
    store: GenotypeStore,
    phenotypes: np.ndarray,
    reference: np.ndarray | list[int],
    block_size: int = DEFAULT_BLOCK_SIZE,
    threshold: float = DEFAULT_THRESHOLD,
    use_native: bool = True,
    *,
    n_workers: int = 1,
    check_memory: bool = True,
    show_progress: bool = False,
    on_block: BlockCallback | None = None,
    cancel: threading.Event | None = None,
    solver: EigenSolver | None = None,
) -> np.ndarray:
    """Predict phenotypes of the query individuals by gBLUP.

    Args:
        store: Genotype store (individuals x loci).
        phenotypes: Training phenotypes, either one per reference individual
            (reference order) or one per individual (store order; only the
            reference rows are used, so query entries may be NaN).
        reference: Row indices of the training individuals. Must leave at
            least one individual to predict.
        block_size: Maximum number of loci read at once.
        threshold: Drop eigenpairs whose eigenvalue is not above
            threshold * n_loci.
        use_native: Kernel update routine (JAX if True, system BLAS if False).
        n_workers: Worker threads for kernel accumulation.
        check_memory: Check available memory before kernels and eigensolve.
        show_progress: Show a progress bar during kernel accumulation.
        on_block: Per-block progress callback.
        cancel: Event that cancels kernel accumulation between blocks.
        solver: Eigensolver capability. Defaults to ScipyEigenSolver. A full
            decomposition is always requested.

    Returns:
        Predictions for the query individuals (ascending row order).

    Raises:
        ConfigurationError: Invalid reference set (or no query individuals),
            block size or threshold.
        DataError: Wrongly sized or missing reference phenotypes.
        NumericalError: If no eigenpair survives the threshold.
    """
    partition = IndividualPartition.from_reference(store.n_individuals, reference)
    if not partition.has_query:
        raise ConfigurationError(
            "gBLUP needs query individuals: the reference set covers all "
            f"{partition.n_individuals} individuals"
        )
    y = _reference_phenotypes(phenotypes, partition)
    validate_threshold(threshold)

    kernels = compute_kernel(
        store,
        reference=partition.reference,
        block_size=block_size,
        use_native=use_native,
        n_workers=n_workers,
        check_memory=check_memory,
        show_progress=show_progress,
        on_block=on_block,
        cancel=cancel,
    )

    K_ref, means = center_kernel(kernels.reference)
    K_qry = center_query_kernel(kernels.query, means)
    n_loci = kernels.n_loci
    del kernels
    cleanup_memory()

    if solver is None:
        solver = ScipyEigenSolver(check_memory=check_memory)
    log_rss_memory("gblup", "before_eigendecomp")
    spectrum = reduce_spectrum(
        K_ref, n_loci=n_loci, k=None, threshold=threshold, solver=solver
    )
    log_rss_memory("gblup", "after_eigendecomp")
    del K_ref

    predictions = predict_gblup(K_qry, spectrum, y)
    logger.info(
        f"gBLUP: {partition.n_query:,} predictions from "
        f"{partition.n_reference:,} reference individuals, rank {spectrum.rank}"
    )
    return predictions
