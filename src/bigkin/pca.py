"""Principal components from a blocked genotype kernel.

Pipeline:
1. compute_kernel: K_ref (and K_qry when a reference subset is given)
2. center_kernel / center_query_kernel
3. reduce_spectrum: eigenpairs of the centred K_ref with value > thr * m
4. project_scores: scores = K_c @ U / sqrt(lambda) for every individual

Query individuals never influence the components; they are projected onto
the axes learnt from the reference set.

Example:
    >>> from bigkin import ArrayGenotypeStore, compute_pca
    >>> scores = compute_pca(ArrayGenotypeStore(G), block_size=1000, k=10)
    >>> scores.shape
    (n_individuals, 10)
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
    validate_rank,
    validate_threshold,
)
from bigkin.io.store import GenotypeStore
from bigkin.kernel.compute import compute_kernel
from bigkin.kernel.partition import IndividualPartition
from bigkin.utils.logging import log_rss_memory


def project_scores(
    reference_centered: np.ndarray,
    query_centered: np.ndarray | None,
    spectrum: SpectralDecomposition,
    partition: IndividualPartition,
) -> np.ndarray:
    """Project reference and query individuals onto the retained components.

    Args:
        reference_centered: Double-centred reference kernel (n1, n1).
        query_centered: Column-centred query kernel (n2, n1), or None.
        spectrum: Retained eigenpairs of reference_centered.
        partition: Row positions of reference and query individuals.

    Returns:
        Score matrix (n_individuals, rank) in original row order.
    """
    alphas = spectrum.vectors / np.sqrt(spectrum.values)[np.newaxis, :]

    scores = np.zeros((partition.n_individuals, spectrum.rank), dtype=np.float64)
    scores[partition.reference] = reference_centered @ alphas
    if partition.has_query:
        if query_centered is None:
            raise ValueError("Query kernel required: partition has query individuals")
        scores[partition.query] = query_centered @ alphas
    return scores


def compute_pca(
    store: GenotypeStore,
    block_size: int = DEFAULT_BLOCK_SIZE,
    k: int | None = None,
    reference: np.ndarray | list[int] | None = None,
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
    """Compute principal component scores of every individual.

    Args:
        store: Genotype store (individuals x loci).
        block_size: Maximum number of loci read at once.
        k: Number of components to compute. None computes all of them.
        reference: Row indices used to learn the components. None uses all
            individuals; otherwise the remaining rows are projected.
        threshold: Drop components whose eigenvalue is not above
            threshold * n_loci.
        use_native: Kernel update routine (JAX if True, system BLAS if False).
        n_workers: Worker threads for kernel accumulation.
        check_memory: Check available memory before kernels and eigensolve.
        show_progress: Show a progress bar during kernel accumulation.
        on_block: Per-block progress callback.
        cancel: Event that cancels kernel accumulation between blocks.
        solver: Eigensolver capability. Defaults to ScipyEigenSolver.

    Returns:
        Score matrix (n_individuals, r), r <= k, rows in store order.

    Raises:
        ConfigurationError: Invalid block size, reference set, k or threshold
            (checked before any genotype is read).
        NumericalError: If no component survives the threshold.
    """
    partition = IndividualPartition.from_reference(store.n_individuals, reference)
    validate_rank(k, partition.n_reference)
    validate_threshold(threshold)

    kernels = compute_kernel(
        store,
        reference=partition.reference if reference is not None else None,
        block_size=block_size,
        use_native=use_native,
        n_workers=n_workers,
        check_memory=check_memory,
        show_progress=show_progress,
        on_block=on_block,
        cancel=cancel,
    )

    K_ref, means = center_kernel(kernels.reference)
    K_qry = None
    if kernels.query is not None:
        K_qry = center_query_kernel(kernels.query, means)
    n_loci = kernels.n_loci
    del kernels
    cleanup_memory()

    if solver is None:
        solver = ScipyEigenSolver(check_memory=check_memory)
    log_rss_memory("pca", "before_eigendecomp")
    spectrum = reduce_spectrum(
        K_ref, n_loci=n_loci, k=k, threshold=threshold, solver=solver
    )
    log_rss_memory("pca", "after_eigendecomp")

    scores = project_scores(K_ref, K_qry, spectrum, partition)
    logger.info(
        f"PCA: {spectrum.rank} components for {partition.n_individuals:,} "
        f"individuals ({partition.n_query:,} projected)"
    )
    return scores
