"""Blocked out-of-core kernel computation.

Computes the linear kernel matrices of a scaled genotype matrix X:

    K_ref = X_ref @ X_ref.T      (reference x reference)
    K_qry = X_qry @ X_ref.T      (query x reference, only with a query set)

where each locus is standardised with the reference-set allele frequency
(see bigkin.kernel.scaling). Kernels are not divided by the number of loci;
downstream truncation thresholds scale with n_loci instead.

The loci are read in contiguous blocks of at most block_size columns, so
peak genotype memory is O(n * block_size) regardless of the number of loci,
and the store is traversed exactly once.

Blocks may be processed by several worker threads. Each worker owns a
partial KernelAccumulator; partials are summed once all blocks are done.
Block order only affects floating-point rounding.
"""

from __future__ import annotations

import queue
import threading
import time
from collections.abc import Iterator
from concurrent.futures import ThreadPoolExecutor
from contextlib import nullcontext
from dataclasses import dataclass

import jax.numpy as jnp
import numpy as np
from loguru import logger

from bigkin.core.config import DEFAULT_BLOCK_SIZE, KernelConfig
from bigkin.core.jax_config import ensure_jax_configured
from bigkin.core.memory import (
    check_memory_available,
    estimate_kernel_memory,
    log_memory_snapshot,
)
from bigkin.core.progress import BlockCallback, no_progress, progress_iterator
from bigkin.core.threading import blas_threads
from bigkin.errors import (
    BigkinError,
    ComputationCancelled,
    ConfigurationError,
    DataError,
    StoreIOError,
)
from bigkin.io.store import GenotypeStore
from bigkin.kernel.accumulator import KernelAccumulator
from bigkin.kernel.partition import IndividualPartition
from bigkin.kernel.scaling import allele_frequencies, scale_block


@dataclass(frozen=True)
class KernelMatrices:
    """Sealed result of compute_kernel.

    Attributes:
        reference: Symmetric reference kernel (n_reference, n_reference), read-only.
        query: Query-reference kernel (n_query, n_reference), read-only, or
            None when every individual is in the reference set.
        n_loci: Number of loci accumulated (all columns of the store).
        partition: Reference/query split used to build the kernels.
    """

    reference: np.ndarray
    query: np.ndarray | None
    n_loci: int
    partition: IndividualPartition


def block_intervals(n_loci: int, block_size: int) -> list[tuple[int, int]]:
    """Cut loci into contiguous [start, end) blocks of at most block_size.

    Example:
        >>> block_intervals(10, 4)
        [(0, 4), (4, 8), (8, 10)]
    """
    if block_size <= 0:
        raise ConfigurationError(f"block_size must be positive, got {block_size}")
    return [
        (start, min(start + block_size, n_loci))
        for start in range(0, n_loci, block_size)
    ]


def read_genotype_block(
    store: GenotypeStore, rows: np.ndarray, start: int, end: int
) -> np.ndarray:
    """Read and validate one genotype block.

    Raises:
        StoreIOError: If the store raises, with the locus range attached.
        DataError: If the block has the wrong shape or values outside {0, 1, 2, NaN}.
    """
    try:
        block = store.read_block(rows, start, end)
    except BigkinError:
        raise
    except Exception as e:
        raise StoreIOError(start, end, f"{type(e).__name__}: {e}") from e

    block = np.asarray(block, dtype=np.float64)
    expected = (len(rows), end - start)
    if block.shape != expected:
        raise DataError(
            f"Genotype store returned block of shape {block.shape} for loci "
            f"[{start}, {end}), expected {expected}"
        )

    observed = block[~np.isnan(block)]
    if not np.all(np.isin(observed, (0.0, 1.0, 2.0))):
        bad = observed[~np.isin(observed, (0.0, 1.0, 2.0))]
        raise DataError(
            f"Genotype block for loci [{start}, {end}) contains values outside "
            f"{{0, 1, 2, missing}}, e.g. {bad[0]!r}"
        )
    return block


@dataclass(frozen=True)
class GenotypeBlock:
    """Raw genotypes of one locus interval, split by partition."""

    start: int
    end: int
    reference: np.ndarray
    query: np.ndarray | None


def _read_interval(
    store: GenotypeStore, partition: IndividualPartition, start: int, end: int
) -> GenotypeBlock:
    reference = read_genotype_block(store, partition.reference, start, end)
    query = None
    if partition.has_query:
        query = read_genotype_block(store, partition.query, start, end)
    return GenotypeBlock(start, end, reference, query)


def iter_blocks(
    store: GenotypeStore,
    partition: IndividualPartition,
    block_size: int,
    cancel: threading.Event | None = None,
) -> Iterator[GenotypeBlock]:
    """Yield the raw genotype blocks of a store in locus order.

    The store is read lazily, one interval per step, so at most one block is
    held by the iterator at a time.

    Args:
        store: Genotype store to traverse.
        partition: Reference/query split selecting the rows to read.
        block_size: Maximum number of loci per block.
        cancel: Event checked before each read.

    Yields:
        GenotypeBlock for each interval of block_intervals(n_loci, block_size).

    Raises:
        ComputationCancelled: If cancel is set before a block is read.
    """
    for start, end in block_intervals(store.n_loci, block_size):
        _check_cancel(cancel, start, end)
        yield _read_interval(store, partition, start, end)


def _accumulate_block(acc: KernelAccumulator, block: GenotypeBlock) -> int:
    """Scale and accumulate one block. Returns its missing reference count."""
    freqs = jnp.asarray(allele_frequencies(block.reference, acc.n_reference))
    n_missing = int(np.isnan(block.reference).sum())

    ref_scaled = scale_block(jnp.asarray(block.reference), freqs)
    query_scaled = None
    if block.query is not None:
        query_scaled = scale_block(jnp.asarray(block.query), freqs)

    acc.add(ref_scaled, query_scaled)
    return n_missing


def _check_cancel(cancel: threading.Event | None, start: int, end: int) -> None:
    if cancel is not None and cancel.is_set():
        raise ComputationCancelled(
            f"Kernel computation cancelled before loci [{start}, {end})"
        )


def _accumulate_sequential(
    acc: KernelAccumulator,
    store: GenotypeStore,
    partition: IndividualPartition,
    block_size: int,
    cancel: threading.Event | None,
    on_block: BlockCallback,
    show_progress: bool,
) -> int:
    n_blocks = len(block_intervals(store.n_loci, block_size))
    blocks: Iterator[GenotypeBlock] = iter_blocks(
        store, partition, block_size, cancel
    )
    if show_progress and n_blocks > 1:
        blocks = progress_iterator(blocks, total=n_blocks, desc="Kernel")

    n_missing = 0
    for index, block in enumerate(blocks, start=1):
        n_missing += _accumulate_block(acc, block)
        on_block(index, n_blocks)
    return n_missing


def _accumulate_parallel(
    store: GenotypeStore,
    partition: IndividualPartition,
    intervals: list[tuple[int, int]],
    use_native: bool,
    n_workers: int,
    cancel: threading.Event | None,
    on_block: BlockCallback,
    show_progress: bool,
) -> tuple[KernelAccumulator, int]:
    """Accumulate blocks on a thread pool with per-worker partial kernels.

    Workers pull block intervals from a shared queue and report each finished
    block (or their first error) on a completion queue. Only the calling
    thread consumes completions, so on_block and the progress bar are never
    called concurrently.
    """
    n_blocks = len(intervals)
    todo: queue.SimpleQueue = queue.SimpleQueue()
    for interval in intervals:
        todo.put(interval)
    done: queue.SimpleQueue = queue.SimpleQueue()
    stop = threading.Event()

    partials = [
        KernelAccumulator(partition.n_reference, partition.n_query, use_native)
        for _ in range(n_workers)
    ]

    def worker(acc: KernelAccumulator) -> None:
        try:
            while not stop.is_set():
                try:
                    start, end = todo.get_nowait()
                except queue.Empty:
                    return
                _check_cancel(cancel, start, end)
                block = _read_interval(store, partition, start, end)
                done.put(_accumulate_block(acc, block))
        except Exception as e:
            stop.set()
            done.put(e)

    completions: Iterator = (done.get() for _ in range(n_blocks))
    if show_progress:
        completions = progress_iterator(completions, total=n_blocks, desc="Kernel")

    n_missing = 0
    error: Exception | None = None
    with ThreadPoolExecutor(max_workers=n_workers) as pool:
        # Workers must stop before the pool joins, also when on_block raises
        try:
            for acc in partials:
                pool.submit(worker, acc)
            for index, item in enumerate(completions, start=1):
                if isinstance(item, Exception):
                    error = item
                    break
                n_missing += item
                on_block(index, n_blocks)
        finally:
            stop.set()

    if error is not None:
        raise error

    merged = partials[0]
    for partial in partials[1:]:
        merged.merge(partial)
    return merged, n_missing


def compute_kernel(
    store: GenotypeStore,
    reference: np.ndarray | list[int] | None = None,
    block_size: int = DEFAULT_BLOCK_SIZE,
    use_native: bool = True,
    n_workers: int = 1,
    check_memory: bool = True,
    show_progress: bool = False,
    on_block: BlockCallback | None = None,
    cancel: threading.Event | None = None,
) -> KernelMatrices:
    """Compute reference (and query) kernel matrices block by block.

    Args:
        store: Genotype store (individuals x loci).
        reference: 0-based row indices of the reference set. None uses every
            individual and produces no query kernel.
        block_size: Maximum number of loci read at once (for all individuals).
        use_native: Use the JAX/XLA update routine (default). If False, use
            numpy with the system BLAS; prefer this when numpy is linked
            against an optimised BLAS such as MKL.
        n_workers: Worker threads accumulating blocks (default 1).
        check_memory: Check available memory before allocating kernels.
        show_progress: Show a progress bar over blocks.
        on_block: Callback invoked as on_block(blocks_done, n_blocks) after
            each block. Notification only.
        cancel: Event checked before each block; when set, the computation
            stops with ComputationCancelled.

    Returns:
        KernelMatrices with read-only, sealed kernels.

    Raises:
        ConfigurationError: Invalid block size, worker count or reference set.
        DataError: Empty store, or a malformed genotype block.
        StoreIOError: A store read failed.
        ComputationCancelled: cancel was set.
        MemoryError: If check_memory=True and kernels would not fit.

    Example:
        >>> store = ArrayGenotypeStore(genotypes)
        >>> kernels = compute_kernel(store, reference=[0, 1, 2], block_size=1000)
        >>> kernels.reference.shape, kernels.query.shape
        ((3, 3), (1, 3))
    """
    KernelConfig(
        block_size=block_size,
        use_native=use_native,
        n_workers=n_workers,
        check_memory=check_memory,
        show_progress=show_progress,
    ).validate()

    partition = IndividualPartition.from_reference(store.n_individuals, reference)
    n_loci = store.n_loci
    if n_loci == 0:
        raise DataError("Genotype store has no loci")

    ensure_jax_configured()
    start_time = time.perf_counter()
    on_block = on_block or no_progress

    intervals = block_intervals(n_loci, block_size)
    n_blocks = len(intervals)
    n_workers = min(n_workers, n_blocks)

    logger.info("Computing kernel matrices")
    logger.info(f"  Reference individuals: {partition.n_reference:,}")
    logger.info(f"  Query individuals: {partition.n_query:,}")
    logger.info(f"  Loci: {n_loci:,} in {n_blocks} blocks of {block_size:,}")
    logger.debug(
        f"  Update routine: {'jax' if use_native else 'blas'}, workers: {n_workers}"
    )

    if check_memory:
        est = estimate_kernel_memory(
            partition.n_reference,
            partition.n_query,
            block_size,
            n_workers,
            use_native=use_native,
        )
        check_memory_available(
            est.total_peak_gb,
            safety_margin=0.1,
            operation=(
                f"kernel accumulation ({partition.n_reference:,} reference x "
                f"{partition.n_query:,} query individuals)"
            ),
        )

    log_memory_snapshot(f"before_kernel_{partition.n_reference}ref")

    blas_scope = nullcontext() if use_native else blas_threads(n_workers=n_workers)
    with blas_scope:
        if n_workers == 1:
            acc = KernelAccumulator(
                partition.n_reference, partition.n_query, use_native
            )
            n_missing = _accumulate_sequential(
                acc, store, partition, block_size, cancel, on_block, show_progress
            )
        else:
            acc, n_missing = _accumulate_parallel(
                store,
                partition,
                intervals,
                use_native,
                n_workers,
                cancel,
                on_block,
                show_progress,
            )

    acc.seal()

    if n_missing > 0:
        logger.warning(
            f"{n_missing:,} missing reference genotypes: allele frequencies use "
            f"2 x {partition.n_reference:,} as denominator and are biased downwards "
            f"at loci with missing values"
        )

    elapsed = time.perf_counter() - start_time
    logger.info(f"Kernel matrices computed in {elapsed:.2f}s")
    log_memory_snapshot(f"after_kernel_{partition.n_reference}ref")

    return KernelMatrices(
        reference=acc.reference_kernel,
        query=acc.query_kernel,
        n_loci=acc.n_loci,
        partition=partition,
    )
