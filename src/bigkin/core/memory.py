"""Memory estimation and checking for blocked kernel computation.

Kernel matrices grow with the square of the number of individuals while
genotype blocks stay O(n * block_size). These helpers provide pre-allocation
checks so that oversized runs fail with a clear MemoryError instead of being
killed by the OOM killer.
"""

import gc
from typing import NamedTuple

import psutil
from loguru import logger


def _dsyevd_workspace_gb(n: int) -> float:
    """DSYEVD workspace: LWORK=(1+6N+2N^2) doubles, LIWORK=(3+5N) ints."""
    lwork_bytes = (1 + 6 * n + 2 * n * n) * 8  # float64
    liwork_bytes = (3 + 5 * n) * 4  # int32
    return (lwork_bytes + liwork_bytes) / 1e9


def estimate_eigendecomp_memory(n_samples: int) -> float:
    """Estimate peak memory (GB) for a full eigendecomposition of the kernel.

    Peak memory (scipy.linalg.eigh with the dsyevd driver):
    - K (input): n^2 * 8 bytes
    - U (output eigenvectors): n^2 * 8 bytes
    - workspace (DSYEVD O(n^2))

    Args:
        n_samples: Matrix dimension (number of reference individuals).

    Returns:
        Estimated peak memory in GB.

    Example:
        >>> round(estimate_eigendecomp_memory(100_000))
        320
    """
    kernel_gb = n_samples**2 * 8 / 1e9
    eigenvectors_gb = n_samples**2 * 8 / 1e9
    workspace_gb = _dsyevd_workspace_gb(n_samples)
    return kernel_gb + eigenvectors_gb + workspace_gb


class KernelMemoryBreakdown(NamedTuple):
    """Memory breakdown for blocked kernel accumulation.

    All values in GB. Only the kernel matrices scale with n^2; genotype
    blocks are bounded by block_size.
    """

    reference_kernel_gb: float  # n1^2 * 8 bytes per accumulator
    query_kernel_gb: float  # n2 * n1 * 8 bytes per accumulator
    block_gb: float  # (n1 + n2) * block_size * 8 bytes, raw + scaled
    seal_gb: float  # host copy of the kernels made by seal() on the native path
    n_workers: int  # each worker owns partial kernels
    total_peak_gb: float
    available_gb: float
    sufficient: bool  # Whether available >= total * 1.1


def estimate_kernel_memory(
    n_reference: int,
    n_query: int,
    block_size: int,
    n_workers: int = 1,
    use_native: bool = True,
) -> KernelMemoryBreakdown:
    """Estimate memory requirements for blocked kernel accumulation.

    With several workers every worker holds its own partial kernels plus one
    block in flight, and the merged result is a further copy. Sealing the
    native (JAX) kernels copies them to host memory once more, after the
    blocks and partial kernels have been released; the BLAS kernels are
    sealed in place.

    Args:
        n_reference: Number of reference individuals (n1).
        n_query: Number of query individuals (n2, 0 without a query set).
        block_size: Loci per block.
        n_workers: Number of accumulation workers.
        use_native: Whether the JAX update routine is used.

    Returns:
        KernelMemoryBreakdown with component estimates and the total.

    Example:
        >>> est = estimate_kernel_memory(50_000, 10_000, 1_000)
        >>> print(f"Peak: {est.total_peak_gb:.0f}GB")
    """
    reference_kernel_gb = n_reference**2 * 8 / 1e9
    query_kernel_gb = n_query * n_reference * 8 / 1e9
    # Raw block plus its scaled copy
    block_gb = 2 * (n_reference + n_query) * block_size * 8 / 1e9

    kernels_gb = reference_kernel_gb + query_kernel_gb
    seal_gb = kernels_gb if use_native else 0.0
    if n_workers > 1:
        accumulate_gb = (n_workers + 1) * kernels_gb + n_workers * block_gb
    else:
        accumulate_gb = kernels_gb + block_gb
    total_peak_gb = max(accumulate_gb, kernels_gb + seal_gb)

    available_gb = psutil.virtual_memory().available / 1e9
    sufficient = total_peak_gb * 1.1 < available_gb  # 10% safety margin

    return KernelMemoryBreakdown(
        reference_kernel_gb=reference_kernel_gb,
        query_kernel_gb=query_kernel_gb,
        block_gb=block_gb,
        seal_gb=seal_gb,
        n_workers=n_workers,
        total_peak_gb=total_peak_gb,
        available_gb=available_gb,
        sufficient=sufficient,
    )


def check_memory_available(
    required_gb: float,
    safety_margin: float = 0.1,
    operation: str = "operation",
) -> bool:
    """Check if sufficient memory is available, raise if not.

    Args:
        required_gb: Memory required in GB.
        safety_margin: Additional margin (0.1 = 10%).
        operation: Description for error message.

    Returns:
        True if sufficient memory available.

    Raises:
        MemoryError: If insufficient memory with detailed message.
    """
    available_gb = psutil.virtual_memory().available / 1e9
    required_with_margin = required_gb * (1 + safety_margin)

    if required_with_margin > available_gb:
        raise MemoryError(
            f"Insufficient memory for {operation}. "
            f"Need {required_gb:.1f}GB (+{safety_margin*100:.0f}% margin = "
            f"{required_with_margin:.1f}GB), but only {available_gb:.1f}GB available. "
            f"Consider using a machine with more RAM or a smaller reference set."
        )

    return True


class MemorySnapshot(NamedTuple):
    """Snapshot of current memory state for debugging.

    All values in GB.
    """

    rss_gb: float  # Resident Set Size (actual RAM used by process)
    vms_gb: float  # Virtual Memory Size (total address space)
    available_gb: float  # Available system memory
    total_gb: float  # Total system memory
    percent_used: float  # Percentage of total system memory in use


def get_memory_snapshot() -> MemorySnapshot:
    """Get current memory usage snapshot.

    Returns:
        MemorySnapshot with RSS, VMS, available, and total memory.
    """
    process = psutil.Process()
    mem_info = process.memory_info()
    vm = psutil.virtual_memory()

    return MemorySnapshot(
        rss_gb=mem_info.rss / 1e9,
        vms_gb=mem_info.vms / 1e9,
        available_gb=vm.available / 1e9,
        total_gb=vm.total / 1e9,
        percent_used=((vm.total - vm.available) / vm.total) * 100,
    )


def log_memory_snapshot(label: str = "", level: str = "DEBUG") -> MemorySnapshot:
    """Log current memory state with optional label.

    Args:
        label: Optional label for this snapshot (e.g., "after_kernel").
        level: Log level ("DEBUG", "INFO", "WARNING").

    Returns:
        MemorySnapshot for chaining/assertions.

    Example:
        >>> log_memory_snapshot("before_kernel", level="INFO")
        INFO | Memory [before_kernel]: RSS=1.5GB, Available=60.2GB/64.0GB (5.9% used)
    """
    snap = get_memory_snapshot()
    label_str = f" [{label}]" if label else ""
    msg = (
        f"Memory{label_str}: RSS={snap.rss_gb:.1f}GB, "
        f"Available={snap.available_gb:.1f}GB/{snap.total_gb:.1f}GB "
        f"({snap.percent_used:.1f}% used)"
    )
    logger.log(level, msg)
    return snap


def cleanup_memory(verbose: bool = False) -> MemorySnapshot:
    """Run garbage collection, e.g. after dropping a raw kernel matrix.

    Args:
        verbose: If True, log memory before and after collection.

    Returns:
        MemorySnapshot after cleanup.
    """
    before = log_memory_snapshot("before_cleanup") if verbose else None
    gc.collect()
    if before is None:
        return get_memory_snapshot()

    after = log_memory_snapshot("after_cleanup")
    freed_gb = before.rss_gb - after.rss_gb
    if freed_gb > 0.1:
        logger.info(
            f"Freed {freed_gb:.1f}GB (RSS reduced from "
            f"{before.rss_gb:.1f}GB to {after.rss_gb:.1f}GB)"
        )
    return after
