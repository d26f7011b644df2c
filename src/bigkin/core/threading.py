"""BLAS thread budget for the numpy side of bigkin.

Only numpy/scipy calls go through the system BLAS: the dsyrk kernel update
(use_native=False) and the LAPACK eigensolvers. The JAX routines run on
XLA's own thread pool and ignore these limits.

threadpoolctl limits are process-wide. When several accumulation workers
call dsyrk concurrently, each call would otherwise start a full set of BLAS
threads, so the budget is divided between workers.
"""

from __future__ import annotations

import os
from collections.abc import Generator
from contextlib import contextmanager

import psutil
from loguru import logger
from threadpoolctl import threadpool_limits

BLAS_THREADS_ENV = "BIGKIN_BLAS_THREADS"


def _thread_budget() -> tuple[int, str]:
    """Total BLAS threads for the process and where the number came from."""
    ceiling = os.cpu_count() or 64

    raw = os.environ.get(BLAS_THREADS_ENV)
    if raw is not None:
        try:
            requested = int(raw)
        except ValueError:
            logger.warning(
                f"{BLAS_THREADS_ENV}={raw!r} is not an integer; "
                "using the physical core count"
            )
        else:
            return max(1, min(requested, ceiling)), BLAS_THREADS_ENV

    physical = psutil.cpu_count(logical=False) or ceiling
    return max(1, min(physical, ceiling)), "physical cores"


def get_blas_thread_count(n_workers: int = 1) -> int:
    """BLAS threads per concurrent caller.

    The process budget is BIGKIN_BLAS_THREADS when set, else the number of
    physical cores, capped at os.cpu_count(). It is shared evenly between
    n_workers callers, each getting at least one thread.

    Args:
        n_workers: Number of threads issuing BLAS calls at the same time.

    Returns:
        Positive thread count.
    """
    budget, source = _thread_budget()
    n = max(1, budget // max(1, n_workers))
    logger.debug(f"BLAS threads: {n} per worker ({budget} from {source})")
    return n


@contextmanager
def blas_threads(
    n_threads: int | None = None, n_workers: int = 1
) -> Generator[None, None, None]:
    """Limit system BLAS threads for the duration of the block.

    Args:
        n_threads: Threads per BLAS call. None derives it from
            get_blas_thread_count(n_workers).
        n_workers: Concurrent BLAS callers inside the block.

    Example:
        >>> with blas_threads(n_workers=4):
        ...     kernels = compute_kernel(store, use_native=False, n_workers=4)
    """
    if n_threads is None:
        n_threads = get_blas_thread_count(n_workers)

    with threadpool_limits(limits=n_threads, user_api="blas"):
        yield
