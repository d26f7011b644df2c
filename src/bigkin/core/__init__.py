"""Core infrastructure for bigkin.

This package contains the supporting modules shared by the kernel engine:
- config: Configuration dataclasses
- jax_config: JAX configuration and verification
- memory: Memory estimation and pre-flight checks
- progress: Progress bar and block callbacks
- threading: BLAS thread control
"""

from bigkin.core.config import DEFAULT_BLOCK_SIZE, KernelConfig, OutputConfig
from bigkin.core.jax_config import (
    configure_jax,
    ensure_jax_configured,
    get_jax_info,
    verify_jax_installation,
)
from bigkin.core.memory import (
    KernelMemoryBreakdown,
    MemorySnapshot,
    check_memory_available,
    cleanup_memory,
    estimate_eigendecomp_memory,
    estimate_kernel_memory,
    get_memory_snapshot,
    log_memory_snapshot,
)

__all__ = [
    "DEFAULT_BLOCK_SIZE",
    "KernelConfig",
    "OutputConfig",
    "configure_jax",
    "ensure_jax_configured",
    "get_jax_info",
    "verify_jax_installation",
    "KernelMemoryBreakdown",
    "MemorySnapshot",
    "check_memory_available",
    "cleanup_memory",
    "estimate_eigendecomp_memory",
    "estimate_kernel_memory",
    "get_memory_snapshot",
    "log_memory_snapshot",
]
