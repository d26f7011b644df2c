"""JAX setup for the kernel routines.

Block scaling and the native kernel update are jit-compiled. Kernel entries
are sums over up to millions of loci, which float32 cannot hold to the
precision the eigenvalue threshold needs, so x64 must be on before the
first JAX array is created. compute_kernel calls ensure_jax_configured();
applications that want a specific platform or a compilation cache call
configure_jax() themselves at startup.
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any

import jax
import jax.numpy as jnp
from loguru import logger


def configure_jax(
    enable_x64: bool = True,
    platform: str | None = None,
    cache_dir: str | Path | None = None,
) -> None:
    """Apply bigkin's JAX settings.

    Args:
        enable_x64: Use 64-bit floats (default). Kernels accumulated in
            32-bit lose the small eigenvalues the threshold compares against.
        platform: Force a backend, e.g. "cpu". None lets JAX choose.
        cache_dir: Directory for the persistent XLA compilation cache. Block
            shapes repeat across runs with the same block size, so reusing
            compiled routines saves the first-block compile time.

    Example:
        >>> configure_jax(platform="cpu", cache_dir="~/.cache/bigkin/xla")
    """
    if enable_x64:
        jax.config.update("jax_enable_x64", True)

    if platform is not None:
        jax.config.update("jax_platform_name", platform)

    if cache_dir is not None:
        cache_path = Path(os.path.expanduser(str(cache_dir)))
        cache_path.mkdir(parents=True, exist_ok=True)
        jax.config.update("jax_compilation_cache_dir", str(cache_path))
        logger.debug(f"XLA compilation cache: {cache_path}")

    info = get_jax_info()
    logger.debug(
        f"JAX {info['version']} on {info['backend']} "
        f"({len(info['devices'])} device(s)), x64={info['x64_enabled']}"
    )


def ensure_jax_configured() -> None:
    """Enable 64-bit precision if no one has done so yet."""
    if not jax.config.jax_enable_x64:
        configure_jax(enable_x64=True)


def get_jax_info() -> dict[str, Any]:
    """Describe the active JAX runtime.

    Returns:
        Dictionary with keys version, backend, devices (list of str) and
        x64_enabled.
    """
    return {
        "version": jax.__version__,
        "backend": jax.default_backend(),
        "devices": [str(d) for d in jax.devices()],
        "x64_enabled": bool(jax.config.jax_enable_x64),
    }


def verify_jax_installation() -> bool:
    """Run one jitted rank-k kernel update and check the result.

    Returns:
        True if the update compiles and is correct.

    Raises:
        RuntimeError: If compilation or the result fails, naming the cause.
    """
    try:

        @jax.jit
        def _rank_update(k: jnp.ndarray, x: jnp.ndarray) -> jnp.ndarray:
            return k + jnp.matmul(x, x.T)

        x = jnp.array([[1.0, 2.0], [3.0, 4.0]])
        result = _rank_update(jnp.zeros((2, 2)), x)
        expected = jnp.array([[5.0, 11.0], [11.0, 25.0]])

        if result.shape != (2, 2) or not jnp.allclose(result, expected):
            raise RuntimeError(f"Incorrect rank update result: {result}")

        logger.debug("JAX verified: jitted rank-k update is correct")
        return True

    except Exception as e:
        error_msg = f"JAX verification failed: {type(e).__name__}: {e}"
        logger.error(error_msg)
        raise RuntimeError(error_msg) from e
