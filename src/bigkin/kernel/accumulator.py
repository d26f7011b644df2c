"""Incremental kernel accumulator.

Holds the kernel matrices while blocks of scaled genotypes are folded in:

    K_ref += X_ref @ X_ref.T        (symmetric, n_ref x n_ref)
    K_qry += X_qry @ X_ref.T        (dense, n_qry x n_ref)

Only the upper triangle of K_ref is authoritative during accumulation.
seal() mirrors it into the lower triangle, so the sealed K_ref is exactly
symmetric, and freezes both arrays. The accumulator is write-only before
sealing and read-only after.

Two update routines are available:
- native (default): JAX/XLA jit-compiled products.
- BLAS: numpy arrays updated through the system BLAS (dsyrk for the
  symmetric rank-k update, which only touches the upper triangle). Callers
  control its thread count with bigkin.core.threading.blas_threads.
"""

from __future__ import annotations

from functools import partial

import jax.numpy as jnp
import numpy as np
from jax import config, jit
from scipy.linalg.blas import dsyrk

from bigkin.errors import DataError

# 64-bit accumulation is required for kernel sums over many loci
config.update("jax_enable_x64", True)

# Rows mirrored per step when sealing; bounds the temporary to n_ref x 256
_MIRROR_ROWS = 256


@partial(jit, donate_argnums=(0,))
def _accumulate_kernel(K: jnp.ndarray, X: jnp.ndarray) -> jnp.ndarray:
    """Accumulate the symmetric contribution of a scaled reference block.

    Args:
        K: Current reference kernel accumulator (n_ref, n_ref)
        X: Scaled reference block (n_ref, block_loci)

    Returns:
        Updated kernel matrix with block contribution added. K is donated
        and must not be used after the call.
    """
    return K + jnp.matmul(X, X.T)


@partial(jit, donate_argnums=(0,))
def _accumulate_cross_kernel(
    K: jnp.ndarray, X_query: jnp.ndarray, X_ref: jnp.ndarray
) -> jnp.ndarray:
    """Accumulate the query-reference contribution of a scaled block."""
    return K + jnp.matmul(X_query, X_ref.T)


def _mirror_upper(K: np.ndarray) -> None:
    """Copy the strict upper triangle of K into its lower triangle, in place."""
    n = K.shape[0]
    for i in range(0, n, _MIRROR_ROWS):
        j = min(i + _MIRROR_ROWS, n)
        K[i:j, :i] = K[:i, i:j].T
        diag = K[i:j, i:j]
        diag[...] = np.triu(diag) + np.triu(diag, k=1).T


class KernelAccumulator:
    """Owner of the kernel matrices during blocked accumulation.

    Args:
        n_reference: Number of reference individuals.
        n_query: Number of query individuals (0 for no query kernel).
        use_native: Use the JAX routines (True) or the system BLAS (False).

    Example:
        >>> acc = KernelAccumulator(n_reference=4)
        >>> acc.add(scaled_block)
        >>> acc.seal()
        >>> K = acc.reference_kernel
    """

    def __init__(
        self, n_reference: int, n_query: int = 0, use_native: bool = True
    ) -> None:
        self.n_reference = n_reference
        self.n_query = n_query
        self.use_native = use_native
        self.n_blocks = 0
        self.n_loci = 0
        self._sealed = False

        if use_native:
            self._K = jnp.zeros((n_reference, n_reference), dtype=jnp.float64)
            self._K_query = (
                jnp.zeros((n_query, n_reference), dtype=jnp.float64)
                if n_query > 0
                else None
            )
        else:
            # Fortran order lets dsyrk update K in place
            self._K = np.zeros(
                (n_reference, n_reference), dtype=np.float64, order="F"
            )
            self._K_query = (
                np.zeros((n_query, n_reference), dtype=np.float64)
                if n_query > 0
                else None
            )

    def is_sealed(self) -> bool:
        return self._sealed

    def add(self, ref_block, query_block=None) -> None:
        """Fold one block of scaled genotypes into the kernel(s).

        Args:
            ref_block: Scaled reference genotypes (n_reference, block_loci).
            query_block: Scaled query genotypes (n_query, block_loci).
                Required if and only if the accumulator has a query kernel.

        Raises:
            RuntimeError: If the accumulator is already sealed.
            DataError: If block shapes do not match the accumulator.
        """
        if self._sealed:
            raise RuntimeError("Cannot add blocks to a sealed kernel accumulator")

        if ref_block.ndim != 2 or ref_block.shape[0] != self.n_reference:
            raise DataError(
                f"Reference block must have {self.n_reference} rows, "
                f"got shape {ref_block.shape}"
            )
        n_block_loci = ref_block.shape[1]

        if self.n_query > 0:
            if query_block is None:
                raise DataError("Query block required: accumulator has a query kernel")
            if query_block.shape != (self.n_query, n_block_loci):
                raise DataError(
                    f"Query block must have shape ({self.n_query}, {n_block_loci}), "
                    f"got {query_block.shape}"
                )
        elif query_block is not None:
            raise DataError("Query block given but accumulator has no query kernel")

        if n_block_loci > 0:
            if self.use_native:
                self._add_native(ref_block, query_block)
            else:
                self._add_blas(ref_block, query_block)

        self.n_blocks += 1
        self.n_loci += n_block_loci

    def _add_native(self, ref_block, query_block) -> None:
        X_ref = jnp.asarray(ref_block, dtype=jnp.float64)
        self._K = _accumulate_kernel(self._K, X_ref)
        if query_block is not None:
            X_query = jnp.asarray(query_block, dtype=jnp.float64)
            self._K_query = _accumulate_cross_kernel(self._K_query, X_query, X_ref)
            self._K_query.block_until_ready()
        self._K.block_until_ready()  # Sync so progress reflects actual compute

    def _add_blas(self, ref_block, query_block) -> None:
        X_ref = np.asarray(ref_block, dtype=np.float64)
        # Upper triangle only: K = 1.0 * X X^T + 1.0 * K
        self._K = dsyrk(
            1.0, X_ref, beta=1.0, c=self._K, trans=0, lower=0, overwrite_c=1
        )
        if query_block is not None:
            X_query = np.asarray(query_block, dtype=np.float64)
            self._K_query += X_query @ X_ref.T

    def merge(self, other: KernelAccumulator) -> None:
        """Add another worker's partial kernels into this accumulator.

        Raises:
            RuntimeError: If either accumulator is sealed.
            ValueError: If the accumulators have different dimensions.
        """
        if self._sealed or other._sealed:
            raise RuntimeError("Cannot merge sealed kernel accumulators")
        if (self.n_reference, self.n_query) != (other.n_reference, other.n_query):
            raise ValueError(
                f"Cannot merge accumulators of different shapes: "
                f"({self.n_reference}, {self.n_query}) vs "
                f"({other.n_reference}, {other.n_query})"
            )

        self._K = self._K + other._K
        if self._K_query is not None:
            self._K_query = self._K_query + other._K_query
        self.n_blocks += other.n_blocks
        self.n_loci += other.n_loci

    def seal(self) -> None:
        """Finish accumulation: symmetrise K_ref and make both kernels read-only.

        The BLAS routine seals its arrays in place. The native routine makes
        one host copy of each kernel, which estimate_kernel_memory accounts for.
        """
        if self._sealed:
            return

        if self.use_native:
            # Single host copy; the device buffer is freed on reassignment
            self._K = np.array(self._K, dtype=np.float64)
        _mirror_upper(self._K)
        self._K.flags.writeable = False

        if self._K_query is not None:
            if self.use_native:
                self._K_query = np.array(self._K_query, dtype=np.float64)
            self._K_query.flags.writeable = False

        self._sealed = True

    @property
    def reference_kernel(self) -> np.ndarray:
        """Sealed reference kernel (n_reference, n_reference), read-only."""
        self._require_sealed()
        return self._K

    @property
    def query_kernel(self) -> np.ndarray | None:
        """Sealed query-reference kernel (n_query, n_reference), or None."""
        self._require_sealed()
        return self._K_query

    def _require_sealed(self) -> None:
        if not self._sealed:
            raise RuntimeError("Kernel accumulator must be sealed before reading")
