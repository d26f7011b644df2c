"""Allele frequency estimation and genotype block standardisation.

Each locus j is standardised with the binomial moments implied by its
reference-set allele frequency p_j:

    z = (x - 2 p_j) / sqrt(2 p_j (1 - p_j))

The same frequencies scale reference and query blocks, so query
individuals land in the reference's scaled space.

Policies (fixed, and covered by tests):
- Frequencies divide by 2 * n_reference whatever the number of missing
  values. With missing data this biases p downwards; it is a known
  approximation, reported by the kernel driver rather than corrected.
- Monomorphic loci (p = 0 or p = 1) have zero standard deviation; their
  whole column is scaled to 0.0 and contributes nothing to the kernel.
- Missing entries are scaled to 0.0, the column mean in scaled space.
"""

from __future__ import annotations

import jax.numpy as jnp
import numpy as np
from jax import config, jit

# Ensure 64-bit precision
config.update("jax_enable_x64", True)


def allele_frequencies(block: np.ndarray, n_reference: int) -> np.ndarray:
    """Per-locus allele frequency of a reference genotype block.

    Args:
        block: Reference genotypes (n_reference, block_loci), NaN for missing.
        n_reference: Number of reference individuals (denominator 2 * n).

    Returns:
        Frequencies of shape (block_loci,), float64.

    Example:
        >>> allele_frequencies(np.array([[0.0, 2.0], [2.0, 2.0]]), 2)
        array([0.5, 1. ])
    """
    return np.nansum(block, axis=0, dtype=np.float64) / (2.0 * n_reference)


@jit
def scale_block(X: jnp.ndarray, freqs: jnp.ndarray) -> jnp.ndarray:
    """Standardise a genotype block with frequency-derived mean and sd.

    Args:
        X: Genotype block (n_rows, block_loci), NaN for missing.
        freqs: Reference allele frequencies (block_loci,).

    Returns:
        Scaled block with the shape of X. Missing entries and monomorphic
        columns are 0.0; the result never contains NaN or Inf.
    """
    mean = 2.0 * freqs
    sd = jnp.sqrt(2.0 * freqs * (1.0 - freqs))

    centered = jnp.where(jnp.isnan(X), 0.0, X - mean)

    # Guard the division itself so no Inf/NaN is ever formed
    safe_sd = jnp.where(sd > 0, sd, 1.0)
    return jnp.where(sd > 0, centered / safe_sd, 0.0)
