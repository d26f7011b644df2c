"""Blocked kernel computation.

The kernel of n individuals over m loci is built from a scaled genotype
matrix X read in blocks of loci, so the full matrix is never in memory.
With a reference set R and query set Q (the complement):

- K_ref = X_R @ X_R.T: symmetric reference kernel
- K_qry = X_Q @ X_R.T: query-reference kernel

Key functions:
- compute_kernel: Stream a genotype store into sealed kernel matrices
- block_intervals: Cut the loci into contiguous blocks
- allele_frequencies / scale_block: Reference-frequency standardisation
- KernelAccumulator: Incremental owner of the kernels during accumulation
- write_kernel_matrix / read_kernel_matrix: Text I/O
"""

from bigkin.kernel.accumulator import KernelAccumulator
from bigkin.kernel.compute import (
    GenotypeBlock,
    KernelMatrices,
    block_intervals,
    compute_kernel,
    iter_blocks,
    read_genotype_block,
)
from bigkin.kernel.io import read_kernel_matrix, write_kernel_matrix
from bigkin.kernel.partition import IndividualPartition
from bigkin.kernel.scaling import allele_frequencies, scale_block

__all__ = [
    "GenotypeBlock",
    "IndividualPartition",
    "KernelAccumulator",
    "KernelMatrices",
    "allele_frequencies",
    "block_intervals",
    "compute_kernel",
    "iter_blocks",
    "read_genotype_block",
    "read_kernel_matrix",
    "scale_block",
    "write_kernel_matrix",
]
