"""Reference/query partition of individuals.

The reference set builds the kernel (and, for gBLUP, supplies training
phenotypes). The query set is every other individual; it is projected
against the reference. Reference rows keep the caller's order, query rows
are in ascending index order.
"""

from __future__ import annotations

from dataclasses import dataclass

import numpy as np

from bigkin.errors import ConfigurationError


@dataclass(frozen=True)
class IndividualPartition:
    """Disjoint, exhaustive split of individuals into reference and query rows.

    Attributes:
        n_individuals: Total number of individuals (rows of the genotype matrix).
        reference: Row indices of the reference set, in caller order.
        query: Row indices of the query set, ascending. Empty when every
            individual is in the reference set.
    """

    n_individuals: int
    reference: np.ndarray
    query: np.ndarray

    @classmethod
    def from_reference(
        cls, n_individuals: int, reference: np.ndarray | list[int] | None = None
    ) -> IndividualPartition:
        """Build a partition from reference row indices (0-based).

        Args:
            n_individuals: Number of rows in the genotype store.
            reference: Reference row indices. None means all individuals.

        Returns:
            IndividualPartition whose query set is the complement.

        Raises:
            ConfigurationError: If there are no individuals, or the indices are
                empty, not integers, out of range, or contain duplicates.
        """
        if n_individuals == 0:
            raise ConfigurationError("Genotype store has no individuals")
        if reference is None:
            all_rows = np.arange(n_individuals, dtype=np.intp)
            return cls(n_individuals, all_rows, np.empty(0, dtype=np.intp))

        ref = np.asarray(reference)
        if ref.ndim != 1:
            raise ConfigurationError(
                f"Reference indices must be 1D, got shape {ref.shape}"
            )
        if ref.size == 0:
            raise ConfigurationError("Reference set is empty")
        if not np.issubdtype(ref.dtype, np.integer):
            raise ConfigurationError(
                f"Reference indices must be integers, got dtype {ref.dtype}"
            )
        if ref.min() < 0 or ref.max() >= n_individuals:
            raise ConfigurationError(
                f"Reference indices must lie in [0, {n_individuals}), "
                f"got range [{ref.min()}, {ref.max()}]"
            )
        if np.unique(ref).size != ref.size:
            raise ConfigurationError("Reference indices contain duplicates")

        ref = ref.astype(np.intp)
        in_reference = np.zeros(n_individuals, dtype=bool)
        in_reference[ref] = True
        query = np.flatnonzero(~in_reference).astype(np.intp)
        return cls(n_individuals, ref, query)

    @property
    def n_reference(self) -> int:
        return len(self.reference)

    @property
    def n_query(self) -> int:
        return len(self.query)

    @property
    def has_query(self) -> bool:
        return self.n_query > 0
