"""Random-access genotype stores.

The kernel engine never loads a full genotype matrix. It reads rectangular
blocks (a subset of individuals, a contiguous range of loci) through the
``GenotypeStore`` protocol:

    read_block(rows, start, end) -> float array (len(rows), end - start)

Values are 0.0, 1.0, 2.0 (allele dosage) or NaN for missing.

Two stores are provided:
- ArrayGenotypeStore: wraps an in-memory array or an ``np.memmap``.
- BedGenotypeStore: PLINK .bed/.bim/.fam filesets through bed-reader,
  using windowed reads so only the requested loci are decoded.
"""

from __future__ import annotations

import threading
from pathlib import Path
from typing import Protocol, runtime_checkable

import numpy as np
from bed_reader import open_bed
from loguru import logger


@runtime_checkable
class GenotypeStore(Protocol):
    """Read-only, random-access view of an (individuals x loci) genotype matrix."""

    @property
    def n_individuals(self) -> int: ...

    @property
    def n_loci(self) -> int: ...

    def read_block(self, rows: np.ndarray, start: int, end: int) -> np.ndarray:
        """Return genotypes for ``rows`` and loci ``[start, end)``, NaN for missing."""
        ...


class ArrayGenotypeStore:
    """Genotype store over a numpy array or memory-mapped file.

    Integer matrices may encode missing values with a sentinel (e.g. -9 or 3);
    pass it as ``missing_value`` and it is converted to NaN on read. Float
    matrices use NaN directly.

    Args:
        genotypes: Matrix of shape (n_individuals, n_loci).
        missing_value: Optional sentinel marking missing genotypes.

    Example:
        >>> G = np.load("genotypes.npy", mmap_mode="r")
        >>> store = ArrayGenotypeStore(G, missing_value=-9)
        >>> store.read_block(np.arange(10), 0, 100).shape
        (10, 100)
    """

    def __init__(
        self, genotypes: np.ndarray, missing_value: int | float | None = None
    ) -> None:
        if genotypes.ndim != 2:
            raise ValueError(
                f"Genotype matrix must be 2D (individuals x loci), "
                f"got {genotypes.ndim}D"
            )
        self._genotypes = genotypes
        self._missing_value = missing_value

    @property
    def n_individuals(self) -> int:
        return self._genotypes.shape[0]

    @property
    def n_loci(self) -> int:
        return self._genotypes.shape[1]

    def read_block(self, rows: np.ndarray, start: int, end: int) -> np.ndarray:
        block = np.asarray(self._genotypes[rows, start:end], dtype=np.float64)
        if self._missing_value is not None:
            block[block == self._missing_value] = np.nan
        return block


class BedGenotypeStore:
    """Genotype store over a PLINK binary fileset.

    The .bed file is opened once and kept open until ``close()`` (or the end
    of a ``with`` block). Reads are serialised with a lock so that several
    accumulation workers can share one store.

    Args:
        bfile: Path prefix for PLINK files (without .bed/.bim/.fam extension).
            For example, if files are data.bed, data.bim, data.fam, pass Path("data").

    Raises:
        FileNotFoundError: If the .bed file does not exist.

    Example:
        >>> with BedGenotypeStore(Path("data/study")) as store:
        ...     print(store.n_individuals, store.n_loci)
        1940 12226
    """

    def __init__(self, bfile: Path) -> None:
        bed_path = Path(f"{bfile}.bed")
        if not bed_path.exists():
            raise FileNotFoundError(f"PLINK .bed file not found: {bed_path}")

        self.bfile = Path(bfile)
        self._bed = open_bed(bed_path)
        self._lock = threading.Lock()
        logger.debug(
            f"Opened {bed_path}: {self._bed.iid_count} individuals, "
            f"{self._bed.sid_count} loci"
        )

    @property
    def n_individuals(self) -> int:
        return self._bed.iid_count

    @property
    def n_loci(self) -> int:
        return self._bed.sid_count

    @property
    def iid(self) -> np.ndarray:
        """Individual IDs (IID column of the .fam file)."""
        return self._bed.iid

    @property
    def sid(self) -> np.ndarray:
        """Locus IDs (second column of the .bim file)."""
        return self._bed.sid

    def read_block(self, rows: np.ndarray, start: int, end: int) -> np.ndarray:
        # Windowed read: only decodes bytes for loci [start:end]
        with self._lock:
            return self._bed.read(index=np.s_[rows, start:end], dtype=np.float64)

    def close(self) -> None:
        self._bed.__exit__(None, None, None)

    def __enter__(self) -> BedGenotypeStore:
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()


def read_fam_phenotypes(bfile: Path, zero_missing: bool = False) -> np.ndarray:
    """Read the phenotype column (6th) of a PLINK .fam file.

    PLINK reads "0" as missing only for case/control phenotypes, where cases
    and controls are coded 2 and 1. For quantitative traits 0 is a value, so
    it is kept unless zero_missing is set.

    Args:
        bfile: Path prefix for PLINK files.
        zero_missing: Also treat "0" as missing (case/control coding).

    Returns:
        Float array with one value per individual; "-9" and "NA" become NaN.

    Raises:
        FileNotFoundError: If the .fam file does not exist.
    """
    fam_path = Path(f"{bfile}.fam")
    if not fam_path.exists():
        raise FileNotFoundError(f"PLINK .fam file not found: {fam_path}")

    missing_codes = ["-9", "NA", "0"] if zero_missing else ["-9", "NA"]
    fam_data = np.atleast_1d(np.loadtxt(fam_path, dtype=str, usecols=(5,)))
    missing_mask = np.isin(fam_data, missing_codes)
    fam_data[missing_mask] = "0"  # placeholder for safe float conversion
    phenotypes = fam_data.astype(np.float64)
    phenotypes[missing_mask] = np.nan
    return phenotypes
