"""I/O modules for bigkin.

- store: random-access genotype stores (numpy/memmap, PLINK .bed)
- output: text writers for PCA scores and gBLUP predictions
"""

from bigkin.io.output import write_predictions, write_scores
from bigkin.io.store import (
    ArrayGenotypeStore,
    BedGenotypeStore,
    GenotypeStore,
    read_fam_phenotypes,
)

__all__ = [
    "ArrayGenotypeStore",
    "BedGenotypeStore",
    "GenotypeStore",
    "read_fam_phenotypes",
    "write_predictions",
    "write_scores",
]
