"""bigkin: blocked genomic kernels for out-of-core PCA and gBLUP.

bigkin builds genetic relationship (kernel) matrices from genotype matrices
that do not fit in memory, reading the loci in blocks, and derives principal
components and gBLUP predictions from them.

Key features:
- Reference/query kernels in one pass over the genotypes
- JAX or system-BLAS kernel updates, optionally on worker threads
- PLINK .bed and numpy/memmap genotype stores

Example:
    >>> from bigkin import BedGenotypeStore, compute_pca
    >>> with BedGenotypeStore("data/my_study") as store:
    ...     scores = compute_pca(store, block_size=1000, k=10)
"""

import sys
from importlib.metadata import version

from loguru import logger

__version__ = version("bigkin")

# Configure loguru with sensible defaults on import
# Users can override by calling logger.remove()/add()
logger.remove()
logger.add(
    sys.stdout,
    level="INFO",
    format="{time:HH:mm:ss} | <level>{level: <8}</level> | {message}",
    colorize=True,
)

from bigkin.errors import (  # noqa: E402
    BigkinError,
    ComputationCancelled,
    ConfigurationError,
    DataError,
    NumericalError,
    StoreIOError,
)
from bigkin.gblup import compute_gblup, predict_gblup  # noqa: E402
from bigkin.io.store import (  # noqa: E402
    ArrayGenotypeStore,
    BedGenotypeStore,
    GenotypeStore,
)
from bigkin.kernel import KernelMatrices, compute_kernel  # noqa: E402
from bigkin.pca import compute_pca, project_scores  # noqa: E402

__all__ = [
    "ArrayGenotypeStore",
    "BedGenotypeStore",
    "BigkinError",
    "ComputationCancelled",
    "ConfigurationError",
    "DataError",
    "GenotypeStore",
    "KernelMatrices",
    "NumericalError",
    "StoreIOError",
    "__version__",
    "compute_gblup",
    "compute_kernel",
    "compute_pca",
    "predict_gblup",
    "project_scores",
]
