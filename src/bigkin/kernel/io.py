"""Kernel matrix I/O as tab-separated text.

File layout:
- 10 significant digits in general format (.10g)
- Tab separator between values, newline after each row
- No header row and no individual IDs

The reference kernel is written as {prefix}.kref.txt and the query kernel
(rows are query individuals, columns reference individuals) as
{prefix}.kqry.txt.
"""

from pathlib import Path

import numpy as np


def read_kernel_matrix(
    path: Path,
    n_rows: int | None = None,
    n_cols: int | None = None,
    symmetric: bool = True,
) -> np.ndarray:
    """Read a kernel matrix written by write_kernel_matrix.

    Args:
        path: Path to the kernel file.
        n_rows: Expected number of rows (optional validation).
        n_cols: Expected number of columns (optional validation).
        symmetric: Require a square symmetric matrix (reference kernels).
            Set False for query kernels.

    Returns:
        Kernel matrix as a float64 numpy array.

    Raises:
        ValueError: If the matrix is not 2D, has unexpected dimensions, or
            is required to be symmetric and is not.
    """
    K = np.loadtxt(path, dtype=np.float64, ndmin=2)

    if n_rows is not None and K.shape[0] != n_rows:
        raise ValueError(
            f"Kernel matrix has {K.shape[0]} rows, expected {n_rows}"
        )
    if n_cols is not None and K.shape[1] != n_cols:
        raise ValueError(
            f"Kernel matrix has {K.shape[1]} columns, expected {n_cols}"
        )

    if symmetric:
        if K.shape[0] != K.shape[1]:
            raise ValueError(f"Kernel matrix must be square, got shape {K.shape}")
        # .10g text loses precision, so compare relative to that
        if not np.allclose(K, K.T, rtol=1e-9):
            raise ValueError("Kernel matrix is not symmetric")

    return K


def write_kernel_matrix(K: np.ndarray, path: Path) -> None:
    """Write a kernel matrix as tab-separated .10g text.

    Args:
        K: Kernel matrix (reference or query).
        path: Output file path (typically .kref.txt or .kqry.txt).

    Example:
        >>> write_kernel_matrix(kernels.reference, Path("output/result.kref.txt"))
    """
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)

    with open(path, "w") as f:
        for i in range(K.shape[0]):
            f.write("\t".join(f"{v:.10g}" for v in K[i]) + "\n")
