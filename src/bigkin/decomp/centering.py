"""Double centering of kernel matrices.

Centering a kernel in feature space is equivalent to subtracting row and
column means from the kernel itself:

    K_c[i, j] = K[i, j] - r_i - r_j + g

where r is the vector of column means of the (symmetric) reference kernel
and g its grand mean. Query kernels are centred with the *reference* column
means so that query individuals are projected into the reference space.

Both functions return new arrays; sealed kernels are read-only.
"""

import numpy as np


def center_kernel(K: np.ndarray) -> tuple[np.ndarray, np.ndarray]:
    """Double-centre a symmetric reference kernel.

    Args:
        K: Symmetric reference kernel (n_reference, n_reference).

    Returns:
        Tuple of (centred kernel, column means). The column means are needed
        to centre the matching query kernel.

    Raises:
        ValueError: If K is not square.

    Example:
        >>> K_c, means = center_kernel(kernels.reference)
        >>> np.allclose(K_c.sum(axis=0), 0.0)
        True
    """
    if K.ndim != 2 or K.shape[0] != K.shape[1]:
        raise ValueError(f"Reference kernel must be square, got shape {K.shape}")

    means = K.mean(axis=0)
    grand_mean = means.mean()
    K_c = K - means[:, np.newaxis] - means[np.newaxis, :] + grand_mean
    return K_c, means


def center_query_kernel(K_query: np.ndarray, column_means: np.ndarray) -> np.ndarray:
    """Column-centre a query kernel with the reference column means.

    Args:
        K_query: Query-reference kernel (n_query, n_reference).
        column_means: Column means of the uncentred reference kernel.

    Returns:
        Centred query kernel, a new array.

    Raises:
        ValueError: If the number of columns does not match column_means.
    """
    if K_query.ndim != 2 or K_query.shape[1] != len(column_means):
        raise ValueError(
            f"Query kernel shape {K_query.shape} does not match "
            f"{len(column_means)} reference column means"
        )
    return K_query - column_means[np.newaxis, :]
