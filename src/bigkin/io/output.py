"""Text writers for PCA scores and gBLUP predictions.

Format follows the kernel matrix files: tab-separated, 10 significant
digits (.10g), newline after each row. Files are prefixed by the
individual ID when IDs are available.
"""

from pathlib import Path

import numpy as np


def _format_row(values: np.ndarray) -> str:
    return "\t".join(f"{v:.10g}" for v in values)


def write_scores(
    scores: np.ndarray, path: Path, iid: np.ndarray | None = None
) -> None:
    """Write a principal-component score matrix (n individuals x r components).

    Args:
        scores: Score matrix, one row per individual in original order.
        path: Output file path (typically .pcs.txt).
        iid: Optional individual IDs written as the first column.
    """
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)

    if iid is not None and len(iid) != scores.shape[0]:
        raise ValueError(
            f"Got {len(iid)} individual IDs for {scores.shape[0]} score rows"
        )

    with open(path, "w") as f:
        for i in range(scores.shape[0]):
            row = _format_row(scores[i])
            f.write(f"{iid[i]}\t{row}\n" if iid is not None else f"{row}\n")


def write_predictions(
    predictions: np.ndarray, path: Path, iid: np.ndarray | None = None
) -> None:
    """Write one gBLUP prediction per line, optionally prefixed by individual ID.

    Args:
        predictions: Prediction vector (query individuals).
        path: Output file path (typically .pred.txt).
        iid: Optional IDs of the query individuals, same order as predictions.
    """
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)

    if iid is not None and len(iid) != len(predictions):
        raise ValueError(
            f"Got {len(iid)} individual IDs for {len(predictions)} predictions"
        )

    with open(path, "w") as f:
        for i, value in enumerate(predictions):
            line = f"{value:.10g}"
            f.write(f"{iid[i]}\t{line}\n" if iid is not None else f"{line}\n")
