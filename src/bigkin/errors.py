"""Exception types raised by bigkin.

Every top-level call either returns a complete result or raises one of the
errors below. The concrete classes also derive from the closest builtin
(ValueError, ArithmeticError, OSError) so callers that already catch those
keep working.

- ConfigurationError: invalid arguments, detected before any computation.
- DataError: malformed genotype blocks or phenotypes.
- NumericalError: the data/threshold combination leaves nothing to work with.
- StoreIOError: a genotype store read failed; carries the column range.
- ComputationCancelled: cooperative cancellation between blocks.
"""

from __future__ import annotations


class BigkinError(Exception):
    """Base class for all bigkin errors."""


class ConfigurationError(BigkinError, ValueError):
    """Invalid configuration, raised before any kernel work starts."""


class DataError(BigkinError, ValueError):
    """Input data is malformed (wrong block shape, bad values, missing phenotypes)."""


class NumericalError(BigkinError, ArithmeticError):
    """Numerical property of the data prevents a result (e.g. no eigenpair kept)."""


class StoreIOError(BigkinError, OSError):
    """A genotype store read failed.

    Attributes:
        start: First locus of the failed read (inclusive).
        end: Last locus of the failed read (exclusive).
    """

    def __init__(self, start: int, end: int, reason: str = "") -> None:
        self.start = start
        self.end = end
        message = f"Failed to read genotype loci [{start}, {end})"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(message)


class ComputationCancelled(BigkinError):
    """Kernel accumulation was cancelled; no partial kernel is returned."""
