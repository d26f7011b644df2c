"""Progress reporting for long block loops.

Two one-way channels are offered, neither of which can steer the
computation:

- ``progress_iterator``: renders a progressbar2 bar to stdout.
- ``BlockCallback``: a plain ``(blocks_done, n_blocks)`` callable that a
  surrounding UI can inject. ``no_progress`` is the default.
"""

import sys
from collections.abc import Callable, Iterator

import progressbar

BlockCallback = Callable[[int, int], None]


def no_progress(blocks_done: int, n_blocks: int) -> None:
    """Default block callback: does nothing."""


def progress_iterator(iterable: Iterator, total: int, desc: str = "") -> Iterator:
    """Wrap iterator with progressbar2 progress display.

    Writes to stdout so the bar stays visible in notebook cells (stderr may
    be buffered). The bar is finalized in a try/finally block so that early
    breaks or exceptions from the caller don't leave terminal output
    corrupted.

    Args:
        iterable: Iterator to wrap.
        total: Total number of items.
        desc: Optional description prefix.

    Yields:
        Items from the wrapped iterator.
    """
    widgets = [
        f"{desc}: " if desc else "",
        progressbar.Counter(),
        f"/{total} ",
        progressbar.Percentage(),
        " ",
        progressbar.Bar(),
        " ",
        progressbar.Timer(),
        " ",
        progressbar.ETA(),
    ]
    bar = progressbar.ProgressBar(max_value=total, widgets=widgets, fd=sys.stdout)
    bar.start()
    try:
        for i, item in enumerate(iterable):
            yield item
            bar.update(i + 1)
    finally:
        bar.finish()
