"""Configuration dataclasses for bigkin.

This module contains dataclasses that configure output locations and the
blocked kernel computation.
"""

import numbers
from dataclasses import dataclass, field
from pathlib import Path

from bigkin.errors import ConfigurationError

DEFAULT_BLOCK_SIZE = 1_000


@dataclass
class OutputConfig:
    """Configuration for output files and directories.

    Attributes:
        outdir: Output directory for result files. Created if it doesn't exist.
        prefix: Prefix for output filenames (e.g., "result" produces "result.log.txt").
        verbose: Enable verbose/debug output to console.
    """

    outdir: Path = field(default_factory=lambda: Path("output"))
    prefix: str = "result"
    verbose: bool = False

    @property
    def log_path(self) -> Path:
        """Path to the run summary log file.

        Returns:
            Path to {outdir}/{prefix}.log.txt
        """
        return self.outdir / f"{self.prefix}.log.txt"

    def output_path(self, suffix: str) -> Path:
        """Output file path: suffix "pcs.txt" gives {outdir}/{prefix}.pcs.txt."""
        return self.outdir / f"{self.prefix}.{suffix}"

    def ensure_outdir(self) -> None:
        """Create output directory if it doesn't exist."""
        self.outdir.mkdir(parents=True, exist_ok=True)


@dataclass
class KernelConfig:
    """Settings for blocked kernel accumulation.

    Attributes:
        block_size: Maximum number of loci read at once (for all individuals).
        use_native: Use the JAX/XLA compiled update routine (default). If
            False, use numpy with the system BLAS, which can be faster when
            numpy is linked against an optimised library such as MKL.
        n_workers: Number of worker threads accumulating blocks. Each worker
            owns a partial kernel; partials are summed at the end.
        check_memory: Check available memory before allocating kernels.
        show_progress: Render a progress bar over blocks.
    """

    block_size: int = DEFAULT_BLOCK_SIZE
    use_native: bool = True
    n_workers: int = 1
    check_memory: bool = True
    show_progress: bool = False

    def validate(self) -> None:
        """Raise ConfigurationError if any setting is invalid."""
        if isinstance(self.block_size, bool) or not isinstance(
            self.block_size, numbers.Integral
        ):
            raise ConfigurationError(
                f"block_size must be an integer, got {type(self.block_size).__name__}"
            )
        if self.block_size <= 0:
            raise ConfigurationError(
                f"block_size must be positive, got {self.block_size}"
            )
        if self.n_workers < 1:
            raise ConfigurationError(
                f"n_workers must be at least 1, got {self.n_workers}"
            )
