"""Logging utilities for bigkin.

loguru configuration for the console and optional JSON log files, and the
plain-text run summary written next to every CLI output.
"""

import sys
from datetime import datetime
from pathlib import Path

import psutil
from loguru import logger

import bigkin


def setup_logging(
    verbose: bool = False,
    log_file: Path | None = None,
) -> None:
    """Configure loguru for bigkin.

    Console logging goes to stdout at INFO (DEBUG if verbose). With log_file,
    DEBUG-level records are also written there, JSON-serialised.

    Args:
        verbose: If True, set console logging to DEBUG level.
        log_file: Optional path to a JSON log file.
    """
    logger.remove()

    level = "DEBUG" if verbose else "INFO"
    logger.add(
        sys.stdout,
        level=level,
        format="{time:HH:mm:ss} | <level>{level: <8}</level> | {message}",
        colorize=True,
    )

    if log_file:
        logger.add(log_file, serialize=True, level="DEBUG")


def write_run_log(
    output_config: "bigkin.core.config.OutputConfig",
    params: dict,
    timing: dict,
    command_line: str,
) -> Path:
    """Write the run summary <prefix>.log.txt.

    Args:
        output_config: Output directory and prefix.
        params: Run parameters and sizes (e.g. n_reference, n_loci, rank).
        timing: Durations in seconds, keyed by phase ("kernel", "total", ...).
        command_line: The command line used to invoke bigkin.

    Returns:
        Path to the written log file.

    Example output:
        ##
        ## bigkin Version = 0.1.0
        ## Date = 2024-01-31T10:30:00
        ## Command Line Input = bigkin pca -bfile data -k 10
        ##
        ## Parameters:
        ## n_individuals = 1940
        ## block_size = 1000
        ##
        ## Computation Time:
        ## kernel time = 1.23 seconds
        ## total time = 1.50 seconds
        ##
    """
    output_config.ensure_outdir()
    log_path = output_config.log_path

    lines = [
        "##",
        f"## bigkin Version = {bigkin.__version__}",
        f"## Date = {datetime.now().isoformat(timespec='seconds')}",
        f"## Command Line Input = {command_line}",
        "##",
        "## Parameters:",
    ]
    lines += [f"## {key} = {value}" for key, value in params.items()]
    lines += ["##", "## Computation Time:"]
    for key, value in timing.items():
        seconds = f"{value:.2f}" if isinstance(value, float) else f"{value}"
        lines.append(f"## {key} time = {seconds} seconds")
    lines.append("##")

    log_path.write_text("\n".join(lines) + "\n")
    return log_path


def log_rss_memory(phase: str, checkpoint: str) -> float:
    """Log current RSS memory with phase context bound to the record.

    Args:
        phase: Pipeline phase (e.g. "kernel", "eigendecomp", "projection").
        checkpoint: Point within the phase (e.g. "start", "end").

    Returns:
        Current RSS in GB.
    """
    rss_gb = psutil.Process().memory_info().rss / 1e9
    logger.bind(phase=phase, checkpoint=checkpoint).info(
        f"RSS memory: {rss_gb:.2f}GB (phase={phase}, checkpoint={checkpoint})"
    )
    return rss_gb
