"""Pytest fixtures for the bigkin test suite."""

from __future__ import annotations

from pathlib import Path
from typing import TYPE_CHECKING

import numpy as np
import pytest

if TYPE_CHECKING:
    from bigkin.validation import ToleranceConfig

# =============================================================================
# Test Tier System
# =============================================================================
#
# tier0 - Fast Unit Tests (<5s each)
#   - Pure computation on in-memory genotype stores
#   - Run: pytest -m tier0
#
# tier1 - File-backed Tests
#   - PLINK filesets written with bed_reader.to_bed, CLI runs
#   - Run: pytest -m tier1
#
# tier2 - Scale Tests (memory/time intensive)
#   - Large individual counts, many blocks and workers
#   - Run: pytest -m tier2
#
# The @pytest.mark.slow marker is an alias for tier2.
# =============================================================================


TOY_GENOTYPES = np.array(
    [
        [0, 1, 2],
        [1, 1, 1],
        [2, 1, 0],
        [0, 2, 1],
    ],
    dtype=np.float64,
)


def simulate_genotypes(
    n_individuals: int, n_loci: int, seed: int = 0, missing_rate: float = 0.0
) -> np.ndarray:
    """Hardy-Weinberg genotypes with allele frequencies in [0.05, 0.5]."""
    rng = np.random.default_rng(seed)
    freqs = rng.uniform(0.05, 0.5, n_loci)
    genotypes = rng.binomial(2, freqs, size=(n_individuals, n_loci)).astype(
        np.float64
    )
    if missing_rate > 0:
        genotypes[rng.random(genotypes.shape) < missing_rate] = np.nan
    return genotypes


def write_plink_fileset(
    bfile: Path, genotypes: np.ndarray, phenotypes: np.ndarray | None = None
) -> Path:
    """Write a PLINK .bed/.bim/.fam fileset with bed_reader.to_bed."""
    from bed_reader import to_bed

    n_individuals, n_loci = genotypes.shape
    properties = {
        "fid": [f"fam{i}" for i in range(n_individuals)],
        "iid": [f"ind{i}" for i in range(n_individuals)],
        "sid": [f"snp{j}" for j in range(n_loci)],
        "chromosome": ["1"] * n_loci,
        "bp_position": list(range(1, n_loci + 1)),
    }
    if phenotypes is not None:
        properties["pheno"] = [
            "-9" if np.isnan(v) else f"{v:g}" for v in phenotypes
        ]
    Path(bfile).parent.mkdir(parents=True, exist_ok=True)
    to_bed(Path(f"{bfile}.bed"), genotypes, properties=properties)
    return bfile


@pytest.fixture
def toy_genotypes() -> np.ndarray:
    """4 individuals x 3 loci, every column polymorphic."""
    return TOY_GENOTYPES.copy()


@pytest.fixture
def random_genotypes() -> np.ndarray:
    """40 individuals x 257 loci (not a multiple of common block sizes)."""
    return simulate_genotypes(40, 257, seed=42)


@pytest.fixture
def plink_fileset(tmp_path: Path) -> Path:
    """PLINK fileset of 30 individuals x 120 loci with a quantitative phenotype.

    Returns:
        Path prefix (without .bed/.bim/.fam extension).
    """
    genotypes = simulate_genotypes(30, 120, seed=7)
    phenotypes = np.random.default_rng(7).normal(10.0, 2.0, 30)
    return write_plink_fileset(tmp_path / "data" / "study", genotypes, phenotypes)


@pytest.fixture
def output_dir(tmp_path: Path) -> Path:
    """Create temporary output directory for test results."""
    out = tmp_path / "output"
    out.mkdir()
    return out


@pytest.fixture
def tolerance_config() -> ToleranceConfig:
    """Default tolerance configuration for numerical comparisons."""
    from bigkin.validation import ToleranceConfig

    return ToleranceConfig()
