"""Tests for gBLUP prediction."""

import numpy as np
import pytest

from bigkin.decomp import center_kernel, center_query_kernel
from bigkin.errors import ConfigurationError, DataError
from bigkin.gblup import compute_gblup
from bigkin.io.store import ArrayGenotypeStore
from bigkin.kernel import compute_kernel


class CountingStore(ArrayGenotypeStore):
    def __init__(self, genotypes):
        super().__init__(genotypes)
        self.n_reads = 0

    def read_block(self, rows, start, end):
        self.n_reads += 1
        return super().read_block(rows, start, end)


@pytest.fixture
def phenotypes(random_genotypes):
    """Additive phenotype on the first 20 loci plus noise."""
    rng = np.random.default_rng(11)
    G = np.nan_to_num(random_genotypes)
    return G[:, :20] @ rng.normal(size=20) + rng.normal(scale=0.5, size=len(G))


@pytest.mark.tier0
class TestComputeGBLUP:
    def test_constant_phenotype_predicts_constant(self, random_genotypes):
        """A constant phenotype is predicted unchanged."""
        y = np.full(30, 4.2)
        pred = compute_gblup(
            ArrayGenotypeStore(random_genotypes),
            y,
            reference=np.arange(30),
            block_size=64,
            check_memory=False,
        )
        assert pred.shape == (10,)
        np.testing.assert_allclose(pred, 4.2, atol=1e-10)

    def test_matches_eigen_formula(self, random_genotypes, phenotypes):
        """Predictions follow the truncated eigen formula."""
        reference = np.arange(0, 40, 2)
        store = ArrayGenotypeStore(random_genotypes)
        y = phenotypes[reference]
        pred = compute_gblup(store, y, reference, block_size=50, check_memory=False)

        kernels = compute_kernel(store, reference, block_size=50, check_memory=False)
        K_c, means = center_kernel(kernels.reference)
        K_q = center_query_kernel(kernels.query, means)
        values, vectors = np.linalg.eigh(K_c)
        keep = values > 1e-3 * kernels.n_loci
        U, lam = vectors[:, keep], values[keep]
        expected = K_q @ (U @ ((U.T @ (y - y.mean())) / lam)) + y.mean()

        np.testing.assert_allclose(pred, expected, rtol=1e-8, atol=1e-10)

    def test_full_length_phenotypes(self, random_genotypes, phenotypes):
        """Phenotypes may be given for every individual."""
        reference = np.array([3, 0, 17, 8, 25, 31, 12, 5, 22, 39, 1, 14])
        store = ArrayGenotypeStore(random_genotypes)
        full = phenotypes.copy()
        query = np.setdiff1d(np.arange(40), reference)
        full[query] = np.nan  # unused entries may be missing

        from_full = compute_gblup(store, full, reference, check_memory=False)
        from_reference = compute_gblup(
            store, phenotypes[reference], reference, check_memory=False
        )
        np.testing.assert_allclose(from_full, from_reference, rtol=1e-12)
        assert from_full.shape == (len(query),)

    def test_duplicate_of_reference_recovers_its_phenotype(
        self, random_genotypes, phenotypes
    ):
        """A genotype copy of a reference individual gets a close prediction."""
        G = random_genotypes.copy()
        G[33] = G[6]
        reference = np.arange(20)
        pred = compute_gblup(
            ArrayGenotypeStore(G), phenotypes[reference], reference, check_memory=False
        )
        # Every non-null eigenpair is kept, so the fit interpolates the reference
        np.testing.assert_allclose(pred[33 - 20], phenotypes[6], rtol=1e-8, atol=1e-8)

    def test_no_query_individuals(self, random_genotypes):
        """gBLUP without query individuals fails before reading."""
        store = CountingStore(random_genotypes)
        with pytest.raises(ConfigurationError, match="query"):
            compute_gblup(store, np.ones(40), np.arange(40), check_memory=False)
        assert store.n_reads == 0

    def test_missing_reference_phenotype(self, random_genotypes):
        """Missing reference phenotypes are rejected."""
        store = CountingStore(random_genotypes)
        y = np.ones(30)
        y[4] = np.nan
        with pytest.raises(DataError, match="missing phenotypes"):
            compute_gblup(store, y, np.arange(30), check_memory=False)
        assert store.n_reads == 0

    @pytest.mark.parametrize("length", [29, 31, 39])
    def test_wrong_phenotype_length(self, random_genotypes, length):
        """Phenotype length must match the reference or all individuals."""
        with pytest.raises(DataError, match="phenotypes"):
            compute_gblup(
                ArrayGenotypeStore(random_genotypes),
                np.ones(length),
                np.arange(30),
                check_memory=False,
            )

    def test_threaded_matches_sequential(self, random_genotypes, phenotypes):
        """Worker count does not change predictions."""
        store = ArrayGenotypeStore(random_genotypes)
        reference = np.arange(25)
        y = phenotypes[reference]
        a = compute_gblup(store, y, reference, block_size=20, check_memory=False)
        b = compute_gblup(
            store, y, reference, block_size=20, n_workers=3, check_memory=False
        )
        np.testing.assert_allclose(a, b, rtol=1e-8, atol=1e-10)
