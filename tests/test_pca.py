"""Tests for PCA scores from blocked kernels."""

import numpy as np
import pytest

from bigkin.decomp import center_kernel
from bigkin.errors import ConfigurationError, NumericalError
from bigkin.io.store import ArrayGenotypeStore
from bigkin.kernel import compute_kernel
from bigkin.pca import compute_pca
from bigkin.validation import compare_scores


class CountingStore(ArrayGenotypeStore):
    def __init__(self, genotypes):
        super().__init__(genotypes)
        self.n_reads = 0

    def read_block(self, rows, start, end):
        self.n_reads += 1
        return super().read_block(rows, start, end)


@pytest.mark.tier0
class TestComputePCA:
    def test_all_reference_scores_are_u_sqrt_lambda(
        self, random_genotypes, tolerance_config
    ):
        """Reference scores equal U times the square root of lambda."""
        store = ArrayGenotypeStore(random_genotypes)
        scores = compute_pca(store, block_size=64, k=5, check_memory=False)

        kernels = compute_kernel(store, block_size=64, check_memory=False)
        K_c, _ = center_kernel(kernels.reference)
        values, vectors = np.linalg.eigh(K_c)
        values, vectors = values[::-1][:5], vectors[:, ::-1][:, :5]
        expected = vectors * np.sqrt(values)

        assert scores.shape == (40, 5)
        result = compare_scores(scores, expected, tolerance_config)
        assert result.passed, result.message

    def test_full_decomposition_rank(self, random_genotypes):
        """Without k every surviving component is returned."""
        scores = compute_pca(
            ArrayGenotypeStore(random_genotypes), block_size=100, check_memory=False
        )
        # Centering removes one dimension; all others are well above 1e-3 * m
        assert scores.shape == (40, 39)

    def test_scores_are_centered(self, random_genotypes):
        """Reference scores have zero column means."""
        scores = compute_pca(
            ArrayGenotypeStore(random_genotypes), k=3, check_memory=False
        )
        np.testing.assert_allclose(scores.mean(axis=0), 0.0, atol=1e-8)

    def test_query_rows_projected_in_place(self, random_genotypes):
        """Query scores are written to the query rows."""
        G = random_genotypes.copy()
        G[37] = G[3]  # query individual identical to a reference individual
        reference = np.arange(30)
        scores = compute_pca(
            ArrayGenotypeStore(G),
            block_size=50,
            k=4,
            reference=reference,
            check_memory=False,
        )
        assert scores.shape == (40, 4)
        np.testing.assert_allclose(scores[37], scores[3], atol=1e-8)
        assert np.all(np.abs(scores[30:]).sum(axis=1) > 0)

    def test_reference_order_does_not_matter(self, random_genotypes):
        """Permuting the reference set gives the same scores."""
        store = ArrayGenotypeStore(random_genotypes)
        forward = compute_pca(
            store, k=3, reference=np.arange(25), check_memory=False
        )
        shuffled = compute_pca(
            store, k=3, reference=np.arange(25)[::-1], check_memory=False
        )
        result = compare_scores(shuffled, forward)
        assert result.passed, result.message

    def test_block_size_does_not_matter(self, random_genotypes):
        """Block size does not change the scores."""
        store = ArrayGenotypeStore(random_genotypes)
        a = compute_pca(store, block_size=7, k=3, check_memory=False)
        b = compute_pca(store, block_size=1000, k=3, check_memory=False)
        assert compare_scores(a, b).passed

    @pytest.mark.parametrize("k", [0, 30, 31])
    def test_k_validated_before_reading(self, random_genotypes, k):
        """An invalid k fails before any genotype read."""
        store = CountingStore(random_genotypes)
        with pytest.raises(ConfigurationError):
            compute_pca(store, k=k, reference=np.arange(30), check_memory=False)
        assert store.n_reads == 0

    def test_threshold_validated_before_reading(self, random_genotypes):
        """An invalid threshold fails before any genotype read."""
        store = CountingStore(random_genotypes)
        with pytest.raises(ConfigurationError):
            compute_pca(store, threshold=-1.0, check_memory=False)
        assert store.n_reads == 0

    def test_nothing_survives_threshold(self, toy_genotypes):
        """A threshold above every eigenvalue raises NumericalError."""
        with pytest.raises(NumericalError):
            compute_pca(
                ArrayGenotypeStore(toy_genotypes), threshold=1e3, check_memory=False
            )
