"""Tests for the incremental kernel accumulator."""

import tracemalloc

import numpy as np
import pytest

from bigkin.errors import DataError
from bigkin.kernel.accumulator import KernelAccumulator


def _blocks(seed=0, n_ref=6, n_qry=3, n_loci=20, block=7):
    rng = np.random.default_rng(seed)
    X_ref = rng.normal(size=(n_ref, n_loci))
    X_qry = rng.normal(size=(n_qry, n_loci))
    for start in range(0, n_loci, block):
        yield X_ref[:, start : start + block], X_qry[:, start : start + block]


def _full(seed=0, n_ref=6, n_qry=3, n_loci=20):
    rng = np.random.default_rng(seed)
    return rng.normal(size=(n_ref, n_loci)), rng.normal(size=(n_qry, n_loci))


@pytest.mark.tier0
class TestAccumulation:
    @pytest.mark.parametrize("use_native", [True, False])
    def test_matches_dense_products(self, use_native):
        """Accumulated blocks equal the dense products of the full matrices."""
        X_ref, X_qry = _full()
        acc = KernelAccumulator(6, 3, use_native=use_native)
        for ref, qry in _blocks():
            acc.add(ref, qry)
        acc.seal()

        np.testing.assert_allclose(acc.reference_kernel, X_ref @ X_ref.T, rtol=1e-12)
        np.testing.assert_allclose(acc.query_kernel, X_qry @ X_ref.T, rtol=1e-12)
        assert acc.n_blocks == 3
        assert acc.n_loci == 20

    @pytest.mark.parametrize("use_native", [True, False])
    def test_sealed_reference_kernel_exactly_symmetric(self, use_native):
        """The sealed reference kernel is bitwise symmetric."""
        acc = KernelAccumulator(6, use_native=use_native)
        for ref, _ in _blocks(seed=3):
            acc.add(ref)
        acc.seal()
        K = acc.reference_kernel
        assert np.array_equal(K, K.T)

    def test_routines_agree(self):
        """Native and BLAS routines produce the same kernels."""
        results = []
        for use_native in (True, False):
            acc = KernelAccumulator(6, 3, use_native=use_native)
            for ref, qry in _blocks(seed=1):
                acc.add(ref, qry)
            acc.seal()
            results.append((acc.reference_kernel, acc.query_kernel))
        np.testing.assert_allclose(results[0][0], results[1][0], rtol=1e-10)
        np.testing.assert_allclose(results[0][1], results[1][1], rtol=1e-10)

    def test_no_query_kernel(self):
        """Without query individuals the query kernel is None."""
        acc = KernelAccumulator(4)
        acc.add(np.ones((4, 2)))
        acc.seal()
        assert acc.query_kernel is None

    def test_empty_block_counts_but_adds_nothing(self):
        """A zero-locus block is counted but leaves the kernel unchanged."""
        acc = KernelAccumulator(3)
        acc.add(np.zeros((3, 0)))
        acc.seal()
        assert acc.n_blocks == 1
        assert acc.n_loci == 0
        np.testing.assert_array_equal(acc.reference_kernel, np.zeros((3, 3)))


@pytest.mark.tier0
class TestLifecycle:
    def test_add_after_seal_raises(self):
        """Adding to a sealed accumulator is an error."""
        acc = KernelAccumulator(2)
        acc.seal()
        with pytest.raises(RuntimeError, match="sealed"):
            acc.add(np.ones((2, 1)))

    def test_read_before_seal_raises(self):
        """Kernels cannot be read before sealing."""
        acc = KernelAccumulator(2, 1)
        with pytest.raises(RuntimeError, match="sealed"):
            _ = acc.reference_kernel
        with pytest.raises(RuntimeError, match="sealed"):
            _ = acc.query_kernel

    def test_is_sealed(self):
        """is_sealed reports the lifecycle state."""
        acc = KernelAccumulator(2)
        assert not acc.is_sealed()
        acc.seal()
        assert acc.is_sealed()

    def test_seal_is_idempotent(self):
        """Sealing twice keeps the same kernel object."""
        acc = KernelAccumulator(2)
        acc.add(np.eye(2))
        acc.seal()
        first = acc.reference_kernel
        acc.seal()
        assert acc.reference_kernel is first

    @pytest.mark.parametrize("use_native", [True, False])
    def test_sealed_kernels_are_read_only(self, use_native):
        """Sealed kernels reject writes."""
        acc = KernelAccumulator(2, 1, use_native=use_native)
        acc.add(np.eye(2), np.ones((1, 2)))
        acc.seal()
        with pytest.raises(ValueError):
            acc.reference_kernel[0, 0] = 1.0
        with pytest.raises(ValueError):
            acc.query_kernel[0, 0] = 1.0


@pytest.mark.tier0
class TestShapeChecks:
    def test_wrong_reference_rows(self):
        """Reference blocks must have one row per reference individual."""
        acc = KernelAccumulator(3)
        with pytest.raises(DataError, match="3 rows"):
            acc.add(np.ones((2, 4)))

    def test_missing_query_block(self):
        """A query block is required when there is a query kernel."""
        acc = KernelAccumulator(3, 2)
        with pytest.raises(DataError, match="Query block required"):
            acc.add(np.ones((3, 4)))

    def test_query_block_wrong_shape(self):
        """Query blocks must match the reference block width."""
        acc = KernelAccumulator(3, 2)
        with pytest.raises(DataError, match="shape"):
            acc.add(np.ones((3, 4)), np.ones((2, 5)))

    def test_unexpected_query_block(self):
        """A query block without a query kernel is rejected."""
        acc = KernelAccumulator(3)
        with pytest.raises(DataError, match="no query kernel"):
            acc.add(np.ones((3, 4)), np.ones((1, 4)))


@pytest.mark.tier0
class TestMerge:
    @pytest.mark.parametrize("use_native", [True, False])
    def test_merged_partials_equal_single_pass(self, use_native):
        """Merging partial accumulators equals one sequential pass."""
        blocks = list(_blocks(seed=5))
        single = KernelAccumulator(6, 3, use_native=use_native)
        for ref, qry in blocks:
            single.add(ref, qry)
        single.seal()

        left = KernelAccumulator(6, 3, use_native=use_native)
        right = KernelAccumulator(6, 3, use_native=use_native)
        for i, (ref, qry) in enumerate(blocks):
            (left if i % 2 == 0 else right).add(ref, qry)
        left.merge(right)
        left.seal()

        assert left.n_blocks == single.n_blocks
        assert left.n_loci == single.n_loci
        np.testing.assert_allclose(
            left.reference_kernel, single.reference_kernel, rtol=1e-12
        )
        np.testing.assert_allclose(left.query_kernel, single.query_kernel, rtol=1e-12)

    def test_merge_shape_mismatch(self):
        """Accumulators of different sizes cannot be merged."""
        with pytest.raises(ValueError, match="different shapes"):
            KernelAccumulator(3).merge(KernelAccumulator(4))

    def test_merge_sealed_raises(self):
        """Sealed accumulators cannot be merged."""
        sealed = KernelAccumulator(2)
        sealed.seal()
        with pytest.raises(RuntimeError):
            KernelAccumulator(2).merge(sealed)


@pytest.mark.tier1
class TestSealMemory:
    """seal() must not hold several kernel-sized temporaries at once."""

    N_REFERENCE = 1_500

    def _filled(self, use_native):
        X = np.random.default_rng(0).normal(size=(self.N_REFERENCE, 8))
        acc = KernelAccumulator(self.N_REFERENCE, use_native=use_native)
        acc.add(X)
        return acc, X

    def _seal_peak(self, acc):
        tracemalloc.start()
        try:
            acc.seal()
            _, peak = tracemalloc.get_traced_memory()
        finally:
            tracemalloc.stop()
        return peak

    def test_blas_seal_is_in_place(self):
        """Mirroring the BLAS kernel allocates only row-chunk temporaries."""
        acc, X = self._filled(use_native=False)
        kernel_bytes = self.N_REFERENCE**2 * 8

        peak = self._seal_peak(acc)

        assert peak < kernel_bytes / 3
        K = acc.reference_kernel
        assert np.array_equal(K, K.T)
        np.testing.assert_allclose(K, X @ X.T, rtol=1e-12, atol=1e-12)

    def test_native_seal_single_host_copy(self):
        """The native kernel is copied to host memory once, not per step."""
        acc, X = self._filled(use_native=True)
        kernel_bytes = self.N_REFERENCE**2 * 8

        peak = self._seal_peak(acc)

        assert peak < 2.5 * kernel_bytes
        K = acc.reference_kernel
        assert np.array_equal(K, K.T)
        np.testing.assert_allclose(K, X @ X.T, rtol=1e-12, atol=1e-12)
