"""Tests for the delete-one-chromosome jackknife."""

import numpy as np
import pytest

from wldecay.analysis.correlation import DistanceBins
from wldecay.analysis.jackknife import (
    compute_ensemble,
    jackknife_covariance,
    weighted_jackknife,
)
from wldecay.core.genotypes import GenotypeStore, MarkerMap
from wldecay.core.weights import WeightVector


def _panel(seed: int, n_chrom: int = 4, per_chrom: int = 40) -> tuple[GenotypeStore, WeightVector]:
    rng = np.random.default_rng(seed)
    positions = np.tile(np.arange(per_chrom) * 0.002, n_chrom)
    markers = MarkerMap(
        chromosomes=np.repeat(np.arange(1, n_chrom + 1), per_chrom), positions=positions
    )
    geno = rng.integers(0, 3, size=(30, markers.n_markers))
    geno[rng.random(geno.shape) < 0.05] = -1
    store = GenotypeStore.from_array("pop", geno, markers)
    return store, WeightVector.external(rng.normal(size=markers.n_markers))


class TestWeightedJackknife:
    """Tests for the weighted jackknife of a scalar."""

    def test_equal_sizes_reduce_to_delete_one(self) -> None:
        """Test the ordinary delete-one variance with equal block sizes."""
        reps = np.array([1.0, 1.2, 0.9, 1.1, 0.8])
        full = 1.0
        g = len(reps)
        jk = weighted_jackknife(full, reps)
        expected_var = (g - 1) / g * np.sum((reps - reps.mean()) ** 2)
        assert jk.std_error == pytest.approx(np.sqrt(expected_var))
        assert jk.mean == pytest.approx(g * full - (g - 1) * reps.mean())
        assert jk.n_used == g

    def test_identical_replicates_have_zero_error(self) -> None:
        """Test that agreeing replicates give zero error."""
        jk = weighted_jackknife(2.0, [2.0, 2.0, 2.0], [10, 20, 30])
        assert jk.std_error == pytest.approx(0.0)
        assert jk.mean == pytest.approx(2.0)

    def test_failed_replicates_dropped(self) -> None:
        """Test that NaN replicates are left out."""
        jk = weighted_jackknife(1.0, [1.0, np.nan, 1.2, 0.8], [5, 5, 5, 5])
        assert jk.n_used == 3
        assert np.isfinite(jk.std_error)

    def test_too_few_replicates(self) -> None:
        """Test that fewer than two replicates give a NaN error."""
        jk = weighted_jackknife(1.0, [1.1])
        assert np.isnan(jk.std_error)
        assert jk.n_used == 1

    def test_unequal_sizes(self) -> None:
        """Test the weighted formula against a direct computation."""
        reps = np.array([0.5, 0.7, 0.4])
        sizes = np.array([100.0, 50.0, 25.0])
        full = 0.55
        h = sizes.sum() / sizes
        mean = len(reps) * full - np.sum((1 - sizes / sizes.sum()) * reps)
        pseudo = h * full - (h - 1) * reps
        var = np.mean((pseudo - mean) ** 2 / (h - 1))
        jk = weighted_jackknife(full, reps, sizes)
        assert jk.mean == pytest.approx(mean)
        assert jk.std_error == pytest.approx(np.sqrt(var))

    def test_size_count_mismatch(self) -> None:
        """Test that sizes must match replicates."""
        with pytest.raises(ValueError):
            weighted_jackknife(1.0, [1.0, 2.0], [1.0])


class TestJackknifeCovariance:
    """Tests for the vector jackknife."""

    def test_diagonal_matches_scalar(self) -> None:
        """Test that the diagonal equals the scalar variances."""
        rng = np.random.default_rng(0)
        full = np.array([1.0, 2.0, 3.0])
        reps = full + rng.normal(scale=0.1, size=(6, 3))
        sizes = rng.integers(10, 50, size=6).astype(float)
        cov = jackknife_covariance(full, reps, sizes)
        for k in range(3):
            jk = weighted_jackknife(full[k], reps[:, k], sizes)
            assert cov[k, k] == pytest.approx(jk.std_error**2)
        np.testing.assert_allclose(cov, cov.T)

    def test_single_block(self) -> None:
        """Test that one block gives an all-NaN matrix."""
        cov = jackknife_covariance(np.zeros(2), np.zeros((1, 2)))
        assert np.all(np.isnan(cov))


class TestJackknifeEnsemble:
    """Tests for delete-one-chromosome curve ensembles."""

    def test_one_replicate_per_chromosome(self) -> None:
        """Test that every contributing chromosome gets a replicate."""
        store, weights = _panel(1)
        ensemble = compute_ensemble(weights, store, None, DistanceBins(0.5, 5.0), mincount=1)
        assert ensemble.usable
        assert ensemble.chromosomes == [1, 2, 3, 4]
        assert ensemble.sizes().tolist() == [40.0, 40.0, 40.0, 40.0]
        assert ensemble.replicate_values().shape == (4, 10)

    def test_subtraction_matches_recompute(self) -> None:
        """Test replicates read off the sums against recomputed ones."""
        store, weights = _panel(2)
        bins = DistanceBins(0.5, 5.0)
        fast = compute_ensemble(weights, store, None, bins, mincount=1)
        slow = compute_ensemble(weights, store, None, bins, mincount=1, recompute=True)
        for chrom in fast.replicates:
            np.testing.assert_allclose(
                fast.replicates[chrom].values,
                slow.replicates[chrom].values,
                rtol=1e-9,
                atol=1e-12,
            )
            np.testing.assert_allclose(
                fast.replicates[chrom].counts, slow.replicates[chrom].counts
            )

    def test_cross_population_recompute(self) -> None:
        """Test that a population paired with itself is still recognised per replicate."""
        store, weights = _panel(2)
        bins = DistanceBins(0.5, 5.0)
        fast = compute_ensemble(weights, store, store, bins, mincount=1)
        slow = compute_ensemble(weights, store, store, bins, mincount=1, recompute=True)
        for chrom in fast.replicates:
            np.testing.assert_allclose(
                fast.replicates[chrom].values,
                slow.replicates[chrom].values,
                rtol=1e-9,
                atol=1e-12,
            )
            np.testing.assert_allclose(
                fast.replicates[chrom].counts, slow.replicates[chrom].counts
            )

    def test_per_chromosome_sums_reconstruct_full(self) -> None:
        """Test that the stored per-chromosome sums give back the full curve."""
        store, weights = _panel(3)
        ensemble = compute_ensemble(weights, store, None, DistanceBins(0.5, 5.0), mincount=1)
        rebuilt = ensemble.per_chromosome.curve()
        np.testing.assert_allclose(rebuilt.values, ensemble.full.values, rtol=1e-12)

    def test_single_chromosome_is_unusable(self) -> None:
        """Test that one chromosome cannot be jackknifed."""
        store, weights = _panel(4, n_chrom=1)
        ensemble = compute_ensemble(weights, store, None, DistanceBins(0.5, 5.0), mincount=1)
        assert not ensemble.usable
        assert ensemble.replicates == {}
        assert np.all(np.isnan(ensemble.bin_standard_errors()))

    def test_non_contributing_chromosome_skipped(self) -> None:
        """Test that a chromosome with a single marker gets no replicate."""
        rng = np.random.default_rng(5)
        markers = MarkerMap(
            chromosomes=np.array([1] * 20 + [2] * 20 + [3]),
            positions=np.concatenate([np.arange(20) * 0.002, np.arange(20) * 0.002, [0.0]]),
        )
        store = GenotypeStore.from_array("pop", rng.integers(0, 3, size=(10, 41)), markers)
        ensemble = compute_ensemble(
            WeightVector.external(np.ones(41)), store, None, DistanceBins(0.5, 5.0), mincount=1
        )
        assert ensemble.chromosomes == [1, 2]

    def test_bin_standard_errors(self) -> None:
        """Test per-bin errors against the scalar jackknife."""
        store, weights = _panel(6)
        ensemble = compute_ensemble(weights, store, None, DistanceBins(0.5, 5.0), mincount=1)
        se = ensemble.bin_standard_errors()
        b = 3
        jk = weighted_jackknife(
            ensemble.full.values[b], ensemble.replicate_values()[:, b], ensemble.sizes()
        )
        assert se[b] == pytest.approx(jk.std_error)
