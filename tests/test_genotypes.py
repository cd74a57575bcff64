"""Tests for marker maps, genotype stores, weights and run settings."""

import numpy as np
import pytest

from wldecay.core.config import AnalysisConfig, ConfigurationError
from wldecay.core.genotypes import MISSING, GenotypeStore, MarkerMap
from wldecay.core.weights import WeightKind, WeightVector


def _map() -> MarkerMap:
    return MarkerMap(
        chromosomes=np.array([1, 1, 1, 2, 2]),
        positions=np.array([0.0, 0.01, 0.02, 0.0, 0.05]),
    )


class TestMarkerMap:
    """Tests for marker map validation and chromosome bookkeeping."""

    def test_chromosome_blocks(self) -> None:
        """Test chromosome ids, indices and sizes."""
        markers = _map()
        assert markers.n_markers == 5
        assert markers.chromosome_ids == [1, 2]
        assert markers.chromosome_index.tolist() == [0, 0, 0, 1, 1]
        assert markers.markers_per_chromosome().tolist() == [3, 2]

    def test_positions_in_centimorgans(self) -> None:
        """Test conversion of Morgan positions to cM."""
        assert np.allclose(_map().positions_cm, [0.0, 1.0, 2.0, 0.0, 5.0])

    def test_without_chromosome(self) -> None:
        """Test the hold-out mask used by the jackknife."""
        assert _map().without_chromosome(1).tolist() == [False, False, False, True, True]

    def test_unsorted_positions_rejected(self) -> None:
        """Test that positions must increase within a chromosome."""
        with pytest.raises(ConfigurationError, match="sorted"):
            MarkerMap(chromosomes=np.array([1, 1]), positions=np.array([0.02, 0.01]))

    def test_positions_may_restart_between_chromosomes(self) -> None:
        """Test that each chromosome starts its own coordinate system."""
        markers = MarkerMap(chromosomes=np.array([1, 2]), positions=np.array([0.5, 0.0]))
        assert markers.n_markers == 2

    def test_split_chromosome_rejected(self) -> None:
        """Test that a chromosome's markers must be contiguous."""
        with pytest.raises(ConfigurationError, match="contiguous"):
            MarkerMap(chromosomes=np.array([1, 2, 1]), positions=np.array([0.0, 0.0, 0.1]))

    def test_length_mismatch_rejected(self) -> None:
        """Test that ids and positions must align."""
        with pytest.raises(ConfigurationError):
            MarkerMap(chromosomes=np.array([1, 1]), positions=np.array([0.0]))

    def test_same_as(self) -> None:
        """Test marker map equality."""
        assert _map().same_as(_map())
        other = MarkerMap(chromosomes=np.array([1]), positions=np.array([0.0]))
        assert not _map().same_as(other)

    def test_empty_map(self) -> None:
        """Test a map without markers."""
        markers = MarkerMap(chromosomes=np.array([]), positions=np.array([]))
        assert markers.chromosome_ids == []
        assert markers.chromosome_index.shape == (0,)


class TestGenotypeStore:
    """Tests for genotype normalisation and per-marker summaries."""

    def test_missing_codes_normalised(self) -> None:
        """Test that -1, 9 and NaN all become missing."""
        raw = np.array([[0, 1, 2, 9, -1], [2, np.nan, 1, 0, 0]], dtype=float)
        store = GenotypeStore.from_array("pop", raw, _map())
        assert store.genotypes.dtype == np.int8
        assert store.genotypes[0, 3] == MISSING
        assert store.genotypes[0, 4] == MISSING
        assert store.genotypes[1, 1] == MISSING
        assert store.missing_mask().sum() == 3

    def test_store_is_read_only(self) -> None:
        """Test that genotype calls cannot be modified in place."""
        store = GenotypeStore.from_array("pop", np.zeros((2, 5), dtype=int), _map())
        with pytest.raises(ValueError):
            store.genotypes[0, 0] = 1

    def test_invalid_calls_rejected(self) -> None:
        """Test that calls above 2 are rejected."""
        with pytest.raises(ConfigurationError, match="outside"):
            GenotypeStore.from_array("pop", np.full((2, 5), 3), _map())

    def test_fractional_calls_rejected(self) -> None:
        """Test that non-integer calls are rejected."""
        with pytest.raises(ConfigurationError, match="integer"):
            GenotypeStore.from_array("pop", np.full((2, 5), 0.5), _map())

    def test_shape_mismatch_rejected(self) -> None:
        """Test that the matrix must have one column per marker."""
        with pytest.raises(ConfigurationError, match="markers"):
            GenotypeStore.from_array("pop", np.zeros((2, 4), dtype=int), _map())

    def test_allele_frequencies_ignore_missing(self) -> None:
        """Test frequencies over called individuals only."""
        raw = np.array([[2, 0, -1, 1, -1], [0, 0, -1, 1, -1], [2, 1, -1, 1, -1]])
        store = GenotypeStore.from_array("pop", raw, _map())
        freqs = store.allele_frequencies()
        assert freqs[0] == pytest.approx(4 / 6)
        assert freqs[1] == pytest.approx(1 / 6)
        assert np.isnan(freqs[2])
        assert freqs[3] == pytest.approx(0.5)
        assert store.called_counts().tolist() == [3, 3, 0, 3, 0]

    def test_select_markers(self) -> None:
        """Test restricting a store to a subset of markers."""
        raw = np.arange(10).reshape(2, 5) % 3
        store = GenotypeStore.from_array("pop", raw, _map())
        sub = store.select_markers(_map().without_chromosome(1))
        assert sub.n_markers == 2
        assert sub.markers.chromosome_ids == [2]
        assert np.array_equal(sub.genotypes, store.genotypes[:, 3:])


class TestWeightVector:
    """Tests for per-marker weights."""

    def test_reference_weights(self) -> None:
        """Test reference minus mixed frequency."""
        w = WeightVector.from_reference(np.array([0.5, 0.2]), np.array([0.1, 0.2]))
        assert w.kind == WeightKind.REFERENCE
        assert np.allclose(w.values, [0.4, 0.0])

    def test_difference_weights(self) -> None:
        """Test difference of two reference frequencies."""
        w = WeightVector.from_difference(np.array([0.9, 0.1]), np.array([0.1, 0.3]), label="x")
        assert w.kind == WeightKind.DIFFERENCE
        assert w.label == "x"
        assert np.allclose(w.values, [0.8, -0.2])

    def test_undefined_weights_are_zero(self) -> None:
        """Test that markers without a frequency carry zero weight."""
        w = WeightVector.from_reference(np.array([np.nan, 0.5]), np.array([0.1, 0.2]))
        assert w.values[0] == 0.0

    def test_external_weights(self) -> None:
        """Test externally supplied weights."""
        w = WeightVector.external(np.array([1.0, -1.0, 0.5]))
        assert w.kind == WeightKind.EXTERNAL
        assert w.label == "external"
        assert len(w) == 3

    def test_length_check(self) -> None:
        """Test that a weight vector must match the marker count."""
        w = WeightVector.external(np.ones(3))
        w.check_length(3)
        with pytest.raises(ConfigurationError):
            w.check_length(4)

    def test_frequency_length_mismatch(self) -> None:
        """Test that frequency vectors must align."""
        with pytest.raises(ConfigurationError):
            WeightVector.from_difference(np.ones(3), np.ones(2))


class TestAnalysisConfig:
    """Tests for run settings validation."""

    def test_defaults_are_valid(self) -> None:
        """Test that the default settings validate."""
        config = AnalysisConfig().validate()
        assert config.binsize == 0.05
        assert config.maxdis == 30.0
        assert config.start_offsets == (0, 1, 2)

    @pytest.mark.parametrize(
        "changes",
        [
            {"binsize": 0.0},
            {"maxdis": -1.0},
            {"mindis": 40.0},
            {"mincount": 0},
            {"algorithm": "fancy"},
            {"num_threads": 0},
            {"canonical_offset": 5},
            {"min_fit_bins": 2},
            {"significance": 1.5},
            {"recombination_rate": 0.0},
        ],
    )
    def test_invalid_settings(self, changes: dict) -> None:
        """Test that out-of-range settings raise ConfigurationError."""
        with pytest.raises(ConfigurationError):
            AnalysisConfig().with_options(**changes)

    def test_with_options(self) -> None:
        """Test copying settings with replacements."""
        config = AnalysisConfig().with_options(binsize=0.1, mindis=1.0)
        assert config.binsize == 0.1
        assert config.mindis == 1.0
