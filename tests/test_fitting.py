"""Tests for exponential decay fitting."""

import math

import numpy as np
import pytest

from wldecay.analysis.correlation import DistanceBins, WeightedLDCurve, build_curve
from wldecay.analysis.fitting import (
    CurveFits,
    ExponentialFit,
    canonical_fit_index,
    fit_curve,
    fit_start_scan,
    fit_with_jackknife,
)
from wldecay.analysis.jackknife import JackknifeEnsemble, weighted_jackknife
from wldecay.core.config import AnalysisConfig


def _synthetic_curve(
    amplitude: float = 0.02,
    decay: float = 0.05,
    baseline: float = 0.001,
    noise: float = 0.0,
    seed: int = 0,
    bins: DistanceBins | None = None,
) -> WeightedLDCurve:
    bins = bins or DistanceBins(0.5, 20.0)
    rng = np.random.default_rng(seed)
    values = amplitude * np.exp(-decay * bins.centers) + baseline
    values = values + rng.normal(scale=noise, size=bins.n_bins)
    count = np.full(bins.n_bins, 1000.0)
    pairs = np.full(bins.n_bins, 10.0)
    return build_curve(bins, values * count, count, pairs, mincount=4)


def _synthetic_ensemble(n_chrom: int = 5, noise: float = 2e-4) -> JackknifeEnsemble:
    full = _synthetic_curve(noise=noise / 4, seed=100)
    replicates = {c: _synthetic_curve(noise=noise, seed=c) for c in range(1, n_chrom + 1)}
    sizes = {c: 100 + 10 * c for c in replicates}
    return JackknifeEnsemble(full=full, replicates=replicates, chromosome_sizes=sizes)


class TestFitCurve:
    """Tests for single-curve fits."""

    def test_recovers_exact_parameters(self) -> None:
        """Test that a noiseless curve gives back its parameters."""
        fit = fit_curve(_synthetic_curve(), 0.5, 20.0)
        assert fit is not None
        assert fit.decay == pytest.approx(0.05, rel=1e-3)
        assert fit.amplitude == pytest.approx(0.02, rel=1e-3)
        assert fit.baseline == pytest.approx(0.001, abs=1e-5)
        assert fit.nrmsd < 1e-3

    def test_recovers_parameters_with_noise(self) -> None:
        """Test recovery of the decay rate from a noisy curve."""
        fit = fit_curve(_synthetic_curve(noise=2e-4, seed=4), 0.5, 20.0)
        assert fit is not None
        assert fit.decay == pytest.approx(0.05, rel=0.1)

    def test_fast_decay(self) -> None:
        """Test a decay rate close to the upper end of the scanned range."""
        fit = fit_curve(_synthetic_curve(decay=2.0, baseline=0.0), 0.5, 20.0)
        assert fit is not None
        assert fit.decay == pytest.approx(2.0, rel=1e-2)

    def test_window_and_offset_recorded(self) -> None:
        """Test the fit window bookkeeping."""
        fit = fit_curve(_synthetic_curve(), 1.0, 15.0, offset=2)
        assert fit.start == 1.0
        assert fit.end == 15.0
        assert fit.offset == 2
        # bin centres 1.25 .. 14.75
        assert fit.n_bins == 28

    def test_too_few_bins(self) -> None:
        """Test that a window with fewer than min_bins bins gives no fit."""
        assert fit_curve(_synthetic_curve(), 19.0, 20.0) is None
        assert fit_curve(_synthetic_curve(), 0.5, 20.0, min_bins=100) is None

    def test_infinite_start(self) -> None:
        """Test that an infinite start gives no fit."""
        assert fit_curve(_synthetic_curve(), math.inf, 20.0) is None

    def test_ineligible_bins_excluded(self) -> None:
        """Test that bins below mincount do not enter the fit."""
        bins = DistanceBins(0.5, 20.0)
        values = 0.02 * np.exp(-0.05 * bins.centers)
        count = np.full(bins.n_bins, 1000.0)
        count[:10] = 1.0
        pairs = np.full(bins.n_bins, 10.0)
        values[:10] = 5.0
        curve = build_curve(bins, values * count, count, pairs, mincount=4)
        fit = fit_curve(curve, 0.5, 20.0)
        assert fit.n_bins == bins.n_bins - 10
        assert fit.decay == pytest.approx(0.05, rel=1e-3)

    def test_flat_curve_fails(self) -> None:
        """Test that a constant curve does not produce a decay."""
        bins = DistanceBins(0.5, 20.0)
        count = np.full(bins.n_bins, 1000.0)
        curve = build_curve(
            bins, np.zeros(bins.n_bins), count, np.full(bins.n_bins, 10.0), mincount=4
        )
        fit = fit_curve(curve, 0.5, 20.0)
        assert fit is None or fit.amplitude == pytest.approx(0.0, abs=1e-12)

    def test_deterministic(self) -> None:
        """Test that repeated fits agree exactly."""
        curve = _synthetic_curve(noise=1e-4, seed=9)
        first = fit_curve(curve, 0.5, 20.0)
        second = fit_curve(curve, 0.5, 20.0)
        assert first.params == second.params


class TestExponentialFit:
    """Tests for fit result helpers."""

    def test_date(self) -> None:
        """Test decay rate to generations conversion."""
        fit = ExponentialFit(0.5, 20.0, 0.02, 0.1, 0.0, decay_se=0.01)
        assert fit.date() == pytest.approx((10.0, 1.0))
        assert fit.date(recombination_rate=2.0) == pytest.approx((5.0, 0.5))

    def test_zscore(self) -> None:
        """Test parameter z-scores."""
        fit = ExponentialFit(0.5, 20.0, 0.02, 0.1, 0.0, amplitude_se=0.005, decay_se=0.02)
        assert fit.zscore("amplitude") == pytest.approx(4.0)
        assert fit.zscore("decay") == pytest.approx(5.0)
        assert math.isnan(fit.zscore("baseline"))

    def test_zscore_unknown_parameter(self) -> None:
        """Test that unknown parameter names are rejected."""
        fit = ExponentialFit(0.5, 20.0, 0.02, 0.1, 0.0)
        with pytest.raises(ValueError):
            fit.zscore("rate")

    def test_predict(self) -> None:
        """Test model evaluation."""
        fit = ExponentialFit(0.5, 20.0, 2.0, 0.5, 1.0)
        assert fit.predict(np.array([0.0]))[0] == pytest.approx(3.0)

    def test_to_dict_and_str(self) -> None:
        """Test serialisation helpers."""
        fit = ExponentialFit(0.5, 20.0, 0.02, 0.1, 0.0, decay_se=0.01)
        d = fit.to_dict()
        assert d["decay"] == 0.1
        assert d["generations"] == pytest.approx(10.0)
        assert "Decay" in str(fit)


class TestJackknifeFit:
    """Tests for fits with jackknife errors."""

    def test_errors_from_replicate_fits(self) -> None:
        """Test that errors equal the jackknife over the replicate fits."""
        ensemble = _synthetic_ensemble()
        fit = fit_with_jackknife(ensemble, 0.5, 20.0)
        assert fit is not None
        assert fit.has_jackknife
        assert fit.n_replicates_used == 5

        decays = [fit.replicates[c][1] for c in ensemble.replicates]
        sizes = [ensemble.chromosome_sizes[c] for c in ensemble.replicates]
        jk = weighted_jackknife(fit.decay, decays, sizes)
        assert fit.decay_se == pytest.approx(jk.std_error)
        assert fit.jackknife_mean_decay == pytest.approx(jk.mean)
        assert fit.zscore("decay") > 3

    def test_unusable_ensemble(self) -> None:
        """Test that without replicates the fit has no errors."""
        ensemble = JackknifeEnsemble(full=_synthetic_curve())
        fit = fit_with_jackknife(ensemble, 0.5, 20.0)
        assert fit is not None
        assert not fit.has_jackknife
        assert math.isnan(fit.zscore("decay"))


class TestCanonicalFit:
    """Tests for choosing the reported fit among start offsets."""

    def _fit(self, offset: int) -> ExponentialFit:
        return ExponentialFit(0.5 + offset, 20.0, 0.02, 0.05, 0.0, offset=offset)

    def test_canonical_offset_present(self) -> None:
        """Test that the canonical offset wins when its fit exists."""
        fits = [self._fit(0), self._fit(1), self._fit(2)]
        assert canonical_fit_index((0, 1, 2), fits, 0) == 0
        assert canonical_fit_index((0, 1, 2), fits, 1) == 1

    def test_fallback_to_nearest(self) -> None:
        """Test that the nearest present offset is used when the canonical one failed."""
        fits = [None, None, self._fit(2)]
        assert canonical_fit_index((0, 1, 2), fits, 0) == 2

    def test_tie_prefers_later_start(self) -> None:
        """Test that equal distance prefers the later start."""
        fits = [self._fit(0), None, self._fit(2)]
        assert canonical_fit_index((0, 1, 2), fits, 1) == 2

    def test_all_absent(self) -> None:
        """Test that no fit gives no canonical index."""
        assert canonical_fit_index((0, 1, 2), [None, None, None]) is None
        assert CurveFits().canonical is None


class TestFitStartScan:
    """Tests for fits at several start offsets."""

    def test_starts_follow_offsets(self) -> None:
        """Test start distances and the canonical fit."""
        config = AnalysisConfig(binsize=0.5, maxdis=20.0)
        fits = fit_start_scan(_synthetic_ensemble(), 1.0, config)
        assert fits.offsets == [0, 1, 2]
        assert fits.starts == pytest.approx([1.0, 1.5, 2.0])
        assert fits.canonical_index == 0
        assert all(fit is not None for fit in fits.fits)
        assert fits.canonical.start == 1.0

    def test_infinite_start(self) -> None:
        """Test that an infinite start gives only absent fits."""
        config = AnalysisConfig(binsize=0.5, maxdis=20.0)
        fits = fit_start_scan(_synthetic_ensemble(), math.inf, config)
        assert fits.fits == [None, None, None]
        assert fits.canonical is None
        assert fits.to_dict()["canonical_index"] is None
