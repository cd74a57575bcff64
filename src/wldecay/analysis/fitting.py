"""Exponential decay fits of weighted LD curves.

The model is value(d) = A * exp(-lambda * d) + c, with d in cM. Each fit is
run on the full curve and on every delete-one-chromosome replicate, and the
parameter standard errors come from the weighted jackknife.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field

import numpy as np
from scipy import optimize

from wldecay.analysis.correlation import WeightedLDCurve
from wldecay.analysis.jackknife import JackknifeEnsemble, weighted_jackknife
from wldecay.analysis.statistics import zscore
from wldecay.core.config import AnalysisConfig

# Decay rates per cM; a fit that ends on either bound is treated as failed
DECAY_BOUNDS = (1e-4, 20.0)
_GRID_SIZE = 80
_PARAMETERS = ("amplitude", "decay", "baseline")


def _exponential_model(d: np.ndarray, amplitude: float, decay: float, baseline: float) -> np.ndarray:
    """value(d) = A * exp(-lambda * d) + c"""
    return amplitude * np.exp(-decay * d) + baseline


@dataclass
class ExponentialFit:
    """One exponential fit of a weighted LD curve."""

    start: float
    end: float
    amplitude: float
    decay: float
    """Decay rate lambda, per cM."""
    baseline: float
    offset: int = 0
    """Bin offset of `start` from the inferred fit start."""
    n_bins: int = 0
    nrmsd: float = float("nan")
    """Root-mean-square deviation normalised by the fitted range."""

    amplitude_se: float = float("nan")
    decay_se: float = float("nan")
    baseline_se: float = float("nan")
    jackknife_mean_amplitude: float = float("nan")
    jackknife_mean_decay: float = float("nan")
    jackknife_mean_baseline: float = float("nan")

    replicates: dict = field(default_factory=dict)
    """Chromosome id -> (A, lambda, c) fitted with that chromosome held out."""
    replicate_sizes: dict = field(default_factory=dict)
    """Chromosome id -> marker count, for the weighted jackknife."""
    n_replicates_used: int = 0

    @property
    def params(self) -> tuple[float, float, float]:
        return (self.amplitude, self.decay, self.baseline)

    @property
    def has_jackknife(self) -> bool:
        return math.isfinite(self.amplitude_se) and math.isfinite(self.decay_se)

    def zscore(self, param: str) -> float:
        """z-score of 'amplitude', 'decay' or 'baseline' (NaN without errors)."""
        if param not in _PARAMETERS:
            raise ValueError(f"Unknown parameter '{param}'")
        return zscore(getattr(self, param), getattr(self, f"{param}_se"))

    def date(self, recombination_rate: float = 1.0) -> tuple[float, float]:
        """Admixture date in generations and its standard error."""
        scale = 100.0 / recombination_rate
        return self.decay * scale, self.decay_se * scale

    def predict(self, distances: np.ndarray) -> np.ndarray:
        return _exponential_model(np.asarray(distances, dtype=np.float64), *self.params)

    def __str__(self) -> str:
        generations, gen_se = self.date()
        lines = [
            f"Exponential fit [{self.start:.3f}, {self.end:.3f}] cM "
            f"(offset {self.offset}, {self.n_bins} bins):",
            f"  Amplitude: {self.amplitude:.4e} ± {self.amplitude_se:.4e}",
            f"  Decay:     {self.decay:.5f} ± {self.decay_se:.5f} per cM",
            f"  Baseline:  {self.baseline:.4e} ± {self.baseline_se:.4e}",
            f"  Date:      {generations:.2f} ± {gen_se:.2f} generations",
            f"  NRMSD:     {self.nrmsd:.4f}",
        ]
        if self.n_replicates_used:
            lines.append(f"  Jackknife replicates: {self.n_replicates_used}")
        return "\n".join(lines)

    def to_dict(self) -> dict:
        """Convert the fit to a dictionary."""
        generations, gen_se = self.date()
        return {
            "start": self.start,
            "end": self.end,
            "offset": self.offset,
            "n_bins": self.n_bins,
            "amplitude": self.amplitude,
            "amplitude_se": self.amplitude_se,
            "decay": self.decay,
            "decay_se": self.decay_se,
            "baseline": self.baseline,
            "baseline_se": self.baseline_se,
            "generations": generations,
            "generations_se": gen_se,
            "nrmsd": self.nrmsd,
            "n_replicates_used": self.n_replicates_used,
        }


def _nrmsd(y: np.ndarray, y_fit: np.ndarray) -> float:
    span = float(np.max(y_fit) - np.min(y_fit))
    if span <= 0:
        return float("nan")
    return float(np.sqrt(np.mean((y_fit - y) ** 2)) / span)


def _grid_start(x: np.ndarray, y: np.ndarray, sqrt_w: np.ndarray) -> tuple[float, float, float]:
    """Best (A, lambda, c) over a log grid of lambda, solving A and c by least squares."""
    best = None
    best_rss = np.inf
    for decay in np.geomspace(DECAY_BOUNDS[0] * 10, DECAY_BOUNDS[1] / 2, _GRID_SIZE):
        design = np.column_stack((np.exp(-decay * x), np.ones_like(x))) * sqrt_w[:, None]
        coef, _, _, _ = np.linalg.lstsq(design, y * sqrt_w, rcond=None)
        rss = float(np.sum((design @ coef - y * sqrt_w) ** 2))
        if rss < best_rss:
            best_rss = rss
            best = (float(coef[0]), float(decay), float(coef[1]))
    return best


def fit_curve(
    curve: WeightedLDCurve,
    start: float,
    end: float,
    min_bins: int = 3,
    offset: int = 0,
    initial: tuple[float, float, float] | None = None,
) -> ExponentialFit | None:
    """Fit A * exp(-lambda * d) + c to the eligible bins in [start, end].

    Bins are weighted by their effective count. Starting values come from a
    grid scan over lambda (or from `initial`), then scipy's bounded
    least-squares refines all three parameters.

    Args:
        curve: Weighted LD curve
        start: Fit start (cM)
        end: Fit end (cM)
        min_bins: Minimum number of eligible bins in the window
        offset: Bin offset recorded on the result
        initial: Starting (A, lambda, c), skipping the grid scan

    Returns:
        ExponentialFit, or None when the window is too small or the fit fails
    """
    if not math.isfinite(start) or start >= end:
        return None
    mask = curve.window(start, end)
    if int(mask.sum()) < min_bins:
        return None

    x = curve.distances[mask]
    y = curve.values[mask]
    w = curve.effective_counts[mask]
    sqrt_w = np.sqrt(w / w.mean())

    # work on unit scale; amplitudes are often ~1e-5
    scale = float(np.max(np.abs(y)))
    if scale == 0.0:
        scale = 1.0
    y_scaled = y / scale

    try:
        if initial is None:
            amp0, decay0, base0 = _grid_start(x, y_scaled, sqrt_w)
        else:
            amp0, decay0, base0 = initial[0] / scale, initial[1], initial[2] / scale
        decay0 = min(max(decay0, DECAY_BOUNDS[0] * 1.01), DECAY_BOUNDS[1] * 0.99)
        popt, _ = optimize.curve_fit(
            _exponential_model,
            x,
            y_scaled,
            p0=[amp0, decay0, base0],
            sigma=1.0 / sqrt_w,
            bounds=([-np.inf, DECAY_BOUNDS[0], -np.inf], [np.inf, DECAY_BOUNDS[1], np.inf]),
            x_scale="jac",
            maxfev=10000,
        )
    except (RuntimeError, ValueError, np.linalg.LinAlgError):
        return None

    amplitude, decay, baseline = (float(v) for v in popt)
    if not all(math.isfinite(v) for v in (amplitude, decay, baseline)):
        return None
    if decay <= DECAY_BOUNDS[0] * 1.001 or decay >= DECAY_BOUNDS[1] * 0.999:
        return None

    amplitude *= scale
    baseline *= scale
    y_fit = _exponential_model(x, amplitude, decay, baseline)
    return ExponentialFit(
        start=float(start),
        end=float(end),
        amplitude=amplitude,
        decay=decay,
        baseline=baseline,
        offset=offset,
        n_bins=int(mask.sum()),
        nrmsd=_nrmsd(y, y_fit),
    )


def fit_with_jackknife(
    ensemble: JackknifeEnsemble,
    start: float,
    end: float,
    offset: int = 0,
    min_bins: int = 3,
) -> ExponentialFit | None:
    """Fit the full curve and each replicate, attaching jackknife errors.

    Replicates whose fit fails are left out; with fewer than two successful
    replicates the standard errors stay NaN.
    """
    fit = fit_curve(ensemble.full, start, end, min_bins, offset)
    if fit is None or not ensemble.usable:
        return fit

    sizes = []
    for chrom, curve in ensemble.replicates.items():
        rep = fit_curve(curve, start, end, min_bins, offset, initial=fit.params)
        if rep is None:
            continue
        fit.replicates[chrom] = rep.params
        fit.replicate_sizes[chrom] = ensemble.chromosome_sizes[chrom]
        sizes.append(ensemble.chromosome_sizes[chrom])

    fit.n_replicates_used = len(fit.replicates)
    if fit.n_replicates_used < 2:
        return fit

    rep_params = np.asarray(list(fit.replicates.values()))
    for k, name in enumerate(_PARAMETERS):
        jk = weighted_jackknife(getattr(fit, name), rep_params[:, k], sizes)
        setattr(fit, f"{name}_se", jk.std_error)
        setattr(fit, f"jackknife_mean_{name}", jk.mean)
    return fit


def canonical_fit_index(
    offsets: tuple[int, ...] | list[int],
    fits: list[ExponentialFit | None],
    canonical_offset: int = 0,
) -> int | None:
    """Index of the fit to report.

    The fit at `canonical_offset` if it exists; otherwise the present fit
    whose offset is closest to it, preferring the later start on ties;
    None if every fit is absent.
    """
    present = [k for k, fit in enumerate(fits) if fit is not None]
    if not present:
        return None
    for k in present:
        if offsets[k] == canonical_offset:
            return k
    return min(present, key=lambda k: (abs(offsets[k] - canonical_offset), -offsets[k]))


@dataclass
class CurveFits:
    """Fits of one curve at several start offsets."""

    starts: list[float] = field(default_factory=list)
    offsets: list[int] = field(default_factory=list)
    fits: list = field(default_factory=list)
    """ExponentialFit or None, one per offset."""
    canonical_index: int | None = None

    @property
    def canonical(self) -> ExponentialFit | None:
        if self.canonical_index is None:
            return None
        return self.fits[self.canonical_index]

    def to_dict(self) -> dict:
        return {
            "starts": self.starts,
            "offsets": self.offsets,
            "canonical_index": self.canonical_index,
            "fits": [None if fit is None else fit.to_dict() for fit in self.fits],
        }


def fit_start_scan(
    ensemble: JackknifeEnsemble,
    start: float,
    config: AnalysisConfig,
) -> CurveFits:
    """Fit the curve at `start + offset * binsize` for every configured offset.

    An infinite start (no usable fit start) gives all-absent fits.
    """
    offsets = list(config.start_offsets)
    starts = [start + offset * config.binsize for offset in offsets]
    fits = [
        fit_with_jackknife(ensemble, s, config.maxdis, offset, config.min_fit_bins)
        if math.isfinite(s)
        else None
        for s, offset in zip(starts, offsets)
    ]
    return CurveFits(
        starts=starts,
        offsets=offsets,
        fits=fits,
        canonical_index=canonical_fit_index(offsets, fits, config.canonical_offset),
    )
