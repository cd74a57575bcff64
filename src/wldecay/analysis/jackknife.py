"""Delete-one-chromosome jackknife for weighted LD curves.

Standard errors use the weighted block jackknife of Busing et al. (1999),
with each chromosome weighted by its number of markers. With equal sizes
this reduces to the ordinary delete-one jackknife.
"""

from __future__ import annotations

from dataclasses import dataclass, field

import numpy as np

from wldecay.analysis.correlation import (
    ChromosomeAccumulators,
    DistanceBins,
    WeightedLDCurve,
    accumulate,
    compute_curve,
)
from wldecay.core.genotypes import GenotypeStore
from wldecay.core.weights import WeightVector


@dataclass(frozen=True)
class JackknifeEstimate:
    """Jackknife summary of a scalar statistic."""

    estimate: float
    """Full-data value."""
    mean: float
    """Bias-corrected jackknife mean."""
    std_error: float
    n_used: int
    """Replicates that entered the calculation (failed ones are dropped)."""


def _jackknife_weights(
    replicates: np.ndarray, sizes: np.ndarray | None
) -> tuple[np.ndarray, np.ndarray]:
    if sizes is None:
        sizes = np.ones(len(replicates))
    sizes = np.asarray(sizes, dtype=np.float64)
    if sizes.shape[0] != replicates.shape[0]:
        raise ValueError("need one size per replicate")
    return sizes, sizes.sum() / sizes


def weighted_jackknife(
    full_estimate: float,
    replicate_estimates: np.ndarray | list[float],
    sizes: np.ndarray | list[float] | None = None,
) -> JackknifeEstimate:
    """Jackknife mean and standard error of a scalar statistic.

    Args:
        full_estimate: Statistic computed on all the data
        replicate_estimates: Statistic with each block held out in turn
        sizes: Block sizes (e.g. markers per chromosome); equal weights if None

    Returns:
        JackknifeEstimate; the standard error is NaN with fewer than two
        usable replicates
    """
    reps = np.asarray(replicate_estimates, dtype=np.float64)
    size_arr = None if sizes is None else np.asarray(sizes, dtype=np.float64)
    finite = np.isfinite(reps)
    reps = reps[finite]
    if size_arr is not None:
        size_arr = size_arr[finite]
    g = len(reps)

    if g < 2 or not np.isfinite(full_estimate):
        return JackknifeEstimate(float(full_estimate), float("nan"), float("nan"), g)

    size_arr, h = _jackknife_weights(reps, size_arr)
    total = size_arr.sum()
    mean = g * full_estimate - np.sum((1.0 - size_arr / total) * reps)
    pseudo = h * full_estimate - (h - 1.0) * reps
    variance = np.mean((pseudo - mean) ** 2 / (h - 1.0))
    return JackknifeEstimate(float(full_estimate), float(mean), float(np.sqrt(variance)), g)


def jackknife_covariance(
    full_estimate: np.ndarray,
    replicate_estimates: np.ndarray,
    sizes: np.ndarray | None = None,
) -> np.ndarray:
    """Jackknife covariance matrix of a vector statistic.

    Args:
        full_estimate: Vector computed on all the data, shape (p,)
        replicate_estimates: One row per held-out block, shape (g, p)
        sizes: Block sizes; equal weights if None

    Returns:
        Covariance matrix of shape (p, p); all NaN with fewer than two blocks
    """
    full_estimate = np.asarray(full_estimate, dtype=np.float64)
    reps = np.asarray(replicate_estimates, dtype=np.float64)
    g = reps.shape[0]
    p = full_estimate.shape[0]
    if g < 2:
        return np.full((p, p), np.nan)

    sizes, h = _jackknife_weights(reps, sizes)
    total = sizes.sum()
    mean = g * full_estimate - np.sum((1.0 - sizes / total)[:, None] * reps, axis=0)
    pseudo = h[:, None] * full_estimate - (h - 1.0)[:, None] * reps
    centered = pseudo - mean
    return (centered.T / (h - 1.0)) @ centered / g


@dataclass
class JackknifeEnsemble:
    """Full-data curve plus one curve per held-out chromosome."""

    full: WeightedLDCurve
    replicates: dict = field(default_factory=dict)
    """Chromosome id -> curve computed without that chromosome."""
    chromosome_sizes: dict = field(default_factory=dict)
    """Chromosome id -> number of markers."""
    per_chromosome: ChromosomeAccumulators | None = None
    """Per-chromosome sums; together they reconstruct the full curve."""

    @property
    def usable(self) -> bool:
        """Whether enough chromosomes contribute to jackknife (at least two)."""
        return len(self.replicates) >= 2

    @property
    def chromosomes(self) -> list:
        return list(self.replicates)

    def sizes(self) -> np.ndarray:
        return np.asarray([self.chromosome_sizes[c] for c in self.replicates], dtype=np.float64)

    def replicate_values(self) -> np.ndarray:
        """Replicate bin values, shape (n_chromosomes, n_bins)."""
        if not self.replicates:
            return np.zeros((0, len(self.full)))
        return np.vstack([curve.values for curve in self.replicates.values()])

    def bin_covariance(self) -> np.ndarray:
        """Jackknife covariance of the bin values across bins."""
        return jackknife_covariance(self.full.values, self.replicate_values(), self.sizes())

    def bin_standard_errors(self) -> np.ndarray:
        """Jackknife standard error of each bin value (NaN if unusable)."""
        if not self.usable:
            return np.full(len(self.full), np.nan)
        return np.sqrt(np.clip(np.diag(self.bin_covariance()), 0.0, None))


def compute_ensemble(
    weights: WeightVector,
    geno_a: GenotypeStore,
    geno_b: GenotypeStore | None,
    bins: DistanceBins,
    mincount: int = 4,
    algorithm: str = "fast",
    num_threads: int = 1,
    recompute: bool = False,
) -> JackknifeEnsemble:
    """Compute the full curve and the delete-one-chromosome curves.

    Marker pairs never span chromosomes and markers are centred
    individually, so dropping chromosome c only removes c's own share of
    the sums. The replicates are therefore read off the per-chromosome
    accumulators; with `recompute=True` each replicate is instead
    recomputed from the remaining markers.

    Only chromosomes that contribute to the curve get a replicate. With fewer
    than two of them the ensemble is returned with `usable == False`.
    """
    acc = accumulate(weights, geno_a, geno_b, bins, mincount, algorithm, num_threads)
    full = acc.curve()
    contributing = acc.contributing()
    sizes = dict(zip(acc.chromosomes, acc.markers_per_chromosome.tolist()))

    replicates: dict = {}
    if len(contributing) >= 2:
        for chrom in contributing:
            if recompute:
                keep = geno_a.markers.without_chromosome(chrom)
                replicates[chrom] = compute_curve(
                    WeightVector(weights.values[keep], weights.kind, weights.label),
                    geno_a.select_markers(keep),
                    None if geno_b is None else geno_b.select_markers(keep),
                    bins,
                    mincount,
                    algorithm,
                    num_threads,
                )
            else:
                replicates[chrom] = acc.curve(exclude=chrom)

    return JackknifeEnsemble(
        full=full,
        replicates=replicates,
        chromosome_sizes={c: sizes[c] for c in contributing},
        per_chromosome=acc,
    )
