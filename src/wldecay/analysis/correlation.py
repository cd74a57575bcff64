"""Weighted LD curves binned by genetic distance.

For a marker pair (i, j) only individuals called at both markers contribute.
Each marker is centred by its mean over the called individuals, and a bin
collects

    value = sum w_i w_j sum_k c_ki c_kj / sum #{k called at i and j}

over the marker pairs whose distance falls in the bin.

Given a second population B, the curve is the cross-covariance of A's
column at one marker with B's column at the other. Each population is centred
on its own means, every individual k of A is paired with every individual l
of B (k != l when B is A), and both orientations of a marker pair count:

    num_ij = sum_{k,l} (a_ki b_lj + b_li a_kj)

with the count of (k, l) pairs called at the markers they use.
"""

from __future__ import annotations

import math
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Iterator

import numba
import numpy as np

from wldecay.analysis import ld_kernels
from wldecay.core.config import ALGORITHMS, ConfigurationError
from wldecay.core.genotypes import GenotypeStore
from wldecay.core.weights import WeightVector

# Individuals per work item in the prefix-sum kernel
_INDIVIDUAL_CHUNK = 8
# Markers per work item in the direct-scan kernel
_MARKER_CHUNK = 256


@dataclass(frozen=True)
class DistanceBins:
    """Equal-width distance bins [mindis + k*binsize, mindis + (k+1)*binsize), in cM."""

    binsize: float
    maxdis: float
    mindis: float = 0.0

    def __post_init__(self) -> None:
        if self.binsize <= 0:
            raise ConfigurationError(f"binsize must be positive, got {self.binsize}")
        if self.mindis < 0 or self.maxdis <= self.mindis:
            raise ConfigurationError(
                f"need 0 <= mindis < maxdis, got mindis={self.mindis}, maxdis={self.maxdis}"
            )

    @property
    def n_bins(self) -> int:
        # guard against 30.0 / 0.05 landing a hair above 600
        return max(1, math.ceil((self.maxdis - self.mindis) / self.binsize - 1e-9))

    @property
    def edges(self) -> np.ndarray:
        return self.mindis + self.binsize * np.arange(self.n_bins + 1, dtype=np.float64)

    @property
    def centers(self) -> np.ndarray:
        edges = self.edges
        return (edges[:-1] + edges[1:]) / 2


@dataclass(frozen=True)
class WeightedLDCurve:
    """Weighted LD value per distance bin for one computation run."""

    left_edges: np.ndarray
    distances: np.ndarray
    """Bin centres (cM)."""
    values: np.ndarray
    counts: np.ndarray
    """Individual contributions summed over the bin's marker pairs."""
    pair_counts: np.ndarray
    """Marker pairs in each bin."""
    effective_counts: np.ndarray
    """Mean number of contributing individuals per marker pair."""
    eligible: np.ndarray
    """Bins usable for fitting (effective count >= mincount)."""
    label: str = ""

    def __len__(self) -> int:
        return len(self.distances)

    def window(self, start: float, end: float) -> np.ndarray:
        """Boolean mask of eligible bins whose centre lies in [start, end]."""
        return self.eligible & (self.distances >= start) & (self.distances <= end)

    def to_dict(self) -> dict:
        """Convert the curve to a dictionary of plain lists."""
        return {
            "label": self.label,
            "distance": self.distances.tolist(),
            "value": self.values.tolist(),
            "count": self.counts.tolist(),
            "pairs": self.pair_counts.tolist(),
            "eligible": self.eligible.tolist(),
        }


def build_curve(
    bins: DistanceBins,
    numerator: np.ndarray,
    count: np.ndarray,
    pairs: np.ndarray,
    mincount: int,
    label: str = "",
) -> WeightedLDCurve:
    """Normalise accumulated sums into a curve.

    Bins without contributions get value 0.0 and are marked ineligible.
    """
    has_data = count > 0
    values = np.zeros_like(numerator)
    np.divide(numerator, count, out=values, where=has_data)
    effective = np.zeros_like(count)
    np.divide(count, pairs, out=effective, where=pairs > 0)
    eligible = has_data & (effective >= mincount)
    return WeightedLDCurve(
        left_edges=bins.edges[:-1],
        distances=bins.centers,
        values=values,
        counts=count.copy(),
        pair_counts=pairs.copy(),
        effective_counts=effective,
        eligible=eligible,
        label=label,
    )


@dataclass
class ChromosomeAccumulators:
    """Per-chromosome weighted LD sums (rows follow `chromosomes`)."""

    bins: DistanceBins
    chromosomes: list
    numerator: np.ndarray
    count: np.ndarray
    pairs: np.ndarray
    mincount: int
    label: str = ""
    markers_per_chromosome: np.ndarray = field(default_factory=lambda: np.zeros(0))

    def contributing(self) -> list:
        """Chromosomes with at least one individual contribution."""
        has = self.count.sum(axis=1) > 0
        return [c for c, keep in zip(self.chromosomes, has) if keep]

    def curve(self, exclude: object | None = None) -> WeightedLDCurve:
        """Curve from all chromosomes, or with one chromosome held out."""
        keep = np.ones(len(self.chromosomes), dtype=bool)
        if exclude is not None:
            keep &= np.asarray([c != exclude for c in self.chromosomes])
        return build_curve(
            self.bins,
            self.numerator[keep].sum(axis=0),
            self.count[keep].sum(axis=0),
            self.pairs[keep].sum(axis=0),
            self.mincount,
            self.label,
        )


@contextmanager
def numba_threads(n: int) -> Iterator[None]:
    """Run the enclosed kernels with `n` numba threads, then restore."""
    previous = numba.get_num_threads()
    numba.set_num_threads(max(1, min(n, numba.config.NUMBA_NUM_THREADS)))
    try:
        yield
    finally:
        numba.set_num_threads(previous)


@dataclass(frozen=True)
class _PairLayout:
    chrom_index: np.ndarray
    n_chrom: int
    pos: np.ndarray
    ends: np.ndarray
    edges: np.ndarray
    # window starts for the prefix-sum kernels, None for the direct scan
    starts: np.ndarray | None

    @property
    def n_bins(self) -> int:
        return len(self.edges) - 1


def _centered(store: GenotypeStore) -> tuple[np.ndarray, np.ndarray]:
    """Centred genotypes (0 where missing) and the call mask, as float64."""
    geno = store.genotypes
    called = geno >= 0
    values = np.where(called, geno, 0).astype(np.float64)
    n_called = called.sum(axis=0)
    means = np.zeros(geno.shape[1])
    np.divide(values.sum(axis=0), n_called, out=means, where=n_called > 0)
    centered = np.where(called, values - means, 0.0)
    return np.ascontiguousarray(centered), np.ascontiguousarray(called.astype(np.float64))


def _check_inputs(
    weights: WeightVector, geno_a: GenotypeStore, geno_b: GenotypeStore | None
) -> None:
    weights.check_length(geno_a.n_markers)
    if geno_b is not None and not geno_b.markers.same_as(geno_a.markers):
        raise ConfigurationError(
            f"populations '{geno_a.name}' and '{geno_b.name}' use different marker maps"
        )


def _same_population(geno_a: GenotypeStore, geno_b: GenotypeStore) -> bool:
    if geno_a is geno_b:
        return True
    return geno_a.name == geno_b.name and np.array_equal(geno_a.genotypes, geno_b.genotypes)


def _within_sums(
    centered: np.ndarray, called: np.ndarray, w: np.ndarray, layout: _PairLayout
) -> tuple[np.ndarray, np.ndarray, np.ndarray]:
    """Per-chromosome (numerator, count, pairs) of one population."""
    shape = (layout.n_chrom, layout.n_bins)
    numerator = np.zeros(shape)
    count = np.zeros(shape)
    pairs = np.zeros(shape)
    if layout.starts is None:
        chunk_starts, chunk_stops = ld_kernels.marker_chunks(layout.chrom_index, _MARKER_CHUNK)
        num_rows, cnt_rows, pair_rows = ld_kernels.naive_pair_sums(
            centered, called, w, layout.pos, layout.ends, layout.edges, chunk_starts, chunk_stops
        )
        chunk_chrom = layout.chrom_index[chunk_starts]
        np.add.at(numerator, chunk_chrom, num_rows)
        np.add.at(count, chunk_chrom, cnt_rows)
        np.add.at(pairs, chunk_chrom, pair_rows)
    else:
        num_rows, cnt_rows = ld_kernels.fast_pair_sums(
            centered,
            called,
            w,
            layout.chrom_index,
            layout.n_chrom,
            layout.starts,
            _INDIVIDUAL_CHUNK,
        )
        for row in range(num_rows.shape[0]):
            numerator += num_rows[row]
            count += cnt_rows[row]
        _add_window_pairs(pairs, layout)
    return numerator, count, pairs


def _outer_sums(
    xs: np.ndarray, ys: np.ndarray, layout: _PairLayout
) -> tuple[np.ndarray, np.ndarray]:
    """Per-chromosome sums of xs[t, i] * ys[t, j] over binned pairs, and pair counts."""
    n_terms = xs.shape[0]
    pairs = np.zeros((layout.n_chrom, layout.n_bins))
    if layout.starts is None:
        chunk_starts, chunk_stops = ld_kernels.marker_chunks(layout.chrom_index, _MARKER_CHUNK)
        rows, pair_rows = ld_kernels.naive_outer_sums(
            xs, ys, layout.pos, layout.ends, layout.edges, chunk_starts, chunk_stops
        )
        chunk_chrom = layout.chrom_index[chunk_starts]
        terms = np.zeros((n_terms, layout.n_chrom, layout.n_bins))
        for t in range(n_terms):
            np.add.at(terms[t], chunk_chrom, rows[:, t])
        np.add.at(pairs, chunk_chrom, pair_rows)
    else:
        terms = ld_kernels.fast_outer_sums(
            xs, ys, layout.chrom_index, layout.n_chrom, layout.starts
        )
        _add_window_pairs(pairs, layout)
    return terms, pairs


def _add_window_pairs(pairs: np.ndarray, layout: _PairLayout) -> None:
    widths = (layout.starts[1:] - layout.starts[:-1]).astype(np.float64)
    np.add.at(pairs, layout.chrom_index, widths.T)


def _cross_sums(
    geno_a: GenotypeStore, geno_b: GenotypeStore, w: np.ndarray, layout: _PairLayout
) -> tuple[np.ndarray, np.ndarray, np.ndarray]:
    """Per-chromosome (numerator, count, pairs) of the A x B cross-covariance.

    Summed over all individual pairs (k, l) the cross products factor into
    per-marker column sums, so only the within-individual terms (k == l) of
    a population paired with itself need a scan over individuals.
    """
    centered_a, called_a = _centered(geno_a)
    centered_b, called_b = _centered(geno_b)
    sum_a = w * centered_a.sum(axis=0)
    sum_b = w * centered_b.sum(axis=0)
    n_a = called_a.sum(axis=0)
    n_b = called_b.sum(axis=0)
    xs = np.ascontiguousarray(np.vstack((sum_a, sum_b, n_a, n_b)))
    ys = np.ascontiguousarray(np.vstack((sum_b, sum_a, n_b, n_a)))
    terms, pairs = _outer_sums(xs, ys, layout)
    numerator = terms[0] + terms[1]
    count = terms[2] + terms[3]
    if _same_population(geno_a, geno_b):
        self_num, self_cnt, _ = _within_sums(centered_a, called_a, w, layout)
        numerator -= 2.0 * self_num
        count -= 2.0 * self_cnt
    return numerator, count, pairs


def accumulate(
    weights: WeightVector,
    geno_a: GenotypeStore,
    geno_b: GenotypeStore | None,
    bins: DistanceBins,
    mincount: int = 4,
    algorithm: str = "fast",
    num_threads: int = 1,
) -> ChromosomeAccumulators:
    """Accumulate weighted LD sums per chromosome and distance bin.

    Args:
        weights: Per-marker weights
        geno_a: Genotypes of the (mixed) population
        geno_b: Optional second population for the cross-population curve
        bins: Distance bins
        mincount: Minimum effective count for a bin to be eligible
        algorithm: 'fast' (prefix sums) or 'naive' (direct pair scan)
        num_threads: numba threads for the kernel

    Returns:
        ChromosomeAccumulators with one row per chromosome
    """
    if algorithm not in ALGORITHMS:
        raise ConfigurationError(f"Unknown algorithm '{algorithm}'")
    _check_inputs(weights, geno_a, geno_b)

    markers = geno_a.markers
    chromosomes = markers.chromosome_ids
    n_chrom = len(chromosomes)
    shape = (n_chrom, bins.n_bins)
    w = np.ascontiguousarray(weights.values)

    if markers.n_markers == 0:
        numerator, count, pairs = np.zeros(shape), np.zeros(shape), np.zeros(shape)
    else:
        chrom_index = markers.chromosome_index
        pos = np.ascontiguousarray(markers.positions_cm)
        ends = ld_kernels.block_ends(chrom_index)
        edges = bins.edges
        with numba_threads(num_threads):
            starts = None if algorithm == "naive" else ld_kernels.window_starts(pos, ends, edges)
            layout = _PairLayout(chrom_index, n_chrom, pos, ends, edges, starts)
            if geno_b is None:
                centered, called = _centered(geno_a)
                numerator, count, pairs = _within_sums(centered, called, w, layout)
            else:
                numerator, count, pairs = _cross_sums(geno_a, geno_b, w, layout)

    return ChromosomeAccumulators(
        bins=bins,
        chromosomes=chromosomes,
        numerator=numerator,
        count=count,
        pairs=pairs,
        mincount=mincount,
        label=weights.label,
        markers_per_chromosome=markers.markers_per_chromosome(),
    )


def compute_curve(
    weights: WeightVector,
    geno_a: GenotypeStore,
    geno_b: GenotypeStore | None,
    bins: DistanceBins,
    mincount: int = 4,
    algorithm: str = "fast",
    num_threads: int = 1,
) -> WeightedLDCurve:
    """Compute the weighted LD curve of one population or the cross curve of two.

    Both algorithms give the same curve up to floating-point rounding;
    'naive' is the reference scan and 'fast' the default.
    """
    return accumulate(
        weights, geno_a, geno_b, bins, mincount, algorithm, num_threads
    ).curve()
