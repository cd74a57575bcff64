"""Extent of correlated LD shared between the mixed and reference populations.

Short-range LD that the mixed population inherits from its sources (rather
than from admixture) also shows up in the weighted LD curve. Fits start
beyond the distance at which unweighted LD in the mixed population stops
being correlated with LD in a reference.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass

import numpy as np

from wldecay.analysis import ld_kernels
from wldecay.analysis.correlation import DistanceBins, numba_threads
from wldecay.analysis.jackknife import weighted_jackknife
from wldecay.analysis.statistics import critical_z
from wldecay.core.config import AnalysisConfig, ConfigurationError
from wldecay.core.genotypes import GenotypeStore

logger = logging.getLogger(__name__)

_MARKER_CHUNK = 256


@dataclass(frozen=True)
class LDCorrelationProfile:
    """Correlation of per-pair LD between two populations, per distance bin."""

    reference: str
    left_edges: np.ndarray
    correlation: np.ndarray
    std_error: np.ndarray
    zscores: np.ndarray
    n_pairs: np.ndarray
    n_chromosomes: int

    @property
    def usable(self) -> bool:
        return self.n_chromosomes >= 2


@dataclass(frozen=True)
class FitStart:
    """Fit start distance chosen for one reference (cM).

    `distance` is infinite when the reference cannot be used because
    correlated LD extends past the ceiling.
    """

    reference: str
    distance: float
    reason: str
    """One of 'override', 'inferred', 'floor', 'external', 'no_jackknife', 'long_range_ld'."""
    warning: str | None = None

    @property
    def eligible(self) -> bool:
        return math.isfinite(self.distance)


def _bin_correlation(moments: np.ndarray) -> np.ndarray:
    """Pearson correlation per bin from summed moments (n, za, zb, za2, zb2, zab)."""
    n = moments[..., 0]
    out = np.full(n.shape, np.nan)
    ok = n >= 2
    with np.errstate(invalid="ignore", divide="ignore"):
        mean_a = moments[..., 1] / n
        mean_b = moments[..., 2] / n
        var_a = moments[..., 3] / n - mean_a**2
        var_b = moments[..., 4] / n - mean_b**2
        cov = moments[..., 5] / n - mean_a * mean_b
        denom = np.sqrt(var_a * var_b)
        ok &= denom > 0
        out[ok] = cov[ok] / denom[ok]
    return out


def _profile_zscores(correlation: np.ndarray, std_error: np.ndarray) -> np.ndarray:
    """Correlation over its standard error; a positive correlation with zero error is +inf."""
    zscores = np.full(correlation.shape, np.nan)
    ok = np.isfinite(correlation) & np.isfinite(std_error)
    positive = ok & (std_error > 0)
    zscores[positive] = correlation[positive] / std_error[positive]
    zscores[ok & (std_error == 0) & (correlation > 0)] = np.inf
    return zscores


def ld_correlation_profile(
    mixed: GenotypeStore,
    reference: GenotypeStore,
    config: AnalysisConfig,
) -> LDCorrelationProfile:
    """Correlate per-pair LD in the mixed population with LD in a reference.

    Marker pairs up to `ld_corr_ceiling + 2 * ld_corr_binsize` apart are
    binned by distance. Per bin, the Pearson correlation of the two
    populations' pair covariances is computed, with delete-one-chromosome
    jackknife errors.
    """
    if not reference.markers.same_as(mixed.markers):
        raise ConfigurationError(
            f"populations '{mixed.name}' and '{reference.name}' use different marker maps"
        )
    bins = DistanceBins(
        config.ld_corr_binsize, config.ld_corr_ceiling + 2 * config.ld_corr_binsize
    )
    markers = mixed.markers
    chrom_index = markers.chromosome_index
    n_chrom = len(markers.chromosome_ids)
    moments = np.zeros((n_chrom, bins.n_bins, 6))

    if markers.n_markers > 0:
        chunk_starts, chunk_stops = ld_kernels.marker_chunks(chrom_index, _MARKER_CHUNK)
        with numba_threads(config.num_threads):
            per_chunk = ld_kernels.ld_pair_moments(
                np.ascontiguousarray(mixed.genotypes),
                np.ascontiguousarray(reference.genotypes),
                np.ascontiguousarray(markers.positions_cm),
                ld_kernels.block_ends(chrom_index),
                bins.edges,
                chunk_starts,
                chunk_stops,
            )
        np.add.at(moments, chrom_index[chunk_starts], per_chunk)

    correlation = _bin_correlation(moments.sum(axis=0))
    contributing = np.flatnonzero(moments[:, :, 0].sum(axis=1) > 0)
    sizes = markers.markers_per_chromosome()[contributing]

    std_error = np.full(bins.n_bins, np.nan)
    if len(contributing) >= 2:
        total = moments.sum(axis=0)
        replicates = np.vstack(
            [_bin_correlation(total - moments[c]) for c in contributing]
        )
        for b in range(bins.n_bins):
            std_error[b] = weighted_jackknife(correlation[b], replicates[:, b], sizes).std_error

    zscores = _profile_zscores(correlation, std_error)
    return LDCorrelationProfile(
        reference=reference.name,
        left_edges=bins.edges[:-1],
        correlation=correlation,
        std_error=std_error,
        zscores=zscores,
        n_pairs=moments[:, :, 0].sum(axis=0),
        n_chromosomes=len(contributing),
    )


def correlated_ld_stop(profile: LDCorrelationProfile, significance: float) -> float:
    """Distance at which LD correlation fails significance for the second bin in a row.

    Returns inf if correlated LD never stops within the scanned range.
    """
    threshold = critical_z(significance)
    failures = 0
    for left, z, n_pairs in zip(profile.left_edges, profile.zscores, profile.n_pairs):
        if n_pairs == 0:
            continue
        if not math.isnan(z) and z >= threshold:
            failures = 0
            continue
        failures += 1
        if failures == 2:
            return float(left)
    return float("inf")


def find_fit_start(
    profile: LDCorrelationProfile | None,
    config: AnalysisConfig,
    reference: str = "",
) -> FitStart:
    """Choose the fit start for one reference.

    An explicit `config.mindis` always wins. Otherwise the start is
    max(floor, correlated-LD stop); a stop beyond the ceiling makes the
    reference ineligible (infinite start).
    """
    name = profile.reference if profile is not None else reference
    if config.mindis is not None:
        message = (
            f"{name}: using configured start {config.mindis} cM instead of "
            "the inferred extent of correlated LD"
        )
        logger.warning(message)
        return FitStart(name, float(config.mindis), "override", message)

    if profile is None or not profile.usable:
        message = (
            f"{name}: need data on >= 2 chromosomes to test LD correlation; "
            f"starting fits at {config.ld_corr_floor} cM"
        )
        logger.warning(message)
        return FitStart(name, config.ld_corr_floor, "no_jackknife", message)

    stop = correlated_ld_stop(profile, config.significance)
    if stop > config.ld_corr_ceiling:
        message = (
            f"{name}: correlated LD extends beyond {config.ld_corr_ceiling} cM; "
            "reference cannot be used without an explicit start distance"
        )
        logger.warning(message)
        return FitStart(name, float("inf"), "long_range_ld", message)

    if stop <= config.ld_corr_floor:
        logger.info("%s: correlated LD stops at %.2f cM, using floor", name, stop)
        return FitStart(name, config.ld_corr_floor, "floor")
    logger.info("%s: correlated LD stops at %.2f cM", name, stop)
    return FitStart(name, stop, "inferred")


def find_fit_starts(
    mixed: GenotypeStore,
    references: list[GenotypeStore],
    config: AnalysisConfig,
    external_weights: bool = False,
) -> dict[str, FitStart]:
    """Fit start per reference (keyed by name), or a single 'external' entry.

    Externally supplied weights have no reference genotypes to scan, so the
    start is `mindis` if configured, else the floor with a warning.
    """
    if external_weights:
        if config.mindis is not None:
            return {"external": FitStart("external", float(config.mindis), "override")}
        message = (
            "weights supplied externally and no start distance given; "
            f"starting fits at {config.ld_corr_floor} cM"
        )
        logger.warning(message)
        return {"external": FitStart("external", config.ld_corr_floor, "external", message)}

    starts = {}
    for ref in references:
        profile = None if config.mindis is not None else ld_correlation_profile(mixed, ref, config)
        starts[ref.name] = find_fit_start(profile, config, ref.name)
    return starts
