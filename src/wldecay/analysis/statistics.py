"""Statistical helpers for curve tests and admixture bounds."""

from __future__ import annotations

import math
from dataclasses import dataclass, field

import numpy as np
from scipy import stats

from wldecay.analysis.jackknife import weighted_jackknife
from wldecay.core.genotypes import GenotypeStore


def zscore(estimate: float, std_error: float) -> float:
    """Estimate divided by its standard error (NaN if the error is unusable)."""
    if not math.isfinite(estimate) or not math.isfinite(std_error) or std_error <= 0:
        return float("nan")
    return estimate / std_error


def two_sided_p(z: float) -> float:
    """Two-sided normal p-value of a z-score (NaN stays NaN)."""
    if not math.isfinite(z):
        return float("nan")
    return float(2.0 * stats.norm.sf(abs(z)))


def critical_z(alpha: float) -> float:
    """Two-sided critical value, e.g. 1.96 for alpha = 0.05."""
    return float(stats.norm.isf(alpha / 2.0))


@dataclass(frozen=True)
class F2Estimate:
    """Drift distance between two populations with its jackknife error."""

    value: float
    std_error: float
    n_markers: int
    replicates: dict = field(default_factory=dict)

    def __str__(self) -> str:
        return f"f2 = {self.value:.6f} ± {self.std_error:.6f} ({self.n_markers} markers)"


def per_marker_f2(store_a: GenotypeStore, store_b: GenotypeStore) -> np.ndarray:
    """Unbiased f2 estimate per marker.

    f2 = (pa - pb)^2 - pa(1 - pa)/(2na - 1) - pb(1 - pb)/(2nb - 1)

    where na and nb are the called individuals. Markers without a call in
    either population are NaN.
    """
    pa = store_a.allele_frequencies()
    pb = store_b.allele_frequencies()
    na = store_a.called_counts().astype(np.float64)
    nb = store_b.called_counts().astype(np.float64)
    valid = (na > 0) & (nb > 0)
    f2 = np.full(len(pa), np.nan)
    a = pa[valid]
    b = pb[valid]
    f2[valid] = (
        (a - b) ** 2
        - a * (1 - a) / (2 * na[valid] - 1)
        - b * (1 - b) / (2 * nb[valid] - 1)
    )
    return f2


def f2_statistic(store_a: GenotypeStore, store_b: GenotypeStore) -> F2Estimate:
    """Genome-wide f2 between two populations, jackknifed over chromosomes.

    Args:
        store_a: First population
        store_b: Second population on the same marker map

    Returns:
        F2Estimate; the standard error is NaN with fewer than two chromosomes
    """
    f2 = per_marker_f2(store_a, store_b)
    valid = np.isfinite(f2)
    if not valid.any():
        return F2Estimate(float("nan"), float("nan"), 0)

    value = float(f2[valid].mean())
    markers = store_a.markers
    chrom_index = markers.chromosome_index
    used_per_chrom = np.bincount(
        chrom_index[valid], minlength=len(markers.chromosome_ids)
    )

    replicates = {}
    sizes = []
    for idx, chrom in enumerate(markers.chromosome_ids):
        if used_per_chrom[idx] == 0:
            continue
        rest = valid & (chrom_index != idx)
        replicates[chrom] = float(f2[rest].mean()) if rest.any() else float("nan")
        sizes.append(used_per_chrom[idx])

    jk = weighted_jackknife(value, list(replicates.values()), sizes)
    return F2Estimate(value, jk.std_error, int(valid.sum()), replicates)
