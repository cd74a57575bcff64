"""Synthetic genotype panels with a known admixture history."""

from __future__ import annotations

from dataclasses import dataclass, field

import numpy as np

from wldecay.core.genotypes import MISSING, GenotypeStore, MarkerMap


@dataclass
class SimulatedData:
    mixed: GenotypeStore
    references: list = field(default_factory=list)
    markers: MarkerMap | None = None
    generations: float = 0.0
    mixture_fraction: float = 0.0

    @property
    def expected_decay(self) -> float:
        """Decay rate of the admixture LD curve, per cM."""
        return self.generations / 100.0


def _marker_map(n_chromosomes: int, chromosome_length_cm: float, spacing_cm: float) -> MarkerMap:
    per_chrom = np.arange(0.0, chromosome_length_cm, spacing_cm)
    chrom = np.repeat(np.arange(1, n_chromosomes + 1), len(per_chrom))
    pos = np.tile(per_chrom, n_chromosomes) / 100.0
    return MarkerMap(chromosomes=chrom, positions=pos)


def _drifted(rng: np.random.Generator, p_anc: np.ndarray, fst: float) -> np.ndarray:
    """Balding-Nichols draw of population frequencies around p_anc."""
    eff = (1 - fst) / fst
    return np.clip(rng.beta(p_anc * eff, (1 - p_anc) * eff), 1e-3, 1 - 1e-3)


def _ancestral_freqs(rng: np.random.Generator, n_markers: int) -> np.ndarray:
    return rng.uniform(0.05, 0.95, size=n_markers)


def _diploid(rng: np.random.Generator, freqs: np.ndarray, n: int) -> np.ndarray:
    return rng.binomial(2, freqs[None, :], size=(n, len(freqs))).astype(np.int8)


def _mask_missing(rng: np.random.Generator, geno: np.ndarray, rate: float) -> np.ndarray:
    if rate <= 0:
        return geno
    geno = geno.copy()
    geno[rng.random(geno.shape) < rate] = MISSING
    return geno


def _ancestry_tracts(
    rng: np.random.Generator,
    positions_morgan: np.ndarray,
    length_morgan: float,
    generations: float,
    mixture_fraction: float,
) -> np.ndarray:
    """Source (0 or 1) of every marker along one haplotype of one chromosome.

    Breakpoints fall at Poisson(generations per Morgan) positions; each tract
    is drawn from source 0 with probability `mixture_fraction`.
    """
    n_breaks = rng.poisson(generations * length_morgan)
    breaks = np.sort(rng.uniform(0.0, length_morgan, size=n_breaks))
    tract_sources = (rng.random(n_breaks + 1) >= mixture_fraction).astype(np.int8)
    return tract_sources[np.searchsorted(breaks, positions_morgan, side="right")]


def simulate_admixture(
    n_mixed: int = 200,
    n_ref: int = 50,
    n_chromosomes: int = 2,
    chromosome_length_cm: float = 100.0,
    marker_spacing_cm: float = 0.2,
    generations: float = 5.0,
    mixture_fraction: float = 0.3,
    fst: float = 0.2,
    n_references: int = 2,
    missing_rate: float = 0.0,
    seed: int | None = None,
) -> SimulatedData:
    """Simulate an admixed population and reference panels.

    Two source populations are drifted from a common ancestor. Each admixed
    haplotype is a mosaic of the sources whose tracts end at breakpoints
    accumulated over `generations`, so admixture LD decays as
    exp(-generations / 100 * d) with d in cM. Markers are unlinked within a
    source, so there is no background LD.

    The first two references are panels from the two sources. Further
    references (n_references > 2) are drifted proxies of the sources,
    alternating between them.

    Args:
        n_mixed: Admixed individuals
        n_ref: Individuals per reference panel
        n_chromosomes: Number of chromosomes
        chromosome_length_cm: Length of each chromosome
        marker_spacing_cm: Distance between adjacent markers
        generations: Generations since admixture
        mixture_fraction: Ancestry share of the first source
        fst: Drift of each source from the ancestor
        n_references: Number of reference panels to return
        missing_rate: Fraction of calls set to missing
        seed: Random seed

    Returns:
        SimulatedData
    """
    rng = np.random.default_rng(seed)
    markers = _marker_map(n_chromosomes, chromosome_length_cm, marker_spacing_cm)
    p_anc = _ancestral_freqs(rng, markers.n_markers)
    sources = np.vstack([_drifted(rng, p_anc, fst), _drifted(rng, p_anc, fst)])

    length_morgan = chromosome_length_cm / 100.0
    chrom_index = markers.chromosome_index
    hap = np.empty((2 * n_mixed, markers.n_markers), dtype=np.int8)
    for c in range(n_chromosomes):
        cols = np.flatnonzero(chrom_index == c)
        pos = markers.positions[cols]
        for h in range(2 * n_mixed):
            src = _ancestry_tracts(rng, pos, length_morgan, generations, mixture_fraction)
            freqs = sources[src, cols]
            hap[h, cols] = (rng.random(len(cols)) < freqs).astype(np.int8)
    mixed_geno = hap[0::2] + hap[1::2]

    references = []
    for k in range(n_references):
        freqs = sources[k % 2] if k < 2 else _drifted(rng, sources[k % 2], fst / 4)
        name = f"source{k + 1}" if k < 2 else f"proxy{k - 1}"
        geno = _mask_missing(rng, _diploid(rng, freqs, n_ref), missing_rate)
        references.append(GenotypeStore.from_array(name, geno, markers))

    mixed = GenotypeStore.from_array(
        "admixed", _mask_missing(rng, mixed_geno, missing_rate), markers
    )
    return SimulatedData(
        mixed=mixed,
        references=references,
        markers=markers,
        generations=generations,
        mixture_fraction=mixture_fraction,
    )


def simulate_unlinked(
    n_mixed: int = 200,
    n_ref: int = 50,
    n_chromosomes: int = 10,
    chromosome_length_cm: float = 20.0,
    marker_spacing_cm: float = 0.2,
    fst: float = 0.2,
    n_references: int = 1,
    missing_rate: float = 0.0,
    seed: int | None = None,
) -> SimulatedData:
    """Simulate populations without any LD.

    The mixed population is a panel of one drifted population with
    independent markers; references are drifted separately.
    """
    rng = np.random.default_rng(seed)
    markers = _marker_map(n_chromosomes, chromosome_length_cm, marker_spacing_cm)
    p_anc = _ancestral_freqs(rng, markers.n_markers)
    mixed_geno = _diploid(rng, _drifted(rng, p_anc, fst), n_mixed)
    references = [
        GenotypeStore.from_array(
            f"ref{k + 1}",
            _mask_missing(rng, _diploid(rng, _drifted(rng, p_anc, fst), n_ref), missing_rate),
            markers,
        )
        for k in range(n_references)
    ]
    mixed = GenotypeStore.from_array(
        "unadmixed", _mask_missing(rng, mixed_geno, missing_rate), markers
    )
    return SimulatedData(mixed=mixed, references=references, markers=markers)
