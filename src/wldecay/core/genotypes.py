"""Marker maps and per-population genotype matrices."""

from __future__ import annotations

from dataclasses import dataclass

import numpy as np

from wldecay.core.config import ConfigurationError

MISSING = -1


def _read_only(array: np.ndarray) -> np.ndarray:
    array.setflags(write=False)
    return array


@dataclass(frozen=True)
class MarkerMap:
    """Chromosome and genetic position (Morgans) of every marker.

    Markers are grouped in contiguous chromosome blocks and sorted by
    position within each block. Every population's genotype matrix uses
    the same marker order.
    """

    chromosomes: np.ndarray
    positions: np.ndarray

    def __post_init__(self) -> None:
        chromosomes = np.asarray(self.chromosomes)
        positions = np.asarray(self.positions, dtype=np.float64)
        if chromosomes.ndim != 1 or positions.ndim != 1:
            raise ConfigurationError("chromosomes and positions must be 1-D")
        if len(chromosomes) != len(positions):
            raise ConfigurationError(
                f"{len(chromosomes)} chromosome ids but {len(positions)} positions"
            )
        if not np.all(np.isfinite(positions)):
            raise ConfigurationError("marker positions must be finite")

        if len(chromosomes) > 0:
            boundaries = np.flatnonzero(chromosomes[1:] != chromosomes[:-1]) + 1
            starts = np.concatenate(([0], boundaries))
            block_ids = chromosomes[starts]
            if len(set(block_ids.tolist())) != len(block_ids):
                raise ConfigurationError("markers of each chromosome must be contiguous")
            same_chrom = chromosomes[1:] == chromosomes[:-1]
            if np.any(np.diff(positions)[same_chrom] < 0):
                raise ConfigurationError(
                    "marker positions must be sorted within each chromosome"
                )

        object.__setattr__(self, "chromosomes", _read_only(chromosomes.copy()))
        object.__setattr__(self, "positions", _read_only(positions.copy()))

    @property
    def n_markers(self) -> int:
        return len(self.positions)

    @property
    def positions_cm(self) -> np.ndarray:
        """Positions in centimorgans."""
        return self.positions * 100.0

    @property
    def chromosome_ids(self) -> list:
        """Distinct chromosome ids in marker order."""
        if self.n_markers == 0:
            return []
        starts = np.concatenate(
            ([0], np.flatnonzero(self.chromosomes[1:] != self.chromosomes[:-1]) + 1)
        )
        return self.chromosomes[starts].tolist()

    @property
    def chromosome_index(self) -> np.ndarray:
        """0-based chromosome block index of every marker."""
        if self.n_markers == 0:
            return np.zeros(0, dtype=np.int64)
        changes = np.concatenate(([0], (self.chromosomes[1:] != self.chromosomes[:-1])))
        return np.cumsum(changes).astype(np.int64)

    def markers_per_chromosome(self) -> np.ndarray:
        """Number of markers on each chromosome, in `chromosome_ids` order."""
        return np.bincount(self.chromosome_index, minlength=len(self.chromosome_ids))

    def without_chromosome(self, chromosome: object) -> np.ndarray:
        """Boolean mask selecting every marker not on `chromosome`."""
        return self.chromosomes != chromosome

    def subset(self, keep: np.ndarray) -> MarkerMap:
        """Return the map restricted to markers where `keep` is True."""
        return MarkerMap(chromosomes=self.chromosomes[keep], positions=self.positions[keep])

    def same_as(self, other: MarkerMap) -> bool:
        return (
            self.n_markers == other.n_markers
            and np.array_equal(self.chromosomes, other.chromosomes)
            and np.array_equal(self.positions, other.positions)
        )


@dataclass(frozen=True)
class GenotypeStore:
    """Read-only genotype calls (individuals x markers) of one population.

    Calls are 0, 1 or 2 copies of the counted allele; missing calls are
    stored as -1.
    """

    name: str
    genotypes: np.ndarray
    markers: MarkerMap

    @classmethod
    def from_array(
        cls,
        name: str,
        genotypes: np.ndarray,
        markers: MarkerMap,
    ) -> GenotypeStore:
        """Build a store, normalising missing-call codes.

        Negative values, 9 and NaN are treated as missing.

        Raises:
            ConfigurationError: If the matrix shape does not match the map or
                it contains calls other than 0, 1, 2 or missing
        """
        raw = np.asarray(genotypes)
        if raw.ndim != 2:
            raise ConfigurationError(f"genotypes for '{name}' must be a 2-D matrix")
        if raw.shape[1] != markers.n_markers:
            raise ConfigurationError(
                f"genotypes for '{name}' have {raw.shape[1]} markers, "
                f"marker map has {markers.n_markers}"
            )

        if np.issubdtype(raw.dtype, np.floating):
            missing = ~np.isfinite(raw)
            filled = np.where(missing, MISSING, raw)
            if np.any(filled != np.round(filled)):
                raise ConfigurationError(f"genotypes for '{name}' must be integer calls")
            values = filled.astype(np.int64)
        else:
            values = raw.astype(np.int64)
            missing = np.zeros(values.shape, dtype=bool)

        missing = missing | (values < 0) | (values == 9)
        if np.any((values > 2) & ~missing):
            raise ConfigurationError(
                f"genotypes for '{name}' contain calls outside 0/1/2/missing"
            )
        calls = np.where(missing, MISSING, values).astype(np.int8)
        return cls(name=name, genotypes=_read_only(calls), markers=markers)

    @property
    def n_individuals(self) -> int:
        return self.genotypes.shape[0]

    @property
    def n_markers(self) -> int:
        return self.genotypes.shape[1]

    def missing_mask(self) -> np.ndarray:
        return self.genotypes < 0

    def called_counts(self) -> np.ndarray:
        """Number of individuals with a call at each marker."""
        return np.sum(self.genotypes >= 0, axis=0)

    def allele_frequencies(self) -> np.ndarray:
        """Counted-allele frequency per marker (NaN where nobody is called)."""
        called = self.genotypes >= 0
        totals = np.where(called, self.genotypes, 0).sum(axis=0).astype(np.float64)
        n = called.sum(axis=0)
        with np.errstate(invalid="ignore", divide="ignore"):
            return np.where(n > 0, totals / (2.0 * n), np.nan)

    def select_markers(self, keep: np.ndarray) -> GenotypeStore:
        """Return the store restricted to markers where `keep` is True."""
        return GenotypeStore(
            name=self.name,
            genotypes=_read_only(self.genotypes[:, keep].copy()),
            markers=self.markers.subset(keep),
        )
