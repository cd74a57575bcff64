"""Run configuration for weighted LD analyses."""

from __future__ import annotations

from dataclasses import dataclass, replace

ALGORITHMS = ("fast", "naive")


class ConfigurationError(ValueError):
    """Raised when a run cannot proceed with the given inputs or settings."""


@dataclass(frozen=True)
class AnalysisConfig:
    """Settings passed explicitly into every engine entry point.

    All distances are in centimorgans.
    """

    binsize: float = 0.05
    """Width of each distance bin."""

    maxdis: float = 30.0
    """Maximum marker-pair distance, also the end of every fit window."""

    mindis: float | None = None
    """Explicit fit start; overrides the correlated-LD scan when set."""

    mincount: int = 4
    """Minimum effective individual count for a bin to be fit."""

    algorithm: str = "fast"
    """Pair accumulation algorithm: 'fast' (prefix sums) or 'naive'."""

    num_threads: int = 1
    """Worker threads used by the numba kernels."""

    start_offsets: tuple[int, ...] = (0, 1, 2)
    """Offsets, in bins, of the fit starts tried around the chosen start."""

    canonical_offset: int = 0
    """Offset whose fit is reported as the canonical one."""

    min_fit_bins: int = 3
    """Minimum number of usable bins in a fit window."""

    ld_corr_floor: float = 0.5
    ld_corr_ceiling: float = 2.0
    ld_corr_binsize: float = 0.1

    significance: float = 0.05
    """Two-sided significance level for curve tests."""

    consistency_tolerance: float = 0.25
    """Allowed decay-rate disagreement, relative to the two-reference decay."""

    recombination_rate: float = 1.0
    """Crossovers per Morgan per generation, used to convert decay to a date."""

    keep_jackknife_curves: bool = False

    def validate(self) -> AnalysisConfig:
        """Check the settings and return self.

        Raises:
            ConfigurationError: If any setting is out of range
        """
        if self.binsize <= 0:
            raise ConfigurationError(f"binsize must be positive, got {self.binsize}")
        if self.maxdis <= 0:
            raise ConfigurationError(f"maxdis must be positive, got {self.maxdis}")
        if self.mindis is not None:
            if self.mindis < 0:
                raise ConfigurationError(f"mindis must be >= 0, got {self.mindis}")
            if self.mindis >= self.maxdis:
                raise ConfigurationError(
                    f"mindis ({self.mindis}) must be smaller than maxdis ({self.maxdis})"
                )
        if self.mincount < 1:
            raise ConfigurationError(f"mincount must be >= 1, got {self.mincount}")
        if self.algorithm not in ALGORITHMS:
            available = ", ".join(ALGORITHMS)
            raise ConfigurationError(
                f"Unknown algorithm '{self.algorithm}'. Available: {available}"
            )
        if self.num_threads < 1:
            raise ConfigurationError(f"num_threads must be >= 1, got {self.num_threads}")
        if not self.start_offsets:
            raise ConfigurationError("start_offsets must not be empty")
        if self.canonical_offset not in self.start_offsets:
            raise ConfigurationError(
                f"canonical_offset {self.canonical_offset} is not one of "
                f"start_offsets {self.start_offsets}"
            )
        if self.min_fit_bins < 3:
            raise ConfigurationError("min_fit_bins must be >= 3 (three model parameters)")
        if not 0 < self.ld_corr_floor <= self.ld_corr_ceiling:
            raise ConfigurationError("need 0 < ld_corr_floor <= ld_corr_ceiling")
        if self.ld_corr_binsize <= 0:
            raise ConfigurationError("ld_corr_binsize must be positive")
        if not 0 < self.significance < 1:
            raise ConfigurationError("significance must be in (0, 1)")
        if not 0 < self.consistency_tolerance <= 1:
            raise ConfigurationError("consistency_tolerance must be in (0, 1]")
        if self.recombination_rate <= 0:
            raise ConfigurationError("recombination_rate must be positive")
        return self

    def with_options(self, **changes: object) -> AnalysisConfig:
        """Return a validated copy with some fields replaced."""
        return replace(self, **changes).validate()
