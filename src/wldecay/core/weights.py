"""Per-marker weights for weighted LD."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

import numpy as np

from wldecay.core.config import ConfigurationError


class WeightKind(Enum):
    """Where a weight vector came from."""

    REFERENCE = "reference"
    DIFFERENCE = "difference"
    EXTERNAL = "external"


@dataclass(frozen=True)
class WeightVector:
    """One weight per marker, aligned to the marker map.

    Markers without a defined weight (e.g. no calls in a reference) carry
    weight 0 and therefore contribute nothing.
    """

    values: np.ndarray
    kind: WeightKind
    label: str = ""

    def __post_init__(self) -> None:
        values = np.asarray(self.values, dtype=np.float64)
        if values.ndim != 1:
            raise ConfigurationError("weights must be a 1-D vector")
        values = np.where(np.isfinite(values), values, 0.0)
        values.setflags(write=False)
        object.__setattr__(self, "values", values)

    def __len__(self) -> int:
        return len(self.values)

    @classmethod
    def from_reference(
        cls,
        reference_freqs: np.ndarray,
        mixed_freqs: np.ndarray,
        label: str = "",
    ) -> WeightVector:
        """Single-reference contrast: reference minus mixed-population frequency."""
        reference_freqs = np.asarray(reference_freqs, dtype=np.float64)
        mixed_freqs = np.asarray(mixed_freqs, dtype=np.float64)
        if reference_freqs.shape != mixed_freqs.shape:
            raise ConfigurationError("frequency vectors have different lengths")
        return cls(reference_freqs - mixed_freqs, WeightKind.REFERENCE, label)

    @classmethod
    def from_difference(
        cls,
        freqs_1: np.ndarray,
        freqs_2: np.ndarray,
        label: str = "",
    ) -> WeightVector:
        """Two-reference contrast: difference of the reference frequencies."""
        freqs_1 = np.asarray(freqs_1, dtype=np.float64)
        freqs_2 = np.asarray(freqs_2, dtype=np.float64)
        if freqs_1.shape != freqs_2.shape:
            raise ConfigurationError("frequency vectors have different lengths")
        return cls(freqs_1 - freqs_2, WeightKind.DIFFERENCE, label)

    @classmethod
    def external(cls, values: np.ndarray, label: str = "external") -> WeightVector:
        return cls(np.asarray(values, dtype=np.float64), WeightKind.EXTERNAL, label)

    def check_length(self, n_markers: int) -> None:
        if len(self.values) != n_markers:
            raise ConfigurationError(
                f"weight vector has {len(self.values)} entries, expected {n_markers}"
            )
