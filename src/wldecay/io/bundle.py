"""Read and write genotype bundles (.npz).

A bundle holds everything one run needs:

    mixed          (n_mixed, n_markers) genotype calls
    mixed_name     name of the mixed population (optional)
    ref__<name>    (n_ref, n_markers) calls for each reference population
    chrom          (n_markers,) chromosome ids
    pos            (n_markers,) genetic positions in Morgans
    weights        (n_markers,) external weights (optional)
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path

import numpy as np

from wldecay.core.config import ConfigurationError
from wldecay.core.genotypes import GenotypeStore, MarkerMap

REF_PREFIX = "ref__"


@dataclass
class Bundle:
    mixed: GenotypeStore
    references: list = field(default_factory=list)
    markers: MarkerMap | None = None
    weights: np.ndarray | None = None


def load_bundle(path: Path | str) -> Bundle:
    """Load a bundle written by `save_bundle`.

    Raises:
        ConfigurationError: If required arrays are missing or inconsistent
    """
    with np.load(path, allow_pickle=False) as data:
        for key in ("mixed", "chrom", "pos"):
            if key not in data.files:
                raise ConfigurationError(f"{path}: bundle has no '{key}' array")
        markers = MarkerMap(chromosomes=data["chrom"], positions=data["pos"])
        mixed_name = str(data["mixed_name"]) if "mixed_name" in data.files else "mixed"
        mixed = GenotypeStore.from_array(mixed_name, data["mixed"], markers)
        references = [
            GenotypeStore.from_array(key[len(REF_PREFIX):], data[key], markers)
            for key in data.files
            if key.startswith(REF_PREFIX)
        ]
        weights = np.asarray(data["weights"], dtype=np.float64) if "weights" in data.files else None
    return Bundle(mixed=mixed, references=references, markers=markers, weights=weights)


def save_bundle(
    path: Path | str,
    mixed: GenotypeStore,
    references: list[GenotypeStore],
    weights: np.ndarray | None = None,
) -> None:
    """Write populations on a shared marker map to a compressed .npz bundle."""
    arrays = {
        "mixed": mixed.genotypes,
        "mixed_name": np.asarray(mixed.name),
        "chrom": mixed.markers.chromosomes,
        "pos": mixed.markers.positions,
    }
    for ref in references:
        if not ref.markers.same_as(mixed.markers):
            raise ConfigurationError(f"reference '{ref.name}' uses a different marker map")
        arrays[f"{REF_PREFIX}{ref.name}"] = ref.genotypes
    if weights is not None:
        arrays["weights"] = np.asarray(weights, dtype=np.float64)
    np.savez_compressed(path, **arrays)
