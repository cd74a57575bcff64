"""Core data structures and configuration."""

from wldecay.core.config import AnalysisConfig, ConfigurationError
from wldecay.core.genotypes import GenotypeStore, MarkerMap
from wldecay.core.weights import WeightKind, WeightVector

__all__ = [
    "AnalysisConfig",
    "ConfigurationError",
    "GenotypeStore",
    "MarkerMap",
    "WeightKind",
    "WeightVector",
]
