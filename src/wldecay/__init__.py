"""wldecay: weighted LD decay curves for dating and testing admixture."""

__version__ = "0.1.0"

from wldecay.core.config import AnalysisConfig, ConfigurationError
from wldecay.core.genotypes import GenotypeStore, MarkerMap
from wldecay.core.weights import WeightVector
from wldecay.analysis.correlation import WeightedLDCurve, compute_curve
from wldecay.analysis.fitting import ExponentialFit
from wldecay.analysis.admixture import AdmixtureVerdict
from wldecay.analysis.pipeline import AnalysisResult, run_analysis

__all__ = [
    "AnalysisConfig",
    "ConfigurationError",
    "GenotypeStore",
    "MarkerMap",
    "WeightVector",
    "WeightedLDCurve",
    "compute_curve",
    "ExponentialFit",
    "AdmixtureVerdict",
    "AnalysisResult",
    "run_analysis",
]
