"""Weighted LD analysis modules."""

from wldecay.analysis.correlation import DistanceBins, WeightedLDCurve, compute_curve
from wldecay.analysis.jackknife import JackknifeEnsemble, compute_ensemble, weighted_jackknife
from wldecay.analysis.fitting import CurveFits, ExponentialFit, fit_curve, fit_start_scan
from wldecay.analysis.ld_extent import FitStart, find_fit_starts
from wldecay.analysis.admixture import AdmixtureVerdict, VerdictStatus, two_reference_test
from wldecay.analysis.pipeline import AnalysisResult, plan_run, run_analysis

__all__ = [
    "DistanceBins",
    "WeightedLDCurve",
    "compute_curve",
    "JackknifeEnsemble",
    "compute_ensemble",
    "weighted_jackknife",
    "CurveFits",
    "ExponentialFit",
    "fit_curve",
    "fit_start_scan",
    "FitStart",
    "find_fit_starts",
    "AdmixtureVerdict",
    "VerdictStatus",
    "two_reference_test",
    "AnalysisResult",
    "plan_run",
    "run_analysis",
]
