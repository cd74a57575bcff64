"""Run planning and orchestration of a full weighted LD analysis."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from itertools import combinations
from typing import Union

import numpy as np

from wldecay.analysis.admixture import (
    CurveTest,
    multiple_hypothesis_correction,
    one_reference_test,
    single_reference_verdict,
    two_reference_test,
    untestable_verdict,
)
from wldecay.analysis.correlation import DistanceBins
from wldecay.analysis.fitting import CurveFits, fit_start_scan
from wldecay.analysis.jackknife import JackknifeEnsemble, compute_ensemble
from wldecay.analysis.ld_extent import find_fit_starts
from wldecay.analysis.statistics import F2Estimate, f2_statistic
from wldecay.core.config import AnalysisConfig, ConfigurationError
from wldecay.core.genotypes import GenotypeStore
from wldecay.core.weights import WeightVector

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SingleRefPlan:
    """One reference: single-reference curve and mixture-fraction bound."""

    name: str = "1-reference weighted LD"


@dataclass(frozen=True)
class TwoRefPlan:
    """Two references, or externally supplied weights."""

    external: bool = False
    name: str = "2-reference weighted LD"


@dataclass(frozen=True)
class MultiRefPlan:
    """Three or more references: pre-tests, then every eligible pair."""

    n_references: int
    name: str = "3+ references (multiple admixture tests)"


RunPlan = Union[SingleRefPlan, TwoRefPlan, MultiRefPlan]


def plan_run(n_references: int, has_external_weights: bool = False) -> RunPlan:
    """Choose how to run from the number of references with genotypes.

    Raises:
        ConfigurationError: If there are no references and no external weights
    """
    if has_external_weights:
        return TwoRefPlan(external=True)
    if n_references <= 0:
        raise ConfigurationError("no reference populations and no external weights")
    if n_references == 1:
        return SingleRefPlan()
    if n_references == 2:
        return TwoRefPlan()
    return MultiRefPlan(n_references)


@dataclass
class AnalysisResult:
    """Everything produced by one run."""

    mixed: str
    plan: RunPlan
    config: AnalysisConfig
    fit_starts: dict = field(default_factory=dict)
    """Reference name (or 'external') -> FitStart."""
    curves: dict = field(default_factory=dict)
    """Curve label -> full-data WeightedLDCurve."""
    ensembles: dict = field(default_factory=dict)
    """Curve label -> JackknifeEnsemble (kept only with keep_jackknife_curves)."""
    fits: dict = field(default_factory=dict)
    """Curve label -> CurveFits."""
    pretests: dict = field(default_factory=dict)
    """Reference name -> CurveTest."""
    verdicts: list = field(default_factory=list)
    f2: dict = field(default_factory=dict)
    warnings: list = field(default_factory=list)
    correction: float = 1.0

    def to_dict(self) -> dict:
        """Convert the result to a dictionary."""
        return {
            "mixed": self.mixed,
            "plan": self.plan.name,
            "fit_starts": {k: s.distance for k, s in self.fit_starts.items()},
            "curves": {k: c.to_dict() for k, c in self.curves.items()},
            "fits": {k: f.to_dict() for k, f in self.fits.items()},
            "pretests": {k: t.to_dict() for k, t in self.pretests.items()},
            "verdicts": [v.to_dict() for v in self.verdicts],
            "f2": {k: {"value": f.value, "std_error": f.std_error} for k, f in self.f2.items()},
            "correction": self.correction,
            "warnings": self.warnings,
        }


def _check_inputs(
    mixed: GenotypeStore,
    references: list[GenotypeStore],
    plan: RunPlan,
    config: AnalysisConfig,
    external_weights: np.ndarray | None,
) -> None:
    if config.mincount > mixed.n_individuals:
        raise ConfigurationError(
            f"mincount ({config.mincount}) exceeds the {mixed.n_individuals} "
            f"individuals of '{mixed.name}'"
        )
    if isinstance(plan, SingleRefPlan) and config.mincount < 4:
        raise ConfigurationError("mincount must be >= 4 for single-reference weighted LD")
    for ref in references:
        if not ref.markers.same_as(mixed.markers):
            raise ConfigurationError(
                f"reference '{ref.name}' and '{mixed.name}' use different marker maps"
            )
    names = [ref.name for ref in references]
    if len(set(names)) != len(names):
        raise ConfigurationError("reference population names must be unique")
    if external_weights is not None and len(external_weights) != mixed.n_markers:
        raise ConfigurationError(
            f"external weights have {len(external_weights)} entries, "
            f"expected {mixed.n_markers}"
        )


class _Runner:
    """Shared state of one analysis run."""

    def __init__(self, mixed: GenotypeStore, config: AnalysisConfig, result: AnalysisResult):
        self.mixed = mixed
        self.config = config
        self.result = result
        self.bins = DistanceBins(config.binsize, config.maxdis)
        self.mixed_freqs = mixed.allele_frequencies()

    def warn(self, message: str) -> None:
        logger.warning(message)
        self.result.warnings.append(message)

    def curve(self, weights: WeightVector, start: float) -> CurveFits:
        """Compute, jackknife and fit the curve for one weight vector."""
        config = self.config
        label = weights.label
        logger.info("computing weighted LD curve '%s'", label)
        ensemble = compute_ensemble(
            weights,
            self.mixed,
            None,
            self.bins,
            config.mincount,
            config.algorithm,
            config.num_threads,
        )
        if not ensemble.usable:
            self.warn(f"{label}: need data from >= 2 chromosomes to jackknife")
        fits = fit_start_scan(ensemble, start, config)
        self._store(label, ensemble, fits)
        return fits

    def _store(self, label: str, ensemble: JackknifeEnsemble, fits: CurveFits) -> None:
        self.result.curves[label] = ensemble.full
        self.result.fits[label] = fits
        if self.config.keep_jackknife_curves:
            self.result.ensembles[label] = ensemble

    def one_ref(self, ref: GenotypeStore, start: float) -> CurveFits:
        weights = WeightVector.from_reference(
            ref.allele_frequencies(), self.mixed_freqs, label=f"1-ref {ref.name}"
        )
        return self.curve(weights, start)

    def two_ref(self, ref1: GenotypeStore, ref2: GenotypeStore, start: float) -> CurveFits:
        weights = WeightVector.from_difference(
            ref1.allele_frequencies(),
            ref2.allele_frequencies(),
            label=f"2-ref {ref1.name}-{ref2.name}",
        )
        return self.curve(weights, start)

    def pretest(self, ref: GenotypeStore) -> tuple[CurveTest, CurveFits | None]:
        start = self.result.fit_starts[ref.name]
        if not start.eligible:
            test = CurveTest(ref.name, None, reason="cannot pre-test: long-range LD")
            self.result.pretests[ref.name] = test
            return test, None
        fits = self.one_ref(ref, start.distance)
        test = one_reference_test(fits, self.config.significance, reference=ref.name)
        self.result.pretests[ref.name] = test
        return test, fits


def _run_single(runner: _Runner, ref: GenotypeStore) -> None:
    result = runner.result
    start = result.fit_starts[ref.name]
    fits = runner.one_ref(ref, start.distance)
    f2: F2Estimate = f2_statistic(runner.mixed, ref)
    result.f2[ref.name] = f2
    if not start.eligible:
        result.verdicts.append(
            untestable_verdict(result.mixed, (ref.name,), "long-range LD with the reference")
        )
        return
    verdict = single_reference_verdict(fits, f2, result.mixed, ref.name, runner.config)
    result.verdicts.append(verdict)


def _run_two(runner: _Runner, references: list[GenotypeStore], external: np.ndarray | None) -> None:
    result = runner.result
    mixed = result.mixed

    if external is not None:
        start = result.fit_starts["external"].distance
        runner.curve(WeightVector.external(external), start)
        result.verdicts.append(
            untestable_verdict(
                mixed, ("external",), "cannot test for admixture: need reference genotypes"
            )
        )
        return

    ref1, ref2 = references
    names = (mixed, ref1.name, ref2.name)
    start = max(result.fit_starts[ref1.name].distance, result.fit_starts[ref2.name].distance)
    fits = runner.two_ref(ref1, ref2, start)
    for ref in (ref1, ref2):
        if not result.fit_starts[ref.name].eligible:
            result.verdicts.append(
                untestable_verdict(mixed, names[1:], f"long-range LD with {ref.name}")
            )
            return
    if fits.canonical is None or not fits.canonical.has_jackknife:
        result.verdicts.append(
            two_reference_test(fits, CurveFits(), CurveFits(), names, runner.config)
        )
        return

    ref_fits = []
    for ref in (ref1, ref2):
        _, one_fits = runner.pretest(ref)
        ref_fits.append(one_fits if one_fits is not None else CurveFits())
    result.verdicts.append(
        two_reference_test(fits, ref_fits[0], ref_fits[1], names, runner.config)
    )


def _run_multi(runner: _Runner, references: list[GenotypeStore]) -> None:
    result = runner.result
    pretest_fits: dict[str, CurveFits] = {}
    eligible = []
    for ref in references:
        test, fits = runner.pretest(ref)
        logger.info("pre-test %s", test)
        if test.has_curve:
            eligible.append(ref)
            pretest_fits[ref.name] = fits

    result.correction = multiple_hypothesis_correction(len(eligible))
    if not any(test.testable for test in result.pretests.values()):
        n_chrom = int(np.sum(runner.mixed.markers.markers_per_chromosome() >= 2))
        if n_chrom < 2:
            reason = "need data from >= 2 chromosomes to jackknife"
        else:
            reason = "no reference could be pre-tested"
        runner.warn(reason)
        names = tuple(ref.name for ref in references)
        result.verdicts.append(untestable_verdict(result.mixed, names, reason))
        return
    if len(eligible) < 2:
        runner.warn(
            f"{len(eligible)} reference(s) passed the 1-ref pre-test; "
            "need two to test for admixture"
        )
        return

    for ref1, ref2 in combinations(eligible, 2):
        start = max(result.fit_starts[ref1.name].distance, result.fit_starts[ref2.name].distance)
        fits = runner.two_ref(ref1, ref2, start)
        result.verdicts.append(
            two_reference_test(
                fits,
                pretest_fits[ref1.name],
                pretest_fits[ref2.name],
                (result.mixed, ref1.name, ref2.name),
                runner.config,
                correction=result.correction,
            )
        )


def run_analysis(
    mixed: GenotypeStore,
    references: list[GenotypeStore],
    config: AnalysisConfig | None = None,
    external_weights: np.ndarray | None = None,
) -> AnalysisResult:
    """Run the weighted LD analysis for a mixed population.

    Args:
        mixed: Genotypes of the (possibly) admixed population
        references: Reference populations on the same marker map
        config: Settings; defaults to AnalysisConfig()
        external_weights: Per-marker weights to use instead of reference
            frequencies (no admixture test is possible then)

    Returns:
        AnalysisResult

    Raises:
        ConfigurationError: For inputs the analysis cannot be run with
    """
    config = (config or AnalysisConfig()).validate()
    plan = plan_run(len(references), external_weights is not None)
    _check_inputs(mixed, references, plan, config, external_weights)
    logger.info("form of analysis: %s", plan.name)

    result = AnalysisResult(mixed=mixed.name, plan=plan, config=config)
    runner = _Runner(mixed, config, result)
    if external_weights is not None and references:
        runner.warn("external weights supplied; reference populations are not used")

    result.fit_starts = find_fit_starts(
        mixed,
        [] if external_weights is not None else references,
        config,
        external_weights=external_weights is not None,
    )
    for start in result.fit_starts.values():
        if start.warning and start.warning not in result.warnings:
            result.warnings.append(start.warning)

    if isinstance(plan, SingleRefPlan):
        _run_single(runner, references[0])
    elif isinstance(plan, TwoRefPlan):
        _run_two(runner, references, external_weights)
    else:
        _run_multi(runner, references)
    return result
