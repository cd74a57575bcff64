"""Tests for admixture built on fitted weighted LD curves.

One reference: the curve must have a significant amplitude and decay.
Two references: both single-reference curves must be significant and the
three decay rates (two single-reference, one two-reference) must agree.
Three or more references: single-reference pre-tests, then the two-reference
test on every pair of references that passed, with a multiple-hypothesis
correction.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from enum import Enum

from wldecay.analysis.fitting import CurveFits, ExponentialFit
from wldecay.analysis.jackknife import weighted_jackknife
from wldecay.analysis.statistics import F2Estimate, two_sided_p, zscore
from wldecay.core.config import AnalysisConfig


@dataclass
class CurveTest:
    """Significance test of one single-reference curve."""

    reference: str
    has_curve: bool | None
    """True/False, or None when the curve cannot be tested."""
    zscore: float = float("nan")
    """min(amplitude z, decay z) of the canonical fit."""
    p_value: float = float("nan")
    corrected_p_value: float = float("nan")
    correction: float = 1.0
    fit: ExponentialFit | None = None
    reason: str = ""

    @property
    def testable(self) -> bool:
        return self.has_curve is not None

    def __str__(self) -> str:
        if self.has_curve is None:
            return f"{self.reference}: untestable ({self.reason})"
        answer = "YES" if self.has_curve else "NO"
        return f"{self.reference}: {answer} (z = {self.zscore:.2f}, p = {self.corrected_p_value:.3g})"

    def to_dict(self) -> dict:
        return {
            "reference": self.reference,
            "has_curve": self.has_curve,
            "zscore": self.zscore,
            "p_value": self.p_value,
            "corrected_p_value": self.corrected_p_value,
            "correction": self.correction,
            "reason": self.reason,
        }


def _corrected(p_value: float, correction: float) -> float:
    if not math.isfinite(p_value):
        return p_value
    return min(1.0, p_value * correction)


def one_reference_test(
    fits: CurveFits,
    significance: float = 0.05,
    correction: float = 1.0,
    reference: str = "",
) -> CurveTest:
    """Decide whether a single-reference curve exists.

    The test statistic is the smaller of the amplitude and decay z-scores of
    the canonical fit, so both must be significantly positive.
    """
    fit = fits.canonical
    if fit is None:
        return CurveTest(reference, None, correction=correction, reason="no fit")
    if not fit.has_jackknife:
        return CurveTest(
            reference, None, correction=correction, fit=fit, reason="no jackknife standard errors"
        )

    z = min(fit.zscore("amplitude"), fit.zscore("decay"))
    if not math.isfinite(z):
        return CurveTest(
            reference, None, correction=correction, fit=fit, reason="undefined z-score"
        )
    p_value = two_sided_p(z) if z > 0 else 1.0
    corrected = _corrected(p_value, correction)
    return CurveTest(
        reference=reference,
        has_curve=corrected < significance,
        zscore=z,
        p_value=p_value,
        corrected_p_value=corrected,
        correction=correction,
        fit=fit,
    )


@dataclass(frozen=True)
class DecayComparison:
    """Difference between the decay rates of two fits."""

    label_a: str
    label_b: str
    difference: float
    std_error: float
    zscore: float
    consistent: bool
    tolerance: float

    def __str__(self) -> str:
        verdict = "consistent" if self.consistent else "INCONSISTENT"
        return (
            f"decay({self.label_a}) - decay({self.label_b}) = "
            f"{self.difference:.5f} ± {self.std_error:.5f} (z = {self.zscore:.2f}), {verdict}"
        )

    def to_dict(self) -> dict:
        return {
            "label_a": self.label_a,
            "label_b": self.label_b,
            "difference": self.difference,
            "std_error": self.std_error,
            "zscore": self.zscore,
            "consistent": self.consistent,
            "tolerance": self.tolerance,
        }


def compare_decays(
    fit_a: ExponentialFit,
    fit_b: ExponentialFit,
    reference_decay: float,
    tolerance: float = 0.25,
    label_a: str = "a",
    label_b: str = "b",
) -> DecayComparison:
    """Compare two decay rates.

    The standard error comes from the jackknife of the paired
    per-chromosome differences, so correlation between the two curves is
    accounted for. The rates are consistent when they differ by at most
    `tolerance * reference_decay`.
    """
    difference = fit_a.decay - fit_b.decay
    shared = [c for c in fit_a.replicates if c in fit_b.replicates]
    rep_diffs = [fit_a.replicates[c][1] - fit_b.replicates[c][1] for c in shared]
    sizes = [fit_a.replicate_sizes.get(c, 1) for c in shared]
    std_error = weighted_jackknife(difference, rep_diffs, sizes).std_error
    allowed = tolerance * abs(reference_decay)
    return DecayComparison(
        label_a=label_a,
        label_b=label_b,
        difference=difference,
        std_error=std_error,
        zscore=zscore(difference, std_error),
        consistent=abs(difference) <= allowed,
        tolerance=allowed,
    )


def decay_comparisons(
    two_ref: ExponentialFit,
    ref1: ExponentialFit,
    ref2: ExponentialFit,
    tolerance: float,
    label1: str,
    label2: str,
) -> list[DecayComparison]:
    """The three pairwise decay-rate differences of a two-reference test."""
    return [
        compare_decays(ref1, two_ref, two_ref.decay, tolerance, label1, "2-ref"),
        compare_decays(ref2, two_ref, two_ref.decay, tolerance, label2, "2-ref"),
        compare_decays(ref2, ref1, two_ref.decay, tolerance, label2, label1),
    ]


def _fit_at_offset(fits: CurveFits, offset: int) -> ExponentialFit | None:
    if offset not in fits.offsets:
        return None
    return fits.fits[fits.offsets.index(offset)]


def comparisons_by_offset(
    two_ref: CurveFits,
    ref1: CurveFits,
    ref2: CurveFits,
    tolerance: float,
    label1: str,
    label2: str,
) -> dict[int, list[DecayComparison]]:
    """Decay comparisons for every start offset at which all three curves were fitted."""
    out = {}
    for offset, fit in zip(two_ref.offsets, two_ref.fits):
        fit1 = _fit_at_offset(ref1, offset)
        fit2 = _fit_at_offset(ref2, offset)
        if fit is None or fit1 is None or fit2 is None:
            continue
        out[offset] = decay_comparisons(fit, fit1, fit2, tolerance, label1, label2)
    return out


def multiple_hypothesis_correction(n_eligible: int) -> float:
    """Bonferroni factor for testing every pair of eligible references."""
    return float(max(1, math.comb(n_eligible, 2)))


def mixture_fraction_bound(fit: ExponentialFit, f2: F2Estimate) -> tuple[float, float]:
    """Lower bound on the mixture fraction from a single-reference fit.

    The amplitude on the haplotype scale, a = A / 2, is compared with the
    squared drift distance: r = a / f2^2 and the bound is r / (1 + r).
    Errors are propagated with the delta method.

    Returns:
        (fraction, standard error); NaN when the amplitude or f2 is not positive
    """
    nan = float("nan")
    if fit.amplitude <= 0 or not math.isfinite(f2.value) or f2.value <= 0:
        return nan, nan

    a = fit.amplitude / 2.0
    ratio = a / f2.value**2
    rel_var = (fit.amplitude_se / fit.amplitude) ** 2 + 4.0 * (f2.std_error / f2.value) ** 2
    ratio_se = ratio * math.sqrt(rel_var) if math.isfinite(rel_var) else nan
    fraction = ratio / (1.0 + ratio)
    return fraction, ratio_se / (1.0 + ratio) ** 2


class VerdictStatus(Enum):
    """Outcome of an admixture test."""

    DETECTED = "yes"
    NOT_DETECTED = "no"
    INCONCLUSIVE = "inconclusive"
    UNTESTABLE = "untestable"


@dataclass
class AdmixtureVerdict:
    """Result of a single- or two-reference admixture test."""

    mixed: str
    references: tuple[str, ...]
    status: VerdictStatus
    zscores: dict = field(default_factory=dict)
    """Curve label -> z-score used in the decision."""
    p_value: float = float("nan")
    corrected_p_value: float = float("nan")
    correction: float = 1.0
    date: float = float("nan")
    """Generations since admixture."""
    date_se: float = float("nan")
    mixture_fraction: float = float("nan")
    mixture_fraction_se: float = float("nan")
    comparisons: list = field(default_factory=list)
    comparisons_by_offset: dict = field(default_factory=dict)
    """Start offset -> decay comparisons of the fits from that start."""
    notes: list = field(default_factory=list)

    @property
    def detected(self) -> str:
        return self.status.value

    @property
    def no_correction(self) -> bool:
        return self.correction == 1.0

    def __str__(self) -> str:
        refs = ", ".join(self.references)
        lines = [f"Admixture test: {self.mixed} ({refs})", f"  Detected: {self.detected}"]
        if math.isfinite(self.corrected_p_value):
            suffix = "" if self.no_correction else f" (corrected x{self.correction:g})"
            lines.append(f"  p-value: {self.corrected_p_value:.3g}{suffix}")
        for label, z in self.zscores.items():
            lines.append(f"  z ({label}): {z:.2f}")
        if math.isfinite(self.date):
            lines.append(f"  Date: {self.date:.2f} ± {self.date_se:.2f} generations")
        if math.isfinite(self.mixture_fraction):
            lines.append(
                f"  Mixture fraction lower bound: {100 * self.mixture_fraction:.1f}% "
                f"± {100 * self.mixture_fraction_se:.1f}%"
            )
        lines.extend(f"  {comparison}" for comparison in self.comparisons)
        lines.extend(f"  Note: {note}" for note in self.notes)
        return "\n".join(lines)

    def to_dict(self) -> dict:
        """Convert the verdict to a dictionary."""
        return {
            "mixed": self.mixed,
            "references": list(self.references),
            "detected": self.detected,
            "zscores": self.zscores,
            "p_value": self.p_value,
            "corrected_p_value": self.corrected_p_value,
            "correction": self.correction,
            "no_correction": self.no_correction,
            "date": self.date,
            "date_se": self.date_se,
            "mixture_fraction": self.mixture_fraction,
            "mixture_fraction_se": self.mixture_fraction_se,
            "comparisons": [c.to_dict() for c in self.comparisons],
            "comparisons_by_offset": {
                str(offset): [c.to_dict() for c in comparisons]
                for offset, comparisons in self.comparisons_by_offset.items()
            },
            "notes": self.notes,
        }


def untestable_verdict(
    mixed: str, references: tuple[str, ...], reason: str, correction: float = 1.0
) -> AdmixtureVerdict:
    return AdmixtureVerdict(
        mixed, tuple(references), VerdictStatus.UNTESTABLE, correction=correction, notes=[reason]
    )


def single_reference_verdict(
    fits: CurveFits,
    f2: F2Estimate | None,
    mixed: str,
    reference: str,
    config: AnalysisConfig,
) -> AdmixtureVerdict:
    """Single-reference test plus the mixture-fraction bound."""
    test = one_reference_test(fits, config.significance, reference=reference)
    if test.has_curve is None:
        return untestable_verdict(mixed, (reference,), test.reason)

    verdict = AdmixtureVerdict(
        mixed=mixed,
        references=(reference,),
        status=VerdictStatus.DETECTED if test.has_curve else VerdictStatus.NOT_DETECTED,
        zscores={f"1-ref {reference}": test.zscore},
        p_value=test.p_value,
        corrected_p_value=test.corrected_p_value,
    )
    verdict.date, verdict.date_se = test.fit.date(config.recombination_rate)
    if f2 is not None:
        verdict.mixture_fraction, verdict.mixture_fraction_se = mixture_fraction_bound(
            test.fit, f2
        )
    return verdict


def two_reference_test(
    two_ref: CurveFits,
    ref1: CurveFits,
    ref2: CurveFits,
    names: tuple[str, str, str],
    config: AnalysisConfig,
    correction: float = 1.0,
) -> AdmixtureVerdict:
    """Two-reference admixture test.

    Args:
        two_ref: Fits of the curve weighted by the reference difference
        ref1: Fits of the first single-reference curve
        ref2: Fits of the second single-reference curve
        names: (mixed, reference 1, reference 2)
        config: Significance level, tolerance and recombination rate
        correction: Multiple-hypothesis factor applied to the p-value

    Returns:
        AdmixtureVerdict. Admixture is detected when both single-reference
        curves are significant and all three decay rates agree; significant
        curves with disagreeing rates are inconclusive.
    """
    mixed, name1, name2 = names
    refs = (name1, name2)
    fit = two_ref.canonical
    if fit is None:
        return untestable_verdict(mixed, refs, "no two-reference fit", correction)
    if not fit.has_jackknife:
        return untestable_verdict(
            mixed, refs, "no jackknife standard errors for the two-reference fit", correction
        )

    test1 = one_reference_test(ref1, config.significance, reference=name1)
    test2 = one_reference_test(ref2, config.significance, reference=name2)
    for test in (test1, test2):
        if test.has_curve is None:
            return untestable_verdict(
                mixed, refs, f"1-ref curve with {test.reference}: {test.reason}", correction
            )

    label1 = f"1-ref {name1}"
    label2 = f"1-ref {name2}"
    tol = config.consistency_tolerance
    comparisons = decay_comparisons(fit, test1.fit, test2.fit, tol, label1, label2)

    z = min(test1.zscore, test2.zscore)
    p_value = two_sided_p(z) if z > 0 else 1.0
    corrected = _corrected(p_value, correction)
    date, date_se = fit.date(config.recombination_rate)

    notes = []
    if corrected >= config.significance:
        status = VerdictStatus.NOT_DETECTED
    elif not all(c.consistent for c in comparisons):
        status = VerdictStatus.INCONCLUSIVE
        notes.append("decay rates of the 1-ref and 2-ref curves disagree")
    else:
        status = VerdictStatus.DETECTED

    return AdmixtureVerdict(
        mixed=mixed,
        references=refs,
        status=status,
        zscores={label1: test1.zscore, label2: test2.zscore, "2-ref decay": fit.zscore("decay")},
        p_value=p_value,
        corrected_p_value=corrected,
        correction=correction,
        date=date,
        date_se=date_se,
        comparisons=comparisons,
        comparisons_by_offset=comparisons_by_offset(two_ref, ref1, ref2, tol, label1, label2),
        notes=notes,
    )
