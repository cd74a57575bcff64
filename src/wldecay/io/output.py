"""Output formatters for weighted LD results."""

from __future__ import annotations

import json
import math
from enum import Enum
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from wldecay.analysis.admixture import AdmixtureVerdict
    from wldecay.analysis.correlation import WeightedLDCurve
    from wldecay.analysis.fitting import ExponentialFit
    from wldecay.analysis.jackknife import JackknifeEnsemble
    from wldecay.analysis.pipeline import AnalysisResult


class OutputFormat(Enum):
    """Supported output formats."""

    PRETTY = "pretty"
    TSV = "tsv"
    JSON = "json"


def _num(value: float | None, fmt: str = ".6g") -> str:
    if value is None or (isinstance(value, float) and math.isnan(value)):
        return "NA"
    return format(value, fmt)


def format_result(
    result: AnalysisResult | AdmixtureVerdict | ExponentialFit | WeightedLDCurve,
    format: OutputFormat = OutputFormat.PRETTY,
) -> str:
    """Format an analysis, verdict, fit or curve for output.

    Args:
        result: Result object
        format: Output format

    Returns:
        Formatted string representation
    """
    from wldecay.analysis.pipeline import AnalysisResult

    if format == OutputFormat.PRETTY:
        if isinstance(result, AnalysisResult):
            return _format_pretty_analysis(result)
        return str(result)

    elif format == OutputFormat.JSON:
        return json.dumps(result.to_dict(), indent=2)

    elif format == OutputFormat.TSV:
        return _format_tsv(result)

    else:
        raise ValueError(f"Unknown format: {format}")


def _verdict_row(verdict: AdmixtureVerdict) -> str:
    refs = ",".join(verdict.references)
    return (
        f"{verdict.mixed}\t{refs}\t{verdict.detected}\t"
        f"{_num(min(verdict.zscores.values()) if verdict.zscores else None, '.4f')}\t"
        f"{_num(verdict.p_value)}\t{_num(verdict.corrected_p_value)}\t{verdict.correction:g}\t"
        f"{_num(verdict.date, '.4f')}\t{_num(verdict.date_se, '.4f')}\t"
        f"{_num(verdict.mixture_fraction, '.4f')}\t{_num(verdict.mixture_fraction_se, '.4f')}"
    )


_VERDICT_HEADER = (
    "mixed\treferences\tdetected\tz\tp_value\tp_value_corrected\tcorrection\t"
    "date\tdate_se\tmix_frac_bound\tmix_frac_bound_se"
)
_FIT_HEADER = "curve\tstart\tend\toffset\tA\tA_se\tdecay\tdecay_se\tc\tc_se\tnrmsd\tn_bins"


def _fit_row(label: str, fit: ExponentialFit) -> str:
    return (
        f"{label}\t{fit.start:.4f}\t{fit.end:.4f}\t{fit.offset}\t"
        f"{_num(fit.amplitude)}\t{_num(fit.amplitude_se)}\t"
        f"{_num(fit.decay)}\t{_num(fit.decay_se)}\t"
        f"{_num(fit.baseline)}\t{_num(fit.baseline_se)}\t"
        f"{_num(fit.nrmsd, '.4f')}\t{fit.n_bins}"
    )


def _format_tsv(
    result: AnalysisResult | AdmixtureVerdict | ExponentialFit | WeightedLDCurve,
) -> str:
    """Format results as tab-separated values."""
    from wldecay.analysis.admixture import AdmixtureVerdict
    from wldecay.analysis.correlation import WeightedLDCurve
    from wldecay.analysis.fitting import ExponentialFit
    from wldecay.analysis.pipeline import AnalysisResult

    if isinstance(result, AnalysisResult):
        lines = [_VERDICT_HEADER]
        lines.extend(_verdict_row(v) for v in result.verdicts)
        return "\n".join(lines)

    elif isinstance(result, AdmixtureVerdict):
        return f"{_VERDICT_HEADER}\n{_verdict_row(result)}"

    elif isinstance(result, ExponentialFit):
        return f"{_FIT_HEADER}\n{_fit_row('', result)}"

    elif isinstance(result, WeightedLDCurve):
        return format_raw_curve(result)

    else:
        raise TypeError(f"Unknown result type: {type(result)}")


def _format_pretty_analysis(result: AnalysisResult) -> str:
    lines = [f"Weighted LD analysis of {result.mixed}", f"  Form: {result.plan.name}", ""]

    lines.append("Fit start distances:")
    for name, start in result.fit_starts.items():
        if start.eligible:
            lines.append(f"  {name}: {start.distance:.2f} cM ({start.reason})")
        else:
            lines.append(f"  {name}: ineligible ({start.reason})")
    lines.append("")

    for label, fits in result.fits.items():
        lines.append(f"=== {label} ===")
        for fit, start, offset in zip(fits.fits, fits.starts, fits.offsets):
            if fit is None:
                lines.append(f"No fit from {start:.3f} cM (offset {offset})")
            else:
                marker = " [canonical]" if fit is fits.canonical else ""
                lines.append(f"{fit}{marker}")
        lines.append("")

    if result.pretests:
        lines.append("1-ref pre-tests:")
        lines.extend(f"  {test}" for test in result.pretests.values())
        lines.append("")

    for name, f2 in result.f2.items():
        lines.append(f"f2({result.mixed}, {name}): {f2}")

    for verdict in result.verdicts:
        lines.append(str(verdict))
        if verdict.comparisons_by_offset:
            lines.append("  Decay-rate differences by fit start offset:")
            for offset, comparisons in verdict.comparisons_by_offset.items():
                lines.extend(f"    offset {offset}: {c}" for c in comparisons)
        lines.append("")

    if not result.verdicts:
        lines.append("No admixture test was run.")
    return "\n".join(lines).rstrip() + "\n"


def format_raw_curve(
    curve: WeightedLDCurve,
    ensemble: JackknifeEnsemble | None = None,
) -> str:
    """Per-bin table of a curve, optionally with one column per jackknife replicate.

    Args:
        curve: Full-data curve
        ensemble: If given, adds `jk_<chromosome>` columns of replicate values

    Returns:
        Tab-separated table
    """
    chroms = list(ensemble.replicates) if ensemble is not None else []
    header = ["distance", "left_edge", "value", "count", "pairs", "eligible"]
    header.extend(f"jk_{c}" for c in chroms)
    lines = ["\t".join(header)]
    for b in range(len(curve)):
        row = [
            f"{curve.distances[b]:.4f}",
            f"{curve.left_edges[b]:.4f}",
            f"{curve.values[b]:.6e}",
            f"{curve.counts[b]:.0f}",
            f"{curve.pair_counts[b]:.0f}",
            "1" if curve.eligible[b] else "0",
        ]
        row.extend(f"{ensemble.replicates[c].values[b]:.6e}" for c in chroms)
        lines.append("\t".join(row))
    return "\n".join(lines)


def format_fits_table(result: AnalysisResult) -> str:
    """Every fit of every curve as a tab-separated table."""
    lines = [_FIT_HEADER]
    for label, fits in result.fits.items():
        lines.extend(_fit_row(label, fit) for fit in fits.fits if fit is not None)
    return "\n".join(lines)
