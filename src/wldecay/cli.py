"""Command-line interface for wldecay."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Annotated, Optional

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from wldecay import __version__
from wldecay.analysis.pipeline import AnalysisResult, MultiRefPlan, run_analysis
from wldecay.core.config import AnalysisConfig, ConfigurationError
from wldecay.io.bundle import load_bundle, save_bundle
from wldecay.io.output import OutputFormat, format_raw_curve, format_result

# Console that writes to stderr (so progress doesn't mix with data output)
stderr_console = Console(stderr=True)


def validate_path_not_flag(value: Path | None) -> Path | None:
    """Validate that a Path argument doesn't look like a flag."""
    if value is not None and str(value).startswith("-"):
        raise typer.BadParameter(
            f"'{value}' looks like a flag, not a file path. "
            "Check the order of your arguments."
        )
    return value


def configure_logging(verbose: bool) -> None:
    """Send library log records to stderr through rich."""
    logging.basicConfig(
        level=logging.INFO if verbose else logging.WARNING,
        format="%(message)s",
        handlers=[RichHandler(console=stderr_console, show_time=False, show_path=False)],
        force=True,
    )


def version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        typer.echo(f"wldecay {__version__}")
        raise typer.Exit()


app = typer.Typer(
    name="wldecay",
    help="wldecay: weighted LD decay curves.\n\n"
    "Computes weighted linkage disequilibrium as a function of genetic distance, "
    "fits its exponential decay to date admixture, and tests for admixture "
    "using one or more reference populations.",
    no_args_is_help=True,
)


@app.callback()
def main(
    version: Annotated[
        bool,
        typer.Option("--version", "-v", callback=version_callback, is_eager=True),
    ] = False,
) -> None:
    """wldecay: weighted LD decay curves."""
    pass


def _primary_curve_label(result: AnalysisResult) -> str | None:
    labels = list(result.curves)
    for label in labels:
        if label.startswith("2-ref"):
            return label
    return labels[0] if labels else None


def _write_raw_output(path: Path, result: AnalysisResult, with_replicates: bool) -> None:
    if isinstance(result.plan, MultiRefPlan):
        path.write_text(
            "raw output is not written when testing with >= 3 reference populations\n"
            "(to obtain raw data, run 1-ref or 2-ref analyses separately)\n"
        )
        typer.echo(
            "Warning: raw output is not written when testing with >= 3 references",
            err=True,
        )
        return

    sections = []
    for label, curve in result.curves.items():
        ensemble = result.ensembles.get(label) if with_replicates else None
        sections.append(f"# {label}\n{format_raw_curve(curve, ensemble)}")
    path.write_text("\n\n".join(sections) + "\n")
    typer.echo(f"Raw curves written to {path}", err=True)


@app.command()
def run(
    bundle: Annotated[
        Path,
        typer.Argument(help="Genotype bundle (.npz) with mixed and reference populations"),
    ],
    binsize: Annotated[
        float,
        typer.Option("--binsize", help="Distance bin width (cM)"),
    ] = 0.05,
    maxdis: Annotated[
        float,
        typer.Option("--maxdis", help="Maximum marker distance and fit end (cM)"),
    ] = 30.0,
    mindis: Annotated[
        Optional[float],
        typer.Option(
            "--mindis",
            help="Fit start (cM); overrides the inferred extent of correlated LD",
        ),
    ] = None,
    mincount: Annotated[
        int,
        typer.Option("--mincount", min=1, help="Minimum effective individuals per bin"),
    ] = 4,
    naive: Annotated[
        bool,
        typer.Option("--naive", help="Use the direct pair scan instead of prefix sums"),
    ] = False,
    threads: Annotated[
        int,
        typer.Option("--threads", "-t", min=1, help="Worker threads for the pair kernels"),
    ] = 1,
    output_format: Annotated[
        str,
        typer.Option("--format", "-f", help="Output format: pretty, tsv, json"),
    ] = "pretty",
    plot: Annotated[
        Optional[Path],
        typer.Option(
            "--plot",
            help="Plot the main curve with its fit (PNG, PDF, or SVG)",
            callback=validate_path_not_flag,
        ),
    ] = None,
    raw_output: Annotated[
        Optional[Path],
        typer.Option(
            "--raw-output",
            help="Write the per-bin curve tables to this file",
            callback=validate_path_not_flag,
        ),
    ] = None,
    jackknife_detail: Annotated[
        bool,
        typer.Option(
            "--jackknife-detail",
            help="Include one column per jackknife replicate in the raw output",
        ),
    ] = False,
    verbose: Annotated[
        bool,
        typer.Option("--verbose", help="Log progress messages"),
    ] = False,
) -> None:
    """Compute, fit and test weighted LD curves for a genotype bundle.

    The form of the analysis follows from the bundle contents:

    - one reference: 1-reference curve, admixture test and mixture-fraction bound
    - two references: 2-reference curve and the full admixture test
    - three or more: 1-reference pre-tests, then every pair of passing references
    - external weights: curve and fit only

    EXAMPLES:

        wldecay run data.npz
        wldecay run data.npz --mindis 0.8 --format json
        wldecay run data.npz --plot decay.png --raw-output curve.tsv
    """
    if output_format not in ("pretty", "tsv", "json"):
        typer.echo(f"Error: Invalid format '{output_format}'.", err=True)
        raise typer.Exit(1)
    fmt = OutputFormat(output_format)
    configure_logging(verbose)

    try:
        data = load_bundle(bundle)
        config = AnalysisConfig(
            binsize=binsize,
            maxdis=maxdis,
            mindis=mindis,
            mincount=mincount,
            algorithm="naive" if naive else "fast",
            num_threads=threads,
            keep_jackknife_curves=jackknife_detail,
        ).validate()
        with stderr_console.status("Computing weighted LD..."):
            result = run_analysis(data.mixed, data.references, config, data.weights)
    except ConfigurationError as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(1)
    except OSError as e:
        typer.echo(f"Error: could not read {bundle}: {e}", err=True)
        raise typer.Exit(1)

    typer.echo(format_result(result, fmt))

    if raw_output:
        _write_raw_output(raw_output, result, jackknife_detail)

    if plot:
        from wldecay.io.plotting import create_decay_plot

        label = _primary_curve_label(result)
        if label is None:
            typer.echo("Could not generate plot: no curve was computed", err=True)
        else:
            try:
                create_decay_plot(result.curves[label], result.fits[label].canonical, plot)
                typer.echo(f"Decay plot saved to {plot}", err=True)
            except ValueError as e:
                typer.echo(f"Could not generate plot: {e}", err=True)


@app.command()
def simulate(
    output: Annotated[
        Path,
        typer.Argument(help="Output bundle path (.npz)"),
    ],
    n_mixed: Annotated[
        int,
        typer.Option("--mixed", min=2, help="Individuals in the admixed population"),
    ] = 200,
    n_ref: Annotated[
        int,
        typer.Option("--ref-size", min=2, help="Individuals per reference panel"),
    ] = 50,
    references: Annotated[
        int,
        typer.Option("--references", "-r", min=0, help="Number of reference panels"),
    ] = 2,
    chromosomes: Annotated[
        int,
        typer.Option("--chromosomes", "-c", min=1, help="Number of chromosomes"),
    ] = 4,
    length: Annotated[
        float,
        typer.Option("--length", help="Chromosome length (cM)"),
    ] = 100.0,
    spacing: Annotated[
        float,
        typer.Option("--spacing", help="Marker spacing (cM)"),
    ] = 0.2,
    generations: Annotated[
        float,
        typer.Option("--generations", "-g", help="Generations since admixture"),
    ] = 10.0,
    mixture: Annotated[
        float,
        typer.Option("--mixture", min=0.0, max=1.0, help="Ancestry share of the first source"),
    ] = 0.3,
    fst: Annotated[
        float,
        typer.Option("--fst", min=0.001, max=0.999, help="Drift of each source population"),
    ] = 0.2,
    missing: Annotated[
        float,
        typer.Option("--missing", min=0.0, max=0.9, help="Fraction of missing calls"),
    ] = 0.0,
    unlinked: Annotated[
        bool,
        typer.Option("--unlinked", help="Simulate an unadmixed population without LD"),
    ] = False,
    seed: Annotated[
        Optional[int],
        typer.Option("--seed", help="Random seed"),
    ] = None,
) -> None:
    """Write a synthetic bundle with a known admixture date."""
    from wldecay.sim import simulate_admixture, simulate_unlinked

    try:
        if unlinked:
            sim = simulate_unlinked(
                n_mixed=n_mixed,
                n_ref=n_ref,
                n_chromosomes=chromosomes,
                chromosome_length_cm=length,
                marker_spacing_cm=spacing,
                fst=fst,
                n_references=references,
                missing_rate=missing,
                seed=seed,
            )
        else:
            sim = simulate_admixture(
                n_mixed=n_mixed,
                n_ref=n_ref,
                n_chromosomes=chromosomes,
                chromosome_length_cm=length,
                marker_spacing_cm=spacing,
                generations=generations,
                mixture_fraction=mixture,
                fst=fst,
                n_references=references,
                missing_rate=missing,
                seed=seed,
            )
        save_bundle(output, sim.mixed, sim.references)
    except ConfigurationError as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(1)

    typer.echo(
        f"Wrote {sim.mixed.n_individuals} mixed individuals, {len(sim.references)} "
        f"reference panel(s), {sim.mixed.n_markers} markers to {output}",
        err=True,
    )


@app.command()
def info(
    bundle: Annotated[
        Path,
        typer.Argument(help="Genotype bundle (.npz)"),
    ],
) -> None:
    """Summarise the populations and markers in a bundle."""
    try:
        data = load_bundle(bundle)
    except ConfigurationError as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(1)
    except OSError as e:
        typer.echo(f"Error: could not read {bundle}: {e}", err=True)
        raise typer.Exit(1)

    console = Console()
    table = Table(title=f"{bundle.name}")
    table.add_column("population")
    table.add_column("role")
    table.add_column("individuals", justify="right")
    table.add_column("missing", justify="right")
    populations = [(data.mixed, "mixed")] + [(ref, "reference") for ref in data.references]
    for store, role in populations:
        missing = float(store.missing_mask().mean()) if store.genotypes.size else 0.0
        table.add_row(store.name, role, str(store.n_individuals), f"{missing:.2%}")
    console.print(table)

    markers = data.markers
    console.print(
        f"{markers.n_markers} markers on {len(markers.chromosome_ids)} chromosome(s)"
    )
    if data.weights is not None:
        console.print("external weights: yes")


if __name__ == "__main__":
    app()
