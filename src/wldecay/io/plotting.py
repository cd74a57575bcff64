"""Plotting functions for weighted LD curves."""

from __future__ import annotations

from pathlib import Path
from typing import TYPE_CHECKING

import numpy as np

if TYPE_CHECKING:
    from wldecay.analysis.correlation import WeightedLDCurve
    from wldecay.analysis.fitting import ExponentialFit


def create_decay_plot(
    curve: WeightedLDCurve,
    fit: ExponentialFit | None,
    output_path: Path,
    title: str | None = None,
) -> None:
    """Plot a weighted LD curve with its exponential fit.

    Shows the eligible bins as points, the fitted A·exp(-λd) + c over the fit
    window, and a vertical line at the fit start.

    Args:
        curve: Weighted LD curve
        fit: Fit to overlay, or None to plot the data only
        output_path: Path to save the plot (PNG, PDF, or SVG)
        title: Plot title; defaults to the curve label
    """
    import matplotlib.pyplot as plt
    import seaborn as sns

    sns.set_theme(style="darkgrid")

    mask = curve.eligible
    if not np.any(mask):
        raise ValueError("Curve has no eligible bins to plot")

    fig, ax = plt.subplots(figsize=(10, 6))

    ax.scatter(
        curve.distances[mask],
        curve.values[mask],
        c="#2c3e50",
        alpha=0.7,
        edgecolors="white",
        linewidth=0.3,
        s=18,
        zorder=3,
        label="Weighted LD",
    )

    if fit is not None:
        x_fit = np.linspace(fit.start, fit.end, 300)
        generations, gen_se = fit.date()
        ax.plot(
            x_fit,
            fit.predict(x_fit),
            color="#e74c3c",
            linewidth=2,
            zorder=4,
            label=f"Fit: A·e$^{{-λd}}$ + c ({generations:.1f} ± {gen_se:.1f} gen)",
        )
        ax.axvline(
            x=fit.start,
            color="#7f8c8d",
            linestyle="--",
            linewidth=1.5,
            label=f"Fit start ({fit.start:.2f} cM)",
        )
        ax.axhline(y=fit.baseline, color="#95a5a6", linestyle=":", linewidth=1)

    ax.set_xlabel("Genetic distance (cM)", fontsize=12)
    ax.set_ylabel("Weighted LD", fontsize=12)
    ax.set_title(title or curve.label or "Weighted LD decay", fontsize=14, fontweight="bold")
    ax.set_xlim(0, float(curve.distances[mask].max()) * 1.02)
    ax.legend(loc="upper right", framealpha=0.9)

    plt.tight_layout()
    plt.savefig(output_path, dpi=150, bbox_inches="tight")
    plt.close(fig)
