"""Charts and tables for Monte Carlo results.

Figures are built through the object-oriented matplotlib API so that no
interactive backend is needed; this keeps plotting usable from worker
threads and headless command-line runs.
"""

from __future__ import annotations

from pathlib import Path
from typing import Union

import pandas as pd
import seaborn as sns
from matplotlib.figure import Figure

from twinsim.logging import get_logger
from twinsim.results.results import MonteCarloResult

logger = get_logger(__name__)


def percentile_table(result: MonteCarloResult) -> pd.DataFrame:
    """Impact and expected-loss statistics as a two-column table."""
    stats = result.statistics
    if not stats:
        raise ValueError("Monte Carlo statistics have not been calculated yet")
    return pd.DataFrame(
        {"impact": stats["impact"], "expected_loss": stats["expected_loss"]}
    )


def plot_impact_distribution(
    result: MonteCarloResult, output_path: Union[str, Path], bins: int = 20
) -> Path:
    """Write a histogram of per-iteration impact scores.

    Percentile markers are drawn for every precomputed percentile.

    Returns:
        The path the image was written to.
    """
    frame = result.to_dataframe()
    if frame.empty:
        raise ValueError("Monte Carlo result has no iterations to plot")

    figure = Figure(figsize=(8.0, 5.0))
    ax = figure.add_subplot()
    sns.histplot(data=frame, x="impact_score", bins=bins, color="steelblue", ax=ax)

    for key, value in result.statistics.get("impact", {}).items():
        if key.startswith("p"):
            ax.axvline(value, linestyle=":", linewidth=1.0, color="darkred")
            ax.annotate(
                key.upper(),
                xy=(value, 1.0),
                xycoords=("data", "axes fraction"),
                rotation=90,
                va="top",
                fontsize=8,
            )

    ax.set_xlabel("Impact score")
    ax.set_ylabel("Iterations")
    ax.set_title(f"Impact distribution - {result.scenario_name or result.simulation_id}")
    ax.grid(True, linestyle=":", linewidth=0.5)

    path = Path(output_path)
    figure.savefig(path, dpi=150, bbox_inches="tight")
    logger.info("Wrote impact distribution for %s to %s", result.simulation_id, path)
    return path
