"""
Plotting for decoding-accuracy models
=====================================

Figures used while working through the model ladder:

    +----------------------------------+-------------------------------+
    | Content                          | Function                      |
    +----------------------------------+-------------------------------+
    | Raw accuracy per region × class  | plot_observed_accuracy()      |
    | Posterior intervals per region   | plot_region_intervals()       |
    | MCMC traces                      | plot_trace()                  |
    | LOO model comparison             | plot_comparison()             |
    +----------------------------------+-------------------------------+

Design Principles:
    - Dark theme shared by every figure
    - One function per plot, each returns the saved path
    - ``matplotlib.use("Agg")`` so plots render on headless machines
    - Regions always appear in anatomical (vocabulary) order
"""

from __future__ import annotations

from pathlib import Path
from typing import Any, Dict, Optional, Sequence

import matplotlib
matplotlib.use("Agg")

import arviz as az
import matplotlib.pyplot as plt
import numpy as np
import pandas as pd

from decoding_bayes.data.regions import CLASSES, REGIONS
from decoding_bayes.eval.predictions import observed_accuracy
from decoding_bayes.utils.logging import get_logger

logger = get_logger(__name__)

STYLE: Dict[str, Any] = {
    "figure.facecolor":  "#0e1117",
    "axes.facecolor":    "#161b22",
    "axes.edgecolor":    "#30363d",
    "axes.labelcolor":   "#c9d1d9",
    "text.color":        "#c9d1d9",
    "xtick.color":       "#8b949e",
    "ytick.color":       "#8b949e",
    "grid.color":        "#21262d",
    "grid.alpha":        0.6,
    "lines.linewidth":   1.8,
    "font.family":       "monospace",
    "savefig.dpi":       200,
    "savefig.facecolor": "#0e1117",
    "savefig.bbox":      "tight",
}

ACCENT = "#58a6ff"
CLASS_COLORS = {
    "feature1": "#58a6ff",
    "feature2": "#ffa657",
    "object":   "#7ee787",
}


def _apply_style() -> None:
    plt.rcParams.update(STYLE)


def _ensure_dir(save_dir: str | Path) -> Path:
    d = Path(save_dir)
    d.mkdir(parents=True, exist_ok=True)
    return d


def _save(fig: plt.Figure, save_dir: Path, filename: str) -> str:
    path = str(save_dir / filename)
    fig.savefig(path)
    plt.close(fig)
    logger.info("plot_saved | path=%s", path)
    return path


def _region_positions(regions: Sequence[str]) -> tuple[list[str], dict[str, int]]:
    present = set(map(str, regions))
    ordered = [r for r in REGIONS if r in present]
    return ordered, {r: i for i, r in enumerate(ordered)}


def _class_offsets(classes: Sequence[str], width: float = 0.6) -> dict[str, float]:
    if len(classes) == 1:
        return {classes[0]: 0.0}
    steps = np.linspace(-width / 2, width / 2, len(classes))
    return dict(zip(classes, steps))


def plot_region_intervals(
    summary: pd.DataFrame,
    save_dir: str | Path,
    observed: Optional[pd.DataFrame] = None,
    chance: Optional[float] = None,
    title: str = "Posterior accuracy by region",
    ylabel: str = "P(correct)",
    filename: str = "region_intervals.png",
) -> str:
    """
    Point-range plot of ``get_predictions`` output, one column per region.

    Args:
        summary:  Output of ``get_predictions`` grouped by ``region`` and
                  optionally ``class``.
        save_dir: Output directory.
        observed: Optional ``observed_accuracy`` table, drawn as crosses.
        chance:   Optional chance level, drawn as a dashed line.
        title:    Plot title.
        ylabel:   Y-axis label.
        filename: Output filename.

    Returns:
        Path to the saved figure.
    """
    if "region" not in summary.columns:
        raise ValueError("summary must be grouped by 'region'")

    _apply_style()
    save_dir = _ensure_dir(save_dir)

    regions, xpos = _region_positions(summary["region"])
    has_class = "class" in summary.columns
    classes = [c for c in CLASSES if has_class and c in set(summary["class"].astype(str))] or ["all"]
    offsets = _class_offsets(classes)

    fig, ax = plt.subplots(figsize=(max(8, len(regions) * 0.5), 5))

    for cls in classes:
        sub = summary[summary["class"].astype(str) == cls] if has_class else summary
        x = np.array([xpos[str(r)] for r in sub["region"]]) + offsets[cls]
        color = CLASS_COLORS.get(cls, ACCENT)
        ax.vlines(x, sub["ymin"], sub["ymax"], color=color, linewidth=1.6, alpha=0.9)
        ax.scatter(x, sub["estimate"], color=color, s=18, zorder=3, label=cls)

        if observed is not None:
            obs = observed[observed["class"].astype(str) == cls] if has_class else observed
            obs = obs[obs["region"].astype(str).isin(xpos)]
            ox = np.array([xpos[str(r)] for r in obs["region"]]) + offsets[cls]
            ax.scatter(ox, obs["accuracy"], color=color, marker="x", s=22, alpha=0.7, zorder=4)

    if chance is not None:
        ax.axhline(chance, color="#8b949e", linestyle="--", linewidth=1.0)

    ax.set_xticks(range(len(regions)))
    ax.set_xticklabels(regions, rotation=60, ha="right", fontsize=9)
    ax.set_ylabel(ylabel, fontsize=12)
    ax.set_title(title, fontsize=13, pad=10)
    ax.grid(axis="y", alpha=0.3)
    if has_class:
        ax.legend(fontsize=9, loc="best", framealpha=0.3,
                  edgecolor="#30363d", facecolor="#161b22")

    return _save(fig, save_dir, filename)


def plot_observed_accuracy(
    observations: pd.DataFrame,
    save_dir: str | Path,
    chance: Optional[float] = None,
    title: str = "Observed decoding accuracy",
    filename: str = "observed_accuracy.png",
) -> str:
    """
    Raw proportion correct per region, one line per class.

    Args:
        observations: Long-format observation table.
        save_dir:     Output directory.
        chance:       Optional chance level.
        title:        Plot title.
        filename:     Output filename.

    Returns:
        Path to the saved figure.
    """
    _apply_style()
    save_dir = _ensure_dir(save_dir)

    acc = observed_accuracy(observations, ("region", "class"))
    regions, xpos = _region_positions(acc["region"])

    fig, ax = plt.subplots(figsize=(max(8, len(regions) * 0.5), 5))
    for cls in CLASSES:
        sub = acc[acc["class"].astype(str) == cls]
        if sub.empty:
            continue
        x = [xpos[str(r)] for r in sub["region"]]
        ax.plot(x, sub["accuracy"], marker="o", markersize=4,
                color=CLASS_COLORS[cls], label=cls)

    if chance is not None:
        ax.axhline(chance, color="#8b949e", linestyle="--", linewidth=1.0)

    ax.set_xticks(range(len(regions)))
    ax.set_xticklabels(regions, rotation=60, ha="right", fontsize=9)
    ax.set_ylabel("Proportion correct", fontsize=12)
    ax.set_title(title, fontsize=13, pad=10)
    ax.grid(axis="y", alpha=0.3)
    ax.legend(fontsize=9, loc="best", framealpha=0.3,
              edgecolor="#30363d", facecolor="#161b22")

    return _save(fig, save_dir, filename)


def plot_trace(
    idata: az.InferenceData,
    save_dir: str | Path,
    var_names: Optional[Sequence[str]] = None,
    filename: str = "trace.png",
) -> str:
    """ArviZ trace plot of population-level and SD parameters."""
    save_dir = _ensure_dir(save_dir)
    if var_names is None:
        var_names = [v for v in idata.posterior.data_vars
                     if v == "Intercept" or v.startswith(("b_", "sd_"))]
    axes = az.plot_trace(idata, var_names=list(var_names), compact=True)
    fig = np.asarray(axes).ravel()[0].figure
    fig.tight_layout()
    return _save(fig, save_dir, filename)


def plot_comparison(
    table: pd.DataFrame,
    save_dir: str | Path,
    filename: str = "model_comparison.png",
) -> str:
    """ArviZ comparison plot (elpd with SE, and difference to the best model)."""
    _apply_style()
    save_dir = _ensure_dir(save_dir)
    ax = az.plot_compare(table, insample_dev=False)
    return _save(ax.figure, save_dir, filename)
