from __future__ import annotations

import logging
from pathlib import Path

import matplotlib.pyplot as plt
import pandas as pd
import seaborn as sns

LOGGER = logging.getLogger("perftester.benchmark.charts")

sns.set_style("whitegrid")
plt.rcParams["figure.dpi"] = 100
plt.rcParams["savefig.dpi"] = 150
plt.rcParams["font.size"] = 10
plt.rcParams["axes.labelsize"] = 11
plt.rcParams["axes.titlesize"] = 13

STATUS_COLORS = {
    "ok": "#2E86AB",  # Blue
    "failed": "#C73E1D",  # Red
}


def render_duration_chart(
    df: pd.DataFrame,
    output_dir: Path,
    title: str = "Scenario Durations",
    filename: str = "durations.png",
) -> Path | None:
    """Render a bar chart of elapsed time per timed scenario."""
    if df.empty or "elapsed_ms" not in df.columns:
        LOGGER.warning("No timing data available for duration chart")
        return None

    timed = df[df["elapsed_ms"].notna()].copy()
    if timed.empty:
        LOGGER.warning("No timed scenarios to chart")
        return None

    chart_path = output_dir / filename
    timed["elapsed_ms"] = timed["elapsed_ms"].astype(float)
    colors = [STATUS_COLORS[status] for status in timed["status"]]

    fig, ax = plt.subplots(figsize=(max(6, len(timed) * 1.2), 5))
    bars = ax.bar(
        timed["name"],
        timed["elapsed_ms"],
        color=colors,
        alpha=0.85,
        edgecolor="white",
        linewidth=2,
    )
    ax.set_ylabel("Elapsed (ms)", fontweight="semibold")
    ax.set_title(title, fontweight="bold", pad=15)
    ax.grid(True, alpha=0.3, axis="y", linestyle="--")
    ax.tick_params(axis="x", rotation=30)

    for bar in bars:
        height = bar.get_height()
        ax.text(
            bar.get_x() + bar.get_width() / 2.0,
            height,
            f"{height:.1f}",
            ha="center",
            va="bottom",
            fontweight="semibold",
        )

    plt.tight_layout()
    fig.savefig(chart_path, bbox_inches="tight", facecolor="white")
    plt.close(fig)
    LOGGER.info("Rendering chart %s", chart_path)
    return chart_path


__all__ = ["render_duration_chart"]
