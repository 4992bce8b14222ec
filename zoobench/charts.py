from __future__ import annotations

import logging
from pathlib import Path

import matplotlib.pyplot as plt
import pandas as pd
import seaborn as sns

from .collector import AggregateStats

LOGGER = logging.getLogger("zoobench.charts")

sns.set_style("whitegrid")
plt.rcParams["figure.dpi"] = 100
plt.rcParams["savefig.dpi"] = 150
plt.rcParams["font.size"] = 10
plt.rcParams["axes.labelsize"] = 11
plt.rcParams["axes.titlesize"] = 13

PHASE_COLORS = {
    "create": "#2E86AB",
    "read": "#F18F01",
}

LATENCY_CHART = "latency_distribution.png"
THROUGHPUT_CHART = "throughput.png"


def render_charts(results: dict[str, AggregateStats], output_dir: Path) -> list[Path]:
    """Render the latency and throughput charts for every finished phase."""
    output_dir.mkdir(parents=True, exist_ok=True)
    charts: list[Path] = []

    latency_path = _render_latency_chart(results, output_dir / LATENCY_CHART)
    if latency_path is not None:
        charts.append(latency_path)
    charts.append(_render_throughput_chart(results, output_dir / THROUGHPUT_CHART))

    for chart in charts:
        LOGGER.info("Rendering chart %s", chart)
    return charts


def _render_latency_chart(results: dict[str, AggregateStats], chart_path: Path) -> Path | None:
    frames = []
    for phase, stats in results.items():
        samples = stats.samples
        if samples.empty:
            continue
        frame = pd.DataFrame(
            {
                "phase": phase,
                "latency_ms": samples["duration_ns"].astype("float64") / 1e6,
                "outcome": samples["error"].isna().map({True: "success", False: "failure"}),
            }
        )
        frames.append(frame)

    if not frames:
        LOGGER.warning("No latency data available for latency chart")
        return None

    df = pd.concat(frames, ignore_index=True)
    phase_order = [phase for phase in results if phase in set(df["phase"])]

    fig, (hist_ax, box_ax) = plt.subplots(1, 2, figsize=(14, 6))

    sns.histplot(
        data=df,
        x="latency_ms",
        hue="phase",
        hue_order=phase_order,
        palette=[PHASE_COLORS.get(phase, "#808080") for phase in phase_order],
        element="step",
        stat="density",
        common_norm=False,
        bins=50,
        ax=hist_ax,
    )
    hist_ax.set_xlabel("Latency (ms)", fontweight="semibold")
    hist_ax.set_ylabel("Density", fontweight="semibold")
    hist_ax.set_title("Operation Latency Distribution", fontweight="bold", pad=15)
    hist_ax.set_xlim(left=0)

    sns.boxplot(
        data=df,
        x="phase",
        y="latency_ms",
        hue="outcome",
        order=phase_order,
        hue_order=[o for o in ("success", "failure") if o in set(df["outcome"])],
        palette={"success": "#6A994E", "failure": "#C73E1D"},
        ax=box_ax,
        linewidth=1.5,
        width=0.6,
    )
    box_ax.set_xlabel("Phase", fontweight="semibold")
    box_ax.set_ylabel("Latency (ms)", fontweight="semibold")
    box_ax.set_title("Latency by Phase & Outcome", fontweight="bold", pad=15)
    box_ax.set_ylim(bottom=0)
    box_ax.spines["top"].set_visible(False)
    box_ax.spines["right"].set_visible(False)

    plt.tight_layout()
    fig.savefig(chart_path, bbox_inches="tight", facecolor="white", edgecolor="none")
    plt.close(fig)
    return chart_path


def _render_throughput_chart(results: dict[str, AggregateStats], chart_path: Path) -> Path:
    fig, ax = plt.subplots(figsize=(8, 6))

    labels = list(results.keys())
    values = [stats.throughput for stats in results.values()]

    bars = ax.bar(
        [label.title() for label in labels],
        values,
        color=[PHASE_COLORS.get(label, "#808080") for label in labels],
        alpha=0.8,
        edgecolor="white",
        linewidth=2,
    )
    ax.set_ylabel("Throughput (successful ops/s)", fontweight="semibold")
    ax.set_title("Throughput per Phase", fontweight="bold", pad=15)
    ax.grid(True, alpha=0.3, axis="y", linestyle="--")

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
    return chart_path
