from __future__ import annotations

import logging
from pathlib import Path
from typing import Sequence

import matplotlib.pyplot as plt
import numpy as np
import pandas as pd
import seaborn as sns

from .collector import Measurement, build_dataframe

LOGGER = logging.getLogger("bookbench.benchmark.charts")

sns.set_style("whitegrid")
plt.rcParams["figure.dpi"] = 100
plt.rcParams["savefig.dpi"] = 300
plt.rcParams["font.size"] = 10
plt.rcParams["axes.labelsize"] = 11
plt.rcParams["axes.titlesize"] = 13
plt.rcParams["legend.fontsize"] = 9

QUERY_COLORS = ["#2E86AB", "#F18F01", "#A23B72", "#6A994E", "#C73E1D"]
SCAN_COLORS = {"docs_examined": "#2E86AB", "keys_examined": "#F18F01"}


def render_measurement_charts(
    measurements: Sequence[Measurement],
    output_dir: Path,
    timestamp: str,
) -> list[Path]:
    """Render latency and scan-volume charts for a finished run."""
    df = build_dataframe(measurements)
    if df.empty:
        LOGGER.warning("No measurements available for charts")
        return []

    output_dir.mkdir(parents=True, exist_ok=True)
    latency_path = output_dir / f"query_latency_{timestamp}.png"
    scan_path = output_dir / f"query_scan_{timestamp}.png"

    _render_latency_chart(df, latency_path)
    LOGGER.info("Rendering chart %s", latency_path)
    _render_scan_chart(df, scan_path)
    LOGGER.info("Rendering chart %s", scan_path)
    return [latency_path, scan_path]


def _render_latency_chart(df: pd.DataFrame, chart_path: Path) -> None:
    """Execution time against dataset size, one line per query."""
    fig, ax = plt.subplots(figsize=(10, 6))

    labels = list(dict.fromkeys(df["query_label"]))
    for idx, label in enumerate(labels):
        subset = df[df["query_label"] == label].sort_values("dataset_size")
        ax.plot(
            subset["dataset_size"],
            subset["execution_time_ms"],
            marker="o",
            linewidth=2.5,
            markersize=8,
            color=QUERY_COLORS[idx % len(QUERY_COLORS)],
            label=label,
        )

    if df["dataset_size"].nunique() > 1:
        ax.set_xscale("log")
    ax.set_xlabel("Dataset size (resources)", fontweight="semibold")
    ax.set_ylabel("Execution time (ms)", fontweight="semibold")
    ax.set_title("Availability Query Latency vs Dataset Size", fontweight="bold", pad=15)
    ax.grid(True, alpha=0.3, linestyle="--")
    ax.legend(loc="upper left", frameon=True, fancybox=True, shadow=True)

    plt.tight_layout()
    fig.savefig(chart_path, bbox_inches="tight", facecolor="white")
    plt.close(fig)


def _render_scan_chart(df: pd.DataFrame, chart_path: Path) -> None:
    """Documents vs index keys examined per dataset size and query."""
    fig, ax = plt.subplots(figsize=(12, 6))

    scans = df[["dataset_size", "query_label", "docs_examined", "keys_examined"]].copy()
    scans[["docs_examined", "keys_examined"]] = (
        scans[["docs_examined", "keys_examined"]].astype(float).fillna(0.0)
    )
    group_labels = [
        f"{size:,}\n{label}" for size, label in zip(scans["dataset_size"], scans["query_label"])
    ]
    positions = np.arange(len(scans))
    width = 0.38

    for offset, column, title in (
        (-width / 2, "docs_examined", "Documents examined"),
        (width / 2, "keys_examined", "Keys examined"),
    ):
        ax.bar(
            positions + offset,
            scans[column],
            width=width,
            label=title,
            color=SCAN_COLORS[column],
            alpha=0.8,
            edgecolor="white",
            linewidth=1.5,
        )

    ax.set_xticks(positions)
    ax.set_xticklabels(group_labels, fontsize=8)
    ax.set_ylabel("Count", fontweight="semibold")
    ax.set_title("Plan Statistics per Dataset Step", fontweight="bold", pad=15)
    ax.legend(loc="upper left", frameon=True, fancybox=True, shadow=True)
    ax.grid(True, alpha=0.3, axis="y", linestyle="--")

    plt.tight_layout()
    fig.savefig(chart_path, bbox_inches="tight", facecolor="white")
    plt.close(fig)
