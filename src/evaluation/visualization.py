"""Visualization utilities for simulation runs and defense comparisons.

Per-round plots (client projection, metric history, importance vector)
read RoundState objects directly. Comparison utilities take the result
rows written by ``experiments/scripts/defense_comparison.py``.
"""

from pathlib import Path
from typing import Dict, List, Optional, Sequence, Tuple

import matplotlib.pyplot as plt
import numpy as np
import pandas as pd
from loguru import logger
from scipy import stats

from src.robustness.importance import NUM_TRIGGER_COORDINATES
from .round_report import project_clients

# Color scheme for client roles
CLIENT_COLORS = {
    "benign": "#4CAF50",  # Green
    "malicious": "#F44336",  # Red
}

METRIC_COLORS = {
    "acc": "#2196F3",  # Blue
    "asr": "#FF9800",  # Orange
}

BASELINE_DEFENSE = "none"


def plot_client_projection(
    clients: Sequence,
    output_path: Optional[str] = None,
    figsize: Tuple[int, int] = (8, 8),
    title: Optional[str] = None,
) -> plt.Figure:
    """Scatter plot of one round's clients in the 2D projection.

    Filled markers are accepted updates, hollow markers rejected ones.

    Args:
        clients: Processed clients of one round.
        output_path: Optional path to save the figure.
        figsize: Figure size in inches.
        title: Optional plot title.

    Returns:
        Matplotlib figure object.
    """
    fig, ax = plt.subplots(figsize=figsize)
    records = project_clients(clients)

    for client_type, color in CLIENT_COLORS.items():
        for accepted in (True, False):
            points = [
                r for r in records
                if r["type"] == client_type and r["accepted"] == accepted
            ]
            if not points:
                continue
            status = "accepted" if accepted else "rejected"
            ax.scatter(
                [p["x"] for p in points],
                [p["y"] for p in points],
                s=60,
                label=f"{client_type} ({status})",
                facecolors=color if accepted else "none",
                edgecolors=color,
                linewidths=1.5,
            )

    ax.set_xlabel("g[0] + 0.5 g[2]", fontsize=12)
    ax.set_ylabel("g[1] + 0.5 g[3]", fontsize=12)
    ax.set_title(title or "Client Gradient Projection", fontsize=14)
    ax.legend(loc="best", fontsize=10)
    ax.grid(True, alpha=0.3)

    plt.tight_layout()

    if output_path:
        fig.savefig(output_path, dpi=150, bbox_inches="tight")
        logger.info(f"Saved plot to {output_path}")

    return fig


def plot_metric_history(
    history: Sequence,
    output_path: Optional[str] = None,
    figsize: Tuple[int, int] = (10, 6),
) -> plt.Figure:
    """Plot global accuracy and backdoor success rate over rounds.

    Args:
        history: HistoryEntry objects, oldest first.
        output_path: Optional path to save the figure.
        figsize: Figure size in inches.

    Returns:
        Matplotlib figure object.
    """
    fig, ax = plt.subplots(figsize=figsize)

    rounds = [entry.round for entry in history]
    ax.plot(
        rounds, [entry.acc for entry in history], "-",
        label="Global accuracy", color=METRIC_COLORS["acc"], linewidth=2,
    )
    ax.plot(
        rounds, [entry.asr for entry in history], "-",
        label="Backdoor success rate", color=METRIC_COLORS["asr"], linewidth=2,
    )

    ax.set_xlabel("Round", fontsize=12)
    ax.set_ylabel("Rate", fontsize=12)
    ax.set_title("Global Metrics per Round", fontsize=14)
    ax.set_ylim(0, 1.05)
    ax.legend(loc="center right", fontsize=10)
    ax.grid(True, alpha=0.3)

    plt.tight_layout()

    if output_path:
        fig.savefig(output_path, dpi=150, bbox_inches="tight")
        logger.info(f"Saved plot to {output_path}")

    return fig


def plot_importance_vector(
    importance: np.ndarray,
    output_path: Optional[str] = None,
    figsize: Tuple[int, int] = (10, 5),
) -> plt.Figure:
    """Bar chart of the importance vector, trigger coordinates highlighted."""
    fig, ax = plt.subplots(figsize=figsize)

    x = np.arange(len(importance))
    colors = [
        CLIENT_COLORS["malicious"] if i < NUM_TRIGGER_COORDINATES else "#9E9E9E"
        for i in x
    ]
    ax.bar(x, importance, color=colors, alpha=0.8)

    ax.set_xlabel("Coordinate", fontsize=12)
    ax.set_ylabel("Importance", fontsize=12)
    ax.set_title("Momentum FIM Importance", fontsize=14)
    ax.set_xticks(x)
    ax.grid(True, alpha=0.3, axis="y")

    plt.tight_layout()

    if output_path:
        fig.savefig(output_path, dpi=150, bbox_inches="tight")
        logger.info(f"Saved plot to {output_path}")

    return fig


def create_defense_table(
    results: List[Dict],
    metric: str = "malicious_acceptance",
    output_path: Optional[str] = None,
) -> pd.DataFrame:
    """Pivot comparison results into a defenses x stealth table.

    Args:
        results: Result rows with ``defenses``, ``attack_stealth`` and
            the metric column.
        metric: Column to tabulate.
        output_path: Optional path to save as CSV.

    Returns:
        DataFrame indexed by defense label, one column per stealth level.
    """
    df = pd.DataFrame(results)
    if metric not in df.columns:
        raise ValueError(f"Unknown metric '{metric}'")

    table = df.pivot_table(
        index="defenses",
        columns="attack_stealth",
        values=metric,
        aggfunc="mean",
    )

    if output_path:
        table.to_csv(output_path)
        logger.info(f"Saved defense table to {output_path}")

    return table


def plot_defense_comparison(
    results: List[Dict],
    metric: str = "final_asr",
    output_path: Optional[str] = None,
    figsize: Tuple[int, int] = (14, 6),
) -> plt.Figure:
    """Grouped bar chart of one metric per defense and stealth level.

    Args:
        results: Result rows from the defense comparison.
        metric: Column to plot.
        output_path: Optional path to save the figure.
        figsize: Figure size in inches.

    Returns:
        Matplotlib figure object.
    """
    table = create_defense_table(results, metric)
    fig, ax = plt.subplots(figsize=figsize)

    defenses = list(table.index)
    stealth_levels = list(table.columns)
    x = np.arange(len(defenses))
    width = 0.8 / max(len(stealth_levels), 1)

    for i, stealth in enumerate(stealth_levels):
        offset = (i - len(stealth_levels) / 2 + 0.5) * width
        ax.bar(x + offset, table[stealth].values, width, label=f"stealth={stealth}", alpha=0.8)

    ax.set_xlabel("Defenses", fontsize=12)
    ax.set_ylabel(metric, fontsize=12)
    ax.set_title(f"Defense Comparison: {metric}", fontsize=14)
    ax.set_xticks(x)
    ax.set_xticklabels([d.replace("+", "\n") for d in defenses], fontsize=9)
    ax.legend(loc="upper right", fontsize=10)
    ax.set_ylim(0, 1.05)
    ax.grid(True, alpha=0.3, axis="y")

    plt.tight_layout()

    if output_path:
        fig.savefig(output_path, dpi=150, bbox_inches="tight")
        logger.info(f"Saved plot to {output_path}")

    return fig


def compute_statistical_analysis(
    run_results: List[Dict],
    metric: str = "malicious_acceptance",
) -> Dict:
    """Compare every defense against the undefended baseline.

    Runs are paired by seed within each stealth level.

    Args:
        run_results: Per-run rows with ``defenses``, ``attack_stealth``,
            ``seed`` and the metric column.
        metric: Column to compare.

    Returns:
        Dictionary with descriptive statistics and paired comparisons.
    """
    df = pd.DataFrame(run_results)
    analysis = {"metric": metric, "descriptive": {}, "comparisons": {}}

    for (stealth, defenses), group in df.groupby(["attack_stealth", "defenses"]):
        values = group[metric].to_numpy()
        analysis["descriptive"][f"{defenses}@{stealth}"] = {
            "mean": float(np.mean(values)),
            "std": float(np.std(values)),
            "n": len(values),
        }

    for stealth, stealth_df in df.groupby("attack_stealth"):
        baseline = stealth_df[stealth_df["defenses"] == BASELINE_DEFENSE]
        if baseline.empty:
            continue
        baseline = baseline.set_index("seed")[metric]

        for defenses, group in stealth_df.groupby("defenses"):
            if defenses == BASELINE_DEFENSE:
                continue
            paired = pd.concat(
                [group.set_index("seed")[metric], baseline],
                axis=1,
                join="inner",
                keys=["defended", "baseline"],
            )
            if len(paired) < 2:
                continue

            diff = paired["defended"] - paired["baseline"]
            comparison = {
                "mean_diff": float(diff.mean()),
                "n": len(paired),
                "paired_t_test": None,
            }
            if diff.std() > 0:
                t_stat, t_pval = stats.ttest_rel(paired["defended"], paired["baseline"])
                comparison["paired_t_test"] = {
                    "statistic": float(t_stat),
                    "p_value": float(t_pval),
                }
            analysis["comparisons"][f"{defenses}_vs_{BASELINE_DEFENSE}@{stealth}"] = comparison

    return analysis


def create_simulation_report(state, output_dir: str) -> Dict[str, str]:
    """Save projection, history and importance plots for one state.

    Args:
        state: RoundState to plot.
        output_dir: Directory to save all outputs.

    Returns:
        Dictionary mapping artifact name to file path.
    """
    output_dir = Path(output_dir)
    output_dir.mkdir(parents=True, exist_ok=True)

    artifacts = {
        "projection": str(output_dir / "client_projection.png"),
        "history": str(output_dir / "metric_history.png"),
        "importance": str(output_dir / "importance_vector.png"),
    }

    figures = [
        plot_client_projection(
            state.clients, artifacts["projection"], title=f"Round {state.round}"
        ),
        plot_metric_history(state.history, artifacts["history"]),
        plot_importance_vector(state.importance_vector, artifacts["importance"]),
    ]
    for fig in figures:
        plt.close(fig)

    return artifacts
