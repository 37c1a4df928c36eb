"""Evaluation module: per-round reporting and plots for the simulation."""

from .round_report import (
    project_gradient,
    project_clients,
    compute_detection_metrics,
    summarize_round,
)
from .visualization import (
    plot_client_projection,
    plot_metric_history,
    plot_importance_vector,
    create_defense_table,
    plot_defense_comparison,
    compute_statistical_analysis,
    create_simulation_report,
)

__all__ = [
    "project_gradient",
    "project_clients",
    "compute_detection_metrics",
    "summarize_round",
    "plot_client_projection",
    "plot_metric_history",
    "plot_importance_vector",
    "create_defense_table",
    "plot_defense_comparison",
    "compute_statistical_analysis",
    "create_simulation_report",
]
