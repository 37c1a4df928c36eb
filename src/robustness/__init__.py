"""Robustness module for backdoor-resilient federated learning.

This module provides mechanisms to defend against backdoor clients in
federated learning, including:
- Momentum-filtered parameter importance (simulated Fisher information)
- Stiffness-conflict and importance-weighted clustering detection
- Backdoor attack simulation for evaluation
- Smoothed accuracy / attack-success-rate aggregation
"""

from .config import DefenseConfig
from .importance import (
    NUM_TRIGGER_COORDINATES,
    MomentumImportanceEstimator,
    ideal_importance,
    initial_importance,
)
from .attacks import BackdoorAttack
from .client_scoring import (
    ClientScore,
    DetectionContext,
    DetectionMechanism,
    StiffnessConflictDetector,
    WeightedClusteringDetector,
    MagnitudeDetector,
    DefenseStage,
    DefensePipeline,
    build_defense_stages,
)
from .aggregators import (
    AcceptanceStats,
    HistoryEntry,
    SmoothedMetricsAggregator,
    append_history,
    compute_acceptance_stats,
)

__all__ = [
    "DefenseConfig",
    "NUM_TRIGGER_COORDINATES",
    "MomentumImportanceEstimator",
    "ideal_importance",
    "initial_importance",
    "BackdoorAttack",
    "ClientScore",
    "DetectionContext",
    "DetectionMechanism",
    "StiffnessConflictDetector",
    "WeightedClusteringDetector",
    "MagnitudeDetector",
    "DefenseStage",
    "DefensePipeline",
    "build_defense_stages",
    "AcceptanceStats",
    "HistoryEntry",
    "SmoothedMetricsAggregator",
    "append_history",
    "compute_acceptance_stats",
]
