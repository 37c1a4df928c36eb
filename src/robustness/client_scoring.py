"""Client scoring and backdoor detection for federated learning.

Detection mechanisms run in a fixed order. The first one that rejects a
client wins, and later mechanisms are skipped for that client.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence, Tuple

import numpy as np
from loguru import logger

from src.data.vector_math import magnitude
from .config import DefenseConfig


@dataclass
class ClientScore:
    """Score and metadata for a single client.

    Attributes:
        client_id: Identifier for the client.
        score: Stiffness-conflict score (0 if that mechanism did not run).
        is_outlier: Whether the client update is rejected.
        details: Per-mechanism scores and thresholds, plus ``rejected_by``.
    """

    client_id: int
    score: float
    is_outlier: bool
    details: Dict[str, Any] = field(default_factory=dict)


@dataclass
class DetectionContext:
    """Round-level inputs shared by every detection mechanism.

    Attributes:
        importance: This round's importance vector.
        true_direction: Reference benign gradient direction.
        non_iid_level: Heterogeneity level used to scale thresholds.
        momentum_fim: Whether the importance vector is momentum-estimated.
    """

    importance: np.ndarray
    true_direction: np.ndarray
    non_iid_level: float = 0.5
    momentum_fim: bool = True

    def __post_init__(self):
        if len(self.importance) != len(self.true_direction):
            raise ValueError(
                f"importance and true_direction lengths differ: "
                f"{len(self.importance)} vs {len(self.true_direction)}"
            )


class DetectionMechanism(ABC):
    """Base class for per-client detection mechanisms."""

    name: str = "mechanism"

    @abstractmethod
    def score(self, gradient: np.ndarray, context: DetectionContext) -> float:
        """Anomaly score of one gradient (higher = more suspicious)."""
        pass

    @abstractmethod
    def threshold(self, context: DetectionContext) -> float:
        """Score above which a gradient is rejected."""
        pass

    def evaluate(
        self, gradient: np.ndarray, context: DetectionContext
    ) -> Tuple[float, bool]:
        """Score a gradient and decide whether to reject it.

        Returns:
            Tuple of (score, rejected).
        """
        value = self.score(gradient, context)
        return value, value > self.threshold(context)

    def __repr__(self) -> str:
        return f"{type(self).__name__}()"


class StiffnessConflictDetector(DetectionMechanism):
    """Flag large importance-weighted magnitude on sensitive coordinates.

    ``score = sum(importance * |gradient|) / d``. The threshold grows
    with the non-IID level because benign dispersion grows with
    heterogeneity.

    Attributes:
        momentum_threshold: Base threshold when momentum FIM is enabled.
        static_threshold: Base threshold when it is disabled.
    """

    name = "stiffness_mask"

    def __init__(self, momentum_threshold: float = 12.0, static_threshold: float = 15.0):
        self.momentum_threshold = momentum_threshold
        self.static_threshold = static_threshold

    def score(self, gradient: np.ndarray, context: DetectionContext) -> float:
        weighted = np.sum(context.importance * np.abs(gradient))
        return float(weighted / len(gradient))

    def threshold(self, context: DetectionContext) -> float:
        base = self.momentum_threshold if context.momentum_fim else self.static_threshold
        return base * (1.0 + context.non_iid_level)

    def __repr__(self) -> str:
        return (
            f"StiffnessConflictDetector(momentum_threshold={self.momentum_threshold}, "
            f"static_threshold={self.static_threshold})"
        )


class WeightedClusteringDetector(DetectionMechanism):
    """Importance-weighted squared distance to the reference direction.

    Weighting by importance damps the noisy low-importance coordinates
    that dominate under high heterogeneity and amplifies deviation on
    the trigger coordinates.

    The threshold is scaled by ``(1 + non_iid_level)`` whether or not
    the distance is weighted.

    Attributes:
        base_threshold: Threshold at non-IID level 0.
        weighted: Use the importance vector as weights; uniform otherwise.
    """

    name = "layer_weighted_clustering"

    def __init__(self, base_threshold: float = 500.0, weighted: bool = True):
        self.base_threshold = base_threshold
        self.weighted = weighted

    def score(self, gradient: np.ndarray, context: DetectionContext) -> float:
        if self.weighted:
            weights = context.importance
        else:
            weights = np.ones_like(context.importance)
        diff = gradient - context.true_direction
        return float(np.sum(weights * diff * diff))

    def threshold(self, context: DetectionContext) -> float:
        return self.base_threshold * (1.0 + context.non_iid_level)

    def __repr__(self) -> str:
        return (
            f"WeightedClusteringDetector(base_threshold={self.base_threshold}, "
            f"weighted={self.weighted})"
        )


class MagnitudeDetector(DetectionMechanism):
    """Naive norm check used as the undefended baseline."""

    name = "magnitude"

    def __init__(self, max_norm: float = 25.0):
        self.max_norm = max_norm

    def score(self, gradient: np.ndarray, context: DetectionContext) -> float:
        return magnitude(gradient)

    def threshold(self, context: DetectionContext) -> float:
        return self.max_norm

    def __repr__(self) -> str:
        return f"MagnitudeDetector(max_norm={self.max_norm})"


@dataclass
class DefenseStage:
    """One entry of the ordered defense list."""

    mechanism: DetectionMechanism
    enabled: bool

    @property
    def name(self) -> str:
        return self.mechanism.name


def build_defense_stages(defense: DefenseConfig) -> List[DefenseStage]:
    """Build the ordered defense list for a configuration.

    The magnitude check is only enabled when both importance-based
    mechanisms are disabled.

    Args:
        defense: Defense toggles.

    Returns:
        Stages in evaluation order.
    """
    return [
        DefenseStage(StiffnessConflictDetector(), defense.stiffness_mask),
        DefenseStage(WeightedClusteringDetector(), defense.layer_weighted_clustering),
        DefenseStage(MagnitudeDetector(), defense.undefended),
    ]


class DefensePipeline:
    """Apply enabled detection mechanisms to client gradients in order.

    Attributes:
        stages: Ordered defense stages.
    """

    def __init__(self, stages: Sequence[DefenseStage]):
        """Initialize the pipeline.

        Args:
            stages: Defense stages in evaluation order.
        """
        self.stages = list(stages)

    @classmethod
    def from_config(cls, defense: DefenseConfig) -> "DefensePipeline":
        """Create a pipeline from defense toggles."""
        return cls(build_defense_stages(defense))

    @property
    def enabled_mechanisms(self) -> List[str]:
        return [stage.name for stage in self.stages if stage.enabled]

    def score_client(
        self,
        client_id: int,
        gradient: np.ndarray,
        context: DetectionContext,
    ) -> ClientScore:
        """Run the enabled mechanisms on one client.

        Args:
            client_id: Identifier for the client.
            gradient: Client gradient of shape [d].
            context: Round-level detection inputs.

        Returns:
            ClientScore for the client.
        """
        if len(gradient) != len(context.importance):
            raise ValueError(
                f"Gradient dimension {len(gradient)} does not match "
                f"importance dimension {len(context.importance)}"
            )

        details: Dict[str, Any] = {}
        rejected_by: Optional[str] = None
        for stage in self.stages:
            if not stage.enabled:
                continue
            value, rejected = stage.mechanism.evaluate(gradient, context)
            details[stage.name] = value
            details[f"{stage.name}_threshold"] = stage.mechanism.threshold(context)
            if rejected:
                rejected_by = stage.name
                break
        details["rejected_by"] = rejected_by

        return ClientScore(
            client_id=client_id,
            score=float(details.get(StiffnessConflictDetector.name, 0.0)),
            is_outlier=rejected_by is not None,
            details=details,
        )

    def score_clients(
        self,
        client_updates: List[np.ndarray],
        context: DetectionContext,
    ) -> List[ClientScore]:
        """Score every client gradient.

        Args:
            client_updates: List of client gradients, each of shape [d].
            context: Round-level detection inputs.

        Returns:
            List of ClientScore objects, one per client.
        """
        scores = [
            self.score_client(i, gradient, context)
            for i, gradient in enumerate(client_updates)
        ]

        num_outliers = sum(1 for s in scores if s.is_outlier)
        logger.debug(
            f"DefensePipeline: scored {len(scores)} clients, "
            f"{num_outliers} rejected (mechanisms={self.enabled_mechanisms})"
        )
        return scores

    def __repr__(self) -> str:
        return f"DefensePipeline(enabled={self.enabled_mechanisms})"
