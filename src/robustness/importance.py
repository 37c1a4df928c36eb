"""Momentum-filtered parameter importance (simulated Fisher information)."""

import numpy as np
from loguru import logger

# Coordinates 0..NUM_TRIGGER_COORDINATES-1 carry the backdoor trigger
NUM_TRIGGER_COORDINATES = 5


def ideal_importance(
    dim: int,
    high_importance: float = 10.0,
    low_importance: float = 1.0,
) -> np.ndarray:
    """Ground-truth importance profile.

    Args:
        dim: Vector dimension (>= NUM_TRIGGER_COORDINATES).
        high_importance: Importance of trigger coordinates.
        low_importance: Importance of every other coordinate.

    Returns:
        Array of shape [dim].
    """
    if dim < NUM_TRIGGER_COORDINATES:
        raise ValueError(
            f"dim must be >= {NUM_TRIGGER_COORDINATES}, got {dim}"
        )
    profile = np.full(dim, low_importance, dtype=np.float64)
    profile[:NUM_TRIGGER_COORDINATES] = high_importance
    return profile


def initial_importance(dim: int) -> np.ndarray:
    """All-ones importance vector used before the first round."""
    return np.ones(dim, dtype=np.float64)


class MomentumImportanceEstimator:
    """Exponential moving average of per-coordinate importance.

    Each update blends the previous estimate with the ideal profile:
    ``new = decay * previous + (1 - decay) * ideal``. Both terms are
    non-negative and the weights sum to one, so the result always lies
    between the previous value and the ideal value.

    In a real system the per-round target would come from curvature
    statistics of the accepted gradients. Here it is fixed to the ideal
    profile so detection can be studied without estimation noise.

    Attributes:
        decay: Weight of the previous estimate.
        high_importance: Target importance of trigger coordinates.
        low_importance: Target importance of other coordinates.
    """

    def __init__(
        self,
        decay: float = 0.9,
        high_importance: float = 10.0,
        low_importance: float = 1.0,
    ):
        """Initialize the estimator.

        Args:
            decay: EMA decay in [0, 1].
            high_importance: Target for trigger coordinates (>= 0).
            low_importance: Target for other coordinates (>= 0).
        """
        if not 0.0 <= decay <= 1.0:
            raise ValueError(f"decay must be in [0, 1], got {decay}")
        if high_importance < 0 or low_importance < 0:
            raise ValueError(
                f"importance targets must be non-negative, got "
                f"{high_importance} and {low_importance}"
            )
        self.decay = decay
        self.high_importance = high_importance
        self.low_importance = low_importance

    def update(self, previous: np.ndarray, enabled: bool = True) -> np.ndarray:
        """Compute this round's importance vector.

        Args:
            previous: Importance vector from the previous round.
            enabled: When False the previous vector is carried forward.

        Returns:
            New importance array. The input is never modified.
        """
        previous = np.asarray(previous, dtype=np.float64)
        if not enabled:
            return previous.copy()

        target = ideal_importance(
            len(previous), self.high_importance, self.low_importance
        )
        updated = self.decay * previous + (1.0 - self.decay) * target

        logger.debug(
            f"MomentumImportanceEstimator: trigger mean "
            f"{np.mean(updated[:NUM_TRIGGER_COORDINATES]):.4f}, "
            f"max {np.max(updated):.4f}"
        )
        return updated

    def __repr__(self) -> str:
        return (
            f"MomentumImportanceEstimator(decay={self.decay}, "
            f"high={self.high_importance}, low={self.low_importance})"
        )
