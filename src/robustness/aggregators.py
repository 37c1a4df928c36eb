"""Acceptance aggregation and global metric updates for simulated rounds."""

from dataclasses import dataclass
from typing import Dict, List, Sequence, Tuple

from loguru import logger

from src.data.partitioner import MALICIOUS


@dataclass
class HistoryEntry:
    """Global metrics recorded after one round."""

    round: int
    acc: float
    asr: float

    def to_dict(self) -> Dict[str, float]:
        return {"round": self.round, "acc": self.acc, "asr": self.asr}


@dataclass
class AcceptanceStats:
    """Acceptance counts for one round.

    Attributes:
        num_clients: Number of clients scored.
        accepted_count: Clients whose update was accepted.
        malicious_accepted: Accepted clients that are malicious.
        attack_impact: Share of accepted updates that are malicious.
    """

    num_clients: int
    accepted_count: int
    malicious_accepted: int
    attack_impact: float


def compute_acceptance_stats(clients: Sequence) -> AcceptanceStats:
    """Count accepted and accepted-malicious clients.

    Args:
        clients: Objects with ``accepted`` and ``client_type`` attributes.

    Returns:
        AcceptanceStats. When every client is rejected the impact is 0.
    """
    accepted_count = 0
    malicious_accepted = 0
    for client in clients:
        if client.accepted:
            accepted_count += 1
            if client.client_type == MALICIOUS:
                malicious_accepted += 1

    return AcceptanceStats(
        num_clients=len(clients),
        accepted_count=accepted_count,
        malicious_accepted=malicious_accepted,
        attack_impact=malicious_accepted / max(accepted_count, 1),
    )


def append_history(
    history: Sequence[HistoryEntry],
    entry: HistoryEntry,
    limit: int = 50,
) -> List[HistoryEntry]:
    """Return a new history with ``entry`` appended, keeping the last ``limit``."""
    if limit < 1:
        raise ValueError(f"limit must be >= 1, got {limit}")
    return (list(history) + [entry])[-limit:]


class SmoothedMetricsAggregator:
    """Turn acceptance decisions into smoothed accuracy and ASR.

    Accuracy moves towards ``max_accuracy - impact * accuracy_penalty``.
    ASR moves towards ``backdoor_ceiling`` when the accepted set is more
    than ``contamination_threshold`` malicious, and towards 0 otherwise.
    Both use first-order smoothing with weight ``smoothing`` on the
    previous value.

    Attributes:
        max_accuracy: Accuracy target with no malicious updates accepted.
        accuracy_penalty: Accuracy lost per unit of attack impact.
        backdoor_ceiling: ASR target under contamination.
        contamination_threshold: Impact above which the backdoor lands.
        smoothing: Weight of the previous value.
    """

    def __init__(
        self,
        max_accuracy: float = 0.95,
        accuracy_penalty: float = 0.5,
        backdoor_ceiling: float = 0.9,
        contamination_threshold: float = 0.1,
        smoothing: float = 0.8,
    ):
        if not 0.0 <= smoothing <= 1.0:
            raise ValueError(f"smoothing must be in [0, 1], got {smoothing}")
        self.max_accuracy = max_accuracy
        self.accuracy_penalty = accuracy_penalty
        self.backdoor_ceiling = backdoor_ceiling
        self.contamination_threshold = contamination_threshold
        self.smoothing = smoothing

    def _smooth(self, previous: float, target: float) -> float:
        return self.smoothing * previous + (1.0 - self.smoothing) * target

    def aggregate(
        self,
        clients: Sequence,
        previous_accuracy: float,
        previous_asr: float,
    ) -> Tuple[float, float, AcceptanceStats]:
        """Compute next-round accuracy and ASR.

        Args:
            clients: Processed clients of this round.
            previous_accuracy: Global accuracy before this round.
            previous_asr: Backdoor success rate before this round.

        Returns:
            Tuple of (accuracy, asr, acceptance_stats).
        """
        stats = compute_acceptance_stats(clients)
        if stats.num_clients > 0 and stats.accepted_count == 0:
            logger.warning("All client updates rejected this round")

        target_accuracy = self.max_accuracy - stats.attack_impact * self.accuracy_penalty
        if stats.attack_impact > self.contamination_threshold:
            target_asr = self.backdoor_ceiling
        else:
            target_asr = 0.0

        accuracy = self._smooth(previous_accuracy, target_accuracy)
        asr = self._smooth(previous_asr, target_asr)

        logger.debug(
            f"SmoothedMetrics: accepted {stats.accepted_count}/{stats.num_clients}, "
            f"malicious accepted {stats.malicious_accepted}, "
            f"impact {stats.attack_impact:.3f} -> acc {accuracy:.4f}, asr {asr:.4f}"
        )
        return accuracy, asr, stats

    def __repr__(self) -> str:
        return (
            f"SmoothedMetricsAggregator(max_accuracy={self.max_accuracy}, "
            f"smoothing={self.smoothing})"
        )
