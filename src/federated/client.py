"""Simulated federated clients and synthetic gradient generation."""

from dataclasses import dataclass, replace
from typing import List

import numpy as np
from loguru import logger

from src.data.partitioner import CLIENT_TYPES, MALICIOUS, NonIIDPartitioner
from src.data.vector_math import standard_normal_vector
from src.robustness.attacks import BackdoorAttack


@dataclass
class SimulatedClient:
    """One client's update for a single round.

    Attributes:
        client_id: Position of the client within the round.
        client_type: "benign" or "malicious".
        data_distribution: Non-IID coordinate in [0, 1].
        gradient: Synthetic gradient of shape [d].
        stiffness_score: Stiffness-conflict score (0 until scored).
        accepted: Whether the update survives detection.
    """

    client_id: int
    client_type: str
    data_distribution: float
    gradient: np.ndarray
    stiffness_score: float = 0.0
    accepted: bool = True

    def __post_init__(self):
        if self.client_type not in CLIENT_TYPES:
            raise ValueError(
                f"client_type must be one of {CLIENT_TYPES}, got {self.client_type!r}"
            )

    @property
    def is_malicious(self) -> bool:
        return self.client_type == MALICIOUS

    def with_decision(self, stiffness_score: float, accepted: bool) -> "SimulatedClient":
        """Copy of this client carrying a detection outcome."""
        return replace(self, stiffness_score=stiffness_score, accepted=accepted)


def non_iid_gradient(
    true_direction: np.ndarray,
    data_distribution: float,
    non_iid_level: float,
    rng: np.random.Generator,
) -> np.ndarray:
    """Benign gradient around the true direction.

    Every coordinate ``j`` gets ``N(0, 1) * 2L`` noise plus a systematic
    bias ``sin(2 * pi * distribution + j) * L`` keyed to the client's
    position in the data space.

    Args:
        true_direction: Reference direction of shape [d].
        data_distribution: Client's non-IID coordinate.
        non_iid_level: Heterogeneity level L.
        rng: Random generator.

    Returns:
        Gradient of shape [d].
    """
    dim = len(true_direction)
    noise = standard_normal_vector(rng, dim) * non_iid_level * 2.0
    bias = np.sin(data_distribution * 2.0 * np.pi + np.arange(dim)) * non_iid_level
    return np.asarray(true_direction, dtype=np.float64) + noise + bias


class ClientGenerator:
    """Generate one round's worth of simulated clients.

    Malicious clients are the lowest-indexed ones. They share a fixed
    data distribution and have the backdoor applied on top of their
    non-IID gradient.

    Attributes:
        partitioner: Assigns client roles and data distributions.
        attack: Backdoor applied to malicious clients.
        non_iid_level: Heterogeneity level.
    """

    def __init__(
        self,
        num_clients: int = 20,
        malicious_ratio: float = 0.2,
        non_iid_level: float = 0.5,
        attack_stealth: float = 0.6,
    ):
        """Initialize the generator.

        Args:
            num_clients: Number of clients per round.
            malicious_ratio: Fraction of malicious clients.
            non_iid_level: Heterogeneity level in [0, 2].
            attack_stealth: Attacker stealth in [0, 0.9].
        """
        self.partitioner = NonIIDPartitioner(num_clients, malicious_ratio)
        self.attack = BackdoorAttack(stealth=attack_stealth)
        self.non_iid_level = non_iid_level

    @classmethod
    def from_config(cls, config) -> "ClientGenerator":
        """Create a generator from a SimulationConfig."""
        return cls(
            num_clients=config.client_count,
            malicious_ratio=config.malicious_ratio,
            non_iid_level=config.non_iid_level,
            attack_stealth=config.attack_stealth,
        )

    @property
    def num_clients(self) -> int:
        return self.partitioner.num_clients

    def _build_client(
        self,
        index: int,
        client_type: str,
        distribution: float,
        true_direction: np.ndarray,
        rng: np.random.Generator,
    ) -> SimulatedClient:
        """Client at ``index``, accepted with zero stiffness score."""
        gradient = non_iid_gradient(true_direction, distribution, self.non_iid_level, rng)
        if client_type == MALICIOUS:
            gradient = self.attack.apply(gradient, rng)

        return SimulatedClient(
            client_id=index,
            client_type=client_type,
            data_distribution=distribution,
            gradient=gradient,
        )

    def generate(
        self,
        true_direction: np.ndarray,
        rng: np.random.Generator,
    ) -> List[SimulatedClient]:
        """Generate all clients for one round, in index order."""
        clients = [
            self._build_client(
                i,
                assignment["type"],
                assignment["data_distribution"],
                true_direction,
                rng,
            )
            for i, assignment in self.partitioner.partition().items()
        ]
        logger.debug(
            f"ClientGenerator: generated {len(clients)} clients "
            f"({self.partitioner.num_malicious} malicious, {self.attack})"
        )
        return clients

    def __repr__(self) -> str:
        return (
            f"ClientGenerator(num_clients={self.num_clients}, "
            f"num_malicious={self.partitioner.num_malicious}, "
            f"non_iid_level={self.non_iid_level})"
        )
