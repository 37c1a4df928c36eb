"""Client role and non-IID position assignment for simulated federations."""

import math
from typing import Dict

BENIGN = "benign"
MALICIOUS = "malicious"
CLIENT_TYPES = (BENIGN, MALICIOUS)

# Colluding attackers are modelled as sharing one region of the data space
COLLUSION_DISTRIBUTION = 0.9


def count_malicious(num_clients: int, malicious_ratio: float) -> int:
    """Number of malicious clients for a federation.

    Args:
        num_clients: Total number of clients.
        malicious_ratio: Fraction of clients controlled by the attacker.

    Returns:
        ``floor(num_clients * malicious_ratio)``.
    """
    return int(math.floor(num_clients * malicious_ratio))


class NonIIDPartitioner:
    """Positional non-IID partitioner.

    The lowest-indexed clients are malicious and share a fixed data
    distribution coordinate. Benign clients are spread evenly across
    [0, 1) by index, so each one sees a different slice of the data
    space.
    """

    def __init__(self, num_clients: int = 20, malicious_ratio: float = 0.2):
        """Initialize the partitioner.

        Args:
            num_clients: Number of FL clients.
            malicious_ratio: Fraction of malicious clients in [0, 1].
        """
        if num_clients < 1:
            raise ValueError(f"num_clients must be >= 1, got {num_clients}")
        if not 0.0 <= malicious_ratio <= 1.0:
            raise ValueError(
                f"malicious_ratio must be in [0, 1], got {malicious_ratio}"
            )
        self.num_clients = num_clients
        self.malicious_ratio = malicious_ratio
        self.num_malicious = count_malicious(num_clients, malicious_ratio)

    def client_type(self, index: int) -> str:
        """Role of the client at ``index``."""
        if index < 0 or index >= self.num_clients:
            raise ValueError(
                f"Client index {index} out of bounds for {self.num_clients} clients"
            )
        return MALICIOUS if index < self.num_malicious else BENIGN

    def data_distribution(self, index: int) -> float:
        """Non-IID coordinate in [0, 1] of the client at ``index``."""
        if self.client_type(index) == MALICIOUS:
            return COLLUSION_DISTRIBUTION
        return index / self.num_clients

    def partition(self) -> Dict[int, Dict[str, object]]:
        """Assign every client its role and data distribution.

        Returns:
            Dictionary mapping client_id -> {"type", "data_distribution"}.
        """
        return {
            i: {
                "type": self.client_type(i),
                "data_distribution": self.data_distribution(i),
            }
            for i in range(self.num_clients)
        }

    def __repr__(self) -> str:
        return (
            f"NonIIDPartitioner(num_clients={self.num_clients}, "
            f"num_malicious={self.num_malicious})"
        )
