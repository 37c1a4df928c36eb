"""Backdoor attack simulation for robustness evaluation.

Malicious clients pull the trigger coordinates hard in the reverse
direction and add small noise elsewhere to blend in with benign
statistics. These are for evaluation purposes only.
"""

import numpy as np

from src.data.vector_math import standard_normal_vector
from .importance import NUM_TRIGGER_COORDINATES


class BackdoorAttack:
    """Simulate a stealth-tunable backdoor on simulated gradients.

    Attack strength is ``max_strength - stealth``. Each trigger
    coordinate is shifted by ``-strength * trigger_scale``, a fixed and
    deterministic pull. Every other coordinate receives
    ``N(0, 1) * camouflage_std`` noise.

    Attributes:
        stealth: Stealth level in [0, 0.9]. Higher is harder to detect.
        strength: Derived attack strength.
        trigger_scale: Multiplier turning strength into a coordinate shift.
        camouflage_std: Scale of the noise on non-trigger coordinates.
    """

    MAX_STEALTH = 0.9

    def __init__(
        self,
        stealth: float = 0.6,
        max_strength: float = 1.5,
        trigger_scale: float = 5.0,
        camouflage_std: float = 0.5,
    ):
        """Initialize the attack simulator.

        Args:
            stealth: Stealth level in [0, 0.9].
            max_strength: Strength at zero stealth.
            trigger_scale: Shift per unit of strength on trigger coordinates.
            camouflage_std: Noise scale on non-trigger coordinates.

        Raises:
            ValueError: If stealth is out of range.
        """
        if not 0.0 <= stealth <= self.MAX_STEALTH:
            raise ValueError(
                f"stealth must be in [0, {self.MAX_STEALTH}], got {stealth}"
            )
        self.stealth = stealth
        self.max_strength = max_strength
        self.strength = max_strength - stealth
        self.trigger_scale = trigger_scale
        self.camouflage_std = camouflage_std

    @property
    def trigger_shift(self) -> float:
        """Signed offset applied to every trigger coordinate."""
        return -self.strength * self.trigger_scale

    def apply(self, gradient: np.ndarray, rng: np.random.Generator) -> np.ndarray:
        """Apply the backdoor to one gradient.

        Args:
            gradient: Benign-looking gradient of shape [d], d >= 5.
            rng: Random generator for the camouflage noise.

        Returns:
            Poisoned copy of the gradient.

        Raises:
            ValueError: If the gradient is shorter than the trigger set.
        """
        dim = len(gradient)
        if dim < NUM_TRIGGER_COORDINATES:
            raise ValueError(
                f"Gradient dimension {dim} is smaller than the "
                f"{NUM_TRIGGER_COORDINATES} trigger coordinates"
            )

        poisoned = np.array(gradient, dtype=np.float64, copy=True)
        poisoned[:NUM_TRIGGER_COORDINATES] += self.trigger_shift
        camouflage = standard_normal_vector(rng, dim - NUM_TRIGGER_COORDINATES)
        poisoned[NUM_TRIGGER_COORDINATES:] += camouflage * self.camouflage_std
        return poisoned

    def get_attack_stats(self, num_clients: int, num_malicious: int) -> dict:
        """Get statistics about the attack configuration.

        Args:
            num_clients: Total number of clients.
            num_malicious: Number of malicious clients.

        Returns:
            Dictionary with attack statistics.
        """
        return {
            "attack_type": "backdoor",
            "num_clients": num_clients,
            "num_malicious": num_malicious,
            "malicious_fraction": num_malicious / num_clients if num_clients > 0 else 0,
            "stealth": self.stealth,
            "strength": self.strength,
            "trigger_shift": self.trigger_shift,
        }

    def __repr__(self) -> str:
        return f"BackdoorAttack(stealth={self.stealth}, strength={self.strength:.2f})"

