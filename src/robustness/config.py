"""Configuration for backdoor defense mechanisms in federated learning."""

from dataclasses import dataclass


@dataclass
class DefenseConfig:
    """Toggles for the importance-weighted backdoor defenses.

    Attributes:
        momentum_fim: Whether the importance vector is updated with the
            momentum (EMA) estimate each round. When False it is carried
            forward unchanged.
        stiffness_mask: Whether the stiffness-conflict mechanism runs.
        layer_weighted_clustering: Whether the importance-weighted
            clustering mechanism runs.
    """

    momentum_fim: bool = True
    stiffness_mask: bool = True
    layer_weighted_clustering: bool = True

    def __post_init__(self):
        """Validate configuration values."""
        for name in ("momentum_fim", "stiffness_mask", "layer_weighted_clustering"):
            value = getattr(self, name)
            if not isinstance(value, bool):
                raise ValueError(f"{name} must be a bool, got {value!r}")

    @property
    def undefended(self) -> bool:
        """True when neither detection mechanism is enabled."""
        return not (self.stiffness_mask or self.layer_weighted_clustering)

    def label(self) -> str:
        """Short human-readable name of the enabled defenses."""
        parts = []
        if self.momentum_fim:
            parts.append("fim")
        if self.stiffness_mask:
            parts.append("stiffness")
        if self.layer_weighted_clustering:
            parts.append("clustering")
        return "+".join(parts) if parts else "none"
