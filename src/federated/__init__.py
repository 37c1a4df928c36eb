"""Federated round simulation under backdoor attack."""

from .config import SimulationConfig, load_config, merge_config_with_args, save_config
from .client import ClientGenerator, SimulatedClient, non_iid_gradient
from .server import (
    FederatedSimulation,
    RoundState,
    advance_round,
    initial_state,
    restore_rng,
    sample_true_direction,
)

__all__ = [
    "SimulationConfig",
    "load_config",
    "merge_config_with_args",
    "save_config",
    "ClientGenerator",
    "SimulatedClient",
    "non_iid_gradient",
    "FederatedSimulation",
    "RoundState",
    "advance_round",
    "initial_state",
    "restore_rng",
    "sample_true_direction",
]
