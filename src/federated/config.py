"""Simulation configuration and YAML loading utilities."""

import copy
import numbers
from argparse import Namespace
from dataclasses import asdict, dataclass, field, fields
from pathlib import Path
from typing import Any, Dict, Optional

import yaml

from src.robustness.config import DefenseConfig
from src.robustness.importance import NUM_TRIGGER_COORDINATES

CONFIG_SECTIONS = ("simulation", "defense", "run")


@dataclass
class SimulationConfig:
    """Environment parameters for the federated backdoor simulation.

    Values outside their documented range raise ``ValueError`` on
    construction. They are never clamped.

    Attributes:
        non_iid_level: Data heterogeneity in [0, 2].
        attack_stealth: Attacker stealth in [0, 0.9].
        client_count: Clients per round (>= 1).
        malicious_ratio: Fraction of malicious clients in [0, 1].
        vector_dimension: Gradient dimension (>= 5, the trigger set size).
        history_window: Number of history entries retained (>= 1).
        seed: Seed for the session's random generator. None seeds from
            OS entropy.
        defense: Defense toggles.
    """

    non_iid_level: float = 0.5
    attack_stealth: float = 0.6
    client_count: int = 20
    malicious_ratio: float = 0.2
    vector_dimension: int = 20
    history_window: int = 50
    seed: Optional[int] = 42
    defense: DefenseConfig = field(default_factory=DefenseConfig)

    def __post_init__(self):
        """Validate configuration values."""
        if isinstance(self.defense, dict):
            self.defense = DefenseConfig(**self.defense)

        for name in ("non_iid_level", "attack_stealth", "malicious_ratio"):
            value = getattr(self, name)
            if isinstance(value, bool) or not isinstance(value, numbers.Real):
                raise ValueError(f"{name} must be a number, got {value!r}")
        for name in ("client_count", "vector_dimension", "history_window"):
            value = getattr(self, name)
            if isinstance(value, bool) or not isinstance(value, numbers.Integral):
                raise ValueError(f"{name} must be an integer, got {value!r}")
        if self.seed is not None and (
            isinstance(self.seed, bool) or not isinstance(self.seed, numbers.Integral)
        ):
            raise ValueError(f"seed must be an integer or None, got {self.seed!r}")

        if not 0.0 <= self.non_iid_level <= 2.0:
            raise ValueError(
                f"non_iid_level must be in [0, 2], got {self.non_iid_level}"
            )
        if not 0.0 <= self.attack_stealth <= 0.9:
            raise ValueError(
                f"attack_stealth must be in [0, 0.9], got {self.attack_stealth}"
            )
        if self.client_count < 1:
            raise ValueError(
                f"client_count must be >= 1, got {self.client_count}"
            )
        if not 0.0 <= self.malicious_ratio <= 1.0:
            raise ValueError(
                f"malicious_ratio must be in [0, 1], got {self.malicious_ratio}"
            )
        if self.vector_dimension < NUM_TRIGGER_COORDINATES:
            raise ValueError(
                f"vector_dimension must be >= {NUM_TRIGGER_COORDINATES}, "
                f"got {self.vector_dimension}"
            )
        if self.history_window < 1:
            raise ValueError(
                f"history_window must be >= 1, got {self.history_window}"
            )

    @classmethod
    def from_dict(cls, config: Dict[str, Any]) -> "SimulationConfig":
        """Build a config from a ``{"simulation": ..., "defense": ...}`` dict.

        Raises:
            ValueError: If a section contains unknown keys.
        """
        simulation = dict(config.get("simulation") or {})
        defense = dict(config.get("defense") or {})

        known = {f.name for f in fields(cls)} - {"defense"}
        unknown = set(simulation) - known
        if unknown:
            raise ValueError(f"Unknown simulation config keys: {sorted(unknown)}")
        known_defense = {f.name for f in fields(DefenseConfig)}
        unknown = set(defense) - known_defense
        if unknown:
            raise ValueError(f"Unknown defense config keys: {sorted(unknown)}")

        return cls(**simulation, defense=DefenseConfig(**defense))

    def to_dict(self) -> Dict[str, Any]:
        """Inverse of ``from_dict``."""
        simulation = asdict(self)
        defense = simulation.pop("defense")
        return {"simulation": simulation, "defense": defense}


def load_config(config_path: str) -> Dict[str, Any]:
    """Read a run file made of ``simulation``, ``defense`` and ``run`` sections.

    Only the file layout is checked here. Field names and ranges are
    checked by ``SimulationConfig.from_dict``.

    Raises:
        FileNotFoundError: If the file does not exist.
        ValueError: If the file is not a mapping or has an unknown section.
    """
    config_path = Path(config_path)
    if not config_path.exists():
        raise FileNotFoundError(f"Config file not found: {config_path}")

    with open(config_path, "r") as f:
        config = yaml.safe_load(f) or {}

    if not isinstance(config, dict):
        raise ValueError(f"{config_path} must hold a mapping of config sections")
    unknown = set(config) - set(CONFIG_SECTIONS)
    if unknown:
        raise ValueError(f"Unknown config sections in {config_path}: {sorted(unknown)}")
    return config


def merge_config_with_args(
    config: Dict[str, Any],
    args: Namespace,
    arg_mappings: Optional[Dict[str, str]] = None,
) -> Dict[str, Any]:
    """Overlay command-line flags on a loaded run file.

    ``arg_mappings`` routes each flag to a ``"section.key"`` path. Flags
    left at None keep the file's value, and missing sections are created.
    The input dict is not modified.
    """
    merged = copy.deepcopy(config)

    for arg_name, config_path in (arg_mappings or {}).items():
        value = getattr(args, arg_name, None)
        if value is None:
            continue
        section, _, key = config_path.partition(".")
        if not key:
            merged[section] = value
            continue
        if not isinstance(merged.get(section), dict):
            merged[section] = {}
        merged[section][key] = value

    return merged


def save_config(
    config: SimulationConfig,
    output_path: str,
    num_rounds: Optional[int] = None,
) -> None:
    """Write a run file that ``load_config`` reads back.

    Args:
        config: Simulation settings and defense toggles.
        output_path: Destination YAML path. Parent directories are created.
        num_rounds: Optional round count stored in the ``run`` section.
    """
    data = config.to_dict()
    if num_rounds is not None:
        data["run"] = {"num_rounds": num_rounds}

    output_path = Path(output_path)
    output_path.parent.mkdir(parents=True, exist_ok=True)
    with open(output_path, "w") as f:
        yaml.safe_dump(data, f, default_flow_style=False, sort_keys=False)
