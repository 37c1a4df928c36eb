"""Round engine for the federated backdoor-defense simulation."""

import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

import numpy as np
from loguru import logger
from tqdm import tqdm

from src.data.vector_math import standard_normal_vector
from src.robustness.aggregators import (
    AcceptanceStats,
    HistoryEntry,
    SmoothedMetricsAggregator,
    append_history,
)
from src.robustness.client_scoring import DefensePipeline, DetectionContext
from src.robustness.importance import MomentumImportanceEstimator, initial_importance
from .client import ClientGenerator, SimulatedClient
from .config import SimulationConfig

INITIAL_ACCURACY = 0.1
INITIAL_ASR = 0.0


@dataclass
class RoundState:
    """Complete engine state after one round.

    A new RoundState is built for every round. The engine never mutates
    a state it has returned.

    Attributes:
        round: Round number (0 before the first round).
        global_accuracy: Smoothed global accuracy in [0, 1].
        backdoor_success_rate: Smoothed attack success rate in [0, 1].
        importance_vector: Momentum importance estimate of shape [d].
        clients: This round's processed clients.
        history: Most recent per-round metrics, oldest first.
        acceptance: Acceptance counts of this round (None at round 0).
        rng_state: Bit generator state the next round draws from.
    """

    round: int
    global_accuracy: float
    backdoor_success_rate: float
    importance_vector: np.ndarray
    clients: List[SimulatedClient] = field(default_factory=list)
    history: List[HistoryEntry] = field(default_factory=list)
    acceptance: Optional[AcceptanceStats] = None
    rng_state: Optional[Dict[str, Any]] = None

    def to_dict(self) -> Dict:
        """Serializable view of the state."""
        return {
            "round": self.round,
            "global_accuracy": self.global_accuracy,
            "backdoor_success_rate": self.backdoor_success_rate,
            "importance_vector": self.importance_vector.tolist(),
            "clients": [
                {
                    "id": c.client_id,
                    "type": c.client_type,
                    "data_distribution": c.data_distribution,
                    "gradient": c.gradient.tolist(),
                    "stiffness_score": c.stiffness_score,
                    "accepted": c.accepted,
                }
                for c in self.clients
            ],
            "history": [entry.to_dict() for entry in self.history],
        }


def initial_state(
    config: SimulationConfig,
    rng_state: Optional[Dict[str, Any]] = None,
) -> RoundState:
    """Round-0 state for a configuration.

    Without ``rng_state`` the first round seeds its generator from
    ``config.seed``.
    """
    return RoundState(
        round=0,
        global_accuracy=INITIAL_ACCURACY,
        backdoor_success_rate=INITIAL_ASR,
        importance_vector=initial_importance(config.vector_dimension),
        rng_state=rng_state,
    )


def restore_rng(state: RoundState, seed: Optional[int] = None) -> np.random.Generator:
    """Generator positioned where ``state`` left off."""
    if state.rng_state is None:
        return np.random.default_rng(seed)
    bit_generator = getattr(np.random, state.rng_state["bit_generator"])()
    bit_generator.state = state.rng_state
    return np.random.Generator(bit_generator)


def sample_true_direction(dim: int, rng: np.random.Generator) -> np.ndarray:
    """Draw the read-only reference direction for a session."""
    direction = standard_normal_vector(rng, dim)
    direction.flags.writeable = False
    return direction


def advance_round(
    previous: RoundState,
    config: SimulationConfig,
    true_direction: np.ndarray,
) -> RoundState:
    """Run one round and return the next state.

    Steps: generate clients, update the importance vector from the
    previous estimate, score every client against the updated vector,
    then aggregate acceptance into global metrics.

    Randomness is drawn from the generator state carried by ``previous``,
    so the same inputs always produce the same next state.

    Args:
        previous: State after the previous round.
        config: Configuration for this round.
        true_direction: Session reference direction of shape [d].

    Returns:
        The next RoundState.

    Raises:
        ValueError: If the state or direction dimension does not match
            ``config.vector_dimension``.
    """
    dim = config.vector_dimension
    if len(true_direction) != dim:
        raise ValueError(
            f"true_direction has dimension {len(true_direction)}, "
            f"config expects {dim}; reset the simulation after changing it"
        )
    if len(previous.importance_vector) != dim:
        raise ValueError(
            f"importance_vector has dimension {len(previous.importance_vector)}, "
            f"config expects {dim}; reset the simulation after changing it"
        )

    round_num = previous.round + 1
    defense = config.defense
    rng = restore_rng(previous, config.seed)

    clients = ClientGenerator.from_config(config).generate(true_direction, rng)

    importance = MomentumImportanceEstimator().update(
        previous.importance_vector, enabled=defense.momentum_fim
    )

    context = DetectionContext(
        importance=importance,
        true_direction=true_direction,
        non_iid_level=config.non_iid_level,
        momentum_fim=defense.momentum_fim,
    )
    pipeline = DefensePipeline.from_config(defense)
    scores = pipeline.score_clients([c.gradient for c in clients], context)
    processed = [
        client.with_decision(score.score, not score.is_outlier)
        for client, score in zip(clients, scores)
    ]

    accuracy, asr, acceptance = SmoothedMetricsAggregator().aggregate(
        processed, previous.global_accuracy, previous.backdoor_success_rate
    )
    history = append_history(
        previous.history,
        HistoryEntry(round=round_num, acc=accuracy, asr=asr),
        limit=config.history_window,
    )

    return RoundState(
        round=round_num,
        global_accuracy=accuracy,
        backdoor_success_rate=asr,
        importance_vector=importance,
        clients=processed,
        history=history,
        acceptance=acceptance,
        rng_state=rng.bit_generator.state,
    )


class FederatedSimulation:
    """A simulation session.

    The session seeds a generator on initialization, draws the reference
    direction from it, and hands the generator state to the round-0
    state. Separate sessions share no state.

    Attributes:
        config: Configuration used for the most recent call.
        true_direction: Read-only reference direction.
        state: Latest RoundState.
    """

    def __init__(self, config: Optional[SimulationConfig] = None):
        """Initialize the session.

        Args:
            config: Simulation configuration (defaults if None).
        """
        self.config = config or SimulationConfig()
        self.true_direction: Optional[np.ndarray] = None
        self.state: Optional[RoundState] = None
        self.initialize(self.config)

    def initialize(self, config: Optional[SimulationConfig] = None) -> RoundState:
        """Seed the session and return the round-0 state.

        Args:
            config: New configuration (keeps the current one if None).

        Returns:
            Initial RoundState.
        """
        if config is not None:
            self.config = config

        rng = np.random.default_rng(self.config.seed)
        self.true_direction = sample_true_direction(self.config.vector_dimension, rng)
        self.state = initial_state(self.config, rng.bit_generator.state)

        logger.info(
            f"FederatedSimulation initialized: {self.config.client_count} clients, "
            f"dim={self.config.vector_dimension}, seed={self.config.seed}, "
            f"defenses={self.config.defense.label()}"
        )
        return self.state

    def reset(self, config: Optional[SimulationConfig] = None) -> RoundState:
        """Discard history and importance accumulation and start over."""
        logger.info("FederatedSimulation reset")
        return self.initialize(config)

    def advance(
        self,
        state: Optional[RoundState] = None,
        config: Optional[SimulationConfig] = None,
    ) -> RoundState:
        """Run one round.

        Args:
            state: Previous state (the session's latest state if None).
            config: Configuration for this round (current one if None).
                May change toggles and environment values between rounds.

        Returns:
            The next RoundState, which also becomes the session state.
        """
        config = self.config if config is None else config
        previous = self.state if state is None else state

        next_state = advance_round(previous, config, self.true_direction)
        self.config = config
        self.state = next_state

        logger.debug(
            f"Round {next_state.round}: acc={next_state.global_accuracy:.4f}, "
            f"asr={next_state.backdoor_success_rate:.4f}, "
            f"accepted={next_state.acceptance.accepted_count}/{len(next_state.clients)}"
        )
        return next_state

    def run(
        self,
        num_rounds: int,
        config: Optional[SimulationConfig] = None,
        progress: bool = False,
    ) -> RoundState:
        """Advance ``num_rounds`` times from the current state.

        Args:
            num_rounds: Number of rounds (>= 0).
            config: Configuration for every round (current one if None).
            progress: Show a progress bar.

        Returns:
            Final RoundState.
        """
        if num_rounds < 0:
            raise ValueError(f"num_rounds must be non-negative, got {num_rounds}")

        rounds = range(num_rounds)
        if progress:
            rounds = tqdm(rounds, desc="Simulating rounds")
        for _ in rounds:
            self.advance(config=config)

        logger.info(
            f"FederatedSimulation: round {self.state.round}, "
            f"acc={self.state.global_accuracy:.4f}, "
            f"asr={self.state.backdoor_success_rate:.4f}"
        )
        return self.state

    def get_stats(self) -> Dict:
        """Get session statistics.

        Returns:
            Dictionary with configuration, attack parameters, reference
            direction and the latest round's metrics.
        """
        stats = {
            "config": self.config.to_dict(),
            "true_direction": self.true_direction,
            "round": self.state.round,
            "global_accuracy": self.state.global_accuracy,
            "backdoor_success_rate": self.state.backdoor_success_rate,
            "importance_vector": self.state.importance_vector,
            "attack": self.attack_stats(),
        }
        if self.state.acceptance is not None:
            stats["accepted_count"] = self.state.acceptance.accepted_count
            stats["malicious_accepted"] = self.state.acceptance.malicious_accepted
            stats["attack_impact"] = self.state.acceptance.attack_impact
        return stats

    def attack_stats(self) -> Dict[str, Any]:
        """Attack parameters implied by the current configuration."""
        generator = ClientGenerator.from_config(self.config)
        return generator.attack.get_attack_stats(
            num_clients=generator.num_clients,
            num_malicious=generator.partitioner.num_malicious,
        )

    def save(self, output_dir: str) -> None:
        """Save session statistics and metric history as JSON.

        Args:
            output_dir: Output directory path.
        """
        output_dir = Path(output_dir)
        output_dir.mkdir(parents=True, exist_ok=True)

        stats_path = output_dir / "simulation_stats.json"
        with open(stats_path, "w") as f:
            json.dump(_convert_to_serializable(self.get_stats()), f, indent=2)
        logger.info(f"Saved simulation stats to {stats_path}")

        history_path = output_dir / "history.json"
        with open(history_path, "w") as f:
            json.dump([entry.to_dict() for entry in self.state.history], f, indent=2)
        logger.info(f"Saved metric history to {history_path}")

    def __repr__(self) -> str:
        return (
            f"FederatedSimulation(round={self.state.round}, "
            f"defenses={self.config.defense.label()})"
        )


def _convert_to_serializable(obj):
    """Convert numpy types to Python types for JSON serialization."""
    if isinstance(obj, dict):
        return {k: _convert_to_serializable(v) for k, v in obj.items()}
    elif isinstance(obj, list):
        return [_convert_to_serializable(v) for v in obj]
    elif isinstance(obj, np.integer):
        return int(obj)
    elif isinstance(obj, np.floating):
        return float(obj)
    elif isinstance(obj, np.ndarray):
        return obj.tolist()
    else:
        return obj
