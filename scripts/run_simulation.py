#!/usr/bin/env python3
"""Federated backdoor-defense simulation script.

Runs a number of simulated rounds with the defenses configured in a YAML
file and writes the final state, per-round summaries and metric history.

Usage:
    python scripts/run_simulation.py --config experiments/configs/default.yaml
    python scripts/run_simulation.py --config experiments/configs/default.yaml --no_clustering --attack_stealth 0.8
"""

import argparse
import json
import sys
from pathlib import Path

from loguru import logger
from tqdm import tqdm

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from src.evaluation import create_simulation_report, project_clients, summarize_round
from src.federated import (
    FederatedSimulation,
    SimulationConfig,
    load_config,
    merge_config_with_args,
    save_config,
)
from src.federated.server import _convert_to_serializable

ARG_MAPPINGS = {
    "seed": "simulation.seed",
    "non_iid_level": "simulation.non_iid_level",
    "attack_stealth": "simulation.attack_stealth",
    "client_count": "simulation.client_count",
    "malicious_ratio": "simulation.malicious_ratio",
    "vector_dimension": "simulation.vector_dimension",
    "num_rounds": "run.num_rounds",
    "no_momentum_fim": "defense.momentum_fim",
    "no_stiffness_mask": "defense.stiffness_mask",
    "no_clustering": "defense.layer_weighted_clustering",
}


def parse_args():
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(
        description="Run the federated backdoor-defense simulation",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter,
    )
    parser.add_argument(
        "--config",
        type=str,
        default=None,
        help="Path to YAML config file (built-in defaults if omitted)",
    )
    parser.add_argument(
        "--output_dir",
        type=str,
        default="outputs/simulation",
        help="Output directory",
    )
    parser.add_argument("--num_rounds", type=int, default=None, help="Rounds to run (overrides config)")
    parser.add_argument("--seed", type=int, default=None, help="Random seed (overrides config)")
    parser.add_argument("--non_iid_level", type=float, default=None, help="Non-IID level in [0, 2]")
    parser.add_argument("--attack_stealth", type=float, default=None, help="Attack stealth in [0, 0.9]")
    parser.add_argument("--client_count", type=int, default=None, help="Clients per round")
    parser.add_argument("--malicious_ratio", type=float, default=None, help="Fraction of malicious clients")
    parser.add_argument("--vector_dimension", type=int, default=None, help="Gradient dimension (>= 5)")
    parser.add_argument(
        "--no_momentum_fim",
        action="store_const",
        const=False,
        help="Disable the momentum importance update",
    )
    parser.add_argument(
        "--no_stiffness_mask",
        action="store_const",
        const=False,
        help="Disable the stiffness-conflict mechanism",
    )
    parser.add_argument(
        "--no_clustering",
        action="store_const",
        const=False,
        help="Disable importance-weighted clustering",
    )
    parser.add_argument(
        "--plot",
        action="store_true",
        help="Save projection, history and importance plots of the final round",
    )
    parser.add_argument(
        "--log_level",
        type=str,
        default="INFO",
        help="Log level for stderr",
    )
    return parser.parse_args()


def build_config(args) -> dict:
    """Load the YAML config and apply CLI overrides."""
    config = load_config(args.config) if args.config else {}
    return merge_config_with_args(config, args, ARG_MAPPINGS)


def main():
    args = parse_args()

    output_dir = Path(args.output_dir)
    output_dir.mkdir(parents=True, exist_ok=True)

    logger.remove()
    logger.add(sys.stderr, level=args.log_level)
    logger.add(output_dir / "simulation.log", level="DEBUG")

    config = build_config(args)
    num_rounds = int((config.get("run") or {}).get("num_rounds", 100))
    sim_config = SimulationConfig.from_dict(config)

    logger.info("Starting simulation...")
    logger.info(f"  Rounds: {num_rounds}")
    logger.info(f"  Clients: {sim_config.client_count} (malicious ratio {sim_config.malicious_ratio})")
    logger.info(f"  Non-IID level: {sim_config.non_iid_level}")
    logger.info(f"  Attack stealth: {sim_config.attack_stealth}")
    logger.info(f"  Defenses: {sim_config.defense.label()}")

    simulation = FederatedSimulation(sim_config)
    attack = simulation.attack_stats()
    logger.info(
        f"  Attack: {attack['num_malicious']} malicious, strength {attack['strength']:.2f}, "
        f"trigger shift {attack['trigger_shift']:.2f}"
    )

    summaries = []
    for _ in tqdm(range(num_rounds), desc="Simulating rounds"):
        state = simulation.advance()
        summaries.append(summarize_round(state))

    simulation.save(str(output_dir))
    save_config(sim_config, str(output_dir / "config.yaml"), num_rounds=num_rounds)

    rounds_path = output_dir / "round_summaries.json"
    with open(rounds_path, "w") as f:
        json.dump(_convert_to_serializable(summaries), f, indent=2)
    logger.info(f"Saved round summaries to {rounds_path}")

    final_path = output_dir / "final_state.json"
    final = simulation.state.to_dict()
    final["projection"] = project_clients(simulation.state.clients)
    with open(final_path, "w") as f:
        json.dump(_convert_to_serializable(final), f, indent=2)
    logger.info(f"Saved final state to {final_path}")

    if args.plot:
        create_simulation_report(simulation.state, str(output_dir / "plots"))

    state = simulation.state
    logger.info(
        f"Finished round {state.round}: accuracy={state.global_accuracy:.4f}, "
        f"ASR={state.backdoor_success_rate:.4f}"
    )


if __name__ == "__main__":
    main()
