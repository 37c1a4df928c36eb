#!/usr/bin/env python3
"""Defense comparison script for the federated backdoor simulation.

Runs every combination of the three defense toggles against a range of
attack stealth levels and averages the outcome over several seeds.

Metrics:
- Final global accuracy and backdoor success rate
- Malicious acceptance rate over the evaluation window
- Detection rate (TPR) and false positive rate (FPR)

Usage:
    python experiments/scripts/defense_comparison.py \
        --output_dir results/defense_comparison \
        --num_rounds 60 \
        --num_runs 5
"""

import argparse
import csv
import itertools
import json
import sys
from datetime import datetime
from pathlib import Path
from typing import Dict, List, Tuple

import matplotlib.pyplot as plt
import numpy as np
from loguru import logger

# Add project root to path
project_root = Path(__file__).parent.parent.parent
sys.path.insert(0, str(project_root))

from src.evaluation import (
    compute_detection_metrics,
    compute_statistical_analysis,
    create_defense_table,
    plot_defense_comparison,
)
from src.federated import FederatedSimulation, SimulationConfig
from src.robustness import DefenseConfig


def parse_args():
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(
        description="Compare backdoor defenses across stealth levels",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter,
    )
    parser.add_argument(
        "--output_dir",
        type=str,
        default="results/defense_comparison",
        help="Directory for evaluation outputs",
    )
    parser.add_argument("--num_rounds", type=int, default=60, help="Rounds per run")
    parser.add_argument(
        "--eval_window",
        type=int,
        default=20,
        help="Trailing rounds used for acceptance and detection averages",
    )
    parser.add_argument("--num_runs", type=int, default=5, help="Seeds per configuration")
    parser.add_argument("--seed", type=int, default=42, help="Base random seed")
    parser.add_argument("--non_iid_level", type=float, default=0.5, help="Non-IID level")
    parser.add_argument(
        "--stealth_levels",
        type=float,
        nargs="+",
        default=[0.0, 0.3, 0.6, 0.8],
        help="Attack stealth levels to test",
    )
    return parser.parse_args()


def defense_grid() -> List[DefenseConfig]:
    """All eight combinations of the defense toggles."""
    return [
        DefenseConfig(
            momentum_fim=fim,
            stiffness_mask=stiffness,
            layer_weighted_clustering=clustering,
        )
        for fim, stiffness, clustering in itertools.product([True, False], repeat=3)
    ]


def run_single_experiment(
    defense: DefenseConfig,
    attack_stealth: float,
    non_iid_level: float,
    num_rounds: int,
    eval_window: int,
    seed: int,
) -> Dict[str, float]:
    """Run one simulation and collect its metrics.

    Args:
        defense: Defense toggles.
        attack_stealth: Attack stealth level.
        non_iid_level: Non-IID level.
        num_rounds: Number of rounds.
        eval_window: Trailing rounds to average detection over.
        seed: Random seed.

    Returns:
        Dictionary with experiment results.
    """
    config = SimulationConfig(
        non_iid_level=non_iid_level,
        attack_stealth=attack_stealth,
        seed=seed,
        defense=defense,
    )
    simulation = FederatedSimulation(config)

    window_detection = []
    window_malicious_accepted = []
    for round_idx in range(num_rounds):
        state = simulation.advance()
        if round_idx >= num_rounds - eval_window:
            window_detection.append(compute_detection_metrics(state.clients))
            num_malicious = sum(1 for c in state.clients if c.is_malicious)
            if num_malicious:
                window_malicious_accepted.append(
                    state.acceptance.malicious_accepted / num_malicious
                )

    return {
        "final_accuracy": float(simulation.state.global_accuracy),
        "final_asr": float(simulation.state.backdoor_success_rate),
        "malicious_acceptance": float(np.mean(window_malicious_accepted)) if window_malicious_accepted else 0.0,
        "tpr": float(np.mean([d["tpr"] for d in window_detection])) if window_detection else 0.0,
        "fpr": float(np.mean([d["fpr"] for d in window_detection])) if window_detection else 0.0,
    }


def run_all_experiments(args) -> Tuple[List[Dict], List[Dict]]:
    """Run all defense/stealth combinations.

    Args:
        args: Command line arguments.

    Returns:
        Tuple of (averaged results, per-run results).
    """
    results = []
    run_rows = []
    grid = defense_grid()
    total = len(grid) * len(args.stealth_levels) * args.num_runs
    logger.info(f"Running {total} simulations...")

    experiment_id = 0
    for stealth in args.stealth_levels:
        for defense in grid:
            run_results = [
                run_single_experiment(
                    defense=defense,
                    attack_stealth=stealth,
                    non_iid_level=args.non_iid_level,
                    num_rounds=args.num_rounds,
                    eval_window=args.eval_window,
                    seed=args.seed + run,
                )
                for run in range(args.num_runs)
            ]
            for run, run_result in enumerate(run_results):
                run_rows.append({
                    "defenses": defense.label(),
                    "attack_stealth": stealth,
                    "seed": args.seed + run,
                    **run_result,
                })
            averaged = {
                k: float(np.mean([r[k] for r in run_results]))
                for k in run_results[0]
            }
            results.append({
                "experiment_id": experiment_id,
                "defenses": defense.label(),
                "momentum_fim": defense.momentum_fim,
                "stiffness_mask": defense.stiffness_mask,
                "layer_weighted_clustering": defense.layer_weighted_clustering,
                "attack_stealth": stealth,
                "non_iid_level": args.non_iid_level,
                "num_rounds": args.num_rounds,
                "num_runs": args.num_runs,
                **averaged,
            })
            experiment_id += 1
            logger.info(
                f"Experiment {experiment_id}: stealth={stealth}, "
                f"defenses={defense.label()} -> "
                f"acc={averaged['final_accuracy']:.3f}, "
                f"asr={averaged['final_asr']:.3f}, "
                f"tpr={averaged['tpr']:.2f}"
            )

    return results, run_rows


def save_results(results: List[Dict], output_dir: Path) -> None:
    """Save experiment results to CSV and JSON.

    Args:
        results: List of experiment results.
        output_dir: Output directory.
    """
    output_dir.mkdir(parents=True, exist_ok=True)

    csv_path = output_dir / "defense_results.csv"
    fieldnames = list(results[0].keys())
    with open(csv_path, "w", newline="") as f:
        writer = csv.DictWriter(f, fieldnames=fieldnames)
        writer.writeheader()
        writer.writerows(results)
    logger.info(f"Saved results to {csv_path}")

    json_path = output_dir / "defense_results.json"
    json_data = {
        "timestamp": datetime.now().isoformat(),
        "num_experiments": len(results),
        "results": results,
    }
    with open(json_path, "w") as f:
        json.dump(json_data, f, indent=2)
    logger.info(f"Saved JSON to {json_path}")


def generate_summary_report(results: List[Dict], output_dir: Path) -> None:
    """Write a Markdown table of the averaged results.

    Args:
        results: List of experiment results.
        output_dir: Output directory.
    """
    report_lines = [
        "# Defense Comparison Summary",
        "",
        f"Generated: {datetime.now().isoformat()}",
        "",
        "| Stealth | Defenses | Accuracy | ASR | Mal. accepted | TPR | FPR |",
        "|---------|----------|----------|-----|---------------|-----|-----|",
    ]
    for r in sorted(results, key=lambda x: (x["attack_stealth"], x["defenses"])):
        report_lines.append(
            f"| {r['attack_stealth']:.1f} | {r['defenses']} | "
            f"{r['final_accuracy']:.3f} | {r['final_asr']:.3f} | "
            f"{r['malicious_acceptance']:.2f} | {r['tpr']:.2f} | {r['fpr']:.2f} |"
        )
    report_lines.extend([
        "",
        "## Interpretation",
        "",
        "- **ASR**: Lower is better (backdoor did not land)",
        "- **Mal. accepted**: Share of malicious updates that passed detection",
        "- **FPR**: Lower is better (fewer benign clients rejected)",
        "",
    ])

    report_path = output_dir / "defense_summary.md"
    with open(report_path, "w") as f:
        f.write("\n".join(report_lines))
    logger.info(f"Saved summary report to {report_path}")


def save_analysis(results: List[Dict], run_rows: List[Dict], output_dir: Path) -> None:
    """Save pivot tables, comparison plots and paired significance tests.

    Args:
        results: Averaged experiment results.
        run_rows: Per-run results.
        output_dir: Output directory.
    """
    for metric in ("malicious_acceptance", "final_asr", "fpr"):
        create_defense_table(results, metric, str(output_dir / f"table_{metric}.csv"))

    for metric in ("final_asr", "malicious_acceptance"):
        fig = plot_defense_comparison(results, metric, str(output_dir / f"comparison_{metric}.png"))
        plt.close(fig)

    analysis = compute_statistical_analysis(run_rows)
    stats_path = output_dir / "statistical_analysis.json"
    with open(stats_path, "w") as f:
        json.dump(analysis, f, indent=2)
    logger.info(f"Saved statistical analysis to {stats_path}")


def main():
    """Main entry point."""
    args = parse_args()

    logger.remove()
    logger.add(sys.stderr, level="INFO")

    output_dir = Path(args.output_dir)

    logger.info("Starting defense comparison...")
    logger.info(f"  Rounds: {args.num_rounds} (window {args.eval_window})")
    logger.info(f"  Stealth levels: {args.stealth_levels}")
    logger.info(f"  Runs per configuration: {args.num_runs}")

    results, run_rows = run_all_experiments(args)
    save_results(results, output_dir)
    generate_summary_report(results, output_dir)
    save_analysis(results, run_rows, output_dir)

    logger.info("Defense comparison complete!")
    logger.info(f"Results saved to: {output_dir}")


if __name__ == "__main__":
    main()
