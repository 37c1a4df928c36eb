"""Per-round reporting for the simulation.

Derives the views an external dashboard needs from a RoundState: the 2D
client projection, detection quality against the known client roles,
and a flat round summary.
"""

from typing import Dict, List, Sequence

import numpy as np

from src.robustness.aggregators import compute_acceptance_stats


def project_gradient(gradient: np.ndarray) -> Dict[str, float]:
    """Project a gradient onto two plotting axes.

    ``x = g[0] + 0.5 * g[2]`` and ``y = g[1] + 0.5 * g[3]``.
    """
    if len(gradient) < 4:
        raise ValueError(f"Gradient needs at least 4 coordinates, got {len(gradient)}")
    return {
        "x": float(gradient[0] + 0.5 * gradient[2]),
        "y": float(gradient[1] + 0.5 * gradient[3]),
    }


def project_clients(clients: Sequence) -> List[Dict]:
    """Scatter-plot records for a round's clients."""
    records = []
    for client in clients:
        point = project_gradient(client.gradient)
        records.append({
            "id": client.client_id,
            "x": point["x"],
            "y": point["y"],
            "type": client.client_type,
            "accepted": client.accepted,
            "score": client.stiffness_score,
        })
    return records


def compute_detection_metrics(clients: Sequence) -> Dict[str, float]:
    """Compute detection metrics against the clients' true roles.

    A rejected malicious client is a true positive, a rejected benign
    client a false positive.

    Args:
        clients: Processed clients of one round.

    Returns:
        Dictionary with tpr, fpr, precision and f1.
    """
    if not clients:
        return {"tpr": 0.0, "fpr": 0.0, "precision": 0.0, "f1": 0.0}

    num_malicious = sum(1 for c in clients if c.is_malicious)
    num_benign = len(clients) - num_malicious

    true_positives = sum(1 for c in clients if not c.accepted and c.is_malicious)
    false_positives = sum(1 for c in clients if not c.accepted and not c.is_malicious)

    tpr = true_positives / num_malicious if num_malicious else 0.0
    fpr = false_positives / num_benign if num_benign else 0.0
    precision = (
        true_positives / (true_positives + false_positives)
        if (true_positives + false_positives) > 0
        else 0.0
    )
    f1 = (
        2 * precision * tpr / (precision + tpr)
        if (precision + tpr) > 0
        else 0.0
    )

    return {
        "tpr": float(tpr),
        "fpr": float(fpr),
        "precision": float(precision),
        "f1": float(f1),
    }


def summarize_round(state) -> Dict:
    """Flat summary of one RoundState.

    Args:
        state: RoundState to summarize.

    Returns:
        Dictionary with metrics, acceptance counts, detection metrics and
        the importance vector as a list.
    """
    acceptance = compute_acceptance_stats(state.clients)
    summary = {
        "round": state.round,
        "global_accuracy": float(state.global_accuracy),
        "backdoor_success_rate": float(state.backdoor_success_rate),
        "num_clients": acceptance.num_clients,
        "accepted_count": acceptance.accepted_count,
        "malicious_accepted": acceptance.malicious_accepted,
        "attack_impact": float(acceptance.attack_impact),
        "importance_vector": [float(v) for v in state.importance_vector],
    }
    summary.update(compute_detection_metrics(state.clients))
    return summary
