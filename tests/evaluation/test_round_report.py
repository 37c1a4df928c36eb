"""Tests for per-round reporting."""

import numpy as np
import pytest

from src.evaluation import (
    compute_detection_metrics,
    project_clients,
    project_gradient,
    summarize_round,
)
from src.federated import FederatedSimulation, SimulationConfig
from src.federated.client import SimulatedClient


def make_client(client_id, client_type, accepted, gradient=None):
    if gradient is None:
        gradient = np.zeros(5)
    return SimulatedClient(
        client_id=client_id,
        client_type=client_type,
        data_distribution=0.0,
        gradient=gradient,
        stiffness_score=1.25,
        accepted=accepted,
    )


class TestProjection:
    """Tests for the 2D gradient projection."""

    def test_project_gradient(self):
        """Test x = g0 + 0.5 g2 and y = g1 + 0.5 g3."""
        point = project_gradient(np.array([1.0, 2.0, 4.0, -2.0, 100.0]))
        assert point == {"x": pytest.approx(3.0), "y": pytest.approx(1.0)}

    def test_too_short(self):
        """Test gradients with fewer than 4 coordinates raise an error."""
        with pytest.raises(ValueError, match="at least 4 coordinates"):
            project_gradient(np.zeros(3))

    def test_project_clients(self):
        """Test scatter records carry role, decision and score."""
        client = make_client(7, "malicious", False, np.array([2.0, 0.0, 2.0, 4.0, 0.0]))
        records = project_clients([client])

        assert records == [{
            "id": 7,
            "x": pytest.approx(3.0),
            "y": pytest.approx(2.0),
            "type": "malicious",
            "accepted": False,
            "score": 1.25,
        }]


class TestDetectionMetrics:
    """Tests for compute_detection_metrics."""

    def test_perfect_detection(self):
        """Test rejecting exactly the malicious clients."""
        clients = [
            make_client(0, "malicious", False),
            make_client(1, "benign", True),
        ]
        metrics = compute_detection_metrics(clients)
        assert metrics == {"tpr": 1.0, "fpr": 0.0, "precision": 1.0, "f1": 1.0}

    def test_partial_detection(self):
        """Test mixed true and false positives."""
        clients = [
            make_client(0, "malicious", False),
            make_client(1, "malicious", True),
            make_client(2, "benign", False),
            make_client(3, "benign", True),
        ]
        metrics = compute_detection_metrics(clients)

        assert metrics["tpr"] == pytest.approx(0.5)
        assert metrics["fpr"] == pytest.approx(0.5)
        assert metrics["precision"] == pytest.approx(0.5)
        assert metrics["f1"] == pytest.approx(0.5)

    def test_nothing_rejected(self):
        """Test all-zero metrics when no client is rejected."""
        clients = [make_client(0, "malicious", True), make_client(1, "benign", True)]
        assert compute_detection_metrics(clients) == {
            "tpr": 0.0, "fpr": 0.0, "precision": 0.0, "f1": 0.0,
        }

    def test_empty(self):
        """Test with no clients."""
        assert compute_detection_metrics([])["tpr"] == 0.0


class TestSummarizeRound:
    """Tests for summarize_round."""

    def test_summary_fields(self):
        """Test the summary matches the round state."""
        simulation = FederatedSimulation(SimulationConfig(seed=3))
        state = simulation.advance()
        summary = summarize_round(state)

        assert summary["round"] == 1
        assert summary["global_accuracy"] == state.global_accuracy
        assert summary["num_clients"] == 20
        assert summary["accepted_count"] == state.acceptance.accepted_count
        assert summary["malicious_accepted"] == state.acceptance.malicious_accepted
        assert len(summary["importance_vector"]) == 20
        assert {"tpr", "fpr", "precision", "f1"} <= set(summary)

    def test_initial_state_summary(self):
        """Test summarizing round 0 with no clients."""
        summary = summarize_round(FederatedSimulation().state)
        assert summary["round"] == 0
        assert summary["num_clients"] == 0
        assert summary["tpr"] == 0.0
