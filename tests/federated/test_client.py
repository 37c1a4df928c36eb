"""Tests for simulated clients and gradient generation."""

import numpy as np
import pytest

from src.federated.client import ClientGenerator, SimulatedClient, non_iid_gradient
from src.federated.config import SimulationConfig


@pytest.fixture
def true_direction():
    """Fixed reference direction."""
    return np.linspace(-1.0, 1.0, 20)


class TestNonIIDGradient:
    """Tests for non_iid_gradient."""

    def test_zero_level_returns_true_direction(self, true_direction):
        """Test L = 0 removes both noise and bias."""
        rng = np.random.default_rng(0)
        gradient = non_iid_gradient(true_direction, 0.3, 0.0, rng)
        np.testing.assert_allclose(gradient, true_direction)

    def test_shape(self, true_direction):
        """Test output shape matches the reference."""
        rng = np.random.default_rng(0)
        assert non_iid_gradient(true_direction, 0.5, 1.0, rng).shape == (20,)

    def test_deterministic(self, true_direction):
        """Test same seed gives the same gradient."""
        g1 = non_iid_gradient(true_direction, 0.25, 0.5, np.random.default_rng(3))
        g2 = non_iid_gradient(true_direction, 0.25, 0.5, np.random.default_rng(3))
        np.testing.assert_array_equal(g1, g2)

    def test_input_not_modified(self, true_direction):
        """Test the reference direction is left unchanged."""
        original = true_direction.copy()
        non_iid_gradient(true_direction, 0.5, 2.0, np.random.default_rng(0))
        np.testing.assert_array_equal(true_direction, original)


class TestSimulatedClient:
    """Tests for SimulatedClient."""

    def test_defaults(self):
        """Test a new client is accepted with zero score."""
        client = SimulatedClient(0, "benign", 0.0, np.zeros(5))
        assert client.accepted is True
        assert client.stiffness_score == 0.0
        assert client.is_malicious is False

    def test_unknown_client_type(self):
        """Test roles outside benign/malicious are rejected."""
        with pytest.raises(ValueError, match="client_type must be one of"):
            SimulatedClient(0, "honest", 0.0, np.zeros(5))

    def test_with_decision_copies(self):
        """Test with_decision returns a new client and leaves the original."""
        client = SimulatedClient(1, "malicious", 0.9, np.zeros(5))
        decided = client.with_decision(3.5, False)

        assert decided is not client
        assert decided.accepted is False
        assert decided.stiffness_score == 3.5
        assert decided.is_malicious is True
        assert client.accepted is True
        assert client.stiffness_score == 0.0


class TestClientGenerator:
    """Tests for ClientGenerator."""

    def test_roles_and_distributions(self, true_direction):
        """Test malicious clients come first and share distribution 0.9."""
        generator = ClientGenerator(num_clients=20, malicious_ratio=0.2)
        clients = generator.generate(true_direction, np.random.default_rng(0))

        assert [c.client_id for c in clients] == list(range(20))
        assert [c.client_type for c in clients[:4]] == ["malicious"] * 4
        assert all(c.client_type == "benign" for c in clients[4:])
        assert all(c.data_distribution == 0.9 for c in clients[:4])
        assert clients[10].data_distribution == pytest.approx(0.5)

    def test_initial_decision_state(self, true_direction):
        """Test generated clients start accepted with zero score."""
        clients = ClientGenerator().generate(true_direction, np.random.default_rng(0))
        assert all(c.accepted for c in clients)
        assert all(c.stiffness_score == 0.0 for c in clients)

    def test_malicious_trigger_shift(self, true_direction):
        """Test trigger coordinates are shifted by -5 * strength."""
        generator = ClientGenerator(
            num_clients=5, malicious_ratio=1.0, non_iid_level=0.0, attack_stealth=0.6
        )
        clients = generator.generate(true_direction, np.random.default_rng(0))

        for client in clients:
            np.testing.assert_allclose(client.gradient[:5], true_direction[:5] - 4.5)

    def test_benign_unaffected_by_attack(self, true_direction):
        """Test benign gradients equal the reference at L = 0."""
        generator = ClientGenerator(
            num_clients=10, malicious_ratio=0.0, non_iid_level=0.0
        )
        clients = generator.generate(true_direction, np.random.default_rng(0))
        for client in clients:
            np.testing.assert_allclose(client.gradient, true_direction)

    def test_deterministic(self, true_direction):
        """Test same seed gives identical clients."""
        generator = ClientGenerator()
        c1 = generator.generate(true_direction, np.random.default_rng(11))
        c2 = generator.generate(true_direction, np.random.default_rng(11))
        for a, b in zip(c1, c2):
            np.testing.assert_array_equal(a.gradient, b.gradient)

    def test_no_malicious_when_ratio_zero(self, true_direction):
        """Test ratio 0 produces only benign clients."""
        generator = ClientGenerator(num_clients=7, malicious_ratio=0.0)
        clients = generator.generate(true_direction, np.random.default_rng(0))
        assert not any(c.is_malicious for c in clients)

    def test_generate_follows_partition(self, true_direction):
        """Test generated roles and distributions match the partitioner."""
        generator = ClientGenerator(num_clients=10, malicious_ratio=0.3)
        clients = generator.generate(true_direction, np.random.default_rng(0))
        partition = generator.partitioner.partition()

        assert [c.client_type for c in clients] == [partition[i]["type"] for i in range(10)]
        assert [c.data_distribution for c in clients] == [
            partition[i]["data_distribution"] for i in range(10)
        ]

    def test_from_config(self):
        """Test creation from a SimulationConfig."""
        config = SimulationConfig(client_count=12, malicious_ratio=0.25, attack_stealth=0.3)
        generator = ClientGenerator.from_config(config)

        assert generator.num_clients == 12
        assert generator.partitioner.num_malicious == 3
        assert generator.attack.strength == pytest.approx(1.2)

    def test_repr(self):
        """Test string representation."""
        assert "ClientGenerator" in repr(ClientGenerator())
