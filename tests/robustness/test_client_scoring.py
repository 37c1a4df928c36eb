"""Tests for client scoring and backdoor detection."""

import numpy as np
import pytest

from src.robustness import (
    ClientScore,
    DefenseConfig,
    DefensePipeline,
    DetectionContext,
    MagnitudeDetector,
    StiffnessConflictDetector,
    WeightedClusteringDetector,
    build_defense_stages,
)


@pytest.fixture
def context():
    """Uniform importance, zero reference direction, non-IID level 0.5."""
    return DetectionContext(
        importance=np.ones(20),
        true_direction=np.zeros(20),
        non_iid_level=0.5,
        momentum_fim=True,
    )


def spike(value: float, dim: int = 20) -> np.ndarray:
    """Gradient with a single non-zero coordinate."""
    gradient = np.zeros(dim)
    gradient[0] = value
    return gradient


class TestClientScore:
    """Tests for ClientScore dataclass."""

    def test_default_details(self):
        """Test that details defaults to empty dict."""
        score = ClientScore(client_id=0, score=1.5, is_outlier=False)
        assert score.details == {}


class TestDetectionContext:
    """Tests for DetectionContext validation."""

    def test_length_mismatch(self):
        """Test mismatched importance and reference lengths raise an error."""
        with pytest.raises(ValueError, match="lengths differ"):
            DetectionContext(importance=np.ones(20), true_direction=np.zeros(10))


class TestStiffnessConflictDetector:
    """Tests for StiffnessConflictDetector."""

    def test_uniform_score(self, context):
        """Test score with uniform importance is the mean absolute value."""
        detector = StiffnessConflictDetector()
        assert detector.score(np.full(20, -2.0), context) == pytest.approx(2.0)

    def test_weighted_score(self):
        """Test trigger coordinates are weighted by their importance."""
        importance = np.ones(20)
        importance[:5] = 10.0
        ctx = DetectionContext(importance=importance, true_direction=np.zeros(20))
        detector = StiffnessConflictDetector()

        # (5 * 10 + 15 * 1) / 20
        assert detector.score(np.ones(20), ctx) == pytest.approx(3.25)

    def test_threshold_with_momentum(self, context):
        """Test threshold is 12 * (1 + L) with momentum FIM."""
        assert StiffnessConflictDetector().threshold(context) == pytest.approx(18.0)

    def test_threshold_without_momentum(self):
        """Test threshold is 15 * (1 + L) without momentum FIM."""
        ctx = DetectionContext(
            importance=np.ones(20),
            true_direction=np.zeros(20),
            non_iid_level=0.5,
            momentum_fim=False,
        )
        assert StiffnessConflictDetector().threshold(ctx) == pytest.approx(22.5)

    def test_strict_threshold(self, context):
        """Test a score equal to the threshold is not rejected."""
        detector = StiffnessConflictDetector()
        score, rejected = detector.evaluate(np.full(20, 18.0), context)
        assert score == pytest.approx(18.0)
        assert not rejected


class TestWeightedClusteringDetector:
    """Tests for WeightedClusteringDetector."""

    def test_weighted_distance(self):
        """Test distance weights squared deviation by importance."""
        importance = np.ones(20)
        importance[:5] = 10.0
        ctx = DetectionContext(importance=importance, true_direction=np.ones(20))
        detector = WeightedClusteringDetector()

        # gradient deviates by 2 everywhere: 4 * (5 * 10 + 15)
        assert detector.score(np.full(20, 3.0), ctx) == pytest.approx(260.0)

    def test_unweighted_distance(self):
        """Test the unweighted variant ignores importance."""
        importance = np.ones(20)
        importance[:5] = 10.0
        ctx = DetectionContext(importance=importance, true_direction=np.ones(20))
        detector = WeightedClusteringDetector(weighted=False)

        assert detector.score(np.full(20, 3.0), ctx) == pytest.approx(80.0)

    def test_threshold(self, context):
        """Test threshold is 500 * (1 + L)."""
        assert WeightedClusteringDetector().threshold(context) == pytest.approx(750.0)

    def test_threshold_same_when_unweighted(self, context):
        """Test the threshold scaling does not depend on weighting."""
        assert WeightedClusteringDetector(weighted=False).threshold(context) == pytest.approx(750.0)


class TestMagnitudeDetector:
    """Tests for MagnitudeDetector."""

    def test_score_is_norm(self, context):
        """Test score is the Euclidean norm."""
        gradient = np.zeros(20)
        gradient[:2] = [3.0, 4.0]
        assert MagnitudeDetector().score(gradient, context) == pytest.approx(5.0)

    def test_threshold(self, context):
        """Test fixed threshold of 25."""
        assert MagnitudeDetector().threshold(context) == 25.0


class TestBuildDefenseStages:
    """Tests for the ordered defense list."""

    def test_order(self):
        """Test mechanisms are evaluated stiffness, clustering, magnitude."""
        stages = build_defense_stages(DefenseConfig())
        assert [s.name for s in stages] == [
            "stiffness_mask",
            "layer_weighted_clustering",
            "magnitude",
        ]

    def test_fallback_only_when_undefended(self):
        """Test the magnitude check is enabled only with both mechanisms off."""
        defended = build_defense_stages(DefenseConfig())
        undefended = build_defense_stages(
            DefenseConfig(stiffness_mask=False, layer_weighted_clustering=False)
        )
        assert [s.enabled for s in defended] == [True, True, False]
        assert [s.enabled for s in undefended] == [False, False, True]


class TestDefensePipeline:
    """Tests for DefensePipeline."""

    def test_small_gradient_accepted(self, context):
        """Test a small gradient passes every mechanism."""
        pipeline = DefensePipeline.from_config(DefenseConfig())
        result = pipeline.score_client(0, np.full(20, 0.5), context)

        assert result.is_outlier is False
        assert result.details["rejected_by"] is None
        assert result.score == pytest.approx(0.5)
        assert "layer_weighted_clustering" in result.details

    def test_stiffness_rejects_first(self, context):
        """Test a stiffness rejection skips the clustering mechanism."""
        pipeline = DefensePipeline.from_config(DefenseConfig())
        result = pipeline.score_client(3, np.full(20, 100.0), context)

        assert result.client_id == 3
        assert result.is_outlier is True
        assert result.details["rejected_by"] == "stiffness_mask"
        assert result.score == pytest.approx(100.0)
        assert "layer_weighted_clustering" not in result.details

    def test_clustering_rejects_after_stiffness_passes(self, context):
        """Test clustering catches a concentrated deviation."""
        pipeline = DefensePipeline.from_config(DefenseConfig())
        # stiffness 30 / 20 = 1.5, distance 900 > 750
        result = pipeline.score_client(0, spike(30.0), context)

        assert result.is_outlier is True
        assert result.details["rejected_by"] == "layer_weighted_clustering"
        assert result.score == pytest.approx(1.5)
        assert result.details["layer_weighted_clustering"] == pytest.approx(900.0)

    def test_clustering_only_reports_zero_stiffness(self, context):
        """Test stiffness score is 0 when that mechanism is disabled."""
        pipeline = DefensePipeline.from_config(DefenseConfig(stiffness_mask=False))
        result = pipeline.score_client(0, np.full(20, 0.5), context)

        assert result.score == 0.0
        assert "stiffness_mask" not in result.details

    def test_fallback_magnitude(self, context):
        """Test the magnitude check rejects large gradients when undefended."""
        pipeline = DefensePipeline.from_config(
            DefenseConfig(stiffness_mask=False, layer_weighted_clustering=False)
        )
        result = pipeline.score_client(0, spike(30.0), context)

        assert result.is_outlier is True
        assert result.details["rejected_by"] == "magnitude"
        assert result.score == 0.0

    def test_fallback_accepts_moderate_gradient(self, context):
        """Test the magnitude check accepts gradients with norm <= 25."""
        pipeline = DefensePipeline.from_config(
            DefenseConfig(stiffness_mask=False, layer_weighted_clustering=False)
        )
        result = pipeline.score_client(0, spike(25.0), context)
        assert result.is_outlier is False

    def test_fallback_not_run_when_stiffness_enabled(self, context):
        """Test the magnitude check is skipped if any mechanism is on."""
        pipeline = DefensePipeline.from_config(
            DefenseConfig(layer_weighted_clustering=False)
        )
        result = pipeline.score_client(0, spike(30.0), context)

        assert result.is_outlier is False
        assert "magnitude" not in result.details

    def test_score_clients(self, context):
        """Test scoring a batch keeps client order."""
        pipeline = DefensePipeline.from_config(DefenseConfig())
        updates = [np.full(20, 0.5), np.full(20, 100.0), spike(30.0)]

        scores = pipeline.score_clients(updates, context)

        assert [s.client_id for s in scores] == [0, 1, 2]
        assert [s.is_outlier for s in scores] == [False, True, True]

    def test_empty_input(self, context):
        """Test with empty input."""
        pipeline = DefensePipeline.from_config(DefenseConfig())
        assert pipeline.score_clients([], context) == []

    def test_dimension_mismatch(self, context):
        """Test a gradient of the wrong dimension raises an error."""
        pipeline = DefensePipeline.from_config(DefenseConfig())
        with pytest.raises(ValueError, match="does not match"):
            pipeline.score_client(0, np.zeros(10), context)

    def test_enabled_mechanisms(self):
        """Test enabled mechanism names."""
        pipeline = DefensePipeline.from_config(DefenseConfig(stiffness_mask=False))
        assert pipeline.enabled_mechanisms == ["layer_weighted_clustering"]

    def test_repr(self):
        """Test string representation."""
        assert "DefensePipeline" in repr(DefensePipeline.from_config(DefenseConfig()))
