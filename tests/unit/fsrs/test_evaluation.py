"""
Tests for evaluation metrics
"""

import numpy as np
import pytest

from recall_model.fsrs.evaluation import ModelEvaluation, collect_predictions, evaluate, rmse_bins
from recall_model.fsrs.parameters import ParameterVector
from recall_model.fsrs.trainer import FSRSTrainer


class TestRmseBins:
    """Tests for binned calibration error"""

    def test_perfect_calibration(self):
        predictions = np.array([0.25] * 4 + [0.75] * 4)
        labels = np.array([1, 0, 0, 0, 1, 1, 1, 0], dtype=float)
        assert rmse_bins(predictions, labels) == pytest.approx(0.0)

    def test_constant_offset(self):
        predictions = np.full(10, 0.9)
        labels = np.ones(10)
        assert rmse_bins(predictions, labels) == pytest.approx(0.1)

    def test_prediction_of_one_lands_in_last_bin(self):
        assert rmse_bins(np.array([1.0, 0.96]), np.array([1.0, 1.0])) == pytest.approx(0.02)

    def test_empty(self):
        assert rmse_bins(np.empty(0), np.empty(0)) == 0.0


class TestEvaluate:
    """Tests for whole-dataset evaluation"""

    def test_counts_every_review_after_the_first(self, synthetic_sequences):
        predictions, labels = collect_predictions(synthetic_sequences)
        expected = sum(len(seq) - 1 for seq in synthetic_sequences)
        assert len(predictions) == len(labels) == expected
        assert np.all((predictions > 0) & (predictions <= 1))

    def test_metrics_on_generating_weights(self, synthetic_sequences):
        result = evaluate(synthetic_sequences, ParameterVector.default())

        assert isinstance(result, ModelEvaluation)
        assert 0 < result.log_loss < 1
        assert 0.5 < result.auc <= 1.0
        assert result.rmse_bins < 0.1
        assert set(result.to_dict()) == {"log_loss", "rmse_bins", "auc", "count"}

    def test_log_loss_matches_training_loss(self, synthetic_sequences, default_params):
        result = evaluate(synthetic_sequences, default_params)
        assert result.log_loss == pytest.approx(
            FSRSTrainer().compute_loss(synthetic_sequences, default_params), rel=1e-6
        )

    def test_single_class_auc(self):
        result = evaluate([[(0, 3), (1, 3)], [(0, 4), (2, 3)]])
        assert result.auc == 0.5
        assert result.count == 2

    def test_no_predictions(self):
        result = evaluate([[(0, 3)]])
        assert result.count == 0
