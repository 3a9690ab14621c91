"""
Unit tests for Fisher score feature selection
"""

import numpy as np
import pytest

from mi_pipeline.features import compute_fisher, fisher_map, fisher_scores, select_features, trial_features

HANDS, FEET = 773, 771


class TestFisherScores:
    """Tests for the per-feature Fisher score."""

    def test_known_value(self):
        X = np.array([[1.0], [3.0], [5.0], [7.0]])
        labels = np.array([HANDS, HANDS, FEET, FEET])
        # (2 - 6)^2 / (2 + 2)
        assert fisher_scores(X, labels, HANDS, FEET)[0] == pytest.approx(4.0)

    def test_single_sample_class_has_zero_variance(self):
        X = np.array([[1.0], [3.0], [6.0]])
        labels = np.array([HANDS, HANDS, FEET])
        # (2 - 6)^2 / (2 + 0)
        assert fisher_scores(X, labels, HANDS, FEET)[0] == pytest.approx(8.0)

    def test_empty_class_gives_zeros(self, caplog):
        X = np.ones((4, 3))
        scores = fisher_scores(X, np.full(4, HANDS), HANDS, FEET)
        np.testing.assert_array_equal(scores, np.zeros(3))
        assert "undefined" in caplog.text

    def test_nan_features_become_zero(self):
        X = np.array([[np.nan, 1.0], [np.nan, 2.0], [np.nan, 5.0], [np.nan, 6.0]])
        labels = np.array([HANDS, HANDS, FEET, FEET])
        scores = fisher_scores(X, labels, HANDS, FEET)
        assert scores[0] == 0.0
        assert scores[1] > 0.0
        assert np.all(np.isfinite(scores))

    def test_identical_classes_score_zero(self):
        X = np.ones((6, 2))
        labels = np.array([HANDS, FEET] * 3)
        np.testing.assert_allclose(fisher_scores(X, labels, HANDS, FEET), 0.0)


class TestSelection:
    """Tests for top-K selection and index bookkeeping."""

    def test_descending_order(self):
        scores = np.array([0.1, 3.0, 2.0, 0.5])
        selected = select_features(scores, 2, n_freq=2)
        assert [feat.index for feat in selected] == [1, 2]
        assert selected[0].score == pytest.approx(3.0)

    def test_ties_keep_flattened_order(self):
        selected = select_features(np.array([1.0, 2.0, 2.0, 2.0]), 3, n_freq=2)
        assert [feat.index for feat in selected] == [1, 2, 3]

    def test_index_decoding(self):
        scores = np.zeros(6)
        scores[4] = 1.0
        best = select_features(scores, 1, n_freq=3)[0]
        # Frequency varies fastest: index 4 = channel 1, frequency 1
        assert (best.freq_idx, best.chan_idx) == (1, 1)

    def test_k_capped(self):
        assert len(select_features(np.ones(4), 10, n_freq=2)) == 4

    def test_fisher_map_layout(self):
        scores = np.arange(6, dtype=float)
        fmap = fisher_map(scores, n_freq=3, n_chan=2)
        assert fmap.shape == (3, 2)
        assert fmap[1, 1] == 4.0


class TestComputeFisher:
    """Tests for the calibration-level entry point."""

    def test_trial_features_shape(self, separable_activity):
        X = trial_features(separable_activity)
        assert X.shape == (20, 6)

    def test_best_feature_is_discriminative_channel(self, separable_activity):
        result = compute_fisher(separable_activity, HANDS, FEET, k=3)

        assert result.best_channel == "C3"
        assert result.best_chan_idx == 0
        assert len(result.selected) == 3
        assert all(feat.chan_idx == 0 for feat in result.selected)
        assert result.max_score == pytest.approx(result.scores.max())
        assert result.fmap.shape == (3, 2)
        assert sorted(result.selected_indices.tolist()) == [0, 1, 2]
