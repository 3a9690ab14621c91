"""
Tests for the simulated online evaluation
"""

import numpy as np
import pytest

from mi_pipeline.erd import compute_erd
from mi_pipeline.evaluation import simulate_online
from mi_pipeline.features import compute_fisher
from mi_pipeline.models import single_sample_dataset, train_classifier

HANDS, FEET = 773, 771


@pytest.fixture
def model(separable_activity):
    fisher = compute_fisher(separable_activity, HANDS, FEET, k=3)
    X, y, _ = single_sample_dataset(separable_activity, fisher.selected_indices)
    return train_classifier(X, y, fisher.selected_indices)


class TestSimulateOnline:
    """End-to-end replay on separable trials."""

    def test_every_trial_decided_correctly(self, separable_activity, model, config):
        result = simulate_online(separable_activity, model, config)
        metrics = result.metrics

        assert metrics.n_trials == 20
        assert metrics.n_timeouts == 0
        assert metrics.trial_accuracy == pytest.approx(1.0)
        assert metrics.single_sample_accuracy > 0.95
        assert metrics.kappa == pytest.approx(1.0)
        assert metrics.confusion.tolist() == [[10, 0], [0, 10]]

    def test_latency_within_active_phase(self, separable_activity, model, config):
        result = simulate_online(separable_activity, model, config)
        assert all(d.latency < 30 * 0.0625 for d in result.decisions)
        assert result.metrics.latency["min"] > 0

    def test_posteriors_per_trial(self, separable_activity, model, config):
        result = simulate_online(separable_activity, model, config)
        assert len(result.posteriors) == 20
        assert all(p.shape == (30, 2) for p in result.posteriors)

    def test_strict_threshold_times_out(self, separable_activity, model, config):
        result = simulate_online(separable_activity, model, config.with_updates(threshold=1.0))
        # Smoothing never reaches exactly 1 from the uninformed start
        assert result.metrics.n_timeouts == 20
        assert np.isnan(result.metrics.latency["mean"])

    def test_parallel_prediction_matches_sequential(self, separable_activity, model, config):
        sequential = simulate_online(separable_activity, model, config)
        parallel = simulate_online(separable_activity, model, config.with_updates(n_jobs=2))
        assert [d.n_samples for d in sequential.decisions] == [d.n_samples for d in parallel.decisions]


class TestEndToEnd:
    """ERD, Fisher selection, classifier and accumulator chained on 20 trials."""

    def test_chain(self, separable_activity, config):
        erd = compute_erd(separable_activity, band=(8.0, 12.0), curve_channels=("C3", "Cz"))
        # Class A doubles the power of C3 after the cue
        assert erd.hands_map[0] == pytest.approx(np.log(2.0), abs=0.05)
        assert abs(erd.feet_map[0]) < 0.05

        fisher = compute_fisher(separable_activity, HANDS, FEET, k=config.n_features)
        assert fisher.best_channel == "C3"

        X, y, _ = single_sample_dataset(separable_activity, fisher.selected_indices)
        model = train_classifier(X, y, fisher.selected_indices, kind="lda")
        metrics = simulate_online(separable_activity, model, config).metrics

        assert metrics.n_trials == 20
        assert metrics.trial_accuracy >= 0.9
        assert metrics.latency["mean"] < separable_activity.n_time * separable_activity.wshift
