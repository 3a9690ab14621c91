"""
Unit tests for the evaluation metrics
"""

import math

import numpy as np
import pytest

from mi_pipeline.accumulation import AccumulatorStatus, TrialDecision
from mi_pipeline.metrics import (
    cohen_kappa, confusion, latency_stats, single_sample_accuracy, summarize, trial_accuracy
)

HANDS, FEET = 773, 771


def _decided(true_label, predicted, latency, idx=0):
    return TrialDecision(
        trial_index=idx, true_label=true_label, predicted_label=predicted, latency=latency,
        n_samples=int(round(latency / 0.0625)), correct=true_label == predicted,
        status=AccumulatorStatus.DECIDED,
    )


def _timeout(true_label, idx=0):
    return TrialDecision(
        trial_index=idx, true_label=true_label, predicted_label=None, latency=None,
        n_samples=64, correct=False, status=AccumulatorStatus.TIMED_OUT,
    )


@pytest.fixture
def decisions():
    return [
        _decided(HANDS, HANDS, 1.0, 0),
        _decided(HANDS, FEET, 2.0, 1),
        _decided(FEET, FEET, 3.0, 2),
        _timeout(FEET, 3),
    ]


class TestAccuracy:
    """Tests for single-sample and trial accuracy."""

    def test_single_sample(self):
        assert single_sample_accuracy(30, 40) == pytest.approx(0.75)
        assert math.isnan(single_sample_accuracy(0, 0))

    def test_timeouts_count_as_errors(self, decisions):
        assert trial_accuracy(decisions) == pytest.approx(0.5)

    def test_empty(self):
        assert math.isnan(trial_accuracy([]))


class TestLatency:
    """Tests for latency statistics."""

    def test_stats_over_decided_trials(self, decisions):
        stats = latency_stats(decisions)
        assert stats["mean"] == pytest.approx(2.0)
        assert stats["median"] == pytest.approx(2.0)
        assert stats["min"] == pytest.approx(1.0)
        assert stats["max"] == pytest.approx(3.0)
        assert stats["std"] == pytest.approx(np.std([1.0, 2.0, 3.0]))

    def test_no_decisions(self):
        stats = latency_stats([_timeout(HANDS)])
        assert all(math.isnan(value) for value in stats.values())


class TestConfusionAndKappa:
    """Tests for the confusion matrix and Cohen's kappa."""

    def test_confusion_excludes_timeouts(self, decisions):
        cm = confusion(decisions, HANDS, FEET)
        assert cm.tolist() == [[1, 1], [0, 1]]

    def test_confusion_without_decisions(self):
        assert confusion([_timeout(HANDS)], HANDS, FEET).tolist() == [[0, 0], [0, 0]]

    def test_kappa_known_value(self):
        assert cohen_kappa(np.array([[20, 5], [10, 15]])) == pytest.approx(0.4)

    def test_kappa_perfect(self):
        assert cohen_kappa(np.array([[10, 0], [0, 10]])) == pytest.approx(1.0)

    def test_kappa_chance_agreement_one(self):
        assert cohen_kappa(np.array([[10, 0], [0, 0]])) == 1.0

    def test_kappa_empty(self):
        assert cohen_kappa(np.zeros((2, 2))) == 0.0

    def test_kappa_chance_level(self):
        assert cohen_kappa(np.array([[5, 5], [5, 5]])) == pytest.approx(0.0)


class TestSummarize:
    """Tests for the aggregate metrics."""

    def test_summary(self, decisions):
        metrics = summarize(decisions, ss_correct=60, ss_total=100, class_a=HANDS, class_b=FEET)

        assert metrics.n_trials == 4
        assert metrics.n_decided == 3
        assert metrics.n_timeouts == 1
        assert metrics.single_sample_accuracy == pytest.approx(0.6)
        assert metrics.trial_accuracy == pytest.approx(0.5)
        assert metrics.class_accuracies[HANDS] == pytest.approx(0.5)
        assert metrics.class_accuracies[FEET] == pytest.approx(0.5)

        as_dict = metrics.to_dict()
        assert as_dict["confusion"] == [[1, 1], [0, 1]]
        assert set(as_dict["class_accuracies"]) == {str(HANDS), str(FEET)}
