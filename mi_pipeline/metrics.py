"""
Performance metrics for the simulated online evaluation

Two levels of performance are reported:
- single-sample accuracy: how often the classifier is right on one window
- trial accuracy: how often the accumulated decision delivers the right
  command, where timeouts count as errors

The confusion matrix and Cohen's kappa only consider decided trials.
"""

import logging
from dataclasses import dataclass, field
from typing import Dict, List, Sequence

import numpy as np
from sklearn.metrics import confusion_matrix

from .accumulation import TrialDecision


@dataclass(frozen=True)
class EvaluationMetrics:
    """Aggregate metrics of one evaluation"""
    single_sample_accuracy: float
    trial_accuracy: float
    n_trials: int
    n_decided: int
    n_timeouts: int
    latency: Dict[str, float]
    confusion: np.ndarray
    kappa: float
    class_accuracies: Dict[int, float] = field(default_factory=dict)

    def to_dict(self) -> Dict:
        return {
            'single_sample_accuracy': self.single_sample_accuracy,
            'trial_accuracy': self.trial_accuracy,
            'n_trials': self.n_trials,
            'n_decided': self.n_decided,
            'n_timeouts': self.n_timeouts,
            'latency': dict(self.latency),
            'confusion': self.confusion.tolist(),
            'kappa': self.kappa,
            'class_accuracies': {str(k): v for k, v in self.class_accuracies.items()},
        }


def single_sample_accuracy(correct: int, total: int) -> float:
    """Fraction of correctly classified windows (NaN when there are none)"""
    if total == 0:
        return float('nan')
    return correct / total


def trial_accuracy(decisions: Sequence[TrialDecision]) -> float:
    """Correct decided trials over all trials; timeouts count as errors"""
    if len(decisions) == 0:
        return float('nan')
    return sum(1 for d in decisions if d.decided and d.correct) / len(decisions)


def latency_stats(decisions: Sequence[TrialDecision]) -> Dict[str, float]:
    """Mean/std/median/min/max latency in seconds over decided trials"""
    latencies = np.array([d.latency for d in decisions if d.decided], dtype=np.float64)
    if latencies.size == 0:
        return {key: float('nan') for key in ('mean', 'std', 'median', 'min', 'max')}

    return {
        'mean': float(np.mean(latencies)),
        'std': float(np.std(latencies)),
        'median': float(np.median(latencies)),
        'min': float(np.min(latencies)),
        'max': float(np.max(latencies)),
    }


def confusion(decisions: Sequence[TrialDecision], class_a: int, class_b: int) -> np.ndarray:
    """
    2x2 confusion matrix of the decided trials

    Rows are the true class and columns the predicted class, both in the
    order [class_a, class_b].
    """
    decided = [d for d in decisions if d.decided]
    if not decided:
        return np.zeros((2, 2), dtype=np.int64)

    y_true = [d.true_label for d in decided]
    y_pred = [d.predicted_label for d in decided]
    return confusion_matrix(y_true, y_pred, labels=[class_a, class_b])


def cohen_kappa(cm: np.ndarray) -> float:
    """
    Cohen's kappa from a confusion matrix

    kappa = (Po - Pe) / (1 - Pe), with Po the observed agreement and Pe the
    agreement expected by chance from the marginals. Returns 1 when Pe is 1
    (perfect chance agreement) and 0 for an empty matrix.
    """
    cm = np.asarray(cm, dtype=np.float64)
    total = cm.sum()
    if total == 0:
        return 0.0

    po = np.trace(cm) / total
    pe = float(np.sum(cm.sum(axis=0) * cm.sum(axis=1))) / total ** 2
    if pe == 1.0:
        return 1.0
    return float((po - pe) / (1.0 - pe))


def class_accuracies(decisions: Sequence[TrialDecision], labels: Sequence[int]) -> Dict[int, float]:
    """Trial accuracy per true class (NaN for classes without trials)"""
    result = {}
    for label in labels:
        subset = [d for d in decisions if d.true_label == label]
        result[label] = trial_accuracy(subset)
    return result


def summarize(
    decisions: List[TrialDecision],
    ss_correct: int,
    ss_total: int,
    class_a: int,
    class_b: int
) -> EvaluationMetrics:
    """
    Compute every metric of one evaluation

    Args:
        decisions: Accumulator outcome of every trial
        ss_correct: Correctly classified windows
        ss_total: Classified windows
        class_a: Label of class A
        class_b: Label of class B

    Returns:
        EvaluationMetrics
    """
    cm = confusion(decisions, class_a, class_b)
    n_decided = sum(1 for d in decisions if d.decided)

    metrics = EvaluationMetrics(
        single_sample_accuracy=single_sample_accuracy(ss_correct, ss_total),
        trial_accuracy=trial_accuracy(decisions),
        n_trials=len(decisions),
        n_decided=n_decided,
        n_timeouts=len(decisions) - n_decided,
        latency=latency_stats(decisions),
        confusion=cm,
        kappa=cohen_kappa(cm),
        class_accuracies=class_accuracies(decisions, [class_a, class_b])
    )

    logging.info(f"Single-sample accuracy: {metrics.single_sample_accuracy:.3f} ({ss_correct}/{ss_total})")
    logging.info(f"Trial accuracy: {metrics.trial_accuracy:.3f} "
                 f"({n_decided} decided, {metrics.n_timeouts} timeouts)")
    logging.info(f"Mean latency: {metrics.latency['mean']:.3f}s, kappa: {metrics.kappa:.3f}")

    return metrics
