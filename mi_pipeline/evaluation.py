"""
Simulated online evaluation

Replays recorded trials through the decoder as if they were streamed: every
active-phase window is classified, and the posteriors are fed one at a time
to the evidence accumulator, which stops at the first threshold crossing.
"""

import logging
from dataclasses import dataclass
from typing import List

import numpy as np
from joblib import Parallel, delayed

from .accumulation import EvidenceAccumulator, TrialDecision
from .config import Config
from .epoching import Activity
from .metrics import EvaluationMetrics, summarize
from .models import TrainedModel, flatten_samples, predict


@dataclass(frozen=True)
class EvaluationResult:
    """Per-trial decisions, posteriors and aggregate metrics"""
    decisions: List[TrialDecision]
    posteriors: List[np.ndarray]
    metrics: EvaluationMetrics


def _predict_trial(model: TrainedModel, samples: np.ndarray):
    return predict(model, flatten_samples(samples, model.selected))


def simulate_online(activity: Activity, model: TrainedModel, config: Config) -> EvaluationResult:
    """
    Evaluate a trained model on a set of trials

    Prediction of the trials may run in parallel (``config.n_jobs``); the
    accumulator replay is always sequential within a trial.

    Args:
        activity: Trials to evaluate (online runs, or calibration runs for
            the offline estimate)
        model: Trained classifier
        config: Pipeline configuration (accumulation parameters, codes)

    Returns:
        EvaluationResult
    """
    class_a, class_b = config.class_codes
    accumulator = EvidenceAccumulator(
        alpha=config.alpha,
        threshold=config.threshold,
        class_a=class_a,
        class_b=class_b,
        seconds_per_sample=activity.wshift,
        column_a=model.column(class_a),
        column_b=model.column(class_b)
    )

    logging.info(f"Replaying {activity.n_trials} trials "
                 f"(alpha={config.alpha}, threshold={config.threshold})")

    predictions = Parallel(n_jobs=config.n_jobs)(
        delayed(_predict_trial)(model, activity.trial_samples(trial_idx))
        for trial_idx in range(activity.n_trials)
    )

    decisions = []
    posteriors = []
    ss_correct, ss_total = 0, 0

    for trial_idx, (labels, proba) in enumerate(predictions):
        true_label = int(activity.labels[trial_idx])
        ss_correct += int(np.sum(labels == true_label))
        ss_total += len(labels)

        decision = accumulator.run(proba, true_label, trial_index=trial_idx)
        decisions.append(decision)
        posteriors.append(proba)

    metrics = summarize(decisions, ss_correct, ss_total, class_a, class_b)
    return EvaluationResult(decisions=decisions, posteriors=posteriors, metrics=metrics)
