"""
Fisher score feature selection for Motor Imagery classification

Every (frequency, channel) pair of the PSD is a candidate feature. The Fisher
score measures how well one feature separates the two classes:

    F = (mean_A - mean_B)^2 / (var_A + var_B + eps)

A large score means the class means are far apart compared to the spread
within each class. The top-K features are kept for the classifier.

Feature vectors are flattened with the frequency index varying fastest:
``index = chan_idx * n_freq + freq_idx``.
"""

import logging
from dataclasses import dataclass
from typing import List, NamedTuple

import numpy as np

from .epoching import Activity


class FeatureScore(NamedTuple):
    """One selected feature"""
    index: int
    freq_idx: int
    chan_idx: int
    score: float


@dataclass(frozen=True)
class FisherResult:
    """
    Fisher scores and the selected features of one calibration

    Attributes:
        scores: Score per flattened feature [n_freq * n_chan]
        fmap: Scores reshaped to [freq x channel] for plotting
        selected: Top-K features, best first
        max_score / mean_score: Summary of ``scores``
        best_freq / best_channel: Location of the best feature
    """
    scores: np.ndarray
    fmap: np.ndarray
    selected: List[FeatureScore]
    max_score: float
    mean_score: float
    best_freq_idx: int
    best_chan_idx: int
    best_freq: float
    best_channel: str

    @property
    def selected_indices(self) -> np.ndarray:
        return np.array([feat.index for feat in self.selected], dtype=np.int64)


def trial_features(activity: Activity) -> np.ndarray:
    """
    Time-average of every trial's active phase

    Args:
        activity: Trial activity

    Returns:
        Feature matrix [trial x (n_freq * n_chan)]; rows of trials without a
        valid active sample are NaN
    """
    active = activity.active_phase()
    if activity.n_trials == 0:
        return np.zeros((0, activity.n_freqs * activity.n_channels))

    mean_active = np.ma.filled(active.mean(axis=0).astype(np.float64), np.nan)  # [freq x chan x trial]
    # [trial x chan x freq] so that frequency varies fastest after flattening
    return mean_active.transpose(2, 1, 0).reshape(activity.n_trials, -1)


def fisher_scores(
    X: np.ndarray,
    labels: np.ndarray,
    class_a: int,
    class_b: int,
    eps: float = 1e-12
) -> np.ndarray:
    """
    Fisher score of every feature column

    Uses the unbiased variance; a class with a single sample has variance 0.
    If either class is empty the scores are all zero. Non-finite scores
    (e.g. from NaN features) are replaced by 0.

    Args:
        X: Features [samples x features]
        labels: Class label per row
        class_a: Label of class A
        class_b: Label of class B
        eps: Regularization added to the denominator

    Returns:
        Scores [features], non-negative and finite
    """
    n_features = X.shape[1]
    labels = np.asarray(labels)
    X_a = X[labels == class_a]
    X_b = X[labels == class_b]

    if len(X_a) == 0 or len(X_b) == 0:
        logging.warning(f"Fisher score undefined with class sizes {len(X_a)}/{len(X_b)}, returning zeros")
        return np.zeros(n_features)

    def _var(values: np.ndarray) -> np.ndarray:
        if len(values) < 2:
            return np.zeros(n_features)
        return np.var(values, axis=0, ddof=1)

    with np.errstate(invalid='ignore', divide='ignore'):
        scores = (X_a.mean(axis=0) - X_b.mean(axis=0)) ** 2 / (_var(X_a) + _var(X_b) + eps)

    n_bad = int(np.sum(~np.isfinite(scores)))
    if n_bad > 0:
        logging.debug(f"{n_bad} non-finite Fisher scores set to 0")
        scores = np.where(np.isfinite(scores), scores, 0.0)

    return scores


def select_features(scores: np.ndarray, k: int, n_freq: int) -> List[FeatureScore]:
    """
    Pick the K best features

    The sort is stable and descending, so ties keep their flattened order.

    Args:
        scores: Fisher scores [n_freq * n_chan]
        k: Number of features to keep (capped at the number available)
        n_freq: Number of frequencies (to decode the flattened index)

    Returns:
        List of FeatureScore, best first
    """
    order = np.argsort(-scores, kind='stable')[:min(k, len(scores))]
    return [
        FeatureScore(index=int(idx), freq_idx=int(idx % n_freq),
                     chan_idx=int(idx // n_freq), score=float(scores[idx]))
        for idx in order
    ]


def fisher_map(scores: np.ndarray, n_freq: int, n_chan: int) -> np.ndarray:
    """Reshape flattened scores into a [freq x channel] map"""
    return scores.reshape(n_chan, n_freq).T


def compute_fisher(
    activity: Activity,
    class_a: int,
    class_b: int,
    k: int = 10,
    eps: float = 1e-12
) -> FisherResult:
    """
    Score and select features from the trial-averaged active phase

    Args:
        activity: Calibration activity
        class_a: Label of class A
        class_b: Label of class B
        k: Number of features to select
        eps: Fisher score regularization

    Returns:
        FisherResult
    """
    n_freq, n_chan = activity.n_freqs, activity.n_channels

    X = trial_features(activity)
    scores = fisher_scores(X, activity.labels, class_a, class_b, eps=eps)
    selected = select_features(scores, k, n_freq)

    if len(scores) > 0:
        best = int(np.argmax(scores))
        best_freq_idx, best_chan_idx = best % n_freq, best // n_freq
        max_score, mean_score = float(scores[best]), float(scores.mean())
    else:
        best_freq_idx, best_chan_idx = 0, 0
        max_score, mean_score = 0.0, 0.0

    best_freq = float(activity.freqs[best_freq_idx]) if n_freq > 0 else float('nan')
    best_channel = activity.ch_names[best_chan_idx] if n_chan > 0 else ""

    logging.info(f"Fisher score: max {max_score:.3f} at {best_freq:.1f} Hz / {best_channel}, mean {mean_score:.3f}")
    for rank, feat in enumerate(selected[:5], start=1):
        logging.debug(f"  #{rank}: {activity.freqs[feat.freq_idx]:.1f} Hz, "
                      f"{activity.ch_names[feat.chan_idx]} (F={feat.score:.3f})")

    return FisherResult(
        scores=scores,
        fmap=fisher_map(scores, n_freq, n_chan),
        selected=selected,
        max_score=max_score,
        mean_score=mean_score,
        best_freq_idx=best_freq_idx,
        best_chan_idx=best_chan_idx,
        best_freq=best_freq,
        best_channel=best_channel
    )
