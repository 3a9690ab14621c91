"""
Classifier training for Motor Imagery decoding

The decoder is a linear classifier trained on single PSD samples: every
window of the active phase of every calibration trial is one training row,
restricted to the Fisher-selected (frequency, channel) features. At run time
the classifier produces a posterior per window, which the evidence
accumulator integrates into a trial decision.

The classifier is an sklearn Pipeline (scaler + estimator), so any
probabilistic estimator can be swapped in.
"""

import logging
from dataclasses import dataclass
from typing import List, Sequence, Tuple

import joblib
import numpy as np
from sklearn.discriminant_analysis import LinearDiscriminantAnalysis, QuadraticDiscriminantAnalysis
from sklearn.linear_model import LogisticRegression
from sklearn.model_selection import StratifiedGroupKFold
from sklearn.pipeline import Pipeline
from sklearn.preprocessing import StandardScaler

from .epoching import Activity


@dataclass(frozen=True)
class TrainedModel:
    """
    Fitted classifier with the feature selection it was trained on

    Attributes:
        pipeline: Fitted sklearn Pipeline
        selected: Flattened feature indices (``chan * n_freq + freq``)
        classes: Class labels in the order of the probability columns
        kind: Estimator name ("lda", "qda" or "logistic")
    """
    pipeline: Pipeline
    selected: np.ndarray
    classes: Tuple[int, ...]
    kind: str = "lda"

    def column(self, label: int) -> int:
        """Index of the probability column of ``label``"""
        if label not in self.classes:
            raise ValueError(f"Label {label} is not one of the model classes {self.classes}")
        return self.classes.index(label)


def build_classifier(kind: str = "lda", random_state: int = 42) -> Pipeline:
    """
    Build the classification pipeline

    - lda: Linear Discriminant Analysis, the standard MI decoder (Gaussian
      classes with shared covariance, fast and hard to overfit)
    - qda: Quadratic Discriminant Analysis (per-class covariance)
    - logistic: L2-regularized logistic regression

    Args:
        kind: Estimator name
        random_state: Seed for estimators that use one

    Returns:
        Unfitted sklearn Pipeline
    """
    if kind == "lda":
        estimator = LinearDiscriminantAnalysis()
    elif kind == "qda":
        estimator = QuadraticDiscriminantAnalysis(reg_param=1e-3)
    elif kind == "logistic":
        estimator = LogisticRegression(max_iter=1000, random_state=random_state)
    else:
        raise ValueError(f"Unknown classifier '{kind}'. Use 'lda', 'qda' or 'logistic'.")

    logging.debug(f"Building scaler + {kind} pipeline")
    return Pipeline([
        ('scaler', StandardScaler()),
        (kind, estimator)
    ])


def flatten_samples(samples: np.ndarray, selected: Sequence[int]) -> np.ndarray:
    """
    Turn PSD samples into feature rows

    Args:
        samples: PSD samples [time x freq x channel]
        selected: Flattened feature indices to keep

    Returns:
        Feature rows [time x len(selected)]
    """
    n_time = samples.shape[0]
    flat = samples.transpose(0, 2, 1).reshape(n_time, -1)
    return flat[:, np.asarray(selected, dtype=np.int64)]


def single_sample_dataset(
    activity: Activity,
    selected: Sequence[int]
) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
    """
    Build the single-sample training set from the active phase

    Args:
        activity: Calibration activity
        selected: Flattened feature indices

    Returns:
        Tuple of:
        - X: Feature rows [samples x K]
        - y: Trial label of each row
        - trial_index: Trial of origin of each row (for grouped CV)
    """
    rows, labels, groups = [], [], []
    for trial_idx in range(activity.n_trials):
        feats = flatten_samples(activity.trial_samples(trial_idx), selected)
        rows.append(feats)
        labels.append(np.full(len(feats), activity.labels[trial_idx], dtype=np.int64))
        groups.append(np.full(len(feats), trial_idx, dtype=np.int64))

    if not rows:
        return np.zeros((0, len(selected))), np.zeros(0, dtype=np.int64), np.zeros(0, dtype=np.int64)

    X = np.concatenate(rows, axis=0)
    y = np.concatenate(labels)
    trial_index = np.concatenate(groups)

    logging.info(f"Single-sample dataset: {X.shape[0]} samples x {X.shape[1]} features from {activity.n_trials} trials")
    return X, y, trial_index


def train_classifier(
    X: np.ndarray,
    y: np.ndarray,
    selected: Sequence[int],
    kind: str = "lda",
    random_state: int = 42
) -> TrainedModel:
    """
    Fit the classifier on single-sample features

    Args:
        X: Feature rows [samples x K]
        y: Labels
        selected: Feature indices the columns of X correspond to
        kind: Estimator name
        random_state: Seed for estimators that use one

    Returns:
        TrainedModel

    Raises:
        ValueError: If fewer than two classes are present
    """
    classes = np.unique(y)
    if len(classes) < 2:
        raise ValueError(f"Training requires two classes, got {classes.tolist()}")

    pipeline = build_classifier(kind, random_state=random_state)
    pipeline.fit(X, y)

    train_accuracy = pipeline.score(X, y)
    logging.info(f"Trained {kind.upper()} on {X.shape[0]} samples, training accuracy: {train_accuracy:.3f}")

    return TrainedModel(
        pipeline=pipeline,
        selected=np.asarray(selected, dtype=np.int64),
        classes=tuple(int(c) for c in pipeline.classes_),
        kind=kind
    )


def predict(model: TrainedModel, X: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
    """
    Predict labels and posteriors for feature rows

    Returns:
        Tuple of (labels [samples], proba [samples x 2]); rows of proba sum
        to 1 and columns follow ``model.classes``
    """
    if len(X) == 0:
        return np.zeros(0, dtype=np.int64), np.zeros((0, len(model.classes)))

    proba = model.pipeline.predict_proba(X)
    labels = np.asarray(model.classes)[np.argmax(proba, axis=1)]
    return labels, proba


def cross_validate(
    kind: str,
    X: np.ndarray,
    y: np.ndarray,
    groups: np.ndarray,
    folds: int = 5,
    seed: int = 42
) -> List[float]:
    """
    Grouped stratified cross-validation of the single-sample classifier

    Samples of one trial are strongly correlated (overlapping windows), so
    folds are built over trials: no trial contributes samples to both the
    training and the test split.

    Args:
        kind: Estimator name
        X: Feature rows
        y: Labels
        groups: Trial index of each row
        folds: Requested number of folds (reduced to the smallest class size)
        seed: Random seed for fold generation

    Returns:
        Accuracy of each fold (empty when too few trials per class)
    """
    trial_labels = {}
    for group, label in zip(groups, y):
        trial_labels[int(group)] = int(label)
    counts = np.unique(list(trial_labels.values()), return_counts=True)[1]

    n_splits = min(folds, int(counts.min())) if len(counts) >= 2 else 0
    if n_splits < 2:
        logging.warning(f"Not enough trials per class for cross-validation (class sizes {counts.tolist()})")
        return []

    logging.info(f"Starting {n_splits}-fold grouped cross-validation over {len(trial_labels)} trials")

    splitter = StratifiedGroupKFold(n_splits=n_splits, shuffle=True, random_state=seed)
    fold_scores = []
    for fold, (train_idx, test_idx) in enumerate(splitter.split(X, y, groups), start=1):
        if len(np.unique(y[train_idx])) < 2:
            logging.warning(f"Fold {fold}: training split has a single class, skipped")
            continue
        pipeline = build_classifier(kind, random_state=seed)
        pipeline.fit(X[train_idx], y[train_idx])
        score = float(pipeline.score(X[test_idx], y[test_idx]))
        fold_scores.append(score)
        logging.debug(f"Fold {fold}: accuracy {score:.3f}")

    if fold_scores:
        logging.info(f"Cross-validation accuracy: {np.mean(fold_scores):.3f} ± {np.std(fold_scores):.3f}")
    return fold_scores


def save_model(model: TrainedModel, path: str) -> None:
    """Persist a trained model with joblib"""
    joblib.dump(model, path)
    logging.info(f"Model saved to: {path}")


def load_model(path: str) -> TrainedModel:
    """Load a model saved by ``save_model``"""
    model = joblib.load(path)
    if not isinstance(model, TrainedModel):
        raise ValueError(f"{path} does not contain a TrainedModel")
    logging.info(f"Model loaded from: {path}")
    return model
