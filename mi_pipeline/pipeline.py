"""
Subject-level Motor Imagery pipeline

Chains the components for one subject:

1. Offline (calibration) runs: spectrogram -> trials -> ERD + Fisher scores
   -> single-sample classifier -> offline accumulation estimate
2. Online runs: spectrogram -> trials -> simulated online replay with the
   calibrated classifier

and runs the same analysis over a batch of subjects, isolating failures so
that one broken subject never aborts the batch.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple

import numpy as np
from joblib import Parallel, delayed

from .config import Config, NoDataError, validate_config
from .data_io import RawRun, load_run, load_spatial_filter, make_laplacian
from .epoching import Activity, segment_trials
from .erd import (
    ClassMeanERD, ERDResult, GrandAverage, class_mean_erd, compute_erd, grand_average, lateralization_index
)
from .evaluation import EvaluationResult, simulate_online
from .events import align_events, concatenate_runs
from .features import FisherResult, compute_fisher
from .models import TrainedModel, cross_validate, predict, single_sample_dataset, train_classifier
from .spectral import ChannelMismatchError, WindowedPSD, featurize_run, window_samples


@dataclass(frozen=True)
class CalibrationResult:
    """Everything learned from the calibration runs of one subject"""
    n_trials: int
    erd: ERDResult
    fisher: FisherResult
    model: TrainedModel
    single_sample_accuracy: float
    offline: EvaluationResult
    cv_scores: List[float] = field(default_factory=list)


@dataclass(frozen=True)
class SubjectStats:
    """Cross-subject summary statistics of one subject"""
    subject: str
    n_trials: int
    max_fisher: float
    mean_fisher: float
    best_freq: float
    best_channel: str
    peak_erd: float
    lateralization: float
    online_accuracy: float = float('nan')
    kappa: float = float('nan')

    def to_row(self) -> Dict[str, Any]:
        return {
            'subject': self.subject,
            'n_trials': self.n_trials,
            'max_fisher': self.max_fisher,
            'mean_fisher': self.mean_fisher,
            'best_freq': self.best_freq,
            'best_channel': self.best_channel,
            'peak_erd': self.peak_erd,
            'lateralization': self.lateralization,
            'online_accuracy': self.online_accuracy,
            'kappa': self.kappa,
        }


@dataclass(frozen=True)
class SubjectReport:
    subject: str
    calibration: CalibrationResult
    stats: SubjectStats
    online: Optional[EvaluationResult] = None
    class_erd: Optional[ClassMeanERD] = None


@dataclass
class BatchReport:
    """Reports of the subjects that completed and errors of those that failed"""
    reports: Dict[str, SubjectReport] = field(default_factory=dict)
    failures: Dict[str, str] = field(default_factory=dict)
    grand_average: Optional[GrandAverage] = None

    def rows(self) -> List[Dict[str, Any]]:
        return [report.stats.to_row() for report in self.reports.values()]


def resolve_spatial_filter(config: Config, ch_names: Optional[Sequence[str]] = None) -> np.ndarray:
    """
    Spatial filter from ``config.spatial_filter``, or the built-in Laplacian

    The Laplacian neighbours are taken from the recording labels
    ``ch_names`` when they cover the filtered channels, otherwise from the
    configured montage.
    """
    if config.spatial_filter:
        return load_spatial_filter(config.spatial_filter)

    expected = list(config.ch_names[:config.n_channels])
    labels = list(ch_names[:config.n_channels]) if ch_names is not None else expected
    if len(labels) < config.n_channels:
        labels = expected
    if [name.upper() for name in labels] != [name.upper() for name in expected]:
        logging.warning(f"Recording channels {labels} differ from the configured montage {expected}, "
                        f"building the Laplacian from the recording labels")
    return make_laplacian(labels)


def _featurize_or_skip(run: RawRun, spatial_filter: np.ndarray, config: Config):
    try:
        return featurize_run(run, spatial_filter, config)
    except ChannelMismatchError as e:
        logging.warning(f"Skipping run {run.source}: {e}")
        return None


def preprocess_runs(
    runs: Sequence[RawRun],
    spatial_filter: np.ndarray,
    config: Config
) -> Activity:
    """
    Turn raw runs into trial activity

    Every run is spatially filtered and converted to a spectrogram, its
    events are aligned to windows, and all runs are concatenated before the
    trials are segmented. Runs with too few channels, or whose frequency axis or channel
    order differs from the first usable run, are skipped.

    Args:
        runs: Raw recordings of one session type (offline or online)
        spatial_filter: Channel mixing matrix
        config: Pipeline configuration

    Returns:
        Activity of all runs

    Raises:
        NoDataError: If no run could be processed
    """
    wpsds = Parallel(n_jobs=config.n_jobs)(
        delayed(_featurize_or_skip)(run, spatial_filter, config) for run in runs
    )

    windowed = []
    reference = None
    for run, wpsd in zip(runs, wpsds):
        if wpsd is None:
            continue
        if reference is not None and not np.array_equal(wpsd.freqs, reference.freqs):
            logging.warning(f"Skipping run {run.source}: frequency axis differs from the first run")
            continue
        if reference is not None and wpsd.ch_names != reference.ch_names:
            logging.warning(f"Skipping run {run.source}: channel order differs from the first run")
            continue
        if reference is None:
            reference = wpsd
        stride = window_samples(config.wshift, run.fs)
        events = align_events(run.events, stride, config.window_direction,
                              window_len=window_samples(config.mlength, run.fs))
        windowed.append((wpsd.psd, events))

    if not windowed:
        raise NoDataError(f"None of the {len(runs)} runs could be processed")

    psd_all, events_all, _ = concatenate_runs(windowed)
    session = WindowedPSD(psd=psd_all, freqs=reference.freqs, ch_names=reference.ch_names, wshift=reference.wshift)

    return segment_trials(session, events_all, config)


def calibrate(activity: Activity, config: Config) -> CalibrationResult:
    """
    Calibrate the decoder on the offline trials

    Args:
        activity: Calibration activity
        config: Pipeline configuration

    Returns:
        CalibrationResult

    Raises:
        NoDataError: If the activity holds no trials
        ValueError: If only one class is present
    """
    if activity.n_trials == 0:
        raise NoDataError("No calibration trials")

    class_a, class_b = config.class_codes
    logging.info(f"Calibrating on {activity.n_trials} trials")

    erd = compute_erd(activity, ref_len=config.erd_ref, band=config.erd_band,
                      curve_channels=config.curve_channels, class_a=class_a, class_b=class_b)
    fisher = compute_fisher(activity, class_a, class_b, k=config.n_features, eps=config.fisher_eps)

    X, y, groups = single_sample_dataset(activity, fisher.selected_indices)
    model = train_classifier(X, y, fisher.selected_indices, kind=config.classifier, random_state=config.seed)

    y_pred, _ = predict(model, X)
    ss_accuracy = float(np.mean(y_pred == y)) if len(y) > 0 else float('nan')
    logging.info(f"Calibration single-sample accuracy: {ss_accuracy:.3f}")

    offline = simulate_online(activity, model, config)
    cv_scores = cross_validate(config.classifier, X, y, groups, folds=config.cv_folds, seed=config.seed)

    return CalibrationResult(
        n_trials=activity.n_trials,
        erd=erd,
        fisher=fisher,
        model=model,
        single_sample_accuracy=ss_accuracy,
        offline=offline,
        cv_scores=cv_scores
    )


def compute_subject_stats(
    activity: Activity,
    config: Config,
    subject: str = "",
    fisher: Optional[FisherResult] = None,
    erd: Optional[ERDResult] = None,
    online: Optional[EvaluationResult] = None
) -> SubjectStats:
    """
    Summary statistics of one subject

    Args:
        activity: Calibration activity
        config: Pipeline configuration
        subject: Subject identifier
        fisher: Precomputed Fisher result (computed when None)
        erd: Precomputed ERD result (computed when None)
        online: Online evaluation, adds accuracy and kappa when given

    Returns:
        SubjectStats
    """
    class_a, class_b = config.class_codes
    if fisher is None:
        fisher = compute_fisher(activity, class_a, class_b, k=config.n_features, eps=config.fisher_eps)
    if erd is None:
        erd = compute_erd(activity, ref_len=config.erd_ref, band=config.erd_band,
                          curve_channels=config.curve_channels, class_a=class_a, class_b=class_b)

    left, right = config.lateral_channels
    li = lateralization_index(erd, fisher.best_freq_idx, left, right) if activity.n_freqs > 0 else float('nan')

    return SubjectStats(
        subject=subject,
        n_trials=activity.n_trials,
        max_fisher=fisher.max_score,
        mean_fisher=fisher.mean_score,
        best_freq=fisher.best_freq,
        best_channel=fisher.best_channel,
        peak_erd=erd.peak_erd,
        lateralization=li,
        online_accuracy=online.metrics.trial_accuracy if online is not None else float('nan'),
        kappa=online.metrics.kappa if online is not None else float('nan')
    )


def analyze_subject(
    subject_id: str,
    offline_runs: Sequence[RawRun],
    online_runs: Sequence[RawRun],
    config: Config,
    spatial_filter: Optional[np.ndarray] = None
) -> SubjectReport:
    """
    Calibrate on offline runs and evaluate on online runs (already loaded)

    Args:
        subject_id: Subject identifier (used in diagnostics)
        offline_runs: Calibration recordings
        online_runs: Evaluation recordings (may be empty)
        config: Pipeline configuration
        spatial_filter: Channel mixing matrix (default from ``config``)

    Returns:
        SubjectReport
    """
    validate_config(config)
    if spatial_filter is None:
        spatial_filter = resolve_spatial_filter(config, offline_runs[0].ch_names if offline_runs else None)

    logging.info(f"Subject {subject_id}: {len(offline_runs)} offline, {len(online_runs)} online runs")

    activity = preprocess_runs(offline_runs, spatial_filter, config)
    calibration = calibrate(activity, config)

    online = None
    if online_runs:
        online_activity = preprocess_runs(online_runs, spatial_filter, config)
        if online_activity.n_trials == 0:
            logging.warning(f"Subject {subject_id}: no online trials, skipping online evaluation")
        else:
            online = simulate_online(online_activity, calibration.model, config)

    stats = compute_subject_stats(activity, config, subject=subject_id, fisher=calibration.fisher,
                                  erd=calibration.erd, online=online)

    class_a, class_b = config.class_codes
    class_erd = class_mean_erd(activity, class_a=class_a, class_b=class_b)

    return SubjectReport(subject=subject_id, calibration=calibration, stats=stats, online=online,
                         class_erd=class_erd)


def run_subject(
    subject_id: str,
    offline_paths: Sequence[str],
    online_paths: Sequence[str],
    config: Config
) -> SubjectReport:
    """
    Load the recordings of one subject and run the full analysis

    Raises:
        FileNotFoundError: If a recording is missing (fatal for the subject)
        NoDataError: If no calibration trial could be extracted
    """
    offline_runs = [load_run(path, config.fs) for path in offline_paths]
    online_runs = [load_run(path, config.fs) for path in online_paths]
    return analyze_subject(subject_id, offline_runs, online_runs, config)


def _run_subject_isolated(subject_id: str, paths: Tuple[Sequence[str], Sequence[str]], config: Config):
    offline_paths, online_paths = paths
    try:
        return subject_id, run_subject(subject_id, offline_paths, online_paths, config), None
    except Exception as e:
        logging.error(f"Subject {subject_id} failed: {type(e).__name__}: {e}")
        return subject_id, None, f"{type(e).__name__}: {e}"


def run_batch(
    subjects: Mapping[str, Tuple[Sequence[str], Sequence[str]]],
    config: Config
) -> BatchReport:
    """
    Run the analysis for several subjects

    A failing subject is logged and recorded in ``BatchReport.failures``;
    the remaining subjects still run. The class mean ERD of the completed
    subjects is combined into ``BatchReport.grand_average``.

    Args:
        subjects: Subject id -> (offline paths, online paths)
        config: Pipeline configuration

    Returns:
        BatchReport
    """
    logging.info(f"Running batch of {len(subjects)} subjects")

    results = Parallel(n_jobs=config.n_jobs)(
        delayed(_run_subject_isolated)(subject_id, paths, config)
        for subject_id, paths in subjects.items()
    )

    batch = BatchReport()
    for subject_id, report, error in results:
        if report is None:
            batch.failures[subject_id] = error
        else:
            batch.reports[subject_id] = report

    class_erds = {subject_id: report.class_erd for subject_id, report in batch.reports.items()
                  if report.class_erd is not None}
    batch.grand_average = grand_average(class_erds)

    logging.info(f"Batch complete: {len(batch.reports)} succeeded, {len(batch.failures)} failed")
    return batch
