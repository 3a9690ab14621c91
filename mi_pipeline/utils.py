"""
Utility functions for the Motor Imagery pipeline

This module provides helper functions for logging, visualization, metadata
handling and the console summaries printed at the end of a run.
"""

import json
import logging
import os
from typing import Any, Dict, List, Optional, Sequence

import matplotlib.pyplot as plt
import mne
import numpy as np
import pandas as pd
import seaborn as sns


def setup_logging(debug: bool = False) -> None:
    """
    Configure logging for the pipeline

    Log levels used throughout the package:
    - INFO: Progress updates, results, important events
    - DEBUG: Detailed internal state, per-trial outcomes
    - WARNING: Skipped runs/trials/subjects that don't stop execution
    - ERROR: Failures of a whole subject

    Args:
        debug: If True, enable DEBUG level logging
    """
    log_level = logging.DEBUG if debug else logging.INFO

    logging.basicConfig(
        level=log_level,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        datefmt='%H:%M:%S'
    )

    # Reduce verbosity of some third-party libraries
    logging.getLogger('matplotlib').setLevel(logging.WARNING)
    logging.getLogger('sklearn').setLevel(logging.WARNING)
    logging.getLogger('mne').setLevel(logging.WARNING)
    mne.set_log_level('WARNING')

    if debug:
        logging.info("Debug logging enabled")
    else:
        logging.info("Logging configured (INFO level)")


def _ensure_parent_dir(path: str) -> None:
    directory = os.path.dirname(path)
    if directory:
        os.makedirs(directory, exist_ok=True)


def plot_confusion_matrix(
    cm: np.ndarray,
    labels: List[str],
    out_path: str,
    normalize: bool = True,
    title: Optional[str] = None
) -> None:
    """
    Create and save a confusion matrix plot

    Args:
        cm: Confusion matrix (rows true, columns predicted)
        labels: Class names for display
        out_path: Path to save the plot
        normalize: If True, normalize by true class counts
        title: Plot title (default depends on normalization)
    """
    logging.info(f"Creating confusion matrix plot: {out_path}")

    cm = np.asarray(cm)
    total = cm.sum()
    accuracy = np.trace(cm) / total if total > 0 else float('nan')

    if normalize:
        row_sums = cm.sum(axis=1, keepdims=True)
        with np.errstate(invalid='ignore', divide='ignore'):
            values = np.nan_to_num(cm.astype('float') / row_sums)
        fmt = '.2f'
        default_title = 'Normalized Confusion Matrix'
    else:
        values = cm
        fmt = 'd'
        default_title = 'Confusion Matrix'

    plt.figure(figsize=(8, 6))
    sns.heatmap(
        values,
        annot=True,
        fmt=fmt,
        cmap='Blues',
        xticklabels=labels,
        yticklabels=labels,
        square=True,
        cbar_kws={'label': 'Proportion' if normalize else 'Count'}
    )

    plt.title(title or default_title, fontsize=14, fontweight='bold')
    plt.xlabel('Predicted Label', fontsize=12)
    plt.ylabel('True Label', fontsize=12)
    plt.figtext(0.02, 0.02, f'Accuracy (decided trials): {accuracy:.3f}', fontsize=10,
                bbox=dict(boxstyle="round,pad=0.3", facecolor="lightgray"))

    _ensure_parent_dir(out_path)
    plt.tight_layout()
    plt.savefig(out_path, dpi=300, bbox_inches='tight')
    plt.close()

    logging.info(f"Confusion matrix saved to: {out_path}")


def plot_fisher_map(
    fmap: np.ndarray,
    freqs: np.ndarray,
    ch_names: Sequence[str],
    out_path: str,
    title: str = 'Fisher Score'
) -> None:
    """
    Save a heatmap of Fisher scores (frequency x channel)

    Args:
        fmap: Scores [freq x channel]
        freqs: Frequency axis in Hz
        ch_names: Channel names
        out_path: Path to save the plot
        title: Plot title
    """
    logging.info(f"Creating Fisher score map: {out_path}")

    plt.figure(figsize=(10, 8))
    sns.heatmap(
        fmap,
        cmap='viridis',
        xticklabels=list(ch_names),
        yticklabels=[f'{f:g}' for f in freqs],
        cbar_kws={'label': 'Fisher score'}
    )
    plt.title(title, fontsize=14, fontweight='bold')
    plt.xlabel('Channel', fontsize=12)
    plt.ylabel('Frequency [Hz]', fontsize=12)

    _ensure_parent_dir(out_path)
    plt.tight_layout()
    plt.savefig(out_path, dpi=300, bbox_inches='tight')
    plt.close()

    logging.info(f"Fisher map saved to: {out_path}")


def plot_grand_average(
    ga,
    class_names: Sequence[str],
    out_path: str,
    clim: float = 0.5
) -> None:
    """
    Save the grand average ERD maps, one row per class and one column per channel

    Args:
        ga: GrandAverage
        class_names: Names of class A and class B
        out_path: Path to save the plot
        clim: Symmetric color limit of the log ratio
    """
    logging.info(f"Creating grand average plot: {out_path}")

    n_chan = len(ga.ch_names)
    fig, axes = plt.subplots(2, n_chan, figsize=(4 * n_chan, 8), squeeze=False)
    extent = [ga.t_axis[0], ga.t_axis[-1], ga.freqs[0], ga.freqs[-1]]

    for row, (name, data) in enumerate(zip(class_names, (ga.mean_a, ga.mean_b))):
        for col, ch_name in enumerate(ga.ch_names):
            ax = axes[row, col]
            image = ax.imshow(data[:, :, col].T, aspect='auto', origin='lower', extent=extent,
                              cmap='RdBu_r', vmin=-clim, vmax=clim)
            if ga.cue_index < len(ga.t_axis):
                ax.axvline(ga.t_axis[ga.cue_index], color='k', linestyle='--', linewidth=1.5)
            ax.set_title(f'{name} - {ch_name}', fontweight='bold')
            if row == 1:
                ax.set_xlabel('Time [s]')
            if col == 0:
                ax.set_ylabel('Frequency [Hz]')
            fig.colorbar(image, ax=ax)

    fig.suptitle(f'Grand Average ERD ({len(ga.subjects)} subjects)', fontsize=14, fontweight='bold')

    _ensure_parent_dir(out_path)
    fig.tight_layout()
    fig.savefig(out_path, dpi=150, bbox_inches='tight')
    plt.close(fig)

    logging.info(f"Grand average plot saved to: {out_path}")


def convert_numpy_types(obj: Any) -> Any:
    """Recursively convert numpy values to JSON-serializable Python types"""
    if isinstance(obj, np.ndarray):
        return convert_numpy_types(obj.tolist())
    elif isinstance(obj, np.integer):
        return int(obj)
    elif isinstance(obj, np.floating):
        value = float(obj)
        return None if np.isnan(value) else value
    elif isinstance(obj, float):
        return None if np.isnan(obj) else obj
    elif isinstance(obj, dict):
        return {str(key): convert_numpy_types(value) for key, value in obj.items()}
    elif isinstance(obj, (list, tuple)):
        return [convert_numpy_types(item) for item in obj]
    else:
        return obj


def save_metadata(meta: Dict[str, Any], out_path: str) -> None:
    """
    Save run metadata to a JSON file

    The metadata records the configuration, the selected features and the
    evaluation results, so that a saved model can be applied correctly to new
    data. NaN values are written as null.

    Args:
        meta: Dictionary containing metadata to save
        out_path: Path to save JSON file
    """
    logging.info(f"Saving metadata to: {out_path}")
    _ensure_parent_dir(out_path)

    json_meta = convert_numpy_types(meta)

    try:
        with open(out_path, 'w') as f:
            json.dump(json_meta, f, indent=2, sort_keys=True)
        logging.info("Metadata saved successfully")
    except (OSError, TypeError) as e:
        logging.error(f"Failed to save metadata: {e}")
        raise


def _fmt(value: Optional[float], digits: int = 3) -> str:
    if value is None or (isinstance(value, float) and np.isnan(value)):
        return "n/a"
    return f"{value:.{digits}f}"


def print_evaluation_summary(subject_id: str, config, calibration, online=None) -> None:
    """
    Print a human-readable summary of one subject

    Args:
        subject_id: Subject identifier
        config: Pipeline configuration
        calibration: CalibrationResult
        online: EvaluationResult of the online runs (optional)
    """
    print("\n" + "=" * 80)
    print(f"MOTOR IMAGERY SUMMARY - SUBJECT {subject_id}")
    print("=" * 80)

    print("\nDATA:")
    print(f"   Calibration trials: {calibration.n_trials}")
    print(f"   Sampling rate: {config.fs} Hz, PSD step: {config.wshift}s")
    print(f"   Band: {config.freq_band[0]}-{config.freq_band[1]} Hz")

    fisher = calibration.fisher
    print("\nFEATURES:")
    print(f"   Selected: {len(fisher.selected)} (Fisher max {_fmt(fisher.max_score)}, mean {_fmt(fisher.mean_score)})")
    print(f"   Best: {_fmt(fisher.best_freq, 1)} Hz at {fisher.best_channel}")

    print("\nCALIBRATION:")
    print(f"   Classifier: {config.classifier.upper()}")
    print(f"   Single-sample accuracy: {_fmt(calibration.single_sample_accuracy)}")
    print(f"   Offline trial accuracy: {_fmt(calibration.offline.metrics.trial_accuracy)}")
    if calibration.cv_scores:
        print(f"   Grouped CV accuracy: {np.mean(calibration.cv_scores):.3f} ± {np.std(calibration.cv_scores):.3f}")

    if online is not None:
        metrics = online.metrics
        print("\nONLINE (simulated):")
        print(f"   Single-sample accuracy: {_fmt(metrics.single_sample_accuracy)}")
        print(f"   Trial accuracy: {_fmt(metrics.trial_accuracy)} "
              f"({metrics.n_decided} decided, {metrics.n_timeouts} timeouts)")
        print(f"   Latency: {_fmt(metrics.latency['mean'])} ± {_fmt(metrics.latency['std'])}s")
        print(f"   Cohen's kappa: {_fmt(metrics.kappa)}")

    print("\n" + "=" * 80)


def subject_table(rows: List[Dict[str, Any]]) -> pd.DataFrame:
    """Per-subject statistics as a DataFrame indexed by subject"""
    if not rows:
        return pd.DataFrame()
    return pd.DataFrame(rows).set_index('subject')


def print_subject_table(rows: List[Dict[str, Any]]) -> None:
    """
    Print the cross-subject statistics table

    Args:
        rows: One dictionary per subject (see ``SubjectStats.to_row``)
    """
    table = subject_table(rows)
    print("\n" + "=" * 80)
    print("SUBJECT STATISTICS")
    print("=" * 80)
    if table.empty:
        print("   No subject completed")
    else:
        print(table.to_string(float_format=lambda v: f"{v:.3f}"))
    print("=" * 80)
