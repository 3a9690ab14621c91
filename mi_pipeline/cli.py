"""
Motor Imagery analysis command line interface

Calibrates the Hands vs Feet decoder on offline runs, replays the online runs
through the evidence accumulator and saves the model, metadata and plots.

Usage Examples:
    # Run on synthetic data (for testing)
    mi-pipeline --fake --subject demo

    # Calibrate on offline GDF runs, evaluate on online runs
    mi-pipeline --offline s1_off1.gdf s1_off2.gdf --online s1_on1.gdf --subject s1

    # Several subjects described in a JSON file
    mi-pipeline --batch subjects.json --output-dir results
"""

import argparse
import json
import logging
import os
import sys
import time
from datetime import datetime
from typing import Any, Dict

from .config import Config, describe_config, ensure_output_dirs, validate_config
from .fake_data import synthesize_mi_runs
from .models import save_model
from .pipeline import SubjectReport, analyze_subject, run_batch, run_subject
from .utils import (
    plot_confusion_matrix, plot_fisher_map, plot_grand_average, print_evaluation_summary,
    print_subject_table, save_metadata, setup_logging
)

# argparse destination -> Config field
CONFIG_OPTIONS = {
    'fs': 'fs',
    'n_channels': 'n_channels',
    'spatial_filter': 'spatial_filter',
    'wlength': 'wlength',
    'wshift': 'wshift',
    'pshift': 'pshift',
    'mlength': 'mlength',
    'band': 'freq_band',
    'direction': 'window_direction',
    'code_fixation': 'code_fixation',
    'code_hands': 'code_class_a',
    'code_feet': 'code_class_b',
    'code_feedback': 'code_feedback',
    'lookback': 'lookback',
    'lookahead': 'lookahead',
    'n_features': 'n_features',
    'fisher_eps': 'fisher_eps',
    'classifier': 'classifier',
    'cv_folds': 'cv_folds',
    'alpha': 'alpha',
    'threshold': 'threshold',
    'erd_band': 'erd_band',
    'seed': 'seed',
    'n_jobs': 'n_jobs',
}


def create_argument_parser() -> argparse.ArgumentParser:
    """Create command line argument parser"""
    parser = argparse.ArgumentParser(
        description="Hands vs Feet Motor Imagery analysis",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Synthetic data (for testing)
  mi-pipeline --fake --subject demo

  # Real recordings with a custom accumulation threshold
  mi-pipeline --offline off1.gdf off2.gdf --online on1.gdf --subject s1 --threshold 0.75

  # Batch file: {"s1": {"offline": [...], "online": [...]}, ...}
  mi-pipeline --batch subjects.json --n-jobs 4
        """
    )

    # Data source (mutually exclusive)
    source_group = parser.add_mutually_exclusive_group(required=True)
    source_group.add_argument('--fake', action='store_true',
                              help='Use synthetic motor imagery data')
    source_group.add_argument('--offline', type=str, nargs='+',
                              help='Calibration recordings (.gdf or .csv)')
    source_group.add_argument('--batch', type=str,
                              help='JSON file mapping subject ids to offline/online recordings')

    parser.add_argument('--online', type=str, nargs='+', default=[],
                        help='Online recordings evaluated with the calibrated decoder')
    parser.add_argument('--subject', type=str, default='subject',
                        help='Subject identifier for output naming (default: subject)')
    parser.add_argument('--config', type=str,
                        help='JSON file with configuration overrides')

    # Synthetic data
    parser.add_argument('--n-trials', type=int, default=10,
                        help='Trials per class and run for synthetic data (default: 10)')
    parser.add_argument('--n-runs', type=int, default=3,
                        help='Calibration runs for synthetic data (default: 3)')

    # Acquisition / spectrogram
    parser.add_argument('--fs', type=float, help='Sampling frequency in Hz (default: 512)')
    parser.add_argument('--n-channels', type=int, help='Channels entering the spatial filter (default: 16)')
    parser.add_argument('--spatial-filter', type=str, help='Spatial filter file (.mat/.npy/.csv)')
    parser.add_argument('--wlength', type=float, help='Inner window length in s (default: 0.5)')
    parser.add_argument('--wshift', type=float, help='Outer window shift in s (default: 0.0625)')
    parser.add_argument('--pshift', type=float, help='Inner window shift in s (default: 0.25)')
    parser.add_argument('--mlength', type=float, help='Moving average length in s (default: 1.0)')
    parser.add_argument('--band', type=float, nargs=2, metavar=('LOW', 'HIGH'),
                        help='Frequency band in Hz (default: 4 48)')
    parser.add_argument('--direction', choices=['backward', 'forward'],
                        help='Sample to window conversion rule (default: backward)')

    # Event codes
    parser.add_argument('--code-fixation', type=int, help='Fixation code (default: 786)')
    parser.add_argument('--code-hands', type=int, help='Hands cue code (default: 773)')
    parser.add_argument('--code-feet', type=int, help='Feet cue code (default: 771)')
    parser.add_argument('--code-feedback', type=int, help='Continuous feedback code (default: 781)')
    parser.add_argument('--lookback', type=int, help='Events searched back for fixation (default: 3)')
    parser.add_argument('--lookahead', type=int, help='Events searched ahead for feedback (default: 5)')

    # Features / classifier
    parser.add_argument('--n-features', type=int, help='Fisher-selected features (default: 10)')
    parser.add_argument('--fisher-eps', type=float, help='Fisher score regularization (default: 1e-12)')
    parser.add_argument('--classifier', choices=['lda', 'qda', 'logistic'], help='Classifier (default: lda)')
    parser.add_argument('--cv-folds', type=int, help='Grouped cross-validation folds (default: 5)')

    # Accumulation / ERD
    parser.add_argument('--alpha', type=float, help='Evidence smoothing factor (default: 0.95)')
    parser.add_argument('--threshold', type=float, help='Decision threshold (default: 0.70)')
    parser.add_argument('--erd-band', type=float, nargs=2, metavar=('LOW', 'HIGH'),
                        help='ERD band in Hz (default: 8 13)')
    parser.add_argument('--erd-ref', type=str,
                        help="ERD reference length: 'median' or a number of windows (default: cue onset)")

    # Output / execution
    parser.add_argument('--output-dir', type=str, default='results',
                        help='Output directory (default: results)')
    parser.add_argument('--seed', type=int, help='Random seed for reproducibility (default: 42)')
    parser.add_argument('--n-jobs', type=int, help='Parallel jobs (default: 1)')
    parser.add_argument('--debug', action='store_true', help='Enable debug logging')

    return parser


def build_config(args: argparse.Namespace) -> Config:
    """
    Build the configuration from defaults, the optional JSON file and the
    command line (in increasing priority)
    """
    config = Config.from_json(args.config) if args.config else Config()

    changes: Dict[str, Any] = {}
    for dest, field_name in CONFIG_OPTIONS.items():
        value = getattr(args, dest, None)
        if value is None:
            continue
        changes[field_name] = tuple(value) if isinstance(value, list) else value

    if args.erd_ref is not None:
        changes['erd_ref'] = args.erd_ref if args.erd_ref == 'median' else int(args.erd_ref)

    return config.with_updates(**changes)


def with_output_paths(config: Config, output_dir: str, subject: str) -> Config:
    """Per-subject output file names inside ``output_dir``"""
    return config.with_updates(
        out_model=os.path.join(output_dir, f"mi_{config.classifier}_{subject}.joblib"),
        out_meta=os.path.join(output_dir, f"mi_meta_{subject}.json"),
        out_confmat=os.path.join(output_dir, f"mi_confusion_{subject}.png"),
        out_fisher=os.path.join(output_dir, f"mi_fisher_{subject}.png")
    )


def save_subject_outputs(report: SubjectReport, config: Config, elapsed: float) -> None:
    """Save model, metadata and plots of one subject"""
    ensure_output_dirs(config)
    calibration = report.calibration
    save_model(calibration.model, config.out_model)

    evaluation = report.online if report.online is not None else calibration.offline
    names = [config.class_names[code] for code in config.class_codes]
    plot_confusion_matrix(evaluation.metrics.confusion, names, config.out_confmat,
                          title=f"Subject {report.subject} ({'online' if report.online is not None else 'offline'})")
    plot_fisher_map(calibration.fisher.fmap, calibration.erd.freqs, calibration.erd.ch_names,
                    config.out_fisher, title=f"Fisher Score - Subject {report.subject}")

    metadata = {
        'subject': report.subject,
        'config': config.to_dict(),
        'selected_features': [
            {'freq': float(calibration.erd.freqs[feat.freq_idx]),
             'channel': calibration.erd.ch_names[feat.chan_idx],
             'score': feat.score}
            for feat in calibration.fisher.selected
        ],
        'calibration': {
            'n_trials': calibration.n_trials,
            'single_sample_accuracy': calibration.single_sample_accuracy,
            'offline': calibration.offline.metrics.to_dict(),
            'cv_scores': calibration.cv_scores,
        },
        'online': report.online.metrics.to_dict() if report.online is not None else None,
        'stats': report.stats.to_row(),
        'erd': {
            'hands_map': calibration.erd.hands_map,
            'feet_map': calibration.erd.feet_map,
            'peak_erd': calibration.erd.peak_erd,
        },
        'elapsed_seconds': elapsed,
        'date': datetime.now().isoformat(),
        'model_path': config.out_model,
    }
    save_metadata(metadata, config.out_meta)


def load_batch_file(path: str) -> Dict[str, tuple]:
    """Read ``{"subject": {"offline": [...], "online": [...]}}``"""
    if not os.path.exists(path):
        raise FileNotFoundError(f"Batch file not found: {path}")
    with open(path, 'r') as f:
        content = json.load(f)
    return {str(subject): (entry.get('offline', []), entry.get('online', []))
            for subject, entry in content.items()}


def main(argv=None) -> int:
    """Main entry point"""
    parser = create_argument_parser()
    args = parser.parse_args(argv)

    setup_logging(debug=args.debug)
    logging.info("Starting Motor Imagery analysis")

    start_time = time.time()

    try:
        config = build_config(args)
        validate_config(config)
        for line in describe_config(config):
            logging.info(f"  {line}")

        if args.batch:
            batch = run_batch(load_batch_file(args.batch), config)
            for subject, report in batch.reports.items():
                subject_config = with_output_paths(config, args.output_dir, subject)
                save_subject_outputs(report, subject_config, time.time() - start_time)
            if batch.grand_average is not None:
                names = [config.class_names[code] for code in config.class_codes]
                plot_grand_average(batch.grand_average, names,
                                   os.path.join(args.output_dir, "grand_average_maps.png"))
            print_subject_table(batch.rows())
            for subject, error in batch.failures.items():
                logging.warning(f"Subject {subject} failed: {error}")
            return 1 if batch.failures else 0

        config = with_output_paths(config, args.output_dir, args.subject)

        if args.fake:
            offline_runs = synthesize_mi_runs(n_runs=args.n_runs, n_trials_per_class=args.n_trials,
                                              fs=config.fs, ch_names=config.ch_names, seed=config.seed)
            online_runs = synthesize_mi_runs(n_runs=1, n_trials_per_class=args.n_trials,
                                             fs=config.fs, ch_names=config.ch_names, seed=config.seed + 1)
            report = analyze_subject(args.subject, offline_runs, online_runs, config)
        else:
            report = run_subject(args.subject, args.offline, args.online, config)

        elapsed = time.time() - start_time
        save_subject_outputs(report, config, elapsed)
        print_evaluation_summary(args.subject, config, report.calibration, report.online)
        print_subject_table([report.stats.to_row()])

        logging.info(f"Analysis completed successfully in {elapsed:.1f} seconds")
        return 0

    except KeyboardInterrupt:
        logging.info("Analysis interrupted by user")
        return 1
    except Exception as e:
        logging.error(f"Analysis failed: {e}")
        if args.debug:
            raise
        return 1


if __name__ == '__main__':
    sys.exit(main())
