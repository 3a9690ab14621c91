"""
Integration tests for the subject and batch pipeline on synthetic data
"""

import numpy as np
import pandas as pd
import pytest

from mi_pipeline.config import DEFAULT_CHANNELS, Config, NoDataError
from mi_pipeline.data_io import RawRun, make_laplacian
from mi_pipeline.fake_data import synthesize_mi_runs
from mi_pipeline.pipeline import (
    analyze_subject, calibrate, preprocess_runs, resolve_spatial_filter, run_batch
)

HANDS, FEET = 773, 771


@pytest.fixture(scope="module")
def offline_runs():
    return synthesize_mi_runs(n_runs=2, n_trials_per_class=6, fs=128.0, seed=1)


@pytest.fixture(scope="module")
def online_runs():
    return synthesize_mi_runs(n_runs=1, n_trials_per_class=4, fs=128.0, seed=2)


def _truncated(run: RawRun, n_channels: int) -> RawRun:
    return RawRun(signal=run.signal[:, :n_channels], fs=run.fs, events=run.events,
                  ch_names=run.ch_names[:n_channels], source="truncated")


def _reordered(run: RawRun, ch_names) -> RawRun:
    order = [run.ch_names.index(name) for name in ch_names]
    return RawRun(signal=run.signal[:, order], fs=run.fs, events=run.events,
                  ch_names=list(ch_names), source="reordered")


def _write_csv(run: RawRun, path) -> str:
    df = pd.DataFrame(run.signal, columns=run.ch_names)
    df["event"] = np.nan
    df["duration"] = np.nan
    for marker in run.events:
        df.loc[marker.pos, ["event", "duration"]] = [marker.typ, marker.dur]
    df.to_csv(path, index=False)
    return str(path)


@pytest.mark.integration
class TestPreprocessing:
    """Tests for run featurization and segmentation."""

    def test_all_trials_found(self, offline_runs, small_config):
        activity = preprocess_runs(offline_runs, resolve_spatial_filter(small_config), small_config)

        assert activity.n_trials == 24
        assert np.sum(activity.labels == HANDS) == 12
        assert np.all(activity.cue_onsets < activity.lengths)
        assert activity.freqs[0] >= 4.0 and activity.freqs[-1] <= 48.0

    def test_run_with_too_few_channels_is_skipped(self, offline_runs, small_config, caplog):
        runs = [offline_runs[0], _truncated(offline_runs[1], 8)]
        activity = preprocess_runs(runs, resolve_spatial_filter(small_config), small_config)

        assert activity.n_trials == 12
        assert "Skipping run truncated" in caplog.text

    def test_no_usable_run(self, offline_runs, small_config):
        with pytest.raises(NoDataError):
            preprocess_runs([_truncated(offline_runs[0], 8)], resolve_spatial_filter(small_config), small_config)

    def test_run_with_other_channel_order_is_skipped(self, offline_runs, small_config, caplog):
        runs = [offline_runs[0], _reordered(offline_runs[1], list(reversed(DEFAULT_CHANNELS)))]
        activity = preprocess_runs(runs, resolve_spatial_filter(small_config), small_config)

        assert activity.n_trials == 12
        assert "channel order differs" in caplog.text

    def test_non_integer_window_step(self):
        # 0.0625 s at 250 Hz is 15.625 samples, the spectrogram steps by 16
        config = Config(fs=250.0)
        runs = synthesize_mi_runs(n_runs=1, n_trials_per_class=10, fs=250.0, seed=3)
        activity = preprocess_runs(runs, resolve_spatial_filter(config), config)

        assert activity.n_trials == 20
        # Fixation and cue span 750 samples, 46.875 windows
        assert set(activity.cue_onsets.tolist()) <= {46, 47}
        assert set(activity.lengths.tolist()) <= {109, 110}


class TestSpatialFilterResolution:
    """Tests for the built-in Laplacian and the recording labels."""

    def test_configured_order(self, small_config, caplog):
        lap = resolve_spatial_filter(small_config, DEFAULT_CHANNELS)
        np.testing.assert_array_equal(lap, make_laplacian(DEFAULT_CHANNELS))
        assert "differ from the configured montage" not in caplog.text

    def test_neighbours_follow_recording_order(self, small_config, caplog):
        permuted = list(reversed(DEFAULT_CHANNELS))
        lap = resolve_spatial_filter(small_config, permuted)

        order = [DEFAULT_CHANNELS.index(name) for name in permuted]
        np.testing.assert_array_equal(lap, make_laplacian(DEFAULT_CHANNELS)[np.ix_(order, order)])
        # Fz is last in the recording, its only neighbour FCz sits at index 12
        assert lap[12, 15] == -1.0
        assert "differ from the configured montage" in caplog.text

    def test_too_few_labels_use_configured_montage(self, small_config):
        lap = resolve_spatial_filter(small_config, ["C3", "Cz"])
        np.testing.assert_array_equal(lap, make_laplacian(DEFAULT_CHANNELS))


@pytest.mark.integration
class TestAnalyzeSubject:
    """End-to-end calibration and online replay."""

    def test_report(self, offline_runs, online_runs, small_config):
        report = analyze_subject("s1", offline_runs, online_runs, small_config)

        calibration = report.calibration
        assert calibration.n_trials == 24
        assert calibration.model.classes == (FEET, HANDS)
        assert len(calibration.fisher.selected) == small_config.n_features
        assert len(calibration.cv_scores) == 3
        assert calibration.offline.metrics.n_trials == 24

        assert report.online is not None
        assert report.online.metrics.n_trials == 8
        assert report.stats.subject == "s1"
        assert report.stats.online_accuracy == report.online.metrics.trial_accuracy
        assert report.stats.best_channel in small_config.ch_names

    def test_without_online_runs(self, offline_runs, small_config):
        report = analyze_subject("s1", offline_runs, [], small_config)
        assert report.online is None
        assert np.isnan(report.stats.online_accuracy)

    def test_calibrate_without_trials(self, offline_runs, small_config):
        activity = preprocess_runs(offline_runs, resolve_spatial_filter(small_config), small_config)
        with pytest.raises(NoDataError):
            calibrate(activity.select([]), small_config)


@pytest.mark.integration
@pytest.mark.slow
class TestBatch:
    """Tests for failure isolation across subjects."""

    def test_failing_subject_does_not_abort_batch(self, offline_runs, tmp_path, small_config):
        paths = [_write_csv(run, tmp_path / f"off{idx}.csv") for idx, run in enumerate(offline_runs)]
        subjects = {
            "good": (paths, []),
            "missing": ([str(tmp_path / "does_not_exist.csv")], []),
        }

        batch = run_batch(subjects, small_config)

        assert list(batch.reports) == ["good"]
        assert "FileNotFoundError" in batch.failures["missing"]
        assert batch.rows()[0]["subject"] == "good"
        assert batch.grand_average is not None
        assert batch.grand_average.subjects == ["good"]
        assert batch.grand_average.ch_names == ["C3", "Cz", "C4"]
