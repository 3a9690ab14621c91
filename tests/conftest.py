"""
Pytest configuration and shared fixtures for the mi_pipeline tests
"""

import sys
from pathlib import Path

# Add project root to path for imports
project_root = Path(__file__).parent.parent
if str(project_root) not in sys.path:
    sys.path.insert(0, str(project_root))

import matplotlib
import numpy as np
import pytest

# Plots are written to files only
matplotlib.use("Agg")

from mi_pipeline.config import Config
from mi_pipeline.epoching import Activity

HANDS = 773
FEET = 771


@pytest.fixture(scope="session")
def random_seed():
    """Set random seed for reproducibility."""
    np.random.seed(42)
    return 42


@pytest.fixture
def config():
    """Default pipeline configuration."""
    return Config()


@pytest.fixture
def small_config(tmp_path):
    """Configuration for fast end-to-end runs on 128 Hz synthetic data."""
    return Config(
        fs=128.0,
        cv_folds=3,
        out_model=str(tmp_path / "model.joblib"),
        out_meta=str(tmp_path / "meta.json"),
        out_confmat=str(tmp_path / "confusion.png"),
        out_fisher=str(tmp_path / "fisher.png"),
    )


@pytest.fixture
def make_activity():
    """Factory building an Activity from a list of per-trial arrays [time x freq x chan]."""

    def _make(trials, labels, cue_onsets, freqs=None, ch_names=None, wshift=0.0625):
        n_freq, n_chan = trials[0].shape[1], trials[0].shape[2]
        lengths = np.array([len(trial) for trial in trials])
        max_len = int(lengths.max())

        data = np.zeros((max_len, n_freq, n_chan, len(trials)))
        mask = np.zeros((max_len, len(trials)), dtype=bool)
        for idx, trial in enumerate(trials):
            data[:len(trial), :, :, idx] = trial
            mask[:len(trial), idx] = True

        return Activity(
            data=data,
            mask=mask,
            labels=np.asarray(labels),
            cue_onsets=np.asarray(cue_onsets),
            lengths=lengths,
            freqs=np.arange(n_freq) * 2.0 + 8.0 if freqs is None else np.asarray(freqs),
            ch_names=[f"ch{i}" for i in range(n_chan)] if ch_names is None else list(ch_names),
            wshift=wshift,
        )

    return _make


@pytest.fixture
def separable_activity():
    """
    20 trials of 40 windows, active phase from window 10.

    Class A (hands) doubles the power of channel C3 during the active phase,
    so every single active sample is separable.
    """
    rng = np.random.RandomState(42)
    n_time, n_freq, n_chan, n_trials = 40, 3, 2, 20

    data = 1.0 + 0.05 * rng.randn(n_time, n_freq, n_chan, n_trials)
    labels = np.array([HANDS, FEET] * (n_trials // 2))
    data[10:, :, 0, labels == HANDS] *= 2.0

    return Activity(
        data=data,
        mask=np.ones((n_time, n_trials), dtype=bool),
        labels=labels,
        cue_onsets=np.full(n_trials, 10),
        lengths=np.full(n_trials, n_time),
        freqs=np.array([8.0, 10.0, 12.0]),
        ch_names=["C3", "Cz"],
        wshift=0.0625,
    )


def pytest_configure(config):
    """Add custom markers."""
    config.addinivalue_line("markers", "slow: marks tests as slow")
    config.addinivalue_line("markers", "integration: marks end-to-end tests")
