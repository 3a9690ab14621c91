"""
Configuration settings for the Motor Imagery analysis pipeline

This module defines the configuration dataclass that controls every stage of
the pipeline, from spectrogram computation to the evidence accumulation
framework used for the simulated online evaluation.
"""

import json
import logging
import os
from dataclasses import dataclass, fields, replace
from typing import Any, Dict, List, Optional, Tuple


class MIPipelineError(Exception):
    """Base class for pipeline errors"""


class ConfigError(MIPipelineError):
    """Raised when the configuration is malformed (fatal for a run)"""


class NoDataError(MIPipelineError):
    """Raised when no usable run or trial is left to work with"""


# Standard 16-channel sensorimotor montage (g.USBamp layout used for the
# Hands vs Feet protocol)
DEFAULT_CHANNELS = [
    'Fz', 'FC3', 'FC1', 'FCz', 'FC2', 'FC4',
    'C3', 'C1', 'Cz', 'C2', 'C4',
    'CP3', 'CP1', 'CPz', 'CP2', 'CP4'
]


@dataclass(frozen=True)
class Config:
    """
    Configuration for the Motor Imagery pipeline

    Every component receives its parameters from an instance of this class
    (or from the individual values), never from a module-level default.
    Instances are immutable; use ``dataclasses.replace`` or ``with_updates``
    to derive variations for another subject or run.

    Acquisition:
    - fs: Sampling frequency in Hz (g.USBamp records at 512 Hz)
    - n_channels: Number of EEG channels fed to the spatial filter
    - ch_names: Channel labels used when the recording has none

    Spectrogram (seconds):
    - wlength: Inner Welch window length
    - wshift: Outer window shift (temporal resolution of the PSD)
    - pshift: Inner window shift
    - mlength: Moving average length (outer frame)
    - freq_band: Frequency band of interest [min, max] in Hz

    Event codes (GDF standard):
    - code_fixation: Fixation cross (trial start)
    - code_class_a / code_class_b: Cues for both hands / both feet
    - code_feedback: Continuous feedback start (active phase)

    Classification:
    - n_features: Number of Fisher-selected (frequency, channel) features
    - classifier: "lda", "qda" or "logistic"

    Evidence accumulation:
    - alpha: Exponential smoothing factor (higher = slower, more stable)
    - threshold: Probability required to deliver a command
    """

    # Acquisition
    fs: float = 512.0                       # Sampling frequency (Hz)
    n_channels: int = 16                    # Channels entering the spatial filter
    ch_names: Tuple[str, ...] = tuple(DEFAULT_CHANNELS)
    spatial_filter: Optional[str] = None    # Path to Laplacian mask, None = built-in

    # Spectrogram parameters (seconds)
    wlength: float = 0.5                    # Inner window length
    wshift: float = 0.0625                  # Outer window shift (16 Hz resolution)
    pshift: float = 0.25                    # Inner window shift
    mlength: float = 1.0                    # Moving average length
    freq_band: Tuple[float, float] = (4.0, 48.0)
    window_direction: str = "backward"      # Sample -> window conversion rule

    # Event codes
    code_fixation: int = 786                # 0x0312
    code_class_a: int = 773                 # 0x0305 both hands
    code_class_b: int = 771                 # 0x0303 both feet
    code_feedback: int = 781                # 0x030D continuous feedback
    lookback: int = 3                       # Events searched backward for fixation
    lookahead: int = 5                      # Events searched forward for feedback

    # Feature selection and classification
    n_features: int = 10
    fisher_eps: float = 1e-12
    classifier: str = "lda"
    cv_folds: int = 5

    # Evidence accumulation
    alpha: float = 0.95
    threshold: float = 0.70

    # ERD/ERS analysis
    erd_band: Tuple[float, float] = (8.0, 13.0)     # Mu band
    erd_ref: Optional[Any] = None           # None = per-trial cue onset, "median" or int
    curve_channels: Tuple[str, str] = ("C3", "Cz")
    lateral_channels: Tuple[str, str] = ("C3", "C4")

    # Execution
    seed: int = 42
    n_jobs: int = 1

    # Output paths
    out_model: str = "results/mi_lda.joblib"
    out_meta: str = "results/mi_meta.json"
    out_confmat: str = "results/mi_confusion.png"
    out_fisher: str = "results/mi_fisher.png"

    @property
    def class_codes(self) -> Tuple[int, int]:
        return (self.code_class_a, self.code_class_b)

    @property
    def class_names(self) -> Dict[int, str]:
        return {self.code_class_a: "Hands", self.code_class_b: "Feet"}

    def with_updates(self, **changes) -> "Config":
        """Return a copy with the given fields replaced"""
        return replace(self, **changes)

    def to_dict(self) -> Dict[str, Any]:
        return {f.name: getattr(self, f.name) for f in fields(self)}

    @classmethod
    def from_json(cls, path: str, **overrides) -> "Config":
        """
        Build a configuration from a JSON file of overrides

        Unknown keys are rejected so that typos surface as configuration
        errors instead of being silently ignored.

        Args:
            path: JSON file with a flat mapping of field names to values
            **overrides: Extra values applied after the file

        Raises:
            FileNotFoundError: If the file does not exist
            ConfigError: If the file contains unknown fields
        """
        if not os.path.exists(path):
            raise FileNotFoundError(f"Config file not found: {path}")

        with open(path, 'r') as f:
            values = json.load(f)
        values.update(overrides)

        known = {f.name for f in fields(cls)}
        unknown = sorted(set(values) - known)
        if unknown:
            raise ConfigError(f"Unknown configuration fields: {unknown}")

        # JSON has no tuples
        for key in ("ch_names", "freq_band", "erd_band", "curve_channels", "lateral_channels"):
            if key in values and isinstance(values[key], list):
                values[key] = tuple(values[key])

        return cls(**values)


def ensure_output_dirs(config: Config) -> None:
    """
    Create output directories if they don't exist

    Args:
        config: Configuration object with output paths
    """
    output_files = [config.out_model, config.out_meta, config.out_confmat, config.out_fisher]

    for filepath in output_files:
        directory = os.path.dirname(filepath)
        if directory and not os.path.exists(directory):
            os.makedirs(directory, exist_ok=True)
            logging.info(f"Created output directory: {directory}")


def validate_config(config: Config) -> None:
    """
    Validate configuration parameters for common mistakes

    Catching a malformed configuration here aborts the subject's run before
    any data is touched.

    Args:
        config: Configuration to validate

    Raises:
        ConfigError: If configuration parameters are invalid
    """
    if config.fs <= 0:
        raise ConfigError(f"Sampling rate must be positive, got {config.fs}")

    if config.n_channels <= 0:
        raise ConfigError(f"Channel count must be positive, got {config.n_channels}")

    for name in ("wlength", "wshift", "pshift", "mlength"):
        value = getattr(config, name)
        if value <= 0:
            raise ConfigError(f"Spectrogram parameter '{name}' must be positive, got {value}")

    if config.wlength > config.mlength:
        raise ConfigError(f"Inner window ({config.wlength}s) must not exceed moving average ({config.mlength}s)")

    low, high = config.freq_band
    if low >= high:
        raise ConfigError(f"Frequency band low ({low}) must be < high ({high})")
    if high > config.fs / 2:
        raise ConfigError(f"Frequency band high ({high}) exceeds Nyquist ({config.fs / 2})")

    if config.window_direction not in ("backward", "forward"):
        raise ConfigError(f"Window direction must be 'backward' or 'forward', got '{config.window_direction}'")

    codes = [config.code_fixation, config.code_class_a, config.code_class_b, config.code_feedback]
    if any(code is None for code in codes):
        raise ConfigError("All event codes (fixation, class A, class B, feedback) must be set")
    if len(set(codes)) != len(codes):
        raise ConfigError(f"Event codes must be distinct, got {codes}")

    if config.lookback < 1 or config.lookahead < 1:
        raise ConfigError(f"Search bounds must be >= 1, got lookback={config.lookback}, lookahead={config.lookahead}")

    if config.n_features <= 0:
        raise ConfigError(f"Number of features must be positive, got {config.n_features}")

    if config.fisher_eps <= 0:
        raise ConfigError(f"Fisher epsilon must be positive, got {config.fisher_eps}")

    if config.classifier not in ("lda", "qda", "logistic"):
        raise ConfigError(f"Classifier must be 'lda', 'qda' or 'logistic', got '{config.classifier}'")

    if config.cv_folds < 2:
        raise ConfigError(f"CV folds must be >= 2, got {config.cv_folds}")

    if not 0.0 < config.alpha < 1.0:
        raise ConfigError(f"Smoothing factor alpha must be in (0, 1), got {config.alpha}")

    if not 0.0 < config.threshold <= 1.0:
        raise ConfigError(f"Decision threshold must be in (0, 1], got {config.threshold}")

    if config.erd_ref is not None and config.erd_ref != "median" and not isinstance(config.erd_ref, int):
        raise ConfigError(f"ERD reference must be None, 'median' or an integer, got {config.erd_ref!r}")

    if len(config.ch_names) < config.n_channels:
        raise ConfigError(f"Expected at least {config.n_channels} default channel names, got {len(config.ch_names)}")

    logging.info("Configuration validation passed")


def describe_config(config: Config) -> List[str]:
    """Human-readable summary lines used in logs and reports"""
    return [
        f"fs={config.fs} Hz, channels={config.n_channels}",
        f"spectrogram: wlength={config.wlength}s wshift={config.wshift}s "
        f"pshift={config.pshift}s mlength={config.mlength}s band={config.freq_band}",
        f"codes: fix={config.code_fixation} A={config.code_class_a} "
        f"B={config.code_class_b} feedback={config.code_feedback}",
        f"features={config.n_features} classifier={config.classifier}",
        f"accumulation: alpha={config.alpha} threshold={config.threshold}",
    ]
