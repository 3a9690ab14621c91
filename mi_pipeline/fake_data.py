"""
Synthetic Motor Imagery data generation

This module creates synthetic EEG recordings that follow the Hands vs Feet
protocol, so the whole pipeline can be tested without real recordings. The
synthetic data mimics the key characteristics of motor imagery signals.
"""

import logging
from typing import Dict, List, Optional, Sequence

import numpy as np

from .config import DEFAULT_CHANNELS
from .data_io import RawRun
from .events import EventTable

# Protocol event codes
FIXATION = 786
CUE_HANDS = 773
CUE_FEET = 771
FEEDBACK = 781


def synthesize_mi_runs(
    n_runs: int = 3,
    n_trials_per_class: int = 10,
    fs: float = 512.0,
    ch_names: Optional[Sequence[str]] = None,
    seed: int = 42,
    erd_strength: float = 0.6,
    fix_dur: float = 2.0,
    cue_dur: float = 1.0,
    feedback_dur: float = 4.0,
    iti: float = 1.5
) -> List[RawRun]:
    """
    Generate synthetic Hands vs Feet motor imagery runs

    Every trial follows the protocol fixation -> cue -> continuous feedback,
    marked with the GDF event codes 786 -> 773/771 -> 781. During the
    feedback period the mu rhythm (around 10 Hz) is desynchronized:

    - Hands imagery: ERD over both hand areas (C3 and C4)
    - Feet imagery: ERD over the vertex (Cz)

    Physiological basis:
    - Motor imagery causes ERD (power decrease) in sensorimotor rhythms
    - The hand areas lie laterally on the motor strip, the feet area medially
    - ERD builds up within about half a second of imagery onset

    Args:
        n_runs: Number of runs (recordings) to generate
        n_trials_per_class: Hands and feet trials per run
        fs: Sampling frequency in Hz
        ch_names: Channel names (default: 16-channel sensorimotor montage)
        seed: Random seed for reproducibility
        erd_strength: Relative mu amplitude reduction during imagery (0-1)
        fix_dur: Fixation period (s)
        cue_dur: Cue period (s)
        feedback_dur: Continuous feedback (imagery) period (s)
        iti: Inter-trial interval (s)

    Returns:
        List of RawRun with signal [samples x channels] in microvolts
    """
    if ch_names is None:
        ch_names = DEFAULT_CHANNELS
    ch_names = list(ch_names)

    rng = np.random.RandomState(seed)
    logging.info(f"Generating {n_runs} synthetic MI runs: {n_trials_per_class} trials per class each")
    logging.info(f"Parameters: fs={fs}Hz, channels={len(ch_names)}, ERD strength={erd_strength}")

    motor_channels = {name: ch_names.index(name) for name in ('C3', 'Cz', 'C4') if name in ch_names}
    logging.info(f"Motor channels found: {motor_channels}")

    runs = []
    for run_idx in range(n_runs):
        labels = np.array([CUE_HANDS] * n_trials_per_class + [CUE_FEET] * n_trials_per_class)
        rng.shuffle(labels)

        runs.append(_generate_run(
            labels=labels,
            fs=fs,
            ch_names=ch_names,
            motor_channels=motor_channels,
            rng=rng,
            erd_strength=erd_strength,
            durations=(fix_dur, cue_dur, feedback_dur, iti),
            source=f"synthetic_run{run_idx + 1}"
        ))

    return runs


def _generate_run(
    labels: np.ndarray,
    fs: float,
    ch_names: List[str],
    motor_channels: Dict[str, int],
    rng: np.random.RandomState,
    erd_strength: float,
    durations: tuple,
    source: str
) -> RawRun:
    """Generate one continuous run with its event table"""
    fix_dur, cue_dur, feedback_dur, iti = durations
    n_fix, n_cue, n_fb, n_iti = (int(round(d * fs)) for d in durations)
    trial_len = n_fix + n_cue + n_fb
    lead_in = n_iti

    n_samples = lead_in + len(labels) * (trial_len + n_iti)
    n_channels = len(ch_names)
    signal = np.zeros((n_samples, n_channels))
    markers = []

    signal[:lead_in] = _generate_background(lead_in, n_channels, fs, rng)

    current = lead_in
    for label in labels:
        markers.append((FIXATION, current, n_fix))
        markers.append((int(label), current + n_fix, n_cue))
        markers.append((FEEDBACK, current + n_fix + n_cue, n_fb))

        signal[current:current + trial_len] = _generate_trial(
            trial_len, n_channels, fs, int(label), n_fix + n_cue, motor_channels, rng, erd_strength
        )
        current += trial_len

        signal[current:current + n_iti] = _generate_background(n_iti, n_channels, fs, rng)
        current += n_iti

    events = EventTable.from_markers(markers)
    logging.info(f"{source}: {len(labels)} trials, {n_samples / fs:.1f}s, {len(events)} events")

    return RawRun(signal=signal, fs=float(fs), events=events, ch_names=list(ch_names), source=source)


def _generate_background(n_samples: int, n_channels: int, fs: float, rng: np.random.RandomState) -> np.ndarray:
    """
    Resting-state EEG: 1/f background plus a spontaneous mu rhythm

    Returns:
        EEG data [n_samples x n_channels]
    """
    data = np.zeros((n_samples, n_channels))
    if n_samples == 0:
        return data

    time_vector = np.arange(n_samples) / fs
    for ch_idx in range(n_channels):
        # 1/f background noise (cumulative sum approximation)
        pink_noise = np.cumsum(rng.randn(n_samples)) / np.sqrt(n_samples)
        pink_noise = pink_noise - np.mean(pink_noise)
        data[:, ch_idx] = pink_noise * (15 + rng.randn() * 3) + rng.randn(n_samples) * 2.0

        mu_freq = 10 + rng.randn() * 0.5
        mu_phase = rng.rand() * 2 * np.pi
        data[:, ch_idx] += 10 * np.sin(2 * np.pi * mu_freq * time_vector + mu_phase)

    return data


def _generate_trial(
    n_samples: int,
    n_channels: int,
    fs: float,
    label: int,
    imagery_onset: int,
    motor_channels: Dict[str, int],
    rng: np.random.RandomState,
    erd_strength: float
) -> np.ndarray:
    """
    Generate one trial with class-specific ERD after ``imagery_onset``

    Returns:
        Trial EEG data [n_samples x n_channels]
    """
    trial_data = _generate_background(n_samples, n_channels, fs, rng)
    time_vector = np.arange(n_samples) / fs

    # Smooth ERD envelope: cosine ramp over 0.5 s, then sustained
    onset_time = imagery_onset / fs
    ramp = np.clip((time_vector - onset_time) / 0.5, 0.0, 1.0)
    envelope = 0.5 * (1 - np.cos(np.pi * ramp))

    if label == CUE_HANDS:
        targets = [name for name in ('C3', 'C4') if name in motor_channels]
    else:
        targets = [name for name in ('Cz',) if name in motor_channels]

    # Every motor channel carries a strong mu rhythm, only the targets desynchronize
    for name, ch_idx in motor_channels.items():
        strength = erd_strength if name in targets else 0.0
        _apply_erd_to_channel(trial_data, ch_idx, time_vector, envelope, strength, rng)
    logging.debug(f"Applied {'hands' if label == CUE_HANDS else 'feet'} imagery ERD to {targets}")

    return trial_data


def _apply_erd_to_channel(
    trial_data: np.ndarray,
    ch_idx: int,
    time_vector: np.ndarray,
    envelope: np.ndarray,
    erd_strength: float,
    rng: np.random.RandomState
) -> None:
    """
    Add a sensorimotor mu rhythm whose amplitude drops with the ERD envelope

    Args:
        trial_data: Trial data to modify in-place [samples x channels]
        ch_idx: Channel index to apply ERD to
        time_vector: Time vector
        envelope: ERD strength envelope (0-1)
        erd_strength: Relative amplitude reduction at full ERD
        rng: Random state
    """
    mu_freq = 10 + rng.randn() * 0.5
    mu_phase = rng.rand() * 2 * np.pi
    mu_amplitude = 20 + rng.randn() * 2

    mu_rhythm = mu_amplitude * np.sin(2 * np.pi * mu_freq * time_vector + mu_phase)
    trial_data[:, ch_idx] += mu_rhythm * (1.0 - erd_strength * envelope)
