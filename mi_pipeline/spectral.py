"""
Spectral feature extraction for Motor Imagery data

This module turns a raw multi-channel recording into a windowed power
spectrum (spectrogram) per channel. A fixed spatial filter (Laplacian) is
applied first to suppress spatially broad activity, then power is estimated
on a sliding window so that the time course of the mu/beta rhythms can be
followed with a resolution of ``wshift`` seconds.
"""

import logging
from dataclasses import dataclass
from typing import List, Tuple

import numpy as np
from scipy import signal

from .config import Config, MIPipelineError
from .data_io import RawRun


class ChannelMismatchError(MIPipelineError):
    """Raised when a recording has fewer channels than the spatial filter expects"""


@dataclass(frozen=True)
class WindowedPSD:
    """
    Power spectral density computed on sliding windows

    Attributes:
        psd: Power [windows x freqs x channels], non-negative
        freqs: Frequency axis in Hz (ascending)
        ch_names: Channel labels (one per PSD channel)
        wshift: Seconds between consecutive windows
    """
    psd: np.ndarray
    freqs: np.ndarray
    ch_names: List[str]
    wshift: float

    @property
    def n_windows(self) -> int:
        return self.psd.shape[0]


def apply_spatial_filter(data: np.ndarray, spatial_filter: np.ndarray) -> np.ndarray:
    """
    Apply a channel mixing matrix to the first N channels of the signal

    Args:
        data: EEG data [samples x channels]
        spatial_filter: Mixing matrix [N x N]

    Returns:
        Filtered data [samples x N]

    Raises:
        ChannelMismatchError: If the signal has fewer than N channels
    """
    n_required = spatial_filter.shape[0]
    if data.shape[1] < n_required:
        raise ChannelMismatchError(
            f"Signal has {data.shape[1]} channels, spatial filter expects {n_required}"
        )

    return data[:, :n_required] @ spatial_filter


def window_samples(seconds: float, fs: float) -> int:
    """Length in samples of a window of ``seconds``, as used to step and cut frames"""
    return int(round(seconds * fs))


def spectrogram(
    data: np.ndarray,
    wlength: float,
    wshift: float,
    pshift: float,
    fs: float,
    mlength: float
) -> Tuple[np.ndarray, np.ndarray]:
    """
    Compute a sliding-window power spectrogram

    Outer frames of ``mlength`` seconds advance by ``wshift`` seconds. Each
    frame is estimated with Welch's method: Hamming windows of ``wlength``
    seconds shifted by ``pshift`` seconds are averaged, which is the same as
    smoothing the inner periodograms with a moving average of ``mlength``.

    Frame ``k`` covers samples ``[k * step, k * step + frame_len)`` where both
    lengths are rounded to whole samples with ``window_samples``. Event
    markers must be aligned with the same integer step.

    Args:
        data: Signal [samples x channels]
        wlength: Inner window length (s)
        wshift: Outer window shift (s)
        pshift: Inner window shift (s)
        fs: Sampling frequency (Hz)
        mlength: Moving average (frame) length (s)

    Returns:
        Tuple of (psd [windows x freqs x channels], freqs [freqs])
    """
    nperseg = window_samples(wlength, fs)
    step = window_samples(wshift, fs)
    inner_step = window_samples(pshift, fs)
    frame_len = window_samples(mlength, fs)

    if nperseg <= 0 or step <= 0 or inner_step <= 0 or frame_len < nperseg:
        raise ValueError(
            f"Invalid spectrogram parameters: wlength={wlength}s, wshift={wshift}s, "
            f"pshift={pshift}s, mlength={mlength}s at fs={fs}"
        )

    noverlap = max(nperseg - inner_step, 0)
    freqs = np.fft.rfftfreq(nperseg, d=1.0 / fs)
    n_samples, n_channels = data.shape

    if n_samples < frame_len:
        logging.warning(f"Signal ({n_samples} samples) shorter than one frame ({frame_len}), no windows computed")
        return np.zeros((0, len(freqs), n_channels)), freqs

    n_windows = (n_samples - frame_len) // step + 1
    psd = np.zeros((n_windows, len(freqs), n_channels))

    for k in range(n_windows):
        start = k * step
        frame = data[start:start + frame_len, :]
        _, pxx = signal.welch(frame, fs=fs, window='hamming', nperseg=nperseg,
                              noverlap=noverlap, axis=0)
        psd[k] = pxx

    logging.debug(f"Spectrogram: {n_windows} windows, {len(freqs)} freqs, {n_channels} channels")
    return psd, freqs


def select_band(
    psd: np.ndarray,
    freqs: np.ndarray,
    band: Tuple[float, float]
) -> Tuple[np.ndarray, np.ndarray]:
    """
    Keep only the frequencies inside the closed interval [low, high]

    Args:
        psd: Power [windows x freqs x channels]
        freqs: Frequency axis
        band: (low, high) in Hz

    Returns:
        Tuple of (band-limited psd, selected freqs), order preserved
    """
    low, high = band
    freq_mask = (freqs >= low) & (freqs <= high)

    if not np.any(freq_mask):
        logging.warning(f"No frequencies found in the range [{low}, {high}] Hz")

    return psd[:, freq_mask, :], freqs[freq_mask]


def featurize_run(run: RawRun, spatial_filter: np.ndarray, config: Config) -> WindowedPSD:
    """
    Spatially filter a recording and compute its band-limited spectrogram

    Args:
        run: Raw recording
        spatial_filter: Channel mixing matrix
        config: Pipeline configuration (spectrogram parameters, band)

    Returns:
        WindowedPSD for the run

    Raises:
        ChannelMismatchError: If the run has too few channels for the filter
    """
    logging.info(f"Computing PSD for {run.source} "
                 f"(window: {config.wlength:.2f}s, step: {config.wshift:.4f}s)")

    filtered = apply_spatial_filter(run.signal, spatial_filter)

    psd_full, freqs_full = spectrogram(
        filtered,
        wlength=config.wlength,
        wshift=config.wshift,
        pshift=config.pshift,
        fs=run.fs,
        mlength=config.mlength
    )

    psd, freqs = select_band(psd_full, freqs_full, config.freq_band)

    n_filter = spatial_filter.shape[0]
    ch_names = list(run.ch_names[:n_filter])
    if len(ch_names) < n_filter:
        ch_names = list(config.ch_names[:n_filter])

    logging.info(f"Selected {len(freqs)} frequency bins between {config.freq_band[0]} Hz "
                 f"and {config.freq_band[1]} Hz ({psd.shape[0]} windows)")

    return WindowedPSD(psd=psd, freqs=freqs, ch_names=ch_names, wshift=config.wshift)
