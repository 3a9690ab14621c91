"""
Data input functions for the Motor Imagery pipeline

This module turns recordings into RawRun objects (signal, sampling rate,
event markers, channel labels) and loads the spatial filter. Two formats are
supported: GDF files (the native format of the acquisition, read with MNE)
and CSV exports with one column per channel plus an event code column.
"""

import logging
import os
from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence, Tuple

import mne
import numpy as np
import pandas as pd
from scipy import io as sp_io

from .events import EventTable

# Configure MNE to reduce verbose output
mne.set_log_level('WARNING')


# 0-based positions of C3/Cz/C4 in the standard 16-channel montage. Only
# consulted when a label cannot be found in the recording.
FALLBACK_CHANNEL_INDEX = {'C3': 6, 'Cz': 8, 'C4': 10}

# Grid positions (row, column) of the 16-channel montage on the 10-20 system
MONTAGE_GRID = {
    'Fz': (0, 2),
    'FC3': (1, 0), 'FC1': (1, 1), 'FCz': (1, 2), 'FC2': (1, 3), 'FC4': (1, 4),
    'C3': (2, 0), 'C1': (2, 1), 'Cz': (2, 2), 'C2': (2, 3), 'C4': (2, 4),
    'CP3': (3, 0), 'CP1': (3, 1), 'CPz': (3, 2), 'CP2': (3, 3), 'CP4': (3, 4),
}


@dataclass(frozen=True)
class RawRun:
    """
    One continuous recording

    Attributes:
        signal: EEG data [samples x channels]
        fs: Sampling frequency in Hz
        events: Markers with onsets/durations in samples
        ch_names: Channel labels, one per signal column
        source: File name (or synthetic id) used in diagnostics
    """
    signal: np.ndarray
    fs: float
    events: EventTable
    ch_names: List[str]
    source: str = "<memory>"

    @property
    def n_samples(self) -> int:
        return self.signal.shape[0]

    @property
    def n_channels(self) -> int:
        return self.signal.shape[1]

    @property
    def duration(self) -> float:
        return self.n_samples / self.fs


def load_csv(
    path: str,
    fs: float,
    event_col: str = "event",
    duration_col: Optional[str] = "duration",
    ch_names: Optional[List[str]] = None
) -> RawRun:
    """
    Load EEG data and event markers from a CSV file

    The CSV has EEG channels as columns and samples as rows. The event
    column holds an integer event code on the row where the event starts and
    is empty elsewhere; the optional duration column gives the event
    duration in samples.

    Args:
        path: Path to CSV file
        fs: Sampling frequency in Hz
        event_col: Name of the event code column
        duration_col: Name of the duration column (None or missing = 0)
        ch_names: Channel columns to load (if None, all other numeric columns)

    Returns:
        RawRun with signal [samples x channels]

    Raises:
        FileNotFoundError: If CSV file doesn't exist
        ValueError: If required columns are missing or data format is invalid
    """
    if not os.path.exists(path):
        raise FileNotFoundError(f"CSV file not found: {path}")

    logging.info(f"Loading CSV data from: {path}")

    try:
        df = pd.read_csv(path)
    except Exception as e:
        raise ValueError(f"Failed to read CSV file {path}: {e}")

    if event_col not in df.columns:
        raise ValueError(f"Event column '{event_col}' not found in CSV. Available columns: {list(df.columns)}")

    has_duration = duration_col is not None and duration_col in df.columns

    if ch_names is None:
        exclude_cols = {event_col}
        if has_duration:
            exclude_cols.add(duration_col)
        numeric_cols = df.select_dtypes(include=[np.number]).columns.tolist()
        ch_names = [col for col in numeric_cols if col not in exclude_cols]

        if not ch_names:
            raise ValueError(f"No numeric EEG channels found in CSV {path}")
        logging.info(f"Auto-detected {len(ch_names)} EEG channels: {ch_names}")
    else:
        missing_channels = [ch for ch in ch_names if ch not in df.columns]
        if missing_channels:
            raise ValueError(f"Missing channels in CSV {path}: {missing_channels}")

    signal = df[ch_names].to_numpy(dtype=np.float64)

    event_rows = np.flatnonzero(df[event_col].notna().to_numpy())
    typ = df[event_col].to_numpy()[event_rows].astype(np.int64)
    if has_duration:
        dur = df[duration_col].fillna(0).to_numpy()[event_rows].astype(np.int64)
    else:
        dur = np.zeros(len(event_rows), dtype=np.int64)

    events = EventTable(typ, event_rows, dur)
    logging.info(f"CSV data: {signal.shape[0]} samples x {signal.shape[1]} channels, {len(events)} events")

    return RawRun(signal=signal, fs=float(fs), events=events, ch_names=list(ch_names),
                  source=os.path.basename(path))


def load_gdf(path: str) -> RawRun:
    """
    Load EEG data and event markers from a GDF file

    GDF is the native format of the biosignal acquisition. MNE exposes the
    GDF event table as annotations whose descriptions are the numeric event
    codes; annotations that are not numeric are ignored.

    Args:
        path: Path to GDF file

    Returns:
        RawRun with signal [samples x channels] in microvolts

    Raises:
        FileNotFoundError: If GDF file doesn't exist
        ValueError: If the file cannot be parsed
    """
    if not os.path.exists(path):
        raise FileNotFoundError(f"GDF file not found: {path}")

    logging.info(f"Loading GDF data from: {path}")

    try:
        raw = mne.io.read_raw_gdf(path, preload=True)
    except Exception as e:
        raise ValueError(f"Failed to read GDF file {path}: {e}")

    fs = float(raw.info['sfreq'])
    signal = raw.get_data().T * 1e6  # V -> uV, [samples x channels]

    typ, pos, dur = [], [], []
    for annot in raw.annotations:
        try:
            code = int(float(annot['description']))
        except ValueError:
            logging.debug(f"Ignoring non-numeric annotation '{annot['description']}' in {path}")
            continue
        typ.append(code)
        pos.append(int(round((annot['onset'] - raw.first_time) * fs)))
        dur.append(int(round(annot['duration'] * fs)))

    events = EventTable(typ, pos, dur)
    logging.info(f"GDF data: {signal.shape[0]} samples x {signal.shape[1]} channels at {fs} Hz, {len(events)} events")

    return RawRun(signal=signal, fs=fs, events=events, ch_names=list(raw.ch_names),
                  source=os.path.basename(path))


def load_run(path: str, fs: float) -> RawRun:
    """
    Load a recording, choosing the reader from the file extension

    Args:
        path: Path to a .gdf or .csv file
        fs: Sampling frequency used for CSV files (GDF carries its own)

    Raises:
        ValueError: If the extension is not supported
    """
    ext = os.path.splitext(path)[1].lower()
    if ext == '.gdf':
        return load_gdf(path)
    if ext == '.csv':
        return load_csv(path, fs=fs)
    raise ValueError(f"Unsupported file format '{ext}' for {path}")


def load_spatial_filter(path: str, key: str = "lap") -> np.ndarray:
    """
    Load a spatial filter (channel mixing matrix) from disk

    Supported formats are MATLAB .mat files (variable ``key``), NumPy .npy
    files and delimited text (.csv/.txt).

    Args:
        path: Path to the filter file
        key: Variable name inside .mat files

    Returns:
        Square matrix [channels x channels]

    Raises:
        FileNotFoundError: If the file doesn't exist
        ValueError: If the matrix is missing or not square
    """
    if not os.path.exists(path):
        raise FileNotFoundError(f"Spatial filter file not found: {path}")

    ext = os.path.splitext(path)[1].lower()
    if ext == '.mat':
        content = sp_io.loadmat(path)
        if key not in content:
            raise ValueError(f"Variable '{key}' missing in {path}")
        matrix = np.asarray(content[key], dtype=np.float64)
    elif ext == '.npy':
        matrix = np.load(path).astype(np.float64)
    elif ext in ('.csv', '.txt'):
        matrix = np.loadtxt(path, delimiter=',' if ext == '.csv' else None)
    else:
        raise ValueError(f"Unsupported spatial filter format '{ext}'")

    if matrix.ndim != 2 or matrix.shape[0] != matrix.shape[1]:
        raise ValueError(f"Spatial filter must be a square matrix, got shape {matrix.shape}")

    logging.info(f"Loaded {matrix.shape[0]}x{matrix.shape[1]} spatial filter from {path}")
    return matrix


def make_laplacian(ch_names: Sequence[str]) -> np.ndarray:
    """
    Build a small Laplacian spatial filter for the sensorimotor montage

    Each output channel is the channel itself minus the mean of its direct
    neighbours on the 10-20 grid (up, down, left, right). Channels without a
    known position or without neighbours are passed through unchanged.

    Args:
        ch_names: Channel labels in signal column order

    Returns:
        Matrix ``lap`` such that ``signal @ lap`` is the filtered signal
    """
    n = len(ch_names)
    lap = np.eye(n)
    positions = {name: MONTAGE_GRID.get(name) for name in ch_names}

    for j, name in enumerate(ch_names):
        pos = positions[name]
        if pos is None:
            continue
        neighbours = [
            i for i, other in enumerate(ch_names)
            if positions[other] is not None
            and abs(positions[other][0] - pos[0]) + abs(positions[other][1] - pos[1]) == 1
        ]
        if neighbours:
            lap[neighbours, j] = -1.0 / len(neighbours)

    return lap


def resolve_channel_indices(
    ch_names: Sequence[str],
    targets: Sequence[str],
    fallback: Optional[Dict[str, int]] = None
) -> Tuple[List[int], List[str]]:
    """
    Resolve channel indices from names

    Names are matched case-insensitively against the labels of the actual
    recording. Only when a name is missing is the fallback table of the
    standard montage consulted, with a warning; names missing from both are
    skipped with a warning.

    Args:
        ch_names: Channel labels of the data
        targets: Desired channel names (e.g. ["C3", "Cz", "C4"])
        fallback: Name -> index table (default: standard 16-channel montage)

    Returns:
        Tuple of (indices, names) for the resolved channels
    """
    if fallback is None:
        fallback = FALLBACK_CHANNEL_INDEX

    lowered = [str(name).strip().lower() for name in ch_names]
    indices, names = [], []

    for target in targets:
        key = target.strip().lower()
        if key in lowered:
            indices.append(lowered.index(key))
            names.append(target)
        elif target in fallback and fallback[target] < len(ch_names):
            idx = fallback[target]
            logging.warning(f"Channel {target} not found in labels. Using fallback index {idx}.")
            indices.append(idx)
            names.append(target)
        else:
            logging.warning(f"Channel {target} not found and has no fallback index, skipping")

    return indices, names
