"""
Event marker handling for windowed EEG data

The spectrogram reduces the temporal resolution of the recording: instead of
one value per sample we get one PSD estimate every ``wshift`` seconds. Event
markers recorded in samples must therefore be re-expressed in window indices
before trials can be cut out of the PSD. This module also takes care of
addressing several concatenated runs on one ascending window timeline.
"""

import logging
from dataclasses import dataclass
from typing import Iterator, List, NamedTuple, Optional, Sequence, Tuple, Union

import numpy as np


class EventMarker(NamedTuple):
    """Single event: type code, onset and duration (samples or windows)"""
    typ: int
    pos: int
    dur: int


@dataclass(frozen=True)
class EventTable:
    """
    Time-ordered sequence of event markers stored as parallel arrays

    The table is used both for sample-indexed markers (as produced by the
    acquisition) and for window-indexed markers (after alignment).
    """
    typ: np.ndarray
    pos: np.ndarray
    dur: np.ndarray

    def __post_init__(self):
        typ = np.asarray(self.typ, dtype=np.int64).reshape(-1)
        pos = np.asarray(self.pos, dtype=np.int64).reshape(-1)
        dur = np.asarray(self.dur, dtype=np.int64).reshape(-1)
        if not (len(typ) == len(pos) == len(dur)):
            raise ValueError(f"Event arrays differ in length: TYP={len(typ)}, POS={len(pos)}, DUR={len(dur)}")
        object.__setattr__(self, 'typ', typ)
        object.__setattr__(self, 'pos', pos)
        object.__setattr__(self, 'dur', dur)

    def __len__(self) -> int:
        return len(self.typ)

    def __iter__(self) -> Iterator[EventMarker]:
        for typ, pos, dur in zip(self.typ, self.pos, self.dur):
            yield EventMarker(int(typ), int(pos), int(dur))

    def __getitem__(self, idx: int) -> EventMarker:
        return EventMarker(int(self.typ[idx]), int(self.pos[idx]), int(self.dur[idx]))

    @classmethod
    def empty(cls) -> 'EventTable':
        return cls(np.zeros(0), np.zeros(0), np.zeros(0))

    @classmethod
    def from_markers(cls, markers: Sequence[Tuple[int, int, int]]) -> 'EventTable':
        """Build a table from (type, onset, duration) triples"""
        if len(markers) == 0:
            return cls.empty()
        arr = np.asarray(markers, dtype=np.int64)
        return cls(arr[:, 0], arr[:, 1], arr[:, 2])

    def offset(self, n: int) -> 'EventTable':
        """Return a copy with every onset shifted by ``n``"""
        return EventTable(self.typ.copy(), self.pos + n, self.dur.copy())

    def count(self, code: int) -> int:
        return int(np.sum(self.typ == code))

    def is_sorted(self) -> bool:
        return bool(np.all(np.diff(self.pos) >= 0))


def pos_to_window(
    pos: Union[int, np.ndarray],
    stride: float,
    direction: str = "backward",
    window_len: Optional[float] = None
) -> Union[int, np.ndarray]:
    """
    Convert sample positions into window indices

    Two conversion rules are supported:

    - backward: ``floor(pos / stride)``, the most recent window whose
      stride step starts at or before the sample. Monotonic in ``pos``.
    - forward: the first window whose frame ends at or after the sample,
      ``ceil((pos - window_len) / stride)`` clipped at 0. Without a window
      length this reduces to ``ceil(pos / stride)``.

    Args:
        pos: Sample position(s), 0-based
        stride: Outer window shift in samples
        direction: "backward" or "forward"
        window_len: Frame length in samples (forward rule only)

    Returns:
        Window index (same shape as ``pos``)

    Raises:
        ValueError: If the stride is not positive or the direction is unknown
    """
    if stride <= 0:
        raise ValueError(f"Stride must be positive, got {stride}")

    values = np.asarray(pos, dtype=np.float64)

    if direction == "backward":
        windows = np.floor(values / stride)
    elif direction == "forward":
        shift = window_len if window_len is not None else 0.0
        windows = np.maximum(np.ceil((values - shift) / stride), 0)
    else:
        raise ValueError(f"Direction must be 'backward' or 'forward', got '{direction}'")

    windows = windows.astype(np.int64)
    if np.ndim(pos) == 0:
        return int(windows)
    return windows


def dur_to_windows(dur: Union[int, np.ndarray], stride: float) -> Union[int, np.ndarray]:
    """Convert durations in samples to a number of windows (rounded up)"""
    if stride <= 0:
        raise ValueError(f"Stride must be positive, got {stride}")

    windows = np.ceil(np.asarray(dur, dtype=np.float64) / stride).astype(np.int64)
    if np.ndim(dur) == 0:
        return int(windows)
    return windows


def align_events(
    events: EventTable,
    stride: float,
    direction: str = "backward",
    window_len: Optional[float] = None
) -> EventTable:
    """
    Re-express sample-indexed markers in window units

    The same rule is applied to every marker of the run; type codes are
    preserved.

    Args:
        events: Markers with onsets/durations in samples
        stride: Outer window shift in samples
        direction: Conversion rule for onsets
        window_len: Frame length in samples (forward rule only)

    Returns:
        Window-indexed EventTable
    """
    if len(events) == 0:
        return EventTable.empty()

    pos_win = pos_to_window(events.pos, stride, direction, window_len)
    dur_win = dur_to_windows(events.dur, stride)

    logging.debug(f"Aligned {len(events)} events to windows (stride={stride} samples, rule={direction})")
    return EventTable(events.typ.copy(), pos_win, dur_win)


def concatenate_runs(
    runs: Sequence[Tuple[np.ndarray, EventTable]]
) -> Tuple[np.ndarray, EventTable, List[int]]:
    """
    Concatenate windowed runs on one ascending window timeline

    The markers of each run are offset by the cumulative window count of all
    prior runs, so the whole session can be segmented in one pass.

    Args:
        runs: Sequence of (psd [windows x freqs x channels], window events)

    Returns:
        Tuple of:
        - psd: Concatenated PSD along the window axis
        - events: Offset and concatenated events
        - offsets: Window offset applied to each run

    Raises:
        ValueError: If no runs are given or the runs differ in freq/channel shape
    """
    if len(runs) == 0:
        raise ValueError("No runs to concatenate")

    shapes = {psd.shape[1:] for psd, _ in runs}
    if len(shapes) != 1:
        raise ValueError(f"Runs have inconsistent (freq, channel) shapes: {sorted(shapes)}")

    offsets = []
    typ, pos, dur = [], [], []
    current_offset = 0

    for psd, events in runs:
        offsets.append(current_offset)
        shifted = events.offset(current_offset)
        typ.append(shifted.typ)
        pos.append(shifted.pos)
        dur.append(shifted.dur)
        current_offset += psd.shape[0]

    psd_all = np.concatenate([psd for psd, _ in runs], axis=0)
    events_all = EventTable(np.concatenate(typ), np.concatenate(pos), np.concatenate(dur))

    logging.info(f"Concatenated {len(runs)} runs: {psd_all.shape[0]} windows, {len(events_all)} events")
    return psd_all, events_all, offsets
