"""
Trial segmentation for windowed Motor Imagery data

This module cuts trials out of the windowed PSD using the event markers of the
protocol: fixation cross -> cue (hands or feet) -> continuous feedback. A trial
spans from the fixation onset to the end of the feedback period, and the
active (imagery) phase starts at the feedback onset.

Trials have different lengths, so they are collected as ragged buffers first
and stacked once into a fixed-shape Activity with an explicit validity mask.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import List, Sequence

import numpy as np

from .config import Config
from .events import EventTable, align_events
from .spectral import WindowedPSD, window_samples


class SegmenterState(Enum):
    """States of the trial matcher while it scans the event table"""
    SCANNING = "scanning"
    FOUND_CUE = "found_cue"
    FOUND_START = "found_start"
    EMIT = "emit"


@dataclass(frozen=True)
class Trial:
    """
    Window span of one trial

    ``start`` is inclusive and ``stop`` exclusive. ``cue_onset`` is the
    0-based index inside the trial where the active phase begins.
    """
    start: int
    stop: int
    label: int
    cue_onset: int
    cue_index: int = -1

    @property
    def length(self) -> int:
        return self.stop - self.start


@dataclass(frozen=True)
class Activity:
    """
    Trial-wise spectral activity

    Attributes:
        data: PSD values [time x freq x channel x trial], 0.0 where padded
        mask: Validity mask [time x trial], True for real samples
        labels: Cue code per trial
        cue_onsets: Active-phase start per trial (0-based)
        lengths: Number of valid samples per trial
        freqs: Frequency axis in Hz
        ch_names: Channel labels
        wshift: Seconds per window
    """
    data: np.ndarray
    mask: np.ndarray
    labels: np.ndarray
    cue_onsets: np.ndarray
    lengths: np.ndarray
    freqs: np.ndarray
    ch_names: List[str]
    wshift: float

    def __post_init__(self):
        n_trials = self.data.shape[3]
        if not (len(self.labels) == len(self.cue_onsets) == len(self.lengths) == n_trials):
            raise ValueError(
                f"Inconsistent trial count: data={n_trials}, labels={len(self.labels)}, "
                f"cue_onsets={len(self.cue_onsets)}, lengths={len(self.lengths)}"
            )
        if self.mask.shape != (self.data.shape[0], n_trials):
            raise ValueError(f"Mask shape {self.mask.shape} does not match data shape {self.data.shape}")

    @property
    def n_trials(self) -> int:
        return self.data.shape[3]

    @property
    def n_time(self) -> int:
        return self.data.shape[0]

    @property
    def n_freqs(self) -> int:
        return self.data.shape[1]

    @property
    def n_channels(self) -> int:
        return self.data.shape[2]

    @classmethod
    def empty(cls, freqs: np.ndarray, ch_names: Sequence[str], wshift: float) -> 'Activity':
        n_freqs, n_chans = len(freqs), len(ch_names)
        return cls(
            data=np.zeros((0, n_freqs, n_chans, 0)),
            mask=np.zeros((0, 0), dtype=bool),
            labels=np.zeros(0, dtype=np.int64),
            cue_onsets=np.zeros(0, dtype=np.int64),
            lengths=np.zeros(0, dtype=np.int64),
            freqs=np.asarray(freqs),
            ch_names=list(ch_names),
            wshift=wshift
        )

    def masked(self) -> np.ma.MaskedArray:
        """Masked view of ``data`` where padding cells are masked out"""
        full_mask = np.broadcast_to(~self.mask[:, None, None, :], self.data.shape).copy()
        return np.ma.MaskedArray(self.data, mask=full_mask)

    def active_phase(self) -> np.ma.MaskedArray:
        """
        Cue-aligned active phase of every trial

        Each trial's samples from ``cue_onset`` to its end are moved to index
        0, so time index ``t`` is ``t`` windows after feedback onset for all
        trials. Cells beyond a trial's active length are masked.

        Returns:
            Masked array [active time x freq x channel x trial]
        """
        return align_to_cue(self.masked(), self.cue_onsets, self.lengths)

    def trial_samples(self, trial_idx: int, active_only: bool = True) -> np.ndarray:
        """Valid samples of one trial [time x freq x channel]"""
        start = int(self.cue_onsets[trial_idx]) if active_only else 0
        stop = int(self.lengths[trial_idx])
        return self.data[start:stop, :, :, trial_idx]

    def select(self, trial_indices: Sequence[int]) -> 'Activity':
        """Activity restricted to a subset of trials (e.g. one class)"""
        idx = np.asarray(trial_indices, dtype=np.int64)
        return Activity(
            data=self.data[:, :, :, idx],
            mask=self.mask[:, idx],
            labels=self.labels[idx],
            cue_onsets=self.cue_onsets[idx],
            lengths=self.lengths[idx],
            freqs=self.freqs,
            ch_names=self.ch_names,
            wshift=self.wshift
        )


def align_to_cue(
    values: np.ma.MaskedArray,
    cue_onsets: np.ndarray,
    lengths: np.ndarray
) -> np.ma.MaskedArray:
    """
    Shift each trial so that its active phase starts at time index 0

    Masks already present in ``values`` (e.g. invalid log ratios) are kept.

    Args:
        values: Masked array [time x freq x channel x trial]
        cue_onsets: Active-phase start per trial
        lengths: Valid samples per trial

    Returns:
        Masked array [max active length x freq x channel x trial]
    """
    n_trials = values.shape[3]
    active_lengths = np.asarray(lengths) - np.asarray(cue_onsets)
    n_active = int(active_lengths.max()) if n_trials > 0 else 0

    out = np.zeros((n_active,) + values.shape[1:])
    out_mask = np.ones(out.shape, dtype=bool)
    src_mask = np.ma.getmaskarray(values)

    for trial_idx in range(n_trials):
        onset = int(cue_onsets[trial_idx])
        n_valid = int(active_lengths[trial_idx])
        out[:n_valid, :, :, trial_idx] = values.data[onset:onset + n_valid, :, :, trial_idx]
        out_mask[:n_valid, :, :, trial_idx] = src_mask[onset:onset + n_valid, :, :, trial_idx]

    return np.ma.MaskedArray(out, mask=out_mask)


def find_trials(
    events: EventTable,
    class_codes: Sequence[int],
    code_fixation: int,
    code_feedback: int,
    n_windows: int,
    lookback: int = 3,
    lookahead: int = 5
) -> List[Trial]:
    """
    Match cue markers with their fixation and feedback markers

    For every cue, the nearest fixation marker is searched among the
    ``lookback`` preceding events and the nearest feedback marker among the
    ``lookahead`` following events. Cues without a match, or whose span falls
    outside ``[0, n_windows)``, are discarded with a warning.

    Args:
        events: Window-indexed markers (time ordered)
        class_codes: Cue codes that start a trial
        code_fixation: Fixation cross code (trial start)
        code_feedback: Continuous feedback code (active phase)
        n_windows: Length of the PSD the trials are cut from
        lookback: Number of events searched backward for the fixation
        lookahead: Number of events searched forward for the feedback

    Returns:
        List of Trial objects in event order
    """
    trials = []
    n_events = len(events)

    for cue_idx in range(n_events):
        state = SegmenterState.SCANNING
        cue = events[cue_idx]
        if cue.typ not in class_codes:
            continue
        state = SegmenterState.FOUND_CUE

        start = None
        for j in range(cue_idx - 1, max(cue_idx - lookback, 0) - 1, -1):
            if events.typ[j] == code_fixation:
                start = events[j]
                state = SegmenterState.FOUND_START
                break

        if state is not SegmenterState.FOUND_START:
            logging.warning(f"Cue {cue_idx} (type {cue.typ}): no fixation within {lookback} events, trial discarded")
            continue

        feedback = None
        for j in range(cue_idx + 1, min(cue_idx + lookahead, n_events - 1) + 1):
            if events.typ[j] == code_feedback:
                feedback = events[j]
                state = SegmenterState.EMIT
                break

        if state is not SegmenterState.EMIT:
            logging.warning(f"Cue {cue_idx} (type {cue.typ}): no feedback within {lookahead} events, trial discarded")
            continue

        stop = feedback.pos + feedback.dur
        if start.pos < 0 or stop > n_windows:
            logging.warning(f"Cue {cue_idx}: trial [{start.pos}, {stop}) outside PSD of {n_windows} windows, discarded")
            continue

        cue_onset = feedback.pos - start.pos
        if cue_onset < 0 or cue_onset >= stop - start.pos:
            logging.warning(f"Cue {cue_idx}: empty active phase (onset {cue_onset}, length {stop - start.pos}), discarded")
            continue

        trials.append(Trial(start=start.pos, stop=stop, label=cue.typ, cue_onset=cue_onset, cue_index=cue_idx))

    logging.debug(f"Matched {len(trials)} trials from {n_events} events")
    return trials


def stack_trials(
    psd: np.ndarray,
    trials: Sequence[Trial],
    freqs: np.ndarray,
    ch_names: Sequence[str],
    wshift: float
) -> Activity:
    """
    Stack variable-length trials into a padded Activity

    Args:
        psd: Windowed PSD [window x freq x channel]
        trials: Trial spans inside ``psd``
        freqs: Frequency axis
        ch_names: Channel labels
        wshift: Seconds per window

    Returns:
        Activity with padding masked out
    """
    if len(trials) == 0:
        return Activity.empty(freqs, ch_names, wshift)

    lengths = np.array([trial.length for trial in trials], dtype=np.int64)
    max_len = int(lengths.max())
    n_trials = len(trials)

    data = np.zeros((max_len, psd.shape[1], psd.shape[2], n_trials))
    mask = np.zeros((max_len, n_trials), dtype=bool)

    for trial_idx, trial in enumerate(trials):
        data[:trial.length, :, :, trial_idx] = psd[trial.start:trial.stop]
        mask[:trial.length, trial_idx] = True

    return Activity(
        data=data,
        mask=mask,
        labels=np.array([trial.label for trial in trials], dtype=np.int64),
        cue_onsets=np.array([trial.cue_onset for trial in trials], dtype=np.int64),
        lengths=lengths,
        freqs=np.asarray(freqs),
        ch_names=list(ch_names),
        wshift=wshift
    )


def segment_trials(
    wpsd: WindowedPSD,
    events: EventTable,
    config: Config,
    window_events: bool = True
) -> Activity:
    """
    Extract labelled trials from a windowed PSD

    Args:
        wpsd: Windowed PSD (possibly several concatenated runs)
        events: Markers; window-indexed unless ``window_events`` is False, in
            which case they are aligned from samples with the configured rule
        config: Pipeline configuration (event codes, search bounds)
        window_events: Whether ``events`` are already in window units

    Returns:
        Activity (empty when no trial survives)
    """
    if not window_events:
        stride = window_samples(config.wshift, config.fs)
        events = align_events(events, stride, config.window_direction,
                              window_len=window_samples(config.mlength, config.fs))

    trials = find_trials(
        events,
        class_codes=config.class_codes,
        code_fixation=config.code_fixation,
        code_feedback=config.code_feedback,
        n_windows=wpsd.n_windows,
        lookback=config.lookback,
        lookahead=config.lookahead
    )

    activity = stack_trials(wpsd.psd, trials, wpsd.freqs, wpsd.ch_names, wpsd.wshift)

    if activity.n_trials == 0:
        logging.warning("No valid trials could be extracted")
        return activity

    for code in config.class_codes:
        n_class = int(np.sum(activity.labels == code))
        logging.info(f"  {config.class_names[code]} ({code}): {n_class} trials")
    logging.info(f"Extracted {activity.n_trials} trials (max length {activity.n_time} windows)")

    return activity
