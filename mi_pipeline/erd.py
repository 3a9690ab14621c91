"""
Event-Related Desynchronization (ERD/ERS) analysis

Motor imagery reduces the power of the sensorimotor mu rhythm (8-13 Hz) over
the cortical area of the imagined limb: hands imagery desynchronizes C3/C4,
feet imagery the vertex (Cz). The ERD is measured as the log ratio between
the power during the trial and the power of a reference period before the
active phase:

    ERD = log(Activity / baseline)

Negative values mean desynchronization (power decrease), positive values
synchronization (ERS). Padding and invalid ratios are masked and skipped by
every average, so a trial with a missing baseline does not poison the maps.
"""

import logging
from dataclasses import dataclass
from typing import List, Mapping, Optional, Sequence, Tuple, Union

import numpy as np

from .data_io import resolve_channel_indices
from .epoching import Activity, align_to_cue


@dataclass(frozen=True)
class ERDResult:
    """
    ERD tensors and class summaries

    Attributes:
        erd: Masked ERD [time x freq x channel x trial] (trial-start aligned)
        erd_active: Masked ERD of the active phase (cue aligned)
        active_map: Trial- and time-averaged active ERD [freq x channel]
        hands_map: Class A band-averaged active ERD per channel
        feet_map: Class B band-averaged active ERD per channel
        curve_a: Class A band-averaged time course at the first curve channel
        curve_b: Class B band-averaged time course at the second curve channel
        t_axis: Time of each curve sample in seconds from trial start
        peak_erd: Minimum of the trial-averaged active ERD over time,
            frequency and channel
        curve_channels: Names of the channels used for the curves
    """
    erd: np.ma.MaskedArray
    erd_active: np.ma.MaskedArray
    active_map: np.ndarray
    hands_map: np.ndarray
    feet_map: np.ndarray
    curve_a: np.ndarray
    curve_b: np.ndarray
    t_axis: np.ndarray
    peak_erd: float
    freqs: np.ndarray
    ch_names: List[str]
    curve_channels: Tuple[Optional[str], Optional[str]]


def _median_onset(activity: Activity) -> int:
    # Cue onsets are 0-based, so the reference never reaches the first active window
    if activity.n_trials == 0:
        return 1
    return int(np.floor(np.median(activity.cue_onsets)))


def reference_lengths(activity: Activity, ref_len: Union[None, str, int] = None) -> np.ndarray:
    """
    Number of reference samples used for each trial's baseline

    Args:
        activity: Trial activity
        ref_len: None (each trial's own cue onset), "median" (median cue
            onset over all trials) or a fixed number of samples

    Returns:
        Reference length per trial, clamped to [1, trial length]
    """
    if ref_len is None:
        lengths = activity.cue_onsets.copy()
    elif ref_len == "median":
        lengths = np.full(activity.n_trials, _median_onset(activity), dtype=np.int64)
    elif isinstance(ref_len, (int, np.integer)):
        lengths = np.full(activity.n_trials, int(ref_len), dtype=np.int64)
    else:
        raise ValueError(f"Reference length must be None, 'median' or an integer, got {ref_len!r}")

    return np.clip(lengths, 1, np.maximum(activity.lengths, 1))


def compute_baseline(
    activity: Activity,
    ref_len: Union[None, str, int] = None,
    skip_missing: bool = True
) -> np.ndarray:
    """
    Mean power of the reference period of every trial

    Args:
        activity: Trial activity
        ref_len: Reference length policy (see ``reference_lengths``)
        skip_missing: Ignore non-finite samples in the mean instead of
            propagating them

    Returns:
        Baseline [freq x channel x trial]; NaN where nothing valid remains
    """
    refs = reference_lengths(activity, ref_len)
    baseline = np.full((activity.n_freqs, activity.n_channels, activity.n_trials), np.nan)

    for trial_idx in range(activity.n_trials):
        segment = activity.data[:refs[trial_idx], :, :, trial_idx]
        if skip_missing:
            baseline[:, :, trial_idx] = np.ma.masked_invalid(segment).mean(axis=0).filled(np.nan)
        else:
            baseline[:, :, trial_idx] = segment.mean(axis=0)

    return baseline


def _band_mask(freqs: np.ndarray, band: Tuple[float, float]) -> np.ndarray:
    freq_mask = (freqs >= band[0]) & (freqs <= band[1])
    if not np.any(freq_mask):
        logging.warning(f"No frequencies in ERD band {band}, maps will be NaN")
    return freq_mask


def _masked_mean(values: np.ma.MaskedArray, axis) -> np.ndarray:
    """Mean skipping masked entries; fully masked reductions become NaN"""
    return np.ma.filled(np.ma.mean(values, axis=axis).astype(np.float64), np.nan)


def log_ratio(activity: Activity, ref_len: Union[None, str, int] = None) -> np.ma.MaskedArray:
    """
    Masked ERD ``log(Activity / baseline)`` [time x freq x channel x trial]

    Padding, non-positive power and zero or missing baselines are masked.
    """
    baseline = compute_baseline(activity, ref_len)
    base = np.ma.masked_invalid(baseline)
    base = np.ma.masked_less_equal(base, 0.0)

    values = activity.masked()
    values = np.ma.masked_less_equal(values, 0.0)
    erd = np.ma.log(values / base[None, :, :, :])

    n_zero_base = int(np.sum(np.ma.getmaskarray(base)))
    if n_zero_base > 0:
        logging.warning(f"{n_zero_base} baseline entries are zero or missing, their ERD is masked")

    return erd


def compute_erd(
    activity: Activity,
    ref_len: Union[None, str, int] = None,
    band: Tuple[float, float] = (8.0, 13.0),
    curve_channels: Sequence[str] = ("C3", "Cz"),
    class_a: int = 773,
    class_b: int = 771
) -> ERDResult:
    """
    Compute ERD/ERS and its class-averaged spatial and temporal summaries

    Args:
        activity: Trial activity
        ref_len: Reference length policy for the baseline
        band: Frequency band averaged for maps and curves (mu by default)
        curve_channels: Channels of the class A and class B time courses
        class_a: Label of class A (hands)
        class_b: Label of class B (feet)

    Returns:
        ERDResult
    """
    erd = log_ratio(activity, ref_len)
    erd_active = align_to_cue(erd, activity.cue_onsets, activity.lengths)
    freq_mask = _band_mask(activity.freqs, band)

    active_map = _masked_mean(erd_active, axis=(0, 3))
    trial_mean = _masked_mean(erd_active, axis=3)
    finite = trial_mean[np.isfinite(trial_mean)]
    peak_erd = float(finite.min()) if finite.size > 0 else float('nan')

    class_maps = []
    for label in (class_a, class_b):
        trials = np.flatnonzero(activity.labels == label)
        if len(trials) == 0 or not np.any(freq_mask):
            logging.warning(f"No trials for class {label}, spatial map is NaN")
            class_maps.append(np.full(activity.n_channels, np.nan))
            continue
        subset = erd_active[:, freq_mask][:, :, :, trials]
        class_maps.append(_masked_mean(subset, axis=(0, 1, 3)))

    curve_names = []
    curves = []
    for label, target in zip((class_a, class_b), curve_channels):
        resolved, names = resolve_channel_indices(activity.ch_names, [target])
        trials = np.flatnonzero(activity.labels == label)
        if not resolved or len(trials) == 0 or not np.any(freq_mask):
            curves.append(np.full(activity.n_time, np.nan))
            curve_names.append(names[0] if names else None)
            continue
        subset = erd[:, freq_mask][:, :, resolved[0], :][:, :, trials]
        curves.append(_masked_mean(subset, axis=(1, 2)))
        curve_names.append(names[0])

    logging.debug(f"ERD computed for {activity.n_trials} trials, curve channels {curve_names}")

    return ERDResult(
        erd=erd,
        erd_active=erd_active,
        active_map=active_map,
        hands_map=class_maps[0],
        feet_map=class_maps[1],
        curve_a=curves[0],
        curve_b=curves[1],
        t_axis=np.arange(activity.n_time) * activity.wshift,
        peak_erd=peak_erd,
        freqs=activity.freqs,
        ch_names=list(activity.ch_names),
        curve_channels=(curve_names[0], curve_names[1])
    )


def lateralization_index(
    erd_result: ERDResult,
    freq_idx: int,
    left: str = "C3",
    right: str = "C4"
) -> float:
    """
    Lateralization index at one frequency

    LI = |ERD_left| - |ERD_right| on the trial- and time-averaged active ERD.
    Positive values mean a stronger modulation over the left hemisphere.

    Args:
        erd_result: Output of ``compute_erd``
        freq_idx: Frequency index (usually the best Fisher frequency)
        left: Left hemisphere channel
        right: Right hemisphere channel

    Returns:
        Lateralization index, NaN when a channel cannot be resolved
    """
    indices, _ = resolve_channel_indices(erd_result.ch_names, [left, right])
    if len(indices) != 2:
        logging.warning(f"Cannot compute lateralization index: channels {left}/{right} not resolved")
        return float('nan')

    left_val = erd_result.active_map[freq_idx, indices[0]]
    right_val = erd_result.active_map[freq_idx, indices[1]]
    return float(np.abs(left_val) - np.abs(right_val))


GRAND_AVERAGE_CHANNELS = ("C3", "Cz", "C4")


@dataclass(frozen=True)
class ClassMeanERD:
    """
    Trial-averaged ERD of one subject per class, from trial start

    Attributes:
        mean_a: Class A mean ERD [time x freq x channel]
        mean_b: Class B mean ERD [time x freq x channel]
        ref_len: Reference length (median cue onset) in windows
    """
    mean_a: np.ndarray
    mean_b: np.ndarray
    freqs: np.ndarray
    ch_names: List[str]
    ref_len: int
    wshift: float

    @property
    def n_time(self) -> int:
        return self.mean_a.shape[0]


@dataclass(frozen=True)
class GrandAverage:
    """Class mean ERD averaged across subjects, cropped to their common length"""
    mean_a: np.ndarray
    mean_b: np.ndarray
    t_axis: np.ndarray
    freqs: np.ndarray
    ch_names: List[str]
    cue_index: int
    subjects: List[str]


def class_mean_erd(
    activity: Activity,
    channels: Sequence[str] = GRAND_AVERAGE_CHANNELS,
    class_a: int = 773,
    class_b: int = 771
) -> Optional[ClassMeanERD]:
    """
    Per-class mean ERD of one subject at a few channels

    The baseline of every trial is its first ``floor(median(cue onsets))``
    windows, so all trials share the same reference period. The means are
    cropped to the leading windows where both classes have data.

    Args:
        activity: Trial activity
        channels: Channels to keep
        class_a: Label of class A (hands)
        class_b: Label of class B (feet)

    Returns:
        ClassMeanERD, or None when a channel, a class or every window is missing
    """
    indices, names = resolve_channel_indices(activity.ch_names, channels)
    if len(indices) != len(channels):
        logging.warning(f"Class mean ERD needs channels {list(channels)}, found {names}")
        return None

    erd = log_ratio(activity, "median")[:, :, indices, :]

    means = []
    for label in (class_a, class_b):
        trials = np.flatnonzero(activity.labels == label)
        if len(trials) == 0:
            logging.warning(f"No trials for class {label}, class mean ERD skipped")
            return None
        means.append(_masked_mean(erd[:, :, :, trials], axis=3))

    defined = np.all(np.isfinite(means[0]), axis=(1, 2)) & np.all(np.isfinite(means[1]), axis=(1, 2))
    n_valid = len(defined) if np.all(defined) else int(np.argmin(defined))
    if n_valid == 0:
        logging.warning("Class mean ERD is undefined from the first window, skipped")
        return None

    return ClassMeanERD(
        mean_a=means[0][:n_valid],
        mean_b=means[1][:n_valid],
        freqs=activity.freqs,
        ch_names=names,
        ref_len=_median_onset(activity),
        wshift=activity.wshift
    )


def grand_average(subject_means: Mapping[str, ClassMeanERD]) -> Optional[GrandAverage]:
    """
    Average the class mean ERD of several subjects

    Subjects are cropped to the shortest common number of windows before
    averaging. A subject whose frequency axis or channels differ from the
    first one is skipped.

    Args:
        subject_means: Subject id -> ClassMeanERD

    Returns:
        GrandAverage, or None when no subject can be included
    """
    included = []
    for subject, means in subject_means.items():
        if included:
            first = included[0][1]
            if not np.array_equal(means.freqs, first.freqs) or means.ch_names != first.ch_names:
                logging.warning(f"Subject {subject}: frequency axis or channels differ, excluded from grand average")
                continue
        included.append((subject, means))
        logging.info(f"Grand average includes {subject}")

    if not included:
        logging.warning("No subject available for the grand average")
        return None

    common_len = min(means.n_time for _, means in included)
    first = included[0][1]
    mean_a = np.mean([means.mean_a[:common_len] for _, means in included], axis=0)
    mean_b = np.mean([means.mean_b[:common_len] for _, means in included], axis=0)

    logging.info(f"Grand average computed across {len(included)} subjects ({common_len} windows)")

    return GrandAverage(
        mean_a=mean_a,
        mean_b=mean_b,
        t_axis=np.arange(common_len) * first.wshift,
        freqs=first.freqs,
        ch_names=list(first.ch_names),
        cue_index=first.ref_len,
        subjects=[subject for subject, _ in included]
    )
