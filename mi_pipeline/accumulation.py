"""
Evidence accumulation framework

Single-sample posteriors are noisy: delivering a command on every window
would make the BCI jitter between classes. The accumulator integrates the
posteriors with exponential smoothing

    P(t) = alpha * P(t-1) + (1 - alpha) * posterior(t)

starting from the uninformed state (0.5, 0.5), and delivers a command the
first time the probability of one class reaches the threshold. A trial that
ends before any crossing is a timeout (no command).
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Optional, Tuple

import numpy as np


class AccumulatorStatus(Enum):
    ACCUMULATING = "accumulating"
    DECIDED = "decided"
    TIMED_OUT = "timed_out"


@dataclass(frozen=True)
class TrialDecision:
    """
    Outcome of one replayed trial

    ``predicted_label`` and ``latency`` are None on timeout; a timeout is
    never correct.
    """
    trial_index: int
    true_label: int
    predicted_label: Optional[int]
    latency: Optional[float]
    n_samples: int
    correct: bool
    status: AccumulatorStatus
    final_probs: Tuple[float, float] = (0.5, 0.5)

    @property
    def decided(self) -> bool:
        return self.status is AccumulatorStatus.DECIDED


class EvidenceAccumulator:
    """
    Exponentially smoothed two-class evidence accumulator

    Args:
        alpha: Smoothing factor in (0, 1); higher means slower but steadier
        threshold: Probability required to decide, in (0, 1]
        class_a: Label delivered when class A crosses
        class_b: Label delivered when class B crosses
        seconds_per_sample: Time between two posteriors (latency unit)
        column_a: Column of class A in the posterior rows
        column_b: Column of class B in the posterior rows
    """

    def __init__(
        self,
        alpha: float,
        threshold: float,
        class_a: int,
        class_b: int,
        seconds_per_sample: float,
        column_a: int = 0,
        column_b: int = 1
    ):
        if not 0.0 < alpha < 1.0:
            raise ValueError(f"alpha must be in (0, 1), got {alpha}")
        if not 0.0 < threshold <= 1.0:
            raise ValueError(f"threshold must be in (0, 1], got {threshold}")

        self.alpha = alpha
        self.threshold = threshold
        self.class_a = class_a
        self.class_b = class_b
        self.seconds_per_sample = seconds_per_sample
        self.column_a = column_a
        self.column_b = column_b
        self.reset()

    def reset(self) -> Tuple[float, float]:
        """Return to the uninformed state for a new trial"""
        self.probs = np.array([0.5, 0.5])
        self.status = AccumulatorStatus.ACCUMULATING
        self.decision: Optional[int] = None
        self.n_samples = 0
        return (0.5, 0.5)

    def update(self, posterior: np.ndarray) -> AccumulatorStatus:
        """
        Integrate one posterior row

        Class A is checked before class B, so if both cross at once (only
        possible with threshold <= 0.5) class A wins.

        Raises:
            RuntimeError: If called after the trial was decided or timed out
        """
        if self.status is not AccumulatorStatus.ACCUMULATING:
            raise RuntimeError(f"Accumulator is {self.status.value}, call reset() first")

        evidence = np.array([posterior[self.column_a], posterior[self.column_b]], dtype=np.float64)
        self.probs = self.alpha * self.probs + (1.0 - self.alpha) * evidence
        self.n_samples += 1

        if self.probs[0] >= self.threshold:
            self.status = AccumulatorStatus.DECIDED
            self.decision = self.class_a
        elif self.probs[1] >= self.threshold:
            self.status = AccumulatorStatus.DECIDED
            self.decision = self.class_b

        return self.status

    def run(self, posteriors: np.ndarray, true_label: int, trial_index: int = -1) -> TrialDecision:
        """
        Replay one trial, stopping at the first threshold crossing

        Args:
            posteriors: Posterior rows in time order [samples x classes]
            true_label: Cue of the trial
            trial_index: Trial id reported in the decision

        Returns:
            TrialDecision; latency is the 1-based sample count at the
            crossing times ``seconds_per_sample``
        """
        self.reset()
        for posterior in posteriors:
            if self.update(posterior) is AccumulatorStatus.DECIDED:
                break

        if self.status is not AccumulatorStatus.DECIDED:
            self.status = AccumulatorStatus.TIMED_OUT
            logging.debug(f"Trial {trial_index}: timeout after {self.n_samples} samples "
                          f"(P = {self.probs[0]:.3f}/{self.probs[1]:.3f})")
            return TrialDecision(
                trial_index=trial_index,
                true_label=int(true_label),
                predicted_label=None,
                latency=None,
                n_samples=self.n_samples,
                correct=False,
                status=self.status,
                final_probs=(float(self.probs[0]), float(self.probs[1]))
            )

        latency = self.n_samples * self.seconds_per_sample
        return TrialDecision(
            trial_index=trial_index,
            true_label=int(true_label),
            predicted_label=int(self.decision),
            latency=latency,
            n_samples=self.n_samples,
            correct=int(self.decision) == int(true_label),
            status=self.status,
            final_probs=(float(self.probs[0]), float(self.probs[1]))
        )
