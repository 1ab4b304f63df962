"""
FORMCOACH Coach Service - Phase Detector & Repetition Counter

Classifies each frame into a phase of the repetition cycle from a single
tracked angle, smooths the phase sequence with a majority vote, and counts
completed repetitions from the smoothed sequence.
"""

from collections import Counter
from enum import Enum
from typing import Optional

from shared.utils import RollingWindow
from .geometry import AngleMetric, AngleSet, PoseFrame, METRIC_ANGLES, METRIC_JOINTS


class RepetitionPhase(Enum):
    """Position within the repetition cycle. A cycle starts and ends at TOP."""
    IDLE = "idle"
    TOP = "top"
    DESCENDING = "descending"
    BOTTOM = "bottom"
    ASCENDING = "ascending"


class PhaseClassifier:
    """
    Phase classifier driven by one primary angle.

    Past ``top_threshold`` the phase is TOP, past ``bottom_threshold`` it is
    BOTTOM. In between the direction of travel decides: towards the bottom is
    DESCENDING, towards the top is ASCENDING. Thresholds may be given in
    either order; when top < bottom the angle opens on the way to BOTTOM.
    """

    def __init__(
        self,
        metric: AngleMetric,
        top_threshold: float,
        bottom_threshold: float,
        side_preference_margin: float = 0.1
    ):
        self.metric = metric
        self.top_threshold = top_threshold
        self.bottom_threshold = bottom_threshold
        self.side_preference_margin = side_preference_margin
        # True for the usual case where the angle closes on the way down
        self._closes_downward = top_threshold > bottom_threshold

    def primary_angle(self, angles: AngleSet, frame: Optional[PoseFrame] = None) -> Optional[float]:
        """
        Value of the tracked angle for this frame.

        For bilateral angles the clearly more visible side wins (visibility
        margin above ``side_preference_margin``); otherwise both sides are
        averaged.
        """
        sides = METRIC_ANGLES[self.metric]
        if frame is None or len(sides) != 2 or self.metric not in METRIC_JOINTS:
            return angles.metric(self.metric)

        left, right = angles.get(sides[0]), angles.get(sides[1])
        if left is None or right is None:
            return left if left is not None else right

        left_joint, right_joint = METRIC_JOINTS[self.metric]
        visibility_gap = frame.visibility(left_joint) - frame.visibility(right_joint)
        if visibility_gap > self.side_preference_margin:
            return left
        if visibility_gap < -self.side_preference_margin:
            return right
        return (left + right) / 2

    def is_past_top(self, angle: float) -> bool:
        if self._closes_downward:
            return angle > self.top_threshold
        return angle < self.top_threshold

    def is_past_bottom(self, angle: float) -> bool:
        if self._closes_downward:
            return angle < self.bottom_threshold
        return angle > self.bottom_threshold

    def classify(self, angle: Optional[float], previous_angle: Optional[float] = None) -> RepetitionPhase:
        """Raw (unsmoothed) phase of one frame."""
        if angle is None:
            return RepetitionPhase.IDLE
        if self.is_past_top(angle):
            return RepetitionPhase.TOP
        if self.is_past_bottom(angle):
            return RepetitionPhase.BOTTOM
        if previous_angle is None:
            return RepetitionPhase.DESCENDING

        moving_up = angle > previous_angle if self._closes_downward else angle < previous_angle
        return RepetitionPhase.ASCENDING if moving_up else RepetitionPhase.DESCENDING


class IsometricPhaseClassifier(PhaseClassifier):
    """Holds have no cycle: any measurable frame is the working position."""

    def classify(self, angle: Optional[float], previous_angle: Optional[float] = None) -> RepetitionPhase:
        if angle is None:
            return RepetitionPhase.IDLE
        return RepetitionPhase.BOTTOM


class PhaseSmoother:
    """Majority vote over the most recent raw phases; ties go to the value seen first in the window."""

    def __init__(self, window: int = 5):
        self._window: RollingWindow[RepetitionPhase] = RollingWindow(window)

    def push(self, phase: RepetitionPhase) -> RepetitionPhase:
        self._window.append(phase)
        return Counter(self._window).most_common(1)[0][0]

    def reset(self):
        self._window.clear()

    def __len__(self) -> int:
        return len(self._window)


class RepetitionCounter:
    """
    Counts repetitions from the smoothed phase sequence.

    A BOTTOM entered from DESCENDING is one bottom visit; a TOP entered from
    ASCENDING completes a repetition only when it closes an open bottom visit.
    """

    def __init__(self):
        self.bottom_count = 0
        self.top_count = 0
        self.last_phase = RepetitionPhase.IDLE

    @property
    def count(self) -> int:
        return self.top_count

    def update(self, phase: RepetitionPhase) -> bool:
        """Feed one smoothed phase. Returns True if a repetition just completed."""
        if phase == self.last_phase:
            return False

        completed = False
        if phase == RepetitionPhase.BOTTOM and self.last_phase == RepetitionPhase.DESCENDING:
            self.bottom_count += 1
        elif (
            phase == RepetitionPhase.TOP
            and self.last_phase == RepetitionPhase.ASCENDING
            and self.bottom_count > self.top_count
        ):
            self.top_count += 1
            completed = True

        self.last_phase = phase
        return completed

    def reset(self):
        self.bottom_count = 0
        self.top_count = 0
        self.last_phase = RepetitionPhase.IDLE
