"""
FORMCOACH Coach Service - Quality Scorer

Per-frame form quality in [0, 100]: error penalties, bounded bonuses for
ideal angles, left-right symmetry, steadiness and full range of motion, and
a rolling history with a trend.
"""

from enum import Enum
from typing import Dict, Iterable, List, Optional

import numpy as np

from core.config import settings as default_settings, Settings
from .geometry import AngleName, AngleSet, PoseFrame, TORSO_JOINTS, landmark_displacement
from .exercise_profiles import ExerciseProfile, PostureErrorType
from .error_engine import DetectionMode, PostureError


class QualityTrend(Enum):
    """Direction of the rolling quality score."""
    IMPROVING = "improving"
    STABLE = "stable"
    DECLINING = "declining"


# Scientific mode weighs errors by injury relevance
ERROR_PENALTY_FACTORS: Dict[PostureErrorType, float] = {
    PostureErrorType.KNEE_VALGUS: 1.5,
    PostureErrorType.BUTT_WINK: 1.4,
    PostureErrorType.HEEL_RISE: 1.3,
    PostureErrorType.SAGGING_HIPS: 1.3,
    PostureErrorType.ASYMMETRY: 1.3,
    PostureErrorType.FORWARD_LEAN: 1.2,
    PostureErrorType.ELBOW_FLARE: 1.2,
    PostureErrorType.EXCESSIVE_SPEED: 1.2,
    PostureErrorType.RAISED_HIPS: 1.1,
    PostureErrorType.POOR_ALIGNMENT: 1.1,
    PostureErrorType.SHALLOW_DEPTH: 1.0,
    PostureErrorType.PARTIAL_ROM: 1.0,
    PostureErrorType.INSUFFICIENT_DEPTH: 1.0,
    PostureErrorType.HEAD_POSITION: 0.8,
}

IDEAL_BONUS_CAP = 15.0
STABILITY_FRAMES = 5
STABILITY_VISIBILITY = 0.7
RANGE_OF_MOTION_BONUS = 5.0
SYMMETRY_LIMIT = 5.0  # percent of frame height

# Points for each level body segment
SYMMETRY_BONUSES: Dict[AngleName, float] = {
    AngleName.SHOULDER_SYMMETRY: 3.0,
    AngleName.HIP_SYMMETRY: 3.0,
    AngleName.KNEE_SYMMETRY: 4.0,
}


class QualityScorer:
    """
    Composite frame quality.

    Starts at 100, subtracts one penalty per error, adds the bonuses and
    clamps to [0, 100].
    """

    def __init__(self, settings: Optional[Settings] = None):
        self.settings = settings or default_settings

    @staticmethod
    def penalty(error: PostureError, mode: DetectionMode = DetectionMode.RULES) -> float:
        """
        Points deducted for one error.

        Rule mode uses severity tiers (>=7: 20, >=5: 10, else 5). Scientific
        mode uses severity * 2 * confidence * type factor.
        """
        if mode == DetectionMode.SCIENTIFIC:
            factor = ERROR_PENALTY_FACTORS.get(error.error_type, 1.0)
            return error.severity * 2 * error.confidence * factor
        if error.severity >= 7:
            return 20.0
        if error.severity >= 5:
            return 10.0
        return 5.0

    @staticmethod
    def ideal_angle_bonus(angles: AngleSet, profile: ExerciseProfile) -> float:
        """+5 per threshold angle within 5 deg of ideal, +2 within 10 deg, capped at 15."""
        bonus = 0.0
        for metric, threshold in profile.angle_thresholds.items():
            value = angles.metric(metric)
            if value is None:
                continue
            diff = abs(value - threshold.ideal)
            if diff < 5:
                bonus += 5
            elif diff < 10:
                bonus += 2
        return min(bonus, IDEAL_BONUS_CAP)

    @staticmethod
    def symmetry_bonus(angles: AngleSet) -> float:
        """Up to 10 points for level shoulders, hips and knees."""
        bonus = 0.0
        for name, points in SYMMETRY_BONUSES.items():
            value = angles.get(name)
            if value is not None and value < SYMMETRY_LIMIT:
                bonus += points
        return bonus

    @staticmethod
    def stability_bonus(recent_frames: List[PoseFrame]) -> float:
        """
        Up to 10 points for a steady torso over the last five frames.

        Each shoulder and hip scores max(0, 10 - mean movement * 100) over the
        frames where it is clearly visible; the scores are averaged.
        """
        if len(recent_frames) < STABILITY_FRAMES:
            return 0.0
        frames = recent_frames[-STABILITY_FRAMES:]

        scores = []
        for joint in TORSO_JOINTS:
            moves = [
                landmark_displacement(current, previous, joint)
                for previous, current in zip(frames, frames[1:])
                if current.visibility(joint) > STABILITY_VISIBILITY
                and previous.visibility(joint) > STABILITY_VISIBILITY
            ]
            if moves:
                scores.append(max(0.0, 10 - float(np.mean(moves)) * 100))

        return float(np.mean(scores)) if scores else 0.0

    def score(
        self,
        errors: Iterable[PostureError],
        angles: AngleSet,
        profile: ExerciseProfile,
        recent_frames: List[PoseFrame],
        full_range: bool = False,
        mode: DetectionMode = DetectionMode.RULES
    ) -> int:
        """
        Calculate the quality of one frame.

        Args:
            errors: Errors detected on this frame
            angles: Smoothed angles of this frame
            profile: Current exercise profile
            recent_frames: Pose history, oldest first
            full_range: Whether the tracked angle is past the bottom threshold at BOTTOM
            mode: Detection mode the errors came from

        Returns:
            Integer quality in [0, 100]
        """
        score = 100.0
        for error in errors:
            score -= self.penalty(error, mode)

        score += self.ideal_angle_bonus(angles, profile)
        score += self.symmetry_bonus(angles)
        score += self.stability_bonus(recent_frames)
        if full_range:
            score += RANGE_OF_MOTION_BONUS

        return int(round(max(0.0, min(100.0, score))))

    def trend(self, history: List[float]) -> QualityTrend:
        """Compare the mean of the latest window against the window before it."""
        window = self.settings.QUALITY_TREND_WINDOW
        if len(history) < window * 2:
            return QualityTrend.STABLE

        recent = float(np.mean(history[-window:]))
        previous = float(np.mean(history[-2 * window:-window]))
        margin = self.settings.QUALITY_TREND_MARGIN
        if recent > previous + margin:
            return QualityTrend.IMPROVING
        if recent < previous - margin:
            return QualityTrend.DECLINING
        return QualityTrend.STABLE
