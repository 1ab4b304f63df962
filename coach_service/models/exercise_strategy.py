"""
FORMCOACH Coach Service - Exercise Strategy

Binds an exercise profile to its phase classifier, rule predicates and
scientific detectors. The set of strategies is closed: one per ExerciseType,
built from the registry by ``build_strategy``.
"""

from typing import Callable, List, Optional, Tuple, Union

from core.config import settings as default_settings, Settings
from .geometry import AngleSet, PoseFrame
from .exercise_profiles import ErrorRule, ExerciseProfile, ExerciseType, PostureErrorType, get_profile
from .phase_detector import IsometricPhaseClassifier, PhaseClassifier, RepetitionPhase
from .error_engine import FrameContext, evaluate_rule
from .scientific_detectors import SCIENTIFIC_DETECTORS, ScientificDetector


class ExerciseStrategy:
    """Exercise-specific behaviour used by the analyzer on every frame."""

    def __init__(
        self,
        profile: ExerciseProfile,
        classifier: PhaseClassifier,
        detectors: Tuple[ScientificDetector, ...]
    ):
        self.profile = profile
        self.classifier = classifier
        self.detectors = detectors

    @property
    def exercise_type(self) -> ExerciseType:
        return self.profile.exercise_type

    @property
    def isometric(self) -> bool:
        return self.profile.isometric

    def primary_angle(self, angles: AngleSet, frame: Optional[PoseFrame] = None) -> Optional[float]:
        return self.classifier.primary_angle(angles, frame)

    def classify_phase(
        self,
        angles: AngleSet,
        frame: Optional[PoseFrame] = None,
        previous_angle: Optional[float] = None
    ) -> RepetitionPhase:
        """Raw phase of one frame from the tracked angle."""
        return self.classifier.classify(self.primary_angle(angles, frame), previous_angle)

    def evaluate_rules(
        self,
        ctx: FrameContext,
        limit: Optional[int] = None,
        is_suppressed: Optional[Callable[[PostureErrorType], bool]] = None
    ) -> List[ErrorRule]:
        """
        Rules that fire on this frame.

        Only rules for the frame's camera view are considered, and of those
        only the leading ``limit``. Rules whose error type ``is_suppressed``
        are skipped without evaluation.
        """
        rules = self.profile.rules_for_view(ctx.view)
        if limit is not None:
            rules = rules[:limit]

        triggered = []
        for rule in rules:
            if is_suppressed is not None and is_suppressed(rule.error_type):
                continue
            if evaluate_rule(rule, ctx):
                triggered.append(rule)
        return triggered

    def in_start_position(self, angles: AngleSet, frame: PoseFrame, visibility_threshold: float) -> bool:
        """Starting-position check: required joints visible and every start condition met."""
        if any(frame.visibility(j) <= visibility_threshold for j in self.profile.start_joints):
            return False
        return all(condition.holds(angles) for condition in self.profile.start_conditions)

    def in_motion_range(self, angle: Optional[float]) -> bool:
        if angle is None:
            return False
        low, high = self.profile.motion_range
        return low <= angle <= high

    def reached_full_range(self, phase: RepetitionPhase, angle: Optional[float]) -> bool:
        """True at BOTTOM when the tracked angle is past the bottom threshold."""
        if self.isometric or phase != RepetitionPhase.BOTTOM or angle is None:
            return False
        return self.classifier.is_past_bottom(angle)


def build_strategy(exercise: Union[ExerciseType, str], settings: Optional[Settings] = None) -> ExerciseStrategy:
    """Create the strategy of an exercise. Raises UnknownExerciseError for unknown names."""
    cfg = settings or default_settings
    profile = get_profile(exercise)

    classifier_class = IsometricPhaseClassifier if profile.isometric else PhaseClassifier
    classifier = classifier_class(
        profile.primary_metric,
        profile.top_threshold,
        profile.bottom_threshold,
        side_preference_margin=cfg.SIDE_PREFERENCE_MARGIN,
    )
    return ExerciseStrategy(profile, classifier, SCIENTIFIC_DETECTORS.get(profile.exercise_type, ()))
