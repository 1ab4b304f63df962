"""
FORMCOACH Coach Service - Error Detection Engine

Turns a smoothed frame into posture errors. Rule mode evaluates the
profile's named rule predicates; scientific mode adds closed-form detectors
per exercise family. Both modes share per-error cooldowns, view dispatch and
visibility-based confidence.
"""

import math
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Callable, Dict, List, Optional, Tuple

from core.config import settings as default_settings, Settings
from shared.utils import setup_logger
from .geometry import (
    AngleMetric,
    AngleName,
    AngleSet,
    JointType,
    PoseFrame,
    ANKLES,
    HIPS,
    KNEES,
    body_line_deviation,
    elbow_shoulder_offset,
    heel_elevation,
    horizontal_spread,
    mean_visibility,
)
from .exercise_profiles import ErrorRule, PostureErrorType, RuleCondition
from .phase_detector import RepetitionPhase
from .view_classifier import CameraView

if TYPE_CHECKING:
    from .exercise_strategy import ExerciseStrategy

logger = setup_logger("formcoach.errors")


# ═══════════════════════════════════════════════════════════════════════════════
# ENUMS AND DATA CLASSES
# ═══════════════════════════════════════════════════════════════════════════════

class DetectionMode(Enum):
    """Error detection mode."""
    RULES = "rules"
    SCIENTIFIC = "scientific"


# Structurally risky errors are repeated least often
CRITICAL_ERRORS = frozenset({
    PostureErrorType.KNEE_VALGUS,
    PostureErrorType.BUTT_WINK,
    PostureErrorType.FORWARD_LEAN,
    PostureErrorType.SAGGING_HIPS,
})

ALIGNMENT_ERRORS = frozenset({
    PostureErrorType.POOR_ALIGNMENT,
    PostureErrorType.ASYMMETRY,
    PostureErrorType.HEEL_RISE,
})


@dataclass(frozen=True)
class PostureError:
    """A detected form error."""
    error_type: PostureErrorType
    severity: int  # 1-10
    confidence: float  # 0-1
    affected_joints: Tuple[JointType, ...]
    description: str
    recommendation: str
    timestamp_ms: float
    correction_cues: Tuple[str, ...] = ()
    source: str = "rule"

    def to_dict(self) -> Dict[str, object]:
        return {
            "type": self.error_type.value,
            "severity": self.severity,
            "confidence": round(self.confidence, 2),
            "affected_joints": [j.name.lower() for j in self.affected_joints],
            "description": self.description,
            "recommendation": self.recommendation,
            "correction_cues": list(self.correction_cues),
            "timestamp_ms": self.timestamp_ms,
            "source": self.source,
        }


@dataclass
class FrameContext:
    """Everything a rule predicate or detector may look at for one frame."""
    frame: PoseFrame
    angles: AngleSet
    view: CameraView
    phase: RepetitionPhase = RepetitionPhase.IDLE
    previous_phase: RepetitionPhase = RepetitionPhase.IDLE
    previous_frame: Optional[PoseFrame] = None
    primary_angle: Optional[float] = None
    previous_primary_angle: Optional[float] = None
    recent_primary_angles: List[float] = field(default_factory=list)
    frame_interval_s: float = 1 / 30
    timestamp_ms: float = 0.0

    @property
    def angular_speed(self) -> Optional[float]:
        """Speed of the tracked angle in rad/s."""
        if self.primary_angle is None or self.previous_primary_angle is None:
            return None
        interval = self.frame_interval_s if self.frame_interval_s > 0 else 1 / 30
        return math.radians(abs(self.primary_angle - self.previous_primary_angle)) / interval


# ═══════════════════════════════════════════════════════════════════════════════
# RULE PREDICATES
# ═══════════════════════════════════════════════════════════════════════════════

def _knees_inside_hips(ctx: FrameContext, threshold: float) -> bool:
    hip_width = horizontal_spread(ctx.frame, *HIPS)
    if hip_width < 1e-6:
        return False
    return horizontal_spread(ctx.frame, *KNEES) / hip_width < threshold


def _feet_too_narrow(ctx: FrameContext, threshold: float) -> bool:
    return horizontal_spread(ctx.frame, *ANKLES) < threshold


def _foot_lifted(ctx: FrameContext, threshold: float) -> bool:
    left, right = ANKLES
    return abs(ctx.frame[left].y - ctx.frame[right].y) > threshold


def _heels_lifted(ctx: FrameContext, threshold: float) -> bool:
    return heel_elevation(ctx.frame) > threshold


def _trunk_below(ctx: FrameContext, threshold: float) -> bool:
    spine = ctx.angles.get(AngleName.SPINE)
    return spine is not None and spine < threshold


def _lateral_lean_above(ctx: FrameContext, threshold: float) -> bool:
    spine = ctx.angles.get(AngleName.SPINE)
    return spine is not None and 90 - spine > threshold


def _hip_angle_below(ctx: FrameContext, threshold: float) -> bool:
    hip = ctx.angles.metric(AngleMetric.HIP)
    return hip is not None and hip < threshold


def _hips_above_body_line(ctx: FrameContext, threshold: float) -> bool:
    return body_line_deviation(ctx.frame) < -threshold


def _shoulder_angle_above(ctx: FrameContext, threshold: float) -> bool:
    shoulder = ctx.angles.metric(AngleMetric.SHOULDER)
    return shoulder is not None and shoulder > threshold


def _shoulder_level_asymmetry(ctx: FrameContext, threshold: float) -> bool:
    offset = ctx.angles.get(AngleName.SHOULDER_SYMMETRY)
    return offset is not None and offset > threshold


def _elbow_asymmetry(ctx: FrameContext, threshold: float) -> bool:
    left = ctx.angles.get(AngleName.LEFT_ELBOW)
    right = ctx.angles.get(AngleName.RIGHT_ELBOW)
    return left is not None and right is not None and abs(left - right) > threshold


def _elbows_not_under_shoulders(ctx: FrameContext, threshold: float) -> bool:
    return elbow_shoulder_offset(ctx.frame) > threshold


def _angular_speed_above(ctx: FrameContext, threshold: float) -> bool:
    speed = ctx.angular_speed
    return speed is not None and speed > threshold


def _turned_before_bottom(ctx: FrameContext, threshold: float) -> bool:
    """Reversal from DESCENDING straight to ASCENDING after a real excursion."""
    if ctx.previous_phase != RepetitionPhase.DESCENDING or ctx.phase != RepetitionPhase.ASCENDING:
        return False
    if not ctx.recent_primary_angles:
        return False
    excursion = max(ctx.recent_primary_angles) - min(ctx.recent_primary_angles)
    return excursion >= threshold


RULE_PREDICATES: Dict[RuleCondition, Callable[[FrameContext, float], bool]] = {
    RuleCondition.KNEES_INSIDE_HIPS: _knees_inside_hips,
    RuleCondition.FEET_TOO_NARROW: _feet_too_narrow,
    RuleCondition.FOOT_LIFTED: _foot_lifted,
    RuleCondition.HEELS_LIFTED: _heels_lifted,
    RuleCondition.TRUNK_BELOW: _trunk_below,
    RuleCondition.LATERAL_LEAN_ABOVE: _lateral_lean_above,
    RuleCondition.HIP_ANGLE_BELOW: _hip_angle_below,
    RuleCondition.HIPS_ABOVE_BODY_LINE: _hips_above_body_line,
    RuleCondition.SHOULDER_ANGLE_ABOVE: _shoulder_angle_above,
    RuleCondition.SHOULDER_LEVEL_ASYMMETRY: _shoulder_level_asymmetry,
    RuleCondition.ELBOW_ASYMMETRY: _elbow_asymmetry,
    RuleCondition.ELBOWS_NOT_UNDER_SHOULDERS: _elbows_not_under_shoulders,
    RuleCondition.ANGULAR_SPEED_ABOVE: _angular_speed_above,
    RuleCondition.TURNED_BEFORE_BOTTOM: _turned_before_bottom,
}


def evaluate_rule(rule: ErrorRule, ctx: FrameContext) -> bool:
    """Evaluate a rule's named predicate against its threshold."""
    return RULE_PREDICATES[rule.condition](ctx, rule.threshold)


# ═══════════════════════════════════════════════════════════════════════════════
# COOLDOWNS
# ═══════════════════════════════════════════════════════════════════════════════

class ErrorCooldowns:
    """Last emission time per error type."""

    def __init__(self):
        self._last_emitted: Dict[PostureErrorType, float] = {}

    def is_active(self, error_type: PostureErrorType, now_ms: float, cooldown_ms: float) -> bool:
        last = self._last_emitted.get(error_type)
        return last is not None and now_ms - last < cooldown_ms

    def mark(self, error_type: PostureErrorType, now_ms: float):
        self._last_emitted[error_type] = now_ms

    def clear(self):
        self._last_emitted.clear()

    def __len__(self) -> int:
        return len(self._last_emitted)


# ═══════════════════════════════════════════════════════════════════════════════
# ENGINE
# ═══════════════════════════════════════════════════════════════════════════════

class ErrorDetectionEngine:
    """
    Stateless error detection over a per-session cooldown map.

    Rule mode: the leading MAX_RULES_PER_FRAME rules for the current view are
    evaluated, rules whose error type is cooling down are skipped, and of
    the triggered rules whose confidence exceeds ERROR_CONFIDENCE_THRESHOLD
    only the most severe is reported.

    Scientific mode: rule mode plus every applicable detector of the
    exercise family, at most one finding per detector.
    """

    def __init__(self, settings: Optional[Settings] = None):
        self.settings = settings or default_settings

    def cooldown_for(self, error_type: PostureErrorType) -> int:
        if error_type in CRITICAL_ERRORS:
            return self.settings.CRITICAL_COOLDOWN_MS
        if error_type in ALIGNMENT_ERRORS:
            return self.settings.ALIGNMENT_COOLDOWN_MS
        return self.settings.ERROR_COOLDOWN_MS

    def detect(
        self,
        strategy: "ExerciseStrategy",
        ctx: FrameContext,
        cooldowns: ErrorCooldowns,
        exercising: bool = True,
        mode: DetectionMode = DetectionMode.RULES
    ) -> List[PostureError]:
        """
        Detect posture errors in one frame.

        Args:
            strategy: ExerciseStrategy of the current exercise
            ctx: Smoothed frame context
            cooldowns: Session cooldown map, updated with emitted errors
            exercising: False while the person is still setting up
            mode: Rule or scientific detection

        Returns:
            Detected errors (at most one from rules, plus detector findings)
        """
        cfg = self.settings
        now = ctx.timestamp_ms

        def suppressed(error_type: PostureErrorType) -> bool:
            return cooldowns.is_active(error_type, now, self.cooldown_for(error_type))

        candidates: List[PostureError] = []
        for rule in strategy.evaluate_rules(ctx, limit=cfg.MAX_RULES_PER_FRAME, is_suppressed=suppressed):
            confidence = mean_visibility(ctx.frame, rule.joints)
            if confidence <= cfg.ERROR_CONFIDENCE_THRESHOLD:
                continue
            candidates.append(self._from_rule(rule, confidence, now, exercising))

        errors: List[PostureError] = []
        if candidates:
            errors.append(max(candidates, key=lambda e: e.severity))

        if mode == DetectionMode.SCIENTIFIC:
            for detector in strategy.detectors:
                if not detector.applies_to(ctx.view):
                    continue
                finding = detector.detect(ctx)
                if finding is None or suppressed(finding.error_type):
                    continue
                if any(e.error_type == finding.error_type for e in errors):
                    continue
                confidence = detector.reliability * mean_visibility(ctx.frame, detector.joints)
                if confidence <= cfg.ERROR_CONFIDENCE_THRESHOLD:
                    continue
                errors.append(PostureError(
                    error_type=finding.error_type,
                    severity=self._setup_severity(detector.severity, exercising),
                    confidence=confidence,
                    affected_joints=detector.joints,
                    description=finding.description,
                    recommendation=finding.recommendation,
                    timestamp_ms=now,
                    source="detector",
                ))

        for error in errors:
            cooldowns.mark(error.error_type, now)
            logger.debug(
                f"{error.error_type.value} severity={error.severity} "
                f"confidence={error.confidence:.2f} source={error.source}"
            )

        return errors

    def _setup_severity(self, severity: int, exercising: bool) -> int:
        if exercising:
            return severity
        return max(1, severity - self.settings.SETUP_SEVERITY_REDUCTION)

    def _from_rule(self, rule: ErrorRule, confidence: float, now: float, exercising: bool) -> PostureError:
        description = rule.message
        if not exercising and rule.setup_message:
            description = rule.setup_message
        return PostureError(
            error_type=rule.error_type,
            severity=self._setup_severity(rule.severity, exercising),
            confidence=confidence,
            affected_joints=rule.joints,
            description=description,
            recommendation=rule.recommendation,
            timestamp_ms=now,
            correction_cues=rule.correction_cues,
        )
