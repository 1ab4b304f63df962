"""
FORMCOACH Coach Service - Exercise Profiles

Immutable per-exercise configuration: angle thresholds, starting position,
phase thresholds of the tracked angle, and the ordered form rules the error
engine evaluates.
"""

from dataclasses import dataclass
from typing import Dict, List, Optional, Tuple, Union
from enum import Enum

from .geometry import (
    AngleMetric,
    AngleSet,
    JointType,
    SHOULDERS,
    ELBOWS,
    WRISTS,
    HIPS,
    KNEES,
    ANKLES,
    HEELS,
    BODY_JOINTS,
    TORSO_JOINTS,
)
from .view_classifier import CameraView


# ═══════════════════════════════════════════════════════════════════════════════
# ENUMS AND DATA CLASSES
# ═══════════════════════════════════════════════════════════════════════════════

class ExerciseType(Enum):
    """Supported exercise types."""
    SQUATS = "squats"
    PUSHUPS = "pushups"
    LUNGES = "lunges"
    PLANK = "plank"
    BICEP_CURLS = "bicep_curls"
    DEADLIFT = "deadlift"
    BENCH_PRESS = "bench_press"
    SHOULDER_PRESS = "shoulder_press"


class PostureErrorType(Enum):
    """Form errors the engine can report."""
    KNEE_VALGUS = "knee_valgus"
    FORWARD_LEAN = "forward_lean"
    HEEL_RISE = "heel_rise"
    BUTT_WINK = "butt_wink"
    SHALLOW_DEPTH = "shallow_depth"
    SAGGING_HIPS = "sagging_hips"
    RAISED_HIPS = "raised_hips"
    PARTIAL_ROM = "partial_rom"
    ELBOW_FLARE = "elbow_flare"
    HEAD_POSITION = "head_position"
    ASYMMETRY = "asymmetry"
    POOR_ALIGNMENT = "poor_alignment"
    INSUFFICIENT_DEPTH = "insufficient_depth"
    EXCESSIVE_SPEED = "excessive_speed"


class RuleCondition(Enum):
    """Named predicates a form rule can use; each compares one measurement to the rule threshold."""
    KNEES_INSIDE_HIPS = "knees_inside_hips"            # knee spread / hip spread below threshold
    FEET_TOO_NARROW = "feet_too_narrow"                # ankle spread below threshold
    FOOT_LIFTED = "foot_lifted"                        # ankle height difference above threshold
    HEELS_LIFTED = "heels_lifted"                      # heel above toes by more than threshold
    TRUNK_BELOW = "trunk_below"                        # spine angle below threshold
    LATERAL_LEAN_ABOVE = "lateral_lean_above"          # trunk tilt from vertical above threshold
    HIP_ANGLE_BELOW = "hip_angle_below"
    HIPS_ABOVE_BODY_LINE = "hips_above_body_line"      # hips raised above shoulder-ankle line
    SHOULDER_ANGLE_ABOVE = "shoulder_angle_above"
    SHOULDER_LEVEL_ASYMMETRY = "shoulder_level_asymmetry"
    ELBOW_ASYMMETRY = "elbow_asymmetry"                # left/right elbow angle difference
    ELBOWS_NOT_UNDER_SHOULDERS = "elbows_not_under_shoulders"
    ANGULAR_SPEED_ABOVE = "angular_speed_above"        # tracked angle speed in rad/s
    TURNED_BEFORE_BOTTOM = "turned_before_bottom"      # repetition reversed short of BOTTOM


# Joints an error type refers to when a rule does not list its own
DEFAULT_AFFECTED_JOINTS: Dict[PostureErrorType, Tuple[JointType, ...]] = {
    PostureErrorType.KNEE_VALGUS: KNEES,
    PostureErrorType.FORWARD_LEAN: TORSO_JOINTS,
    PostureErrorType.HEEL_RISE: ANKLES + HEELS,
    PostureErrorType.BUTT_WINK: TORSO_JOINTS,
    PostureErrorType.SHALLOW_DEPTH: KNEES,
    PostureErrorType.SAGGING_HIPS: HIPS + SHOULDERS,
    PostureErrorType.RAISED_HIPS: HIPS + SHOULDERS,
    PostureErrorType.PARTIAL_ROM: ELBOWS,
    PostureErrorType.ELBOW_FLARE: ELBOWS,
    PostureErrorType.HEAD_POSITION: (JointType.NOSE,),
    PostureErrorType.ASYMMETRY: SHOULDERS,
    PostureErrorType.POOR_ALIGNMENT: TORSO_JOINTS,
    PostureErrorType.INSUFFICIENT_DEPTH: KNEES,
    PostureErrorType.EXCESSIVE_SPEED: BODY_JOINTS,
}


class UnknownExerciseError(ValueError):
    """Raised when an exercise name is not in the registry."""

    def __init__(self, value):
        self.value = value
        super().__init__(
            f"Unknown exercise type '{value}'. Valid types: {[e.value for e in ExerciseType]}"
        )


@dataclass(frozen=True)
class AngleThreshold:
    """Acceptable range of a body angle with its ideal and critical values."""
    min_angle: float
    max_angle: float
    ideal: float
    critical: Optional[float] = None
    warning: Optional[float] = None

    def deviation(self, angle: float) -> float:
        """How far outside the acceptable range."""
        if angle < self.min_angle:
            return self.min_angle - angle
        if angle > self.max_angle:
            return angle - self.max_angle
        return 0.0

    def is_in_range(self, angle: float) -> bool:
        return self.min_angle <= angle <= self.max_angle


@dataclass(frozen=True)
class AngleCondition:
    """Bound on a body angle that must hold in the starting position."""
    metric: AngleMetric
    minimum: Optional[float] = None
    maximum: Optional[float] = None

    def holds(self, angles: AngleSet) -> bool:
        value = angles.metric(self.metric)
        if value is None:
            return False
        if self.minimum is not None and value < self.minimum:
            return False
        if self.maximum is not None and value > self.maximum:
            return False
        return True


@dataclass(frozen=True)
class ErrorRule:
    """
    A single form rule.

    ``condition`` names the predicate the error engine evaluates against
    ``threshold``. ``view`` restricts the rule to one camera view (None runs
    in both). ``setup_message`` is the gentler wording used before the set
    starts.
    """
    error_type: PostureErrorType
    condition: RuleCondition
    threshold: float
    severity: int
    message: str
    recommendation: str
    view: Optional[CameraView] = None
    affected_joints: Tuple[JointType, ...] = ()
    setup_message: Optional[str] = None
    correction_cues: Tuple[str, ...] = ()

    @property
    def joints(self) -> Tuple[JointType, ...]:
        return self.affected_joints or DEFAULT_AFFECTED_JOINTS[self.error_type]

    def applies_to(self, view: CameraView) -> bool:
        return self.view is None or self.view == view


@dataclass(frozen=True)
class ExerciseProfile:
    """Complete configuration of one exercise."""
    exercise_type: ExerciseType
    name: str
    difficulty: str
    description: str
    key_joints: Tuple[JointType, ...]
    angle_thresholds: Dict[AngleMetric, AngleThreshold]
    rules: Tuple[ErrorRule, ...]

    # Repetition cycle of the tracked angle. The cycle starts and ends at TOP;
    # top_threshold may sit below bottom_threshold when the angle opens during the work.
    primary_metric: AngleMetric
    top_threshold: float
    bottom_threshold: float
    isometric: bool = False

    # Readiness
    start_conditions: Tuple[AngleCondition, ...] = ()
    start_joints: Tuple[JointType, ...] = ()
    motion_range: Tuple[float, float] = (0.0, 180.0)
    setup_hint: str = "Get into the starting position"

    biomechanical_focus: Tuple[str, ...] = ()
    rationale: str = ""

    def rules_for_view(self, view: CameraView) -> List[ErrorRule]:
        return [rule for rule in self.rules if rule.applies_to(view)]

    @property
    def ideal_angles(self) -> Dict[AngleMetric, float]:
        return {metric: t.ideal for metric, t in self.angle_thresholds.items()}

    def to_dict(self) -> Dict[str, object]:
        return {
            "exercise_type": self.exercise_type.value,
            "name": self.name,
            "difficulty": self.difficulty,
            "description": self.description,
            "key_joints": [j.name.lower() for j in self.key_joints],
            "biomechanical_focus": list(self.biomechanical_focus),
            "isometric": self.isometric,
            "setup_hint": self.setup_hint,
            "angle_thresholds": {
                metric.value: {
                    "min": t.min_angle,
                    "max": t.max_angle,
                    "ideal": t.ideal,
                    "critical": t.critical,
                }
                for metric, t in self.angle_thresholds.items()
            },
            "errors_checked": sorted({rule.error_type.value for rule in self.rules}),
        }


# ═══════════════════════════════════════════════════════════════════════════════
# EXERCISE REGISTRY
# ═══════════════════════════════════════════════════════════════════════════════

SQUAT_PROFILE = ExerciseProfile(
    exercise_type=ExerciseType.SQUATS,
    name="Squat",
    difficulty="Beginner",
    description="Bodyweight squat to thigh-parallel depth with a neutral spine",
    key_joints=HIPS + KNEES + ANKLES,
    angle_thresholds={
        AngleMetric.KNEE: AngleThreshold(70, 170, 90, critical=60),
        AngleMetric.HIP: AngleThreshold(45, 180, 90, critical=40),
        AngleMetric.SPINE: AngleThreshold(45, 90, 85, critical=40, warning=60),
    },
    rules=(
        ErrorRule(
            PostureErrorType.KNEE_VALGUS, RuleCondition.KNEES_INSIDE_HIPS, 0.7, 8,
            "Knees are caving inward",
            "Push your knees out in line with your toes",
            view=CameraView.FRONTAL,
            setup_message="Line your knees up over your feet",
            correction_cues=("Spread the floor with your feet", "Knees over the middle toes"),
        ),
        ErrorRule(
            PostureErrorType.POOR_ALIGNMENT, RuleCondition.FEET_TOO_NARROW, 0.15, 5,
            "Feet are too close together",
            "Place your feet about shoulder-width apart",
            view=CameraView.FRONTAL,
            affected_joints=ANKLES,
            setup_message="Widen your stance to about shoulder width",
        ),
        ErrorRule(
            PostureErrorType.ASYMMETRY, RuleCondition.FOOT_LIFTED, 0.05, 6,
            "One foot is coming off the floor",
            "Keep both feet flat and share the weight evenly",
            view=CameraView.FRONTAL,
            affected_joints=ANKLES,
            setup_message="Set both feet flat on the floor",
        ),
        ErrorRule(
            PostureErrorType.FORWARD_LEAN, RuleCondition.TRUNK_BELOW, 45, 7,
            "Chest is dropping too far forward",
            "Keep your chest up and your back neutral",
            view=CameraView.PROFILE,
            setup_message="Stand tall with your chest up",
            correction_cues=("Brace your core", "Eyes forward"),
        ),
        ErrorRule(
            PostureErrorType.SHALLOW_DEPTH, RuleCondition.TURNED_BEFORE_BOTTOM, 20, 5,
            "Squat is too shallow",
            "Lower until your thighs are parallel to the floor",
            view=CameraView.PROFILE,
        ),
        ErrorRule(
            PostureErrorType.HEEL_RISE, RuleCondition.HEELS_LIFTED, 0.03, 6,
            "Heels are lifting off the floor",
            "Sit back and keep your weight over your heels",
            view=CameraView.PROFILE,
            setup_message="Keep your heels down",
        ),
    ),
    primary_metric=AngleMetric.KNEE,
    top_threshold=150,
    bottom_threshold=100,
    start_conditions=(
        AngleCondition(AngleMetric.KNEE, minimum=160),
        AngleCondition(AngleMetric.SPINE, minimum=70),
    ),
    start_joints=HIPS + KNEES + ANKLES,
    motion_range=(30, 185),
    setup_hint="Stand tall with your feet shoulder-width apart",
    biomechanical_focus=("knee tracking", "depth", "trunk angle"),
    rationale="Knee valgus and lumbar flexion under load are the main injury mechanisms in the squat.",
)

PUSHUP_PROFILE = ExerciseProfile(
    exercise_type=ExerciseType.PUSHUPS,
    name="Push-up",
    difficulty="Beginner",
    description="Full push-up with a straight body line from shoulders to ankles",
    key_joints=SHOULDERS + ELBOWS + HIPS,
    angle_thresholds={
        AngleMetric.ELBOW: AngleThreshold(60, 180, 90, critical=45),
        AngleMetric.HIP: AngleThreshold(160, 180, 175, critical=150),
        AngleMetric.KNEE: AngleThreshold(160, 180, 178, critical=150),
    },
    rules=(
        ErrorRule(
            PostureErrorType.SAGGING_HIPS, RuleCondition.HIP_ANGLE_BELOW, 160, 7,
            "Hips are sagging",
            "Squeeze your glutes and brace your core",
            view=CameraView.PROFILE,
            setup_message="Straighten your body from head to heels",
        ),
        ErrorRule(
            PostureErrorType.RAISED_HIPS, RuleCondition.HIPS_ABOVE_BODY_LINE, 0.05, 5,
            "Hips are piked too high",
            "Lower your hips in line with your shoulders and ankles",
            view=CameraView.PROFILE,
            setup_message="Lower your hips into a straight line",
        ),
        ErrorRule(
            PostureErrorType.PARTIAL_ROM, RuleCondition.TURNED_BEFORE_BOTTOM, 20, 5,
            "Push-up is not going low enough",
            "Lower your chest until your elbows reach 90 degrees",
            view=CameraView.PROFILE,
        ),
        ErrorRule(
            PostureErrorType.ASYMMETRY, RuleCondition.ELBOW_ASYMMETRY, 15, 5,
            "Pressing unevenly",
            "Push the floor away equally with both hands",
            view=CameraView.FRONTAL,
            affected_joints=ELBOWS,
        ),
    ),
    primary_metric=AngleMetric.ELBOW,
    top_threshold=160,
    bottom_threshold=90,
    start_conditions=(
        AngleCondition(AngleMetric.ELBOW, minimum=150),
        AngleCondition(AngleMetric.HIP, minimum=150),
    ),
    start_joints=SHOULDERS + ELBOWS + WRISTS + HIPS,
    motion_range=(30, 185),
    setup_hint="Get into a high plank with your hands under your shoulders",
    biomechanical_focus=("body line", "elbow depth"),
    rationale="A rigid trunk keeps load off the lumbar spine; full elbow flexion trains the whole range.",
)

LUNGE_PROFILE = ExerciseProfile(
    exercise_type=ExerciseType.LUNGES,
    name="Lunge",
    difficulty="Intermediate",
    description="Forward lunge with both knees reaching about 90 degrees",
    key_joints=HIPS + KNEES + ANKLES,
    angle_thresholds={
        AngleMetric.KNEE: AngleThreshold(80, 180, 90, critical=70),
        AngleMetric.HIP: AngleThreshold(70, 180, 90, critical=60),
        AngleMetric.SPINE: AngleThreshold(70, 90, 88, critical=60),
    },
    rules=(
        ErrorRule(
            PostureErrorType.POOR_ALIGNMENT, RuleCondition.LATERAL_LEAN_ABOVE, 10, 5,
            "Torso is tilting to the side",
            "Keep your shoulders level over your hips",
            view=CameraView.FRONTAL,
            setup_message="Stand straight with level shoulders",
        ),
        ErrorRule(
            PostureErrorType.KNEE_VALGUS, RuleCondition.KNEES_INSIDE_HIPS, 0.6, 7,
            "Front knee is collapsing inward",
            "Track your front knee over your second toe",
            view=CameraView.FRONTAL,
        ),
        ErrorRule(
            PostureErrorType.FORWARD_LEAN, RuleCondition.TRUNK_BELOW, 70, 6,
            "Leaning too far forward",
            "Keep your torso upright over your hips",
            view=CameraView.PROFILE,
            setup_message="Stand tall before stepping out",
        ),
        ErrorRule(
            PostureErrorType.INSUFFICIENT_DEPTH, RuleCondition.TURNED_BEFORE_BOTTOM, 20, 5,
            "Lunge is not deep enough",
            "Lower until your back knee nearly touches the floor",
            view=CameraView.PROFILE,
        ),
    ),
    primary_metric=AngleMetric.KNEE,
    top_threshold=150,
    bottom_threshold=100,
    start_conditions=(
        AngleCondition(AngleMetric.KNEE, minimum=150),
        AngleCondition(AngleMetric.SPINE, minimum=70),
    ),
    start_joints=HIPS + KNEES + ANKLES,
    motion_range=(40, 185),
    setup_hint="Stand tall with your feet hip-width apart",
    biomechanical_focus=("front knee control", "trunk position", "depth"),
    rationale="Frontal-plane knee control and an upright trunk distribute load between hip and knee.",
)

PLANK_PROFILE = ExerciseProfile(
    exercise_type=ExerciseType.PLANK,
    name="Plank",
    difficulty="Beginner",
    description="Forearm plank held with a straight body line",
    key_joints=SHOULDERS + ELBOWS + HIPS + ANKLES,
    angle_thresholds={
        AngleMetric.HIP: AngleThreshold(165, 180, 178, critical=150),
        AngleMetric.SHOULDER: AngleThreshold(80, 100, 90, critical=70),
        AngleMetric.ELBOW: AngleThreshold(80, 100, 90, critical=70),
    },
    rules=(
        ErrorRule(
            PostureErrorType.SAGGING_HIPS, RuleCondition.HIP_ANGLE_BELOW, 165, 7,
            "Hips are sagging",
            "Tuck your pelvis and squeeze your glutes",
            view=CameraView.PROFILE,
        ),
        ErrorRule(
            PostureErrorType.RAISED_HIPS, RuleCondition.HIPS_ABOVE_BODY_LINE, 0.05, 5,
            "Hips are too high",
            "Lower your hips until your body forms a straight line",
            view=CameraView.PROFILE,
        ),
        ErrorRule(
            PostureErrorType.POOR_ALIGNMENT, RuleCondition.ELBOWS_NOT_UNDER_SHOULDERS, 0.05, 5,
            "Elbows are not under your shoulders",
            "Stack your shoulders directly over your elbows",
            view=CameraView.PROFILE,
            affected_joints=ELBOWS + SHOULDERS,
        ),
    ),
    primary_metric=AngleMetric.HIP,
    top_threshold=170,
    bottom_threshold=150,
    isometric=True,
    start_conditions=(AngleCondition(AngleMetric.HIP, minimum=160),),
    start_joints=SHOULDERS + ELBOWS + HIPS + ANKLES,
    motion_range=(120, 185),
    setup_hint="Rest on your forearms with elbows under your shoulders",
    biomechanical_focus=("body line", "shoulder stacking"),
    rationale="An isometric hold; quality depends on keeping the trunk rigid for the whole set.",
)

BICEP_CURL_PROFILE = ExerciseProfile(
    exercise_type=ExerciseType.BICEP_CURLS,
    name="Bicep Curl",
    difficulty="Beginner",
    description="Standing curl with the upper arm fixed at the side",
    key_joints=SHOULDERS + ELBOWS + WRISTS,
    angle_thresholds={
        AngleMetric.ELBOW: AngleThreshold(30, 170, 40, critical=20),
        AngleMetric.SHOULDER: AngleThreshold(0, 35, 10, critical=50),
        AngleMetric.SPINE: AngleThreshold(80, 90, 88, critical=75),
    },
    rules=(
        ErrorRule(
            PostureErrorType.POOR_ALIGNMENT, RuleCondition.SHOULDER_ANGLE_ABOVE, 35, 5,
            "Elbows are drifting away from your body",
            "Pin your elbows to your sides",
            affected_joints=ELBOWS + SHOULDERS,
            setup_message="Let your arms hang by your sides",
        ),
        ErrorRule(
            PostureErrorType.FORWARD_LEAN, RuleCondition.TRUNK_BELOW, 80, 6,
            "Swinging the torso",
            "Stand still and let only your forearms move",
            view=CameraView.PROFILE,
        ),
        ErrorRule(
            PostureErrorType.PARTIAL_ROM, RuleCondition.TURNED_BEFORE_BOTTOM, 20, 4,
            "Curl is not reaching the top",
            "Curl all the way up until your forearm meets your biceps",
        ),
        ErrorRule(
            PostureErrorType.EXCESSIVE_SPEED, RuleCondition.ANGULAR_SPEED_ABOVE, 3.0, 6,
            "Moving too fast",
            "Slow down and control the weight on the way down",
            affected_joints=ELBOWS + WRISTS,
        ),
    ),
    primary_metric=AngleMetric.ELBOW,
    top_threshold=150,
    bottom_threshold=50,
    start_conditions=(
        AngleCondition(AngleMetric.ELBOW, minimum=140),
        AngleCondition(AngleMetric.SPINE, minimum=75),
    ),
    start_joints=SHOULDERS + ELBOWS + WRISTS,
    motion_range=(10, 185),
    setup_hint="Stand tall with your arms extended by your sides",
    biomechanical_focus=("elbow position", "tempo"),
    rationale="Isolating elbow flexion requires a fixed upper arm and a controlled tempo.",
)

DEADLIFT_PROFILE = ExerciseProfile(
    exercise_type=ExerciseType.DEADLIFT,
    name="Deadlift",
    difficulty="Advanced",
    description="Hip hinge from standing with a neutral spine",
    key_joints=SHOULDERS + HIPS + KNEES,
    angle_thresholds={
        AngleMetric.HIP: AngleThreshold(45, 180, 90, critical=40),
        AngleMetric.KNEE: AngleThreshold(110, 180, 160, critical=90),
    },
    rules=(
        ErrorRule(
            PostureErrorType.ASYMMETRY, RuleCondition.SHOULDER_LEVEL_ASYMMETRY, 5, 6,
            "Shoulders are uneven",
            "Grip the bar evenly and keep your shoulders level",
            view=CameraView.FRONTAL,
        ),
        ErrorRule(
            PostureErrorType.KNEE_VALGUS, RuleCondition.KNEES_INSIDE_HIPS, 0.7, 7,
            "Knees are caving inward",
            "Push your knees out as you drive up",
            view=CameraView.FRONTAL,
        ),
        ErrorRule(
            PostureErrorType.PARTIAL_ROM, RuleCondition.TURNED_BEFORE_BOTTOM, 20, 4,
            "Hinge is too short",
            "Push your hips back further before standing up",
            view=CameraView.PROFILE,
            affected_joints=HIPS,
        ),
    ),
    primary_metric=AngleMetric.HIP,
    top_threshold=160,
    bottom_threshold=90,
    start_conditions=(
        AngleCondition(AngleMetric.HIP, minimum=150),
        AngleCondition(AngleMetric.KNEE, minimum=150),
    ),
    start_joints=SHOULDERS + HIPS + KNEES + ANKLES,
    motion_range=(30, 185),
    setup_hint="Stand tall holding the bar with straight arms",
    biomechanical_focus=("hip hinge", "symmetry"),
    rationale="Load should move through the hips; asymmetry and knee collapse shift stress to passive structures.",
)

BENCH_PRESS_PROFILE = ExerciseProfile(
    exercise_type=ExerciseType.BENCH_PRESS,
    name="Bench Press",
    difficulty="Intermediate",
    description="Press from chest to lockout with controlled elbows",
    key_joints=SHOULDERS + ELBOWS + WRISTS,
    angle_thresholds={
        AngleMetric.ELBOW: AngleThreshold(70, 180, 90, critical=60),
        AngleMetric.SHOULDER: AngleThreshold(30, 80, 60, critical=90),
    },
    rules=(
        ErrorRule(
            PostureErrorType.ELBOW_FLARE, RuleCondition.SHOULDER_ANGLE_ABOVE, 80, 6,
            "Elbows are flaring out",
            "Tuck your elbows to about 45-60 degrees from your torso",
            view=CameraView.FRONTAL,
        ),
        ErrorRule(
            PostureErrorType.ASYMMETRY, RuleCondition.ELBOW_ASYMMETRY, 15, 5,
            "Bar is moving unevenly",
            "Press both arms at the same speed",
            view=CameraView.FRONTAL,
            affected_joints=ELBOWS,
        ),
        ErrorRule(
            PostureErrorType.PARTIAL_ROM, RuleCondition.TURNED_BEFORE_BOTTOM, 20, 4,
            "Bar is not reaching your chest",
            "Lower the bar until it touches your chest",
            view=CameraView.PROFILE,
        ),
    ),
    primary_metric=AngleMetric.ELBOW,
    top_threshold=160,
    bottom_threshold=90,
    start_conditions=(AngleCondition(AngleMetric.ELBOW, minimum=150),),
    start_joints=SHOULDERS + ELBOWS + WRISTS,
    motion_range=(30, 185),
    setup_hint="Hold the bar over your chest with straight arms",
    biomechanical_focus=("elbow path", "symmetry"),
    rationale="Excessive shoulder abduction under load stresses the anterior shoulder.",
)

SHOULDER_PRESS_PROFILE = ExerciseProfile(
    exercise_type=ExerciseType.SHOULDER_PRESS,
    name="Shoulder Press",
    difficulty="Intermediate",
    description="Overhead press from shoulder height to full lockout",
    key_joints=SHOULDERS + ELBOWS + WRISTS,
    angle_thresholds={
        AngleMetric.ELBOW: AngleThreshold(70, 180, 90, critical=60),
        AngleMetric.SPINE: AngleThreshold(80, 90, 88, critical=75),
    },
    rules=(
        ErrorRule(
            PostureErrorType.ASYMMETRY, RuleCondition.ELBOW_ASYMMETRY, 15, 5,
            "Arms are pressing unevenly",
            "Drive both hands up at the same speed",
            view=CameraView.FRONTAL,
            affected_joints=ELBOWS,
        ),
        ErrorRule(
            PostureErrorType.POOR_ALIGNMENT, RuleCondition.LATERAL_LEAN_ABOVE, 10, 5,
            "Leaning to one side",
            "Keep your ribs down and your torso stacked",
            view=CameraView.FRONTAL,
        ),
        ErrorRule(
            PostureErrorType.FORWARD_LEAN, RuleCondition.TRUNK_BELOW, 75, 6,
            "Arching your lower back",
            "Brace your core and squeeze your glutes",
            view=CameraView.PROFILE,
        ),
        ErrorRule(
            PostureErrorType.PARTIAL_ROM, RuleCondition.TURNED_BEFORE_BOTTOM, 20, 4,
            "Not locking out overhead",
            "Press until your arms are straight above your head",
            view=CameraView.PROFILE,
        ),
    ),
    # The press starts with bent elbows, so the cycle starts at the low angle
    primary_metric=AngleMetric.ELBOW,
    top_threshold=90,
    bottom_threshold=160,
    start_conditions=(AngleCondition(AngleMetric.ELBOW, maximum=110),),
    start_joints=SHOULDERS + ELBOWS + WRISTS,
    motion_range=(30, 185),
    setup_hint="Hold the weights at shoulder height",
    biomechanical_focus=("lockout", "trunk position"),
    rationale="Pressing overhead with an extended lumbar spine shifts load onto the lower back.",
)


EXERCISE_PROFILES: Dict[ExerciseType, ExerciseProfile] = {
    profile.exercise_type: profile
    for profile in (
        SQUAT_PROFILE,
        PUSHUP_PROFILE,
        LUNGE_PROFILE,
        PLANK_PROFILE,
        BICEP_CURL_PROFILE,
        DEADLIFT_PROFILE,
        BENCH_PRESS_PROFILE,
        SHOULDER_PRESS_PROFILE,
    )
}


def parse_exercise_type(value: Union[ExerciseType, str]) -> ExerciseType:
    """Resolve an exercise name, raising UnknownExerciseError for anything outside the registry."""
    if isinstance(value, ExerciseType):
        return value
    try:
        return ExerciseType(str(value).strip().lower())
    except ValueError:
        raise UnknownExerciseError(value)


def get_profile(exercise: Union[ExerciseType, str]) -> ExerciseProfile:
    """Look up the immutable profile of an exercise."""
    return EXERCISE_PROFILES[parse_exercise_type(exercise)]


def list_profiles() -> List[ExerciseProfile]:
    return list(EXERCISE_PROFILES.values())
