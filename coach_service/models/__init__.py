"""
FORMCOACH Coach Service Models

Pose-based form analysis: geometry, exercise profiles, readiness, phase
detection, error detection, quality scoring and precision validation.
"""

from .geometry import (
    JointType,
    AngleName,
    AngleMetric,
    Landmark,
    PoseFrame,
    AngleSet,
    compute_angle_set
)

from .exercise_profiles import (
    ExerciseType,
    PostureErrorType,
    ExerciseProfile,
    UnknownExerciseError,
    get_profile,
    list_profiles,
    parse_exercise_type
)

from .view_classifier import CameraView, classify_view
from .readiness import ReadinessState, ReadinessStateMachine
from .phase_detector import RepetitionPhase, RepetitionCounter
from .error_engine import DetectionMode, PostureError
from .quality_scorer import QualityScorer, QualityTrend
from .precision_validator import PrecisionValidator, ValidationReport

from .form_analyzer import (
    FormAnalyzer,
    FrameAnalysisResult,
    SessionAnalysisState,
    get_form_analyzer
)

from .coaching_session import (
    CoachingSession,
    CoachingSessionHandler,
    SessionState,
    RepRecord,
    get_session_handler
)

__all__ = [
    # Geometry
    "JointType",
    "AngleName",
    "AngleMetric",
    "Landmark",
    "PoseFrame",
    "AngleSet",
    "compute_angle_set",
    # Profiles
    "ExerciseType",
    "PostureErrorType",
    "ExerciseProfile",
    "UnknownExerciseError",
    "get_profile",
    "list_profiles",
    "parse_exercise_type",
    # Analysis
    "CameraView",
    "classify_view",
    "ReadinessState",
    "ReadinessStateMachine",
    "RepetitionPhase",
    "RepetitionCounter",
    "DetectionMode",
    "PostureError",
    "QualityScorer",
    "QualityTrend",
    "PrecisionValidator",
    "ValidationReport",
    "FormAnalyzer",
    "FrameAnalysisResult",
    "SessionAnalysisState",
    "get_form_analyzer",
    # Coaching Session
    "CoachingSession",
    "CoachingSessionHandler",
    "SessionState",
    "RepRecord",
    "get_session_handler",
]
