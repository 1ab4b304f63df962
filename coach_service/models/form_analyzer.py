"""
FORMCOACH Coach Service - Form Analyzer

Per-session analysis pipeline. Every frame goes through input-quality
checks, view classification and the readiness state machine; while the set
is running it also feeds phase detection and repetition counting. Error
detection and quality scoring run on a lightly smoothed copy of the frame,
and the precision validator watches the same stream on the side.
"""

import time
from collections import Counter
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Tuple, Union

import numpy as np

from core.config import settings as default_settings, Settings
from shared.utils import RollingWindow, setup_logger
from .geometry import (
    AngleSet,
    PoseFrame,
    BODY_JOINTS,
    TORSO_JOINTS,
    compute_angle_set,
    mean_displacement,
    smooth_angle_sets,
    smooth_frames,
    visibility_ratio,
)
from .exercise_profiles import ExerciseProfile, ExerciseType, PostureErrorType
from .exercise_strategy import ExerciseStrategy, build_strategy
from .view_classifier import CameraView, classify_view
from .readiness import ReadinessObservation, ReadinessState, ReadinessStateMachine, ReadinessTransition
from .phase_detector import PhaseSmoother, RepetitionCounter, RepetitionPhase
from .error_engine import DetectionMode, ErrorCooldowns, ErrorDetectionEngine, FrameContext, PostureError
from .quality_scorer import QualityScorer, QualityTrend
from .precision_validator import PrecisionValidator, ValidationReport

logger = setup_logger("formcoach.analyzer")


# ═══════════════════════════════════════════════════════════════════════════════
# DATA CLASSES
# ═══════════════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class FrameAnalysisResult:
    """Result of analysing one frame."""
    errors: Tuple[PostureError, ...]
    phase: RepetitionPhase
    repetition_count: int
    quality_score: int  # 0-100
    readiness: ReadinessState = ReadinessState.NOT_READY
    view: Optional[CameraView] = None
    repetition_completed: bool = False
    readiness_changed: bool = False
    validation: Optional[ValidationReport] = None

    def to_dict(self) -> Dict[str, Any]:
        result = {
            "errors": [e.to_dict() for e in self.errors],
            "phase": self.phase.value,
            "repetition_count": self.repetition_count,
            "quality_score": self.quality_score,
            "readiness": self.readiness.value,
            "view": self.view.value if self.view else None,
            "repetition_completed": self.repetition_completed,
            "readiness_changed": self.readiness_changed,
        }
        if self.validation is not None:
            result["validation"] = self.validation.to_dict()
        return result


@dataclass
class SessionAnalysisState:
    """
    Everything one analysis session accumulates.

    Replaced wholesale when the exercise changes or the session is reset;
    nothing in here outlives the session.
    """
    exercise_type: ExerciseType
    strategy: ExerciseStrategy
    readiness: ReadinessStateMachine
    repetitions: RepetitionCounter
    phase_smoother: PhaseSmoother
    pose_history: RollingWindow[PoseFrame]
    angle_history: RollingWindow[AngleSet]
    primary_angle_history: RollingWindow[float]
    quality_history: RollingWindow[int]
    processing_times_ms: RollingWindow[float]
    cooldowns: ErrorCooldowns = field(default_factory=ErrorCooldowns)
    error_counts: Counter = field(default_factory=Counter)
    current_phase: RepetitionPhase = RepetitionPhase.IDLE
    last_frame: Optional[PoseFrame] = None
    last_smoothed_frame: Optional[PoseFrame] = None
    last_timestamp_ms: Optional[float] = None
    frames_processed: int = 0
    started_at: float = 0.0

    @classmethod
    def fresh(cls, strategy: ExerciseStrategy, settings: Settings, started_at: float) -> "SessionAnalysisState":
        return cls(
            exercise_type=strategy.exercise_type,
            strategy=strategy,
            readiness=ReadinessStateMachine(settings, isometric=strategy.isometric),
            repetitions=RepetitionCounter(),
            phase_smoother=PhaseSmoother(settings.PHASE_SMOOTHING_WINDOW),
            pose_history=RollingWindow(settings.HISTORY_CAPACITY),
            angle_history=RollingWindow(settings.HISTORY_CAPACITY),
            primary_angle_history=RollingWindow(settings.HISTORY_CAPACITY),
            quality_history=RollingWindow(settings.QUALITY_HISTORY_SIZE),
            processing_times_ms=RollingWindow(settings.HISTORY_CAPACITY),
            started_at=started_at,
        )


# ═══════════════════════════════════════════════════════════════════════════════
# FORM ANALYZER
# ═══════════════════════════════════════════════════════════════════════════════

class FormAnalyzer:
    """
    Real-time form analysis for one exercise session.

    Usage:
        analyzer = FormAnalyzer()
        analyzer.set_current_exercise("squats")
        result = analyzer.analyze(frame)
    """

    def __init__(
        self,
        settings: Optional[Settings] = None,
        detection_mode: Optional[Union[DetectionMode, str]] = None,
        clock: Callable[[], float] = time.perf_counter
    ):
        """
        Initialize the analyzer.

        Args:
            settings: Threshold source (module settings if None)
            detection_mode: "rules" or "scientific" (DETECTION_MODE if None)
            clock: Monotonic clock in seconds
        """
        self.settings = settings or default_settings
        self.detection_mode = DetectionMode(detection_mode or self.settings.DETECTION_MODE)
        self.clock = clock
        self.engine = ErrorDetectionEngine(self.settings)
        self.scorer = QualityScorer(self.settings)
        self.validator = PrecisionValidator(self.settings, clock)
        self.state: Optional[SessionAnalysisState] = None

    @property
    def current_exercise(self) -> Optional[ExerciseType]:
        return self.state.exercise_type if self.state else None

    @property
    def profile(self) -> Optional[ExerciseProfile]:
        return self.state.strategy.profile if self.state else None

    @property
    def readiness_state(self) -> ReadinessState:
        return self.state.readiness.state if self.state else ReadinessState.NOT_READY

    # ═══════════════════════════════════════════════════════════════════════════
    # LIFECYCLE
    # ═══════════════════════════════════════════════════════════════════════════

    def set_current_exercise(self, exercise: Union[ExerciseType, str]) -> ExerciseProfile:
        """
        Select the exercise and start a fresh session state.

        Raises:
            UnknownExerciseError: If the exercise is not in the registry
        """
        strategy = build_strategy(exercise, self.settings)
        self.state = SessionAnalysisState.fresh(strategy, self.settings, self.clock())
        self.validator.start_validation()
        self.validator.set_reference_profile(strategy.profile)
        logger.info(f"Exercise set to {strategy.exercise_type.value} ({self.detection_mode.value} mode)")
        return strategy.profile

    def reset(self):
        """Clear counters, histories and cooldowns, keeping the selected exercise."""
        if self.state is None:
            return
        self.state = SessionAnalysisState.fresh(self.state.strategy, self.settings, self.clock())
        self.validator.start_validation()
        self.validator.set_reference_profile(self.state.strategy.profile)
        logger.info(f"Session reset for {self.state.exercise_type.value}")

    def dispose(self):
        """Drop the session state and release validator buffers."""
        if self.state is not None:
            logger.info(f"Disposing analysis session for {self.state.exercise_type.value}")
        self.state = None
        self.validator.cleanup()

    # ═══════════════════════════════════════════════════════════════════════════
    # FRAME ANALYSIS
    # ═══════════════════════════════════════════════════════════════════════════

    def analyze(
        self,
        frame: PoseFrame,
        angles: Optional[AngleSet] = None,
        timestamp_ms: Optional[float] = None
    ) -> FrameAnalysisResult:
        """
        Analyse one frame.

        Args:
            frame: Estimated pose
            angles: Pre-computed angles (derived from the frame if None)
            timestamp_ms: Capture time (the frame's own timestamp if None, then the clock)

        Returns:
            FrameAnalysisResult; a neutral result when the input is unusable
        """
        started = self.clock()
        state = self.state
        if state is None:
            return self._neutral_result()

        cfg = self.settings
        strategy = state.strategy
        timestamp = frame.timestamp_ms if timestamp_ms is None else float(timestamp_ms)
        if timestamp is None:
            timestamp = self.clock() * 1000.0
        raw_angles = angles if angles is not None else compute_angle_set(frame, cfg.ANGLE_MIN_VISIBILITY)
        view = classify_view(frame, cfg)

        visible = visibility_ratio(frame, BODY_JOINTS, cfg.LANDMARK_VISIBILITY_THRESHOLD)
        stable = self._is_temporally_stable(frame, state.last_frame)
        frame_interval_s = self._frame_interval(state.last_timestamp_ms, timestamp)
        state.last_frame = frame
        state.last_timestamp_ms = timestamp
        state.frames_processed += 1

        required = cfg.EXERCISING_VISIBILITY_RATIO if state.readiness.is_exercising else cfg.READY_VISIBILITY_RATIO
        if visible < required or not stable:
            transition = state.readiness.update(ReadinessObservation(
                visibility_ratio=visible,
                in_start_position=False,
                in_motion_range=False,
                stable=stable,
            ))
            self._apply_transition(state, transition)
            return self._neutral_result(view, transition.changed)

        state.pose_history.append(frame)
        state.angle_history.append(raw_angles)
        window = cfg.ANGLE_SMOOTHING_WINDOW
        smoothed_frame = smooth_frames(state.pose_history.latest(window))
        smoothed_angles = smooth_angle_sets(state.angle_history.latest(window))

        primary = strategy.primary_angle(raw_angles, frame)
        transition = state.readiness.update(ReadinessObservation(
            visibility_ratio=visible,
            in_start_position=strategy.in_start_position(raw_angles, frame, cfg.LANDMARK_VISIBILITY_THRESHOLD),
            tracked_angle=primary,
            in_motion_range=strategy.in_motion_range(primary),
        ))
        self._apply_transition(state, transition)

        # Phase and repetitions
        previous_phase = state.current_phase
        previous_primary = state.primary_angle_history.last
        repetition_completed = False
        if state.readiness.is_exercising:
            raw_phase = strategy.classify_phase(raw_angles, frame, previous_primary)
            phase = state.phase_smoother.push(raw_phase)
            repetition_completed = state.repetitions.update(phase)
        else:
            phase = RepetitionPhase.IDLE
        state.current_phase = phase
        if primary is not None:
            state.primary_angle_history.append(primary)

        if repetition_completed:
            logger.info(f"Repetition {state.repetitions.count} completed ({state.exercise_type.value})")

        # Errors
        errors: List[PostureError] = []
        if state.readiness.state != ReadinessState.NOT_READY:
            ctx = FrameContext(
                frame=smoothed_frame,
                angles=smoothed_angles,
                view=view,
                phase=phase,
                previous_phase=previous_phase,
                previous_frame=state.last_smoothed_frame,
                primary_angle=primary,
                previous_primary_angle=previous_primary,
                recent_primary_angles=state.primary_angle_history.latest(),
                frame_interval_s=frame_interval_s,
                timestamp_ms=timestamp,
            )
            errors = self.engine.detect(
                strategy,
                ctx,
                state.cooldowns,
                exercising=state.readiness.is_exercising,
                mode=self.detection_mode,
            )
        state.last_smoothed_frame = smoothed_frame
        state.error_counts.update(e.error_type for e in errors)

        # Quality
        quality = self.scorer.score(
            errors,
            smoothed_angles,
            strategy.profile,
            state.pose_history.latest(),
            full_range=strategy.reached_full_range(phase, primary),
            mode=self.detection_mode,
        )
        if state.readiness.is_exercising:
            state.quality_history.append(quality)

        self.validator.validate_frame(smoothed_frame, smoothed_angles, started)
        state.processing_times_ms.append((self.clock() - started) * 1000)

        validation = None
        if state.frames_processed % cfg.REPORT_INTERVAL_FRAMES == 0:
            validation = self.validator.get_validation_report()

        return FrameAnalysisResult(
            errors=tuple(errors),
            phase=phase,
            repetition_count=state.repetitions.count,
            quality_score=quality,
            readiness=state.readiness.state,
            view=view,
            repetition_completed=repetition_completed,
            readiness_changed=transition.changed,
            validation=validation,
        )

    def _neutral_result(self, view: Optional[CameraView] = None, readiness_changed: bool = False) -> FrameAnalysisResult:
        state = self.state
        return FrameAnalysisResult(
            errors=(),
            phase=RepetitionPhase.IDLE,
            repetition_count=state.repetitions.count if state else 0,
            quality_score=0,
            readiness=self.readiness_state,
            view=view,
            readiness_changed=readiness_changed,
        )

    def _apply_transition(self, state: SessionAnalysisState, transition: ReadinessTransition):
        if transition.reset_repetitions:
            logger.info(
                f"Left the exercise range after {state.repetitions.count} repetitions, counter reset"
            )
            state.repetitions.reset()
        if transition.changed:
            state.phase_smoother.reset()
            state.current_phase = RepetitionPhase.IDLE

    def _is_temporally_stable(self, frame: PoseFrame, previous: Optional[PoseFrame]) -> bool:
        """Torso movement since the previous frame must stay below MAX_FRAME_JUMP."""
        if previous is None:
            return True
        movement = mean_displacement(
            frame, previous, TORSO_JOINTS, min_visibility=self.settings.LANDMARK_VISIBILITY_THRESHOLD
        )
        return movement is None or movement < self.settings.MAX_FRAME_JUMP

    def _frame_interval(self, previous_ms: Optional[float], current_ms: float) -> float:
        if previous_ms is None or current_ms <= previous_ms:
            return 1 / self.settings.TARGET_FPS
        return (current_ms - previous_ms) / 1000

    # ═══════════════════════════════════════════════════════════════════════════
    # SESSION OUTPUTS
    # ═══════════════════════════════════════════════════════════════════════════

    def get_readiness_message(self) -> str:
        if self.state is None:
            return "Select an exercise to begin"
        return self.state.readiness.get_message(self.state.strategy.profile.setup_hint)

    def average_quality(self) -> float:
        if self.state is None or not self.state.quality_history:
            return 0.0
        return float(np.mean(list(self.state.quality_history)))

    def quality_trend(self) -> QualityTrend:
        if self.state is None:
            return QualityTrend.STABLE
        return self.scorer.trend(self.state.quality_history.latest())

    def get_session_stats(self) -> Dict[str, Any]:
        """Repetitions, rolling quality and phase, plus processing metrics."""
        state = self.state
        if state is None:
            return {
                "exercise_type": None,
                "repetitions": 0,
                "average_quality": 0,
                "current_phase": RepetitionPhase.IDLE.value,
                "readiness": ReadinessState.NOT_READY.value,
            }

        processing = list(state.processing_times_ms)
        stats = {
            "exercise_type": state.exercise_type.value,
            "repetitions": state.repetitions.count,
            "average_quality": round(self.average_quality()),
            "current_phase": state.current_phase.value,
            "readiness": state.readiness.state.value,
            "readiness_message": self.get_readiness_message(),
            "detection_mode": self.detection_mode.value,
            "quality_trend": self.quality_trend().value,
            "frames_processed": state.frames_processed,
            "average_processing_time_ms": round(float(np.mean(processing)), 2) if processing else 0.0,
            "most_common_errors": [
                {"type": error_type.value, "count": count}
                for error_type, count in state.error_counts.most_common(3)
            ],
        }
        if self.detection_mode == DetectionMode.SCIENTIFIC:
            stats["validation"] = self.validator.get_validation_report().to_dict()
        return stats

    def get_scientific_report(self) -> Dict[str, Any]:
        """Session-level summary with error distribution and validator metrics."""
        state = self.state
        report = self.validator.get_validation_report()
        if state is None:
            return {
                "exercise_type": None,
                "session_duration_s": 0.0,
                "frame_rate": 0,
                "error_distribution": {},
                "validation": report.to_dict(),
                "recommendations": [],
            }

        distribution: Dict[str, int] = {
            error_type.value: count for error_type, count in state.error_counts.items()
        }
        return {
            "exercise_type": state.exercise_type.value,
            "detection_mode": self.detection_mode.value,
            "session_duration_s": round(self.clock() - state.started_at, 1),
            "frame_rate": report.performance.fps,
            "total_frames": state.frames_processed,
            "repetitions": state.repetitions.count,
            "error_distribution": distribution,
            "biomechanical_analysis": {
                "angular_accuracy": round(report.precision.angular_accuracy, 1),
                "frame_stability": round(report.precision.frame_stability, 1),
                "temporal_consistency": round(report.precision.temporal_consistency, 1),
                "average_quality": round(self.average_quality(), 1),
                "quality_trend": self.quality_trend().value,
            },
            "validation": report.to_dict(),
            "recommendations": self._generate_recommendations(report),
        }

    def _generate_recommendations(self, report: ValidationReport) -> List[str]:
        recommendations = []
        if report.precision.angular_accuracy < 85:
            recommendations.append("Improve postural stability and keep your whole body in view of the camera")
        if report.performance.fps < self.settings.MIN_FPS:
            recommendations.append("Optimize device performance: close other apps or lower the camera resolution")
        if self.state and self.state.quality_history and self.average_quality() < 70:
            recommendations.append("Focus on basic technique before adding load or speed")

        counts = self.state.error_counts if self.state else Counter()
        if counts:
            most_common: PostureErrorType = counts.most_common(1)[0][0]
            recommendations.append(f"Most frequent issue: {most_common.value.replace('_', ' ')}")

        if not recommendations:
            recommendations.append("Great technique! Keep this consistency")
        return recommendations


# ═══════════════════════════════════════════════════════════════════════════════
# MODULE-LEVEL SINGLETON
# ═══════════════════════════════════════════════════════════════════════════════

_analyzer_instance: Optional[FormAnalyzer] = None

def get_form_analyzer() -> FormAnalyzer:
    """Get or create the global form analyzer instance."""
    global _analyzer_instance
    if _analyzer_instance is None:
        _analyzer_instance = FormAnalyzer()
    return _analyzer_instance
