"""
FORMCOACH Coach Service - Coaching Session Handler

Manages coaching sessions: one FormAnalyzer per session, repetition records
with form scores, and a completion summary with recommendations.
"""

from dataclasses import dataclass, field
from typing import Dict, List, Optional, Any, Union
from enum import Enum
import time
import uuid

from shared.utils import get_now_iso, setup_logger
from .geometry import AngleSet, PoseFrame
from .exercise_profiles import ExerciseType, parse_exercise_type
from .error_engine import DetectionMode
from .readiness import ReadinessState
from .form_analyzer import FormAnalyzer, FrameAnalysisResult

logger = setup_logger("formcoach.sessions")


class SessionState(Enum):
    """Coaching session states."""
    ACTIVE = "active"
    PAUSED = "paused"
    COMPLETED = "completed"


@dataclass
class RepRecord:
    """Record of a single repetition."""
    rep_number: int
    timestamp: float
    form_score: float
    duration_seconds: float
    errors: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "rep_number": self.rep_number,
            "form_score": round(self.form_score, 1),
            "duration_seconds": round(self.duration_seconds, 1),
            "errors": self.errors
        }


@dataclass
class CoachingSession:
    """Complete coaching session data."""
    session_id: str
    user_id: str
    exercise_type: ExerciseType
    analyzer: FormAnalyzer
    state: SessionState = SessionState.ACTIVE
    target_reps: int = 10

    # Progress tracking
    reps: List[RepRecord] = field(default_factory=list)
    rep_quality_scores: List[int] = field(default_factory=list)
    rep_errors: List[str] = field(default_factory=list)

    # Timing
    start_time: float = field(default_factory=time.time)
    end_time: Optional[float] = None
    last_rep_time: float = 0.0

    @property
    def total_reps(self) -> int:
        return len(self.reps)

    @property
    def avg_form_score(self) -> float:
        if not self.reps:
            return 0.0
        return sum(r.form_score for r in self.reps) / len(self.reps)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to JSON-serializable dict."""
        return {
            "session_id": self.session_id,
            "user_id": self.user_id,
            "exercise_type": self.exercise_type.value,
            "detection_mode": self.analyzer.detection_mode.value,
            "state": self.state.value,
            "target_reps": self.target_reps,
            "total_reps": self.total_reps,
            "avg_form_score": round(self.avg_form_score, 1),
            "readiness": self.analyzer.readiness_state.value,
            "duration_seconds": round((self.end_time or time.time()) - self.start_time, 1),
            "reps": [r.to_dict() for r in self.reps]
        }


class CoachingSessionHandler:
    """
    Manages coaching sessions with real-time form analysis.

    Features:
    - Independent analyzer state per session
    - Rep records scored by the mean frame quality during the rep
    - Session summary with rating and recommendations
    """

    def __init__(self):
        self.active_sessions: Dict[str, CoachingSession] = {}

    def create_session(
        self,
        user_id: str,
        exercise_type: Union[ExerciseType, str],
        target_reps: int = 10,
        detection_mode: Optional[Union[DetectionMode, str]] = None
    ) -> CoachingSession:
        """
        Create a new coaching session.

        Args:
            user_id: User ID
            exercise_type: Exercise type or its name
            target_reps: Repetitions to complete
            detection_mode: "rules" or "scientific" (configured default if None)

        Returns:
            New CoachingSession

        Raises:
            UnknownExerciseError: If the exercise is not supported
        """
        ex_type = parse_exercise_type(exercise_type)
        analyzer = FormAnalyzer(detection_mode=detection_mode)
        analyzer.set_current_exercise(ex_type)

        session_id = str(uuid.uuid4())[:8]
        session = CoachingSession(
            session_id=session_id,
            user_id=user_id,
            exercise_type=ex_type,
            analyzer=analyzer,
            target_reps=target_reps
        )
        self.active_sessions[session_id] = session

        logger.info(f"Created session {session_id} for {user_id}: {ex_type.value} x {target_reps}")
        return session

    def process_frame(
        self,
        session_id: str,
        frame: PoseFrame,
        angles: Optional[AngleSet] = None,
        timestamp_ms: Optional[float] = None
    ) -> Dict[str, Any]:
        """
        Analyse one frame of a session.

        Returns:
            Frame result dict with session progress
        """
        session = self.active_sessions.get(session_id)
        if not session:
            return {"error": "Session not found"}

        if session.state != SessionState.ACTIVE:
            return {"status": session.state.value, "message": "Session not active"}

        result = session.analyzer.analyze(frame, angles, timestamp_ms)
        response = result.to_dict()
        response.update({
            "session_id": session_id,
            "target_reps": session.target_reps,
            "readiness_message": session.analyzer.get_readiness_message()
        })

        if result.repetition_count < session.total_reps:
            # Left the exercise range; the analyzer restarted its count
            self._clear_rep_progress(session)

        if result.readiness == ReadinessState.EXERCISING:
            session.rep_quality_scores.append(result.quality_score)
            session.rep_errors.extend(e.error_type.value for e in result.errors)

        if result.repetition_completed:
            self._record_rep(session, result)
            if session.total_reps >= session.target_reps:
                response["target_reached"] = True
                response["message"] = f"Target of {session.target_reps} reps reached!"

        return response

    def _record_rep(self, session: CoachingSession, result: FrameAnalysisResult):
        """Record a completed repetition."""
        current_time = time.time()
        duration = current_time - session.last_rep_time if session.last_rep_time > 0 else current_time - session.start_time

        scores = session.rep_quality_scores or [result.quality_score]
        rep = RepRecord(
            rep_number=session.total_reps + 1,
            timestamp=current_time,
            form_score=sum(scores) / len(scores),
            duration_seconds=duration,
            errors=sorted(set(session.rep_errors))
        )
        session.reps.append(rep)
        session.last_rep_time = current_time
        session.rep_quality_scores = []
        session.rep_errors = []

    def _clear_rep_progress(self, session: CoachingSession):
        session.reps = []
        session.rep_quality_scores = []
        session.rep_errors = []
        session.last_rep_time = 0.0

    def reset_session(self, session_id: str) -> Dict[str, Any]:
        """Reset counters and analysis state, keeping the exercise."""
        session = self.active_sessions.get(session_id)
        if not session:
            return {"error": "Session not found"}

        session.analyzer.reset()
        self._clear_rep_progress(session)
        session.start_time = time.time()
        session.state = SessionState.ACTIVE
        return {"status": "reset", "session_id": session_id}

    def pause_session(self, session_id: str) -> Dict[str, Any]:
        """Pause an active session."""
        session = self.active_sessions.get(session_id)
        if not session:
            return {"error": "Session not found"}

        session.state = SessionState.PAUSED
        return {"status": "paused", "session_id": session_id}

    def resume_session(self, session_id: str) -> Dict[str, Any]:
        """Resume a paused session."""
        session = self.active_sessions.get(session_id)
        if not session:
            return {"error": "Session not found"}

        if session.state == SessionState.PAUSED:
            session.state = SessionState.ACTIVE
            return {"status": "resumed", "session_id": session_id}

        return {"error": "Session not paused"}

    def complete_session(self, session_id: str) -> Dict[str, Any]:
        """
        Complete a session, generate its summary and release it.

        Returns complete session summary.
        """
        session = self.active_sessions.get(session_id)
        if not session:
            return {"error": "Session not found"}

        session.state = SessionState.COMPLETED
        session.end_time = time.time()

        summary = self._generate_summary(session)

        session.analyzer.dispose()
        self.cleanup_session(session_id)
        logger.info(f"Completed session {session_id}: {session.total_reps}/{session.target_reps} reps")

        return summary

    def _generate_summary(self, session: CoachingSession) -> Dict[str, Any]:
        """Generate session summary."""
        duration = (session.end_time or time.time()) - session.start_time
        completion_rate = (session.total_reps / session.target_reps * 100) if session.target_reps > 0 else 0

        if completion_rate >= 100 and session.avg_form_score >= 85:
            performance = "excellent"
            message = "Outstanding performance!"
        elif completion_rate >= 80 and session.avg_form_score >= 70:
            performance = "good"
            message = "Great job! Keep it up!"
        elif completion_rate >= 60:
            performance = "fair"
            message = "Good effort! Room for improvement."
        else:
            performance = "needs_improvement"
            message = "Keep practicing! You'll get better."

        stats = session.analyzer.get_session_stats()
        return {
            "status": "completed",
            "session_id": session.session_id,
            "user_id": session.user_id,
            "exercise": session.exercise_type.value,
            "summary": {
                "total_reps": session.total_reps,
                "target_reps": session.target_reps,
                "completion_rate": round(completion_rate, 1),
                "avg_form_score": round(session.avg_form_score, 1),
                "duration_seconds": round(duration, 1),
                "quality_trend": stats.get("quality_trend", "stable"),
                "most_common_errors": stats.get("most_common_errors", []),
                "performance_rating": performance,
                "message": message
            },
            "reps": [r.to_dict() for r in session.reps],
            "scientific_report": session.analyzer.get_scientific_report(),
            "recommendations": self._get_recommendations(session, completion_rate),
            "completed_at": get_now_iso()
        }

    def _get_recommendations(self, session: CoachingSession, completion_rate: float) -> List[str]:
        """Generate personalized recommendations based on session performance."""
        recommendations = []

        if session.reps and session.avg_form_score < 70:
            recommendations.append("Focus on maintaining proper form over completing more reps")

        error_reps = [r for r in session.reps if r.errors]
        if session.reps and len(error_reps) > len(session.reps) / 2:
            recommendations.append("Most reps had form errors - slow down and use a lighter load")

        if completion_rate < 80:
            recommendations.append("Try a lower rep target in your next session")
        elif completion_rate >= 100 and session.avg_form_score >= 85:
            recommendations.append("You're ready to increase difficulty! Try more reps or add resistance")

        if not recommendations:
            recommendations.append("Great progress! Maintain this consistency")

        return recommendations

    def get_session(self, session_id: str) -> Optional[CoachingSession]:
        """Get session by ID."""
        return self.active_sessions.get(session_id)

    def get_session_status(self, session_id: str) -> Dict[str, Any]:
        """Get current session status."""
        session = self.active_sessions.get(session_id)
        if not session:
            return {"error": "Session not found"}

        return session.to_dict()

    def cleanup_session(self, session_id: str):
        """Remove session from active sessions."""
        if session_id in self.active_sessions:
            del self.active_sessions[session_id]


# ═══════════════════════════════════════════════════════════════════════════════
# MODULE-LEVEL SINGLETON
# ═══════════════════════════════════════════════════════════════════════════════

_handler_instance: Optional[CoachingSessionHandler] = None

def get_session_handler() -> CoachingSessionHandler:
    """Get or create the global session handler instance."""
    global _handler_instance
    if _handler_instance is None:
        _handler_instance = CoachingSessionHandler()
    return _handler_instance
