#!/usr/bin/env python3
"""End-to-end analysis of synthetic frame sequences through FormAnalyzer and the session handler."""

import sys
from pathlib import Path

import pytest

sys.path.insert(0, str(Path(__file__).resolve().parent.parent.parent))
sys.path.insert(0, str(Path(__file__).resolve().parent))

from core.config import Settings
from coach_service.models.geometry import ANKLES, PoseFrame
from coach_service.models.exercise_profiles import ExerciseType, PostureErrorType, UnknownExerciseError
from coach_service.models.error_engine import DetectionMode
from coach_service.models.phase_detector import RepetitionPhase
from coach_service.models.readiness import ReadinessState
from coach_service.models.view_classifier import CameraView
from coach_service.models.form_analyzer import FormAnalyzer
from coach_service.models.coaching_session import CoachingSessionHandler
from pose_fixtures import (
    FRAME_INTERVAL_MS,
    FakeClock,
    frontal_frame,
    invisible_frame,
    profile_squat_frame,
    squat_trace_frames,
)

S = ReadinessState


def _squat_analyzer(mode=DetectionMode.RULES):
    analyzer = FormAnalyzer(Settings(), detection_mode=mode)
    analyzer.set_current_exercise("squats")
    return analyzer


def _run_trace(analyzer):
    return [analyzer.analyze(frame) for frame in squat_trace_frames()]


# ---------------------------------------------------------------------------
# 1. Full repetition from the side
# ---------------------------------------------------------------------------

class TestSquatRepetition:
    def test_readiness_progression(self):
        """Eight standing frames confirm the position; the first 9-degree drop starts the set."""
        results = _run_trace(_squat_analyzer())
        assert results[0].readiness == S.GETTING_READY
        assert results[6].readiness == S.GETTING_READY
        assert results[7].readiness == S.READY_TO_START
        assert results[9].readiness == S.READY_TO_START
        assert results[10].readiness == S.EXERCISING
        assert results[10].readiness_changed

    def test_one_repetition_counted(self):
        results = _run_trace(_squat_analyzer())
        completed = [i for i, r in enumerate(results) if r.repetition_completed]
        assert completed == [29], f"Repetition completed at frames {completed}"
        assert results[-1].repetition_count == 1
        assert results[-1].phase == RepetitionPhase.TOP

    def test_phases_follow_the_cycle(self):
        results = _run_trace(_squat_analyzer())
        assert all(r.phase == RepetitionPhase.IDLE for r in results[:10])
        phases = [r.phase for r in results[10:]]
        collapsed = [p for i, p in enumerate(phases) if i == 0 or p != phases[i - 1]]
        assert collapsed == [
            RepetitionPhase.TOP,
            RepetitionPhase.DESCENDING,
            RepetitionPhase.BOTTOM,
            RepetitionPhase.ASCENDING,
            RepetitionPhase.TOP,
        ]

    def test_clean_squat_has_no_errors(self):
        results = _run_trace(_squat_analyzer())
        assert all(r.view == CameraView.PROFILE for r in results)
        assert not any(e.error_type == PostureErrorType.KNEE_VALGUS for r in results for e in r.errors)
        assert all(not r.errors for r in results)

    def test_quality_is_bounded(self):
        for result in _run_trace(_squat_analyzer(DetectionMode.SCIENTIFIC)):
            assert 0 <= result.quality_score <= 100

    def test_validation_snapshot_every_thirty_frames(self):
        results = _run_trace(_squat_analyzer())
        assert results[28].validation is None
        assert results[29].validation is not None
        assert "validation" in results[29].to_dict()

    def test_session_stats(self):
        analyzer = _squat_analyzer()
        _run_trace(analyzer)
        stats = analyzer.get_session_stats()
        assert stats["exercise_type"] == "squats"
        assert stats["repetitions"] == 1
        assert stats["current_phase"] == "top"
        assert stats["readiness"] == "exercising"
        assert stats["frames_processed"] == 30
        assert stats["most_common_errors"] == []
        assert 0 <= stats["average_quality"] <= 100

    def test_scientific_report(self):
        analyzer = _squat_analyzer(DetectionMode.SCIENTIFIC)
        _run_trace(analyzer)
        report = analyzer.get_scientific_report()
        assert report["total_frames"] == 30
        assert report["repetitions"] == 1
        assert report["detection_mode"] == "scientific"
        assert report["recommendations"]
        assert "validation" in analyzer.get_session_stats()

    def test_sessions_are_independent(self):
        first, second = _squat_analyzer(), _squat_analyzer()
        _run_trace(first)
        assert first.get_session_stats()["repetitions"] == 1
        assert second.get_session_stats()["repetitions"] == 0


# ---------------------------------------------------------------------------
# 2. Setup feedback from the front
# ---------------------------------------------------------------------------

class TestFrontalSetup:
    def test_feet_together_reports_poor_alignment(self):
        analyzer = _squat_analyzer()
        result = analyzer.analyze(frontal_frame(0.0))
        assert result.view == CameraView.FRONTAL
        assert result.readiness == S.GETTING_READY
        assert [e.error_type for e in result.errors] == [PostureErrorType.POOR_ALIGNMENT]
        error = result.errors[0]
        assert error.affected_joints == ANKLES
        assert error.severity == 2, "Errors found during setup are reported at reduced severity"
        assert error.description == "Widen your stance to about shoulder width"

    def test_repeat_waits_for_cooldown(self):
        analyzer = _squat_analyzer()
        assert analyzer.analyze(frontal_frame(0.0)).errors
        assert analyzer.analyze(frontal_frame(FRAME_INTERVAL_MS)).errors == ()
        assert analyzer.analyze(frontal_frame(1600.0)).errors

    def _alignment_emissions(self, with_timestamps, frames=100):
        clock = FakeClock()
        analyzer = FormAnalyzer(Settings(), detection_mode=DetectionMode.RULES, clock=clock)
        analyzer.set_current_exercise("squats")
        emitted = 0
        for i in range(frames):
            clock.now = i * FRAME_INTERVAL_MS / 1000
            data = frontal_frame().array
            frame = PoseFrame(data, i * FRAME_INTERVAL_MS) if with_timestamps else PoseFrame(data)
            result = analyzer.analyze(frame)
            emitted += sum(1 for e in result.errors if e.error_type == PostureErrorType.POOR_ALIGNMENT)
        return emitted

    def test_cooldown_expires_without_client_timestamps(self):
        """Frames without a capture time are stamped from the analyzer clock."""
        assert PoseFrame(frontal_frame().array).timestamp_ms is None
        untimed = self._alignment_emissions(with_timestamps=False)
        timed = self._alignment_emissions(with_timestamps=True)
        assert untimed >= 2, f"Alignment reported {untimed} times over 3.3 s"
        assert untimed == timed, f"{untimed} reports without timestamps vs {timed} with"


# ---------------------------------------------------------------------------
# 3. Input quality
# ---------------------------------------------------------------------------

class TestInputQuality:
    def test_invisible_person_gets_neutral_result(self):
        analyzer = _squat_analyzer()
        result = analyzer.analyze(invisible_frame())
        assert result.errors == ()
        assert result.phase == RepetitionPhase.IDLE
        assert result.quality_score == 0
        assert result.readiness == S.NOT_READY
        assert analyzer.get_readiness_message() == "Step back so your whole body is visible"

    def test_dropout_while_exercising_keeps_count(self):
        analyzer = _squat_analyzer()
        _run_trace(analyzer)
        result = analyzer.analyze(invisible_frame(30 * FRAME_INTERVAL_MS))
        assert result.quality_score == 0
        assert result.repetition_count == 1
        assert result.readiness == S.EXERCISING

    def test_jumping_frame_is_rejected(self):
        """A torso jump larger than MAX_FRAME_JUMP between frames is treated as a tracking glitch."""
        analyzer = _squat_analyzer()
        analyzer.analyze(profile_squat_frame(170, 0.0))
        data = profile_squat_frame(170).array
        data[:, 0] += 0.3
        result = analyzer.analyze(PoseFrame(data, FRAME_INTERVAL_MS))
        assert result.quality_score == 0
        assert result.errors == ()
        assert result.readiness == S.GETTING_READY

    def test_without_exercise_result_is_neutral(self):
        analyzer = FormAnalyzer(Settings())
        result = analyzer.analyze(profile_squat_frame(170))
        assert result.readiness == S.NOT_READY
        assert result.repetition_count == 0
        assert analyzer.get_readiness_message() == "Select an exercise to begin"


# ---------------------------------------------------------------------------
# 4. Lifecycle
# ---------------------------------------------------------------------------

class TestLifecycle:
    def test_unknown_exercise_is_rejected(self):
        analyzer = FormAnalyzer(Settings())
        with pytest.raises(UnknownExerciseError):
            analyzer.set_current_exercise("yoga")
        assert analyzer.current_exercise is None

    def test_unknown_detection_mode_is_rejected(self):
        with pytest.raises(ValueError):
            FormAnalyzer(Settings(), detection_mode="magic")

    def test_reset_clears_session(self):
        analyzer = _squat_analyzer()
        _run_trace(analyzer)
        analyzer.reset()
        analyzer.reset()
        stats = analyzer.get_session_stats()
        assert analyzer.current_exercise == ExerciseType.SQUATS
        assert stats["repetitions"] == 0
        assert stats["readiness"] == "not_ready"
        assert stats["frames_processed"] == 0

    def test_trace_repeats_after_reset(self):
        analyzer = _squat_analyzer()
        _run_trace(analyzer)
        analyzer.reset()
        assert _run_trace(analyzer)[-1].repetition_count == 1

    def test_dispose_is_idempotent(self):
        analyzer = _squat_analyzer()
        _run_trace(analyzer)
        analyzer.dispose()
        analyzer.dispose()
        assert analyzer.current_exercise is None
        assert analyzer.get_session_stats()["exercise_type"] is None
        assert analyzer.analyze(profile_squat_frame(170)).readiness == S.NOT_READY

    def test_changing_exercise_starts_fresh(self):
        analyzer = _squat_analyzer()
        _run_trace(analyzer)
        analyzer.set_current_exercise("pushups")
        assert analyzer.get_session_stats()["repetitions"] == 0
        assert analyzer.current_exercise == ExerciseType.PUSHUPS


# ---------------------------------------------------------------------------
# 5. Coaching sessions
# ---------------------------------------------------------------------------

class TestCoachingSessions:
    def test_session_records_repetition(self):
        handler = CoachingSessionHandler()
        session = handler.create_session("user-1", "squats", target_reps=1)
        responses = [handler.process_frame(session.session_id, f) for f in squat_trace_frames()]
        assert responses[-1]["repetition_completed"]
        assert responses[-1]["target_reached"]
        assert session.total_reps == 1
        assert 0 <= session.reps[0].form_score <= 100

    def test_complete_session_summary(self):
        handler = CoachingSessionHandler()
        session = handler.create_session("user-1", "squats", target_reps=2)
        for frame in squat_trace_frames():
            handler.process_frame(session.session_id, frame)
        summary = handler.complete_session(session.session_id)
        assert summary["summary"]["total_reps"] == 1
        assert summary["summary"]["completion_rate"] == 50.0
        assert summary["recommendations"]
        assert handler.get_session(session.session_id) is None

    def test_unknown_session(self):
        handler = CoachingSessionHandler()
        assert handler.process_frame("missing", profile_squat_frame(170)) == {"error": "Session not found"}
        assert handler.complete_session("missing") == {"error": "Session not found"}

    def test_unknown_exercise(self):
        with pytest.raises(UnknownExerciseError):
            CoachingSessionHandler().create_session("user-1", "yoga")

    def test_paused_session_ignores_frames(self):
        handler = CoachingSessionHandler()
        session = handler.create_session("user-1", "squats")
        handler.pause_session(session.session_id)
        response = handler.process_frame(session.session_id, profile_squat_frame(170))
        assert response["status"] == "paused"
        assert handler.resume_session(session.session_id)["status"] == "resumed"
