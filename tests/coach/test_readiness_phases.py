#!/usr/bin/env python3
"""Readiness hysteresis, phase classification, phase smoothing and repetition counting."""

import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).resolve().parent.parent.parent))
sys.path.insert(0, str(Path(__file__).resolve().parent))

from core.config import Settings
from coach_service.models.geometry import AngleMetric, AngleName, AngleSet, JointType, PoseFrame
from coach_service.models.readiness import ReadinessObservation, ReadinessState, ReadinessStateMachine
from coach_service.models.phase_detector import (
    IsometricPhaseClassifier,
    PhaseClassifier,
    PhaseSmoother,
    RepetitionCounter,
    RepetitionPhase,
)
from coach_service.models.exercise_strategy import build_strategy
from pose_fixtures import profile_squat_frame

P = RepetitionPhase
S = ReadinessState


def _good(angle=170.0):
    return ReadinessObservation(visibility_ratio=1.0, in_start_position=True, tracked_angle=angle)


def _bad(angle=170.0):
    return ReadinessObservation(visibility_ratio=1.0, in_start_position=False, tracked_angle=angle)


def _ready_machine(isometric=False):
    machine = ReadinessStateMachine(Settings(), isometric=isometric)
    for _ in range(machine.settings.READY_CONFIRMATION_FRAMES):
        machine.update(_good())
    assert machine.state == S.READY_TO_START
    return machine


def _exercising_machine():
    machine = _ready_machine()
    machine.update(_good(160.0))
    assert machine.state == S.EXERCISING
    return machine


# ---------------------------------------------------------------------------
# 1. Readiness state machine
# ---------------------------------------------------------------------------

class TestReadiness:
    def test_confirmation_frames(self):
        """READY_TO_START needs eight consecutive start-position frames."""
        machine = ReadinessStateMachine(Settings())
        states = [machine.update(_good()).current for _ in range(8)]
        assert states[0] == S.GETTING_READY
        assert states[6] == S.GETTING_READY
        assert states[7] == S.READY_TO_START

    def test_getting_ready_tolerates_bad_frames(self):
        machine = ReadinessStateMachine(Settings())
        machine.update(_good())
        for i in range(20):
            machine.update(_bad())
            assert machine.state == S.GETTING_READY, f"Dropped out after {i + 1} bad frames"
        machine.update(_bad())
        assert machine.state == S.NOT_READY

    def test_good_frame_resets_bad_count(self):
        machine = ReadinessStateMachine(Settings())
        machine.update(_good())
        for _ in range(15):
            machine.update(_bad())
        machine.update(_good())
        for _ in range(15):
            machine.update(_bad())
        assert machine.state == S.GETTING_READY

    def test_low_visibility_resets_immediately(self):
        machine = _ready_machine()
        transition = machine.update(ReadinessObservation(visibility_ratio=0.5, in_start_position=True))
        assert transition.current == S.NOT_READY
        assert transition.changed
        assert machine.get_message() == "Step back so your whole body is visible"

    def test_small_movement_does_not_start(self):
        machine = _ready_machine()
        machine.update(_good(174.0))
        assert machine.state == S.READY_TO_START

    def test_movement_starts_exercise(self):
        machine = _ready_machine()
        transition = machine.update(_good(162.0))
        assert transition.current == S.EXERCISING
        assert not transition.reset_repetitions

    def test_exercising_tolerates_out_of_range_frames(self):
        """Leaving the exercise takes more than 90 unusable frames and resets repetitions."""
        machine = _exercising_machine()
        out = ReadinessObservation(visibility_ratio=1.0, in_start_position=False, tracked_angle=20.0, in_motion_range=False)
        for _ in range(90):
            assert not machine.update(out).reset_repetitions
        assert machine.state == S.EXERCISING
        transition = machine.update(out)
        assert transition.current == S.NOT_READY
        assert transition.reset_repetitions

    def test_exercising_survives_lower_visibility(self):
        machine = _exercising_machine()
        machine.update(ReadinessObservation(visibility_ratio=0.7, in_start_position=False, tracked_angle=120.0))
        assert machine.state == S.EXERCISING
        assert machine.out_of_range_frames == 0

    def test_isometric_starts_in_position(self):
        machine = _ready_machine(isometric=True)
        machine.update(_good())
        assert machine.state == S.EXERCISING

    def test_reset_returns_to_not_ready(self):
        machine = _exercising_machine()
        machine.reset()
        assert machine.state == S.NOT_READY
        assert machine.to_dict()["confirmation_frames"] == 0

    def test_messages(self):
        machine = ReadinessStateMachine(Settings())
        machine.update(_good())
        assert machine.get_message().startswith("Hold that position")
        assert _ready_machine().get_message() == "Ready - start your first repetition"
        assert _ready_machine(isometric=True).get_message() == "Ready - hold the position"


# ---------------------------------------------------------------------------
# 2. Phase classification
# ---------------------------------------------------------------------------

class TestPhaseClassifier:
    def test_thresholds(self):
        classifier = PhaseClassifier(AngleMetric.KNEE, 150, 100)
        assert classifier.classify(160) == P.TOP
        assert classifier.classify(90) == P.BOTTOM
        assert classifier.classify(None) == P.IDLE

    def test_direction_between_thresholds(self):
        classifier = PhaseClassifier(AngleMetric.KNEE, 150, 100)
        assert classifier.classify(120, previous_angle=130) == P.DESCENDING
        assert classifier.classify(120, previous_angle=110) == P.ASCENDING
        assert classifier.classify(120) == P.DESCENDING

    def test_reversed_thresholds(self):
        """When the angle opens during the work (pressing), top sits below bottom."""
        classifier = PhaseClassifier(AngleMetric.ELBOW, 90, 160)
        assert classifier.classify(80) == P.TOP
        assert classifier.classify(170) == P.BOTTOM
        assert classifier.classify(120, previous_angle=100) == P.DESCENDING
        assert classifier.classify(120, previous_angle=140) == P.ASCENDING

    def test_isometric_is_always_working(self):
        classifier = IsometricPhaseClassifier(AngleMetric.HIP, 170, 150)
        assert classifier.classify(175) == P.BOTTOM
        assert classifier.classify(None) == P.IDLE

    def test_more_visible_side_wins(self):
        frame = profile_squat_frame(120)
        data = frame.array
        data[JointType.RIGHT_KNEE.value, 3] = 0.6
        frame = PoseFrame(data)
        angles = AngleSet({AngleName.LEFT_KNEE: 100.0, AngleName.RIGHT_KNEE: 140.0})
        classifier = PhaseClassifier(AngleMetric.KNEE, 150, 100)
        assert classifier.primary_angle(angles, frame) == 100.0
        assert classifier.primary_angle(angles) == 120.0

    def test_strategy_classifies_curl_from_elbows(self):
        strategy = build_strategy("bicep_curls")
        angles = AngleSet({AngleName.LEFT_ELBOW: 40.0, AngleName.RIGHT_ELBOW: 40.0})
        assert strategy.classify_phase(angles) == P.BOTTOM


# ---------------------------------------------------------------------------
# 3. Smoothing and counting
# ---------------------------------------------------------------------------

class TestPhaseSmoother:
    def test_majority_vote(self):
        smoother = PhaseSmoother(5)
        outputs = [smoother.push(p) for p in (P.TOP, P.TOP, P.DESCENDING, P.DESCENDING, P.DESCENDING)]
        assert outputs == [P.TOP, P.TOP, P.TOP, P.TOP, P.DESCENDING]

    def test_single_glitch_is_filtered(self):
        smoother = PhaseSmoother(5)
        for _ in range(5):
            smoother.push(P.BOTTOM)
        assert smoother.push(P.TOP) == P.BOTTOM

    def test_reset(self):
        smoother = PhaseSmoother(5)
        smoother.push(P.TOP)
        smoother.reset()
        assert len(smoother) == 0


class TestRepetitionCounter:
    def test_full_cycle_counts_once(self):
        counter = RepetitionCounter()
        completed = [counter.update(p) for p in (P.TOP, P.DESCENDING, P.BOTTOM, P.ASCENDING, P.TOP)]
        assert completed == [False, False, False, False, True]
        assert counter.count == 1

    def test_top_without_bottom_does_not_count(self):
        counter = RepetitionCounter()
        for p in (P.TOP, P.DESCENDING, P.ASCENDING, P.TOP):
            counter.update(p)
        assert counter.count == 0

    def test_repeated_phase_is_ignored(self):
        counter = RepetitionCounter()
        for p in (P.TOP, P.DESCENDING, P.BOTTOM, P.BOTTOM, P.BOTTOM, P.ASCENDING, P.TOP, P.TOP):
            counter.update(p)
        assert counter.count == 1
        assert counter.bottom_count == 1

    def test_count_never_exceeds_bottom_visits(self):
        counter = RepetitionCounter()
        for _ in range(3):
            for p in (P.DESCENDING, P.BOTTOM, P.ASCENDING, P.TOP, P.ASCENDING, P.TOP):
                counter.update(p)
        assert counter.count == 3
        assert counter.count <= counter.bottom_count

    def test_reset(self):
        counter = RepetitionCounter()
        for p in (P.TOP, P.DESCENDING, P.BOTTOM, P.ASCENDING, P.TOP):
            counter.update(p)
        counter.reset()
        assert counter.count == 0
        assert counter.last_phase == P.IDLE
