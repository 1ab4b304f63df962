"""
FORMCOACH Coach Service - Readiness State Machine

Decides when the person is set up and when the set has started, with
hysteresis in every direction so one noisy frame never flips the state.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Optional

from core.config import settings as default_settings, Settings
from shared.utils import setup_logger

logger = setup_logger("formcoach.readiness")


class ReadinessState(Enum):
    """Readiness of the person to perform the exercise."""
    NOT_READY = "not_ready"
    GETTING_READY = "getting_ready"
    READY_TO_START = "ready_to_start"
    EXERCISING = "exercising"


@dataclass(frozen=True)
class ReadinessObservation:
    """What the state machine needs to know about one frame."""
    visibility_ratio: float
    in_start_position: bool
    tracked_angle: Optional[float] = None
    in_motion_range: bool = True
    stable: bool = True


@dataclass(frozen=True)
class ReadinessTransition:
    """Outcome of one update."""
    previous: ReadinessState
    current: ReadinessState
    reset_repetitions: bool = False

    @property
    def changed(self) -> bool:
        return self.previous != self.current


class ReadinessStateMachine:
    """
    NOT_READY -> GETTING_READY -> READY_TO_START -> EXERCISING.

    - NOT_READY: the starting-position check must pass once.
    - GETTING_READY: needs READY_CONFIRMATION_FRAMES passing frames; more
      than READY_TOLERANCE_FRAMES consecutive failing frames fall back to
      NOT_READY.
    - READY_TO_START: the set begins when the tracked angle moves more than
      START_MOVEMENT_THRESHOLD between consecutive frames (immediately for
      isometric holds). Losing the position is tolerated as above.
    - EXERCISING: only leaves after more than EXERCISING_TOLERANCE_FRAMES
      frames outside the valid motion range, and that resets repetitions.

    Outside EXERCISING a frame below READY_VISIBILITY_RATIO resets to
    NOT_READY at once. While EXERCISING the bar drops to
    EXERCISING_VISIBILITY_RATIO and counts toward the tolerance instead.
    """

    def __init__(self, settings: Optional[Settings] = None, isometric: bool = False):
        self.settings = settings or default_settings
        self.isometric = isometric
        self.state = ReadinessState.NOT_READY
        self.confirmation_frames = 0
        self.bad_frames = 0
        self.out_of_range_frames = 0
        self.last_tracked_angle: Optional[float] = None
        self.last_visibility_ratio = 0.0

    def update(self, observation: ReadinessObservation) -> ReadinessTransition:
        previous = self.state
        reset_repetitions = False
        cfg = self.settings
        self.last_visibility_ratio = observation.visibility_ratio

        if self.state == ReadinessState.EXERCISING:
            usable = (
                observation.stable
                and observation.visibility_ratio >= cfg.EXERCISING_VISIBILITY_RATIO
                and observation.in_motion_range
            )
            self.out_of_range_frames = 0 if usable else self.out_of_range_frames + 1
            if self.out_of_range_frames > cfg.EXERCISING_TOLERANCE_FRAMES:
                self._enter_not_ready()
                reset_repetitions = True

        elif observation.visibility_ratio < cfg.READY_VISIBILITY_RATIO:
            self._enter_not_ready()

        elif self.state == ReadinessState.NOT_READY:
            if observation.stable and observation.in_start_position:
                self.state = ReadinessState.GETTING_READY
                self.confirmation_frames = 1
                self.bad_frames = 0
                if self.confirmation_frames >= cfg.READY_CONFIRMATION_FRAMES:
                    self.state = ReadinessState.READY_TO_START

        elif self.state == ReadinessState.GETTING_READY:
            if observation.stable and observation.in_start_position:
                self.confirmation_frames += 1
                self.bad_frames = 0
                if self.confirmation_frames >= cfg.READY_CONFIRMATION_FRAMES:
                    self.state = ReadinessState.READY_TO_START
            else:
                self._register_bad_frame()

        elif self.state == ReadinessState.READY_TO_START:
            if self._movement_started(observation):
                self.state = ReadinessState.EXERCISING
                self.out_of_range_frames = 0
            elif observation.stable and observation.in_start_position:
                self.bad_frames = 0
            else:
                self._register_bad_frame()

        if observation.tracked_angle is not None:
            self.last_tracked_angle = observation.tracked_angle

        transition = ReadinessTransition(previous, self.state, reset_repetitions)
        if transition.changed:
            logger.info(f"Readiness {previous.value} -> {self.state.value}")
        return transition

    def _movement_started(self, observation: ReadinessObservation) -> bool:
        if not observation.stable:
            return False
        if self.isometric:
            return observation.in_start_position
        if observation.tracked_angle is None or self.last_tracked_angle is None:
            return False
        delta = abs(observation.tracked_angle - self.last_tracked_angle)
        return delta > self.settings.START_MOVEMENT_THRESHOLD

    def _register_bad_frame(self):
        self.bad_frames += 1
        if self.bad_frames > self.settings.READY_TOLERANCE_FRAMES:
            self._enter_not_ready()

    def _enter_not_ready(self):
        self.state = ReadinessState.NOT_READY
        self.confirmation_frames = 0
        self.bad_frames = 0
        self.out_of_range_frames = 0
        self.last_tracked_angle = None

    def reset(self):
        self._enter_not_ready()
        self.last_visibility_ratio = 0.0

    @property
    def is_exercising(self) -> bool:
        return self.state == ReadinessState.EXERCISING

    def get_message(self, setup_hint: str = "Get into the starting position") -> str:
        """Human-readable coaching message for the current state."""
        if self.state == ReadinessState.NOT_READY:
            if self.last_visibility_ratio < self.settings.READY_VISIBILITY_RATIO:
                return "Step back so your whole body is visible"
            return setup_hint
        if self.state == ReadinessState.GETTING_READY:
            return (
                f"Hold that position... "
                f"({self.confirmation_frames}/{self.settings.READY_CONFIRMATION_FRAMES})"
            )
        if self.state == ReadinessState.READY_TO_START:
            if self.isometric:
                return "Ready - hold the position"
            return "Ready - start your first repetition"
        return "Keep going"

    def to_dict(self) -> dict:
        return {
            "state": self.state.value,
            "confirmation_frames": self.confirmation_frames,
            "bad_frames": self.bad_frames,
            "out_of_range_frames": self.out_of_range_frames,
        }
