"""
FORMCOACH Coach Service - Scientific Detectors

Closed-form biomechanical detectors used in scientific mode. Each detector
measures one or more quantities per frame and reports a finding when they
cross their limits. Reliability is the detector's base confidence before
the visibility of the joints involved is taken into account.
"""

import math
from dataclasses import dataclass
from typing import Dict, Optional, Tuple

import numpy as np

from .geometry import (
    AngleMetric,
    JointType,
    SHOULDERS,
    ELBOWS,
    WRISTS,
    HIPS,
    KNEES,
    ANKLES,
    HEELS,
    TORSO_JOINTS,
    ankle_dorsiflexion,
    body_line_deviation,
    chest_to_floor_ratio,
    elbow_shoulder_offset,
    forefoot_shift,
    heel_elevation,
    hip_adduction,
    horizontal_spread,
    knee_ankle_offsets,
    knee_inward_deviation,
    midpoint,
    pelvis_tilt,
    safe_ratio,
    thigh_angle_from_horizontal,
)
from .error_engine import FrameContext
from .exercise_profiles import ExerciseType, PostureErrorType
from .phase_detector import RepetitionPhase
from .view_classifier import CameraView

MOVING_PHASES = (RepetitionPhase.DESCENDING, RepetitionPhase.BOTTOM, RepetitionPhase.ASCENDING)


@dataclass(frozen=True)
class Finding:
    """A detector result before confidence and cooldown are applied."""
    error_type: PostureErrorType
    measurement: float
    description: str
    recommendation: str


class ScientificDetector:
    """Base class: view gate, severity, reliability and affected joints."""

    error_type: PostureErrorType = PostureErrorType.POOR_ALIGNMENT
    view: Optional[CameraView] = None
    severity: int = 5
    reliability: float = 0.9
    joints: Tuple[JointType, ...] = TORSO_JOINTS

    def applies_to(self, view: CameraView) -> bool:
        return self.view is None or self.view == view

    def detect(self, ctx: FrameContext) -> Optional[Finding]:
        raise NotImplementedError


# ═══════════════════════════════════════════════════════════════════════════════
# SQUAT FAMILY
# ═══════════════════════════════════════════════════════════════════════════════

class ButtWinkDetector(ScientificDetector):
    """
    Posterior pelvic tilt at the bottom.

    Needs all three signs together: trunk flexion, a tilted hip line and a
    closed hip angle.
    """

    error_type = PostureErrorType.BUTT_WINK
    view = CameraView.PROFILE
    severity = 8
    reliability = 0.92
    joints = TORSO_JOINTS

    flexion_limit = 40.0  # degrees of trunk flexion past upright
    pelvis_tilt_limit = 20.0
    hip_mobility_limit = 0.8  # hip angle / 120

    def detect(self, ctx: FrameContext) -> Optional[Finding]:
        if ctx.phase != RepetitionPhase.BOTTOM:
            return None
        hip = ctx.angles.metric(AngleMetric.HIP)
        if hip is None:
            return None

        trunk = midpoint(ctx.frame, *SHOULDERS) - midpoint(ctx.frame, *HIPS)
        inclination = abs(math.degrees(math.atan2(trunk[1], trunk[0])))
        lumbar_flexion = max(0.0, 85.0 - min(inclination, 180.0 - inclination))
        tilt = pelvis_tilt(ctx.frame)
        hip_mobility = hip / 120.0

        if (
            lumbar_flexion > self.flexion_limit
            and tilt > self.pelvis_tilt_limit
            and hip_mobility < self.hip_mobility_limit
        ):
            return Finding(
                self.error_type,
                lumbar_flexion,
                f"Lower back is rounding at the bottom ({lumbar_flexion:.0f} deg of flexion, "
                f"pelvis tilted {tilt:.0f} deg)",
                "Stop just above the depth where your pelvis tucks under",
            )
        return None


class HeelRiseDetector(ScientificDetector):
    """
    Heels leaving the floor while loaded.

    Any one sign is enough: heels above the toes, a pointed foot, or the
    trunk drifting out over the toes. The last two need a side view.
    """

    error_type = PostureErrorType.HEEL_RISE
    severity = 7
    reliability = 0.88
    joints = ANKLES + HEELS

    elevation_limit = 0.03
    dorsiflexion_limit = -25.0  # a flat foot reads about -20: the toe marker sits below the ankle
    forward_shift_limit = 0.05

    def detect(self, ctx: FrameContext) -> Optional[Finding]:
        if ctx.phase not in MOVING_PHASES:
            return None
        recommendation = "Shift your weight back toward your heels and improve ankle mobility"

        elevation = heel_elevation(ctx.frame)
        if elevation > self.elevation_limit:
            return Finding(self.error_type, elevation, "Heels are lifting during the squat", recommendation)

        if ctx.view != CameraView.PROFILE:
            return None

        dorsiflexion = ankle_dorsiflexion(ctx.angles)
        if dorsiflexion is not None and dorsiflexion < self.dorsiflexion_limit:
            return Finding(
                self.error_type,
                dorsiflexion,
                f"Ankles are pointing ({dorsiflexion:.0f} deg of dorsiflexion); heels are coming up",
                recommendation,
            )

        shift = forefoot_shift(ctx.frame)
        if shift > self.forward_shift_limit:
            return Finding(
                self.error_type,
                shift,
                "Your weight is drifting onto your toes",
                recommendation,
            )
        return None


class DynamicValgusDetector(ScientificDetector):
    """
    Knees collapsing inward during the movement.

    Fires on any of: knee width well under hip width, thighs angled in
    toward the midline, or a leg bending inward at the knee.
    """

    error_type = PostureErrorType.KNEE_VALGUS
    view = CameraView.FRONTAL
    severity = 9
    reliability = 0.89
    joints = KNEES + HIPS

    projection_limit = 0.7
    adduction_limit = 15.0  # degrees
    knee_deviation_limit = 10.0  # degrees

    def detect(self, ctx: FrameContext) -> Optional[Finding]:
        if ctx.phase not in MOVING_PHASES:
            return None
        recommendation = "Drive your knees out over your toes and strengthen your glutes"

        ratio = safe_ratio(
            horizontal_spread(ctx.frame, *KNEES),
            horizontal_spread(ctx.frame, *HIPS),
            default=1.0,
        )
        if ratio < self.projection_limit:
            return Finding(
                self.error_type,
                ratio,
                f"Dynamic knee valgus: knees at {ratio * 100:.0f}% of hip width",
                recommendation,
            )

        adduction = hip_adduction(ctx.frame)
        if adduction > self.adduction_limit:
            return Finding(
                self.error_type,
                adduction,
                f"Dynamic knee valgus: thighs angled {adduction:.0f} deg toward the midline",
                recommendation,
            )

        deviation = knee_inward_deviation(ctx.frame)
        if deviation > self.knee_deviation_limit:
            return Finding(
                self.error_type,
                deviation,
                f"Dynamic knee valgus: knee bending {deviation:.0f} deg inward",
                recommendation,
            )
        return None


class SquatDepthDetector(ScientificDetector):
    """Thighs still well above parallel at the bottom of the squat."""

    error_type = PostureErrorType.SHALLOW_DEPTH
    view = CameraView.PROFILE
    severity = 6
    reliability = 0.94
    joints = HIPS + KNEES

    parallel_tolerance = 30.0  # degrees above parallel

    def detect(self, ctx: FrameContext) -> Optional[Finding]:
        if ctx.phase != RepetitionPhase.BOTTOM:
            return None
        thigh = thigh_angle_from_horizontal(ctx.frame)
        if thigh > self.parallel_tolerance:
            return Finding(
                self.error_type,
                thigh,
                f"Insufficient depth: thighs {thigh:.0f} deg above parallel",
                "Sit deeper until your hip crease reaches knee height",
            )
        return None


# ═══════════════════════════════════════════════════════════════════════════════
# PUSH-UP / PLANK FAMILY
# ═══════════════════════════════════════════════════════════════════════════════

class BodyLineDetector(ScientificDetector):
    """Hips off the shoulder-ankle line, in either direction."""

    error_type = PostureErrorType.SAGGING_HIPS
    view = CameraView.PROFILE
    severity = 8
    reliability = 0.91
    joints = SHOULDERS + HIPS + ANKLES

    deviation_limit = 0.05

    def detect(self, ctx: FrameContext) -> Optional[Finding]:
        deviation = body_line_deviation(ctx.frame)
        if deviation > self.deviation_limit:
            return Finding(
                PostureErrorType.SAGGING_HIPS,
                deviation,
                "Hips are dropping below the shoulder-ankle line",
                "Brace your core and squeeze your glutes to lift your hips",
            )
        if deviation < -self.deviation_limit:
            return Finding(
                PostureErrorType.RAISED_HIPS,
                deviation,
                "Hips are raised above the shoulder-ankle line",
                "Lower your hips until your body is straight",
            )
        return None


class PushupDepthDetector(ScientificDetector):
    """Chest staying high at the bottom of the push-up."""

    error_type = PostureErrorType.PARTIAL_ROM
    view = CameraView.PROFILE
    severity = 5
    reliability = 0.87
    joints = SHOULDERS + ELBOWS + WRISTS

    chest_ratio_limit = 0.08

    def detect(self, ctx: FrameContext) -> Optional[Finding]:
        if ctx.phase != RepetitionPhase.BOTTOM:
            return None
        ratio = chest_to_floor_ratio(ctx.frame)
        if ratio > self.chest_ratio_limit:
            return Finding(
                self.error_type,
                ratio,
                "Chest is not getting close to the floor",
                "Lower until your chest is a fist's height from the floor",
            )
        return None


class ElbowStackDetector(ScientificDetector):
    """Elbows not stacked under the shoulders in the plank."""

    error_type = PostureErrorType.POOR_ALIGNMENT
    view = CameraView.PROFILE
    severity = 5
    reliability = 0.89
    joints = ELBOWS + SHOULDERS

    offset_limit = 0.05

    def detect(self, ctx: FrameContext) -> Optional[Finding]:
        offset = elbow_shoulder_offset(ctx.frame)
        if offset > self.offset_limit:
            return Finding(
                self.error_type,
                offset,
                "Elbows are out of line with your shoulders",
                "Place your elbows directly beneath your shoulders",
            )
        return None


# ═══════════════════════════════════════════════════════════════════════════════
# LUNGE FAMILY
# ═══════════════════════════════════════════════════════════════════════════════

class KneeTravelDetector(ScientificDetector):
    """Front knee travelling past the ankle."""

    error_type = PostureErrorType.POOR_ALIGNMENT
    view = CameraView.PROFILE
    severity = 7
    reliability = 0.86
    joints = KNEES + ANKLES

    travel_limit = 0.05

    def detect(self, ctx: FrameContext) -> Optional[Finding]:
        if ctx.phase not in MOVING_PHASES:
            return None
        # The rear shin is always inclined, so the front leg is the smaller offset
        travel = min(knee_ankle_offsets(ctx.frame))
        if travel > self.travel_limit:
            return Finding(
                self.error_type,
                travel,
                "Front knee is travelling too far past your ankle",
                "Take a longer step so your front shin stays vertical",
            )
        return None


# ═══════════════════════════════════════════════════════════════════════════════
# CURL FAMILY
# ═══════════════════════════════════════════════════════════════════════════════

class CurlTempoDetector(ScientificDetector):
    """Elbow angle changing faster than a controlled tempo allows."""

    error_type = PostureErrorType.EXCESSIVE_SPEED
    severity = 6
    reliability = 0.83
    joints = ELBOWS + WRISTS

    speed_limit = 3.0  # rad/s

    def detect(self, ctx: FrameContext) -> Optional[Finding]:
        speed = ctx.angular_speed
        if speed is not None and speed > self.speed_limit:
            return Finding(
                self.error_type,
                speed,
                f"Curling too fast ({speed:.1f} rad/s)",
                "Take about two seconds up and two seconds down",
            )
        return None


class ElbowDriftDetector(ScientificDetector):
    """Elbows moving around instead of staying pinned."""

    error_type = PostureErrorType.POOR_ALIGNMENT
    severity = 5
    reliability = 0.91
    joints = ELBOWS + SHOULDERS

    drift_limit = 0.03

    def detect(self, ctx: FrameContext) -> Optional[Finding]:
        if ctx.previous_frame is None:
            return None
        drift = max(
            float(np.linalg.norm(ctx.frame.point(elbow) - ctx.previous_frame.point(elbow)))
            for elbow in ELBOWS
        )
        if drift > self.drift_limit:
            return Finding(
                self.error_type,
                drift,
                "Elbows are moving during the curl",
                "Keep your upper arms still against your torso",
            )
        return None


SCIENTIFIC_DETECTORS: Dict[ExerciseType, Tuple[ScientificDetector, ...]] = {
    ExerciseType.SQUATS: (
        ButtWinkDetector(), HeelRiseDetector(), DynamicValgusDetector(), SquatDepthDetector(),
    ),
    ExerciseType.PUSHUPS: (BodyLineDetector(), PushupDepthDetector()),
    ExerciseType.LUNGES: (KneeTravelDetector(),),
    ExerciseType.PLANK: (BodyLineDetector(), ElbowStackDetector()),
    ExerciseType.BICEP_CURLS: (CurlTempoDetector(), ElbowDriftDetector()),
    ExerciseType.DEADLIFT: (),
    ExerciseType.BENCH_PRESS: (),
    ExerciseType.SHOULDER_PRESS: (),
}
