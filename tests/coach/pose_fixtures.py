"""Synthetic pose frames for the coach tests."""

import math
from typing import Dict, List, Optional, Tuple

from coach_service.models.geometry import JointType, Landmark, PoseFrame

J = JointType
FRAME_INTERVAL_MS = 33.0

# Side-on camera: left and right joints almost on the same image column
PROFILE_SIDE_OFFSET = 0.01


def _pair(
    landmarks: Dict[JointType, Landmark],
    left: JointType,
    right: JointType,
    point: Tuple[float, float],
    visibility: float,
    offset: float = PROFILE_SIDE_OFFSET
):
    x, y = point
    landmarks[left] = Landmark(x, y, 0.0, visibility)
    landmarks[right] = Landmark(x + offset, y, 0.0, visibility)


def profile_squat_frame(
    knee_angle: float,
    timestamp_ms: float = 0.0,
    visibility: float = 0.95,
    torso_lean: float = 0.0,
    heel_lift: float = 0.0
) -> PoseFrame:
    """
    Side view of a squat with vertical shins.

    The thigh is rotated so the knee angle equals ``knee_angle``; with an
    upright torso the hip angle equals it too. ``torso_lean`` tilts the
    trunk forward in degrees from vertical.
    """
    theta = math.radians(knee_angle)
    ankle = (0.5, 0.9)
    knee = (0.5, 0.7)
    hip = (knee[0] - 0.2 * math.sin(theta), knee[1] + 0.2 * math.cos(theta))
    lean = math.radians(torso_lean)
    shoulder = (hip[0] + 0.25 * math.sin(lean), hip[1] - 0.25 * math.cos(lean))
    elbow = (shoulder[0], shoulder[1] + 0.12)
    wrist = (elbow[0] + 0.05, elbow[1] - 0.02)

    landmarks: Dict[JointType, Landmark] = {
        J.NOSE: Landmark(shoulder[0] + 0.03, shoulder[1] - 0.1, 0.0, visibility),
    }
    _pair(landmarks, J.LEFT_SHOULDER, J.RIGHT_SHOULDER, shoulder, visibility)
    _pair(landmarks, J.LEFT_ELBOW, J.RIGHT_ELBOW, elbow, visibility)
    _pair(landmarks, J.LEFT_WRIST, J.RIGHT_WRIST, wrist, visibility)
    _pair(landmarks, J.LEFT_HIP, J.RIGHT_HIP, hip, visibility)
    _pair(landmarks, J.LEFT_KNEE, J.RIGHT_KNEE, knee, visibility)
    _pair(landmarks, J.LEFT_ANKLE, J.RIGHT_ANKLE, ankle, visibility)
    _pair(landmarks, J.LEFT_HEEL, J.RIGHT_HEEL, (0.47, 0.92 - heel_lift), visibility)
    _pair(landmarks, J.LEFT_FOOT_INDEX, J.RIGHT_FOOT_INDEX, (0.56, 0.92), visibility)
    return PoseFrame.from_landmarks(landmarks, timestamp_ms)


def frontal_frame(
    timestamp_ms: float = 0.0,
    shoulder_x: Tuple[float, float] = (0.40, 0.60),
    hip_x: Tuple[float, float] = (0.43, 0.57),
    knee_x: Optional[Tuple[float, float]] = None,
    ankle_x: Tuple[float, float] = (0.46, 0.54),
    visibility: float = 0.95,
    ankle_visibility: Optional[float] = None
) -> PoseFrame:
    """
    Front view of a person standing upright.

    Knees default to the hip-ankle midpoint so both legs are straight.
    """
    if knee_x is None:
        knee_x = ((hip_x[0] + ankle_x[0]) / 2, (hip_x[1] + ankle_x[1]) / 2)
    ankle_vis = visibility if ankle_visibility is None else ankle_visibility

    def put(left: JointType, right: JointType, xs: Tuple[float, float], y: float, vis: float = visibility):
        landmarks[left] = Landmark(xs[0], y, 0.0, vis)
        landmarks[right] = Landmark(xs[1], y, 0.0, vis)

    landmarks: Dict[JointType, Landmark] = {J.NOSE: Landmark(0.5, 0.15, 0.0, visibility)}
    put(J.LEFT_SHOULDER, J.RIGHT_SHOULDER, shoulder_x, 0.25)
    put(J.LEFT_ELBOW, J.RIGHT_ELBOW, shoulder_x, 0.4)
    put(J.LEFT_WRIST, J.RIGHT_WRIST, shoulder_x, 0.55)
    put(J.LEFT_HIP, J.RIGHT_HIP, hip_x, 0.5)
    put(J.LEFT_KNEE, J.RIGHT_KNEE, knee_x, 0.7)
    put(J.LEFT_ANKLE, J.RIGHT_ANKLE, ankle_x, 0.9, ankle_vis)
    put(J.LEFT_HEEL, J.RIGHT_HEEL, ankle_x, 0.93, ankle_vis)
    put(J.LEFT_FOOT_INDEX, J.RIGHT_FOOT_INDEX, ankle_x, 0.93, ankle_vis)
    return PoseFrame.from_landmarks(landmarks, timestamp_ms)


def invisible_frame(timestamp_ms: float = 0.0) -> PoseFrame:
    """Standing pose the estimator barely sees."""
    return profile_squat_frame(170, timestamp_ms, visibility=0.1)


def squat_trace_angles() -> List[float]:
    """Ten standing frames, then one repetition 170 -> 80 -> 170 in 9 degree steps."""
    standing = [170.0] * 10
    down = [161.0 - 9 * k for k in range(10)]
    up = [89.0 + 9 * k for k in range(10)]
    return standing + down + up


def squat_trace_frames() -> List[PoseFrame]:
    return [
        profile_squat_frame(angle, i * FRAME_INTERVAL_MS)
        for i, angle in enumerate(squat_trace_angles())
    ]


def frame_payload(frame: PoseFrame) -> List[Dict[str, float]]:
    """Landmark list as sent by a client."""
    return [
        {"x": lm.x, "y": lm.y, "z": lm.z, "visibility": lm.visibility}
        for _, lm in frame
    ]


class FakeClock:
    """Manually advanced clock in seconds."""

    def __init__(self, now=0.0):
        self.now = now

    def __call__(self):
        return self.now
