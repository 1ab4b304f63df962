"""
FORMCOACH Coach Service - Pose Geometry

Joint and angle enumerations, the fixed-schema pose frame, and the angle and
spatial helpers every analysis stage builds on. All functions here are total:
degenerate geometry resolves to a sentinel value instead of NaN or an exception.
"""

import math
import numpy as np
from dataclasses import dataclass
from typing import Dict, Iterable, Iterator, List, Mapping, Optional, Sequence, Tuple, Union
from enum import Enum


# ═══════════════════════════════════════════════════════════════════════════════
# ENUMS AND DATA CLASSES
# ═══════════════════════════════════════════════════════════════════════════════

class JointType(Enum):
    """Body joint indices of the 33-point pose schema."""
    NOSE = 0
    LEFT_EYE_INNER = 1
    LEFT_EYE = 2
    LEFT_EYE_OUTER = 3
    RIGHT_EYE_INNER = 4
    RIGHT_EYE = 5
    RIGHT_EYE_OUTER = 6
    LEFT_EAR = 7
    RIGHT_EAR = 8
    MOUTH_LEFT = 9
    MOUTH_RIGHT = 10
    LEFT_SHOULDER = 11
    RIGHT_SHOULDER = 12
    LEFT_ELBOW = 13
    RIGHT_ELBOW = 14
    LEFT_WRIST = 15
    RIGHT_WRIST = 16
    LEFT_PINKY = 17
    RIGHT_PINKY = 18
    LEFT_INDEX = 19
    RIGHT_INDEX = 20
    LEFT_THUMB = 21
    RIGHT_THUMB = 22
    LEFT_HIP = 23
    RIGHT_HIP = 24
    LEFT_KNEE = 25
    RIGHT_KNEE = 26
    LEFT_ANKLE = 27
    RIGHT_ANKLE = 28
    LEFT_HEEL = 29
    RIGHT_HEEL = 30
    LEFT_FOOT_INDEX = 31
    RIGHT_FOOT_INDEX = 32

    @property
    def mirrored(self) -> "JointType":
        """The same joint on the opposite side of the body."""
        if self.name.startswith("LEFT_"):
            return JointType[self.name.replace("LEFT_", "RIGHT_", 1)]
        if self.name.startswith("RIGHT_"):
            return JointType[self.name.replace("RIGHT_", "LEFT_", 1)]
        if self.name.endswith("_LEFT"):
            return JointType[self.name[:-5] + "_RIGHT"]
        if self.name.endswith("_RIGHT"):
            return JointType[self.name[:-6] + "_LEFT"]
        return self


NUM_JOINTS = len(JointType)

SHOULDERS = (JointType.LEFT_SHOULDER, JointType.RIGHT_SHOULDER)
ELBOWS = (JointType.LEFT_ELBOW, JointType.RIGHT_ELBOW)
WRISTS = (JointType.LEFT_WRIST, JointType.RIGHT_WRIST)
HIPS = (JointType.LEFT_HIP, JointType.RIGHT_HIP)
KNEES = (JointType.LEFT_KNEE, JointType.RIGHT_KNEE)
ANKLES = (JointType.LEFT_ANKLE, JointType.RIGHT_ANKLE)
HEELS = (JointType.LEFT_HEEL, JointType.RIGHT_HEEL)
FOOT_INDICES = (JointType.LEFT_FOOT_INDEX, JointType.RIGHT_FOOT_INDEX)

# Joints whose visibility decides whether a frame shows the whole body
BODY_JOINTS = SHOULDERS + HIPS + KNEES + ANKLES
TORSO_JOINTS = SHOULDERS + HIPS


class AngleName(Enum):
    """Named angles of an AngleSet."""
    LEFT_SHOULDER = "left_shoulder_angle"
    RIGHT_SHOULDER = "right_shoulder_angle"
    LEFT_ELBOW = "left_elbow_angle"
    RIGHT_ELBOW = "right_elbow_angle"
    LEFT_HIP = "left_hip_angle"
    RIGHT_HIP = "right_hip_angle"
    LEFT_KNEE = "left_knee_angle"
    RIGHT_KNEE = "right_knee_angle"
    LEFT_ANKLE = "left_ankle_angle"
    RIGHT_ANKLE = "right_ankle_angle"
    SPINE = "spine_angle"
    NECK = "neck_angle"
    SHOULDER_SYMMETRY = "shoulder_symmetry"
    HIP_SYMMETRY = "hip_symmetry"
    KNEE_SYMMETRY = "knee_symmetry"


class AngleMetric(Enum):
    """Body-level angle used by thresholds, bilateral angles averaged."""
    SHOULDER = "shoulder"
    ELBOW = "elbow"
    HIP = "hip"
    KNEE = "knee"
    ANKLE = "ankle"
    SPINE = "spine"
    NECK = "neck"


# (left angle, right angle) for each metric; single-entry tuples are axial
METRIC_ANGLES: Dict[AngleMetric, Tuple[AngleName, ...]] = {
    AngleMetric.SHOULDER: (AngleName.LEFT_SHOULDER, AngleName.RIGHT_SHOULDER),
    AngleMetric.ELBOW: (AngleName.LEFT_ELBOW, AngleName.RIGHT_ELBOW),
    AngleMetric.HIP: (AngleName.LEFT_HIP, AngleName.RIGHT_HIP),
    AngleMetric.KNEE: (AngleName.LEFT_KNEE, AngleName.RIGHT_KNEE),
    AngleMetric.ANKLE: (AngleName.LEFT_ANKLE, AngleName.RIGHT_ANKLE),
    AngleMetric.SPINE: (AngleName.SPINE,),
    AngleMetric.NECK: (AngleName.NECK,),
}

# Vertex joint of each bilateral metric, used for side preference
METRIC_JOINTS: Dict[AngleMetric, Tuple[JointType, JointType]] = {
    AngleMetric.SHOULDER: SHOULDERS,
    AngleMetric.ELBOW: ELBOWS,
    AngleMetric.HIP: HIPS,
    AngleMetric.KNEE: KNEES,
    AngleMetric.ANKLE: ANKLES,
}

# (first, vertex, third) joints of each three-point angle
ANGLE_DEFINITIONS: Dict[AngleName, Tuple[JointType, JointType, JointType]] = {
    AngleName.LEFT_SHOULDER: (JointType.LEFT_ELBOW, JointType.LEFT_SHOULDER, JointType.LEFT_HIP),
    AngleName.RIGHT_SHOULDER: (JointType.RIGHT_ELBOW, JointType.RIGHT_SHOULDER, JointType.RIGHT_HIP),
    AngleName.LEFT_ELBOW: (JointType.LEFT_WRIST, JointType.LEFT_ELBOW, JointType.LEFT_SHOULDER),
    AngleName.RIGHT_ELBOW: (JointType.RIGHT_WRIST, JointType.RIGHT_ELBOW, JointType.RIGHT_SHOULDER),
    AngleName.LEFT_HIP: (JointType.LEFT_KNEE, JointType.LEFT_HIP, JointType.LEFT_SHOULDER),
    AngleName.RIGHT_HIP: (JointType.RIGHT_KNEE, JointType.RIGHT_HIP, JointType.RIGHT_SHOULDER),
    AngleName.LEFT_KNEE: (JointType.LEFT_ANKLE, JointType.LEFT_KNEE, JointType.LEFT_HIP),
    AngleName.RIGHT_KNEE: (JointType.RIGHT_ANKLE, JointType.RIGHT_KNEE, JointType.RIGHT_HIP),
    AngleName.LEFT_ANKLE: (JointType.LEFT_KNEE, JointType.LEFT_ANKLE, JointType.LEFT_FOOT_INDEX),
    AngleName.RIGHT_ANKLE: (JointType.RIGHT_KNEE, JointType.RIGHT_ANKLE, JointType.RIGHT_FOOT_INDEX),
}


@dataclass(frozen=True)
class Landmark:
    """A single pose landmark with normalized coordinates and visibility."""
    x: float
    y: float
    z: float = 0.0
    visibility: float = 0.0

    def to_numpy(self) -> np.ndarray:
        return np.array([self.x, self.y, self.z])

    def is_visible(self, threshold: float) -> bool:
        return self.visibility > threshold


JointKey = Union[JointType, int]


class PoseFrame:
    """
    One estimated pose: all 33 joints, always present.

    Backed by a (33, 4) array of x, y, z, visibility. Joints the estimator did
    not detect are zero-valued with zero visibility. The capture timestamp is
    None when the client did not send one.
    """

    __slots__ = ("_data", "timestamp_ms")

    def __init__(self, data: np.ndarray, timestamp_ms: Optional[float] = None):
        data = np.asarray(data, dtype=float)
        if data.shape != (NUM_JOINTS, 4):
            raise ValueError(f"PoseFrame expects shape ({NUM_JOINTS}, 4), got {data.shape}")
        self._data = np.nan_to_num(data, nan=0.0, posinf=0.0, neginf=0.0)
        self._data[:, 3] = np.clip(self._data[:, 3], 0.0, 1.0)
        self.timestamp_ms = None if timestamp_ms is None else float(timestamp_ms)

    @classmethod
    def empty(cls, timestamp_ms: Optional[float] = None) -> "PoseFrame":
        return cls(np.zeros((NUM_JOINTS, 4)), timestamp_ms)

    @classmethod
    def from_landmarks(
        cls,
        landmarks: Union[Mapping[JointKey, Landmark], Sequence[Landmark]],
        timestamp_ms: Optional[float] = None
    ) -> "PoseFrame":
        """
        Build a frame from a joint->landmark mapping or an ordered landmark list.

        Missing joints stay zero-valued and invisible; extra list entries are ignored.
        """
        data = np.zeros((NUM_JOINTS, 4))
        if isinstance(landmarks, Mapping):
            items = landmarks.items()
        else:
            items = enumerate(landmarks[:NUM_JOINTS])
        for key, lm in items:
            idx = key.value if isinstance(key, JointType) else int(key)
            if 0 <= idx < NUM_JOINTS:
                data[idx] = (lm.x, lm.y, lm.z, lm.visibility)
        return cls(data, timestamp_ms)

    def __getitem__(self, joint: JointKey) -> Landmark:
        idx = joint.value if isinstance(joint, JointType) else int(joint)
        x, y, z, v = self._data[idx]
        return Landmark(float(x), float(y), float(z), float(v))

    def __iter__(self) -> Iterator[Tuple[JointType, Landmark]]:
        for joint in JointType:
            yield joint, self[joint]

    @property
    def array(self) -> np.ndarray:
        return self._data.copy()

    def point(self, joint: JointType) -> np.ndarray:
        """2D image-plane position (x, y)."""
        return self._data[joint.value, :2].copy()

    def visibility(self, joint: JointType) -> float:
        return float(self._data[joint.value, 3])

    def mirrored(self) -> "PoseFrame":
        """Same pose with left and right joint labels exchanged."""
        order = [joint.mirrored.value for joint in JointType]
        return PoseFrame(self._data[order], self.timestamp_ms)

    def to_dict(self) -> Dict[str, object]:
        return {
            "timestamp_ms": self.timestamp_ms,
            "landmarks": [
                {
                    "id": joint.value,
                    "name": joint.name,
                    "x": lm.x,
                    "y": lm.y,
                    "z": lm.z,
                    "visibility": lm.visibility
                }
                for joint, lm in self
            ]
        }


class AngleSet:
    """
    Sparse mapping of named angles in degrees.

    Keys may be given as AngleName or their string values. None and
    non-finite values are dropped, so a missing key means "not measured".
    """

    def __init__(self, values: Optional[Mapping[Union[AngleName, str], Optional[float]]] = None):
        self._values: Dict[AngleName, float] = {}
        for key, value in (values or {}).items():
            if value is None:
                continue
            value = float(value)
            if not math.isfinite(value):
                continue
            self._values[AngleName(key) if not isinstance(key, AngleName) else key] = value

    def get(self, name: AngleName, default: Optional[float] = None) -> Optional[float]:
        return self._values.get(name, default)

    def metric(self, metric: AngleMetric) -> Optional[float]:
        """Mean of the available sides of a body-level metric."""
        present = [self._values[n] for n in METRIC_ANGLES[metric] if n in self._values]
        if not present:
            return None
        return sum(present) / len(present)

    def items(self):
        return self._values.items()

    def __contains__(self, name: AngleName) -> bool:
        return name in self._values

    def __iter__(self) -> Iterator[AngleName]:
        return iter(self._values)

    def __len__(self) -> int:
        return len(self._values)

    def to_dict(self) -> Dict[str, float]:
        return {name.value: round(value, 1) for name, value in self._values.items()}


# ═══════════════════════════════════════════════════════════════════════════════
# ANGLE CALCULATIONS
# ═══════════════════════════════════════════════════════════════════════════════

def angle_at(a: np.ndarray, vertex: np.ndarray, c: np.ndarray) -> float:
    """
    Calculate the angle at ``vertex`` formed by points a-vertex-c.

    Args:
        a, vertex, c: points as numpy arrays (2D or 3D)

    Returns:
        Angle in degrees (0-180), 0 when either ray has zero length
    """
    ba = np.asarray(a, dtype=float) - np.asarray(vertex, dtype=float)
    bc = np.asarray(c, dtype=float) - np.asarray(vertex, dtype=float)

    norm_product = np.linalg.norm(ba) * np.linalg.norm(bc)
    if norm_product < 1e-12:
        return 0.0

    cosine_angle = np.clip(np.dot(ba, bc) / norm_product, -1.0, 1.0)
    return float(np.degrees(np.arccos(cosine_angle)))


def _angle_from_vertical(upper: np.ndarray, lower: np.ndarray) -> float:
    """Segment inclination where 90 is vertical and 0 is horizontal."""
    dx = upper[0] - lower[0]
    dy = upper[1] - lower[1]
    return float(90.0 - math.degrees(math.atan2(abs(dx), abs(dy))))


def midpoint(frame: PoseFrame, a: JointType, b: JointType) -> np.ndarray:
    return (frame.point(a) + frame.point(b)) / 2


def spine_angle(frame: PoseFrame) -> float:
    """Trunk inclination from the hip midpoint to the shoulder midpoint; 90 = upright."""
    return _angle_from_vertical(midpoint(frame, *SHOULDERS), midpoint(frame, *HIPS))


def neck_angle(frame: PoseFrame) -> float:
    """Head inclination from the shoulder midpoint to the nose; 90 = upright."""
    return _angle_from_vertical(frame.point(JointType.NOSE), midpoint(frame, *SHOULDERS))


def symmetry(left: float, right: float) -> float:
    """Absolute left/right difference."""
    return abs(left - right)


def compute_angle_set(frame: PoseFrame, min_visibility: float = 0.0) -> AngleSet:
    """
    Derive the standard AngleSet from a pose frame.

    An angle is left out when any joint it depends on has visibility below
    ``min_visibility``. Symmetry entries are vertical offsets in percent of
    frame height.
    """
    def visible(*joints: JointType) -> bool:
        return all(frame.visibility(j) >= min_visibility for j in joints)

    values: Dict[AngleName, float] = {}
    for name, (first, vertex, third) in ANGLE_DEFINITIONS.items():
        if visible(first, vertex, third):
            values[name] = angle_at(frame.point(first), frame.point(vertex), frame.point(third))

    if visible(*TORSO_JOINTS):
        values[AngleName.SPINE] = spine_angle(frame)
    if visible(JointType.NOSE, *SHOULDERS):
        values[AngleName.NECK] = neck_angle(frame)

    for name, (left, right) in (
        (AngleName.SHOULDER_SYMMETRY, SHOULDERS),
        (AngleName.HIP_SYMMETRY, HIPS),
        (AngleName.KNEE_SYMMETRY, KNEES),
    ):
        if visible(left, right):
            values[name] = symmetry(frame[left].y, frame[right].y) * 100

    return AngleSet(values)


# ═══════════════════════════════════════════════════════════════════════════════
# SPATIAL QUANTITIES
# ═══════════════════════════════════════════════════════════════════════════════

def safe_ratio(numerator: float, denominator: float, default: float = 0.0) -> float:
    if abs(denominator) < 1e-9:
        return default
    return numerator / denominator


def horizontal_spread(frame: PoseFrame, a: JointType, b: JointType) -> float:
    return abs(frame[a].x - frame[b].x)


def mean_visibility(frame: PoseFrame, joints: Iterable[JointType]) -> float:
    joints = list(joints)
    if not joints:
        return 0.0
    return float(np.mean([frame.visibility(j) for j in joints]))


def visibility_ratio(frame: PoseFrame, joints: Iterable[JointType], threshold: float) -> float:
    """Fraction of ``joints`` whose visibility exceeds ``threshold``."""
    joints = list(joints)
    if not joints:
        return 0.0
    return sum(1 for j in joints if frame.visibility(j) > threshold) / len(joints)


def landmark_displacement(frame: PoseFrame, previous: PoseFrame, joint: JointType) -> float:
    """Image-plane (x, y) movement of a joint between two frames."""
    return float(np.linalg.norm(frame.point(joint) - previous.point(joint)))


def mean_displacement(
    frame: PoseFrame,
    previous: PoseFrame,
    joints: Iterable[JointType],
    min_visibility: float = 0.0
) -> Optional[float]:
    """Average movement of the joints visible in both frames, None when none qualify."""
    moves = [
        landmark_displacement(frame, previous, j)
        for j in joints
        if frame.visibility(j) > min_visibility and previous.visibility(j) > min_visibility
    ]
    if not moves:
        return None
    return float(np.mean(moves))


def thigh_angle_from_horizontal(frame: PoseFrame) -> float:
    """Mean thigh inclination over both legs; 0 means thighs parallel to the floor."""
    angles = []
    for hip, knee in zip(HIPS, KNEES):
        dx = frame[knee].x - frame[hip].x
        dy = frame[knee].y - frame[hip].y
        angles.append(math.degrees(math.atan2(abs(dy), abs(dx))))
    return float(np.mean(angles))


def body_line_deviation(frame: PoseFrame) -> float:
    """
    Vertical offset of the hips from the shoulder-ankle line.

    Positive when the hips sit below the line (sagging, image y grows
    downwards), negative when they are raised above it.
    """
    shoulder = midpoint(frame, *SHOULDERS)
    hip = midpoint(frame, *HIPS)
    ankle = midpoint(frame, *ANKLES)

    t = safe_ratio(hip[0] - shoulder[0], ankle[0] - shoulder[0], default=0.5)
    expected_y = shoulder[1] + t * (ankle[1] - shoulder[1])
    return float(hip[1] - expected_y)


def chest_to_floor_ratio(frame: PoseFrame) -> float:
    """Chest height above the lowest support point, relative to body length."""
    chest = midpoint(frame, *SHOULDERS)
    ankle = midpoint(frame, *ANKLES)
    floor_y = max(frame[j].y for j in WRISTS + ANKLES)
    body_length = float(np.linalg.norm(chest - ankle))
    return safe_ratio(floor_y - chest[1], body_length)


def knee_ankle_offsets(frame: PoseFrame) -> Tuple[float, float]:
    """Horizontal knee-to-ankle distance of the left and right leg."""
    left, right = (abs(frame[knee].x - frame[ankle].x) for knee, ankle in zip(KNEES, ANKLES))
    return left, right


def elbow_shoulder_offset(frame: PoseFrame) -> float:
    """Largest horizontal offset between an elbow and the shoulder above it."""
    return max(abs(frame[elbow].x - frame[shoulder].x) for elbow, shoulder in zip(ELBOWS, SHOULDERS))


def heel_elevation(frame: PoseFrame) -> float:
    """Largest heel lift above the toes of either foot."""
    return max(frame[toe].y - frame[heel].y for heel, toe in zip(HEELS, FOOT_INDICES))


def ankle_dorsiflexion(angles: AngleSet) -> Optional[float]:
    """Mean of 90 minus the knee-ankle-toe angle; negative values mean the foot points down."""
    present = [angles.get(name) for name in METRIC_ANGLES[AngleMetric.ANKLE]]
    present = [a for a in present if a is not None]
    if not present:
        return None
    return float(np.mean([90.0 - a for a in present]))


def forefoot_shift(frame: PoseFrame) -> float:
    """
    Horizontal distance the trunk centre sits past the toes, seen from the side.

    Measured in the direction the feet point (heel to toe). Zero when the
    feet point at the camera.
    """
    toe_x = float(np.mean([frame[j].x for j in FOOT_INDICES]))
    heel_x = float(np.mean([frame[j].x for j in HEELS]))
    if abs(toe_x - heel_x) < 1e-3:
        return 0.0
    direction = 1.0 if toe_x > heel_x else -1.0
    centre_x = (midpoint(frame, *SHOULDERS)[0] + midpoint(frame, *HIPS)[0]) / 2
    return float((centre_x - toe_x) * direction)


def pelvis_tilt(frame: PoseFrame) -> float:
    """Inclination of the hip line from horizontal, 0-90 degrees."""
    left, right = frame.point(JointType.LEFT_HIP), frame.point(JointType.RIGHT_HIP)
    return math.degrees(math.atan2(abs(right[1] - left[1]), abs(right[0] - left[0])))


def _medial_sign(frame: PoseFrame, hip: JointType) -> float:
    return 1.0 if midpoint(frame, *HIPS)[0] > frame[hip].x else -1.0


def hip_adduction(frame: PoseFrame) -> float:
    """Largest thigh angle from vertical toward the body midline, front view."""
    angles = []
    for hip, knee in zip(HIPS, KNEES):
        inward = (frame[knee].x - frame[hip].x) * _medial_sign(frame, hip)
        angles.append(math.degrees(math.atan2(inward, abs(frame[knee].y - frame[hip].y))))
    return max(angles)


def knee_inward_deviation(frame: PoseFrame) -> float:
    """
    Largest bend of a leg at the knee toward the midline, front view.

    180 minus the hip-knee-ankle angle, counted only when the knee sits
    inside the hip-ankle line.
    """
    deviations = [0.0]
    for hip, knee, ankle in zip(HIPS, KNEES, ANKLES):
        h, k, a = frame.point(hip), frame.point(knee), frame.point(ankle)
        t = safe_ratio(k[1] - h[1], a[1] - h[1], default=0.5)
        line_x = h[0] + t * (a[0] - h[0])
        if (k[0] - line_x) * _medial_sign(frame, hip) > 0:
            deviations.append(180.0 - angle_at(h, k, a))
    return max(deviations)


# ═══════════════════════════════════════════════════════════════════════════════
# SMOOTHING
# ═══════════════════════════════════════════════════════════════════════════════

def gaussian_weights(size: int) -> np.ndarray:
    """Normalized gaussian kernel centred on the window, sigma = size / 3."""
    if size <= 1:
        return np.ones(max(size, 1))
    sigma = size / 3
    center = (size - 1) / 2
    weights = np.exp(-((np.arange(size) - center) ** 2) / (2 * sigma ** 2))
    return weights / weights.sum()


def smooth_frames(frames: List[PoseFrame]) -> Optional[PoseFrame]:
    """Gaussian-weighted average of consecutive frames; keeps the newest timestamp."""
    if not frames:
        return None
    if len(frames) == 1:
        return frames[0]
    stacked = np.stack([f.array for f in frames])
    weights = gaussian_weights(len(frames))
    return PoseFrame(np.tensordot(weights, stacked, axes=1), frames[-1].timestamp_ms)


def smooth_angle_sets(angle_sets: List[AngleSet]) -> AngleSet:
    """Per-angle moving average over the given sets, ignoring missing values."""
    collected: Dict[AngleName, List[float]] = {}
    for angles in angle_sets:
        for name, value in angles.items():
            collected.setdefault(name, []).append(value)
    return AngleSet({name: float(np.mean(values)) for name, values in collected.items()})
