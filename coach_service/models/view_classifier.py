"""
FORMCOACH Coach Service - Camera View Classifier

Decides per frame whether the camera sees the person from the front or from
the side, based on how far apart the left and right joints appear.
"""

from enum import Enum
from typing import Optional

from core.config import settings as default_settings, Settings
from .geometry import PoseFrame, SHOULDERS, HIPS, KNEES, horizontal_spread


class CameraView(Enum):
    """Camera viewpoint relative to the person."""
    FRONTAL = "frontal"
    PROFILE = "profile"


def classify_view(frame: PoseFrame, settings: Optional[Settings] = None) -> CameraView:
    """
    Classify the camera view of a single frame.

    A side-on camera collapses left and right joints onto nearly the same
    image column. The view is PROFILE when the averaged shoulder/hip spread
    is below PROFILE_SPREAD_RATIO of the frame width and the knee spread is
    too; knees that are not visible do not block a PROFILE decision.

    Args:
        frame: Pose to classify
        settings: Threshold source (module settings if None)

    Returns:
        CameraView.PROFILE or CameraView.FRONTAL
    """
    cfg = settings or default_settings
    limit = cfg.PROFILE_SPREAD_RATIO

    torso_spread = (horizontal_spread(frame, *SHOULDERS) + horizontal_spread(frame, *HIPS)) / 2
    if torso_spread >= limit:
        return CameraView.FRONTAL

    knees_visible = all(frame.visibility(k) > cfg.LANDMARK_VISIBILITY_THRESHOLD for k in KNEES)
    if knees_visible and horizontal_spread(frame, *KNEES) >= limit:
        return CameraView.FRONTAL

    return CameraView.PROFILE
