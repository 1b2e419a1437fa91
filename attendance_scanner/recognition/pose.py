"""
Head pose classification module.

Classifies a face into one of five coarse directions from 2D landmarks:
- Yaw from the horizontal offset of the nose tip against the eye center
- Pitch from the vertical offset of the nose tip against the eye center

Horizontal checks take priority, so a face turned sideways is classified
by yaw even when pitch also deviates.
"""

from typing import Optional

from .types import FaceLandmarks, Point, Pose

# Nose offset as a fraction of jaw width
HORIZONTAL_RATIO_LIMIT = 0.15

# Nose drop as a fraction of eye-to-chin height
UP_RATIO_LIMIT = 0.10
DOWN_RATIO_LIMIT = 0.30

# Faces narrower or shorter than this are too far away to classify
MIN_FACE_SPAN_PIXELS = 50.0


def classify_pose(landmarks: Optional[FaceLandmarks]) -> Pose:
    """
    Classify head pose from facial landmarks.

    Args:
        landmarks: Landmarks of one detection (None is treated as center)

    Returns:
        Pose label. Degenerate geometry (tiny or non-finite) returns CENTER.
    """
    if landmarks is None or not landmarks.is_finite():
        return Pose.CENTER

    eye_center = Point(
        (landmarks.left_eye_outer.x + landmarks.right_eye_outer.x) / 2,
        (landmarks.left_eye_outer.y + landmarks.right_eye_outer.y) / 2,
    )

    face_width = landmarks.jaw_right.x - landmarks.jaw_left.x
    if face_width < MIN_FACE_SPAN_PIXELS:
        return Pose.CENTER

    face_height = landmarks.jaw_bottom.y - eye_center.y
    if face_height < MIN_FACE_SPAN_PIXELS:
        return Pose.CENTER

    horizontal_ratio = (landmarks.nose_tip.x - eye_center.x) / face_width
    vertical_ratio = (landmarks.nose_tip.y - eye_center.y) / face_height

    if horizontal_ratio > HORIZONTAL_RATIO_LIMIT:
        return Pose.LEFT
    if horizontal_ratio < -HORIZONTAL_RATIO_LIMIT:
        return Pose.RIGHT
    if vertical_ratio < UP_RATIO_LIMIT:
        return Pose.UP
    if vertical_ratio > DOWN_RATIO_LIMIT:
        return Pose.DOWN

    return Pose.CENTER


def pose_instruction(pose: Pose, first_time: bool = False) -> str:
    """
    Guidance text asking the subject to take a pose.

    Args:
        pose: Pose the subject should take
        first_time: True right after the previous step completed
    """
    if pose == Pose.CENTER:
        return 'Look straight at the camera.'
    if first_time:
        return f'Slowly look {pose.value}.'
    return f'Please look {pose.value}.'
