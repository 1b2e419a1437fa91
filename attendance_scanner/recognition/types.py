"""
Value types shared by the enrollment and recognition state machines.

Detections are transient: they live for a single sampling tick and are
never persisted.
"""

import math
from dataclasses import dataclass
from enum import Enum
from typing import Optional, Sequence

import numpy as np


class Pose(str, Enum):
    """Coarse head direction."""

    CENTER = 'center'
    UP = 'up'
    DOWN = 'down'
    LEFT = 'left'
    RIGHT = 'right'


@dataclass(frozen=True)
class Point:
    x: float
    y: float


@dataclass(frozen=True)
class Box:
    """Axis-aligned face box in working-resolution pixels."""

    x: float
    y: float
    width: float
    height: float

    @property
    def center(self) -> Point:
        return Point(self.x + self.width / 2, self.y + self.height / 2)

    @classmethod
    def from_corners(cls, x1: float, y1: float, x2: float, y2: float) -> 'Box':
        """Build from an [x1, y1, x2, y2] detector box."""
        return cls(float(x1), float(y1), float(x2 - x1), float(y2 - y1))


# iBUG 68-point layout indices
JAW_LEFT_INDEX = 0
JAW_BOTTOM_INDEX = 8
JAW_RIGHT_INDEX = 16
NOSE_TIP_INDEX = 30
LEFT_EYE_OUTER_INDEX = 36
RIGHT_EYE_OUTER_INDEX = 45


@dataclass(frozen=True)
class FaceLandmarks:
    """
    The landmark points the pose classifier needs.

    "Left" and "right" are image sides, not the subject's.
    """

    nose_tip: Point
    left_eye_outer: Point
    right_eye_outer: Point
    jaw_left: Point
    jaw_right: Point
    jaw_bottom: Point

    @classmethod
    def from_68(cls, points: Sequence[Sequence[float]]) -> 'FaceLandmarks':
        """
        Pick the named points out of a 68-point landmark array.

        Args:
            points: 68 (x, y[, z]) rows in iBUG order

        Raises:
            ValueError: If fewer than 68 points are given
        """
        if len(points) < 68:
            raise ValueError(f'Expected 68 landmark points, got {len(points)}')

        def at(index: int) -> Point:
            return Point(float(points[index][0]), float(points[index][1]))

        return cls(
            nose_tip=at(NOSE_TIP_INDEX),
            left_eye_outer=at(LEFT_EYE_OUTER_INDEX),
            right_eye_outer=at(RIGHT_EYE_OUTER_INDEX),
            jaw_left=at(JAW_LEFT_INDEX),
            jaw_right=at(JAW_RIGHT_INDEX),
            jaw_bottom=at(JAW_BOTTOM_INDEX),
        )

    def is_finite(self) -> bool:
        return all(
            math.isfinite(p.x) and math.isfinite(p.y)
            for p in (self.nose_tip, self.left_eye_outer, self.right_eye_outer,
                      self.jaw_left, self.jaw_right, self.jaw_bottom)
        )


@dataclass(frozen=True, eq=False)
class Detection:
    """One detected face: box, landmarks and descriptor."""

    box: Box
    landmarks: Optional[FaceLandmarks]
    descriptor: np.ndarray


@dataclass(frozen=True, eq=False)
class EnrolledIdentity:
    """A reference descriptor for one person, with an optional display name."""

    identity_id: str
    descriptor: np.ndarray
    name: Optional[str] = None

    @property
    def display_name(self) -> str:
        return self.name or self.identity_id
