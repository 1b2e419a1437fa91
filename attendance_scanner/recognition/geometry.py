"""Geometry helpers for face boxes."""

import math

from .types import Box, Point


def point_distance(a: Point, b: Point) -> float:
    """Euclidean distance between two points."""
    return math.hypot(a.x - b.x, a.y - b.y)


def center_displacement(box: Box, anchor: Box) -> float:
    """
    Distance between the centers of two boxes.

    Args:
        box: Current face box
        anchor: Box recorded when stabilization started

    Returns:
        Displacement in pixels
    """
    return point_distance(box.center, anchor.center)
