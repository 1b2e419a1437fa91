"""
Recognition algorithms package.

Contains modules for:
- Head pose classification
- Descriptor matching against enrolled references
- Pose-gated enrollment
- Vote-based streaming recognition
"""

from .types import Box, Detection, EnrolledIdentity, FaceLandmarks, Point, Pose
from .geometry import center_displacement
from .pose import classify_pose, pose_instruction
from .matching import MatchResult, ReferenceSet, match_descriptor
from .enrollment import (
    DEFAULT_POSE_SEQUENCE,
    EnrollmentController,
    EnrollmentError,
    EnrollmentStatus,
    EnrollmentUpdate,
    average_descriptors,
)
from .recognizer import RecognitionController, RecognitionPhase, RecognitionUpdate

__all__ = [
    'Box',
    'Detection',
    'EnrolledIdentity',
    'FaceLandmarks',
    'Point',
    'Pose',
    'center_displacement',
    'classify_pose',
    'pose_instruction',
    'MatchResult',
    'ReferenceSet',
    'match_descriptor',
    'DEFAULT_POSE_SEQUENCE',
    'EnrollmentController',
    'EnrollmentError',
    'EnrollmentStatus',
    'EnrollmentUpdate',
    'average_descriptors',
    'RecognitionController',
    'RecognitionPhase',
    'RecognitionUpdate',
]
