"""
InsightFace initialization module.

Provides single-face detection with landmarks and descriptor using
InsightFace models.
"""

from typing import Any, Optional

import numpy as np
from insightface.app import FaceAnalysis

from .config import Config
from .logging_config import get_logger
from .recognition.types import Box, Detection, FaceLandmarks

logger = get_logger(__name__)


def initialize_face_app(config: Config) -> FaceAnalysis:
    """
    Initialize InsightFace FaceAnalysis.

    Args:
        config: Service configuration

    Returns:
        Initialized FaceAnalysis instance
    """
    logger.info(f'Initializing InsightFace ({config.insightface_model})...')

    face_app = FaceAnalysis(
        name=config.insightface_model,
        allowed_modules=['detection', 'landmark_3d_68', 'recognition'],
        providers=['CPUExecutionProvider'],
    )
    face_app.prepare(ctx_id=0, det_size=config.insightface_det_size)

    logger.info(f'✅ InsightFace initialized (det_size={config.insightface_det_size})')

    return face_app


class FaceDetector:
    """
    Finds at most one face per frame.

    When several faces are visible the highest-scoring one is returned.
    """

    def __init__(self, face_app: Any, score_threshold: float = 0.5, min_face_size: int = 40):
        """
        Args:
            face_app: Prepared FaceAnalysis (or anything with a compatible get())
            score_threshold: Minimum detector confidence
            min_face_size: Minimum box width and height in pixels
        """
        self.face_app = face_app
        self.score_threshold = score_threshold
        self.min_face_size = min_face_size

    @classmethod
    def from_config(cls, config: Config) -> 'FaceDetector':
        return cls(
            initialize_face_app(config),
            score_threshold=config.detection_score_threshold,
            min_face_size=config.min_face_size_pixels,
        )

    def detect(self, frame: np.ndarray) -> Optional[Detection]:
        """
        Detect the best face in a BGR frame.

        Args:
            frame: Image in BGR format

        Returns:
            Detection, or None if no acceptable face was found
        """
        faces = self.face_app.get(frame)

        best = None
        for face in faces:
            score = float(face.det_score)
            if score < self.score_threshold:
                continue
            x1, y1, x2, y2 = face.bbox
            if x2 - x1 < self.min_face_size or y2 - y1 < self.min_face_size:
                continue
            if best is None or score > float(best.det_score):
                best = face

        if best is None:
            return None

        return Detection(
            box=Box.from_corners(*best.bbox),
            landmarks=_landmarks_of(best),
            descriptor=np.asarray(best.normed_embedding, dtype=np.float64),
        )


def _landmarks_of(face: Any) -> Optional[FaceLandmarks]:
    points = getattr(face, 'landmark_3d_68', None)
    if points is None:
        return None
    try:
        return FaceLandmarks.from_68(points)
    except ValueError as e:
        logger.debug(f'Unusable landmarks: {e}')
        return None
