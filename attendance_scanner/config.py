"""
Configuration module for the Attendance Scanner.

Loads configuration from environment variables with sensible defaults.
All settings are immutable after initialization.
"""

import os
from dataclasses import dataclass
from typing import Tuple


@dataclass(frozen=True)
class Config:
    """
    Immutable configuration for the Attendance Scanner.

    Backend Integration:
        backend_url: Base URL of the document store API (e.g., http://backend:3000)

    Camera Settings:
        camera_source: Camera source - can be:
            - Integer (0, 1, 2) for local webcam
            - RTSP URL: rtsp://user:pass@ip:port/path
            - HTTP URL: http://camera-gateway:4000/streams/1.mjpg
        camera_id: Logical identifier for this camera (for logging/streaming)
        working_width: Frames are downscaled to this width before detection

    Service Identity:
        service_name: Name of this service instance
        video_port: Port for Flask HTTP server

    Detection:
        insightface_model: InsightFace model pack name
        insightface_det_size: Detection size for InsightFace (width, height)
        detection_score_threshold: Minimum detector confidence
        min_face_size_pixels: Faces smaller than this are ignored

    Matching:
        distance_metric: 'euclidean' or 'cosine' (1 - cosine similarity)
        match_distance_threshold: A match is accepted only below this distance

    Recognition:
        vote_threshold: Confident matches needed before a face is recognized
        max_stabilization_seconds: Time allowed to reach the vote threshold
        jitter_tolerance_pixels: Max anchor center displacement while stabilizing
        recognized_hold_seconds: How long a welcome stays on screen
        unknown_hold_seconds: How long a rejection stays on screen
        recognition_interval_seconds: Sampling interval

    Enrollment:
        enrollment_interval_seconds: Sampling interval
        enrollment_dwell_seconds: Pose must hold this long before capture
        enrollment_close_seconds: Auto-close delay after a successful save
        enrollment_timeout_seconds: Unfinished scans are discarded after this

    System:
        reload_identities_interval: Seconds between reference set reloads
        cache_file: Path to descriptor cache file
        announce_enabled: Speak greetings aloud
        debug_mode: Enable debug logging
    """

    # Backend
    backend_url: str

    # Camera
    camera_source: str
    camera_id: str
    working_width: int

    # Service
    service_name: str
    video_port: int

    # Detection
    insightface_model: str
    insightface_det_size: Tuple[int, int]
    detection_score_threshold: float
    min_face_size_pixels: int

    # Matching
    distance_metric: str
    match_distance_threshold: float

    # Recognition
    vote_threshold: int
    max_stabilization_seconds: float
    jitter_tolerance_pixels: float
    recognized_hold_seconds: float
    unknown_hold_seconds: float
    recognition_interval_seconds: float

    # Enrollment
    enrollment_interval_seconds: float
    enrollment_dwell_seconds: float
    enrollment_close_seconds: float
    enrollment_timeout_seconds: float

    # System
    reload_identities_interval: int
    cache_file: str
    announce_enabled: bool
    debug_mode: bool


def load_config() -> Config:
    """
    Load configuration from environment variables.

    Returns:
        Config: Immutable configuration object

    Raises:
        ValueError: If DISTANCE_METRIC is not supported
    """
    camera_source_raw = os.getenv('CAMERA_SOURCE', '0')

    distance_metric = os.getenv('DISTANCE_METRIC', 'euclidean').lower()
    if distance_metric not in ('euclidean', 'cosine'):
        raise ValueError(f'Unsupported DISTANCE_METRIC: {distance_metric}')

    return Config(
        # Backend
        backend_url=os.getenv('BACKEND_URL', 'http://localhost:3000'),

        # Camera
        camera_source=camera_source_raw,
        camera_id=os.getenv('CAMERA_ID', camera_source_raw),
        working_width=int(os.getenv('WORKING_WIDTH', '640')),

        # Service
        service_name=os.getenv('SERVICE_NAME', 'attendance-scanner'),
        video_port=int(os.getenv('VIDEO_PORT', '5001')),

        # Detection
        insightface_model=os.getenv('INSIGHTFACE_MODEL', 'buffalo_l'),
        insightface_det_size=(640, 640),
        detection_score_threshold=float(os.getenv('DETECTION_SCORE', '0.5')),
        min_face_size_pixels=int(os.getenv('MIN_FACE_SIZE', '40')),

        # Matching
        distance_metric=distance_metric,
        match_distance_threshold=float(os.getenv('MATCH_THRESHOLD', '0.55')),

        # Recognition
        vote_threshold=int(os.getenv('VOTE_THRESHOLD', '5')),
        max_stabilization_seconds=float(os.getenv('STABILIZATION_SECONDS', '2.5')),
        jitter_tolerance_pixels=float(os.getenv('JITTER_TOLERANCE', '20')),
        recognized_hold_seconds=float(os.getenv('RECOGNIZED_HOLD', '4.0')),
        unknown_hold_seconds=float(os.getenv('UNKNOWN_HOLD', '2.0')),
        recognition_interval_seconds=float(os.getenv('RECOGNITION_INTERVAL', '0.1')),

        # Enrollment
        enrollment_interval_seconds=float(os.getenv('ENROLLMENT_INTERVAL', '0.3')),
        enrollment_dwell_seconds=float(os.getenv('ENROLLMENT_DWELL', '0.75')),
        enrollment_close_seconds=float(os.getenv('ENROLLMENT_CLOSE', '2.0')),
        enrollment_timeout_seconds=float(os.getenv('ENROLLMENT_TIMEOUT', '120')),

        # System
        reload_identities_interval=int(os.getenv('RELOAD_INTERVAL', '300')),
        cache_file=os.getenv('CACHE_FILE', 'face_descriptors_cache.pkl'),
        announce_enabled=os.getenv('ANNOUNCE', 'true').lower() == 'true',
        debug_mode=os.getenv('DEBUG', 'false').lower() == 'true',
    )
