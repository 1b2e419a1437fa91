"""
Preview streaming module.

Holds the latest annotated preview frame per stream and serves it as MJPEG.
Thread-safe frame access using locks.
"""

import threading
import time
from dataclasses import dataclass, field
from typing import Dict, Generator, Optional

import cv2
import numpy as np

DEFAULT_STREAM_ID = 'default'
JPEG_QUALITY = 85
FRAME_PERIOD_SECONDS = 0.033


@dataclass
class _StreamState:
    frame: Optional[np.ndarray] = None
    lock: threading.Lock = field(default_factory=threading.Lock)


_streams: Dict[str, _StreamState] = {}
_streams_lock = threading.Lock()


def _get_stream_state(stream_id: str) -> _StreamState:
    with _streams_lock:
        state = _streams.get(stream_id)
        if state is None:
            state = _StreamState()
            _streams[stream_id] = state
        return state


def set_frame(frame: np.ndarray, stream_id: str = DEFAULT_STREAM_ID) -> None:
    """
    Publish a new preview frame for a stream.

    Args:
        frame: Annotated frame (copied)
        stream_id: Identifier of the stream
    """
    state = _get_stream_state(stream_id)
    with state.lock:
        state.frame = frame.copy() if frame is not None else None


def clear_frame(stream_id: str = DEFAULT_STREAM_ID) -> None:
    """Drop the preview frame, e.g. when the camera stops."""
    state = _get_stream_state(stream_id)
    with state.lock:
        state.frame = None


def get_frame_copy(stream_id: str = DEFAULT_STREAM_ID) -> Optional[np.ndarray]:
    """Copy of the current preview frame, or None."""
    state = _get_stream_state(stream_id)
    with state.lock:
        return state.frame.copy() if state.frame is not None else None


def is_streaming(stream_id: str = DEFAULT_STREAM_ID) -> bool:
    """True if a preview frame is available."""
    state = _get_stream_state(stream_id)
    with state.lock:
        return state.frame is not None


def encode_jpeg(frame: np.ndarray) -> Optional[bytes]:
    ok, buffer = cv2.imencode('.jpg', frame, [cv2.IMWRITE_JPEG_QUALITY, JPEG_QUALITY])
    return buffer.tobytes() if ok else None


def generate_mjpeg_frames(stream_id: str = DEFAULT_STREAM_ID) -> Generator[bytes, None, None]:
    """
    Generate MJPEG parts for a stream.

    Yields:
        JPEG frame bytes with multipart headers
    """
    while True:
        frame = get_frame_copy(stream_id)

        if frame is None:
            time.sleep(0.1)
            continue

        jpeg = encode_jpeg(frame)
        if jpeg is not None:
            yield (b'--frame\r\n'
                   b'Content-Type: image/jpeg\r\n\r\n' + jpeg + b'\r\n')

        time.sleep(FRAME_PERIOD_SECONDS)
