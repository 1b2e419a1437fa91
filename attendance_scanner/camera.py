"""
Camera connection module.

Opens the frame source used by the scanner:
- Local webcams (index 0, 1, 2)
- RTSP streams
- HTTP MJPEG streams (from a camera gateway)

Frames are downscaled to the working width so that pixel tolerances mean
the same thing for every camera.
"""

import time
from typing import Any, Optional, Tuple

import cv2
import numpy as np
import requests

from .config import Config
from .logging_config import get_logger

logger = get_logger(__name__)


class CameraError(RuntimeError):
    """Raised when the frame source cannot be opened."""


class FrameSource:
    """An opened capture that yields working-resolution frames."""

    def __init__(self, capture: Any, working_width: int = 640):
        self._capture = capture
        self.working_width = working_width
        self._released = False

    def read(self) -> Optional[np.ndarray]:
        """
        Read the next frame.

        Returns:
            BGR frame, or None if the read failed
        """
        ret, frame = self._capture.read()
        if not ret or frame is None:
            return None
        return resize_to_width(frame, self.working_width)

    def release(self) -> None:
        """Stop the capture and free the device. Safe to call twice."""
        if self._released:
            return
        self._released = True
        try:
            self._capture.release()
        except Exception as e:
            logger.warning(f'Error releasing camera: {e}')


def resize_to_width(frame: np.ndarray, width: int) -> np.ndarray:
    """Downscale a frame to the given width, keeping aspect ratio."""
    height, current_width = frame.shape[:2]
    if width <= 0 or current_width <= width:
        return frame
    scale = width / current_width
    return cv2.resize(frame, (width, int(round(height * scale))), interpolation=cv2.INTER_AREA)


def open_camera(config: Config, max_retries: int = 3) -> FrameSource:
    """
    Connect to camera with retry logic.

    Args:
        config: Service configuration
        max_retries: Maximum connection attempts

    Returns:
        Opened FrameSource

    Raises:
        CameraError: If connection fails after max_retries
    """
    camera_type, source = parse_camera_source(config.camera_source)

    for attempt in range(max_retries):
        logger.info(f'Connecting to {camera_type} camera (attempt {attempt + 1}/{max_retries})...')

        if camera_type == 'local':
            video_capture = cv2.VideoCapture(source)
        else:
            logger.info(f'Camera URL: {_sanitize_url(source)}')
            video_capture = _open_stream_capture(source)
            if video_capture is not None and source.startswith('rtsp://'):
                video_capture.set(cv2.CAP_PROP_BUFFERSIZE, 1)

        if video_capture is not None and video_capture.isOpened():
            ret, frame = video_capture.read()
            if ret and frame is not None:
                logger.info(f'✅ Camera connected ({camera_type}, {frame.shape[1]}x{frame.shape[0]})')
                return FrameSource(video_capture, config.working_width)
            video_capture.release()
            logger.warning('Camera opened but failed to read frame')
        else:
            logger.warning('Failed to open camera')

        if attempt < max_retries - 1:
            wait_time = 0.5 * 2 ** attempt
            logger.info(f'Retrying in {wait_time:.1f} seconds...')
            time.sleep(wait_time)

    raise CameraError(f'Cannot connect to camera after {max_retries} attempts')


def parse_camera_source(camera_source: str) -> Tuple[str, Any]:
    """
    Split a camera source string into (type, source).

    Returns:
        ('local', index) for webcams, ('stream', url) otherwise
    """
    try:
        return 'local', int(camera_source)
    except ValueError:
        return 'stream', camera_source


def _open_stream_capture(source: str) -> Optional[Any]:
    """
    Try multiple OpenCV backends to open HTTP/RTSP streams.
    HTTP MJPEG streams use MJPEGStreamCapture instead.
    """
    if source.startswith(('http://', 'https://')):
        if '.mjpg' in source or 'mjpeg' in source.lower():
            logger.debug('Detected MJPEG stream, using HTTP reader')
            return MJPEGStreamCapture(source)

    backend_candidates = []
    if hasattr(cv2, 'CAP_FFMPEG'):
        backend_candidates.append(('CAP_FFMPEG', cv2.CAP_FFMPEG))
    backend_candidates.append(('DEFAULT', None))

    for backend_name, backend_flag in backend_candidates:
        capture = cv2.VideoCapture(source) if backend_flag is None else cv2.VideoCapture(source, backend_flag)
        if capture.isOpened():
            logger.debug(f'Stream opened with backend {backend_name}')
            return capture
        capture.release()

    return None


def _sanitize_url(url: str) -> str:
    """
    Remove password from URL for logging.

    Args:
        url: URL with potential password

    Returns:
        Sanitized URL
    """
    if '://' not in url:
        return url

    protocol, rest = url.split('://', 1)
    if '@' in rest:
        creds, host = rest.rsplit('@', 1)
        if ':' in creds:
            username = creds.split(':', 1)[0]
            return f'{protocol}://{username}@{host}'

    return url


class MJPEGStreamCapture:
    """
    VideoCapture-compatible reader for HTTP MJPEG streams.
    Uses requests to read the stream and decodes JPEG frames manually.
    """

    MAX_BUFFER_BYTES = 10 * 1024 * 1024

    def __init__(self, url: str, timeout: int = 10):
        """
        Args:
            url: HTTP URL of MJPEG stream
            timeout: Request timeout in seconds
        """
        self.url = url
        self.timeout = timeout
        self._opened = False
        self._stream = None
        self._response = None
        self._buffer = b''

        try:
            self._response = requests.get(url, stream=True, timeout=timeout)
            if self._response.status_code == 200:
                self._stream = self._response.iter_content(chunk_size=1024)
                self._opened = True
                logger.debug('MJPEG stream opened successfully')
            else:
                logger.warning(f'MJPEG stream returned status {self._response.status_code}')
        except requests.exceptions.RequestException as e:
            logger.warning(f'Failed to open MJPEG stream: {e}')

    def isOpened(self) -> bool:
        return self._opened

    def read(self) -> Tuple[bool, Optional[np.ndarray]]:
        """
        Read next frame from MJPEG stream.

        Returns:
            Tuple of (success, frame)
        """
        if not self._opened or self._stream is None:
            return False, None

        try:
            while True:
                chunk = next(self._stream, None)
                if chunk is None:
                    return False, None

                self._buffer += chunk

                start = self._buffer.find(b'\xff\xd8')
                end = self._buffer.find(b'\xff\xd9', start + 2 if start != -1 else 0)

                if start != -1 and end != -1:
                    jpg = self._buffer[start:end + 2]
                    self._buffer = self._buffer[end + 2:]

                    frame = cv2.imdecode(np.frombuffer(jpg, dtype=np.uint8), cv2.IMREAD_COLOR)
                    if frame is not None:
                        return True, frame

                if len(self._buffer) > self.MAX_BUFFER_BYTES:
                    logger.warning('MJPEG buffer overflow, resetting')
                    self._buffer = b''

        except requests.exceptions.RequestException as e:
            logger.warning(f'Error reading MJPEG frame: {e}')
            return False, None

    def release(self) -> None:
        self._opened = False
        if self._response is not None:
            self._response.close()
        self._stream = None
        self._buffer = b''

    def set(self, prop_id: int, value: float) -> bool:
        """Compatibility method (does nothing for MJPEG streams)."""
        return True
