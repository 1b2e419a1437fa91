"""
Scanner service.

Owns the single camera and runs one of two modes at a time:
- recognition: vote-based attendance marking
- enrollment: pose-gated capture of a reference descriptor

Each mode is driven by a SamplingLoop. Detection runs outside the state
lock; its result is applied only if the session generation is unchanged,
so results that resolve after a stop are discarded.
"""

import functools
import threading
import time
from datetime import datetime
from typing import Any, Callable, Dict, Optional

import cv2
import numpy as np

from . import streaming
from .camera import CameraError, open_camera
from .config import Config
from .identities import load_reference_set
from .logging_config import get_logger, set_scanner_mode
from .recognition.enrollment import EnrollmentController, EnrollmentStatus, EnrollmentUpdate
from .recognition.recognizer import RecognitionController, RecognitionPhase, RecognitionUpdate
from .utils.timing import format_uptime
from .video_loop import SamplingLoop

logger = get_logger(__name__)

MODE_IDLE = 'idle'
MODE_RECOGNITION = 'recognition'
MODE_ENROLLMENT = 'enrollment'

MAX_READ_FAILURES = 10
CLOSE_MARGIN_SECONDS = 0.05

MSG_CAMERA_LOST = 'Camera stream lost.'


class ScannerError(Exception):
    """A scanner request that cannot be served; the message is user-facing."""


class ScannerService:
    """Coordinates camera, detector, controllers and stores."""

    def __init__(
        self,
        config: Config,
        store: Any,
        detector: Optional[Any] = None,
        announce: Optional[Callable[[str], None]] = None,
        model_error: Optional[str] = None,
        camera_opener: Callable[[Config], Any] = open_camera,
        loop_factory: Callable[..., Any] = SamplingLoop,
        timer_factory: Callable[..., Any] = threading.Timer,
        clock: Callable[[], float] = time.monotonic,
        wall_clock: Callable[[], datetime] = datetime.now
    ):
        """
        Args:
            config: Service configuration
            store: Persistence collaborator (BackendStore or MemoryStore)
            detector: Object with detect(frame) -> Detection | None; None if models failed
            announce: Best-effort notification callback
            model_error: Why the detector could not be loaded
            camera_opener: Opens the frame source
            loop_factory: Builds the sampling loop for a mode
            timer_factory: Builds deferred callbacks (threading.Timer signature)
            clock: Monotonic clock
            wall_clock: Wall clock for attendance timestamps
        """
        self.config = config
        self.store = store
        self.detector = detector
        self.model_error = model_error
        self._camera_opener = camera_opener
        self._loop_factory = loop_factory
        self._timer_factory = timer_factory
        self._clock = clock

        self._lock = threading.Lock()
        self._generation = 0
        self._mode = MODE_IDLE
        self._camera = None
        self._loop = None
        self._close_timer = None
        self._read_failures = 0
        self._last_reload: Optional[float] = None
        self._last_message = ''
        self.started_at = clock()
        self.stream_id = config.camera_id or config.service_name or streaming.DEFAULT_STREAM_ID

        self.recognizer = RecognitionController(
            record_attendance=store.record_attendance,
            announce=announce,
            match_threshold=config.match_distance_threshold,
            metric=config.distance_metric,
            vote_threshold=config.vote_threshold,
            max_stabilization_seconds=config.max_stabilization_seconds,
            jitter_tolerance=config.jitter_tolerance_pixels,
            recognized_hold_seconds=config.recognized_hold_seconds,
            unknown_hold_seconds=config.unknown_hold_seconds,
            wall_clock=wall_clock,
        )
        self.enroller = EnrollmentController(
            save_descriptor=store.save_identity_descriptor,
            announce=announce,
            interval_seconds=config.enrollment_interval_seconds,
            dwell_seconds=config.enrollment_dwell_seconds,
            close_seconds=config.enrollment_close_seconds,
            timeout_seconds=config.enrollment_timeout_seconds,
        )

    @property
    def mode(self) -> str:
        return self._mode

    @property
    def models_loaded(self) -> bool:
        return self.detector is not None

    def reload_identities(self) -> int:
        """
        Rebuild the recognition reference snapshot from the store.

        Returns:
            Number of enrolled identities now loaded
        """
        references = load_reference_set(self.store, self.config)
        with self._lock:
            self.recognizer.set_references(references)
            self._last_reload = self._clock()
        return len(references)

    # Recognition

    def start_recognition(self) -> RecognitionUpdate:
        """
        Turn on the recognition scanner.

        Raises:
            ScannerError: Models missing, camera busy or unavailable
        """
        with self._lock:
            self._ensure_ready()
            if self._mode != MODE_IDLE:
                raise ScannerError(f'Camera is busy ({self._mode} running).')

        self.reload_identities()

        with self._lock:
            if self._mode != MODE_IDLE:
                raise ScannerError(f'Camera is busy ({self._mode} running).')

            self._camera = self._acquire_camera()
            self._set_mode(MODE_RECOGNITION)
            self._generation += 1
            self._read_failures = 0
            self._last_message = ''
            self.recognizer.start_session()
            self._start_loop(self._recognition_step, 'RecognitionLoop')

            logger.info(f'Recognition started ({len(self.recognizer.references)} identities)')
            return self.recognizer.snapshot()

    def stop_recognition(self) -> bool:
        """
        Turn off the recognition scanner. Safe to call in any state.

        Returns:
            True if recognition was running
        """
        with self._lock:
            if self._mode != MODE_RECOGNITION:
                return False
            self._teardown()
            self.recognizer.stop_session()
            logger.info('Recognition stopped')
            return True

    def recognition_status(self) -> Dict[str, Any]:
        with self._lock:
            status = self.recognizer.snapshot().to_dict()
            status['running'] = self._mode == MODE_RECOGNITION
            if self._mode != MODE_RECOGNITION and self._last_message:
                status['message'] = self._last_message
            return status

    def _recognition_step(self, generation: int) -> Optional[float]:
        interval = self.config.recognition_interval_seconds

        with self._lock:
            if generation != self._generation:
                return None
            now = self._clock()
            needs_detection = (
                not self.recognizer.is_holding(now)
                and not self.recognizer.references.is_empty()
            )
            reload_due = (
                self._last_reload is None
                or now - self._last_reload > self.config.reload_identities_interval
            )
            camera = self._camera

        if reload_due:
            self._reload_in_step(generation)

        frame = camera.read()
        detection = None
        if frame is not None and needs_detection:
            detection = self.detector.detect(frame)

        with self._lock:
            if generation != self._generation:
                logger.debug('Discarding stale recognition result')
                return None
            if not self._track_frame(frame):
                return None

            update = self.recognizer.process(detection, self._clock())
            if frame is not None:
                streaming.set_frame(draw_recognition(frame, update), self.stream_id)

        if update.pending_attendance is not None:
            if not self._write_attendance(generation, *update.pending_attendance):
                return None

        return interval

    def _write_attendance(self, generation: int, identity_id: str, seen_at: datetime) -> bool:
        """Run a pending attendance write unlocked; False if the session ended meanwhile."""
        saved = self.recognizer.write_attendance(identity_id, seen_at)

        with self._lock:
            if generation != self._generation:
                logger.info(f'Scanner stopped during attendance write for {identity_id} (saved={saved})')
                return False
            self.recognizer.finish_attendance(identity_id, saved)
            return True

    def _reload_in_step(self, generation: int) -> None:
        references = load_reference_set(self.store, self.config)
        with self._lock:
            self._last_reload = self._clock()
            if generation == self._generation:
                self.recognizer.set_references(references)

    # Enrollment

    def start_enrollment(self, subject_id: str, name: Optional[str] = None) -> EnrollmentUpdate:
        """
        Begin a pose-guided scan for a subject.

        Raises:
            ScannerError: Models missing, camera busy or unavailable
            EnrollmentError: Invalid subject id
        """
        with self._lock:
            self._ensure_ready()
            if self._mode == MODE_ENROLLMENT:
                self._expire_enrollment()
            if self._mode != MODE_IDLE:
                active = self.enroller.session.subject_id if self.enroller.session else self._mode
                raise ScannerError(f'Camera is busy ({active}).')

            if subject_id in self.recognizer.references:
                logger.info(f'{subject_id} is already enrolled, a saved scan replaces the descriptor')
            display_name = name or self.recognizer.references.display_name(subject_id)
            update = self.enroller.start(subject_id, self._clock(), display_name)

            try:
                self._camera = self._acquire_camera()
            except ScannerError:
                self.enroller.cancel()
                raise

            self._set_mode(MODE_ENROLLMENT)
            self._generation += 1
            self._read_failures = 0
            self._last_message = ''
            self._start_loop(self._enrollment_step, 'EnrollmentLoop')
            return update

    def save_enrollment(self) -> EnrollmentUpdate:
        """
        Persist the scanned descriptor.

        Raises:
            ScannerError: No enrollment in progress
            EnrollmentError: Nothing scanned yet
        """
        with self._lock:
            if self._mode != MODE_ENROLLMENT:
                raise ScannerError('No enrollment in progress.')
            subject_id, descriptor = self.enroller.begin_save()

        try:
            ok = bool(self.store.save_identity_descriptor(subject_id, descriptor))
        except Exception as e:
            logger.error(f'Saving descriptor for {subject_id} raised: {e}', exc_info=True)
            ok = False

        with self._lock:
            update = self.enroller.finish_save(ok, self._clock())
            if ok:
                self._schedule_close()

        if ok:
            self.reload_identities()
        return update

    def cancel_enrollment(self) -> bool:
        """
        Abandon the enrollment without saving.

        Returns:
            True if an enrollment was active

        Raises:
            EnrollmentError: While a save is in flight
        """
        with self._lock:
            if self._mode != MODE_ENROLLMENT:
                return False
            self.enroller.cancel()
            self._teardown()
            return True

    def enrollment_status(self) -> Dict[str, Any]:
        with self._lock:
            self._expire_enrollment()
            status = self.enroller.snapshot().to_dict()
            status['active'] = self._mode == MODE_ENROLLMENT
            return status

    def _enrollment_step(self, generation: int) -> Optional[float]:
        with self._lock:
            if generation != self._generation:
                return None
            remaining = self.enroller.dwell_remaining(self._clock())
            camera = self._camera

        if remaining > 0:
            return remaining

        frame = camera.read()
        detection = self.detector.detect(frame) if frame is not None else None

        with self._lock:
            if generation != self._generation:
                logger.debug('Discarding stale enrollment result')
                return None
            if not self._track_frame(frame):
                return None

            update = self.enroller.step(detection, self._clock())
            if frame is not None:
                streaming.set_frame(draw_enrollment(frame, update), self.stream_id)

            if update.status == EnrollmentStatus.IDLE:
                # Session discarded (timeout)
                self._last_message = update.message
                self._teardown()
                return None
            if update.status != EnrollmentStatus.SCANNING:
                return None

        return update.next_delay

    def _schedule_close(self) -> None:
        if self._close_timer is not None:
            self._close_timer.cancel()
        timer = self._timer_factory(
            self.config.enrollment_close_seconds + CLOSE_MARGIN_SECONDS,
            functools.partial(self._close_enrollment, self._generation),
        )
        timer.daemon = True
        timer.start()
        self._close_timer = timer

    def _close_enrollment(self, generation: int) -> None:
        with self._lock:
            if generation != self._generation:
                return
            self._expire_enrollment()

    def _expire_enrollment(self) -> None:
        if self.enroller.expire(self._clock()) and self._mode == MODE_ENROLLMENT:
            logger.info('Enrollment closed')
            self._teardown()

    # Shared

    def health(self) -> Dict[str, Any]:
        with self._lock:
            return {
                'status': 'ok' if self.models_loaded else 'degraded',
                'service': self.config.service_name,
                'cameraId': self.config.camera_id,
                'mode': self._mode,
                'modelsLoaded': self.models_loaded,
                'modelError': self.model_error,
                'identities': len(self.recognizer.references),
                'streaming': streaming.is_streaming(self.stream_id),
                'uptime': format_uptime(self._clock() - self.started_at),
            }

    def shutdown(self) -> None:
        """Stop whichever mode is running."""
        with self._lock:
            if self.enroller.is_active() and self.enroller.status != EnrollmentStatus.SAVING:
                self.enroller.cancel()
            if self._mode != MODE_IDLE:
                self._teardown()
            self.recognizer.stop_session()

    def _set_mode(self, mode: str) -> None:
        self._mode = mode
        set_scanner_mode(mode)

    def _ensure_ready(self) -> None:
        if not self.models_loaded:
            reason = f': {self.model_error}' if self.model_error else ''
            raise ScannerError(f'Face models are not loaded{reason}')

    def _acquire_camera(self) -> Any:
        try:
            return self._camera_opener(self.config)
        except CameraError as e:
            logger.error(f'Camera unavailable: {e}')
            raise ScannerError('Camera unavailable. Check the connection and permissions.') from e

    def _start_loop(self, step: Callable[[int], Optional[float]], name: str) -> None:
        camera = self._camera
        self._loop = self._loop_factory(
            functools.partial(step, self._generation),
            name=name,
            on_exit=camera.release,
        )
        self._loop.start()

    def _track_frame(self, frame: Optional[np.ndarray]) -> bool:
        """Count read failures; False once the stream is considered lost."""
        if frame is not None:
            self._read_failures = 0
            return True

        self._read_failures += 1
        logger.warning(f'Failed to read frame ({self._read_failures}/{MAX_READ_FAILURES})')
        if self._read_failures < MAX_READ_FAILURES:
            return True

        logger.error('Camera stream lost, stopping scanner')
        if self.enroller.is_active() and self.enroller.status != EnrollmentStatus.SAVING:
            self.enroller.cancel()
        self._teardown()
        self.recognizer.stop_session()
        self._last_message = MSG_CAMERA_LOST
        return False

    def _teardown(self) -> None:
        """Stop the loop, release the camera and return to idle. Lock must be held."""
        self._generation += 1

        if self._close_timer is not None:
            self._close_timer.cancel()
            self._close_timer = None

        loop, camera = self._loop, self._camera
        self._loop = None
        self._camera = None

        if loop is not None and loop.is_alive():
            # The loop thread releases the camera after its last read
            loop.stop(join_timeout=0)
        elif camera is not None:
            camera.release()

        self._set_mode(MODE_IDLE)
        self._read_failures = 0
        streaming.clear_frame(self.stream_id)


# Preview drawing (BGR)

_YELLOW = (0, 255, 255)
_GREEN = (0, 255, 0)
_LIME = (50, 205, 50)
_RED = (0, 0, 255)


def _circle_params(box):
    center = (int(box.center.x), int(box.center.y))
    radius = int(box.width / 2) + 5
    return center, radius


def draw_recognition(frame: np.ndarray, update: RecognitionUpdate) -> np.ndarray:
    """Annotate a frame with the recognition phase and progress."""
    canvas = frame.copy()

    if update.box is not None:
        center, radius = _circle_params(update.box)
        if update.phase == RecognitionPhase.STABILIZING:
            cv2.circle(canvas, center, radius, _YELLOW, 3)
            if update.progress > 0:
                cv2.ellipse(canvas, center, (radius + 3, radius + 3), 0,
                            -90, -90 + 360 * update.progress, _GREEN, 5)
        elif update.phase == RecognitionPhase.RECOGNIZED:
            cv2.circle(canvas, center, radius, _GREEN, 4)
        elif update.phase == RecognitionPhase.UNKNOWN:
            cv2.circle(canvas, center, radius, _RED, 4)

    _draw_message(canvas, update.message)
    return canvas


def draw_enrollment(frame: np.ndarray, update: EnrollmentUpdate) -> np.ndarray:
    """Annotate a frame with the enrollment box and guidance."""
    canvas = frame.copy()

    if update.box is not None:
        box = update.box
        top_left = (int(box.x), int(box.y))
        bottom_right = (int(box.x + box.width), int(box.y + box.height))
        if update.pose_matched:
            cv2.rectangle(canvas, top_left, bottom_right, _LIME, 4)
        else:
            cv2.rectangle(canvas, top_left, bottom_right, _YELLOW, 2)

    _draw_message(canvas, f'{update.message} ({update.progress:.0%})')
    return canvas


def _draw_message(canvas: np.ndarray, text: str) -> None:
    if not text:
        return
    position = (10, canvas.shape[0] - 15)
    cv2.putText(canvas, text, position, cv2.FONT_HERSHEY_SIMPLEX, 0.6, (0, 0, 0), 3)
    cv2.putText(canvas, text, position, cv2.FONT_HERSHEY_SIMPLEX, 0.6, (255, 255, 255), 2)
