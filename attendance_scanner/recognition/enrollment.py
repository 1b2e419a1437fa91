"""
Enrollment state machine.

Guides one subject through a fixed sequence of head poses:
1. Wait until the live face classifies as the required pose
2. Hold the pose for a dwell period to reject transient matches
3. Capture one descriptor per confirmed pose
4. Average all captures into a single reference descriptor

The controller is driven by ticks with an explicit timestamp and never
sleeps; each tick reports how long the sampler should wait before the next
one (None stops sampling).
"""

import math
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, List, Optional, Sequence, Tuple

import numpy as np

from ..logging_config import get_logger
from .pose import classify_pose, pose_instruction
from .types import Box, Detection, Pose

logger = get_logger(__name__)

DEFAULT_POSE_SEQUENCE: Tuple[Pose, ...] = (
    Pose.CENTER, Pose.UP, Pose.DOWN, Pose.LEFT, Pose.RIGHT,
)

MSG_NO_FACE = 'Position face in frame...'
MSG_HOLD = 'Hold steady...'
MSG_SCANNED = 'Scan complete! Press save to confirm.'
MSG_SAVING = 'Saving...'
MSG_SAVED = 'Saved successfully!'
MSG_SAVE_FAILED = 'Save failed. Please try again.'
MSG_TIMED_OUT = 'Scan timed out.'
MSG_READY = 'Get ready to scan...'


class EnrollmentStatus(str, Enum):
    IDLE = 'idle'
    SCANNING = 'scanning'
    SCANNED = 'scanned'
    SAVING = 'saving'
    SUCCESS = 'success'


class EnrollmentError(Exception):
    """Raised when an operation is not allowed in the current state."""


def average_descriptors(descriptors: Sequence[np.ndarray]) -> np.ndarray:
    """
    Component-wise mean of descriptors.

    Each component is summed with math.fsum, which is exactly rounded, so
    the result does not depend on capture order.

    Raises:
        ValueError: If no descriptors are given or lengths differ
    """
    if not descriptors:
        raise ValueError('No descriptors to average')

    stacked = np.vstack([np.asarray(d, dtype=np.float64).ravel() for d in descriptors])
    count = stacked.shape[0]
    return np.array([math.fsum(column) / count for column in stacked.T])


@dataclass
class EnrollmentSession:
    """In-memory state of one active enrollment."""

    subject_id: str
    display_name: str
    required_poses: Tuple[Pose, ...]
    started_at: float
    step_index: int = 0
    captured: List[np.ndarray] = field(default_factory=list)
    captured_poses: List[Pose] = field(default_factory=list)
    status: EnrollmentStatus = EnrollmentStatus.SCANNING
    averaged: Optional[np.ndarray] = None
    dwell_started_at: Optional[float] = None
    close_at: Optional[float] = None
    message: str = MSG_READY
    error: Optional[str] = None
    last_box: Optional[Box] = None
    pose_matched: bool = False

    @property
    def required_pose(self) -> Optional[Pose]:
        if self.step_index < len(self.required_poses):
            return self.required_poses[self.step_index]
        return None

    @property
    def progress(self) -> float:
        return self.step_index / len(self.required_poses)


@dataclass(frozen=True)
class EnrollmentUpdate:
    """Outcome of one tick, for display and scheduling."""

    status: EnrollmentStatus
    message: str
    progress: float = 0.0
    subject_id: Optional[str] = None
    required_pose: Optional[Pose] = None
    box: Optional[Box] = None
    pose_matched: bool = False
    next_delay: Optional[float] = None

    def to_dict(self) -> dict:
        return {
            'status': self.status.value,
            'message': self.message,
            'progress': round(self.progress, 3),
            'subjectId': self.subject_id,
            'requiredPose': self.required_pose.value if self.required_pose else None,
        }


class EnrollmentController:
    """
    Head-pose-gated enrollment for one subject at a time.

    Status flow: idle -> scanning -> scanned -> saving -> success -> idle,
    with saving falling back to scanned on failure so save can be retried.
    """

    def __init__(
        self,
        save_descriptor: Callable[[str, np.ndarray], bool],
        announce: Optional[Callable[[str], None]] = None,
        pose_sequence: Sequence[Pose] = DEFAULT_POSE_SEQUENCE,
        interval_seconds: float = 0.3,
        dwell_seconds: float = 0.75,
        close_seconds: float = 2.0,
        timeout_seconds: float = 120.0
    ):
        """
        Args:
            save_descriptor: Sink persisting (identity_id, descriptor); returns success
            announce: Best-effort notification callback
            pose_sequence: Poses to capture, in order
            interval_seconds: Delay between ordinary ticks
            dwell_seconds: How long a matched pose must hold before capture
            close_seconds: Delay before a successful session closes itself
            timeout_seconds: Scanning sessions older than this are discarded
        """
        if not pose_sequence:
            raise ValueError('Pose sequence must not be empty')

        self._save_descriptor = save_descriptor
        self._announce = announce
        self.pose_sequence = tuple(Pose(p) for p in pose_sequence)
        self.interval_seconds = interval_seconds
        self.dwell_seconds = dwell_seconds
        self.close_seconds = close_seconds
        self.timeout_seconds = timeout_seconds

        self._session: Optional[EnrollmentSession] = None
        self._last_message = ''

    @property
    def session(self) -> Optional[EnrollmentSession]:
        return self._session

    @property
    def status(self) -> EnrollmentStatus:
        return self._session.status if self._session else EnrollmentStatus.IDLE

    def is_active(self) -> bool:
        return self._session is not None

    def dwell_remaining(self, now: float) -> float:
        """Seconds left before a held pose can be confirmed (0 when not dwelling)."""
        session = self._session
        if session is None or session.dwell_started_at is None:
            return 0.0
        return max(0.0, session.dwell_started_at + self.dwell_seconds - now)

    def start(self, subject_id: str, now: float, display_name: Optional[str] = None) -> EnrollmentUpdate:
        """
        Open a scanning session for a subject.

        Raises:
            EnrollmentError: If a session is already active or subject_id is empty
        """
        if not subject_id:
            raise EnrollmentError('A subject id is required')
        if self._session is not None:
            raise EnrollmentError(
                f'Enrollment already active for {self._session.subject_id}'
            )

        self._session = EnrollmentSession(
            subject_id=subject_id,
            display_name=display_name or subject_id,
            required_poses=self.pose_sequence,
            started_at=now,
        )
        logger.info(f'Enrollment started for {subject_id} ({len(self.pose_sequence)} poses)')
        return self.snapshot(next_delay=self.interval_seconds)

    def step(self, detection: Optional[Detection], now: float) -> EnrollmentUpdate:
        """
        Run one sampling tick.

        Args:
            detection: The single face found this tick, or None
            now: Monotonic timestamp in seconds

        Returns:
            Update whose next_delay is None once sampling should stop
        """
        session = self._session
        if session is None or session.status != EnrollmentStatus.SCANNING:
            return self.snapshot()

        if now - session.started_at > self.timeout_seconds:
            logger.warning(f'Enrollment for {session.subject_id} timed out at step {session.step_index}')
            self._discard(MSG_TIMED_OUT)
            return self.snapshot()

        required = session.required_pose

        if session.dwell_started_at is not None:
            remaining = session.dwell_started_at + self.dwell_seconds - now
            if remaining > 0:
                # Sampling is paused while the pose is held
                return self.snapshot(next_delay=remaining)

            session.dwell_started_at = None
            if detection is not None and classify_pose(detection.landmarks) == required:
                return self._capture(session, detection)

            logger.debug(f'Pose {required.value} not held through dwell, capture aborted')

        session.last_box = detection.box if detection is not None else None
        session.pose_matched = False

        if detection is None:
            session.message = MSG_NO_FACE
            return self.snapshot(next_delay=self.interval_seconds)

        pose = classify_pose(detection.landmarks)
        if pose != required:
            session.message = pose_instruction(required)
            return self.snapshot(next_delay=self.interval_seconds)

        session.pose_matched = True
        session.dwell_started_at = now
        session.message = MSG_HOLD
        return self.snapshot(next_delay=self.dwell_seconds)

    def _capture(self, session: EnrollmentSession, detection: Detection) -> EnrollmentUpdate:
        pose = session.required_pose
        session.captured.append(np.asarray(detection.descriptor, dtype=np.float64).ravel().copy())
        session.captured_poses.append(pose)
        session.step_index += 1
        session.last_box = detection.box
        session.pose_matched = True

        logger.info(
            f'Captured pose {pose.value} for {session.subject_id} '
            f'({session.step_index}/{len(session.required_poses)})'
        )

        if session.step_index >= len(session.required_poses):
            session.averaged = average_descriptors(session.captured)
            session.status = EnrollmentStatus.SCANNED
            session.message = MSG_SCANNED
            logger.info(f'Scan complete for {session.subject_id}')
            return self.snapshot()

        session.message = pose_instruction(session.required_pose, first_time=True)
        return self.snapshot(next_delay=self.interval_seconds)

    def begin_save(self) -> Tuple[str, np.ndarray]:
        """
        Move a scanned session to saving.

        Returns:
            (subject_id, averaged descriptor copy) to hand to the sink

        Raises:
            EnrollmentError: If the session is not in scanned state
        """
        session = self._session
        if session is None or session.status != EnrollmentStatus.SCANNED:
            raise EnrollmentError('Nothing scanned to save')

        session.status = EnrollmentStatus.SAVING
        session.message = MSG_SAVING
        session.error = None
        return session.subject_id, session.averaged.copy()

    def finish_save(self, ok: bool, now: float) -> EnrollmentUpdate:
        """Apply the sink result of a save started with begin_save."""
        session = self._session
        if session is None or session.status != EnrollmentStatus.SAVING:
            return self.snapshot()

        if ok:
            session.status = EnrollmentStatus.SUCCESS
            session.message = MSG_SAVED
            session.close_at = now + self.close_seconds
            logger.info(f'Reference descriptor saved for {session.subject_id}')
            self._notify(f'Thank you, {session.display_name}, your face is registered.')
            return self.snapshot(next_delay=self.close_seconds)

        session.status = EnrollmentStatus.SCANNED
        session.message = MSG_SAVE_FAILED
        session.error = MSG_SAVE_FAILED
        logger.error(f'Saving reference descriptor for {session.subject_id} failed')
        return self.snapshot()

    def save(self, now: float) -> EnrollmentUpdate:
        """Persist the averaged descriptor through the sink."""
        subject_id, descriptor = self.begin_save()
        try:
            ok = bool(self._save_descriptor(subject_id, descriptor))
        except Exception:
            self.finish_save(False, now)
            raise
        return self.finish_save(ok, now)

    def expire(self, now: float) -> bool:
        """
        Close a successful session once its display delay has passed.

        Returns:
            True if the session was closed
        """
        session = self._session
        if session is None or session.status != EnrollmentStatus.SUCCESS:
            return False
        if session.close_at is not None and now < session.close_at:
            return False
        self._discard(MSG_SAVED)
        return True

    def cancel(self) -> bool:
        """
        Discard the session without persisting.

        Returns:
            True if there was a session to discard

        Raises:
            EnrollmentError: While a save is in flight
        """
        session = self._session
        if session is None:
            return False
        if session.status == EnrollmentStatus.SAVING:
            raise EnrollmentError('Cannot cancel while saving')

        logger.info(f'Enrollment for {session.subject_id} cancelled at status {session.status.value}')
        self._discard('')
        return True

    def snapshot(self, next_delay: Optional[float] = None) -> EnrollmentUpdate:
        session = self._session
        if session is None:
            return EnrollmentUpdate(status=EnrollmentStatus.IDLE, message=self._last_message)

        return EnrollmentUpdate(
            status=session.status,
            message=session.message,
            progress=session.progress,
            subject_id=session.subject_id,
            required_pose=session.required_pose,
            box=session.last_box,
            pose_matched=session.pose_matched,
            next_delay=next_delay,
        )

    def _discard(self, message: str) -> None:
        self._session = None
        self._last_message = message

    def _notify(self, text: str) -> None:
        if self._announce is None:
            return
        try:
            self._announce(text)
        except Exception as e:
            logger.warning(f'Announcement failed: {e}')
