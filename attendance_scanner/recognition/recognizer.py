"""
Streaming recognition state machine.

Phases: idle -> stabilizing -> recognized | unknown -> idle

A face is anchored when first seen; while it stays within the jitter
tolerance every frame's descriptor is matched and confident matches are
counted as votes. The face is recognized once one identity collects enough
votes inside the stabilization window, otherwise it is reported unknown.
Voting over several frames suppresses one-off false positives from motion
blur, occlusion or a briefly similar-looking face.

Recognizing an identity not yet greeted this session hands out a pending
attendance write on the update instead of calling the sink, so the caller
can run the write outside its own lock and report back with
finish_attendance().
"""

from collections import Counter
from dataclasses import dataclass, field
from datetime import date, datetime
from enum import Enum
from typing import Callable, Optional, Set, Tuple

from ..logging_config import get_logger
from .geometry import center_displacement
from .matching import ReferenceSet, match_descriptor
from .types import Box, Detection

logger = get_logger(__name__)

MSG_SEARCHING = 'Searching...'
MSG_FACE_DETECTED = 'Face detected. Hold still.'
MSG_VERIFYING = 'Verifying...'
MSG_UNKNOWN = 'Unrecognized face.'
MSG_NO_REFERENCES = 'No registered faces.'
MSG_OFFLINE = 'Scanner is offline.'


class RecognitionPhase(str, Enum):
    IDLE = 'idle'
    STABILIZING = 'stabilizing'
    RECOGNIZED = 'recognized'
    UNKNOWN = 'unknown'


TERMINAL_PHASES = (RecognitionPhase.RECOGNIZED, RecognitionPhase.UNKNOWN)


@dataclass
class RecognitionSession:
    """State of the single live camera session."""

    phase: RecognitionPhase = RecognitionPhase.IDLE
    anchor_box: Optional[Box] = None
    anchor_started_at: Optional[float] = None
    votes: Counter = field(default_factory=Counter)
    greeted: Set[str] = field(default_factory=set)
    writing: Set[str] = field(default_factory=set)
    hold_until: Optional[float] = None
    recognized_id: Optional[str] = None
    last_box: Optional[Box] = None
    progress: float = 0.0
    message: str = MSG_SEARCHING


@dataclass(frozen=True)
class RecognitionUpdate:
    """Outcome of one tick, for display."""

    phase: RecognitionPhase
    message: str
    progress: float = 0.0
    identity_id: Optional[str] = None
    box: Optional[Box] = None
    no_references: bool = False
    greeted_count: int = 0
    pending_attendance: Optional[Tuple[str, datetime]] = None

    def to_dict(self) -> dict:
        return {
            'phase': self.phase.value,
            'message': self.message,
            'progress': round(self.progress, 3),
            'identityId': self.identity_id,
            'noReferences': self.no_references,
            'greeted': self.greeted_count,
        }


class RecognitionController:
    """
    Vote-based recognition over a stream of single-face detections.

    The enrolled references are held as an immutable snapshot; replacing
    the snapshot never affects a tick that already read the previous one.
    """

    def __init__(
        self,
        record_attendance: Optional[Callable[[str, date, datetime], bool]] = None,
        announce: Optional[Callable[[str], None]] = None,
        references: Optional[ReferenceSet] = None,
        match_threshold: float = 0.55,
        metric: str = 'euclidean',
        vote_threshold: int = 5,
        max_stabilization_seconds: float = 2.5,
        jitter_tolerance: float = 20.0,
        recognized_hold_seconds: float = 4.0,
        unknown_hold_seconds: float = 2.0,
        wall_clock: Callable[[], datetime] = datetime.now
    ):
        """
        Args:
            record_attendance: Sink upserting (identity_id, day, seen_at); returns success
            announce: Best-effort notification callback
            references: Initial reference snapshot
            match_threshold: Match accepted only if distance is below this
            metric: Descriptor distance metric
            vote_threshold: Votes needed to recognize
            max_stabilization_seconds: Time allowed before giving up as unknown
            jitter_tolerance: Max anchor center displacement in pixels
            recognized_hold_seconds: Display time of a welcome
            unknown_hold_seconds: Display time of a rejection
            wall_clock: Source of attendance timestamps
        """
        if vote_threshold < 1:
            raise ValueError('vote_threshold must be at least 1')

        self._record_attendance = record_attendance
        self._announce = announce
        self._references = references if references is not None else ReferenceSet()
        self.match_threshold = match_threshold
        self.metric = metric
        self.vote_threshold = vote_threshold
        self.max_stabilization_seconds = max_stabilization_seconds
        self.jitter_tolerance = jitter_tolerance
        self.recognized_hold_seconds = recognized_hold_seconds
        self.unknown_hold_seconds = unknown_hold_seconds
        self._wall_clock = wall_clock

        self._session = RecognitionSession()
        self._no_references = self._references.is_empty()

    @property
    def session(self) -> RecognitionSession:
        return self._session

    @property
    def phase(self) -> RecognitionPhase:
        return self._session.phase

    @property
    def references(self) -> ReferenceSet:
        return self._references

    def set_references(self, references: ReferenceSet) -> None:
        """Swap in a new reference snapshot."""
        self._references = references
        logger.info(f'Reference set updated ({len(references)} identities)')

    def start_session(self) -> None:
        """Begin a new camera session; greetings from earlier sessions are forgotten."""
        self._session = RecognitionSession()

    def stop_session(self) -> None:
        self._session = RecognitionSession(message=MSG_OFFLINE)

    def is_holding(self, now: float) -> bool:
        """True while a recognized/unknown result is still being displayed."""
        session = self._session
        return (
            session.phase in TERMINAL_PHASES
            and session.hold_until is not None
            and now < session.hold_until
        )

    def process(self, detection: Optional[Detection], now: float) -> RecognitionUpdate:
        """
        Run one sampling tick.

        Args:
            detection: The single face found this tick, or None
            now: Monotonic timestamp in seconds

        Returns:
            Update describing the current phase
        """
        references = self._references
        session = self._session

        if session.phase in TERMINAL_PHASES:
            if self.is_holding(now):
                return self.snapshot()
            self._reset()

        self._no_references = references.is_empty()
        if self._no_references:
            self._reset(MSG_NO_REFERENCES)
            return self.snapshot()

        if detection is None:
            self._reset(MSG_SEARCHING)
            return self.snapshot()

        session.last_box = detection.box

        if session.phase == RecognitionPhase.IDLE:
            session.phase = RecognitionPhase.STABILIZING
            session.anchor_box = detection.box
            session.anchor_started_at = now
            session.votes.clear()
            session.progress = 0.0
            session.message = MSG_FACE_DETECTED
            logger.debug('Face anchored, stabilizing')
            return self.snapshot()

        displacement = center_displacement(detection.box, session.anchor_box)
        if displacement > self.jitter_tolerance:
            logger.debug(f'Face moved {displacement:.1f}px, restarting stabilization')
            self._reset(MSG_FACE_DETECTED)
            return self.snapshot()

        try:
            result = match_descriptor(
                detection.descriptor, references, self.match_threshold, self.metric
            )
        except ValueError as e:
            logger.warning(f'Descriptor not comparable with references: {e}')
            result = None

        if result is not None and result.matched:
            session.votes[result.identity_id] += 1
            logger.debug(
                f'Vote for {result.identity_id} (distance {result.distance:.3f}, '
                f'votes {session.votes[result.identity_id]})'
            )

        leader, leader_votes = (session.votes.most_common(1) or [(None, 0)])[0]
        session.progress = min(leader_votes / self.vote_threshold, 1.0)
        elapsed = now - session.anchor_started_at

        if leader is not None and leader_votes >= self.vote_threshold:
            return self._recognize(leader, references, now)

        if elapsed > self.max_stabilization_seconds:
            session.phase = RecognitionPhase.UNKNOWN
            session.hold_until = now + self.unknown_hold_seconds
            session.message = MSG_UNKNOWN
            logger.info(
                f'Unrecognized face after {elapsed:.1f}s '
                f'(best votes {leader_votes}/{self.vote_threshold})'
            )
            return self.snapshot()

        session.message = MSG_VERIFYING
        return self.snapshot()

    def _recognize(self, identity_id: str, references: ReferenceSet, now: float) -> RecognitionUpdate:
        session = self._session
        name = references.display_name(identity_id)
        pending = None

        if identity_id in session.greeted:
            logger.debug(f'{identity_id} already greeted this session')
        elif identity_id in session.writing:
            logger.debug(f'Attendance write for {identity_id} still in flight')
        else:
            pending = (identity_id, self._wall_clock())
            session.writing.add(identity_id)

        session.phase = RecognitionPhase.RECOGNIZED
        session.recognized_id = identity_id
        session.hold_until = now + self.recognized_hold_seconds
        session.progress = 1.0
        session.message = f'Welcome, {name}!'
        return self.snapshot(pending_attendance=pending)

    def write_attendance(self, identity_id: str, seen_at: datetime) -> bool:
        """
        Call the attendance sink for a pending write.

        Touches no session state, so callers may run it outside their lock.

        Returns:
            True if the sink reported success
        """
        if self._record_attendance is None:
            return False
        try:
            return bool(self._record_attendance(identity_id, seen_at.date(), seen_at))
        except Exception as e:
            logger.error(f'Attendance sink raised for {identity_id}: {e}', exc_info=True)
            return False

    def finish_attendance(self, identity_id: str, saved: bool) -> RecognitionUpdate:
        """Apply the outcome of a write handed out by process()."""
        session = self._session
        session.writing.discard(identity_id)
        name = self._references.display_name(identity_id)

        if saved:
            session.greeted.add(identity_id)
            logger.info(f'Attendance recorded for {identity_id}')
            self._notify(f'Welcome, {name}')
        else:
            # Not marked greeted, so the next sighting tries again
            logger.error(f'Failed to record attendance for {identity_id}')
            if session.phase == RecognitionPhase.RECOGNIZED and session.recognized_id == identity_id:
                session.message = f'Welcome, {name}! Attendance not saved.'
            self._notify(f'Could not save attendance for {name}')

        return self.snapshot()

    def snapshot(self, pending_attendance: Optional[Tuple[str, datetime]] = None) -> RecognitionUpdate:
        session = self._session
        return RecognitionUpdate(
            phase=session.phase,
            message=session.message,
            progress=session.progress,
            identity_id=session.recognized_id,
            box=session.last_box,
            no_references=self._no_references,
            greeted_count=len(session.greeted),
            pending_attendance=pending_attendance,
        )

    def _reset(self, message: str = MSG_SEARCHING) -> None:
        """Back to idle, keeping the greeted set of this camera session."""
        session = self._session
        session.phase = RecognitionPhase.IDLE
        session.anchor_box = None
        session.anchor_started_at = None
        session.votes.clear()
        session.hold_until = None
        session.recognized_id = None
        session.progress = 0.0
        session.message = message
        if message in (MSG_SEARCHING, MSG_NO_REFERENCES):
            session.last_box = None

    def _notify(self, text: str) -> None:
        if self._announce is None:
            return
        try:
            self._announce(text)
        except Exception as e:
            logger.warning(f'Announcement failed: {e}')
