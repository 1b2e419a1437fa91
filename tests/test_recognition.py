from datetime import date, datetime

import numpy as np

from attendance_scanner.recognition.matching import ReferenceSet
from attendance_scanner.recognition.recognizer import (
    MSG_FACE_DETECTED,
    MSG_NO_REFERENCES,
    MSG_SEARCHING,
    MSG_UNKNOWN,
    RecognitionController,
    RecognitionPhase,
)
from attendance_scanner.recognition.types import Box, EnrolledIdentity

from conftest import make_detection, unit

TODAY = datetime(2024, 3, 4, 15, 30, 0)


class AttendanceSink:
    def __init__(self, result=True):
        self.result = result
        self.calls = []

    def __call__(self, identity_id, day, seen_at):
        self.calls.append((identity_id, day, seen_at))
        if isinstance(self.result, Exception):
            raise self.result
        return self.result


def near(index, offset=0.1):
    """Descriptor at the given distance from unit(index)."""
    v = unit(index)
    v[7] += offset
    return v


def make_controller(sink, announcer=None, identities=None):
    identities = identities if identities is not None else [
        EnrolledIdentity('S1', unit(0), name='Sara'),
        EnrolledIdentity('S9', unit(1)),
    ]
    return RecognitionController(
        record_attendance=sink,
        announce=announcer,
        references=ReferenceSet(identities),
        wall_clock=lambda: TODAY,
    )


def feed(controller, clock, descriptor, count, box=None, step=0.1):
    update = None
    for _ in range(count):
        update = controller.process(make_detection(descriptor, box=box), clock())
        if update.pending_attendance is not None:
            identity_id, seen_at = update.pending_attendance
            saved = controller.write_attendance(identity_id, seen_at)
            update = controller.finish_attendance(identity_id, saved)
        clock.advance(step)
    return update


def test_stable_matching_face_is_recognized_once(clock, announcer):
    sink = AttendanceSink()
    controller = make_controller(sink, announcer)

    update = feed(controller, clock, near(0), 5)
    assert update.phase == RecognitionPhase.STABILIZING
    assert sink.calls == []

    update = feed(controller, clock, near(0), 1)
    assert update.phase == RecognitionPhase.RECOGNIZED
    assert update.identity_id == 'S1'
    assert update.message == 'Welcome, Sara!'
    assert sink.calls == [('S1', date(2024, 3, 4), TODAY)]
    assert announcer.messages == ['Welcome, Sara']

    # Past the hold, the same face is recognized again without a second write
    clock.advance(controller.recognized_hold_seconds)
    update = feed(controller, clock, near(0), 6)
    assert update.phase == RecognitionPhase.RECOGNIZED
    assert len(sink.calls) == 1
    assert announcer.messages == ['Welcome, Sara']


def test_progress_tracks_leader_votes(clock):
    controller = make_controller(AttendanceSink())

    feed(controller, clock, near(0), 3)

    assert controller.session.votes['S1'] == 2
    assert controller.snapshot().progress == 2 / 5


def test_movement_restarts_voting(clock):
    sink = AttendanceSink()
    controller = make_controller(sink)

    feed(controller, clock, near(0), 4)
    update = controller.process(make_detection(near(0), box=Box(160.0, 100.0, 120.0, 120.0)), clock())

    assert update.phase == RecognitionPhase.IDLE
    assert update.message == MSG_FACE_DETECTED
    assert sum(controller.session.votes.values()) == 0
    assert sink.calls == []


def test_small_jitter_keeps_votes(clock):
    controller = make_controller(AttendanceSink())

    controller.process(make_detection(near(0)), clock())
    clock.advance(0.1)
    controller.process(make_detection(near(0), box=Box(110.0, 105.0, 120.0, 120.0)), clock())

    assert controller.session.votes['S1'] == 1


def test_unknown_face_times_out_without_attendance(clock, announcer):
    sink = AttendanceSink()
    controller = make_controller(sink, announcer)
    stranger = np.full(8, 5.0)

    update = feed(controller, clock, stranger, 27)

    assert update.phase == RecognitionPhase.UNKNOWN
    assert update.message == MSG_UNKNOWN
    assert sink.calls == []
    assert announcer.messages == []

    # Held for the unknown hold, then back to idle
    assert controller.is_holding(clock())
    clock.advance(controller.unknown_hold_seconds)
    update = controller.process(None, clock())
    assert update.phase == RecognitionPhase.IDLE
    assert update.message == MSG_SEARCHING


def test_face_leaving_resets(clock):
    controller = make_controller(AttendanceSink())

    feed(controller, clock, near(0), 3)
    update = controller.process(None, clock())

    assert update.phase == RecognitionPhase.IDLE
    assert update.box is None
    assert sum(controller.session.votes.values()) == 0


def test_failed_write_is_retried_on_next_sighting(clock, announcer):
    sink = AttendanceSink(result=False)
    controller = make_controller(sink, announcer)

    update = feed(controller, clock, near(0), 6)
    assert update.phase == RecognitionPhase.RECOGNIZED
    assert update.message == 'Welcome, Sara! Attendance not saved.'
    assert 'S1' not in controller.session.greeted
    assert announcer.messages == ['Could not save attendance for Sara']

    sink.result = True
    clock.advance(controller.recognized_hold_seconds)
    feed(controller, clock, near(0), 6)

    assert len(sink.calls) == 2
    assert 'S1' in controller.session.greeted


def test_sink_exception_counts_as_failure(clock):
    sink = AttendanceSink(result=RuntimeError('backend down'))
    controller = make_controller(sink)

    update = feed(controller, clock, near(0), 6)

    assert update.phase == RecognitionPhase.RECOGNIZED
    assert 'S1' not in controller.session.greeted


def test_new_session_forgets_greetings(clock):
    sink = AttendanceSink()
    controller = make_controller(sink)
    feed(controller, clock, near(0), 6)

    controller.stop_session()
    controller.start_session()
    feed(controller, clock, near(0), 6)

    assert len(sink.calls) == 2


def test_no_references(clock):
    controller = make_controller(AttendanceSink(), identities=[])

    update = controller.process(make_detection(unit(0)), clock())

    assert update.phase == RecognitionPhase.IDLE
    assert update.no_references is True
    assert update.message == MSG_NO_REFERENCES


def test_reference_swap_applies_to_later_ticks(clock):
    sink = AttendanceSink()
    controller = make_controller(sink, identities=[])

    controller.set_references(ReferenceSet([EnrolledIdentity('S5', unit(3))]))
    update = feed(controller, clock, near(3), 6)

    assert update.identity_id == 'S5'
    assert update.no_references is False


def test_process_hands_out_write_instead_of_calling_sink(clock):
    sink = AttendanceSink()
    controller = make_controller(sink)

    updates = [controller.process(make_detection(near(0)), clock.advance(0.1)) for _ in range(6)]

    assert updates[-1].phase == RecognitionPhase.RECOGNIZED
    assert updates[-1].pending_attendance == ('S1', TODAY)
    assert sink.calls == []

    # A second recognition while the write is still out hands out nothing
    clock.advance(controller.recognized_hold_seconds)
    updates = [controller.process(make_detection(near(0)), clock.advance(0.1)) for _ in range(6)]
    assert updates[-1].phase == RecognitionPhase.RECOGNIZED
    assert updates[-1].pending_attendance is None

    update = controller.finish_attendance('S1', True)
    assert update.greeted_count == 1
    assert sink.calls == []


def test_failed_write_after_face_left_keeps_message(clock):
    controller = make_controller(AttendanceSink())
    for _ in range(6):
        controller.process(make_detection(near(0)), clock.advance(0.1))

    clock.advance(controller.recognized_hold_seconds + 0.1)
    controller.process(None, clock())
    update = controller.finish_attendance('S1', False)

    assert update.phase == RecognitionPhase.IDLE
    assert update.message == MSG_SEARCHING
    assert 'S1' not in controller.session.greeted
