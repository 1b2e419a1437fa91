import numpy as np
import pytest

from attendance_scanner.recognition.enrollment import (
    MSG_NO_FACE,
    MSG_SAVE_FAILED,
    MSG_TIMED_OUT,
    EnrollmentController,
    EnrollmentError,
    EnrollmentStatus,
    average_descriptors,
)
from attendance_scanner.recognition.types import Pose

from conftest import make_detection, unit

SEQUENCE = [Pose.CENTER, Pose.UP, Pose.DOWN, Pose.LEFT, Pose.RIGHT]


class RecordingSink:
    def __init__(self, results=(True,)):
        self.results = list(results)
        self.calls = []

    def __call__(self, identity_id, descriptor):
        self.calls.append((identity_id, descriptor.copy()))
        return self.results.pop(0) if len(self.results) > 1 else self.results[0]


def run_ticks(controller, clock, poses, descriptors=None):
    update = None
    for i, pose in enumerate(poses):
        descriptor = descriptors[i] if descriptors else unit(i % 8)
        update = controller.step(make_detection(descriptor, pose), clock())
        if update.next_delay is not None:
            clock.advance(update.next_delay)
    return update


def test_full_scan_then_save(clock, announcer):
    sink = RecordingSink()
    controller = EnrollmentController(sink, announce=announcer, pose_sequence=SEQUENCE)
    controller.start('S2', clock(), display_name='Sam')

    poses = [p for p in SEQUENCE for _ in range(2)]
    descriptors = [unit(i // 2) for i in range(10)]
    update = run_ticks(controller, clock, poses, descriptors)

    assert update.status == EnrollmentStatus.SCANNED
    assert update.next_delay is None
    assert update.progress == 1.0
    assert len(controller.session.captured) == 5
    assert controller.session.captured_poses == SEQUENCE

    update = controller.save(clock())

    assert update.status == EnrollmentStatus.SUCCESS
    assert len(sink.calls) == 1
    subject_id, saved = sink.calls[0]
    assert subject_id == 'S2'
    expected = np.zeros(8)
    expected[:5] = 0.2
    assert np.allclose(saved, expected)
    assert announcer.messages == ['Thank you, Sam, your face is registered.']


def test_average_is_order_independent():
    rng = np.random.default_rng(7)
    descriptors = [rng.normal(size=128) for _ in range(5)]
    forward = average_descriptors(descriptors)
    backward = average_descriptors(list(reversed(descriptors)))
    assert np.array_equal(forward, backward)

    with pytest.raises(ValueError):
        average_descriptors([])


def test_wrong_pose_gives_guidance(clock):
    controller = EnrollmentController(RecordingSink(), pose_sequence=SEQUENCE)
    controller.start('S2', clock())

    update = controller.step(make_detection(unit(0), Pose.LEFT), clock())

    assert update.status == EnrollmentStatus.SCANNING
    assert update.message == 'Look straight at the camera.'
    assert update.progress == 0.0
    assert update.next_delay == controller.interval_seconds


def test_no_face_message(clock):
    controller = EnrollmentController(RecordingSink(), pose_sequence=SEQUENCE)
    controller.start('S2', clock())

    update = controller.step(None, clock())

    assert update.message == MSG_NO_FACE
    assert update.box is None


def test_pose_lost_during_dwell_is_not_captured(clock):
    controller = EnrollmentController(RecordingSink(), pose_sequence=SEQUENCE)
    controller.start('S2', clock())

    update = controller.step(make_detection(unit(0), Pose.CENTER), clock())
    assert update.next_delay == controller.dwell_seconds

    clock.advance(controller.dwell_seconds)
    update = controller.step(make_detection(unit(0), Pose.LEFT), clock())

    assert controller.session.captured == []
    assert update.required_pose == Pose.CENTER
    assert update.message == 'Look straight at the camera.'


def test_tick_inside_dwell_waits(clock):
    controller = EnrollmentController(RecordingSink(), pose_sequence=SEQUENCE)
    controller.start('S2', clock())
    controller.step(make_detection(unit(0), Pose.CENTER), clock())

    clock.advance(0.25)
    update = controller.step(make_detection(unit(0), Pose.CENTER), clock())

    assert update.next_delay == pytest.approx(0.5)
    assert controller.session.captured == []
    assert controller.dwell_remaining(clock()) == pytest.approx(0.5)


def test_failed_save_can_be_retried(clock):
    sink = RecordingSink(results=[False, True])
    controller = EnrollmentController(sink, pose_sequence=[Pose.CENTER])
    controller.start('S2', clock())
    run_ticks(controller, clock, [Pose.CENTER, Pose.CENTER])

    update = controller.save(clock())
    assert update.status == EnrollmentStatus.SCANNED
    assert update.message == MSG_SAVE_FAILED

    update = controller.save(clock())
    assert update.status == EnrollmentStatus.SUCCESS
    assert len(sink.calls) == 2


def test_save_before_scan_is_rejected(clock):
    controller = EnrollmentController(RecordingSink(), pose_sequence=SEQUENCE)
    controller.start('S2', clock())

    with pytest.raises(EnrollmentError):
        controller.save(clock())


def test_cancel_rejected_while_saving(clock):
    controller = EnrollmentController(RecordingSink(), pose_sequence=[Pose.CENTER])
    controller.start('S2', clock())
    run_ticks(controller, clock, [Pose.CENTER, Pose.CENTER])
    controller.begin_save()

    with pytest.raises(EnrollmentError):
        controller.cancel()

    controller.finish_save(True, clock())
    assert controller.cancel() is True
    assert controller.status == EnrollmentStatus.IDLE


def test_second_start_is_rejected(clock):
    controller = EnrollmentController(RecordingSink(), pose_sequence=SEQUENCE)
    controller.start('S2', clock())

    with pytest.raises(EnrollmentError):
        controller.start('S3', clock())
    with pytest.raises(EnrollmentError):
        EnrollmentController(RecordingSink()).start('', clock())


def test_timeout_discards_session(clock):
    controller = EnrollmentController(RecordingSink(), pose_sequence=SEQUENCE, timeout_seconds=10)
    controller.start('S2', clock())

    clock.advance(11)
    update = controller.step(make_detection(unit(0), Pose.CENTER), clock())

    assert update.status == EnrollmentStatus.IDLE
    assert update.message == MSG_TIMED_OUT
    assert not controller.is_active()


def test_success_closes_after_delay(clock):
    controller = EnrollmentController(RecordingSink(), pose_sequence=[Pose.CENTER], close_seconds=2.0)
    controller.start('S2', clock())
    run_ticks(controller, clock, [Pose.CENTER, Pose.CENTER])
    controller.save(clock())

    assert controller.expire(clock() + 1.0) is False
    assert controller.expire(clock() + 2.0) is True
    assert controller.status == EnrollmentStatus.IDLE
