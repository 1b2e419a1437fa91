import dataclasses

import numpy as np
import pytest

from attendance_scanner.config import load_config
from attendance_scanner.recognition.types import Box, Detection, FaceLandmarks, Point, Pose

# Eye line at y=100, jaw 140px wide, chin 150px below the eyes
_NOSE_POSITIONS = {
    Pose.CENTER: (150.0, 130.0),
    Pose.UP: (150.0, 107.0),
    Pose.DOWN: (150.0, 160.0),
    Pose.LEFT: (185.0, 130.0),
    Pose.RIGHT: (115.0, 130.0),
}


def make_landmarks(pose=Pose.CENTER, scale=1.0):
    nose_x, nose_y = _NOSE_POSITIONS[pose]

    def p(x, y):
        return Point(x * scale, y * scale)

    return FaceLandmarks(
        nose_tip=p(nose_x, nose_y),
        left_eye_outer=p(100.0, 100.0),
        right_eye_outer=p(200.0, 100.0),
        jaw_left=p(80.0, 130.0),
        jaw_right=p(220.0, 130.0),
        jaw_bottom=p(150.0, 250.0),
    )


def make_detection(descriptor, pose=Pose.CENTER, box=None):
    return Detection(
        box=box or Box(100.0, 100.0, 120.0, 120.0),
        landmarks=make_landmarks(pose),
        descriptor=np.asarray(descriptor, dtype=np.float64),
    )


def unit(index, size=8):
    v = np.zeros(size)
    v[index] = 1.0
    return v


class FakeClock:
    def __init__(self, start=1000.0):
        self.now = start

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds
        return self.now


class RecordingAnnouncer:
    def __init__(self):
        self.messages = []

    def __call__(self, text):
        self.messages.append(text)


class FakeCamera:
    def __init__(self, frames=None):
        self.frames = list(frames) if frames is not None else None
        self.released = 0

    def read(self):
        if self.frames is None:
            return np.zeros((240, 320, 3), dtype=np.uint8)
        return self.frames.pop(0) if self.frames else None

    def release(self):
        self.released += 1


class FakeDetector:
    """Returns queued detections in order, then the last one forever."""

    def __init__(self, detections=()):
        self.detections = list(detections)
        self.calls = 0
        self.before_return = None

    def detect(self, frame):
        self.calls += 1
        if self.before_return is not None:
            self.before_return()
        if not self.detections:
            return None
        if len(self.detections) > 1:
            return self.detections.pop(0)
        return self.detections[0]


class ManualLoop:
    """Loop stand-in; the test drives steps with tick()."""

    instances = []

    def __init__(self, step, name='SamplingLoop', on_exit=None):
        self.step = step
        self.name = name
        self.on_exit = on_exit
        self.started = False
        self.stopped = False
        ManualLoop.instances.append(self)

    def start(self):
        self.started = True

    def stop(self, join_timeout=None):
        self.stopped = True

    def is_alive(self):
        return False

    def tick(self):
        return self.step()


class ManualTimer:
    def __init__(self, interval, function):
        self.interval = interval
        self.function = function
        self.daemon = False
        self.started = False
        self.cancelled = False

    def start(self):
        self.started = True

    def cancel(self):
        self.cancelled = True

    def fire(self):
        if not self.cancelled:
            self.function()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def announcer():
    return RecordingAnnouncer()


@pytest.fixture
def config(tmp_path, monkeypatch):
    for name in ('DISTANCE_METRIC', 'MATCH_THRESHOLD', 'VOTE_THRESHOLD', 'CAMERA_ID'):
        monkeypatch.delenv(name, raising=False)
    return dataclasses.replace(
        load_config(),
        camera_id='test-cam',
        cache_file=str(tmp_path / 'cache.pkl'),
        announce_enabled=False,
    )


@pytest.fixture(autouse=True)
def _reset_loops():
    ManualLoop.instances = []
    yield
