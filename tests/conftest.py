"""
Shared fakes for the gaze_system tests: a scripted gaze engine, a camera
stream that yields blank frames, and a fast-timing configuration.
"""

import asyncio
import itertools
import time

import numpy as np
import pytest

from gaze_system.sensors.eye_tracking.capture import remove_sink
from gaze_system.sensors.eye_tracking.config import EyeTrackingConfig

_sink_ids = itertools.count(1)


class FakeEngine:
    name = 'fake'

    def __init__(self, begin_delay: float = 0.0, fail_times: int = 0, error: Exception = None):
        self.params = {}
        self.listener = None
        self.begin_delay = begin_delay
        self.fail_times = fail_times
        self.error = error or RuntimeError("begin failed")

        self.begin_calls = 0
        self.end_calls = 0
        self.pause_calls = 0
        self.resume_calls = 0
        self.constraints = None
        self.show_points = None
        self.feedback_box = False
        self.viewer_sizes = []
        self.viewer_error = None

    def set_gaze_listener(self, listener):
        self.listener = listener
        return self

    def set_camera_constraints(self, constraints):
        self.constraints = constraints
        return self

    def show_prediction_points(self, show):
        self.show_points = show

    def show_face_feedback_box(self, show):
        self.feedback_box = show

    def set_video_viewer_size(self, width, height):
        if self.viewer_error is not None:
            raise self.viewer_error
        self.viewer_sizes.append((width, height))
        return self

    async def begin(self):
        self.begin_calls += 1
        if self.begin_delay:
            await asyncio.sleep(self.begin_delay)
        if self.fail_times > 0:
            self.fail_times -= 1
            raise self.error

    def pause(self):
        self.pause_calls += 1

    def resume(self):
        self.resume_calls += 1

    def end(self):
        self.end_calls += 1

    def emit(self, x, y, confidence=None, timestamp_ms=None):
        if self.listener is not None:
            data = {'x': x, 'y': y}
            if confidence is not None:
                data['confidence'] = confidence
            self.listener(data, timestamp_ms)


class FakeStream:
    def __init__(self, width: int = 640, height: int = 480, read_delay: float = 0.005):
        self.width = width
        self.height = height
        self.read_delay = read_delay
        self.stopped = False
        self.reading = False
        self.stopped_during_read = False
        self._frame = np.zeros((height, width, 3), dtype=np.uint8)

    def read(self):
        self.reading = True
        time.sleep(self.read_delay)
        self.reading = False
        return None if self.stopped else self._frame

    def stop(self):
        self.stopped_during_read = self.reading
        self.stopped = True


class FakeOpener:
    """Stream opener that counts calls and can be told to fail"""

    def __init__(self, width: int = 640, height: int = 480, error: Exception = None,
                 read_delay: float = 0.005):
        self.width = width
        self.height = height
        self.error = error
        self.read_delay = read_delay
        self.calls = 0
        self.streams = []

    async def __call__(self, constraints):
        self.calls += 1
        if self.error is not None:
            raise self.error
        stream = FakeStream(self.width, self.height, self.read_delay)
        self.streams.append(stream)
        return stream


@pytest.fixture
def config():
    cfg = EyeTrackingConfig(
        sink_id=f"testFeed{next(_sink_ids)}",
        grace_window_s=0.02,
        watchdog_s=0.05,
        metadata_timeout_s=0.05,
    )
    yield cfg
    remove_sink(cfg.sink_id)


@pytest.fixture
def engine():
    return FakeEngine()


@pytest.fixture
def opener():
    return FakeOpener()
