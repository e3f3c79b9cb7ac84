"""
Capture resource tests: shared sink reuse, stream ownership and viewer sync.
"""

import asyncio
import time

from conftest import FakeEngine, FakeOpener
from gaze_system.sensors.eye_tracking.capture import (
    CaptureResourceManager,
    ensure_sink,
    feedback_box_ratio,
    get_sink,
    preview_size,
)
from gaze_system.sensors.eye_tracking.errors import CaptureError


def test_preview_size_fits_bounds():
    assert preview_size(1280, 720, 320, 240) == (320, 180)
    assert preview_size(480, 640, 320, 240) == (180, 240)


def test_preview_size_never_upscales():
    assert preview_size(200, 100, 320, 240) == (200, 100)


def test_feedback_box_ratio_is_long_over_short():
    assert feedback_box_ratio(1280, 720) == 1280 / 720
    assert feedback_box_ratio(720, 1280) == 1280 / 720
    assert feedback_box_ratio(0, 480) == 1.0


def test_ensure_sink_returns_same_sink(config):
    assert ensure_sink(config) is ensure_sink(config)
    assert get_sink(config.sink_id) is not None


def test_ensure_stream_attaches_and_release_stops(config, opener):
    manager = CaptureResourceManager(config, stream_opener=opener)

    assert asyncio.run(manager.ensure_stream()) is True
    sink = manager.sink
    stream = opener.streams[0]
    assert sink.source is stream
    assert manager.owns_stream
    assert sink.video_size == (640, 480)

    asyncio.run(manager.release_stream())
    assert sink.source is None
    assert stream.stopped
    assert not manager.owns_stream


def test_existing_stream_is_reused_and_left_alone(config, opener):
    owner = CaptureResourceManager(config, stream_opener=opener)
    other = CaptureResourceManager(config, stream_opener=opener)

    async def scenario():
        assert await owner.ensure_stream()
        assert await other.ensure_stream()

    asyncio.run(scenario())
    assert opener.calls == 1
    assert not other.owns_stream

    asyncio.run(other.release_stream())
    assert owner.sink.source is opener.streams[0]
    assert not opener.streams[0].stopped
    asyncio.run(owner.release_stream())
    assert opener.streams[0].stopped


def test_release_without_stream_is_noop(config, opener):
    manager = CaptureResourceManager(config, stream_opener=opener)
    asyncio.run(manager.release_stream())
    assert opener.calls == 0


def test_opener_failure_reports_false(config):
    failing = FakeOpener(error=CaptureError("no camera"))
    manager = CaptureResourceManager(config, stream_opener=failing)

    assert asyncio.run(manager.ensure_stream()) is False
    assert manager.sink.source is None


def test_opener_returning_none_reports_false(config):
    async def nothing(constraints):
        return None

    manager = CaptureResourceManager(config, stream_opener=nothing)
    assert asyncio.run(manager.ensure_stream()) is False


def test_opener_receives_camera_constraints(config):
    seen = []

    def record(constraints):
        seen.append(constraints)
        return None

    asyncio.run(CaptureResourceManager(config, stream_opener=record).ensure_stream())
    assert seen == [config.camera_constraints()]


def test_sync_viewer_pushes_preview_once(config, opener):
    engine = FakeEngine()
    manager = CaptureResourceManager(config, stream_opener=FakeOpener(1280, 720))

    async def scenario():
        await manager.ensure_stream()
        first = await manager.sync_viewer(engine)
        second = await manager.sync_viewer(engine)
        return first, second

    first, second = asyncio.run(scenario())
    asyncio.run(manager.release_stream())

    assert first == (320, 180)
    assert second is None
    assert engine.viewer_sizes == [(320, 180)]
    assert engine.params['face_feedback_box_ratio'] == 1280 / 720
    assert engine.feedback_box is True


def test_sync_viewer_without_dimensions_does_nothing(config):
    engine = FakeEngine()
    manager = CaptureResourceManager(config, stream_opener=FakeOpener())

    assert asyncio.run(manager.sync_viewer(engine)) is None
    assert engine.viewer_sizes == []
    assert asyncio.run(manager.sync_viewer(None)) is None


def test_release_keeps_event_loop_responsive(config):
    slow = FakeOpener(read_delay=0.3)
    manager = CaptureResourceManager(config, stream_opener=slow)
    ticks = []

    async def ticker():
        for _ in range(15):
            ticks.append(time.monotonic())
            await asyncio.sleep(0.01)

    async def scenario():
        await manager.ensure_stream()
        await asyncio.sleep(0.05)
        ticking = asyncio.ensure_future(ticker())
        await asyncio.sleep(0)
        await manager.release_stream()
        await ticking

    asyncio.run(scenario())
    stream = slow.streams[0]
    gaps = [b - a for a, b in zip(ticks, ticks[1:])]
    assert max(gaps) < 0.15
    assert stream.stopped
    assert not stream.stopped_during_read
    assert manager.sink.source is None


def test_detach_does_not_wait_for_reader(config):
    slow = FakeOpener(read_delay=0.3)
    manager = CaptureResourceManager(config, stream_opener=slow)

    async def scenario():
        await manager.ensure_stream()
        await asyncio.sleep(0.05)
        started = time.monotonic()
        reader = manager.sink.detach()
        elapsed = time.monotonic() - started
        await asyncio.to_thread(reader.join, 2)
        return elapsed, reader

    elapsed, reader = asyncio.run(scenario())
    assert elapsed < 0.1
    assert not reader.is_alive()
    assert manager.sink.latest_frame() is None
    slow.streams[0].stop()


def test_reattached_sink_ignores_previous_reader(config):
    first = FakeOpener(width=320, height=240, read_delay=0.1)
    second = FakeOpener(width=640, height=480)
    old = CaptureResourceManager(config, stream_opener=first)
    new = CaptureResourceManager(config, stream_opener=second)

    async def scenario():
        await old.ensure_stream()
        await asyncio.sleep(0.02)
        old.sink.detach()
        await new.ensure_stream()
        await asyncio.sleep(0.2)
        frame = new.sink.latest_frame()
        await new.release_stream()
        return frame

    frame = asyncio.run(scenario())
    assert frame.shape[:2] == (480, 640)
    first.streams[0].stop()
