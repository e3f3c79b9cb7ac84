"""
Capture Resources
Shared capture sink (hidden video feed the engine reads from), OpenCV camera
streams, and the per-consumer manager that attaches and releases them.
"""

import asyncio
import logging
import threading
import time
from typing import Any, Callable, Dict, Optional, Tuple

import cv2
import numpy as np

from .config import EyeTrackingConfig
from .engine import maybe_await
from .errors import CaptureError

logger = logging.getLogger(__name__)

StreamOpener = Callable[[dict], Any]

_SINKS: Dict[str, 'CaptureSink'] = {}
_SINKS_LOCK = threading.Lock()


def capture_supported() -> bool:
    """True when the runtime can open camera streams at all"""
    return callable(getattr(cv2, 'VideoCapture', None))


def preview_size(width: int, height: int, max_width: int, max_height: int) -> Tuple[int, int]:
    """Scale (width, height) down to fit the preview bounds, never up"""
    if width <= 0 or height <= 0:
        return max(1, width), max(1, height)
    scale = min(max_width / width, max_height / height, 1.0)
    return max(1, round(width * scale)), max(1, round(height * scale))


def feedback_box_ratio(width: int, height: int) -> float:
    """Long side over short side; sizes the face box to span the whole frame"""
    short, long_ = min(width, height), max(width, height)
    return long_ / short if short > 0 else 1.0


class OpenCVStream:
    """Camera stream backed by cv2.VideoCapture"""

    def __init__(self, capture, camera_index: int = 0, facing: str = 'user'):
        self._capture = capture
        self.camera_index = camera_index
        self.facing = facing
        self.width = int(capture.get(cv2.CAP_PROP_FRAME_WIDTH) or 0)
        self.height = int(capture.get(cv2.CAP_PROP_FRAME_HEIGHT) or 0)

    @classmethod
    def open(cls, constraints: dict, camera_index: int = 0) -> 'OpenCVStream':
        """
        Open a camera with ideal width/height/fps from the constraints.

        Raises:
            CaptureError if the device cannot be opened.
        """
        video = constraints.get('video') or {}
        capture = cv2.VideoCapture(camera_index)
        if not capture.isOpened():
            capture.release()
            raise CaptureError(f"Camera {camera_index} could not be opened")

        width = (video.get('width') or {}).get('ideal')
        height = (video.get('height') or {}).get('ideal')
        fps = (video.get('frame_rate') or {}).get('ideal')
        if width:
            capture.set(cv2.CAP_PROP_FRAME_WIDTH, width)
        if height:
            capture.set(cv2.CAP_PROP_FRAME_HEIGHT, height)
        if fps:
            capture.set(cv2.CAP_PROP_FPS, fps)

        # OpenCV has no facing selection; the device index decides.
        return cls(capture, camera_index, video.get('facing_mode') or 'user')

    @property
    def active(self) -> bool:
        return self._capture is not None

    def read(self) -> Optional[np.ndarray]:
        if self._capture is None:
            return None
        ok, frame = self._capture.read()
        return frame if ok else None

    def stop(self):
        if self._capture is not None:
            self._capture.release()
            self._capture = None

    def __repr__(self):
        return f"<OpenCVStream(index={self.camera_index}, {self.width}x{self.height}, active={self.active})>"


async def open_camera_stream(constraints: dict, camera_index: int = 0) -> OpenCVStream:
    return await asyncio.to_thread(OpenCVStream.open, constraints, camera_index)


class CaptureSink:
    """
    Process-wide frame sink the engine reads from.

    Holds at most one source stream. While playing, a reader thread keeps
    only the most recent frame; pixel dimensions become known with the
    first frame (or from the stream, if it reports them).

    detach() never blocks: it signals the reader and hands the thread back
    so an async caller can join it off the event loop. Each reader has its
    own stop event, so a late reader cannot publish into a newer source.
    """

    def __init__(self, sink_id: str, width: int = 0, height: int = 0):
        self.sink_id = sink_id
        self.width = width
        self.height = height
        self.source = None

        self._frame_lock = threading.Lock()
        self._latest: Optional[np.ndarray] = None
        self._video_size: Tuple[int, int] = (0, 0)
        self._metadata = threading.Event()

        self._reader: Optional[threading.Thread] = None
        self._reader_stop: Optional[threading.Event] = None
        self.frame_count = 0

    @property
    def playing(self) -> bool:
        return self._reader is not None and self._reader.is_alive()

    @property
    def has_metadata(self) -> bool:
        return self._metadata.is_set()

    @property
    def video_size(self) -> Tuple[int, int]:
        return self._video_size

    def attach(self, stream):
        if self.source is stream:
            return
        if self.source is not None:
            self.detach()
        self.source = stream
        width = int(getattr(stream, 'width', 0) or 0)
        height = int(getattr(stream, 'height', 0) or 0)
        if width and height:
            self._set_video_size(width, height)

    def detach(self) -> Optional[threading.Thread]:
        """
        Drop the source and signal its reader to stop.

        Returns:
            The reader thread, possibly still inside a read, or None.
        """
        reader = self._signal_reader_stop()
        self.source = None
        with self._frame_lock:
            self._latest = None
            self._video_size = (0, 0)
            self._metadata.clear()
        return reader

    async def play(self):
        """Start the reader thread for the attached source"""
        if self.source is None or self.playing:
            return
        stop_event = threading.Event()
        self._reader_stop = stop_event
        self._reader = threading.Thread(
            target=self._read_loop,
            args=(self.source, stop_event),
            name=f"CaptureSink-{self.sink_id}",
            daemon=True,
        )
        self._reader.start()

    def latest_frame(self) -> Optional[np.ndarray]:
        with self._frame_lock:
            return self._latest

    async def wait_for_metadata(self, timeout: float) -> bool:
        if self._metadata.is_set():
            return True
        return await asyncio.to_thread(self._metadata.wait, timeout)

    def _set_video_size(self, width: int, height: int):
        self._video_size = (width, height)
        self._metadata.set()

    def _read_loop(self, source, stop_event: threading.Event):
        while not stop_event.is_set():
            try:
                frame = source.read()
            except Exception as e:
                if stop_event.is_set():
                    break
                logger.error(f"Error reading from capture source: {e}", exc_info=True)
                time.sleep(0.1)
                continue

            if frame is None:
                time.sleep(0.01)
                continue

            with self._frame_lock:
                if stop_event.is_set():
                    break
                self._latest = frame
                self.frame_count += 1
                if not self._metadata.is_set():
                    h, w = frame.shape[:2]
                    self._set_video_size(int(w), int(h))

    def _signal_reader_stop(self) -> Optional[threading.Thread]:
        if self._reader_stop is not None:
            self._reader_stop.set()
        reader = self._reader
        self._reader = None
        self._reader_stop = None
        if reader is None or not reader.is_alive() or reader is threading.current_thread():
            return None
        return reader

    def __repr__(self):
        w, h = self._video_size
        return f"<CaptureSink(id={self.sink_id}, source={'yes' if self.source else 'no'}, {w}x{h})>"


def stop_stream_after(stream, reader: Optional[threading.Thread] = None, timeout: float = 2.0):
    """
    Wait for a signalled reader to leave its read, then stop the stream.

    Blocking; call it through asyncio.to_thread from the event loop.
    """
    if reader is not None:
        reader.join(timeout)
        if reader.is_alive():
            logger.warning(f"Capture reader still busy after {timeout}s, stopping stream anyway")
    stream.stop()


def get_sink(sink_id: str) -> Optional[CaptureSink]:
    with _SINKS_LOCK:
        return _SINKS.get(sink_id)


def ensure_sink(config: EyeTrackingConfig) -> CaptureSink:
    """Return the sink registered under config.sink_id, creating it once"""
    with _SINKS_LOCK:
        sink = _SINKS.get(config.sink_id)
        if sink is None:
            sink = CaptureSink(config.sink_id, config.camera_width, config.camera_height)
            _SINKS[config.sink_id] = sink
            logger.debug(f"Created capture sink '{config.sink_id}'")
        return sink


def remove_sink(sink_id: str):
    """Detach and forget a sink (process teardown and tests)"""
    with _SINKS_LOCK:
        sink = _SINKS.pop(sink_id, None)
    if sink is not None:
        sink.detach()


class CaptureResourceManager:
    """
    Per-consumer handle on the shared capture sink.

    Only stops streams it opened itself; a stream another consumer (or the
    engine) attached is reused and left alone.
    """

    def __init__(
        self,
        config: Optional[EyeTrackingConfig] = None,
        stream_opener: Optional[StreamOpener] = None,
    ):
        self.config = config or EyeTrackingConfig()
        self._open_stream = stream_opener or self._default_opener
        self._stream = None
        self._last_viewer_size: Optional[Tuple[int, int]] = None

    @property
    def owns_stream(self) -> bool:
        return self._stream is not None

    @property
    def sink(self) -> Optional[CaptureSink]:
        return get_sink(self.config.sink_id)

    async def _default_opener(self, constraints: dict):
        return await open_camera_stream(constraints, self.config.camera_index)

    async def ensure_stream(self) -> bool:
        """
        Make sure the shared sink has a playing source.

        Returns:
            True if a source is attached when the call finishes.
        """
        sink = ensure_sink(self.config)
        if sink.source is not None:
            await sink.play()
            return True

        try:
            stream = await maybe_await(self._open_stream(self.config.camera_constraints()))
        except Exception as e:
            logger.warning(f"Camera stream request failed: {e}")
            return False

        if stream is None:
            return False

        if sink.source is not None:
            # Someone else attached while the camera was opening.
            stream.stop()
            await sink.play()
            return True

        self._stream = stream
        sink.attach(stream)
        await sink.play()
        logger.info(f"✓ Camera stream attached to sink '{sink.sink_id}'")
        return sink.source is not None

    async def release_stream(self):
        """
        Detach and stop the stream this manager opened, if any.

        The sink lets go immediately; waiting for the reader and stopping
        the camera happen on a worker thread so the loop keeps running.
        """
        stream = self._stream
        if stream is None:
            return
        self._stream = None

        reader = None
        sink = self.sink
        if sink is not None and sink.source is stream:
            reader = sink.detach()
        try:
            await asyncio.to_thread(stop_stream_after, stream, reader)
        except Exception as e:
            logger.warning(f"Error stopping camera stream: {e}")
        logger.info("✓ Camera stream released")

    async def sync_viewer(self, engine) -> Optional[Tuple[int, int]]:
        """
        Push a bounded preview size and face-box ratio to the engine.

        Returns:
            The preview size applied, or None if dimensions are unknown or
            unchanged since the last call.
        """
        if engine is None:
            return None

        sink = ensure_sink(self.config)
        if not sink.has_metadata:
            await sink.wait_for_metadata(self.config.metadata_timeout_s)

        width, height = (int(round(v)) for v in sink.video_size)
        if not width or not height:
            return None
        if self._last_viewer_size == (width, height):
            return None
        self._last_viewer_size = (width, height)

        display = preview_size(
            width, height, self.config.preview_max_width, self.config.preview_max_height
        )
        engine.set_video_viewer_size(*display)

        if getattr(engine, 'params', None) is None:
            engine.params = {}
        engine.params['face_feedback_box_ratio'] = feedback_box_ratio(width, height)
        engine.show_face_feedback_box(True)

        logger.debug(f"Viewer synced to {display[0]}x{display[1]} (video {width}x{height})")
        return display
