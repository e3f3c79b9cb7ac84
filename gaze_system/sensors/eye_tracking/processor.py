"""
Eye Tracking Session
Per-consumer binding onto the shared gaze engine. Tracks status, keeps the
latest raw and calibrated gaze points, and self-heals a silent camera.
"""

import asyncio
import logging
import math
import threading
from typing import TYPE_CHECKING, Callable, Generic, List, Optional, Tuple, TypeVar

from .capture import CaptureResourceManager, capture_supported
from .config import EyeTrackingConfig
from .errors import TrackingStatus, classify_failure
from .preference import PermissionPreference
from .transform import GazePoint, Viewport, calibrate_point

if TYPE_CHECKING:
    from gaze_system.coordinator.clock import CentralClock
    from gaze_system.coordinator.lifecycle import EngineLifecycleManager
    from .calibrator import CalibrationCache

logger = logging.getLogger(__name__)

T = TypeVar('T')

StatusListener = Callable[[TrackingStatus, Optional[str]], None]


class PointCell(Generic[T]):
    """
    Single-slot, latest-value-wins cell.

    Written from the engine thread at frame rate and read on demand by a
    render loop; writes never notify anyone.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._value: Optional[T] = None
        self.writes = 0

    def set(self, value: T):
        with self._lock:
            self._value = value
            self.writes += 1

    def get(self) -> Optional[T]:
        with self._lock:
            return self._value

    def clear(self):
        with self._lock:
            self._value = None

    def __repr__(self):
        return f"<PointCell(writes={self.writes}, value={self.get()!r})>"


class EyeTrackingSession:
    """
    One UI consumer of gaze tracking.

    status/error are the only observable fields (listeners fire on
    transitions). `raw` and `calibrated` are overwritten on every engine frame.
    """

    def __init__(
        self,
        lifecycle: 'EngineLifecycleManager',
        calibration: 'CalibrationCache',
        preference: PermissionPreference,
        clock: 'CentralClock',
        config: Optional[EyeTrackingConfig] = None,
        capture: Optional[CaptureResourceManager] = None,
        viewport_provider: Optional[Callable[[], Tuple[int, int]]] = None,
        capability_check: Callable[[], bool] = capture_supported,
        name: str = 'session',
    ):
        """
        Args:
            lifecycle:         Shared engine lifecycle manager
            calibration:       Cached calibration snapshot
            preference:        Tracking permission preference
            clock:             Timestamp source
            config:            Timing and engine defaults
            capture:           Capture manager, one per session
            viewport_provider: Current window size
            capability_check:  Whether the runtime can capture at all
            name:              Label used in logs
        """
        self.lifecycle = lifecycle
        self.calibration = calibration
        self.preference = preference
        self.clock = clock
        self.config = config or EyeTrackingConfig()
        self.capture = capture or CaptureResourceManager(self.config)
        self.viewport_provider = viewport_provider or (lambda: self.config.viewport)
        self.capability_check = capability_check
        self.name = name

        self.enabled = False
        self._status = TrackingStatus.IDLE
        self._error: Optional[str] = None
        self._listeners: List[StatusListener] = []

        self.raw: PointCell[GazePoint] = PointCell()
        self.calibrated: PointCell[GazePoint] = PointCell()
        self.last_gaze_at_ms = 0

        self._generation = 0
        self._holds_ref = False
        self._listening = False
        self._engine = None
        self._started_at_ms = 0
        self._watchdog_handle: Optional[asyncio.TimerHandle] = None
        self._watchdog_task: Optional[asyncio.Task] = None
        self.watchdog_runs = 0

    # ------------------------------------------------------------------
    # Observable state
    # ------------------------------------------------------------------

    @property
    def status(self) -> TrackingStatus:
        return self._status

    @property
    def error(self) -> Optional[str]:
        return self._error

    def on_status(self, listener: StatusListener) -> Callable[[], None]:
        self._listeners.append(listener)
        return lambda: self._listeners.remove(listener) if listener in self._listeners else None

    def _set_status(self, status: TrackingStatus, error: Optional[str] = None):
        if status == self._status and error == self._error:
            return
        self._status = status
        self._error = error
        logger.info(f"[{self.name}] status -> {status.value}" + (f" ({error})" if error else ""))
        for listener in list(self._listeners):
            try:
                listener(status, error)
            except Exception as e:
                logger.error(f"Status listener failed: {e}", exc_info=True)

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def enable(self):
        """
        Start tracking for this consumer.

        Never raises; every failure ends up in status/error.
        """
        if self.enabled:
            return
        self.enabled = True
        self._generation += 1
        generation = self._generation

        if not self.capability_check():
            self._set_status(TrackingStatus.UNSUPPORTED)
            return

        permission = self.preference.get()
        if permission is False:
            self._set_status(TrackingStatus.DENIED)
            await self.capture.release_stream()
            return
        if permission is None:
            self._set_status(TrackingStatus.UNAVAILABLE)
            await self.capture.release_stream()
            return

        self._set_status(TrackingStatus.STARTING)
        self._started_at_ms = self.clock.now_ms()

        try:
            self._holds_ref = True
            engine = await self.lifecycle.acquire()
            if generation != self._generation:
                return

            if engine is None:
                self._set_status(TrackingStatus.UNAVAILABLE, 'gaze engine unavailable')
                self._drop_engine_ref()
                return

            self._engine = engine
            self._listening = True
            self.lifecycle.add_listener(self._on_gaze)

            attached = await self.capture.ensure_stream()
            if generation != self._generation:
                if not self.enabled:
                    # Disabled while the camera was opening.
                    await self.capture.release_stream()
                return
            if not attached:
                logger.warning(f"[{self.name}] no camera stream attached yet, watchdog will retry")

            await self.capture.sync_viewer(engine)
            if generation != self._generation:
                return

            self._set_status(TrackingStatus.ACTIVE)
            self._schedule_watchdog(generation)

        except Exception as e:
            if generation != self._generation:
                return
            status = classify_failure(e)
            logger.error(f"[{self.name}] eye tracking failed to start: {e}", exc_info=True)
            self._detach()
            self._drop_engine_ref()
            if status == TrackingStatus.DENIED:
                self._set_status(TrackingStatus.DENIED)
            else:
                self._set_status(status, str(e) or type(e).__name__)
            await self.capture.release_stream()

    async def disable(self):
        """Stop tracking for this consumer and return to idle."""
        self.enabled = False
        self._generation += 1
        self._cancel_watchdog()
        self._detach()
        self._drop_engine_ref()
        self._set_status(TrackingStatus.IDLE)
        await self.capture.release_stream()

    async def close(self):
        await self.disable()

    def get_status(self) -> dict:
        return {
            'name': self.name,
            'enabled': self.enabled,
            'status': self._status.value,
            'error': self._error,
            'raw_points': self.raw.writes,
            'last_gaze_at_ms': self.last_gaze_at_ms,
        }

    # ------------------------------------------------------------------
    # Engine callback (engine thread)
    # ------------------------------------------------------------------

    def _on_gaze(self, data: Optional[dict], timestamp_ms: Optional[int]):
        if not self._listening or not data:
            return
        try:
            x, y = float(data['x']), float(data['y'])
        except (KeyError, TypeError, ValueError):
            return
        if not (math.isfinite(x) and math.isfinite(y)):
            return

        now = self.clock.now_ms()
        confidence = data.get('confidence')
        raw = GazePoint(
            x=x,
            y=y,
            confidence=float(confidence) if isinstance(confidence, (int, float)) else self.config.default_confidence,
            timestamp_ms=int(timestamp_ms) if isinstance(timestamp_ms, (int, float)) else now,
            source=getattr(self._engine, 'name', 'engine'),
        )
        viewport = Viewport(*self.viewport_provider())

        self.last_gaze_at_ms = now
        self.raw.set(raw)
        self.calibrated.set(calibrate_point(raw, self.calibration.model, viewport))

    # ------------------------------------------------------------------
    # Watchdog
    # ------------------------------------------------------------------

    def _schedule_watchdog(self, generation: int):
        self._cancel_watchdog()
        loop = asyncio.get_running_loop()
        self._watchdog_handle = loop.call_later(
            self.config.watchdog_s, self._fire_watchdog, generation
        )

    def _fire_watchdog(self, generation: int):
        self._watchdog_handle = None
        self._watchdog_task = asyncio.get_running_loop().create_task(self._watchdog(generation))

    async def _watchdog(self, generation: int):
        if generation != self._generation or not self.enabled:
            return
        if self.last_gaze_at_ms > self._started_at_ms:
            return

        self.watchdog_runs += 1
        logger.info(f"[{self.name}] no gaze since start, re-attaching camera")
        try:
            await self.capture.ensure_stream()
            if generation != self._generation:
                return
            await self.capture.sync_viewer(self._engine)
        except Exception as e:
            logger.warning(f"[{self.name}] watchdog recovery failed: {e}")

    def _cancel_watchdog(self):
        if self._watchdog_handle is not None:
            self._watchdog_handle.cancel()
            self._watchdog_handle = None
        if self._watchdog_task is not None and not self._watchdog_task.done():
            self._watchdog_task.cancel()
        self._watchdog_task = None

    # ------------------------------------------------------------------
    # Private
    # ------------------------------------------------------------------

    def _detach(self):
        self._listening = False
        self.lifecycle.remove_listener(self._on_gaze)
        self._engine = None

    def _drop_engine_ref(self):
        if self._holds_ref:
            self._holds_ref = False
            self.lifecycle.release()

    def __repr__(self):
        return f"<EyeTrackingSession({self.name}, status={self._status.value})>"
