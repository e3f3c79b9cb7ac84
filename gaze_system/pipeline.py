"""
gaze_system - Gaze Pipeline
============================
Owns the process-wide gaze tracking resources and hands them to consumers.

Usage:
    pipeline = GazePipeline(EyeTrackingConfig.from_env(), db=GazeDB(url))
    session = pipeline.open_session('lesson-reader')
    await session.enable()
    ...
    await pipeline.shutdown()

Shared per process:
    - CentralClock           : timestamps for every gaze point
    - EngineLifecycleManager : the one gaze engine, reference counted
    - CalibrationStore/Cache : active calibration snapshot
    - PermissionPreference   : tracking permission

Per consumer:
    - EyeTrackingSession with its own CaptureResourceManager
"""

import logging
from typing import Callable, Dict, List, Optional, Tuple

from gaze_system.coordinator.clock import CentralClock
from gaze_system.coordinator.lifecycle import EngineLifecycleManager
from gaze_system.sensors.eye_tracking.calibrator import CalibrationCache, CalibrationStore
from gaze_system.sensors.eye_tracking.capture import (
    CaptureResourceManager,
    StreamOpener,
    capture_supported,
    remove_sink,
)
from gaze_system.sensors.eye_tracking.config import EyeTrackingConfig
from gaze_system.sensors.eye_tracking.engine import EngineLoader
from gaze_system.sensors.eye_tracking.gaze_queue import GazeQueue, hit_from_point
from gaze_system.sensors.eye_tracking.preference import PermissionPreference
from gaze_system.sensors.eye_tracking.processor import EyeTrackingSession

logger = logging.getLogger(__name__)


class GazePipeline:
    """
    Wires the shared gaze resources and creates consumer sessions.

    Every session gets the same lifecycle manager, calibration cache and
    preference, injected rather than reached through module globals, so
    tests can swap any of them.
    """

    def __init__(
        self,
        config: Optional[EyeTrackingConfig] = None,
        db=None,
        loader: Optional[EngineLoader] = None,
        stream_opener: Optional[StreamOpener] = None,
        viewport_provider: Optional[Callable[[], Tuple[int, int]]] = None,
        capability_check: Callable[[], bool] = capture_supported,
        gaze_queue: Optional[GazeQueue] = None,
    ):
        """
        Args:
            config            : Engine, camera and timing configuration
            db                : Optional GazeDB for calibration + preference persistence
            loader            : Engine loader (defaults to config.engine_factory)
            stream_opener     : Camera opener override for every session
            viewport_provider : Current window size
            capability_check  : Whether camera capture exists in this runtime
            gaze_queue        : Optional telemetry queue fed from calibrated points
        """
        self.config = config or EyeTrackingConfig()
        self.db = db
        self.viewport_provider = viewport_provider or (lambda: self.config.viewport)
        self.stream_opener = stream_opener
        self.capability_check = capability_check
        self.gaze_queue = gaze_queue

        self.clock = CentralClock()
        self.loader = loader or EngineLoader(self.config)
        self.lifecycle = EngineLifecycleManager(
            self.loader, self.config, viewport_provider=self.viewport_provider
        )
        self.calibration_store = CalibrationStore(self.config, db=db)
        self.calibration_store.load()
        self.calibration = CalibrationCache(self.calibration_store)
        self.preference = PermissionPreference(db=db)

        self._sessions: Dict[str, EyeTrackingSession] = {}

        logger.info("GazePipeline created")

    # -----------------------------------------------------------------------
    # Public API
    # -----------------------------------------------------------------------

    def open_session(self, name: Optional[str] = None) -> EyeTrackingSession:
        """
        Create a consumer session bound to the shared resources.

        Args:
            name : Label for logs; must be unique among open sessions
        """
        name = name or f"session-{len(self._sessions) + 1}"
        if name in self._sessions:
            raise ValueError(f"Session '{name}' already open")

        session = EyeTrackingSession(
            lifecycle=self.lifecycle,
            calibration=self.calibration,
            preference=self.preference,
            clock=self.clock,
            config=self.config,
            capture=CaptureResourceManager(self.config, stream_opener=self.stream_opener),
            viewport_provider=self.viewport_provider,
            capability_check=self.capability_check,
            name=name,
        )
        self._sessions[name] = session
        logger.info(f"✓ Opened gaze session '{name}'")
        return session

    async def close_session(self, session: EyeTrackingSession):
        await session.close()
        self._sessions.pop(session.name, None)

    def record_hit(self, session: EyeTrackingSession, block_id: str, **extra) -> bool:
        """
        Queue the session's latest calibrated point as a hit on block_id.

        Returns:
            True if a point was available and a queue is configured.
        """
        if self.gaze_queue is None:
            return False
        point = session.calibrated.get()
        if point is None:
            return False
        self.gaze_queue.enqueue(hit_from_point(point, block_id, tuple(self.viewport_provider()), **extra))
        return True

    async def shutdown(self):
        """Disable every session and end the engine immediately."""
        logger.info("Shutting down gaze pipeline...")
        for session in list(self._sessions.values()):
            await session.close()
        self._sessions.clear()

        if self.gaze_queue is not None:
            await self.gaze_queue.stop(flush=True)

        await self.lifecycle.shutdown()
        self.calibration.close()
        remove_sink(self.config.sink_id)
        logger.info("✓ Gaze pipeline stopped")

    @property
    def sessions(self) -> List[EyeTrackingSession]:
        return list(self._sessions.values())

    def get_status(self) -> dict:
        """
        Return a summary of shared and per-session state for logging.
        """
        return {
            'lifecycle': self.lifecycle.get_status(),
            'calibration': self.calibration_store.calibration_state().value,
            'permission': self.preference.get(),
            'sessions': {name: s.get_status() for name, s in self._sessions.items()},
            'clock': self.clock.get_stats(),
        }

    # -----------------------------------------------------------------------
    # Dunder helpers
    # -----------------------------------------------------------------------

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.shutdown()

    def __repr__(self):
        return (
            f"<GazePipeline("
            f"sessions={list(self._sessions)}, "
            f"engine={'running' if self.lifecycle.running else 'stopped'})>"
        )
