"""
Engine Lifecycle Manager
Reference-counted ownership of the shared gaze engine
"""

import asyncio
import logging
import threading
from typing import Callable, List, Optional, Tuple

from gaze_system.sensors.eye_tracking.config import EyeTrackingConfig
from gaze_system.sensors.eye_tracking.engine import EngineLoader, GazeListener, maybe_await

logger = logging.getLogger(__name__)


class EngineLifecycleManager:
    """
    Owns the single gaze engine shared by every tracking session

    Responsibilities:
    - Count how many sessions want the engine running
    - Collapse concurrent starts onto one in-flight begin
    - Pause on last release, end only after a grace window
    - Fan engine gaze callbacks out to registered session listeners

    acquire() always increments the count, even when it fails or returns
    None; the caller balances it with release().
    """

    def __init__(
        self,
        loader: EngineLoader,
        config: Optional[EyeTrackingConfig] = None,
        viewport_provider: Optional[Callable[[], Tuple[int, int]]] = None,
    ):
        """
        Args:
            loader:            Cached engine loader
            config:            Camera constraints, asset path and timing
            viewport_provider: Current window size, handed to the engine
        """
        self.loader = loader
        self.config = config or loader.config
        self.viewport_provider = viewport_provider or (lambda: self.config.viewport)

        self.ref_count = 0
        self.running = False
        self.paused = False

        self._engine = None
        self._begin_task: Optional[asyncio.Task] = None
        self._teardown_task: Optional[asyncio.Task] = None
        self._stop_handle: Optional[asyncio.TimerHandle] = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None

        self._listeners: List[GazeListener] = []
        self._listener_lock = threading.Lock()

        self.begin_count = 0
        self.end_count = 0

    @property
    def engine(self):
        return self._engine if self.running else None

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def acquire(self):
        """
        Register interest in the engine and return it once started.

        Returns:
            The running engine, or None if the loader could not provide one.

        Raises:
            Whatever the engine's begin() raised; the next acquire() retries.
        """
        self._loop = asyncio.get_running_loop()
        self.ref_count += 1
        self._cancel_stop_timer()

        if self.running and self._engine is not None:
            if self.paused:
                self._resume()
            return self._engine

        if self._begin_task is None:
            self._begin_task = self._loop.create_task(self._start())
        return await asyncio.shield(self._begin_task)

    def release(self):
        """Drop one reference; the last one pauses now and ends after the grace window."""
        if self.ref_count == 0:
            logger.debug("release() without a matching acquire() ignored")
            return

        self.ref_count -= 1
        if self.ref_count > 0:
            return

        self._pause()
        self._schedule_stop()

    def add_listener(self, listener: GazeListener):
        with self._listener_lock:
            if listener not in self._listeners:
                self._listeners.append(listener)

    def remove_listener(self, listener: GazeListener):
        with self._listener_lock:
            if listener in self._listeners:
                self._listeners.remove(listener)

    async def shutdown(self):
        """End the engine immediately, regardless of outstanding references."""
        self._cancel_stop_timer()

        if self._begin_task is not None and not self._begin_task.done():
            try:
                await self._begin_task
            except Exception:
                logger.debug("Pending engine start failed during shutdown")

        if self._teardown_task is not None and not self._teardown_task.done():
            await self._teardown_task

        self._cancel_stop_timer()
        self.ref_count = 0
        await self._teardown()
        logger.info("✓ Gaze engine lifecycle shut down")

    def get_status(self) -> dict:
        with self._listener_lock:
            listeners = len(self._listeners)
        return {
            'ref_count': self.ref_count,
            'running': self.running,
            'paused': self.paused,
            'starting': self._begin_task is not None and not self._begin_task.done(),
            'stop_pending': self._stop_handle is not None,
            'listeners': listeners,
            'begin_count': self.begin_count,
            'end_count': self.end_count,
        }

    # ------------------------------------------------------------------
    # Private
    # ------------------------------------------------------------------

    async def _start(self):
        try:
            if self._teardown_task is not None and not self._teardown_task.done():
                await asyncio.shield(self._teardown_task)

            engine = await self.loader.load()
            if engine is None:
                return None

            await self._configure(engine)
            await maybe_await(engine.begin())

            self.begin_count += 1
            self._engine = engine
            self.running = True
            self.paused = False
            logger.info(f"✓ Gaze engine started ({self.ref_count} consumer(s))")

            if self.ref_count == 0:
                # Every requester released while begin() was in flight.
                self._pause()
                self._schedule_stop()
            return engine

        except Exception as e:
            logger.error(f"✗ Gaze engine failed to start: {e}")
            raise

        finally:
            if not self.running:
                self._begin_task = None

    async def _configure(self, engine):
        if getattr(engine, 'params', None) is None:
            engine.params = {}
        if self.config.model_asset_base:
            engine.params['face_mesh_solution_path'] = self.config.model_asset_base
        engine.params['sink_id'] = self.config.sink_id
        engine.params['viewport'] = tuple(self.viewport_provider())

        set_constraints = getattr(engine, 'set_camera_constraints', None)
        if callable(set_constraints):
            await maybe_await(set_constraints(self.config.camera_constraints()))

        show_points = getattr(engine, 'show_prediction_points', None)
        if callable(show_points):
            show_points(self.config.debug)

        engine.set_gaze_listener(self._dispatch)

    def _dispatch(self, data: Optional[dict], timestamp_ms: Optional[int]):
        """Engine callback; runs on the engine's thread."""
        with self._listener_lock:
            listeners = list(self._listeners)
        for listener in listeners:
            try:
                listener(data, timestamp_ms)
            except Exception as e:
                logger.error(f"Gaze listener failed: {e}", exc_info=True)

    def _pause(self):
        engine = self._engine
        if engine is None or not self.running:
            return
        pause = getattr(engine, 'pause', None)
        if callable(pause):
            try:
                pause()
            except Exception as e:
                logger.warning(f"Engine pause failed: {e}")
        self.paused = True

    def _resume(self):
        resume = getattr(self._engine, 'resume', None)
        if callable(resume):
            try:
                resume()
            except Exception as e:
                logger.warning(f"Engine resume failed: {e}")
        self.paused = False

    def _schedule_stop(self):
        self._cancel_stop_timer()
        if self._loop is None or self._loop.is_closed():
            return
        self._stop_handle = self._loop.call_later(self.config.grace_window_s, self._on_stop_timer)

    def _cancel_stop_timer(self):
        if self._stop_handle is not None:
            self._stop_handle.cancel()
            self._stop_handle = None

    def _on_stop_timer(self):
        self._stop_handle = None
        if self.ref_count > 0:
            return
        if self._begin_task is not None and not self._begin_task.done():
            # The start path schedules its own stop once begin() settles.
            return
        self._teardown_task = self._loop.create_task(self._teardown())

    async def _teardown(self):
        if self.ref_count > 0:
            return

        engine = self._engine
        was_running = self.running
        self._engine = None
        self.running = False
        self.paused = False
        self._begin_task = None

        if engine is None or not was_running:
            return

        try:
            await maybe_await(engine.end())
            self.end_count += 1
            logger.info("✓ Gaze engine ended")
        except Exception as e:
            logger.warning(f"Error ending gaze engine: {e}")

    def __repr__(self):
        state = "running" if self.running else "stopped"
        return f"<EngineLifecycleManager({state}, refs={self.ref_count})>"
