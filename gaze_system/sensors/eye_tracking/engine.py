"""
Gaze Engine Adapter
Protocol for the external gaze estimation engine, plus its cached loader
"""

import importlib
import inspect
import logging
from typing import Any, Callable, Dict, Optional, Protocol, Union

from .config import EyeTrackingConfig

logger = logging.getLogger(__name__)

# cb(data, timestamp_ms); data is {'x', 'y', 'confidence'} or None when no face
GazeListener = Callable[[Optional[dict], Optional[int]], None]
EngineFactory = Callable[[EyeTrackingConfig], Any]


class GazeEngine(Protocol):
    """Surface consumed from a gaze engine. begin/end/set_camera_constraints may be async."""

    name: str
    params: Dict[str, Any]

    def set_gaze_listener(self, listener: Optional[GazeListener]) -> 'GazeEngine': ...

    def begin(self) -> Any: ...

    def pause(self) -> None: ...

    def resume(self) -> None: ...

    def end(self) -> Any: ...

    def show_prediction_points(self, show: bool) -> None: ...

    def show_face_feedback_box(self, show: bool) -> None: ...

    def set_video_viewer_size(self, width: int, height: int) -> 'GazeEngine': ...

    def set_camera_constraints(self, constraints: dict) -> Any: ...


async def maybe_await(value):
    """Await value if the engine handed back an awaitable, else return it as is"""
    if inspect.isawaitable(value):
        return await value
    return value


class EngineLoader:
    """
    Loads the gaze engine once and caches it after the first success.

    The factory is either a callable taking the config, or a 'module:attr'
    path imported on demand. A failed load returns None and is not cached,
    so the next call tries again.
    """

    def __init__(
        self,
        config: Optional[EyeTrackingConfig] = None,
        factory: Optional[Union[str, EngineFactory]] = None,
    ):
        self.config = config or EyeTrackingConfig()
        self.factory = factory if factory is not None else self.config.engine_factory
        self._engine = None
        self.load_count = 0

    @property
    def loaded(self) -> bool:
        return self._engine is not None

    async def load(self) -> Optional[GazeEngine]:
        """
        Return the engine, creating it on first use.

        Returns:
            Engine instance, or None if the factory could not be resolved,
            raised, or produced nothing.
        """
        if self._engine is not None and not self.config.no_cache:
            return self._engine

        try:
            factory = self._resolve()
            engine = await maybe_await(factory(self.config))
        except Exception as e:
            logger.error(f"✗ Could not load gaze engine {self._describe()}: {e}", exc_info=True)
            return None

        if engine is None:
            logger.warning(f"Gaze engine factory {self._describe()} returned nothing")
            return None

        self._engine = engine
        self.load_count += 1
        logger.info(f"✓ Gaze engine loaded: {getattr(engine, 'name', type(engine).__name__)}")
        return engine

    def _resolve(self) -> EngineFactory:
        if callable(self.factory):
            return self.factory

        module_name, _, attr = str(self.factory).partition(':')
        if not module_name:
            raise ImportError("empty engine factory path")
        module = importlib.import_module(module_name)
        if self.config.no_cache:
            module = importlib.reload(module)
        return getattr(module, attr or 'create_engine')

    def _describe(self) -> str:
        if callable(self.factory):
            return getattr(self.factory, '__name__', repr(self.factory))
        return str(self.factory)
