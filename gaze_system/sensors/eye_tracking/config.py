"""
Eye Tracking Configuration
Engine loading, camera, preview and lifecycle timing parameters
"""

import logging
import os
from dataclasses import dataclass
from typing import Mapping, Optional, Tuple

logger = logging.getLogger(__name__)

DEFAULT_ENGINE_FACTORY = 'gaze_system.sensors.eye_tracking.facemesh:FaceMeshGazeEngine'


def _as_bool(value: Optional[str], default: bool) -> bool:
    if value is None:
        return default
    return value.strip().lower() in {'1', 'true', 'yes', 'on'}


def _as_int(value: Optional[str], default: int, minimum: int = 1) -> int:
    if value is None or not value.strip():
        return default
    try:
        parsed = int(value)
    except ValueError:
        logger.warning(f"Ignoring non-integer config value {value!r}, using {default}")
        return default
    return parsed if parsed >= minimum else default


def _as_float(value: Optional[str], default: float) -> float:
    if value is None or not value.strip():
        return default
    try:
        parsed = float(value)
    except ValueError:
        logger.warning(f"Ignoring non-numeric config value {value!r}, using {default}")
        return default
    return parsed if parsed > 0 else default


@dataclass
class EyeTrackingConfig:
    """Eye tracking configuration - none of these values affect calibration math"""

    # Engine loading
    engine_factory: str = DEFAULT_ENGINE_FACTORY  # 'module:attr' of the engine class
    model_asset_base: str = ''     # Face mesh model assets, handed to the engine
    no_cache: bool = False         # Re-import the engine module on every cold load
    debug: bool = False            # Ask the engine to draw prediction points

    # Preview (viewer) bounds
    preview_max_width: int = 320
    preview_max_height: int = 240

    # Camera constraints (ideal values, the device may pick others)
    camera_width: int = 1280
    camera_height: int = 720
    camera_fps: int = 30
    camera_facing: str = 'user'
    camera_index: int = 0

    # Shared capture sink
    sink_id: str = 'gazeVideoFeed'

    # Lifecycle timing
    grace_window_s: float = 0.25   # Delay between last release and engine end()
    watchdog_s: float = 1.5        # Liveness check after a session becomes active
    metadata_timeout_s: float = 1.0

    # Viewport used when no window size provider is given
    viewport_width: int = 1920
    viewport_height: int = 1080

    # FaceMesh engine
    mp_max_num_faces: int = 1
    mp_refine_landmarks: bool = True
    mp_min_detection_confidence: float = 0.5
    mp_min_tracking_confidence: float = 0.5
    left_iris_idx: int = 468
    right_iris_idx: int = 473
    left_eye_inner: int = 133
    left_eye_outer: int = 33
    right_eye_inner: int = 362
    right_eye_outer: int = 263
    iris_x_range: Tuple[float, float] = (0.35, 0.65)
    iris_y_range: Tuple[float, float] = (-0.5, 0.5)
    mirror_x: bool = True
    default_confidence: float = 0.6

    # Calibration freshness
    calibration_max_age_days: float = 30.0

    # Persistence
    database_url: str = 'sqlite:///gaze_system.db'

    @property
    def viewport(self) -> Tuple[int, int]:
        return self.viewport_width, self.viewport_height

    def camera_constraints(self) -> dict:
        """Camera request in the shape the engine and the capture manager share"""
        return {
            'video': {
                'width': {'ideal': self.camera_width},
                'height': {'ideal': self.camera_height},
                'frame_rate': {'ideal': self.camera_fps},
                'facing_mode': self.camera_facing or 'user',
            }
        }

    @classmethod
    def for_debug(cls) -> 'EyeTrackingConfig':
        """Configuration with prediction points drawn and no engine module cache"""
        return cls(debug=True, no_cache=True)

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> 'EyeTrackingConfig':
        """
        Build a configuration from GAZE_* environment variables

        Args:
            environ: Mapping to read from. Defaults to os.environ.

        Returns:
            EyeTrackingConfig with unset or invalid values left at defaults.
        """
        env = os.environ if environ is None else environ
        base = cls()
        return cls(
            engine_factory=(env.get('GAZE_ENGINE') or base.engine_factory).strip(),
            model_asset_base=(env.get('GAZE_MODEL_ASSET_BASE') or '').strip(),
            no_cache=_as_bool(env.get('GAZE_NO_CACHE'), base.no_cache),
            debug=_as_bool(env.get('GAZE_DEBUG'), base.debug),
            preview_max_width=_as_int(env.get('GAZE_PREVIEW_MAX_W'), base.preview_max_width),
            preview_max_height=_as_int(env.get('GAZE_PREVIEW_MAX_H'), base.preview_max_height),
            camera_width=_as_int(env.get('GAZE_CAM_WIDTH'), base.camera_width),
            camera_height=_as_int(env.get('GAZE_CAM_HEIGHT'), base.camera_height),
            camera_fps=_as_int(env.get('GAZE_CAM_FPS'), base.camera_fps),
            camera_facing=(env.get('GAZE_CAM_FACING') or base.camera_facing).strip(),
            camera_index=_as_int(env.get('GAZE_CAM_INDEX'), base.camera_index, minimum=0),
            grace_window_s=_as_float(env.get('GAZE_GRACE_WINDOW_S'), base.grace_window_s),
            watchdog_s=_as_float(env.get('GAZE_WATCHDOG_S'), base.watchdog_s),
            viewport_width=_as_int(env.get('GAZE_VIEWPORT_W'), base.viewport_width),
            viewport_height=_as_int(env.get('GAZE_VIEWPORT_H'), base.viewport_height),
            calibration_max_age_days=_as_float(
                env.get('GAZE_CALIBRATION_MAX_DAYS'), base.calibration_max_age_days
            ),
            database_url=(env.get('GAZE_DATABASE_URL') or base.database_url).strip(),
        )
