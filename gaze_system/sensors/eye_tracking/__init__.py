"""
Eye Tracking Sensor Module for gaze_system
Webcam gaze tracking shared by many consumers, with calibrated output

Architecture:
- EngineLoader:            Resolves and caches the gaze engine (FaceMesh by default)
- FaceMeshGazeEngine:      MediaPipe landmarks -> raw viewport gaze, background thread
- CaptureResourceManager:  Camera stream + shared capture sink, viewer sizing
- EyeTrackingSession:      Per-consumer status machine and latest-point cells
- CalibrationStore:        Active calibration model, freshness, persistence
- transform:               Affine + residual-grid correction (pure functions)
- PermissionPreference:    Tri-state tracking permission
- GazeQueue:               Batched gaze-hit telemetry
- EyeTrackingConfig:       Configuration parameters

Usage:
    pipeline = GazePipeline(EyeTrackingConfig.from_env())
    session = pipeline.open_session('reader')
    await session.enable()
    point = session.calibrated.get()
    await session.disable()
    await pipeline.shutdown()
"""

from .config import EyeTrackingConfig
from .errors import (
    TrackingStatus,
    EyeTrackingError,
    UnsupportedError,
    PermissionDeniedError,
    PermissionUnresolvedError,
    EngineUnavailableError,
    TransientError,
    CaptureError,
    classify_failure,
)
from .transform import (
    AffineTransform,
    CalibrationModel,
    GazePoint,
    ResidualGrid,
    Viewport,
    apply_affine,
    apply_calibration,
    apply_grid_residual,
    calibrate_point,
)
from .engine import EngineLoader, GazeEngine
from .capture import CaptureResourceManager, CaptureSink, OpenCVStream
from .calibrator import CalibrationCache, CalibrationState, CalibrationStore
from .preference import PermissionPreference
from .processor import EyeTrackingSession, PointCell
from .gaze_queue import GazeQueue, hit_from_point

__all__ = [
    'EyeTrackingConfig',
    'TrackingStatus',
    'EyeTrackingError',
    'UnsupportedError',
    'PermissionDeniedError',
    'PermissionUnresolvedError',
    'EngineUnavailableError',
    'TransientError',
    'CaptureError',
    'classify_failure',
    'AffineTransform',
    'CalibrationModel',
    'GazePoint',
    'ResidualGrid',
    'Viewport',
    'apply_affine',
    'apply_calibration',
    'apply_grid_residual',
    'calibrate_point',
    'EngineLoader',
    'GazeEngine',
    'CaptureResourceManager',
    'CaptureSink',
    'OpenCVStream',
    'CalibrationCache',
    'CalibrationState',
    'CalibrationStore',
    'PermissionPreference',
    'EyeTrackingSession',
    'PointCell',
    'GazeQueue',
    'hit_from_point',
]

__version__ = '1.0.0'
