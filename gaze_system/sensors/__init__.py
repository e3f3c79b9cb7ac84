"""
gaze_system Sensors

Available Sensors:
- Eye Tracking: webcam + MediaPipe face landmarks (~30 Hz), calibrated to the viewport
"""

from .eye_tracking import EyeTrackingSession, EyeTrackingConfig, CalibrationStore

__all__ = [
    'EyeTrackingSession',
    'EyeTrackingConfig',
    'CalibrationStore',
]

__version__ = '1.0.0'
