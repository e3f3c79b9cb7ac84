"""
Eye Tracking Errors
Failure taxonomy and its mapping onto session status
"""

from enum import Enum


class TrackingStatus(str, Enum):
    IDLE = 'idle'
    STARTING = 'starting'
    ACTIVE = 'active'
    UNSUPPORTED = 'unsupported'
    DENIED = 'denied'
    UNAVAILABLE = 'unavailable'
    ERROR = 'error'


class EyeTrackingError(Exception):
    """Base class for eye tracking failures"""

    status = TrackingStatus.ERROR


class UnsupportedError(EyeTrackingError):
    """Capture capability missing from the runtime"""

    status = TrackingStatus.UNSUPPORTED


class PermissionDeniedError(EyeTrackingError):
    """User or platform refused camera capture"""

    status = TrackingStatus.DENIED


class PermissionUnresolvedError(EyeTrackingError):
    """Tracking preference has not been set yet"""

    status = TrackingStatus.UNAVAILABLE


class EngineUnavailableError(EyeTrackingError):
    """Engine could not be loaded or started for a non-permission reason"""

    status = TrackingStatus.UNAVAILABLE


class TransientError(EyeTrackingError):
    """Any other start failure; re-enabling may succeed"""

    status = TrackingStatus.ERROR


class CaptureError(EyeTrackingError):
    """Camera stream could not be opened or read"""

    status = TrackingStatus.ERROR


_PERMISSION_MARKERS = ('denied', 'permission')


def classify_failure(exc: BaseException) -> TrackingStatus:
    """
    Map a start failure to the status a session should report.

    Permission rejections are recognised by type or by message text, since
    camera backends rarely raise a dedicated exception for them.
    """
    if isinstance(exc, EyeTrackingError) and not isinstance(exc, (TransientError, CaptureError)):
        return exc.status
    if isinstance(exc, PermissionError):
        return TrackingStatus.DENIED
    message = str(exc).lower()
    if any(marker in message for marker in _PERMISSION_MARKERS):
        return TrackingStatus.DENIED
    return TrackingStatus.ERROR
