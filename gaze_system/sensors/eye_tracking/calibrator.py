"""
Calibration Store
Holds the current calibration model snapshot, tracks its freshness and
optionally persists it through GazeDB. Calibration capture itself happens
elsewhere; this module only stores and publishes the fitted model.
"""

import logging
import threading
from datetime import datetime, timezone
from enum import Enum
from typing import TYPE_CHECKING, Callable, List, Optional

from .config import EyeTrackingConfig
from .transform import CalibrationModel

if TYPE_CHECKING:
    from gaze_system.db import GazeDB

logger = logging.getLogger(__name__)

CALIBRATION_VERSION = 1

ModelListener = Callable[[Optional[CalibrationModel]], None]


class CalibrationState(str, Enum):
    MISSING = 'missing'
    STALE = 'stale'
    FRESH = 'fresh'


def _as_utc(value: datetime) -> datetime:
    # SQLite hands back naive datetimes; everything is stored as UTC.
    return value if value.tzinfo else value.replace(tzinfo=timezone.utc)


class CalibrationStore:
    """
    Source of truth for the active calibration model.

    Models are replaced whole, never mutated, so readers holding the old
    reference keep a consistent snapshot.
    """

    def __init__(
        self,
        config: Optional[EyeTrackingConfig] = None,
        db: Optional['GazeDB'] = None,
    ):
        self.config = config or EyeTrackingConfig()
        self.db = db

        self._model: Optional[CalibrationModel] = None
        self._calibrated_at: Optional[datetime] = None
        self._version: Optional[int] = None

        self._subscribers: List[ModelListener] = []
        self._lock = threading.Lock()

    # ------------------------------------------------------------------
    # Snapshot access
    # ------------------------------------------------------------------

    def read_model(self) -> Optional[CalibrationModel]:
        return self._model

    @property
    def calibrated_at(self) -> Optional[datetime]:
        return self._calibrated_at

    def set_model(self, model: CalibrationModel, calibrated_at: Optional[datetime] = None):
        """
        Publish a new calibration model.

        Args:
            model:         Freshly fitted model.
            calibrated_at: Capture time, defaults to now (UTC).
        """
        stamp = _as_utc(calibrated_at) if calibrated_at else datetime.now(timezone.utc)
        if self.db is not None:
            self.db.save_calibration(model.to_dict(), CALIBRATION_VERSION, stamp)

        self._replace(model, stamp, CALIBRATION_VERSION)
        logger.info("✓ Calibration model updated")

    def load(self) -> Optional[CalibrationModel]:
        """
        Restore the newest persisted model, if any.

        Returns:
            The restored model, or None when nothing usable is stored.
        """
        if self.db is None:
            return None

        record = self.db.latest_calibration()
        if record is None:
            return None
        if record.version != CALIBRATION_VERSION:
            logger.warning(
                f"Ignoring calibration {record.calibration_id}: "
                f"version {record.version} != {CALIBRATION_VERSION}"
            )
            return None

        try:
            model = CalibrationModel.from_dict(record.model or {})
        except (TypeError, ValueError) as e:
            logger.error(f"Stored calibration {record.calibration_id} is unreadable: {e}")
            return None

        self._replace(model, _as_utc(record.created_at), record.version)
        logger.info(f"✓ Calibration restored from {record.created_at:%Y-%m-%d %H:%M}")
        return model

    def clear(self):
        if self.db is not None:
            self.db.delete_calibrations()
        self._replace(None, None, None)
        logger.info("Calibration cleared")

    # ------------------------------------------------------------------
    # Change notification
    # ------------------------------------------------------------------

    def subscribe(self, listener: ModelListener) -> Callable[[], None]:
        """
        Register for model changes.

        Returns:
            Callable that removes the subscription.
        """
        with self._lock:
            self._subscribers.append(listener)

        def unsubscribe():
            with self._lock:
                if listener in self._subscribers:
                    self._subscribers.remove(listener)

        return unsubscribe

    # ------------------------------------------------------------------
    # Freshness
    # ------------------------------------------------------------------

    def age_days(self, now: Optional[datetime] = None) -> Optional[float]:
        if self._calibrated_at is None:
            return None
        now = now or datetime.now(timezone.utc)
        return (now - self._calibrated_at).total_seconds() / 86400.0

    def calibration_state(self, now: Optional[datetime] = None) -> CalibrationState:
        if self._model is None or self._version != CALIBRATION_VERSION:
            return CalibrationState.MISSING
        age = self.age_days(now)
        if age is None:
            return CalibrationState.MISSING
        if age > self.config.calibration_max_age_days:
            return CalibrationState.STALE
        return CalibrationState.FRESH

    @property
    def needs_calibration(self) -> bool:
        return self.calibration_state() != CalibrationState.FRESH

    # ------------------------------------------------------------------
    # Private
    # ------------------------------------------------------------------

    def _replace(self, model, calibrated_at, version):
        with self._lock:
            self._model = model
            self._calibrated_at = calibrated_at
            self._version = version
            subscribers = list(self._subscribers)

        for listener in subscribers:
            try:
                listener(model)
            except Exception as e:
                logger.error(f"Calibration subscriber failed: {e}", exc_info=True)

    def __repr__(self):
        return f"<CalibrationStore({self.calibration_state().value})>"


class CalibrationCache:
    """
    Cached reference to the store's model, swapped on change notification.

    Subscribes once; the per-frame path reads `.model` without locking.
    """

    def __init__(self, store: CalibrationStore):
        self.model: Optional[CalibrationModel] = store.read_model()
        self._unsubscribe = store.subscribe(self._on_change)

    def _on_change(self, model: Optional[CalibrationModel]):
        self.model = model

    def close(self):
        self._unsubscribe()
