"""
gaze_system - Database Access Layer
Simple interface over the ORM models for:
- Saving and restoring calibration models
- Reading and writing local tracking preferences
"""

import logging
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy.exc import SQLAlchemyError

from .connection import DEFAULT_DATABASE_URL, get_db_connection
from .models import CalibrationRecord, PreferenceRecord

logger = logging.getLogger(__name__)


class GazeDB:
    """
    Database access layer for gaze tracking state.

    All operations use a single SQLAlchemy session created at init and
    never raise SQLAlchemyError to the caller; failures are logged and
    reported through the return value.

    Usage:
        db = GazeDB('sqlite:///gaze_system.db')
        db.save_calibration(model.to_dict(), version=1)
        record = db.latest_calibration()
        db.close()
    """

    def __init__(self, url: str = DEFAULT_DATABASE_URL):
        try:
            self.engine, self.session = get_db_connection(url)
            logger.info("✓ Connected to gaze database")
        except Exception as e:
            logger.error(f"✗ Failed to connect to gaze database: {e}")
            raise

    # ------------------------------------------------------------------
    # Calibration
    # ------------------------------------------------------------------

    def save_calibration(
        self,
        model: dict,
        version: int,
        created_at: Optional[datetime] = None,
    ) -> Optional[CalibrationRecord]:
        """
        Persist a calibration model.
        Args:
            model:      Model in dict form (CalibrationModel.to_dict()).
            version:    Calibration format version.
            created_at: Override the capture time (defaults to now, UTC).
        Returns:
            The stored record, or None if the write failed.
        """
        try:
            record = CalibrationRecord(
                model=model,
                version=version,
                created_at=created_at or datetime.now(timezone.utc),
            )
            self.session.add(record)
            self.session.commit()
            logger.info(f"✓ Saved calibration {record.calibration_id}")
            return record
        except SQLAlchemyError as e:
            self.session.rollback()
            logger.error(f"✗ Failed to save calibration: {e}")
            return None

    def latest_calibration(self) -> Optional[CalibrationRecord]:
        try:
            return (
                self.session.query(CalibrationRecord)
                .order_by(CalibrationRecord.created_at.desc())
                .first()
            )
        except SQLAlchemyError as e:
            logger.error(f"Error loading calibration: {e}")
            return None

    def delete_calibrations(self) -> bool:
        try:
            self.session.query(CalibrationRecord).delete()
            self.session.commit()
            return True
        except SQLAlchemyError as e:
            self.session.rollback()
            logger.error(f"✗ Failed to delete calibrations: {e}")
            return False

    # ------------------------------------------------------------------
    # Preferences
    # ------------------------------------------------------------------

    def get_preference(self, key: str) -> Optional[str]:
        try:
            record = self.session.get(PreferenceRecord, key)
            return record.value if record else None
        except SQLAlchemyError as e:
            logger.error(f"Error reading preference '{key}': {e}")
            return None

    def set_preference(self, key: str, value: Optional[str]) -> bool:
        """
        Write a preference; None removes it.
        Returns:
            True if the change was committed.
        """
        try:
            record = self.session.get(PreferenceRecord, key)
            if value is None:
                if record is not None:
                    self.session.delete(record)
            elif record is None:
                self.session.add(PreferenceRecord(key=key, value=value))
            else:
                record.value = value
            self.session.commit()
            return True
        except SQLAlchemyError as e:
            self.session.rollback()
            logger.error(f"✗ Failed to write preference '{key}': {e}")
            return False

    def close(self):
        self.session.close()
        self.engine.dispose()
        logger.info("✓ Gaze database connection closed")
