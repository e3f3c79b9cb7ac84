"""
ORM models for persisted calibration snapshots and tracking preferences
"""

import uuid
from datetime import datetime, timezone

from sqlalchemy import Column, DateTime, Integer, JSON, String
from sqlalchemy.orm import declarative_base

Base = declarative_base()


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class CalibrationRecord(Base):
    """One saved calibration model; the newest row is the active one"""

    __tablename__ = 'gaze_calibration'

    calibration_id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)
    version = Column(Integer, nullable=False, default=1)
    model = Column(JSON, nullable=False)

    def __repr__(self):
        return f"<CalibrationRecord(id={self.calibration_id}, v{self.version}, at={self.created_at})>"


class PreferenceRecord(Base):
    """Local key/value preference, e.g. the eye tracking permission"""

    __tablename__ = 'gaze_preference'

    key = Column(String(128), primary_key=True)
    value = Column(String(64), nullable=True)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow)

    def __repr__(self):
        return f"<PreferenceRecord({self.key}={self.value!r})>"
