"""
Calibration store tests: snapshot publishing, freshness and persistence
through an in-memory SQLite GazeDB.
"""

from datetime import datetime, timedelta, timezone

import pytest

from gaze_system.db import GazeDB
from gaze_system.sensors.eye_tracking.calibrator import (
    CALIBRATION_VERSION,
    CalibrationCache,
    CalibrationState,
    CalibrationStore,
)
from gaze_system.sensors.eye_tracking.transform import AffineTransform, CalibrationModel, ResidualGrid


@pytest.fixture
def db():
    database = GazeDB('sqlite:///:memory:')
    yield database
    database.close()


def sample_model():
    return CalibrationModel(
        transform=AffineTransform(a=1.1, c=-12.0, f=8.0),
        grid=ResidualGrid.from_lists(2, [1, 2, 3, 4], [-1, -2, -3, -4]),
        reference_width=1440,
        reference_height=900,
    )


def test_new_store_is_missing():
    store = CalibrationStore()
    assert store.read_model() is None
    assert store.calibration_state() is CalibrationState.MISSING
    assert store.needs_calibration


def test_set_model_is_fresh_and_notifies():
    store = CalibrationStore()
    seen = []
    store.subscribe(seen.append)
    model = sample_model()

    store.set_model(model)

    assert store.read_model() is model
    assert seen == [model]
    assert store.calibration_state() is CalibrationState.FRESH
    assert not store.needs_calibration


def test_old_calibration_is_stale():
    store = CalibrationStore()
    store.set_model(sample_model(), calibrated_at=datetime.now(timezone.utc) - timedelta(days=31))
    assert store.calibration_state() is CalibrationState.STALE
    assert store.age_days() > 30


def test_unsubscribe_stops_notifications():
    store = CalibrationStore()
    seen = []
    unsubscribe = store.subscribe(seen.append)
    unsubscribe()
    store.set_model(sample_model())
    assert seen == []


def test_cache_follows_store():
    store = CalibrationStore()
    cache = CalibrationCache(store)
    assert cache.model is None

    model = sample_model()
    store.set_model(model)
    assert cache.model is model

    cache.close()
    store.set_model(CalibrationModel())
    assert cache.model is model


def test_model_survives_restart(db):
    calibrated_at = datetime.now(timezone.utc) - timedelta(days=2)
    CalibrationStore(db=db).set_model(sample_model(), calibrated_at=calibrated_at)

    restored_store = CalibrationStore(db=db)
    restored = restored_store.load()

    assert restored.transform == AffineTransform(a=1.1, c=-12.0, f=8.0)
    assert restored.grid.dx.tolist() == [1.0, 2.0, 3.0, 4.0]
    assert (restored.reference_width, restored.reference_height) == (1440, 900)
    assert restored_store.calibration_state() is CalibrationState.FRESH
    assert restored_store.age_days() == pytest.approx(2.0, abs=0.01)


def test_other_version_is_ignored(db):
    db.save_calibration(sample_model().to_dict(), version=CALIBRATION_VERSION + 1)
    store = CalibrationStore(db=db)
    assert store.load() is None
    assert store.calibration_state() is CalibrationState.MISSING


def test_clear_removes_persisted_model(db):
    store = CalibrationStore(db=db)
    store.set_model(sample_model())
    store.clear()

    assert store.read_model() is None
    assert db.latest_calibration() is None
    assert CalibrationStore(db=db).load() is None
