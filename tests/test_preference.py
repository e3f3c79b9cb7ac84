"""
Tracking permission preference tests, in memory and through GazeDB.
"""

import pytest

from gaze_system.db import GazeDB
from gaze_system.sensors.eye_tracking.preference import STORAGE_KEY, PermissionPreference


@pytest.fixture(params=['memory', 'db'])
def preference(request):
    if request.param == 'memory':
        yield PermissionPreference()
        return
    db = GazeDB('sqlite:///:memory:')
    yield PermissionPreference(db=db)
    db.close()


def test_unset_preference_is_none(preference):
    assert preference.get() is None
    assert preference.resolve() is False


def test_set_and_clear(preference):
    preference.set(True)
    assert preference.get() is True
    preference.set(False)
    assert preference.get() is False
    preference.clear()
    assert preference.get() is None


def test_remote_value_wins_and_is_stored(preference):
    preference.set(False)
    assert preference.resolve({'allowEyeTracking': True}) is True
    assert preference.get() is True


def test_non_boolean_remote_value_falls_back_to_stored(preference):
    preference.set(True)
    assert preference.resolve({'allowEyeTracking': 'yes'}) is True
    assert preference.resolve({}) is True
    assert preference.resolve(None) is True


def test_preference_is_stored_under_fixed_key():
    db = GazeDB('sqlite:///:memory:')
    PermissionPreference(db=db).set(True)
    assert db.get_preference(STORAGE_KEY) == 'true'
    db.close()
