# gaze_system - DB package
# Persistence for calibration models and tracking preferences.
#
# Modules:
#   connection  - get_db_connection(): engine + session, creates tables
#   models      - CalibrationRecord, PreferenceRecord ORM models
#   db_access   - GazeDB class: calibration history, preference key/values

from .db_access import GazeDB
from .connection import get_db_connection

__all__ = [
    'GazeDB',
    'get_db_connection',
]
