"""
Eye Tracking Preference
Tri-state tracking permission: True (granted), False (denied), None (not chosen yet)
"""

import logging
from typing import TYPE_CHECKING, Dict, Optional

if TYPE_CHECKING:
    from gaze_system.db import GazeDB

logger = logging.getLogger(__name__)

STORAGE_KEY = 'pref:eye_tracking_enabled'
REMOTE_KEY = 'allowEyeTracking'


class PermissionPreference:
    """
    Local copy of the user's eye tracking choice.

    Backed by GazeDB when one is given, otherwise kept in memory for the
    life of the process.
    """

    def __init__(self, db: Optional['GazeDB'] = None):
        self.db = db
        self._memory: Dict[str, str] = {}

    def get(self) -> Optional[bool]:
        raw = self._read()
        if raw == 'true':
            return True
        if raw == 'false':
            return False
        return None

    def set(self, value: bool):
        self._write('true' if value else 'false')
        logger.info(f"Eye tracking permission set to {value}")

    def clear(self):
        self._write(None)

    def resolve(self, remote_prefs: Optional[dict] = None) -> bool:
        """
        Decide whether tracking is enabled.

        A boolean from the remote personalization prefs wins and is written
        back locally when it differs; otherwise the stored value is used,
        and an unset preference means disabled.
        """
        stored = self.get()
        remote = remote_prefs.get(REMOTE_KEY) if isinstance(remote_prefs, dict) else None
        if isinstance(remote, bool):
            if stored is None or stored != remote:
                self.set(remote)
            return remote
        if stored is not None:
            return stored
        return False

    def _read(self) -> Optional[str]:
        if self.db is not None:
            return self.db.get_preference(STORAGE_KEY)
        return self._memory.get(STORAGE_KEY)

    def _write(self, value: Optional[str]):
        if self.db is not None:
            self.db.set_preference(STORAGE_KEY, value)
            return
        if value is None:
            self._memory.pop(STORAGE_KEY, None)
        else:
            self._memory[STORAGE_KEY] = value

    def __repr__(self):
        return f"<PermissionPreference({self.get()})>"
