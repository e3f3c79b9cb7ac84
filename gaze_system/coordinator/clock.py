"""
Central Clock
Provides monotonic millisecond timestamps for gaze points and session liveness
"""

import threading
import logging
import time
from typing import Optional

logger = logging.getLogger(__name__)


class CentralClock:
    """
    Thread-safe clock shared by the engine thread and the event loop

    Guarantees:
    - Thread-safe access (the engine thread and the loop call it concurrently)
    - Monotonic timestamps (never goes backwards, no duplicates)
    - Millisecond resolution, anchored to wall-clock epoch at creation
    """

    def __init__(self):
        """Initialize central clock"""
        self._lock = threading.Lock()
        self._epoch_ms = int(time.time() * 1000)
        self._origin = time.monotonic()
        self._last_ms: Optional[int] = None
        self._call_count = 0

        logger.debug("Central clock initialized")

    def now_ms(self) -> int:
        """
        Get current timestamp in milliseconds

        Returns:
            int: Strictly increasing epoch milliseconds
        """
        with self._lock:
            current = self._epoch_ms + int((time.monotonic() - self._origin) * 1000)

            if self._last_ms is not None and current <= self._last_ms:
                current = self._last_ms + 1

            self._last_ms = current
            self._call_count += 1

            return current

    def reset(self):
        """Reset clock state (useful for testing)"""
        with self._lock:
            self._last_ms = None
            self._call_count = 0

    def get_stats(self) -> dict:
        with self._lock:
            return {
                'total_calls': self._call_count,
                'last_timestamp_ms': self._last_ms,
            }

    def __repr__(self):
        return f"<CentralClock(calls={self._call_count})>"
