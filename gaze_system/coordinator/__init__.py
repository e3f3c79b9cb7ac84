"""
gaze_system Coordinator
Shared clock and reference-counted lifecycle of the gaze engine
"""

from .clock import CentralClock
from .lifecycle import EngineLifecycleManager

__all__ = [
    'CentralClock',
    'EngineLifecycleManager',
]

__version__ = '1.0.0'
