"""
gaze_system
Shared gaze engine lifecycle and calibrated gaze coordinates for UI consumers
"""

__version__ = '1.0.0'
