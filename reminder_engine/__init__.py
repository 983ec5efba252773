"""
Reminder scheduling and reliable notification delivery engine.
"""

__version__ = "0.1.0"
