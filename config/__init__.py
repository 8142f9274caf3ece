"""
Centralized Configuration System for the SoftVibe generation service

Import everything from here for easy access across the app.

Usage:
    from config import settings
    from config.limits import JOBS, TRACKS, RATE_LIMIT
    from config.constants import PRESETS
"""

# Import all constant modules
from config.constants import *
from config.limits import *

# Import settings (environment-specific config)
from config.settings import settings

__all__ = [
    # Settings
    'settings',

    # Core modules are imported with *
    # Individual constants accessible directly
]
