"""
General Application Constants

Constants that don't fit into other specific categories.
Presets, plan credits, fallback strings and version.
"""

# ============================================================================
# PRESETS
# ============================================================================

PRESETS = [
    {"id": "classic-asmr", "label": "Classic ASMR (Whisper, Tapping)"},
    {"id": "sleep-story", "label": "Sleep Story (Calm, Slow)"},
    {"id": "meditation", "label": "Meditation (Breath, Soft Tone)"},
    {"id": "kids-story", "label": "Kids Story (Gentle, Age 4-9)"},
]

PRESET_IDS = frozenset(p["id"] for p in PRESETS)


# ============================================================================
# BILLING
# ============================================================================

PLAN_CREDITS = {
    "starter": 5000,
    "pro": 20000,
    "ultra": 100000,
}
DEFAULT_PLAN = "starter"


# ============================================================================
# FALLBACKS
# ============================================================================

FALLBACK_TRACK_TITLE = "SoftVibe Track"
AUDIO_CONTENT_TYPE = "audio/mpeg"
SYSTEM_SECRET_HEADER = "x-job-system-secret"
REQUEST_ID_HEADER = "x-request-id"


# ============================================================================
# VERSION
# ============================================================================

APP_VERSION = "1.0.0"


__all__ = [
    # Presets
    'PRESETS',
    'PRESET_IDS',

    # Billing
    'PLAN_CREDITS',
    'DEFAULT_PLAN',

    # Fallbacks
    'FALLBACK_TRACK_TITLE',
    'AUDIO_CONTENT_TYPE',
    'SYSTEM_SECRET_HEADER',
    'REQUEST_ID_HEADER',

    # Version
    'APP_VERSION',
]
