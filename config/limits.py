"""
Resource Limits and Constraints

Rate limits, cooldowns, pagination caps and validation bounds.
Organized by feature/service for easy management.
"""

# ============================================================================
# RATE LIMITS (in-process sliding window)
# ============================================================================

class RATE_LIMIT:
    """Per-key sliding-window limits, one entry per action class"""
    WINDOW_MS = 60_000

    CREATE_PER_WINDOW = 10
    START_PER_WINDOW = 30
    COMPLETE_PER_WINDOW = 10
    PROMPT_IMPROVE_PER_WINDOW = 10

    MAX_TRACKED_KEYS = 10_000  # Oldest keys are evicted beyond this

    @classmethod
    def validate(cls):
        """Validate rate limit configuration"""
        for name in ("CREATE_PER_WINDOW", "START_PER_WINDOW",
                     "COMPLETE_PER_WINDOW", "PROMPT_IMPROVE_PER_WINDOW"):
            if getattr(cls, name) < 1:
                raise ValueError(f"RATE_LIMIT.{name} must be at least 1")


# ============================================================================
# JOB LIMITS
# ============================================================================

class JOBS:
    """Job creation bounds"""
    CREATE_COOLDOWN_MS = 5_000  # Single-flight window per user
    PROMPT_MIN_CHARS = 3
    TITLE_MAX_CHARS = 80
    DURATION_MIN_SEC = 30
    DURATION_MAX_SEC = 1800
    CREDIT_COST = 1

    DEFAULT_PAGE_SIZE = 20
    MAX_PAGE_SIZE = 50


# ============================================================================
# PROMPT IMPROVEMENT
# ============================================================================

class PROMPT_IMPROVE:
    """Input bounds and model parameters for prompt refinement"""
    MIN_CHARS = 3
    MAX_CHARS = 500  # Longer prompts are cut, not rejected
    MAX_TOKENS = 200
    TEMPERATURE = 0.7


# ============================================================================
# TRACK LIMITS
# ============================================================================

class TRACKS:
    """Library entries"""
    TITLE_MAX_CHARS = 140
    RECONCILED_TITLE_MAX_CHARS = 80
    SHARE_SLUG_LENGTH = 10
    SHARE_SLUG_MAX_ATTEMPTS = 8

    DEFAULT_PAGE_SIZE = 10
    MAX_PAGE_SIZE = 50


# ============================================================================
# DEBUG LOG BUFFER
# ============================================================================

class DEBUG_LOG:
    """In-process debug log ring"""
    MAX_ENTRIES = 500
    DEFAULT_LIMIT = 100


# Validate configuration on module import
RATE_LIMIT.validate()


__all__ = [
    'RATE_LIMIT',
    'JOBS',
    'PROMPT_IMPROVE',
    'TRACKS',
    'DEBUG_LOG',
]
