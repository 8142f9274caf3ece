# title.py - display titles derived from prompts, and user title sanitizing

import re
from typing import Optional

from config.constants import FALLBACK_TRACK_TITLE
from config.limits import JOBS, TRACKS

_WHITESPACE = re.compile(r"\s+")
_CONTROL_CHARS = re.compile(r"[\u0000-\u001F\u007F]")
ELLIPSIS = "…"


def truncate(text: str, limit: int) -> str:
    """Hard cut to limit characters, no ellipsis"""
    return text[:limit] if len(text) > limit else text


def make_title_from_prompt(prompt: Optional[str], limit: int = JOBS.TITLE_MAX_CHARS) -> str:
    """
    First line of the prompt with whitespace collapsed.

    Longer than limit: cut to limit - 3 characters plus an ellipsis.
    Empty prompt: the fallback track title.
    """
    if not prompt:
        return FALLBACK_TRACK_TITLE
    first_line = prompt.strip().split("\n", 1)[0]
    line = _WHITESPACE.sub(" ", first_line).strip()
    if not line:
        return FALLBACK_TRACK_TITLE
    if len(line) > limit:
        return line[: limit - 3] + ELLIPSIS
    return line


def sanitize_track_title(raw: Optional[str], limit: int = TRACKS.TITLE_MAX_CHARS) -> str:
    """Strip control characters, trim, cap length. May return an empty string."""
    if raw is None:
        return ""
    cleaned = _CONTROL_CHARS.sub("", str(raw)).strip()
    return truncate(cleaned, limit)


def resolve_track_title(
    explicit: Optional[str] = None,
    job_title: Optional[str] = None,
    prompt: Optional[str] = None,
    limit: int = TRACKS.RECONCILED_TITLE_MAX_CHARS,
) -> str:
    """explicit > job title > derived from prompt > fallback literal"""
    for candidate in (explicit, job_title):
        if candidate and candidate.strip():
            return truncate(candidate.strip(), limit)
    if prompt and prompt.strip():
        return truncate(make_title_from_prompt(prompt, limit), limit)
    return FALLBACK_TRACK_TITLE


__all__ = [
    'make_title_from_prompt',
    'sanitize_track_title',
    'resolve_track_title',
    'truncate',
]
