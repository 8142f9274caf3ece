# script_builder.py - turns a prompt + preset into the text that gets spoken
"""
Deterministic text transform:

1. strip spoken-instruction words from the prompt ("please", "whisper", ...)
2. wrap it in a preset frame (intro / outro lines)
3. apply rhythm: short lines, ellipses, paragraph breaks
4. fit to the requested duration (±10%) by trimming or expanding

Durations are estimates from word counts and pause allowances, good enough
to land a synthesis request near the requested length.
"""

import math
import re
from dataclasses import dataclass
from typing import List, Optional

CLASSIC_ASMR = "classic-asmr"
SLEEP_STORY = "sleep-story"
MEDITATION = "meditation"
KIDS_STORY = "kids-story"

TARGET_MIN_SEC = 15
TARGET_MAX_SEC = 1800
MIN_ESTIMATE_SEC = 5
MAX_EXPAND_ROUNDS = 12
MAX_TRIM_ROUNDS = 30

ELLIPSIS_PAUSE_SEC = 0.35
PARAGRAPH_PAUSE_SEC = 0.9

_WPM = {
    CLASSIC_ASMR: 115,
    SLEEP_STORY: 135,
}
_DEFAULT_WPM = 120

_INSTRUCTION_WORDS = re.compile(
    r"\b(whisper(ing)?|please|can you|could you|would you|tell me|say|speak)\b",
    re.IGNORECASE,
)
_SENTENCE_SPLIT = re.compile(r"[\n\r]+|[.!?]+")
_WHITESPACE = re.compile(r"\s+")
_PARAGRAPH = re.compile(r"\n\s*\n")

_FRAMES = {
    CLASSIC_ASMR: (
        ["Hey…", "", "I'm right here with you now…", "So calm…", ""],
        ["", "You don't have to do anything…", "You can just listen…", "",
         "Everything is quiet…", "Everything is soft…"],
        "I'm simply here with you.",
    ),
    SLEEP_STORY: (
        ["It is evening.", "", "The day is over.", ""],
        ["", "The world grows quieter.", "Your thoughts can slow down.", "",
         "And you may drift off to sleep…"],
        "Picture a quiet place.",
    ),
    MEDITATION: (
        ["Breathe in slowly…", ""],
        ["", "And breathe out…", "", "Stay right here…", "Nothing else is needed right now…"],
        "Simply feel your breath.",
    ),
    KIDS_STORY: (
        ["Once upon a time…", ""],
        ["", "And everyone was safe and warm.", "", "The end… sleep well."],
        "A little fox found a cosy den.",
    ),
}

_FILLERS = {
    CLASSIC_ASMR: ["You don't have to do anything…", "", "I'm here…", "So close…", "",
                   "Everything is quiet…", "Everything is soft…"],
    SLEEP_STORY: ["The day is over.", "Everything grows quieter.", "",
                  "You can let go.", "Slowly.", "", "And you may sink down…"],
    MEDITATION: ["Breathe in…", "Slowly…", "", "And out again…", "", "Stay here…", "Just now…"],
    KIDS_STORY: ["The stars twinkled softly.", "The moon smiled.", "",
                 "Everything was calm and cosy…"],
}

_REPEAT_LEADS = {
    CLASSIC_ASMR: "Once more… very calm…",
    SLEEP_STORY: "And now… once more, gently…",
}
_DEFAULT_REPEAT_LEAD = "Slowly…"

# Lines recognised as filler/repetition and dropped first when trimming
_TRIMMABLE_MARKERS = ("once more", "you don't have to", "i'm here", "breathe", "the day is over")

WHISPER_PREFIX = "Whisper softly, very close, calm and gentle. "


@dataclass
class Script:
    text: str
    estimated_seconds: int


def clamp_target(target: Optional[float]) -> Optional[int]:
    if target is None:
        return None
    try:
        value = float(target)
    except (TypeError, ValueError):
        return None
    if value != value or value in (float("inf"), float("-inf")):
        return None
    return max(TARGET_MIN_SEC, min(TARGET_MAX_SEC, round(value)))


def normalize_prompt(prompt: str) -> str:
    raw = (prompt or "").strip()
    removed = _WHITESPACE.sub(" ", _INSTRUCTION_WORDS.sub("", raw)).strip()
    return removed or raw


def count_words(text: str) -> int:
    return len(text.split())


def estimate_spoken_seconds(text: str, preset: Optional[str]) -> int:
    wpm = _WPM.get(preset, _DEFAULT_WPM)
    speaking = count_words(text) / wpm * 60
    pauses = text.count("…") * ELLIPSIS_PAUSE_SEC + len(_PARAGRAPH.findall(text)) * PARAGRAPH_PAUSE_SEC
    return max(MIN_ESTIMATE_SEC, round(speaking + pauses))


def _frame(prompt: str, preset: Optional[str]) -> str:
    if preset not in _FRAMES:
        return prompt
    head, tail, default_body = _FRAMES[preset]
    return "\n".join(head + [prompt or default_body] + tail).strip()


def _split_soft(text: str) -> List[str]:
    return [part.strip() for part in _SENTENCE_SPLIT.split(text) if part.strip()]


def apply_rhythm(text: str, preset: Optional[str]) -> str:
    lines = _split_soft(text) or [text.strip()]
    paced = []
    for i, line in enumerate(lines):
        base = _WHITESPACE.sub(" ", line).strip()
        if not base:
            continue
        if preset == CLASSIC_ASMR:
            end = "…" if i % 2 == 0 else "."
            if len(base) < 80 and i % 3 == 0:
                base = f"Okay… {base}"
        elif preset in (SLEEP_STORY, KIDS_STORY):
            end = "."
        else:
            end = "…"
        paced.append(base.rstrip("…") + end)

    every = 3 if preset == SLEEP_STORY else 2
    out = []
    for i, line in enumerate(paced):
        out.append(line)
        if (i + 1) % every == 0:
            out.append("")
    return "\n".join(out).strip()


def _repeat_key_line(text: str, preset: Optional[str]) -> str:
    lines = [l.strip() for l in text.split("\n") if l.strip()]
    if not lines:
        return ""
    candidate = next((l for l in lines if 18 <= len(l) <= 90), lines[0])
    alt = re.sub(r"^Okay…\s*", "", candidate)
    alt = re.sub(r"\.$", "…", alt)
    alt = re.sub(r"…+$", "…", alt)
    return f"{_REPEAT_LEADS.get(preset, _DEFAULT_REPEAT_LEAD)}\n{alt}"


def _expand_once(text: str, preset: Optional[str]) -> str:
    filler = "\n".join(_FILLERS.get(preset, _FILLERS[MEDITATION]))
    return "\n".join([text.strip(), "", _repeat_key_line(text, preset), "", filler]).strip()


def _trim_to(text: str, preset: Optional[str], max_sec: int) -> str:
    """Keep the first and last 8 lines; thin the middle, filler first"""
    lines = text.split("\n")
    keep_head = min(8, len(lines))
    keep_tail = min(8, max(0, len(lines) - keep_head))
    head = lines[:keep_head]
    tail = lines[len(lines) - keep_tail:] if keep_tail else []
    middle = [
        l for l in lines[keep_head:len(lines) - keep_tail]
        if not l.strip() or not any(m in l.strip().lower() for m in _TRIMMABLE_MARKERS)
    ]
    out = "\n".join(head + middle + tail).strip()

    rounds = 0
    while estimate_spoken_seconds(out, preset) > max_sec and rounds < MAX_TRIM_ROUNDS:
        parts = out.split("\n")
        kept = []
        non_empty = 0
        for i, line in enumerate(parts):
            if line.strip():
                non_empty += 1
            if 6 < i < len(parts) - 6 and line.strip() and non_empty % 3 == 0:
                continue
            kept.append(line)
        if len(kept) == len(parts):
            break
        out = "\n".join(kept).strip()
        rounds += 1
    return out


def fit_to_target_duration(text: str, preset: Optional[str], target: Optional[int]) -> str:
    """Land within ±10% of target where the text allows it"""
    if not target:
        return text

    min_ok = int(target * 0.9)
    max_ok = math.ceil(target * 1.1)

    current = text
    if estimate_spoken_seconds(current, preset) > max_ok:
        current = _trim_to(current, preset, max_ok)

    rounds = 0
    while estimate_spoken_seconds(current, preset) < min_ok and rounds < MAX_EXPAND_ROUNDS:
        current = _expand_once(current, preset)
        rounds += 1

    if estimate_spoken_seconds(current, preset) > max_ok:
        current = _trim_to(current, preset, max_ok)
    return current.strip()


def build_script(prompt: str, preset: Optional[str] = None,
                 target_duration_sec: Optional[float] = None) -> Script:
    cleaned = normalize_prompt(prompt)
    structured = apply_rhythm(_frame(cleaned, preset), preset)
    fitted = fit_to_target_duration(structured, preset, clamp_target(target_duration_sec))
    return Script(text=fitted, estimated_seconds=estimate_spoken_seconds(fitted, preset))


def whisper_prefix_for_preset(preset: Optional[str]) -> str:
    return WHISPER_PREFIX if preset == CLASSIC_ASMR else ""


__all__ = [
    'Script',
    'build_script',
    'estimate_spoken_seconds',
    'fit_to_target_duration',
    'apply_rhythm',
    'normalize_prompt',
    'clamp_target',
    'whisper_prefix_for_preset',
]
