"""Parsing of free-form program duration and training frequency values."""

import re
from typing import Any

import structlog

logger = structlog.get_logger()

DEFAULT_DURATION_DAYS = 56
DEFAULT_TRAINING_FREQUENCY = 4
MIN_DURATION_DAYS = 7
MAX_DURATION_DAYS = 365

_UNIT_DAYS = {
    "day": 1,
    "week": 7,
    "wk": 7,
    "month": 30,
    "mo": 30,
}

_VAGUE_DURATIONS = {
    "a couple of weeks": 14,
    "a few weeks": 21,
    "a month": 30,
    "a couple of months": 60,
    "a few months": 90,
    "a quarter": 90,
    "half a year": 180,
}

_NUMBER_WORDS = {
    "one": 1, "two": 2, "three": 3, "four": 4, "five": 5, "six": 6,
    "seven": 7, "eight": 8, "nine": 9, "ten": 10, "eleven": 11, "twelve": 12,
}

_DURATION_RE = re.compile(r"(\d+(?:\.\d+)?)\s*-?\s*(day|week|wk|month|mo)s?\b")


def _clamp(days: int) -> int:
    return max(MIN_DURATION_DAYS, min(MAX_DURATION_DAYS, days))


def parse_duration_days(value: Any, default: int = DEFAULT_DURATION_DAYS) -> int:
    """
    Convert "8 weeks", "3 months", "42", "a couple of months" to days.

    Bare numbers are days. Results are clamped to 7..365; anything
    unparseable returns ``default``.
    """
    if value is None or value == "":
        return default
    if isinstance(value, bool):
        return default
    if isinstance(value, (int, float)):
        return _clamp(int(value)) if value > 0 else default

    text = str(value).strip().lower()
    for word, number in _NUMBER_WORDS.items():
        text = re.sub(rf"\b{word}\b", str(number), text)

    match = _DURATION_RE.search(text)
    if match:
        amount = float(match.group(1))
        return _clamp(int(round(amount * _UNIT_DAYS[match.group(2)])))

    for phrase, days in _VAGUE_DURATIONS.items():
        if phrase in text:
            return days

    if text.isdigit():
        return _clamp(int(text)) if int(text) > 0 else default

    logger.warning("duration_unparsed", value=str(value)[:100], default=default)
    return default


def parse_training_frequency(value: Any, default: int = DEFAULT_TRAINING_FREQUENCY) -> int:
    """Days per week, from 1 to 7. Accepts ints or strings like "4x per week"."""
    if isinstance(value, bool) or value is None:
        return default
    if isinstance(value, (int, float)):
        number = int(value)
    else:
        match = re.search(r"\d+", str(value))
        if not match:
            logger.warning("frequency_unparsed", value=str(value)[:100], default=default)
            return default
        number = int(match.group(0))
    if number < 1 or number > 7:
        logger.warning("frequency_out_of_range", value=number, default=default)
        return default
    return number
