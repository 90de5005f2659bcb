"""
Temporal Expression Parser

Resolves natural-language time expressions ("yesterday", "2 hours ago",
"last week", "in March") into a half-open ``[start, end)`` window.

All arithmetic is done in the timezone of the supplied ``now`` so the
caller's clock (injectable in tests) fully determines the result.
"""

from __future__ import annotations

import re
from datetime import datetime, timedelta
from typing import NamedTuple

from remen.models.schemas import TemporalFilter

DAYS = ("sunday", "monday", "tuesday", "wednesday", "thursday", "friday", "saturday")
MONTHS = (
    "january",
    "february",
    "march",
    "april",
    "may",
    "june",
    "july",
    "august",
    "september",
    "october",
    "november",
    "december",
)

_ONE_DAY = timedelta(days=1)
_MAX_AGO_WINDOW = timedelta(hours=2)

_AGO_UNITS: tuple[tuple[re.Pattern[str], str, timedelta], ...] = (
    (re.compile(r"(\d+)\s*(?:hours?|hrs?)\s*ago", re.I), "hour", timedelta(hours=1)),
    (re.compile(r"(\d+)\s*(?:minutes?|mins?)\s*ago", re.I), "minute", timedelta(minutes=1)),
    (re.compile(r"(\d+)\s*days?\s*ago", re.I), "day", timedelta(days=1)),
    (re.compile(r"(\d+)\s*weeks?\s*ago", re.I), "week", timedelta(weeks=1)),
    (re.compile(r"(\d+)\s*months?\s*ago", re.I), "month", timedelta(days=30)),
)


class TemporalParse(NamedTuple):
    filter: TemporalFilter
    remaining: str  # Query text with the time expression removed


def start_of_day(moment: datetime) -> datetime:
    return moment.replace(hour=0, minute=0, second=0, microsecond=0)


def _weekday_index(moment: datetime) -> int:
    """Sunday-based index (Sunday == 0)."""
    return (moment.weekday() + 1) % 7


def start_of_week(moment: datetime) -> datetime:
    """Most recent Sunday at midnight."""
    today = start_of_day(moment)
    return today - timedelta(days=_weekday_index(today))


def _add_months(moment: datetime, months: int) -> datetime:
    index = moment.month - 1 + months
    return moment.replace(year=moment.year + index // 12, month=index % 12 + 1, day=1)


def _strip(pattern: str | re.Pattern[str], text: str) -> str:
    return " ".join(re.sub(pattern, " ", text).split())


def _window(description: str, start: datetime, end: datetime) -> TemporalFilter:
    return TemporalFilter(description=description, start=start, end=end)


def _parse_ago(text: str, now: datetime) -> TemporalParse | None:
    for pattern, unit, step in _AGO_UNITS:
        match = pattern.search(text)
        if not match:
            continue
        value = int(match.group(1))
        ago = step * value
        # Centered window, half the distance wide, at most two hours each side
        half = min(ago * 0.5, _MAX_AGO_WINDOW)
        label = f"{value} {unit}{'' if value == 1 else 's'} ago"
        return TemporalParse(
            _window(f"Around {label}", now - ago - half, now - ago + half),
            _strip(pattern, text),
        )
    return None


def _parse_day_words(text: str, now: datetime) -> TemporalParse | None:
    today = start_of_day(now)
    if re.search(r"\byesterday\b", text):
        return TemporalParse(
            _window("Yesterday", today - _ONE_DAY, today),
            _strip(r"\byesterday\b", text),
        )
    if re.search(r"\btoday\b", text):
        return TemporalParse(
            _window("Today", today, today + _ONE_DAY),
            _strip(r"\btoday\b", text),
        )
    return None


def _parse_weekday(text: str, now: datetime) -> TemporalParse | None:
    today = start_of_day(now)
    current = _weekday_index(today)
    for index, day in enumerate(DAYS):
        label = day.capitalize()

        last = re.compile(rf"\b(?:last|on)\s+{day}\b")
        if last.search(text):
            days_ago = current - index
            if days_ago <= 0:
                days_ago += 7
            target = today - timedelta(days=days_ago)
            return TemporalParse(
                _window(f"Last {label}", target, target + _ONE_DAY),
                _strip(last, text),
            )

        this = re.compile(rf"\bthis\s+{day}\b")
        if this.search(text):
            days_until = (index - current) % 7
            target = today + timedelta(days=days_until)
            return TemporalParse(
                _window(f"This {label}", target, target + _ONE_DAY),
                _strip(this, text),
            )
    return None


def _parse_period(text: str, now: datetime) -> TemporalParse | None:
    today = start_of_day(now)

    if re.search(r"\blast\s+week\b", text):
        # Rolling window: the past seven days up to now
        return TemporalParse(
            _window("Last week", today - timedelta(days=7), now),
            _strip(r"\blast\s+week\b", text),
        )
    if re.search(r"\bthis\s+week\b", text):
        start = start_of_week(now)
        return TemporalParse(
            _window("This week", start, start + timedelta(days=7)),
            _strip(r"\bthis\s+week\b", text),
        )

    month_start = today.replace(day=1)
    if re.search(r"\blast\s+month\b", text):
        return TemporalParse(
            _window("Last month", _add_months(month_start, -1), month_start),
            _strip(r"\blast\s+month\b", text),
        )
    if re.search(r"\bthis\s+month\b", text):
        return TemporalParse(
            _window("This month", month_start, _add_months(month_start, 1)),
            _strip(r"\bthis\s+month\b", text),
        )

    year_start = month_start.replace(month=1)
    if re.search(r"\blast\s+year\b", text):
        return TemporalParse(
            _window("Last year", year_start.replace(year=year_start.year - 1), year_start),
            _strip(r"\blast\s+year\b", text),
        )
    if re.search(r"\bthis\s+year\b", text):
        return TemporalParse(
            _window("This year", year_start, year_start.replace(year=year_start.year + 1)),
            _strip(r"\bthis\s+year\b", text),
        )
    return None


def _parse_month(text: str, now: datetime) -> TemporalParse | None:
    for index, month in enumerate(MONTHS):
        pattern = re.compile(rf"\bin\s+{month}\b")
        if not pattern.search(text):
            continue
        year = now.year - 1 if index + 1 > now.month else now.year
        start = start_of_day(now).replace(year=year, month=index + 1, day=1)
        return TemporalParse(
            _window(f"{month.capitalize()} {year}", start, _add_months(start, 1)),
            _strip(pattern, text),
        )
    return None


_PARSERS = (_parse_ago, _parse_day_words, _parse_weekday, _parse_period, _parse_month)


def parse_temporal(text: str, now: datetime) -> TemporalParse | None:
    """
    Extract the first recognised time expression from ``text``.

    Args:
        text: Raw query or an LLM temporal hint.
        now: Current time (timezone-aware).

    Returns:
        The resolved window and the query with the expression removed,
        or None when no expression is recognised.
    """
    lowered = (text or "").lower().strip()
    if not lowered:
        return None
    for parser in _PARSERS:
        parsed = parser(lowered, now)
        if parsed is not None:
            return parsed
    return None


_TEMPORAL_KEYWORDS = re.compile(
    r"\b(?:yesterday|today|ago|last|this|week|month|year|hours?|minutes?|days?|"
    + "|".join(DAYS + MONTHS)
    + r")\b",
    re.I,
)


def has_temporal_keywords(text: str) -> bool:
    return bool(_TEMPORAL_KEYWORDS.search(text or ""))
