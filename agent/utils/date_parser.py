"""
Natural Date Parser for English preferred-time phrases.

Resolves what a customer types when asked for a pickup time ("tomorrow
morning", "this Friday at 3 pm", "Nov 14 at 10:30") into a concrete future
instant. Used by SlotGenerator to anchor slot proposals.
"""

import re
from datetime import UTC, date, datetime, time, timedelta
from zoneinfo import ZoneInfo

from dateutil import parser as dateutil_parser

DEFAULT_TIMEZONE = "America/New_York"

RELATIVE_DATES = {
    "day after tomorrow": 2,
    "tomorrow": 1,
    "tmrw": 1,
    "today": 0,
    "tonight": 0,
}

ENGLISH_WEEKDAYS = {
    "monday": 0, "mon": 0,
    "tuesday": 1, "tue": 1, "tues": 1,
    "wednesday": 2, "wed": 2,
    "thursday": 3, "thu": 3, "thur": 3, "thurs": 3,
    "friday": 4, "fri": 4,
    "saturday": 5, "sat": 5,
    "sunday": 6, "sun": 6,
}

ENGLISH_MONTHS = {
    "january": 1, "jan": 1,
    "february": 2, "feb": 2,
    "march": 3, "mar": 3,
    "april": 4, "apr": 4,
    "may": 5,
    "june": 6, "jun": 6,
    "july": 7, "jul": 7,
    "august": 8, "aug": 8,
    "september": 9, "sep": 9, "sept": 9,
    "october": 10, "oct": 10,
    "november": 11, "nov": 11,
    "december": 12, "dec": 12,
}

# Time used when only a part of day is given
PART_OF_DAY_TIMES = {
    "morning": time(9, 0),
    "noon": time(12, 0),
    "midday": time(12, 0),
    "lunch": time(12, 0),
    "afternoon": time(14, 0),
    "evening": time(17, 0),
    "tonight": time(17, 0),
}

# Time used when only a day is given
DEFAULT_DAY_TIME = time(12, 0)

_WEEKDAY_RE = re.compile(
    r"\b(?:(this|next|coming)\s+)?(" + "|".join(sorted(ENGLISH_WEEKDAYS, key=len, reverse=True)) + r")\b"
)
_MONTH_DAY_RE = re.compile(
    r"\b(" + "|".join(sorted(ENGLISH_MONTHS, key=len, reverse=True)) + r")\.?\s+(\d{1,2})(st|nd|rd|th)?(?:,?\s+(\d{4}))?\b"
)
_NUMERIC_DATE_RE = re.compile(r"\b(\d{4})-(\d{1,2})-(\d{1,2})\b|\b(\d{1,2})/(\d{1,2})(?:/(\d{2,4}))?\b")
_MERIDIEM_TIME_RE = re.compile(r"(?<![\d:])(\d{1,2})(?::(\d{2}))?\s*(a|p)(?:\.?\s?m\b\.?|\.)")
# "may 10 am" is a time, not May 10
_TIME_AFTER_DAY_RE = re.compile(r"\s*(?::\d{2}|[ap]\.?\s?m\b|[ap]\.|o'?clock)")
_CLOCK_TIME_RE = re.compile(r"(?<![\d:/])(\d{1,2}):(\d{2})(?![\d:])")
_BARE_AT_TIME_RE = re.compile(r"\b(?:at|around|by)\s+(\d{1,2})(?![\d:/])(?:\s*o'?clock)?")


def _resolve_date(text: str, reference: datetime) -> date | None:
    today = reference.date()

    for phrase, offset in RELATIVE_DATES.items():
        if re.search(rf"\b{phrase}\b", text):
            return today + timedelta(days=offset)

    for match in _MONTH_DAY_RE.finditer(text):
        name, day_text, suffix, year_text = match.groups()
        if (
            name == "may"
            and not (suffix or year_text)
            and _TIME_AFTER_DAY_RE.match(text, match.end())
        ):
            continue
        year = int(year_text) if year_text else today.year
        try:
            resolved = date(year, ENGLISH_MONTHS[name], int(day_text))
        except ValueError:
            return None
        if not year_text and resolved < today:
            resolved = resolved.replace(year=year + 1)
        return resolved

    match = _NUMERIC_DATE_RE.search(text)
    if match:
        try:
            if match.group(1):
                return date(int(match.group(1)), int(match.group(2)), int(match.group(3)))
            year_text = match.group(6)
            year = today.year
            if year_text:
                year = int(year_text) + (2000 if len(year_text) == 2 else 0)
            resolved = date(year, int(match.group(4)), int(match.group(5)))
        except ValueError:
            return None
        if not year_text and resolved < today:
            resolved = resolved.replace(year=year + 1)
        return resolved

    match = _WEEKDAY_RE.search(text)
    if match:
        qualifier, name = match.group(1), match.group(2)
        days_ahead = (ENGLISH_WEEKDAYS[name] - today.weekday()) % 7
        if qualifier == "next" and days_ahead == 0:
            days_ahead = 7
        return today + timedelta(days=days_ahead)

    return None


def _resolve_time(text: str) -> time | None:
    match = _MERIDIEM_TIME_RE.search(text)
    if match:
        hour, minute = int(match.group(1)), int(match.group(2) or 0)
        if not 1 <= hour <= 12 or minute > 59:
            return None
        if match.group(3) == "p" and hour != 12:
            hour += 12
        elif match.group(3) == "a" and hour == 12:
            hour = 0
        return time(hour, minute)

    match = _CLOCK_TIME_RE.search(text)
    if match:
        hour, minute = int(match.group(1)), int(match.group(2))
        if hour > 23 or minute > 59:
            return None
        # "at 3:30" during business hours means the afternoon
        if 1 <= hour <= 6:
            hour += 12
        return time(hour, minute)

    match = _BARE_AT_TIME_RE.search(text)
    if match:
        hour = int(match.group(1))
        if hour > 23:
            return None
        if 1 <= hour <= 6:
            hour += 12
        return time(hour, 0)

    for phrase, part_time in PART_OF_DAY_TIMES.items():
        if re.search(rf"\b{phrase}\b", text):
            return part_time

    return None


def resolve_preferred_datetime(
    phrase: str | None,
    time_zone: str = DEFAULT_TIMEZONE,
    now: datetime | None = None,
) -> datetime | None:
    """
    Resolve a free-text preferred time into a future UTC instant.

    Handles:
    - Relative days: "today", "tomorrow", "day after tomorrow"
    - Weekdays, optionally with "this"/"next": "friday", "next tue"
    - Written and numeric dates: "Nov 14", "November 14th, 2025", "11/14", "2025-11-14"
    - Times: "3 pm", "3:30pm", "10 a.m.", "15:00", "at 3", "noon"
    - Parts of day: "morning" (9:00), "afternoon" (14:00), "evening" (17:00)
    Anything else falls back to python-dateutil.

    Args:
        phrase: Customer text
        time_zone: IANA zone the customer speaks in
        now: Reference instant (default: current time)

    Returns:
        Aware datetime in UTC, or None when the text is blank, unparseable,
        or resolves to a moment in the past

    Examples:
        With now = 2025-11-09 12:00 America/New_York (Sunday):

        >>> resolve_preferred_datetime("this Friday at 3 pm", "America/New_York", now)
        datetime(2025, 11, 14, 20, 0, tzinfo=UTC)

    Rules:
        - A bare or "this" weekday means its next occurrence, today included;
          "next <weekday>" never means today
        - A time with no day means today, or tomorrow if that time has passed
        - A day with no time means noon on that day, or "now" if the day is today
    """
    if not phrase or not phrase.strip():
        return None

    tz = ZoneInfo(time_zone)
    reference = now.astimezone(tz) if now else datetime.now(tz)
    text = phrase.strip().lower()

    resolved_date = _resolve_date(text, reference)
    resolved_time = _resolve_time(text)

    if resolved_date is None and resolved_time is None:
        try:
            parsed = dateutil_parser.parse(
                phrase,
                fuzzy=True,
                default=reference.replace(hour=12, minute=0, second=0, microsecond=0, tzinfo=None),
            )
        except (ValueError, OverflowError):
            return None
        result = parsed.replace(tzinfo=tz) if parsed.tzinfo is None else parsed
    elif resolved_date is None:
        result = datetime.combine(reference.date(), resolved_time, tzinfo=tz)
        if result < reference:
            result += timedelta(days=1)
    elif resolved_time is None:
        if resolved_date == reference.date():
            result = reference
        else:
            result = datetime.combine(resolved_date, DEFAULT_DAY_TIME, tzinfo=tz)
    else:
        result = datetime.combine(resolved_date, resolved_time, tzinfo=tz)

    if result < reference:
        return None

    return result.astimezone(UTC)
