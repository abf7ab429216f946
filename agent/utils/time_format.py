"""Human-readable slot and window formatting (e.g. "Mon Nov 10 8:00 AM–9:30 AM")."""

from datetime import datetime
from zoneinfo import ZoneInfo

from agent.utils.slot_tokens import ENGLISH_TOKENS, SlotTokenTable


def format_clock(dt: datetime, time_zone: str, tokens: SlotTokenTable = ENGLISH_TOKENS) -> str:
    """12-hour clock without a leading zero: ``8:00 AM``."""
    local = dt.astimezone(ZoneInfo(time_zone))
    meridiem = tokens.meridiem[0] if local.hour < 12 else tokens.meridiem[1]
    return f"{local.hour % 12 or 12}:{local.minute:02d} {meridiem.upper()}"


def format_day(dt: datetime, time_zone: str, tokens: SlotTokenTable = ENGLISH_TOKENS) -> str:
    """Short day label: ``Mon Nov 10``."""
    local = dt.astimezone(ZoneInfo(time_zone))
    weekday = tokens.weekday_abbreviations[local.weekday()].title()
    month = tokens.month_abbreviations[local.month - 1].title()
    return f"{weekday} {month} {local.day}"


def format_slot_label(start: datetime, end: datetime, time_zone: str) -> str:
    return f"{format_day(start, time_zone)} {format_clock(start, time_zone)}–{format_clock(end, time_zone)}"
