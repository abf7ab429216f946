"""
Utility functions shared by the scheduling services.

- date_parser: Natural language date/time parsing for English
- time_format: Window labels in the business timezone
- slot_tokens: Language token table for slot matching
- message_templates: Confirmation and reminder copy
"""

from agent.utils.date_parser import DEFAULT_TIMEZONE, resolve_preferred_datetime
from agent.utils.message_templates import (
    booking_confirmation_email,
    booking_confirmation_text,
    format_currency,
    reminder_email,
    reminder_text,
)
from agent.utils.slot_tokens import ENGLISH_TOKENS, SlotTokenTable
from agent.utils.time_format import format_clock, format_day, format_slot_label

__all__ = [
    # Date parsing
    "DEFAULT_TIMEZONE",
    "resolve_preferred_datetime",
    # Formatting
    "format_clock",
    "format_day",
    "format_slot_label",
    # Tokens
    "ENGLISH_TOKENS",
    "SlotTokenTable",
    # Templates
    "booking_confirmation_email",
    "booking_confirmation_text",
    "format_currency",
    "reminder_email",
    "reminder_text",
]
