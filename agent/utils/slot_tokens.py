"""
Locale token tables for slot labels and slot selection.

The matcher in agent/services/slot_matcher.py is purely table-driven: every
word it recognises (weekday and month names, meridiem spellings, ordinals,
part-of-day keywords and their hour boundaries) comes from a ``SlotTokenTable``.
Supporting another language means building another table, not touching the
matching logic.
"""

from dataclasses import dataclass


@dataclass(frozen=True)
class SlotTokenTable:
    # Index 0 = Monday, matching datetime.weekday()
    weekday_names: tuple[str, ...]
    weekday_abbreviations: tuple[str, ...]
    # Index 0 = January
    month_names: tuple[str, ...]
    month_abbreviations: tuple[str, ...]
    meridiem: tuple[str, str]
    oclock_spellings: tuple[str, ...]
    # (phrases, slot index); a negative index counts from the end of the list
    ordinal_phrases: tuple[tuple[tuple[str, ...], int], ...]
    # Bucket name -> keywords that name it in free text
    part_of_day_keywords: dict[str, tuple[str, ...]]
    # Buckets in order with the hour at which each one ends
    part_of_day_boundaries: tuple[tuple[str, int], ...]
    # Buckets that fall back to the first slot when no slot occupies them
    leading_parts_of_day: tuple[str, ...]

    def part_of_day(self, hour: int) -> str:
        for name, end_hour in self.part_of_day_boundaries:
            if hour < end_hour:
                return name
        return self.part_of_day_boundaries[-1][0]


ENGLISH_TOKENS = SlotTokenTable(
    weekday_names=(
        "monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday",
    ),
    weekday_abbreviations=("mon", "tue", "wed", "thu", "fri", "sat", "sun"),
    month_names=(
        "january", "february", "march", "april", "may", "june",
        "july", "august", "september", "october", "november", "december",
    ),
    month_abbreviations=(
        "jan", "feb", "mar", "apr", "may", "jun",
        "jul", "aug", "sep", "oct", "nov", "dec",
    ),
    meridiem=("am", "pm"),
    oclock_spellings=("o'clock", "oclock"),
    ordinal_phrases=(
        (("first", "1st", "earlier", "earliest"), 0),
        (("second", "2nd"), 1),
        (("third", "3rd"), 2),
        (("fourth", "4th"), 3),
        (("last", "later", "latest"), -1),
    ),
    part_of_day_keywords={
        "morning": ("morning",),
        "afternoon": ("afternoon",),
        "evening": ("evening", "tonight"),
    },
    part_of_day_boundaries=(("morning", 12), ("afternoon", 17), ("evening", 24)),
    leading_parts_of_day=("morning",),
)
