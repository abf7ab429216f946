"""
Slot Matcher - resolve a customer's free-text reply to one proposed slot.

Pure function over the proposed slot list: no I/O, no clock. All vocabulary
comes from a SlotTokenTable (agent/utils/slot_tokens.py).

Resolution precedence, first unique hit wins:
1. Ordinal / positional phrase ("first", "2nd", "earlier", "later")
2. Literal slot label contained in the text
3. A day token AND a time token of the same slot
4. A time token of exactly one slot
5. A part-of-day keyword when exactly one slot sits in that bucket
6. A bare part-of-day keyword with no slot in that bucket: morning picks
   the first slot, afternoon/evening the last

A rule that matches more than one slot stops resolution: the reply is
ambiguous and the caller must ask again rather than guess.
"""

import re
from dataclasses import dataclass
from enum import Enum
from zoneinfo import ZoneInfo

from agent.state.working_state import ProposedSlot
from agent.utils.date_parser import DEFAULT_TIMEZONE
from agent.utils.slot_tokens import ENGLISH_TOKENS, SlotTokenTable


class SlotMatchReason(str, Enum):
    ORDINAL = "ordinal_match"
    LABEL = "label_match"
    DAY_TIME = "day_time_match"
    TIME = "time_match"
    PART_OF_DAY = "part_of_day_match"


@dataclass(frozen=True)
class SlotMatch:
    slot: ProposedSlot
    reason: SlotMatchReason


@dataclass(frozen=True)
class _SlotTokens:
    index: int
    slot: ProposedSlot
    day_tokens: tuple[str, ...]
    time_tokens: tuple[str, ...]
    part_of_day: str
    label: str


class _Ambiguous(Exception):
    pass


def contains_token(text: str, token: str) -> bool:
    """Case-sensitive containment of ``token`` as a whole word/number in ``text``."""
    if not token:
        return False
    return re.search(rf"(?<![\w:]){re.escape(token)}(?![\w:])", text) is not None


def build_slot_tokens(
    slot: ProposedSlot,
    index: int,
    time_zone: str,
    tokens: SlotTokenTable = ENGLISH_TOKENS,
) -> _SlotTokens:
    local = slot.window_start.astimezone(ZoneInfo(time_zone))

    weekday = tokens.weekday_names[local.weekday()]
    month = tokens.month_names[local.month - 1]
    month_abbr = tokens.month_abbreviations[local.month - 1]
    day_tokens = (
        weekday,
        tokens.weekday_abbreviations[local.weekday()],
        f"{weekday}, {month_abbr} {local.day}",
        f"{month_abbr} {local.day}",
        f"{month} {local.day}",
    )

    hour = str(local.hour % 12 or 12)
    minute = f"{local.minute:02d}"
    meridiem = tokens.meridiem[0] if local.hour < 12 else tokens.meridiem[1]
    time_tokens = [
        f"{hour}:{minute} {meridiem}",
        f"{hour}:{minute}",
        f"{hour}:{minute}{meridiem}",
        f"{hour} {meridiem}",
        f"{hour}{meridiem}",
        f"{hour}{meridiem[0]}",
        f"{hour} {meridiem[0]}",
    ]
    if local.minute == 0:
        time_tokens.extend(f"{hour} {oclock} {meridiem}" for oclock in tokens.oclock_spellings)

    return _SlotTokens(
        index=index,
        slot=slot,
        day_tokens=day_tokens,
        time_tokens=tuple(time_tokens),
        part_of_day=tokens.part_of_day(local.hour),
        label=slot.label.strip().lower(),
    )


def _unique(candidates: list[_SlotTokens]) -> _SlotTokens | None:
    distinct = {c.index: c for c in candidates}
    if len(distinct) > 1:
        raise _Ambiguous()
    return next(iter(distinct.values()), None)


def _ordinal_index(text: str, slot_count: int, tokens: SlotTokenTable) -> int | None:
    indexes = set()
    for phrases, index in tokens.ordinal_phrases:
        if any(contains_token(text, phrase) for phrase in phrases):
            resolved = index if index >= 0 else slot_count + index
            if 0 <= resolved < slot_count:
                indexes.add(resolved)
    if len(indexes) > 1:
        raise _Ambiguous()
    return next(iter(indexes), None)


def _mentioned_parts_of_day(text: str, tokens: SlotTokenTable) -> list[str]:
    return [
        bucket
        for bucket, keywords in tokens.part_of_day_keywords.items()
        if any(contains_token(text, keyword) for keyword in keywords)
    ]


def match_slot(
    text: str,
    slots: list[ProposedSlot],
    time_zone: str = DEFAULT_TIMEZONE,
    tokens: SlotTokenTable = ENGLISH_TOKENS,
) -> SlotMatch | None:
    """
    Match free text against the proposed slots.

    Args:
        text: Customer reply
        slots: Slots in the order they were offered
        time_zone: Zone the slots were presented in
        tokens: Locale vocabulary

    Returns:
        SlotMatch with the reason that fired, or None when nothing matches
        or the reply is ambiguous
    """
    normalized = (text or "").strip().lower()
    if not normalized or not slots:
        return None

    indexed = [build_slot_tokens(slot, i, time_zone, tokens) for i, slot in enumerate(slots)]

    try:
        index = _ordinal_index(normalized, len(slots), tokens)
        if index is not None:
            return SlotMatch(slot=slots[index], reason=SlotMatchReason.ORDINAL)

        hit = _unique([s for s in indexed if s.label and s.label in normalized])
        if hit:
            return SlotMatch(slot=hit.slot, reason=SlotMatchReason.LABEL)

        time_hits = [
            s for s in indexed
            if any(contains_token(normalized, token) for token in s.time_tokens)
        ]
        hit = _unique([
            s for s in time_hits
            if any(contains_token(normalized, token) for token in s.day_tokens)
        ])
        if hit:
            return SlotMatch(slot=hit.slot, reason=SlotMatchReason.DAY_TIME)

        hit = _unique(time_hits)
        if hit:
            return SlotMatch(slot=hit.slot, reason=SlotMatchReason.TIME)

        mentioned = _mentioned_parts_of_day(normalized, tokens)
        hit = _unique([s for s in indexed if s.part_of_day in mentioned])
        if hit:
            return SlotMatch(slot=hit.slot, reason=SlotMatchReason.PART_OF_DAY)

        if len(mentioned) == 1:
            bucket = mentioned[0]
            position = 0 if bucket in tokens.leading_parts_of_day else len(slots) - 1
            return SlotMatch(slot=slots[position], reason=SlotMatchReason.ORDINAL)
    except _Ambiguous:
        return None

    return None
