"""
Unit tests for agent/services/slot_matcher.py.

Coverage:
- Each resolution rule (ordinal, label, day+time, time, part of day)
- Positional fallback for a bare part of day with no slot in it
- Ambiguous replies return None
- Custom token tables drive matching without code changes
"""

from dataclasses import replace
from datetime import datetime

import pytest

from agent.services.slot_matcher import SlotMatchReason, contains_token, match_slot
from agent.state.working_state import ProposedSlot
from agent.utils.slot_tokens import ENGLISH_TOKENS

NY = "America/New_York"


def make_slot(slot_id: str, start: str, end: str, label: str) -> ProposedSlot:
    return ProposedSlot(
        id=slot_id,
        label=label,
        window_start=datetime.fromisoformat(start),
        window_end=datetime.fromisoformat(end),
    )


@pytest.fixture
def slots():
    """Monday Nov 10 2025: 8:00-9:30 AM and 2:30-4:00 PM Eastern."""
    return [
        make_slot("slot-1", "2025-11-10T13:00:00+00:00", "2025-11-10T14:30:00+00:00", "Mon 8–9:30 AM"),
        make_slot("slot-2", "2025-11-10T19:30:00+00:00", "2025-11-10T21:00:00+00:00", "Mon 2:30–4 PM"),
    ]


@pytest.fixture
def afternoon_slots():
    """Two afternoon windows on Tuesday Nov 11 2025 (1 PM and 3:30 PM Eastern)."""
    return [
        make_slot("slot-a", "2025-11-11T18:00:00+00:00", "2025-11-11T19:30:00+00:00", "Tue Nov 11 1:00 PM–2:30 PM"),
        make_slot("slot-b", "2025-11-11T20:30:00+00:00", "2025-11-11T22:00:00+00:00", "Tue Nov 11 3:30 PM–5:00 PM"),
    ]


class TestMatchRules:
    def test_ordinal(self, slots):
        match = match_slot("I'll take the second option", slots, NY)
        assert match.slot.id == "slot-2"
        assert match.reason == SlotMatchReason.ORDINAL

    def test_earlier_is_first(self, slots):
        match = match_slot("the earlier one please", slots, NY)
        assert match.slot.id == "slot-1"
        assert match.reason == SlotMatchReason.ORDINAL

    def test_unique_part_of_day(self, slots):
        match = match_slot("Book the afternoon window", slots, NY)
        assert match.slot.id == "slot-2"
        assert match.reason == SlotMatchReason.PART_OF_DAY

    def test_label_containment(self, slots):
        match = match_slot("Mon 8–9:30 AM sounds good", slots, NY)
        assert match.slot.id == "slot-1"
        assert match.reason == SlotMatchReason.LABEL

    def test_day_and_time(self, slots):
        match = match_slot("monday at 2:30 works", slots, NY)
        assert match.slot.id == "slot-2"
        assert match.reason == SlotMatchReason.DAY_TIME

    @pytest.mark.parametrize("text", ["8am works", "8 am please", "let's do 8:00", "8 o'clock am"])
    def test_time_only_spellings(self, slots, text):
        match = match_slot(text, slots, NY)
        assert match.slot.id == "slot-1"
        assert match.reason == SlotMatchReason.TIME

    def test_time_token_needs_word_boundary(self, slots):
        # "18" must not be read as "8"
        assert match_slot("18 items to haul", slots, NY) is None


class TestPositionalFallback:
    def test_morning_with_no_morning_slot_picks_first(self, afternoon_slots):
        match = match_slot("morning works", afternoon_slots, NY)
        assert match.slot.id == "slot-a"
        assert match.reason == SlotMatchReason.ORDINAL

    def test_evening_with_no_evening_slot_picks_last(self, afternoon_slots):
        match = match_slot("evening is better", afternoon_slots, NY)
        assert match.slot.id == "slot-b"
        assert match.reason == SlotMatchReason.ORDINAL


class TestNoMatch:
    def test_two_slots_in_bucket_is_ambiguous(self, afternoon_slots):
        assert match_slot("afternoon please", afternoon_slots, NY) is None

    def test_conflicting_ordinals_are_ambiguous(self, slots):
        assert match_slot("first or second, either", slots, NY) is None

    def test_nothing_recognised(self, slots):
        assert match_slot("not sure yet", slots, NY) is None

    def test_empty_inputs(self, slots):
        assert match_slot("", slots, NY) is None
        assert match_slot("the first", [], NY) is None

    def test_ordinal_beyond_list_is_ignored(self, slots):
        assert match_slot("the fourth one", slots, NY) is None


class TestCustomTokens:
    def test_table_drives_ordinals(self, slots):
        spanish_ordinals = replace(
            ENGLISH_TOKENS,
            ordinal_phrases=(
                (("primero", "primera"), 0),
                (("segundo", "segunda"), 1),
                (("último", "última"), -1),
            ),
        )

        match = match_slot("la segunda", slots, NY, tokens=spanish_ordinals)

        assert match.slot.id == "slot-2"
        assert match_slot("the second", slots, NY, tokens=spanish_ordinals) is None


class TestContainsToken:
    def test_boundaries(self):
        assert contains_token("at 8am please", "8am")
        assert not contains_token("at 18am", "8am")
        assert not contains_token("at 8:00", "8")
