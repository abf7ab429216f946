"""
Unit tests for agent/utils/date_parser.py - English preferred-time resolution.

All cases are anchored at Sunday 2025-11-09 12:00 America/New_York (17:00 UTC).
"""

from datetime import UTC, datetime
from zoneinfo import ZoneInfo

import pytest

from agent.utils.date_parser import resolve_preferred_datetime

NY = "America/New_York"
NOW = datetime(2025, 11, 9, 12, 0, tzinfo=ZoneInfo(NY))


class TestResolvePreferredDatetime:
    """Phrases that resolve to a concrete instant."""

    def test_this_friday_at_3pm(self):
        result = resolve_preferred_datetime("this Friday at 3 pm", NY, NOW)
        assert result == datetime(2025, 11, 14, 20, 0, tzinfo=UTC)

    def test_result_is_utc(self):
        result = resolve_preferred_datetime("tomorrow morning", NY, NOW)
        assert result.tzinfo == UTC
        assert result == datetime(2025, 11, 10, 14, 0, tzinfo=UTC)

    def test_next_weekday_never_means_today(self):
        result = resolve_preferred_datetime("next sunday", NY, NOW)
        # Noon the following Sunday
        assert result == datetime(2025, 11, 16, 17, 0, tzinfo=UTC)

    def test_bare_weekday_today_means_now(self):
        result = resolve_preferred_datetime("sunday", NY, NOW)
        assert result == NOW.astimezone(UTC)

    def test_time_already_passed_rolls_to_tomorrow(self):
        result = resolve_preferred_datetime("at 10am", NY, NOW)
        assert result == datetime(2025, 11, 10, 15, 0, tzinfo=UTC)

    def test_month_day_with_clock_time(self):
        result = resolve_preferred_datetime("Nov 14 at 10:30", NY, NOW)
        assert result == datetime(2025, 11, 14, 15, 30, tzinfo=UTC)

    def test_numeric_date_with_bare_hour_means_afternoon(self):
        result = resolve_preferred_datetime("11/14 at 3", NY, NOW)
        assert result == datetime(2025, 11, 14, 20, 0, tzinfo=UTC)

    def test_date_without_time_uses_noon(self):
        result = resolve_preferred_datetime("Nov 20", NY, NOW)
        assert result == datetime(2025, 11, 20, 17, 0, tzinfo=UTC)


class TestAmbiguousWords:
    """Words that look like dates or meridiems but are not."""

    def test_may_followed_by_meridiem_is_a_time(self):
        result = resolve_preferred_datetime("may 10 am work?", NY, NOW)
        assert result == datetime(2025, 11, 10, 15, 0, tzinfo=UTC)

    def test_may_with_day_suffix_is_a_date(self):
        result = resolve_preferred_datetime("May 10th", NY, NOW)
        assert result == datetime(2026, 5, 10, 16, 0, tzinfo=UTC)

    def test_article_after_number_is_not_am(self):
        result = resolve_preferred_datetime("tomorrow, 3 a day", NY, NOW)
        assert result == datetime(2025, 11, 10, 17, 0, tzinfo=UTC)

    @pytest.mark.parametrize("phrase", ["tomorrow 3 a.m.", "tomorrow 3am", "tomorrow 3 a. please"])
    def test_meridiem_spellings(self, phrase):
        result = resolve_preferred_datetime(phrase, NY, NOW)
        assert result == datetime(2025, 11, 10, 8, 0, tzinfo=UTC)


class TestUnresolvable:
    """Blank, past and unparseable phrases return None."""

    @pytest.mark.parametrize("phrase", [None, "", "   "])
    def test_blank(self, phrase):
        assert resolve_preferred_datetime(phrase, NY, NOW) is None

    def test_past_date(self):
        assert resolve_preferred_datetime("2025-11-01", NY, NOW) is None

    def test_gibberish(self):
        assert resolve_preferred_datetime("whenever works for you guys", NY, NOW) is None
