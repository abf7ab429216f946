"""Unit tests for agent/utils/message_templates.py and agent/utils/time_format.py."""

from datetime import UTC, datetime, timedelta
from decimal import Decimal
from types import SimpleNamespace

from agent.utils.message_templates import (
    booking_confirmation_email,
    booking_confirmation_text,
    format_currency,
    reminder_email,
    reminder_text,
)
from agent.utils.time_format import format_clock, format_day, format_slot_label

NY = "America/New_York"
START = datetime(2025, 11, 10, 13, 0, tzinfo=UTC)
END = START + timedelta(minutes=90)


class TestTimeFormat:
    def test_clock(self):
        assert format_clock(START, NY) == "8:00 AM"
        assert format_clock(datetime(2025, 11, 10, 17, 0, tzinfo=UTC), NY) == "12:00 PM"

    def test_day(self):
        assert format_day(START, NY) == "Mon Nov 10"

    def test_label(self):
        assert format_slot_label(START, END, NY) == "Mon Nov 10 8:00 AM–9:30 AM"


class TestFormatCurrency:
    def test_whole_dollars(self):
        assert format_currency(Decimal("1249.6")) == "$1,250"

    def test_cents(self):
        assert format_currency(275, cents=True) == "$275.00"


class TestBookingConfirmationText:
    def test_with_estimate(self):
        text = booking_confirmation_text(START, END, NY, "12 Main St", "Junk Pickup Co.", high_estimate=Decimal("250"))
        assert text == (
            "Locked in for Mon Nov 10 8:00 AM–9:30 AM at 12 Main St. "
            "Estimate $250 based on what we discussed. "
            "Final price confirmed onsite after we see weight/access. "
            "We'll text 20 min before arrival. "
            "Thanks for choosing Junk Pickup Co.!"
        )

    def test_range_and_missing_address(self):
        text = booking_confirmation_text(START, END, NY, "  ", "Junk Pickup Co.", 200, 300)
        assert "at the address we have on file." in text
        assert "Estimate $200–$300" in text


class TestBookingConfirmationEmail:
    def test_lists_quote_details(self):
        quote = SimpleNamespace(
            subtotal=Decimal("300"),
            total=Decimal("270"),
            line_items_json=[{"label": "Half load", "amount": 300}],
            discounts_json=[{"label": "Senior discount", "amount": -30}],
            notes_json=["Mattress included"],
            disclaimer="Prices may change for hazardous items.",
        )

        subject, body = booking_confirmation_email(
            "Dana", "Junk Pickup Co.", "12 Main St", START, END, NY, quote,
            support_phone="+15555550199", calendar_url="https://x/calendar/j.ics",
        )

        assert subject == "Your Junk Pickup Co. pickup is confirmed: Mon Nov 10 8:00 AM–9:30 AM"
        assert body.startswith("Hi Dana,")
        assert "- Half load: $300.00" in body
        assert "- Senior discount: $-30.00" in body
        assert "- Mattress included" in body
        assert "Add it to your calendar: https://x/calendar/j.ics" in body
        assert body.endswith("Questions? Call or text +15555550199.")

    def test_empty_quote_sections(self):
        quote = SimpleNamespace(
            subtotal=0, total=0, line_items_json=None, discounts_json=[], notes_json=None, disclaimer=None
        )
        _, body = booking_confirmation_email(None, "Co", None, START, END, NY, quote)
        assert body.startswith("Hi there,")
        assert "Discounts: none" in body


class TestReminders:
    def test_reminder_text(self):
        assert reminder_text(START, END, NY) == (
            "Hi there! Reminder that we are scheduled for pickup between 8:00 AM and 9:30 AM tomorrow. "
            "Reply if anything changes."
        )

    def test_reminder_email(self):
        subject, body = reminder_email("Dana", "Junk Pickup Co.", "12 Main St", START, END, NY)
        assert subject == "Reminder: Junk Pickup Co. pickup Mon Nov 10 8:00 AM–9:30 AM"
        assert "Service address: 12 Main St" in body
        assert "reschedule" not in body
