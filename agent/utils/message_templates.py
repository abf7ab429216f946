"""Customer-facing message texts for booking confirmations and reminders."""

from datetime import datetime
from decimal import Decimal
from typing import Any

from agent.utils.time_format import format_clock, format_slot_label

ADDRESS_FALLBACK = "the address we have on file"


def format_currency(value: Decimal | float | int, cents: bool = False) -> str:
    amount = float(value)
    if cents:
        return f"${amount:,.2f}"
    return f"${round(amount):,}"


def _estimate_phrase(low: Decimal | float | None, high: Decimal | float | None) -> str:
    if low is not None and high is not None and low != high:
        return f"{format_currency(low)}–{format_currency(high)}"
    if high is not None:
        return format_currency(high)
    return "the range we discussed"


def booking_confirmation_text(
    window_start: datetime,
    window_end: datetime,
    time_zone: str,
    address: str | None,
    company_name: str,
    low_estimate: Decimal | float | None = None,
    high_estimate: Decimal | float | None = None,
) -> str:
    label = format_slot_label(window_start, window_end, time_zone)
    safe_address = (address or "").strip() or ADDRESS_FALLBACK
    estimate = _estimate_phrase(low_estimate, high_estimate)
    return (
        f"Locked in for {label} at {safe_address}. "
        f"Estimate {estimate} based on what we discussed. "
        "Final price confirmed onsite after we see weight/access. "
        "We'll text 20 min before arrival. "
        f"Thanks for choosing {company_name}!"
    )


def _money_lines(title: str, items: list[dict[str, Any]] | None) -> list[str]:
    if not items:
        return [f"{title}: none"]
    lines = [f"{title}:"]
    for item in items:
        label = item.get("label") or item.get("name") or "Item"
        amount = item.get("amount", item.get("price", 0)) or 0
        lines.append(f"- {label}: {format_currency(amount, cents=True)}")
    return lines


def booking_confirmation_email(
    lead_name: str | None,
    company_name: str,
    address: str | None,
    window_start: datetime,
    window_end: datetime,
    time_zone: str,
    quote: Any,
    support_phone: str | None = None,
    calendar_url: str | None = None,
) -> tuple[str, str]:
    """Subject and plain-text body for the booking confirmation e-mail."""
    label = format_slot_label(window_start, window_end, time_zone)
    greeting = f"Hi {lead_name}," if lead_name else "Hi there,"

    lines = [
        greeting,
        "",
        f"Your junk pickup with {company_name} is booked for {label}.",
        f"Service address: {(address or '').strip() or ADDRESS_FALLBACK}",
        "",
        f"Subtotal: {format_currency(quote.subtotal, cents=True)}",
        f"Total: {format_currency(quote.total, cents=True)}",
        *_money_lines("Line items", quote.line_items_json),
        *_money_lines("Discounts", quote.discounts_json),
    ]
    if quote.notes_json:
        lines += ["Additional notes:", *[f"- {note}" for note in quote.notes_json]]
    if quote.disclaimer:
        lines += ["", quote.disclaimer]
    if calendar_url:
        lines += ["", f"Add it to your calendar: {calendar_url}"]
    lines += ["", "We'll text about 20 minutes before we arrive."]
    if support_phone:
        lines.append(f"Questions? Call or text {support_phone}.")

    return f"Your {company_name} pickup is confirmed: {label}", "\n".join(lines)


def reminder_text(window_start: datetime, window_end: datetime, time_zone: str) -> str:
    return (
        "Hi there! Reminder that we are scheduled for pickup between "
        f"{format_clock(window_start, time_zone)} and {format_clock(window_end, time_zone)} tomorrow. "
        "Reply if anything changes."
    )


def reminder_email(
    lead_name: str | None,
    company_name: str,
    address: str | None,
    window_start: datetime,
    window_end: datetime,
    time_zone: str,
    support_phone: str | None = None,
) -> tuple[str, str]:
    label = format_slot_label(window_start, window_end, time_zone)
    greeting = f"Hi {lead_name}," if lead_name else "Hi there,"
    lines = [
        greeting,
        "",
        f"A quick reminder that {company_name} is scheduled for your pickup {label}.",
        f"Service address: {(address or '').strip() or ADDRESS_FALLBACK}",
        "",
        "Please make sure the items are accessible when we arrive.",
    ]
    if support_phone:
        lines.append(f"Need to reschedule? Call or text {support_phone}.")
    return f"Reminder: {company_name} pickup {label}", "\n".join(lines)
