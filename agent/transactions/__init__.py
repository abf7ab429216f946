"""
Booking transaction handlers.

The coordinator commits the Job first and runs calendar, chat and e-mail
side effects afterwards, each isolated from the others. Every step logs
with a trace_id.
"""

from agent.transactions.booking_coordinator import BookingCoordinator

__all__ = ["BookingCoordinator"]
