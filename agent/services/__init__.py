"""
Agent services module.

Provides the scheduling services used by the conversation layer.

Services:
- slot_generator: Propose diverse, conflict-free pickup windows
- slot_matcher: Map a customer's free-text reply onto a proposed window
- calendar_hold_service: ICS files and Google Calendar events for booked jobs
- notification_service: Messenger / SMS / e-mail delivery
- audit_service: Append-only audit trail
"""

from agent.services.audit_service import ACTOR_AGENT, ACTOR_SYSTEM, add_audit, record_audit
from agent.services.calendar_hold_service import CalendarHold, CalendarHoldService, build_ics
from agent.services.notification_service import NotificationDispatcher
from agent.services.slot_generator import SlotGenerator, estimate_duration_minutes
from agent.services.slot_matcher import SlotMatch, SlotMatchReason, match_slot

__all__ = [
    # Slot proposal / matching
    "SlotGenerator",
    "estimate_duration_minutes",
    "SlotMatch",
    "SlotMatchReason",
    "match_slot",
    # Calendar holds
    "CalendarHold",
    "CalendarHoldService",
    "build_ics",
    # Notifications
    "NotificationDispatcher",
    # Audit
    "ACTOR_AGENT",
    "ACTOR_SYSTEM",
    "add_audit",
    "record_audit",
]
