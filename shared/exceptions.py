"""
Error taxonomy for the scheduling core.

Every error carries a ``user_message`` that the conversational layer can relay
to the customer verbatim, so callers never need to inspect stack traces to
decide how to re-prompt.
"""


class SchedulingError(Exception):
    """Base class for all scheduling core errors."""

    default_user_message = "Something went wrong on our side. Please try again in a moment."

    def __init__(self, message: str, user_message: str | None = None):
        super().__init__(message)
        self.user_message = user_message or self.default_user_message


# ============================================================================
# Not found
# ============================================================================


class NotFoundError(SchedulingError):
    default_user_message = "I couldn't find that booking information."


class LeadNotFoundError(NotFoundError):
    def __init__(self, lead_id):
        super().__init__(f"Lead {lead_id} not found")
        self.lead_id = lead_id


class QuoteNotFoundError(NotFoundError):
    default_user_message = "Let's put together a quote before we pick a pickup window."

    def __init__(self, lead_id, quote_id=None):
        detail = f"quote {quote_id}" if quote_id else "any quote"
        super().__init__(f"Lead {lead_id} has no {detail}")
        self.lead_id = lead_id
        self.quote_id = quote_id


class JobNotFoundError(NotFoundError):
    def __init__(self, job_id):
        super().__init__(f"Job {job_id} not found")
        self.job_id = job_id


# ============================================================================
# Booking
# ============================================================================


class SlotConflictError(SchedulingError):
    """The requested window is no longer free on the calendar."""

    default_user_message = (
        "That window was just booked. Please pick the other window or another day."
    )


class InvalidSlotError(SchedulingError):
    default_user_message = "That time window doesn't look right. Could you pick one of the options?"


# ============================================================================
# External providers
# ============================================================================


class CalendarProviderError(SchedulingError):
    """The calendar provider failed or could not be reached."""

    default_user_message = (
        "I couldn't reach our calendar just now. Could you confirm that window again in a minute?"
    )

    def __init__(self, message: str, status_code: int | None = None, user_message: str | None = None):
        super().__init__(message, user_message)
        self.status_code = status_code


class SyncTokenExpiredError(CalendarProviderError):
    """The stored incremental sync cursor was rejected (HTTP 410)."""

    def __init__(self, calendar_id: str):
        super().__init__(f"Sync token expired for calendar {calendar_id}", status_code=410)
        self.calendar_id = calendar_id


class NotificationDeliveryError(SchedulingError):
    """A channel (Messenger, SMS, e-mail) refused or failed a send."""

    def __init__(self, channel: str, message: str):
        super().__init__(f"{channel} delivery failed: {message}")
        self.channel = channel
