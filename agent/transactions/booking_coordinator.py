"""
Booking Coordinator - confirm a proposed slot into a Job.

DB-first flow:
- Validate lead, window and quote
- Re-check free/busy for the exact window (calendar feature only); a busy
  window raises SlotConflictError before anything is written
- Upsert the Job keyed by quote id (one Job per quote) and commit
- Run side effects after the commit, each isolated: a failure is logged and
  audited but never rolls back the booking

There is no lock between the free/busy read and the Job write. Two
conversations confirming overlapping windows at the same instant can both
pass the recheck; the calendar hold makes the second one visible on the
next proposal or reconciliation pass.
"""

import logging
from datetime import UTC, datetime, timedelta
from uuid import UUID, uuid4

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError

from agent.services.audit_service import ACTOR_AGENT, add_audit, record_audit
from agent.services.calendar_hold_service import CalendarHold, CalendarHoldService
from agent.services.notification_service import NotificationDispatcher
from agent.state.working_state import ProposedSlot, load_working_state, store_working_state
from agent.utils.message_templates import booking_confirmation_email, booking_confirmation_text
from database.connection import get_async_session
from database.models import Job, JobStatus, Lead, LeadStage, Quote
from shared.config import Settings, calendar_feature_enabled, get_settings
from shared.exceptions import (
    CalendarProviderError,
    InvalidSlotError,
    LeadNotFoundError,
    QuoteNotFoundError,
    SlotConflictError,
)
from shared.google_calendar_client import CalendarAvailabilityClient

logger = logging.getLogger(__name__)


class BookingCoordinator:
    """
    Single entry point for turning a chosen slot into a booked Job.

    Collaborators are injected so the coordinator can be exercised without
    network access; defaults are built from settings.
    """

    def __init__(
        self,
        calendar_client: CalendarAvailabilityClient | None = None,
        notifier: NotificationDispatcher | None = None,
        hold_service: CalendarHoldService | None = None,
        settings: Settings | None = None,
    ):
        self.settings = settings or get_settings()
        self.time_zone = self.settings.GOOGLE_CALENDAR_TIMEZONE
        self.calendar_enabled = calendar_feature_enabled(self.settings)
        self._calendar_client = calendar_client
        self._notifier = notifier
        self._hold_service = hold_service

    @property
    def calendar_client(self) -> CalendarAvailabilityClient:
        if self._calendar_client is None:
            self._calendar_client = CalendarAvailabilityClient()
        return self._calendar_client

    @property
    def notifier(self) -> NotificationDispatcher:
        if self._notifier is None:
            self._notifier = NotificationDispatcher()
        return self._notifier

    @property
    def hold_service(self) -> CalendarHoldService:
        if self._hold_service is None:
            self._hold_service = CalendarHoldService(self._calendar_client, self.settings)
        return self._hold_service

    # ------------------------------------------------------------------
    # Primary write
    # ------------------------------------------------------------------

    async def confirm_slot(
        self,
        lead_id: UUID,
        slot: ProposedSlot,
        quote_id: UUID | None = None,
    ) -> Job:
        """
        Book ``slot`` for the lead.

        Returns:
            The booked Job (detached from its session)

        Raises:
            LeadNotFoundError: Lead does not exist
            InvalidSlotError: Window end is not after its start
            QuoteNotFoundError: No matching quote for the lead
            SlotConflictError: The window is busy on the calendar; nothing written
            CalendarProviderError: Free/busy could not be checked; nothing written
        """
        trace_id = f"{lead_id}_{slot.window_start.isoformat()}"
        logger.info(
            f"[{trace_id}] Confirming slot {slot.id}",
            extra={"lead_id": lead_id, "quote_id": quote_id},
        )

        if slot.window_end <= slot.window_start:
            raise InvalidSlotError(f"Slot {slot.id} has a non-positive window")

        async with get_async_session() as session:
            lead = await session.get(Lead, lead_id)
            if lead is None:
                raise LeadNotFoundError(lead_id)

            quote = await self._resolve_quote(session, lead.id, quote_id)
            existing = await self._find_job(session, quote.id)

            if self.calendar_enabled and not self._holds_window(existing, slot):
                await self._ensure_window_free(trace_id, slot)

            job = await self._upsert_job(session, lead.id, quote.id, slot, existing)
            await session.commit()

        logger.info(
            f"[{trace_id}] Job {job.id} booked for quote {quote.id}",
            extra={"lead_id": lead_id, "job_id": job.id, "quote_id": quote.id},
        )

        await self._after_booking(trace_id, job, lead, quote, slot)
        return job

    async def _resolve_quote(self, session, lead_id: UUID, quote_id: UUID | None) -> Quote:
        if quote_id is not None:
            result = await session.execute(
                select(Quote).where(Quote.id == quote_id, Quote.lead_id == lead_id)
            )
        else:
            result = await session.execute(
                select(Quote)
                .where(Quote.lead_id == lead_id)
                .order_by(Quote.created_at.desc())
                .limit(1)
            )
        quote = result.scalar_one_or_none()
        if quote is None:
            raise QuoteNotFoundError(lead_id, quote_id)
        return quote

    @staticmethod
    async def _find_job(session, quote_id: UUID) -> Job | None:
        result = await session.execute(select(Job).where(Job.quote_id == quote_id))
        return result.scalar_one_or_none()

    @staticmethod
    def _holds_window(job: Job | None, slot: ProposedSlot) -> bool:
        """The quote's Job already occupies this exact window (its own hold is the busy time)."""
        return (
            job is not None
            and job.status != JobStatus.CANCELLED
            and job.window_start == slot.window_start
            and job.window_end == slot.window_end
        )

    async def _ensure_window_free(self, trace_id: str, slot: ProposedSlot) -> None:
        try:
            free = await self.calendar_client.is_window_free(slot.window_start, slot.window_end)
        except CalendarProviderError as e:
            logger.warning(f"[{trace_id}] Free/busy recheck failed: {e}")
            raise

        if not free:
            logger.warning(f"[{trace_id}] Slot {slot.id} is no longer free")
            raise SlotConflictError(
                f"Window {slot.window_start.isoformat()}-{slot.window_end.isoformat()} is busy"
            )

    async def _upsert_job(
        self,
        session,
        lead_id: UUID,
        quote_id: UUID,
        slot: ProposedSlot,
        existing: Job | None,
    ) -> Job:
        if existing is None:
            job = Job(
                id=uuid4(),
                lead_id=lead_id,
                quote_id=quote_id,
                window_start=slot.window_start,
                window_end=slot.window_end,
                status=JobStatus.BOOKED,
                reminder_scheduled_at=self._reminder_at(slot.window_start),
            )
            try:
                async with session.begin_nested():
                    session.add(job)
            except IntegrityError:
                # Another confirmation created the quote's Job first
                logger.info(f"Concurrent insert for quote {quote_id}, updating existing job")
                existing = await self._find_job(session, quote_id)
                if existing is None:
                    raise
            else:
                return job

        if (
            existing.window_start != slot.window_start
            or existing.window_end != slot.window_end
        ):
            existing.reminder_sent_at = None
        existing.window_start = slot.window_start
        existing.window_end = slot.window_end
        existing.status = JobStatus.BOOKED
        existing.reminder_scheduled_at = self._reminder_at(slot.window_start)
        return existing

    def _reminder_at(self, window_start: datetime) -> datetime:
        return window_start - timedelta(hours=self.settings.REMINDER_HOURS_BEFORE)

    # ------------------------------------------------------------------
    # Side effects (after commit, failure-isolated)
    # ------------------------------------------------------------------

    async def _after_booking(
        self, trace_id: str, job: Job, lead: Lead, quote: Quote, slot: ProposedSlot
    ) -> None:
        await self._mark_lead_booked(trace_id, job, lead.id, slot)
        hold = await self._place_calendar_hold(trace_id, job, lead)
        await self._send_confirmation_message(trace_id, job, lead, quote)
        await self._send_confirmation_email(trace_id, job, lead, quote, hold)

    async def _mark_lead_booked(
        self, trace_id: str, job: Job, lead_id: UUID, slot: ProposedSlot
    ) -> None:
        try:
            async with get_async_session() as session:
                lead = await session.get(Lead, lead_id)
                working_state = load_working_state(lead.state_metadata)
                working_state.booked_job_id = str(job.id)
                working_state.reminder_at = job.reminder_scheduled_at
                working_state.pending_confirmation = None
                lead.state_metadata = store_working_state(lead.state_metadata, working_state)
                lead.stage = LeadStage.BOOKED

                add_audit(
                    session,
                    lead_id,
                    "confirm_slot",
                    {"job_id": str(job.id), "slot_id": slot.id, "quote_id": str(job.quote_id)},
                    actor=ACTOR_AGENT,
                )
                await session.commit()
        except Exception as e:
            logger.error(
                f"[{trace_id}] Failed to advance lead to booked: {e}",
                extra={"lead_id": lead_id, "job_id": job.id},
                exc_info=True,
            )

    async def _place_calendar_hold(self, trace_id: str, job: Job, lead: Lead) -> CalendarHold | None:
        try:
            hold = await self.hold_service.place_hold(job, lead)
        except Exception as e:
            logger.error(
                f"[{trace_id}] Calendar hold failed: {e}",
                extra={"lead_id": lead.id, "job_id": job.id},
                exc_info=True,
            )
            await record_audit(
                lead.id, "calendar_hold_failed", {"job_id": str(job.id), "error": str(e)}
            )
            return None

        if hold.event is not None:
            linkage = {
                "google_calendar_id": hold.event.calendar_id,
                "google_event_id": hold.event.event_id,
                "google_event_ical_uid": hold.event.ical_uid,
                "google_event_etag": hold.event.etag,
                "google_event_html_link": hold.event.html_link,
            }
            try:
                async with get_async_session() as session:
                    await session.execute(update(Job).where(Job.id == job.id).values(**linkage))
                    await session.commit()
                for field, value in linkage.items():
                    setattr(job, field, value)
            except Exception as e:
                logger.error(
                    f"[{trace_id}] Failed to store calendar linkage: {e}",
                    extra={"job_id": job.id},
                    exc_info=True,
                )
        return hold

    async def _send_confirmation_message(
        self, trace_id: str, job: Job, lead: Lead, quote: Quote
    ) -> None:
        text = booking_confirmation_text(
            job.window_start,
            job.window_end,
            self.time_zone,
            lead.address,
            self.settings.COMPANY_NAME,
            high_estimate=quote.total,
        )
        try:
            await self.notifier.send_primary(lead, text)
        except Exception as e:
            logger.error(
                f"[{trace_id}] Booking confirmation message failed: {e}",
                extra={"lead_id": lead.id, "job_id": job.id},
                exc_info=True,
            )
            await record_audit(
                lead.id, "booking_message_failed", {"job_id": str(job.id), "error": str(e)}
            )

    async def _send_confirmation_email(
        self,
        trace_id: str,
        job: Job,
        lead: Lead,
        quote: Quote,
        hold: CalendarHold | None,
    ) -> None:
        if not lead.email:
            return

        subject, body = booking_confirmation_email(
            lead.name,
            self.settings.COMPANY_NAME,
            lead.address,
            job.window_start,
            job.window_end,
            self.time_zone,
            quote,
            support_phone=self.settings.SUPPORT_PHONE or lead.phone,
            calendar_url=hold.url if hold else None,
        )
        payload = {"job_id": str(job.id), "quote_id": str(quote.id)}
        try:
            sent = await self.notifier.send_email(lead, subject, body)
        except Exception as e:
            logger.error(
                f"[{trace_id}] Booking confirmation e-mail failed: {e}",
                extra={"lead_id": lead.id, "job_id": job.id},
                exc_info=True,
            )
            await record_audit(lead.id, "booking_email_failed", {**payload, "error": str(e)})
            return

        if sent:
            await record_audit(
                lead.id, "booking_email_sent", {**payload, "sent_at": datetime.now(UTC).isoformat()}
            )
