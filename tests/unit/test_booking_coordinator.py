"""
Unit tests for agent/transactions/booking_coordinator.py.

Coverage:
- Busy window raises SlotConflictError with nothing written
- Provider failure during the recheck aborts with nothing written
- One Job per quote: re-confirming updates the existing Job
- Quote resolution (explicit id, most recent, none)
- Side effects after commit are isolated and audited
"""

from datetime import UTC, datetime, timedelta
from decimal import Decimal
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock, patch
from uuid import uuid4

import pytest

from agent.services.calendar_hold_service import CalendarHold
from agent.state.working_state import WORKING_STATE_KEY, ProposedSlot
from agent.transactions.booking_coordinator import BookingCoordinator
from database.models import Audit, Job, JobStatus, LeadStage
from shared.exceptions import (
    CalendarProviderError,
    InvalidSlotError,
    LeadNotFoundError,
    NotificationDeliveryError,
    QuoteNotFoundError,
    SlotConflictError,
)
from shared.google_calendar_client import CalendarEventInfo

MODULE = "agent.transactions.booking_coordinator"

START = datetime(2025, 11, 12, 13, 0, tzinfo=UTC)
END = START + timedelta(minutes=90)


# ============================================================================
# Fixtures
# ============================================================================


@pytest.fixture
def lead():
    lead = MagicMock()
    lead.id = uuid4()
    lead.name = "Dana"
    lead.email = None
    lead.phone = "+15555550100"
    lead.address = "12 Main St"
    lead.state_metadata = {}
    lead.stage = LeadStage.SCHEDULING
    return lead


@pytest.fixture
def quote(lead):
    quote = MagicMock()
    quote.id = uuid4()
    quote.lead_id = lead.id
    quote.subtotal = Decimal("275.00")
    quote.total = Decimal("250.00")
    quote.line_items_json = [{"label": "Quarter load", "amount": 275}]
    quote.discounts_json = [{"label": "Online booking", "amount": -25}]
    quote.notes_json = []
    quote.disclaimer = None
    return quote


@pytest.fixture
def slot(lead):
    return ProposedSlot(
        id=f"{lead.id}-2025-11-12T13:00:00.000Z",
        label="Wed Nov 12 8:00 AM–9:30 AM",
        window_start=START,
        window_end=END,
    )


@pytest.fixture
def notifier():
    notifier = AsyncMock()
    notifier.send_primary = AsyncMock(return_value=True)
    notifier.send_email = AsyncMock(return_value=True)
    return notifier


@pytest.fixture
def hold_service():
    service = AsyncMock()
    service.place_hold = AsyncMock(return_value=CalendarHold(file_path=Path("/tmp/hold.ics")))
    return service


@pytest.fixture
def calendar():
    client = AsyncMock()
    client.is_window_free = AsyncMock(return_value=True)
    return client


def _result(value):
    result = MagicMock()
    result.scalar_one_or_none.return_value = value
    return result


def _prepare_session(session, lead, quote, existing_job=None):
    """get() returns the lead; execute() answers the quote then the job lookup."""
    session.get = AsyncMock(return_value=lead)
    session.execute = AsyncMock(side_effect=[_result(quote), _result(existing_job), MagicMock(), MagicMock()])
    nested = MagicMock()
    nested.__aenter__ = AsyncMock(return_value=None)
    nested.__aexit__ = AsyncMock(return_value=False)
    session.begin_nested = MagicMock(return_value=nested)


def _added(session, kind):
    return [call.args[0] for call in session.add.call_args_list if isinstance(call.args[0], kind)]


def _coordinator(settings, calendar, notifier, hold_service):
    return BookingCoordinator(
        calendar_client=calendar,
        notifier=notifier,
        hold_service=hold_service,
        settings=settings,
    )


# ============================================================================
# Primary write
# ============================================================================


class TestConfirmSlot:
    async def test_books_new_job(
        self, make_settings, mock_session, session_context, lead, quote, slot, calendar, notifier, hold_service
    ):
        _prepare_session(mock_session, lead, quote)
        coordinator = _coordinator(make_settings(), calendar, notifier, hold_service)

        with patch(f"{MODULE}.get_async_session", session_context(mock_session)), \
             patch(f"{MODULE}.record_audit", AsyncMock(return_value=True)):
            job = await coordinator.confirm_slot(lead.id, slot)

        assert isinstance(job, Job)
        assert job.quote_id == quote.id
        assert job.status == JobStatus.BOOKED
        assert job.window_start == START
        assert job.reminder_scheduled_at == START - timedelta(hours=24)
        assert _added(mock_session, Job) == [job]
        assert [a.action for a in _added(mock_session, Audit)] == ["confirm_slot"]
        assert lead.stage == LeadStage.BOOKED
        assert lead.state_metadata[WORKING_STATE_KEY]["booked_job_id"] == str(job.id)
        calendar.is_window_free.assert_not_awaited()
        notifier.send_primary.assert_awaited_once()

    async def test_busy_window_writes_nothing(
        self, calendar_settings, mock_session, session_context, lead, quote, slot, calendar, notifier, hold_service
    ):
        _prepare_session(mock_session, lead, quote)
        calendar.is_window_free = AsyncMock(return_value=False)
        coordinator = _coordinator(calendar_settings, calendar, notifier, hold_service)

        with patch(f"{MODULE}.get_async_session", session_context(mock_session)):
            with pytest.raises(SlotConflictError) as exc_info:
                await coordinator.confirm_slot(lead.id, slot, quote_id=quote.id)

        assert "just booked" in exc_info.value.user_message
        mock_session.add.assert_not_called()
        mock_session.commit.assert_not_awaited()
        hold_service.place_hold.assert_not_awaited()
        notifier.send_primary.assert_not_awaited()

    async def test_provider_failure_writes_nothing(
        self, calendar_settings, mock_session, session_context, lead, quote, slot, calendar, notifier, hold_service
    ):
        _prepare_session(mock_session, lead, quote)
        calendar.is_window_free = AsyncMock(side_effect=CalendarProviderError("circuit open"))
        coordinator = _coordinator(calendar_settings, calendar, notifier, hold_service)

        with patch(f"{MODULE}.get_async_session", session_context(mock_session)):
            with pytest.raises(CalendarProviderError):
                await coordinator.confirm_slot(lead.id, slot)

        mock_session.add.assert_not_called()
        mock_session.commit.assert_not_awaited()

    async def test_reconfirm_updates_existing_job(
        self, make_settings, mock_session, session_context, lead, quote, slot, calendar, notifier, hold_service
    ):
        existing = Job(
            id=uuid4(),
            lead_id=lead.id,
            quote_id=quote.id,
            window_start=START - timedelta(days=1),
            window_end=END - timedelta(days=1),
            status=JobStatus.BOOKED,
            reminder_sent_at=START - timedelta(days=2),
        )
        _prepare_session(mock_session, lead, quote, existing_job=existing)
        coordinator = _coordinator(make_settings(), calendar, notifier, hold_service)

        with patch(f"{MODULE}.get_async_session", session_context(mock_session)), \
             patch(f"{MODULE}.record_audit", AsyncMock(return_value=True)):
            job = await coordinator.confirm_slot(lead.id, slot)

        assert job is existing
        assert job.window_start == START
        assert job.window_end == END
        assert job.reminder_sent_at is None
        assert job.reminder_scheduled_at == START - timedelta(hours=24)
        assert _added(mock_session, Job) == []

    async def test_same_window_skips_recheck(
        self, calendar_settings, mock_session, session_context, lead, quote, slot, calendar, notifier, hold_service
    ):
        existing = Job(
            id=uuid4(),
            lead_id=lead.id,
            quote_id=quote.id,
            window_start=START,
            window_end=END,
            status=JobStatus.BOOKED,
        )
        _prepare_session(mock_session, lead, quote, existing_job=existing)
        calendar.is_window_free = AsyncMock(return_value=False)
        coordinator = _coordinator(calendar_settings, calendar, notifier, hold_service)

        with patch(f"{MODULE}.get_async_session", session_context(mock_session)), \
             patch(f"{MODULE}.record_audit", AsyncMock(return_value=True)):
            job = await coordinator.confirm_slot(lead.id, slot)

        assert job is existing
        calendar.is_window_free.assert_not_awaited()

    async def test_missing_lead(
        self, make_settings, mock_session, session_context, slot, calendar, notifier, hold_service
    ):
        mock_session.get = AsyncMock(return_value=None)
        coordinator = _coordinator(make_settings(), calendar, notifier, hold_service)

        with patch(f"{MODULE}.get_async_session", session_context(mock_session)):
            with pytest.raises(LeadNotFoundError):
                await coordinator.confirm_slot(uuid4(), slot)

    async def test_missing_quote(
        self, make_settings, mock_session, session_context, lead, slot, calendar, notifier, hold_service
    ):
        _prepare_session(mock_session, lead, None)
        coordinator = _coordinator(make_settings(), calendar, notifier, hold_service)

        with patch(f"{MODULE}.get_async_session", session_context(mock_session)):
            with pytest.raises(QuoteNotFoundError):
                await coordinator.confirm_slot(lead.id, slot, quote_id=uuid4())

        mock_session.add.assert_not_called()

    async def test_non_positive_window(self, make_settings, lead, calendar, notifier, hold_service):
        bad_slot = MagicMock(id="bad", window_start=START, window_end=START)
        coordinator = _coordinator(make_settings(), calendar, notifier, hold_service)

        with pytest.raises(InvalidSlotError):
            await coordinator.confirm_slot(lead.id, bad_slot)


# ============================================================================
# Side effects
# ============================================================================


class TestSideEffects:
    async def test_failures_never_undo_booking(
        self, make_settings, mock_session, session_context, lead, quote, slot, calendar, notifier, hold_service
    ):
        _prepare_session(mock_session, lead, quote)
        hold_service.place_hold = AsyncMock(side_effect=CalendarProviderError("insert failed"))
        notifier.send_primary = AsyncMock(side_effect=NotificationDeliveryError("sms", "HTTP 500"))
        record_audit = AsyncMock(return_value=True)
        coordinator = _coordinator(make_settings(), calendar, notifier, hold_service)

        with patch(f"{MODULE}.get_async_session", session_context(mock_session)), \
             patch(f"{MODULE}.record_audit", record_audit):
            job = await coordinator.confirm_slot(lead.id, slot)

        assert job.status == JobStatus.BOOKED
        actions = [call.args[1] for call in record_audit.await_args_list]
        assert actions == ["calendar_hold_failed", "booking_message_failed"]

    async def test_calendar_linkage_stored(
        self, calendar_settings, mock_session, session_context, lead, quote, slot, calendar, notifier, hold_service
    ):
        _prepare_session(mock_session, lead, quote)
        event = CalendarEventInfo(
            calendar_id="pickups@example.com",
            event_id="abc123",
            html_link="https://calendar.google.com/event?eid=abc",
            ical_uid="abc123@google.com",
            etag='"3181"',
        )
        hold_service.place_hold = AsyncMock(
            return_value=CalendarHold(file_path=Path("/tmp/hold.ics"), event=event)
        )
        coordinator = _coordinator(calendar_settings, calendar, notifier, hold_service)

        with patch(f"{MODULE}.get_async_session", session_context(mock_session)), \
             patch(f"{MODULE}.record_audit", AsyncMock(return_value=True)):
            job = await coordinator.confirm_slot(lead.id, slot)

        assert job.google_event_id == "abc123"
        assert job.google_event_etag == '"3181"'
        assert job.google_calendar_id == "pickups@example.com"

    async def test_email_sent_and_audited(
        self, make_settings, mock_session, session_context, lead, quote, slot, calendar, notifier, hold_service
    ):
        lead.email = "dana@example.com"
        _prepare_session(mock_session, lead, quote)
        record_audit = AsyncMock(return_value=True)
        coordinator = _coordinator(make_settings(), calendar, notifier, hold_service)

        with patch(f"{MODULE}.get_async_session", session_context(mock_session)), \
             patch(f"{MODULE}.record_audit", record_audit):
            await coordinator.confirm_slot(lead.id, slot)

        subject, body = notifier.send_email.await_args.args[1:]
        assert "confirmed" in subject
        assert "$250.00" in body
        assert [call.args[1] for call in record_audit.await_args_list] == ["booking_email_sent"]

    async def test_email_failure_audited(
        self, make_settings, mock_session, session_context, lead, quote, slot, calendar, notifier, hold_service
    ):
        lead.email = "dana@example.com"
        _prepare_session(mock_session, lead, quote)
        notifier.send_email = AsyncMock(side_effect=NotificationDeliveryError("email", "relay down"))
        record_audit = AsyncMock(return_value=True)
        coordinator = _coordinator(make_settings(), calendar, notifier, hold_service)

        with patch(f"{MODULE}.get_async_session", session_context(mock_session)), \
             patch(f"{MODULE}.record_audit", record_audit):
            job = await coordinator.confirm_slot(lead.id, slot)

        assert job.status == JobStatus.BOOKED
        assert [call.args[1] for call in record_audit.await_args_list] == ["booking_email_failed"]
