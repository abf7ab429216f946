"""
Google Calendar Sync Worker - pull calendar edits back into Jobs.

The calendar is the source of truth for a booked window once synced: when a
dispatcher drags or deletes a pickup event, the matching Job follows.

Architecture:
    - Runs every CALENDAR_SYNC_INTERVAL_SECONDS (default 5 minutes)
    - Uses sync tokens for incremental sync (only changes since last pass);
      with no stored token, scans events from CALENDAR_SYNC_LOOKBACK_DAYS ago
    - Pages through the whole changeset before persisting the new token, so
      a crash mid-pass replays pages instead of skipping them
    - An expired token (HTTP 410) clears the stored cursor and triggers
      exactly one fresh look-back pass

Event Classification:
    - Events carrying extendedProperties.private.jobId, or whose id matches
      a Job's google_event_id, belong to that Job
    - Cancelled events cancel the Job; active events update its window
    - Anything else is external and ignored
"""

import logging
from datetime import UTC, date, datetime, time, timedelta
from typing import Any
from uuid import UUID, uuid4
from zoneinfo import ZoneInfo

from sqlalchemy import select

from agent.services.audit_service import add_audit
from agent.workers.health import update_health_check
from agent.workers.poller import IntervalPoller
from database.connection import get_async_session
from database.models import CalendarSyncState, Job, JobStatus
from shared.config import Settings, calendar_feature_enabled, get_settings
from shared.exceptions import SyncTokenExpiredError
from shared.google_calendar_client import CalendarAvailabilityClient, parse_rfc3339

logger = logging.getLogger(__name__)

UPDATED = "updated"
CANCELLED = "cancelled"
SKIPPED = "skipped"
UNMATCHED = "unmatched"


async def get_or_create_sync_state(session, calendar_id: str) -> CalendarSyncState:
    """Get or create sync state for a calendar."""
    result = await session.execute(
        select(CalendarSyncState).where(CalendarSyncState.calendar_id == calendar_id)
    )
    sync_state = result.scalar_one_or_none()

    if not sync_state:
        sync_state = CalendarSyncState(
            id=uuid4(),
            calendar_id=calendar_id,
            sync_token=None,
            last_sync_at=None,
            events_synced=0,
        )
        session.add(sync_state)
        await session.flush()

    return sync_state


def parse_event_time(value: dict[str, Any] | None, time_zone: str) -> datetime | None:
    """Parse an event start/end dict (``dateTime`` or all-day ``date``)."""
    if not value:
        return None

    if value.get("dateTime"):
        try:
            return parse_rfc3339(value["dateTime"])
        except ValueError:
            return None
    if value.get("date"):
        try:
            day = date.fromisoformat(value["date"])
        except ValueError:
            return None
        return datetime.combine(day, time(0, 0), tzinfo=ZoneInfo(value.get("timeZone") or time_zone))

    return None


def _job_id_from_event(event: dict[str, Any]) -> UUID | None:
    private = (event.get("extendedProperties") or {}).get("private") or {}
    raw = private.get("jobId")
    if not raw:
        return None
    try:
        return UUID(str(raw))
    except ValueError:
        return None


class CalendarSyncReconciler(IntervalPoller):
    name = "calendar_sync_worker"

    def __init__(
        self,
        calendar_client: CalendarAvailabilityClient | None = None,
        settings: Settings | None = None,
        interval_seconds: float | None = None,
    ):
        self.settings = settings or get_settings()
        super().__init__(interval_seconds or self.settings.CALENDAR_SYNC_INTERVAL_SECONDS)
        self.calendar_enabled = calendar_feature_enabled(self.settings)
        self.calendar_id = self.settings.GOOGLE_CALENDAR_ID
        self.time_zone = self.settings.GOOGLE_CALENDAR_TIMEZONE
        self._calendar_client = calendar_client

    @property
    def calendar_client(self) -> CalendarAvailabilityClient:
        if self._calendar_client is None:
            self._calendar_client = CalendarAvailabilityClient(self.calendar_id, self.time_zone)
        return self._calendar_client

    # ------------------------------------------------------------------
    # Pass orchestration
    # ------------------------------------------------------------------

    async def run_once(self, now: datetime | None = None) -> dict[str, Any]:
        """One reconciliation pass (plus at most one full resync). Returns counters."""
        now = now or datetime.now(UTC)
        stats: dict[str, Any] = {
            "events": 0,
            UPDATED: 0,
            CANCELLED: 0,
            SKIPPED: 0,
            UNMATCHED: 0,
            "errors": 0,
            "resynced": False,
        }

        if not self.calendar_enabled:
            logger.debug("Calendar sync disabled, skipping")
            update_health_check(self.name, now, "disabled", stats)
            return stats

        started = datetime.now(UTC)
        try:
            await self.reconcile(now, stats)
        except SyncTokenExpiredError:
            logger.warning(
                f"Sync token expired for {self.calendar_id}, running full resync",
                extra={"calendar_id": self.calendar_id},
            )
            stats["resynced"] = True
            try:
                await self._store_cursor(None, now, events_synced=0, completed=False)
                await self.reconcile(now, stats, full_resync=True)
            except Exception as e:
                await self._record_failure(e, stats)
        except Exception as e:
            await self._record_failure(e, stats)

        duration = (datetime.now(UTC) - started).total_seconds()
        logger.info(
            f"Completed calendar sync in {duration:.2f}s: "
            f"events={stats['events']}, updated={stats[UPDATED]}, "
            f"cancelled={stats[CANCELLED]}, unmatched={stats[UNMATCHED]}, "
            f"errors={stats['errors']}",
            extra={"calendar_id": self.calendar_id},
        )
        update_health_check(
            self.name,
            now,
            "healthy" if stats["errors"] == 0 else "unhealthy",
            stats,
        )
        return stats

    async def reconcile(
        self,
        now: datetime,
        stats: dict[str, Any],
        full_resync: bool = False,
    ) -> None:
        """
        Apply every page of the changeset, then persist the new cursor.

        Raises:
            SyncTokenExpiredError: The stored cursor was rejected
            CalendarProviderError: Any other provider failure (pass aborted)
        """
        sync_token = None
        if not full_resync:
            async with get_async_session() as session:
                sync_state = await get_or_create_sync_state(session, self.calendar_id)
                sync_token = sync_state.sync_token
                await session.commit()

        time_min = None
        if not sync_token:
            time_min = now - timedelta(days=self.settings.CALENDAR_SYNC_LOOKBACK_DAYS)

        page_token = None
        applied = 0
        while True:
            page = await self.calendar_client.list_events_page(
                sync_token=sync_token,
                page_token=page_token,
                time_min=time_min,
            )
            for event in page.items:
                action = await self.apply_event(event)
                stats[action] += 1
                stats["events"] += 1
                applied += 1

            if not page.next_page_token:
                next_sync_token = page.next_sync_token
                break
            page_token = page.next_page_token

        await self._store_cursor(next_sync_token or sync_token, now, events_synced=applied)

    async def _store_cursor(
        self,
        sync_token: str | None,
        now: datetime,
        events_synced: int,
        completed: bool = True,
    ) -> None:
        """Persist the cursor; a completed pass also stamps last_sync_at and clears last_error."""
        async with get_async_session() as session:
            sync_state = await get_or_create_sync_state(session, self.calendar_id)
            sync_state.sync_token = sync_token
            if completed:
                sync_state.last_sync_at = now
                sync_state.last_error = None
            sync_state.events_synced += events_synced
            await session.commit()

    async def _record_failure(self, error: Exception, stats: dict[str, Any]) -> None:
        logger.error(
            f"Calendar sync pass failed: {error}",
            extra={"calendar_id": self.calendar_id},
            exc_info=True,
        )
        stats["errors"] += 1
        try:
            async with get_async_session() as session:
                sync_state = await get_or_create_sync_state(session, self.calendar_id)
                sync_state.last_error = str(error)
                await session.commit()
        except Exception as e:
            logger.error(f"Failed to record sync error: {e}")

    # ------------------------------------------------------------------
    # Event application (idempotent)
    # ------------------------------------------------------------------

    async def _find_job(self, session, event: dict[str, Any]) -> Job | None:
        job_id = _job_id_from_event(event)
        if job_id is not None:
            job = await session.get(Job, job_id)
            if job is not None:
                return job

        event_id = event.get("id")
        if not event_id:
            return None
        result = await session.execute(select(Job).where(Job.google_event_id == event_id))
        return result.scalar_one_or_none()

    async def apply_event(self, event: dict[str, Any]) -> str:
        """
        Apply one calendar event to its Job.

        Returns:
            "updated", "cancelled", "skipped" (no change or unusable times)
            or "unmatched" (not one of our jobs)
        """
        event_id = event.get("id")

        async with get_async_session() as session:
            job = await self._find_job(session, event)
            if job is None:
                return UNMATCHED

            if event.get("status") == "cancelled":
                if job.status == JobStatus.CANCELLED:
                    return SKIPPED
                job.status = JobStatus.CANCELLED
                if event.get("etag"):
                    job.google_event_etag = event["etag"]
                add_audit(
                    session,
                    job.lead_id,
                    "calendar_event_cancelled",
                    {"job_id": str(job.id), "event_id": event_id},
                )
                await session.commit()
                logger.info(
                    f"Job {job.id} cancelled from calendar",
                    extra={"job_id": job.id, "event_id": event_id},
                )
                return CANCELLED

            start = parse_event_time(event.get("start"), self.time_zone)
            end = parse_event_time(event.get("end"), self.time_zone)
            if start is None:
                return SKIPPED
            if end is None:
                end = start + timedelta(minutes=self.settings.DEFAULT_JOB_DURATION_MINUTES)
            if end <= start:
                logger.warning(
                    f"Ignoring event {event_id} with non-positive window",
                    extra={"job_id": job.id, "event_id": event_id},
                )
                return SKIPPED

            linkage = {
                "google_calendar_id": self.calendar_id,
                "google_event_id": event_id,
                "google_event_ical_uid": event.get("iCalUID"),
                "google_event_etag": event.get("etag"),
                "google_event_html_link": event.get("htmlLink"),
            }
            linkage = {field: value for field, value in linkage.items() if value is not None}

            window_changed = job.window_start != start or job.window_end != end
            linkage_changed = any(getattr(job, field) != value for field, value in linkage.items())
            if not window_changed and not linkage_changed:
                return SKIPPED

            previous = (job.window_start, job.window_end)
            job.window_start = start
            job.window_end = end
            for field, value in linkage.items():
                setattr(job, field, value)
            if window_changed and job.reminder_sent_at is None:
                job.reminder_scheduled_at = start - timedelta(hours=self.settings.REMINDER_HOURS_BEFORE)

            add_audit(
                session,
                job.lead_id,
                "calendar_event_synced",
                {
                    "job_id": str(job.id),
                    "event_id": event_id,
                    "window_start": start.isoformat(),
                    "window_end": end.isoformat(),
                    "previous_window_start": previous[0].isoformat(),
                    "previous_window_end": previous[1].isoformat(),
                },
            )
            await session.commit()

        if window_changed:
            logger.info(
                f"Job {job.id} window moved to {start.isoformat()} from calendar",
                extra={"job_id": job.id, "event_id": event_id},
            )
        return UPDATED
