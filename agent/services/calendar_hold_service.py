"""
Calendar holds for booked jobs.

A hold is two artifacts keyed by job id:
- an ICS file under CALENDAR_HOLD_DIR (served at BASE_URL/calendar/<job>.ics
  when BASE_URL is set), always attempted
- a Google Calendar event with a client-assigned id derived from the job id
  and ``extendedProperties.private.jobId`` set, written when the calendar
  feature is enabled

Each artifact fails independently. Both are idempotent: re-placing a hold
overwrites the file and patches the existing event.
"""

import asyncio
import logging
from dataclasses import dataclass
from datetime import UTC, datetime
from pathlib import Path

from database.models import Job, Lead
from shared.config import Settings, calendar_feature_enabled, get_settings
from shared.google_calendar_client import CalendarAvailabilityClient, CalendarEventInfo

logger = logging.getLogger(__name__)

ICS_PRODID = "-//PickupScheduling//EN"
ICS_UID_DOMAIN = "pickup-scheduling.local"


@dataclass
class CalendarHold:
    file_path: Path | None = None
    url: str | None = None
    event: CalendarEventInfo | None = None


def _ics_timestamp(dt: datetime) -> str:
    return dt.astimezone(UTC).strftime("%Y%m%dT%H%M%SZ")


def _ics_escape(value: str) -> str:
    return (
        value.replace("\\", "\\\\")
        .replace(";", "\\;")
        .replace(",", "\\,")
        .replace("\n", "\\n")
    )


def hold_summary(lead_name: str | None) -> str:
    return f"Junk pickup for {lead_name}" if lead_name else "Junk pickup"


def build_ics(
    job_id: str,
    summary: str,
    address: str | None,
    window_start: datetime,
    window_end: datetime,
    now: datetime | None = None,
) -> str:
    lines = [
        "BEGIN:VCALENDAR",
        "VERSION:2.0",
        f"PRODID:{ICS_PRODID}",
        "CALSCALE:GREGORIAN",
        "BEGIN:VEVENT",
        f"UID:{job_id}@{ICS_UID_DOMAIN}",
        f"DTSTAMP:{_ics_timestamp(now or datetime.now(UTC))}",
        f"DTSTART:{_ics_timestamp(window_start)}",
        f"DTEND:{_ics_timestamp(window_end)}",
        f"SUMMARY:{_ics_escape(summary)}",
        f"LOCATION:{_ics_escape(address or '')}",
        "END:VEVENT",
        "END:VCALENDAR",
        "",
    ]
    return "\r\n".join(lines)


class CalendarHoldService:
    def __init__(
        self,
        calendar_client: CalendarAvailabilityClient | None = None,
        settings: Settings | None = None,
    ):
        self.settings = settings or get_settings()
        self.calendar_enabled = calendar_feature_enabled(self.settings)
        self._calendar_client = calendar_client

    @property
    def calendar_client(self) -> CalendarAvailabilityClient:
        if self._calendar_client is None:
            self._calendar_client = CalendarAvailabilityClient()
        return self._calendar_client

    def _write_ics_file(self, job: Job, lead: Lead) -> tuple[Path, str | None]:
        hold_dir = Path(self.settings.CALENDAR_HOLD_DIR)
        hold_dir.mkdir(parents=True, exist_ok=True)

        file_name = f"{job.id}.ics"
        file_path = hold_dir / file_name
        file_path.write_text(
            build_ics(
                str(job.id),
                hold_summary(lead.name),
                lead.address,
                job.window_start,
                job.window_end,
            ),
            encoding="utf-8",
        )

        url = None
        if self.settings.BASE_URL:
            url = f"{self.settings.BASE_URL.rstrip('/')}/calendar/{file_name}"
        return file_path, url

    async def write_ics(self, job: Job, lead: Lead) -> tuple[Path, str | None]:
        """Write the ICS file off the event loop. Returns (path, public url)."""
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, self._write_ics_file, job, lead)

    async def place_hold(self, job: Job, lead: Lead) -> CalendarHold:
        """
        Write the ICS file and, when enabled, upsert the calendar event.

        A failed file write is logged and leaves ``file_path``/``url`` unset;
        the calendar event is still upserted.

        Raises:
            CalendarProviderError: If the event upsert fails
        """
        hold = CalendarHold()
        try:
            hold.file_path, hold.url = await self.write_ics(job, lead)
        except OSError as e:
            logger.error(
                f"Could not write ICS file for job {job.id}: {e}",
                extra={"job_id": job.id, "lead_id": lead.id},
            )
        url = hold.url

        if self.calendar_enabled:
            description_lines = [f"Job {job.id}"]
            if lead.phone:
                description_lines.append(f"Phone: {lead.phone}")
            if url:
                description_lines.append(url)

            hold.event = await self.calendar_client.upsert_event(
                event_id=str(job.id),
                summary=hold_summary(lead.name),
                start=job.window_start,
                end=job.window_end,
                description="\n".join(description_lines),
                location=lead.address,
                private_properties={"jobId": str(job.id), "leadId": str(lead.id)},
            )

        logger.info(
            f"Calendar hold placed: file={hold.file_path}, event={hold.event.event_id if hold.event else None}",
            extra={"job_id": job.id, "lead_id": lead.id},
        )
        return hold
