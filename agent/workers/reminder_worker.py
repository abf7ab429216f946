"""
Reminder Worker - day-before pickup reminders.

Every REMINDER_POLL_INTERVAL_SECONDS (default 60s) the scheduler selects booked
jobs whose ``reminder_scheduled_at`` has passed and whose ``reminder_sent_at``
is still NULL. For each one:
1. Send the chat reminder (skipped when the lead has no chat handle;
   a rejected send is audited as "reminder_message_failed")
2. Send the e-mail reminder if the lead has an address (audited either way)
3. Set ``reminder_sent_at`` with a conditional UPDATE, advance the lead to
   "reminding" and audit "reminder_sent"

Delivery is at most once per channel: a failed channel does not block the
other one and the job is marked either way, so a permanently rejected handle
is not retried every tick. ``reminder_sent_at`` is the only idempotency
guard; a crash between send and mark can repeat one reminder.
"""

import logging
from datetime import UTC, datetime
from typing import Any

from sqlalchemy import and_, select, update
from sqlalchemy.orm import selectinload

from agent.services.audit_service import add_audit, record_audit
from agent.services.notification_service import NotificationDispatcher
from agent.utils.message_templates import reminder_email, reminder_text
from agent.workers.health import update_health_check
from agent.workers.poller import IntervalPoller
from database.connection import get_async_session
from database.models import Job, JobStatus, Lead, LeadStage
from shared.config import Settings, get_settings
from shared.exceptions import NotificationDeliveryError

logger = logging.getLogger(__name__)

SENT = "sent"
ALREADY_SENT = "already_sent"


class ReminderScheduler(IntervalPoller):
    name = "reminder_worker"

    def __init__(
        self,
        notifier: NotificationDispatcher | None = None,
        settings: Settings | None = None,
        interval_seconds: float | None = None,
    ):
        self.settings = settings or get_settings()
        super().__init__(interval_seconds or self.settings.REMINDER_POLL_INTERVAL_SECONDS)
        self.time_zone = self.settings.GOOGLE_CALENDAR_TIMEZONE
        self._notifier = notifier

    @property
    def notifier(self) -> NotificationDispatcher:
        if self._notifier is None:
            self._notifier = NotificationDispatcher()
        return self._notifier

    async def find_due_jobs(self, now: datetime) -> list[Job]:
        async with get_async_session() as session:
            result = await session.execute(
                select(Job)
                .options(selectinload(Job.lead))
                .where(
                    and_(
                        Job.status == JobStatus.BOOKED,
                        Job.reminder_sent_at.is_(None),
                        Job.reminder_scheduled_at <= now,
                    )
                )
                .order_by(Job.reminder_scheduled_at)
            )
            return list(result.scalars().all())

    async def run_once(self, now: datetime | None = None) -> dict[str, Any]:
        """One polling tick. Returns counters for logging and the health file."""
        now = now or datetime.now(UTC)
        stats = {"due": 0, "sent": 0, "already_sent": 0, "errors": 0}

        try:
            jobs = await self.find_due_jobs(now)
        except Exception as e:
            logger.error(f"Failed to load due reminders: {e}", exc_info=True)
            stats["errors"] += 1
            update_health_check(self.name, now, "unhealthy", stats)
            return stats

        stats["due"] = len(jobs)
        if jobs:
            logger.info(f"Found {len(jobs)} jobs due for a reminder")

        for job in jobs:
            try:
                outcome = await self.send_reminder(job, now)
                stats[outcome] += 1
            except Exception as e:
                logger.error(
                    f"Reminder for job {job.id} failed, will retry next tick: {e}",
                    extra={"job_id": job.id, "lead_id": job.lead_id},
                    exc_info=True,
                )
                stats["errors"] += 1

        if stats["due"]:
            logger.info(
                f"Reminder tick complete: sent={stats['sent']}, "
                f"already_sent={stats['already_sent']}, errors={stats['errors']}"
            )

        update_health_check(
            self.name,
            now,
            "healthy" if stats["errors"] == 0 else "unhealthy",
            stats,
        )
        return stats

    async def send_reminder(self, job: Job, now: datetime) -> str:
        """
        Remind one job.

        Returns:
            "sent", or "already_sent" if another tick marked it first
        """
        lead: Lead = job.lead

        chat_sent = await self._send_reminder_message(job, lead)
        await self._send_reminder_email(job, lead)

        async with get_async_session() as session:
            result = await session.execute(
                update(Job)
                .where(and_(Job.id == job.id, Job.reminder_sent_at.is_(None)))
                .values(reminder_sent_at=now)
            )
            if result.rowcount == 0:
                await session.rollback()
                logger.info(f"Job {job.id} already reminded", extra={"job_id": job.id})
                return ALREADY_SENT

            fresh_lead = await session.get(Lead, job.lead_id)
            if fresh_lead is not None:
                fresh_lead.stage = LeadStage.REMINDING
            add_audit(
                session,
                job.lead_id,
                "reminder_sent",
                {
                    "job_id": str(job.id),
                    "chat_sent": chat_sent,
                    "window_start": job.window_start.isoformat(),
                },
            )
            await session.commit()

        job.reminder_sent_at = now
        logger.info(f"Reminder sent for job {job.id}", extra={"job_id": job.id, "lead_id": job.lead_id})
        return SENT

    async def _send_reminder_message(self, job: Job, lead: Lead) -> bool:
        text = reminder_text(job.window_start, job.window_end, self.time_zone)
        try:
            return await self.notifier.send_primary(lead, text)
        except NotificationDeliveryError as e:
            logger.error(
                f"Reminder message for job {job.id} failed: {e}",
                extra={"job_id": job.id, "lead_id": lead.id},
            )
            await record_audit(
                lead.id,
                "reminder_message_failed",
                {"job_id": str(job.id), "channel": e.channel, "error": str(e)},
            )
            return False

    async def _send_reminder_email(self, job: Job, lead: Lead) -> None:
        if not lead.email:
            return

        subject, body = reminder_email(
            lead.name,
            self.settings.COMPANY_NAME,
            lead.address,
            job.window_start,
            job.window_end,
            self.time_zone,
            support_phone=self.settings.SUPPORT_PHONE or None,
        )
        try:
            sent = await self.notifier.send_email(lead, subject, body)
        except Exception as e:
            logger.error(
                f"Reminder e-mail for job {job.id} failed: {e}",
                extra={"job_id": job.id, "lead_id": lead.id},
                exc_info=True,
            )
            await record_audit(
                lead.id, "reminder_email_failed", {"job_id": str(job.id), "error": str(e)}
            )
            return

        if sent:
            await record_audit(lead.id, "reminder_email_sent", {"job_id": str(job.id)})
