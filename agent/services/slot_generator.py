"""
Slot Generator - propose pickup windows for a lead.

Flow:
1. Resolve the customer's preferred moment (default: now)
2. Estimate job duration from the load signals captured during quoting
3. Build 15-minute-step candidates inside business hours for up to 7 days
4. Drop candidates that overlap busy calendar time (fail-open on provider errors)
5. Diversify across morning / midday / afternoon and keep the best few
6. Cache the slots in the lead's working state and audit the proposal
"""

import logging
import math
from collections.abc import Callable
from datetime import UTC, datetime, time, timedelta
from typing import Any
from uuid import UUID
from zoneinfo import ZoneInfo

from agent.services.audit_service import ACTOR_AGENT, add_audit
from agent.state.working_state import ProposedSlot, load_working_state, store_working_state
from agent.utils.date_parser import resolve_preferred_datetime
from agent.utils.time_format import format_slot_label
from database.connection import get_async_session
from database.models import Lead, LeadStage
from shared.config import Settings, calendar_feature_enabled, get_settings
from shared.exceptions import CalendarProviderError, LeadNotFoundError
from shared.google_calendar_client import BusyWindow, CalendarAvailabilityClient

logger = logging.getLogger(__name__)

MINUTES_PER_QUARTER_LOAD = 90
COMPLEXITY_SURCHARGE_MINUTES = 30
LONG_CARRY_FEET = 50

# Diversification buckets by local start hour: (name, end hour exclusive)
DAY_BUCKETS = (("morning", 11), ("midday", 14), ("afternoon", 24))

DateResolver = Callable[[str, str, datetime], datetime | None]


def estimate_duration_minutes(state_metadata: dict[str, Any] | None, default: int = 90) -> int:
    """
    Estimate on-site minutes from ``state_metadata["last_features"]``.

    One quarter truck load (4 cubic yards) takes about 90 minutes; heavy items,
    stairs or a carry over 50 ft add 30 minutes. Unreadable signals fall back
    to ``default``.
    """
    try:
        features = (state_metadata or {}).get("last_features") or {}
        yards = float(features.get("cubic_yards_est") or 0)
        quarters = max(1, math.ceil(yards / 4))
        minutes = quarters * MINUTES_PER_QUARTER_LOAD

        heavy_items = features.get("heavy_items")
        heavy = isinstance(heavy_items, list) and len(heavy_items) > 0
        stairs = float(features.get("stairs_flights") or 0) > 0
        long_carry = float(features.get("carry_distance_ft") or 0) > LONG_CARRY_FEET
        if heavy or stairs or long_carry:
            minutes += COMPLEXITY_SURCHARGE_MINUTES
        return minutes
    except (AttributeError, TypeError, ValueError):
        return default


def slot_id_for(lead_id: UUID, start: datetime) -> str:
    return f"{lead_id}-{start.astimezone(UTC).strftime('%Y-%m-%dT%H:%M:%S.000Z')}"


def _bucket_for(local_start: datetime) -> str:
    for name, end_hour in DAY_BUCKETS:
        if local_start.hour < end_hour:
            return name
    return DAY_BUCKETS[-1][0]


def _overlaps(start: datetime, end: datetime, busy: list[BusyWindow]) -> bool:
    return any(window.start < end and window.end > start for window in busy)


def _keeps_gap(start: datetime, end: datetime, accepted: list[tuple[datetime, datetime]], gap: timedelta) -> bool:
    return all(start >= a_end + gap or end + gap <= a_start for a_start, a_end in accepted)


class SlotGenerator:
    """
    Produces a small, varied set of bookable windows for a lead.

    Args:
        calendar_client: Availability client (built on demand when the
            calendar feature is enabled)
        date_resolver: (text, time_zone, now) -> instant or None
        settings: Override settings (mainly for tests)
    """

    def __init__(
        self,
        calendar_client: CalendarAvailabilityClient | None = None,
        date_resolver: DateResolver = resolve_preferred_datetime,
        settings: Settings | None = None,
    ):
        self.settings = settings or get_settings()
        self.time_zone = self.settings.GOOGLE_CALENDAR_TIMEZONE
        self.calendar_enabled = calendar_feature_enabled(self.settings)
        self._calendar_client = calendar_client
        self.date_resolver = date_resolver

    @property
    def calendar_client(self) -> CalendarAvailabilityClient:
        if self._calendar_client is None:
            self._calendar_client = CalendarAvailabilityClient()
        return self._calendar_client

    def resolve_preferred_moment(self, preferred_text: str | None, now: datetime) -> datetime:
        """
        Preferred start, never in the past.

        A past moment within a day collapses to now; older ones roll forward
        by whole weeks so the weekday is kept.
        """
        resolved = None
        if preferred_text and preferred_text.strip():
            resolved = self.date_resolver(preferred_text, self.time_zone, now)
        if resolved is None:
            return now
        if resolved >= now:
            return resolved
        if now - resolved <= timedelta(days=1):
            return now
        weeks = math.ceil((now - resolved) / timedelta(weeks=1))
        return resolved + timedelta(weeks=weeks)

    def build_candidates(
        self, preferred: datetime, duration_minutes: int, now: datetime
    ) -> list[tuple[datetime, datetime]]:
        """Step-aligned (start, end) windows inside business hours, earliest first."""
        tz = ZoneInfo(self.time_zone)
        first_day = preferred.astimezone(tz).date()
        duration = timedelta(minutes=duration_minutes)
        step = timedelta(minutes=self.settings.SLOT_STEP_MINUTES)
        open_hours = timedelta(
            hours=self.settings.BUSINESS_END_HOUR - self.settings.BUSINESS_START_HOUR
        )

        candidates = []
        for offset in range(self.settings.SLOT_SEARCH_DAYS):
            day = first_day + timedelta(days=offset)
            opening = datetime.combine(day, time(self.settings.BUSINESS_START_HOUR), tzinfo=tz)
            closing = opening + open_hours
            start = opening
            while start + duration <= closing:
                if start >= now:
                    candidates.append((start, start + duration))
                start += step
        return candidates

    async def _load_busy_windows(
        self, candidates: list[tuple[datetime, datetime]]
    ) -> tuple[list[BusyWindow], str | None]:
        """Busy windows over the candidate range, or ([], reason) when the provider fails."""
        if not self.calendar_enabled or not candidates:
            return [], None
        range_start = candidates[0][0]
        range_end = max(end for _, end in candidates)
        try:
            return await self.calendar_client.query_free_busy(range_start, range_end), None
        except CalendarProviderError as e:
            logger.warning(f"Free/busy unavailable, proposing unfiltered slots: {e}")
            return [], str(e)

    def diversify(
        self,
        candidates: list[tuple[datetime, datetime]],
        preferred: datetime,
    ) -> list[tuple[datetime, datetime]]:
        """
        Pick up to MAX_PROPOSED_SLOTS windows, spread across parts of the day.

        Days are taken in order. Within a day, candidates are bucketed into
        morning / midday / afternoon, each bucket ordered by closeness to the
        preferred time of day, and buckets are drawn round-robin starting with
        the one nearest the preference.
        """
        tz = ZoneInfo(self.time_zone)
        preferred_local = preferred.astimezone(tz)
        preferred_minute = preferred_local.hour * 60 + preferred_local.minute
        limit = self.settings.MAX_PROPOSED_SLOTS
        enforce_gap = self.calendar_enabled
        gap = timedelta(minutes=self.settings.SLOT_MIN_GAP_MINUTES)

        def distance(window: tuple[datetime, datetime]) -> int:
            local = window[0].astimezone(tz)
            return abs(local.hour * 60 + local.minute - preferred_minute)

        by_day: dict[Any, dict[str, list[tuple[datetime, datetime]]]] = {}
        for window in candidates:
            local = window[0].astimezone(tz)
            by_day.setdefault(local.date(), {}).setdefault(_bucket_for(local), []).append(window)

        accepted: list[tuple[datetime, datetime]] = []
        for day in sorted(by_day):
            buckets = [sorted(windows, key=distance) for windows in by_day[day].values()]
            buckets.sort(key=lambda windows: distance(windows[0]))

            while buckets and len(accepted) < limit:
                for windows in buckets:
                    while windows:
                        start, end = windows.pop(0)
                        if not enforce_gap or _keeps_gap(start, end, accepted, gap):
                            accepted.append((start, end))
                            break
                    if len(accepted) >= limit:
                        break
                buckets = [windows for windows in buckets if windows]

            if len(accepted) >= limit:
                break

        return sorted(accepted)

    async def generate_slots(
        self,
        lead_id: UUID,
        preferred_text: str | None = None,
        now: datetime | None = None,
    ) -> list[ProposedSlot]:
        """
        Propose pickup windows and cache them on the lead.

        Raises:
            LeadNotFoundError: If the lead does not exist
        """
        now = now or datetime.now(UTC)

        async with get_async_session() as session:
            lead = await session.get(Lead, lead_id)
            if lead is None:
                raise LeadNotFoundError(lead_id)

            preferred = self.resolve_preferred_moment(preferred_text, now)
            duration = estimate_duration_minutes(
                lead.state_metadata, self.settings.DEFAULT_JOB_DURATION_MINUTES
            )
            candidates = self.build_candidates(preferred, duration, now)

            busy, degraded_reason = await self._load_busy_windows(candidates)
            if busy:
                candidates = [(s, e) for s, e in candidates if not _overlaps(s, e, busy)]

            slots = [
                ProposedSlot(
                    id=slot_id_for(lead.id, start),
                    label=format_slot_label(start, end, self.time_zone),
                    window_start=start.astimezone(UTC),
                    window_end=end.astimezone(UTC),
                )
                for start, end in self.diversify(candidates, preferred)
            ]

            working_state = load_working_state(lead.state_metadata)
            working_state.proposed_slots = slots
            working_state.proposed_at = now
            lead.state_metadata = store_working_state(lead.state_metadata, working_state)
            lead.stage = LeadStage.SCHEDULING

            add_audit(
                session,
                lead.id,
                "propose_slots",
                {"slot_ids": [slot.id for slot in slots], "duration_minutes": duration},
                actor=ACTOR_AGENT,
            )
            if degraded_reason:
                add_audit(
                    session,
                    lead.id,
                    "calendar_availability_degraded",
                    {"error": degraded_reason},
                )

            await session.commit()

        logger.info(
            f"Proposed {len(slots)} slots (duration={duration}min, preferred={preferred.isoformat()})",
            extra={"lead_id": lead_id},
        )
        return slots
