"""
SQLAlchemy ORM models for the scheduling core tables.

This module defines:
- leads: Prospective customers with channel handles and conversation state
- quotes: Priced estimates produced upstream by the pricing engine
- jobs: Booked pickup windows, at most one per quote
- audits: Append-only trail of agent/system actions per lead
- calendar_sync_state: Incremental sync cursor per external calendar

All models use:
- UUID primary keys (auto-generated)
- TIMESTAMP WITH TIME ZONE for datetime fields
- JSONB for flexible metadata storage

Schema migrations are owned by the surrounding application; these mappings
only have to agree with the deployed tables.
"""

from datetime import datetime
from decimal import Decimal
from enum import Enum as PyEnum
from typing import Any, Optional
from uuid import UUID, uuid4

from sqlalchemy import (
    TIMESTAMP,
    CheckConstraint,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    text,
)
from sqlalchemy import (
    Enum as SQLEnum,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.dialects.postgresql import UUID as PGUUID
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship

# ============================================================================
# Base Class
# ============================================================================


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy models."""

    pass


# ============================================================================
# Enums
# ============================================================================


class Channel(str, PyEnum):
    """Channel the lead reached us through."""

    MESSENGER = "messenger"
    SMS = "sms"
    WEB = "web"


class LeadStage(str, PyEnum):
    """Lead lifecycle stage."""

    AWAITING_PHOTOS = "awaiting_photos"
    QUOTING = "quoting"
    AWAITING_APPROVAL = "awaiting_approval"
    SCHEDULING = "scheduling"
    BOOKED = "booked"
    REMINDING = "reminding"
    COMPLETED = "completed"
    LOST = "lost"


class JobStatus(str, PyEnum):
    """Job lifecycle status."""

    TENTATIVE = "tentative"
    BOOKED = "booked"
    COMPLETED = "completed"
    CANCELLED = "cancelled"

    def __str__(self):
        return self.value


def _enum_values(enum_cls) -> list[str]:
    return [e.value for e in enum_cls]


# ============================================================================
# Models
# ============================================================================


class Lead(Base):
    """
    Lead model - one prospective customer and their conversation state.

    ``state_metadata`` holds the load signals extracted from photos
    (``last_features``) and the versioned conversation working state
    (``working_state``), see agent/state/working_state.py.
    """

    __tablename__ = "leads"

    id: Mapped[UUID] = mapped_column(
        PGUUID(as_uuid=True), primary_key=True, default=uuid4
    )
    channel: Mapped[Channel] = mapped_column(
        SQLEnum(
            Channel,
            name="lead_channel",
            create_type=False,
            values_callable=_enum_values,
        ),
        nullable=False,
    )
    name: Mapped[str | None] = mapped_column(String(200), nullable=True)
    messenger_psid: Mapped[str | None] = mapped_column(
        String(100), nullable=True, unique=True
    )
    phone: Mapped[str | None] = mapped_column(String(32), nullable=True, index=True)
    email: Mapped[str | None] = mapped_column(String(255), nullable=True)
    address: Mapped[str | None] = mapped_column(Text, nullable=True)
    stage: Mapped[LeadStage] = mapped_column(
        SQLEnum(
            LeadStage,
            name="lead_stage",
            create_type=False,
            values_callable=_enum_values,
        ),
        default=LeadStage.AWAITING_PHOTOS,
        nullable=False,
        index=True,
    )
    state_metadata: Mapped[dict[str, Any] | None] = mapped_column(
        JSONB, nullable=True
    )

    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True),
        server_default=text("CURRENT_TIMESTAMP"),
        nullable=False,
    )
    updated_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True),
        server_default=text("CURRENT_TIMESTAMP"),
        onupdate=text("CURRENT_TIMESTAMP"),
        nullable=False,
    )

    quotes: Mapped[list["Quote"]] = relationship("Quote", back_populates="lead")
    jobs: Mapped[list["Job"]] = relationship("Job", back_populates="lead")

    def __repr__(self) -> str:
        return f"<Lead(id={self.id}, channel={self.channel}, stage={self.stage})>"


class Quote(Base):
    """Quote model - priced estimate for a lead (read-only for this core)."""

    __tablename__ = "quotes"

    id: Mapped[UUID] = mapped_column(
        PGUUID(as_uuid=True), primary_key=True, default=uuid4
    )
    lead_id: Mapped[UUID] = mapped_column(
        PGUUID(as_uuid=True),
        ForeignKey("leads.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    subtotal: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    total: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    line_items_json: Mapped[list[dict[str, Any]]] = mapped_column(
        JSONB, nullable=False, default=list
    )
    discounts_json: Mapped[list[dict[str, Any]] | None] = mapped_column(
        JSONB, nullable=True
    )
    notes_json: Mapped[list[str] | None] = mapped_column(JSONB, nullable=True)
    disclaimer: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True),
        server_default=text("CURRENT_TIMESTAMP"),
        nullable=False,
    )

    lead: Mapped["Lead"] = relationship("Lead", back_populates="quotes")
    job: Mapped[Optional["Job"]] = relationship("Job", back_populates="quote")

    __table_args__ = (
        Index("idx_quotes_lead_created", "lead_id", "created_at"),
    )

    def __repr__(self) -> str:
        return f"<Quote(id={self.id}, lead_id={self.lead_id}, total={self.total})>"


class Job(Base):
    """
    Job model - a booked pickup window.

    One Job per Quote (``quote_id`` is unique). ``reminder_sent_at`` is the
    single source of truth for "already reminded". Jobs are never deleted;
    external cancellation moves them to ``cancelled``.
    """

    __tablename__ = "jobs"

    id: Mapped[UUID] = mapped_column(
        PGUUID(as_uuid=True), primary_key=True, default=uuid4
    )
    lead_id: Mapped[UUID] = mapped_column(
        PGUUID(as_uuid=True),
        ForeignKey("leads.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    quote_id: Mapped[UUID] = mapped_column(
        PGUUID(as_uuid=True),
        ForeignKey("quotes.id", ondelete="RESTRICT"),
        nullable=False,
        unique=True,
    )

    window_start: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), nullable=False, index=True
    )
    window_end: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), nullable=False
    )

    # Note: values_callable ensures SQLAlchemy uses enum .value ("booked")
    # instead of .name ("BOOKED") when create_type=False
    status: Mapped[JobStatus] = mapped_column(
        SQLEnum(
            JobStatus,
            name="job_status",
            create_type=False,
            values_callable=_enum_values,
        ),
        default=JobStatus.TENTATIVE,
        nullable=False,
        index=True,
    )

    reminder_scheduled_at: Mapped[datetime | None] = mapped_column(
        TIMESTAMP(timezone=True), nullable=True
    )
    reminder_sent_at: Mapped[datetime | None] = mapped_column(
        TIMESTAMP(timezone=True), nullable=True
    )

    # External calendar linkage
    google_calendar_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    google_event_id: Mapped[str | None] = mapped_column(
        String(1024), nullable=True, unique=True
    )
    google_event_ical_uid: Mapped[str | None] = mapped_column(String(1024), nullable=True)
    google_event_etag: Mapped[str | None] = mapped_column(String(255), nullable=True)
    google_event_html_link: Mapped[str | None] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True),
        server_default=text("CURRENT_TIMESTAMP"),
        nullable=False,
    )
    updated_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True),
        server_default=text("CURRENT_TIMESTAMP"),
        onupdate=text("CURRENT_TIMESTAMP"),
        nullable=False,
    )

    lead: Mapped["Lead"] = relationship("Lead", back_populates="jobs")
    quote: Mapped["Quote"] = relationship("Quote", back_populates="job")

    __table_args__ = (
        CheckConstraint("window_end > window_start", name="check_job_window_positive"),
        # Reminder poller query: due, unsent, booked
        Index(
            "idx_jobs_reminder_due",
            "reminder_scheduled_at",
            "status",
            postgresql_where=text("reminder_sent_at IS NULL"),
        ),
    )

    def __repr__(self) -> str:
        return (
            f"<Job(id={self.id}, status={self.status}, "
            f"window={self.window_start}..{self.window_end})>"
        )


class Audit(Base):
    """Audit model - append-only record of actions taken on a lead."""

    __tablename__ = "audits"

    id: Mapped[UUID] = mapped_column(
        PGUUID(as_uuid=True), primary_key=True, default=uuid4
    )
    lead_id: Mapped[UUID | None] = mapped_column(
        PGUUID(as_uuid=True),
        ForeignKey("leads.id", ondelete="CASCADE"),
        nullable=True,
        index=True,
    )
    actor: Mapped[str] = mapped_column(String(50), nullable=False)
    action: Mapped[str] = mapped_column(String(100), nullable=False, index=True)
    payload: Mapped[dict[str, Any] | None] = mapped_column(JSONB, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True),
        server_default=text("CURRENT_TIMESTAMP"),
        nullable=False,
    )

    def __repr__(self) -> str:
        return f"<Audit(lead_id={self.lead_id}, action={self.action})>"


class CalendarSyncState(Base):
    """
    Google Calendar sync state per calendar.

    Stores the sync token for incremental sync. The token is cleared when the
    provider reports it expired and replaced after every completed pass.
    """

    __tablename__ = "calendar_sync_state"

    id: Mapped[UUID] = mapped_column(
        PGUUID(as_uuid=True), primary_key=True, default=uuid4
    )
    calendar_id: Mapped[str] = mapped_column(
        String(255), nullable=False, unique=True, index=True
    )
    sync_token: Mapped[str | None] = mapped_column(Text, nullable=True)
    last_sync_at: Mapped[datetime | None] = mapped_column(
        TIMESTAMP(timezone=True), nullable=True
    )
    events_synced: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    last_error: Mapped[str | None] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True),
        server_default=text("CURRENT_TIMESTAMP"),
        nullable=False,
    )
    updated_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True),
        server_default=text("CURRENT_TIMESTAMP"),
        onupdate=text("CURRENT_TIMESTAMP"),
        nullable=False,
    )

    def __repr__(self) -> str:
        return f"<CalendarSyncState(calendar_id={self.calendar_id}, last_sync={self.last_sync_at})>"
