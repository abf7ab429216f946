"""
Conversation working state - typed scratch space stored on the lead.

Proposed slots, the pending confirmation prompt and booking bookkeeping live
under ``Lead.state_metadata["working_state"]`` as a versioned pydantic model.
Older rows kept these keys at the top level of ``state_metadata``; they are
still read (malformed entries dropped) and are removed on the next write.

The blob is read-modified-written per request without a concurrency token, so
two concurrent messages from the same lead resolve as last-write-wins.
"""

import logging
from datetime import UTC, datetime
from typing import Any

from pydantic import AliasChoices, BaseModel, Field, ValidationError, field_validator, model_validator

logger = logging.getLogger(__name__)

WORKING_STATE_KEY = "working_state"
WORKING_STATE_VERSION = 1

# Top-level keys written by the unversioned format
LEGACY_KEYS = (
    "proposed_slots",
    "proposed_at",
    "pending_confirmation",
    "last_slots_prompt_at",
    "last_slots_prompt_text",
    "booked_job_id",
    "reminder_at",
)


def _ensure_aware(value: datetime) -> datetime:
    return value if value.tzinfo else value.replace(tzinfo=UTC)


class ProposedSlot(BaseModel):
    """A candidate pickup window offered to the customer."""

    id: str
    label: str
    window_start: datetime = Field(validation_alias=AliasChoices("window_start", "start"))
    window_end: datetime = Field(validation_alias=AliasChoices("window_end", "end"))

    model_config = {"frozen": True, "populate_by_name": True}

    @field_validator("window_start", "window_end")
    @classmethod
    def _aware(cls, value: datetime) -> datetime:
        return _ensure_aware(value)

    @model_validator(mode="after")
    def _positive_window(self) -> "ProposedSlot":
        if self.window_end <= self.window_start:
            raise ValueError("window_end must be after window_start")
        return self

    @property
    def duration_minutes(self) -> int:
        return int((self.window_end - self.window_start).total_seconds() // 60)


class PendingConfirmation(BaseModel):
    """A slot the agent has asked the customer to confirm."""

    iso: str
    label: str | None = None
    prompt: str | None = None
    preferred_text: str | None = None
    time_zone: str | None = None


class ConversationWorkingState(BaseModel):
    version: int = WORKING_STATE_VERSION
    proposed_slots: list[ProposedSlot] = Field(default_factory=list)
    proposed_at: datetime | None = None
    pending_confirmation: PendingConfirmation | None = None
    last_slots_prompt_at: datetime | None = None
    last_slots_prompt_text: str | None = None
    booked_job_id: str | None = None
    reminder_at: datetime | None = None

    @field_validator("proposed_slots", mode="before")
    @classmethod
    def _drop_malformed_slots(cls, value: Any) -> list[Any]:
        if not isinstance(value, list):
            return []
        slots = []
        for entry in value:
            try:
                slots.append(ProposedSlot.model_validate(entry))
            except ValidationError:
                logger.warning(f"Dropping malformed proposed slot: {entry!r}")
        return slots

    @field_validator("pending_confirmation", mode="before")
    @classmethod
    def _drop_malformed_pending(cls, value: Any) -> Any:
        if value is None or isinstance(value, PendingConfirmation):
            return value
        try:
            return PendingConfirmation.model_validate(value)
        except ValidationError:
            logger.warning(f"Dropping malformed pending confirmation: {value!r}")
            return None


def load_working_state(state_metadata: dict[str, Any] | None) -> ConversationWorkingState:
    """
    Read the working state from a lead's metadata.

    Falls back to the legacy top-level keys when no versioned blob exists.
    Unreadable fields are reset rather than raised, so a corrupt blob never
    blocks the conversation.
    """
    metadata = state_metadata or {}
    raw = metadata.get(WORKING_STATE_KEY)
    if not isinstance(raw, dict):
        raw = {key: metadata[key] for key in LEGACY_KEYS if key in metadata}

    try:
        return ConversationWorkingState.model_validate(raw)
    except ValidationError as e:
        logger.warning(f"Working state unreadable, keeping slots only: {e}")
        return ConversationWorkingState(proposed_slots=raw.get("proposed_slots", []))


def store_working_state(
    state_metadata: dict[str, Any] | None,
    working_state: ConversationWorkingState,
) -> dict[str, Any]:
    """
    Return a new metadata dict with the working state written in.

    A fresh dict is returned so SQLAlchemy sees the JSONB column as changed
    when it is assigned back to the lead.
    """
    metadata = {
        key: value
        for key, value in (state_metadata or {}).items()
        if key not in LEGACY_KEYS
    }
    metadata[WORKING_STATE_KEY] = working_state.model_dump(mode="json")
    return metadata
