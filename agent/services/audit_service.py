"""
Audit trail helpers.

``add_audit`` stages an Audit row on the caller's session so it commits with
the state change it describes. ``record_audit`` writes one in its own session
for side effects that run after the primary commit; a failure there is logged
and never propagates.
"""

import logging
from typing import Any
from uuid import UUID, uuid4

from database.connection import get_async_session
from database.models import Audit

logger = logging.getLogger(__name__)

ACTOR_AGENT = "agent"
ACTOR_SYSTEM = "system"


def add_audit(
    session,
    lead_id: UUID | None,
    action: str,
    payload: dict[str, Any] | None = None,
    actor: str = ACTOR_SYSTEM,
) -> Audit:
    audit = Audit(
        id=uuid4(),
        lead_id=lead_id,
        actor=actor,
        action=action,
        payload=payload or {},
    )
    session.add(audit)
    return audit


async def record_audit(
    lead_id: UUID | None,
    action: str,
    payload: dict[str, Any] | None = None,
    actor: str = ACTOR_SYSTEM,
) -> bool:
    """Write an audit entry in its own transaction. Returns False on failure."""
    try:
        async with get_async_session() as session:
            add_audit(session, lead_id, action, payload, actor)
            await session.commit()
        return True
    except Exception as e:
        logger.error(
            f"Failed to record audit '{action}': {e}",
            extra={"lead_id": lead_id},
            exc_info=True,
        )
        return False
