"""Attempt lifecycle event log.

All telemetry operations are best-effort. Failures must NOT break the main flow.
"""

from enum import Enum
from typing import Any
from uuid import UUID

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from examdesk.core.logging import get_logger
from examdesk.models.attempt import AttemptEvent

logger = get_logger(__name__)


class EventType(str, Enum):
    """Attempt event types."""

    ATTEMPT_STARTED = "ATTEMPT_STARTED"
    ATTEMPT_RESUMED = "ATTEMPT_RESUMED"
    ATTEMPT_SUBMITTED = "ATTEMPT_SUBMITTED"
    ATTEMPT_EXPIRED = "ATTEMPT_EXPIRED"
    ATTEMPT_STATUS_CHANGED = "ATTEMPT_STATUS_CHANGED"
    ATTEMPT_EVALUATED = "ATTEMPT_EVALUATED"


def log_event(
    db: Session,
    attempt_id: UUID,
    user_id: UUID,
    event_type: EventType | str,
    payload: dict[str, Any] | None = None,
) -> AttemptEvent | None:
    """
    Log a single attempt event (best-effort).

    The caller commits; nothing is flushed here so events ride in the same transaction
    as the state change they describe.
    """
    event_type_str = event_type.value if isinstance(event_type, EventType) else event_type
    try:
        event = AttemptEvent(
            attempt_id=attempt_id,
            user_id=user_id,
            event_type=event_type_str,
            payload_json=payload or {},
        )
        db.add(event)
    except SQLAlchemyError as e:
        logger.error(f"Failed to log attempt event {event_type_str}: {e}", exc_info=True)
        return None

    logger.info(
        "attempt_event",
        extra={"event": event_type_str, "attempt_id": str(attempt_id), "user_id": str(user_id)},
    )
    return event
