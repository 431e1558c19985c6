"""
Notification service

Notifications are the raffle's observable output: each one is appended to
the event log inside the caller's transaction, so a rolled-back operation
never leaves a notification behind.
"""
import logging
from typing import Any, Dict, List, Optional

from sqlalchemy.orm import Session

from models import EventLog

logger = logging.getLogger(__name__)

PLAYER_ENTERED = "PLAYER_ENTERED"
RANDOMNESS_REQUESTED = "RANDOMNESS_REQUESTED"
WINNER_PICKED = "WINNER_PICKED"
ROUND_RECOVERED = "ROUND_RECOVERED"


def record_event(db: Session, raffle_id: str, event_type: str, data: Dict[str, Any]) -> EventLog:
    """Append an event; flushed, not committed."""
    event = EventLog(raffle_id=raffle_id, event_type=event_type, data=data)
    db.add(event)
    db.flush()
    logger.debug(f"Event {event_type} for raffle {raffle_id}: {data}")
    return event


def list_events(
    db: Session,
    raffle_id: str,
    event_type: Optional[str] = None,
    after_id: int = 0,
    limit: int = 100,
) -> List[EventLog]:
    """
    Events in emission order, for polling observers

    Args:
        event_type: only this type when given
        after_id: return events with id > after_id (cursor)
        limit: page size
    """
    query = db.query(EventLog).filter(
        EventLog.raffle_id == raffle_id,
        EventLog.id > after_id
    )
    if event_type:
        query = query.filter(EventLog.event_type == event_type)
    return query.order_by(EventLog.id).limit(limit).all()
