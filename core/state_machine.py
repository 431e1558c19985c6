"""
Raffle state machine

The only place that writes Raffle.state. Every transition is validated
against TRANSITIONS and recorded as a RAFFLE_STATE_CHANGED event.

    OPEN ──initiate_resolution──> RESOLVING
    RESOLVING ──settle / recover──> OPEN

There is no terminal state; the cycle repeats.
"""
import logging

from sqlalchemy.orm import Session

from models import Raffle, RaffleState
from core.exceptions import InvalidStateTransition
from services.event_service import record_event

logger = logging.getLogger(__name__)


class RaffleStateMachine:
    TRANSITIONS = {
        RaffleState.OPEN: {RaffleState.RESOLVING},
        RaffleState.RESOLVING: {RaffleState.OPEN},
    }

    @classmethod
    def can_transition(cls, current: RaffleState, target: RaffleState) -> bool:
        return target in cls.TRANSITIONS.get(current, set())

    @classmethod
    def transition(cls, raffle: Raffle, target: RaffleState, db: Session, reason: str = "") -> Raffle:
        """
        Move a locked raffle row to ``target``

        Args:
            raffle: raffle row, already locked by the caller
            target: new state
            db: SQLAlchemy Session
            reason: free text stored with the event

        Raises:
            InvalidStateTransition: target is not reachable from the current state
        """
        current = raffle.state
        if not cls.can_transition(current, target):
            raise InvalidStateTransition(
                f"Raffle {raffle.id}: cannot go from {current.value} to {target.value}"
            )

        raffle.state = target
        record_event(
            db,
            raffle.id,
            "RAFFLE_STATE_CHANGED",
            {"from": current.value, "to": target.value, "reason": reason},
        )
        logger.info(f"Raffle {raffle.id} state {current.value} -> {target.value} ({reason})")
        return raffle
