"""
Trigger evaluator: may the current round be resolved?

Pure predicate over the raffle row, no state changes. The periodic caller
polls it; initiate_resolution evaluates it again under the row lock instead
of trusting the caller.

ready = state is OPEN
        AND now - last_timestamp >= interval
        AND at least one participant
        AND custody balance > 0
"""
from dataclasses import dataclass

from models import Raffle, RaffleState


@dataclass(frozen=True)
class Readiness:
    is_open: bool
    time_passed: bool
    has_players: bool
    has_balance: bool
    aux_data: bytes = b""

    @property
    def ready(self) -> bool:
        return self.is_open and self.time_passed and self.has_players and self.has_balance


def check_ready(raffle: Raffle, num_participants: int, now: int, aux_data: bytes = b"") -> Readiness:
    """
    Evaluate the four readiness conditions

    Args:
        raffle: raffle row
        num_participants: participants in the current round
        now: Unix seconds
        aux_data: scheduler context, passed through untouched

    Example (interval = 30, one participant, balance > 0):
        elapsed 29 -> ready False
        elapsed 31 -> ready True
    """
    return Readiness(
        is_open=raffle.state == RaffleState.OPEN,
        time_passed=(now - raffle.last_timestamp) >= raffle.interval,
        has_players=num_participants > 0,
        has_balance=(raffle.custody_balance or 0) > 0,
        aux_data=aux_data,
    )
