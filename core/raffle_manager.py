"""
Raffle Manager: the round lifecycle

Responsibilities:
1. Construction of the singleton raffle from an explicit configuration
2. Entry admission (OPEN only)
3. Readiness check for the periodic caller
4. Resolution: OPEN -> RESOLVING + randomness request
5. Settlement: oracle callback -> winner payout -> RESOLVING -> OPEN
6. Operator recovery of a round whose callback never arrived

Every mutating operation is @transactional and starts by locking the raffle
row, so two callers never interleave inside one operation and a failure
anywhere leaves the row exactly as it was.
"""
from dataclasses import dataclass
from typing import List, Optional, Sequence
import logging

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from models import Raffle, RaffleState, Participant
from core.state_machine import RaffleStateMachine
from core.locks import with_raffle_lock
from core.exceptions import (
    RaffleNotFound,
    ParticipantNotFound,
    InsufficientFund,
    NotOpen,
    ResolutionNotNeeded,
    OracleError,
    UnknownRequest,
    InvalidRandomness,
    InvalidStateTransition,
    PayoutFailed,
    RecoveryNotAllowed,
)
from services.clock_service import current_timestamp
from services.event_service import (
    record_event,
    PLAYER_ENTERED,
    RANDOMNESS_REQUESTED,
    WINNER_PICKED,
    ROUND_RECOVERED,
)
from services.payout_service import PayoutGateway, PayoutError
from services.randomness_service import RandomnessProvider, SelectionParameters
from services.selection_service import select_winner
from services.trigger_service import Readiness, check_ready
from database import transactional

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RaffleConfig:
    """Construction parameters, applied once"""
    entrance_fee: int
    interval: int
    key_hash: str
    subscription_id: int
    request_confirmations: int = 3
    callback_gas_limit: int = 500_000

    @classmethod
    def from_settings(cls, settings) -> "RaffleConfig":
        return cls(
            entrance_fee=settings.entrance_fee,
            interval=settings.interval,
            key_hash=settings.key_hash,
            subscription_id=settings.subscription_id,
            request_confirmations=settings.request_confirmations,
            callback_gas_limit=settings.callback_gas_limit,
        )


@dataclass(frozen=True)
class Settlement:
    request_id: int
    winner: str
    amount: int
    winner_index: int
    round_number: int


class RaffleManager:
    """Round lifecycle manager"""

    @staticmethod
    @transactional
    def create_raffle(db: Session, config: RaffleConfig, now: Optional[int] = None) -> Raffle:
        """
        Construct the raffle (idempotent)

        An existing raffle is returned untouched: fee, interval and oracle
        parameters are immutable once set.

        Raises:
            ValueError: non-positive fee or negative interval
        """
        existing = with_raffle_lock(db).first()
        if existing:
            if existing.entrance_fee != config.entrance_fee or existing.interval != config.interval:
                logger.warning(
                    f"Raffle {existing.id} already constructed with fee={existing.entrance_fee} "
                    f"interval={existing.interval}; ignoring configured values"
                )
            return existing

        if config.entrance_fee <= 0:
            raise ValueError(f"Entrance fee must be positive, got {config.entrance_fee}")
        if config.interval < 0:
            raise ValueError(f"Interval must not be negative, got {config.interval}")

        now = current_timestamp() if now is None else now
        raffle = Raffle(
            state=RaffleState.OPEN,
            round_number=1,
            entrance_fee=config.entrance_fee,
            interval=config.interval,
            last_timestamp=now,
            custody_balance=0,
            key_hash=config.key_hash,
            subscription_id=config.subscription_id,
            request_confirmations=config.request_confirmations,
            callback_gas_limit=config.callback_gas_limit,
            num_words=1,
        )
        db.add(raffle)
        db.flush()

        logger.info(
            f"Created raffle {raffle.id} (fee={config.entrance_fee}, interval={config.interval}s)"
        )
        return raffle

    # ============ Queries ============

    @staticmethod
    def get_raffle(db: Session) -> Raffle:
        raffle = db.query(Raffle).order_by(Raffle.created_at).first()
        if not raffle:
            raise RaffleNotFound()
        return raffle

    @staticmethod
    def get_participant_count(db: Session) -> int:
        raffle = RaffleManager.get_raffle(db)
        return db.query(Participant).filter(Participant.raffle_id == raffle.id).count()

    @staticmethod
    def get_participant(db: Session, index: int) -> Participant:
        """
        Participant at ``index`` (0-based, entry order) in the current round

        Raises:
            ParticipantNotFound: index out of range
        """
        raffle = RaffleManager.get_raffle(db)
        participant = None
        if index >= 0:
            participant = db.query(Participant).filter(
                Participant.raffle_id == raffle.id,
                Participant.position == index
            ).first()
        if not participant:
            raise ParticipantNotFound(index)
        return participant

    @staticmethod
    def get_participant_addresses(db: Session) -> List[str]:
        raffle = RaffleManager.get_raffle(db)
        return [p.address for p in raffle.participants]

    # ============ Entry admission ============

    @staticmethod
    @transactional
    def enter(db: Session, player: str, paid_amount: int, now: Optional[int] = None) -> Participant:
        """
        Admit one paid entry

        Preconditions:
        1. state is OPEN
        2. paid_amount >= entrance_fee

        Overpayment stays in custody; there is no refund.

        Raises:
            NotOpen: round is resolving (checked before the amount)
            InsufficientFund: paid below the fee
        """
        # 1. lock
        raffle = with_raffle_lock(db).first()
        if not raffle:
            raise RaffleNotFound()

        # 2. gate
        if raffle.state != RaffleState.OPEN:
            raise NotOpen(f"Raffle {raffle.id} is {raffle.state.value}, not accepting entries")
        if paid_amount < raffle.entrance_fee:
            raise InsufficientFund(paid_amount, raffle.entrance_fee)

        # 3. append and take custody
        now = current_timestamp() if now is None else now
        participant = Participant(
            address=player,
            position=len(raffle.participants),
            paid_amount=paid_amount,
            entered_at=now,
        )
        raffle.participants.append(participant)
        raffle.custody_balance = raffle.custody_balance + paid_amount

        # 4. notify
        record_event(db, raffle.id, PLAYER_ENTERED, {
            "player": player,
            "amount": str(paid_amount),
            "round_number": raffle.round_number,
        })

        logger.info(
            f"Player {player} entered raffle {raffle.id} round {raffle.round_number} "
            f"at position {participant.position} paying {paid_amount}"
        )
        return participant

    # ============ Trigger evaluation ============

    @staticmethod
    def check_ready(db: Session, now: Optional[int] = None, aux_data: bytes = b"") -> Readiness:
        """Read-only; callable by anyone at any frequency."""
        raffle = RaffleManager.get_raffle(db)
        now = current_timestamp() if now is None else now
        return check_ready(raffle, len(raffle.participants), now, aux_data)

    # ============ Resolution ============

    @staticmethod
    @transactional
    def initiate_resolution(
        db: Session,
        provider: RandomnessProvider,
        aux_data: bytes = b"",
        now: Optional[int] = None,
    ) -> int:
        """
        Start resolving the current round

        Flow:
        1. Lock the raffle and re-evaluate readiness (the caller's signal is
           not trusted)
        2. OPEN -> RESOLVING
        3. Request one random word from the oracle
        4. Store the request id as the pending correlation token

        Returns:
            the oracle request id

        Raises:
            ResolutionNotNeeded: readiness is false
            OracleError: oracle unavailable or returned a bad id; nothing changes
        """
        # 1. lock and re-check
        raffle = with_raffle_lock(db).first()
        if not raffle:
            raise RaffleNotFound()

        now = current_timestamp() if now is None else now
        readiness = check_ready(raffle, len(raffle.participants), now, aux_data)
        if not readiness.ready:
            raise ResolutionNotNeeded(
                raffle.custody_balance,
                len(raffle.participants),
                raffle.state.value,
            )

        # 2. close entry before talking to the oracle
        RaffleStateMachine.transition(raffle, RaffleState.RESOLVING, db, reason="resolution_requested")

        # 3. request randomness
        params = SelectionParameters(
            key_hash=raffle.key_hash,
            subscription_id=raffle.subscription_id,
            request_confirmations=raffle.request_confirmations,
            callback_gas_limit=raffle.callback_gas_limit,
            num_words=raffle.num_words,
        )
        request_id = provider.request_randomness(params)
        if not isinstance(request_id, int) or isinstance(request_id, bool) or request_id <= 0:
            raise OracleError(f"Oracle returned invalid request id {request_id!r}")

        # 4. bind the callback to this request
        raffle.pending_request_id = request_id
        raffle.requested_at = now

        record_event(db, raffle.id, RANDOMNESS_REQUESTED, {
            "request_id": str(request_id),
            "round_number": raffle.round_number,
        })

        logger.info(
            f"Raffle {raffle.id} round {raffle.round_number} resolving, "
            f"randomness request {request_id}"
        )
        return request_id

    # ============ Settlement ============

    @staticmethod
    @transactional
    def settle(
        db: Session,
        request_id: int,
        random_words: Sequence[int],
        gateway: PayoutGateway,
        now: Optional[int] = None,
    ) -> Settlement:
        """
        Oracle callback: pick the winner and pay out

        Flow:
        1. Lock; the request id must be the pending one
        2. winner = participants[random_words[0] % len(participants)]
        3. Transfer the whole custody balance to the winner
        4. Reset the round: clear participants, zero balance, stamp time,
           clear the pending request, RESOLVING -> OPEN

        All of it commits together. If the transfer fails nothing changes:
        the round stays RESOLVING with its balance, participants and pending
        request intact.

        Raises:
            UnknownRequest: id does not match (stale, replayed, or no request pending)
            InvalidRandomness: no random word delivered
            PayoutFailed: the transfer was rejected, or the database refused it
        """
        # 1. lock and correlate
        raffle = with_raffle_lock(db).first()
        if not raffle:
            raise RaffleNotFound()

        if raffle.pending_request_id is None or request_id != raffle.pending_request_id:
            raise UnknownRequest(request_id)
        if raffle.state != RaffleState.RESOLVING:
            raise InvalidStateTransition(
                f"Raffle {raffle.id} has pending request {request_id} but is {raffle.state.value}"
            )
        if not random_words:
            raise InvalidRandomness(f"Request {request_id} delivered no random words")

        # 2. select
        participants = list(raffle.participants)
        addresses = [p.address for p in participants]
        random_word = int(random_words[0])
        if random_word < 0:
            raise InvalidRandomness(f"Request {request_id} delivered a negative word")
        winner = select_winner(random_word, addresses)
        winner_index = random_word % len(addresses)
        amount = raffle.custody_balance
        settled_round = raffle.round_number

        # 3. pay before touching the round
        try:
            gateway.transfer(db, winner, amount)
        except (PayoutError, SQLAlchemyError) as e:
            raise PayoutFailed(winner, amount, str(e)) from e

        # 4. reset for the next round
        now = current_timestamp() if now is None else now
        raffle.recent_winner = winner
        raffle.participants.clear()
        raffle.custody_balance = 0
        raffle.last_timestamp = now
        raffle.pending_request_id = None
        raffle.requested_at = None
        raffle.round_number = settled_round + 1
        RaffleStateMachine.transition(raffle, RaffleState.OPEN, db, reason="winner_picked")

        record_event(db, raffle.id, WINNER_PICKED, {
            "winner": winner,
            "amount": str(amount),
            "request_id": str(request_id),
            "winner_index": winner_index,
            "round_number": settled_round,
        })

        logger.info(
            f"Raffle {raffle.id} round {settled_round} settled: "
            f"{winner} won {amount} (index {winner_index} of {len(addresses)})"
        )
        return Settlement(
            request_id=request_id,
            winner=winner,
            amount=amount,
            winner_index=winner_index,
            round_number=settled_round,
        )

    # ============ Recovery ============

    @staticmethod
    @transactional
    def recover_stuck_round(db: Session, timeout: int, now: Optional[int] = None) -> int:
        """
        Abandon a randomness request that never got its callback

        Allowed only while RESOLVING and once ``timeout`` seconds have passed
        since the request. The round reopens with its participants and
        balance intact, so it can be resolved again; a late callback for the
        abandoned id is then rejected as UnknownRequest.

        Returns:
            the abandoned request id

        Raises:
            RecoveryNotAllowed: not resolving, or timeout not reached
        """
        raffle = with_raffle_lock(db).first()
        if not raffle:
            raise RaffleNotFound()

        if raffle.state != RaffleState.RESOLVING:
            raise RecoveryNotAllowed(f"Raffle {raffle.id} is {raffle.state.value}, nothing to recover")

        now = current_timestamp() if now is None else now
        requested_at = raffle.requested_at if raffle.requested_at is not None else raffle.last_timestamp
        waited = now - requested_at
        if waited < timeout:
            raise RecoveryNotAllowed(
                f"Request {raffle.pending_request_id} is {waited}s old, timeout is {timeout}s"
            )

        abandoned = raffle.pending_request_id
        raffle.pending_request_id = None
        raffle.requested_at = None
        RaffleStateMachine.transition(raffle, RaffleState.OPEN, db, reason="operator_recovery")

        record_event(db, raffle.id, ROUND_RECOVERED, {
            "abandoned_request_id": str(abandoned) if abandoned is not None else None,
            "waited_seconds": waited,
            "round_number": raffle.round_number,
        })

        logger.warning(
            f"Raffle {raffle.id} round {raffle.round_number} recovered after {waited}s; "
            f"request {abandoned} abandoned"
        )
        return abandoned
