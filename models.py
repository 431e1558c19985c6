"""
Database models

Raffle is a singleton row: it holds the round parameters, the custody
balance and the outstanding randomness request. Participants are stored in
entry order; they are deleted when the round is settled.
"""
import enum
import uuid
from datetime import datetime, timezone

from sqlalchemy import (
    Column,
    String,
    Integer,
    BigInteger,
    DateTime,
    Enum,
    ForeignKey,
    JSON,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship
from sqlalchemy.types import TypeDecorator

from database import Base


def _uuid() -> str:
    return str(uuid.uuid4())


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Uint256(TypeDecorator):
    """Unbounded non-negative integer stored as a decimal string.

    Fees, balances, request ids and random words routinely exceed 64 bits.
    """
    impl = String(78)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        value = int(value)
        if value < 0:
            raise ValueError(f"Uint256 column got negative value {value}")
        return str(value)

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        return int(value)


class RaffleState(str, enum.Enum):
    OPEN = "OPEN"
    RESOLVING = "RESOLVING"


class Raffle(Base):
    __tablename__ = "raffles"

    id = Column(String(36), primary_key=True, default=_uuid)
    state = Column(Enum(RaffleState), nullable=False, default=RaffleState.OPEN)
    round_number = Column(Integer, nullable=False, default=1)

    entrance_fee = Column(Uint256, nullable=False)
    interval = Column(BigInteger, nullable=False)
    last_timestamp = Column(BigInteger, nullable=False)

    custody_balance = Column(Uint256, nullable=False, default=0)
    recent_winner = Column(String(128), nullable=True)

    pending_request_id = Column(Uint256, nullable=True)
    requested_at = Column(BigInteger, nullable=True)

    # Oracle selection parameters
    key_hash = Column(String(128), nullable=False)
    subscription_id = Column(Uint256, nullable=False)
    request_confirmations = Column(Integer, nullable=False)
    callback_gas_limit = Column(Integer, nullable=False)
    num_words = Column(Integer, nullable=False, default=1)

    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)

    participants = relationship(
        "Participant",
        back_populates="raffle",
        order_by="Participant.position",
        cascade="all, delete-orphan",
    )


class Participant(Base):
    __tablename__ = "participants"
    __table_args__ = (
        UniqueConstraint("raffle_id", "position", name="uq_participant_position"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    raffle_id = Column(String(36), ForeignKey("raffles.id"), nullable=False, index=True)
    position = Column(Integer, nullable=False)
    address = Column(String(128), nullable=False)
    paid_amount = Column(Uint256, nullable=False)
    entered_at = Column(BigInteger, nullable=False)

    raffle = relationship("Raffle", back_populates="participants")


class Account(Base):
    """Withdrawable balance credited by payouts."""
    __tablename__ = "accounts"

    id = Column(Integer, primary_key=True, autoincrement=True)
    address = Column(String(128), nullable=False, unique=True, index=True)
    balance = Column(Uint256, nullable=False, default=0)


class EventLog(Base):
    __tablename__ = "event_logs"

    id = Column(Integer, primary_key=True, autoincrement=True)
    raffle_id = Column(String(36), ForeignKey("raffles.id"), nullable=False, index=True)
    event_type = Column(String(64), nullable=False, index=True)
    data = Column(JSON, nullable=False, default=dict)
    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)
