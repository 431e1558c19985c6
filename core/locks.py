"""
Concurrency control

Row-level locking on the raffle row. Every mutating operation takes this
lock first, which serializes entry, resolution, settlement and recovery
against each other.

Uses SELECT ... FOR UPDATE (pessimistic locking). SQLite ignores the hint;
there the engine opens every transaction with BEGIN IMMEDIATE (see
database.build_engine), so the lock is taken by the first statement of the
transaction instead.
"""
from typing import Optional

from sqlalchemy.orm import Session, Query

from models import Raffle


def with_raffle_lock(db: Session, raffle_id: Optional[str] = None) -> Query:
    """
    Lock the raffle row

    Usage:
        raffle = with_raffle_lock(db).first()
        if not raffle:
            raise RaffleNotFound()
        raffle.state = RaffleState.RESOLVING
        db.commit()

    Args:
        db: SQLAlchemy Session
        raffle_id: raffle id; None selects the singleton

    Returns:
        Query object (call .first() to get the row)

    Notes:
        - nowait=False waits for the lock instead of failing
        - must be used inside a transaction (commit or rollback releases it)
    """
    query = db.query(Raffle)
    if raffle_id is not None:
        query = query.filter(Raffle.id == raffle_id)
    return query.order_by(Raffle.created_at).with_for_update(nowait=False)
