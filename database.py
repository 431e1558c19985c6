from sqlalchemy import create_engine, event
from sqlalchemy.orm import sessionmaker, Session, declarative_base
from pydantic_settings import BaseSettings
from functools import lru_cache, wraps
from typing import Optional
import logging

logger = logging.getLogger(__name__)


class Settings(BaseSettings):
    database_url: str = "sqlite:///./raffle.db"
    log_level: str = "INFO"

    # Round parameters (fixed at construction)
    entrance_fee: int = 10_000_000_000_000_000
    interval: int = 30

    # Randomness oracle
    oracle_url: str = "http://localhost:8545/vrf"
    oracle_timeout: float = 10.0
    oracle_token: Optional[str] = None
    key_hash: str = "0x474e34a077df58807dbe9c96d3c009b23b3c6d0cce433e59bbf5b34f823bc56c"
    subscription_id: int = 0
    request_confirmations: int = 3
    callback_gas_limit: int = 500_000

    # Operator recovery of a round whose callback never arrived
    operator_token: Optional[str] = None
    resolution_timeout: int = 3600

    class Config:
        env_file = ".env"


@lru_cache()
def get_settings():
    return Settings()


settings = get_settings()


def use_immediate_transactions(engine):
    """
    SQLite: open every transaction with BEGIN IMMEDIATE

    pysqlite defers BEGIN until the first write and SQLite ignores
    FOR UPDATE, so two overlapping raffle operations would both read the
    same row before either writes. BEGIN IMMEDIATE takes the database write
    lock up front; the second transaction waits (up to the driver's busy
    timeout) until the first commits, which gives the same serialization as
    with_raffle_lock on PostgreSQL.
    """
    @event.listens_for(engine, "connect")
    def _disable_pysqlite_begin(dbapi_connection, connection_record):
        # let SQLAlchemy emit BEGIN itself
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def _begin_immediate(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")

    return engine


def build_engine(database_url: str, **kwargs):
    """Engine for ``database_url``; SQLite gets immediate transactions."""
    if not database_url.startswith("sqlite"):
        return create_engine(database_url, pool_pre_ping=True, **kwargs)

    # check_same_thread=False because FastAPI serves sync endpoints
    # from a thread pool
    connect_args = kwargs.pop("connect_args", {})
    connect_args.setdefault("check_same_thread", False)
    engine = create_engine(database_url, connect_args=connect_args, pool_pre_ping=True, **kwargs)
    return use_immediate_transactions(engine)


engine = build_engine(settings.database_url)
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
Base = declarative_base()


def get_db():
    """
    FastAPI dependency: provide a database session

    The session is closed after the request via yield.
    """
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def transactional(func):
    """
    Transaction decorator: one operation == one all-or-nothing transaction

    Usage:
        @transactional
        def some_business_logic(db: Session, ...):
            raffle = with_raffle_lock(db).first()
            raffle.custody_balance += amount
            # no manual commit, the decorator handles it

    When the function raises:
        - the session is rolled back
        - the exception is re-raised for the caller to handle

    Lock-first rule for raffle operations:
        - the first statement of a mutating operation is
          with_raffle_lock(db).first(); every read of the round (state,
          participants, balance, pending request) happens after it
        - talking to the oracle or the payout gateway happens while the
          lock is held, so a callback racing the commit waits for it
        - on SQLite the lock is the BEGIN IMMEDIATE issued by build_engine

    Notes:
        - the first argument (or the ``db`` keyword) must be the Session
        - never commit inside the function
        - a session that already read outside the decorator is still in that
          read's transaction; the decorator commits it together
    """
    @wraps(func)
    def wrapper(*args, **kwargs):
        # find the session (positional or keyword)
        db = None
        if args and isinstance(args[0], Session):
            db = args[0]
        elif 'db' in kwargs:
            db = kwargs['db']

        if db is None:
            raise ValueError(
                f"@transactional requires 'db: Session' as first argument, "
                f"but got args={args}, kwargs={kwargs}"
            )

        try:
            result = func(*args, **kwargs)
            db.commit()
            return result
        except Exception as e:
            logger.error(f"Transaction failed in {func.__name__}: {e}", exc_info=True)
            db.rollback()
            raise

    return wrapper
