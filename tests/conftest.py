from __future__ import annotations

import os

# Keep the module-level engine in database.py off the filesystem.
os.environ.setdefault("DATABASE_URL", "sqlite://")

from typing import Iterable, List

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from database import Base
from core.exceptions import OracleError
from core.raffle_manager import RaffleConfig, RaffleManager
from services.payout_service import PayoutError
from services.randomness_service import SelectionParameters

FEE = 10**16
INTERVAL = 30
T0 = 1_700_000_000
KEY_HASH = "0x474e34a077df58807dbe9c96d3c009b23b3c6d0cce433e59bbf5b34f823bc56c"
SUBSCRIPTION_ID = 2**200 + 7


class FakeRandomnessProvider:
    """Hands out sequential request ids starting at 1."""

    def __init__(self, first_id: int = 1) -> None:
        self.next_id = first_id
        self.requests: List[SelectionParameters] = []

    def request_randomness(self, params: SelectionParameters) -> int:
        self.requests.append(params)
        request_id = self.next_id
        self.next_id += 1
        return request_id


class BrokenRandomnessProvider:
    def __init__(self, result=None) -> None:
        self.result = result

    def request_randomness(self, params: SelectionParameters) -> int:
        if self.result is None:
            raise OracleError("oracle unreachable")
        return self.result


class RejectingPayoutGateway:
    def __init__(self) -> None:
        self.attempts = 0

    def transfer(self, db, recipient: str, amount: int) -> None:
        self.attempts += 1
        raise PayoutError(f"{recipient} rejected the transfer")


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def config() -> RaffleConfig:
    return RaffleConfig(
        entrance_fee=FEE,
        interval=INTERVAL,
        key_hash=KEY_HASH,
        subscription_id=SUBSCRIPTION_ID,
        request_confirmations=3,
        callback_gas_limit=500_000,
    )


@pytest.fixture
def raffle(db, config):
    return RaffleManager.create_raffle(db, config, now=T0)


@pytest.fixture
def provider() -> FakeRandomnessProvider:
    return FakeRandomnessProvider()


def enter_all(db, players: Iterable[str], amount: int = FEE, now: int = T0) -> None:
    for player in players:
        RaffleManager.enter(db, player, amount, now=now)


def start_resolution(db, provider, players: Iterable[str] = ("alice",), now: int = T0 + INTERVAL + 1) -> int:
    enter_all(db, players)
    return RaffleManager.initiate_resolution(db, provider, now=now)
