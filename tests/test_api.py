from __future__ import annotations

import pytest
from fastapi.testclient import TestClient

import core.raffle_manager as raffle_manager
from conftest import (
    FEE,
    INTERVAL,
    T0,
    BrokenRandomnessProvider,
    FakeRandomnessProvider,
    RejectingPayoutGateway,
)
from database import Settings, get_db, get_settings
from main import app
from services.payout_service import LedgerPayoutGateway, get_payout_gateway
from services.randomness_service import get_randomness_provider

ORACLE_TOKEN = "oracle-secret"
OPERATOR_TOKEN = "operator-secret"


class Clock:
    def __init__(self, now: int) -> None:
        self.now = now

    def __call__(self) -> int:
        return self.now


@pytest.fixture
def clock(monkeypatch: pytest.MonkeyPatch) -> Clock:
    clock = Clock(T0)
    monkeypatch.setattr(raffle_manager, "current_timestamp", clock)
    return clock


@pytest.fixture
def settings() -> Settings:
    return Settings(
        entrance_fee=FEE,
        interval=INTERVAL,
        oracle_token=ORACLE_TOKEN,
        operator_token=OPERATOR_TOKEN,
        resolution_timeout=600,
    )


@pytest.fixture
def gateway():
    return LedgerPayoutGateway()


@pytest.fixture
def client(session_factory, settings, provider, gateway, clock):
    def _get_db():
        db = session_factory()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = _get_db
    app.dependency_overrides[get_settings] = lambda: settings
    app.dependency_overrides[get_randomness_provider] = lambda: provider
    app.dependency_overrides[get_payout_gateway] = lambda: gateway
    try:
        # no context manager: lifespan would touch the real engine
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()


def _enter(client, player: str, amount: int = FEE):
    return client.post("/api/raffle/enter", json={"player": player, "amount": amount})


def _fulfill(client, request_id, words, token: str = ORACLE_TOKEN):
    return client.post(
        "/api/oracle/fulfill",
        json={"request_id": request_id, "random_words": words},
        headers={"X-Oracle-Token": token},
    )


def test_health(client) -> None:
    assert client.get("/health").json() == {"status": "healthy"}
    assert client.get("/").json()["status"] == "ok"


def test_raffle_not_constructed(client) -> None:
    assert client.get("/api/raffle").status_code == 404
    assert _enter(client, "alice").status_code == 404
    assert client.get("/api/raffle/upkeep").status_code == 404


def test_initial_snapshot(client, raffle) -> None:
    r = client.get("/api/raffle")
    assert r.status_code == 200

    body = r.json()
    assert body["state"] == "OPEN"
    assert body["entrance_fee"] == str(FEE)
    assert body["interval"] == INTERVAL
    assert body["last_timestamp"] == T0
    assert body["num_players"] == 0
    assert body["custody_balance"] == "0"
    assert body["recent_winner"] is None
    assert body["pending_request_id"] is None


def test_enter_and_query_players(client, raffle) -> None:
    r = _enter(client, "alice")
    assert r.status_code == 200
    assert r.json() == {"player": "alice", "position": 0, "round_number": 1}
    assert _enter(client, "bob", FEE * 2).json()["position"] == 1

    assert client.get("/api/raffle/players/count").json() == {"count": 2}
    assert client.get("/api/raffle/players/1").json() == {
        "index": 1,
        "player": "bob",
        "paid_amount": str(FEE * 2),
    }
    assert client.get("/api/raffle/players/2").status_code == 404
    assert client.get("/api/raffle").json()["custody_balance"] == str(FEE * 3)


def test_enter_below_fee(client, raffle) -> None:
    r = _enter(client, "alice", FEE - 1)

    assert r.status_code == 400
    assert client.get("/api/raffle/players/count").json() == {"count": 0}


def test_enter_validates_body(client, raffle) -> None:
    assert client.post("/api/raffle/enter", json={"player": "", "amount": FEE}).status_code == 422
    assert client.post("/api/raffle/enter", json={"player": "a", "amount": -1}).status_code == 422


def test_upkeep_check_reports_conditions(client, raffle, clock) -> None:
    body = client.get("/api/raffle/upkeep").json()
    assert body == {
        "upkeep_needed": False,
        "perform_data": "0x",
        "is_open": True,
        "time_passed": False,
        "has_players": False,
        "has_balance": False,
    }

    _enter(client, "alice")
    clock.now = T0 + INTERVAL - 1
    assert client.get("/api/raffle/upkeep").json()["upkeep_needed"] is False

    clock.now = T0 + INTERVAL + 1
    assert client.get("/api/raffle/upkeep").json()["upkeep_needed"] is True


def test_perform_upkeep_not_needed(client, raffle, provider) -> None:
    _enter(client, "alice")

    r = client.post("/api/raffle/upkeep", json={"perform_data": "0x"})

    assert r.status_code == 409
    assert provider.requests == []
    assert client.get("/api/raffle").json()["state"] == "OPEN"


def test_perform_upkeep_rejects_bad_perform_data(client, raffle) -> None:
    assert client.post("/api/raffle/upkeep", json={"perform_data": "0xabc"}).status_code == 422
    assert client.post("/api/raffle/upkeep", json={"perform_data": "zz"}).status_code == 422


def test_full_round_over_http(client, raffle, clock) -> None:
    for player in ["A", "B", "C", "D"]:
        assert _enter(client, player).status_code == 200

    clock.now = T0 + INTERVAL + 1
    r = client.post("/api/raffle/upkeep")
    assert r.status_code == 200
    request_id = r.json()["request_id"]
    assert request_id == "1"

    snapshot = client.get("/api/raffle").json()
    assert snapshot["state"] == "RESOLVING"
    assert snapshot["pending_request_id"] == request_id

    # entry and a second trigger are blocked while resolving
    assert _enter(client, "E").status_code == 409
    assert client.post("/api/raffle/upkeep").status_code == 409

    clock.now = T0 + INTERVAL + 10
    r = _fulfill(client, request_id, [42])
    assert r.status_code == 200
    assert r.json() == {"request_id": "1", "winner": "C", "amount": str(4 * FEE), "round_number": 1}

    snapshot = client.get("/api/raffle").json()
    assert snapshot["state"] == "OPEN"
    assert snapshot["num_players"] == 0
    assert snapshot["custody_balance"] == "0"
    assert snapshot["recent_winner"] == "C"
    assert snapshot["last_timestamp"] == T0 + INTERVAL + 10
    assert snapshot["round_number"] == 2
    assert client.get("/api/raffle/winner").json() == {"recent_winner": "C"}
    assert client.get("/api/accounts/C").json() == {"address": "C", "balance": str(4 * FEE)}

    events = client.get("/api/raffle/events", params={"event_type": "WINNER_PICKED"}).json()
    assert len(events) == 1
    assert events[0]["data"]["winner"] == "C"


def test_fulfill_requires_oracle_token(client, raffle, provider) -> None:
    assert _fulfill(client, 1, [1], token="wrong").status_code == 401
    r = client.post("/api/oracle/fulfill", json={"request_id": 1, "random_words": [1]})
    assert r.status_code == 401


def test_fulfill_unknown_request(client, raffle, clock) -> None:
    assert _fulfill(client, 0, [42]).status_code == 409

    _enter(client, "alice")
    clock.now = T0 + INTERVAL + 1
    request_id = client.post("/api/raffle/upkeep").json()["request_id"]

    assert _fulfill(client, int(request_id) + 1, [42]).status_code == 409
    assert client.get("/api/raffle").json()["state"] == "RESOLVING"


def test_fulfill_without_words(client, raffle, clock) -> None:
    _enter(client, "alice")
    clock.now = T0 + INTERVAL + 1
    request_id = client.post("/api/raffle/upkeep").json()["request_id"]

    assert _fulfill(client, request_id, []).status_code == 400


def test_oracle_failure_keeps_round_open(client, raffle, clock) -> None:
    app.dependency_overrides[get_randomness_provider] = lambda: BrokenRandomnessProvider()
    _enter(client, "alice")
    clock.now = T0 + INTERVAL + 1

    assert client.post("/api/raffle/upkeep").status_code == 502
    assert client.get("/api/raffle").json()["state"] == "OPEN"


@pytest.mark.parametrize("gateway", [RejectingPayoutGateway()])
def test_payout_failure_keeps_round_resolving(client, raffle, clock, gateway) -> None:
    _enter(client, "alice")
    _enter(client, "bob")
    clock.now = T0 + INTERVAL + 1
    request_id = client.post("/api/raffle/upkeep").json()["request_id"]

    r = _fulfill(client, request_id, [1])
    assert r.status_code == 502

    snapshot = client.get("/api/raffle").json()
    assert snapshot["state"] == "RESOLVING"
    assert snapshot["num_players"] == 2
    assert snapshot["custody_balance"] == str(2 * FEE)
    assert snapshot["pending_request_id"] == request_id
    assert client.get("/api/accounts/bob").json()["balance"] == "0"


def test_recover_requires_operator_token(client, raffle) -> None:
    assert client.post("/api/raffle/recover").status_code == 401
    r = client.post("/api/raffle/recover", headers={"X-Operator-Token": "nope"})
    assert r.status_code == 401


def test_recover_disabled_without_configured_token(client, raffle, settings) -> None:
    app.dependency_overrides[get_settings] = lambda: settings.model_copy(update={"operator_token": None})

    r = client.post("/api/raffle/recover", headers={"X-Operator-Token": OPERATOR_TOKEN})
    assert r.status_code == 403


def test_recover_stuck_round(client, raffle, clock) -> None:
    headers = {"X-Operator-Token": OPERATOR_TOKEN}
    assert client.post("/api/raffle/recover", headers=headers).status_code == 409

    _enter(client, "alice")
    clock.now = T0 + INTERVAL + 1
    stale_id = client.post("/api/raffle/upkeep").json()["request_id"]

    clock.now += 599
    assert client.post("/api/raffle/recover", headers=headers).status_code == 409

    clock.now += 1
    r = client.post("/api/raffle/recover", headers=headers)
    assert r.status_code == 200
    assert r.json() == {"abandoned_request_id": stale_id}

    snapshot = client.get("/api/raffle").json()
    assert snapshot["state"] == "OPEN"
    assert snapshot["num_players"] == 1
    assert snapshot["pending_request_id"] is None

    assert _fulfill(client, stale_id, [0]).status_code == 409
    assert _enter(client, "bob").status_code == 200


def test_events_are_paged(client, raffle) -> None:
    for player in ["a", "b", "c"]:
        _enter(client, player)

    first = client.get("/api/raffle/events", params={"limit": 2}).json()
    assert [e["data"]["player"] for e in first] == ["a", "b"]

    rest = client.get("/api/raffle/events", params={"after_id": first[-1]["id"]}).json()
    assert [e["data"]["player"] for e in rest] == ["c"]
    assert all(e["event_type"] == "PLAYER_ENTERED" for e in first + rest)


def test_fake_provider_is_used(client, raffle, clock, provider: FakeRandomnessProvider) -> None:
    _enter(client, "alice")
    clock.now = T0 + INTERVAL + 1

    client.post("/api/raffle/upkeep", json={"perform_data": "0x01"})

    assert len(provider.requests) == 1
    assert provider.requests[0].num_words == 1


def test_large_values_travel_as_decimal_strings(client, raffle, clock) -> None:
    big_id = 2**200 + 3
    amount = 2**70 + 1
    app.dependency_overrides[get_randomness_provider] = lambda: FakeRandomnessProvider(first_id=big_id)

    r = client.post("/api/raffle/enter", json={"player": "whale", "amount": str(amount)})
    assert r.status_code == 200
    assert client.get("/api/raffle/players/0").json()["paid_amount"] == str(amount)

    clock.now = T0 + INTERVAL + 1
    request_id = client.post("/api/raffle/upkeep").json()["request_id"]
    assert request_id == str(big_id)
    assert client.get("/api/raffle").json()["pending_request_id"] == str(big_id)

    r = _fulfill(client, request_id, [str(2**255 + 1)])
    assert r.status_code == 200
    assert r.json()["amount"] == str(amount)
    assert client.get("/api/accounts/whale").json()["balance"] == str(amount)
