"""
Raffle API Endpoints

Responsibilities:
1. Entry (anyone)
2. Upkeep check / perform for the periodic caller (anyone)
3. Read-only queries
4. Operator recovery of a stuck round

All business logic lives in RaffleManager; this layer only maps exceptions
to HTTP responses.
"""
import hmac
from typing import Optional

from fastapi import APIRouter, Depends, Header, HTTPException, Query
from sqlalchemy.orm import Session
import logging

from database import get_db, get_settings
from schemas import (
    EnterRequest,
    EntryResponse,
    RaffleResponse,
    PlayerResponse,
    PlayerCountResponse,
    WinnerResponse,
    UpkeepCheckResponse,
    UpkeepRequest,
    UpkeepResponse,
    RecoverResponse,
    AccountResponse,
    EventResponse,
)
from core.raffle_manager import RaffleManager
from core.exceptions import (
    RaffleNotFound,
    ParticipantNotFound,
    InsufficientFund,
    NotOpen,
    ResolutionNotNeeded,
    OracleError,
    RecoveryNotAllowed,
)
from services.event_service import list_events
from services.payout_service import get_account_balance
from services.randomness_service import get_randomness_provider

router = APIRouter(prefix="/api", tags=["raffle"])
logger = logging.getLogger(__name__)


@router.get("/raffle", response_model=RaffleResponse)
def get_raffle(db: Session = Depends(get_db)):
    """
    Current round snapshot

    Returns fee, state, interval, last timestamp, player count, custody
    balance, recent winner and the pending request id.
    """
    try:
        raffle = RaffleManager.get_raffle(db)
        return RaffleResponse(
            raffle_id=raffle.id,
            state=raffle.state,
            round_number=raffle.round_number,
            entrance_fee=raffle.entrance_fee,
            interval=raffle.interval,
            last_timestamp=raffle.last_timestamp,
            num_players=len(raffle.participants),
            custody_balance=raffle.custody_balance,
            recent_winner=raffle.recent_winner,
            pending_request_id=raffle.pending_request_id,
        )

    except RaffleNotFound:
        raise HTTPException(status_code=404, detail="Raffle not found")
    except Exception as e:
        logger.error(f"Failed to get raffle: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Internal error")


@router.post("/raffle/enter", response_model=EntryResponse)
def enter_raffle(entry: EnterRequest, db: Session = Depends(get_db)):
    """
    Enter the current round

    Preconditions:
    - round is OPEN (409 otherwise)
    - amount >= entrance fee (400 otherwise)
    """
    try:
        participant = RaffleManager.enter(db, entry.player, entry.amount)
        raffle = RaffleManager.get_raffle(db)
        return EntryResponse(
            player=participant.address,
            position=participant.position,
            round_number=raffle.round_number,
        )

    except RaffleNotFound:
        raise HTTPException(status_code=404, detail="Raffle not found")
    except NotOpen as e:
        raise HTTPException(status_code=409, detail=str(e))
    except InsufficientFund as e:
        raise HTTPException(status_code=400, detail=str(e))
    except Exception as e:
        logger.error(f"Failed to enter raffle: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Internal error")


@router.get("/raffle/players/count", response_model=PlayerCountResponse)
def get_player_count(db: Session = Depends(get_db)):
    try:
        return PlayerCountResponse(count=RaffleManager.get_participant_count(db))

    except RaffleNotFound:
        raise HTTPException(status_code=404, detail="Raffle not found")
    except Exception as e:
        logger.error(f"Failed to count players: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Internal error")


@router.get("/raffle/players/{index}", response_model=PlayerResponse)
def get_player(index: int, db: Session = Depends(get_db)):
    try:
        participant = RaffleManager.get_participant(db, index)
        return PlayerResponse(
            index=participant.position,
            player=participant.address,
            paid_amount=participant.paid_amount,
        )

    except (RaffleNotFound, ParticipantNotFound) as e:
        raise HTTPException(status_code=404, detail=str(e))
    except Exception as e:
        logger.error(f"Failed to get player {index}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Internal error")


@router.get("/raffle/winner", response_model=WinnerResponse)
def get_recent_winner(db: Session = Depends(get_db)):
    try:
        raffle = RaffleManager.get_raffle(db)
        return WinnerResponse(recent_winner=raffle.recent_winner)

    except RaffleNotFound:
        raise HTTPException(status_code=404, detail="Raffle not found")
    except Exception as e:
        logger.error(f"Failed to get recent winner: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Internal error")


@router.get("/raffle/upkeep", response_model=UpkeepCheckResponse)
def check_upkeep(db: Session = Depends(get_db)):
    """
    Readiness check for the periodic caller

    Read-only. Reports every condition so an operator can see why a round
    is not ready yet.
    """
    try:
        readiness = RaffleManager.check_ready(db)
        return UpkeepCheckResponse(
            upkeep_needed=readiness.ready,
            perform_data="0x" + readiness.aux_data.hex(),
            is_open=readiness.is_open,
            time_passed=readiness.time_passed,
            has_players=readiness.has_players,
            has_balance=readiness.has_balance,
        )

    except RaffleNotFound:
        raise HTTPException(status_code=404, detail="Raffle not found")
    except Exception as e:
        logger.error(f"Failed to check upkeep: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Internal error")


@router.post("/raffle/upkeep", response_model=UpkeepResponse)
def perform_upkeep(
    body: Optional[UpkeepRequest] = None,
    db: Session = Depends(get_db),
    provider=Depends(get_randomness_provider),
):
    """
    Start resolving the round (periodic caller endpoint)

    Readiness is re-evaluated server-side; 409 when it is false.

    Effect:
    - OPEN -> RESOLVING
    - one randomness request issued to the oracle
    """
    try:
        aux_data = body.as_bytes() if body else b""
        request_id = RaffleManager.initiate_resolution(db, provider, aux_data)
        return UpkeepResponse(request_id=request_id)

    except RaffleNotFound:
        raise HTTPException(status_code=404, detail="Raffle not found")
    except ResolutionNotNeeded as e:
        raise HTTPException(status_code=409, detail=str(e))
    except OracleError as e:
        raise HTTPException(status_code=502, detail=str(e))
    except Exception as e:
        logger.error(f"Failed to perform upkeep: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Internal error")


@router.post("/raffle/recover", response_model=RecoverResponse)
def recover_round(
    db: Session = Depends(get_db),
    settings=Depends(get_settings),
    x_operator_token: Optional[str] = Header(default=None),
):
    """
    Reopen a round whose randomness callback never arrived (operator endpoint)

    Requires the X-Operator-Token header. Disabled when no operator token is
    configured.
    """
    if not settings.operator_token:
        raise HTTPException(status_code=403, detail="Recovery is disabled")
    if not x_operator_token or not hmac.compare_digest(x_operator_token, settings.operator_token):
        raise HTTPException(status_code=401, detail="Invalid operator token")

    try:
        abandoned = RaffleManager.recover_stuck_round(db, settings.resolution_timeout)
        return RecoverResponse(abandoned_request_id=abandoned)

    except RaffleNotFound:
        raise HTTPException(status_code=404, detail="Raffle not found")
    except RecoveryNotAllowed as e:
        raise HTTPException(status_code=409, detail=str(e))
    except Exception as e:
        logger.error(f"Failed to recover round: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Internal error")


@router.get("/raffle/events", response_model=list[EventResponse])
def get_events(
    event_type: Optional[str] = Query(default=None),
    after_id: int = Query(default=0, ge=0),
    limit: int = Query(default=100, ge=1, le=1000),
    db: Session = Depends(get_db)
):
    """
    Emitted notifications, oldest first

    Poll with after_id = last seen id.
    """
    try:
        raffle = RaffleManager.get_raffle(db)
        events = list_events(db, raffle.id, event_type=event_type, after_id=after_id, limit=limit)
        return [
            EventResponse(id=event.id, event_type=event.event_type, data=event.data)
            for event in events
        ]

    except RaffleNotFound:
        raise HTTPException(status_code=404, detail="Raffle not found")
    except Exception as e:
        logger.error(f"Failed to list events: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Internal error")


@router.get("/accounts/{address}", response_model=AccountResponse)
def get_account(address: str, db: Session = Depends(get_db)):
    """Balance credited to an address by payouts"""
    try:
        return AccountResponse(address=address, balance=get_account_balance(db, address))

    except Exception as e:
        logger.error(f"Failed to get account {address}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Internal error")
