"""
Oracle callback endpoint

The randomness oracle delivers its answer here. The request id is the only
correlation token: anything but the pending id is rejected without touching
the round.
"""
import hmac
from typing import Optional

from fastapi import APIRouter, Depends, Header, HTTPException
from sqlalchemy.orm import Session
import logging

from database import get_db, get_settings
from schemas import FulfillRequest, FulfillResponse
from core.raffle_manager import RaffleManager
from core.exceptions import (
    RaffleNotFound,
    UnknownRequest,
    InvalidRandomness,
    InvalidStateTransition,
    PayoutFailed,
)
from services.payout_service import get_payout_gateway

router = APIRouter(prefix="/api/oracle", tags=["oracle"])
logger = logging.getLogger(__name__)


@router.post("/fulfill", response_model=FulfillResponse)
def fulfill_random_words(
    body: FulfillRequest,
    db: Session = Depends(get_db),
    settings=Depends(get_settings),
    gateway=Depends(get_payout_gateway),
    x_oracle_token: Optional[str] = Header(default=None),
):
    """
    Settle the round with the oracle's random words

    Authentication:
    - when oracle_token is configured, X-Oracle-Token must match

    Responses:
    - 409 unknown / stale request id (round untouched)
    - 502 payout failed (round stays RESOLVING)
    """
    if settings.oracle_token:
        if not x_oracle_token or not hmac.compare_digest(x_oracle_token, settings.oracle_token):
            raise HTTPException(status_code=401, detail="Invalid oracle token")

    try:
        settlement = RaffleManager.settle(db, body.request_id, body.random_words, gateway)
        return FulfillResponse(
            request_id=settlement.request_id,
            winner=settlement.winner,
            amount=settlement.amount,
            round_number=settlement.round_number,
        )

    except RaffleNotFound:
        raise HTTPException(status_code=404, detail="Raffle not found")
    except (UnknownRequest, InvalidStateTransition) as e:
        raise HTTPException(status_code=409, detail=str(e))
    except InvalidRandomness as e:
        raise HTTPException(status_code=400, detail=str(e))
    except PayoutFailed as e:
        raise HTTPException(status_code=502, detail=str(e))
    except Exception as e:
        logger.error(f"Failed to fulfill request {body.request_id}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Internal error")
