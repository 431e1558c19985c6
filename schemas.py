"""
Request / response schemas

Amounts, request ids and random words are unbounded integers; clients may
send them as JSON numbers or decimal strings. Responses always carry them as
decimal strings (Uint256), since JSON numbers above 2**53 lose precision in
JavaScript clients.
"""
from typing import Annotated, Any, Dict, List, Optional

from pydantic import BaseModel, Field, PlainSerializer, field_validator

from models import RaffleState

# int in Python, decimal string on the wire
Uint256 = Annotated[int, PlainSerializer(str, return_type=str, when_used="json")]


class EnterRequest(BaseModel):
    player: str = Field(..., min_length=1, max_length=128)
    amount: int = Field(..., ge=0)


class EntryResponse(BaseModel):
    player: str
    position: int
    round_number: int


class RaffleResponse(BaseModel):
    raffle_id: str
    state: RaffleState
    round_number: int
    entrance_fee: Uint256
    interval: int
    last_timestamp: int
    num_players: int
    custody_balance: Uint256
    recent_winner: Optional[str] = None
    pending_request_id: Optional[Uint256] = None


class PlayerResponse(BaseModel):
    index: int
    player: str
    paid_amount: Uint256


class PlayerCountResponse(BaseModel):
    count: int


class WinnerResponse(BaseModel):
    recent_winner: Optional[str] = None


class UpkeepCheckResponse(BaseModel):
    upkeep_needed: bool
    perform_data: str = "0x"
    is_open: bool
    time_passed: bool
    has_players: bool
    has_balance: bool


class UpkeepRequest(BaseModel):
    perform_data: str = "0x"

    @field_validator("perform_data")
    @classmethod
    def must_be_hex(cls, v: str) -> str:
        body = v[2:] if v.startswith("0x") else v
        if len(body) % 2:
            raise ValueError("perform_data must be an even-length hex string")
        bytes.fromhex(body)
        return v

    def as_bytes(self) -> bytes:
        body = self.perform_data[2:] if self.perform_data.startswith("0x") else self.perform_data
        return bytes.fromhex(body)


class UpkeepResponse(BaseModel):
    request_id: Uint256


class FulfillRequest(BaseModel):
    request_id: int = Field(..., ge=0)
    random_words: List[int]


class FulfillResponse(BaseModel):
    request_id: Uint256
    winner: str
    amount: Uint256
    round_number: int


class RecoverResponse(BaseModel):
    abandoned_request_id: Optional[Uint256] = None


class AccountResponse(BaseModel):
    address: str
    balance: Uint256


class EventResponse(BaseModel):
    id: int
    event_type: str
    data: Dict[str, Any]
