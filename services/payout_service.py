"""
Payout gateway: move the pot to the winner

A gateway raises PayoutError when the transfer cannot complete, including
when the database rejects the credit. The settlement transaction is then
rolled back as a whole.

LedgerPayoutGateway credits an Account row inside the caller's session, so
the credit and the zeroing of the custody balance commit or roll back
together.
"""
import logging
from typing import Protocol

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from models import Account

logger = logging.getLogger(__name__)


class PayoutError(Exception):
    """Transfer rejected by the gateway"""
    pass


class PayoutGateway(Protocol):
    def transfer(self, db: Session, recipient: str, amount: int) -> None:
        ...


class LedgerPayoutGateway:
    def transfer(self, db: Session, recipient: str, amount: int) -> None:
        if amount <= 0:
            raise PayoutError(f"Refusing to transfer non-positive amount {amount}")
        if not recipient:
            raise PayoutError("Missing recipient")

        account = db.query(Account).filter(
            Account.address == recipient
        ).with_for_update(nowait=False).first()
        if account is None:
            account = Account(address=recipient, balance=0)
            db.add(account)

        account.balance = (account.balance or 0) + amount
        try:
            db.flush()
        except SQLAlchemyError as e:
            raise PayoutError(f"Could not credit {recipient}: {e}") from e
        logger.info(f"Credited {amount} to {recipient}")


def get_account_balance(db: Session, address: str) -> int:
    account = db.query(Account).filter(Account.address == address).first()
    return account.balance if account else 0


def get_payout_gateway() -> PayoutGateway:
    """FastAPI dependency"""
    return LedgerPayoutGateway()
