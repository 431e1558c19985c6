"""
Custom exceptions

All business-logic failures live here so the API layer can map them to HTTP
responses in one place. Every failure aborts the whole operation; the
transaction is rolled back and the raffle stays in its last valid state.
"""


class RaffleException(Exception):
    """Base class of all raffle errors"""
    pass


# ============ Lookup ============

class RaffleNotFound(RaffleException):
    """The raffle has not been constructed yet"""
    def __init__(self, raffle_id=None):
        self.raffle_id = raffle_id
        super().__init__(f"Raffle {raffle_id} not found" if raffle_id else "Raffle not found")


class ParticipantNotFound(RaffleException):
    """No participant at this index in the current round"""
    def __init__(self, index):
        self.index = index
        super().__init__(f"No participant at index {index}")


# ============ Entry ============

class InsufficientFund(RaffleException):
    """Paid amount is below the entrance fee"""
    def __init__(self, paid_amount, entrance_fee):
        self.paid_amount = paid_amount
        self.entrance_fee = entrance_fee
        super().__init__(
            f"Paid {paid_amount}, entrance fee is {entrance_fee}"
        )


class NotOpen(RaffleException):
    """Entry or resolution attempted while the round is resolving"""
    pass


# ============ Resolution ============

class ResolutionNotNeeded(RaffleException):
    """The readiness predicate is false"""
    def __init__(self, balance, num_participants, state):
        self.balance = balance
        self.num_participants = num_participants
        self.state = state
        super().__init__(
            f"Resolution not needed (balance={balance}, "
            f"participants={num_participants}, state={state})"
        )


class OracleError(RaffleException):
    """The randomness oracle rejected the request or returned garbage"""
    pass


# ============ Settlement ============

class UnknownRequest(RaffleException):
    """Callback for a request id that is not the pending one"""
    def __init__(self, request_id):
        self.request_id = request_id
        super().__init__(f"Unknown randomness request {request_id}")


class InvalidRandomness(RaffleException):
    """Callback carried no usable random word"""
    pass


class PayoutFailed(RaffleException):
    """The winner transfer could not complete; settlement is rejected"""
    def __init__(self, winner, amount, reason=""):
        self.winner = winner
        self.amount = amount
        super().__init__(f"Payout of {amount} to {winner} failed: {reason}")


# ============ Recovery ============

class RecoveryNotAllowed(RaffleException):
    """Round is not resolving, or the resolution timeout has not elapsed"""
    pass


# ============ State transitions ============

class InvalidStateTransition(RaffleException):
    """Illegal state transition"""
    pass
