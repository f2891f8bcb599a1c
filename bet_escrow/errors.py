from typing import Optional


class EscrowError(Exception):
    """Base exception for rejected escrow operations."""

    status_code = 400

    def __init__(self, message: str, bet_id: Optional[int] = None):
        super().__init__(message)
        self.message = message
        self.bet_id = bet_id


class InvalidInput(EscrowError):
    """Zero stake, past deadline, mismatched join amount or a bad identity."""

    status_code = 400


class NotFound(EscrowError):
    """Referenced bet does not exist."""

    status_code = 404


class Unauthorized(EscrowError):
    """Caller lacks the role the operation requires."""

    status_code = 403


class InvalidState(EscrowError):
    """Operation not permitted from the bet's current state."""

    status_code = 409


class AlreadyProcessed(EscrowError):
    """Settlement or pinning was already recorded."""

    status_code = 409


class TransferFailure(EscrowError):
    """Recipient rejected a payout; the whole operation is rolled back."""

    status_code = 502

    def __init__(self, message: str, recipient: str, amount: int, bet_id: Optional[int] = None):
        super().__init__(message, bet_id=bet_id)
        self.recipient = recipient
        self.amount = amount
