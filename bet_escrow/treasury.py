import logging
from typing import Dict, Set

from bet_escrow.errors import InvalidInput, TransferFailure

logger = logging.getLogger(__name__)


class Treasury:
    """Custody of staked funds plus the balances paid out of it.

    Deposits arrive already attached to a call (the substrate moved them), so
    `receive` only grows custody. `pay` moves funds out of custody and credits
    the recipient; recipients marked as rejecting make the payout fail.
    """

    def __init__(self):
        self.custody = 0
        self.balances: Dict[str, int] = {}
        self._rejecting: Set[str] = set()

    def receive(self, sender: str, amount: int) -> None:
        if amount <= 0:
            raise InvalidInput("Deposit must be positive")
        self.custody += amount
        logger.debug("received %s from %s (custody=%s)", amount, sender, self.custody)

    def pay(self, recipient: str, amount: int) -> None:
        if amount <= 0:
            raise InvalidInput("Payout must be positive")
        if amount > self.custody:
            raise TransferFailure("Insufficient custody for payout", recipient, amount)
        if recipient in self._rejecting:
            logger.warning("recipient %s rejected payout of %s", recipient, amount)
            raise TransferFailure(f"Recipient {recipient} rejected the transfer", recipient, amount)
        self.custody -= amount
        self.balances[recipient] = self.balances.get(recipient, 0) + amount

    def balance_of(self, identity: str) -> int:
        return self.balances.get(identity, 0)

    def reject_payments(self, identity: str, rejecting: bool = True) -> None:
        if rejecting:
            self._rejecting.add(identity)
        else:
            self._rejecting.discard(identity)

    def snapshot(self) -> tuple:
        return self.custody, dict(self.balances)

    def restore(self, state: tuple) -> None:
        self.custody, balances = state
        self.balances = dict(balances)
