import contextlib
import copy
import logging
from typing import List, Optional

from bet_escrow.errors import (
    AlreadyProcessed,
    InvalidInput,
    InvalidState,
    NotFound,
    Unauthorized,
)
from bet_escrow.events import EventLog
from bet_escrow.models import ZERO_ADDRESS, Bet, BetStatus, BetTerms, CallContext
from bet_escrow.oracle_registry import OracleRegistry
from bet_escrow.treasury import Treasury

logger = logging.getLogger(__name__)


def _is_uint(value) -> bool:
    return isinstance(value, int) and not isinstance(value, bool) and value >= 0


class BetLedger:
    """Escrow for two-party bets.

    Every mutating call takes a CallContext carrying the caller, the current
    time and the value attached to the call. Preconditions are checked before
    anything changes; fund movements run inside a transaction so a rejected
    payout leaves bets, custody and the event log untouched.
    """

    def __init__(self, registry: OracleRegistry, administrator: str,
                 treasury: Optional[Treasury] = None, events: Optional[EventLog] = None):
        if not administrator or administrator.lower() == ZERO_ADDRESS:
            raise InvalidInput("Administrator identity is required")
        self.registry = registry
        self._administrator = administrator
        self.treasury = treasury if treasury is not None else Treasury()
        self.events = events if events is not None else EventLog()
        self._bets: List[Bet] = []

    @property
    def administrator(self) -> str:
        return self._administrator

    @property
    def custody_balance(self) -> int:
        return self.treasury.custody

    # ---- helpers ----
    def _get(self, bet_id: int) -> Bet:
        if not _is_uint(bet_id) or bet_id >= len(self._bets):
            raise NotFound(f"Bet {bet_id} not found", bet_id=bet_id)
        return self._bets[bet_id]

    @contextlib.contextmanager
    def _transaction(self, bet: Bet):
        saved_bet = copy.copy(bet)
        saved_funds = self.treasury.snapshot()
        try:
            yield
        except Exception:
            bet.__dict__.update(saved_bet.__dict__)
            self.treasury.restore(saved_funds)
            self.events.discard()
            logger.warning("bet %s: transaction rolled back", bet.id)
            raise
        self.events.commit()

    def is_authorized_settler(self, identity: str) -> bool:
        return identity == self._administrator or self.registry.is_trusted(identity)

    # ---- transitions ----
    def create_bet(self, ctx: CallContext, description: str, deadline: int,
                   terms: Optional[BetTerms] = None) -> int:
        if not _is_uint(ctx.value) or ctx.value == 0:
            raise InvalidInput("Bet amount must be a positive integer")
        if not _is_uint(deadline):
            raise InvalidInput("Deadline must be an integer timestamp")
        if deadline <= ctx.now:
            raise InvalidInput("Deadline must be in the future")

        bet = Bet(
            id=len(self._bets),
            creator=ctx.caller,
            amount=ctx.value,
            description=description,
            deadline=deadline,
            created_at=ctx.now,
            terms=terms,
        )
        with self._transaction(bet):
            self.treasury.receive(ctx.caller, ctx.value)
            fields = dict(
                bet_id=bet.id,
                creator=bet.creator,
                amount=bet.amount,
                description=description,
                deadline=deadline,
            )
            if terms is not None:
                fields.update(
                    sport_event=terms.sport_event,
                    selected_team=terms.selected_team,
                    threshold=terms.threshold,
                    is_more_line=terms.is_more_line,
                )
            self.events.emit("BetCreated", **fields)
            self._bets.append(bet)
        logger.info("bet %s created by %s for %s", bet.id, bet.creator, bet.amount)
        return bet.id

    def join_bet(self, ctx: CallContext, bet_id: int) -> None:
        bet = self._get(bet_id)
        if bet.status != BetStatus.OPEN:
            raise InvalidState("Bet is not open", bet_id=bet_id)
        if ctx.caller == bet.creator:
            raise Unauthorized("Creator cannot join their own bet", bet_id=bet_id)
        if not _is_uint(ctx.value) or ctx.value != bet.amount:
            raise InvalidInput("Must match the bet amount exactly", bet_id=bet_id)

        with self._transaction(bet):
            self.treasury.receive(ctx.caller, ctx.value)
            bet.joiner = ctx.caller
            bet.status = BetStatus.ACTIVE
            self.events.emit("BetJoined", bet_id=bet_id, joiner=ctx.caller, amount=ctx.value)
        logger.info("bet %s joined by %s", bet_id, ctx.caller)

    def settle_bet(self, ctx: CallContext, bet_id: int, creator_won: bool) -> str:
        bet = self._get(bet_id)
        if not self.is_authorized_settler(ctx.caller):
            raise Unauthorized("Only a trusted reporter or the administrator can settle", bet_id=bet_id)
        if bet.is_settled:
            raise AlreadyProcessed("Bet already settled", bet_id=bet_id)
        if bet.status != BetStatus.ACTIVE:
            raise InvalidState("Bet is not active", bet_id=bet_id)
        if bet.joiner is None:
            raise InvalidState("Bet has no joiner", bet_id=bet_id)

        payout = bet.amount * 2
        with self._transaction(bet):
            bet.creator_won = bool(creator_won)
            bet.is_settled = True
            bet.status = BetStatus.COMPLETED
            winner = bet.creator if bet.creator_won else bet.joiner
            self.treasury.pay(winner, payout)
            self.events.emit("BetSettled", bet_id=bet_id, winner=winner, payout=payout,
                             creator_won=bet.creator_won)
        logger.info("bet %s settled by %s, %s paid to %s", bet_id, ctx.caller, payout, winner)
        return winner

    def timeout_bet(self, ctx: CallContext, bet_id: int) -> None:
        bet = self._get(bet_id)
        if bet.is_settled:
            raise AlreadyProcessed("Bet already settled", bet_id=bet_id)
        if bet.status != BetStatus.ACTIVE:
            raise InvalidState("Bet is not active", bet_id=bet_id)
        if ctx.now <= bet.deadline:
            raise InvalidState("Deadline has not passed yet", bet_id=bet_id)

        with self._transaction(bet):
            bet.status = BetStatus.REFUNDED
            self.treasury.pay(bet.creator, bet.amount)
            self.treasury.pay(bet.joiner, bet.amount)
            self.events.emit("BetRefunded", bet_id=bet_id, creator=bet.creator,
                             joiner=bet.joiner, amount=bet.amount)
        logger.info("bet %s timed out, stakes returned", bet_id)

    def cancel_bet(self, ctx: CallContext, bet_id: int) -> None:
        bet = self._get(bet_id)
        if ctx.caller != bet.creator:
            raise Unauthorized("Only the creator can cancel", bet_id=bet_id)
        if bet.status != BetStatus.OPEN or bet.joiner is not None:
            raise InvalidState("Only open bets can be cancelled", bet_id=bet_id)

        with self._transaction(bet):
            bet.status = BetStatus.CANCELLED
            self.treasury.pay(bet.creator, bet.amount)
            self.events.emit("BetCancelled", bet_id=bet_id, creator=bet.creator, amount=bet.amount)
        logger.info("bet %s cancelled by creator", bet_id)

    def transfer_administration(self, ctx: CallContext, new_administrator: str) -> None:
        if ctx.caller != self._administrator:
            raise Unauthorized("Only the administrator can hand over administration")
        if not new_administrator or new_administrator.lower() == ZERO_ADDRESS:
            raise InvalidInput("New administrator cannot be the zero address")
        previous, self._administrator = self._administrator, new_administrator
        self.events.emit("AdministrationTransferred", previous=previous, current=new_administrator)
        self.events.commit()
        logger.info("ledger administration moved from %s to %s", previous, new_administrator)

    # ---- reads ----
    def get_bet(self, bet_id: int) -> Bet:
        return copy.copy(self._get(bet_id))

    def bet_count(self) -> int:
        return len(self._bets)

    def list_bets(self, status: Optional[BetStatus] = None, participant: Optional[str] = None,
                  offset: int = 0, limit: Optional[int] = None) -> List[Bet]:
        if offset < 0 or (limit is not None and limit < 0):
            raise InvalidInput("Invalid pagination")
        result = []
        for bet in self._bets:
            if status is not None and bet.status != status:
                continue
            if participant is not None and not bet.is_participant(participant):
                continue
            result.append(copy.copy(bet))
        end = None if limit is None else offset + limit
        return result[offset:end]

    def is_refundable(self, bet_id: int, now: int) -> bool:
        bet = self._get(bet_id)
        return bet.status == BetStatus.ACTIVE and not bet.is_settled and now > bet.deadline
