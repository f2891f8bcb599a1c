import logging
from typing import Dict, Optional, Set

from bet_escrow.errors import AlreadyProcessed, InvalidInput, InvalidState, Unauthorized
from bet_escrow.events import EventLog
from bet_escrow.models import ZERO_ADDRESS, CallContext

logger = logging.getLogger(__name__)


def _is_null_identity(identity: Optional[str]) -> bool:
    return not identity or identity.lower() == ZERO_ADDRESS


class OracleRegistry:
    """Directory of identities trusted to report real-world outcomes.

    Submitting a result here is advisory: it records and announces the
    reporter's claim but never settles anything. The ledger re-checks trust
    on its own settlement entry point.
    """

    def __init__(self, administrator: str, events: Optional[EventLog] = None):
        if _is_null_identity(administrator):
            raise InvalidInput("Administrator identity is required")
        self._administrator = administrator
        self.events = events if events is not None else EventLog()
        self._trusted: Set[str] = set()
        self._pinned: Dict[int, str] = {}
        self._results: Dict[int, dict] = {}

    @property
    def administrator(self) -> str:
        return self._administrator

    def _require_admin(self, ctx: CallContext) -> None:
        if ctx.caller != self._administrator:
            raise Unauthorized("Only the registry administrator can do this")

    def add_trusted_reporter(self, ctx: CallContext, identity: str) -> None:
        self._require_admin(ctx)
        if _is_null_identity(identity):
            raise InvalidInput("Reporter identity cannot be the zero address")
        if identity in self._trusted:
            raise InvalidState(f"{identity} is already a trusted reporter")
        self._trusted.add(identity)
        self.events.emit("ReporterAdded", reporter=identity)
        self.events.commit()
        logger.info("trusted reporter added: %s", identity)

    def remove_trusted_reporter(self, ctx: CallContext, identity: str) -> None:
        self._require_admin(ctx)
        if identity not in self._trusted:
            raise InvalidState(f"{identity} is not a trusted reporter")
        self._trusted.discard(identity)
        self.events.emit("ReporterRemoved", reporter=identity)
        self.events.commit()
        logger.info("trusted reporter removed: %s", identity)

    def is_trusted(self, identity: str) -> bool:
        return identity in self._trusted

    def trusted_reporters(self) -> list:
        return sorted(self._trusted)

    def pin_reporter_to_bet(self, ctx: CallContext, bet_id: int, identity: str) -> None:
        self._require_admin(ctx)
        if identity not in self._trusted:
            raise InvalidInput(f"{identity} is not a trusted reporter", bet_id=bet_id)
        if bet_id in self._pinned:
            raise AlreadyProcessed("Bet already has a pinned reporter", bet_id=bet_id)
        self._pinned[bet_id] = identity
        self.events.emit("ReporterPinned", bet_id=bet_id, reporter=identity)
        self.events.commit()
        logger.info("reporter %s pinned to bet %s", identity, bet_id)

    def get_pinned_reporter(self, bet_id: int) -> Optional[str]:
        return self._pinned.get(bet_id)

    def submit_result(self, ctx: CallContext, bet_id: int, outcome: bool) -> bool:
        if not self.is_trusted(ctx.caller):
            raise Unauthorized("Caller is not a trusted reporter", bet_id=bet_id)
        pinned = self._pinned.get(bet_id)
        if pinned is not None and pinned != ctx.caller:
            raise Unauthorized("Bet is pinned to a different reporter", bet_id=bet_id)
        outcome = bool(outcome)
        self._results[bet_id] = {"outcome": outcome, "reporter": ctx.caller, "submitted_at": ctx.now}
        self.events.emit("ResultSubmitted", bet_id=bet_id, outcome=outcome, reporter=ctx.caller)
        self.events.commit()
        logger.info("result for bet %s submitted by %s: %s", bet_id, ctx.caller, outcome)
        return outcome

    def get_submitted_result(self, bet_id: int) -> Optional[dict]:
        result = self._results.get(bet_id)
        return dict(result) if result else None

    def transfer_administration(self, ctx: CallContext, new_administrator: str) -> None:
        self._require_admin(ctx)
        if _is_null_identity(new_administrator):
            raise InvalidInput("New administrator cannot be the zero address")
        previous, self._administrator = self._administrator, new_administrator
        self.events.emit("AdministrationTransferred", previous=previous, current=new_administrator)
        self.events.commit()
        logger.info("registry administration moved from %s to %s", previous, new_administrator)
