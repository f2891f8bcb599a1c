import dataclasses
import enum
from typing import Optional

ZERO_ADDRESS = "0x0000000000000000000000000000000000000000"


class BetStatus(enum.IntEnum):
    OPEN = 0
    ACTIVE = 1
    COMPLETED = 2
    CANCELLED = 3
    REFUNDED = 4

    @property
    def is_terminal(self) -> bool:
        return self in (BetStatus.COMPLETED, BetStatus.CANCELLED, BetStatus.REFUNDED)

    @property
    def label(self) -> str:
        return self.name.capitalize()


@dataclasses.dataclass(frozen=True)
class BetTerms:
    """Structured, machine-checkable form of a bet.

    `is_more_line` is True when the bet resolves in the creator's favour if the
    observed value ends up above `threshold`, False when it must stay below.
    """

    sport_event: str
    selected_team: str
    threshold: int
    is_more_line: bool

    def summary(self) -> str:
        side = "more" if self.is_more_line else "less"
        return f"{self.selected_team} will score {side} than {self.threshold} points"


@dataclasses.dataclass(frozen=True)
class CallContext:
    """Who is calling, at what time, and with how much attached value."""

    caller: str
    now: int
    value: int = 0


@dataclasses.dataclass
class Bet:
    id: int
    creator: str
    amount: int
    description: str
    deadline: int
    created_at: int
    terms: Optional[BetTerms] = None
    joiner: Optional[str] = None
    status: BetStatus = BetStatus.OPEN
    is_settled: bool = False
    creator_won: bool = False

    @property
    def winner(self) -> Optional[str]:
        if not self.is_settled:
            return None
        return self.creator if self.creator_won else self.joiner

    def is_participant(self, identity: str) -> bool:
        return identity in (self.creator, self.joiner)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "creator": self.creator,
            "joiner": self.joiner or ZERO_ADDRESS,
            "amount": self.amount,
            "description": self.description,
            "deadline": self.deadline,
            "created_at": self.created_at,
            "status": int(self.status),
            "status_text": self.status.label,
            "is_settled": self.is_settled,
            "creator_won": self.creator_won,
            "terms": dataclasses.asdict(self.terms) if self.terms else None,
        }
