"""Append-only event log for escrow state transitions.

Events raised while an operation is running are staged and only become
visible (and reach subscribers) once the operation commits. A rolled back
operation leaves no trace in the log.
"""
import dataclasses
import logging
from typing import Any, Callable, Dict, List, Optional

logger = logging.getLogger(__name__)


@dataclasses.dataclass(frozen=True)
class Event:
    sequence: int
    name: str
    args: Dict[str, Any]

    def to_dict(self) -> dict:
        return {"sequence": self.sequence, "name": self.name, "args": dict(self.args)}


class EventLog:
    def __init__(self):
        self.entries: List[Event] = []
        self._staged: List[Event] = []
        self._subscribers: List[Callable[[Event], None]] = []

    def emit(self, name: str, **args) -> Event:
        event = Event(sequence=len(self.entries) + len(self._staged), name=name, args=args)
        self._staged.append(event)
        return event

    def commit(self) -> None:
        staged, self._staged = self._staged, []
        self.entries.extend(staged)
        for event in staged:
            logger.debug("event %s %s", event.name, event.args)
            for callback in list(self._subscribers):
                callback(event)

    def discard(self) -> None:
        self._staged = []

    def subscribe(self, callback: Callable[[Event], None]) -> Callable[[], None]:
        self._subscribers.append(callback)

        def unsubscribe():
            if callback in self._subscribers:
                self._subscribers.remove(callback)

        return unsubscribe

    def filter(self, name: Optional[str] = None, bet_id: Optional[int] = None) -> List[Event]:
        result = []
        for event in self.entries:
            if name is not None and event.name != name:
                continue
            if bet_id is not None and event.args.get("bet_id") != bet_id:
                continue
            result.append(event)
        return result

    def since(self, sequence: int) -> List[Event]:
        return [e for e in self.entries if e.sequence >= sequence]
