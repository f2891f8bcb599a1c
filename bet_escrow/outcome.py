"""Outcome computation for structured threshold bets.

This is the contract a reporter process follows before it calls
`submit_result` / `settle_bet`. The ledger itself only ever receives the
resulting boolean.
"""
from typing import Any, Dict, Optional

from bet_escrow.models import BetTerms


def resolve_threshold(terms: BetTerms, observed: int, completed: bool) -> Optional[bool]:
    """Return True if the creator won, False if they lost, None if undecided.

    Scores only ever increase, so a value already past the line decides the
    bet before the game ends: a "more than" line is won, a "less than" line is
    lost. Anything else waits for the game to complete. Landing exactly on the
    line satisfies neither side, so the creator loses.
    """
    if observed < 0:
        raise ValueError("Observed value cannot be negative")
    if observed > terms.threshold:
        return terms.is_more_line
    if not completed:
        return None
    if terms.is_more_line:
        return False
    return observed < terms.threshold


def evaluate(terms: BetTerms, observed: int, completed: bool) -> Dict[str, Any]:
    outcome = resolve_threshold(terms, observed, completed)
    state = "final" if completed else "in progress"
    evidence = (
        f"{terms.selected_team} at {observed} vs line {terms.threshold} "
        f"({'more' if terms.is_more_line else 'less'}), game {state}"
    )
    return {
        "outcome": outcome,
        "decided": outcome is not None,
        "early": outcome is not None and not completed,
        "evidence": evidence,
    }
