import sys
import os
import time

# ensure project root is on sys.path
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), '..')))
from bet_escrow.ledger import BetLedger
from bet_escrow.models import BetTerms, CallContext
from bet_escrow.oracle_registry import OracleRegistry
from bet_escrow.outcome import evaluate


def run_demo(now=None):
    """Create, join and settle one threshold bet in-process; return the event log."""
    now = int(now if now is not None else time.time())
    registry = OracleRegistry("0xOwner")
    ledger = BetLedger(registry, "0xOwner", events=registry.events)
    registry.add_trusted_reporter(CallContext("0xOwner", now), "0xOracle")

    terms = BetTerms("NBA_BOS_ORL", "Boston Celtics", 100, True)
    bet_id = ledger.create_bet(CallContext("0xAlice", now, 10 ** 17), terms.summary(), now + 86400, terms)
    ledger.join_bet(CallContext("0xBob", now, 10 ** 17), bet_id)

    verdict = evaluate(terms, 104, completed=False)
    registry.submit_result(CallContext("0xOracle", now + 60), bet_id, verdict["outcome"])
    ledger.settle_bet(CallContext("0xOracle", now + 60), bet_id, verdict["outcome"])
    return ledger.events.entries


if __name__ == '__main__':
    for event in run_demo():
        print(event.sequence, event.name, event.args)
