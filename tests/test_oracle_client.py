import pytest
import sys
import os
from urllib.parse import urlsplit

sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), '..')))

from eth_account import Account

import server
from bet_escrow.models import BetTerms, CallContext
from tools.oracle_client import RelayClient, decide_outcome, report_and_settle

NOW = 1_700_000_000
DAY = 86400
STAKE = 10 ** 17


class _Response:
    def __init__(self, resp):
        self._resp = resp
        self.status_code = resp.status_code
        self.text = resp.get_data(as_text=True)

    def json(self):
        return self._resp.get_json()


class FlaskSession:
    """Minimal stand-in for requests.Session that calls a Flask test client."""

    def __init__(self, test_client):
        self.c = test_client

    def _wrap(self, resp):
        return _Response(resp)

    def get(self, url, params=None, timeout=None):
        return self._wrap(self.c.get(urlsplit(url).path, query_string=params))

    def post(self, url, json=None, timeout=None):
        return self._wrap(self.c.post(urlsplit(url).path, json=json))


@pytest.fixture
def setup():
    admin, alice, bob = Account.create(), Account.create(), Account.create()
    oracle = Account.create()
    ledger, registry = server.build_escrow(administrator=admin.address, reporters=[oracle.address])
    app = server.create_app(ledger, registry, require_signature=True, clock=lambda: NOW)
    client = RelayClient(base_url="http://relay.test", private_key=oracle.key.hex(),
                         session=FlaskSession(app.test_client()))
    return ledger, client, alice.address, bob.address


def _activate(ledger, alice, bob, terms=None):
    bet_id = ledger.create_bet(CallContext(alice, NOW, STAKE), "Celtics over 100", NOW + DAY, terms)
    ledger.join_bet(CallContext(bob, NOW, STAKE), bet_id)
    return bet_id


def test_client_requires_key():
    with pytest.raises(RuntimeError):
        RelayClient(private_key=None)


def test_report_and_settle_explicit_outcome(setup):
    ledger, client, alice, bob = setup
    assert client.is_trusted() is True
    bet_id = _activate(ledger, alice, bob)
    res = report_and_settle(client, bet_id, creator_won=False)
    assert res["settled"]["winner"] == bob
    assert ledger.treasury.balance_of(bob) == 2 * STAKE


def test_report_and_settle_from_score(setup):
    ledger, client, alice, bob = setup
    terms = BetTerms("NBA_1", "Boston Celtics", 100, True)
    bet_id = _activate(ledger, alice, bob, terms)

    pending = report_and_settle(client, bet_id, score=95, completed=False)
    assert pending["skipped"] == "outcome not decided yet"

    res = report_and_settle(client, bet_id, score=104, completed=False)
    assert res["submitted"]["outcome"] is True
    assert ledger.get_bet(bet_id).winner == alice

    again = report_and_settle(client, bet_id, score=104, completed=True)
    assert again["skipped"] == "already settled"


def test_skips_open_bet(setup):
    ledger, client, alice, bob = setup
    bet_id = ledger.create_bet(CallContext(alice, NOW, STAKE), "open", NOW + DAY)
    assert report_and_settle(client, bet_id, creator_won=True)["skipped"] == "bet is open"


def test_relay_errors_surface_as_runtime_error(setup):
    ledger, client, alice, bob = setup
    with pytest.raises(RuntimeError, match="404"):
        client.get_bet(42)


def test_decide_outcome_needs_terms_or_explicit_value():
    with pytest.raises(RuntimeError):
        decide_outcome({"id": 0, "terms": None}, score=3, completed=True)
    assert decide_outcome({"id": 0}, score=None, completed=False, creator_won=True) is True
