import json
import logging
import os
import sys
from typing import Any, Dict, Optional

import requests
from eth_account import Account
from eth_account.messages import encode_defunct

# ensure local package imports work when run from workspace root
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), '..')))

from bet_escrow import outcome as outcome_rules
from bet_escrow.models import BetTerms

logger = logging.getLogger(__name__)

ESCROW_RELAY_URL = os.getenv('ESCROW_RELAY_URL', 'http://localhost:5000')
REPORTER_PRIVATE_KEY = os.getenv('REPORTER_PRIVATE_KEY')


def _message(action: str, address: str, nonce: str, ts: int, payload: Dict[str, Any]) -> str:
    body = json.dumps(payload, sort_keys=True, separators=(",", ":"))
    return (f"Bet Escrow Relayer\nAction: {action}\nAddress: {address}\nNonce: {nonce}\n"
            f"Timestamp: {ts}\nPayload: {body}")


class RelayClient:
    """Talks to the escrow relay on behalf of one reporter key."""

    def __init__(self, base_url: str = ESCROW_RELAY_URL, private_key: Optional[str] = REPORTER_PRIVATE_KEY,
                 session: Optional[requests.Session] = None, timeout: int = 15):
        if not private_key:
            raise RuntimeError('REPORTER_PRIVATE_KEY not configured')
        self.base_url = base_url.rstrip('/')
        self.account = Account.from_key(private_key)
        self.session = session or requests.Session()
        self.timeout = timeout

    @property
    def address(self) -> str:
        return self.account.address

    def _check(self, r) -> Dict[str, Any]:
        try:
            body = r.json()
        except ValueError:
            body = {"error": r.text}
        if r.status_code >= 400:
            raise RuntimeError(f"Relay rejected request ({r.status_code}): {body.get('error', body)}")
        return body

    def _get(self, path: str, **params) -> Dict[str, Any]:
        r = self.session.get(f"{self.base_url}{path}", params=params or None, timeout=self.timeout)
        return self._check(r)

    def _signed_post(self, path: str, action: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        r = self.session.post(f"{self.base_url}/auth/nonce", json={"address": self.address}, timeout=self.timeout)
        challenge = self._check(r)
        msg = _message(action, self.address, challenge["nonce"], challenge["timestamp"], payload)
        signed = self.account.sign_message(encode_defunct(text=msg))
        body = dict(payload)
        body.update({
            "address": self.address,
            "nonce": challenge["nonce"],
            "timestamp": challenge["timestamp"],
            "signature": signed.signature.hex(),
        })
        r = self.session.post(f"{self.base_url}{path}", json=body, timeout=self.timeout)
        return self._check(r)

    def get_bet(self, bet_id: int) -> Dict[str, Any]:
        return self._get(f"/bets/{bet_id}")

    def is_trusted(self) -> bool:
        return bool(self._get(f"/oracles/{self.address}").get("trusted"))

    def submit_result(self, bet_id: int, outcome: bool) -> Dict[str, Any]:
        return self._signed_post(f"/bets/{bet_id}/result", f"result:{bet_id}", {"outcome": outcome})

    def settle(self, bet_id: int, creator_won: bool) -> Dict[str, Any]:
        return self._signed_post(f"/bets/{bet_id}/settle", f"settle:{bet_id}", {"creator_won": creator_won})


def decide_outcome(bet: Dict[str, Any], score: Optional[int], completed: bool,
                   creator_won: Optional[bool] = None) -> Optional[bool]:
    """Pick the outcome to report: an explicit one, or one computed from the score."""
    if creator_won is not None:
        return creator_won
    terms = bet.get("terms")
    if not terms or score is None:
        raise RuntimeError('Bet has no structured terms; pass an explicit outcome')
    verdict = outcome_rules.evaluate(BetTerms(**terms), score, completed)
    logger.info("bet %s: %s", bet.get("id"), verdict["evidence"])
    return verdict["outcome"]


def report_and_settle(client: RelayClient, bet_id: int, score: Optional[int] = None,
                      completed: bool = False, creator_won: Optional[bool] = None) -> Dict[str, Any]:
    bet = client.get_bet(bet_id)
    if bet.get("is_settled"):
        return {"bet_id": bet_id, "skipped": "already settled"}
    if bet.get("status_text") != "Active":
        return {"bet_id": bet_id, "skipped": f"bet is {bet.get('status_text', 'unknown').lower()}"}

    outcome = decide_outcome(bet, score, completed, creator_won)
    if outcome is None:
        return {"bet_id": bet_id, "skipped": "outcome not decided yet"}

    submitted = client.submit_result(bet_id, outcome)
    settled = client.settle(bet_id, outcome)
    return {"bet_id": bet_id, "submitted": submitted, "settled": settled}


def _parse_bool(value: str) -> bool:
    v = value.strip().lower()
    if v in ("true", "1", "yes"):
        return True
    if v in ("false", "0", "no"):
        return False
    raise ValueError(f"Not a boolean: {value}")


if __name__ == '__main__':
    import argparse
    logging.basicConfig(level=logging.INFO, format="%(levelname)s %(name)s: %(message)s")
    parser = argparse.ArgumentParser(description="Report a bet outcome and settle it through the relay")
    parser.add_argument('--bet', type=int, required=True)
    parser.add_argument('--creator-won', type=_parse_bool)
    parser.add_argument('--score', type=int)
    parser.add_argument('--completed', action='store_true')
    parser.add_argument('--relay', default=ESCROW_RELAY_URL)
    args = parser.parse_args()
    c = RelayClient(base_url=args.relay)
    out = report_and_settle(c, args.bet, score=args.score, completed=args.completed, creator_won=args.creator_won)
    print(json.dumps(out, indent=2))
